"""Media call-site exceptions.

Resolution (FindBinaryError) and supervision (CommandError) failures pass
through the media layer unchanged.
"""

from __future__ import annotations

from ..config import ENV_PREFIX
from ..env.errors import FindBinaryError
from ..env.find import override_env_key
from ..runtime.exit import CommandExit, ExitStatus

__all__ = [
    "MediaError",
    "BinaryNotFound",
    "IncompleteSubprocess",
    "ExitedUnsuccessfully",
    "ExpectedLine",
    "DurationParse",
]


class MediaError(Exception):
    """Base class for media call-site failures."""
    pass


class BinaryNotFound(MediaError):
    """The binary is neither configured nor on PATH.

    Attributes:
        name: Logical binary name
        env_key: Override variable the user can set
        scan_errors: Directory errors seen while scanning PATH
    """

    def __init__(
        self,
        name: str,
        scan_errors: list[FindBinaryError] | None = None,
        env_prefix: str | None = None,
    ) -> None:
        self.name = name
        self.env_key = override_env_key(name, env_prefix or ENV_PREFIX)
        self.scan_errors = list(scan_errors or [])
        message = (
            f"Unable to locate {name} on your PATH, set {self.env_key} to the binary, "
            f"or update your PATH"
        )
        if self.scan_errors:
            message += f" ({len(self.scan_errors)} search path error(s): {self.scan_errors[0]})"
        super().__init__(message)


class IncompleteSubprocess(MediaError):
    """The process returned without an exit status."""

    def __init__(self, result: CommandExit) -> None:
        self.result = result
        super().__init__(
            f"Process returned, but no exit status was present: "
            f"stdout_lines={len(result.stdout_lines)}, stderr_lines={len(result.stderr_lines)}"
        )


class ExitedUnsuccessfully(MediaError):
    def __init__(self, program: str, exit_code: ExitStatus, stderr_lines: list[str] | None = None) -> None:
        self.program = program
        self.exit_code = exit_code
        self.stderr_lines = list(stderr_lines or [])
        super().__init__(f"{program} exited unsuccessfully with {exit_code.describe()}")


class ExpectedLine(MediaError):
    """A line of output was expected but none was written."""

    def __init__(self, program: str, result: CommandExit) -> None:
        self.program = program
        self.result = result
        super().__init__(
            f"Expected {program} to output a line, got {len(result.stdout_lines)} stdout lines "
            f"and {len(result.stderr_lines)} stderr lines"
        )


class DurationParse(MediaError):
    def __init__(self, line: str, inner_error: BaseException) -> None:
        self.line = line
        self.inner_error = inner_error
        super().__init__(f"Failed to parse duration {line!r}: {inner_error}")
