"""Supervision exceptions.

A non-zero exit is not an error here: it is returned as data on
CommandExit.exit_code for the caller to interpret.
"""

from __future__ import annotations

__all__ = [
    "CommandError",
    "CommandCancelled",
    "BadSpawn",
    "BadExit",
]


class CommandError(Exception):
    """Base class for supervision failures."""
    pass


class CommandCancelled(CommandError):
    """Cancellation was requested and the child was killed."""

    def __init__(self, message: str = "cancellation requested") -> None:
        super().__init__(message)


class BadSpawn(CommandError):
    """The executable could not be launched.

    Attributes:
        program: Program that failed to start
        inner_error: Underlying OS error
    """

    def __init__(self, program: str, inner_error: BaseException) -> None:
        self.program = program
        self.inner_error = inner_error
        super().__init__(f"failed to spawn '{program}': {inner_error}")


class BadExit(CommandError):
    """The OS did not report an exit status for the child.

    Attributes:
        inner_error: Underlying OS error
    """

    def __init__(self, inner_error: BaseException) -> None:
        self.inner_error = inner_error
        super().__init__(f"exited unsuccessfully: {inner_error}")
