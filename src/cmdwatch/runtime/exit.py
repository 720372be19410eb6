"""Normalised exit status of a supervised process."""

from __future__ import annotations

import os
import sys

from pydantic import BaseModel, ConfigDict

__all__ = ["ExitStatus", "CommandExit"]

IS_POSIX = sys.platform != "win32"


class ExitStatus(BaseModel):
    """How a child process finished.

    POSIX-only fields are None on other platforms.

    Attributes:
        success: True only for a normal exit with code 0
        code: Exit code if the process exited normally
        signal: Terminating signal (POSIX)
        core_dumped: Whether a core dump was produced (POSIX)
        stopped_signal: Signal that stopped the process (POSIX)
        continued: Whether the process was resumed by SIGCONT (POSIX)
    """

    model_config = ConfigDict(frozen=True)

    success: bool
    code: int | None = None
    signal: int | None = None
    core_dumped: bool | None = None
    stopped_signal: int | None = None
    continued: bool | None = None

    @classmethod
    def from_returncode(cls, returncode: int) -> ExitStatus:
        """Build from an asyncio returncode (negative means killed by -returncode)."""
        if not IS_POSIX:
            return cls(success=returncode == 0, code=returncode)
        if returncode < 0:
            return cls(
                success=False,
                signal=-returncode,
                core_dumped=False,
                continued=False,
            )
        return cls(
            success=returncode == 0,
            code=returncode,
            core_dumped=False,
            continued=False,
        )

    @classmethod
    def from_wait_status(cls, status: int) -> ExitStatus:
        """Build from a raw status word as returned by os.waitpid()."""
        if not IS_POSIX:
            return cls.from_returncode(os.waitstatus_to_exitcode(status))

        code = os.WEXITSTATUS(status) if os.WIFEXITED(status) else None
        signalled = os.WIFSIGNALED(status)
        return cls(
            success=code == 0,
            code=code,
            signal=os.WTERMSIG(status) if signalled else None,
            # the core bit is only meaningful for a terminating signal
            core_dumped=signalled and os.WCOREDUMP(status),
            stopped_signal=os.WSTOPSIG(status) if os.WIFSTOPPED(status) else None,
            continued=os.WIFCONTINUED(status),
        )

    def describe(self) -> str:
        if self.code is not None:
            return f"code {self.code}"
        if self.signal is not None:
            return f"signal {self.signal}"
        return "unknown"


class CommandExit(BaseModel):
    """Terminal record of one supervised process.

    Attributes:
        stdout_lines: Stdout lines in arrival order
        stderr_lines: Stderr lines in arrival order
        exit_code: Exit status, None if the OS reported none
    """

    stdout_lines: list[str]
    stderr_lines: list[str]
    exit_code: ExitStatus | None = None
