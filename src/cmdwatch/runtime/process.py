"""Owned child process with isolation and reliable cleanup.

This module provides:
- CommandSpec: the mutable invocation handed to prepare callbacks
- ChildProcess: a single-owner async context manager around one child

Key design points:
- POSIX: start_new_session=True so signals reach the whole process group
- Windows: CREATE_NEW_PROCESS_GROUP for signal isolation
- kill() is the forced path used on cancellation (SIGKILL to the group)
- close() runs on every exit path: stdin closed, child terminated
  (SIGTERM -> timeout -> SIGKILL) if still alive, reaped, pipes closed,
  all shielded from cancellation
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import subprocess
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .errors import BadExit, BadSpawn

__all__ = [
    "ChildProcess",
    "CommandSpec",
    "IS_WINDOWS",
]

logger = logging.getLogger(__name__)

IS_WINDOWS = sys.platform == "win32"

DEFAULT_TERM_TIMEOUT = 2.0  # seconds to wait after SIGTERM
DEFAULT_KILL_TIMEOUT = 1.0  # seconds to wait after SIGKILL

# generous line limit; progress and log lines are far shorter
STREAM_LIMIT = 1024 * 1024


@dataclass
class CommandSpec:
    """Invocation of one program, filled in by a prepare callback.

    Attributes:
        program: Executable path or name
        args: Arguments (without the program itself)
        env: Environment variables (None = inherit parent)
        cwd: Working directory (None = inherit parent)
    """

    program: str
    args: list[str] = field(default_factory=list)
    env: dict[str, str] | None = None
    cwd: Path | None = None

    def arg(self, *values: str | os.PathLike[str]) -> CommandSpec:
        """Append arguments; returns self so calls can be chained."""
        self.args.extend(os.fspath(v) for v in values)
        return self

    def setenv(self, key: str, value: str) -> CommandSpec:
        """Set one environment variable on top of the inherited environment."""
        if self.env is None:
            self.env = dict(os.environ)
        self.env[key] = value
        return self

    @property
    def argv(self) -> list[str]:
        return [self.program, *self.args]


class ChildProcess:
    """Single-owner handle on a spawned child.

    Example:
        async with ChildProcess(spec) as child:
            line = await child.stdout.readline()
            returncode = await child.wait()
    """

    def __init__(
        self,
        spec: CommandSpec,
        *,
        pipe_stdin: bool = False,
        term_timeout: float = DEFAULT_TERM_TIMEOUT,
        kill_timeout: float = DEFAULT_KILL_TIMEOUT,
    ) -> None:
        self.spec = spec
        self.pipe_stdin = pipe_stdin
        self.term_timeout = term_timeout
        self.kill_timeout = kill_timeout
        self._process: asyncio.subprocess.Process | None = None
        self._killed = False

    async def __aenter__(self) -> ChildProcess:
        await self.spawn()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    @property
    def process(self) -> asyncio.subprocess.Process:
        if self._process is None:
            raise RuntimeError("child process has not been spawned")
        return self._process

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process else None

    @property
    def returncode(self) -> int | None:
        return self._process.returncode if self._process else None

    @property
    def killed(self) -> bool:
        """True if kill() was used to stop the child."""
        return self._killed

    @property
    def stdout(self) -> asyncio.StreamReader | None:
        return self.process.stdout

    @property
    def stderr(self) -> asyncio.StreamReader | None:
        return self.process.stderr

    async def spawn(self) -> None:
        """Start the child with piped stdout/stderr.

        Raises:
            BadSpawn: If the executable could not be launched
        """
        kwargs = self._build_subprocess_kwargs()
        # DEVNULL rather than None: an inherited stdin can be closed by the child
        stdin = asyncio.subprocess.PIPE if self.pipe_stdin else asyncio.subprocess.DEVNULL
        try:
            self._process = await asyncio.create_subprocess_exec(
                *self.spec.argv,
                stdin=stdin,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=STREAM_LIMIT,
                **kwargs,
            )
        except (OSError, ValueError) as e:
            logger.error(f"Failed to spawn program={self.spec.program}: {e}")
            raise BadSpawn(self.spec.program, e) from e

        logger.debug(
            f"Started subprocess pid={self._process.pid} "
            f"program={self.spec.program} stdin={'PIPE' if self.pipe_stdin else 'DEVNULL'}"
        )

    def _build_subprocess_kwargs(self) -> dict[str, Any]:
        kwargs: dict[str, Any] = {}

        if self.spec.env is not None:
            kwargs["env"] = dict(self.spec.env)
        if self.spec.cwd is not None:
            kwargs["cwd"] = self.spec.cwd

        if IS_WINDOWS:
            kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP
        else:
            kwargs["start_new_session"] = True

        return kwargs

    async def wait(self) -> int:
        """Wait for the child to exit.

        Raises:
            BadExit: If the OS failed to report a status
        """
        try:
            return await self.process.wait()
        except OSError as e:
            logger.error(f"Waiting for pid={self.pid} failed: {e}")
            raise BadExit(e) from e

    async def write_input(self, data: bytes) -> bool:
        """Write to the child's stdin.

        Returns:
            False if stdin is not piped or the child closed it
        """
        stdin = self.process.stdin
        if stdin is None or stdin.is_closing():
            logger.debug(f"stdin unavailable for pid={self.pid}, dropping {len(data)} bytes")
            return False
        try:
            stdin.write(data)
            await stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            logger.debug(f"stdin closed by pid={self.pid}: {e}")
            return False
        return True

    async def kill(self) -> None:
        """Forcibly kill the child (and its process group) and reap it."""
        if self._process is None or self._process.returncode is not None:
            return
        self._killed = True
        pid = self._process.pid
        logger.debug(f"Killing subprocess pid={pid}")
        try:
            if IS_WINDOWS:
                await self._windows_kill(self._process)
            else:
                await self._posix_kill(self._process)
        except ProcessLookupError:
            logger.debug(f"Subprocess already exited pid={pid}")
        try:
            await asyncio.wait_for(self._process.wait(), timeout=self.kill_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Subprocess did not exit after kill pid={pid}")

    async def close(self) -> None:
        """Release the child, shielded so cleanup finishes under cancellation."""
        if self._process is None:
            return
        task = asyncio.ensure_future(self._do_cleanup(self._process))
        try:
            await asyncio.shield(task)
        except asyncio.CancelledError:
            try:
                await asyncio.shield(task)
            except asyncio.CancelledError:
                logger.debug(f"Double cancel during cleanup pid={self._process.pid}")
            raise

    async def _do_cleanup(self, process: asyncio.subprocess.Process) -> None:
        if process.stdin is not None and not process.stdin.is_closing():
            process.stdin.close()

        if process.returncode is None:
            await self._terminate_process(process)

        # reap even if termination gave up
        if process.returncode is None:
            try:
                await process.wait()
            except OSError as e:
                logger.warning(f"Failed to reap pid={process.pid}: {e}")

        # pipes left unread would otherwise keep their descriptors open
        transport = getattr(process, "_transport", None)
        if transport is not None:
            transport.close()

        logger.debug(f"Released subprocess pid={process.pid} returncode={process.returncode}")

    async def _terminate_process(self, process: asyncio.subprocess.Process) -> None:
        """Terminate gracefully, then forcefully if needed.

        1. SIGTERM to the process group (CTRL_BREAK_EVENT on Windows)
        2. Wait up to term_timeout
        3. SIGKILL to the process group (kill() on Windows)
        4. Wait up to kill_timeout
        """
        pid = process.pid
        logger.debug(f"Terminating subprocess pid={pid}")

        try:
            if IS_WINDOWS:
                await self._windows_terminate(process)
            else:
                await self._posix_terminate(process)

            try:
                await asyncio.wait_for(process.wait(), timeout=self.term_timeout)
                logger.debug(
                    f"Subprocess terminated gracefully pid={pid} "
                    f"returncode={process.returncode}"
                )
                return
            except asyncio.TimeoutError:
                pass

            logger.debug(f"Force killing subprocess pid={pid}")
            if IS_WINDOWS:
                await self._windows_kill(process)
            else:
                await self._posix_kill(process)

            try:
                await asyncio.wait_for(process.wait(), timeout=self.kill_timeout)
                logger.debug(f"Subprocess killed pid={pid} returncode={process.returncode}")
            except asyncio.TimeoutError:
                logger.warning(f"Subprocess did not exit after kill pid={pid}")

        except ProcessLookupError:
            logger.debug(f"Subprocess already exited pid={pid}")
        except OSError as e:
            logger.warning(f"Error terminating subprocess pid={pid}: {e}")

    async def _posix_terminate(self, process: asyncio.subprocess.Process) -> None:
        try:
            pgid = os.getpgid(process.pid)
            os.killpg(pgid, signal.SIGTERM)
            logger.debug(f"Sent SIGTERM to process group pgid={pgid}")
        except ProcessLookupError:
            pass
        except OSError as e:
            logger.debug(f"killpg failed, falling back to terminate: {e}")
            process.terminate()

    async def _posix_kill(self, process: asyncio.subprocess.Process) -> None:
        try:
            pgid = os.getpgid(process.pid)
            os.killpg(pgid, signal.SIGKILL)
            logger.debug(f"Sent SIGKILL to process group pgid={pgid}")
        except ProcessLookupError:
            pass
        except OSError as e:
            logger.debug(f"killpg failed, falling back to kill: {e}")
            process.kill()

    async def _windows_terminate(self, process: asyncio.subprocess.Process) -> None:
        try:
            os.kill(process.pid, signal.CTRL_BREAK_EVENT)
            logger.debug(f"Sent CTRL_BREAK_EVENT to pid={process.pid}")
        except (ProcessLookupError, OSError) as e:
            logger.debug(f"CTRL_BREAK_EVENT failed, falling back: {e}")
            process.terminate()

    async def _windows_kill(self, process: asyncio.subprocess.Process) -> None:
        try:
            process.kill()
            logger.debug(f"Called kill() on pid={process.pid}")
        except ProcessLookupError:
            pass
