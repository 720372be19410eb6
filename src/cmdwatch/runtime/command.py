"""Process supervisor: spawn one child and drive it to a terminal outcome.

run() spawns the program with piped stdout/stderr and then loops over a
set of competing events, handling whichever is ready first:

- cancellation: kill the child, raise CommandCancelled
- a stdout or stderr line: record it, forward it to the monitor sender
- monitor input (only with pipe_stdin): write it to the child's stdin
- process exit: drain buffered output, return CommandExit

When several are ready at once, cancellation wins, then output, then input,
then exit. A caller that cancels therefore never receives a result for a
process it asked to stop.
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Callable

import anyio

from ..config import get_config
from .cancellation import CancellationToken
from .errors import CommandCancelled
from .exit import CommandExit, ExitStatus
from .monitor import MonitorSender
from .process import ChildProcess, CommandSpec
from .read import LineReader

__all__ = ["Prepare", "CommandContext", "run"]

logger = logging.getLogger(__name__)

# Callback that fills in arguments/environment before spawn
Prepare = Callable[[CommandSpec], None]

_STREAMS = ("stdout", "stderr")


class CommandContext:
    """Per-invocation supervision state.

    Owns the pending event futures of the loop. Lines are accumulated here
    and turned into a CommandExit when the child exits.
    """

    def __init__(
        self,
        child: ChildProcess,
        sender: MonitorSender | None,
        cancellation_token: CancellationToken,
        drain_timeout: float,
    ) -> None:
        self.child = child
        self.sender = sender
        self.cancellation_token = cancellation_token
        self.drain_timeout = drain_timeout
        self.readers = {
            "stdout": LineReader(child.stdout, "stdout"),
            "stderr": LineReader(child.stderr, "stderr"),
        }
        self.lines: dict[str, list[str]] = {"stdout": [], "stderr": []}
        self._events: dict[str, asyncio.Future] = {}
        self._forwarding = sender is not None
        self._input_open = sender is not None and child.pipe_stdin

    def _arm(self) -> None:
        """Start a future for every event source that has none in flight."""
        events = self._events
        if "cancel" not in events:
            events["cancel"] = asyncio.ensure_future(self.cancellation_token.cancelled())
        if "exit" not in events:
            events["exit"] = asyncio.ensure_future(self.child.wait())
        for name in _STREAMS:
            if name not in events:
                events[name] = asyncio.ensure_future(self.readers[name].next_line())
        if self._input_open and "input" not in events and self.sender is not None:
            events["input"] = asyncio.ensure_future(self.sender.receive_input())

    def _ready(self, name: str) -> bool:
        event = self._events.get(name)
        return event is not None and event.done()

    async def tick(self) -> CommandExit | None:
        """Handle one event. Returns the result once the child has exited."""
        self._arm()
        await asyncio.wait(self._events.values(), return_when=asyncio.FIRST_COMPLETED)

        if self._ready("cancel"):
            await self.on_cancelled()

        for name in _STREAMS:
            if self._ready(name):
                line = self._events.pop(name).result()
                await self.on_line(name, line)
                return None

        if self._ready("input"):
            await self.on_input(self._events.pop("input").result())
            return None

        if self._ready("exit"):
            return await self.on_exited(self._events.pop("exit"))

        return None

    async def on_cancelled(self) -> None:
        logger.warning(f"Cancellation requested, terminating pid={self.child.pid}")
        await self.child.kill()
        raise CommandCancelled()

    async def on_line(self, name: str, line: str) -> None:
        self.lines[name].append(line)
        logger.debug(f"command wrote to {name}: {line}")
        if not self._forwarding or self.sender is None:
            return

        send = self.sender.send_stdout if name == "stdout" else self.sender.send_stderr
        try:
            delivered, _ = await self.cancellation_token.run_until_cancelled(send(line))
        except (anyio.BrokenResourceError, anyio.ClosedResourceError) as e:
            logger.error(f"Failed to write {name} line to monitor, forwarding stopped: {type(e).__name__}")
            self._forwarding = False
            return
        if not delivered:
            await self.on_cancelled()

    async def on_input(self, text: str | None) -> None:
        if text is None:
            logger.debug("Monitor input lane closed")
            self._input_open = False
            return
        logger.debug(f"Writing {len(text)} chars to stdin of pid={self.child.pid}")
        await self.child.write_input(text.encode("utf-8"))

    async def on_exited(self, exit_event: asyncio.Future) -> CommandExit:
        # BadExit propagates from here
        returncode = exit_event.result()
        await self._drain()

        exit_code = ExitStatus.from_returncode(returncode) if returncode is not None else None
        result = CommandExit(
            stdout_lines=self.lines["stdout"],
            stderr_lines=self.lines["stderr"],
            exit_code=exit_code,
        )
        if exit_code is None:
            logger.error(f"Process pid={self.child.pid} finished without an exit status")
        elif exit_code.success:
            logger.debug("Command process pid=%s completed successfully exit=%s", self.child.pid, exit_code)
        else:
            logger.warning(
                "Command process pid=%s completed with %s, stderr_lines=%s exit=%s",
                self.child.pid,
                exit_code.describe(),
                len(result.stderr_lines),
                exit_code,
            )
        return result

    async def _drain(self) -> None:
        """Collect output still buffered in the pipes after exit.

        Bounded by drain_timeout, which limits only this phase. On Python
        3.12+ Process.wait() already waits for the pipes to close, so a
        grandchild holding one open delays the exit event itself.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.drain_timeout
        eof_waiters = {
            name: asyncio.ensure_future(self.readers[name].wait_exhausted()) for name in _STREAMS
        }
        try:
            while True:
                for name in _STREAMS:
                    if self._ready(name):
                        await self.on_line(name, self._events.pop(name).result())
                if all(self.readers[name].exhausted for name in _STREAMS):
                    return

                self._arm()
                remaining = deadline - loop.time()
                if remaining <= 0:
                    logger.warning(f"Output still open {self.drain_timeout}s after exit of pid={self.child.pid}")
                    return
                waiting = [self._events["cancel"]]
                for name in _STREAMS:
                    if not self.readers[name].exhausted:
                        waiting.extend((self._events[name], eof_waiters[name]))
                await asyncio.wait(waiting, timeout=remaining, return_when=asyncio.FIRST_COMPLETED)

                if self._ready("cancel"):
                    await self.on_cancelled()
        finally:
            for waiter in eof_waiters.values():
                waiter.cancel()

    async def aclose(self) -> None:
        """Cancel every pending event future."""
        events = list(self._events.values())
        self._events.clear()
        for event in events:
            event.cancel()
        # results of abandoned futures are not needed
        await asyncio.gather(*events, return_exceptions=True)


async def run(
    program: str | os.PathLike[str],
    *,
    cancellation_token: CancellationToken,
    prepare: Prepare | None = None,
    sender: MonitorSender | None = None,
    pipe_stdin: bool = False,
    drain_timeout: float | None = None,
) -> CommandExit:
    """Run a program to completion under supervision.

    Args:
        program: Resolved executable path
        cancellation_token: Token that kills the child when cancelled
        prepare: Callback that adds arguments/environment to the CommandSpec
        sender: Optional monitor sender receiving every output line
        pipe_stdin: Pipe stdin and forward the monitor's input lane to it
        drain_timeout: Seconds to collect remaining output after exit
            (None = config default)

    Returns:
        CommandExit with all output lines and the exit status, whether or not
        the exit was successful

    Raises:
        BadSpawn: If the program could not be started
        BadExit: If the OS did not report an exit status
        CommandCancelled: If the token was cancelled before the outcome
    """
    config = get_config()
    spec = CommandSpec(program=os.fspath(program))
    if prepare is not None:
        prepare(spec)

    logger.info(f"Executing command program={spec.program} args={spec.args}")

    child = ChildProcess(
        spec,
        pipe_stdin=pipe_stdin,
        term_timeout=config.term_timeout,
        kill_timeout=config.kill_timeout,
    )
    async with child:
        context = CommandContext(
            child,
            sender,
            cancellation_token,
            config.drain_timeout if drain_timeout is None else drain_timeout,
        )
        try:
            while True:
                result = await context.tick()
                if result is not None:
                    return result
        finally:
            await context.aclose()
