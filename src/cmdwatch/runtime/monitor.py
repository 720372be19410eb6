"""Bounded line channel between a supervised process and one consumer.

Three anyio memory-object lanes make up a monitor:

- stdout, stderr: supervisor -> consumer, one MonitorMessage per line
- input: consumer -> supervisor, text written to the child's stdin

Each lane holds at most `capacity` items. A supervisor sending into a full
lane waits until the consumer catches up; the supervisor races that wait
against its cancellation token so a stalled consumer never blocks a kill.

Example:
    monitor = CommandMonitor.with_capacity(100)
    task = asyncio.create_task(
        run(path, sender=monitor.sender, cancellation_token=token)
    )
    while (message := await monitor.receiver.recv()) is not None:
        if isinstance(message, StdoutLine):
            print(message.line)
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Union

import anyio
from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream

from ..config import get_config
from .cancellation import CancellationToken
from .errors import CommandCancelled

__all__ = [
    "CommandMonitor",
    "MonitorInput",
    "MonitorMessage",
    "MonitorReceiver",
    "MonitorSender",
    "StderrLine",
    "StdoutLine",
]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StdoutLine:
    """One line the child wrote to stdout."""

    line: str


@dataclass(frozen=True)
class StderrLine:
    """One line the child wrote to stderr."""

    line: str


MonitorMessage = Union[StdoutLine, StderrLine]

_LANES = ("stdout", "stderr")


class MonitorSender:
    """Supervisor-side handle. Clonable; each clone must be closed."""

    def __init__(
        self,
        stdout_tx: MemoryObjectSendStream[str],
        stderr_tx: MemoryObjectSendStream[str],
        input_rx: MemoryObjectReceiveStream[str],
    ) -> None:
        self._stdout_tx = stdout_tx
        self._stderr_tx = stderr_tx
        self._input_rx = input_rx

    async def send_stdout(self, line: str) -> None:
        """Deliver a stdout line, waiting while the lane is full.

        Raises:
            anyio.BrokenResourceError: If the receiver has been closed
        """
        await self._stdout_tx.send(line)

    async def send_stderr(self, line: str) -> None:
        """Deliver a stderr line, waiting while the lane is full.

        Raises:
            anyio.BrokenResourceError: If the receiver has been closed
        """
        await self._stderr_tx.send(line)

    async def receive_input(self) -> str | None:
        """Wait for text destined for the child's stdin.

        Returns:
            The text, or None once every input handle has been closed
        """
        try:
            return await self._input_rx.receive()
        except (anyio.EndOfStream, anyio.ClosedResourceError):
            return None

    def clone(self) -> MonitorSender:
        return MonitorSender(
            self._stdout_tx.clone(),
            self._stderr_tx.clone(),
            self._input_rx.clone(),
        )

    async def aclose(self) -> None:
        """Close this handle; the consumer sees end-of-stream once all clones close."""
        await self._stdout_tx.aclose()
        await self._stderr_tx.aclose()
        await self._input_rx.aclose()

    async def __aenter__(self) -> MonitorSender:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()


class MonitorInput:
    """Clonable writer for the input lane."""

    def __init__(self, input_tx: MemoryObjectSendStream[str]) -> None:
        self._input_tx = input_tx

    async def send(self, text: str) -> bool:
        """Queue text for the child's stdin.

        Returns:
            False if the supervisor side is gone
        """
        try:
            await self._input_tx.send(text)
        except (anyio.BrokenResourceError, anyio.ClosedResourceError) as e:
            logger.warning(f"Input lane closed, dropping {text!r}: {type(e).__name__}")
            return False
        return True

    def clone(self) -> MonitorInput:
        return MonitorInput(self._input_tx.clone())

    async def aclose(self) -> None:
        await self._input_tx.aclose()


class MonitorReceiver:
    """Consumer-side handle; owned by exactly one consumer task."""

    def __init__(
        self,
        stdout_rx: MemoryObjectReceiveStream[str],
        stderr_rx: MemoryObjectReceiveStream[str],
        input_tx: MemoryObjectSendStream[str],
    ) -> None:
        self._streams = {"stdout": stdout_rx, "stderr": stderr_rx}
        self._input = MonitorInput(input_tx)
        # lane reads in flight; kept across recv() calls so no line is lost
        self._pending: dict[str, asyncio.Task[str]] = {}
        self._closed: set[str] = set()

    async def recv(
        self, cancellation_token: CancellationToken | None = None
    ) -> MonitorMessage | None:
        """Wait for the next line from either lane.

        Args:
            cancellation_token: Optional token that aborts the wait

        Returns:
            The next message, or None once both lanes are closed

        Raises:
            CommandCancelled: If the token fired before a line arrived
        """
        while True:
            message = self._take_ready()
            if message is not None:
                return message

            for lane in _LANES:
                if lane not in self._closed and lane not in self._pending:
                    self._pending[lane] = asyncio.ensure_future(self._streams[lane].receive())

            if not self._pending:
                return None

            waiters: set[asyncio.Future] = set(self._pending.values())
            cancel_waiter: asyncio.Task | None = None
            if cancellation_token is not None:
                cancel_waiter = asyncio.create_task(cancellation_token.cancelled())
                waiters.add(cancel_waiter)

            try:
                await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
            finally:
                if cancel_waiter is not None:
                    cancel_waiter.cancel()

            if not any(task.done() for task in self._pending.values()):
                raise CommandCancelled("monitor receive cancelled")

    def _take_ready(self) -> MonitorMessage | None:
        for lane in _LANES:
            task = self._pending.get(lane)
            if task is None or not task.done():
                continue
            del self._pending[lane]
            try:
                line = task.result()
            except (anyio.EndOfStream, anyio.ClosedResourceError):
                logger.debug(f"Monitor {lane} lane closed")
                self._closed.add(lane)
                continue
            return StdoutLine(line) if lane == "stdout" else StderrLine(line)
        return None

    async def send(self, text: str) -> bool:
        """Queue text for the child's stdin (see MonitorInput.send)."""
        return await self._input.send(text)

    def input_handle(self) -> MonitorInput:
        """A separate writer for the input lane, for use from another task."""
        return self._input.clone()

    async def aclose(self) -> None:
        for task in self._pending.values():
            task.cancel()
        for task in self._pending.values():
            try:
                await task
            except (asyncio.CancelledError, anyio.EndOfStream, anyio.ClosedResourceError):
                pass
        self._pending.clear()
        for stream in self._streams.values():
            await stream.aclose()
        await self._input.aclose()

    async def __aenter__(self) -> MonitorReceiver:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()


class CommandMonitor:
    """A sender/receiver pair sharing bounded lanes.

    Attributes:
        capacity: Maximum queued items per lane
        sender: Handle for the supervisor
        receiver: Handle for the consumer
    """

    def __init__(self, capacity: int | None = None) -> None:
        if capacity is None:
            capacity = get_config().monitor_capacity
        if capacity < 1:
            raise ValueError(f"monitor capacity must be positive, got {capacity}")
        self.capacity = capacity

        stdout_tx, stdout_rx = anyio.create_memory_object_stream[str](capacity)
        stderr_tx, stderr_rx = anyio.create_memory_object_stream[str](capacity)
        input_tx, input_rx = anyio.create_memory_object_stream[str](capacity)

        self.sender = MonitorSender(stdout_tx, stderr_tx, input_rx)
        self.receiver = MonitorReceiver(stdout_rx, stderr_rx, input_tx)

    @classmethod
    def with_capacity(cls, capacity: int) -> CommandMonitor:
        return cls(capacity)

    async def aclose(self) -> None:
        await self.sender.aclose()
        await self.receiver.aclose()
