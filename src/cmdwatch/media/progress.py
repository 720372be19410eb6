"""Progress line policy for `ffmpeg -progress pipe:1` output.

ffmpeg writes blocks of key=value lines to stdout; only the elapsed output
time is of interest here:

    frame=120
    out_time_us=2500000
    progress=continue

Malformed or unrelated lines are skipped, never fatal.
"""

from __future__ import annotations

import logging
import math
import sys
from datetime import timedelta

import anyio
from anyio.streams.memory import MemoryObjectSendStream

from ..runtime.cancellation import CancellationToken
from ..runtime.errors import CommandCancelled
from ..runtime.monitor import MonitorReceiver, StdoutLine

__all__ = ["PROGRESS_KEY", "parse_progress_line", "ProgressMonitor"]

logger = logging.getLogger(__name__)

PROGRESS_KEY = "out_time_us"


def parse_progress_line(line: str, key: str = PROGRESS_KEY) -> timedelta | None:
    """Extract the elapsed time from one progress line.

    Args:
        line: Raw stdout line
        key: Field carrying microseconds

    Returns:
        The elapsed time, or None for unrelated, malformed or zero values
    """
    if not line.startswith(key):
        return None

    _, sep, value = line.partition("=")
    if not sep:
        logger.debug(f"Progress line missing '=' separator: {line}")
        return None

    try:
        micros = float(value)
    except ValueError:
        logger.warning(f"Failed to parse progress duration duration_str={value}")
        return None

    seconds = micros / 1_000_000.0
    if not math.isfinite(seconds):
        logger.warning(f"Ignoring non-finite progress duration duration_str={value}")
        return None
    if seconds < sys.float_info.epsilon:
        return None
    try:
        return timedelta(seconds=seconds)
    except (OverflowError, ValueError):
        logger.warning(f"Progress duration out of range duration_str={value}")
        return None


class ProgressMonitor:
    """Turns monitor messages into progress durations.

    Runs until the monitor is closed or the token is cancelled. Durations are
    sent to a caller-owned stream, which is left open.

    Example:
        tx, rx = anyio.create_memory_object_stream[timedelta](100)
        progress = ProgressMonitor(monitor.receiver, tx, token)
        task = asyncio.create_task(progress.run())
    """

    def __init__(
        self,
        receiver: MonitorReceiver,
        output: MemoryObjectSendStream[timedelta],
        cancellation_token: CancellationToken,
        key: str = PROGRESS_KEY,
    ) -> None:
        self.receiver = receiver
        self.output = output
        self.cancellation_token = cancellation_token
        self.key = key
        self.updates_sent = 0

    async def run(self) -> None:
        logger.debug("Starting progress monitor loop")
        while True:
            try:
                message = await self.receiver.recv(self.cancellation_token)
            except CommandCancelled:
                logger.debug("Progress monitor cancelled")
                break
            if message is None:
                logger.debug("Progress monitor channel closed")
                break
            if not isinstance(message, StdoutLine):
                continue

            duration = parse_progress_line(message.line, self.key)
            if duration is None:
                continue
            try:
                await self.output.send(duration)
            except (anyio.BrokenResourceError, anyio.ClosedResourceError) as e:
                logger.warning(f"Failed to send progress update to channel: {type(e).__name__}")
                continue
            self.updates_sent += 1
        logger.debug(f"Progress monitor loop completed updates_sent={self.updates_sent}")
