"""Line readers for child output pipes.

A LineReader never reports end-of-stream: once its pipe is exhausted (or if
there never was a pipe) next_line() simply stays pending. The supervision
loop races readers against process exit and cancellation, so a reader that
kept returning EOF would make the loop spin.
"""

from __future__ import annotations

import asyncio
import logging
from typing import NoReturn

__all__ = ["LineReader"]

logger = logging.getLogger(__name__)


class LineReader:
    """Reads decoded lines from an optional asyncio stream.

    Attributes:
        name: Stream name used in log messages ("stdout"/"stderr")
    """

    def __init__(self, stream: asyncio.StreamReader | None, name: str) -> None:
        self.name = name
        self._stream = stream
        self._exhausted = stream is None
        self._eof = asyncio.Event()
        if self._exhausted:
            self._eof.set()

    @property
    def exhausted(self) -> bool:
        """True once the underlying pipe reached EOF (or never existed)."""
        return self._exhausted

    async def wait_exhausted(self) -> None:
        """Wait until the pipe reaches EOF."""
        await self._eof.wait()

    async def next_line(self) -> str:
        """Return the next line without its line terminator.

        Pends forever once the stream is exhausted.
        """
        while not self._exhausted:
            line = await self.read_line()
            if line is not None:
                return line
        return await _never()

    async def read_line(self) -> str | None:
        """Return the next line, or None at EOF."""
        if self._stream is None or self._exhausted:
            return None
        while True:
            try:
                raw = await self._stream.readline()
                break
            except ValueError as e:
                # line longer than the stream limit; the buffer has been discarded
                logger.warning(f"Dropped oversized {self.name} line: {e}")
        if not raw:
            self._exhausted = True
            self._eof.set()
            logger.debug(f"{self.name} reached EOF")
            return None
        line = raw.decode("utf-8", errors="replace")
        if line.endswith("\n"):
            line = line[:-1]
        if line.endswith("\r"):
            line = line[:-1]
        return line


async def _never() -> NoReturn:
    await asyncio.get_running_loop().create_future()
