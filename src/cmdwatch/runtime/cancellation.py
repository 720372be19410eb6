"""Hierarchical cancellation tokens.

A token is cancelled at most once. Cancelling a token cancels every token
derived from it with child_token(); cancelling a child never reaches its
parent or siblings. Any number of tasks may wait on the same token.

Example:
    root = CancellationToken()
    process_token = root.child_token()

    task = asyncio.create_task(run(path, cancellation_token=process_token))
    ...
    root.cancel()  # wakes every waiter on root and process_token
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from collections.abc import Awaitable
from typing import TypeVar

__all__ = ["CancellationToken"]

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CancellationToken:
    """Broadcast stop signal with parent -> child propagation."""

    __slots__ = ("_event", "_children", "_parent", "__weakref__")

    def __init__(self, parent: CancellationToken | None = None) -> None:
        self._event = asyncio.Event()
        self._children: weakref.WeakSet[CancellationToken] = weakref.WeakSet()
        self._parent = parent
        if parent is not None:
            parent._children.add(self)
            if parent.is_cancelled:
                self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def parent(self) -> CancellationToken | None:
        return self._parent

    def child_token(self) -> CancellationToken:
        """Derive a token that is cancelled together with this one."""
        return CancellationToken(parent=self)

    def cancel(self) -> None:
        """Cancel this token and all of its descendants. Idempotent."""
        if self._event.is_set():
            return
        self._event.set()
        for child in list(self._children):
            child.cancel()

    async def cancelled(self) -> None:
        """Wait until the token is cancelled."""
        await self._event.wait()

    async def run_until_cancelled(self, awaitable: Awaitable[T]) -> tuple[bool, T | None]:
        """Race an awaitable against this token.

        Returns:
            (True, result) if the awaitable finished first, (False, None) if
            the token was cancelled first. The awaitable is cancelled in the
            second case.
        """
        if self.is_cancelled:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            return False, None

        work = asyncio.ensure_future(awaitable)
        waiter = asyncio.create_task(self.cancelled())
        try:
            await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
            if not work.done():
                work.cancel()
                try:
                    await work
                except asyncio.CancelledError:
                    pass

        if work.cancelled():
            return False, None
        # finished work is never discarded, even when the token fired as well
        return True, work.result()

    def __repr__(self) -> str:
        state = "cancelled" if self.is_cancelled else "active"
        return f"CancellationToken({state}, children={len(self._children)})"
