"""Signal handling for the command line front-end.

OS signals are turned into cancellation rather than an immediate exit, so a
supervised child gets the chance to quit cleanly:

- SIGINT: cancel the root token (graceful children receive their quit
  instruction); a second SIGINT within the double-tap window forces exit
- SIGTERM: cancel the root token and request shutdown

Configuration:
- CMDWATCH_SIGINT_DOUBLE_TAP_WINDOW: double-tap window in seconds
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
import time
from typing import Callable, Optional

from .config import get_config
from .runtime.cancellation import CancellationToken

__all__ = ["SignalManager"]

logger = logging.getLogger(__name__)


class SignalManager:
    """Maps SIGINT/SIGTERM onto a root cancellation token.

    Example:
        ```python
        root = CancellationToken()
        signal_manager = SignalManager(root)

        async def main():
            await signal_manager.start()
            try:
                await run(path, cancellation_token=root.child_token())
            finally:
                await signal_manager.stop()
        ```

    Attributes:
        root_token: Token cancelled on the first SIGINT or on SIGTERM
        double_tap_window: Seconds in which a second SIGINT forces exit
    """

    def __init__(
        self,
        root_token: CancellationToken,
        double_tap_window: Optional[float] = None,
        on_shutdown: Optional[Callable[[], None]] = None,
    ) -> None:
        """Create a signal manager.

        Args:
            root_token: Token to cancel
            double_tap_window: Double-tap window (default from config)
            on_shutdown: Callback run when shutdown is requested
        """
        self.root_token = root_token
        config = get_config()
        self.double_tap_window = (
            double_tap_window if double_tap_window is not None else config.sigint_double_tap_window
        )
        self._on_shutdown = on_shutdown

        self._last_sigint_time: float = 0.0
        self._shutdown_requested: bool = False
        self._force_exit: bool = False
        self._shutdown_event: Optional[asyncio.Event] = None
        self._original_sigint_handler: Optional[signal.Handlers] = None
        self._running: bool = False
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    @property
    def is_shutdown_requested(self) -> bool:
        return self._shutdown_requested

    @property
    def is_force_exit(self) -> bool:
        """True after a double SIGINT."""
        return self._force_exit

    async def start(self) -> None:
        """Install the handlers. Must be called from a running event loop."""
        if self._running:
            logger.warning("SignalManager already running")
            return

        self._loop = asyncio.get_running_loop()
        self._shutdown_event = asyncio.Event()
        self._running = True

        if sys.platform != "win32":
            self._loop.add_signal_handler(signal.SIGINT, self._handle_sigint)
            self._loop.add_signal_handler(signal.SIGTERM, self._handle_sigterm)
            logger.debug(f"Signal handlers installed (double_tap_window={self.double_tap_window}s)")
        else:
            self._original_sigint_handler = signal.signal(
                signal.SIGINT,
                lambda sig, frame: self._loop.call_soon_threadsafe(self._handle_sigint),
            )
            logger.debug("SIGINT handler installed on Windows")

    async def stop(self) -> None:
        """Restore the original handlers."""
        if not self._running:
            return

        self._running = False

        if sys.platform != "win32" and self._loop:
            try:
                self._loop.remove_signal_handler(signal.SIGINT)
                self._loop.remove_signal_handler(signal.SIGTERM)
            except (RuntimeError, ValueError) as e:
                logger.debug(f"Error removing signal handlers: {e}")
        elif sys.platform == "win32" and self._original_sigint_handler is not None:
            try:
                signal.signal(signal.SIGINT, self._original_sigint_handler)
            except (OSError, ValueError) as e:
                logger.debug(f"Error restoring SIGINT handler: {e}")

        logger.debug("Signal handlers removed")

    async def wait_for_shutdown(self) -> None:
        """Wait for SIGTERM or a forced exit."""
        if self._shutdown_event:
            await self._shutdown_event.wait()

    def _handle_sigint(self) -> None:
        current_time = time.monotonic()
        time_since_last = current_time - self._last_sigint_time
        self._last_sigint_time = current_time

        if self.root_token.is_cancelled and time_since_last < self.double_tap_window:
            logger.warning("Double SIGINT detected, forcing shutdown")
            self._force_shutdown()
            return

        logger.info(
            f"SIGINT received, cancelling. Press Ctrl+C again within "
            f"{self.double_tap_window}s to exit immediately."
        )
        self.root_token.cancel()

    def _handle_sigterm(self) -> None:
        logger.info("SIGTERM received, initiating graceful shutdown")
        self.root_token.cancel()
        self._request_shutdown()

    def _request_shutdown(self) -> None:
        self._shutdown_requested = True

        if self._on_shutdown:
            try:
                self._on_shutdown()
            except Exception as e:
                logger.warning(f"Error in shutdown callback: {e}")

        if self._shutdown_event and self._loop:
            self._loop.call_soon_threadsafe(self._shutdown_event.set)

    def _force_shutdown(self) -> None:
        """Flag a forced exit; the caller exits once cleanup has run."""
        logger.warning("Forcing immediate shutdown")
        self._force_exit = True
        self.root_token.cancel()
        self._request_shutdown()
