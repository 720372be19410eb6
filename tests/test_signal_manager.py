"""SignalManager tests.

Test coverage:
- First SIGINT cancels the root token
- Double SIGINT within the window forces exit
- SIGTERM cancels and requests shutdown
"""

from __future__ import annotations

import asyncio
import os
import sys
import time
from unittest import mock

import pytest

from cmdwatch.config import reload_config
from cmdwatch.runtime.cancellation import CancellationToken
from cmdwatch.signal_manager import SignalManager


class TestSignalManagerInit:
    """Construction."""

    def test_defaults_from_config(self):
        token = CancellationToken()
        manager = SignalManager(token)

        assert manager.root_token is token
        assert manager.double_tap_window == 1.0
        assert manager.is_shutdown_requested is False
        assert manager.is_force_exit is False

    def test_custom_window(self):
        manager = SignalManager(CancellationToken(), double_tap_window=0.3)
        assert manager.double_tap_window == 0.3

    def test_window_from_env(self):
        with mock.patch.dict(os.environ, {"CMDWATCH_SIGINT_DOUBLE_TAP_WINDOW": "2.5"}):
            reload_config()
            manager = SignalManager(CancellationToken())
        assert manager.double_tap_window == 2.5


class TestSigint:
    """SIGINT handling."""

    def test_first_sigint_cancels(self):
        token = CancellationToken()
        manager = SignalManager(token)

        manager._handle_sigint()

        assert token.is_cancelled
        assert manager.is_force_exit is False
        assert manager.is_shutdown_requested is False

    def test_double_tap_forces_exit(self):
        token = CancellationToken()
        callback = mock.Mock()
        manager = SignalManager(token, double_tap_window=5.0, on_shutdown=callback)

        manager._handle_sigint()
        manager._handle_sigint()

        assert manager.is_force_exit is True
        assert manager.is_shutdown_requested is True
        callback.assert_called_once()

    def test_second_sigint_after_window(self):
        token = CancellationToken()
        manager = SignalManager(token, double_tap_window=0.5)

        manager._handle_sigint()
        manager._last_sigint_time = time.monotonic() - 10.0
        manager._handle_sigint()

        assert token.is_cancelled
        assert manager.is_force_exit is False

    def test_child_tokens_cancelled(self):
        root = CancellationToken()
        child = root.child_token()
        manager = SignalManager(root)

        manager._handle_sigint()

        assert child.is_cancelled


class TestSigterm:
    """SIGTERM handling."""

    def test_sigterm_cancels_and_shuts_down(self):
        token = CancellationToken()
        callback = mock.Mock()
        manager = SignalManager(token, on_shutdown=callback)

        manager._handle_sigterm()

        assert token.is_cancelled
        assert manager.is_shutdown_requested is True
        assert manager.is_force_exit is False
        callback.assert_called_once()

    def test_callback_error_is_logged(self):
        manager = SignalManager(CancellationToken(), on_shutdown=mock.Mock(side_effect=ValueError("boom")))

        manager._handle_sigterm()

        assert manager.is_shutdown_requested is True


class TestLifecycle:
    """start() / stop()."""

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX signal handlers")
    @pytest.mark.asyncio
    async def test_start_and_stop(self):
        manager = SignalManager(CancellationToken())

        await manager.start()
        assert manager._running is True
        await manager.start()

        await manager.stop()
        assert manager._running is False
        await manager.stop()

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX signal handlers")
    @pytest.mark.asyncio
    async def test_wait_for_shutdown_after_sigterm(self):
        manager = SignalManager(CancellationToken())
        await manager.start()
        try:
            manager._handle_sigterm()
            await asyncio.wait_for(manager.wait_for_shutdown(), timeout=1.0)
        finally:
            await manager.stop()
