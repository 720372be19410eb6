"""Monitor channel tests.

Test coverage:
- Per-lane ordering and end-of-stream
- Backpressure on a full lane
- Cancellable receive without losing lines
- Input lane towards the supervisor
"""

from __future__ import annotations

import asyncio

import anyio
import pytest

from cmdwatch.config import reload_config
from cmdwatch.runtime.cancellation import CancellationToken
from cmdwatch.runtime.errors import CommandCancelled
from cmdwatch.runtime.monitor import CommandMonitor, StderrLine, StdoutLine


class TestConstruction:
    """Capacity handling."""

    def test_default_capacity(self):
        assert CommandMonitor().capacity == 100

    def test_capacity_from_environment(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("CMDWATCH_MONITOR_CAPACITY", "7")
        reload_config()
        assert CommandMonitor().capacity == 7

    def test_with_capacity(self):
        assert CommandMonitor.with_capacity(3).capacity == 3

    def test_zero_capacity_rejected(self):
        with pytest.raises(ValueError):
            CommandMonitor.with_capacity(0)


class TestDelivery:
    """Lines from supervisor to consumer."""

    @pytest.mark.asyncio
    async def test_lines_keep_per_lane_order(self):
        monitor = CommandMonitor.with_capacity(10)

        for i in range(3):
            await monitor.sender.send_stdout(f"out-{i}")
            await monitor.sender.send_stderr(f"err-{i}")
        await monitor.sender.aclose()

        received = []
        while (message := await monitor.receiver.recv()) is not None:
            received.append(message)

        stdout = [m.line for m in received if isinstance(m, StdoutLine)]
        stderr = [m.line for m in received if isinstance(m, StderrLine)]
        assert stdout == ["out-0", "out-1", "out-2"]
        assert stderr == ["err-0", "err-1", "err-2"]
        await monitor.receiver.aclose()

    @pytest.mark.asyncio
    async def test_recv_returns_none_after_close(self):
        monitor = CommandMonitor.with_capacity(1)
        await monitor.sender.aclose()

        assert await monitor.receiver.recv() is None
        assert await monitor.receiver.recv() is None
        await monitor.receiver.aclose()

    @pytest.mark.asyncio
    async def test_clone_keeps_channel_open(self):
        monitor = CommandMonitor.with_capacity(5)
        clone = monitor.sender.clone()
        await monitor.sender.aclose()

        await clone.send_stdout("from clone")
        await clone.aclose()

        assert await monitor.receiver.recv() == StdoutLine("from clone")
        assert await monitor.receiver.recv() is None
        await monitor.receiver.aclose()

    @pytest.mark.asyncio
    async def test_send_after_receiver_closed_raises(self):
        monitor = CommandMonitor.with_capacity(1)
        await monitor.receiver.aclose()

        with pytest.raises(anyio.BrokenResourceError):
            await monitor.sender.send_stdout("lost")
        await monitor.sender.aclose()


class TestBackpressure:
    """Bounded lanes."""

    @pytest.mark.asyncio
    async def test_full_lane_blocks_sender(self):
        monitor = CommandMonitor.with_capacity(1)
        await monitor.sender.send_stdout("first")

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(monitor.sender.send_stdout("second"), timeout=0.1)

        await monitor.aclose()

    @pytest.mark.asyncio
    async def test_sender_resumes_when_consumer_reads(self):
        monitor = CommandMonitor.with_capacity(1)
        await monitor.sender.send_stdout("first")

        blocked = asyncio.create_task(monitor.sender.send_stdout("second"))
        await asyncio.sleep(0.05)
        assert not blocked.done()

        assert await monitor.receiver.recv() == StdoutLine("first")
        await asyncio.wait_for(blocked, timeout=1.0)
        assert await monitor.receiver.recv() == StdoutLine("second")

        await monitor.aclose()


class TestCancellableReceive:
    """recv() with a cancellation token."""

    @pytest.mark.asyncio
    async def test_cancelled_token_raises(self):
        monitor = CommandMonitor.with_capacity(1)
        token = CancellationToken()
        token.cancel()

        with pytest.raises(CommandCancelled):
            await monitor.receiver.recv(token)

        await monitor.aclose()

    @pytest.mark.asyncio
    async def test_cancel_while_waiting(self):
        monitor = CommandMonitor.with_capacity(1)
        token = CancellationToken()
        asyncio.get_running_loop().call_later(0.05, token.cancel)

        with pytest.raises(CommandCancelled):
            await asyncio.wait_for(monitor.receiver.recv(token), timeout=1.0)

        await monitor.aclose()

    @pytest.mark.asyncio
    async def test_line_survives_abandoned_wait(self):
        monitor = CommandMonitor.with_capacity(2)
        token = CancellationToken()
        token.cancel()

        with pytest.raises(CommandCancelled):
            await monitor.receiver.recv(token)

        await monitor.sender.send_stdout("after cancel")
        assert await asyncio.wait_for(monitor.receiver.recv(), timeout=1.0) == StdoutLine("after cancel")

        await monitor.aclose()


class TestInputLane:
    """Consumer -> supervisor text."""

    @pytest.mark.asyncio
    async def test_send_and_receive_input(self):
        monitor = CommandMonitor.with_capacity(2)

        assert await monitor.receiver.send("q\n") is True
        assert await monitor.sender.receive_input() == "q\n"

        await monitor.aclose()

    @pytest.mark.asyncio
    async def test_input_handle_from_another_task(self):
        monitor = CommandMonitor.with_capacity(2)
        handle = monitor.receiver.input_handle()

        async def writer() -> None:
            await handle.send("hello\n")
            await handle.aclose()

        task = asyncio.create_task(writer())
        assert await monitor.sender.receive_input() == "hello\n"
        await task

        await monitor.aclose()

    @pytest.mark.asyncio
    async def test_receive_input_none_when_all_writers_closed(self):
        monitor = CommandMonitor.with_capacity(2)
        await monitor.receiver.aclose()

        assert await monitor.sender.receive_input() is None
        await monitor.sender.aclose()

    @pytest.mark.asyncio
    async def test_send_input_after_sender_closed(self):
        monitor = CommandMonitor.with_capacity(2)
        await monitor.sender.aclose()

        assert await monitor.receiver.send("q\n") is False
        await monitor.receiver.aclose()
