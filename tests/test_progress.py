"""Progress line policy tests."""

from __future__ import annotations

from datetime import timedelta

import anyio
import pytest

from cmdwatch.media.progress import ProgressMonitor, parse_progress_line
from cmdwatch.runtime.cancellation import CancellationToken
from cmdwatch.runtime.monitor import CommandMonitor


class TestParseProgressLine:
    """Single line parsing."""

    def test_microseconds_to_duration(self):
        assert parse_progress_line("out_time_us=2500000") == timedelta(seconds=2.5)

    def test_zero_is_skipped(self):
        assert parse_progress_line("out_time_us=0") is None

    def test_missing_separator(self):
        assert parse_progress_line("out_time_us") is None

    def test_non_numeric(self):
        assert parse_progress_line("out_time_us=N/A") is None

    def test_other_prefix_ignored(self):
        assert parse_progress_line("frame=120") is None
        assert parse_progress_line("progress=continue") is None

    def test_custom_key(self):
        assert parse_progress_line("out_time_ms=1000000", key="out_time_ms") == timedelta(seconds=1)

    @pytest.mark.parametrize("value", ["nan", "inf", "-inf", "1e300"])
    def test_unrepresentable_values_skipped(self, value: str):
        assert parse_progress_line(f"out_time_us={value}") is None


class TestProgressMonitor:
    """Monitor consumer emitting durations."""

    @pytest.mark.asyncio
    async def test_emits_parsed_durations(self):
        monitor = CommandMonitor.with_capacity(20)
        tx, rx = anyio.create_memory_object_stream[timedelta](20)

        for line in (
            "out_time_us=2500000",
            "out_time_us=0",
            "out_time_us",
            "out_time_us=abc",
            "out_time_us=nan",
            "out_time_us=1e300",
            "frame=1",
            "out_time_us=5000000",
        ):
            await monitor.sender.send_stdout(line)
        await monitor.sender.send_stderr("out_time_us=9000000")
        await monitor.sender.aclose()

        progress = ProgressMonitor(monitor.receiver, tx, CancellationToken())
        await progress.run()
        await tx.aclose()

        received = [duration async for duration in rx]
        assert received == [timedelta(seconds=2.5), timedelta(seconds=5)]
        assert progress.updates_sent == 2
        await monitor.receiver.aclose()

    @pytest.mark.asyncio
    async def test_stops_on_cancellation(self):
        monitor = CommandMonitor.with_capacity(2)
        tx, rx = anyio.create_memory_object_stream[timedelta](2)
        token = CancellationToken()
        token.cancel()

        await ProgressMonitor(monitor.receiver, tx, token).run()

        await monitor.aclose()
        await tx.aclose()
        await rx.aclose()

    @pytest.mark.asyncio
    async def test_closed_output_is_not_fatal(self):
        monitor = CommandMonitor.with_capacity(4)
        tx, rx = anyio.create_memory_object_stream[timedelta](2)
        await rx.aclose()

        await monitor.sender.send_stdout("out_time_us=1000000")
        await monitor.sender.send_stdout("out_time_us=2000000")
        await monitor.sender.aclose()

        progress = ProgressMonitor(monitor.receiver, tx, CancellationToken())
        await progress.run()

        assert progress.updates_sent == 0
        await tx.aclose()
        await monitor.receiver.aclose()
