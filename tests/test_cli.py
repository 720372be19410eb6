"""Command line front-end tests."""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path

import pytest

from conftest import make_executable, make_wrapper
from cmdwatch.app import EXIT_FAILURE, JsonSerializingFormatter, build_parser, exit_code_for, run_cli
from cmdwatch.runtime.exit import CommandExit, ExitStatus

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="shell script fakes")


@pytest.fixture
def empty_path(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    empty = tmp_path / "empty-bin"
    empty.mkdir()
    monkeypatch.setenv("PATH", str(empty))
    monkeypatch.delenv("CMDWATCH_FFPROBE_PATH", raising=False)
    monkeypatch.delenv("CMDWATCH_PROBE_PATH", raising=False)
    return empty


class TestParser:
    """Argument parsing."""

    def test_which(self):
        args = build_parser().parse_args(["which", "ffmpeg"])
        assert args.command == "which"
        assert args.name == "ffmpeg"

    def test_run_defaults(self):
        args = build_parser().parse_args(["run", "ffmpeg", "-i", "in.mkv", "out.mp4"])
        assert args.command == "run"
        assert args.graceful is False
        assert args.grace_period is None
        assert args.args == ["-i", "in.mkv", "out.mp4"]

    def test_run_graceful(self):
        args = build_parser().parse_args(["run", "--graceful", "--grace-period", "2", "ffmpeg"])
        assert args.graceful is True
        assert args.grace_period == 2.0

    def test_duration(self):
        args = build_parser().parse_args(["duration", "movie.mkv"])
        assert args.file == "movie.mkv"

    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])


class TestExitCodeFor:
    """Mapping a finished child onto a shell exit code."""

    def test_code(self):
        result = CommandExit(stdout_lines=[], stderr_lines=[], exit_code=ExitStatus.from_returncode(3))
        assert exit_code_for(result) == 3

    @pytest.mark.skipif(sys.platform == "win32", reason="signals")
    def test_signal(self):
        result = CommandExit(stdout_lines=[], stderr_lines=[], exit_code=ExitStatus.from_returncode(-9))
        assert exit_code_for(result) == 137

    def test_missing_status(self):
        assert exit_code_for(CommandExit(stdout_lines=[], stderr_lines=[])) == EXIT_FAILURE


@posix_only
@pytest.mark.integration
@pytest.mark.timeout(30)
class TestRunCli:
    """run_cli with fake binaries."""

    @pytest.mark.asyncio
    async def test_which_found(self, empty_path: Path, capsys: pytest.CaptureFixture[str]):
        binary = make_executable(empty_path / "probe")

        code = await run_cli(build_parser().parse_args(["which", "probe"]))

        assert code == 0
        assert capsys.readouterr().out.strip() == str(binary.resolve())

    @pytest.mark.asyncio
    async def test_which_not_found(self, empty_path: Path, capsys: pytest.CaptureFixture[str]):
        code = await run_cli(build_parser().parse_args(["which", "probe"]))

        assert code == EXIT_FAILURE
        assert "CMDWATCH_PROBE_PATH" in capsys.readouterr().err

    @pytest.mark.asyncio
    async def test_run_passes_through_exit_code(
        self,
        empty_path: Path,
        monkeypatch: pytest.MonkeyPatch,
        tmp_path: Path,
        capsys: pytest.CaptureFixture[str],
    ):
        wrapper = make_wrapper(tmp_path / "fakechild")
        monkeypatch.setenv("CMDWATCH_FAKECHILD_PATH", str(wrapper))

        args = build_parser().parse_args(
            ["run", "fakechild", "--", "--stdout", "2", "--stderr", "1", "--exit-code", "4"]
        )
        code = await run_cli(args)

        assert code == 4
        captured = capsys.readouterr()
        assert captured.out.splitlines() == ["out-0", "out-1"]
        assert "err-0" in captured.err.splitlines()

    @pytest.mark.asyncio
    async def test_duration(self, empty_path: Path, capsys: pytest.CaptureFixture[str]):
        make_executable(empty_path / "ffprobe", "#!/bin/sh\necho 90.25\n")

        code = await run_cli(build_parser().parse_args(["duration", "movie.mkv"]))

        assert code == 0
        assert capsys.readouterr().out.strip() == "90.25"


class TestJsonSerializingFormatter:
    """Debug log formatting of model arguments."""

    def test_model_args_dumped_as_json(self):
        status = ExitStatus.from_returncode(0)
        record = logging.LogRecord(
            "cmdwatch.runtime.command", logging.DEBUG, __file__, 1,
            "Command process pid=%s completed successfully exit=%s", (42, status), None,
        )

        text = JsonSerializingFormatter("%(message)s").format(record)

        prefix, _, dumped = text.partition("exit=")
        assert prefix == "Command process pid=42 completed successfully "
        assert json.loads(dumped) == status.model_dump(mode="json")

    def test_plain_args_untouched(self):
        record = logging.LogRecord(
            "cmdwatch", logging.INFO, __file__, 1, "ffmpeg completed state=%s", ("exited",), None,
        )

        assert JsonSerializingFormatter("%(message)s").format(record) == "ffmpeg completed state=exited"
