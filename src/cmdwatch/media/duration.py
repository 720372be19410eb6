"""Media duration lookup via ffprobe."""

from __future__ import annotations

import logging
import os
from datetime import timedelta

from ..runtime.cancellation import CancellationToken
from ..runtime.command import run
from ..runtime.errors import CommandError
from ..runtime.exit import CommandExit
from ..runtime.process import CommandSpec
from .errors import DurationParse, ExitedUnsuccessfully, ExpectedLine, IncompleteSubprocess
from .ffmpeg import resolve_binary

__all__ = ["FFPROBE_ARGS", "get_duration", "parse_duration_output"]

logger = logging.getLogger(__name__)

FFPROBE_ARGS = (
    "-threads", "4",
    "-v", "quiet",
    "-show_entries", "format=duration",
    "-of", "default=noprint_wrappers=1:nokey=1",
)


def parse_duration_output(result: CommandExit, program: str = "ffprobe") -> timedelta:
    """Interpret ffprobe's result as a duration.

    Raises:
        IncompleteSubprocess: No exit status
        ExitedUnsuccessfully: Non-zero exit
        ExpectedLine: Nothing on stdout
        DurationParse: First stdout line is not a number of seconds
    """
    exit_code = result.exit_code
    if exit_code is None:
        logger.error(
            f"Process returned but no exit status was present "
            f"stdout_lines={len(result.stdout_lines)} stderr_lines={len(result.stderr_lines)}"
        )
        raise IncompleteSubprocess(result)

    if not exit_code.success:
        logger.error(f"{program} exited unsuccessfully exit_code={exit_code} stderr_lines={result.stderr_lines}")
        raise ExitedUnsuccessfully(program, exit_code, result.stderr_lines)

    if not result.stdout_lines:
        logger.error(
            f"Expected {program} to output a line with the duration "
            f"stdout_lines={result.stdout_lines} stderr_lines={result.stderr_lines}"
        )
        raise ExpectedLine(program, result)

    duration_line = result.stdout_lines[0].strip()
    try:
        seconds = float(duration_line)
    except ValueError as e:
        logger.error(f"Failed to parse duration from {program} output duration_line={duration_line}: {e}")
        raise DurationParse(duration_line, e) from e
    try:
        return timedelta(seconds=seconds)
    except (OverflowError, ValueError) as e:
        # nan or inf
        raise DurationParse(duration_line, e) from e


async def get_duration(
    input: str | os.PathLike[str],
    cancellation_token: CancellationToken,
) -> timedelta:
    """Return the container duration of a media file.

    Raises:
        BinaryNotFound: ffprobe could not be located
        CommandError: ffprobe could not be run to completion
        MediaError: ffprobe's output did not contain a duration
    """
    logger.debug(f"Starting duration extraction input_path={input}")
    ffprobe_path = await resolve_binary("ffprobe")
    logger.info(f"Executing ffprobe to get duration ffprobe_path={ffprobe_path} input_path={input}")

    def prepare(spec: CommandSpec) -> None:
        spec.arg(*FFPROBE_ARGS).arg(input)

    try:
        result = await run(ffprobe_path, cancellation_token=cancellation_token, prepare=prepare)
    except CommandError as e:
        logger.error(f"ffprobe execution failed: {e}")
        raise

    duration = parse_duration_output(result)
    logger.info(f"Successfully extracted duration duration_seconds={duration.total_seconds()}")
    return duration
