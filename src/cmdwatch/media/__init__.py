"""ffmpeg/ffprobe call sites built on the supervision runtime."""

from __future__ import annotations

from .duration import get_duration, parse_duration_output
from .errors import (
    BinaryNotFound,
    DurationParse,
    ExitedUnsuccessfully,
    ExpectedLine,
    IncompleteSubprocess,
    MediaError,
)
from .ffmpeg import ffmpeg, ffmpeg_graceful, ffmpeg_with_progress, resolve_binary
from .progress import ProgressMonitor, parse_progress_line

__all__ = [
    "BinaryNotFound",
    "DurationParse",
    "ExitedUnsuccessfully",
    "ExpectedLine",
    "IncompleteSubprocess",
    "MediaError",
    "ProgressMonitor",
    "ffmpeg",
    "ffmpeg_graceful",
    "ffmpeg_with_progress",
    "get_duration",
    "parse_duration_output",
    "parse_progress_line",
    "resolve_binary",
]
