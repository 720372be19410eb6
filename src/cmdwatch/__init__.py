"""cmdwatch - async supervision of external programs.

Environment variables:
    CMDWATCH_<NAME>_PATH: explicit path for binary <name>
    CMDWATCH_GRACE_PERIOD: seconds a child gets to honour a quit request
    CMDWATCH_LOG_DEBUG: debug log to a temp file

Usage:
    cmdwatch which ffmpeg
    cmdwatch run ffmpeg --graceful -- -i in.mkv out.mp4
"""

__version__ = "0.1.0"

from .env import FindBinaryError, find_binary, find_binary_env
from .runtime import (
    CancellationToken,
    CommandCancelled,
    CommandExit,
    CommandMonitor,
    ExitStatus,
    ShutdownOrchestrator,
    run,
)

__all__ = [
    "__version__",
    "CancellationToken",
    "CommandCancelled",
    "CommandExit",
    "CommandMonitor",
    "ExitStatus",
    "FindBinaryError",
    "ShutdownOrchestrator",
    "find_binary",
    "find_binary_env",
    "run",
]
