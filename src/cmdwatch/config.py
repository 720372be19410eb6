"""cmdwatch environment configuration.

Environment variables:
    CMDWATCH_<NAME>_PATH: explicit path for binary <name>
        - e.g. CMDWATCH_FFPROBE_PATH=/opt/ffmpeg/bin/ffprobe
        - read by env.find, not stored here

    CMDWATCH_MONITOR_CAPACITY: lines buffered per monitor lane
        - default 100, limited to 1-100000

    CMDWATCH_GRACE_PERIOD: seconds a process gets to honour a quit request
        - default 5.0, limited to 0.1-600

    CMDWATCH_DRAIN_TIMEOUT: seconds spent collecting buffered output after exit
        - default 1.0, limited to 0-60

    CMDWATCH_TERM_TIMEOUT / CMDWATCH_KILL_TIMEOUT: cleanup waits after
    SIGTERM / SIGKILL
        - default 2.0 / 1.0, limited to 0.1-60

    CMDWATCH_LOG_DEBUG: debug logging
        - true/1/yes = on (log to a file in the temp directory)
        - false/0/no = off (default, INFO to stderr)

    CMDWATCH_SIGINT_DOUBLE_TAP_WINDOW: seconds in which a second Ctrl+C
    forces exit
        - default 1.0, limited to 0.1-10
"""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

__all__ = ["Config", "ENV_PREFIX", "load_config", "get_config", "reload_config"]

# prefix of every variable read by this package
ENV_PREFIX = "CMDWATCH"


def _parse_bool(value: str | None, default: bool = False) -> bool:
    """Parse a boolean environment value."""
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _parse_float(value: str | None, default: float, low: float, high: float) -> float:
    """Parse a float environment value, clamped to [low, high]."""
    if not value:
        return default
    try:
        parsed = float(value)
    except ValueError:
        return default
    return max(low, min(parsed, high))


def _parse_int(value: str | None, default: int, low: int, high: int) -> int:
    """Parse an int environment value, clamped to [low, high]."""
    if not value:
        return default
    try:
        parsed = int(value.strip())
    except ValueError:
        return default
    return max(low, min(parsed, high))


@dataclass
class Config:
    """cmdwatch configuration.

    Attributes:
        monitor_capacity: Lines buffered per monitor lane
        grace_period: Seconds between a quit request and a forced kill
        drain_timeout: Seconds spent draining output after the child exits
        term_timeout: Cleanup wait after SIGTERM
        kill_timeout: Cleanup wait after SIGKILL
        log_debug: Debug logging to a temp file
        log_file: Log file path (set when log_debug=True)
        sigint_double_tap_window: Seconds in which a second SIGINT forces exit
    """

    monitor_capacity: int = 100
    grace_period: float = 5.0
    drain_timeout: float = 1.0
    term_timeout: float = 2.0
    kill_timeout: float = 1.0
    log_debug: bool = False
    log_file: str | None = None
    sigint_double_tap_window: float = 1.0

    def __repr__(self) -> str:
        return (
            f"Config(monitor_capacity={self.monitor_capacity}, "
            f"grace_period={self.grace_period}, "
            f"drain_timeout={self.drain_timeout}, "
            f"term_timeout={self.term_timeout}, "
            f"kill_timeout={self.kill_timeout}, "
            f"log_debug={self.log_debug}, "
            f"log_file={self.log_file}, "
            f"sigint_double_tap_window={self.sigint_double_tap_window})"
        )


def _generate_log_file_path() -> str:
    """Build a timestamped log file path under the temp directory."""
    log_dir = Path(tempfile.gettempdir()) / "cmdwatch"
    log_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = log_dir / f"cmdwatch_debug_{timestamp}.log"

    return str(log_file.resolve())


def load_config() -> Config:
    """Load configuration from the environment."""
    env = os.environ
    log_debug = _parse_bool(env.get(f"{ENV_PREFIX}_LOG_DEBUG"), default=False)
    log_file = _generate_log_file_path() if log_debug else None

    return Config(
        monitor_capacity=_parse_int(env.get(f"{ENV_PREFIX}_MONITOR_CAPACITY"), 100, 1, 100_000),
        grace_period=_parse_float(env.get(f"{ENV_PREFIX}_GRACE_PERIOD"), 5.0, 0.1, 600.0),
        drain_timeout=_parse_float(env.get(f"{ENV_PREFIX}_DRAIN_TIMEOUT"), 1.0, 0.0, 60.0),
        term_timeout=_parse_float(env.get(f"{ENV_PREFIX}_TERM_TIMEOUT"), 2.0, 0.1, 60.0),
        kill_timeout=_parse_float(env.get(f"{ENV_PREFIX}_KILL_TIMEOUT"), 1.0, 0.1, 60.0),
        log_debug=log_debug,
        log_file=log_file,
        sigint_double_tap_window=_parse_float(
            env.get(f"{ENV_PREFIX}_SIGINT_DOUBLE_TAP_WINDOW"), 1.0, 0.1, 10.0
        ),
    )


# global instance, loaded lazily
_config: Config | None = None


def get_config() -> Config:
    """Return the global configuration."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config() -> Config:
    """Reload configuration from the environment (used by tests)."""
    global _config
    _config = load_config()
    return _config
