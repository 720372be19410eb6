"""Pytest configuration and fixtures."""

from __future__ import annotations

import os
import stat
import sys
from pathlib import Path

import pytest

# project root
PROJECT_ROOT = Path(__file__).parent.parent

# add src to the Python path (development checkouts)
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

FIXTURES_DIR = PROJECT_ROOT / "tests" / "fixtures"
FAKE_CHILD_PATH = FIXTURES_DIR / "fake_child.py"

# every variable read by cmdwatch.config
CONFIG_ENV_VARS = (
    "CMDWATCH_MONITOR_CAPACITY",
    "CMDWATCH_GRACE_PERIOD",
    "CMDWATCH_DRAIN_TIMEOUT",
    "CMDWATCH_TERM_TIMEOUT",
    "CMDWATCH_KILL_TIMEOUT",
    "CMDWATCH_LOG_DEBUG",
    "CMDWATCH_SIGINT_DOUBLE_TAP_WINDOW",
)


@pytest.fixture(autouse=True)
def clean_config(monkeypatch: pytest.MonkeyPatch):
    """Give every test the default configuration."""
    from cmdwatch.config import reload_config

    for name in CONFIG_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    reload_config()
    yield
    monkeypatch.undo()
    reload_config()


@pytest.fixture
def fake_child_path() -> Path:
    """Path of the fake child script."""
    return FAKE_CHILD_PATH


@pytest.fixture
def python_path() -> str:
    """Interpreter used to run the fake child."""
    return sys.executable


def make_executable(path: Path, content: str = "#!/bin/sh\nexit 0\n") -> Path:
    """Write a script and mark it executable for everyone."""
    path.write_text(content, encoding="utf-8")
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


def make_wrapper(path: Path, *extra_args: str) -> Path:
    """Executable shell script that runs the fake child with extra arguments."""
    quoted = " ".join(f'"{arg}"' for arg in extra_args)
    content = f'#!/bin/sh\nexec "{sys.executable}" "{FAKE_CHILD_PATH}" {quoted} "$@"\n'
    return make_executable(path, content)


def process_alive(pid: int) -> bool:
    """True if a process with this pid exists (and is not reaped)."""
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True
