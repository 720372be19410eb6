"""Runtime module for process supervision.

This module provides isolated process execution with line-oriented output,
hierarchical cancellation, a bounded monitor channel and a graceful
quit-then-kill shutdown protocol.
"""

from __future__ import annotations

from .cancellation import CancellationToken
from .command import Prepare, run
from .errors import BadExit, BadSpawn, CommandCancelled, CommandError
from .exit import CommandExit, ExitStatus
from .monitor import (
    CommandMonitor,
    MonitorInput,
    MonitorMessage,
    MonitorReceiver,
    MonitorSender,
    StderrLine,
    StdoutLine,
)
from .process import ChildProcess, CommandSpec
from .shutdown import ShutdownOrchestrator, ShutdownState

__all__ = [
    "BadExit",
    "BadSpawn",
    "CancellationToken",
    "ChildProcess",
    "CommandCancelled",
    "CommandError",
    "CommandExit",
    "CommandMonitor",
    "CommandSpec",
    "ExitStatus",
    "MonitorInput",
    "MonitorMessage",
    "MonitorReceiver",
    "MonitorSender",
    "Prepare",
    "ShutdownOrchestrator",
    "ShutdownState",
    "StderrLine",
    "StdoutLine",
    "run",
]
