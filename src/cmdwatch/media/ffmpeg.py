"""ffmpeg call sites.

- ffmpeg: plain supervised run
- ffmpeg_with_progress: progress output decoded into durations
- ffmpeg_graceful: "q" on cancellation, kill after the grace period
"""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from pathlib import Path

from anyio.streams.memory import MemoryObjectSendStream

from ..env.find import search_binary_env
from ..runtime.cancellation import CancellationToken
from ..runtime.command import Prepare, run
from ..runtime.errors import CommandError
from ..runtime.exit import CommandExit
from ..runtime.monitor import CommandMonitor
from ..runtime.process import CommandSpec
from ..runtime.shutdown import ShutdownOrchestrator
from .errors import BinaryNotFound
from .progress import ProgressMonitor

__all__ = [
    "PROGRESS_ARGS",
    "resolve_binary",
    "ffmpeg",
    "ffmpeg_with_progress",
    "ffmpeg_graceful",
]

logger = logging.getLogger(__name__)

# prepended to the caller's arguments by ffmpeg_with_progress
PROGRESS_ARGS = ("-hide_banner", "-progress", "pipe:1", "-loglevel", "error")

# how long the progress consumer may take to finish after ffmpeg exits
PROGRESS_SHUTDOWN_TIMEOUT = 0.5


async def resolve_binary(name: str) -> Path:
    """Locate a media binary through overrides and PATH.

    Raises:
        BinaryNotFound: If no valid binary exists
        PathUnset: If PATH is unset
    """
    outcome = await search_binary_env(name)
    if outcome.path is None:
        logger.error(f"{name} binary not found")
        raise BinaryNotFound(name, outcome.errors)
    return outcome.path


async def ffmpeg(cancellation_token: CancellationToken, prepare: Prepare) -> CommandExit:
    """Run ffmpeg with caller-prepared arguments."""
    logger.debug("Starting ffmpeg execution")
    ffmpeg_path = await resolve_binary("ffmpeg")
    logger.info(f"Executing ffmpeg ffmpeg_path={ffmpeg_path}")

    try:
        result = await run(
            ffmpeg_path,
            cancellation_token=cancellation_token.child_token(),
            prepare=prepare,
        )
    except CommandError as e:
        logger.error(f"ffmpeg execution failed: {e}")
        raise
    logger.debug("ffmpeg completed exit=%s", result.exit_code)
    return result


async def ffmpeg_with_progress(
    output: MemoryObjectSendStream[timedelta],
    cancellation_token: CancellationToken,
    prepare: Prepare,
) -> CommandExit:
    """Run ffmpeg and stream its elapsed output time.

    `-hide_banner -progress pipe:1 -loglevel error` is added before the
    caller's arguments. The output stream belongs to the caller and is not
    closed here.
    """
    logger.debug("Starting ffmpeg execution")
    ffmpeg_path = await resolve_binary("ffmpeg")
    logger.info(f"Executing ffmpeg ffmpeg_path={ffmpeg_path}")

    def prepare_with_progress(spec: CommandSpec) -> None:
        spec.arg(*PROGRESS_ARGS)
        prepare(spec)

    monitor = CommandMonitor()
    monitor_token = cancellation_token.child_token()
    progress = ProgressMonitor(monitor.receiver, output, monitor_token)
    progress_task = asyncio.create_task(progress.run())

    try:
        result = await run(
            ffmpeg_path,
            cancellation_token=cancellation_token.child_token(),
            prepare=prepare_with_progress,
            sender=monitor.sender,
        )
    except CommandError as e:
        logger.error(f"ffmpeg with progress execution failed: {e}")
        raise
    finally:
        await _stop_progress(monitor, monitor_token, progress_task)

    logger.debug("ffmpeg with progress completed exit=%s", result.exit_code)
    return result


async def _stop_progress(
    monitor: CommandMonitor,
    monitor_token: CancellationToken,
    progress_task: asyncio.Task[None],
) -> None:
    # closing the sender lets the consumer finish what is already buffered
    await monitor.sender.aclose()
    logger.debug("Waiting for progress monitor to shutdown")
    done, _ = await asyncio.wait({progress_task}, timeout=PROGRESS_SHUTDOWN_TIMEOUT)
    if not done:
        logger.warning("Timed out waiting for progress monitor to close")
    monitor_token.cancel()
    try:
        await progress_task
    except Exception as e:
        logger.error(f"Progress monitor failed: {type(e).__name__}: {e}")
    finally:
        await monitor.receiver.aclose()


async def ffmpeg_graceful(
    cancellation_token: CancellationToken,
    prepare: Prepare,
    monitor: CommandMonitor | None = None,
    grace_period: float | None = None,
) -> CommandExit:
    """Run ffmpeg, asking it to quit with "q" when the token is cancelled.

    Args:
        cancellation_token: Caller's token
        prepare: CommandSpec preparation callback
        monitor: Optional monitor the caller consumes; the caller closes it
        grace_period: Seconds before a quit request escalates to a kill
            (None = config default)

    Raises:
        CommandCancelled: If ffmpeg ignored the quit request
    """
    logger.debug("Starting ffmpeg execution")
    ffmpeg_path = await resolve_binary("ffmpeg")
    logger.info(f"Executing ffmpeg ffmpeg_path={ffmpeg_path}")

    orchestrator = ShutdownOrchestrator(grace_period)
    try:
        result = await orchestrator.run(
            ffmpeg_path,
            cancellation_token=cancellation_token,
            prepare=prepare,
            monitor=monitor,
        )
    except CommandError as e:
        logger.error(f"ffmpeg execution failed state={orchestrator.state.value}: {e}")
        raise
    logger.debug("ffmpeg completed state=%s exit=%s", orchestrator.state.value, result.exit_code)
    return result
