"""cmdwatch command line entry point.

Commands:
    cmdwatch which NAME
    cmdwatch run NAME [--graceful] [--grace-period S] -- ARGS...
    cmdwatch duration FILE
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import logging
import sys

from .config import Config, get_config
from .env.errors import FindBinaryError
from .env.find import search_binary_env
from .media.duration import get_duration
from .media.errors import BinaryNotFound, MediaError
from .media.ffmpeg import resolve_binary
from .runtime.cancellation import CancellationToken
from .runtime.command import run
from .runtime.errors import CommandCancelled, CommandError
from .runtime.exit import CommandExit
from .runtime.monitor import CommandMonitor, MonitorReceiver, StdoutLine
from .runtime.process import CommandSpec
from .runtime.shutdown import ShutdownOrchestrator
from .signal_manager import SignalManager

__all__ = ["main", "build_parser", "run_cli", "exit_code_for"]

logger = logging.getLogger(__name__)

# 128 + SIGINT(2)
EXIT_CANCELLED = 130
EXIT_FAILURE = 1


class JsonSerializingFormatter(logging.Formatter):
    """Formatter that JSON-serialises pydantic models and objects in log args."""

    def format(self, record: logging.LogRecord) -> str:
        if record.args and isinstance(record.args, tuple):
            new_args = []
            for arg in record.args:
                try:
                    if hasattr(arg, "model_dump"):
                        new_args.append(json.dumps(arg.model_dump(mode="json"), ensure_ascii=False))
                    elif isinstance(arg, dict):
                        new_args.append(json.dumps(arg, ensure_ascii=False, default=str))
                    elif hasattr(arg, "__dict__") and not isinstance(arg, (str, int, float, bool, type(None))):
                        new_args.append(json.dumps(vars(arg), ensure_ascii=False, default=str))
                    else:
                        new_args.append(arg)
                except (TypeError, ValueError):
                    new_args.append(arg)
            record.args = tuple(new_args)
        return super().format(record)


def setup_logging(config: Config) -> None:
    """Configure handlers: a debug file with CMDWATCH_LOG_DEBUG, stderr otherwise."""
    log_handlers: list[logging.Handler] = []
    log_format = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

    if config.log_debug and config.log_file:
        file_handler = logging.FileHandler(config.log_file, encoding="utf-8")
        file_handler.setFormatter(JsonSerializingFormatter(log_format))
        log_handlers.append(file_handler)
        log_level = logging.DEBUG
    else:
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(logging.Formatter(log_format))
        log_handlers.append(stderr_handler)
        log_level = logging.INFO

    # third-party libraries stay at WARNING
    logging.basicConfig(level=logging.WARNING, handlers=log_handlers)
    logging.getLogger("cmdwatch").setLevel(log_level)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cmdwatch",
        description="Locate and supervise external programs",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    which = commands.add_parser("which", help="Print the resolved path of a binary")
    which.add_argument("name", help="Binary name, e.g. ffmpeg")

    run_cmd = commands.add_parser("run", help="Run a binary under supervision")
    run_cmd.add_argument("name", help="Binary name, e.g. ffmpeg")
    run_cmd.add_argument(
        "--graceful",
        action="store_true",
        help="On Ctrl+C send 'q' to stdin before killing",
    )
    run_cmd.add_argument(
        "--grace-period",
        type=float,
        default=None,
        help="Seconds to wait for a graceful exit (default: CMDWATCH_GRACE_PERIOD)",
    )
    run_cmd.add_argument("args", nargs=argparse.REMAINDER, help="Arguments after --")

    duration = commands.add_parser("duration", help="Print a media file's duration in seconds")
    duration.add_argument("file", help="Media file")

    return parser


def exit_code_for(result: CommandExit) -> int:
    """Shell-style exit code for a finished child."""
    status = result.exit_code
    if status is None:
        return EXIT_FAILURE
    if status.code is not None:
        return status.code
    if status.signal is not None:
        return 128 + status.signal
    return EXIT_FAILURE


async def _print_lines(receiver: MonitorReceiver) -> None:
    while (message := await receiver.recv()) is not None:
        stream = sys.stdout if isinstance(message, StdoutLine) else sys.stderr
        print(message.line, file=stream, flush=True)


async def _cmd_which(args: argparse.Namespace) -> int:
    try:
        outcome = await search_binary_env(args.name)
    except FindBinaryError as e:
        print(e, file=sys.stderr)
        return EXIT_FAILURE
    if outcome.path is None:
        print(BinaryNotFound(args.name, outcome.errors), file=sys.stderr)
        return EXIT_FAILURE
    print(outcome.path)
    return 0


async def _cmd_run(args: argparse.Namespace, token: CancellationToken) -> int:
    program_args = list(args.args)
    if program_args and program_args[0] == "--":
        program_args = program_args[1:]

    try:
        path = await resolve_binary(args.name)
    except (FindBinaryError, MediaError) as e:
        print(e, file=sys.stderr)
        return EXIT_FAILURE

    def prepare(spec: CommandSpec) -> None:
        spec.arg(*program_args)

    monitor = CommandMonitor()
    printer = asyncio.create_task(_print_lines(monitor.receiver))
    try:
        if args.graceful:
            orchestrator = ShutdownOrchestrator(args.grace_period)
            result = await orchestrator.run(
                path, cancellation_token=token, prepare=prepare, monitor=monitor
            )
        else:
            result = await run(
                path,
                cancellation_token=token.child_token(),
                prepare=prepare,
                sender=monitor.sender,
            )
    except CommandCancelled:
        logger.info(f"{args.name} cancelled")
        return EXIT_CANCELLED
    except CommandError as e:
        print(e, file=sys.stderr)
        return EXIT_FAILURE
    finally:
        await monitor.sender.aclose()
        await printer
        await monitor.receiver.aclose()

    return exit_code_for(result)


async def _cmd_duration(args: argparse.Namespace, token: CancellationToken) -> int:
    try:
        duration = await get_duration(args.file, token.child_token())
    except CommandCancelled:
        return EXIT_CANCELLED
    except (FindBinaryError, CommandError, MediaError) as e:
        print(e, file=sys.stderr)
        return EXIT_FAILURE
    print(duration.total_seconds())
    return 0


async def run_cli(args: argparse.Namespace) -> int:
    """Run one parsed command with signal handling installed."""
    root_token = CancellationToken()
    signal_manager = SignalManager(root_token)
    command_task: asyncio.Task[int] | None = None

    async def _watch_shutdown() -> None:
        await signal_manager.wait_for_shutdown()
        if signal_manager.is_force_exit and command_task and not command_task.done():
            logger.info("Force exit requested, cancelling command task...")
            command_task.cancel()

    await signal_manager.start()
    shutdown_watcher = asyncio.create_task(_watch_shutdown(), name="shutdown-watcher")
    try:
        if args.command == "which":
            command_task = asyncio.create_task(_cmd_which(args))
        elif args.command == "run":
            command_task = asyncio.create_task(_cmd_run(args, root_token))
        else:
            command_task = asyncio.create_task(_cmd_duration(args, root_token))
        try:
            return await command_task
        except asyncio.CancelledError:
            if signal_manager.is_force_exit:
                return EXIT_CANCELLED
            raise
    finally:
        shutdown_watcher.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await shutdown_watcher
        await signal_manager.stop()


def main(argv: list[str] | None = None) -> None:
    """Main entry point."""
    config = get_config()
    setup_logging(config)
    args = build_parser().parse_args(argv)
    logger.debug(f"Starting cmdwatch {args.command}: {config}")
    sys.exit(asyncio.run(run_cli(args)))


if __name__ == "__main__":
    main()
