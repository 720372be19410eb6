#!/usr/bin/env python3
"""Fake child process for supervision tests.

Usage:
    python fake_child.py [--stdout N] [--stderr M] [--exit-code CODE]
                         [--sleep SECONDS] [--pid-file PATH] [--close-streams]
                         [--self-signal SIG] [--progress US ...]
                         [--quit-on-stdin] [--ignore-quit] [--echo-args]

Arguments:
    --stdout / --stderr: Number of "out-<i>" / "err-<i>" lines to write
    --exit-code: Exit code (default 0)
    --sleep: Seconds to sleep after writing output
    --pid-file: Write the process id here before anything else
    --close-streams: Close stdout/stderr before sleeping
    --self-signal: Terminate with this signal after writing output
    --progress: Write one "out_time_us=<US>" line per value, verbatim
    --quit-on-stdin: Print "ready", then exit 0 when "q" arrives on stdin
    --ignore-quit: With --quit-on-stdin, keep running after "q"
    --echo-args: Print "args=<all arguments>" first
"""

from __future__ import annotations

import argparse
import os
import signal
import sys
import time
from typing import NoReturn


def emit(text: str, stream=None) -> None:
    print(text, file=stream or sys.stdout, flush=True)


def wait_for_quit(ignore_quit: bool) -> None:
    emit("ready")
    for line in sys.stdin:
        if line.strip() == "q":
            if ignore_quit:
                emit("ignoring quit")
                continue
            emit("bye")
            return
    # stdin closed
    if ignore_quit:
        time.sleep(60)


def main() -> NoReturn:
    # no -h: ffmpeg-style single-dash arguments such as -hide_banner must pass through
    parser = argparse.ArgumentParser(description="Fake child for testing", add_help=False)
    parser.add_argument("--stdout", type=int, default=0)
    parser.add_argument("--stderr", type=int, default=0)
    parser.add_argument("--exit-code", type=int, default=0)
    parser.add_argument("--sleep", type=float, default=0.0)
    parser.add_argument("--pid-file", type=str, default=None)
    parser.add_argument("--close-streams", action="store_true")
    parser.add_argument("--self-signal", type=int, default=None)
    parser.add_argument("--progress", type=str, nargs="*", default=[])
    parser.add_argument("--quit-on-stdin", action="store_true")
    parser.add_argument("--ignore-quit", action="store_true")
    parser.add_argument("--echo-args", action="store_true")
    # extra arguments are accepted and ignored
    args, _ = parser.parse_known_args()

    if args.pid_file:
        with open(args.pid_file, "w", encoding="utf-8") as f:
            f.write(str(os.getpid()))

    if args.echo_args:
        emit("args=" + " ".join(sys.argv[1:]))

    for i in range(args.stdout):
        emit(f"out-{i}")
    for i in range(args.stderr):
        emit(f"err-{i}", sys.stderr)
    for value in args.progress:
        emit(f"out_time_us={value}")
        emit("progress=continue")

    if args.quit_on_stdin:
        wait_for_quit(args.ignore_quit)

    if args.self_signal is not None:
        os.kill(os.getpid(), args.self_signal)
        time.sleep(5)

    if args.close_streams:
        sys.stdout.flush()
        sys.stderr.flush()
        os.close(1)
        os.close(2)
        time.sleep(args.sleep)
        # interpreter shutdown would fail flushing the closed descriptors
        os._exit(args.exit_code)

    if args.sleep:
        time.sleep(args.sleep)

    sys.exit(args.exit_code)


if __name__ == "__main__":
    main()
