"""git-reader command line entry point.

Runs one invocation, streams its stdout to the terminal as it arrives and
prints the error message, if any, to stderr.

Usage:
    git-reader [--program PROG] [--cwd DIR] [--chunk-size N] [--] ARGS...

Options git-reader does not know (such as --version or -C DIR) are passed
through to the program. Put them after -- if they clash with the options
above.

Exit codes:
    0: success
    N: the program's own non-zero exit status (1 if killed by a signal)
    74: reading the program's output failed
    127: the program could not be started
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import Sequence

from .config import get_config
from .errors import ExitStatus, GitReaderError, IoFailure, SpawnFailure
from .runtime import ProcessRunner

__all__ = ["main"]

logger = logging.getLogger(__name__)

EXIT_IO_FAILURE = 74
EXIT_SPAWN_FAILURE = 127


def _configure_logging() -> None:
    config = get_config()
    log_handlers: list[logging.Handler] = []

    if config.log_debug and config.log_file:
        file_handler = logging.FileHandler(config.log_file, encoding="utf-8")
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
        )
        log_handlers.append(file_handler)
        log_level = logging.DEBUG
    else:
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(
            logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
        )
        log_handlers.append(stderr_handler)
        log_level = logging.INFO

    # Third-party loggers stay at WARNING
    logging.basicConfig(level=logging.WARNING, handlers=log_handlers)
    logging.getLogger("git_reader").setLevel(log_level)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="git-reader",
        description="Run git and stream its output.",
        epilog="Unrecognized options are passed through to the program.",
        allow_abbrev=False,
    )
    parser.add_argument("--program", default=None, help="Program to run (default: git)")
    parser.add_argument("--cwd", default=None, help="Working directory")
    parser.add_argument(
        "--chunk-size", type=int, default=None, help="Bytes per non-blocking read"
    )
    parser.add_argument("args", nargs=argparse.REMAINDER, help="Arguments for the program")
    return parser


def _exit_code_for(error: GitReaderError) -> int:
    if isinstance(error, ExitStatus):
        return error.exit_code if error.exit_code > 0 else 1
    if isinstance(error, IoFailure):
        return EXIT_IO_FAILURE
    if isinstance(error, SpawnFailure):
        return EXIT_SPAWN_FAILURE
    return 1


async def _run(options: argparse.Namespace) -> int:
    out = sys.stdout.buffer

    def write_chunk(chunk: bytes) -> None:
        out.write(chunk)
        out.flush()

    runner = ProcessRunner(
        options.program,
        on_stdout=write_chunk,
        cwd=options.cwd,
        chunk_size=options.chunk_size,
    )

    with runner:
        try:
            await runner.run(options.args)
        except GitReaderError as e:
            print(f"git-reader: {e.message}", file=sys.stderr)
            return _exit_code_for(e)

    return 0


def main(argv: Sequence[str] | None = None) -> int:
    """Main entry point."""
    _configure_logging()

    options, passthrough = _build_parser().parse_known_args(argv)
    remainder = list(options.args)
    if remainder and remainder[0] == "--":
        remainder = remainder[1:]
    options.args = passthrough + remainder

    if options.chunk_size is not None and options.chunk_size <= 0:
        print("git-reader: --chunk-size must be positive", file=sys.stderr)
        return 2

    return asyncio.run(_run(options))


if __name__ == "__main__":
    sys.exit(main())
