"""Error types for git-reader.

Spawn problems are raised synchronously from ``ProcessRunner.start``;
everything that happens after a successful spawn reaches the caller only
through the completion event.
"""

from __future__ import annotations

from enum import Enum
from typing import Sequence

__all__ = [
    "ErrorKind",
    "GitReaderError",
    "SpawnFailure",
    "ExitStatus",
    "IoFailure",
]


class ErrorKind(Enum):
    """Kind of failure carried by a GitReaderError."""

    SPAWN_FAILURE = "spawn_failure"
    EXIT_STATUS = "exit_status"
    IO_FAILURE = "io_failure"


class GitReaderError(Exception):
    """Base exception for git-reader.

    Attributes:
        kind: Failure kind
        message: Human-readable message (also the ``str()`` of the error)
    """

    kind: ErrorKind

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class SpawnFailure(GitReaderError):
    """The program could not be launched (missing executable, permissions).

    Attributes:
        argv: Full command line that failed to start
    """

    kind = ErrorKind.SPAWN_FAILURE

    def __init__(self, argv: Sequence[str], reason: str) -> None:
        self.argv = list(argv)
        super().__init__(f"Failed to execute {self.argv[0]}: {reason}")


class ExitStatus(GitReaderError):
    """The process ran and exited with a non-zero status.

    Attributes:
        exit_code: Exit status; negative when killed by a signal
    """

    kind = ErrorKind.EXIT_STATUS

    def __init__(self, exit_code: int, message: str) -> None:
        self.exit_code = exit_code
        super().__init__(message)


class IoFailure(GitReaderError):
    """Reading one of the output pipes failed.

    Attributes:
        stream: Name of the pipe that failed ("stdout" or "stderr")
    """

    kind = ErrorKind.IO_FAILURE

    def __init__(self, stream: str, reason: str) -> None:
        self.stream = stream
        super().__init__(f"Error reading {stream}: {reason}")
