"""git-reader - run git asynchronously and stream its output.

Environment variables:
    GIT_READER_PROGRAM: Program to run (default git)
    GIT_READER_CHUNK_SIZE: Bytes per non-blocking read (default 512)
    GIT_READER_LOG_DEBUG: Debug logging to a temp file (default false)

Usage:
    git-reader blame --incremental -- README
"""

__version__ = "0.1.0"

from .errors import ErrorKind, ExitStatus, GitReaderError, IoFailure, SpawnFailure
from .runtime import ProcessRunner, RunnerState, run_git

__all__ = [
    "__version__",
    "ErrorKind",
    "ExitStatus",
    "GitReaderError",
    "IoFailure",
    "ProcessRunner",
    "RunnerState",
    "SpawnFailure",
    "run_git",
]
