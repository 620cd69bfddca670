"""Runtime module for git subprocess management and output streaming.

This module provides the process runner, its completion join, the pipe
readers and the process-exit watch.
"""

from __future__ import annotations

from .child_watch import ChildWatch
from .completion import ALL_SIGNALS, CompletionSignal, CompletionTracker
from .process_runner import (
    ProcessHandle,
    ProcessRunner,
    ProcessSpec,
    RunnerState,
    run_git,
)
from .stream_reader import PipeReader, StreamState

__all__ = [
    "ALL_SIGNALS",
    "ChildWatch",
    "CompletionSignal",
    "CompletionTracker",
    "PipeReader",
    "ProcessHandle",
    "ProcessRunner",
    "ProcessSpec",
    "RunnerState",
    "StreamState",
    "run_git",
]
