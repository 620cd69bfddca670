"""Completion join for one process invocation.

An invocation is finished only when three independent signals have all been
seen: the child exited, stdout reached end-of-stream and stderr reached
end-of-stream. They can arrive in any order.
"""

from __future__ import annotations

import enum
import logging
from typing import Callable

__all__ = [
    "ALL_SIGNALS",
    "CompletionSignal",
    "CompletionTracker",
]

logger = logging.getLogger(__name__)


class CompletionSignal(enum.Flag):
    """One of the three events an invocation waits for."""

    NONE = 0
    PROCESS_EXITED = enum.auto()
    STDOUT_CLOSED = enum.auto()
    STDERR_CLOSED = enum.auto()


ALL_SIGNALS = (
    CompletionSignal.PROCESS_EXITED
    | CompletionSignal.STDOUT_CLOSED
    | CompletionSignal.STDERR_CLOSED
)


class CompletionTracker:
    """Count down the completion signals and fire once when all are in.

    Example:
        tracker = CompletionTracker(on_complete=finalize)
        tracker.record(CompletionSignal.STDOUT_CLOSED)
        tracker.record(CompletionSignal.PROCESS_EXITED)
        tracker.record(CompletionSignal.STDERR_CLOSED)  # finalize() runs here
    """

    def __init__(self, on_complete: Callable[[], None]) -> None:
        self._on_complete = on_complete
        self._received = CompletionSignal.NONE
        self._fired = False
        self._cancelled = False

    @property
    def received(self) -> CompletionSignal:
        return self._received

    @property
    def outstanding(self) -> CompletionSignal:
        return ALL_SIGNALS & ~self._received

    @property
    def is_complete(self) -> bool:
        return self._received == ALL_SIGNALS

    @property
    def fired(self) -> bool:
        return self._fired

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def record(self, signal: CompletionSignal) -> bool:
        """Record a signal and run the completion callback if it was the last.

        Args:
            signal: A single CompletionSignal member

        Returns:
            True if this call fired the completion callback
        """
        if signal not in ALL_SIGNALS or signal == CompletionSignal.NONE:
            raise ValueError(f"Not a completion signal: {signal!r}")

        if self._cancelled:
            logger.debug(f"Ignoring {signal.name} on cancelled tracker")
            return False

        if signal in self._received:
            logger.debug(f"Duplicate completion signal {signal.name}")
            return False

        self._received |= signal

        if not self.is_complete or self._fired:
            return False

        self._fired = True
        self._on_complete()
        return True

    def cancel(self) -> None:
        """Disarm the tracker; no completion fires afterwards."""
        self._cancelled = True
