"""Process-exit watch driven by the event loop.

On Linux a pidfd becomes readable when the child exits, so the watch is just
another reader on the loop. Elsewhere the child is polled on a timer.
Either way the child is reaped with a non-blocking ``Popen.poll()``.
"""

from __future__ import annotations

import asyncio
import logging
import os
import subprocess
from typing import Callable

__all__ = [
    "DEFAULT_POLL_INTERVAL",
    "HAS_PIDFD",
    "ChildWatch",
]

logger = logging.getLogger(__name__)

HAS_PIDFD = hasattr(os, "pidfd_open")

DEFAULT_POLL_INTERVAL = 0.05  # seconds between polls without pidfd


class ChildWatch:
    """Watch one child process and report its exit status once.

    Args:
        loop: Event loop to schedule the watch on
        process: The child to watch
        on_exit: Called once with the child's return code after reaping
        poll_interval: Poll period used when no pidfd is available
        use_pidfd: Set False to force timer polling
    """

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        process: subprocess.Popen[bytes],
        on_exit: Callable[[int], None],
        *,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        use_pidfd: bool = HAS_PIDFD,
    ) -> None:
        self._loop = loop
        self._process = process
        self._on_exit = on_exit
        self._poll_interval = poll_interval
        self._use_pidfd = use_pidfd and HAS_PIDFD
        self._pidfd: int | None = None
        self._timer: asyncio.TimerHandle | None = None
        self._active = False

    @property
    def is_active(self) -> bool:
        return self._active

    @property
    def uses_pidfd(self) -> bool:
        return self._pidfd is not None

    def arm(self) -> None:
        if self._active:
            return
        self._active = True

        if self._use_pidfd:
            try:
                self._pidfd = os.pidfd_open(self._process.pid)
            except OSError as e:
                # Kernels older than 5.3 or seccomp-restricted sandboxes
                logger.debug(f"pidfd_open failed, polling instead: {e}")
                self._pidfd = None

        if self._pidfd is not None:
            self._loop.add_reader(self._pidfd, self._check)
        else:
            self._schedule_poll()

    def cancel(self) -> None:
        """Stop watching. Safe to call repeatedly."""
        self._active = False

        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

        if self._pidfd is not None:
            self._loop.remove_reader(self._pidfd)
            try:
                os.close(self._pidfd)
            except OSError:
                pass
            self._pidfd = None

    def _schedule_poll(self) -> None:
        self._timer = self._loop.call_later(self._poll_interval, self._check)

    def _check(self) -> None:
        if not self._active:
            return

        self._timer = None
        returncode = self._process.poll()

        if returncode is None:
            if self._pidfd is None:
                self._schedule_poll()
            return

        logger.debug(
            f"Child exited pid={self._process.pid} returncode={returncode}"
        )
        self.cancel()
        self._on_exit(returncode)
