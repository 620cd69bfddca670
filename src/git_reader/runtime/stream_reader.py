"""Readiness-driven reader for a child's output pipe.

Each readiness notification from the event loop triggers one bounded,
non-blocking read. Stdout and stderr share this state machine and differ only
in what ``on_data`` does with the chunk.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import os
from typing import IO, Callable

__all__ = [
    "DEFAULT_CHUNK_SIZE",
    "PipeReader",
    "StreamState",
]

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 512


class StreamState(enum.Enum):
    OPEN = "open"
    CLOSED = "closed"


class PipeReader:
    """Non-blocking reader for one pipe registered with an event loop.

    Args:
        loop: Event loop that delivers readiness notifications
        pipe: Read end of the pipe (the reader takes ownership)
        name: Stream name used in logs and errors ("stdout"/"stderr")
        on_data: Called with every non-empty chunk, in order
        on_eof: Called once with the reader when end-of-stream is reached
        on_error: Called once with the reader and the OSError on a hard
            read failure
        chunk_size: Maximum bytes per read
    """

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        pipe: IO[bytes],
        name: str,
        *,
        on_data: Callable[[bytes], None],
        on_eof: Callable[[PipeReader], None],
        on_error: Callable[[PipeReader, OSError], None],
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")

        self.name = name
        self._loop = loop
        self._pipe = pipe
        self._fd = pipe.fileno()
        self._on_data = on_data
        self._on_eof = on_eof
        self._on_error = on_error
        self._chunk_size = chunk_size
        self._state = StreamState.OPEN
        self._watching = False
        self._pipe_closed = False

    @property
    def state(self) -> StreamState:
        return self._state

    @property
    def fd(self) -> int:
        return self._fd

    @property
    def is_watching(self) -> bool:
        return self._watching

    def arm(self) -> None:
        """Switch the pipe to non-blocking mode and start watching it."""
        if self._state is StreamState.CLOSED or self._watching:
            return
        os.set_blocking(self._fd, False)
        self._loop.add_reader(self._fd, self._on_readable)
        self._watching = True

    def close(self) -> None:
        """Stop watching and close the pipe. Safe to call repeatedly."""
        self._state = StreamState.CLOSED
        self._disarm()
        if not self._pipe_closed:
            self._pipe_closed = True
            try:
                self._pipe.close()
            except OSError as e:
                logger.debug(f"Ignoring error closing {self.name}: {e}")

    def _disarm(self) -> None:
        if self._watching:
            self._watching = False
            self._loop.remove_reader(self._fd)

    def _read_chunk(self) -> bytes:
        return os.read(self._fd, self._chunk_size)

    def _on_readable(self) -> None:
        if self._state is StreamState.CLOSED:
            return

        try:
            chunk = self._read_chunk()
        except BlockingIOError:
            return
        except OSError as e:
            logger.debug(f"Read error on {self.name}: {e}")
            self._state = StreamState.CLOSED
            self._disarm()
            self._on_error(self, e)
            return

        if not chunk:
            logger.debug(f"End of stream on {self.name}")
            self._state = StreamState.CLOSED
            self._disarm()
            self._on_eof(self)
            return

        self._on_data(chunk)
