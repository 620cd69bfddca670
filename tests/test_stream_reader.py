"""PipeReader tests on real OS pipes."""

from __future__ import annotations

import asyncio
import errno
import os

import pytest

from git_reader.runtime.process_runner import IS_WINDOWS
from git_reader.runtime.stream_reader import PipeReader, StreamState

pytestmark = pytest.mark.skipif(IS_WINDOWS, reason="POSIX pipe readers only")


class Events:
    def __init__(self) -> None:
        self.chunks: list[bytes] = []
        self.eofs: list[PipeReader] = []
        self.errors: list[tuple[PipeReader, OSError]] = []
        self.finished = asyncio.Event()

    def on_data(self, chunk: bytes) -> None:
        self.chunks.append(chunk)

    def on_eof(self, reader: PipeReader) -> None:
        self.eofs.append(reader)
        self.finished.set()

    def on_error(self, reader: PipeReader, exc: OSError) -> None:
        self.errors.append((reader, exc))
        self.finished.set()


class Pipe:
    """An OS pipe whose write end is closed at most once."""

    def __init__(self) -> None:
        read_fd, self._write_fd = os.pipe()
        self.read_end = os.fdopen(read_fd, "rb", buffering=0)
        self._writer_open = True

    def write(self, data: bytes) -> None:
        os.write(self._write_fd, data)

    def close_writer(self) -> None:
        if self._writer_open:
            self._writer_open = False
            os.close(self._write_fd)

    def close(self) -> None:
        self.close_writer()
        self.read_end.close()


@pytest.fixture
def pipe():
    pipe = Pipe()
    yield pipe
    pipe.close()


def make_reader(pipe: Pipe, events: Events, chunk_size: int = 512) -> PipeReader:
    return PipeReader(
        asyncio.get_running_loop(),
        pipe.read_end,
        "stdout",
        on_data=events.on_data,
        on_eof=events.on_eof,
        on_error=events.on_error,
        chunk_size=chunk_size,
    )


class TestReading:
    """Test data and end-of-stream handling."""

    @pytest.mark.asyncio
    async def test_reads_until_eof(self, pipe):
        events = Events()
        reader = make_reader(pipe, events, chunk_size=4)
        reader.arm()

        pipe.write(b"hello world")
        pipe.close_writer()

        await asyncio.wait_for(events.finished.wait(), timeout=5)

        assert b"".join(events.chunks) == b"hello world"
        assert all(len(chunk) <= 4 for chunk in events.chunks)
        assert events.eofs == [reader]
        assert events.errors == []
        assert reader.state is StreamState.CLOSED
        assert not reader.is_watching

    @pytest.mark.asyncio
    async def test_chunks_keep_write_order(self, pipe):
        events = Events()
        reader = make_reader(pipe, events, chunk_size=3)
        reader.arm()

        for part in (b"one ", b"two ", b"three"):
            pipe.write(part)
            await asyncio.sleep(0.01)
        pipe.close_writer()

        await asyncio.wait_for(events.finished.wait(), timeout=5)
        assert b"".join(events.chunks) == b"one two three"

    @pytest.mark.asyncio
    async def test_would_block_keeps_stream_open(self, pipe):
        events = Events()
        reader = make_reader(pipe, events)
        reader.arm()
        assert not os.get_blocking(reader.fd)

        # Spurious readiness on an empty pipe
        reader._on_readable()

        assert reader.state is StreamState.OPEN
        assert reader.is_watching
        assert events.chunks == []
        assert events.eofs == []
        assert events.errors == []
        reader.close()

    @pytest.mark.asyncio
    async def test_read_error(self, pipe):
        events = Events()
        reader = make_reader(pipe, events)
        reader.arm()

        def fail() -> bytes:
            raise OSError(errno.EIO, "Input/output error")

        reader._read_chunk = fail
        reader._on_readable()

        assert len(events.errors) == 1
        failed_reader, exc = events.errors[0]
        assert failed_reader is reader
        assert exc.errno == errno.EIO
        assert reader.state is StreamState.CLOSED
        assert not reader.is_watching
        assert events.eofs == []

    @pytest.mark.asyncio
    async def test_closed_reader_ignores_readiness(self, pipe):
        events = Events()
        reader = make_reader(pipe, events)
        reader.arm()
        reader.close()

        reader._on_readable()

        assert events.chunks == []
        assert events.eofs == []
        assert events.errors == []


class TestLifecycle:
    """Test arm/close bookkeeping."""

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, pipe):
        events = Events()
        reader = make_reader(pipe, events)
        reader.arm()

        reader.close()
        reader.close()

        assert pipe.read_end.closed
        assert reader.state is StreamState.CLOSED

    @pytest.mark.asyncio
    async def test_arm_twice(self, pipe):
        events = Events()
        reader = make_reader(pipe, events)
        reader.arm()
        reader.arm()
        assert reader.is_watching
        reader.close()
        assert not reader.is_watching

    @pytest.mark.asyncio
    async def test_arm_after_close_does_nothing(self, pipe):
        events = Events()
        reader = make_reader(pipe, events)
        reader.close()
        reader.arm()
        assert not reader.is_watching

    @pytest.mark.asyncio
    @pytest.mark.parametrize("chunk_size", [0, -1])
    async def test_invalid_chunk_size(self, pipe, chunk_size: int):
        with pytest.raises(ValueError):
            make_reader(pipe, Events(), chunk_size=chunk_size)
