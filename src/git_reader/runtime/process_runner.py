"""Process runner for git invocations with streamed output.

git-reader runtime module

This module provides:
- Spawning ``<program> <args...>`` with stdout/stderr pipes (stdin on /dev/null)
- Readiness-driven, non-blocking reads of both pipes on the event loop
- A completion join over child exit, stdout EOF and stderr EOF
- Reliable teardown (poll -> SIGTERM -> timeout -> SIGKILL), always reaping

Key design points:
- Exactly one completion event per successful start, none for a stopped run
- Stderr is diagnostic only and becomes the ExitStatus message
- A read error short-circuits the join and kills the child
- The child is polled before it is signalled, so a reaped (and possibly
  reused) pid is never signalled
"""

from __future__ import annotations

import asyncio
import functools
import logging
import subprocess
import sys
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

import anyio

from ..config import get_config
from ..errors import ExitStatus, GitReaderError, IoFailure, SpawnFailure
from .child_watch import ChildWatch
from .completion import CompletionSignal, CompletionTracker
from .stream_reader import PipeReader

__all__ = [
    "CompletedCallback",
    "ProcessHandle",
    "ProcessRunner",
    "ProcessSpec",
    "RunnerState",
    "StdoutCallback",
    "run_git",
]

logger = logging.getLogger(__name__)

# Platform detection
IS_WINDOWS = sys.platform == "win32"

StdoutCallback = Callable[[bytes], None]
CompletedCallback = Callable[[GitReaderError | None], None]


class RunnerState(Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"


@dataclass(frozen=True)
class ProcessSpec:
    """Specification for one invocation.

    Attributes:
        argv: Command line (first element is the program)
        cwd: Working directory (None = inherit)
        env: Environment variables (None = inherit parent)
    """

    argv: list[str]
    cwd: Path | None = None
    env: Mapping[str, str] | None = None


@dataclass(eq=False)
class ProcessHandle:
    """State of one in-flight or just-finished invocation.

    The readers, exit watch and tracker are attached by ProcessRunner.start
    once the child exists.
    """

    spec: ProcessSpec
    process: subprocess.Popen[bytes]
    diagnostic: bytearray = field(default_factory=bytearray)
    exit_code: int | None = None
    error: GitReaderError | None = None
    completed: bool = False
    stopped: bool = False
    stdout: PipeReader = field(init=False, repr=False)
    stderr: PipeReader = field(init=False, repr=False)
    watch: ChildWatch = field(init=False, repr=False)
    tracker: CompletionTracker = field(init=False, repr=False)
    waiters: list[Callable[[], None]] = field(default_factory=list, repr=False)

    @property
    def pid(self) -> int:
        return self.process.pid


class ProcessRunner:
    """Runs one git invocation at a time and reports its completion once.

    Stdout chunks go to ``on_stdout`` as they are read; stderr is collected
    for the error message. ``on_completed`` receives None or a
    GitReaderError exactly once per successful ``start``.

    Starting a new invocation stops the previous one first. All callbacks
    run on the event loop that was running when ``start`` was called.

    Example:
        def on_completed(error):
            if error is not None:
                show_error(error.message)

        runner = ProcessRunner(on_stdout=parser.feed, on_completed=on_completed)
        runner.start(["blame", "--incremental", "--", "README"])
    """

    def __init__(
        self,
        program: str | None = None,
        *,
        on_stdout: StdoutCallback | None = None,
        on_completed: CompletedCallback | None = None,
        cwd: Path | str | None = None,
        env: Mapping[str, str] | None = None,
        chunk_size: int | None = None,
        term_timeout: float | None = None,
        poll_interval: float | None = None,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        config = get_config()
        self.program = program if program is not None else config.program
        self.on_stdout = on_stdout
        self.on_completed = on_completed
        self.cwd = Path(cwd) if cwd is not None else None
        self.env = env
        self.chunk_size = chunk_size if chunk_size is not None else config.chunk_size
        self.term_timeout = (
            term_timeout if term_timeout is not None else config.term_timeout
        )
        self.poll_interval = (
            poll_interval if poll_interval is not None else config.poll_interval
        )
        self._loop = loop
        self._state = RunnerState.IDLE
        self._handle: ProcessHandle | None = None

    def __enter__(self) -> ProcessRunner:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.stop()

    @property
    def state(self) -> RunnerState:
        return self._state

    @property
    def handle(self) -> ProcessHandle | None:
        """The current or most recently completed invocation."""
        return self._handle

    @property
    def is_running(self) -> bool:
        return self._state is RunnerState.RUNNING

    def start(self, args: Sequence[str]) -> ProcessHandle:
        """Spawn ``program`` with ``args`` and start streaming its output.

        Any previous invocation is stopped (and killed if needed) first.

        Args:
            args: Arguments after the program name

        Returns:
            Handle of the new invocation

        Raises:
            SpawnFailure: If the program could not be executed. No completion
                event is delivered in that case.
        """
        if IS_WINDOWS:
            raise NotImplementedError("ProcessRunner needs POSIX pipe readers")

        loop = self._loop or asyncio.get_running_loop()

        self.stop()
        self._handle = None
        self._state = RunnerState.IDLE

        spec = ProcessSpec(argv=[self.program, *args], cwd=self.cwd, env=self.env)

        try:
            process = subprocess.Popen(spec.argv, **self._build_subprocess_kwargs(spec))
        except (OSError, ValueError) as e:
            # ValueError: embedded NUL in the program, an argument, cwd or env
            logger.debug(f"Failed to spawn argv={spec.argv}: {e}")
            reason = e.strerror if isinstance(e, OSError) and e.strerror else str(e)
            raise SpawnFailure(spec.argv, reason) from e

        logger.debug(
            f"Started subprocess pid={process.pid} "
            f"argv={spec.argv} cwd={spec.cwd}"
        )

        assert process.stdout is not None and process.stderr is not None

        handle = ProcessHandle(spec=spec, process=process)
        handle.tracker = CompletionTracker(functools.partial(self._finalize, handle))
        handle.stdout = PipeReader(
            loop,
            process.stdout,
            "stdout",
            on_data=functools.partial(self._on_stdout_data, handle),
            on_eof=functools.partial(self._on_stream_eof, handle),
            on_error=functools.partial(self._on_read_error, handle),
            chunk_size=self.chunk_size,
        )
        handle.stderr = PipeReader(
            loop,
            process.stderr,
            "stderr",
            on_data=functools.partial(self._on_stderr_data, handle),
            on_eof=functools.partial(self._on_stream_eof, handle),
            on_error=functools.partial(self._on_read_error, handle),
            chunk_size=self.chunk_size,
        )
        handle.watch = ChildWatch(
            loop,
            process,
            functools.partial(self._on_child_exit, handle),
            poll_interval=self.poll_interval,
        )

        self._handle = handle
        self._state = RunnerState.RUNNING

        try:
            handle.stdout.arm()
            handle.stderr.arm()
            handle.watch.arm()
        except BaseException:
            self.stop()
            raise

        return handle

    def stop(self) -> None:
        """Tear down the running invocation, if any.

        Removes the watches, closes the pipes and reaps the child, sending
        SIGTERM (then SIGKILL after ``term_timeout``) only if it is still
        running. No completion event is delivered for the stopped invocation.
        Does nothing when idle or completed.
        """
        handle = self._handle
        if self._state is not RunnerState.RUNNING or handle is None:
            return

        handle.tracker.cancel()
        handle.stopped = True
        self._release(handle, kill=True)
        self._state = RunnerState.IDLE

        logger.debug(f"Stopped subprocess pid={handle.pid} returncode={handle.exit_code}")
        self._notify_waiters(handle)

    close = stop

    async def run(self, args: Sequence[str]) -> bool:
        """Start an invocation and wait for its completion event.

        If the awaiting task is cancelled the invocation is stopped before
        the cancellation propagates.

        Args:
            args: Arguments after the program name

        Returns:
            True once the invocation completed, False if it was stopped
            (by ``stop()`` or a newer ``start()``) before completing

        Raises:
            SpawnFailure: If the program could not be executed
            ExitStatus: If the program exited with a non-zero status
            IoFailure: If reading one of its pipes failed
        """
        finished = anyio.Event()
        handle = self.start(args)
        handle.waiters.append(finished.set)

        try:
            await finished.wait()
        except anyio.get_cancelled_exc_class():
            if handle is self._handle:
                self.stop()
            raise

        if handle.error is not None:
            raise handle.error
        return handle.completed

    def _build_subprocess_kwargs(self, spec: ProcessSpec) -> dict[str, Any]:
        """Build kwargs for subprocess.Popen."""
        kwargs: dict[str, Any] = {
            "stdin": subprocess.DEVNULL,
            "stdout": subprocess.PIPE,
            "stderr": subprocess.PIPE,
            # Unbuffered pipes, otherwise reads can block
            "bufsize": 0,
        }

        if spec.cwd is not None:
            kwargs["cwd"] = spec.cwd
        if spec.env is not None:
            kwargs["env"] = dict(spec.env)

        return kwargs

    def _on_stdout_data(self, handle: ProcessHandle, chunk: bytes) -> None:
        if self.on_stdout is None:
            logger.debug(f"got stdout: {chunk!r}")
            return
        self.on_stdout(chunk)

    def _on_stderr_data(self, handle: ProcessHandle, chunk: bytes) -> None:
        handle.diagnostic.extend(chunk)

    def _on_stream_eof(self, handle: ProcessHandle, reader: PipeReader) -> None:
        if reader is handle.stdout:
            handle.tracker.record(CompletionSignal.STDOUT_CLOSED)
        else:
            handle.tracker.record(CompletionSignal.STDERR_CLOSED)

    def _on_child_exit(self, handle: ProcessHandle, returncode: int) -> None:
        handle.exit_code = returncode
        handle.tracker.record(CompletionSignal.PROCESS_EXITED)

    def _on_read_error(
        self, handle: ProcessHandle, reader: PipeReader, exc: OSError
    ) -> None:
        if handle is not self._handle or self._state is not RunnerState.RUNNING:
            return

        logger.debug(f"Read error on {reader.name} pid={handle.pid}: {exc}")
        handle.tracker.cancel()
        self._release(handle, kill=True)

        error = IoFailure(reader.name, exc.strerror or str(exc))
        error.__cause__ = exc
        self._complete(handle, error)

    def _finalize(self, handle: ProcessHandle) -> None:
        self._release(handle, kill=False)
        self._complete(handle, self._build_error(handle))

    def _build_error(self, handle: ProcessHandle) -> ExitStatus | None:
        if not handle.exit_code:
            return None

        message = handle.diagnostic.decode("utf-8", errors="replace").rstrip()
        if not message:
            message = f"Error invoking {handle.spec.argv[0]}"

        return ExitStatus(handle.exit_code, message)

    def _complete(self, handle: ProcessHandle, error: GitReaderError | None) -> None:
        handle.error = error
        handle.completed = True
        self._state = RunnerState.COMPLETED

        logger.debug(
            f"Subprocess completed pid={handle.pid} "
            f"returncode={handle.exit_code} error={error!r}"
        )

        try:
            if self.on_completed is not None:
                self.on_completed(error)
        finally:
            handle.diagnostic.clear()
            self._notify_waiters(handle)

    def _notify_waiters(self, handle: ProcessHandle) -> None:
        waiters, handle.waiters = handle.waiters, []
        for waiter in waiters:
            waiter()

    def _release(self, handle: ProcessHandle, *, kill: bool) -> None:
        """Release the pipes and the exit watch, reaping the child if asked."""
        handle.stdout.close()
        handle.stderr.close()
        handle.watch.cancel()

        if kill and handle.exit_code is None:
            handle.exit_code = self._terminate_process(handle.process)

    def _terminate_process(self, process: subprocess.Popen[bytes]) -> int:
        """Reap the child, terminating it first if it is still running.

        Termination strategy:
        1. Non-blocking poll; an already exited child is just reaped
        2. Send SIGTERM
        3. Wait up to term_timeout for it to exit
        4. Send SIGKILL and wait until it is reaped

        Args:
            process: The child to reap

        Returns:
            The child's return code
        """
        pid = process.pid

        returncode = process.poll()
        if returncode is not None:
            logger.debug(f"Subprocess already exited pid={pid} returncode={returncode}")
            return returncode

        logger.debug(f"Terminating subprocess pid={pid}")
        try:
            process.terminate()
        except ProcessLookupError:
            pass

        try:
            returncode = process.wait(timeout=self.term_timeout)
            logger.debug(
                f"Subprocess terminated gracefully pid={pid} returncode={returncode}"
            )
            return returncode
        except subprocess.TimeoutExpired:
            pass

        logger.debug(f"Force killing subprocess pid={pid}")
        try:
            process.kill()
        except ProcessLookupError:
            pass

        returncode = process.wait()
        logger.debug(f"Subprocess killed pid={pid} returncode={returncode}")
        return returncode


async def run_git(
    args: Sequence[str],
    *,
    program: str | None = None,
    cwd: Path | str | None = None,
    env: Mapping[str, str] | None = None,
) -> bytes:
    """Run one invocation and collect its stdout.

    This is a convenience function for cases where streaming is not needed.

    Args:
        args: Arguments after the program name
        program: Program to run (default from configuration, normally "git")
        cwd: Working directory
        env: Environment variables (None = inherit parent)

    Returns:
        Everything the program wrote to stdout

    Raises:
        SpawnFailure, ExitStatus, IoFailure
    """
    chunks: list[bytes] = []

    with ProcessRunner(program, on_stdout=chunks.append, cwd=cwd, env=env) as runner:
        await runner.run(args)

    return b"".join(chunks)
