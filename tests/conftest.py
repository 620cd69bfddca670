"""Pytest configuration and fixtures."""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path

import pytest

# Project root
PROJECT_ROOT = Path(__file__).parent.parent

# Add src to the Python path
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

# Scripted stand-in for git
FAKE_GIT_PATH = PROJECT_ROOT / "tests" / "fixtures" / "fake_git.py"


class Recorder:
    """Collects the stdout chunks and completion events of a runner."""

    def __init__(self) -> None:
        self.chunks: list[bytes] = []
        self.completions: list = []
        self.done = asyncio.Event()

    @property
    def stdout(self) -> bytes:
        return b"".join(self.chunks)

    @property
    def error(self):
        assert len(self.completions) == 1
        return self.completions[0]

    def on_stdout(self, chunk: bytes) -> None:
        self.chunks.append(chunk)

    def on_completed(self, error) -> None:
        self.completions.append(error)
        self.done.set()

    async def wait(self, timeout: float = 10.0) -> None:
        await asyncio.wait_for(self.done.wait(), timeout=timeout)
        # Give the loop a chance to deliver anything that should not arrive
        await asyncio.sleep(0.05)


@pytest.fixture
def fake_git() -> str:
    """Path of the fake git script."""
    return str(FAKE_GIT_PATH)


@pytest.fixture
def recorder() -> Recorder:
    return Recorder()


@pytest.fixture
def runner(recorder: Recorder):
    """ProcessRunner that runs the Python interpreter, wired to ``recorder``."""
    from git_reader.runtime import ProcessRunner

    runner = ProcessRunner(
        sys.executable,
        on_stdout=recorder.on_stdout,
        on_completed=recorder.on_completed,
        term_timeout=0.5,
    )
    yield runner
    runner.stop()
