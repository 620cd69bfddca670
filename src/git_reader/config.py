"""git-reader environment configuration.

Environment variables:
    GIT_READER_PROGRAM: Program prefixed to every invocation
        - default "git"

    GIT_READER_CHUNK_SIZE: Bytes read per readiness notification
        - default 512, clamped to 1..65536

    GIT_READER_TERM_TIMEOUT: Seconds to wait after SIGTERM before SIGKILL
        - default 2.0, clamped to 0.1..60

    GIT_READER_POLL_INTERVAL: Exit poll period when pidfds are unavailable
        - default 0.05, clamped to 0.001..5

    GIT_READER_LOG_DEBUG: Debug logging
        - true/1/yes/on = debug log written to a temp file
        - false/0/no/off = INFO to stderr (default)
"""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

__all__ = ["Config", "load_config", "get_config", "reload_config"]

DEFAULT_PROGRAM = "git"
DEFAULT_CHUNK_SIZE = 512
DEFAULT_TERM_TIMEOUT = 2.0
DEFAULT_POLL_INTERVAL = 0.05


def _parse_bool(value: str | None, default: bool = False) -> bool:
    """Parse a boolean environment variable."""
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _parse_int(value: str | None, default: int, low: int, high: int) -> int:
    if not value:
        return default
    try:
        return max(low, min(int(value), high))
    except ValueError:
        return default


def _parse_float(value: str | None, default: float, low: float, high: float) -> float:
    if not value:
        return default
    try:
        return max(low, min(float(value), high))
    except ValueError:
        return default


def _parse_program(value: str | None) -> str:
    if not value or not value.strip():
        return DEFAULT_PROGRAM
    return value.strip()


@dataclass
class Config:
    """git-reader configuration.

    Attributes:
        program: Program prefixed to every invocation
        chunk_size: Bytes read per readiness notification
        term_timeout: Seconds between SIGTERM and SIGKILL when stopping
        poll_interval: Exit poll period when pidfds are unavailable
        log_debug: Debug logging to a temp file
        log_file: Log file path (set when log_debug is on)
    """

    program: str = DEFAULT_PROGRAM
    chunk_size: int = DEFAULT_CHUNK_SIZE
    term_timeout: float = DEFAULT_TERM_TIMEOUT
    poll_interval: float = DEFAULT_POLL_INTERVAL
    log_debug: bool = False
    log_file: str | None = None


def _generate_log_file_path() -> str:
    """Build a timestamped log file path under the system temp dir."""
    log_dir = Path(tempfile.gettempdir()) / "git-reader"
    log_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = log_dir / f"git_reader_debug_{timestamp}.log"

    return str(log_file.resolve())


def load_config() -> Config:
    """Load configuration from the environment."""
    log_debug = _parse_bool(os.environ.get("GIT_READER_LOG_DEBUG"), default=False)
    log_file = _generate_log_file_path() if log_debug else None

    return Config(
        program=_parse_program(os.environ.get("GIT_READER_PROGRAM")),
        chunk_size=_parse_int(
            os.environ.get("GIT_READER_CHUNK_SIZE"), DEFAULT_CHUNK_SIZE, 1, 65536
        ),
        term_timeout=_parse_float(
            os.environ.get("GIT_READER_TERM_TIMEOUT"), DEFAULT_TERM_TIMEOUT, 0.1, 60.0
        ),
        poll_interval=_parse_float(
            os.environ.get("GIT_READER_POLL_INTERVAL"), DEFAULT_POLL_INTERVAL, 0.001, 5.0
        ),
        log_debug=log_debug,
        log_file=log_file,
    )


_config: Config | None = None


def get_config() -> Config:
    """Return the global configuration, loading it on first use."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config() -> Config:
    """Reload the global configuration (used by tests)."""
    global _config
    _config = load_config()
    return _config
