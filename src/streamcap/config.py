"""Environment variable configuration.

Environment variables:
    STREAMCAP_READ_SIZE: Maximum bytes per pipe read
        - default 3072, clamped to 1..1048576

    STREAMCAP_KILL_TIMEOUT: Seconds a timed-out wait keeps waiting for the
        killed child to be reaped
        - default 1.0, clamped to 0.1..30

    STREAMCAP_NEW_SESSION: Start children in their own process group
        - true/1/yes/on = yes (default)
        - false/0/no/off = share the parent's group

    STREAMCAP_LOG_DEBUG: Debug logging for the command line tool
        - true/1/yes/on = DEBUG level, written to a file in the temp dir
        - false/0/no/off = INFO level on stderr (default)
"""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

__all__ = ["Config", "get_config", "load_config", "reload_config"]

DEFAULT_READ_SIZE = 3072
MAX_READ_SIZE = 1024 * 1024
DEFAULT_KILL_TIMEOUT = 1.0


def _parse_bool(value: str | None, default: bool = False) -> bool:
    """Parse a boolean environment variable."""
    if value is None or not value.strip():
        return default
    return value.strip().lower() in ("true", "1", "yes", "on")


def _parse_read_size(value: str | None) -> int:
    if not value:
        return DEFAULT_READ_SIZE
    try:
        size = int(value)
    except ValueError:
        return DEFAULT_READ_SIZE
    return max(1, min(size, MAX_READ_SIZE))


def _parse_kill_timeout(value: str | None) -> float:
    if not value:
        return DEFAULT_KILL_TIMEOUT
    try:
        timeout = float(value)
    except ValueError:
        return DEFAULT_KILL_TIMEOUT
    return max(0.1, min(timeout, 30.0))


def _generate_log_file_path() -> str:
    """Build a timestamped log file path under the temp directory."""
    log_dir = Path(tempfile.gettempdir()) / "streamcap"
    log_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = log_dir / f"streamcap_debug_{timestamp}.log"

    return str(log_file.resolve())


@dataclass
class Config:
    """streamcap settings.

    Attributes:
        read_size: Maximum bytes per pipe read
        kill_timeout: Seconds to wait for a killed child to be reaped
        new_session: Start children in their own process group
        log_debug: Debug logging to a file
        log_file: Log file path (set when log_debug is on)
    """

    read_size: int = DEFAULT_READ_SIZE
    kill_timeout: float = DEFAULT_KILL_TIMEOUT
    new_session: bool = True
    log_debug: bool = False
    log_file: str | None = None

    def __repr__(self) -> str:
        return (
            f"Config(read_size={self.read_size}, "
            f"kill_timeout={self.kill_timeout}, "
            f"new_session={self.new_session}, "
            f"log_debug={self.log_debug}, "
            f"log_file={self.log_file})"
        )


def load_config() -> Config:
    """Load configuration from the environment."""
    log_debug = _parse_bool(os.environ.get("STREAMCAP_LOG_DEBUG"), default=False)
    log_file = _generate_log_file_path() if log_debug else None

    return Config(
        read_size=_parse_read_size(os.environ.get("STREAMCAP_READ_SIZE")),
        kill_timeout=_parse_kill_timeout(os.environ.get("STREAMCAP_KILL_TIMEOUT")),
        new_session=_parse_bool(os.environ.get("STREAMCAP_NEW_SESSION"), default=True),
        log_debug=log_debug,
        log_file=log_file,
    )


# Loaded on first use
_config: Config | None = None


def get_config() -> Config:
    """Return the process-wide configuration."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config() -> Config:
    """Re-read the environment (used by tests)."""
    global _config
    _config = load_config()
    return _config
