"""Logger setup for the proxypal daemon.

All proxypal loggers are children of the "proxypal" logger, so configuring
that one logger routes every module's structured events:
- stderr handler: INFO+ with ConsoleFormatter
- file handler (optional): JSONL at <log_dir>/proxypal/system.jsonl

configure_logging() can be called again after a config change; handlers
are replaced rather than duplicated.
"""

from __future__ import annotations

__all__ = [
    "configure_logging",
    "get_log_dir",
    "get_system_log_path",
]

import logging
import os
import sys
from pathlib import Path

from proxypal.constants import APP_NAME
from proxypal.utils.logging.iso_formatter import ConsoleFormatter, ISO8601Formatter


def get_log_dir() -> Path:
    """Get platform-appropriate log directory following OS conventions.

    Platform conventions:
        - macOS: ~/Library/Logs/proxypal
        - Linux: $XDG_STATE_HOME/proxypal (~/.local/state/proxypal)
        - Windows: ~/AppData/Local/proxypal

    Returns:
        Path to the proxypal log directory (not created).
    """
    if sys.platform == "darwin":
        base = "~/Library/Logs"
    elif sys.platform == "win32":
        base = "~/AppData/Local"
    else:
        base = os.environ.get("XDG_STATE_HOME", "~/.local/state")
    return Path(base).expanduser() / APP_NAME


def get_system_log_path(log_dir: Path | None = None) -> Path:
    """Get full path to the daemon system log file."""
    return (log_dir or get_log_dir()) / "system.jsonl"


def _ensure_secure_log_directory(log_file: Path) -> None:
    """Create log directory with owner-only permissions.

    Raises:
        OSError: If directory creation fails.
    """
    log_file.parent.mkdir(parents=True, exist_ok=True)
    if sys.platform != "win32":
        try:
            log_file.parent.chmod(0o700)
        except OSError:
            pass  # Permission changes might fail on some systems


def configure_logging(
    *,
    debug: bool = False,
    log_to_file: bool = True,
    log_dir: Path | None = None,
) -> logging.Logger:
    """Configure the root proxypal logger.

    Args:
        debug: Lower the file handler (and logger) level to DEBUG.
        log_to_file: Add the JSONL file handler.
        log_dir: Override the log directory (tests, portable installs).

    Returns:
        The configured "proxypal" logger.
    """
    logger = logging.getLogger(APP_NAME)
    logger.setLevel(logging.DEBUG if debug else logging.INFO)
    logger.propagate = False

    # Close and remove existing handlers to avoid duplicates and resource leaks
    for handler in logger.handlers:
        handler.close()
    logger.handlers.clear()

    stderr_handler = logging.StreamHandler()
    stderr_handler.setLevel(logging.INFO)
    stderr_handler.setFormatter(ConsoleFormatter())
    logger.addHandler(stderr_handler)

    if not log_to_file:
        return logger

    log_path = get_system_log_path(log_dir)
    try:
        _ensure_secure_log_directory(log_path)
        file_handler = logging.FileHandler(log_path, mode="a", encoding="utf-8")
    except OSError as e:
        # stderr still works
        logger.warning(
            {
                "event": "file_logging_failed",
                "message": f"Failed to configure file logging: {e}",
                "error_type": type(e).__name__,
                "error_message": str(e),
                "details": {"log_path": str(log_path)},
            }
        )
        return logger

    file_handler.setLevel(logging.DEBUG if debug else logging.INFO)
    file_handler.setFormatter(ISO8601Formatter())
    logger.addHandler(file_handler)
    return logger
