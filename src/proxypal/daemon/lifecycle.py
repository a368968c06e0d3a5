"""PID file and socket management for the proxypal daemon.

Handles:
- PID file read/write/cleanup
- Socket staleness detection
- Daemon running/stopped queries

Paths default to the runtime directory and can be overridden (tests).
"""

from __future__ import annotations

__all__ = [
    "cleanup_stale_pid",
    "cleanup_stale_socket",
    "get_daemon_pid",
    "is_daemon_running",
    "is_socket_accepting",
    "log_event",
    "remove_pid_file",
    "stop_daemon",
    "write_pid_file",
]

import errno
import logging
import os
import signal
import socket
from pathlib import Path

from proxypal.constants import APP_NAME, PID_PATH, SOCKET_CONNECT_TIMEOUT_SECONDS, SOCKET_PATH
from proxypal.manager.models import SystemEvent

_logger = logging.getLogger(f"{APP_NAME}.daemon")


def log_event(level: int, event: SystemEvent) -> None:
    """Log a SystemEvent at the specified level.

    Serializes the event to a dict (excluding None values) and logs it.
    The ISO8601Formatter adds the timestamp during serialization.
    """
    _logger.log(level, event.model_dump(exclude_none=True))


def is_socket_accepting(socket_path: Path) -> bool:
    """Test if a Unix socket is accepting connections.

    Args:
        socket_path: Path to the Unix socket.

    Returns:
        True if socket accepts connection, False otherwise.
    """
    if not socket_path.exists():
        return False

    try:
        with socket.socket(socket.AF_UNIX) as test_sock:
            test_sock.settimeout(SOCKET_CONNECT_TIMEOUT_SECONDS)
            test_sock.connect(str(socket_path))
        return True
    except OSError:
        return False


def _read_pid_file(pid_path: Path = PID_PATH) -> int | None:
    """Read PID from PID file if it exists and process is running.

    Returns:
        PID if file exists and process is running, None otherwise.
    """
    if not pid_path.exists():
        return None

    try:
        pid = int(pid_path.read_text().strip())
        # Signal 0 = check existence
        os.kill(pid, 0)
        return pid
    except (ValueError, ProcessLookupError):
        return None
    except OSError as e:
        if e.errno == errno.ESRCH:
            return None
        raise


def get_daemon_pid(pid_path: Path = PID_PATH) -> int | None:
    """Get the PID of the running daemon, or None."""
    return _read_pid_file(pid_path)


def is_daemon_running(pid_path: Path = PID_PATH, socket_path: Path = SOCKET_PATH) -> bool:
    """Check if the daemon is running and accepting connections."""
    if _read_pid_file(pid_path) is None:
        return False
    return is_socket_accepting(socket_path)


def stop_daemon(pid_path: Path = PID_PATH) -> bool:
    """Send SIGTERM to the daemon.

    Returns:
        True if signal was sent, False if not running.
    """
    pid = _read_pid_file(pid_path)
    if pid is None:
        return False

    try:
        os.kill(pid, signal.SIGTERM)
        return True
    except OSError:
        return False


def cleanup_stale_socket(socket_path: Path = SOCKET_PATH) -> None:
    """Remove a stale socket file left by a crashed daemon.

    Raises:
        RuntimeError: If the socket is connectable (daemon already running).
    """
    if not socket_path.exists():
        return

    if is_socket_accepting(socket_path):
        raise RuntimeError(f"proxypal daemon is already running (socket: {socket_path})")

    socket_path.unlink(missing_ok=True)
    log_event(
        logging.INFO,
        SystemEvent(
            event="stale_socket_removed",
            message=f"Removed stale socket: {socket_path}",
        ),
    )


def cleanup_stale_pid(pid_path: Path = PID_PATH) -> None:
    """Remove a stale PID file.

    Raises:
        RuntimeError: If the recorded process is alive (daemon already running).
    """
    if not pid_path.exists():
        return

    pid = _read_pid_file(pid_path)
    if pid is not None:
        raise RuntimeError(f"proxypal daemon is already running (pid: {pid})")

    pid_path.unlink(missing_ok=True)
    log_event(
        logging.INFO,
        SystemEvent(
            event="stale_pid_removed",
            message=f"Removed stale PID file: {pid_path}",
        ),
    )


def write_pid_file(pid_path: Path = PID_PATH) -> None:
    """Write current process PID to PID file."""
    pid_path.write_text(str(os.getpid()))


def remove_pid_file(pid_path: Path = PID_PATH) -> None:
    """Remove PID file if it exists."""
    pid_path.unlink(missing_ok=True)
