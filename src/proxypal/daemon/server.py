"""Daemon orchestrator (run_daemon entry point).

Sets up the control plane, the API server on a Unix domain socket, the
background status poller, signal handlers, and graceful shutdown.
"""

from __future__ import annotations

__all__ = [
    "run_daemon",
    "status_poller",
]

import asyncio
import logging
import os
import signal
import socket
from pathlib import Path

import uvicorn

from proxypal.api import create_api_app
from proxypal.constants import (
    API_SERVER_SHUTDOWN_TIMEOUT_SECONDS,
    PID_PATH,
    SOCKET_PATH,
    STATUS_POLL_INTERVAL_SECONDS,
)
from proxypal.manager.control import ControlPlane
from proxypal.manager.models import SystemEvent
from proxypal.utils.logging.logger_setup import configure_logging, get_log_dir

from .lifecycle import (
    cleanup_stale_pid,
    cleanup_stale_socket,
    log_event,
    remove_pid_file,
    write_pid_file,
)

# Pending connections on the API socket
API_LISTEN_BACKLOG = 100


async def status_poller(
    control: ControlPlane,
    shutdown_event: asyncio.Event,
    interval: float = STATUS_POLL_INTERVAL_SECONDS,
) -> None:
    """Refresh auth status periodically until shutdown.

    Also discards expired OAuth flows. A failing refresh is logged and
    retried at the next tick.
    """
    while not shutdown_event.is_set():
        try:
            await asyncio.wait_for(shutdown_event.wait(), timeout=interval)
            return
        except asyncio.TimeoutError:
            pass

        control.oauth.purge_expired()
        try:
            await control.refresh_status()
        except Exception as e:  # noqa: BLE001 - the poller must outlive one bad tick
            log_event(
                logging.WARNING,
                SystemEvent(
                    event="status_poll_failed",
                    message=f"Status refresh failed: {e}",
                    error_type=type(e).__name__,
                    error_message=str(e),
                ),
            )


def _bind_api_socket(socket_path: Path) -> socket.socket:
    sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    sock.bind(str(socket_path))
    # Same user only: file permissions are the API's authentication
    os.chmod(socket_path, 0o600)
    sock.listen(API_LISTEN_BACKLOG)
    sock.setblocking(False)
    return sock


async def run_daemon(
    control: ControlPlane | None = None,
    *,
    socket_path: Path = SOCKET_PATH,
    pid_path: Path = PID_PATH,
    poll_interval: float = STATUS_POLL_INTERVAL_SECONDS,
    log_dir: Path | None = None,
) -> None:
    """Run the daemon until SIGTERM/SIGINT.

    Args:
        control: Control plane (constructed with defaults when omitted).
        socket_path: API socket location.
        pid_path: PID file location.
        poll_interval: Seconds between status refreshes.
        log_dir: Where system.jsonl and child output logs go (platform default).

    Raises:
        RuntimeError: If another daemon is already running.
    """
    control = control or ControlPlane()

    # Load first: the document decides where and how verbosely to log
    config = await asyncio.to_thread(control.store.load)
    configure_logging(debug=config.debug, log_to_file=config.logging_to_file, log_dir=log_dir)
    if config.logging_to_file:
        control.supervisor.log_dir = log_dir or get_log_dir()

    # Suppress uvicorn's logging (we use our own)
    for logger_name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        logging.getLogger(logger_name).setLevel(logging.CRITICAL)

    socket_path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
    cleanup_stale_pid(pid_path)
    cleanup_stale_socket(socket_path)
    write_pid_file(pid_path)

    log_event(
        logging.INFO,
        SystemEvent(
            event="daemon_starting",
            message=f"proxypal daemon starting: socket={socket_path}, pid={os.getpid()}",
            pid=os.getpid(),
            details={"socket_path": str(socket_path), "config_path": str(control.store.path)},
        ),
    )

    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    def signal_handler(signum: int) -> None:
        log_event(
            logging.INFO,
            SystemEvent(
                event="shutdown_signal_received",
                message=f"Received signal {signum}, initiating shutdown",
                details={"signal": signum},
            ),
        )
        shutdown_event.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, signal_handler, sig)

    try:
        api_socket = _bind_api_socket(socket_path)
    except OSError:
        remove_pid_file(pid_path)
        raise

    api_config = uvicorn.Config(
        create_api_app(control),
        fd=api_socket.fileno(),
        log_config=None,
        lifespan="off",
        ws="none",
    )
    api_server = uvicorn.Server(api_config)
    server_task = asyncio.create_task(api_server._serve())

    poller_task: asyncio.Task[None] | None = None
    try:
        await control.startup(reload=False)
        poller_task = asyncio.create_task(status_poller(control, shutdown_event, poll_interval))

        log_event(
            logging.INFO,
            SystemEvent(
                event="daemon_started",
                message="proxypal daemon started",
            ),
        )
        await shutdown_event.wait()
    finally:
        log_event(
            logging.INFO,
            SystemEvent(
                event="daemon_shutting_down",
                message="proxypal daemon shutting down",
            ),
        )

        if poller_task is not None:
            poller_task.cancel()
            try:
                await poller_task
            except asyncio.CancelledError:
                pass

        await control.shutdown()

        api_server.should_exit = True
        try:
            await asyncio.wait_for(server_task, timeout=API_SERVER_SHUTDOWN_TIMEOUT_SECONDS)
        except asyncio.TimeoutError:
            log_event(
                logging.WARNING,
                SystemEvent(
                    event="shutdown_timeout",
                    message="API server shutdown timed out, cancelling",
                ),
            )
            server_task.cancel()
        except asyncio.CancelledError:
            pass

        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.remove_signal_handler(sig)

        try:
            api_socket.close()
        except OSError:
            pass  # Non-critical cleanup

        socket_path.unlink(missing_ok=True)
        remove_pid_file(pid_path)

        log_event(
            logging.INFO,
            SystemEvent(
                event="daemon_stopped",
                message="proxypal daemon shutdown complete",
            ),
        )
