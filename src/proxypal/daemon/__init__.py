"""The proxypal daemon.

The daemon:
- Owns the control plane (configuration, status, supervised processes)
- Serves the control API on a Unix domain socket (api.sock)
- Refreshes provider and Copilot auth status every 30 seconds

Lifecycle:
- Started via `proxypal serve`
- Stopped via SIGTERM/SIGINT; supervised processes are stopped first
"""

from __future__ import annotations

from .lifecycle import get_daemon_pid, is_daemon_running, stop_daemon
from .server import run_daemon

__all__ = [
    "get_daemon_pid",
    "is_daemon_running",
    "run_daemon",
    "stop_daemon",
]
