"""API route modules.

Route organization:
- config: Configuration document (read, replace, path)
- status: Status snapshot and refresh
- processes: Start/stop/restart of the supervised processes
- providers: Provider connection test, system proxy detection
- oauth: Pending OAuth flows
"""

from . import (
    config,
    oauth,
    processes,
    providers,
    status,
)

__all__ = [
    "config",
    "oauth",
    "processes",
    "providers",
    "status",
]
