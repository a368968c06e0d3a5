"""Control plane for the supervised proxy processes.

- config_store.py: Persisted configuration document (atomic writes)
- migration.py: Schema upgrades applied on load and save
- status.py: Status registry (per-key slots, consistent snapshots)
- supervisor.py: Spawn/stop/watch child processes, one state machine per kind
- launch.py: Build launch specs (and the proxy's runtime config) from AppConfig
- reconcile.py: Save a new document and restart exactly the affected processes
- oauth.py: Pending OAuth flows with expiry
- upstream.py: HTTP helpers (JSON fetch, provider connection test)
- system_proxy.py: Detect the OS/environment HTTP proxy
- control.py: ControlPlane facade used by the API and daemon

Architecture:
    - The daemon owns one ControlPlane
    - API routes call ControlPlane operations; they never touch processes directly
    - Only the supervisor mutates process status; only the controller saves config
"""

from .control import OAUTH_AUTH_URL_PATHS, ControlPlane
from .models import (
    ProcessCondition,
    ProcessKind,
    ProcessStatus,
    ProviderAuthStatus,
    ProviderTestRequest,
    ProviderTestResult,
    StatusSnapshot,
)

__all__ = [
    "OAUTH_AUTH_URL_PATHS",
    "ControlPlane",
    "ProcessCondition",
    "ProcessKind",
    "ProcessStatus",
    "ProviderAuthStatus",
    "ProviderTestRequest",
    "ProviderTestResult",
    "StatusSnapshot",
]
