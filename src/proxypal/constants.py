"""Shared constants for proxypal.

Grouped by concern:
- Application identity
- Supervised process defaults (ports, binaries)
- Timeouts for process lifecycle and HTTP calls
- Runtime directory (socket, PID file)
"""

from __future__ import annotations

__all__ = [
    "APP_NAME",
    "CURRENT_CONFIG_VERSION",
    "LEGACY_CONFIG_VERSION",
    "DEFAULT_PROXY_PORT",
    "DEFAULT_COPILOT_PORT",
    "DEFAULT_PROXY_API_KEY",
    "DEFAULT_PROXY_BINARY",
    "DEFAULT_COPILOT_COMMAND",
    "PROXY_BINARY_ENV",
    "COPILOT_COMMAND_ENV",
    "KNOWN_PROVIDERS",
    "DEFAULT_STOP_GRACE_SECONDS",
    "FORCE_KILL_WAIT_SECONDS",
    "DEFAULT_STARTUP_PROBE_SECONDS",
    "DEFAULT_HTTP_TIMEOUT_SECONDS",
    "PROVIDER_TEST_TIMEOUT_SECONDS",
    "STATUS_POLL_INTERVAL_SECONDS",
    "OAUTH_PENDING_TTL_SECONDS",
    "SOCKET_CONNECT_TIMEOUT_SECONDS",
    "API_SERVER_SHUTDOWN_TIMEOUT_SECONDS",
    "RUNTIME_DIR",
    "SOCKET_PATH",
    "PID_PATH",
]

from pathlib import Path

from platformdirs import user_runtime_dir

APP_NAME: str = "proxypal"

# ============================================================================
# Configuration Schema
# ============================================================================

# Documents written before schema versioning carry no version (treated as 1)
LEGACY_CONFIG_VERSION: int = 1

# Bumped whenever migration.py gains a step
CURRENT_CONFIG_VERSION: int = 2

# ============================================================================
# Supervised Processes
# ============================================================================

DEFAULT_PROXY_PORT: int = 8317
DEFAULT_COPILOT_PORT: int = 4141

# Client-facing key the primary proxy accepts from local tools
DEFAULT_PROXY_API_KEY: str = "proxypal-local"

# Executables (overridable via environment for packaged installs)
DEFAULT_PROXY_BINARY: str = "cli-proxy-api"
DEFAULT_COPILOT_COMMAND: str = "npx"
PROXY_BINARY_ENV: str = "PROXYPAL_PROXY_BINARY"
COPILOT_COMMAND_ENV: str = "PROXYPAL_COPILOT_COMMAND"

# Providers reported by the primary proxy's auth-files endpoint
KNOWN_PROVIDERS: tuple[str, ...] = (
    "claude",
    "openai",
    "gemini",
    "qwen",
    "iflow",
    "vertex",
    "antigravity",
)

# ============================================================================
# Timeouts
# ============================================================================

# Graceful stop: SIGTERM, then SIGKILL once this elapses
DEFAULT_STOP_GRACE_SECONDS: float = 5.0

# Upper bound on waiting for exit after SIGKILL
FORCE_KILL_WAIT_SECONDS: float = 5.0

# A child that exits within this window is reported as a failed start
DEFAULT_STARTUP_PROBE_SECONDS: float = 0.5

DEFAULT_HTTP_TIMEOUT_SECONDS: float = 10.0

# Connection test against a provider's /models endpoint
PROVIDER_TEST_TIMEOUT_SECONDS: float = 15.0

# Background refresh of auth counts and copilot authentication
STATUS_POLL_INTERVAL_SECONDS: float = 30.0

# Abandoned OAuth flows are discarded after this long
OAUTH_PENDING_TTL_SECONDS: float = 600.0

SOCKET_CONNECT_TIMEOUT_SECONDS: float = 1.0

API_SERVER_SHUTDOWN_TIMEOUT_SECONDS: float = 5.0

# ============================================================================
# Runtime Directory (Unix Domain Socket)
# ============================================================================

# Platform-specific:
#   - macOS: ~/Library/Caches/TemporaryItems/proxypal/
#   - Linux: $XDG_RUNTIME_DIR/proxypal/ (auto-cleaned on logout)
RUNTIME_DIR: Path = Path(user_runtime_dir(APP_NAME))

# CLI connects via UDS; OS file permissions provide authentication
SOCKET_PATH: Path = RUNTIME_DIR / "api.sock"
PID_PATH: Path = RUNTIME_DIR / "daemon.pid"
