"""Custom exceptions for proxypal.

Exceptions are organized by the component that raises them:

Configuration:
    - PersistenceError: Configuration could not be written (or read strictly)

Process supervision:
    - SpawnError: Supervised process could not be launched
    - AlreadyRunningError: start() while the process is not stopped
    - NotRunningError: An operation required a running process
    - StopTimeoutError: Exit was not confirmed even after force-termination

Reconciliation:
    - ReconciliationPartialFailure: Config saved, dependent restart failed

Authentication:
    - OAuthFlowError: Callback did not match a live pending flow

Usage:
    from proxypal.exceptions import SpawnError, AlreadyRunningError
"""

from __future__ import annotations

__all__ = [
    "AlreadyRunningError",
    "NotRunningError",
    "OAuthFlowError",
    "PersistenceError",
    "ProxyPalError",
    "ReconciliationPartialFailure",
    "SpawnError",
    "StopTimeoutError",
]

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from proxypal.manager.models import ProcessKind, StatusSnapshot


class ProxyPalError(Exception):
    """Base class for all proxypal errors."""


class PersistenceError(ProxyPalError):
    """Raised when the configuration document cannot be persisted.

    The in-memory document is never updated when this is raised.
    """


class SpawnError(ProxyPalError):
    """Raised when a supervised process cannot be launched.

    Covers a missing executable, a port already bound, and a child that
    exits during the startup probe. The process remains stopped.

    Attributes:
        kind: The process kind that failed to start.
    """

    def __init__(self, kind: "ProcessKind", message: str) -> None:
        self.kind = kind
        super().__init__(message)


class AlreadyRunningError(ProxyPalError):
    """Raised when start() is called on a process that is not stopped."""

    def __init__(self, kind: "ProcessKind") -> None:
        self.kind = kind
        super().__init__(f"{kind.value} is already running")


class NotRunningError(ProxyPalError):
    """Raised when an operation requires a running process."""

    def __init__(self, kind: "ProcessKind") -> None:
        self.kind = kind
        super().__init__(f"{kind.value} is not running")


class StopTimeoutError(ProxyPalError):
    """Raised when a process did not confirm exit after force-termination.

    A graceful-stop timeout alone is not an error: the process is killed
    and stop() still succeeds. This is only raised if the kill itself
    could not be confirmed.
    """

    def __init__(self, kind: "ProcessKind", pid: int | None) -> None:
        self.kind = kind
        self.pid = pid
        super().__init__(f"{kind.value} (pid {pid}) did not exit after SIGKILL")


class ReconciliationPartialFailure(ProxyPalError):
    """Configuration was persisted but restarting a dependent process failed.

    The saved document is the new desired state; callers retry the restart
    of the listed kinds without re-submitting configuration.

    Attributes:
        failed: Mapping of process kind to failure reason.
        snapshot: Status snapshot taken after the failed restart.
    """

    def __init__(
        self,
        failed: "dict[ProcessKind, str]",
        snapshot: "StatusSnapshot",
    ) -> None:
        self.failed = failed
        self.snapshot = snapshot
        kinds = ", ".join(sorted(kind.value for kind in failed))
        super().__init__(f"Configuration saved but restart failed for: {kinds}")


class OAuthFlowError(ProxyPalError):
    """Raised when an OAuth callback has no matching live pending flow."""
