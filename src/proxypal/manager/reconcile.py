"""Reconciliation of configuration changes into running processes.

Every configuration write goes through ReconciliationController:

1. Persist the new document (PersistenceError -> nothing else happens).
2. Commit it as the in-memory document.
3. Restart (or stop) exactly the processes the change affects.

Step 3 failing does not undo steps 1-2: the saved document is the desired
state. ReconciliationPartialFailure names the kinds whose restart failed so
the caller can retry them without re-submitting configuration.

Which processes are affected is a pure function of (old, new):
- autoStart, launchAtLogin, closeToTray, configVersion: no process
- copilot block: secondary only
- anything else: primary only
"""

from __future__ import annotations

__all__ = [
    "ReconcileAction",
    "ReconcileResult",
    "ReconciliationController",
    "affected_processes",
    "plan_reconciliation",
]

import asyncio
import functools
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum

from proxypal.config import AppConfig
from proxypal.constants import APP_NAME
from proxypal.exceptions import ProxyPalError, ReconciliationPartialFailure
from proxypal.manager.config_store import ConfigStore
from proxypal.manager.launch import ProcessLauncher
from proxypal.manager.models import ProcessKind, StatusSnapshot
from proxypal.manager.status import StatusRegistry
from proxypal.manager.supervisor import ProcessSupervisor

_logger = logging.getLogger(f"{APP_NAME}.manager.reconcile")

# Desktop behaviour and bookkeeping: never require a restart
_NO_PROCESS_FIELDS = frozenset({"auto_start", "launch_at_login", "close_to_tray", "config_version"})

_SECONDARY_FIELDS = frozenset({"copilot"})


class ReconcileAction(str, Enum):
    RESTART = "restart"
    STOP = "stop"


@dataclass(frozen=True)
class ReconcileResult:
    """Outcome of a fully successful reconciliation.

    Attributes:
        config: The document now persisted and committed.
        snapshot: Status after all actions completed.
        actions: (kind, action) pairs that were performed, in order.
    """

    config: AppConfig
    snapshot: StatusSnapshot
    actions: tuple[tuple[ProcessKind, ReconcileAction], ...] = ()


def _changed_fields(old: AppConfig, new: AppConfig) -> set[str]:
    # Declared fields only: unknown keys are carried, never rendered
    return {name for name in AppConfig.model_fields if getattr(old, name) != getattr(new, name)}


def affected_processes(old: AppConfig, new: AppConfig) -> frozenset[ProcessKind]:
    """Determine which process kinds a configuration change affects.

    Args:
        old: Document before the change.
        new: Document after the change.

    Returns:
        Affected kinds (empty when nothing process-relevant changed).
    """
    changed = _changed_fields(old, new) - _NO_PROCESS_FIELDS
    affected: set[ProcessKind] = set()
    if changed & _SECONDARY_FIELDS:
        affected.add(ProcessKind.SECONDARY)
    if changed - _SECONDARY_FIELDS:
        affected.add(ProcessKind.PRIMARY)
    return frozenset(affected)


def plan_reconciliation(
    old: AppConfig,
    new: AppConfig,
    running: Mapping[ProcessKind, bool],
) -> tuple[tuple[ProcessKind, ReconcileAction], ...]:
    """Decide what to do for each affected kind.

    - affected and running: restart with the new document
    - secondary affected and now disabled: stop (no-op if not running)
    - not running: nothing; the next start uses the new document

    Args:
        old: Document before the change.
        new: Document after the change.
        running: Whether each kind is currently running.

    Returns:
        Ordered (kind, action) pairs; primary before secondary.
    """
    affected = affected_processes(old, new)
    plan: list[tuple[ProcessKind, ReconcileAction]] = []
    for kind in ProcessKind:
        if kind not in affected or not running.get(kind, False):
            continue
        if kind is ProcessKind.SECONDARY and not new.copilot.enabled:
            plan.append((kind, ReconcileAction.STOP))
        else:
            plan.append((kind, ReconcileAction.RESTART))
    return tuple(plan)


class ReconciliationController:
    """Sole write path for the configuration document."""

    def __init__(
        self,
        store: ConfigStore,
        supervisor: ProcessSupervisor,
        registry: StatusRegistry,
        launcher: ProcessLauncher,
    ) -> None:
        self._store = store
        self._supervisor = supervisor
        self._registry = registry
        self._launcher = launcher
        self._write_lock = asyncio.Lock()

    async def update(self, new: AppConfig) -> ReconcileResult:
        """Replace the current document with `new` and reconcile.

        The current document is read under the write lock, so concurrent
        updates are applied one after another against each other's result.

        Raises:
            PersistenceError: Save failed; nothing changed.
            ReconciliationPartialFailure: Saved, but a restart failed.
        """
        async with self._write_lock:
            old = self._store.get()
            return await self._apply_locked(old, new)

    async def apply(self, old: AppConfig, new: AppConfig) -> ReconcileResult:
        """Persist `new` and reconcile processes against the (old, new) change.

        Raises:
            PersistenceError: Save failed; nothing changed.
            ReconciliationPartialFailure: Saved, but a restart failed.
        """
        async with self._write_lock:
            return await self._apply_locked(old, new)

    async def _apply_locked(self, old: AppConfig, new: AppConfig) -> ReconcileResult:
        new = new.model_copy(deep=True)

        # Write-then-commit: a failed save leaves the in-memory document intact
        await asyncio.to_thread(self._store.save, new)
        self._store.commit(new)
        self._registry.seed_ports({ProcessKind.PRIMARY: new.port, ProcessKind.SECONDARY: new.copilot.port})

        running = {kind: self._supervisor.is_running(kind) for kind in ProcessKind}
        plan = plan_reconciliation(old, new, running)

        _logger.info(
            {
                "event": "config_reconciling",
                "message": f"Configuration saved, {len(plan)} process action(s) required",
                "details": {
                    "changed_fields": sorted(_changed_fields(old, new)),
                    "actions": [[k.value, a.value] for k, a in plan],
                },
            }
        )

        failed: dict[ProcessKind, str] = {}
        for kind, action in plan:
            try:
                if action is ReconcileAction.RESTART:
                    await self._supervisor.restart(kind, functools.partial(self._launcher.prepare, kind, new))
                else:
                    await self._supervisor.stop(kind)
            except ProxyPalError as e:
                failed[kind] = str(e)
                _logger.error(
                    {
                        "event": "reconcile_action_failed",
                        "message": f"Failed to {action.value} {kind.value} after config change: {e}",
                        "error_type": type(e).__name__,
                        "error_message": str(e),
                        "details": {"process_kind": kind.value, "action": action.value},
                    }
                )

        snapshot = self._registry.snapshot()
        if failed:
            raise ReconciliationPartialFailure(failed, snapshot)
        return ReconcileResult(config=new, snapshot=snapshot, actions=plan)
