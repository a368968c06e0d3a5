"""Tests for configuration reconciliation.

The pure planning functions are tested directly; ReconciliationController
is tested with real child processes built by a fake launcher.
"""

from __future__ import annotations

import asyncio
import json
import sys
from collections.abc import AsyncIterator
from pathlib import Path

import pytest

from proxypal.config import AppConfig
from proxypal.exceptions import PersistenceError, ReconciliationPartialFailure
from proxypal.manager.config_store import ConfigStore
from proxypal.manager.models import ProcessCondition, ProcessKind
from proxypal.manager.reconcile import (
    ReconcileAction,
    ReconciliationController,
    affected_processes,
    plan_reconciliation,
)
from proxypal.manager.status import StatusRegistry
from proxypal.manager.supervisor import ProcessSupervisor

PRIMARY = ProcessKind.PRIMARY
SECONDARY = ProcessKind.SECONDARY
BOTH_RUNNING = {PRIMARY: True, SECONDARY: True}


class TestAffectedProcesses:
    """Tests for affected_processes()."""

    def test_no_change(self):
        assert affected_processes(AppConfig(), AppConfig()) == frozenset()

    def test_port_change_affects_primary(self):
        assert affected_processes(AppConfig(), AppConfig(port=8765)) == {PRIMARY}

    def test_credentials_affect_primary(self):
        new = AppConfig.model_validate({"claudeApiKeys": [{"apiKey": "sk"}]})

        assert affected_processes(AppConfig(), new) == {PRIMARY}

    def test_copilot_change_affects_secondary_only(self):
        new = AppConfig.model_validate({"copilot": {"port": 5000}})

        assert affected_processes(AppConfig(), new) == {SECONDARY}

    def test_both(self):
        new = AppConfig.model_validate({"port": 8765, "copilot": {"accountType": "business"}})

        assert affected_processes(AppConfig(), new) == {PRIMARY, SECONDARY}

    @pytest.mark.parametrize("field", ["auto_start", "launch_at_login", "close_to_tray"])
    def test_desktop_toggles_affect_nothing(self, field: str):
        old = AppConfig()
        new = old.model_copy(update={field: not getattr(old, field)})

        assert affected_processes(old, new) == frozenset()

    def test_same_document_without_provider_ids_affects_nothing(self):
        document = {"ampOpenaiProviders": [{"name": "p", "baseUrl": "http://x", "apiKey": "k"}]}

        old, new = AppConfig.model_validate(document), AppConfig.model_validate(document)

        assert affected_processes(old, new) == frozenset()

    def test_unknown_keys_affect_nothing(self):
        new = AppConfig.model_validate({"futureToggle": True})

        assert affected_processes(AppConfig(), new) == frozenset()


class TestPlanReconciliation:
    """Tests for plan_reconciliation()."""

    def test_restarts_affected_running_process(self):
        plan = plan_reconciliation(AppConfig(), AppConfig(port=8765), BOTH_RUNNING)

        assert plan == ((PRIMARY, ReconcileAction.RESTART),)

    def test_skips_stopped_process(self):
        plan = plan_reconciliation(AppConfig(), AppConfig(port=8765), {PRIMARY: False, SECONDARY: True})

        assert plan == ()

    def test_disabling_copilot_stops_it(self):
        old = AppConfig.model_validate({"copilot": {"enabled": True}})
        new = AppConfig.model_validate({"copilot": {"enabled": False}})

        assert plan_reconciliation(old, new, BOTH_RUNNING) == ((SECONDARY, ReconcileAction.STOP),)

    def test_primary_is_planned_first(self):
        new = AppConfig.model_validate({"port": 8765, "copilot": {"enabled": True, "port": 5000}})

        plan = plan_reconciliation(AppConfig(), new, BOTH_RUNNING)

        assert [kind for kind, _ in plan] == [PRIMARY, SECONDARY]

    def test_is_deterministic(self):
        new = AppConfig.model_validate({"port": 8765, "copilot": {"port": 5000}})

        first = plan_reconciliation(AppConfig(), new, BOTH_RUNNING)
        second = plan_reconciliation(AppConfig(), new, BOTH_RUNNING)

        assert first == second


# =============================================================================
# ReconciliationController
# =============================================================================


@pytest.fixture
def registry() -> StatusRegistry:
    return StatusRegistry()


@pytest.fixture
def store(tmp_path: Path) -> ConfigStore:
    return ConfigStore(tmp_path / "config.json")


@pytest.fixture
async def supervisor(registry: StatusRegistry) -> AsyncIterator[ProcessSupervisor]:
    sup = ProcessSupervisor(registry, stop_grace_seconds=2.0, startup_probe_seconds=0.2)
    yield sup
    await sup.stop_all()


@pytest.fixture
def controller(store, supervisor, registry, fake_launcher) -> ReconciliationController:
    return ReconciliationController(store, supervisor, registry, fake_launcher)


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX process groups")
class TestReconciliationController:
    """Tests for ReconciliationController.update()."""

    async def _start_primary(self, store, supervisor, fake_launcher, port: int) -> None:
        config = AppConfig(port=port)
        store.commit(config)
        await supervisor.start(PRIMARY, fake_launcher.build(PRIMARY, config))

    async def test_port_change_restarts_primary_on_new_port(
        self, controller, store, supervisor, registry, fake_launcher, free_port
    ):
        """Changing the port moves the running proxy; the old process is gone."""
        old_port, new_port = free_port(), free_port()
        await self._start_primary(store, supervisor, fake_launcher, old_port)
        old_pid = registry.read_process(PRIMARY).pid

        result = await controller.update(store.get().model_copy(update={"port": new_port}))

        status = registry.read_process(PRIMARY)
        assert result.actions == ((PRIMARY, ReconcileAction.RESTART),)
        assert status.condition is ProcessCondition.RUNNING
        assert status.port == new_port
        assert status.pid != old_pid
        assert result.snapshot.proxy.port == new_port
        assert json.loads(store.path.read_text(encoding="utf-8"))["port"] == new_port
        assert store.get().port == new_port

    async def test_toggle_only_change_restarts_nothing(
        self, controller, store, supervisor, registry, fake_launcher, free_port
    ):
        await self._start_primary(store, supervisor, fake_launcher, free_port())
        pid = registry.read_process(PRIMARY).pid

        result = await controller.update(store.get().model_copy(update={"close_to_tray": False}))

        assert result.actions == ()
        assert registry.read_process(PRIMARY).pid == pid

    async def test_stopped_process_is_not_started(self, controller, store, registry):
        result = await controller.update(AppConfig(port=8765))

        assert result.actions == ()
        assert registry.read_process(PRIMARY).condition is ProcessCondition.NOT_STARTED
        assert store.get().port == 8765

    async def test_restart_failure_is_partial_failure(
        self, controller, store, supervisor, registry, fake_launcher, free_port, occupy_port
    ):
        """Saved, but the restart fails: the new document stays, the proxy is stopped."""
        old_port, new_port = free_port(), free_port()
        await self._start_primary(store, supervisor, fake_launcher, old_port)
        occupy_port(new_port)

        with pytest.raises(ReconciliationPartialFailure) as exc_info:
            await controller.update(store.get().model_copy(update={"port": new_port}))

        assert set(exc_info.value.failed) == {PRIMARY}
        assert f"Port {new_port} is already in use" in exc_info.value.failed[PRIMARY]
        assert exc_info.value.snapshot.proxy.condition is ProcessCondition.STOPPED
        assert store.get().port == new_port
        assert json.loads(store.path.read_text(encoding="utf-8"))["port"] == new_port

    async def test_save_failure_changes_nothing(self, supervisor, registry, fake_launcher, tmp_path, free_port):
        """A failed save leaves the document and the running process untouched."""
        blocker = tmp_path / "blocker"
        blocker.write_text("file", encoding="utf-8")
        store = ConfigStore(blocker / "config.json")
        controller = ReconciliationController(store, supervisor, registry, fake_launcher)
        old_port = free_port()
        await self._start_primary(store, supervisor, fake_launcher, old_port)
        pid = registry.read_process(PRIMARY).pid

        with pytest.raises(PersistenceError):
            await controller.update(AppConfig(port=free_port()))

        assert store.get().port == old_port
        assert registry.read_process(PRIMARY).pid == pid

    async def test_disabling_copilot_stops_it(self, controller, store, supervisor, registry, fake_launcher, free_port):
        config = AppConfig.model_validate({"copilot": {"enabled": True, "port": free_port()}})
        store.commit(config)
        await supervisor.start(SECONDARY, fake_launcher.build(SECONDARY, config))

        disabled = config.model_copy(update={"copilot": config.copilot.model_copy(update={"enabled": False})})
        result = await controller.update(disabled)

        assert result.actions == ((SECONDARY, ReconcileAction.STOP),)
        assert registry.read_process(SECONDARY).condition is ProcessCondition.STOPPED

    async def test_concurrent_updates_are_serialized(self, controller, store):
        """The last submitted document wins and each save sees its predecessor."""
        await asyncio.gather(
            controller.update(AppConfig(port=9001)),
            controller.update(AppConfig(port=9002)),
        )

        assert store.get().port == 9002
        assert json.loads(store.path.read_text(encoding="utf-8"))["port"] == 9002
