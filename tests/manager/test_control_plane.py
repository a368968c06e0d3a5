"""Tests for the ControlPlane facade.

Collaborators are real except the launcher (sleeping Python children)
and the HTTP fetcher (canned responses).
"""

from __future__ import annotations

import dataclasses
import json
import os
import signal
import sys
from collections.abc import AsyncIterator
from pathlib import Path
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from proxypal.config import AppConfig
from proxypal.exceptions import (
    AlreadyRunningError,
    NotRunningError,
    OAuthFlowError,
    ReconciliationPartialFailure,
    StopTimeoutError,
)
from proxypal.manager.config_store import ConfigStore
from proxypal.manager.control import ControlPlane
from proxypal.manager.launch import ProcessLauncher
from proxypal.manager.models import ProcessCondition, ProcessKind, ProviderTestRequest, ProviderTestResult
from proxypal.manager.oauth import PendingAuthStore
from proxypal.manager.status import StatusRegistry
from proxypal.manager.supervisor import LaunchSpec, ProcessSupervisor

pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="POSIX process groups")

PRIMARY = ProcessKind.PRIMARY
SECONDARY = ProcessKind.SECONDARY


class SleepingProxyLauncher(ProcessLauncher):
    """Renders the real runtime config but launches a sleeping Python child."""

    def build(self, kind: ProcessKind, config: AppConfig) -> LaunchSpec:
        spec = super().build(kind, config)
        return dataclasses.replace(spec, command=sys.executable, args=("-c", "import time; time.sleep(60)"))


@pytest.fixture
def config_path(tmp_path: Path) -> Path:
    return tmp_path / "config.json"


@pytest.fixture
async def control(config_path, fake_launcher, fake_fetch) -> AsyncIterator[ControlPlane]:
    registry = StatusRegistry()

    async def provider_test(request: ProviderTestRequest) -> ProviderTestResult:
        return ProviderTestResult(success=True, message=f"probed {request.base_url}", latency_ms=1)

    plane = ControlPlane(
        store=ConfigStore(config_path),
        registry=registry,
        supervisor=ProcessSupervisor(registry, fetch=fake_fetch, stop_grace_seconds=2.0, startup_probe_seconds=0.2),
        launcher=fake_launcher,
        oauth=PendingAuthStore(),
        fetch=fake_fetch,
        provider_test=provider_test,
        proxy_detector=lambda: "http://127.0.0.1:7890",
    )
    yield plane
    await plane.shutdown()


def _write_config(path: Path, **fields) -> None:
    path.write_text(json.dumps(AppConfig(**fields).to_document()), encoding="utf-8")


class TestStartup:
    async def test_auto_starts_primary(self, control, config_path, free_port):
        port = free_port()
        _write_config(config_path, port=port)

        snapshot = await control.startup()

        assert snapshot.proxy.condition is ProcessCondition.RUNNING
        assert snapshot.proxy.port == port
        assert snapshot.copilot.condition is ProcessCondition.NOT_STARTED

    async def test_auto_start_disabled(self, control, config_path, free_port):
        _write_config(config_path, port=free_port(), auto_start=False)

        snapshot = await control.startup()

        assert snapshot.proxy.condition is ProcessCondition.NOT_STARTED

    async def test_not_started_status_reports_configured_ports(self, control, config_path):
        config = AppConfig.model_validate({"port": 8765, "autoStart": False, "copilot": {"port": 5000}})
        config_path.write_text(json.dumps(config.to_document()), encoding="utf-8")

        snapshot = await control.startup()

        assert snapshot.proxy.condition is ProcessCondition.NOT_STARTED
        assert snapshot.proxy.port == 8765
        assert snapshot.proxy.endpoint == "http://localhost:8765/v1"
        assert snapshot.copilot.port == 5000

    async def test_starts_enabled_copilot(self, control, config_path, free_port):
        config = AppConfig.model_validate(
            {"port": free_port(), "autoStart": False, "copilot": {"enabled": True, "port": free_port()}}
        )
        config_path.write_text(json.dumps(config.to_document()), encoding="utf-8")

        snapshot = await control.startup()

        assert snapshot.copilot.condition is ProcessCondition.RUNNING

    async def test_start_failure_does_not_abort_startup(self, control, config_path, free_port, occupy_port):
        """A bound port is recorded in status; startup still returns."""
        port = free_port()
        occupy_port(port)
        _write_config(config_path, port=port)

        snapshot = await control.startup()

        assert snapshot.proxy.condition is ProcessCondition.STOPPED
        assert "already in use" in snapshot.proxy.reason


class TestProcessControl:
    async def test_start_stop(self, control, free_port):
        control.store.commit(AppConfig(port=free_port()))

        started = await control.start(PRIMARY)
        stopped = await control.stop(PRIMARY)

        assert started.condition is ProcessCondition.RUNNING
        assert stopped.condition is ProcessCondition.STOPPED

    async def test_start_when_running_does_not_rebuild(self, control, fake_launcher, free_port):
        control.store.commit(AppConfig(port=free_port()))
        await control.start(PRIMARY)
        built = len(fake_launcher.built)

        with pytest.raises(AlreadyRunningError):
            await control.start(PRIMARY)

        assert len(fake_launcher.built) == built

    async def test_restart_starts_a_stopped_process(self, control, free_port):
        control.store.commit(AppConfig(port=free_port()))

        status = await control.restart(PRIMARY)

        assert status.condition is ProcessCondition.RUNNING

    async def test_failed_stop_leaves_runtime_config_untouched(self, tmp_path, free_port):
        """The running primary's config file is only rewritten once it has exited."""
        registry = StatusRegistry()
        supervisor = ProcessSupervisor(registry, stop_grace_seconds=2.0, startup_probe_seconds=0.2)
        launcher = SleepingProxyLauncher(tmp_path / "runtime", management_key="mgmt", environ={})
        plane = ControlPlane(
            store=ConfigStore(tmp_path / "config.json"),
            registry=registry,
            supervisor=supervisor,
            launcher=launcher,
        )
        plane.store.commit(AppConfig(port=free_port()))
        started = await plane.start(PRIMARY)
        before = launcher.runtime_config_path.read_text(encoding="utf-8")
        plane.store.commit(AppConfig(port=free_port()))

        stuck = AsyncMock(side_effect=StopTimeoutError(PRIMARY, started.pid))
        try:
            with patch.object(supervisor, "_terminate", stuck):
                with pytest.raises(StopTimeoutError):
                    await plane.restart(PRIMARY)
        finally:
            os.killpg(started.pid, signal.SIGKILL)

        assert launcher.runtime_config_path.read_text(encoding="utf-8") == before

    async def test_restart_rewrites_runtime_config(self, tmp_path, free_port):
        registry = StatusRegistry()
        launcher = SleepingProxyLauncher(tmp_path / "runtime", management_key="mgmt", environ={})
        plane = ControlPlane(
            store=ConfigStore(tmp_path / "config.json"),
            registry=registry,
            supervisor=ProcessSupervisor(registry, stop_grace_seconds=2.0, startup_probe_seconds=0.2),
            launcher=launcher,
        )
        plane.store.commit(AppConfig(port=free_port()))
        await plane.start(PRIMARY)
        new_port = free_port()
        plane.store.commit(AppConfig(port=new_port))

        try:
            await plane.restart(PRIMARY)
        finally:
            await plane.shutdown()

        assert json.loads(launcher.runtime_config_path.read_text(encoding="utf-8"))["port"] == new_port

    async def test_stop_when_stopped_returns_status(self, control):
        status = await control.stop(SECONDARY)

        assert status.condition is ProcessCondition.NOT_STARTED


class TestSaveConfig:
    async def test_save_migrates_submitted_document(self, control, config_path):
        submitted = AppConfig.model_validate(
            {"ampOpenaiProvider": {"id": "p1", "name": "r", "baseUrl": "u", "apiKey": "k"}}
        )

        result = await control.save_config(submitted)

        assert result.config.amp_openai_provider is None
        assert [p.id for p in result.config.amp_openai_providers] == ["p1"]
        assert json.loads(config_path.read_text(encoding="utf-8"))["ampOpenaiProviders"][0]["id"] == "p1"

    async def test_resubmitting_document_without_ids_restarts_nothing(self, control, free_port):
        """Routing providers sent without an id keep the saved entry's id."""
        document = {
            "port": free_port(),
            "ampOpenaiProviders": [{"name": "p", "baseUrl": "http://x", "apiKey": "k"}],
        }
        first = await control.save_config(AppConfig.model_validate(document))
        await control.start(PRIMARY)
        pid = control.get_status().proxy.pid

        second = await control.save_config(AppConfig.model_validate(document))

        assert first.config.amp_openai_providers[0].id
        assert second.config.amp_openai_providers[0].id == first.config.amp_openai_providers[0].id
        assert second.actions == ()
        assert control.get_status().proxy.pid == pid

    async def test_new_provider_without_id_gets_one(self, control):
        existing = {"id": "p1", "name": "p", "baseUrl": "http://x", "apiKey": "k"}
        await control.save_config(AppConfig.model_validate({"ampOpenaiProviders": [existing]}))
        added = {"name": "q", "baseUrl": "http://y", "apiKey": "k"}

        result = await control.save_config(AppConfig.model_validate({"ampOpenaiProviders": [existing, added]}))

        ids = [p.id for p in result.config.amp_openai_providers]
        assert ids[0] == "p1"
        assert ids[1] and ids[1] != "p1"

    async def test_partial_failure_then_retry(self, control, free_port, occupy_port):
        """After a failed restart the saved document is retried without resubmitting it."""
        control.store.commit(AppConfig(port=free_port()))
        await control.start(PRIMARY)
        new_port = free_port()
        blocker = occupy_port(new_port)

        with pytest.raises(ReconciliationPartialFailure):
            await control.save_config(control.get_config().model_copy(update={"port": new_port}))
        blocker.close()
        status = await control.restart(PRIMARY)

        assert status.condition is ProcessCondition.RUNNING
        assert status.port == new_port


class TestStatus:
    async def test_get_status_has_no_side_effects(self, control, fake_fetch):
        control.get_status()

        assert fake_fetch.calls == []

    async def test_refresh_polls_running_processes(self, control, fake_fetch, free_port):
        port = free_port()
        control.store.commit(AppConfig(port=port))
        await control.start(PRIMARY)
        fake_fetch.responses[f"http://127.0.0.1:{port}/v0/management/auth-files"] = {
            "files": [{"provider": "claude"}]
        }

        snapshot = await control.refresh_status()

        assert snapshot.providers["claude"].accounts == 1
        assert fake_fetch.calls[0][1] == {"Authorization": "Bearer test-management-key"}

    async def test_refresh_with_nothing_running_fetches_nothing(self, control, fake_fetch):
        await control.refresh_status()

        assert fake_fetch.calls == []


class TestProviders:
    async def test_provider_test_delegates(self, control):
        result = await control.test_provider_connection(ProviderTestRequest(base_url="https://x.example/v1"))

        assert result.message == "probed https://x.example/v1"

    async def test_detect_system_proxy(self, control):
        assert await control.detect_system_proxy() == "http://127.0.0.1:7890"


class TestOAuth:
    async def test_unknown_provider(self, control):
        with pytest.raises(OAuthFlowError, match="not supported"):
            await control.begin_oauth("myspace")

    async def test_requires_running_proxy(self, control):
        with pytest.raises(NotRunningError):
            await control.begin_oauth("claude")

    async def test_begin_and_complete(self, control, fake_fetch, free_port):
        port = free_port()
        control.store.commit(AppConfig(port=port))
        await control.start(PRIMARY)
        fake_fetch.responses[f"http://127.0.0.1:{port}/v0/management/anthropic-auth-url"] = {
            "url": "https://claude.ai/oauth?x=1",
            "state": "st-1",
        }
        fake_fetch.responses[f"http://127.0.0.1:{port}/v0/management/auth-files"] = {"files": []}

        started = await control.begin_oauth("claude")
        flow = await control.complete_oauth("claude", "st-1")

        assert started == {"provider": "claude", "url": "https://claude.ai/oauth?x=1", "state": "st-1"}
        assert flow.provider == "claude"
        assert control.oauth.get("claude") is None

    async def test_proxy_error_becomes_oauth_error(self, control, fake_fetch, free_port):
        port = free_port()
        control.store.commit(AppConfig(port=port))
        await control.start(PRIMARY)
        fake_fetch.responses[f"http://127.0.0.1:{port}/v0/management/gemini-cli-auth-url"] = httpx.ConnectError(
            "refused"
        )

        with pytest.raises(OAuthFlowError, match="Failed to get gemini login URL"):
            await control.begin_oauth("gemini")

    async def test_complete_without_begin(self, control):
        with pytest.raises(OAuthFlowError):
            await control.complete_oauth("claude", "never-issued")
