"""Command surface: the operations exposed to the API and CLI.

ControlPlane is the single shared context holding every owned state object
(config store, status registry, supervisor, reconciliation controller,
launcher, pending OAuth flows). Each operation is a thin composition:

- configuration reads return deep copies
- configuration writes go only through ReconciliationController
- status reads return registry snapshots
- start/stop/restart go only through ProcessSupervisor; its errors
  propagate unchanged

Example usage:
    control = ControlPlane()
    await control.startup()
    status = control.get_status()
    await control.shutdown()
"""

from __future__ import annotations

__all__ = [
    "ControlPlane",
    "OAUTH_AUTH_URL_PATHS",
]

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

import httpx

from proxypal.config import AppConfig
from proxypal.constants import APP_NAME
from proxypal.exceptions import NotRunningError, OAuthFlowError, ProxyPalError
from proxypal.manager.config_store import ConfigStore
from proxypal.manager.launch import ProcessLauncher
from proxypal.manager.migration import migrate_config
from proxypal.manager.models import (
    ProcessKind,
    ProcessStatus,
    ProviderTestRequest,
    ProviderTestResult,
    StatusSnapshot,
)
from proxypal.manager.oauth import PendingAuthFlow, PendingAuthStore
from proxypal.manager.reconcile import ReconcileResult, ReconciliationController
from proxypal.manager.status import StatusRegistry
from proxypal.manager.supervisor import ProcessSupervisor
from proxypal.manager.system_proxy import detect_system_proxy
from proxypal.manager.upstream import FetchJson, fetch_json, test_provider_connection

_logger = logging.getLogger(f"{APP_NAME}.manager.control")

# Management API endpoints returning {"url": ..., "state": ...} per provider
OAUTH_AUTH_URL_PATHS: dict[str, str] = {
    "claude": "/v0/management/anthropic-auth-url",
    "openai": "/v0/management/codex-auth-url",
    "gemini": "/v0/management/gemini-cli-auth-url",
    "qwen": "/v0/management/qwen-auth-url",
    "iflow": "/v0/management/iflow-auth-url",
    "antigravity": "/v0/management/antigravity-auth-url",
}


class ControlPlane:
    """Shared context and command surface for the daemon."""

    def __init__(
        self,
        store: ConfigStore | None = None,
        registry: StatusRegistry | None = None,
        supervisor: ProcessSupervisor | None = None,
        launcher: ProcessLauncher | None = None,
        oauth: PendingAuthStore | None = None,
        *,
        fetch: FetchJson = fetch_json,
        provider_test: Callable[[ProviderTestRequest], Awaitable[ProviderTestResult]] = test_provider_connection,
        proxy_detector: Callable[[], str | None] = detect_system_proxy,
    ) -> None:
        """Wire the owned state objects together.

        Every collaborator is injectable; defaults are the production ones.
        """
        self.store = store or ConfigStore()
        self.registry = registry or StatusRegistry()
        self.supervisor = supervisor or ProcessSupervisor(self.registry, fetch=fetch)
        self.launcher = launcher or ProcessLauncher()
        self.oauth = oauth or PendingAuthStore()
        self.controller = ReconciliationController(self.store, self.supervisor, self.registry, self.launcher)
        self._fetch = fetch
        self._provider_test = provider_test
        self._proxy_detector = proxy_detector

    # =========================================================================
    # Configuration
    # =========================================================================

    def get_config(self) -> AppConfig:
        """Deep copy of the current document."""
        return self.store.get()

    async def save_config(self, config: AppConfig) -> ReconcileResult:
        """Persist a new document and reconcile affected processes.

        Submitted documents are normalized through migration, so a client
        still sending the deprecated single provider gets it promoted.
        Routing providers submitted without an id keep the id of the saved
        entry with the same name and base URL.

        Raises:
            PersistenceError: Nothing was saved.
            ReconciliationPartialFailure: Saved; a dependent restart failed.
        """
        normalized = migrate_config(self._keep_provider_ids(config)).config
        return await self.controller.update(normalized)

    def _keep_provider_ids(self, config: AppConfig) -> AppConfig:
        saved = {(p.name, p.base_url): p.id for p in self.store.get().amp_openai_providers if p.id}
        if not saved or all(p.id for p in config.amp_openai_providers):
            return config
        providers = []
        for provider in config.amp_openai_providers:
            key = (provider.name, provider.base_url)
            if not provider.id and key in saved:
                provider = provider.model_copy(update={"id": saved[key]})
            providers.append(provider)
        return config.model_copy(update={"amp_openai_providers": providers})

    # =========================================================================
    # Status
    # =========================================================================

    def get_status(self) -> StatusSnapshot:
        """Consistent snapshot of all status slots. No side effects."""
        return self.registry.snapshot()

    async def refresh_status(self) -> StatusSnapshot:
        """Poll the running processes for provider auth and Copilot auth."""
        config = self.store.get()
        if self.supervisor.is_running(ProcessKind.PRIMARY):
            await self.supervisor.refresh_auth_status(
                self.launcher.auth_files_url(config),
                headers=self.launcher.management_headers(),
            )
        if self.supervisor.is_running(ProcessKind.SECONDARY):
            await self.supervisor.refresh_copilot_auth()
        return self.registry.snapshot()

    # =========================================================================
    # Process control
    # =========================================================================

    async def start(self, kind: ProcessKind) -> ProcessStatus:
        """Start a process from the current document.

        Raises:
            AlreadyRunningError: If it is already running.
            SpawnError: If it cannot be launched.
        """
        # The running primary watches its runtime config: render only once the kind is known stopped
        return await self.supervisor.start(kind, lambda: self.launcher.prepare(kind, self.store.get()))

    async def stop(self, kind: ProcessKind) -> ProcessStatus:
        """Stop a process (no-op if stopped) and return its recorded status.

        Raises:
            StopTimeoutError: If exit could not be confirmed.
        """
        await self.supervisor.stop(kind)
        return self.registry.read_process(kind)

    async def restart(self, kind: ProcessKind) -> ProcessStatus:
        """Restart a process with the current document; starts it if stopped.

        This is also the retry path after ReconciliationPartialFailure.

        Raises:
            StopTimeoutError: Stop phase failed; start not attempted.
            SpawnError: Start phase failed; process left stopped.
        """
        # Rendered only after the old process has exited
        return await self.supervisor.restart(kind, lambda: self.launcher.prepare(kind, self.store.get()))

    async def startup(self, *, reload: bool = True) -> StatusSnapshot:
        """Load configuration and auto-start processes.

        The primary starts when autoStart is set, the Copilot bridge when
        it is enabled. Start failures are recorded in status and logged;
        they never prevent the daemon from coming up.

        Args:
            reload: Load the document from disk first. False when the
                caller has just loaded it.
        """
        config = await asyncio.to_thread(self.store.load) if reload else self.store.get()
        self.registry.seed_ports({ProcessKind.PRIMARY: config.port, ProcessKind.SECONDARY: config.copilot.port})

        wanted: list[ProcessKind] = []
        if config.auto_start:
            wanted.append(ProcessKind.PRIMARY)
        if config.copilot.enabled:
            wanted.append(ProcessKind.SECONDARY)

        for kind in wanted:
            try:
                await self.start(kind)
            except ProxyPalError as e:
                _logger.error(
                    {
                        "event": "auto_start_failed",
                        "message": f"Auto-start of {kind.value} failed: {e}",
                        "error_type": type(e).__name__,
                        "error_message": str(e),
                        "details": {"process_kind": kind.value},
                    }
                )
        return self.registry.snapshot()

    async def shutdown(self) -> None:
        """Stop every supervised process."""
        await self.supervisor.stop_all()

    # =========================================================================
    # Providers
    # =========================================================================

    async def test_provider_connection(self, request: ProviderTestRequest) -> ProviderTestResult:
        """Latency probe against an OpenAI-compatible provider. Never raises."""
        return await self._provider_test(request)

    async def detect_system_proxy(self) -> str | None:
        """Detected upstream proxy URL, or None. Never raises."""
        return await asyncio.to_thread(self._proxy_detector)

    # =========================================================================
    # OAuth
    # =========================================================================

    async def begin_oauth(self, provider: str) -> dict[str, Any]:
        """Ask the primary proxy for a login URL and record the pending flow.

        Returns:
            {"provider", "url", "state"} for the browser redirect.

        Raises:
            OAuthFlowError: Unknown provider or the proxy returned no URL.
            NotRunningError: The primary proxy is not running.
        """
        path = OAUTH_AUTH_URL_PATHS.get(provider)
        if path is None:
            raise OAuthFlowError(f"OAuth is not supported for provider '{provider}'")
        if not self.supervisor.is_running(ProcessKind.PRIMARY):
            raise NotRunningError(ProcessKind.PRIMARY)

        config = self.store.get()
        url = f"http://127.0.0.1:{config.port}{path}?is_webui=true"
        try:
            payload = await self._fetch(url, headers=self.launcher.management_headers())
        except (httpx.HTTPError, ValueError) as e:
            raise OAuthFlowError(f"Failed to get {provider} login URL: {e}") from e

        auth_url = payload.get("url") if isinstance(payload, dict) else None
        if not auth_url:
            raise OAuthFlowError(f"Proxy returned no login URL for {provider}")

        flow = self.oauth.begin(provider, payload.get("state") or None)
        _logger.info(
            {
                "event": "oauth_flow_started",
                "message": f"OAuth flow started for {provider}",
                "details": {"provider": provider},
            }
        )
        return {"provider": provider, "url": auth_url, "state": flow.state}

    async def complete_oauth(self, provider: str, state: str) -> PendingAuthFlow:
        """Consume the pending flow for a callback and refresh auth status.

        Raises:
            OAuthFlowError: No live flow matches (provider, state).
        """
        flow = self.oauth.consume(provider, state)
        _logger.info(
            {
                "event": "oauth_flow_completed",
                "message": f"OAuth flow completed for {provider}",
                "details": {"provider": provider},
            }
        )
        await self.refresh_status()
        return flow
