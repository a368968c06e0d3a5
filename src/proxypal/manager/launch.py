"""Launch specifications for the supervised processes.

ProcessLauncher turns the configuration document into a LaunchSpec:

Primary (API proxy):
    <proxy binary> --config <runtime config> --port <port> [--proxy-url <url>]

    The runtime config is rendered from the document and written atomically
    before every launch. It is JSON, which the proxy reads as YAML.

Secondary (Copilot bridge):
    npx copilot-api@latest start --port <p> --account-type <t>
        [--github-token <tok>] [--rate-limit <n>] [--wait]

Executables can be overridden with PROXYPAL_PROXY_BINARY and
PROXYPAL_COPILOT_COMMAND (packaged installs ship the proxy as a sidecar).
"""

from __future__ import annotations

__all__ = [
    "ProcessLauncher",
    "render_runtime_config",
]

import asyncio
import logging
import os
import secrets
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from proxypal.config import AppConfig
from proxypal.constants import (
    APP_NAME,
    COPILOT_COMMAND_ENV,
    DEFAULT_COPILOT_COMMAND,
    DEFAULT_PROXY_BINARY,
    PROXY_BINARY_ENV,
)
from proxypal.exceptions import SpawnError
from proxypal.manager.models import ProcessKind
from proxypal.manager.supervisor import LaunchSpec
from proxypal.utils.file_helpers import atomic_write_json, get_app_dir

_logger = logging.getLogger(f"{APP_NAME}.manager.launch")

COPILOT_PACKAGE = "copilot-api@latest"
RUNTIME_CONFIG_FILENAME = "proxy-config.yaml"
AUTH_FILES_PATH = "/v0/management/auth-files"


def _credential_entry(entry: Any, *, with_models: bool = False) -> dict[str, Any]:
    """Render one API-key entry with kebab-case keys, dropping unset values."""
    rendered: dict[str, Any] = {"api-key": entry.api_key}
    if getattr(entry, "base_url", None):
        rendered["base-url"] = entry.base_url
    if getattr(entry, "proxy_url", None):
        rendered["proxy-url"] = entry.proxy_url
    if getattr(entry, "headers", None):
        rendered["headers"] = dict(entry.headers)
    if with_models and getattr(entry, "models", None):
        rendered["models"] = [{"name": m.name, "alias": m.alias or m.name} for m in entry.models]
    if getattr(entry, "excluded_models", None):
        rendered["excluded-models"] = list(entry.excluded_models)
    return rendered


def render_runtime_config(config: AppConfig, management_key: str) -> dict[str, Any]:
    """Render the primary proxy's runtime configuration.

    Pure function of the document and the management key.

    Args:
        config: Configuration document.
        management_key: Secret the daemon uses to poll the management API.

    Returns:
        JSON-serializable mapping.
    """
    rendered: dict[str, Any] = {
        "port": config.port,
        "api-keys": [config.proxy_api_key],
        "remote-management": {
            "allow-remote": False,
            "secret-key": management_key,
        },
        "debug": config.debug,
        "logging-to-file": config.logging_to_file,
        "logs-max-total-size-mb": config.logs_max_total_size_mb,
        "request-log": config.request_logging,
        "usage-statistics-enabled": config.usage_stats_enabled,
        "request-retry": config.request_retry,
        "max-retry-interval": config.max_retry_interval,
        "quota-exceeded": {
            "switch-project": config.quota_switch_project,
            "switch-preview-model": config.quota_switch_preview_model,
        },
        "thinking-budget": config.thinking_budget_tokens(),
        "reasoning-effort": config.reasoning_effort_level,
    }
    if config.proxy_url:
        rendered["proxy-url"] = config.proxy_url

    if config.claude_api_keys:
        rendered["claude-api-key"] = [_credential_entry(k, with_models=True) for k in config.claude_api_keys]
    if config.gemini_api_keys:
        rendered["gemini-api-key"] = [_credential_entry(k) for k in config.gemini_api_keys]
    if config.codex_api_keys:
        rendered["codex-api-key"] = [_credential_entry(k) for k in config.codex_api_keys]
    if config.openai_compatible_providers:
        rendered["openai-compatibility"] = [
            {
                "name": provider.name,
                "base-url": provider.base_url,
                "api-key-entries": [_credential_entry(e) for e in provider.api_key_entries],
                **({"headers": dict(provider.headers)} if provider.headers else {}),
                **(
                    {"models": [{"name": m.name, "alias": m.alias or m.name} for m in provider.models]}
                    if provider.models
                    else {}
                ),
            }
            for provider in config.openai_compatible_providers
        ]

    ampcode: dict[str, Any] = {
        "routing-mode": config.amp_routing_mode,
        "force-model-mappings": config.force_model_mappings,
        "model-mappings": [
            {"from": m.name, "to": m.alias, "fork": m.fork} for m in config.amp_model_mappings if m.enabled
        ],
    }
    if config.amp_api_key:
        ampcode["upstream-api-key"] = config.amp_api_key
    if config.amp_openai_providers:
        ampcode["openai-providers"] = [
            {
                "id": p.id,
                "name": p.name,
                "base-url": p.base_url,
                "api-key": p.api_key,
                "models": [{"name": m.name, "alias": m.alias or m.name} for m in p.models],
            }
            for p in config.amp_openai_providers
        ]
    rendered["ampcode"] = ampcode
    return rendered


class ProcessLauncher:
    """Builds LaunchSpecs for each process kind from the configuration document."""

    def __init__(
        self,
        runtime_dir: Path | None = None,
        *,
        management_key: str | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        """Initialize the launcher.

        Args:
            runtime_dir: Where the primary's runtime config is written.
                Defaults to the application directory.
            management_key: Management API secret; generated per daemon when omitted.
            environ: Environment used for executable overrides (defaults to os.environ).
        """
        self._runtime_dir = runtime_dir or get_app_dir()
        self._management_key = management_key or secrets.token_hex(16)
        self._environ = os.environ if environ is None else environ

    @property
    def runtime_config_path(self) -> Path:
        """Location of the rendered primary runtime config."""
        return self._runtime_dir / RUNTIME_CONFIG_FILENAME

    def management_headers(self) -> dict[str, str]:
        """Headers authenticating the daemon to the primary's management API."""
        return {"Authorization": f"Bearer {self._management_key}"}

    def auth_files_url(self, config: AppConfig) -> str:
        """Management endpoint listing authenticated provider accounts."""
        return f"http://127.0.0.1:{config.port}{AUTH_FILES_PATH}"

    def build(self, kind: ProcessKind, config: AppConfig) -> LaunchSpec:
        """Build the LaunchSpec for a kind.

        Raises:
            SpawnError: If the primary's runtime config cannot be written.
        """
        if kind is ProcessKind.PRIMARY:
            return self._build_primary(config)
        return self._build_secondary(config)

    async def prepare(self, kind: ProcessKind, config: AppConfig) -> LaunchSpec:
        """build() with the runtime config write moved off the event loop."""
        return await asyncio.to_thread(self.build, kind, config)

    def _build_primary(self, config: AppConfig) -> LaunchSpec:
        path = self.runtime_config_path
        try:
            atomic_write_json(path, render_runtime_config(config, self._management_key), prefix=".proxy_")
        except OSError as e:
            raise SpawnError(ProcessKind.PRIMARY, f"Failed to write runtime config {path}: {e}") from e

        args = ["--config", str(path), "--port", str(config.port)]
        if config.proxy_url:
            args += ["--proxy-url", config.proxy_url]

        return LaunchSpec(
            command=self._environ.get(PROXY_BINARY_ENV) or DEFAULT_PROXY_BINARY,
            port=config.port,
            endpoint=config.proxy_endpoint,
            args=tuple(args),
        )

    def _build_secondary(self, config: AppConfig) -> LaunchSpec:
        copilot = config.copilot
        command = self._environ.get(COPILOT_COMMAND_ENV) or DEFAULT_COPILOT_COMMAND

        args: list[str] = []
        if command == DEFAULT_COPILOT_COMMAND:
            args.append(COPILOT_PACKAGE)
        args += ["start", "--port", str(copilot.port), "--account-type", copilot.account_type]
        if copilot.github_token:
            args += ["--github-token", copilot.github_token]
        if copilot.rate_limit is not None:
            args += ["--rate-limit", str(copilot.rate_limit)]
            if copilot.rate_limit_wait:
                args.append("--wait")

        return LaunchSpec(
            command=command,
            port=copilot.port,
            endpoint=f"http://localhost:{copilot.port}",
            args=tuple(args),
        )
