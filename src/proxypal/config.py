"""Configuration document for proxypal.

Defines the single persisted document holding provider credentials, routing
rules, the Copilot bridge block, and operational toggles. Every field has a
default, so a document is always fully populated no matter how little of it
was present on disk.

JSON keys are camelCase (the document is shared with the desktop UI); Python
attributes are snake_case. Unknown keys are kept so a document written by a
newer release survives a round-trip through this one.

Example usage:
    config = AppConfig.model_validate(json.loads(raw))
    data = config.to_document()
"""

from __future__ import annotations

__all__ = [
    "AmpModelMapping",
    "AmpOpenAIModel",
    "AmpOpenAIProvider",
    "AppConfig",
    "ClaudeApiKey",
    "CodexApiKey",
    "ConfigModel",
    "CopilotConfig",
    "GeminiApiKey",
    "ModelMapping",
    "OpenAICompatibleApiKeyEntry",
    "OpenAICompatibleProvider",
    "generate_provider_id",
    "get_config_path",
]

import uuid
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from proxypal.constants import (
    CURRENT_CONFIG_VERSION,
    DEFAULT_COPILOT_PORT,
    DEFAULT_PROXY_API_KEY,
    DEFAULT_PROXY_PORT,
)
from proxypal.utils.file_helpers import get_app_dir

# Token budgets for the named thinking modes
_THINKING_BUDGETS = {
    "low": 2048,
    "medium": 8192,
    "high": 32768,
}


def generate_provider_id() -> str:
    """Generate a unique identifier for a routing provider entry."""
    return str(uuid.uuid4())


def get_config_path() -> Path:
    """Get the full path to the configuration document.

    Returns:
        Path to config.json in the application directory.
    """
    return get_app_dir() / "config.json"


class ConfigModel(BaseModel):
    """Base for all document models: camelCase aliases, unknown keys kept."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )


# =============================================================================
# Provider Credentials
# =============================================================================


class ModelMapping(ConfigModel):
    """Upstream model name with an optional client-facing alias."""

    name: str
    alias: str | None = None


class ClaudeApiKey(ConfigModel):
    """Anthropic API key entry.

    Attributes:
        api_key: The key sent upstream.
        base_url: Override for the Anthropic endpoint.
        proxy_url: Per-key upstream proxy.
        headers: Extra headers sent with every upstream request.
        models: Models served by this key (with aliases).
        excluded_models: Models this key must never serve.
    """

    api_key: str
    base_url: str | None = None
    proxy_url: str | None = None
    headers: dict[str, str] | None = None
    models: list[ModelMapping] | None = None
    excluded_models: list[str] | None = None


class GeminiApiKey(ConfigModel):
    """Google Gemini API key entry."""

    api_key: str
    base_url: str | None = None
    proxy_url: str | None = None
    headers: dict[str, str] | None = None
    excluded_models: list[str] | None = None


class CodexApiKey(ConfigModel):
    """OpenAI Codex API key entry."""

    api_key: str
    base_url: str | None = None
    proxy_url: str | None = None
    headers: dict[str, str] | None = None


class OpenAICompatibleApiKeyEntry(ConfigModel):
    api_key: str
    proxy_url: str | None = None


class OpenAICompatibleProvider(ConfigModel):
    """Any OpenAI-compatible upstream (OpenRouter, local servers, ...)."""

    name: str
    base_url: str
    api_key_entries: list[OpenAICompatibleApiKeyEntry] = Field(default_factory=list)
    models: list[ModelMapping] | None = None
    headers: dict[str, str] | None = None


# =============================================================================
# Amp Routing
# =============================================================================


class AmpModelMapping(ConfigModel):
    """Route requests for model `name` to model `alias`."""

    name: str
    alias: str
    enabled: bool = True
    fork: bool = False


class AmpOpenAIModel(ConfigModel):
    name: str
    alias: str = ""


class AmpOpenAIProvider(ConfigModel):
    """OpenAI-compatible provider used for Amp routing.

    The id identifies the entry across edits. It is empty until the entry
    is migrated or matched against a saved entry, so validating the same
    document twice yields equal models.
    """

    id: str = ""
    name: str
    base_url: str
    api_key: str
    models: list[AmpOpenAIModel] = Field(default_factory=list)


# =============================================================================
# Copilot Bridge
# =============================================================================


class CopilotConfig(ConfigModel):
    """Secondary process (Copilot bridge) configuration.

    Attributes:
        enabled: Start the bridge with the daemon and keep it reconciled.
        port: Port the bridge listens on.
        account_type: GitHub Copilot plan ("individual", "business", "enterprise").
        github_token: Bearer token; empty means the bridge runs its own login.
        rate_limit: Minimum seconds between upstream requests (None = unlimited).
        rate_limit_wait: Wait instead of failing when rate-limited.
    """

    enabled: bool = False
    port: int = Field(default=DEFAULT_COPILOT_PORT, ge=1, le=65535)
    account_type: str = "individual"
    github_token: str = ""
    rate_limit: int | None = Field(default=None, ge=0)
    rate_limit_wait: bool = False


# =============================================================================
# Application Configuration
# =============================================================================


class AppConfig(ConfigModel):
    """The persisted configuration document.

    Network:
        port, proxy_url, request_retry, max_retry_interval
    Credentials:
        claude_api_keys, gemini_api_keys, codex_api_keys,
        openai_compatible_providers, proxy_api_key
    Routing:
        amp_api_key, amp_model_mappings, amp_openai_providers,
        amp_routing_mode, force_model_mappings
    Secondary process:
        copilot
    Logging:
        debug, request_logging, logging_to_file, logs_max_total_size_mb
    Desktop behaviour (no process impact):
        auto_start, launch_at_login, close_to_tray

    amp_openai_provider is DEPRECATED; migration promotes it into
    amp_openai_providers and clears it.
    """

    port: int = Field(default=DEFAULT_PROXY_PORT, ge=1, le=65535)
    auto_start: bool = True
    launch_at_login: bool = False
    debug: bool = False
    proxy_url: str = ""
    request_retry: int = Field(default=0, ge=0)
    max_retry_interval: int = Field(default=0, ge=0)
    quota_switch_project: bool = False
    quota_switch_preview_model: bool = False
    usage_stats_enabled: bool = True
    request_logging: bool = True
    logging_to_file: bool = True
    logs_max_total_size_mb: int = Field(default=100, ge=0)
    config_version: int = CURRENT_CONFIG_VERSION

    amp_api_key: str = ""
    amp_model_mappings: list[AmpModelMapping] = Field(default_factory=list)
    amp_openai_provider: AmpOpenAIProvider | None = None
    amp_openai_providers: list[AmpOpenAIProvider] = Field(default_factory=list)
    amp_routing_mode: str = "mappings"
    force_model_mappings: bool = False

    copilot: CopilotConfig = Field(default_factory=CopilotConfig)

    claude_api_keys: list[ClaudeApiKey] = Field(default_factory=list)
    gemini_api_keys: list[GeminiApiKey] = Field(default_factory=list)
    codex_api_keys: list[CodexApiKey] = Field(default_factory=list)
    openai_compatible_providers: list[OpenAICompatibleProvider] = Field(default_factory=list)

    thinking_budget_mode: str = "medium"
    thinking_budget_custom: int = Field(default=16000, ge=0)
    reasoning_effort_level: str = "medium"
    close_to_tray: bool = True
    proxy_api_key: str = DEFAULT_PROXY_API_KEY

    def to_document(self) -> dict[str, Any]:
        """Serialize to the persisted JSON shape (camelCase keys)."""
        return self.model_dump(mode="json", by_alias=True)

    def thinking_budget_tokens(self) -> int:
        """Resolve the thinking budget mode to a token count."""
        if self.thinking_budget_mode == "custom":
            return self.thinking_budget_custom
        return _THINKING_BUDGETS.get(self.thinking_budget_mode, _THINKING_BUDGETS["medium"])

    @property
    def proxy_endpoint(self) -> str:
        """OpenAI-compatible endpoint clients should use."""
        return f"http://localhost:{self.port}/v1"
