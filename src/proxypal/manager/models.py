"""Pydantic models for the proxypal control plane.

This module contains two categories of models:

Status Models (FrozenModel-based, safe to share between readers):
- FrozenModel: Base class for immutable models
- ProcessStatus: Condition of one supervised process
- ProviderAuthStatus: Account count / last error for one upstream provider
- StatusSnapshot: Consistent copy of every status slot
- ProviderTestRequest / ProviderTestResult: Connection test in/out

Logging Models:
- SystemEvent: Structured system log entries
"""

from __future__ import annotations

__all__ = [
    # Enums
    "ProcessCondition",
    "ProcessKind",
    # Status Models
    "FrozenModel",
    "ProcessStatus",
    "ProviderAuthStatus",
    "ProviderTestRequest",
    "ProviderTestResult",
    "StatusSnapshot",
    # Logging Models
    "SystemEvent",
]

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class ProcessKind(str, Enum):
    """The two supervised process kinds.

    PRIMARY is the API proxy; SECONDARY is the Copilot bridge.
    """

    PRIMARY = "proxy"
    SECONDARY = "copilot"


class ProcessCondition(str, Enum):
    """Externally visible condition of a supervised process."""

    NOT_STARTED = "not_started"
    RUNNING = "running"
    STOPPED = "stopped"


# =============================================================================
# Status Models
# =============================================================================


class FrozenModel(BaseModel):
    """Base class for immutable Pydantic models.

    Status values are replaced whole, never mutated, so a reader holding
    one can never observe a half-applied update.
    """

    model_config = ConfigDict(frozen=True)


class ProcessStatus(FrozenModel):
    """Status of one supervised process.

    Attributes:
        kind: Which process this describes.
        condition: not_started, running, or stopped.
        port: Port the process is (or was last) bound to.
        endpoint: URL clients use to reach the process.
        pid: OS process ID while running.
        reason: Why the process is stopped (empty while running).
        exit_code: Exit code of the last run, if known.
        authenticated: Copilot bridge only; whether GitHub auth succeeded.
        started_at: When the current/last run started.
        stopped_at: When the last run ended.
    """

    kind: ProcessKind
    condition: ProcessCondition = ProcessCondition.NOT_STARTED
    port: int
    endpoint: str
    pid: int | None = None
    reason: str | None = None
    exit_code: int | None = None
    authenticated: bool = False
    started_at: datetime | None = None
    stopped_at: datetime | None = None

    @property
    def running(self) -> bool:
        """True while the process is running."""
        return self.condition is ProcessCondition.RUNNING

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dict for API responses."""
        return {**self.model_dump(mode="json"), "running": self.running}


class ProviderAuthStatus(FrozenModel):
    """Authentication snapshot for one upstream provider.

    Attributes:
        provider: Provider name (e.g. "claude", "gemini").
        accounts: Number of usable authenticated accounts.
        last_error: Error from the most recent refresh, if it failed.
        updated_at: When this snapshot was taken.
    """

    provider: str
    accounts: int = 0
    last_error: str | None = None
    updated_at: datetime | None = None


class StatusSnapshot(FrozenModel):
    """Point-in-time copy of every status slot, read in one critical section."""

    proxy: ProcessStatus
    copilot: ProcessStatus
    providers: Dict[str, ProviderAuthStatus] = Field(default_factory=dict)
    taken_at: datetime

    def process(self, kind: ProcessKind) -> ProcessStatus:
        """Get the status for a process kind."""
        return self.proxy if kind is ProcessKind.PRIMARY else self.copilot

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dict for API responses."""
        return {
            "proxy": self.proxy.to_dict(),
            "copilot": self.copilot.to_dict(),
            "providers": {name: status.model_dump(mode="json") for name, status in self.providers.items()},
            "taken_at": self.taken_at.isoformat(),
        }


class ProviderTestRequest(FrozenModel):
    """Connection test input for an OpenAI-compatible provider.

    Attributes:
        base_url: Provider base URL (".../v1"); /models is appended.
        api_key: Bearer key; empty sends no Authorization header.
        headers: Extra request headers.
    """

    base_url: str = Field(min_length=1)
    api_key: str = ""
    headers: Dict[str, str] | None = None


class ProviderTestResult(FrozenModel):
    """Connection test outcome. Failures are values, never exceptions.

    Attributes:
        success: Whether the provider answered with 2xx.
        message: Human-readable outcome (error text on failure).
        latency_ms: Round-trip time when a response was received.
        models_found: Number of models listed, when the body could be parsed.
    """

    success: bool
    message: str
    latency_ms: int | None = None
    models_found: int | None = None


# =============================================================================
# Logging Models
# =============================================================================


class SystemEvent(BaseModel):
    """One system log entry (<log_dir>/proxypal/system.jsonl).

    Note: 'time' is None when created, populated by ISO8601Formatter during logging.
    """

    # --- core ---
    time: Optional[str] = Field(
        None,
        description="ISO 8601 timestamp (UTC), added by formatter during serialization",
    )
    event: Optional[str] = Field(
        None,
        description="Machine-friendly event name, e.g. 'process_started', 'config_saved'",
    )
    message: str = Field(description="Human-readable log message")

    # --- process context ---
    process_kind: Optional[str] = Field(
        None,
        description="Affected process kind, e.g. 'proxy' or 'copilot'",
    )
    pid: Optional[int] = Field(None, description="OS process ID")
    port: Optional[int] = Field(None, description="Port the process binds")
    exit_code: Optional[int] = Field(None, description="Exit code of a finished process")

    # --- error details ---
    error_type: Optional[str] = Field(
        None,
        description="Exception class name, e.g. 'FileNotFoundError'",
    )
    error_message: Optional[str] = Field(
        None,
        description="Short error text from exception",
    )

    # --- additional structured details ---
    details: Optional[Dict[str, Any]] = Field(
        None,
        description="Additional context as key-value pairs",
    )

    model_config = ConfigDict(extra="allow")
