"""In-memory status registry.

One slot per tracked status:
- "process:proxy" / "process:copilot": ProcessStatus
- "provider:<name>": ProviderAuthStatus

Values are frozen models, replaced whole under a short lock, so a reader
never observes a torn update. Writes are last-write-wins by arrival; the
supervisor keeps its updates causally ordered by writing each process slot
from a single owning path.

Thread-safe: the lock is a threading.Lock so the registry can be read
from worker threads (e.g. file I/O offloaded with asyncio.to_thread) as
well as the event loop. No I/O or awaiting ever happens under it.
"""

from __future__ import annotations

__all__ = [
    "StatusRegistry",
    "default_process_status",
    "process_key",
    "provider_key",
]

import threading
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Union

from proxypal.constants import DEFAULT_COPILOT_PORT, DEFAULT_PROXY_PORT, KNOWN_PROVIDERS
from proxypal.manager.models import (
    ProcessCondition,
    ProcessKind,
    ProcessStatus,
    ProviderAuthStatus,
    StatusSnapshot,
)

StatusValue = Union[ProcessStatus, ProviderAuthStatus]

_PROCESS_PREFIX = "process:"
_PROVIDER_PREFIX = "provider:"


def process_key(kind: ProcessKind) -> str:
    """Registry key for a supervised process."""
    return f"{_PROCESS_PREFIX}{kind.value}"


def provider_key(provider: str) -> str:
    """Registry key for an upstream provider's auth snapshot."""
    return f"{_PROVIDER_PREFIX}{provider}"


def default_process_status(kind: ProcessKind, port: int | None = None) -> ProcessStatus:
    """Initial not-started status for a process kind.

    Args:
        kind: Process kind.
        port: Configured port (defaults to the kind's default port).
    """
    if kind is ProcessKind.PRIMARY:
        port = port or DEFAULT_PROXY_PORT
        endpoint = f"http://localhost:{port}/v1"
    else:
        port = port or DEFAULT_COPILOT_PORT
        endpoint = f"http://localhost:{port}"
    return ProcessStatus(kind=kind, port=port, endpoint=endpoint)


class StatusRegistry:
    """Concurrency-safe key/value holder for status slots."""

    def __init__(self) -> None:
        """Create the registry with not-started processes and empty providers."""
        self._lock = threading.Lock()
        self._slots: dict[str, StatusValue] = {
            process_key(kind): default_process_status(kind) for kind in ProcessKind
        }
        for provider in KNOWN_PROVIDERS:
            self._slots[provider_key(provider)] = ProviderAuthStatus(provider=provider)

    def read(self, key: str) -> StatusValue:
        """Return the latest committed value for a slot.

        Raises:
            KeyError: If the slot has never been written.
        """
        with self._lock:
            return self._slots[key]

    def write(self, key: str, value: StatusValue) -> None:
        """Replace a slot's value atomically."""
        with self._lock:
            self._slots[key] = value

    def read_process(self, kind: ProcessKind) -> ProcessStatus:
        """Typed read of a process slot."""
        value = self.read(process_key(kind))
        assert isinstance(value, ProcessStatus)
        return value

    def write_process(self, status: ProcessStatus) -> None:
        """Typed write of a process slot (keyed by status.kind)."""
        self.write(process_key(status.kind), status)

    def seed_ports(self, ports: Mapping[ProcessKind, int]) -> None:
        """Point not-started process slots at the configured ports.

        Slots the supervisor has written are left alone.
        """
        with self._lock:
            for kind, port in ports.items():
                key = process_key(kind)
                current = self._slots[key]
                if isinstance(current, ProcessStatus) and current.condition is ProcessCondition.NOT_STARTED:
                    self._slots[key] = default_process_status(kind, port)

    def write_provider(self, status: ProviderAuthStatus) -> None:
        """Typed write of a provider slot (keyed by status.provider)."""
        self.write(provider_key(status.provider), status)

    def snapshot(self) -> StatusSnapshot:
        """Copy every slot in one critical section."""
        with self._lock:
            slots = dict(self._slots)

        providers = {
            key[len(_PROVIDER_PREFIX):]: value
            for key, value in slots.items()
            if key.startswith(_PROVIDER_PREFIX) and isinstance(value, ProviderAuthStatus)
        }
        proxy = slots[process_key(ProcessKind.PRIMARY)]
        copilot = slots[process_key(ProcessKind.SECONDARY)]
        assert isinstance(proxy, ProcessStatus) and isinstance(copilot, ProcessStatus)
        return StatusSnapshot(
            proxy=proxy,
            copilot=copilot,
            providers=providers,
            taken_at=datetime.now(timezone.utc),
        )
