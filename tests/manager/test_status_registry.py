"""Unit tests for the status registry and status models."""

from __future__ import annotations

import threading

import pytest
from pydantic import ValidationError

from proxypal.constants import DEFAULT_COPILOT_PORT, DEFAULT_PROXY_PORT, KNOWN_PROVIDERS
from proxypal.manager.models import ProcessCondition, ProcessKind, ProcessStatus, ProviderAuthStatus
from proxypal.manager.status import StatusRegistry, default_process_status, process_key, provider_key


@pytest.fixture
def registry() -> StatusRegistry:
    return StatusRegistry()


class TestInitialState:
    """Tests for a freshly created registry."""

    def test_processes_start_not_started(self, registry: StatusRegistry):
        snapshot = registry.snapshot()

        assert snapshot.proxy.condition is ProcessCondition.NOT_STARTED
        assert snapshot.copilot.condition is ProcessCondition.NOT_STARTED
        assert snapshot.proxy.port == DEFAULT_PROXY_PORT
        assert snapshot.copilot.port == DEFAULT_COPILOT_PORT

    def test_known_providers_have_zero_accounts(self, registry: StatusRegistry):
        snapshot = registry.snapshot()

        assert set(snapshot.providers) == set(KNOWN_PROVIDERS)
        assert all(status.accounts == 0 for status in snapshot.providers.values())

    def test_default_endpoints(self):
        assert default_process_status(ProcessKind.PRIMARY).endpoint == f"http://localhost:{DEFAULT_PROXY_PORT}/v1"
        assert default_process_status(ProcessKind.SECONDARY, 5000).endpoint == "http://localhost:5000"

    def test_seed_ports_updates_not_started_slots(self, registry: StatusRegistry):
        registry.seed_ports({ProcessKind.PRIMARY: 8765, ProcessKind.SECONDARY: 5000})

        snapshot = registry.snapshot()
        assert snapshot.proxy.endpoint == "http://localhost:8765/v1"
        assert snapshot.copilot.port == 5000

    def test_seed_ports_leaves_written_slots(self, registry: StatusRegistry):
        running = ProcessStatus(
            kind=ProcessKind.PRIMARY,
            condition=ProcessCondition.RUNNING,
            port=9000,
            endpoint="http://localhost:9000/v1",
            pid=1234,
        )
        registry.write_process(running)

        registry.seed_ports({ProcessKind.PRIMARY: 8765})

        assert registry.read_process(ProcessKind.PRIMARY) == running


class TestReadWrite:
    """Tests for slot reads and writes."""

    def test_write_then_read_process(self, registry: StatusRegistry):
        status = ProcessStatus(
            kind=ProcessKind.PRIMARY,
            condition=ProcessCondition.RUNNING,
            port=9000,
            endpoint="http://localhost:9000/v1",
            pid=1234,
        )

        registry.write_process(status)

        assert registry.read_process(ProcessKind.PRIMARY) == status
        assert registry.read(process_key(ProcessKind.PRIMARY)) == status

    def test_unknown_slot_raises_key_error(self, registry: StatusRegistry):
        with pytest.raises(KeyError):
            registry.read("process:nonexistent")

    def test_new_provider_appears_in_snapshot(self, registry: StatusRegistry):
        registry.write_provider(ProviderAuthStatus(provider="vertex-custom", accounts=2))

        snapshot = registry.snapshot()

        assert snapshot.providers["vertex-custom"].accounts == 2
        assert registry.read(provider_key("vertex-custom")).accounts == 2

    def test_snapshot_is_unaffected_by_later_writes(self, registry: StatusRegistry):
        """A snapshot is a point-in-time copy."""
        snapshot = registry.snapshot()

        registry.write_provider(ProviderAuthStatus(provider="claude", accounts=5))

        assert snapshot.providers["claude"].accounts == 0
        assert registry.snapshot().providers["claude"].accounts == 5

    def test_status_values_are_immutable(self, registry: StatusRegistry):
        status = registry.read_process(ProcessKind.PRIMARY)

        with pytest.raises(ValidationError):
            status.pid = 1  # type: ignore[misc]

    def test_concurrent_writers_never_tear(self, registry: StatusRegistry):
        """Readers only ever see whole values written by some writer."""
        written = {ProviderAuthStatus(provider="claude", accounts=n) for n in range(50)}
        seen: list[ProviderAuthStatus] = []

        def writer() -> None:
            for status in written:
                registry.write_provider(status)

        def reader() -> None:
            for _ in range(200):
                seen.append(registry.snapshot().providers["claude"])

        threads = [threading.Thread(target=writer), threading.Thread(target=reader)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        allowed = written | {ProviderAuthStatus(provider="claude")}
        assert all(status in allowed for status in seen)


class TestSerialization:
    """Tests for API-facing dicts."""

    def test_process_dict_includes_running_flag(self, registry: StatusRegistry):
        data = registry.read_process(ProcessKind.SECONDARY).to_dict()

        assert data["running"] is False
        assert data["condition"] == "not_started"
        assert data["kind"] == "copilot"

    def test_snapshot_dict_shape(self, registry: StatusRegistry):
        data = registry.snapshot().to_dict()

        assert set(data) == {"proxy", "copilot", "providers", "taken_at"}
        assert data["providers"]["claude"]["accounts"] == 0

    def test_snapshot_process_lookup(self, registry: StatusRegistry):
        snapshot = registry.snapshot()

        assert snapshot.process(ProcessKind.PRIMARY) is snapshot.proxy
        assert snapshot.process(ProcessKind.SECONDARY) is snapshot.copilot
