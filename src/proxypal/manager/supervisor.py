"""Supervision of the external proxy processes.

One generic state machine, parameterized by a LaunchSpec, drives both
process kinds:

    STOPPED -> STARTING -> RUNNING -> STOPPING -> STOPPED
                             |
                             +-> CRASHED -> STOPPED   (unexpected exit)

Ordering:
- Every start/stop/restart for a kind runs under that kind's asyncio.Lock,
  so concurrent requests queue instead of racing.
- Each running process has exactly one watcher task. The watcher is the
  only path that downgrades a RUNNING status; it carries the generation of
  the process it watches and does nothing once that generation has been
  replaced or stopped on request.
- Status is written to the StatusRegistry only from these paths. Spawning
  and waiting for exit happen outside the registry lock.

Children run in their own session so a stop signals the whole process
group (npx, for example, forks the real server).
"""

from __future__ import annotations

__all__ = [
    "LaunchSpec",
    "ProcessSupervisor",
    "SpecFactory",
    "SupervisorState",
    "is_port_in_use",
]

import asyncio
import logging
import os
import signal
import socket
import subprocess
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import IO, Any

import httpx

from proxypal.constants import (
    APP_NAME,
    DEFAULT_STARTUP_PROBE_SECONDS,
    DEFAULT_STOP_GRACE_SECONDS,
    FORCE_KILL_WAIT_SECONDS,
)
from proxypal.exceptions import AlreadyRunningError, SpawnError, StopTimeoutError
from proxypal.manager.models import (
    ProcessCondition,
    ProcessKind,
    ProcessStatus,
    ProviderAuthStatus,
    SystemEvent,
)
from proxypal.manager.status import StatusRegistry
from proxypal.manager.upstream import FetchJson, fetch_json

_logger = logging.getLogger(f"{APP_NAME}.manager.supervisor")


def _log_event(level: int, event: SystemEvent) -> None:
    _logger.log(level, event.model_dump(exclude_none=True))


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def is_port_in_use(port: int) -> bool:
    """Check if a TCP port on 127.0.0.1 is accepting connections.

    Args:
        port: TCP port number to check.

    Returns:
        True if port is in use, False otherwise.
    """
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        return s.connect_ex(("127.0.0.1", port)) == 0


class SupervisorState(str, Enum):
    """Internal lifecycle state of one supervised process kind."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    CRASHED = "crashed"


@dataclass(frozen=True)
class LaunchSpec:
    """Everything needed to launch one supervised process.

    Attributes:
        command: Executable name or path.
        port: Port the process will bind (checked before spawning).
        endpoint: URL recorded in status while running.
        args: Argument list.
        env: Extra environment variables (the daemon's environment is inherited).
        cwd: Working directory.
    """

    command: str
    port: int
    endpoint: str
    args: tuple[str, ...] = ()
    env: Mapping[str, str] | None = None
    cwd: Path | None = None

    @property
    def argv(self) -> list[str]:
        """Full command line."""
        return [self.command, *self.args]


# Builds the spec for a restart once the previous process is gone
SpecFactory = Callable[[], Awaitable[LaunchSpec]]


@dataclass
class _Slot:
    """Bookkeeping for one process kind. Mutated only under `lock` or by its watcher."""

    kind: ProcessKind
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    state: SupervisorState = SupervisorState.STOPPED
    process: asyncio.subprocess.Process | None = None
    spec: LaunchSpec | None = None
    generation: int = 0
    watcher: asyncio.Task[None] | None = None
    output: IO[bytes] | None = None


class ProcessSupervisor:
    """Starts, stops, and watches the primary proxy and the Copilot bridge."""

    def __init__(
        self,
        registry: StatusRegistry,
        *,
        fetch: FetchJson = fetch_json,
        stop_grace_seconds: float = DEFAULT_STOP_GRACE_SECONDS,
        startup_probe_seconds: float = DEFAULT_STARTUP_PROBE_SECONDS,
        log_dir: Path | None = None,
    ) -> None:
        """Initialize the supervisor.

        Args:
            registry: Status registry this supervisor exclusively writes process slots of.
            fetch: Fetch-JSON capability used by the auth refresh methods.
            stop_grace_seconds: Default wait after SIGTERM before SIGKILL.
            startup_probe_seconds: A child exiting within this window fails start(). 0 disables.
            log_dir: When set, child output is appended to <log_dir>/<kind>.log.
        """
        self._registry = registry
        self._fetch = fetch
        self._stop_grace_seconds = stop_grace_seconds
        self._startup_probe_seconds = startup_probe_seconds
        self._log_dir = log_dir
        self._slots = {kind: _Slot(kind=kind) for kind in ProcessKind}

    # =========================================================================
    # Queries
    # =========================================================================

    def state(self, kind: ProcessKind) -> SupervisorState:
        """Current lifecycle state for a kind."""
        return self._slots[kind].state

    def is_running(self, kind: ProcessKind) -> bool:
        """True while the kind's process is RUNNING."""
        return self._slots[kind].state is SupervisorState.RUNNING

    @property
    def log_dir(self) -> Path | None:
        """Directory for child output logs; None discards output."""
        return self._log_dir

    @log_dir.setter
    def log_dir(self, value: Path | None) -> None:
        # Applies from the next spawn
        self._log_dir = value

    def current_spec(self, kind: ProcessKind) -> LaunchSpec | None:
        """LaunchSpec of the running process, if any."""
        slot = self._slots[kind]
        return slot.spec if slot.state is SupervisorState.RUNNING else None

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self, kind: ProcessKind, spec: LaunchSpec | SpecFactory) -> ProcessStatus:
        """Start a process.

        Args:
            kind: Which process to start.
            spec: How to launch it, or a factory called under the kind's lock
                once the kind is known to be STOPPED.

        Returns:
            The RUNNING status that was recorded.

        Raises:
            AlreadyRunningError: If the kind is not STOPPED.
            SpawnError: If the port is bound, the executable cannot be
                launched, or the child exits during the startup probe.
        """
        slot = self._slots[kind]
        async with slot.lock:
            return await self._start_locked(slot, spec)

    async def stop(self, kind: ProcessKind, grace_seconds: float | None = None) -> None:
        """Stop a process. Succeeds without side effects if already stopped.

        SIGTERM first; SIGKILL once the grace period elapses. Success means
        exit was confirmed and STOPPED was recorded.

        Args:
            kind: Which process to stop.
            grace_seconds: Override the default grace period.

        Raises:
            StopTimeoutError: If exit could not be confirmed even after SIGKILL.
        """
        slot = self._slots[kind]
        async with slot.lock:
            await self._stop_locked(slot, grace_seconds)

    async def restart(self, kind: ProcessKind, spec: LaunchSpec | SpecFactory) -> ProcessStatus:
        """Stop (if running) and start with a new spec, as one serialized operation.

        If the stop fails the start is not attempted. A factory is only
        called once the old process has exited, still under the kind's lock,
        so anything it writes for the new process never reaches the old one.

        Raises:
            StopTimeoutError: From the stop phase; the factory is not called.
            SpawnError: From the factory or the start phase; the process is left STOPPED.
        """
        slot = self._slots[kind]
        async with slot.lock:
            await self._stop_locked(slot, None)
            return await self._start_locked(slot, spec)

    async def stop_all(self) -> None:
        """Stop every supervised process (shutdown). Errors are logged, not raised."""
        results = await asyncio.gather(
            *(self.stop(kind) for kind in ProcessKind),
            return_exceptions=True,
        )
        for kind, result in zip(ProcessKind, results):
            if isinstance(result, Exception):
                _log_event(
                    logging.ERROR,
                    SystemEvent(
                        event="process_stop_failed",
                        message=f"Failed to stop {kind.value} during shutdown: {result}",
                        process_kind=kind.value,
                        error_type=type(result).__name__,
                        error_message=str(result),
                    ),
                )

    async def _start_locked(self, slot: _Slot, spec: LaunchSpec | SpecFactory) -> ProcessStatus:
        if slot.state is not SupervisorState.STOPPED:
            raise AlreadyRunningError(slot.kind)
        if not isinstance(spec, LaunchSpec):
            spec = await spec()

        slot.state = SupervisorState.STARTING
        try:
            process = await self._spawn(slot, spec)
        except SpawnError as e:
            slot.state = SupervisorState.STOPPED
            self._close_output(slot)
            self._record_stopped(slot.kind, spec.port, spec.endpoint, reason=str(e))
            _log_event(
                logging.ERROR,
                SystemEvent(
                    event="process_spawn_failed",
                    message=str(e),
                    process_kind=slot.kind.value,
                    port=spec.port,
                    error_type=type(e).__name__,
                    error_message=str(e),
                    details={"argv": spec.argv},
                ),
            )
            raise

        slot.generation += 1
        slot.process = process
        slot.spec = spec
        slot.state = SupervisorState.RUNNING

        status = ProcessStatus(
            kind=slot.kind,
            condition=ProcessCondition.RUNNING,
            port=spec.port,
            endpoint=spec.endpoint,
            pid=process.pid,
            started_at=_utcnow(),
        )
        self._registry.write_process(status)
        slot.watcher = asyncio.create_task(
            self._watch(slot, process, slot.generation),
            name=f"{APP_NAME}-watch-{slot.kind.value}",
        )

        _log_event(
            logging.INFO,
            SystemEvent(
                event="process_started",
                message=f"Started {slot.kind.value} on port {spec.port} (pid {process.pid})",
                process_kind=slot.kind.value,
                pid=process.pid,
                port=spec.port,
            ),
        )
        return status

    async def _spawn(self, slot: _Slot, spec: LaunchSpec) -> asyncio.subprocess.Process:
        if is_port_in_use(spec.port):
            raise SpawnError(slot.kind, f"Port {spec.port} is already in use")

        env = {**os.environ, **spec.env} if spec.env else None
        output = self._open_output(slot)

        try:
            process = await asyncio.create_subprocess_exec(
                *spec.argv,
                stdin=subprocess.DEVNULL,
                stdout=output if output is not None else subprocess.DEVNULL,
                stderr=subprocess.STDOUT if output is not None else subprocess.DEVNULL,
                env=env,
                cwd=str(spec.cwd) if spec.cwd else None,
                start_new_session=os.name == "posix",
            )
        except OSError as e:
            # FileNotFoundError / PermissionError for a missing or non-executable binary
            raise SpawnError(slot.kind, f"Failed to launch {spec.command}: {e}") from e

        if self._startup_probe_seconds > 0:
            try:
                exit_code = await asyncio.wait_for(process.wait(), timeout=self._startup_probe_seconds)
            except asyncio.TimeoutError:
                pass
            else:
                raise SpawnError(
                    slot.kind,
                    f"{slot.kind.value} exited during startup (code {exit_code})",
                )

        return process

    async def _stop_locked(self, slot: _Slot, grace_seconds: float | None) -> None:
        process = slot.process
        if slot.state is SupervisorState.STOPPED or process is None:
            return

        spec = slot.spec
        assert spec is not None
        grace = self._stop_grace_seconds if grace_seconds is None else grace_seconds

        slot.state = SupervisorState.STOPPING
        try:
            exit_code = await self._terminate(slot.kind, process, grace)
        except StopTimeoutError as e:
            await self._finish_watcher(slot)
            self._finish_stop(slot)
            self._record_stopped(slot.kind, spec.port, spec.endpoint, reason=str(e))
            _log_event(
                logging.ERROR,
                SystemEvent(
                    event="process_stop_unconfirmed",
                    message=str(e),
                    process_kind=slot.kind.value,
                    pid=process.pid,
                    error_type=type(e).__name__,
                    error_message=str(e),
                ),
            )
            raise

        await self._finish_watcher(slot)
        self._finish_stop(slot)
        self._record_stopped(
            slot.kind,
            spec.port,
            spec.endpoint,
            reason="stopped by request",
            exit_code=exit_code,
        )
        _log_event(
            logging.INFO,
            SystemEvent(
                event="process_stopped",
                message=f"Stopped {slot.kind.value} (pid {process.pid})",
                process_kind=slot.kind.value,
                pid=process.pid,
                exit_code=exit_code,
            ),
        )

    async def _terminate(
        self,
        kind: ProcessKind,
        process: asyncio.subprocess.Process,
        grace: float,
    ) -> int | None:
        """Signal the process group and wait, escalating to SIGKILL."""
        if process.returncode is not None:
            return process.returncode

        self._signal(process, signal.SIGTERM)
        try:
            return await asyncio.wait_for(process.wait(), timeout=grace)
        except asyncio.TimeoutError:
            _log_event(
                logging.WARNING,
                SystemEvent(
                    event="process_stop_grace_exceeded",
                    message=f"{kind.value} ignored SIGTERM for {grace:g}s, sending SIGKILL",
                    process_kind=kind.value,
                    pid=process.pid,
                ),
            )

        self._signal(process, signal.SIGKILL)
        try:
            return await asyncio.wait_for(process.wait(), timeout=FORCE_KILL_WAIT_SECONDS)
        except asyncio.TimeoutError as e:
            raise StopTimeoutError(kind, process.pid) from e

    @staticmethod
    def _signal(process: asyncio.subprocess.Process, sig: signal.Signals) -> None:
        try:
            if os.name == "posix":
                # Own session: process group id equals the child's pid
                os.killpg(process.pid, sig)
            else:
                process.send_signal(sig)
        except ProcessLookupError:
            pass  # Already gone

    async def _watch(
        self,
        slot: _Slot,
        process: asyncio.subprocess.Process,
        generation: int,
    ) -> None:
        """Wait for the process to exit and record an unexpected exit."""
        exit_code = await process.wait()

        # No await between the check and the write: nothing can interleave
        if slot.generation != generation or slot.state is not SupervisorState.RUNNING:
            return

        slot.state = SupervisorState.CRASHED
        spec = slot.spec
        assert spec is not None
        reason = f"exited unexpectedly (code {exit_code})"
        self._record_stopped(slot.kind, spec.port, spec.endpoint, reason=reason, exit_code=exit_code)
        self._finish_stop(slot)
        slot.watcher = None

        _log_event(
            logging.ERROR,
            SystemEvent(
                event="process_crashed",
                message=f"{slot.kind.value} {reason}",
                process_kind=slot.kind.value,
                pid=process.pid,
                exit_code=exit_code,
            ),
        )

    async def _finish_watcher(self, slot: _Slot) -> None:
        watcher = slot.watcher
        slot.watcher = None
        if watcher is None or watcher is asyncio.current_task():
            return
        watcher.cancel()
        try:
            await watcher
        except asyncio.CancelledError:
            pass

    def _finish_stop(self, slot: _Slot) -> None:
        slot.process = None
        slot.state = SupervisorState.STOPPED
        self._close_output(slot)

    def _record_stopped(
        self,
        kind: ProcessKind,
        port: int,
        endpoint: str,
        *,
        reason: str,
        exit_code: int | None = None,
    ) -> None:
        previous = self._registry.read_process(kind)
        self._registry.write_process(
            ProcessStatus(
                kind=kind,
                condition=ProcessCondition.STOPPED,
                port=port,
                endpoint=endpoint,
                reason=reason,
                exit_code=exit_code,
                started_at=previous.started_at,
                stopped_at=_utcnow(),
            )
        )

    def _open_output(self, slot: _Slot) -> IO[bytes] | None:
        if self._log_dir is None:
            return None
        try:
            self._log_dir.mkdir(parents=True, exist_ok=True)
            slot.output = open(self._log_dir / f"{slot.kind.value}.log", "ab")  # noqa: SIM115 - closed on stop
        except OSError as e:
            _log_event(
                logging.WARNING,
                SystemEvent(
                    event="process_log_open_failed",
                    message=f"Cannot open log for {slot.kind.value}, discarding output: {e}",
                    process_kind=slot.kind.value,
                    error_type=type(e).__name__,
                    error_message=str(e),
                ),
            )
            return None
        return slot.output

    @staticmethod
    def _close_output(slot: _Slot) -> None:
        if slot.output is not None:
            slot.output.close()
            slot.output = None

    # =========================================================================
    # Status polling
    # =========================================================================

    async def refresh_auth_status(self, url: str, headers: Mapping[str, str] | None = None) -> bool:
        """Refresh per-provider account counts from the primary proxy.

        Expects the management API's auth-files listing:
        {"files": [{"provider": "claude", "disabled": false, ...}, ...]}.
        Disabled and unavailable entries are not counted.

        Args:
            url: Auth-files endpoint of the running primary proxy.
            headers: Request headers (management key).

        Returns:
            True if provider slots were updated (from data or with an error).
        """
        slot = self._slots[ProcessKind.PRIMARY]
        if slot.state is not SupervisorState.RUNNING:
            return False
        generation = slot.generation

        counts: dict[str, int] | None = None
        error: str | None = None
        try:
            payload = await self._fetch(url, headers=headers)
            counts = _count_accounts(payload)
        except (httpx.HTTPError, ValueError) as e:
            error = str(e) or type(e).__name__
            _log_event(
                logging.WARNING,
                SystemEvent(
                    event="auth_status_refresh_failed",
                    message=f"Failed to refresh provider auth status: {error}",
                    process_kind=ProcessKind.PRIMARY.value,
                    error_type=type(e).__name__,
                    error_message=str(e),
                ),
            )

        # A response from a replaced process must not be recorded
        if slot.generation != generation or slot.state is not SupervisorState.RUNNING:
            return False

        now = _utcnow()
        previous = self._registry.snapshot().providers
        providers = set(previous) | set(counts or {})
        for provider in sorted(providers):
            if counts is None:
                # Keep the last known count, attach the error
                accounts = previous[provider].accounts if provider in previous else 0
                status = ProviderAuthStatus(provider=provider, accounts=accounts, last_error=error, updated_at=now)
            else:
                status = ProviderAuthStatus(provider=provider, accounts=counts.get(provider, 0), updated_at=now)
            self._registry.write_provider(status)
        return True

    async def refresh_copilot_auth(self) -> bool:
        """Probe the Copilot bridge and record whether it is authenticated.

        The bridge answers /v1/models only once GitHub auth has completed.

        Returns:
            The recorded authenticated flag (False if not running).
        """
        slot = self._slots[ProcessKind.SECONDARY]
        if slot.state is not SupervisorState.RUNNING or slot.spec is None:
            return False
        generation = slot.generation

        try:
            await self._fetch(f"{slot.spec.endpoint.rstrip('/')}/v1/models")
            authenticated = True
        except (httpx.HTTPError, ValueError) as e:
            authenticated = False
            _logger.debug(
                {
                    "event": "copilot_auth_probe_failed",
                    "message": f"Copilot bridge not authenticated yet: {e}",
                    "error_type": type(e).__name__,
                    "error_message": str(e),
                }
            )

        if slot.generation != generation or slot.state is not SupervisorState.RUNNING:
            return False

        current = self._registry.read_process(ProcessKind.SECONDARY)
        if current.authenticated != authenticated:
            self._registry.write_process(current.model_copy(update={"authenticated": authenticated}))
        return authenticated


def _count_accounts(payload: Any) -> dict[str, int]:
    """Count usable accounts per provider in an auth-files listing.

    Raises:
        ValueError: If the payload has an unexpected shape.
    """
    files = payload.get("files") if isinstance(payload, dict) else payload
    if not isinstance(files, list):
        raise ValueError("auth-files response has no 'files' list")

    counts: dict[str, int] = {}
    for entry in files:
        if not isinstance(entry, dict):
            continue
        provider = str(entry.get("provider") or "").lower()
        if not provider:
            continue
        counts.setdefault(provider, 0)
        if entry.get("disabled") or entry.get("unavailable"):
            continue
        counts[provider] += 1
    return counts
