"""Process control API endpoints.

Provides:
- POST /api/processes/{kind}/start
- POST /api/processes/{kind}/stop
- POST /api/processes/{kind}/restart

{kind} is "proxy" or "copilot". Each returns the recorded ProcessStatus.
Supervisor errors map to 409 (already running), 502 (spawn failed) and
500 (stop not confirmed).
"""

from __future__ import annotations

__all__ = ["router"]

from typing import Any

from fastapi import APIRouter

from proxypal.api.deps import ControlDep
from proxypal.manager.models import ProcessKind

router = APIRouter()


@router.post("/{kind}/start")
async def start_process(kind: ProcessKind, control: ControlDep) -> dict[str, Any]:
    """Start a process from the current configuration."""
    status = await control.start(kind)
    return status.to_dict()


@router.post("/{kind}/stop")
async def stop_process(kind: ProcessKind, control: ControlDep) -> dict[str, Any]:
    """Stop a process. Stopping a stopped process succeeds."""
    status = await control.stop(kind)
    return status.to_dict()


@router.post("/{kind}/restart")
async def restart_process(kind: ProcessKind, control: ControlDep) -> dict[str, Any]:
    """Restart a process with the current configuration (starts it if stopped)."""
    status = await control.restart(kind)
    return status.to_dict()
