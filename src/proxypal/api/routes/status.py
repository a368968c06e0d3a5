"""Status API endpoints.

Provides:
- GET /api/status - Snapshot of process and provider status (no side effects)
- POST /api/status/refresh - Poll running processes, then return the snapshot
"""

from __future__ import annotations

__all__ = ["router"]

from typing import Any

from fastapi import APIRouter

from proxypal.api.deps import ControlDep

router = APIRouter()


@router.get("")
async def get_status(control: ControlDep) -> dict[str, Any]:
    """Get the current status snapshot. Safe to poll at high frequency."""
    return control.get_status().to_dict()


@router.post("/refresh")
async def refresh_status(control: ControlDep) -> dict[str, Any]:
    """Refresh provider and Copilot authentication, then return the snapshot."""
    snapshot = await control.refresh_status()
    return snapshot.to_dict()
