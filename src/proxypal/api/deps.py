"""Shared dependencies for API routes.

Usage with Annotated:
    from proxypal.api.deps import ControlDep

    @router.get("")
    async def get_status(control: ControlDep) -> dict[str, Any]:
        ...
"""

from __future__ import annotations

__all__ = [
    "ControlDep",
    "get_control",
]

from typing import Annotated

from fastapi import Depends, HTTPException, Request

from proxypal.manager.control import ControlPlane


def get_control(request: Request) -> ControlPlane:
    """Get the ControlPlane from app.state.

    Raises:
        HTTPException: 503 if the daemon has not finished starting.
    """
    control = getattr(request.app.state, "control", None)
    if control is None:
        raise HTTPException(status_code=503, detail="Control plane not available. Daemon may still be starting.")
    return control


ControlDep = Annotated[ControlPlane, Depends(get_control)]
