"""Configuration API endpoints.

Provides:
- GET /api/config - Current document (camelCase JSON)
- PUT /api/config - Replace the document and reconcile running processes
- GET /api/config/path - Location of the persisted document

PUT semantics:
- 200: saved, affected processes restarted
- 422: document failed validation, nothing saved
- 500: save failed, nothing changed
- 502: saved, but restarting a process failed (details.config_saved is true;
       retry with POST /api/processes/{kind}/restart)
"""

from __future__ import annotations

__all__ = ["router"]

from typing import Any

from fastapi import APIRouter, Body
from pydantic import ValidationError

from proxypal.api.deps import ControlDep
from proxypal.api.errors import APIError, ErrorCode, describe_validation_errors
from proxypal.api.schemas import ConfigPathResponse, ConfigUpdateResponse
from proxypal.config import AppConfig

router = APIRouter()


@router.get("")
async def get_config(control: ControlDep) -> dict[str, Any]:
    """Get the current configuration document."""
    return control.get_config().to_document()


@router.put("")
async def save_config(control: ControlDep, document: dict[str, Any] = Body(...)) -> ConfigUpdateResponse:
    """Replace the configuration document.

    Missing fields take their defaults; unknown fields are kept.
    """
    try:
        config = AppConfig.model_validate(document)
    except ValidationError as e:
        message, entries = describe_validation_errors(e.errors())
        raise APIError(
            422,
            ErrorCode.CONFIG_INVALID,
            f"Invalid configuration: {message}",
            validation_errors=entries,
        ) from e

    # PersistenceError / ReconciliationPartialFailure map via the app handler
    result = await control.save_config(config)
    return ConfigUpdateResponse(
        config=result.config.to_document(),
        status=result.snapshot.to_dict(),
        actions=[[kind.value, action.value] for kind, action in result.actions],
    )


@router.get("/path")
async def get_config_path(control: ControlDep) -> ConfigPathResponse:
    """Get the location of the persisted document."""
    path = control.store.path
    return ConfigPathResponse(path=str(path), exists=path.exists())
