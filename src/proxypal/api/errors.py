"""Structured API error handling.

This module provides:
- ErrorCode enum with domain-grouped error codes
- APIError exception class for structured error responses
- to_api_error: mapping of domain exceptions to HTTP errors
- Global exception handlers for consistent error formatting

Usage:
    from proxypal.api.errors import APIError, ErrorCode

    raise APIError(
        status_code=409,
        code=ErrorCode.PROCESS_ALREADY_RUNNING,
        message="proxy is already running",
        details={"kind": "proxy"},
    )

Response format:
    {
        "detail": {
            "code": "PROCESS_ALREADY_RUNNING",
            "message": "proxy is already running",
            "details": {"kind": "proxy"}
        }
    }
"""

from __future__ import annotations

__all__ = [
    "APIError",
    "ErrorCode",
    "api_error_handler",
    "describe_validation_errors",
    "http_exception_handler",
    "proxypal_error_handler",
    "to_api_error",
    "validation_error_handler",
]

from collections.abc import Sequence
from enum import Enum
from typing import Any

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from proxypal.exceptions import (
    AlreadyRunningError,
    NotRunningError,
    OAuthFlowError,
    PersistenceError,
    ProxyPalError,
    ReconciliationPartialFailure,
    SpawnError,
    StopTimeoutError,
)


class ErrorCode(str, Enum):
    """Machine-readable error codes, prefixed by the failing area:

    - CONFIG_*: Configuration errors
    - PROCESS_*: Supervised process errors
    - OAUTH_*: OAuth flow errors
    - VALIDATION_*: Input validation errors
    - INTERNAL_*: Internal server errors
    """

    # Config errors (422, 500)
    CONFIG_INVALID = "CONFIG_INVALID"
    CONFIG_SAVE_FAILED = "CONFIG_SAVE_FAILED"

    # Process errors (409, 500, 502)
    PROCESS_ALREADY_RUNNING = "PROCESS_ALREADY_RUNNING"
    PROCESS_NOT_RUNNING = "PROCESS_NOT_RUNNING"
    PROCESS_SPAWN_FAILED = "PROCESS_SPAWN_FAILED"
    PROCESS_STOP_TIMEOUT = "PROCESS_STOP_TIMEOUT"
    PROCESS_RESTART_FAILED = "PROCESS_RESTART_FAILED"

    # OAuth errors (400)
    OAUTH_FLOW_FAILED = "OAUTH_FLOW_FAILED"

    # Generic
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    UPSTREAM_ERROR = "UPSTREAM_ERROR"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"


class APIError(HTTPException):
    """HTTPException whose detail is a {code, message, details?} object.

    `code` is kept on the instance so handlers and tests can match on it
    without digging into the detail dict.
    """

    def __init__(
        self,
        status_code: int,
        code: ErrorCode,
        message: str,
        details: dict[str, Any] | None = None,
        validation_errors: list[dict[str, Any]] | None = None,
    ) -> None:
        self.code = code
        detail: dict[str, Any] = {"code": code.value, "message": message}
        # Empty collections are omitted from the response
        if details:
            detail["details"] = details
        if validation_errors:
            detail["validation_errors"] = validation_errors
        super().__init__(status_code=status_code, detail=detail)


def to_api_error(exc: ProxyPalError) -> APIError:
    """Map a domain exception to its HTTP representation.

    Args:
        exc: Exception raised by the command surface.

    Returns:
        APIError with status code, error code and details.
    """
    if isinstance(exc, AlreadyRunningError):
        return APIError(409, ErrorCode.PROCESS_ALREADY_RUNNING, str(exc), {"kind": exc.kind.value})
    if isinstance(exc, NotRunningError):
        return APIError(409, ErrorCode.PROCESS_NOT_RUNNING, str(exc), {"kind": exc.kind.value})
    if isinstance(exc, SpawnError):
        return APIError(502, ErrorCode.PROCESS_SPAWN_FAILED, str(exc), {"kind": exc.kind.value})
    if isinstance(exc, StopTimeoutError):
        return APIError(500, ErrorCode.PROCESS_STOP_TIMEOUT, str(exc), {"kind": exc.kind.value, "pid": exc.pid})
    if isinstance(exc, PersistenceError):
        return APIError(500, ErrorCode.CONFIG_SAVE_FAILED, str(exc))
    if isinstance(exc, ReconciliationPartialFailure):
        return APIError(
            502,
            ErrorCode.PROCESS_RESTART_FAILED,
            str(exc),
            {
                "config_saved": True,
                "failed": {kind.value: reason for kind, reason in exc.failed.items()},
                "status": exc.snapshot.to_dict(),
            },
        )
    if isinstance(exc, OAuthFlowError):
        return APIError(400, ErrorCode.OAUTH_FLOW_FAILED, str(exc))
    return APIError(500, ErrorCode.INTERNAL_ERROR, str(exc))


def describe_validation_errors(errors: Sequence[Any]) -> tuple[str, list[dict[str, Any]]]:
    """Summarize pydantic errors for an error response.

    Returns:
        (message, entries): "<field>: <msg>" for a single error or a count
        otherwise, and one {loc, msg, type} entry per error.
    """
    entries = [
        {"loc": list(err.get("loc", [])), "msg": err.get("msg", ""), "type": err.get("type", "")}
        for err in errors
    ]
    if len(entries) != 1:
        return f"{len(entries)} validation errors", entries

    only = entries[0]
    # Request bodies report a leading "body" segment
    field = ".".join(str(part) for part in only["loc"] if part != "body")
    message = only["msg"] or "Validation error"
    return (f"{field}: {message}" if field else message), entries


async def api_error_handler(request: Request, exc: APIError) -> JSONResponse:
    """Render an APIError raised by a route."""
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


async def proxypal_error_handler(request: Request, exc: ProxyPalError) -> JSONResponse:
    """Render a domain exception that escaped a route."""
    return await api_error_handler(request, to_api_error(exc))


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Render request validation failures as VALIDATION_ERROR (422)."""
    message, entries = describe_validation_errors(exc.errors())
    error = APIError(422, ErrorCode.VALIDATION_ERROR, message, validation_errors=entries)
    return await api_error_handler(request, error)


# Plain HTTP errors raised by the framework (404 routing, 503 without control plane)
_STATUS_CODES: dict[int, ErrorCode] = {
    400: ErrorCode.VALIDATION_ERROR,
    404: ErrorCode.NOT_FOUND,
    405: ErrorCode.NOT_FOUND,
    409: ErrorCode.CONFLICT,
    502: ErrorCode.UPSTREAM_ERROR,
    503: ErrorCode.SERVICE_UNAVAILABLE,
}


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Give framework HTTP errors the same {code, message} shape.

    Details that are already structured pass through unchanged.
    """
    if isinstance(exc.detail, dict) and "code" in exc.detail:
        detail = exc.detail
    else:
        code = _STATUS_CODES.get(exc.status_code, ErrorCode.INTERNAL_ERROR)
        detail = {"code": code.value, "message": str(exc.detail or f"HTTP {exc.status_code}")}
    return JSONResponse(status_code=exc.status_code, content={"detail": detail}, headers=exc.headers)
