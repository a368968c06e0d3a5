"""API client helper for CLI commands that need the running daemon.

Runtime commands (status, start/stop/restart, test-provider, detect-proxy)
call the daemon's API over its Unix domain socket. OS file permissions on
the socket provide authentication: no token needed.

File-based commands (config show, config path) read files directly.
"""

from __future__ import annotations

__all__ = [
    "DaemonAPIError",
    "DaemonNotRunningError",
    "api_request",
]

import json
import time
from pathlib import Path
from typing import Any, NoReturn

import click
import httpx

from proxypal.constants import DEFAULT_HTTP_TIMEOUT_SECONDS, SOCKET_PATH


class DaemonNotRunningError(click.ClickException):
    """Raised when the daemon is not running (no socket or connection refused)."""

    def __init__(self) -> None:
        super().__init__("proxypal daemon is not running.\nStart it with: proxypal serve")


class DaemonAPIError(click.ClickException):
    """Raised when an API request fails.

    Attributes:
        status_code: HTTP status, if a response was received.
        code: Structured error code from the response, if any.
        details: Structured error details from the response, if any.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        if status_code:
            super().__init__(f"API error ({status_code}): {message}")
        else:
            super().__init__(f"API error: {message}")
        self.status_code = status_code
        self.code = code
        self.details = details or {}


def _uds_client(socket_path: Path, timeout: float) -> httpx.Client:
    # A missing socket file is treated like a refused connection (retried)
    if not socket_path.exists():
        raise FileNotFoundError(f"Socket not found: {socket_path}")
    return httpx.Client(
        transport=httpx.HTTPTransport(uds=str(socket_path)),
        base_url="http://proxypal",  # Host is ignored over UDS
        timeout=timeout,
    )


def _raise_for_response(e: httpx.HTTPStatusError) -> NoReturn:
    try:
        detail = e.response.json().get("detail", str(e))
    except (json.JSONDecodeError, AttributeError):
        detail = str(e)

    if isinstance(detail, dict):
        raise DaemonAPIError(
            str(detail.get("message", e)),
            e.response.status_code,
            code=detail.get("code"),
            details=detail.get("details"),
        ) from e
    raise DaemonAPIError(str(detail), e.response.status_code) from e


def _decode(response: httpx.Response) -> dict[str, Any] | list[Any]:
    if response.status_code == 204 or not response.content:
        return {}
    body = response.json()
    return body if isinstance(body, (dict, list)) else {"value": body}


def api_request(
    method: str,
    endpoint: str,
    *,
    json_data: dict[str, Any] | None = None,
    params: dict[str, Any] | None = None,
    timeout: float = DEFAULT_HTTP_TIMEOUT_SECONDS,
    socket_path: Path | None = None,
    max_retries: int = 3,
    backoff_ms: int = 100,
) -> dict[str, Any] | list[Any]:
    """Call the daemon's API over its Unix domain socket.

    Only connection failures are retried (the socket may still be coming
    up right after `proxypal serve`); the delay doubles after each attempt.
    Error responses are never retried.

    Args:
        method: HTTP method.
        endpoint: Path such as "/api/status".
        json_data: JSON body for POST/PUT.
        params: Query parameters.
        timeout: Per-request timeout in seconds.
        socket_path: Socket location (defaults to the runtime directory).
        max_retries: Connection attempts before giving up.
        backoff_ms: Delay after the first failed attempt.

    Returns:
        The decoded JSON body ({} for an empty response).

    Raises:
        DaemonNotRunningError: No daemon answered on the socket.
        DaemonAPIError: The daemon answered with an error, or the request failed.
    """
    socket_path = socket_path or SOCKET_PATH
    delay = backoff_ms / 1000
    last_error: Exception | None = None

    for attempt in range(1, max_retries + 1):
        try:
            with _uds_client(socket_path, timeout) as client:
                response = client.request(method, endpoint, json=json_data, params=params)
            response.raise_for_status()
            return _decode(response)
        except (FileNotFoundError, httpx.ConnectError) as e:
            last_error = e
        except httpx.HTTPStatusError as e:
            _raise_for_response(e)
        except httpx.HTTPError as e:
            raise DaemonAPIError(str(e)) from e

        if attempt < max_retries:
            time.sleep(delay)
            delay *= 2

    raise DaemonNotRunningError() from last_error
