"""HTTP calls made to supervised processes and upstream providers.

- fetch_json: generic "GET a URL, return its JSON" used by status polling
  against the primary proxy's management API and the Copilot bridge.
- test_provider_connection: latency probe against an OpenAI-compatible
  provider's /models endpoint. Never raises; failures are results.

Both accept an optional httpx transport so tests can substitute
httpx.MockTransport without patching.
"""

from __future__ import annotations

__all__ = [
    "FetchJson",
    "fetch_json",
    "test_provider_connection",
]

import logging
import time
from collections.abc import Awaitable, Mapping
from typing import Any, Protocol

import httpx

from proxypal.constants import APP_NAME, DEFAULT_HTTP_TIMEOUT_SECONDS, PROVIDER_TEST_TIMEOUT_SECONDS
from proxypal.manager.models import ProviderTestRequest, ProviderTestResult

_logger = logging.getLogger(f"{APP_NAME}.manager.upstream")

# Error bodies are truncated to this many characters in result messages
_ERROR_BODY_PREVIEW_CHARS = 200


class FetchJson(Protocol):
    """Callable shape of fetch_json, injected into the supervisor."""

    def __call__(
        self,
        url: str,
        *,
        headers: Mapping[str, str] | None = None,
        timeout: float = DEFAULT_HTTP_TIMEOUT_SECONDS,
    ) -> Awaitable[Any]: ...


async def fetch_json(
    url: str,
    *,
    headers: Mapping[str, str] | None = None,
    timeout: float = DEFAULT_HTTP_TIMEOUT_SECONDS,
    transport: httpx.AsyncBaseTransport | None = None,
) -> Any:
    """GET a URL and decode its JSON body.

    Args:
        url: Absolute URL.
        headers: Optional request headers.
        timeout: Total request timeout in seconds.
        transport: Optional httpx transport (tests).

    Returns:
        Decoded JSON value.

    Raises:
        httpx.HTTPError: Connection failure, timeout, or non-2xx status.
        ValueError: Body is not valid JSON.
    """
    async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
        response = await client.get(url, headers=dict(headers or {}))
        response.raise_for_status()
        return response.json()


def _count_models(response: httpx.Response) -> int | None:
    """Count models in an OpenAI-style list response ({"data": [...]})."""
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict) and isinstance(body.get("data"), list):
        return len(body["data"])
    if isinstance(body, list):
        return len(body)
    return None


async def test_provider_connection(
    request: ProviderTestRequest,
    *,
    timeout: float = PROVIDER_TEST_TIMEOUT_SECONDS,
    transport: httpx.AsyncBaseTransport | None = None,
) -> ProviderTestResult:
    """Probe an OpenAI-compatible provider and measure latency.

    Args:
        request: Base URL, key, and extra headers.
        timeout: Total request timeout in seconds.
        transport: Optional httpx transport (tests).

    Returns:
        ProviderTestResult. Unreachable hosts, timeouts, invalid URLs and
        non-2xx answers all produce success=False with a message.
    """
    url = f"{request.base_url.rstrip('/')}/models"
    headers = dict(request.headers or {})
    if request.api_key:
        headers.setdefault("Authorization", f"Bearer {request.api_key}")

    try:
        # Header values must be ASCII; a pasted key with a smart quote is not
        request_headers = httpx.Headers(headers)
    except UnicodeEncodeError as e:
        bad = e.object[e.start : e.end]
        return ProviderTestResult(success=False, message=f"Invalid header or API key: non-ASCII character {bad!r}")

    start = time.perf_counter()
    try:
        async with httpx.AsyncClient(timeout=timeout, transport=transport, follow_redirects=True) as client:
            response = await client.get(url, headers=request_headers)
    except httpx.TimeoutException:
        return ProviderTestResult(success=False, message=f"Connection timed out after {timeout:g}s")
    except (httpx.HTTPError, httpx.InvalidURL, UnicodeError) as e:
        _logger.debug(
            {
                "event": "provider_test_failed",
                "message": f"Provider connection test failed: {e}",
                "error_type": type(e).__name__,
                "error_message": str(e),
                "details": {"url": url},
            }
        )
        return ProviderTestResult(success=False, message=f"Connection failed: {str(e) or type(e).__name__}")

    latency_ms = int((time.perf_counter() - start) * 1000)

    if not response.is_success:
        preview = response.text[:_ERROR_BODY_PREVIEW_CHARS].strip()
        message = f"HTTP {response.status_code}"
        if preview:
            message = f"{message}: {preview}"
        return ProviderTestResult(success=False, message=message, latency_ms=latency_ms)

    models_found = _count_models(response)
    message = "Connection successful"
    if models_found is not None:
        message = f"Connection successful ({models_found} models)"
    return ProviderTestResult(
        success=True,
        message=message,
        latency_ms=latency_ms,
        models_found=models_found,
    )
