"""Provider utility endpoints.

Provides:
- POST /api/providers/test - Connection test against an OpenAI-compatible provider
- GET /api/system-proxy - Detected system proxy URL (system_proxy_router)

Both always answer 200; failures are part of the response body.
"""

from __future__ import annotations

__all__ = ["router", "system_proxy_router"]

from fastapi import APIRouter

from proxypal.api.deps import ControlDep
from proxypal.api.schemas import ProviderTestBody, SystemProxyResponse
from proxypal.manager.models import ProviderTestRequest, ProviderTestResult

router = APIRouter()
system_proxy_router = APIRouter()


@router.post("/test")
async def test_provider(body: ProviderTestBody, control: ControlDep) -> ProviderTestResult:
    """Measure latency to a provider's /models endpoint."""
    request = ProviderTestRequest(base_url=body.base_url, api_key=body.api_key, headers=body.headers)
    return await control.test_provider_connection(request)


@system_proxy_router.get("")
async def get_system_proxy(control: ControlDep) -> SystemProxyResponse:
    """Detect the system's upstream proxy (environment first, then OS settings)."""
    return SystemProxyResponse(proxy_url=await control.detect_system_proxy())
