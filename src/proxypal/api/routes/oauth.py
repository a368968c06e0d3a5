"""OAuth flow endpoints.

Provides:
- POST /api/oauth/{provider}/start - Get a login URL (requires the proxy running)
- POST /api/oauth/{provider}/callback - Complete the pending flow for a state

A pending flow is consumed exactly once and expires after ten minutes;
unknown, expired or mismatched states answer 400.
"""

from __future__ import annotations

__all__ = ["router"]

from fastapi import APIRouter

from proxypal.api.deps import ControlDep
from proxypal.api.schemas import OAuthCallbackRequest, OAuthCallbackResponse, OAuthStartResponse

router = APIRouter()


@router.post("/{provider}/start")
async def start_oauth(provider: str, control: ControlDep) -> OAuthStartResponse:
    """Begin a browser login for a provider."""
    flow = await control.begin_oauth(provider)
    return OAuthStartResponse(**flow)


@router.post("/{provider}/callback")
async def oauth_callback(provider: str, body: OAuthCallbackRequest, control: ControlDep) -> OAuthCallbackResponse:
    """Complete the pending flow matching the callback's state."""
    flow = await control.complete_oauth(provider, body.state)
    return OAuthCallbackResponse(provider=flow.provider)
