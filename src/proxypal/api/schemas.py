"""API schemas (Pydantic models) for request/response validation."""

from __future__ import annotations

__all__ = [
    "ConfigPathResponse",
    "ConfigUpdateResponse",
    "OAuthCallbackRequest",
    "OAuthCallbackResponse",
    "OAuthStartResponse",
    "ProviderTestBody",
    "SystemProxyResponse",
]

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ConfigUpdateResponse(BaseModel):
    """Result of PUT /api/config."""

    config: Dict[str, Any]
    status: Dict[str, Any]
    actions: List[List[str]] = Field(default_factory=list)  # [[kind, action], ...]


class ConfigPathResponse(BaseModel):
    path: str
    exists: bool


class ProviderTestBody(BaseModel):
    """Connection test request. Accepts camelCase (UI) and snake_case (CLI)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    base_url: str = Field(min_length=1)
    api_key: str = ""
    headers: Optional[Dict[str, str]] = None


class SystemProxyResponse(BaseModel):
    proxy_url: Optional[str] = None


class OAuthStartResponse(BaseModel):
    provider: str
    url: str
    state: str


class OAuthCallbackRequest(BaseModel):
    state: str = Field(min_length=1)


class OAuthCallbackResponse(BaseModel):
    provider: str
    completed: bool = True
