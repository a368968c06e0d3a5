"""Fixtures for API route tests.

Routes are exercised through the full app (handlers included) with a
mocked ControlPlane, so each test controls exactly what the command
surface returns or raises.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from proxypal.api.server import create_api_app
from proxypal.manager.status import StatusRegistry


@pytest.fixture
def registry() -> StatusRegistry:
    return StatusRegistry()


@pytest.fixture
def mock_control(registry: StatusRegistry) -> MagicMock:
    """ControlPlane stand-in with async operations as AsyncMocks."""
    control = MagicMock()
    control.get_status.return_value = registry.snapshot()
    for name in (
        "save_config",
        "refresh_status",
        "start",
        "stop",
        "restart",
        "test_provider_connection",
        "detect_system_proxy",
        "begin_oauth",
        "complete_oauth",
    ):
        setattr(control, name, AsyncMock())
    return control


@pytest.fixture
def app(mock_control: MagicMock) -> FastAPI:
    return create_api_app(mock_control)


@pytest.fixture
def client(app: FastAPI) -> TestClient:
    return TestClient(app)
