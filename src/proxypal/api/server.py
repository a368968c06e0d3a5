"""FastAPI application for the proxypal control API.

Routes:
- /api/config - Configuration document
- /api/status - Status snapshot
- /api/processes - Process control
- /api/providers - Provider connection test
- /api/system-proxy - System proxy detection
- /api/oauth - OAuth flows

Security:
- Served only on a Unix domain socket in the runtime directory; OS file
  permissions (0600) provide authentication. No token, no TCP listener.

Usage:
    app = create_api_app(control)
"""

from __future__ import annotations

__all__ = ["create_api_app"]

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from proxypal import __version__
from proxypal.exceptions import ProxyPalError
from proxypal.manager.control import ControlPlane

from .errors import (
    APIError,
    api_error_handler,
    http_exception_handler,
    proxypal_error_handler,
    validation_error_handler,
)
from .routes import config, oauth, processes, providers, status


def create_api_app(control: ControlPlane | None = None) -> FastAPI:
    """Create the FastAPI application with all routes.

    Args:
        control: Control plane the routes operate on. When None, every
            route answers 503 until app.state.control is set.

    Returns:
        Configured FastAPI application.
    """
    app = FastAPI(
        title="proxypal API",
        description="Control API for the proxypal daemon",
        version=__version__,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.control = control

    # Register exception handlers for structured error responses
    app.add_exception_handler(APIError, api_error_handler)
    app.add_exception_handler(ProxyPalError, proxypal_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)

    app.include_router(config.router, prefix="/api/config", tags=["config"])
    app.include_router(status.router, prefix="/api/status", tags=["status"])
    app.include_router(processes.router, prefix="/api/processes", tags=["processes"])
    app.include_router(providers.router, prefix="/api/providers", tags=["providers"])
    app.include_router(providers.system_proxy_router, prefix="/api/system-proxy", tags=["providers"])
    app.include_router(oauth.router, prefix="/api/oauth", tags=["oauth"])

    return app
