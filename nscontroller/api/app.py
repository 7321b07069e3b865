"""FastAPI application factory for the controller's probe endpoints.

Usage::

    from nscontroller.api.app import create_app

    app = create_app(cache=cache, controllers=controllers)

Served by uvicorn from ``nscontroller.app``; also used directly by tests.
"""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from nscontroller.api.routes import router

_log = structlog.get_logger(component="api.app")


def create_app(cache: Any, controllers: list[Any] | None = None) -> FastAPI:
    """Create the probe/metrics application.

    Args:
        cache:       ResourceCache whose readiness backs ``/readyz``.
        controllers: Running Controller instances; their queue depths are
                     reported by ``/readyz``.
    """
    from nscontroller import __version__

    app = FastAPI(
        title="nscontroller",
        summary="Namespace label and network policy controller",
        version=__version__,
        docs_url=None,
        redoc_url=None,
    )
    app.state.cache = cache
    app.state.controllers = controllers or []
    app.include_router(router)

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Catch-all for unhandled exceptions; never expose stack traces."""
        _log.error("unhandled_exception", path=str(request.url.path), error=str(exc))
        return JSONResponse(status_code=500, content={"error": "INTERNAL_ERROR"})

    return app
