"""Probe and metrics routes."""

from __future__ import annotations

from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from nscontroller.models.resources import CacheReadiness

router = APIRouter()


@router.get("/healthz")
async def healthz() -> JSONResponse:
    """Liveness: the event loop is serving requests."""
    return JSONResponse({"status": "ok"})


@router.get("/readyz")
async def readyz(request: Request) -> JSONResponse:
    """Readiness: every watched kind has completed its initial list."""
    cache = request.app.state.cache
    readiness = cache.readiness()
    queues = {c.name: len(c.queue) for c in request.app.state.controllers}
    ready = readiness in (CacheReadiness.READY, CacheReadiness.DEGRADED)
    return JSONResponse(
        status_code=200 if ready else 503,
        content={"status": "ready" if ready else "not_ready", "cache": readiness.value, "queues": queues},
    )


@router.get("/metrics")
async def metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
