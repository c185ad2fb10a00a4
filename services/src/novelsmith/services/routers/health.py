"""Health and metrics endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Request, Response

from ..metrics import render

__all__ = ["router", "get_service_version", "health", "metrics_endpoint"]


router = APIRouter(prefix="/api/v1", tags=["health"])


_METRICS_MEDIA_TYPE = "text/plain; version=0.0.4"


def get_service_version(request: Request) -> str:
    """Return the service version attached to the application state."""

    return getattr(request.app.state, "service_version", "unknown")


def _health_payload(request: Request, version: str) -> dict[str, Any]:
    payload: dict[str, Any] = {"status": "ok", "version": version}

    endpoint = getattr(request.app.state, "endpoint_settings", None)
    payload["model_configured"] = bool(endpoint is not None and endpoint.is_configured)

    manager = getattr(request.app.state, "job_manager", None)
    if manager is not None:
        payload["jobs_tracked"] = len(manager.registry)
    broker = getattr(request.app.state, "stream_broker", None)
    if broker is not None:
        payload["streams_tracked"] = len(broker.registry)
    sweeper = getattr(request.app.state, "retention_sweeper", None)
    payload["retention_sweeper"] = "running" if sweeper is not None and sweeper.running else "stopped"
    return payload


@router.get("/healthz")
async def health(request: Request, version: str = Depends(get_service_version)) -> dict[str, Any]:
    return _health_payload(request, version)


@router.get("/metrics")
async def metrics_endpoint(version: str = Depends(get_service_version)) -> Response:
    """Return the Prometheus metrics payload without implicit charsets."""

    metrics_payload = render(version).encode("utf-8")
    response = Response(content=metrics_payload)
    response.headers["Content-Type"] = _METRICS_MEDIA_TYPE
    return response
