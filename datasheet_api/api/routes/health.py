"""Health-check and metrics routes."""

from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import PlainTextResponse

from datasheet_api.api.deps import configured_distributors
from datasheet_api.core.config import get_settings, get_version
from datasheet_api.core.metrics import generate_metrics
from datasheet_api.schemas import HealthResponse

router = APIRouter(tags=["health"])

_version = get_version()


@router.get("/health", response_model=HealthResponse)
def health_check() -> HealthResponse:
    """Liveness probe; also reports which upstreams are configured."""
    settings = get_settings()
    return HealthResponse(
        status="ok",
        version=_version,
        inference_configured=bool(settings.gemini_api_key),
        distributors=configured_distributors(settings),
    )


@router.get(
    "/metrics",
    response_class=PlainTextResponse,
    tags=["observability"],
)
def prometheus_metrics() -> PlainTextResponse:
    """Expose cache, extraction and distributor counters."""
    return PlainTextResponse(
        generate_metrics(),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )
