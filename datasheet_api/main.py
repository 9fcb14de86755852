"""
FastAPI entry point.

The application exposes:
* ``GET  /api/v1/health``                                      liveness probe
* ``GET  /api/v1/metrics``                                     Prometheus metrics
* ``GET  /api/v1/tasks``                                       task catalog
* ``POST /api/v1/extract``                                     extract from a PDF
* ``GET  /api/v1/distributors/{d}/search``                     part search
* ``GET  /api/v1/distributors/{d}/parts/{part}``               part details
* ``GET  /api/v1/distributors/{d}/parts/{part}/datasheet``     datasheet PDF
* ``POST /api/v1/distributors/{d}/parts/{part}/extract/{task}`` extract from a part's datasheet
"""

from __future__ import annotations

import logging
import math
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from datasheet_api.api.deps import close_services, get_content_cache
from datasheet_api.api.routes.distributors import router as distributors_router
from datasheet_api.api.routes.extract import router as extract_router
from datasheet_api.api.routes.health import router as health_router
from datasheet_api.api.routes.tasks import router as tasks_router
from datasheet_api.core.config import get_settings, get_version
from datasheet_api.core.errors import DatasheetError, RateLimited
from datasheet_api.logging_config import RequestIDMiddleware, setup_logging

# ── Logging ─────────────────────────────────────────────────────────────────

settings = get_settings()
setup_logging(level=settings.LOG_LEVEL, json_format=not settings.DEBUG)
logger = logging.getLogger(__name__)


# ── Lifespan ────────────────────────────────────────────────────────────────


@asynccontextmanager
async def lifespan(_app: FastAPI):
    """Application startup / shutdown hooks."""
    logger.info("Starting %s", settings.APP_NAME)
    if not settings.gemini_api_key:
        logger.warning("No inference API key configured; extraction calls will fail")
    cache = _app.dependency_overrides.get(get_content_cache, get_content_cache)()
    removed = cache.sweep()
    if removed:
        logger.info("Removed %d expired upload record(s)", removed)
    yield
    logger.info("Shutting down %s", settings.APP_NAME)
    close_services()


# ── App factory ─────────────────────────────────────────────────────────────

app = FastAPI(
    title=settings.APP_NAME,
    description=(
        "Structured data extraction from electronic component datasheets, "
        "with cached document uploads and Mouser / DigiKey part lookup."
    ),
    version=get_version(),
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
    docs_url=f"{settings.API_V1_STR}/docs",
    redoc_url=f"{settings.API_V1_STR}/redoc",
    root_path=settings.ROOT_PATH,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestIDMiddleware)


# ── Error handling ──────────────────────────────────────────────────────────


@app.exception_handler(DatasheetError)
async def datasheet_error_handler(_request: Request, exc: DatasheetError) -> JSONResponse:
    """Render domain errors as JSON with their own status code."""
    if exc.status_code >= 500:
        logger.error("%s: %s", type(exc).__name__, exc)
    else:
        logger.info("%s: %s", type(exc).__name__, exc)

    headers: dict[str, str] = {}
    if isinstance(exc, RateLimited) and exc.retry_after is not None:
        headers["Retry-After"] = str(max(1, math.ceil(exc.retry_after)))
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict(),
        headers=headers or None,
    )


# ── Routers ─────────────────────────────────────────────────────────────────

app.include_router(health_router, prefix=settings.API_V1_STR)
app.include_router(tasks_router, prefix=settings.API_V1_STR)
app.include_router(extract_router, prefix=settings.API_V1_STR)
app.include_router(distributors_router, prefix=settings.API_V1_STR)
