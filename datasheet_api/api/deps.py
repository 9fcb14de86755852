"""
FastAPI dependency-injection helpers.

Every shared service (cache, clients, orchestrator, credential
manager) is built once per process from ``Settings`` and handed
to routes through ``Depends()``.  Tests swap any of them via
``app.dependency_overrides``.
"""

from __future__ import annotations

import logging
from functools import lru_cache

from fastapi import Depends, HTTPException

from datasheet_api.core.config import Settings, get_settings
from datasheet_api.core.constants import DISTRIBUTOR_DIGIKEY, DISTRIBUTOR_MOUSER
from datasheet_api.services.credentials import (
    CredentialManager,
    OAuth2ClientCredentialsProvider,
    StaticApiKeyProvider,
)
from datasheet_api.services.distributors import (
    DigiKeyClient,
    DistributorClient,
    MouserClient,
)
from datasheet_api.services.distributors.digikey import TOKEN_PATH
from datasheet_api.services.extractor import ExtractionOrchestrator
from datasheet_api.services.file_cache import ContentCache, FileCacheStore
from datasheet_api.services.gemini_files import GeminiFileClient
from datasheet_api.services.inference import InferenceClient
from datasheet_api.services.inflight import InflightGroup
from datasheet_api.services.providers import resolve_api_key
from datasheet_api.services.task_registry import TaskRegistry, default_registry

logger = logging.getLogger(__name__)


# ── Extraction services ─────────────────────────────────────────────────────


def get_registry() -> TaskRegistry:
    """Return the built-in task registry."""
    return default_registry(get_settings().DEFAULT_MODEL)


@lru_cache
def get_content_cache() -> ContentCache:
    """Return the process-wide uploaded-file cache.

    Expired records are swept when the cache is first opened.
    """
    settings = get_settings()
    return ContentCache(
        FileCacheStore(settings.file_cache_path),
        ttl=settings.FILE_CACHE_TTL,
        safety_margin=settings.FILE_CACHE_SAFETY_MARGIN,
        inflight=InflightGroup("upload", max_workers=settings.INFLIGHT_MAX_WORKERS),
    )


@lru_cache
def get_file_client() -> GeminiFileClient:
    """Return the shared Gemini File API client."""
    settings = get_settings()
    return GeminiFileClient(
        resolve_api_key() or "",
        base_url=settings.GEMINI_BASE_URL,
        timeout=settings.UPLOAD_TIMEOUT,
    )


@lru_cache
def get_inference_client() -> InferenceClient:
    """Return the shared generation client."""
    settings = get_settings()
    return InferenceClient(
        resolve_api_key(),
        timeout=settings.INFERENCE_TIMEOUT,
    )


def get_orchestrator(
    registry: TaskRegistry = Depends(get_registry),
    cache: ContentCache = Depends(get_content_cache),
    files: GeminiFileClient = Depends(get_file_client),
    inference: InferenceClient = Depends(get_inference_client),
) -> ExtractionOrchestrator:
    """Assemble the extraction orchestrator from shared services."""
    settings = get_settings()
    return ExtractionOrchestrator(
        cache,
        registry,
        files,
        inference,
        default_model=settings.DEFAULT_MODEL,
        default_temperature=settings.DEFAULT_TEMPERATURE,
        max_attempts=settings.EXTRACTION_MAX_ATTEMPTS,
        upload_attempts=settings.UPLOAD_MAX_ATTEMPTS,
        verify_remote=settings.FILE_CACHE_VERIFY_REMOTE,
        upload_timeout=settings.UPLOAD_TIMEOUT,
        include_output_in_correction=settings.EXTRACTION_INCLUDE_OUTPUT_IN_CORRECTION,
        max_correction_output_length=settings.EXTRACTION_MAX_CORRECTION_OUTPUT_LENGTH,
    )


# ── Distributors ────────────────────────────────────────────────────────────


def configured_distributors(settings: Settings) -> list[str]:
    """Distributors whose credentials are present in *settings*."""
    configured: list[str] = []
    if settings.MOUSER_API_KEY:
        configured.append(DISTRIBUTOR_MOUSER)
    if settings.DIGIKEY_CLIENT_ID and settings.DIGIKEY_CLIENT_SECRET:
        configured.append(DISTRIBUTOR_DIGIKEY)
    return configured


@lru_cache
def get_credential_manager() -> CredentialManager:
    """Return the process-wide credential manager.

    Providers are registered for both distributors even when
    unconfigured, so a call fails with ``AuthFailure`` rather
    than a missing route.
    """
    settings = get_settings()
    return CredentialManager(
        [
            StaticApiKeyProvider(DISTRIBUTOR_MOUSER, settings.MOUSER_API_KEY),
            OAuth2ClientCredentialsProvider(
                DISTRIBUTOR_DIGIKEY,
                token_url=f"{settings.DIGIKEY_BASE_URL}{TOKEN_PATH}",
                client_id=settings.DIGIKEY_CLIENT_ID,
                client_secret=settings.DIGIKEY_CLIENT_SECRET,
                timeout=settings.DISTRIBUTOR_TIMEOUT,
            ),
        ],
        margin=settings.TOKEN_REFRESH_MARGIN,
    )


@lru_cache
def get_distributor_clients() -> dict[str, DistributorClient]:
    """Return one client per supported distributor, keyed by id."""
    settings = get_settings()
    credentials = get_credential_manager()
    common = {
        "timeout": settings.DISTRIBUTOR_TIMEOUT,
        "max_retries": settings.RATE_LIMIT_MAX_RETRIES,
        "backoff_base": settings.RATE_LIMIT_BACKOFF_BASE,
        "backoff_max": settings.RATE_LIMIT_BACKOFF_MAX,
        "download_timeout": settings.DOC_DOWNLOAD_TIMEOUT,
        "download_max_bytes": settings.DOC_DOWNLOAD_MAX_BYTES,
    }
    return {
        DISTRIBUTOR_MOUSER: MouserClient(
            credentials,
            base_url=settings.MOUSER_BASE_URL,
            **common,
        ),
        DISTRIBUTOR_DIGIKEY: DigiKeyClient(
            credentials,
            base_url=settings.DIGIKEY_BASE_URL,
            client_id=settings.DIGIKEY_CLIENT_ID,
            **common,
        ),
    }


def get_distributor(
    distributor: str,
    clients: dict[str, DistributorClient] = Depends(get_distributor_clients),
) -> DistributorClient:
    """Resolve the ``{distributor}`` path parameter to a client.

    Raises:
        HTTPException: 404 if the distributor is not supported.
    """
    try:
        return clients[distributor.lower()]
    except KeyError:
        raise HTTPException(
            status_code=404,
            detail=(
                f"Unknown distributor '{distributor}' "
                f"(supported: {', '.join(sorted(clients))})"
            ),
        ) from None


# ── Shutdown ────────────────────────────────────────────────────────────────


def close_services() -> None:
    """Release executors and connection pools of the shared services.

    Only services that were actually built are touched; each
    cached factory is cleared so a later call builds afresh.
    """
    if get_distributor_clients.cache_info().currsize:
        for client in get_distributor_clients().values():
            client.close()
        get_distributor_clients.cache_clear()
    for factory in (get_credential_manager, get_file_client, get_content_cache):
        if factory.cache_info().currsize:
            factory().close()
            factory.cache_clear()
    logger.info("Closed shared service clients")
