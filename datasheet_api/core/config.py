"""
Application configuration and settings.

Centralises all external configuration (env-vars / .env) and
version discovery.  Service construction lives in
``datasheet_api.api.deps``; nothing here opens a connection.
"""

from __future__ import annotations

import importlib.metadata
import logging
import os
from functools import lru_cache
from pathlib import Path

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from datasheet_api.core.constants import (
    DIGIKEY_API_BASE,
    DIGIKEY_API_BASE_SANDBOX,
    GEMINI_API_BASE,
    MOUSER_API_BASE,
    REMOTE_FILE_LIFETIME_S,
)

logger = logging.getLogger(__name__)


# ── Package version (single source of truth from pyproject.toml) ────────


def get_version() -> str:
    """Return the installed package version.

    Falls back to ``"0.0.0-dev"`` when the package metadata
    is not available (e.g. during editable / source installs).

    Returns:
        Semantic version string.
    """
    try:
        return importlib.metadata.version("datasheet-api")
    except importlib.metadata.PackageNotFoundError:
        return "0.0.0-dev"


def _default_cache_dir() -> Path:
    """Return the per-user cache directory for uploaded-file records."""
    xdg = os.environ.get("XDG_CACHE_HOME")
    base = Path(xdg) if xdg else Path.home() / ".cache"
    return base / "datasheet-api"


def _split_hosts(raw: str) -> list[str]:
    return [h.strip().lower() for h in raw.split(",") if h.strip()]


# ── Settings ────────────────────────────────────────────────────────────────


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_ignore_empty=True,
        extra="ignore",
    )

    # General
    APP_NAME: str = "Datasheet Extraction API"
    API_V1_STR: str = "/api/v1"
    ROOT_PATH: str = ""
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # CORS
    CORS_ORIGINS: list[str] = ["*"]

    # ── Inference service (Gemini) ──────────────────────────────────
    GEMINI_API_KEY: str = ""
    GOOGLE_API_KEY: str = ""
    DATASHEET_API_KEY: str = ""
    GEMINI_BASE_URL: str = GEMINI_API_BASE
    DEFAULT_MODEL: str = "gemini-3-pro-preview"
    DEFAULT_TEMPERATURE: float | None = None
    INFERENCE_TIMEOUT: int = 300  # seconds
    UPLOAD_TIMEOUT: int = 600  # seconds, large PDFs

    # ── Uploaded-file cache ─────────────────────────────────────────
    FILE_CACHE_DIR: str = ""
    FILE_CACHE_TTL: int = REMOTE_FILE_LIFETIME_S
    FILE_CACHE_SAFETY_MARGIN: int = 3600  # seconds
    FILE_CACHE_VERIFY_REMOTE: bool = True
    INFLIGHT_MAX_WORKERS: int = 8

    # ── Extraction / repair loop ────────────────────────────────────
    EXTRACTION_MAX_ATTEMPTS: int = 2
    UPLOAD_MAX_ATTEMPTS: int = 2
    EXTRACTION_INCLUDE_OUTPUT_IN_CORRECTION: bool = True
    EXTRACTION_MAX_CORRECTION_OUTPUT_LENGTH: int | None = 4000

    # ── Distributors ────────────────────────────────────────────────
    MOUSER_API_KEY: str = ""
    MOUSER_BASE_URL: str = MOUSER_API_BASE
    DIGIKEY_CLIENT_ID: str = ""
    DIGIKEY_CLIENT_SECRET: str = ""
    DIGIKEY_SANDBOX: bool = False
    DISTRIBUTOR_TIMEOUT: int = 30  # seconds
    TOKEN_REFRESH_MARGIN: int = 60  # seconds
    RATE_LIMIT_MAX_RETRIES: int = 3
    RATE_LIMIT_BACKOFF_BASE: float = 1.0  # seconds
    RATE_LIMIT_BACKOFF_MAX: float = 60.0  # seconds

    # ── Datasheet download ──────────────────────────────────────────
    DOC_DOWNLOAD_TIMEOUT: int = 60  # seconds
    DOC_DOWNLOAD_MAX_BYTES: int = 100_000_000  # 100 MB

    # ── Caller-supplied URLs ────────────────────────────────────────
    ALLOWED_URL_DOMAINS: str = ""  # comma-separated; empty allows any public host
    SSRF_EXEMPT_HOSTNAMES: str = ""  # comma-separated; skip the private-address check

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def _parse_cors(cls, v: str | list[str]) -> list[str]:
        """Accept a JSON-encoded string or a list."""
        if isinstance(v, str):
            import json

            return json.loads(v)
        return v

    @model_validator(mode="after")
    def _check_limits(self) -> Settings:
        """Reject settings that break cache or retry invariants."""
        if not 0 < self.FILE_CACHE_TTL <= REMOTE_FILE_LIFETIME_S:
            raise ValueError(
                "FILE_CACHE_TTL must be positive and must not exceed the "
                f"remote file lifetime ({REMOTE_FILE_LIFETIME_S}s)"
            )
        if self.FILE_CACHE_SAFETY_MARGIN >= self.FILE_CACHE_TTL:
            raise ValueError("FILE_CACHE_SAFETY_MARGIN must be smaller than FILE_CACHE_TTL")
        if self.EXTRACTION_MAX_ATTEMPTS < 1 or self.UPLOAD_MAX_ATTEMPTS < 1:
            raise ValueError("attempt limits must be at least 1")
        return self

    # Derived values
    @property
    def gemini_api_key(self) -> str:
        """First non-empty inference API key, or ``""``."""
        return self.DATASHEET_API_KEY or self.GEMINI_API_KEY or self.GOOGLE_API_KEY

    @property
    def file_cache_path(self) -> Path:
        """Directory holding one JSON record per uploaded document."""
        if self.FILE_CACHE_DIR.strip():
            return Path(self.FILE_CACHE_DIR).expanduser()
        return _default_cache_dir()

    @property
    def allowed_url_domains(self) -> list[str]:
        """Lower-cased hosts from ``ALLOWED_URL_DOMAINS``."""
        return _split_hosts(self.ALLOWED_URL_DOMAINS)

    @property
    def ssrf_exempt_hostnames(self) -> list[str]:
        """Lower-cased hosts from ``SSRF_EXEMPT_HOSTNAMES``."""
        return _split_hosts(self.SSRF_EXEMPT_HOSTNAMES)

    @property
    def DIGIKEY_BASE_URL(self) -> str:  # noqa: N802
        """DigiKey API root, switching to the sandbox when requested."""
        return DIGIKEY_API_BASE_SANDBOX if self.DIGIKEY_SANDBOX else DIGIKEY_API_BASE


@lru_cache
def get_settings() -> Settings:
    """Return a cached Settings singleton.

    Using ``lru_cache`` ensures the .env file is read exactly
    once.  Override in tests via ``app.dependency_overrides``.
    """
    return Settings()
