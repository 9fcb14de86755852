"""Tests for application settings and configuration.

Validates:
- Default values
- Environment variable parsing
- Derived properties (API key precedence, cache dir, DigiKey root)
- Cache and retry limit validation
"""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from datasheet_api.core.config import Settings, get_version
from datasheet_api.core.constants import (
    DIGIKEY_API_BASE,
    DIGIKEY_API_BASE_SANDBOX,
    REMOTE_FILE_LIFETIME_S,
)


class TestSettingsDefaults:
    """Verify that Settings defaults are correct."""

    def test_app_name(self):
        """Default app name."""
        s = Settings(_env_file=None)
        assert s.APP_NAME == "Datasheet Extraction API"

    def test_api_prefix(self):
        """Default API prefix."""
        s = Settings(_env_file=None)
        assert s.API_V1_STR == "/api/v1"

    def test_cache_ttl_is_remote_lifetime(self):
        """Uploaded files are cached for the full 48 h by default."""
        s = Settings(_env_file=None)
        assert s.FILE_CACHE_TTL == REMOTE_FILE_LIFETIME_S == 48 * 3600
        assert s.FILE_CACHE_SAFETY_MARGIN == 3600

    def test_repair_loop_defaults(self):
        """Two generation attempts, output quoted in corrections."""
        s = Settings(_env_file=None)
        assert s.EXTRACTION_MAX_ATTEMPTS == 2
        assert s.EXTRACTION_INCLUDE_OUTPUT_IN_CORRECTION is True

    def test_rate_limit_defaults(self):
        """Default backoff parameters."""
        s = Settings(_env_file=None)
        assert s.RATE_LIMIT_MAX_RETRIES == 3
        assert s.RATE_LIMIT_BACKOFF_BASE == 1.0
        assert s.RATE_LIMIT_BACKOFF_MAX == 60.0
        assert s.TOKEN_REFRESH_MARGIN == 60


class TestSettingsFromEnv:
    """Settings read from environment variables."""

    def test_cors_origins_json_string(self, monkeypatch):
        """CORS_ORIGINS accepts a JSON-encoded list."""
        monkeypatch.setenv("CORS_ORIGINS", '["https://a.example", "https://b.example"]')
        s = Settings(_env_file=None)
        assert s.CORS_ORIGINS == ["https://a.example", "https://b.example"]

    def test_mouser_key(self, monkeypatch):
        """MOUSER_API_KEY is picked up."""
        monkeypatch.setenv("MOUSER_API_KEY", "mk-123")
        s = Settings(_env_file=None)
        assert s.MOUSER_API_KEY == "mk-123"


class TestDerivedProperties:
    """Computed configuration values."""

    def test_gemini_key_precedence(self):
        """DATASHEET_API_KEY wins over GEMINI_API_KEY and GOOGLE_API_KEY."""
        s = Settings(
            _env_file=None,
            DATASHEET_API_KEY="ds",
            GEMINI_API_KEY="gm",
            GOOGLE_API_KEY="gg",
        )
        assert s.gemini_api_key == "ds"

    def test_gemini_key_falls_back_to_google(self):
        """GOOGLE_API_KEY is used when nothing else is set."""
        s = Settings(_env_file=None, GOOGLE_API_KEY="gg")
        assert s.gemini_api_key == "gg"

    def test_gemini_key_empty(self):
        """No key configured gives an empty string."""
        s = Settings(_env_file=None)
        assert s.gemini_api_key == ""

    def test_explicit_cache_dir(self, tmp_path):
        """FILE_CACHE_DIR overrides the default location."""
        s = Settings(_env_file=None, FILE_CACHE_DIR=str(tmp_path))
        assert s.file_cache_path == Path(tmp_path)

    def test_default_cache_dir_uses_xdg(self, monkeypatch, tmp_path):
        """Without FILE_CACHE_DIR the XDG cache home is used."""
        monkeypatch.setenv("XDG_CACHE_HOME", str(tmp_path))
        s = Settings(_env_file=None)
        assert s.file_cache_path == tmp_path / "datasheet-api"

    def test_digikey_sandbox_switch(self):
        """DIGIKEY_SANDBOX selects the sandbox API root."""
        assert Settings(_env_file=None).DIGIKEY_BASE_URL == DIGIKEY_API_BASE
        assert (
            Settings(_env_file=None, DIGIKEY_SANDBOX=True).DIGIKEY_BASE_URL
            == DIGIKEY_API_BASE_SANDBOX
        )


class TestSettingsValidation:
    """Limits that would break cache or retry behaviour are rejected."""

    def test_ttl_above_remote_lifetime_rejected(self):
        """The local TTL may not outlive the remote file."""
        with pytest.raises(ValidationError):
            Settings(_env_file=None, FILE_CACHE_TTL=REMOTE_FILE_LIFETIME_S + 1)

    def test_margin_must_be_below_ttl(self):
        """A safety margin as large as the TTL would expire every entry."""
        with pytest.raises(ValidationError):
            Settings(_env_file=None, FILE_CACHE_TTL=600, FILE_CACHE_SAFETY_MARGIN=600)

    def test_attempts_at_least_one(self):
        """Zero attempts is meaningless."""
        with pytest.raises(ValidationError):
            Settings(_env_file=None, EXTRACTION_MAX_ATTEMPTS=0)


class TestGetVersion:
    """Package version discovery."""

    def test_returns_string(self):
        """A version string is always returned."""
        assert isinstance(get_version(), str)
        assert get_version()
