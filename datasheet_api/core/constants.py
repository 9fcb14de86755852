"""
Centralised constants used across the application.

Keeping magic strings in one place makes it easy to rename keys,
avoids silent typos, and keeps ``grep`` useful when debugging.
"""

from __future__ import annotations

# ── Remote endpoints ────────────────────────────────────────────────────────

GEMINI_API_BASE: str = "https://generativelanguage.googleapis.com/v1beta"
"""Default Gemini REST root (``/models``, ``/files``)."""

MOUSER_API_BASE: str = "https://api.mouser.com/api/v1"
"""Mouser search API root."""

DIGIKEY_API_BASE: str = "https://api.digikey.com"
"""DigiKey production API root."""

DIGIKEY_API_BASE_SANDBOX: str = "https://sandbox-api.digikey.com"
"""DigiKey sandbox API root."""


# ── Uploaded-file lifetime ──────────────────────────────────────────────────

REMOTE_FILE_LIFETIME_S: int = 48 * 60 * 60
"""How long the inference service keeps an uploaded file (48 h)."""

PDF_MIME_TYPE: str = "application/pdf"
"""MIME type sent with every datasheet upload."""


# ── Distributor identifiers ─────────────────────────────────────────────────

DISTRIBUTOR_MOUSER: str = "mouser"
DISTRIBUTOR_DIGIKEY: str = "digikey"


# ── Task names ──────────────────────────────────────────────────────────────

CUSTOM_TASK: str = "custom"
"""Pseudo-task whose prompt and schema come from the caller."""


# ── Datasheet download ──────────────────────────────────────────────────────

BROWSER_USER_AGENT: str = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36"
)
"""Distributor CDNs reject requests without a browser User-Agent."""

MIN_PDF_BYTES: int = 1024
"""Anything smaller is an error page, not a datasheet."""
