"""Request models for extraction endpoints."""

from __future__ import annotations

import base64
import binascii
from typing import Annotated, Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    HttpUrl,
    field_validator,
    model_validator,
)

# Maximum base64 payload in characters (~100 MB decoded).
_MAX_DOCUMENT_BASE64_CHARS: int = 136_000_000


# ── Model validation ────────────────────────────────────────

ModelName = Annotated[
    str,
    Field(
        min_length=2,
        max_length=128,
        pattern=r"^[a-zA-Z0-9][a-zA-Z0-9_./-]*$",
        description=(
            "Inference model ID (e.g. 'gemini-3-pro-preview', "
            "'gemini-2.5-flash'). Must start with an alphanumeric "
            "character and contain only letters, digits, dots, "
            "underscores, slashes, and hyphens."
        ),
    ),
]


# ── Shared options ──────────────────────────────────────────


class ExtractionOptions(BaseModel):
    """Per-call overrides shared by every extraction endpoint.

    ``prompt`` and ``schema`` are only accepted with the
    ``custom`` task; anything else is rejected with 400.
    """

    model_config = ConfigDict(populate_by_name=True)

    prompt: str | None = Field(
        default=None,
        max_length=200_000,
        description="Custom prompt (``custom`` task only)",
    )
    output_schema: dict[str, Any] | None = Field(
        default=None,
        alias="schema",
        description="Custom JSON Schema for the output (``custom`` task only)",
    )
    model: ModelName | None = Field(
        default=None,
        description="Override the task's default model",
    )
    temperature: float | None = Field(
        default=None,
        ge=0.0,
        le=2.0,
        description="Sampling temperature.",
    )
    no_cache: bool = Field(
        default=False,
        description="Discard any cached upload and upload the document again",
    )


# ── Request models ──────────────────────────────────────────


class ExtractionRequest(ExtractionOptions):
    """Request body for ``POST /extract``.

    Exactly one of ``document_base64`` or ``document_url`` must
    be provided.
    """

    task: str = Field(
        ...,
        min_length=1,
        max_length=64,
        description="Task name (see ``GET /tasks``)",
    )
    document_base64: str | None = Field(
        default=None,
        description="PDF bytes, base64-encoded",
    )
    document_url: HttpUrl | None = Field(
        default=None,
        description="URL of a PDF to download and extract from",
    )
    filename: str | None = Field(
        default=None,
        max_length=255,
        description="Display name for the uploaded document",
    )

    @field_validator("document_base64")
    @classmethod
    def _check_base64(cls, v: str | None) -> str | None:
        """Reject oversized or undecodable payloads early."""
        if v is None:
            return v
        if len(v) > _MAX_DOCUMENT_BASE64_CHARS:
            raise ValueError(
                f"document_base64 exceeds maximum of {_MAX_DOCUMENT_BASE64_CHARS:,} characters."
            )
        try:
            base64.b64decode(v, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ValueError("document_base64 is not valid base64") from exc
        return v

    @model_validator(mode="after")
    def _require_exactly_one_input(self) -> ExtractionRequest:
        """Ensure the caller provides a document payload or URL, not both."""
        if bool(self.document_base64) == bool(self.document_url):
            raise ValueError(
                "Exactly one of 'document_base64' or 'document_url' must be provided."
            )
        return self

    def document_bytes(self) -> bytes | None:
        """Decoded ``document_base64``, or ``None`` when a URL was given."""
        if self.document_base64 is None:
            return None
        return base64.b64decode(self.document_base64)
