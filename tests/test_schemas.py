"""Tests for Pydantic request, response and record schemas.

Validates:
- ``ExtractionRequest`` input rules and base64 handling
- ``ExtractionOptions`` aliases and bounds
- ``CacheEntry`` expiry invariants
- ``Credential`` refresh arithmetic
- Part and response model serialisation
"""

from __future__ import annotations

import base64
import math

import pytest
from pydantic import ValidationError

from datasheet_api.schemas import (
    CacheEntry,
    Credential,
    ExtractionOptions,
    ExtractionRequest,
    ExtractionResponse,
    PartDetail,
    PartSummary,
    PriceBreak,
    UploadedFile,
)

PDF_B64 = base64.b64encode(b"%PDF-1.7 body").decode()

# ── ExtractionRequest ───────────────────────────────────────


class TestExtractionRequest:
    """Validation tests for ``ExtractionRequest``."""

    def test_base64_document(self):
        """A base64 payload decodes to the original bytes."""
        req = ExtractionRequest(task="pinout", document_base64=PDF_B64)
        assert req.document_bytes() == b"%PDF-1.7 body"
        assert req.document_url is None

    def test_url_document(self):
        """A URL request has no inline bytes."""
        req = ExtractionRequest(task="pinout", document_url="https://example.com/a.pdf")
        assert req.document_bytes() is None
        assert str(req.document_url) == "https://example.com/a.pdf"

    def test_neither_input_rejected(self):
        """A request must carry a document."""
        with pytest.raises(ValidationError, match="Exactly one"):
            ExtractionRequest(task="pinout")

    def test_both_inputs_rejected(self):
        """Payload and URL together are ambiguous."""
        with pytest.raises(ValidationError, match="Exactly one"):
            ExtractionRequest(
                task="pinout",
                document_base64=PDF_B64,
                document_url="https://example.com/a.pdf",
            )

    def test_invalid_base64_rejected(self):
        """Undecodable payloads fail validation."""
        with pytest.raises(ValidationError, match="not valid base64"):
            ExtractionRequest(task="pinout", document_base64="not base64!!")

    def test_empty_task_rejected(self):
        """The task name is required."""
        with pytest.raises(ValidationError):
            ExtractionRequest(task="", document_base64=PDF_B64)

    def test_schema_alias(self):
        """The JSON field ``schema`` fills ``output_schema``."""
        req = ExtractionRequest(
            task="custom",
            document_base64=PDF_B64,
            prompt="List the pins.",
            schema={"type": "object"},
        )
        assert req.output_schema == {"type": "object"}
        assert req.prompt == "List the pins."


# ── ExtractionOptions ───────────────────────────────────────


class TestExtractionOptions:
    """Validation tests for ``ExtractionOptions``."""

    def test_defaults(self):
        """Nothing is overridden by default."""
        opts = ExtractionOptions()
        assert opts.model is None
        assert opts.temperature is None
        assert opts.no_cache is False

    def test_populate_by_name(self):
        """``output_schema`` is accepted by field name too."""
        opts = ExtractionOptions(output_schema={"type": "array"})
        assert opts.output_schema == {"type": "array"}

    @pytest.mark.parametrize("model", ["gemini-2.5-flash", "vertex_ai/gemini-2.5-pro"])
    def test_valid_models(self, model):
        """Ordinary model ids pass the pattern."""
        assert ExtractionOptions(model=model).model == model

    @pytest.mark.parametrize("model", ["-bad", "a b", "x"])
    def test_invalid_models(self, model):
        """Model ids with odd characters are rejected."""
        with pytest.raises(ValidationError):
            ExtractionOptions(model=model)

    def test_temperature_bounds(self):
        """Temperature must lie in [0, 2]."""
        with pytest.raises(ValidationError):
            ExtractionOptions(temperature=2.5)


# ── Cache records ───────────────────────────────────────────


class TestCacheEntry:
    """Tests for ``CacheEntry``."""

    def _entry(self, **overrides) -> CacheEntry:
        fields = {
            "content_key": "b" * 64,
            "remote_handle": "https://files.test/v1beta/files/f1",
            "uploaded_at": 100.0,
            "expires_at": 200.0,
            "byte_size": 2048,
        }
        fields.update(overrides)
        return CacheEntry(**fields)

    def test_expiry_must_follow_upload(self):
        """An entry cannot expire before it was uploaded."""
        with pytest.raises(ValidationError, match="expires_at"):
            self._entry(expires_at=100.0)

    def test_content_key_length(self):
        """The key is a SHA-256 hex digest."""
        with pytest.raises(ValidationError):
            self._entry(content_key="abc")

    def test_is_valid_with_margin(self):
        """The margin retires entries early."""
        entry = self._entry()
        assert entry.is_valid(150.0)
        assert not entry.is_valid(150.0, margin=50.0)
        assert not entry.is_valid(200.0)

    def test_frozen(self):
        """Entries are immutable."""
        entry = self._entry()
        with pytest.raises(ValidationError):
            entry.remote_handle = "other"

    def test_uploaded_file_requires_handle(self):
        """An upload without a handle is meaningless."""
        with pytest.raises(ValidationError):
            UploadedFile(remote_handle="")


# ── Credentials ─────────────────────────────────────────────


class TestCredential:
    """Tests for ``Credential``."""

    def test_refresh_inside_margin(self):
        """Refresh is due once fewer than *margin* seconds remain."""
        cred = Credential(
            distributor_id="digikey", access_token="t", obtained_at=0, expires_at=600
        )
        assert not cred.needs_refresh(539, 60)
        assert cred.needs_refresh(540, 60)
        assert not cred.is_expired(599)
        assert cred.is_expired(600)

    def test_static_key_never_expires(self):
        """Default expiry is infinite."""
        cred = Credential(distributor_id="mouser", access_token="k", obtained_at=0)
        assert cred.expires_at == math.inf
        assert not cred.needs_refresh(10**12, 60)

    def test_token_hidden_from_repr(self):
        """Secrets stay out of logs."""
        cred = Credential(distributor_id="mouser", access_token="secret", obtained_at=0)
        assert "secret" not in repr(cred)


# ── Parts and responses ─────────────────────────────────────


class TestPartModels:
    """Tests for part and response models."""

    def test_has_datasheet(self):
        """Empty URLs do not count as a datasheet."""
        assert PartSummary(distributor="mouser", datasheet_url="https://x/a.pdf").has_datasheet
        assert not PartSummary(distributor="mouser", datasheet_url="").has_datasheet

    def test_detail_defaults(self):
        """Detail collections default to empty."""
        part = PartDetail(distributor="digikey", part_number="296-1234-ND")
        assert part.price_breaks == []
        assert part.parameters == {}
        assert part.raw == {}

    def test_price_break_text(self):
        """Unparseable prices keep the distributor's text."""
        pb = PriceBreak(quantity=10, price_text="Call for price")
        assert pb.price is None
        assert pb.currency == "USD"

    def test_extraction_response_serialises(self):
        """Not-found results keep the model's error payload."""
        resp = ExtractionResponse(
            task="pinout",
            content_key="c" * 64,
            data={"error": "No pinout found"},
            not_found=True,
            attempt_count=1,
            model="gemini-3-pro-preview",
            processing_time_ms=12,
        )
        dumped = resp.model_dump()
        assert dumped["not_found"] is True
        assert dumped["data"] == {"error": "No pinout found"}
