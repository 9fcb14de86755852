"""Uploaded-file cache records."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, model_validator


class UploadedFile(BaseModel):
    """What an uploader reports back after a successful upload."""

    model_config = ConfigDict(frozen=True)

    remote_handle: str = Field(
        ...,
        min_length=1,
        description="Opaque file reference used in later inference calls",
    )
    remote_name: str | None = Field(
        default=None,
        description="Service-side resource name (e.g. ``files/abc123``)",
    )
    remote_expires_at: float | None = Field(
        default=None,
        description="Expiry reported by the service, epoch seconds",
    )


class CacheEntry(BaseModel):
    """One persisted mapping from document content to a remote file.

    Entries are never mutated: a re-upload writes a new entry
    that supersedes the old one.
    """

    model_config = ConfigDict(frozen=True)

    content_key: str = Field(
        ...,
        min_length=64,
        max_length=64,
        description="SHA-256 hex digest of the document bytes",
    )
    remote_handle: str = Field(..., min_length=1)
    remote_name: str | None = None
    uploaded_at: float = Field(..., description="Epoch seconds")
    expires_at: float = Field(..., description="Epoch seconds")
    byte_size: int = Field(..., ge=0)
    mime_type: str = "application/pdf"

    @model_validator(mode="after")
    def _expiry_after_upload(self) -> CacheEntry:
        if self.expires_at <= self.uploaded_at:
            raise ValueError("expires_at must be later than uploaded_at")
        return self

    def is_valid(self, now: float, margin: float = 0.0) -> bool:
        """Return ``True`` while the entry may still be handed out.

        Args:
            now: Current time, epoch seconds.
            margin: Treat the entry as expired this many seconds
                early, so a handle is not used right before the
                service drops it.
        """
        return now + margin < self.expires_at
