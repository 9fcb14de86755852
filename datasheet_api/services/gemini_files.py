"""
Gemini File API client: resumable upload and liveness check.

Uploads go through the two-step resumable protocol:

1. ``POST {host}/upload/v1beta/files`` with ``X-Goog-Upload-*``
   headers announces the size and MIME type and returns an upload
   URL in ``x-goog-upload-url``.
2. ``POST`` the raw bytes to that URL with
   ``X-Goog-Upload-Command: upload, finalize``.  The response
   carries the file ``name``, ``uri`` and ``expirationTime``.

The ``uri`` is the remote handle sent with generation requests.
Every failure surfaces as ``UploadFailure`` with the HTTP status
and body attached.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

import httpx

from datasheet_api.core.constants import GEMINI_API_BASE, PDF_MIME_TYPE
from datasheet_api.core.errors import UploadFailure
from datasheet_api.schemas.cache import CacheEntry, UploadedFile

logger = logging.getLogger(__name__)

_ACTIVE_STATE: str = "ACTIVE"


def _upload_root(base_url: str) -> str:
    """Map the REST root to the upload root.

    ``https://host/v1beta`` -> ``https://host/upload/v1beta/files``.
    """
    base = base_url.rstrip("/")
    for suffix in ("/v1beta", "/v1"):
        if base.endswith(suffix):
            return f"{base[: -len(suffix)]}/upload{suffix}/files"
    return f"{base}/upload/v1beta/files"


def _parse_expiration(value: str | None) -> float | None:
    """Convert an RFC 3339 ``expirationTime`` to epoch seconds."""
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp()
    except ValueError:
        logger.warning("Unparseable expirationTime %r, using local TTL", value)
        return None


class GeminiFileClient:
    """Upload documents to, and query files on, the Gemini File API.

    Args:
        api_key: Gemini API key.
        base_url: REST root (``…/v1beta``).
        timeout: Per-request timeout in seconds (uploads of large
            PDFs can take minutes).
        client: Optional pre-built ``httpx.Client`` (tests inject
            one backed by ``httpx.MockTransport``).
    """

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = GEMINI_API_BASE,
        timeout: float = 600.0,
        client: httpx.Client | None = None,
    ) -> None:
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._client = client or httpx.Client(timeout=timeout)

    def close(self) -> None:
        """Release the underlying connection pool."""
        self._client.close()

    # ── Upload ──────────────────────────────────────────────

    def upload(
        self,
        data: bytes,
        *,
        display_name: str = "datasheet.pdf",
        mime_type: str = PDF_MIME_TYPE,
    ) -> UploadedFile:
        """Upload *data* and return its remote handle.

        Args:
            data: Raw document bytes.
            display_name: Name shown in the Gemini console.
            mime_type: MIME type of *data*.

        Returns:
            ``UploadedFile`` with the file URI, name and expiry.

        Raises:
            UploadFailure: On transport errors, timeouts, non-2xx
                responses or a malformed response body.
        """
        size = len(data)
        logger.info("Uploading %d bytes to Gemini (%s)", size, display_name)

        try:
            start = self._client.post(
                _upload_root(self._base_url),
                params={"key": self._api_key},
                headers={
                    "X-Goog-Upload-Protocol": "resumable",
                    "X-Goog-Upload-Command": "start",
                    "X-Goog-Upload-Header-Content-Length": str(size),
                    "X-Goog-Upload-Header-Content-Type": mime_type,
                },
                json={"file": {"display_name": display_name}},
            )
            self._raise_for_status(start, "Failed to start upload")

            upload_url = start.headers.get("x-goog-upload-url")
            if not upload_url:
                raise UploadFailure(
                    "Missing x-goog-upload-url header in upload start response",
                    remote_status=start.status_code,
                    body=start.text,
                )

            finish = self._client.post(
                upload_url,
                headers={
                    "Content-Length": str(size),
                    "X-Goog-Upload-Offset": "0",
                    "X-Goog-Upload-Command": "upload, finalize",
                },
                content=data,
            )
            self._raise_for_status(finish, "Failed to upload file")
        except httpx.TimeoutException as exc:
            raise UploadFailure(f"Upload timed out: {exc}") from exc
        except httpx.HTTPError as exc:
            raise UploadFailure(f"Upload request failed: {exc}") from exc

        return self._parse_uploaded(finish)

    # ── Liveness ────────────────────────────────────────────

    def is_active(self, name: str) -> bool:
        """Return ``True`` if file *name* exists and is ``ACTIVE``.

        Args:
            name: Resource name such as ``files/abc123``.

        Raises:
            httpx.HTTPError: On transport errors or unexpected
                status codes (the cache treats these as "re-upload").
        """
        resp = self._client.get(
            f"{self._base_url}/{name}",
            params={"key": self._api_key},
        )
        if resp.status_code == httpx.codes.NOT_FOUND:
            return False
        resp.raise_for_status()
        return resp.json().get("state", "UNKNOWN") == _ACTIVE_STATE

    def verify_entry(self, entry: CacheEntry) -> bool:
        """``ContentCache`` verifier: check the entry's remote file."""
        if not entry.remote_name:
            return True
        return self.is_active(entry.remote_name)

    # ── Internals ───────────────────────────────────────────

    @staticmethod
    def _raise_for_status(resp: httpx.Response, what: str) -> None:
        if resp.is_success:
            return
        raise UploadFailure(
            f"{what} ({resp.status_code})",
            remote_status=resp.status_code,
            body=resp.text,
        )

    @staticmethod
    def _parse_uploaded(resp: httpx.Response) -> UploadedFile:
        try:
            payload: dict[str, Any] = resp.json()
        except ValueError as exc:
            raise UploadFailure(
                "Upload response is not JSON",
                remote_status=resp.status_code,
                body=resp.text,
            ) from exc

        file_obj = payload.get("file") or {}
        uri = file_obj.get("uri")
        name = file_obj.get("name")
        if not uri or not name:
            raise UploadFailure(
                "Upload response is missing file name or uri",
                remote_status=resp.status_code,
                body=resp.text,
            )

        logger.info("Uploaded successfully: %s", uri)
        return UploadedFile(
            remote_handle=uri,
            remote_name=name,
            remote_expires_at=_parse_expiration(file_obj.get("expirationTime")),
        )
