"""
Datasheet download service with timeout, size, and content
enforcement.

Downloads PDF datasheets from distributor-supplied URLs,
respecting ``DOC_DOWNLOAD_TIMEOUT`` and ``DOC_DOWNLOAD_MAX_BYTES``.

Distributor CDNs serve an HTML bot-protection or login page
instead of the PDF surprisingly often, usually with status 200.
Validation is therefore three-layered:

1. **Content-Type** - reject ``text/html`` outright.
2. **Size floor** - reject bodies under ``MIN_PDF_BYTES``; those
   are error stubs, not datasheets.
3. **Byte-sniff** - require the ``%PDF-`` signature near the start
   of the body, so a lying ``Content-Type`` cannot pass an error
   page off as a PDF.
"""

from __future__ import annotations

import logging

import httpx

from datasheet_api.core.config import get_settings
from datasheet_api.core.constants import BROWSER_USER_AGENT, MIN_PDF_BYTES
from datasheet_api.core.errors import DatasheetError
from datasheet_api.core.security import check_fetch_url, check_redirect

logger = logging.getLogger(__name__)

# Maximum number of redirects to follow per download request.
_MAX_REDIRECTS: int = 5

# Some servers prepend a few bytes of junk before the signature.
_PDF_SIGNATURE: bytes = b"%PDF-"
_SIGNATURE_WINDOW: int = 1024

_DOWNLOAD_HEADERS: dict[str, str] = {
    "User-Agent": BROWSER_USER_AGENT,
    "Accept": "application/pdf,*/*",
}


class DownloadTooLargeError(DatasheetError):
    """Raised when the downloaded content exceeds the size limit."""

    status_code = 502


class NotAPdfError(DatasheetError):
    """Raised when the response is an HTML page or not a PDF."""

    status_code = 502


def _looks_like_pdf(data: bytes) -> bool:
    """Return ``True`` if the PDF signature appears near the start."""
    return _PDF_SIGNATURE in data[:_SIGNATURE_WINDOW]


def download_pdf(
    url: str,
    *,
    client: httpx.Client | None = None,
    timeout: float | None = None,
    max_bytes: int | None = None,
    validate: bool = False,
) -> bytes:
    """Download a PDF from *url* with safety limits.

    Streams the response and aborts early if the body exceeds
    ``max_bytes``.

    Args:
        url: Datasheet URL.
        client: Optional ``httpx.Client`` to reuse (tests inject
            one backed by ``httpx.MockTransport``).
        timeout: Request timeout; defaults to
            ``DOC_DOWNLOAD_TIMEOUT``.
        max_bytes: Size limit; defaults to
            ``DOC_DOWNLOAD_MAX_BYTES``.
        validate: Treat *url* as caller-supplied: run
            ``check_fetch_url`` before connecting and vet every
            redirect hop.  An injected *client* must carry
            ``check_redirect`` in its response hooks itself.

    Returns:
        The PDF bytes.

    Raises:
        UnsafeUrlError: If *validate* is set and the URL or a
            redirect target is not a public http(s) address.
        NotAPdfError: If the server returned HTML, a tiny body or
            anything without a PDF signature.
        DownloadTooLargeError: If the response exceeds *max_bytes*.
        httpx.HTTPStatusError: On non-2xx responses.
        httpx.TimeoutException: On timeout.
    """
    settings = get_settings()
    timeout = settings.DOC_DOWNLOAD_TIMEOUT if timeout is None else timeout
    max_bytes = settings.DOC_DOWNLOAD_MAX_BYTES if max_bytes is None else max_bytes
    if validate:
        check_fetch_url(url)

    owns_client = client is None
    if client is None:
        client = httpx.Client(
            timeout=timeout,
            follow_redirects=True,
            max_redirects=_MAX_REDIRECTS,
            event_hooks={"response": [check_redirect]} if validate else None,
        )

    try:
        with client.stream(
            "GET",
            url,
            headers=_DOWNLOAD_HEADERS,
            timeout=timeout,
            follow_redirects=True,
        ) as response:
            response.raise_for_status()

            raw_ct = response.headers.get("content-type", "")
            mime = raw_ct.split(";")[0].strip().lower()
            if mime == "text/html":
                raise NotAPdfError(
                    f"Download returned HTML instead of PDF (content-type: {raw_ct}). "
                    "The distributor may be blocking automated downloads for this URL."
                )

            # Check Content-Length header first (untrusted but
            # allows an early exit without reading the body).
            content_length = response.headers.get("content-length")
            if content_length and content_length.isdigit() and int(content_length) > max_bytes:
                raise DownloadTooLargeError(
                    f"Content-Length ({content_length}) exceeds limit of {max_bytes} bytes."
                )

            chunks: list[bytes] = []
            received = 0
            for chunk in response.iter_bytes(chunk_size=65_536):
                received += len(chunk)
                if received > max_bytes:
                    raise DownloadTooLargeError(
                        f"Download exceeded {max_bytes} bytes (received {received} so far)."
                    )
                chunks.append(chunk)
    finally:
        if owns_client:
            client.close()

    body = b"".join(chunks)

    if len(body) < MIN_PDF_BYTES:
        raise NotAPdfError(
            f"Download returned only {len(body)} bytes; expected a PDF of at "
            f"least {MIN_PDF_BYTES} bytes."
        )
    if not _looks_like_pdf(body):
        raise NotAPdfError(
            f"Downloaded content is not a PDF (content-type: {raw_ct or '<missing>'})."
        )

    logger.info("Downloaded %d bytes from %s", len(body), url)
    return body
