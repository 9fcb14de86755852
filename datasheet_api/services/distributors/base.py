"""
Shared request machinery for distributor clients.

Every distributor call goes through ``DistributorClient._request``:

- a token is borrowed from the ``CredentialManager`` for this one
  request (clients never keep it);
- a 401/403 invalidates that token and retries once with a fresh
  one; a second rejection raises ``AuthFailure``;
- a 429 (or a transport timeout) is retried with bounded
  exponential backoff that honours ``Retry-After``; when the budget
  runs out the caller gets ``RateLimited`` (or ``DistributorError``
  for timeouts);
- any other non-2xx raises ``DistributorError`` immediately, or
  ``PartNotFound`` for a 404 on a part lookup.

Backoff is driven by ``tenacity.Retrying`` with an injectable
``sleep`` so tests run instantly while still observing the waits.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from email.utils import parsedate_to_datetime
from typing import Any, ClassVar, TypeVar

import httpx
from tenacity import RetryCallState, Retrying, retry_if_exception_type, stop_after_attempt

from datasheet_api.core.errors import (
    AuthFailure,
    DatasheetUnavailable,
    DistributorError,
    PartNotFound,
    RateLimited,
)
from datasheet_api.core.metrics import record_rate_limit_retry
from datasheet_api.schemas.credentials import Credential
from datasheet_api.schemas.parts import PartDetail, PartSummary
from datasheet_api.services.credentials import CredentialManager
from datasheet_api.services.downloader import (
    DownloadTooLargeError,
    NotAPdfError,
    download_pdf,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

_AUTH_STATUSES: frozenset[int] = frozenset({401, 403})
_RATE_LIMIT_STATUS: int = 429


class _RetryableResponse(Exception):
    """Internal signal: this attempt hit a rate limit or timed out."""

    def __init__(self, reason: str, *, retry_after: float | None = None) -> None:
        self.reason = reason
        self.retry_after = retry_after
        super().__init__(reason)


def records(value: Any) -> list[dict[str, Any]]:
    """The dict entries of a JSON array; anything else yields ``[]``.

    Distributor payloads occasionally carry nulls or strings where
    objects are documented.
    """
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]


def parse_retry_after(value: str | None, *, now: float | None = None) -> float | None:
    """Interpret a ``Retry-After`` header as seconds to wait.

    Accepts both delta-seconds and HTTP-date forms.

    Returns:
        Non-negative seconds, or ``None`` if absent or unparseable.
    """
    if not value:
        return None
    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    now = time.time() if now is None else now
    return max(0.0, when.timestamp() - now)


class BackoffWait:
    """``tenacity`` wait strategy: exponential, floored by ``Retry-After``.

    The n-th retry waits ``max(retry_after, base * 2**(n-1))``,
    capped at *maximum*.
    """

    def __init__(self, base: float, maximum: float) -> None:
        self._base = base
        self._max = maximum

    def __call__(self, retry_state: RetryCallState) -> float:
        exponential = self._base * (2 ** (retry_state.attempt_number - 1))
        hint = 0.0
        if retry_state.outcome is not None and retry_state.outcome.failed:
            exc = retry_state.outcome.exception()
            if isinstance(exc, _RetryableResponse) and exc.retry_after is not None:
                hint = exc.retry_after
        return min(max(hint, exponential), self._max)


class DistributorClient(ABC):
    """Base class for one distributor's REST API.

    Args:
        credentials: Shared credential manager.
        base_url: API root.
        client: Optional pre-built ``httpx.Client``.
        timeout: Per-request timeout in seconds.
        max_retries: Retries after a rate limit or timeout.
        backoff_base: First backoff delay in seconds.
        backoff_max: Longest single backoff delay in seconds.
        sleep: Sleep function used between retries.
        download_timeout: Datasheet download timeout.
        download_max_bytes: Datasheet size limit.
    """

    distributor_id: ClassVar[str]

    def __init__(
        self,
        credentials: CredentialManager,
        *,
        base_url: str,
        client: httpx.Client | None = None,
        timeout: float = 30.0,
        max_retries: int = 3,
        backoff_base: float = 1.0,
        backoff_max: float = 60.0,
        sleep: Callable[[float], None] = time.sleep,
        download_timeout: float | None = None,
        download_max_bytes: int | None = None,
    ) -> None:
        self._credentials = credentials
        self._base_url = base_url.rstrip("/")
        self._client = client or httpx.Client(timeout=timeout)
        self._max_retries = max_retries
        self._wait = BackoffWait(backoff_base, backoff_max)
        self._sleep = sleep
        self._download_timeout = download_timeout
        self._download_max_bytes = download_max_bytes

    def close(self) -> None:
        """Release the underlying connection pool."""
        self._client.close()

    # ── Operations ──────────────────────────────────────────

    @abstractmethod
    def search(
        self,
        query: str,
        *,
        limit: int = 10,
        offset: int = 0,
        exact: bool = False,
    ) -> list[PartSummary]:
        """Search parts by keyword, or by exact part number."""

    @abstractmethod
    def get_part(self, part_id: str) -> PartDetail:
        """Return the full record for *part_id*.

        Raises:
            PartNotFound: If the distributor has no such part.
        """

    def download_datasheet(self, part_id: str) -> bytes:
        """Download the PDF datasheet listed for *part_id*.

        Raises:
            PartNotFound: If the distributor has no such part.
            DatasheetUnavailable: If no datasheet is listed or the
                download did not yield a PDF.
        """
        part = self.get_part(part_id)
        if not part.datasheet_url:
            raise DatasheetUnavailable(self.distributor_id, part_id, "no datasheet URL listed")

        url = part.datasheet_url
        if url.startswith("//"):
            url = f"https:{url}"
        logger.info("Downloading %s datasheet for %s from %s", self.distributor_id, part_id, url)
        try:
            return download_pdf(
                url,
                client=self._client,
                timeout=self._download_timeout,
                max_bytes=self._download_max_bytes,
            )
        except (NotAPdfError, DownloadTooLargeError) as exc:
            raise DatasheetUnavailable(self.distributor_id, part_id, str(exc)) from exc
        except httpx.HTTPStatusError as exc:
            raise DatasheetUnavailable(
                self.distributor_id,
                part_id,
                f"download returned {exc.response.status_code}",
            ) from exc
        except httpx.HTTPError as exc:
            raise DatasheetUnavailable(
                self.distributor_id, part_id, f"download failed: {exc}"
            ) from exc

    # ── Auth hook ───────────────────────────────────────────

    @abstractmethod
    def _authorize(
        self,
        credential: Credential,
        headers: dict[str, str],
        params: dict[str, Any],
    ) -> None:
        """Attach *credential* to the outgoing request in place."""

    # ── Request pipeline ────────────────────────────────────

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
        headers: dict[str, str] | None = None,
        part_id: str | None = None,
    ) -> httpx.Response:
        """Send one logical request and return its 2xx response.

        Args:
            method: HTTP method.
            path: Path below the API root.
            params: Query parameters.
            json: JSON body.
            headers: Extra headers.
            part_id: When set, a 404 raises ``PartNotFound``.

        Raises:
            AuthFailure: Credentials rejected twice, or unobtainable.
            RateLimited: Still rate limited after the retry budget.
            PartNotFound: 404 on a part lookup.
            DistributorError: Any other non-2xx, a transport error,
                or repeated timeouts.
        """
        attempts = 0

        def attempt() -> httpx.Response:
            nonlocal attempts
            attempts += 1
            return self._send_authorized(method, path, params=params, json=json, headers=headers)

        retrying = Retrying(
            retry=retry_if_exception_type(_RetryableResponse),
            stop=stop_after_attempt(self._max_retries + 1),
            wait=self._wait,
            sleep=self._sleep,
            before_sleep=self._log_backoff,
            reraise=True,
        )
        try:
            resp = retrying(attempt)
        except _RetryableResponse as exc:
            if exc.reason == "timeout":
                raise DistributorError(
                    self.distributor_id,
                    f"{method} {path} timed out after {attempts} attempt(s)",
                ) from exc
            raise RateLimited(
                self.distributor_id,
                retry_after=exc.retry_after,
                attempts=attempts,
            ) from exc

        if resp.status_code == httpx.codes.NOT_FOUND and part_id is not None:
            raise PartNotFound(self.distributor_id, part_id)
        if not resp.is_success:
            raise DistributorError(
                self.distributor_id,
                f"{method} {path} returned {resp.status_code}",
                remote_status=resp.status_code,
                body=resp.text,
            )
        return resp

    def _send_authorized(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None,
        json: Any,
        headers: dict[str, str] | None,
    ) -> httpx.Response:
        """One attempt, including the single re-auth on 401/403."""
        credential = self._credentials.get_token(self.distributor_id)
        resp = self._send(credential, method, path, params=params, json=json, headers=headers)

        if resp.status_code in _AUTH_STATUSES:
            logger.warning(
                "%s rejected credential (%d), refreshing once",
                self.distributor_id,
                resp.status_code,
            )
            self._credentials.invalidate(self.distributor_id, credential.access_token)
            credential = self._credentials.get_token(self.distributor_id)
            resp = self._send(credential, method, path, params=params, json=json, headers=headers)
            if resp.status_code in _AUTH_STATUSES:
                raise AuthFailure(
                    self.distributor_id,
                    f"Credentials rejected ({resp.status_code})",
                    remote_status=resp.status_code,
                    payload=_json_or_text(resp),
                )

        if resp.status_code == _RATE_LIMIT_STATUS:
            raise _RetryableResponse(
                "rate_limited",
                retry_after=parse_retry_after(resp.headers.get("retry-after")),
            )
        return resp

    def _send(
        self,
        credential: Credential,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None,
        json: Any,
        headers: dict[str, str] | None,
    ) -> httpx.Response:
        req_headers = {"Accept": "application/json", **(headers or {})}
        req_params = dict(params or {})
        self._authorize(credential, req_headers, req_params)
        try:
            return self._client.request(
                method,
                f"{self._base_url}{path}",
                params=req_params,
                json=json,
                headers=req_headers,
            )
        except httpx.TimeoutException as exc:
            raise _RetryableResponse("timeout") from exc
        except httpx.HTTPError as exc:
            raise DistributorError(
                self.distributor_id, f"{method} {path} failed: {exc}"
            ) from exc

    def _log_backoff(self, retry_state: RetryCallState) -> None:
        record_rate_limit_retry(self.distributor_id)
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        logger.warning(
            "%s %s on attempt %d, backing off %.1fs",
            self.distributor_id,
            getattr(exc, "reason", "error"),
            retry_state.attempt_number,
            delay,
        )

    # ── Helpers for subclasses ──────────────────────────────

    def _parse(self, parser: Callable[[dict[str, Any]], T], entry: dict[str, Any]) -> T:
        """Apply *parser* to one payload entry.

        Entries whose fields have the wrong type raise
        ``DistributorError`` instead of escaping as a 500.
        """
        try:
            return parser(entry)
        except (ValueError, TypeError) as exc:
            raise DistributorError(
                self.distributor_id,
                f"Malformed part entry: {exc}",
                body=str(entry)[:2000],
            ) from exc

    def _json(self, resp: httpx.Response) -> Any:
        """Decode a JSON response body or raise ``DistributorError``."""
        try:
            return resp.json()
        except ValueError as exc:
            raise DistributorError(
                self.distributor_id,
                "Response is not JSON",
                remote_status=resp.status_code,
                body=resp.text,
            ) from exc


def _json_or_text(resp: httpx.Response) -> Any:
    try:
        return resp.json()
    except ValueError:
        return resp.text
