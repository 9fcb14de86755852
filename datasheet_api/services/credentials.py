"""
Distributor credential lifecycle: acquisition, caching, refresh.

``CredentialManager`` owns one ``Credential`` per distributor and
hands it out while ``now < expires_at - margin``.  Past that point
the next caller triggers a refresh through the distributor's
``TokenProvider``; concurrent callers for the same distributor
share that single refresh (``InflightGroup``) and all observe the
same new credential.  A failed refresh reaches every waiter as
``AuthFailure`` and leaves the store without a usable credential;
an expired credential is never returned.

Two providers cover the supported distributors:

- ``StaticApiKeyProvider``: a never-expiring API key (Mouser).
- ``OAuth2ClientCredentialsProvider``: client-credentials grant
  against a token endpoint (DigiKey).
"""

from __future__ import annotations

import logging
import math
import threading
import time
from collections.abc import Callable, Iterable
from typing import Any, Protocol

import httpx

from datasheet_api.core.errors import AuthFailure
from datasheet_api.core.metrics import record_token_acquisition
from datasheet_api.schemas.credentials import Credential
from datasheet_api.services.inflight import InflightGroup

logger = logging.getLogger(__name__)


class TokenProvider(Protocol):
    """Acquires a fresh credential for one distributor."""

    distributor_id: str

    def fetch(self) -> Credential:
        """Return a new credential or raise ``AuthFailure``."""
        ...


# ── Providers ───────────────────────────────────────────────


class StaticApiKeyProvider:
    """Wrap a static API key as a credential that never expires."""

    def __init__(
        self,
        distributor_id: str,
        api_key: str,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.distributor_id = distributor_id
        self._api_key = api_key
        self._clock = clock

    def fetch(self) -> Credential:
        if not self._api_key:
            raise AuthFailure(self.distributor_id, "API key is not configured")
        return Credential(
            distributor_id=self.distributor_id,
            access_token=self._api_key,
            obtained_at=self._clock(),
            expires_at=math.inf,
        )


class OAuth2ClientCredentialsProvider:
    """Exchange a client id and secret for a bearer token.

    Posts ``client_id``, ``client_secret`` and
    ``grant_type=client_credentials`` as a form to *token_url* and
    reads ``access_token`` / ``expires_in`` from the JSON reply.

    Args:
        distributor_id: Distributor the token is for.
        token_url: Full token endpoint URL.
        client_id: OAuth2 client id.
        client_secret: OAuth2 client secret.
        timeout: Request timeout in seconds.
        client: Optional pre-built ``httpx.Client``.
        clock: Time source, epoch seconds.
    """

    def __init__(
        self,
        distributor_id: str,
        *,
        token_url: str,
        client_id: str,
        client_secret: str,
        timeout: float = 30.0,
        client: httpx.Client | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.distributor_id = distributor_id
        self._token_url = token_url
        self._client_id = client_id
        self._client_secret = client_secret
        self._client = client or httpx.Client(timeout=timeout)
        self._clock = clock

    def close(self) -> None:
        """Release the token endpoint connection pool."""
        self._client.close()

    def fetch(self) -> Credential:
        if not self._client_id or not self._client_secret:
            raise AuthFailure(self.distributor_id, "Client id and secret are not configured")

        requested_at = self._clock()
        try:
            resp = self._client.post(
                self._token_url,
                data={
                    "client_id": self._client_id,
                    "client_secret": self._client_secret,
                    "grant_type": "client_credentials",
                },
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as exc:
            raise AuthFailure(
                self.distributor_id, f"Token request failed: {exc}"
            ) from exc

        payload = _json_or_text(resp)
        if not resp.is_success:
            raise AuthFailure(
                self.distributor_id,
                f"Token endpoint returned {resp.status_code}",
                remote_status=resp.status_code,
                payload=payload,
            )

        if not isinstance(payload, dict) or not payload.get("access_token"):
            raise AuthFailure(
                self.distributor_id,
                "Token response has no access_token",
                remote_status=resp.status_code,
                payload=payload,
            )

        try:
            expires_in = float(payload.get("expires_in", 0))
        except (TypeError, ValueError):
            expires_in = 0.0
        if expires_in <= 0:
            raise AuthFailure(
                self.distributor_id,
                "Token response has no usable expires_in",
                remote_status=resp.status_code,
                payload=payload,
            )

        return Credential(
            distributor_id=self.distributor_id,
            access_token=payload["access_token"],
            # Measured from the request so clock skew errs early.
            obtained_at=requested_at,
            expires_at=requested_at + expires_in,
            refresh_material=payload.get("refresh_token"),
        )


def _json_or_text(resp: httpx.Response) -> Any:
    try:
        return resp.json()
    except ValueError:
        return resp.text


# ── Manager ─────────────────────────────────────────────────


class CredentialManager:
    """Shared, refresh-on-demand credential store.

    Args:
        providers: One token provider per distributor.
        margin: Refresh when fewer than this many seconds remain.
        clock: Time source, epoch seconds.
        inflight: Optional single-flight group (tests inject one).

    Usage::

        manager = CredentialManager([mouser_provider, digikey_provider])
        token = manager.get_token("digikey").access_token
    """

    def __init__(
        self,
        providers: Iterable[TokenProvider],
        *,
        margin: float = 60.0,
        clock: Callable[[], float] = time.time,
        inflight: InflightGroup[Credential] | None = None,
    ) -> None:
        self._providers = {p.distributor_id: p for p in providers}
        self._margin = float(margin)
        self._clock = clock
        self._inflight = inflight or InflightGroup("token")
        # Guards the dict only; never held across a network call.
        self._lock = threading.Lock()
        self._store: dict[str, Credential] = {}

    def distributors(self) -> list[str]:
        """Distributors with a registered provider."""
        return sorted(self._providers)

    def close(self) -> None:
        """Stop the refresh executor and close providers that hold connections."""
        self._inflight.shutdown(wait=False)
        for provider in self._providers.values():
            close = getattr(provider, "close", None)
            if close is not None:
                close()

    def get_token(self, distributor_id: str, *, timeout: float | None = None) -> Credential:
        """Return a credential with at least ``margin`` seconds left.

        Args:
            distributor_id: Distributor to authenticate against.
            timeout: Seconds to wait for a shared refresh.

        Raises:
            AuthFailure: If no provider is registered or the
                refresh failed.
        """
        if distributor_id not in self._providers:
            raise AuthFailure(distributor_id, "No credential provider registered")

        cached = self._fresh(distributor_id)
        if cached is not None:
            return cached
        return self._inflight.run(
            distributor_id,
            lambda: self._refresh(distributor_id),
            timeout=timeout,
        )

    def invalidate(self, distributor_id: str, access_token: str | None = None) -> None:
        """Drop the stored credential so the next call refreshes.

        Args:
            distributor_id: Distributor whose token was rejected.
            access_token: When given, only drop the stored
                credential if it is still this token; a concurrent
                refresh may already have replaced it.
        """
        with self._lock:
            current = self._store.get(distributor_id)
            if current is None:
                return
            if access_token is not None and current.access_token != access_token:
                return
            del self._store[distributor_id]
        logger.info("Invalidated %s credential", distributor_id)

    # ── Internals ───────────────────────────────────────────

    def _fresh(self, distributor_id: str) -> Credential | None:
        with self._lock:
            cred = self._store.get(distributor_id)
        if cred is not None and not cred.needs_refresh(self._clock(), self._margin):
            return cred
        return None

    def _refresh(self, distributor_id: str) -> Credential:
        # A refresh that finished while we queued is good enough.
        cached = self._fresh(distributor_id)
        if cached is not None:
            return cached

        provider = self._providers[distributor_id]
        logger.info("Acquiring %s credential", distributor_id)
        try:
            cred = provider.fetch()
        except AuthFailure:
            self._drop(distributor_id)
            record_token_acquisition(distributor_id, success=False)
            raise
        except Exception as exc:
            self._drop(distributor_id)
            record_token_acquisition(distributor_id, success=False)
            raise AuthFailure(distributor_id, f"Credential acquisition failed: {exc}") from exc

        if cred.is_expired(self._clock()):
            self._drop(distributor_id)
            record_token_acquisition(distributor_id, success=False)
            raise AuthFailure(distributor_id, "Token endpoint returned an expired credential")

        with self._lock:
            self._store[distributor_id] = cred
        record_token_acquisition(distributor_id, success=True)
        logger.info(
            "Acquired %s credential (expires in %s)",
            distributor_id,
            "never" if math.isinf(cred.expires_at) else f"{cred.expires_at - self._clock():.0f}s",
        )
        return cred

    def _drop(self, distributor_id: str) -> None:
        with self._lock:
            self._store.pop(distributor_id, None)
