"""
Server-side request forgery guard for caller-supplied URLs.

``POST /extract`` accepts a ``document_url`` and the server
fetches it.  ``check_fetch_url`` refuses anything that would
turn that into a scan of the deployment's own network:

- schemes other than ``http`` / ``https``;
- ``localhost`` and hosts resolving to loopback, private,
  link-local (cloud metadata), CGNAT or unspecified addresses;
- hosts outside ``ALLOWED_URL_DOMAINS`` when that list is set.

Hosts listed in ``SSRF_EXEMPT_HOSTNAMES`` skip the address
check, for deployments that deliberately serve datasheets from
an internal mirror.

The hostname is resolved before httpx connects, so a DNS server
that answers differently on the second lookup can still slip
through.  Redirect hops are re-checked by ``check_redirect``.
"""

from __future__ import annotations

import ipaddress
import logging
import socket
from concurrent.futures import ThreadPoolExecutor, TimeoutError
from urllib.parse import urlsplit

import httpx

from datasheet_api.core.config import get_settings
from datasheet_api.core.errors import UnsafeUrlError

logger = logging.getLogger(__name__)

MAX_URL_LENGTH: int = 2048
DNS_TIMEOUT: float = 5.0  # seconds

_ALLOWED_SCHEMES: frozenset[str] = frozenset({"http", "https"})
_ALWAYS_BLOCKED_HOSTS: frozenset[str] = frozenset({"localhost", "localhost.localdomain"})

_FORBIDDEN_NETWORKS: tuple[ipaddress.IPv4Network | ipaddress.IPv6Network, ...] = tuple(
    ipaddress.ip_network(cidr)
    for cidr in (
        "0.0.0.0/8",
        "10.0.0.0/8",
        "100.64.0.0/10",
        "127.0.0.0/8",
        "169.254.0.0/16",
        "172.16.0.0/12",
        "192.168.0.0/16",
        "::/128",
        "::1/128",
        "::ffff:0:0/96",
        "fc00::/7",
        "fe80::/10",
    )
)


def _forbidden_network(address: str) -> ipaddress.IPv4Network | ipaddress.IPv6Network | None:
    try:
        ip = ipaddress.ip_address(address.split("%", 1)[0])
    except ValueError:
        return None
    for net in _FORBIDDEN_NETWORKS:
        if ip.version == net.version and ip in net:
            return net
    return None


def _resolve(host: str) -> list[str]:
    """Return every address *host* resolves to.

    Raises:
        UnsafeUrlError: If resolution fails or exceeds
            ``DNS_TIMEOUT``.
    """
    pool = ThreadPoolExecutor(max_workers=1)
    try:
        future = pool.submit(
            socket.getaddrinfo, host, None, socket.AF_UNSPEC, socket.SOCK_STREAM
        )
        infos = future.result(timeout=DNS_TIMEOUT)
    except TimeoutError as exc:
        raise UnsafeUrlError(f"Resolving '{host}' timed out") from exc
    except socket.gaierror as exc:
        raise UnsafeUrlError(f"Cannot resolve '{host}'") from exc
    finally:
        # A hung resolver must not block the request thread.
        pool.shutdown(wait=False)
    return [info[4][0] for info in infos]


def check_fetch_url(url: str, *, purpose: str = "document_url") -> str:
    """Reject *url* unless it is safe for the server to fetch.

    Args:
        url: Absolute URL supplied by a caller.
        purpose: Label used in error and log messages.

    Returns:
        *url*, unchanged.

    Raises:
        UnsafeUrlError: If any check fails (status 400).
    """
    if len(url) > MAX_URL_LENGTH:
        raise UnsafeUrlError(f"{purpose} is longer than {MAX_URL_LENGTH} characters")

    parts = urlsplit(url)
    if parts.scheme.lower() not in _ALLOWED_SCHEMES:
        raise UnsafeUrlError(
            f"{purpose} scheme '{parts.scheme}' is not allowed; use http or https"
        )
    host = (parts.hostname or "").lower()
    if not host:
        raise UnsafeUrlError(f"{purpose} has no host")

    settings = get_settings()
    allowed = settings.allowed_url_domains
    if allowed and not any(host == d or host.endswith(f".{d}") for d in allowed):
        raise UnsafeUrlError(f"{purpose} host '{host}' is not in ALLOWED_URL_DOMAINS")

    if host in settings.ssrf_exempt_hostnames:
        return url
    if host in _ALWAYS_BLOCKED_HOSTS:
        raise UnsafeUrlError(f"{purpose} host '{host}' is not allowed")

    for address in _resolve(host):
        network = _forbidden_network(address)
        if network is not None:
            logger.warning(
                "Refused %s %s: %s resolves to %s (%s)", purpose, url, host, address, network
            )
            raise UnsafeUrlError(f"{purpose} host '{host}' resolves to a non-public address")
    return url


def check_redirect(response: httpx.Response) -> None:
    """httpx ``response`` hook: vet the target of every redirect hop.

    Hooks run before httpx follows the ``Location`` header, so
    raising here stops the hop.
    """
    if response.has_redirect_location:
        target = response.request.url.join(response.headers["location"])
        check_fetch_url(str(target), purpose="redirect target")
