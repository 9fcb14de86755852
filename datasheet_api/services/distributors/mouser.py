"""
Mouser Electronics search API client.

Mouser authenticates with a static API key passed as the
``apiKey`` query parameter.  Both endpoints are ``POST`` with a
JSON body and report problems in an ``Errors`` array even on a
200 response.

- Keyword search: ``POST /search/keyword``
- Part-number search: ``POST /search/partnumber`` (used for exact
  search and for part lookups; Mouser has no detail endpoint)
"""

from __future__ import annotations

import logging
import re
from typing import Any

from datasheet_api.core.constants import DISTRIBUTOR_MOUSER
from datasheet_api.core.errors import DistributorError, PartNotFound
from datasheet_api.schemas.credentials import Credential
from datasheet_api.schemas.parts import PartDetail, PartSummary, PriceBreak
from datasheet_api.services.distributors.base import DistributorClient, records

logger = logging.getLogger(__name__)

#: Mouser caps ``records`` per keyword request.
MAX_RECORDS: int = 50

_NUMBER_RE = re.compile(r"[\d.,]+")


def _to_int(value: Any) -> int | None:
    """Parse Mouser's numeric strings (``"1,234 In Stock"``)."""
    if value is None:
        return None
    if isinstance(value, int):
        return value
    match = re.search(r"\d[\d,]*", str(value))
    return int(match.group(0).replace(",", "")) if match else None


def _to_price(value: Any) -> float | None:
    """Parse a formatted price such as ``"$1.23"`` or ``"1,23 €"``."""
    if value is None:
        return None
    match = _NUMBER_RE.search(str(value))
    if not match:
        return None
    text = match.group(0)
    if "," in text and "." not in text:
        text = text.replace(",", ".")
    else:
        text = text.replace(",", "")
    try:
        return float(text)
    except ValueError:
        return None


def _price_breaks(part: dict[str, Any]) -> list[PriceBreak]:
    breaks: list[PriceBreak] = []
    for pb in records(part.get("PriceBreaks")):
        quantity = _to_int(pb.get("Quantity"))
        if quantity is None:
            continue
        price = pb.get("Price")
        breaks.append(
            PriceBreak(
                quantity=quantity,
                price=_to_price(price),
                price_text=None if price is None else str(price),
                currency=str(pb.get("Currency") or "USD"),
            )
        )
    return breaks


def _parameters(part: dict[str, Any]) -> dict[str, str]:
    params: dict[str, str] = {}
    for attr in records(part.get("ProductAttributes")):
        name = attr.get("AttributeName")
        value = attr.get("AttributeValue")
        if name and value is not None:
            params[str(name)] = str(value)
    if part.get("Category"):
        params.setdefault("Category", str(part["Category"]))
    return params


def _summary_fields(part: dict[str, Any]) -> dict[str, Any]:
    breaks = _price_breaks(part)
    first = breaks[0] if breaks else None
    return {
        "distributor": DISTRIBUTOR_MOUSER,
        "part_number": part.get("MouserPartNumber"),
        "manufacturer_part_number": part.get("ManufacturerPartNumber"),
        "manufacturer": part.get("Manufacturer"),
        "description": part.get("Description"),
        "stock": _to_int(part.get("AvailabilityInStock") or part.get("Availability")),
        "datasheet_url": part.get("DataSheetUrl") or None,
        "product_url": part.get("ProductDetailUrl") or None,
        "unit_price": first.price if first else None,
        "currency": first.currency if first else None,
    }


def parse_summary(part: dict[str, Any]) -> PartSummary:
    """Map one Mouser ``Parts`` entry to a ``PartSummary``."""
    return PartSummary(**_summary_fields(part))


def parse_detail(part: dict[str, Any]) -> PartDetail:
    """Map one Mouser ``Parts`` entry to a ``PartDetail``."""
    return PartDetail(
        **_summary_fields(part),
        lifecycle_status=part.get("LifecycleStatus"),
        rohs_status=part.get("ROHSStatus"),
        lead_time=part.get("LeadTime"),
        minimum_order_quantity=_to_int(part.get("Min")),
        order_multiple=_to_int(part.get("Mult")),
        price_breaks=_price_breaks(part),
        parameters=_parameters(part),
        raw=part,
    )


class MouserClient(DistributorClient):
    """Typed wrapper around the Mouser search API."""

    distributor_id = DISTRIBUTOR_MOUSER

    def _authorize(
        self,
        credential: Credential,
        headers: dict[str, str],
        params: dict[str, Any],
    ) -> None:
        params["apiKey"] = credential.access_token

    # ── Operations ──────────────────────────────────────────

    def search(
        self,
        query: str,
        *,
        limit: int = 10,
        offset: int = 0,
        exact: bool = False,
    ) -> list[PartSummary]:
        """Keyword search, or exact part-number search with *exact*.

        Args:
            query: Keyword or part number.
            limit: Maximum results (Mouser caps this at 50).
            offset: Zero-based starting record.
            exact: Search by part number instead of keyword.
        """
        if exact:
            parts = self._search_part_number(query)
        else:
            parts = self._search_keyword(query, limit=limit, offset=offset)
        return [self._parse(parse_summary, p) for p in parts[:limit]]

    def get_part(self, part_id: str) -> PartDetail:
        """Look up *part_id* (Mouser or manufacturer part number).

        Prefers an entry whose Mouser or manufacturer part number
        matches exactly, falling back to the first result.
        """
        parts = self._search_part_number(part_id)
        if not parts:
            raise PartNotFound(self.distributor_id, part_id)
        wanted = part_id.strip().upper()
        for part in parts:
            numbers = {
                str(part.get("MouserPartNumber") or "").upper(),
                str(part.get("ManufacturerPartNumber") or "").upper(),
            }
            if wanted in numbers:
                return self._parse(parse_detail, part)
        return self._parse(parse_detail, parts[0])

    # ── Wire calls ──────────────────────────────────────────

    def _search_keyword(self, keyword: str, *, limit: int, offset: int) -> list[dict[str, Any]]:
        body = {
            "SearchByKeywordRequest": {
                "keyword": keyword,
                "records": max(1, min(limit, MAX_RECORDS)),
                "startingRecord": max(0, offset),
            }
        }
        resp = self._request("POST", "/search/keyword", json=body)
        return self._parts(self._json(resp))

    def _search_part_number(self, part_number: str) -> list[dict[str, Any]]:
        body = {"SearchByPartRequest": {"mouserPartNumber": part_number}}
        resp = self._request("POST", "/search/partnumber", json=body)
        return self._parts(self._json(resp))

    def _parts(self, payload: Any) -> list[dict[str, Any]]:
        """Extract ``SearchResults.Parts``, raising on ``Errors``."""
        if not isinstance(payload, dict):
            raise DistributorError(self.distributor_id, "Unexpected response shape")

        errors = records(payload.get("Errors"))
        messages = [str(e["Message"]) for e in errors if e.get("Message")]
        if messages:
            raise DistributorError(
                self.distributor_id,
                f"API errors: {', '.join(messages)}",
                remote_status=200,
                body=str(errors),
            )

        results = payload.get("SearchResults")
        parts = records(results.get("Parts")) if isinstance(results, dict) else []
        logger.debug("Mouser returned %d part(s)", len(parts))
        return parts
