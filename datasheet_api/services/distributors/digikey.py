"""
DigiKey Product Information API (v4) client.

Requests carry the OAuth2 bearer token from the credential
manager plus the ``X-DIGIKEY-Client-Id`` header.

- Keyword search: ``POST /products/v4/search/keyword``
- Product details: ``GET /products/v4/search/{part}/productdetails``
  (404 when the part does not exist)

The sandbox API (``DIGIKEY_SANDBOX``) has the same shape on a
different host.
"""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

from datasheet_api.core.constants import DISTRIBUTOR_DIGIKEY
from datasheet_api.core.errors import PartNotFound
from datasheet_api.schemas.credentials import Credential
from datasheet_api.schemas.parts import PartDetail, PartSummary, PriceBreak
from datasheet_api.services.distributors.base import DistributorClient, records

logger = logging.getLogger(__name__)

TOKEN_PATH: str = "/v1/oauth2/token"
"""OAuth2 client-credentials endpoint, relative to the API root."""


def _text(value: Any) -> str | None:
    """Flatten DigiKey's ``{"Value": ...}`` / ``{"Name": ...}`` wrappers."""
    if value is None:
        return None
    if isinstance(value, dict):
        for key in ("Value", "Name", "Status", "ProductDescription"):
            if value.get(key):
                return str(value[key])
        return None
    return str(value)


def _description(product: dict[str, Any]) -> str | None:
    desc = product.get("Description")
    if isinstance(desc, dict):
        return desc.get("ProductDescription") or desc.get("DetailedDescription")
    return product.get("ProductDescription") or product.get("DetailedDescription") or desc


def _datasheet_url(product: dict[str, Any]) -> str | None:
    return product.get("DatasheetUrl") or product.get("DataSheetUrl") or None


def _part_number(product: dict[str, Any]) -> str | None:
    if product.get("DigiKeyPartNumber"):
        return product["DigiKeyPartNumber"]
    for variation in records(product.get("ProductVariations")):
        if variation.get("DigiKeyProductNumber"):
            return variation["DigiKeyProductNumber"]
    return None


def _standard_pricing(product: dict[str, Any]) -> list[dict[str, Any]]:
    if product.get("StandardPricing"):
        return records(product["StandardPricing"])
    for variation in records(product.get("ProductVariations")):
        if variation.get("StandardPricing"):
            return records(variation["StandardPricing"])
    return []


def _price_breaks(product: dict[str, Any]) -> list[PriceBreak]:
    breaks: list[PriceBreak] = []
    for pb in _standard_pricing(product):
        quantity = pb.get("BreakQuantity")
        if quantity is None:
            continue
        price = pb.get("UnitPrice")
        breaks.append(
            PriceBreak(
                quantity=int(quantity),
                price=float(price) if price is not None else None,
                price_text=None if price is None else str(price),
            )
        )
    return breaks


def _classifications(product: dict[str, Any]) -> dict[str, Any]:
    value = product.get("Classifications")
    return value if isinstance(value, dict) else {}


def _parameters(product: dict[str, Any]) -> dict[str, str]:
    params: dict[str, str] = {}
    for param in records(product.get("Parameters")):
        name = param.get("ParameterText") or param.get("Parameter")
        value = param.get("ValueText") or param.get("Value")
        if name and value is not None:
            params[str(name)] = str(value)
    return params


def _summary_fields(product: dict[str, Any]) -> dict[str, Any]:
    unit_price = product.get("UnitPrice")
    if unit_price is None:
        breaks = _price_breaks(product)
        unit_price = breaks[0].price if breaks else None
    return {
        "distributor": DISTRIBUTOR_DIGIKEY,
        "part_number": _part_number(product),
        "manufacturer_part_number": product.get("ManufacturerProductNumber")
        or product.get("ManufacturerPartNumber"),
        "manufacturer": _text(product.get("Manufacturer")),
        "description": _description(product),
        "stock": product.get("QuantityAvailable"),
        "datasheet_url": _datasheet_url(product),
        "product_url": product.get("ProductUrl") or None,
        "unit_price": float(unit_price) if unit_price is not None else None,
        "currency": "USD" if unit_price is not None else None,
    }


def parse_summary(product: dict[str, Any]) -> PartSummary:
    """Map one DigiKey ``Product`` to a ``PartSummary``."""
    return PartSummary(**_summary_fields(product))


def parse_detail(product: dict[str, Any]) -> PartDetail:
    """Map one DigiKey ``Product`` to a ``PartDetail``."""
    moq = product.get("MinimumOrderQuantity")
    return PartDetail(
        **_summary_fields(product),
        lifecycle_status=_text(product.get("ProductStatus")) or product.get("PartStatus"),
        rohs_status=_text(product.get("RoHsStatus"))
        or _text(_classifications(product).get("RohsStatus")),
        lead_time=_text(product.get("ManufacturerLeadWeeks")),
        minimum_order_quantity=int(moq) if moq is not None else None,
        price_breaks=_price_breaks(product),
        parameters=_parameters(product),
        raw=product,
    )


class DigiKeyClient(DistributorClient):
    """Typed wrapper around the DigiKey v4 product API.

    Args:
        client_id: OAuth2 client id, also sent as
            ``X-DIGIKEY-Client-Id``.
        **kwargs: Forwarded to ``DistributorClient``.
    """

    distributor_id = DISTRIBUTOR_DIGIKEY

    def __init__(self, *args: Any, client_id: str, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._client_id = client_id

    def _authorize(
        self,
        credential: Credential,
        headers: dict[str, str],
        params: dict[str, Any],
    ) -> None:
        headers["Authorization"] = f"Bearer {credential.access_token}"
        headers["X-DIGIKEY-Client-Id"] = self._client_id

    # ── Operations ──────────────────────────────────────────

    def search(
        self,
        query: str,
        *,
        limit: int = 10,
        offset: int = 0,
        exact: bool = False,
    ) -> list[PartSummary]:
        """Keyword search, or a product-details lookup with *exact*.

        Args:
            query: Keyword or part number.
            limit: Maximum results.
            offset: Zero-based starting record.
            exact: Return only the exact part-number match (empty
                when the part does not exist).
        """
        if exact:
            try:
                return [self._parse(parse_summary, self._product_details(query))]
            except PartNotFound:
                return []

        body = {
            "Keywords": query,
            "RecordCount": max(1, limit),
            "RecordStartPosition": max(0, offset),
        }
        resp = self._request("POST", "/products/v4/search/keyword", json=body)
        payload = self._json(resp)
        products = records(payload.get("Products")) if isinstance(payload, dict) else []
        logger.debug("DigiKey returned %d product(s)", len(products))
        return [self._parse(parse_summary, p) for p in products[:limit]]

    def get_part(self, part_id: str) -> PartDetail:
        """Return product details for a DigiKey or manufacturer part number."""
        return self._parse(parse_detail, self._product_details(part_id))

    # ── Internals ───────────────────────────────────────────

    def _product_details(self, part_id: str) -> dict[str, Any]:
        resp = self._request(
            "GET",
            f"/products/v4/search/{quote(part_id, safe='')}/productdetails",
            part_id=part_id,
        )
        return self._unwrap(self._json(resp))

    @staticmethod
    def _unwrap(payload: Any) -> dict[str, Any]:
        """v4 wraps the product in ``{"Product": ...}``; older replies do not."""
        if isinstance(payload, dict) and isinstance(payload.get("Product"), dict):
            return payload["Product"]
        return payload if isinstance(payload, dict) else {}
