"""Distributor part models shared by every distributor client."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class PriceBreak(BaseModel):
    """Unit price from a given order quantity upward."""

    quantity: int
    price: float | None = Field(
        default=None,
        description="Unit price; ``None`` when the distributor quotes text",
    )
    price_text: str | None = Field(
        default=None,
        description="Price exactly as the distributor formatted it",
    )
    currency: str = "USD"


class PartSummary(BaseModel):
    """One row of a keyword search."""

    distributor: str = Field(..., description="Distributor identifier")
    part_number: str | None = Field(
        default=None,
        description="Distributor's own part number",
    )
    manufacturer_part_number: str | None = None
    manufacturer: str | None = None
    description: str | None = None
    stock: int | None = Field(default=None, description="Units in stock")
    datasheet_url: str | None = None
    product_url: str | None = None
    unit_price: float | None = Field(
        default=None,
        description="Price at the first price break",
    )
    currency: str | None = None

    @property
    def has_datasheet(self) -> bool:
        """Whether a non-empty datasheet URL is listed."""
        return bool(self.datasheet_url)


class PartDetail(PartSummary):
    """Full record for a single part."""

    lifecycle_status: str | None = None
    rohs_status: str | None = None
    lead_time: str | None = None
    minimum_order_quantity: int | None = None
    order_multiple: int | None = None
    price_breaks: list[PriceBreak] = Field(default_factory=list)
    parameters: dict[str, str] = Field(default_factory=dict)
    raw: dict[str, Any] = Field(
        default_factory=dict,
        description="Unmodified distributor payload",
    )
