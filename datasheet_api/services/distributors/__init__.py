"""Distributor API clients (Mouser, DigiKey)."""

from datasheet_api.services.distributors.base import DistributorClient
from datasheet_api.services.distributors.digikey import DigiKeyClient
from datasheet_api.services.distributors.mouser import MouserClient

__all__ = ["DigiKeyClient", "DistributorClient", "MouserClient"]
