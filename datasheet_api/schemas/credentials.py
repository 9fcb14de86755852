"""Distributor credential model."""

from __future__ import annotations

import math
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class Credential(BaseModel):
    """A bearer token (or static key) for one distributor.

    Owned by the credential manager; clients borrow the token
    for a single request and never keep it.
    """

    model_config = ConfigDict(frozen=True)

    distributor_id: str
    access_token: str = Field(..., repr=False)
    obtained_at: float = Field(..., description="Epoch seconds")
    expires_at: float = Field(
        default=math.inf,
        description="Epoch seconds; ``inf`` for keys that never expire",
    )
    refresh_material: Any = Field(default=None, repr=False)

    def is_expired(self, now: float) -> bool:
        """``True`` once the token must not be used at all."""
        return now >= self.expires_at

    def needs_refresh(self, now: float, margin: float) -> bool:
        """``True`` when less than *margin* seconds of life remain."""
        return now >= self.expires_at - margin
