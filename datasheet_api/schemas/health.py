"""Health check response models."""

from __future__ import annotations

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """Returned by the health-check endpoint."""

    status: str = Field(
        ...,
        description="Service health status",
    )
    version: str = Field(
        ...,
        description="Application version",
    )
    inference_configured: bool = Field(
        default=False,
        description="Whether an inference API key is set",
    )
    distributors: list[str] = Field(
        default_factory=list,
        description="Distributors with credentials configured",
    )
