"""Response models for task, extraction and distributor endpoints."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from datasheet_api.schemas.parts import PartSummary


class TaskInfo(BaseModel):
    """One registered extraction task."""

    name: str = Field(..., description="Task name")
    description: str = Field(..., description="What the task extracts")
    default_model: str = Field(..., description="Model used when none is requested")
    output_schema: dict[str, Any] = Field(
        ...,
        description="JSON Schema the output must satisfy",
    )


class TaskListResponse(BaseModel):
    """Returned by ``GET /tasks``."""

    tasks: list[TaskInfo] = Field(default_factory=list)


class ExtractionResponse(BaseModel):
    """Returned by every extraction endpoint."""

    task: str = Field(..., description="Task that produced the result")
    content_key: str = Field(..., description="SHA-256 of the source document")
    data: Any = Field(..., description="Validated JSON output")
    not_found: bool = Field(
        default=False,
        description="The document has nothing to extract for this task",
    )
    attempt_count: int = Field(..., description="Generation calls made")
    model: str = Field(..., description="Model that answered")
    processing_time_ms: int = Field(..., description="Wall-clock time of the call")


class PartSearchResponse(BaseModel):
    """Returned by ``GET /distributors/{distributor}/search``."""

    distributor: str
    query: str
    count: int = Field(..., description="Number of parts in this page")
    parts: list[PartSummary] = Field(default_factory=list)
