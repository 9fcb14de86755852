"""
Pydantic models for API requests, responses and domain records.

All data contracts live here so that route handlers and services
can import lightweight schema objects without circular
dependencies.

For convenience every public model is re-exported from this
``__init__`` so that ``from datasheet_api.schemas import
ExtractionRequest`` keeps working.
"""

from datasheet_api.schemas.cache import CacheEntry, UploadedFile
from datasheet_api.schemas.credentials import Credential
from datasheet_api.schemas.health import HealthResponse
from datasheet_api.schemas.parts import PartDetail, PartSummary, PriceBreak
from datasheet_api.schemas.requests import (
    ExtractionOptions,
    ExtractionRequest,
    ModelName,
)
from datasheet_api.schemas.responses import (
    ExtractionResponse,
    PartSearchResponse,
    TaskInfo,
    TaskListResponse,
)
from datasheet_api.schemas.tasks import ExtractionResult, TaskDefinition

__all__ = [
    "CacheEntry",
    "Credential",
    "ExtractionOptions",
    "ExtractionRequest",
    "ExtractionResponse",
    "ExtractionResult",
    "HealthResponse",
    "ModelName",
    "PartDetail",
    "PartSearchResponse",
    "PartSummary",
    "PriceBreak",
    "TaskDefinition",
    "TaskInfo",
    "TaskListResponse",
    "UploadedFile",
]
