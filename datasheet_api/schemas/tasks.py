"""Task configuration and extraction result models."""

from __future__ import annotations

import json
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, Field

#: A post-schema check.  Receives the parsed output and returns a
#: list of human-readable problems (empty when the output is fine).
ResultValidator = Callable[[Any], list[str]]


@dataclass(frozen=True)
class TaskDefinition:
    """Immutable description of one extraction task.

    Schemas are held as canonical JSON text and decoded on every
    access, so concurrent extractions sharing a definition can
    never mutate each other's view of it.
    """

    task_name: str
    description: str
    prompt_text: str
    schema_json: str
    not_found_schema_json: str | None = None
    result_validators: tuple[ResultValidator, ...] = field(default_factory=tuple)
    default_model: str | None = None

    @classmethod
    def build(
        cls,
        task_name: str,
        description: str,
        prompt_text: str,
        output_schema: dict[str, Any],
        *,
        not_found_schema: dict[str, Any] | None = None,
        result_validators: tuple[ResultValidator, ...] = (),
        default_model: str | None = None,
    ) -> TaskDefinition:
        """Create a definition from plain dict schemas."""
        return cls(
            task_name=task_name,
            description=description,
            prompt_text=prompt_text,
            schema_json=json.dumps(output_schema, sort_keys=True),
            not_found_schema_json=(
                json.dumps(not_found_schema, sort_keys=True)
                if not_found_schema is not None
                else None
            ),
            result_validators=tuple(result_validators),
            default_model=default_model,
        )

    @property
    def output_schema(self) -> dict[str, Any]:
        """A fresh copy of the output JSON Schema."""
        return json.loads(self.schema_json)

    @property
    def not_found_schema(self) -> dict[str, Any] | None:
        """A fresh copy of the "nothing to extract" shape, if any."""
        if self.not_found_schema_json is None:
            return None
        return json.loads(self.not_found_schema_json)


class ExtractionResult(BaseModel):
    """Outcome of one successful extraction call."""

    task_name: str = Field(..., description="Task that produced the result")
    content_key: str = Field(..., description="SHA-256 of the source document")
    raw_model_output: str = Field(..., description="Text returned by the model")
    validated_json: Any = Field(
        ...,
        description="Parsed output that passed schema validation",
    )
    attempt_count: int = Field(..., ge=1, description="Generation calls made")
    not_found: bool = Field(
        default=False,
        description="Model reported the requested data is absent",
    )
    model: str = Field(default="", description="Model that answered")
