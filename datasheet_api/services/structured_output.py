"""
Structured output helpers: ``response_format`` construction and
tagged validation of model output.

The generation call asks the model for JSON conforming to the
task's output schema (``build_response_format``).  That is a
service capability, not a guarantee, so every response goes
through ``validate_output`` which returns one of two variants:

- ``ValidOutput``: parsed JSON that either matches the task's
  "not found" shape (``not_found=True``) or passes the output
  schema and every result validator.
- ``InvalidOutput``: the list of problems (parse error, schema
  violations, validator findings) to feed back to the model.

The orchestrator branches on the variant; nothing here raises
for bad model output.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any

from jsonschema import Draft202012Validator
from jsonschema.exceptions import SchemaError

from datasheet_api.core.errors import InvalidTaskDefinition
from datasheet_api.schemas.tasks import TaskDefinition

logger = logging.getLogger(__name__)

# Models sometimes wrap JSON in a markdown fence despite the
# response_format constraint.
_FENCE_RE = re.compile(r"^\s*```[a-zA-Z0-9_-]*\s*\n(.*?)\n?\s*```\s*$", re.DOTALL)

# Upper bound on schema errors reported per attempt.
_MAX_REPORTED_ERRORS: int = 20


# ── Tagged validation result ────────────────────────────────


@dataclass(frozen=True)
class ValidOutput:
    """Output accepted as the extraction result."""

    value: Any
    not_found: bool = False


@dataclass(frozen=True)
class InvalidOutput:
    """Output rejected; ``errors`` explain why."""

    errors: tuple[str, ...]
    value: Any = field(default=None)


ValidationOutcome = ValidOutput | InvalidOutput


# ── Request side ────────────────────────────────────────────


def _schema_name(task_name: str) -> str:
    """``response_format`` names allow ``[a-zA-Z0-9_-]`` only."""
    return re.sub(r"[^a-zA-Z0-9_-]", "_", task_name) or "extraction_result"


def build_response_format(task: TaskDefinition) -> dict[str, Any]:
    """Build a ``response_format`` dict for ``litellm.completion()``.

    When the task has a not-found shape, the constraint accepts
    either the output schema or that shape so the model can
    report "nothing to extract" without violating it.

    Args:
        task: Task whose schema constrains the output.

    Returns:
        A dict suitable for the ``response_format`` kwarg::

            {
                "type": "json_schema",
                "json_schema": {
                    "name": "pinout",
                    "strict": False,
                    "schema": { ... }
                }
            }
    """
    schema = task.output_schema
    not_found = task.not_found_schema
    if not_found is not None:
        schema = {"anyOf": [schema, not_found]}

    return {
        "type": "json_schema",
        "json_schema": {
            "name": _schema_name(task.task_name),
            "strict": False,
            "schema": schema,
        },
    }


def check_schema(schema: Any) -> dict[str, Any]:
    """Ensure *schema* is a usable JSON Schema object.

    Args:
        schema: Caller-supplied schema (already JSON-decoded).

    Returns:
        The schema unchanged.

    Raises:
        InvalidTaskDefinition: If *schema* is not an object or is
            not a valid Draft 2020-12 schema.
    """
    if not isinstance(schema, dict):
        raise InvalidTaskDefinition("Schema must be a JSON object")
    try:
        Draft202012Validator.check_schema(schema)
    except SchemaError as exc:
        raise InvalidTaskDefinition(f"Invalid JSON Schema: {exc.message}") from exc
    return schema


# ── Response side ───────────────────────────────────────────


def strip_code_fences(text: str) -> str:
    """Remove a surrounding markdown code fence, if present."""
    match = _FENCE_RE.match(text)
    return match.group(1) if match else text.strip()


def parse_model_output(text: str) -> Any:
    """Decode model output as JSON.

    Raises:
        ValueError: If the text (fences removed) is not JSON.
    """
    return json.loads(strip_code_fences(text))


def _format_error(error: Any) -> str:
    """Render a jsonschema error as ``<path>: <message>``."""
    path = "".join(
        f"[{part}]" if isinstance(part, int) else f".{part}"
        for part in error.absolute_path
    )
    return f"${path}: {error.message}"


def schema_errors(value: Any, schema: dict[str, Any]) -> list[str]:
    """Return every violation of *schema* by *value*, stable-ordered."""
    validator = Draft202012Validator(schema)
    errors = sorted(validator.iter_errors(value), key=lambda e: list(e.absolute_path))
    return [_format_error(e) for e in errors]


def validate_output(raw_output: str, task: TaskDefinition) -> ValidationOutcome:
    """Parse and check model output against *task*.

    Order: JSON parse, then the output schema, then each result
    validator.  Output that breaks the schema is accepted as
    ``not_found`` only when it matches the task's not-found shape,
    so a schema-valid answer is never reclassified.

    Args:
        raw_output: Text returned by the model.
        task: Task the output must satisfy.

    Returns:
        ``ValidOutput`` or ``InvalidOutput``.
    """
    try:
        value = parse_model_output(raw_output)
    except ValueError as exc:
        return InvalidOutput(errors=(f"Output is not valid JSON: {exc}",))

    errors = schema_errors(value, task.output_schema)
    if errors:
        not_found = task.not_found_schema
        if not_found is not None and not schema_errors(value, not_found):
            logger.info("Task '%s' reported no data in the document", task.task_name)
            return ValidOutput(value=value, not_found=True)
        return InvalidOutput(errors=tuple(errors[:_MAX_REPORTED_ERRORS]), value=value)

    findings: list[str] = []
    for check in task.result_validators:
        findings.extend(check(value))
    if findings:
        return InvalidOutput(errors=tuple(findings[:_MAX_REPORTED_ERRORS]), value=value)

    return ValidOutput(value=value)


def build_correction_prompt(
    prompt_text: str,
    errors: tuple[str, ...] | list[str],
    previous_output: str,
    *,
    include_output: bool = True,
    max_output_length: int | None = None,
) -> str:
    """Append the previous attempt's problems to *prompt_text*.

    Args:
        prompt_text: Original task prompt.
        errors: Problems found in the previous output.
        previous_output: Raw text of the previous attempt.
        include_output: Whether to quote the previous output.
        max_output_length: Truncate the quoted output to this
            many characters (``None`` for no limit).

    Returns:
        Prompt for the next attempt.
    """
    lines = [
        prompt_text.rstrip(),
        "",
        "## Correction required",
        "",
        "Your previous response did not conform to the required JSON schema.",
        "Fix these problems and return the complete corrected JSON:",
        "",
    ]
    lines.extend(f"- {err}" for err in errors)

    if include_output and previous_output:
        quoted = previous_output
        if max_output_length is not None and len(quoted) > max_output_length:
            quoted = quoted[:max_output_length] + "\n... [truncated]"
        lines.extend(["", "Previous response:", "", "```json", quoted, "```"])

    return "\n".join(lines)
