"""Tests for structured output helpers.

Validates:
- ``response_format`` construction for litellm
- Schema checking of caller-supplied schemas
- Tagged validation of model output (valid, not-found, invalid)
- Correction prompt construction
"""

from __future__ import annotations

import pytest

from datasheet_api.core.defaults import NOT_FOUND_SCHEMA
from datasheet_api.core.errors import InvalidTaskDefinition
from datasheet_api.schemas import TaskDefinition
from datasheet_api.services.structured_output import (
    InvalidOutput,
    ValidOutput,
    build_correction_prompt,
    build_response_format,
    check_schema,
    parse_model_output,
    schema_errors,
    strip_code_fences,
    validate_output,
)

# ── Fixtures ────────────────────────────────────────────────

PART_SCHEMA: dict = {
    "type": "object",
    "properties": {
        "part_number": {"type": "string"},
        "pins": {"type": "array", "items": {"type": "object"}},
    },
    "required": ["part_number", "pins"],
}


def _task(**overrides) -> TaskDefinition:
    params = {
        "task_name": "parts",
        "description": "Part identification",
        "prompt_text": "Extract the part number and pins.",
        "output_schema": PART_SCHEMA,
        "not_found_schema": NOT_FOUND_SCHEMA,
    }
    params.update(overrides)
    return TaskDefinition.build(**params)


# ── build_response_format ───────────────────────────────────


class TestBuildResponseFormat:
    """Tests for ``build_response_format``."""

    def test_wraps_schema_with_not_found_alternative(self):
        """The constraint accepts the output or the not-found shape."""
        fmt = build_response_format(_task())

        assert fmt["type"] == "json_schema"
        assert fmt["json_schema"]["name"] == "parts"
        assert fmt["json_schema"]["strict"] is False
        assert fmt["json_schema"]["schema"] == {"anyOf": [PART_SCHEMA, NOT_FOUND_SCHEMA]}

    def test_plain_schema_without_not_found(self):
        """Tasks without a not-found shape send the schema as-is."""
        fmt = build_response_format(_task(not_found_schema=None))
        assert fmt["json_schema"]["schema"] == PART_SCHEMA

    def test_name_is_sanitised(self):
        """Characters outside ``[a-zA-Z0-9_-]`` are replaced."""
        fmt = build_response_format(_task(task_name="boot config/v2"))
        assert fmt["json_schema"]["name"] == "boot_config_v2"


# ── check_schema ────────────────────────────────────────────


class TestCheckSchema:
    """Tests for ``check_schema``."""

    def test_valid_schema_returned(self):
        """A valid schema passes through unchanged."""
        assert check_schema(PART_SCHEMA) is PART_SCHEMA

    def test_non_object_rejected(self):
        """Schemas must be JSON objects."""
        with pytest.raises(InvalidTaskDefinition):
            check_schema(["type", "object"])

    def test_invalid_keyword_value_rejected(self):
        """A schema that breaks the metaschema is rejected."""
        with pytest.raises(InvalidTaskDefinition, match="Invalid JSON Schema"):
            check_schema({"type": "not-a-type"})


# ── Parsing ─────────────────────────────────────────────────


class TestParsing:
    """Tests for fence stripping and JSON parsing."""

    def test_strips_json_fence(self):
        """A ```json fence is removed."""
        assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'

    def test_strips_bare_fence(self):
        """A plain ``` fence is removed."""
        assert parse_model_output('```\n{"a": 1}\n```') == {"a": 1}

    def test_unfenced_text_untouched(self):
        """Plain JSON is parsed directly."""
        assert parse_model_output('  {"a": [1, 2]}  ') == {"a": [1, 2]}

    def test_invalid_json_raises(self):
        """Non-JSON text raises ``ValueError``."""
        with pytest.raises(ValueError):
            parse_model_output("Here is the pinout you asked for")


# ── schema_errors ───────────────────────────────────────────


class TestSchemaErrors:
    """Tests for ``schema_errors``."""

    def test_missing_required_field_named(self):
        """The missing property appears in the message."""
        errors = schema_errors({"part_number": "X"}, PART_SCHEMA)
        assert len(errors) == 1
        assert errors[0].startswith("$:")
        assert "'pins' is a required property" in errors[0]

    def test_nested_path_rendered(self):
        """Errors inside arrays carry a JSONPath-like location."""
        errors = schema_errors({"part_number": "X", "pins": [{}, 3]}, PART_SCHEMA)
        assert errors == ["$.pins[1]: 3 is not of type 'object'"]

    def test_valid_value_has_no_errors(self):
        """Conforming values produce no errors."""
        assert schema_errors({"part_number": "X", "pins": []}, PART_SCHEMA) == []


# ── validate_output ─────────────────────────────────────────


class TestValidateOutput:
    """Tests for ``validate_output``."""

    def test_valid_output(self):
        """Conforming JSON is accepted."""
        outcome = validate_output('{"part_number": "LM317", "pins": [{"n": 1}]}', _task())

        assert isinstance(outcome, ValidOutput)
        assert outcome.value["part_number"] == "LM317"
        assert outcome.not_found is False

    def test_not_found_shape_accepted(self):
        """``{"error": ...}`` is a successful not-found answer."""
        outcome = validate_output('{"error": "No pinout table in document"}', _task())

        assert isinstance(outcome, ValidOutput)
        assert outcome.not_found is True
        assert outcome.value == {"error": "No pinout table in document"}

    def test_schema_valid_error_field_not_reclassified(self):
        """Output valid under the task schema is an ordinary answer."""
        schema = {
            "type": "object",
            "properties": {"error": {"type": "string"}, "code": {"type": "string"}},
            "required": ["error", "code"],
        }
        outcome = validate_output('{"error": "E1", "code": "C7"}', _task(output_schema=schema))

        assert isinstance(outcome, ValidOutput)
        assert outcome.not_found is False

    def test_result_validators_skipped_for_not_found(self):
        """A not-found reply is not subjected to result validators."""
        task = _task(result_validators=(lambda v: ["$: always wrong"],))
        outcome = validate_output('{"error": "No pinout table"}', task)

        assert isinstance(outcome, ValidOutput)
        assert outcome.not_found is True

    def test_not_json(self):
        """Unparseable output is invalid with a parse error."""
        outcome = validate_output("Sure! The part is LM317.", _task())

        assert isinstance(outcome, InvalidOutput)
        assert outcome.errors[0].startswith("Output is not valid JSON")
        assert outcome.value is None

    def test_schema_violation(self):
        """A missing required field is reported."""
        outcome = validate_output('{"part_number": "LM317"}', _task())

        assert isinstance(outcome, InvalidOutput)
        assert any("'pins' is a required property" in e for e in outcome.errors)
        assert outcome.value == {"part_number": "LM317"}

    def test_result_validator_findings(self):
        """Result validators run after the schema passes."""
        task = _task(
            result_validators=(lambda v: [] if v["pins"] else ["$.pins: empty"],),
        )
        outcome = validate_output('{"part_number": "LM317", "pins": []}', task)

        assert isinstance(outcome, InvalidOutput)
        assert outcome.errors == ("$.pins: empty",)

    def test_error_count_bounded(self):
        """At most twenty errors are reported per attempt."""
        schema = {"type": "array", "items": {"type": "string"}}
        outcome = validate_output(str(list(range(50))), _task(output_schema=schema))

        assert isinstance(outcome, InvalidOutput)
        assert len(outcome.errors) == 20


# ── build_correction_prompt ─────────────────────────────────


class TestBuildCorrectionPrompt:
    """Tests for ``build_correction_prompt``."""

    def test_lists_errors_and_quotes_output(self):
        """Every error and the previous output appear in the prompt."""
        prompt = build_correction_prompt(
            "Extract pins.",
            ["$: 'pins' is a required property"],
            '{"part_number": "LM317"}',
        )

        assert prompt.startswith("Extract pins.")
        assert "## Correction required" in prompt
        assert "- $: 'pins' is a required property" in prompt
        assert '{"part_number": "LM317"}' in prompt

    def test_output_can_be_omitted(self):
        """``include_output=False`` leaves the previous output out."""
        prompt = build_correction_prompt(
            "Extract pins.", ["$: bad"], "SECRET-OUTPUT", include_output=False
        )
        assert "SECRET-OUTPUT" not in prompt

    def test_output_truncated(self):
        """Long previous output is cut to the limit."""
        prompt = build_correction_prompt(
            "Extract pins.", ["$: bad"], "x" * 100, max_output_length=10
        )
        assert "x" * 10 + "\n... [truncated]" in prompt
        assert "x" * 11 not in prompt
