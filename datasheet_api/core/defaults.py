"""
Default extraction task catalog.

Each entry pairs a task name with its description and output
JSON Schema.  Prompt text lives next to this package in
``datasheet_api/prompts/<task>.md`` and is loaded by
``datasheet_api.services.task_registry``.

Schemas are kept shallow on purpose: the inference service
rejects response schemas nested too deeply, and strict checks
beyond the top-level shape are left to result validators.

Stored as plain dicts so this module has zero runtime
dependencies.
"""

from __future__ import annotations

from typing import Any

from datasheet_api.core.constants import CUSTOM_TASK

# ── Shared shapes ───────────────────────────────────────────────────────────

_OBJECT_LIST: dict[str, Any] = {"type": "array", "items": {"type": "object"}}
_STRING_LIST: dict[str, Any] = {"type": "array", "items": {"type": "string"}}
_OPEN_OBJECT: dict[str, Any] = {"type": "object", "additionalProperties": True}

NOT_FOUND_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["error"],
    "properties": {"error": {"type": "string"}},
}
"""Shape every task may return when the document has nothing to extract."""

CUSTOM_SCHEMA: dict[str, Any] = {"type": "object", "additionalProperties": True}
"""Schema of the ``custom`` task when the caller does not supply one."""


def _schema(
    properties: dict[str, Any],
    required: list[str] | None = None,
    *,
    any_section: bool = False,
) -> dict[str, Any]:
    """Object schema over *properties*.

    With *any_section*, at least one property must be present, so
    the not-found reply cannot pass as an empty answer.
    """
    schema: dict[str, Any] = {
        "type": "object",
        "properties": properties,
        "additionalProperties": True,
    }
    if required:
        schema["required"] = required
    if any_section:
        schema["anyOf"] = [{"required": [name]} for name in properties]
    return schema


# ── Task catalog ────────────────────────────────────────────────────────────

TASK_CATALOG: dict[str, dict[str, Any]] = {
    "boot-config": {
        "description": "Boot configuration requirements",
        "schema": _schema(
            {
                "boot_configuration": _OBJECT_LIST,
                "debug_interface": {"type": "object"},
            },
            any_section=True,
        ),
    },
    "characteristics": {
        "description": "Electrical/thermal characteristics",
        "schema": _schema(
            {
                "absolute_maximum_ratings": _OBJECT_LIST,
                "recommended_operating_conditions": _OBJECT_LIST,
                "electrical_specifications": _OBJECT_LIST,
                "thermal_data": _OBJECT_LIST,
            },
            any_section=True,
        ),
    },
    CUSTOM_TASK: {
        "description": "Custom extraction with user-provided prompt",
        "schema": CUSTOM_SCHEMA,
    },
    "drc-rules": {
        "description": "PCB design rule constraints",
        "schema": _schema({"design_rules": _OBJECT_LIST}, ["design_rules"]),
    },
    "feature-matrix": {
        "description": "Feature matrix and part decoding",
        "schema": _schema(
            {
                "part_number_decoding": _OPEN_OBJECT,
                "variants": _OBJECT_LIST,
                "interface_support_summary": _OPEN_OBJECT,
            },
            ["variants"],
        ),
    },
    "footprint": {
        "description": "PCB footprint extraction",
        "schema": _schema(
            {
                "part_details": _OPEN_OBJECT,
                "packages": _OBJECT_LIST,
            },
            ["packages"],
        ),
    },
    "high-speed": {
        "description": "High-speed interface routing constraints",
        "schema": _schema({"interfaces": _OBJECT_LIST}, ["interfaces"]),
    },
    "layout-constraints": {
        "description": "PCB layout constraints",
        "schema": _schema(
            {
                "placement_rules": _OBJECT_LIST,
                "routing_constraints": _OBJECT_LIST,
                "layer_stackup_notes": _STRING_LIST,
            },
            any_section=True,
        ),
    },
    "pinout": {
        "description": "Pinout and configuration",
        "schema": {
            "type": "object",
            "properties": {
                "part_details": _OPEN_OBJECT,
                "packages": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "package_name": {"type": "string"},
                            "pins": _OBJECT_LIST,
                        },
                        "additionalProperties": True,
                    },
                },
            },
            "required": ["packages"],
        },
    },
    "power": {
        "description": "Power requirements",
        "schema": _schema(
            {
                "power_rails": _OBJECT_LIST,
                "sequencing_rules": _OBJECT_LIST,
            },
            ["power_rails"],
        ),
    },
    "reference-design": {
        "description": "Reference design extraction",
        "schema": _schema(
            {
                "required_components": _OBJECT_LIST,
                "critical_schematic_notes": _STRING_LIST,
            },
            ["required_components"],
        ),
    },
}
