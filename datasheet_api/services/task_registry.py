"""
Task registry: immutable lookup of extraction tasks by name.

Tasks are registered once at start-up (``default_registry()``
loads the built-in catalog) and never mutated afterwards.  The
``custom`` pseudo-task is not looked up but built per call from
a caller-supplied prompt and schema.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from functools import lru_cache
from importlib import resources
from typing import Any

from datasheet_api.core.constants import CUSTOM_TASK
from datasheet_api.core.defaults import NOT_FOUND_SCHEMA, TASK_CATALOG
from datasheet_api.core.errors import InvalidTaskDefinition, UnknownTask
from datasheet_api.schemas.tasks import ResultValidator, TaskDefinition
from datasheet_api.services.structured_output import check_schema

logger = logging.getLogger(__name__)

_PROMPT_PACKAGE: str = "datasheet_api"
_PROMPT_DIR: str = "prompts"


# ── Result validators ───────────────────────────────────────


def _packages_have_pins(value: Any) -> list[str]:
    """Every pinout package must list at least one pin."""
    problems: list[str] = []
    for idx, package in enumerate(value.get("packages", [])):
        if not package.get("pins"):
            name = package.get("package_name") or f"#{idx}"
            problems.append(f"$.packages[{idx}].pins: package {name} lists no pins")
    return problems


def _non_empty(key: str) -> ResultValidator:
    """Build a validator requiring a non-empty top-level array."""

    def check(value: Any) -> list[str]:
        if not value.get(key):
            return [
                f"$.{key}: must not be empty; return the not-found error "
                "object if the document has no such data"
            ]
        return []

    check.__name__ = f"non_empty_{key}"
    return check


_RESULT_VALIDATORS: dict[str, tuple[ResultValidator, ...]] = {
    "pinout": (_non_empty("packages"), _packages_have_pins),
    "footprint": (_non_empty("packages"),),
    "power": (_non_empty("power_rails"),),
}


# ── Prompt loading ──────────────────────────────────────────


def load_prompt(task_name: str) -> str:
    """Read the bundled prompt for *task_name*.

    Raises:
        FileNotFoundError: If no prompt file ships for the task.
    """
    path = resources.files(_PROMPT_PACKAGE) / _PROMPT_DIR / f"{task_name}.md"
    return path.read_text(encoding="utf-8")


# ── Registry ────────────────────────────────────────────────


class TaskRegistry:
    """Read-only mapping from task name to ``TaskDefinition``.

    Args:
        tasks: Definitions to register.  Names must be unique.
    """

    def __init__(self, tasks: Iterable[TaskDefinition]) -> None:
        registered: dict[str, TaskDefinition] = {}
        for task in tasks:
            if task.task_name in registered:
                raise ValueError(f"Duplicate task name '{task.task_name}'")
            registered[task.task_name] = task
        self._tasks = registered

    def get(self, task_name: str) -> TaskDefinition:
        """Return the task registered as *task_name*.

        Raises:
            UnknownTask: If *task_name* is not registered.
        """
        try:
            return self._tasks[task_name]
        except KeyError:
            raise UnknownTask(task_name, self.names()) from None

    def names(self) -> list[str]:
        """Registered task names, sorted."""
        return sorted(self._tasks)

    def __iter__(self) -> Iterator[TaskDefinition]:
        return iter(self._tasks[name] for name in self.names())

    def __contains__(self, task_name: object) -> bool:
        return task_name in self._tasks

    def __len__(self) -> int:
        return len(self._tasks)

    def resolve(
        self,
        task_name: str,
        *,
        prompt: str | None = None,
        schema: dict[str, Any] | None = None,
    ) -> TaskDefinition:
        """Return the definition to run for one call.

        ``custom`` gets an ad-hoc definition; every other task is
        looked up and must not be given a prompt or schema.

        Raises:
            UnknownTask: If *task_name* is not registered.
            InvalidTaskDefinition: If a prompt or schema is passed
                for a registered task, or the custom one is invalid.
        """
        if task_name == CUSTOM_TASK:
            return self.custom(prompt, schema)
        if prompt is not None or schema is not None:
            raise InvalidTaskDefinition(
                f"prompt and schema can only be used with the '{CUSTOM_TASK}' task"
            )
        return self.get(task_name)

    def custom(
        self,
        prompt: str | None = None,
        schema: dict[str, Any] | None = None,
    ) -> TaskDefinition:
        """Build an ad-hoc ``custom`` task for one call.

        Args:
            prompt: Caller prompt; defaults to the registered
                ``custom`` prompt.
            schema: Caller JSON Schema; defaults to the registered
                ``custom`` schema (any object).

        Raises:
            UnknownTask: If no ``custom`` base task is registered.
            InvalidTaskDefinition: If *prompt* is blank or *schema*
                is not a valid JSON Schema object.
        """
        base = self.get(CUSTOM_TASK)
        if prompt is not None and not prompt.strip():
            raise InvalidTaskDefinition("Custom prompt must not be empty")
        output_schema = check_schema(schema) if schema is not None else base.output_schema

        return TaskDefinition.build(
            task_name=base.task_name,
            description=base.description,
            prompt_text=prompt if prompt is not None else base.prompt_text,
            output_schema=output_schema,
            # A caller schema defines its own shape, which may include "error".
            not_found_schema=None if schema is not None else base.not_found_schema,
            result_validators=base.result_validators,
            default_model=base.default_model,
        )


def build_default_tasks(default_model: str | None = None) -> list[TaskDefinition]:
    """Create a ``TaskDefinition`` for every entry of ``TASK_CATALOG``."""
    tasks: list[TaskDefinition] = []
    for name, entry in TASK_CATALOG.items():
        tasks.append(
            TaskDefinition.build(
                task_name=name,
                description=entry["description"],
                prompt_text=load_prompt(name),
                output_schema=entry["schema"],
                not_found_schema=NOT_FOUND_SCHEMA,
                result_validators=_RESULT_VALIDATORS.get(name, ()),
                default_model=default_model,
            )
        )
    return tasks


@lru_cache
def default_registry(default_model: str | None = None) -> TaskRegistry:
    """Return the built-in registry, loaded once per process."""
    registry = TaskRegistry(build_default_tasks(default_model))
    logger.info("Registered %d extraction task(s): %s", len(registry), ", ".join(registry.names()))
    return registry
