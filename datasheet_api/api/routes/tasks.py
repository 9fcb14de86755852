"""Task catalog route."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from datasheet_api.api.deps import get_registry
from datasheet_api.core.config import get_settings
from datasheet_api.schemas import TaskInfo, TaskListResponse
from datasheet_api.services.task_registry import TaskRegistry

router = APIRouter(tags=["tasks"])


@router.get("/tasks", response_model=TaskListResponse)
def list_tasks(
    registry: TaskRegistry = Depends(get_registry),
) -> TaskListResponse:
    """List every registered extraction task with its output schema."""
    fallback = get_settings().DEFAULT_MODEL
    return TaskListResponse(
        tasks=[
            TaskInfo(
                name=task.task_name,
                description=task.description,
                default_model=task.default_model or fallback,
                output_schema=task.output_schema,
            )
            for task in registry
        ]
    )
