"""
Schema-constrained generation via LiteLLM.

One call = one user message carrying the uploaded document
reference and the prompt, with ``response_format`` derived from
the task schema.  The returned text is handed back untouched;
parsing and validation belong to ``structured_output``.
"""

from __future__ import annotations

import logging
from typing import Any

import litellm

from datasheet_api.core.constants import PDF_MIME_TYPE
from datasheet_api.core.errors import InferenceFailure
from datasheet_api.schemas.tasks import TaskDefinition
from datasheet_api.services.providers import litellm_model_id
from datasheet_api.services.structured_output import build_response_format

logger = logging.getLogger(__name__)


def build_messages(
    remote_handle: str,
    prompt: str,
    mime_type: str = PDF_MIME_TYPE,
) -> list[dict[str, Any]]:
    """Return the chat messages for one generation call.

    Args:
        remote_handle: File URI returned by the upload.
        prompt: Task prompt (possibly with a correction section).
        mime_type: MIME type of the uploaded document.
    """
    return [
        {
            "role": "user",
            "content": [
                {
                    "type": "file",
                    "file": {"file_id": remote_handle, "format": mime_type},
                },
                {"type": "text", "text": prompt},
            ],
        }
    ]


class InferenceClient:
    """Issue generation requests against an uploaded document.

    Args:
        api_key: Inference API key.
        timeout: Per-call timeout in seconds.
        base_url: Optional REST root override.
    """

    def __init__(
        self,
        api_key: str | None,
        *,
        timeout: float = 300.0,
        base_url: str | None = None,
    ) -> None:
        self._api_key = api_key
        self._timeout = timeout
        self._base_url = base_url

    def generate(
        self,
        remote_handle: str,
        prompt: str,
        task: TaskDefinition,
        *,
        model: str,
        temperature: float | None = None,
        mime_type: str = PDF_MIME_TYPE,
    ) -> str:
        """Run one schema-constrained generation.

        Args:
            remote_handle: File URI of the uploaded document.
            prompt: Prompt text for this attempt.
            task: Task whose schema constrains the output.
            model: Bare model name (``gemini-3-pro-preview``).
            temperature: Optional sampling temperature.
            mime_type: MIME type of the uploaded document.

        Returns:
            The raw text of the first choice (``""`` if empty).

        Raises:
            InferenceFailure: On transport errors, timeouts or
                non-2xx responses.
        """
        kwargs: dict[str, Any] = {
            "model": litellm_model_id(model),
            "messages": build_messages(remote_handle, prompt, mime_type),
            "response_format": build_response_format(task),
            "timeout": self._timeout,
        }
        if self._api_key:
            kwargs["api_key"] = self._api_key
        if self._base_url:
            kwargs["api_base"] = self._base_url
        if temperature is not None:
            kwargs["temperature"] = temperature

        logger.info(
            "Calling %s for task '%s' on %s",
            kwargs["model"],
            task.task_name,
            remote_handle,
        )
        try:
            response = litellm.completion(**kwargs)
        except Exception as exc:
            raise InferenceFailure(
                f"Generation call to {model} failed: {exc}",
            ) from exc

        try:
            content = response.choices[0].message.content
        except (AttributeError, IndexError) as exc:
            raise InferenceFailure(
                f"Generation response from {model} has no choices",
            ) from exc
        return content or ""
