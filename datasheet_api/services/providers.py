"""
Inference provider resolution helpers.

Centralises API-key selection and LiteLLM model naming so that
the extraction orchestrator stays focused on the repair loop.
"""

from __future__ import annotations

from datasheet_api.core.config import get_settings

#: LiteLLM routes ``gemini/<model>`` to the Google AI Studio API.
_GEMINI_PREFIX: str = "gemini/"


def resolve_api_key() -> str | None:
    """Pick the inference API key from settings.

    ``DATASHEET_API_KEY`` wins over ``GEMINI_API_KEY`` which wins
    over ``GOOGLE_API_KEY``.

    Returns:
        An API key string, or ``None`` if nothing is configured.
    """
    return get_settings().gemini_api_key or None


def litellm_model_id(model: str) -> str:
    """Return the LiteLLM model id for a bare Gemini model name.

    Args:
        model: Model name such as ``gemini-3-pro-preview``.  A
            name that already carries a provider prefix is
            returned unchanged.

    Returns:
        Model id such as ``gemini/gemini-3-pro-preview``.
    """
    if "/" in model:
        return model
    return f"{_GEMINI_PREFIX}{model}"
