"""Backend factory.

Resolves model IDs to the appropriate backend implementation.
"""

import logging
from typing import Optional, Union

from planforge.llm.backends import (
    DEFAULT_MAX_TOKENS,
    DEFAULT_TIMEOUT_SECONDS,
    AnthropicBackend,
    GeminiBackend,
)

logger = logging.getLogger(__name__)


def get_backend(
    model_id: str,
    api_key: Optional[str] = None,
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    max_tokens: int = DEFAULT_MAX_TOKENS,
) -> Union[AnthropicBackend, GeminiBackend]:
    """Get the appropriate backend for a model ID.

    Args:
        model_id: Full model identifier (e.g. 'claude-sonnet-4-6',
                  'gemini-2.5-pro')
        api_key: Explicit key; falls back to the provider's env variable

    Raises:
        ValueError: If model_id is not recognized
    """
    kwargs = {
        "model_id": model_id,
        "api_key": api_key,
        "timeout_seconds": timeout_seconds,
        "max_tokens": max_tokens,
    }
    if model_id.startswith("claude-"):
        return AnthropicBackend(**kwargs)
    elif model_id.startswith("gemini-"):
        return GeminiBackend(**kwargs)
    else:
        raise ValueError(
            f"Unknown model: '{model_id}'. "
            f"Expected a model ID starting with 'claude-' or 'gemini-'."
        )
