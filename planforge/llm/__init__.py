"""Generation gateway: one generate(prompt) -> text call per backend."""

from planforge.llm.backends import (
    AnthropicBackend,
    GeminiBackend,
    GenerationGateway,
    LLMCallResult,
)
from planforge.llm.client import parse_llm_json_response
from planforge.llm.factory import get_backend

__all__ = [
    "AnthropicBackend",
    "GeminiBackend",
    "GenerationGateway",
    "LLMCallResult",
    "get_backend",
    "parse_llm_json_response",
]
