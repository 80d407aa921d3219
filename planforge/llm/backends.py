"""Generation backends.

Every backend exposes the same narrow capability, generate(prompt) -> text,
so nothing outside this package depends on a provider's request or
response shape.

Each backend handles provider-specific concerns:
- Client creation and timeout configuration
- Response parsing and token counting
- Wrapping provider errors as UpstreamServiceError

There are no retries here: a failed call surfaces to the caller.
"""

import logging
import os
import time
from dataclasses import dataclass
from typing import Any, Optional, Protocol, runtime_checkable

from planforge.errors import GatewayUnavailable, UpstreamServiceError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 300.0
DEFAULT_MAX_TOKENS = 16_000


@dataclass
class LLMCallResult:
    """Normalized response from any backend."""

    content: str
    model_id: str
    input_tokens: int
    output_tokens: int
    duration_ms: int


@runtime_checkable
class GenerationGateway(Protocol):
    """The only interface the rest of planforge uses to call a model."""

    @property
    def model_id(self) -> str: ...

    def is_ready(self) -> bool: ...

    def generate(self, prompt: str) -> str: ...


class AnthropicBackend:
    """Anthropic Claude backend (synchronous messages API)."""

    def __init__(
        self,
        model_id: str = "claude-sonnet-4-6",
        api_key: Optional[str] = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_tokens: int = DEFAULT_MAX_TOKENS,
    ):
        self._model_id = model_id
        self._api_key = api_key or os.environ.get("ANTHROPIC_API_KEY")
        self.timeout_seconds = timeout_seconds
        self.max_tokens = max_tokens
        self._client = None

    @property
    def model_id(self) -> str:
        return self._model_id

    def is_ready(self) -> bool:
        return bool(self._api_key)

    def _get_client(self):
        if not self._api_key:
            raise GatewayUnavailable(
                "AI service not available. Set ANTHROPIC_API_KEY environment variable."
            )
        if self._client is None:
            import httpx
            from anthropic import Anthropic

            self._client = Anthropic(
                api_key=self._api_key,
                max_retries=0,
                timeout=httpx.Timeout(
                    connect=30.0,
                    read=self.timeout_seconds,
                    write=60.0,
                    pool=30.0,
                ),
            )
        return self._client

    def execute(self, prompt: str, label: str = "") -> LLMCallResult:
        """Run one prompt and return the normalized result."""
        import anthropic

        client = self._get_client()
        start_time = time.time()

        logger.info(
            f"[{label}] Anthropic call: ~{len(prompt) // 4:,} input tokens, "
            f"max_tokens={self.max_tokens}"
        )

        try:
            response = client.messages.create(
                model=self._model_id,
                max_tokens=self.max_tokens,
                messages=[{"role": "user", "content": prompt}],
            )
        except anthropic.APIError as e:
            raise UpstreamServiceError(f"{self._model_id} call failed: {e}") from e

        duration_ms = int((time.time() - start_time) * 1000)

        raw_text = "".join(
            block.text for block in response.content if hasattr(block, "text")
        )
        if not raw_text.strip():
            raise UpstreamServiceError(f"[{label}] Empty response from {self._model_id}")

        logger.info(
            f"[{label}] Completed: {response.usage.input_tokens}+"
            f"{response.usage.output_tokens} tokens, {duration_ms}ms, "
            f"{len(raw_text):,} chars"
        )

        return LLMCallResult(
            content=raw_text.strip(),
            model_id=self._model_id,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            duration_ms=duration_ms,
        )

    def generate(self, prompt: str) -> str:
        return self.execute(prompt, label="generate").content


class GeminiBackend:
    """Google Gemini backend via the google-genai SDK."""

    def __init__(
        self,
        model_id: str = "gemini-2.5-pro",
        api_key: Optional[str] = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_tokens: int = DEFAULT_MAX_TOKENS,
    ):
        self._model_id = model_id
        self._api_key = api_key or os.environ.get("GEMINI_API_KEY")
        self.timeout_seconds = timeout_seconds
        self.max_tokens = max_tokens
        self._client = None

    @property
    def model_id(self) -> str:
        return self._model_id

    def is_ready(self) -> bool:
        return bool(self._api_key)

    def _get_client(self):
        """Get a Gemini client. Lazy import to avoid requiring google-genai."""
        if not self._api_key:
            raise GatewayUnavailable(
                "AI service not available. Set GEMINI_API_KEY environment variable."
            )
        if self._client is None:
            try:
                from google import genai
            except ImportError:
                raise GatewayUnavailable(
                    "google-genai package not installed. "
                    "Install with: pip install google-genai"
                )
            self._client = genai.Client(
                api_key=self._api_key,
                http_options=genai.types.HttpOptions(
                    timeout=int(self.timeout_seconds * 1000),
                ),
            )
        return self._client

    def execute(self, prompt: str, label: str = "") -> LLMCallResult:
        import httpx
        from google import genai
        from google.genai import errors as genai_errors

        client = self._get_client()
        start_time = time.time()
        estimated_input_tokens = len(prompt) // 4

        logger.info(
            f"[{label}] Gemini call: ~{estimated_input_tokens:,} input tokens, "
            f"max_tokens={self.max_tokens}"
        )

        config_kwargs: dict[str, Any] = {"max_output_tokens": self.max_tokens}
        try:
            response = client.models.generate_content(
                model=self._model_id,
                contents=prompt,
                config=genai.types.GenerateContentConfig(**config_kwargs),
            )
        except (genai_errors.APIError, httpx.HTTPError) as e:
            raise UpstreamServiceError(f"{self._model_id} call failed: {e}") from e

        duration_ms = int((time.time() - start_time) * 1000)

        # Extract text (skip thinking parts)
        raw_text = ""
        if response.candidates and response.candidates[0].content:
            for part in response.candidates[0].content.parts or []:
                if getattr(part, "thought", False):
                    continue
                raw_text += getattr(part, "text", "") or ""

        if not raw_text.strip():
            raise UpstreamServiceError(f"[{label}] Empty response from {self._model_id}")

        usage = getattr(response, "usage_metadata", None)
        input_tokens = getattr(usage, "prompt_token_count", None) or estimated_input_tokens
        output_tokens = getattr(usage, "candidates_token_count", None) or len(raw_text) // 4

        logger.info(
            f"[{label}] Gemini completed: {input_tokens}+{output_tokens} tokens, "
            f"{duration_ms}ms, {len(raw_text):,} chars"
        )

        return LLMCallResult(
            content=raw_text.strip(),
            model_id=self._model_id,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            duration_ms=duration_ms,
        )

    def generate(self, prompt: str) -> str:
        return self.execute(prompt, label="generate").content
