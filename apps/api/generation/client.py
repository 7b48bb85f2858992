import json
import logging
from typing import Any, Dict, Optional

from anthropic import AnthropicError, AsyncAnthropic
from openai import AsyncOpenAI, OpenAIError

from config import settings

logger = logging.getLogger(__name__)

PROVIDER_ANTHROPIC = "anthropic"
PROVIDER_OPENAI = "openai"


class GenerationError(Exception):
    """Raised when no provider can produce text for a prompt."""


def _usable_key(api_key: str) -> Optional[str]:
    """Treat empty and placeholder keys as unset."""
    if not api_key or "your_" in api_key or api_key == "test-key":
        return None
    return api_key


class GenerationGateway:
    """Text generation over Anthropic or OpenAI, with clients built once per process."""

    def __init__(
        self,
        *,
        provider: str = PROVIDER_ANTHROPIC,
        anthropic_api_key: str = "",
        openai_api_key: str = "",
        anthropic_model: str = "claude-sonnet-4-20250514",
        openai_model: str = "gpt-4o",
    ):
        self.provider = (provider or PROVIDER_ANTHROPIC).lower()
        self.anthropic_model = anthropic_model
        self.openai_model = openai_model
        anthropic_key = _usable_key(anthropic_api_key)
        openai_key = _usable_key(openai_api_key)
        self._anthropic = AsyncAnthropic(api_key=anthropic_key) if anthropic_key else None
        self._openai = AsyncOpenAI(api_key=openai_key) if openai_key else None

    @classmethod
    def from_settings(cls) -> "GenerationGateway":
        return cls(
            provider=settings.AI_PROVIDER,
            anthropic_api_key=settings.ANTHROPIC_API_KEY,
            openai_api_key=settings.OPENAI_API_KEY,
            anthropic_model=settings.ANTHROPIC_MODEL,
            openai_model=settings.OPENAI_MODEL,
        )

    @property
    def configured(self) -> bool:
        return self._anthropic is not None or self._openai is not None

    async def generate(
        self,
        prompt: str,
        *,
        provider: Optional[str] = None,
        max_tokens: int = 2000,
        temperature: float = 0.7,
    ) -> str:
        """
        Return the raw text a provider produces for ``prompt``.

        Anthropic is used when selected and keyed; OpenAI otherwise, when keyed.
        Provider failures surface as GenerationError.
        """
        selected = (provider or self.provider).lower()

        if selected == PROVIDER_ANTHROPIC and self._anthropic is not None:
            try:
                response = await self._anthropic.messages.create(
                    model=self.anthropic_model,
                    max_tokens=max_tokens,
                    temperature=temperature,
                    messages=[{"role": "user", "content": prompt}],
                )
            except AnthropicError as e:
                logger.error(f"Anthropic API error: {e}")
                raise GenerationError(f"Anthropic API error: {e}") from e
            for block in response.content:
                if block.type == "text":
                    return block.text
            return ""

        if self._openai is not None:
            try:
                response = await self._openai.chat.completions.create(
                    model=self.openai_model,
                    max_tokens=max_tokens,
                    temperature=temperature,
                    messages=[{"role": "user", "content": prompt}],
                )
            except OpenAIError as e:
                logger.error(f"OpenAI API error: {e}")
                raise GenerationError(f"OpenAI API error: {e}") from e
            if not response.choices:
                return ""
            return response.choices[0].message.content or ""

        raise GenerationError("No AI provider configured")

    async def aclose(self) -> None:
        if self._anthropic is not None:
            await self._anthropic.close()
        if self._openai is not None:
            await self._openai.close()


def parse_json_response(response: str) -> Optional[Dict[str, Any]]:
    """
    Extract the first balanced top-level JSON object from model output.

    Prose before and after the object is ignored, and braces inside JSON
    strings do not count toward nesting. Returns None when no candidate
    parses, so callers can tell unusable output apart from a provider error.
    """
    if not response:
        return None

    depth = 0
    start = -1
    in_string = False
    escaped = False
    for index, char in enumerate(response):
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue

        if char == '"' and depth > 0:
            in_string = True
        elif char == "{":
            if depth == 0:
                start = index
            depth += 1
        elif char == "}" and depth > 0:
            depth -= 1
            if depth == 0:
                try:
                    parsed = json.loads(response[start:index + 1])
                except ValueError:
                    continue
                if isinstance(parsed, dict):
                    return parsed
    return None
