"""
AI Provider Interface

Submits a text prompt to a model and returns the raw text reply.
Providers are fail-fast: a single attempt under a fixed wall-clock timeout,
with SDK errors surfaced as ModelTransportError.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional
import logging

import anthropic
import openai
from anthropic import AsyncAnthropic
from openai import AsyncOpenAI

from errors import ModelTransportError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 60.0 * 5     # seconds
DEFAULT_OPENAI_MODEL = "o1-mini"
DEFAULT_ANTHROPIC_MODEL = "claude-sonnet-4-5"


def strip_code_fences(text: str) -> str:
    """Remove markdown code-fence markers (```json and ```) wherever they appear."""
    return text.replace("```json", "").replace("```", "").strip()


def _transport_error(exc: Exception, provider: str) -> ModelTransportError:
    status_code = getattr(exc, "status_code", None)
    body = getattr(exc, "body", None)
    response = getattr(exc, "response", None)
    if body is None and response is not None:
        body = getattr(response, "text", None)
    return ModelTransportError(
        f"{provider} request failed: {type(exc).__name__}",
        status_code=status_code,
        body=body,
    )


class AIProvider(ABC):
    """Abstract base class for AI providers"""

    model: str

    @abstractmethod
    async def generate(
        self,
        user_prompt: str,
        *,
        system_prompt: Optional[str] = None
    ) -> str:
        """Generate text completion"""
        pass


class OpenAIProvider(AIProvider):
    """OpenAI chat-completions provider"""

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_OPENAI_MODEL,
        timeout: float = DEFAULT_TIMEOUT,
        reasoning_effort: Optional[str] = None,
    ):
        self.client = AsyncOpenAI(api_key=api_key, timeout=timeout, max_retries=0)
        self.model = model
        self.reasoning_effort = reasoning_effort

    async def generate(
        self,
        user_prompt: str,
        *,
        system_prompt: Optional[str] = None
    ) -> str:
        """Generate text completion"""

        # o1-family models reject the system role, so fold it into the user turn
        prompt = f"{system_prompt}\n\n{user_prompt}" if system_prompt else user_prompt

        create_kwargs: Dict[str, Any] = {}
        if self.reasoning_effort:
            create_kwargs["reasoning_effort"] = self.reasoning_effort

        logger.debug("Sending request to OpenAI API (model=%s)", self.model)
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "user", "content": prompt}
                ],
                **create_kwargs
            )
        except openai.APIError as exc:
            raise _transport_error(exc, "OpenAI") from exc
        logger.debug("Received response from OpenAI API")

        if not response.choices:
            raise ModelTransportError("OpenAI response contained no choices")
        content = response.choices[0].message.content
        if content is None:
            raise ModelTransportError("OpenAI response message has no content")
        return content


class AnthropicProvider(AIProvider):
    """Anthropic Claude AI provider"""

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_ANTHROPIC_MODEL,
        timeout: float = DEFAULT_TIMEOUT,
        max_tokens: int = 8192,
    ):
        self.client = AsyncAnthropic(api_key=api_key, timeout=timeout, max_retries=0)
        self.model = model
        self.max_tokens = max_tokens

    async def generate(
        self,
        user_prompt: str,
        *,
        system_prompt: Optional[str] = None
    ) -> str:
        """Generate text completion using Claude"""

        create_kwargs: Dict[str, Any] = {}
        if system_prompt:
            create_kwargs["system"] = system_prompt

        logger.debug("Sending request to Anthropic API (model=%s)", self.model)
        try:
            response = await self.client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                messages=[
                    {"role": "user", "content": user_prompt}
                ],
                **create_kwargs
            )
        except anthropic.APIError as exc:
            raise _transport_error(exc, "Anthropic") from exc
        logger.debug("Received response from Anthropic API")

        texts = [block.text for block in response.content if getattr(block, "type", None) == "text"]
        if not texts:
            raise ModelTransportError("Anthropic response contained no text blocks")
        return "".join(texts)


def get_provider(
    api_key: str,
    model: Optional[str] = None,
    provider: str = "openai",
    timeout: float = DEFAULT_TIMEOUT,
) -> AIProvider:
    """Factory function to get AI provider

    Args:
        api_key: API key for the provider
        model: Model name (optional, uses default for provider)
        provider: Provider name ('openai' or 'anthropic')
        timeout: Wall-clock timeout per request in seconds
    """

    if provider.lower() == "anthropic":
        return AnthropicProvider(
            api_key=api_key,
            model=model or DEFAULT_ANTHROPIC_MODEL,
            timeout=timeout,
        )
    elif provider.lower() == "openai":
        return OpenAIProvider(
            api_key=api_key,
            model=model or DEFAULT_OPENAI_MODEL,
            timeout=timeout,
        )
    raise ValueError(f"Invalid provider: {provider}. Must be 'openai' or 'anthropic'")
