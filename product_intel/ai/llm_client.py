"""
Product Intelligence LLM Client
===============================

Abstract client for completion providers.
Supports OpenAI (or Azure OpenAI) and Claude (Anthropic).

The LLM is used to arbitrate ambiguous duplicate candidates after
vector retrieval. Provider errors are translated into the engine's
taxonomy (RateLimited / ProviderUnavailable); nothing is retried here
beyond what the SDK itself is configured to do.
"""

import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional

import anthropic
import openai

from ..config import OpenAIConfig
from ..errors import ProviderUnavailable, RateLimited

logger = logging.getLogger(__name__)


class LLMProvider(Enum):
    """Supported LLM providers."""
    ANTHROPIC = "anthropic"
    OPENAI = "openai"


@dataclass
class LLMResponse:
    """Response from an LLM."""
    content: str
    model: str
    provider: LLMProvider
    tokens_input: int
    tokens_output: int
    cost_usd: float

    @property
    def total_tokens(self) -> int:
        return self.tokens_input + self.tokens_output


def strip_json_fences(content: str) -> str:
    """Remove Markdown code fences (```json ... ```) around a JSON payload."""
    content = content.strip()
    if content.startswith("```"):
        parts = content.split("```")
        content = parts[1] if len(parts) > 1 else ""
        if content.startswith("json"):
            content = content[4:]
    return content.strip()


class LLMClient(ABC):
    """Abstract LLM client."""

    provider: LLMProvider

    @abstractmethod
    async def complete(
        self,
        messages: List[Dict[str, str]],
        max_tokens: int = 1024,
        temperature: float = 0.7,
    ) -> LLMResponse:
        """
        Complete a chat conversation.

        Args:
            messages: [{"role": "system"|"user"|"assistant", "content": "..."}]
            max_tokens: Max output tokens
            temperature: Sampling temperature

        Returns:
            LLMResponse with the generated text
        """
        pass

    async def generate(
        self,
        prompt: str,
        system: Optional[str] = None,
        max_tokens: int = 1024,
        temperature: float = 0.7,
    ) -> LLMResponse:
        """Single-turn convenience wrapper around complete()."""
        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})
        return await self.complete(messages, max_tokens=max_tokens, temperature=temperature)


class OpenAIClient(LLMClient):
    """
    Client for OpenAI GPT models, or an Azure OpenAI deployment.
    """

    provider = LLMProvider.OPENAI

    # Pricing per 1M tokens (USD)
    PRICING = {
        "gpt-4o": {"input": 2.5, "output": 10.0},
        "gpt-4o-mini": {"input": 0.15, "output": 0.6},
    }

    def __init__(
        self,
        config: Optional[OpenAIConfig] = None,
        model: Optional[str] = None,
        client=None,
    ):
        self.config = config or OpenAIConfig()
        self.api_key = self.config.api_key
        self.model = model or self.config.azure_chat_deployment or self.config.chat_model
        self._client = client
        self._total_cost = 0.0

    def _get_client(self):
        if self._client is None:
            if not self.api_key:
                raise ValueError("OPENAI_API_KEY required")
            if self.config.use_azure:
                self._client = openai.AsyncAzureOpenAI(
                    api_key=self.api_key,
                    azure_endpoint=self.config.azure_endpoint,
                    api_version=self.config.azure_api_version,
                    max_retries=self.config.max_retries,
                    timeout=self.config.timeout,
                )
            else:
                self._client = openai.AsyncOpenAI(
                    api_key=self.api_key,
                    max_retries=self.config.max_retries,
                    timeout=self.config.timeout,
                )
        return self._client

    def _calculate_cost(self, input_tokens: int, output_tokens: int) -> float:
        pricing = self.PRICING.get(self.model, {"input": 2.5, "output": 10.0})
        cost = (input_tokens * pricing["input"] + output_tokens * pricing["output"]) / 1_000_000
        return round(cost, 6)

    async def complete(
        self,
        messages: List[Dict[str, str]],
        max_tokens: int = 1024,
        temperature: float = 0.7,
    ) -> LLMResponse:
        client = self._get_client()

        try:
            response = await client.chat.completions.create(
                model=self.model,
                messages=messages,
                max_tokens=max_tokens,
                temperature=temperature,
            )
        except openai.RateLimitError as e:
            raise RateLimited(provider="openai") from e
        except openai.APIError as e:
            raise ProviderUnavailable(f"Completion request failed: {e}", provider="openai") from e

        content = response.choices[0].message.content or ""
        input_tokens = response.usage.prompt_tokens
        output_tokens = response.usage.completion_tokens
        cost = self._calculate_cost(input_tokens, output_tokens)
        self._total_cost += cost

        return LLMResponse(
            content=content,
            model=self.model,
            provider=LLMProvider.OPENAI,
            tokens_input=input_tokens,
            tokens_output=output_tokens,
            cost_usd=cost,
        )

    @property
    def total_cost(self) -> float:
        return self._total_cost


class AnthropicClient(LLMClient):
    """
    Client for Claude (Anthropic).

    System messages are passed through the dedicated `system` parameter.
    """

    provider = LLMProvider.ANTHROPIC

    # Pricing per 1M tokens (USD)
    PRICING = {
        "claude-3-5-sonnet-20241022": {"input": 3.0, "output": 15.0},
        "claude-sonnet-4-20250514": {"input": 3.0, "output": 15.0},
        "claude-3-haiku-20240307": {"input": 0.25, "output": 1.25},
    }

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "claude-sonnet-4-20250514",
        client=None,
    ):
        self.api_key = api_key or os.getenv("ANTHROPIC_API_KEY")
        self.model = model
        self._client = client
        self._total_cost = 0.0

        if not self.api_key and client is None:
            logger.warning("ANTHROPIC_API_KEY not set - Anthropic completions disabled")

    def _get_client(self):
        """Lazy init of the Anthropic client."""
        if self._client is None:
            if not self.api_key:
                raise ValueError("ANTHROPIC_API_KEY required")
            self._client = anthropic.AsyncAnthropic(api_key=self.api_key)
        return self._client

    def _calculate_cost(self, input_tokens: int, output_tokens: int) -> float:
        pricing = self.PRICING.get(self.model, {"input": 3.0, "output": 15.0})
        cost = (input_tokens * pricing["input"] + output_tokens * pricing["output"]) / 1_000_000
        return round(cost, 6)

    async def complete(
        self,
        messages: List[Dict[str, str]],
        max_tokens: int = 1024,
        temperature: float = 0.7,
    ) -> LLMResponse:
        client = self._get_client()

        system_parts = [m["content"] for m in messages if m["role"] == "system"]
        chat_messages = [m for m in messages if m["role"] != "system"]

        kwargs = {
            "model": self.model,
            "max_tokens": max_tokens,
            "messages": chat_messages,
            "temperature": temperature,
        }
        if system_parts:
            kwargs["system"] = "\n\n".join(system_parts)

        try:
            response = await client.messages.create(**kwargs)
        except anthropic.RateLimitError as e:
            raise RateLimited(provider="anthropic") from e
        except anthropic.APIError as e:
            raise ProviderUnavailable(f"Completion request failed: {e}", provider="anthropic") from e

        content = response.content[0].text
        input_tokens = response.usage.input_tokens
        output_tokens = response.usage.output_tokens
        cost = self._calculate_cost(input_tokens, output_tokens)
        self._total_cost += cost

        return LLMResponse(
            content=content,
            model=self.model,
            provider=LLMProvider.ANTHROPIC,
            tokens_input=input_tokens,
            tokens_output=output_tokens,
            cost_usd=cost,
        )

    @property
    def total_cost(self) -> float:
        return self._total_cost


def get_llm_client(
    provider: Optional[str] = None,
    model: Optional[str] = None,
    config: Optional[OpenAIConfig] = None,
) -> LLMClient:
    """
    Factory for an LLM client.

    Priority:
    1. Explicit provider
    2. OpenAI / Azure OpenAI key present -> GPT
    3. ANTHROPIC_API_KEY present -> Claude
    4. Error
    """
    config = config or OpenAIConfig()
    anthropic_key = os.getenv("ANTHROPIC_API_KEY")

    if provider == "openai" or (not provider and config.api_key):
        return OpenAIClient(config=config, model=model)

    if provider == "anthropic" or anthropic_key:
        return AnthropicClient(model=model or "claude-sonnet-4-20250514")

    raise ValueError(
        "No LLM API key found. Set OPENAI_API_KEY, GPT_API_KEY, or ANTHROPIC_API_KEY"
    )
