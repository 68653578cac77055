"""
RAG Embedder
============

Generates embeddings using OpenAI text-embedding-3-small (or an Azure
OpenAI deployment of it). 1536 dimensions by default, 3072 for
text-embedding-3-large.

Provider errors are translated into the engine's taxonomy:
- openai.RateLimitError -> RateLimited
- any other openai.APIError -> EmbeddingUnavailable
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional, Union

import openai

from ..config import OpenAIConfig
from ..errors import EmbeddingUnavailable, InvalidArgument, RateLimited
from ..vectors import EmbeddingVector

logger = logging.getLogger(__name__)


@dataclass
class EmbeddingResult:
    """Result of embedding generation."""
    vector: EmbeddingVector
    token_count: int
    model: str


class EmbeddingProvider(ABC):
    """Converts text to an EmbeddingVector."""

    @abstractmethod
    async def embed(self, text: str) -> EmbeddingResult:
        """Embed a single text."""
        pass

    async def embed_query(self, text: str) -> EmbeddingVector:
        """
        Embed a text and return just the vector.

        Same as embed() but returns just the vector for convenience.
        """
        result = await self.embed(text)
        return result.vector


def _retry_after(error: openai.APIStatusError) -> Optional[float]:
    """Read the Retry-After header of a rate-limit response, if any."""
    try:
        value = error.response.headers.get("retry-after")
        return float(value) if value is not None else None
    except (AttributeError, ValueError):
        return None


class OpenAIEmbedder(EmbeddingProvider):
    """
    Generates embeddings using OpenAI.

    Cost: ~$0.00002 per 1K tokens (text-embedding-3-small)
    Max tokens per input: 8191
    """

    # USD per 1K tokens
    PRICING = {
        "text-embedding-3-small": 0.00002,
        "text-embedding-3-large": 0.00013,
    }

    def __init__(self, config: Optional[OpenAIConfig] = None, client=None):
        self.config = config or OpenAIConfig()
        if client is None and not self.config.api_key:
            raise ValueError("OpenAI API key required for embeddings")

        self.model = self.config.azure_embedding_deployment or self.config.embedding_model
        self.dimensions = self.config.embedding_dimensions

        self._client = client
        self._total_tokens = 0
        self._total_requests = 0

    @property
    def client(self):
        if self._client is None:
            if self.config.use_azure:
                self._client = openai.AsyncAzureOpenAI(
                    api_key=self.config.api_key,
                    azure_endpoint=self.config.azure_endpoint,
                    api_version=self.config.azure_api_version,
                    max_retries=self.config.max_retries,
                    timeout=self.config.timeout,
                )
            else:
                self._client = openai.AsyncOpenAI(
                    api_key=self.config.api_key,
                    max_retries=self.config.max_retries,
                    timeout=self.config.timeout,
                )
        return self._client

    async def embed(self, text: str) -> EmbeddingResult:
        """
        Generate embedding for a single text.

        Args:
            text: Text to embed (max 8191 tokens)

        Returns:
            EmbeddingResult with embedding vector

        Raises:
            InvalidArgument: If text is blank
            RateLimited: If the provider throttled the call
            EmbeddingUnavailable: On any other provider failure
        """
        if not text or not text.strip():
            raise InvalidArgument("Cannot embed empty text")

        response = await self._create(text)

        vector = EmbeddingVector.from_values(response.data[0].embedding)
        token_count = response.usage.total_tokens

        self._total_tokens += token_count
        self._total_requests += 1

        logger.debug(f"Embedded {token_count} tokens")

        return EmbeddingResult(
            vector=vector,
            token_count=token_count,
            model=self.model,
        )

    async def embed_batch(self, texts: List[str], batch_size: int = 100) -> List[EmbeddingResult]:
        """
        Generate embeddings for multiple texts.

        Args:
            texts: List of texts to embed, none of them blank
            batch_size: Max texts per API call (default 100)

        Returns:
            List of EmbeddingResult, one per input text, in input order
        """
        if batch_size < 1:
            raise InvalidArgument(f"batch_size must be at least 1, got {batch_size}")
        if any(not t or not t.strip() for t in texts):
            raise InvalidArgument("Cannot embed empty text")

        results = []

        for i in range(0, len(texts), batch_size):
            batch = texts[i:i + batch_size]

            response = await self._create(batch)

            # The API may return items out of order; index restores input order
            for data in sorted(response.data, key=lambda d: d.index):
                results.append(EmbeddingResult(
                    vector=EmbeddingVector.from_values(data.embedding),
                    token_count=response.usage.total_tokens // len(batch),  # Approx per text
                    model=self.model,
                ))

            self._total_tokens += response.usage.total_tokens
            self._total_requests += 1

            logger.debug(f"Embedded batch of {len(batch)} texts ({response.usage.total_tokens} tokens)")

        return results

    async def _create(self, payload: Union[str, List[str]]):
        try:
            return await self.client.embeddings.create(
                model=self.model,
                input=payload,
                dimensions=self.dimensions,
            )
        except openai.RateLimitError as e:
            raise RateLimited(provider="openai", retry_after=_retry_after(e)) from e
        except openai.APIError as e:
            raise EmbeddingUnavailable(
                f"Embedding request failed: {e}", provider="openai"
            ) from e

    @property
    def total_tokens(self) -> int:
        return self._total_tokens

    @property
    def total_requests(self) -> int:
        return self._total_requests

    @property
    def estimated_cost(self) -> float:
        """Estimated cost in USD."""
        price = self.PRICING.get(self.config.embedding_model, self.PRICING["text-embedding-3-small"])
        return (self._total_tokens / 1000) * price
