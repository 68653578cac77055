"""Pytest configuration and shared doubles for the product intelligence tests."""

import hashlib
import json
import re
from typing import Callable, Dict, List, Optional, Union

import pytest

from product_intel.ai.llm_client import LLMClient, LLMProvider, LLMResponse
from product_intel.errors import EmbeddingUnavailable
from product_intel.rag.embedder import EmbeddingProvider, EmbeddingResult
from product_intel.vectors import (
    FEATURE_REQUESTS,
    EmbeddingVector,
    IndexRecord,
    InMemorySimilarityIndex,
)

DIMENSIONS = 1536

# Words sharing an axis embed close together; anything else hashes to its own axis
CONCEPTS = {
    "dark": 0, "theme": 0, "mode": 0, "night": 0,
    "export": 1, "csv": 1, "download": 1, "spreadsheet": 1,
    "notification": 2, "notifications": 2, "email": 2, "alert": 2, "alerts": 2,
    "login": 3, "sso": 3, "saml": 3, "authentication": 3,
}


# -------------------------------------------------------------------------
# Embedding double
# -------------------------------------------------------------------------


class FakeEmbedder(EmbeddingProvider):
    """
    Deterministic 1536-d embeddings.

    Known concept words add weight to a shared axis, so texts about the same
    concept have cosine similarity close to 1. Texts without concept words
    map to a single axis derived from their hash.
    """

    def __init__(self, fail_on: Optional[List[str]] = None, error: Optional[Exception] = None):
        self.fail_on = fail_on or []
        self.error = error
        self.calls: List[str] = []

    @property
    def call_count(self) -> int:
        return len(self.calls)

    def vector_for(self, text: str) -> EmbeddingVector:
        values = [0.0] * DIMENSIONS
        words = re.findall(r"[a-z]+", text.lower())
        hits = [CONCEPTS[w] for w in words if w in CONCEPTS]
        if hits:
            for axis in hits:
                values[axis] += 1.0
        else:
            digest = hashlib.sha256(text.encode("utf-8")).hexdigest()
            values[16 + int(digest, 16) % (DIMENSIONS - 16)] = 1.0
        return EmbeddingVector.from_values(values)

    async def embed(self, text: str) -> EmbeddingResult:
        self.calls.append(text)
        if self.error is not None:
            raise self.error
        if any(marker in text for marker in self.fail_on):
            raise EmbeddingUnavailable("embedding backend down", provider="fake")
        return EmbeddingResult(vector=self.vector_for(text), token_count=len(text) // 4, model="fake")


# -------------------------------------------------------------------------
# Completion double
# -------------------------------------------------------------------------


class ScriptedLLM(LLMClient):
    """Returns a scripted completion and records every call."""

    provider = LLMProvider.OPENAI

    def __init__(self, content: Union[str, Callable[[List[Dict[str, str]]], str]] = ""):
        self.content = content
        self.calls: List[dict] = []

    @property
    def call_count(self) -> int:
        return len(self.calls)

    async def complete(self, messages, max_tokens=1024, temperature=0.7) -> LLMResponse:
        self.calls.append({
            "messages": messages,
            "max_tokens": max_tokens,
            "temperature": temperature,
        })
        content = self.content(messages) if callable(self.content) else self.content
        return LLMResponse(
            content=content,
            model="scripted",
            provider=self.provider,
            tokens_input=0,
            tokens_output=0,
            cost_usd=0.0,
        )


def model_json(matches: List[dict], summary: str = "summary", reasoning: str = "reasoning") -> str:
    """Completion payload in the shape the classifier asks for."""
    return json.dumps({"matches": matches, "summary": summary, "overallReasoning": reasoning})


# -------------------------------------------------------------------------
# Fixtures
# -------------------------------------------------------------------------


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def index() -> InMemorySimilarityIndex:
    return InMemorySimilarityIndex()


@pytest.fixture
def llm() -> ScriptedLLM:
    return ScriptedLLM(model_json([], summary="No matches", reasoning="Nothing related"))


@pytest.fixture
def seed_feature_request(index, embedder):
    """Store an existing feature request, embedded the same way the classifier embeds."""

    async def _seed(request_id: str, title: str, description: str, **payload) -> str:
        vector = embedder.vector_for(f"{title}\n\n{title}\n\n{description}")
        record_payload = {
            "title": title,
            "description": description,
            "requester_name": payload.pop("requester_name", "Jane Doe"),
            "requester_company": payload.pop("requester_company", None),
            "status": payload.pop("status", "Submitted"),
        }
        record_payload.update(payload)
        return await index.store(
            FEATURE_REQUESTS,
            IndexRecord(vector=vector, payload=record_payload, id=request_id),
        )

    return _seed
