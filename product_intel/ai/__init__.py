"""
Product Intelligence AI Module
==============================

Semantic deduplication of feature requests:
- LLM clients (OpenAI / Azure OpenAI, Anthropic)
- Candidate retrieval over the feature request index
- Duplicate / Similar / Related classification with confidence bands
"""

from .candidate_retriever import CandidateRetriever
from .dedup_agent import DeduplicationClassifier
from .dedup_models import (
    CandidateMatch,
    DeduplicationRequest,
    DeduplicationResult,
    FeatureRequestCandidate,
    MatchType,
    ModelDeduplicationResponse,
    RetrievedCandidate,
)
from .llm_client import (
    AnthropicClient,
    LLMClient,
    LLMProvider,
    LLMResponse,
    OpenAIClient,
    get_llm_client,
)
from .tier_policy import MatchTierPolicy

__all__ = [
    "CandidateRetriever",
    "DeduplicationClassifier",
    "CandidateMatch",
    "DeduplicationRequest",
    "DeduplicationResult",
    "FeatureRequestCandidate",
    "MatchType",
    "ModelDeduplicationResponse",
    "RetrievedCandidate",
    "MatchTierPolicy",
    "LLMClient",
    "LLMProvider",
    "LLMResponse",
    "OpenAIClient",
    "AnthropicClient",
    "get_llm_client",
]
