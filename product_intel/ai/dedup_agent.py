"""
Feature Deduplication Agent
===========================

Detects duplicate and similar feature requests in two stages:

1. Vector retrieval (pgvector) narrows the corpus to nearby requests
2. An LLM classifies each candidate as Duplicate / Similar / Related

Retrieval decides WHICH items are eligible; the model only decides HOW
to classify them. Ids the model invents are dropped, unknown labels
fall back to Related, and an unparseable response fails the whole call.
When nothing clears the threshold the model is never called.
"""

import logging
import time
from typing import Dict, List, Optional

from ..config import DeduplicationConfig
from ..errors import (
    EmbeddingUnavailable,
    InvalidArgument,
    InvalidModelResponse,
    ProviderUnavailable,
    RateLimited,
)
from ..rag.embedder import EmbeddingProvider
from ..vectors import EmbeddingVector
from .candidate_retriever import CandidateRetriever
from .dedup_models import (
    CandidateMatch,
    DeduplicationRequest,
    DeduplicationResult,
    MatchType,
    ModelDeduplicationResponse,
    RetrievedCandidate,
)
from .llm_client import LLMClient
from .tier_policy import MatchTierPolicy

logger = logging.getLogger(__name__)


NO_MATCH_SUMMARY = "No similar requests found."
NO_MATCH_REASONING = "This appears to be a unique feature request with no existing duplicates."


DEDUP_SYSTEM = (
    "You are an expert product analyst specializing in identifying duplicate and "
    "similar feature requests. Analyze feature requests carefully, considering "
    "semantic meaning, intent, and scope. Provide your analysis in valid JSON "
    "format with confidence scores and clear reasoning."
)


DEDUP_PROMPT = """Analyze the following NEW FEATURE REQUEST for duplicates and similar requests.

NEW REQUEST:
Title: {title}
Description: {description}

SIMILAR REQUESTS FOUND (from vector similarity search):

{candidates}
TASK:
Analyze each similar request and classify it as one of:
- "Duplicate": Same core request, just different wording (confidence >= {duplicate_band:.0%})
- "Similar": Related intent but different scope or details (confidence >= {similar_band:.0%})
- "Related": Same domain but meaningfully different feature (confidence >= {related_band:.0%})

Return ONLY valid JSON in this exact format, with no text before or after it:
{{
  "matches": [
    {{
      "requestId": "id-from-the-list-above",
      "matchType": "Duplicate|Similar|Related",
      "confidence": 0.95,
      "reasoning": "Brief explanation why this classification"
    }}
  ],
  "summary": "High-level summary (e.g., 'Found 1 duplicate, 2 similar')",
  "overallReasoning": "Overall analysis and recommendation"
}}

Only use requestId values from the list above.
Be specific and concise. Consider user intent, not just keywords."""


CANDIDATE_TEMPLATE = """{number}. [ID: {id}]
   Title: {title}
   Description: {description}
   Submitted: {submitted} by {requester} ({company})
   Status: {status}
"""


def normalize_id(request_id: str) -> str:
    """Ids compare without case or surrounding whitespace (UUIDs echoed back by the model)."""
    return request_id.strip().lower()


class DeduplicationClassifier:
    """
    AI-powered detection of duplicate and similar feature requests.

    Uses vector similarity + LLM analysis for high-accuracy deduplication.
    """

    def __init__(
        self,
        embedder: EmbeddingProvider,
        llm_client: LLMClient,
        retriever: CandidateRetriever,
        config: Optional[DeduplicationConfig] = None,
        tier_policy: Optional[MatchTierPolicy] = None,
    ):
        self.embedder = embedder
        self.llm_client = llm_client
        self.retriever = retriever
        self.config = config or DeduplicationConfig()
        self.tier_policy = tier_policy or MatchTierPolicy.from_config(self.config)

    async def analyze(self, request: DeduplicationRequest) -> DeduplicationResult:
        """
        Analyze a feature request against the existing corpus.

        Args:
            request: Title, description and retrieval parameters

        Returns:
            DeduplicationResult with matches ordered by descending confidence

        Raises:
            EmbeddingUnavailable / RateLimited: Embedding provider failure
            ProviderUnavailable: Completion provider failure
            InvalidModelResponse: Completion output could not be parsed
        """
        start_time = time.monotonic()

        logger.info(f"Starting deduplication analysis for request: {request.title}")

        try:
            embedding = await self.generate_embedding(request.title, request.description)

            candidates = await self.retriever.retrieve(
                embedding,
                threshold=request.similarity_threshold,
                limit=request.max_results,
                exclude_id=request.exclude_id,
            )

            if not candidates:
                elapsed_ms = self._elapsed_ms(start_time)
                logger.info(
                    f"No similar requests found above threshold {request.similarity_threshold:.0%}",
                    extra={"duration_ms": elapsed_ms, "candidates": 0},
                )
                return DeduplicationResult(
                    has_duplicates=False,
                    has_similar=False,
                    matches=[],
                    summary=NO_MATCH_SUMMARY,
                    reasoning=NO_MATCH_REASONING,
                    embedding_vector=embedding,
                    processing_time_ms=elapsed_ms,
                )

            logger.info(
                f"Found {len(candidates)} similar requests, classifying with {self.llm_client.provider.value}",
                extra={"candidates": len(candidates)},
            )

            analysis = await self._classify(request, candidates)
            matches = self._build_matches(candidates, analysis)

            # Stable sort: equal confidences keep model order
            matches.sort(key=lambda m: m.confidence_score, reverse=True)

            result = DeduplicationResult(
                has_duplicates=any(m.match_type == MatchType.DUPLICATE for m in matches),
                has_similar=any(m.match_type == MatchType.SIMILAR for m in matches),
                matches=matches,
                summary=analysis.summary,
                reasoning=analysis.overall_reasoning,
                embedding_vector=embedding,
                processing_time_ms=self._elapsed_ms(start_time),
            )

            logger.info(
                f"Deduplication analysis complete. Duplicates: {result.duplicate_count}, "
                f"Similar: {result.similar_count}, Time: {result.processing_time_ms}ms",
                extra={"duration_ms": result.processing_time_ms, "candidates": len(candidates)},
            )
            return result

        except Exception:
            logger.exception(f"Error during deduplication analysis for request: {request.title}")
            raise

    async def generate_embedding(self, title: str, description: str) -> EmbeddingVector:
        """
        Embed a feature request, weighting the title by repeating it.

        Raises:
            InvalidArgument: If title or description is blank
            EmbeddingUnavailable / RateLimited: On provider failure
        """
        if not title or not title.strip():
            raise InvalidArgument("Title cannot be empty")
        if not description or not description.strip():
            raise InvalidArgument("Description cannot be empty")

        text = f"{title}\n\n{title}\n\n{description}"

        try:
            embedding = await self.embedder.embed_query(text)
        except (EmbeddingUnavailable, RateLimited, InvalidArgument):
            raise
        except ProviderUnavailable as e:
            raise EmbeddingUnavailable(e.message, provider=e.provider) from e

        logger.debug(f"Generated embedding vector with {embedding.dimensions} dimensions")
        return embedding

    # =========================================================================
    # CLASSIFICATION
    # =========================================================================

    def build_prompt(
        self,
        request: DeduplicationRequest,
        candidates: List[RetrievedCandidate],
    ) -> str:
        """Render the classification prompt for a request and its candidates."""
        formatted = []
        for number, candidate in enumerate(candidates, 1):
            item = candidate.item
            formatted.append(CANDIDATE_TEMPLATE.format(
                number=number,
                id=item.id,
                title=item.title,
                description=item.description,
                submitted=item.submitted_at.strftime("%Y-%m-%d") if item.submitted_at else "unknown date",
                requester=item.requester_name or "unknown requester",
                company=item.requester_company or "N/A",
                status=item.status,
            ))

        return DEDUP_PROMPT.format(
            title=request.title,
            description=request.description,
            candidates="\n".join(formatted),
            duplicate_band=self.tier_policy.confidence_band(MatchType.DUPLICATE),
            similar_band=self.tier_policy.confidence_band(MatchType.SIMILAR),
            related_band=self.tier_policy.confidence_band(MatchType.RELATED),
        )

    async def _classify(
        self,
        request: DeduplicationRequest,
        candidates: List[RetrievedCandidate],
    ) -> ModelDeduplicationResponse:
        messages = [
            {"role": "system", "content": DEDUP_SYSTEM},
            {"role": "user", "content": self.build_prompt(request, candidates)},
        ]

        response = await self.llm_client.complete(
            messages,
            max_tokens=self.config.max_tokens,
            temperature=self.config.temperature,
        )

        logger.debug(f"Classification response: {response.content[:500]}")

        try:
            return ModelDeduplicationResponse.parse(response.content)
        except InvalidModelResponse as e:
            logger.error(f"Failed to parse model response: {e.message}")
            raise

    def _build_matches(
        self,
        candidates: List[RetrievedCandidate],
        analysis: ModelDeduplicationResponse,
    ) -> List[CandidateMatch]:
        by_id: Dict[str, RetrievedCandidate] = {normalize_id(c.id): c for c in candidates}
        seen = set()
        matches = []

        for model_match in analysis.matches:
            candidate = by_id.get(normalize_id(model_match.request_id))
            if candidate is None:
                logger.warning(
                    f"Model returned match for request {model_match.request_id} "
                    f"not in similarity results"
                )
                continue

            if candidate.id in seen:
                logger.warning(f"Model classified request {candidate.id} more than once, keeping first")
                continue
            seen.add(candidate.id)

            match_type = MatchType.parse(model_match.match_type)
            if match_type is None:
                logger.warning(
                    f"Invalid match type from model: {model_match.match_type!r}, defaulting to Related"
                )
                match_type = MatchType.RELATED

            item = candidate.item
            matches.append(CandidateMatch(
                request_id=item.id,
                title=item.title,
                description=item.description,
                match_type=match_type,
                confidence_score=model_match.confidence,
                similarity_score=self.tier_policy.display_score(match_type),
                retrieval_similarity=candidate.similarity,
                reasoning=model_match.reasoning,
                requester_name=item.requester_name,
                requester_company=item.requester_company,
                submitted_at=item.submitted_at,
                status=item.status,
            ))

        return matches

    @staticmethod
    def _elapsed_ms(start_time: float) -> int:
        return int((time.monotonic() - start_time) * 1000)
