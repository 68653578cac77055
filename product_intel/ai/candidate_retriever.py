"""
Candidate Retriever
===================

Finds existing feature requests near a query vector.

The index applies the threshold and the nearest-neighbor ordering;
this layer drops the excluded id, re-sorts by descending similarity
and truncates to the limit. Nothing above the threshold -> empty list.
"""

import logging
from typing import List, Optional

from ..errors import InvalidArgument
from ..logging_config import timed_stage
from ..vectors import FEATURE_REQUESTS, EmbeddingVector, SimilarityIndex
from .dedup_models import FeatureRequestCandidate, RetrievedCandidate

logger = logging.getLogger(__name__)


class CandidateRetriever:
    """Queries the similarity index for candidate duplicates."""

    def __init__(self, index: SimilarityIndex, collection: str = FEATURE_REQUESTS):
        self.index = index
        self.collection = collection

    async def retrieve(
        self,
        query_vector: EmbeddingVector,
        threshold: float,
        limit: int,
        exclude_id: Optional[str] = None,
    ) -> List[RetrievedCandidate]:
        """
        Retrieve candidates above a similarity threshold.

        Args:
            query_vector: Embedding of the new request
            threshold: Minimum cosine similarity, within [0, 1]
            limit: Max candidates returned (>= 1)
            exclude_id: Item to leave out, e.g. when re-analyzing an existing request

        Returns:
            Candidates sorted by descending similarity, at most `limit`
        """
        if not 0.0 <= threshold <= 1.0:
            raise InvalidArgument(f"threshold must be within [0, 1], got {threshold}")
        if limit < 1:
            raise InvalidArgument(f"limit must be at least 1, got {limit}")

        # One extra row so excluding an item does not shrink the result
        fetch_limit = limit + 1 if exclude_id is not None else limit

        with timed_stage(logger, "candidate_retrieval"):
            hits = await self.index.nearest_neighbors(
                self.collection,
                query_vector,
                threshold=threshold,
                limit=fetch_limit,
            )

        candidates = [
            RetrievedCandidate(
                item=FeatureRequestCandidate.from_payload(hit.id, hit.payload),
                similarity=hit.similarity,
            )
            for hit in hits
            if exclude_id is None or hit.id != str(exclude_id)
        ]
        candidates.sort(key=lambda c: c.similarity, reverse=True)
        candidates = candidates[:limit]

        logger.debug(
            f"Retrieved {len(candidates)} candidates above {threshold:.2f}",
            extra={"candidates": len(candidates)},
        )
        return candidates
