"""
Similarity Index Contract
=========================

The persistence-side vector index consumed by the engine.

Collections:
- feature_requests: existing feature requests compared during deduplication
- business_context: ingested knowledge chunks used for RAG

Scope rules: scope=None addresses only unscoped (global) records; a scope
addresses only records stored with exactly that scope. Scopes never mix.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .embedding_vector import EmbeddingVector

FEATURE_REQUESTS = "feature_requests"
BUSINESS_CONTEXT = "business_context"


@dataclass
class IndexRecord:
    """A vector and its payload, as handed to the index for storage."""
    vector: EmbeddingVector
    payload: Dict[str, Any] = field(default_factory=dict)
    id: Optional[str] = None
    scope: Optional[str] = None


@dataclass
class NeighborHit:
    """One nearest-neighbor result."""
    id: str
    similarity: float
    payload: Dict[str, Any] = field(default_factory=dict)


class SimilarityIndex(ABC):
    """Stores (vector, payload) pairs per collection and answers top-K queries."""

    @abstractmethod
    async def nearest_neighbors(
        self,
        collection: str,
        vector: EmbeddingVector,
        threshold: Optional[float] = None,
        limit: int = 10,
        scope: Optional[str] = None,
    ) -> List[NeighborHit]:
        """
        Top-K records by cosine similarity.

        Args:
            collection: Logical collection name
            vector: Query vector
            threshold: Minimum similarity, or None for no threshold
            limit: Max results
            scope: Tenant scope, None for the global partition

        Returns:
            Hits sorted by descending similarity
        """
        pass

    @abstractmethod
    async def store(self, collection: str, record: IndexRecord) -> str:
        """Persist a record and return its id."""
        pass
