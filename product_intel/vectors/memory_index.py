"""
In-Memory Similarity Index
==========================

Brute-force cosine scan over records held in process memory.
Used for tests and local development; not meant for large corpora.
"""

import logging
from collections import defaultdict
from typing import Dict, List, Optional
from uuid import uuid4

from .embedding_vector import EmbeddingVector
from .index import IndexRecord, NeighborHit, SimilarityIndex

logger = logging.getLogger(__name__)


class InMemorySimilarityIndex(SimilarityIndex):
    """SimilarityIndex backed by a dict of collection -> records."""

    def __init__(self):
        self._collections: Dict[str, List[IndexRecord]] = defaultdict(list)

    async def nearest_neighbors(
        self,
        collection: str,
        vector: EmbeddingVector,
        threshold: Optional[float] = None,
        limit: int = 10,
        scope: Optional[str] = None,
    ) -> List[NeighborHit]:
        hits = []
        for record in self._collections.get(collection, []):
            if record.scope != scope:
                continue
            similarity = vector.cosine_similarity(record.vector)
            if threshold is not None and similarity < threshold:
                continue
            hits.append(NeighborHit(
                id=record.id,
                similarity=similarity,
                payload=dict(record.payload),
            ))

        # sorted() is stable: ties keep insertion order
        hits = sorted(hits, key=lambda h: h.similarity, reverse=True)
        return hits[:limit]

    async def store(self, collection: str, record: IndexRecord) -> str:
        if record.id is None:
            record.id = str(uuid4())
        self._collections[collection].append(record)
        logger.debug(f"Stored record {record.id} in '{collection}'")
        return record.id

    def count(self, collection: str, scope: Optional[str] = None) -> int:
        return sum(1 for r in self._collections.get(collection, []) if r.scope == scope)

    def records(self, collection: str) -> List[IndexRecord]:
        return list(self._collections.get(collection, []))
