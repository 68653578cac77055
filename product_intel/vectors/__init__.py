"""
Product Intelligence Vectors
============================

Embedding value type, cosine math and similarity indexes.

- EmbeddingVector: 1536/3072-d immutable embedding
- SimilarityIndex: nearest-neighbor contract
- InMemorySimilarityIndex: brute-force index for tests and dev
- PgVectorIndex: PostgreSQL + pgvector index
"""

from .embedding_vector import EmbeddingVector, cosine_similarity
from .index import (
    BUSINESS_CONTEXT,
    FEATURE_REQUESTS,
    IndexRecord,
    NeighborHit,
    SimilarityIndex,
)
from .memory_index import InMemorySimilarityIndex
from .pgvector_index import CollectionSpec, PgVectorIndex

__all__ = [
    "EmbeddingVector",
    "cosine_similarity",
    "IndexRecord",
    "NeighborHit",
    "SimilarityIndex",
    "InMemorySimilarityIndex",
    "PgVectorIndex",
    "CollectionSpec",
    "FEATURE_REQUESTS",
    "BUSINESS_CONTEXT",
]
