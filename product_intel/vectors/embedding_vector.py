"""
Embedding Vector
================

Fixed-length embedding value type with cosine similarity.

Supported dimensionalities: 1536 (text-embedding-3-small) and
3072 (text-embedding-3-large). Comparing vectors of different
length is an error; near-zero vectors compare as similarity 0.
"""

import math
from dataclasses import dataclass
from typing import Iterable, List, Sequence, Tuple

from ..config import SUPPORTED_EMBEDDING_DIMENSIONS
from ..errors import DimensionMismatch, InvalidDimension

# Magnitudes below this are treated as zero vectors
ZERO_MAGNITUDE_EPSILON = 1e-12


def cosine_similarity(vec1: Sequence[float], vec2: Sequence[float]) -> float:
    """
    Calculate cosine similarity between two raw vectors.

    Args:
        vec1: First vector
        vec2: Second vector

    Returns:
        Similarity in [-1, 1]; 0.0 when either vector has no magnitude

    Raises:
        DimensionMismatch: If the vectors differ in length
    """
    if len(vec1) != len(vec2):
        raise DimensionMismatch(len(vec1), len(vec2))

    dot_product = 0.0
    magnitude1 = 0.0
    magnitude2 = 0.0
    for a, b in zip(vec1, vec2):
        dot_product += a * b
        magnitude1 += a * a
        magnitude2 += b * b

    magnitude1 = math.sqrt(magnitude1)
    magnitude2 = math.sqrt(magnitude2)

    if magnitude1 < ZERO_MAGNITUDE_EPSILON or magnitude2 < ZERO_MAGNITUDE_EPSILON:
        return 0.0

    similarity = dot_product / (magnitude1 * magnitude2)

    # Rounding can push identical vectors slightly past 1.0
    return max(-1.0, min(1.0, similarity))


@dataclass(frozen=True)
class EmbeddingVector:
    """An immutable embedding of one of the supported dimensionalities."""
    values: Tuple[float, ...]

    def __post_init__(self):
        if not isinstance(self.values, tuple):
            object.__setattr__(self, "values", tuple(float(v) for v in self.values))
        if len(self.values) not in SUPPORTED_EMBEDDING_DIMENSIONS:
            raise InvalidDimension(len(self.values), SUPPORTED_EMBEDDING_DIMENSIONS)

    @classmethod
    def from_values(cls, values: Iterable[float]) -> "EmbeddingVector":
        return cls(tuple(float(v) for v in values))

    @property
    def dimensions(self) -> int:
        return len(self.values)

    def cosine_similarity(self, other: "EmbeddingVector") -> float:
        """Cosine similarity with another vector of the same dimensionality."""
        return cosine_similarity(self.values, other.values)

    def to_list(self) -> List[float]:
        return list(self.values)

    def to_pgvector(self) -> str:
        """Text literal accepted by pgvector's ::vector cast."""
        return "[" + ",".join(repr(v) for v in self.values) + "]"

    def __len__(self) -> int:
        return len(self.values)

    def __repr__(self) -> str:
        return f"EmbeddingVector(dimensions={self.dimensions})"
