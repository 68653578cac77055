"""
Match tier policy for the deduplication classifier.

Two sets of constants:
- Confidence bands given to the model as classification guidance
- Representative display scores attached to each tier

Both are injected into the classifier so they can be tuned per
deployment and tested independently.
"""

from dataclasses import dataclass
from typing import Optional

from ..config import DeduplicationConfig
from .dedup_models import MatchType


@dataclass(frozen=True)
class MatchTierPolicy:
    """
    Confidence bands and display scores per tier.

    BANDS (minimum model confidence for the tier):
    - Duplicate: >= 0.90
    - Similar:   >= 0.70
    - Related:   >= 0.50

    DISPLAY SCORES (shown as "similarity" for UI consistency):
    - Duplicate 0.95, Similar 0.85, Related 0.70, unknown 0.60
    """
    duplicate_confidence: float = 0.90
    similar_confidence: float = 0.70
    related_confidence: float = 0.50

    duplicate_display_score: float = 0.95
    similar_display_score: float = 0.85
    related_display_score: float = 0.70
    unknown_display_score: float = 0.60

    def __post_init__(self):
        bands = (self.duplicate_confidence, self.similar_confidence, self.related_confidence)
        if any(not 0.0 <= b <= 1.0 for b in bands):
            raise ValueError("Confidence bands must be within [0, 1]")
        if not bands[0] > bands[1] > bands[2]:
            raise ValueError("Confidence bands must be strictly decreasing")

    @classmethod
    def from_config(cls, config: DeduplicationConfig) -> "MatchTierPolicy":
        return cls(
            duplicate_confidence=config.duplicate_confidence,
            similar_confidence=config.similar_confidence,
            related_confidence=config.related_confidence,
        )

    def confidence_band(self, match_type: MatchType) -> float:
        return {
            MatchType.DUPLICATE: self.duplicate_confidence,
            MatchType.SIMILAR: self.similar_confidence,
            MatchType.RELATED: self.related_confidence,
        }[match_type]

    def display_score(self, match_type: Optional[MatchType]) -> float:
        return {
            MatchType.DUPLICATE: self.duplicate_display_score,
            MatchType.SIMILAR: self.similar_display_score,
            MatchType.RELATED: self.related_display_score,
        }.get(match_type, self.unknown_display_score)
