"""
Deduplication Models
====================

Data contracts for feature request deduplication:
- MatchType: closed Duplicate / Similar / Related tiers
- FeatureRequestCandidate / RetrievedCandidate: items found by vector search
- CandidateMatch / DeduplicationResult: classification output
- ModelDeduplicationResponse: strict schema for the LLM's JSON answer
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..errors import InvalidArgument, InvalidModelResponse
from ..vectors import EmbeddingVector
from .llm_client import strip_json_fences

logger = logging.getLogger(__name__)

DEFAULT_SIMILARITY_THRESHOLD = 0.70
DEFAULT_MAX_RESULTS = 10


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Read a stored submission time.

    Accepts datetimes and ISO-8601 strings, including a trailing "Z".
    Unreadable values are logged and dropped; the timestamp is display-only.
    """
    if value is None or isinstance(value, datetime):
        return value
    if isinstance(value, str):
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            return datetime.fromisoformat(text)
        except ValueError:
            pass
    logger.warning(f"Ignoring unreadable submitted_at value: {value!r}")
    return None


class MatchType(str, Enum):
    """How strongly a candidate matches the new request."""
    DUPLICATE = "Duplicate"  # Same request, different wording
    SIMILAR = "Similar"      # Related intent, different scope or detail
    RELATED = "Related"      # Same area, materially different feature

    @classmethod
    def parse(cls, label: Optional[str]) -> Optional["MatchType"]:
        """Case-insensitive lookup; None for unknown labels."""
        if not label:
            return None
        normalized = label.strip().lower()
        for member in cls:
            if member.value.lower() == normalized:
                return member
        return None


@dataclass
class FeatureRequestCandidate:
    """An existing feature request as seen at match time."""
    id: str
    title: str
    description: str
    submitted_at: Optional[datetime] = None
    requester_name: Optional[str] = None
    requester_company: Optional[str] = None
    status: str = "Unknown"

    @classmethod
    def from_payload(cls, item_id: str, payload: Dict[str, Any]) -> "FeatureRequestCandidate":
        return cls(
            id=str(item_id),
            title=payload.get("title") or "",
            description=payload.get("description") or "",
            submitted_at=parse_timestamp(payload.get("submitted_at")),
            requester_name=payload.get("requester_name"),
            requester_company=payload.get("requester_company"),
            status=str(payload.get("status") or "Unknown"),
        )


@dataclass
class RetrievedCandidate:
    """A feature request and its retrieval cosine similarity."""
    item: FeatureRequestCandidate
    similarity: float

    @property
    def id(self) -> str:
        return self.item.id


@dataclass
class DeduplicationRequest:
    """Request to analyze a feature request for duplicates."""
    title: str
    description: str
    exclude_id: Optional[str] = None
    similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD
    max_results: int = DEFAULT_MAX_RESULTS

    def __post_init__(self):
        if not self.title or not self.title.strip():
            raise InvalidArgument("Title cannot be empty")
        if not self.description or not self.description.strip():
            raise InvalidArgument("Description cannot be empty")
        if not 0.0 <= self.similarity_threshold <= 1.0:
            raise InvalidArgument(
                f"similarity_threshold must be within [0, 1], got {self.similarity_threshold}"
            )
        if self.max_results < 1:
            raise InvalidArgument(f"max_results must be at least 1, got {self.max_results}")


@dataclass
class CandidateMatch:
    """One classified candidate. Transient, never persisted by the engine."""
    request_id: str
    title: str
    description: str
    match_type: MatchType
    confidence_score: float      # Model confidence, the ranking key
    similarity_score: float      # Tier-derived display value
    retrieval_similarity: float  # Raw cosine similarity from the index
    reasoning: str = ""
    requester_name: Optional[str] = None
    requester_company: Optional[str] = None
    submitted_at: Optional[datetime] = None
    status: str = "Unknown"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "request_id": self.request_id,
            "title": self.title,
            "description": self.description,
            "match_type": self.match_type.value,
            "confidence_score": self.confidence_score,
            "similarity_score": self.similarity_score,
            "retrieval_similarity": self.retrieval_similarity,
            "reasoning": self.reasoning,
            "requester_name": self.requester_name,
            "requester_company": self.requester_company,
            "submitted_at": self.submitted_at.isoformat() if self.submitted_at else None,
            "status": self.status,
        }


@dataclass
class DeduplicationResult:
    """Outcome of one deduplication analysis."""
    has_duplicates: bool
    has_similar: bool
    matches: List[CandidateMatch]
    summary: str
    reasoning: str
    embedding_vector: EmbeddingVector
    processing_time_ms: int = 0

    @property
    def duplicate_count(self) -> int:
        return sum(1 for m in self.matches if m.match_type == MatchType.DUPLICATE)

    @property
    def similar_count(self) -> int:
        return sum(1 for m in self.matches if m.match_type == MatchType.SIMILAR)

    def to_dict(self, include_embedding: bool = False) -> Dict[str, Any]:
        data = {
            "has_duplicates": self.has_duplicates,
            "has_similar": self.has_similar,
            "matches": [m.to_dict() for m in self.matches],
            "summary": self.summary,
            "reasoning": self.reasoning,
            "processing_time_ms": self.processing_time_ms,
        }
        if include_embedding:
            data["embedding_vector"] = self.embedding_vector.to_list()
        return data


# =============================================================================
# LLM RESPONSE SCHEMA
# =============================================================================

class ModelMatchAnalysis(BaseModel):
    """One candidate as classified by the model."""
    model_config = ConfigDict(populate_by_name=True)

    request_id: str = Field(alias="requestId")
    match_type: Optional[str] = Field(default=None, alias="matchType")
    confidence: float = Field(ge=0.0, le=1.0)
    reasoning: str = ""

    @field_validator("request_id", mode="before")
    @classmethod
    def _coerce_id(cls, value):
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("match_type", mode="before")
    @classmethod
    def _coerce_label(cls, value):
        # Non-string labels resolve to Related in the classifier
        if value is None or isinstance(value, str):
            return value
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return None


class ModelDeduplicationResponse(BaseModel):
    """The JSON document the model is instructed to return."""
    model_config = ConfigDict(populate_by_name=True)

    matches: List[ModelMatchAnalysis]
    summary: str
    overall_reasoning: str = Field(alias="overallReasoning")

    @classmethod
    def parse(cls, content: str) -> "ModelDeduplicationResponse":
        """
        Parse raw model output.

        Raises:
            InvalidModelResponse: If the content is not JSON of the expected shape
        """
        payload = strip_json_fences(content or "")
        try:
            data = json.loads(payload)
        except json.JSONDecodeError as e:
            raise InvalidModelResponse(f"Model did not return valid JSON: {e}", content) from e

        if not isinstance(data, dict):
            raise InvalidModelResponse("Model response must be a JSON object", content)

        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise InvalidModelResponse(
                f"Model response does not match the expected schema: {e.error_count()} errors",
                content,
            ) from e
