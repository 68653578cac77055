"""
RAG Data Models
===============

Dataclasses for the knowledge base: chunks, ingestion reports and
search results.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from ..vectors import EmbeddingVector


class SourceKind(str, Enum):
    """Where ingested knowledge came from."""
    DOCUMENT = "document"    # Uploaded files (PDF, docx, markdown)
    GITHUB = "github"        # Repository analyses
    VIDEO = "video"          # Video transcripts
    MANUAL = "manual"        # Text entered by hand


@dataclass
class KnowledgeChunk:
    """A slice of ingested source text."""
    content: str
    chunk_index: int
    source_id: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    tenant_scope: Optional[str] = None

    # Set once embedded / persisted
    embedding: Optional[EmbeddingVector] = None
    id: Optional[str] = None


@dataclass
class ChunkOutcome:
    """Result of embedding and persisting one chunk."""
    chunk_index: int
    chunk_id: Optional[str] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class IngestionReport:
    """Per-chunk outcome of one ingestion run, ordered by chunk index."""
    source_id: str
    tenant_scope: Optional[str]
    outcomes: List[ChunkOutcome] = field(default_factory=list)
    duration_ms: int = 0

    @property
    def chunks_total(self) -> int:
        return len(self.outcomes)

    @property
    def chunks_stored(self) -> int:
        return sum(1 for o in self.outcomes if o.ok)

    @property
    def chunks_failed(self) -> int:
        return self.chunks_total - self.chunks_stored

    @property
    def stored_ids(self) -> List[str]:
        return [o.chunk_id for o in self.outcomes if o.ok]

    @property
    def errors(self) -> Dict[int, Exception]:
        return {o.chunk_index: o.error for o in self.outcomes if not o.ok}


@dataclass
class KnowledgeSearchResult:
    """A knowledge chunk returned by context retrieval."""
    chunk_id: str
    content: str
    similarity: float
    chunk_index: Optional[int] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def source(self) -> Optional[str]:
        return self.metadata.get("source")
