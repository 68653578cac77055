"""
RAG Chunker
===========

Splits source text into overlapping fixed-size character windows.

Rules:
- First window covers [0, size)
- Each next window starts at previous_start + (size - overlap)
- Stops once a window reaches the end of the text
- Empty or whitespace-only text yields no chunks
- chunk_source() skips whitespace-only windows; chunk indexes stay consecutive
- Stable chunking (same input = same chunks)
"""

import hashlib
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ..config import ChunkingConfig
from ..errors import InvalidArgument
from .models import KnowledgeChunk, SourceKind

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 2000
DEFAULT_CHUNK_OVERLAP = 200


def validate_window(size: int, overlap: int) -> None:
    """Reject window parameters that would never advance."""
    if size < 1:
        raise InvalidArgument(f"Chunk size must be positive, got {size}")
    if overlap < 0:
        raise InvalidArgument(f"Chunk overlap cannot be negative, got {overlap}")
    if overlap >= size:
        raise InvalidArgument(
            f"Chunk overlap ({overlap}) must be smaller than chunk size ({size})",
            {"size": size, "overlap": overlap},
        )


def chunk_offsets(length: int, size: int, overlap: int) -> List[int]:
    """
    Start offsets of the windows covering a text of the given length.

    Raises:
        InvalidArgument: If overlap >= size or size < 1
    """
    validate_window(size, overlap)
    if length <= 0:
        return []

    step = size - overlap
    offsets = []
    start = 0
    while True:
        offsets.append(start)
        if start + size >= length:
            break
        next_start = start + step
        if next_start <= start:
            # Unreachable after validation; kept so a bad step can never spin
            raise InvalidArgument(f"Chunk window does not advance from offset {start}")
        start = next_start
    return offsets


def chunk_text(
    text: str,
    size: int = DEFAULT_CHUNK_SIZE,
    overlap: int = DEFAULT_CHUNK_OVERLAP,
) -> List[str]:
    """
    Split text into overlapping windows.

    Args:
        text: Source text
        size: Characters per window
        overlap: Characters shared by consecutive windows

    Returns:
        Ordered list of substrings, empty for blank text
    """
    validate_window(size, overlap)
    if not text or not text.strip():
        return []
    return [text[start:start + size] for start in chunk_offsets(len(text), size, overlap)]


def hash_content(content: str) -> str:
    """SHA256 hash of content, recorded as chunk provenance."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


class TextChunker:
    """
    Splits documents into overlapping chunks with provenance metadata.
    """

    def __init__(self, config: Optional[ChunkingConfig] = None):
        self.config = config or ChunkingConfig()
        validate_window(self.config.chunk_size, self.config.overlap)

    def chunk(self, text: str) -> List[str]:
        return chunk_text(text, self.config.chunk_size, self.config.overlap)

    def chunk_source(
        self,
        text: str,
        source_id: str,
        tenant_scope: Optional[str] = None,
        source_kind: SourceKind = SourceKind.DOCUMENT,
        extra_metadata: Optional[Dict[str, Any]] = None,
    ) -> List[KnowledgeChunk]:
        """
        Split a source document into KnowledgeChunk objects (without embeddings).

        Args:
            text: Raw source text
            source_id: Filename, URL or other source identifier
            tenant_scope: Optional organization scope
            source_kind: Kind of source
            extra_metadata: Merged into each chunk's metadata

        Returns:
            Chunks ordered by chunk_index
        """
        windows = self.chunk(text)
        pieces = [w for w in windows if w.strip()]
        if len(pieces) < len(windows):
            logger.debug(f"Skipped {len(windows) - len(pieces)} blank windows in '{source_id}'")
        if not pieces:
            logger.warning(f"Empty source: {source_id}")
            return []

        ingested_at = datetime.now(timezone.utc).isoformat()
        kind = SourceKind(source_kind).value

        chunks = []
        for index, piece in enumerate(pieces):
            metadata = dict(extra_metadata or {})
            metadata.update({
                "source": source_id,
                "source_kind": kind,
                "ingested_at": ingested_at,
                "content_hash": hash_content(piece),
            })
            chunks.append(KnowledgeChunk(
                content=piece,
                chunk_index=index,
                source_id=source_id,
                metadata=metadata,
                tenant_scope=tenant_scope,
            ))

        logger.info(f"Chunked '{source_id}' into {len(chunks)} chunks")
        return chunks
