"""
RAG Ingestion Pipeline
======================

Pipeline for ingesting source text into the knowledge base.

Flow:
1. Chunk into overlapping windows
2. Embed each chunk (bounded concurrency)
3. Persist each chunk with its index and provenance metadata

Best-effort bulk load, not a transaction: every chunk is embedded and
stored independently, and a failure on one chunk leaves the others in
place. Re-ingesting a source appends new chunks; nothing is replaced.
"""

import asyncio
import logging
import time
from typing import Any, Dict, Optional

from ..errors import InvalidArgument
from ..vectors import BUSINESS_CONTEXT, IndexRecord, SimilarityIndex
from .chunker import TextChunker
from .embedder import EmbeddingProvider
from .models import ChunkOutcome, IngestionReport, KnowledgeChunk, SourceKind

logger = logging.getLogger(__name__)


class KnowledgeIngestion:
    """
    Ingestion pipeline for the RAG knowledge base.

    Handles:
    - Chunking
    - Embedding generation (up to max_concurrent calls in flight)
    - Per-chunk persistence with error capture
    """

    def __init__(
        self,
        embedder: EmbeddingProvider,
        index: SimilarityIndex,
        chunker: Optional[TextChunker] = None,
        max_concurrent: Optional[int] = None,
        collection: str = BUSINESS_CONTEXT,
    ):
        self.embedder = embedder
        self.index = index
        self.chunker = chunker or TextChunker()
        self.max_concurrent = max_concurrent or self.chunker.config.embed_concurrency
        self.collection = collection

        if self.max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")

        self._sources_ingested = 0
        self._chunks_stored = 0
        self._chunks_failed = 0

    async def _embed_and_store(self, chunk: KnowledgeChunk) -> ChunkOutcome:
        """Embed and persist one chunk, capturing any failure."""
        try:
            chunk.embedding = await self.embedder.embed_query(chunk.content)
            payload = {
                "content": chunk.content,
                "chunk_index": chunk.chunk_index,
                "metadata": chunk.metadata,
            }
            chunk.id = await self.index.store(
                self.collection,
                IndexRecord(
                    vector=chunk.embedding,
                    payload=payload,
                    scope=chunk.tenant_scope,
                ),
            )
            return ChunkOutcome(chunk_index=chunk.chunk_index, chunk_id=chunk.id)
        except Exception as e:
            logger.error(
                f"Failed to ingest chunk {chunk.chunk_index} of '{chunk.source_id}': {e}",
                extra={"source_id": chunk.source_id, "stage": "ingest_chunk"},
            )
            return ChunkOutcome(chunk_index=chunk.chunk_index, error=e)

    async def ingest(
        self,
        source_text: str,
        source_id: str,
        tenant_scope: Optional[str] = None,
        source_kind: SourceKind = SourceKind.DOCUMENT,
        extra_metadata: Optional[Dict[str, Any]] = None,
    ) -> IngestionReport:
        """
        Chunk, embed and persist a source document.

        Args:
            source_text: Raw source text (required, non-blank)
            source_id: Filename, URL or other source identifier
            tenant_scope: Optional organization scope for retrieval partitioning
            source_kind: Kind of source, recorded in metadata
            extra_metadata: Additional metadata merged into each chunk

        Returns:
            IngestionReport with one outcome per chunk, ordered by chunk index

        Raises:
            InvalidArgument: If source_text or source_id is blank
        """
        if not source_text or not source_text.strip():
            raise InvalidArgument("Source text cannot be empty")
        if not source_id or not source_id.strip():
            raise InvalidArgument("Source id cannot be empty")

        start_time = time.monotonic()

        chunks = self.chunker.chunk_source(
            source_text,
            source_id=source_id,
            tenant_scope=tenant_scope,
            source_kind=source_kind,
            extra_metadata=extra_metadata,
        )

        semaphore = asyncio.Semaphore(self.max_concurrent)

        async def ingest_with_limit(chunk: KnowledgeChunk) -> ChunkOutcome:
            async with semaphore:
                return await self._embed_and_store(chunk)

        # gather() keeps submission order, so outcomes follow chunk index
        outcomes = await asyncio.gather(*(ingest_with_limit(c) for c in chunks))

        report = IngestionReport(
            source_id=source_id,
            tenant_scope=tenant_scope,
            outcomes=list(outcomes),
            duration_ms=int((time.monotonic() - start_time) * 1000),
        )

        self._sources_ingested += 1
        self._chunks_stored += report.chunks_stored
        self._chunks_failed += report.chunks_failed

        log = logger.warning if report.chunks_failed else logger.info
        log(
            f"Ingested '{source_id}': {report.chunks_stored}/{report.chunks_total} chunks stored",
            extra={
                "source_id": source_id,
                "tenant_scope": tenant_scope,
                "duration_ms": report.duration_ms,
            },
        )
        return report

    @property
    def stats(self) -> Dict[str, int]:
        """Get ingestion statistics."""
        return {
            "sources_ingested": self._sources_ingested,
            "chunks_stored": self._chunks_stored,
            "chunks_failed": self._chunks_failed,
        }
