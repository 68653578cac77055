"""
Product Intelligence Engine
===========================

Facade over the semantic deduplication & retrieval components.

Call contracts exposed to the surrounding request-handling layer:
- analyze_for_duplicates(title, description, exclude_id, threshold, max_results)
- ingest_knowledge(source_text, source_id, tenant_scope) -> chunks stored
- retrieve_context(query_text, limit, tenant_scope) -> chunk contents

Usage:
    from product_intel.engine import ProductIntelligenceEngine

    engine = ProductIntelligenceEngine.from_settings()
    result = await engine.analyze_for_duplicates("Add dark mode", "Users want a dark theme")
"""

import logging
from typing import Any, Dict, List, Optional

from .ai.candidate_retriever import CandidateRetriever
from .ai.dedup_agent import DeduplicationClassifier
from .ai.dedup_models import DeduplicationRequest, DeduplicationResult
from .ai.llm_client import LLMClient, get_llm_client
from .config import Settings, get_settings
from .rag.chunker import TextChunker
from .rag.embedder import EmbeddingProvider, OpenAIEmbedder
from .rag.ingestion import KnowledgeIngestion
from .rag.models import IngestionReport, SourceKind
from .rag.retriever import ContextRetriever
from .vectors import FEATURE_REQUESTS, EmbeddingVector, IndexRecord, SimilarityIndex
from .vectors.pgvector_index import PgVectorIndex

logger = logging.getLogger(__name__)


class ProductIntelligenceEngine:
    """In-process entry point for deduplication, ingestion and retrieval."""

    def __init__(
        self,
        classifier: DeduplicationClassifier,
        ingestion: KnowledgeIngestion,
        context_retriever: ContextRetriever,
        settings: Optional[Settings] = None,
    ):
        self.classifier = classifier
        self.ingestion = ingestion
        self.context_retriever = context_retriever
        self.settings = settings

    @classmethod
    def build(
        cls,
        embedder: EmbeddingProvider,
        llm_client: LLMClient,
        index: SimilarityIndex,
        settings: Optional[Settings] = None,
    ) -> "ProductIntelligenceEngine":
        """Wire all components around one embedder, LLM client and index."""
        settings = settings or get_settings()
        classifier = DeduplicationClassifier(
            embedder=embedder,
            llm_client=llm_client,
            retriever=CandidateRetriever(index),
            config=settings.deduplication,
        )
        ingestion = KnowledgeIngestion(
            embedder=embedder,
            index=index,
            chunker=TextChunker(settings.chunking),
        )
        context_retriever = ContextRetriever(
            embedder=embedder,
            index=index,
            config=settings.retrieval,
        )
        return cls(classifier, ingestion, context_retriever, settings=settings)

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "ProductIntelligenceEngine":
        """
        Build an engine on the real providers: OpenAI embeddings, the
        configured completion provider and the pgvector index.
        """
        settings = settings or get_settings()
        engine = cls.build(
            embedder=OpenAIEmbedder(settings.openai),
            llm_client=get_llm_client(config=settings.openai),
            index=PgVectorIndex(settings.database),
            settings=settings,
        )
        logger.info(
            f"Product intelligence engine ready ({settings.environment}, "
            f"embeddings={settings.openai.embedding_model})"
        )
        return engine

    @property
    def index(self) -> SimilarityIndex:
        return self.ingestion.index

    # =========================================================================
    # CALL CONTRACTS
    # =========================================================================

    async def analyze_for_duplicates(
        self,
        title: str,
        description: str,
        exclude_id: Optional[str] = None,
        threshold: Optional[float] = None,
        max_results: Optional[int] = None,
    ) -> DeduplicationResult:
        """
        Find existing feature requests that duplicate or resemble a new one.

        threshold and max_results default to the deduplication config
        (0.70 and 10 unless overridden).

        Raises:
            InvalidArgument: If title or description is blank
        """
        config = self.classifier.config
        request = DeduplicationRequest(
            title=title,
            description=description,
            exclude_id=exclude_id,
            similarity_threshold=config.similarity_threshold if threshold is None else threshold,
            max_results=config.max_results if max_results is None else max_results,
        )
        return await self.classifier.analyze(request)

    async def ingest_knowledge(
        self,
        source_text: str,
        source_id: str,
        tenant_scope: Optional[str] = None,
        source_kind: SourceKind = SourceKind.DOCUMENT,
        extra_metadata: Optional[Dict[str, Any]] = None,
    ) -> int:
        """
        Chunk, embed and store a source. Returns the number of chunks stored.

        Raises:
            InvalidArgument: If source_text or source_id is blank
        """
        report = await self.ingest_knowledge_report(
            source_text,
            source_id,
            tenant_scope=tenant_scope,
            source_kind=source_kind,
            extra_metadata=extra_metadata,
        )
        return report.chunks_stored

    async def ingest_knowledge_report(
        self,
        source_text: str,
        source_id: str,
        tenant_scope: Optional[str] = None,
        source_kind: SourceKind = SourceKind.DOCUMENT,
        extra_metadata: Optional[Dict[str, Any]] = None,
    ) -> IngestionReport:
        """Same as ingest_knowledge() but returns the per-chunk report."""
        return await self.ingestion.ingest(
            source_text,
            source_id,
            tenant_scope=tenant_scope,
            source_kind=source_kind,
            extra_metadata=extra_metadata,
        )

    async def retrieve_context(
        self,
        query_text: str,
        limit: Optional[int] = None,
        tenant_scope: Optional[str] = None,
    ) -> List[str]:
        """Contents of the chunks closest to the query, best first."""
        return await self.context_retriever.retrieve(
            query_text,
            limit=limit,
            tenant_scope=tenant_scope,
        )

    async def index_feature_request(
        self,
        request_id: str,
        title: str,
        description: str,
        payload: Optional[Dict[str, Any]] = None,
    ) -> EmbeddingVector:
        """
        Embed a feature request and attach the vector to it in the index,
        so later analyses can find it.
        """
        vector = await self.classifier.generate_embedding(title, description)
        record_payload = {"title": title, "description": description}
        record_payload.update(payload or {})
        await self.index.store(
            FEATURE_REQUESTS,
            IndexRecord(vector=vector, payload=record_payload, id=str(request_id)),
        )
        logger.info(f"Indexed feature request {request_id}")
        return vector

    def close(self):
        """Release index resources (connection pool), if any."""
        close = getattr(self.index, "close", None)
        if close is not None:
            close()
