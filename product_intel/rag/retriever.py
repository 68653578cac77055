"""
RAG Retriever
=============

Fetches the knowledge chunks most similar to a query, to ground a
downstream generation step.

No similarity threshold is applied: the caller wants the best available
context. Retrieval is restricted to the given tenant scope, or to the
global partition when no scope is given.
"""

import logging
from typing import List, Optional

from ..config import RetrievalConfig
from ..errors import InvalidArgument
from ..logging_config import timed_stage
from ..vectors import BUSINESS_CONTEXT, SimilarityIndex
from .embedder import EmbeddingProvider
from .models import KnowledgeSearchResult

logger = logging.getLogger(__name__)


class ContextRetriever:
    """Retrieves relevant chunks from the knowledge base."""

    def __init__(
        self,
        embedder: EmbeddingProvider,
        index: SimilarityIndex,
        config: Optional[RetrievalConfig] = None,
        collection: str = BUSINESS_CONTEXT,
    ):
        self.embedder = embedder
        self.index = index
        self.config = config or RetrievalConfig()
        self.collection = collection

    async def search(
        self,
        query: str,
        limit: Optional[int] = None,
        tenant_scope: Optional[str] = None,
    ) -> List[KnowledgeSearchResult]:
        """
        Search for relevant chunks.

        Args:
            query: Search query text
            limit: Number of results to return (default from config)
            tenant_scope: Organization scope, None for global knowledge

        Returns:
            List of KnowledgeSearchResult ordered by similarity
        """
        if not query or not query.strip():
            raise InvalidArgument("Query text cannot be empty")

        limit = self.config.default_limit if limit is None else limit
        if limit < 1:
            raise InvalidArgument(f"limit must be at least 1, got {limit}")

        query_vector = await self.embedder.embed_query(query)

        with timed_stage(logger, "context_search", tenant_scope=tenant_scope):
            hits = await self.index.nearest_neighbors(
                self.collection,
                query_vector,
                threshold=None,
                limit=limit,
                scope=tenant_scope,
            )

        results = [
            KnowledgeSearchResult(
                chunk_id=hit.id,
                content=hit.payload.get("content", ""),
                similarity=hit.similarity,
                chunk_index=hit.payload.get("chunk_index"),
                metadata=hit.payload.get("metadata") or {},
            )
            for hit in hits
        ]

        logger.info(
            f"Context search returned {len(results)} results for query: {query[:50]}...",
            extra={"tenant_scope": tenant_scope},
        )
        return results

    async def retrieve(
        self,
        query: str,
        limit: Optional[int] = None,
        tenant_scope: Optional[str] = None,
    ) -> List[str]:
        """Chunk contents only, ready to splice into a prompt."""
        results = await self.search(query, limit=limit, tenant_scope=tenant_scope)
        return [r.content for r in results]

    def format_context(
        self,
        results: List[KnowledgeSearchResult],
        max_tokens: Optional[int] = None,
    ) -> str:
        """
        Format search results as context for an LLM.

        Args:
            results: Search results to format
            max_tokens: Approximate max tokens for context

        Returns:
            Formatted context string
        """
        if not results:
            return ""

        max_tokens = max_tokens or self.config.context_max_tokens
        context_parts = []
        estimated_tokens = 0
        chars_per_token = 4

        for i, result in enumerate(results, 1):
            source = result.source or "unknown"
            part = (
                f"[Source {i}] ({source}, relevance: {result.similarity:.2f})\n"
                f"---\n"
                f"{result.content}\n"
            )
            part_tokens = len(part) // chars_per_token

            if estimated_tokens + part_tokens > max_tokens:
                break

            context_parts.append(part)
            estimated_tokens += part_tokens

        return "\n".join(context_parts)
