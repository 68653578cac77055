"""
Product Intelligence RAG Module
===============================

Retrieval-Augmented Generation knowledge base.

Architecture:
- pgvector for vector storage (business_context table)
- OpenAI text-embedding-3-small for embeddings
- Fixed-size character chunks with overlap (2000 / 200 by default)
- Tenant-scoped retrieval, no cross-organization mixing
"""

from .chunker import TextChunker, chunk_offsets, chunk_text
from .embedder import EmbeddingProvider, EmbeddingResult, OpenAIEmbedder
from .ingestion import KnowledgeIngestion
from .models import (
    ChunkOutcome,
    IngestionReport,
    KnowledgeChunk,
    KnowledgeSearchResult,
    SourceKind,
)
from .retriever import ContextRetriever

__all__ = [
    "TextChunker",
    "chunk_text",
    "chunk_offsets",
    "EmbeddingProvider",
    "EmbeddingResult",
    "OpenAIEmbedder",
    "KnowledgeIngestion",
    "ContextRetriever",
    "KnowledgeChunk",
    "ChunkOutcome",
    "IngestionReport",
    "KnowledgeSearchResult",
    "SourceKind",
]
