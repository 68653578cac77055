"""
Product Intelligence
====================

Semantic deduplication & retrieval engine for product feedback:
- Feature request embeddings and duplicate / similar / related detection
- Chunked, tenant-scoped knowledge base for retrieval-augmented generation
"""

__version__ = "1.0.0"
