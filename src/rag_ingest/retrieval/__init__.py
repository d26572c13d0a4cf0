"""
Retrieval: vector storage, semantic search and RAG context assembly.

Public surface
--------------
- :class:`SemanticSearch`: query embedding + filtered nearest-neighbour search.
- :class:`RAGContextBuilder`, :func:`format_context_for_prompt`: prompt-ready context.
- :class:`VectorStoreBase`: abstract backend (subclass for pgvector, etc.).
- :class:`InMemoryVectorStore`: exact-search backend for tests.
- :class:`ChromaVectorStore`: default Chroma backend.
- :class:`MetadataFilter`, :class:`SemanticSearchResult`, :class:`SourceReference`,
  :class:`RAGContext`: data models.
"""

from rag_ingest.retrieval.base import VectorStoreBase
from rag_ingest.retrieval.memory_store import InMemoryVectorStore
from rag_ingest.retrieval.models import (
    MetadataFilter,
    RAGContext,
    SemanticSearchResult,
    SourceReference,
    VectorRecord,
)
from rag_ingest.retrieval.rag import RAGContextBuilder, format_context_for_prompt
from rag_ingest.retrieval.search import SemanticSearch

__all__ = [
    "ChromaVectorStore",
    "InMemoryVectorStore",
    "MetadataFilter",
    "RAGContext",
    "RAGContextBuilder",
    "SemanticSearch",
    "SemanticSearchResult",
    "SourceReference",
    "VectorRecord",
    "VectorStoreBase",
    "format_context_for_prompt",
]


def __getattr__(name: str):  # noqa: ANN001
    """Lazy-import ChromaVectorStore to avoid pulling in chromadb at import time."""
    if name == "ChromaVectorStore":
        from rag_ingest.retrieval.chroma_store import ChromaVectorStore

        return ChromaVectorStore
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
