"""rag_ingest: document ingestion, vectorization and semantic retrieval."""

__version__ = "0.1.0"
