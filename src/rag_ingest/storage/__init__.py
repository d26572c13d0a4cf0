"""
Storage: the document/chunk repository the pipeline reads and writes.

Public surface
--------------
- :class:`DocumentRepository`: abstract async storage collaborator.
- :class:`DocumentRecord`: document row model.
- :class:`InMemoryDocumentRepository`: reference implementation.
"""

from rag_ingest.storage.memory import InMemoryDocumentRepository
from rag_ingest.storage.repository import DocumentRecord, DocumentRepository

__all__ = ["DocumentRecord", "DocumentRepository", "InMemoryDocumentRepository"]
