"""Storage collaborator contract for documents, chunks and provider keys.

Relational storage is owned by the host application; the pipeline only
needs the operations below.  Chunk writes are two-phase: a processing
run *stages* its chunks and only *commits* them once embeddings are
stored, so a failed run never disturbs the chunk set of a previous
successful run.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field

from rag_ingest.ingestion.models import DocumentChunk


class DocumentRecord(BaseModel):
    """The slice of a document row the pipeline reads and writes."""

    id: str = Field(default_factory=lambda: uuid4().hex)
    organization_id: str
    title: str = ""
    path: str = ""
    filename: str | None = None
    content: str = ""
    document_type: str = "other"
    original_type: str | None = None
    file_hash: str | None = None
    content_hash: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    is_vectorized: bool = False
    vectorized_at: datetime | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class DocumentRepository(ABC):
    """Async storage interface used by the pipeline.

    Implementations raise :class:`~rag_ingest.exceptions.StorageFailed`
    when the backend itself fails.
    """

    @abstractmethod
    async def get_document(self, document_id: str) -> DocumentRecord | None: ...

    @abstractmethod
    async def create_document(self, document: DocumentRecord) -> DocumentRecord: ...

    @abstractmethod
    async def list_documents(self, organization_id: str) -> list[DocumentRecord]: ...

    @abstractmethod
    async def mark_vectorized(self, document_id: str) -> None: ...

    # -- chunks ---------------------------------------------------------------

    @abstractmethod
    async def stage_chunks(self, document_id: str, chunks: list[DocumentChunk]) -> None:
        """Replace the staged chunk set for *document_id*."""

    @abstractmethod
    async def commit_chunks(self, document_id: str) -> list[DocumentChunk]:
        """Promote staged chunks, replacing the committed set wholesale."""

    @abstractmethod
    async def discard_staged_chunks(self, document_id: str) -> None: ...

    @abstractmethod
    async def get_chunks(self, document_id: str, *, staged: bool = False) -> list[DocumentChunk]:
        """Chunks ordered by ``chunk_index``."""

    # -- credentials ----------------------------------------------------------

    @abstractmethod
    async def get_provider_key(self, organization_id: str, provider: str) -> str | None:
        """Encrypted API key configured by *organization_id*, if any."""
