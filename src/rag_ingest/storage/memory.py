"""In-memory :class:`DocumentRepository` for tests and single-process runs."""

from __future__ import annotations

from datetime import datetime, timezone

from rag_ingest.exceptions import DocumentNotFound
from rag_ingest.ingestion.models import DocumentChunk
from rag_ingest.storage.repository import DocumentRecord, DocumentRepository


class InMemoryDocumentRepository(DocumentRepository):
    def __init__(self) -> None:
        self.documents: dict[str, DocumentRecord] = {}
        self._chunks: dict[str, list[DocumentChunk]] = {}
        self._staged: dict[str, list[DocumentChunk]] = {}
        self._provider_keys: dict[tuple[str, str], str] = {}

    async def get_document(self, document_id: str) -> DocumentRecord | None:
        return self.documents.get(document_id)

    async def create_document(self, document: DocumentRecord) -> DocumentRecord:
        self.documents[document.id] = document
        return document

    async def list_documents(self, organization_id: str) -> list[DocumentRecord]:
        return [d for d in self.documents.values() if d.organization_id == organization_id]

    async def mark_vectorized(self, document_id: str) -> None:
        document = self.documents.get(document_id)
        if document is None:
            raise DocumentNotFound(document_id)
        document.is_vectorized = True
        document.vectorized_at = datetime.now(timezone.utc)

    async def stage_chunks(self, document_id: str, chunks: list[DocumentChunk]) -> None:
        self._staged[document_id] = sorted(chunks, key=lambda c: c.chunk_index)

    async def commit_chunks(self, document_id: str) -> list[DocumentChunk]:
        staged = self._staged.pop(document_id, None)
        if staged is not None:
            self._chunks[document_id] = staged
        return list(self._chunks.get(document_id, []))

    async def discard_staged_chunks(self, document_id: str) -> None:
        self._staged.pop(document_id, None)

    async def get_chunks(self, document_id: str, *, staged: bool = False) -> list[DocumentChunk]:
        source = self._staged if staged else self._chunks
        return list(source.get(document_id, []))

    async def get_provider_key(self, organization_id: str, provider: str) -> str | None:
        return self._provider_keys.get((organization_id, provider))

    def set_provider_key(self, organization_id: str, provider: str, encrypted_key: str) -> None:
        self._provider_keys[(organization_id, provider)] = encrypted_key
