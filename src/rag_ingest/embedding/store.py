"""Persist chunk vectors into the vector store, keyed by chunk id."""

from __future__ import annotations

import asyncio
import logging

from rag_ingest.embedding.generator import EmbeddingResult
from rag_ingest.exceptions import DocumentNotFound
from rag_ingest.retrieval.base import VectorStoreBase
from rag_ingest.retrieval.models import MetadataFilter, VectorRecord
from rag_ingest.storage.repository import DocumentRepository

logger = logging.getLogger(__name__)


class EmbeddingStore:
    """Upsert embeddings against their persisted chunks.

    Vector ids are chunk ids, so reprocessing a document overwrites its
    vectors instead of duplicating them.  A run that fails after writing
    puts the previous vectors back with :meth:`snapshot` and :meth:`restore`.
    """

    def __init__(self, repository: DocumentRepository, vector_store: VectorStoreBase) -> None:
        self._repository = repository
        self._vector_store = vector_store

    async def store(self, embeddings: list[EmbeddingResult], document_id: str, *, staged: bool = False) -> int:
        """Upsert *embeddings* for *document_id*; returns the number stored.

        Embeddings whose chunk cannot be found are skipped with a warning.
        """
        document = await self._repository.get_document(document_id)
        if document is None:
            raise DocumentNotFound(document_id)

        chunks = {c.id: c for c in await self._repository.get_chunks(document_id, staged=staged)}
        if len(chunks) != len(embeddings):
            logger.warning(
                "Embedding/chunk count mismatch for document %s: %d embeddings, %d chunks",
                document_id,
                len(embeddings),
                len(chunks),
            )

        records: list[VectorRecord] = []
        for result in embeddings:
            chunk = chunks.get(result.chunk_id)
            if chunk is None:
                logger.warning("Skipping embedding for unknown chunk %s", result.chunk_id)
                continue
            records.append(
                VectorRecord(
                    id=chunk.id,
                    embedding=result.embedding,
                    content=chunk.content,
                    metadata={
                        "document_id": document_id,
                        "organization_id": document.organization_id,
                        "document_type": document.document_type,
                        "title": document.title,
                        "path": document.path,
                        "chunk_index": chunk.chunk_index,
                        "token_count": result.token_count,
                        "model": result.model,
                        "strategy": chunk.metadata.get("strategy", ""),
                    },
                )
            )

        await asyncio.to_thread(self._vector_store.upsert, records)
        logger.info("Stored %d vectors for document %s", len(records), document_id)
        return len(records)

    async def snapshot(self, document_id: str) -> list[VectorRecord]:
        """Capture the stored vectors of *document_id*'s committed chunks."""
        ids = [c.id for c in await self._repository.get_chunks(document_id)]
        if not ids:
            return []
        return await asyncio.to_thread(self._vector_store.get, ids)

    async def restore(self, snapshot: list[VectorRecord], written_ids: list[str]) -> None:
        """Put *snapshot* back and drop vectors a failed run wrote under new ids."""
        kept = {r.id for r in snapshot}
        added = [i for i in written_ids if i not in kept]
        if added:
            await asyncio.to_thread(self._vector_store.delete, added)
        if snapshot:
            await asyncio.to_thread(self._vector_store.upsert, snapshot)
        logger.info("Restored %d vectors after a failed run (%d dropped)", len(snapshot), len(added))

    async def prune(self, document_id: str, keep_count: int) -> None:
        """Drop vectors of chunks beyond *keep_count* left over from a longer previous run."""
        await asyncio.to_thread(
            self._vector_store.delete_where,
            [MetadataFilter.equals("document_id", document_id), MetadataFilter.at_least("chunk_index", keep_count)],
        )

    async def remove(self, document_id: str) -> None:
        """Delete every vector belonging to *document_id*."""
        await asyncio.to_thread(self._vector_store.delete_where, [MetadataFilter.equals("document_id", document_id)])
        logger.info("Removed vectors for document %s", document_id)
