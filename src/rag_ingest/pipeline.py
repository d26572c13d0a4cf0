"""Per-document processing: fetch, chunk, embed, store, mark vectorized.

Each step reports progress through an optional callback so the queue can
expose it to polling clients::

    fetch (10) -> chunk (20) -> store chunks (30) -> embed (40)
        -> store embeddings (80) -> mark vectorized (90)

Chunks are staged, and only replace the document's committed chunk set
once every embedding is stored.  A failed run discards its staged chunks
and restores the vectors it overwrote, so the previous run's chunks and
vectors stay consistent.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable

from pydantic import BaseModel, ValidationError

from rag_ingest.embedding.generator import EmbeddingGenerator
from rag_ingest.embedding.store import EmbeddingStore
from rag_ingest.exceptions import DocumentNotFound, EmptyDocument, InvalidOptions
from rag_ingest.ingestion.chunker import chunk_text
from rag_ingest.ingestion.models import ChunkingOptions
from rag_ingest.jobs.models import FIRST_STAGE, FIRST_STAGE_PROGRESS, DocumentJobData
from rag_ingest.storage.repository import DocumentRepository

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, str], Awaitable[None]]


class ProcessResult(BaseModel):
    document_id: str
    chunks_created: int
    embeddings_stored: int
    total_tokens: int
    model: str
    seconds: float


async def _no_progress(progress: int, stage: str) -> None:
    return None


class DocumentProcessor:
    """Runs the processing steps for one document.

    Parameters
    ----------
    repository:
        Document and chunk storage.
    generator:
        Embedding generation with per-batch retry.
    embedding_store:
        Vector persistence.
    chunking:
        Defaults used when the job payload does not override them.
    """

    def __init__(
        self,
        repository: DocumentRepository,
        generator: EmbeddingGenerator,
        embedding_store: EmbeddingStore,
        *,
        chunking: ChunkingOptions | None = None,
        model: str | None = None,
        batch_size: int | None = None,
        max_retries: int | None = None,
    ) -> None:
        self._repository = repository
        self._generator = generator
        self._embedding_store = embedding_store
        self.chunking = chunking or ChunkingOptions()
        self.model = model
        self.batch_size = batch_size
        self.max_retries = max_retries

    def options_for(self, data: DocumentJobData) -> ChunkingOptions:
        """Payload overrides on top of the configured defaults."""
        try:
            return ChunkingOptions(
                chunk_size=data.chunk_size or self.chunking.chunk_size,
                chunk_overlap=self.chunking.chunk_overlap if data.chunk_overlap is None else data.chunk_overlap,
                strategy=data.chunking_strategy or self.chunking.strategy,
                preserve_headers=self.chunking.preserve_headers,
            )
        except ValidationError as exc:
            raise InvalidOptions(
                f"Invalid chunking options for document {data.document_id}",
                {"errors": [e["msg"] for e in exc.errors()]},
            ) from exc

    async def process(self, data: DocumentJobData, on_progress: ProgressCallback | None = None) -> ProcessResult:
        report = on_progress or _no_progress
        started = time.monotonic()

        await report(FIRST_STAGE_PROGRESS, FIRST_STAGE)
        document = await self._repository.get_document(data.document_id)
        if document is None:
            raise DocumentNotFound(data.document_id)
        if document.organization_id != data.organization_id:
            logger.warning(
                "Job organization %s differs from document %s owner %s",
                data.organization_id,
                document.id,
                document.organization_id,
            )

        await report(20, "Splitting into chunks")
        options = self.options_for(data)
        chunks = chunk_text(document.content, options, document_id=document.id)
        if not chunks:
            raise EmptyDocument(f"Document {document.id} produced no chunks", {"document_id": document.id})
        logger.info(
            "Document %s split into %d chunks (%s)",
            document.id,
            len(chunks),
            options.strategy.value,
        )

        await report(30, "Saving chunks")
        await self._repository.stage_chunks(document.id, chunks)
        previous = await self._embedding_store.snapshot(document.id)
        vectors_written = False
        try:
            await report(40, "Generating embeddings")
            embeddings = await self._generator.generate(
                chunks,
                organization_id=document.organization_id,
                model=self.model,
                batch_size=self.batch_size,
                max_retries=self.max_retries,
            )

            await report(80, "Storing embeddings")
            vectors_written = True
            stored = await self._embedding_store.store(embeddings, document.id, staged=True)
            await self._embedding_store.prune(document.id, len(chunks))
            await self._repository.commit_chunks(document.id)
        except Exception:
            if vectors_written:
                await self._embedding_store.restore(previous, [c.id for c in chunks])
            await self._repository.discard_staged_chunks(document.id)
            raise

        await report(90, "Marking document as vectorized")
        await self._repository.mark_vectorized(document.id)

        seconds = time.monotonic() - started
        logger.info("Document %s processed: %d chunks, %d vectors in %.2fs", document.id, len(chunks), stored, seconds)
        return ProcessResult(
            document_id=document.id,
            chunks_created=len(chunks),
            embeddings_stored=stored,
            total_tokens=sum(c.token_count for c in chunks),
            model=embeddings[0].model if embeddings else (self.model or self._generator.model),
            seconds=round(seconds, 3),
        )
