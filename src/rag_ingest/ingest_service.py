"""Upload path: validate, convert and register a document, then enqueue it."""

from __future__ import annotations

import logging
from pathlib import PurePosixPath

from pydantic import BaseModel, Field

from rag_ingest.exceptions import ConversionFailed
from rag_ingest.ingestion.conversion import DocumentConverter
from rag_ingest.ingestion.converters import ConversionOptions
from rag_ingest.ingestion.document_types import require_document_type
from rag_ingest.ingestion.models import ChunkingStrategy
from rag_ingest.ingestion.validation import (
    DuplicateCheckResult,
    DuplicateValidator,
    calculate_content_hash,
    calculate_file_hash,
    validate_converted_content,
)
from rag_ingest.jobs.models import DocumentJobData, JobStatusView
from rag_ingest.jobs.queue import DocumentQueue
from rag_ingest.storage.repository import DocumentRecord, DocumentRepository

logger = logging.getLogger(__name__)


class IngestionResult(BaseModel):
    document: DocumentRecord | None = None
    duplicate: DuplicateCheckResult | None = None
    job: JobStatusView | None = None
    from_cache: bool = False
    warnings: list[str] = Field(default_factory=list)

    @property
    def accepted(self) -> bool:
        return self.document is not None


class IngestionService:
    """Turns an uploaded file into a stored document and a queued job."""

    def __init__(
        self,
        repository: DocumentRepository,
        converter: DocumentConverter,
        queue: DocumentQueue,
        *,
        duplicates: DuplicateValidator | None = None,
    ) -> None:
        self._repository = repository
        self._converter = converter
        self._queue = queue
        self._duplicates = duplicates or DuplicateValidator(repository)

    async def ingest(
        self,
        data: bytes,
        *,
        filename: str,
        organization_id: str,
        mime_type: str | None = None,
        title: str | None = None,
        path: str | None = None,
        check_duplicates: bool = True,
        extract_metadata: bool = True,
        enqueue: bool = True,
        chunking_strategy: ChunkingStrategy | None = None,
        chunk_size: int | None = None,
        chunk_overlap: int | None = None,
    ) -> IngestionResult:
        """Ingest one upload.

        Returns a result with ``duplicate`` set (and no document) when the
        upload matches an existing document of the organization.

        Raises
        ------
        UnsupportedFormat
            Neither the extension nor the MIME type is supported.
        ConversionFailed
            The file cannot be converted or yields no usable text.
        """
        document_type = require_document_type(filename, mime_type)
        file_hash = calculate_file_hash(data)

        if check_duplicates:
            duplicate = await self._duplicates.check_duplicate(
                organization_id, filename=filename, file_hash=file_hash
            )
            if duplicate.is_duplicate:
                logger.info("Upload %s rejected as duplicate of %s", filename, duplicate.existing_document_id)
                return IngestionResult(duplicate=duplicate)

        conversion = await self._converter.convert(
            document_type, data, ConversionOptions(extract_metadata=extract_metadata)
        )
        check = validate_converted_content(conversion.content)
        if not check.valid:
            raise ConversionFailed(check.error or "Converted content is invalid", {"filename": filename})
        warnings = list(check.warnings)
        if conversion.warning:
            warnings.insert(0, conversion.warning)

        content_hash = calculate_content_hash(conversion.content)
        if check_duplicates:
            duplicate = await self._duplicates.check_duplicate(organization_id, content_hash=content_hash)
            if duplicate.is_duplicate:
                logger.info("Upload %s has the same content as %s", filename, duplicate.existing_document_id)
                return IngestionResult(duplicate=duplicate, from_cache=conversion.from_cache)

        document = await self._repository.create_document(
            DocumentRecord(
                organization_id=organization_id,
                title=title or conversion.metadata.get("title") or PurePosixPath(filename).stem,
                path=path or filename,
                filename=filename,
                content=conversion.content,
                document_type=document_type.value,
                original_type=conversion.original_type,
                file_hash=file_hash,
                content_hash=content_hash,
                metadata=conversion.metadata,
            )
        )
        logger.info(
            "Created document %s from %s (%s, %d chars, cached=%s)",
            document.id,
            filename,
            document_type.value,
            len(conversion.content),
            conversion.from_cache,
        )

        job = None
        if enqueue:
            queued = await self._queue.enqueue(
                DocumentJobData(
                    document_id=document.id,
                    organization_id=organization_id,
                    chunking_strategy=chunking_strategy,
                    chunk_size=chunk_size,
                    chunk_overlap=chunk_overlap,
                )
            )
            job = queued.status_view()

        return IngestionResult(document=document, job=job, from_cache=conversion.from_cache, warnings=warnings)
