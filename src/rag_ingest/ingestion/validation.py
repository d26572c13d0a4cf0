"""Upload validation: duplicate detection and converted-content checks."""

from __future__ import annotations

import hashlib
import logging
import re
from typing import Literal

from pydantic import BaseModel, Field

from rag_ingest.exceptions import StorageFailed
from rag_ingest.storage.repository import DocumentRepository

logger = logging.getLogger(__name__)

MatchType = Literal["filename", "content_hash", "both"]


def calculate_file_hash(data: bytes) -> str:
    """SHA-256 of raw upload bytes."""
    return hashlib.sha256(data).hexdigest()


def normalize_for_hash(text: str) -> str:
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def calculate_content_hash(text: str) -> str:
    """SHA-256 of converted text after line-ending and blank-line normalization."""
    return hashlib.sha256(normalize_for_hash(text).encode("utf-8")).hexdigest()


class DuplicateCheckResult(BaseModel):
    is_duplicate: bool = False
    existing_document_id: str | None = None
    match_type: MatchType | None = None
    message: str = ""


class DuplicateValidator:
    """Detect re-uploads within an organization.

    Precedence is filename → raw-bytes hash → normalized-content hash; the
    first match wins.  Storage errors fail open (``is_duplicate=False``).
    """

    def __init__(self, repository: DocumentRepository) -> None:
        self._repository = repository

    async def check_duplicate(
        self,
        organization_id: str,
        *,
        filename: str | None = None,
        file_hash: str | None = None,
        content_hash: str | None = None,
        exclude_document_id: str | None = None,
    ) -> DuplicateCheckResult:
        if not (filename or file_hash or content_hash):
            return DuplicateCheckResult(message="No duplicate criteria provided")

        try:
            documents = await self._repository.list_documents(organization_id)
        except StorageFailed as exc:
            logger.warning("Duplicate check skipped for org %s: %s", organization_id, exc.message)
            return DuplicateCheckResult(message="Duplicate check unavailable")

        candidates = [d for d in documents if d.id != exclude_document_id]

        if filename:
            wanted = filename.lower()
            for doc in candidates:
                if doc.filename and doc.filename.lower() == wanted:
                    return DuplicateCheckResult(
                        is_duplicate=True,
                        existing_document_id=doc.id,
                        match_type="both" if file_hash and doc.file_hash == file_hash else "filename",
                        message=f"A document named {doc.filename!r} already exists",
                    )

        if file_hash:
            for doc in candidates:
                if doc.file_hash == file_hash:
                    return DuplicateCheckResult(
                        is_duplicate=True,
                        existing_document_id=doc.id,
                        match_type="content_hash",
                        message=f"Identical file already uploaded as {doc.title or doc.id!r}",
                    )

        if content_hash:
            for doc in candidates:
                if doc.content_hash == content_hash:
                    return DuplicateCheckResult(
                        is_duplicate=True,
                        existing_document_id=doc.id,
                        match_type="content_hash",
                        message=f"Document with identical content already exists: {doc.title or doc.id!r}",
                    )

        return DuplicateCheckResult(message="No duplicate found")


# -- converted content checks ---------------------------------------------------


class ContentValidationResult(BaseModel):
    valid: bool
    error: str | None = None
    warnings: list[str] = Field(default_factory=list)


_LETTER = re.compile(r"[^\W\d_]")
_MARKUP = re.compile(r"[|#`*_\-<>\[\]{}]")


def validate_converted_content(
    content: str,
    *,
    min_length: int = 10,
    max_length: int | None = None,
    require_text: bool = True,
) -> ContentValidationResult:
    """Reject empty or letter-free conversions; warn on suspicious output."""
    text = content.strip()
    warnings: list[str] = []

    if len(text) < min_length:
        return ContentValidationResult(
            valid=False, error=f"Converted content is too short ({len(text)} < {min_length} characters)"
        )
    if max_length is not None and len(text) > max_length:
        return ContentValidationResult(
            valid=False, error=f"Converted content is too long ({len(text)} > {max_length} characters)"
        )
    if require_text and not _LETTER.search(text):
        return ContentValidationResult(valid=False, error="Converted content contains no readable text")

    if len(text) < min_length * 10:
        warnings.append("Converted content is very short")
    markup_ratio = len(_MARKUP.findall(text)) / len(text)
    if markup_ratio > 0.3:
        warnings.append(f"Converted content is mostly markup ({markup_ratio:.0%})")
    return ContentValidationResult(valid=True, warnings=warnings)
