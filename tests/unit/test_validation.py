"""Unit tests for duplicate detection and converted-content validation."""

from __future__ import annotations

import pytest

from rag_ingest.exceptions import StorageFailed
from rag_ingest.ingestion.validation import (
    DuplicateValidator,
    calculate_content_hash,
    calculate_file_hash,
    validate_converted_content,
)
from rag_ingest.storage.memory import InMemoryDocumentRepository
from rag_ingest.storage.repository import DocumentRecord


class FailingRepository(InMemoryDocumentRepository):
    async def list_documents(self, organization_id: str) -> list[DocumentRecord]:
        raise StorageFailed("database offline")


@pytest.fixture()
def seeded() -> InMemoryDocumentRepository:
    repository = InMemoryDocumentRepository()
    repository.documents["existing"] = DocumentRecord(
        id="existing",
        organization_id="org-1",
        title="Handbook",
        filename="Handbook.pdf",
        file_hash=calculate_file_hash(b"pdf bytes"),
        content_hash=calculate_content_hash("Welcome aboard."),
    )
    return repository


class TestHashes:
    def test_content_hash_ignores_line_endings_and_blank_runs(self) -> None:
        assert calculate_content_hash("a\r\nb\n\n\n\nc  ") == calculate_content_hash("a\nb\n\nc")

    def test_file_hash_is_sha256(self) -> None:
        assert calculate_file_hash(b"") == "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"


class TestDuplicateValidator:
    @pytest.mark.asyncio
    async def test_no_criteria(self, seeded: InMemoryDocumentRepository) -> None:
        result = await DuplicateValidator(seeded).check_duplicate("org-1")
        assert not result.is_duplicate

    @pytest.mark.asyncio
    async def test_filename_match_is_case_insensitive(self, seeded: InMemoryDocumentRepository) -> None:
        result = await DuplicateValidator(seeded).check_duplicate("org-1", filename="handbook.PDF")
        assert result.is_duplicate
        assert result.existing_document_id == "existing"
        assert result.match_type == "filename"

    @pytest.mark.asyncio
    async def test_filename_and_hash_match_reports_both(self, seeded: InMemoryDocumentRepository) -> None:
        result = await DuplicateValidator(seeded).check_duplicate(
            "org-1", filename="Handbook.pdf", file_hash=calculate_file_hash(b"pdf bytes")
        )
        assert result.match_type == "both"

    @pytest.mark.asyncio
    async def test_renamed_upload_matches_on_file_hash(self, seeded: InMemoryDocumentRepository) -> None:
        result = await DuplicateValidator(seeded).check_duplicate(
            "org-1", filename="copy.pdf", file_hash=calculate_file_hash(b"pdf bytes")
        )
        assert result.is_duplicate
        assert result.match_type == "content_hash"

    @pytest.mark.asyncio
    async def test_content_hash_match(self, seeded: InMemoryDocumentRepository) -> None:
        result = await DuplicateValidator(seeded).check_duplicate(
            "org-1", content_hash=calculate_content_hash("Welcome aboard.\r\n")
        )
        assert result.is_duplicate

    @pytest.mark.asyncio
    async def test_other_organizations_and_excluded_ids_are_ignored(self, seeded: InMemoryDocumentRepository) -> None:
        validator = DuplicateValidator(seeded)
        assert not (await validator.check_duplicate("org-2", filename="Handbook.pdf")).is_duplicate
        excluded = await validator.check_duplicate("org-1", filename="Handbook.pdf", exclude_document_id="existing")
        assert not excluded.is_duplicate

    @pytest.mark.asyncio
    async def test_storage_failure_fails_open(self) -> None:
        result = await DuplicateValidator(FailingRepository()).check_duplicate("org-1", filename="a.txt")
        assert not result.is_duplicate
        assert result.message == "Duplicate check unavailable"


class TestValidateConvertedContent:
    def test_too_short(self) -> None:
        result = validate_converted_content("tiny")
        assert not result.valid
        assert "too short" in (result.error or "")

    def test_too_long(self) -> None:
        assert not validate_converted_content("a" * 50, max_length=20).valid

    def test_no_letters(self) -> None:
        result = validate_converted_content("1234 5678 90 -- 42")
        assert not result.valid
        assert result.error == "Converted content contains no readable text"

    def test_short_and_markup_heavy_content_warns(self) -> None:
        result = validate_converted_content("| a | b |\n| --- | --- |")
        assert result.valid
        assert "Converted content is very short" in result.warnings
        assert any("mostly markup" in w for w in result.warnings)

    def test_clean_prose_has_no_warnings(self) -> None:
        result = validate_converted_content("Plain readable prose about the vacation policy. " * 5)
        assert result.valid
        assert result.warnings == []
