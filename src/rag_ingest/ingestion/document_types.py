"""Registry of supported document types and detection helpers."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import PurePath

from rag_ingest.exceptions import UnsupportedFormat


class DocumentType(str, Enum):
    PDF = "pdf"
    DOCX = "docx"
    DOC = "doc"
    RTF = "rtf"
    ODT = "odt"
    TXT = "txt"
    MD = "md"
    MDX = "mdx"
    HTML = "html"
    JSON = "json"
    XML = "xml"
    CSV = "csv"
    XLSX = "xlsx"
    PPTX = "pptx"


@dataclass(frozen=True)
class DocumentTypeInfo:
    type: DocumentType
    extensions: tuple[str, ...]
    mime_types: tuple[str, ...]
    description: str
    category: str  # text | structured | spreadsheet | presentation


SUPPORTED_DOCUMENT_TYPES: dict[DocumentType, DocumentTypeInfo] = {
    info.type: info
    for info in (
        DocumentTypeInfo(DocumentType.PDF, (".pdf",), ("application/pdf",), "PDF document", "text"),
        DocumentTypeInfo(
            DocumentType.DOCX,
            (".docx",),
            ("application/vnd.openxmlformats-officedocument.wordprocessingml.document",),
            "Word document",
            "text",
        ),
        DocumentTypeInfo(DocumentType.DOC, (".doc",), ("application/msword",), "Legacy Word document", "text"),
        DocumentTypeInfo(DocumentType.RTF, (".rtf",), ("application/rtf", "text/rtf"), "Rich Text Format", "text"),
        DocumentTypeInfo(
            DocumentType.ODT,
            (".odt",),
            ("application/vnd.oasis.opendocument.text",),
            "OpenDocument text",
            "text",
        ),
        DocumentTypeInfo(DocumentType.TXT, (".txt",), ("text/plain",), "Plain text", "text"),
        DocumentTypeInfo(DocumentType.MD, (".md", ".markdown"), ("text/markdown", "text/x-markdown"), "Markdown", "text"),
        DocumentTypeInfo(DocumentType.MDX, (".mdx",), ("text/mdx",), "MDX", "text"),
        DocumentTypeInfo(DocumentType.HTML, (".html", ".htm"), ("text/html",), "HTML page", "text"),
        DocumentTypeInfo(DocumentType.JSON, (".json",), ("application/json",), "JSON data", "structured"),
        DocumentTypeInfo(DocumentType.XML, (".xml",), ("application/xml", "text/xml"), "XML data", "structured"),
        DocumentTypeInfo(DocumentType.CSV, (".csv",), ("text/csv",), "Comma-separated values", "spreadsheet"),
        DocumentTypeInfo(
            DocumentType.XLSX,
            (".xlsx",),
            ("application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",),
            "Excel workbook",
            "spreadsheet",
        ),
        DocumentTypeInfo(
            DocumentType.PPTX,
            (".pptx",),
            ("application/vnd.openxmlformats-officedocument.presentationml.presentation",),
            "PowerPoint presentation",
            "presentation",
        ),
    )
}

_BY_EXTENSION = {ext: info.type for info in SUPPORTED_DOCUMENT_TYPES.values() for ext in info.extensions}
_BY_MIME = {mime: info.type for info in SUPPORTED_DOCUMENT_TYPES.values() for mime in info.mime_types}


def detect_document_type(filename: str | None, mime_type: str | None = None) -> DocumentType | None:
    """Resolve a document type by extension first, then by MIME type."""
    if filename:
        suffix = PurePath(filename).suffix.lower()
        if suffix in _BY_EXTENSION:
            return _BY_EXTENSION[suffix]
    if mime_type:
        base = mime_type.split(";", 1)[0].strip().lower()
        return _BY_MIME.get(base)
    return None


def require_document_type(filename: str | None, mime_type: str | None = None) -> DocumentType:
    """Like :func:`detect_document_type` but raises :class:`UnsupportedFormat`."""
    detected = detect_document_type(filename, mime_type)
    if detected is None:
        raise UnsupportedFormat(filename or "<unnamed>", mime_type)
    return detected


def supported_extensions() -> list[str]:
    return sorted(_BY_EXTENSION)


def supported_mime_types() -> list[str]:
    return sorted(_BY_MIME)


def types_in_category(category: str) -> list[DocumentType]:
    return [info.type for info in SUPPORTED_DOCUMENT_TYPES.values() if info.category == category]


# Header signatures of container formats, checked in order.
_SIGNATURES: tuple[tuple[bytes, DocumentType], ...] = (
    (b"%PDF-", DocumentType.PDF),
    (b"{\\rtf", DocumentType.RTF),
    (b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1", DocumentType.DOC),
)


def sniff_document_type(data: bytes) -> DocumentType | None:
    """Guess a document type from the leading bytes of *data*.

    Zip-based Office containers are told apart by their well-known entry
    names, which appear uncompressed in the local file headers.
    """
    head = data[:8]
    for signature, doc_type in _SIGNATURES:
        if head.startswith(signature):
            return doc_type
    if head.startswith(b"PK\x03\x04"):
        window = data[:4096]
        if b"word/" in window:
            return DocumentType.DOCX
        if b"xl/" in window:
            return DocumentType.XLSX
        if b"ppt/" in window:
            return DocumentType.PPTX
        if b"opendocument.text" in window:
            return DocumentType.ODT
        return None
    stripped = data[:512].lstrip().lower()
    if stripped.startswith((b"<!doctype html", b"<html")):
        return DocumentType.HTML
    return None
