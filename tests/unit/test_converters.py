"""Unit tests for format converters and the strategy registry."""

from __future__ import annotations

import io
import zipfile

import pytest

from rag_ingest.exceptions import ConversionFailed, UnsupportedFormat
from rag_ingest.ingestion.converters import (
    ConversionOptions,
    ConversionOutput,
    ConverterRegistry,
    convert_csv,
    convert_html,
    convert_json,
    convert_markdown,
    convert_rtf,
    convert_rtf_basic,
    markdown_table,
)
from rag_ingest.ingestion.document_types import DocumentType
from rag_ingest.ingestion.sanitize import sanitize_content

# ── Fixture builders ────────────────────────────────────────────────────


def _docx_bytes() -> bytes:
    from docx import Document

    document = Document()
    document.core_properties.title = "Handbook"
    document.add_heading("Guide", level=1)
    document.add_paragraph("Body text for employees.")
    document.add_paragraph("Bring a badge", style="List Bullet")
    table = document.add_table(rows=2, cols=2)
    table.cell(0, 0).text = "day"
    table.cell(0, 1).text = "hours"
    table.cell(1, 0).text = "monday"
    table.cell(1, 1).text = "9-17"
    buffer = io.BytesIO()
    document.save(buffer)
    return buffer.getvalue()


def _xlsx_bytes() -> bytes:
    from openpyxl import Workbook

    workbook = Workbook()
    sheet = workbook.active
    sheet.title = "Sales"
    sheet.append(["region", "total"])
    sheet.append(["north", 10])
    workbook.create_sheet("Empty")
    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def _pptx_bytes() -> bytes:
    from pptx import Presentation

    presentation = Presentation()
    slide = presentation.slides.add_slide(presentation.slide_layouts[1])
    slide.shapes.title.text = "Roadmap"
    slide.placeholders[1].text = "Ship version two"
    slide.notes_slide.notes_text_frame.text = "Mention the beta"
    presentation.slides.add_slide(presentation.slide_layouts[6])
    buffer = io.BytesIO()
    presentation.save(buffer)
    return buffer.getvalue()


def _pdf_bytes() -> bytes:
    from pypdf import PdfWriter

    writer = PdfWriter()
    writer.add_blank_page(width=72, height=72)
    writer.add_metadata({"/Title": "Scanned contract"})
    buffer = io.BytesIO()
    writer.write(buffer)
    return buffer.getvalue()


ODT_NAMESPACES = (
    'xmlns:office="urn:oasis:names:tc:opendocument:xmlns:office:1.0" '
    'xmlns:text="urn:oasis:names:tc:opendocument:xmlns:text:1.0"'
)


def _odt_bytes(body: str) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        archive.writestr("mimetype", "application/vnd.oasis.opendocument.text")
        archive.writestr(
            "content.xml",
            f'<?xml version="1.0" encoding="UTF-8"?><office:document-content {ODT_NAMESPACES}>'
            f"<office:body><office:text>{body}</office:text></office:body></office:document-content>",
        )
        archive.writestr(
            "meta.xml",
            '<office:document-meta xmlns:office="urn:oasis:names:tc:opendocument:xmlns:office:1.0" '
            'xmlns:dc="http://purl.org/dc/elements/1.1/"><office:meta><dc:title>Staff Handbook</dc:title>'
            "</office:meta></office:document-meta>",
        )
    return buffer.getvalue()


# ── Text family ─────────────────────────────────────────────────────────


class TestTextConverters:
    def test_markdown_keeps_structure_and_title(self) -> None:
        output = convert_markdown(b"# Title\r\n\r\n    indented code\r\n\r\nText")
        assert output.content == "# Title\n\n    indented code\n\nText"
        assert output.metadata["title"] == "Title"

    def test_markdown_is_sanitized(self) -> None:
        output = convert_markdown(b"# Doc\n\n<script>steal()</script>Safe text")
        assert "steal" not in output.content
        assert "Safe text" in output.content
        assert output.metadata["sanitized"] is True

    def test_latin1_fallback(self) -> None:
        registry = ConverterRegistry()
        result = registry.convert(DocumentType.TXT, "Olá, ação".encode("latin-1"))
        assert result.content == "Olá, ação"

    def test_binary_text_is_rejected(self) -> None:
        with pytest.raises(ConversionFailed):
            ConverterRegistry().convert(DocumentType.TXT, b"abc\x00\x00def")

    def test_html_to_markdown(self) -> None:
        html = (
            b"<html><head><title>Page</title><script>alert(1)</script></head>"
            b"<body><h1>Hello</h1><p onclick='x()'>World</p><footer>menu</footer></body></html>"
        )
        output = convert_html(html)
        assert output.content == "# Hello\n\nWorld"
        assert output.metadata["title"] == "Page"

    def test_sanitize_content(self) -> None:
        dirty = '<a href="javascript:alert(1)" onmouseover="x()">link</a><iframe src="x"></iframe>'
        cleaned = sanitize_content(dirty)
        assert "javascript" not in cleaned
        assert "onmouseover" not in cleaned
        assert "iframe" not in cleaned
        assert "link" in cleaned


class TestStructuredConverters:
    def test_json_is_pretty_printed_in_a_fence(self) -> None:
        output = convert_json(b'{"a": 1, "b": [1, 2]}')
        assert output.content.startswith("```json\n{\n  \"a\": 1,")
        assert output.content.endswith("\n```")
        assert output.metadata["top_level_type"] == "dict"

    def test_malformed_json_degrades_to_raw_block(self) -> None:
        result = ConverterRegistry().convert(DocumentType.JSON, b"{not json")
        assert result.content == "```\n{not json\n```"
        assert result.degraded

    def test_xml(self) -> None:
        result = ConverterRegistry().convert(DocumentType.XML, b"<root><item>value</item></root>")
        assert result.content.startswith("```xml\n<root>")
        assert "<item>value</item>" in result.content
        assert not result.degraded

    def test_csv_becomes_a_table(self) -> None:
        output = convert_csv(b"name;age\nAlice;30\nBob;25\n")
        assert output.content.splitlines()[:2] == ["| name | age |", "| --- | --- |"]
        assert output.metadata == {"rows": 2, "columns": 2}

    def test_markdown_table_pads_and_escapes(self) -> None:
        table = markdown_table([["a", "b"], ["x|y"]])
        assert table.splitlines()[-1] == "| x\\|y |  |"


# ── Office formats ──────────────────────────────────────────────────────


class TestOfficeConverters:
    def test_docx(self) -> None:
        result = ConverterRegistry().convert(DocumentType.DOCX, _docx_bytes())
        assert "# Guide" in result.content
        assert "Body text for employees." in result.content
        assert "- Bring a badge" in result.content
        assert "| day | hours |" in result.content
        assert result.metadata["title"] == "Handbook"
        assert result.metadata["tables"] == 1
        assert not result.degraded

    def test_corrupt_docx_falls_back_to_markup(self) -> None:
        buffer = io.BytesIO()
        with zipfile.ZipFile(io.BytesIO(_docx_bytes())) as source, zipfile.ZipFile(buffer, "w") as target:
            for name in source.namelist():
                payload = source.read(name)
                if name == "word/document.xml":
                    payload = payload.replace(b"</w:body>", b"")
                target.writestr(name, payload)

        result = ConverterRegistry().convert(DocumentType.DOCX, buffer.getvalue())

        assert result.degraded
        assert "Body text for employees." in result.content

    def test_xlsx_skips_empty_sheets(self) -> None:
        result = ConverterRegistry().convert(DocumentType.XLSX, _xlsx_bytes())
        assert result.content.startswith("## Sales\n\n| region | total |")
        assert "| north | 10 |" in result.content
        assert result.metadata["sheet_names"] == ["Sales"]
        assert result.metadata["skipped_sheets"] == ["Empty"]

    def test_pptx_slides_notes_and_empty_slides(self) -> None:
        result = ConverterRegistry().convert(DocumentType.PPTX, _pptx_bytes())
        assert result.content == "## Slide 1: Roadmap\n\n- Ship version two\n\n> Notes: Mention the beta"
        assert result.metadata["slides"] == 2

    def test_pdf_without_text_layer_warns(self) -> None:
        result = ConverterRegistry().convert(DocumentType.PDF, _pdf_bytes())
        assert result.content == ""
        assert result.metadata["title"] == "Scanned contract"
        assert result.warning == "PDF has no extractable text layer"

    def test_corrupt_pdf_fails(self) -> None:
        with pytest.raises(ConversionFailed):
            ConverterRegistry().convert(DocumentType.PDF, b"%PDF-1.4 truncated")

    def test_odt(self) -> None:
        body = (
            '<text:h text:outline-level="2">Policies</text:h>'
            "<text:p>All staff must comply.</text:p>"
            "<text:list><text:list-item><text:p>Item one</text:p></text:list-item></text:list>"
        )
        result = ConverterRegistry().convert(DocumentType.ODT, _odt_bytes(body))
        assert result.content == "## Policies\n\nAll staff must comply.\n\n- Item one"
        assert result.metadata["title"] == "Staff Handbook"

    def test_odt_without_paragraphs_falls_back_to_markup(self) -> None:
        result = ConverterRegistry().convert(DocumentType.ODT, _odt_bytes("Loose text only"))
        assert result.content == "Loose text only"
        assert result.degraded

    def test_rtf(self) -> None:
        output = convert_rtf(b"{\\rtf1\\ansi Hello {\\b bold} world.\\par Second line.}")
        assert "Hello bold world." in output.content
        assert "Second line." in output.content

    def test_rtf_without_header_uses_basic_stripping(self) -> None:
        with pytest.raises(ConversionFailed):
            convert_rtf(b"plain")
        output = convert_rtf_basic(b"{\\b caf\\'e9}\\par next")
        assert output.content == "café\nnext"
        assert "warning" in output.metadata


class TestLegacyDoc:
    def test_printable_runs_recover_text(self) -> None:
        data = b"\x00\x01\x02Quarterly budget summary\x00\x03\x04Approved by finance\x00"
        result = ConverterRegistry().convert(DocumentType.DOC, data)
        assert "Quarterly budget summary" in result.content
        assert "Approved by finance" in result.content
        assert result.degraded

    def test_mislabelled_docx_is_reinterpreted(self) -> None:
        result = ConverterRegistry().convert(DocumentType.DOC, _docx_bytes())
        assert result.metadata["reinterpreted_as"] == "docx"
        assert "# Guide" in result.content
        assert not result.degraded

    def test_unreadable_doc_gets_a_placeholder(self) -> None:
        result = ConverterRegistry().convert(DocumentType.DOC, b"\x00\x01\x02" * 20)
        assert result.metadata["placeholder"] is True
        assert result.degraded
        assert "Legacy Word document" in result.content


class TestConverterRegistry:
    def test_empty_file_fails(self) -> None:
        with pytest.raises(ConversionFailed):
            ConverterRegistry().convert(DocumentType.TXT, b"")

    def test_unregistered_type_is_unsupported(self) -> None:
        with pytest.raises(UnsupportedFormat):
            ConverterRegistry(strategies={}).convert(DocumentType.TXT, b"hello")

    def test_all_strategies_failing_records_attempts(self) -> None:
        def broken(data: bytes) -> ConversionOutput:
            raise ConversionFailed("nope")

        registry = ConverterRegistry(strategies={DocumentType.TXT: [broken]})
        with pytest.raises(ConversionFailed) as excinfo:
            registry.convert(DocumentType.TXT, b"hello")
        assert excinfo.value.details["attempts"] == {"broken": "nope"}

    def test_clean_result_preferred_over_earlier_degraded(self) -> None:
        def rough(data: bytes) -> ConversionOutput:
            return ConversionOutput("rough", {"warning": "approximate"})

        def exact(data: bytes) -> ConversionOutput:
            return ConversionOutput("exact")

        registry = ConverterRegistry(strategies={DocumentType.TXT: [rough, exact]})
        assert registry.convert(DocumentType.TXT, b"x").content == "exact"

    def test_register_first(self) -> None:
        registry = ConverterRegistry()
        registry.register(DocumentType.TXT, lambda data: ConversionOutput("custom"), first=True)
        assert registry.convert(DocumentType.TXT, b"hello").content == "custom"

    def test_metadata_extraction_can_be_disabled(self) -> None:
        result = ConverterRegistry().convert(
            DocumentType.MD, b"# Title\n\nBody", ConversionOptions(extract_metadata=False)
        )
        assert result.metadata == {"original_format": "md"}
        assert result.original_type == "md"
