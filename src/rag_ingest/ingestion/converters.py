"""Format converters and the registry that chains them.

Every converter is a pure strategy ``bytes -> ConversionOutput`` that
raises :class:`~rag_ingest.exceptions.ConversionFailed` when it cannot
handle the input.  A strategy that only manages a partial or heuristic
extraction still succeeds but sets ``metadata["warning"]``.

For each :class:`DocumentType` the registry holds an ordered strategy
list.  It adopts the first clean result, otherwise the first degraded one;
only when every strategy raises is the byte stream treated as corrupt.
"""

from __future__ import annotations

import csv
import io
import json
import logging
import re
import struct
import unicodedata
import zipfile
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any
from xml.dom import minidom
from xml.parsers.expat import ExpatError

from bs4 import BeautifulSoup
from markdownify import markdownify

from rag_ingest.exceptions import ConversionFailed, UnsupportedFormat
from rag_ingest.ingestion.document_types import DocumentType, sniff_document_type
from rag_ingest.ingestion.models import ConversionResult
from rag_ingest.ingestion.sanitize import sanitize_content

logger = logging.getLogger(__name__)


@dataclass
class ConversionOutput:
    content: str
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ConversionOptions:
    extract_metadata: bool = True


ConversionStrategy = Callable[[bytes], ConversionOutput]


# ── helpers ──────────────────────────────────────────────────────────


def _normalise(text: str) -> str:
    """Unicode NFC, collapse whitespace, strip control chars."""
    text = unicodedata.normalize("NFC", text)
    text = re.sub(r"[^\S\n]+", " ", text)  # collapse spaces (keep \n)
    text = re.sub(r" *\n *", "\n", text)
    text = re.sub(r"\n{3,}", "\n\n", text)  # max two consecutive newlines
    text = re.sub(r"[\x00-\x08\x0b\x0c\x0e-\x1f]", "", text)  # ctrl chars
    return text.strip()


def _decode(data: bytes) -> str:
    try:
        return data.decode("utf-8-sig")
    except UnicodeDecodeError:
        return data.decode("latin-1")


def _extract_title_md(text: str) -> str:
    for line in text.splitlines():
        line = line.strip()
        if line.startswith("# "):
            return line.lstrip("# ").strip()
    return ""


def _extract_title_html(soup: BeautifulSoup) -> str:
    """Best-effort title from HTML."""
    if soup.title and soup.title.string:
        return soup.title.string.strip()
    h1 = soup.find("h1")
    if h1:
        return h1.get_text(strip=True)
    return ""


def _cell(value: Any) -> str:
    text = "" if value is None else str(value)
    return text.replace("|", "\\|").replace("\r", " ").replace("\n", " ").strip()


def markdown_table(rows: Sequence[Sequence[Any]]) -> str:
    """Render *rows* (first row = header) as a Markdown table."""
    if not rows:
        return ""
    width = max(len(row) for row in rows)
    padded = [[_cell(v) for v in row] + [""] * (width - len(row)) for row in rows]
    lines = [
        "| " + " | ".join(padded[0]) + " |",
        "| " + " | ".join(["---"] * width) + " |",
    ]
    lines.extend("| " + " | ".join(row) + " |" for row in padded[1:])
    return "\n".join(lines)


def _strip_markup(xml: str) -> str:
    text = re.sub(r"<(?:text:p|text:h|w:p|a:p)\b[^>]*>", "\n", xml)
    text = re.sub(r"<[^>]+>", " ", text)
    return _normalise(text)


def _zip_markup_text(data: bytes, wanted: Callable[[str], bool]) -> ConversionOutput:
    """Generic markup-stripping pass over the matching entries of a zip container."""
    try:
        with zipfile.ZipFile(io.BytesIO(data)) as archive:
            names = sorted(
                (n for n in archive.namelist() if wanted(n)),
                key=lambda n: [int(p) if p.isdigit() else p for p in re.split(r"(\d+)", n)],
            )
            parts = [_strip_markup(archive.read(n).decode("utf-8", errors="replace")) for n in names]
    except (zipfile.BadZipFile, KeyError, OSError) as exc:
        raise ConversionFailed("Unreadable archive", {"error": str(exc)}) from exc

    content = "\n\n".join(p for p in parts if p)
    if not content:
        raise ConversionFailed("Archive contains no text", {"entries": names})
    return ConversionOutput(
        content,
        {"entries": names, "warning": "Structured extraction failed; used plain markup stripping"},
    )


# ── plain text family ────────────────────────────────────────────────


def _convert_text(data: bytes) -> ConversionOutput:
    text = _decode(data)
    if "\x00" in text:
        raise ConversionFailed("File looks binary, not text")
    cleaned = sanitize_content(text)
    return ConversionOutput(
        cleaned.replace("\r\n", "\n").replace("\r", "\n").strip(),
        {"sanitized": cleaned != text, "characters": len(cleaned)},
    )


def convert_txt(data: bytes) -> ConversionOutput:
    return _convert_text(data)


def convert_markdown(data: bytes) -> ConversionOutput:
    output = _convert_text(data)
    title = _extract_title_md(output.content)
    if title:
        output.metadata["title"] = title
    return output


def convert_html(data: bytes) -> ConversionOutput:
    soup = BeautifulSoup(_decode(data), "html.parser")
    title = _extract_title_html(soup)

    # Strip active and boiler-plate tags
    for tag in soup(["script", "style", "iframe", "object", "embed", "noscript", "nav", "footer"]):
        tag.decompose()
    for tag in soup.find_all(True):
        for attr in [a for a in tag.attrs if a.lower().startswith("on")]:
            del tag.attrs[attr]

    body = soup.body or soup
    markdown = markdownify(str(body), heading_style="ATX", bullets="-")
    metadata: dict[str, Any] = {"sanitized": True}
    if title:
        metadata["title"] = title
    return ConversionOutput(_normalise(sanitize_content(markdown)), metadata)


# ── structured data ──────────────────────────────────────────────────


def convert_json(data: bytes) -> ConversionOutput:
    try:
        parsed = json.loads(_decode(data))
    except json.JSONDecodeError as exc:
        raise ConversionFailed("Invalid JSON", {"error": str(exc)}) from exc
    pretty = json.dumps(parsed, indent=2, ensure_ascii=False)
    return ConversionOutput(f"```json\n{pretty}\n```", {"top_level_type": type(parsed).__name__})


def convert_xml(data: bytes) -> ConversionOutput:
    try:
        pretty = minidom.parseString(data).toprettyxml(indent="  ")
    except ExpatError as exc:
        raise ConversionFailed("Invalid XML", {"error": str(exc)}) from exc
    lines = [line for line in pretty.splitlines() if line.strip() and not line.startswith("<?xml")]
    return ConversionOutput("```xml\n" + "\n".join(lines) + "\n```", {})


def convert_raw_code_block(data: bytes) -> ConversionOutput:
    """Last-resort rendering of malformed JSON/XML as an opaque code block."""
    text = _decode(data).strip()
    if not text:
        raise ConversionFailed("Empty document")
    return ConversionOutput(f"```\n{text}\n```", {"warning": "Content could not be parsed; included verbatim"})


def convert_csv(data: bytes) -> ConversionOutput:
    text = _decode(data)
    try:
        dialect: Any = csv.Sniffer().sniff(text[:4096], delimiters=",;\t")
    except csv.Error:
        dialect = csv.excel
    try:
        rows = [row for row in csv.reader(io.StringIO(text), dialect) if any(c.strip() for c in row)]
    except csv.Error as exc:
        raise ConversionFailed("Malformed CSV", {"error": str(exc)}) from exc
    if not rows:
        raise ConversionFailed("CSV has no rows")
    return ConversionOutput(
        markdown_table(rows),
        {"rows": len(rows) - 1, "columns": max(len(r) for r in rows)},
    )


# ── office documents ─────────────────────────────────────────────────


def convert_pdf(data: bytes) -> ConversionOutput:
    from pypdf import PdfReader
    from pypdf.errors import PyPdfError

    try:
        reader = PdfReader(io.BytesIO(data))
        pages = [_normalise(page.extract_text() or "") for page in reader.pages]
        info = reader.metadata
    except (PyPdfError, ValueError, KeyError, OSError) as exc:
        raise ConversionFailed("Unreadable PDF", {"error": str(exc)}) from exc

    metadata: dict[str, Any] = {"pages": len(pages)}
    if info is not None:
        if info.title:
            metadata["title"] = str(info.title)
        if info.author:
            metadata["author"] = str(info.author)
    content = "\n\n".join(p for p in pages if p)
    if not content:
        metadata["warning"] = "PDF has no extractable text layer"
    return ConversionOutput(content, metadata)


def _docx_heading_level(style_name: str) -> int | None:
    if style_name == "Title":
        return 1
    if style_name.startswith("Heading"):
        suffix = style_name.rsplit(" ", 1)[-1]
        return min(int(suffix), 6) if suffix.isdigit() else 1
    return None


def convert_docx(data: bytes) -> ConversionOutput:
    from docx import Document as DocxDocument
    from docx.opc.exceptions import PackageNotFoundError
    from docx.table import Table

    try:
        document = DocxDocument(io.BytesIO(data))
    except (PackageNotFoundError, zipfile.BadZipFile, KeyError, ValueError) as exc:
        raise ConversionFailed("Unreadable DOCX", {"error": str(exc)}) from exc

    blocks: list[str] = []
    tables = 0
    for item in document.iter_inner_content():
        if isinstance(item, Table):
            rows = [[cell.text for cell in row.cells] for row in item.rows]
            if rows:
                blocks.append(markdown_table(rows))
                tables += 1
            continue
        text = item.text.strip()
        if not text:
            continue
        style_name = item.style.name if item.style is not None else ""
        level = _docx_heading_level(style_name)
        if level:
            blocks.append(f"{'#' * level} {text}")
        elif "List" in style_name:
            blocks.append(f"- {text}")
        else:
            blocks.append(text)

    if not blocks:
        raise ConversionFailed("DOCX body has no text")

    props = document.core_properties
    metadata: dict[str, Any] = {"paragraphs": len(blocks), "tables": tables}
    if props.title:
        metadata["title"] = props.title
    if props.author:
        metadata["author"] = props.author
    return ConversionOutput(_normalise("\n\n".join(blocks)), metadata)


def convert_docx_markup(data: bytes) -> ConversionOutput:
    return _zip_markup_text(data, lambda n: n == "word/document.xml")


def convert_odt(data: bytes) -> ConversionOutput:
    try:
        with zipfile.ZipFile(io.BytesIO(data)) as archive:
            names = archive.namelist()
            if "content.xml" not in names:
                raise ConversionFailed("ODT archive has no content.xml", {"entries": names})
            content_xml = archive.read("content.xml").decode("utf-8", errors="replace")
            meta_xml = archive.read("meta.xml").decode("utf-8", errors="replace") if "meta.xml" in names else ""
    except (zipfile.BadZipFile, OSError) as exc:
        raise ConversionFailed("Unreadable ODT", {"error": str(exc)}) from exc

    soup = BeautifulSoup(content_xml, "html.parser")
    body = soup.find("office:text") or soup
    blocks: list[str] = []
    for tag in body.find_all(["text:h", "text:p"]):
        text = tag.get_text(" ", strip=True)
        if not text:
            continue
        if tag.name == "text:h":
            level = tag.get("text:outline-level", "1")
            depth = min(int(level), 6) if str(level).isdigit() else 1
            blocks.append(f"{'#' * depth} {text}")
        elif tag.find_parent("text:list-item") is not None:
            blocks.append(f"- {text}")
        else:
            blocks.append(text)

    if not blocks:
        raise ConversionFailed("ODT structure yielded no prose")

    metadata: dict[str, Any] = {"paragraphs": len(blocks)}
    if meta_xml:
        title = BeautifulSoup(meta_xml, "html.parser").find("dc:title")
        if title and title.get_text(strip=True):
            metadata["title"] = title.get_text(strip=True)
    return ConversionOutput(_normalise("\n\n".join(blocks)), metadata)


def convert_odt_markup(data: bytes) -> ConversionOutput:
    return _zip_markup_text(data, lambda n: n == "content.xml")


def convert_xlsx(data: bytes) -> ConversionOutput:
    from openpyxl import load_workbook
    from openpyxl.utils.exceptions import InvalidFileException

    try:
        workbook = load_workbook(io.BytesIO(data), read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, ValueError, OSError) as exc:
        raise ConversionFailed("Unreadable XLSX", {"error": str(exc)}) from exc

    sections: list[str] = []
    sheet_names: list[str] = []
    skipped: list[str] = []
    try:
        for sheet in workbook.worksheets:
            rows = [
                ["" if value is None else str(value) for value in row]
                for row in sheet.iter_rows(values_only=True)
            ]
            rows = [row for row in rows if any(v.strip() for v in row)]
            if not rows:
                skipped.append(sheet.title)
                continue
            width = max(max((i + 1 for i, v in enumerate(row) if v.strip()), default=0) for row in rows)
            sheet_names.append(sheet.title)
            sections.append(f"## {sheet.title}\n\n{markdown_table([row[:width] for row in rows])}")
    finally:
        workbook.close()

    return ConversionOutput(
        "\n\n".join(sections),
        {"sheet_names": sheet_names, "sheets": len(sheet_names), "skipped_sheets": skipped},
    )


def convert_pptx(data: bytes) -> ConversionOutput:
    from pptx import Presentation
    from pptx.exc import PackageNotFoundError

    try:
        presentation = Presentation(io.BytesIO(data))
    except (PackageNotFoundError, zipfile.BadZipFile, KeyError, ValueError) as exc:
        raise ConversionFailed("Unreadable PPTX", {"error": str(exc)}) from exc

    sections: list[str] = []
    for number, slide in enumerate(presentation.slides, start=1):
        title_shape = slide.shapes.title
        title = title_shape.text_frame.text.strip() if title_shape is not None else ""
        lines: list[str] = []
        for shape in slide.shapes:
            if title_shape is not None and shape.shape_id == title_shape.shape_id:
                continue
            if shape.has_text_frame:
                for paragraph in shape.text_frame.paragraphs:
                    text = "".join(run.text for run in paragraph.runs).strip()
                    if text:
                        lines.append(f"- {text}")
            if shape.has_table:
                rows = [[cell.text for cell in row.cells] for row in shape.table.rows]
                if rows:
                    lines.append(markdown_table(rows))
        if slide.has_notes_slide:
            notes = slide.notes_slide.notes_text_frame.text.strip()
            if notes:
                lines.append(f"> Notes: {notes}")
        if not title and not lines:
            continue
        heading = f"## Slide {number}: {title}" if title else f"## Slide {number}"
        sections.append("\n\n".join([heading, *lines]))

    return ConversionOutput("\n\n".join(sections), {"slides": len(presentation.slides)})


def convert_pptx_markup(data: bytes) -> ConversionOutput:
    return _zip_markup_text(data, lambda n: n.startswith("ppt/slides/slide") and n.endswith(".xml"))


# ── RTF ──────────────────────────────────────────────────────────────


def convert_rtf(data: bytes) -> ConversionOutput:
    from striprtf.striprtf import rtf_to_text

    raw = data.decode("latin-1")
    if not raw.lstrip().startswith("{\\rtf"):
        raise ConversionFailed("Missing RTF header")
    try:
        text = rtf_to_text(raw)
    except (ValueError, IndexError, UnicodeError) as exc:
        raise ConversionFailed("Malformed RTF", {"error": str(exc)}) from exc
    return ConversionOutput(_normalise(text), {})


def convert_rtf_basic(data: bytes) -> ConversionOutput:
    raw = data.decode("latin-1")
    text = re.sub(r"\\'([0-9a-fA-F]{2})", lambda m: bytes.fromhex(m.group(1)).decode("cp1252", "replace"), raw)
    text = re.sub(r"\\(par|line)\b ?", "\n", text)
    text = re.sub(r"\\[a-zA-Z]+-?\d* ?", "", text)
    text = re.sub(r"[{}]", "", text)
    return ConversionOutput(
        _normalise(text),
        {"warning": "RTF converted with basic control-word stripping; formatting may be lost"},
    )


# ── legacy Word (.doc) ───────────────────────────────────────────────

_FIELD_INSTRUCTIONS = re.compile(r"\x13[^\x14\x15]*\x14?")


def _word_piece_table_text(word_stream: bytes, clx: bytes) -> str:
    """Reassemble document text from the CLX piece table of a Word 97+ file."""
    pos = 0
    while pos < len(clx) and clx[pos] == 0x01:  # Prc entries precede the Pcdt
        (cb,) = struct.unpack_from("<H", clx, pos + 1)
        pos += 3 + cb
    if pos >= len(clx) or clx[pos] != 0x02:
        raise ConversionFailed("Malformed piece table")

    (lcb,) = struct.unpack_from("<I", clx, pos + 1)
    plc = clx[pos + 5 : pos + 5 + lcb]
    pieces = (lcb - 4) // 12
    cps = struct.unpack_from(f"<{pieces + 1}I", plc, 0)

    parts: list[str] = []
    for i in range(pieces):
        (fc,) = struct.unpack_from("<I", plc, 4 * (pieces + 1) + 8 * i + 2)
        length = cps[i + 1] - cps[i]
        if fc & 0x40000000:
            start = (fc & ~0x40000000) // 2
            parts.append(word_stream[start : start + length].decode("cp1252", errors="replace"))
        else:
            parts.append(word_stream[fc : fc + 2 * length].decode("utf-16-le", errors="replace"))

    text = _FIELD_INSTRUCTIONS.sub("", "".join(parts))
    text = text.replace("\x15", "").replace("\x07", "\t").replace("\x0b", "\n")
    text = text.replace("\x0c", "\n\n").replace("\r", "\n\n")
    return _normalise(text)


def convert_doc_ole(data: bytes) -> ConversionOutput:
    import olefile

    if not data.startswith(olefile.MAGIC):
        raise ConversionFailed("Not an OLE2 compound document")
    try:
        with olefile.OleFileIO(io.BytesIO(data)) as ole:
            if not ole.exists("WordDocument"):
                raise ConversionFailed("OLE container has no WordDocument stream")
            word = ole.openstream("WordDocument").read()
            (flags,) = struct.unpack_from("<H", word, 0x0A)
            table_name = "1Table" if flags & 0x0200 else "0Table"
            if not ole.exists(table_name):
                raise ConversionFailed(f"OLE container has no {table_name} stream")
            table = ole.openstream(table_name).read()
        fc_clx, lcb_clx = struct.unpack_from("<II", word, 0x01A2)
        text = _word_piece_table_text(word, table[fc_clx : fc_clx + lcb_clx])
    except (OSError, struct.error, ValueError) as exc:
        raise ConversionFailed("Unreadable Word binary", {"error": str(exc)}) from exc

    if not text:
        raise ConversionFailed("Word binary has no text")
    return ConversionOutput(text, {"parser": "ole-piece-table"})


_PRINTABLE_RUN = re.compile(r"[\x20-\x7e\xa0-\xff]{3,}")
_HAS_LETTER = re.compile(r"[A-Za-z\xc0-\xff]")


def convert_printable_runs(data: bytes) -> ConversionOutput:
    """Heuristic: keep runs of ≥3 printable characters that contain a letter."""
    seen: set[str] = set()
    runs: list[str] = []
    for decoded in (data.decode("latin-1"), data.decode("utf-16-le", errors="ignore")):
        for match in _PRINTABLE_RUN.findall(decoded):
            run = match.strip()
            if len(run) >= 3 and _HAS_LETTER.search(run) and run not in seen:
                seen.add(run)
                runs.append(run)
    if not runs:
        raise ConversionFailed("No printable text found")
    return ConversionOutput(
        "\n".join(runs),
        {"warning": "Text recovered heuristically from binary content; layout and some words may be missing"},
    )


def convert_reinterpreted(data: bytes) -> ConversionOutput:
    """Convert bytes whose header shows a different container than the extension claims."""
    sniffed = sniff_document_type(data)
    if sniffed is None or sniffed is DocumentType.DOC:
        raise ConversionFailed("No alternative container signature")
    output = PRIMARY_CONVERTERS[sniffed](data)
    output.metadata["reinterpreted_as"] = sniffed.value
    return output


def convert_doc_placeholder(data: bytes) -> ConversionOutput:
    content = (
        "# Legacy Word document\n\n"
        "> **Note:** the text of this .doc file could not be extracted automatically. "
        f"The file ({len(data)} bytes) was stored, but only this notice is searchable. "
        "Re-save it as .docx or PDF and upload it again for full-text indexing."
    )
    return ConversionOutput(content, {"warning": "Legacy .doc content could not be extracted", "placeholder": True})


# ── registry ─────────────────────────────────────────────────────────

PRIMARY_CONVERTERS: dict[DocumentType, ConversionStrategy] = {
    DocumentType.PDF: convert_pdf,
    DocumentType.DOCX: convert_docx,
    DocumentType.RTF: convert_rtf,
    DocumentType.ODT: convert_odt,
    DocumentType.TXT: convert_txt,
    DocumentType.MD: convert_markdown,
    DocumentType.MDX: convert_markdown,
    DocumentType.HTML: convert_html,
    DocumentType.JSON: convert_json,
    DocumentType.XML: convert_xml,
    DocumentType.CSV: convert_csv,
    DocumentType.XLSX: convert_xlsx,
    DocumentType.PPTX: convert_pptx,
}

DEFAULT_STRATEGIES: dict[DocumentType, list[ConversionStrategy]] = {
    DocumentType.PDF: [convert_pdf],
    DocumentType.DOCX: [convert_docx, convert_docx_markup],
    DocumentType.DOC: [convert_doc_ole, convert_printable_runs, convert_reinterpreted, convert_doc_placeholder],
    DocumentType.RTF: [convert_rtf, convert_rtf_basic],
    DocumentType.ODT: [convert_odt, convert_odt_markup],
    DocumentType.TXT: [convert_txt],
    DocumentType.MD: [convert_markdown],
    DocumentType.MDX: [convert_markdown],
    DocumentType.HTML: [convert_html],
    DocumentType.JSON: [convert_json, convert_raw_code_block],
    DocumentType.XML: [convert_xml, convert_raw_code_block],
    DocumentType.CSV: [convert_csv],
    DocumentType.XLSX: [convert_xlsx],
    DocumentType.PPTX: [convert_pptx, convert_pptx_markup],
}


class ConverterRegistry:
    """Ordered conversion strategies per document type.

    Parameters
    ----------
    strategies:
        Mapping of document type to its strategy chain.  Defaults to
        :data:`DEFAULT_STRATEGIES`.
    """

    def __init__(self, strategies: Mapping[DocumentType, Sequence[ConversionStrategy]] | None = None) -> None:
        source = DEFAULT_STRATEGIES if strategies is None else strategies
        self._strategies: dict[DocumentType, list[ConversionStrategy]] = {t: list(s) for t, s in source.items()}

    def register(self, document_type: DocumentType, strategy: ConversionStrategy, *, first: bool = False) -> None:
        chain = self._strategies.setdefault(document_type, [])
        if first:
            chain.insert(0, strategy)
        else:
            chain.append(strategy)

    def strategies_for(self, document_type: DocumentType) -> list[ConversionStrategy]:
        return list(self._strategies.get(document_type, []))

    def convert(
        self,
        document_type: DocumentType,
        data: bytes,
        options: ConversionOptions | None = None,
    ) -> ConversionResult:
        """Run the strategy chain for *document_type* over *data*.

        Raises
        ------
        UnsupportedFormat
            No strategy is registered for the type.
        ConversionFailed
            The input is empty or every strategy rejected it.
        """
        options = options or ConversionOptions()
        strategies = self._strategies.get(document_type)
        if not strategies:
            raise UnsupportedFormat(document_type.value)
        if not data:
            raise ConversionFailed("Empty file", {"document_type": document_type.value})

        chosen: ConversionOutput | None = None
        degraded: ConversionOutput | None = None
        failures: dict[str, str] = {}
        for strategy in strategies:
            name = getattr(strategy, "__name__", repr(strategy))
            try:
                output = strategy(data)
            except ConversionFailed as exc:
                logger.debug("Strategy %s rejected %s input: %s", name, document_type.value, exc.message)
                failures[name] = exc.message
                continue
            except Exception as exc:
                # Parser libraries raise their own errors (lxml, zlib, struct) on corrupt input.
                logger.warning("Strategy %s crashed on %s input: %r", name, document_type.value, exc)
                failures[name] = f"{type(exc).__name__}: {exc}"
                continue
            if "warning" not in output.metadata:
                chosen = output
                break
            if degraded is None:
                degraded = output

        chosen = chosen or degraded
        if chosen is None:
            raise ConversionFailed(
                f"Could not convert {document_type.value} document",
                {"document_type": document_type.value, "attempts": failures},
            )
        if "warning" in chosen.metadata:
            logger.warning("Degraded %s conversion: %s", document_type.value, chosen.metadata["warning"])

        if options.extract_metadata:
            metadata = {"original_format": document_type.value, **chosen.metadata}
        else:
            metadata = {"original_format": document_type.value}
            if "warning" in chosen.metadata:
                metadata["warning"] = chosen.metadata["warning"]
        return ConversionResult(content=chosen.content.strip(), metadata=metadata, original_type=document_type.value)
