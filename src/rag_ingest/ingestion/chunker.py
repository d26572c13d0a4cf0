"""Text chunking strategies.

Three strategies share one accumulate/flush/overlap procedure:

* **paragraph** (default): units are blank-line separated paragraphs;
  Markdown headings open a new chunk and oversized paragraphs are handed
  to a recursive splitter (lines, then sentences, then words).
* **sentence**: units are sentences, no heading special-case.
* **semantic**: paragraphs as above, but oversized paragraphs are split
  into groups of lexically related sentences.  A paragraph with no
  sentence structure to group is handled exactly like *paragraph*.

Overlap is sized with the ``tokens * 4`` character heuristic from
:mod:`rag_ingest.ingestion.tokens` and snapped to a word boundary.
"""

from __future__ import annotations

import logging
import re
from typing import Callable, NamedTuple

from langchain_text_splitters import RecursiveCharacterTextSplitter

from rag_ingest.ingestion.models import ChunkingOptions, ChunkingStrategy, DocumentChunk
from rag_ingest.ingestion.tokens import (
    CHARS_PER_TOKEN,
    LONG_WORD_LENGTH,
    LONG_WORD_SURCHARGE,
    estimate_tokens,
    tokens_to_chars,
)

logger = logging.getLogger(__name__)

PARAGRAPH_SEPARATOR = "\n\n"
SENTENCE_SEPARATOR = " "

# Minimum Jaccard overlap between a sentence and its running group before
# the semantic strategy opens a new group.
SEMANTIC_SIMILARITY_THRESHOLD = 0.1

_PARAGRAPH_SPLIT = re.compile(r"\n\s*\n")
_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+")
_HEADING = re.compile(r"^#{1,6}\s")
_WORD = re.compile(r"\w+")


def is_heading(paragraph: str) -> bool:
    return bool(_HEADING.match(paragraph))


def split_paragraphs(text: str) -> list[str]:
    return [p.strip() for p in _PARAGRAPH_SPLIT.split(text) if p.strip()]


def split_sentences(text: str) -> list[str]:
    return [s.strip() for s in _SENTENCE_SPLIT.split(text) if s.strip()]


def overlap_tail(text: str, overlap_tokens: int) -> str:
    """Return the last ~*overlap_tokens* of *text*, starting on a word boundary."""
    if overlap_tokens <= 0 or not text:
        return ""
    max_chars = tokens_to_chars(overlap_tokens)
    if len(text) <= max_chars:
        return text.strip()
    tail = text[-max_chars:]
    space = tail.find(" ")
    if space != -1:
        tail = tail[space + 1 :]
    return tail.strip()


def lexical_similarity(a: str, b: str) -> float:
    """Jaccard similarity over lower-cased words longer than two characters."""
    words_a = {w for w in _WORD.findall(a.lower()) if len(w) > 2}
    words_b = {w for w in _WORD.findall(b.lower()) if len(w) > 2}
    if not words_a or not words_b:
        return 0.0
    return len(words_a & words_b) / len(words_a | words_b)


class _Piece(NamedTuple):
    content: str
    kind: str
    overlap_chars: int


class _ChunkAccumulator:
    """Running buffer that turns a stream of text units into chunks."""

    def __init__(self, options: ChunkingOptions) -> None:
        self.options = options
        self.pieces: list[_Piece] = []
        self._buffer = ""
        self._overlap_chars = 0
        self._kind = ""

    def _fits(self, unit: str, separator: str) -> bool:
        return estimate_tokens(f"{self._buffer}{separator}{unit}") <= self.options.chunk_size

    def add(self, unit: str, separator: str, kind: str) -> None:
        """Append *unit*, flushing first (with overlap) when it would overflow."""
        if self._buffer and not self._fits(unit, separator):
            previous = self._buffer
            self.flush()
            tail = overlap_tail(previous, self.options.chunk_overlap)
            # The overlap is dropped when it would push the new chunk over the bound.
            if tail and estimate_tokens(f"{tail}{separator}{unit}") <= self.options.chunk_size:
                self._buffer = tail
                self._overlap_chars = len(tail) + len(separator)
                self._kind = kind

        if self._buffer:
            self._buffer = f"{self._buffer}{separator}{unit}"
        else:
            self._buffer = unit
            self._kind = kind

    def start(self, unit: str, kind: str) -> None:
        """Flush without overlap and open a fresh chunk with *unit*."""
        self.flush()
        self.add(unit, PARAGRAPH_SEPARATOR, kind)

    def flush(self) -> None:
        content = self._buffer.strip()
        if content:
            self.pieces.append(_Piece(content, self._kind, self._overlap_chars))
        self._buffer = ""
        self._overlap_chars = 0

    def emit(self, contents: list[str], kind: str) -> None:
        """Flush, then append pre-split *contents* as chunks of their own."""
        self.flush()
        self.pieces.extend(_Piece(c.strip(), kind, 0) for c in contents if c.strip())

    def finish(self) -> list[_Piece]:
        self.flush()
        return self.pieces


# Separators tried in order for units that exceed the chunk size.
OVERSIZE_SEPARATORS = ["\n", ". ", " ", ""]

# Rounding slack between the additive split measure and estimate_tokens.
_SPLIT_SLACK_TOKENS = 2


def _split_measure(text: str) -> float:
    """Additive form of :func:`estimate_tokens`, used while merging split pieces."""
    long_words = sum(1 for word in text.split() if len(word) > LONG_WORD_LENGTH)
    return len(text) / CHARS_PER_TOKEN + long_words * LONG_WORD_SURCHARGE


def _oversize_splitter(options: ChunkingOptions) -> RecursiveCharacterTextSplitter:
    budget = max(1, options.chunk_size - _SPLIT_SLACK_TOKENS)
    return RecursiveCharacterTextSplitter(
        chunk_size=budget,
        chunk_overlap=min(options.chunk_overlap, budget - 1),
        length_function=_split_measure,
        separators=OVERSIZE_SEPARATORS,
    )


def _add_bounded(acc: _ChunkAccumulator, unit: str, separator: str, kind: str) -> None:
    if estimate_tokens(unit) <= acc.options.chunk_size:
        acc.add(unit, separator, kind)
        return
    pieces = _oversize_splitter(acc.options).split_text(unit)
    logger.debug("Split oversized %s unit into %d pieces", kind, len(pieces))
    acc.emit(pieces, kind)


# -- strategies ---------------------------------------------------------------


def _chunk_paragraphs(text: str, options: ChunkingOptions) -> list[_Piece]:
    acc = _ChunkAccumulator(options)
    for paragraph in split_paragraphs(text):
        if options.preserve_headers and is_heading(paragraph):
            acc.start(paragraph, "section")
        elif estimate_tokens(paragraph) > options.chunk_size:
            _add_bounded(acc, paragraph, PARAGRAPH_SEPARATOR, "lines")
        else:
            acc.add(paragraph, PARAGRAPH_SEPARATOR, "paragraph")
    return acc.finish()


def _chunk_sentences(text: str, options: ChunkingOptions) -> list[_Piece]:
    acc = _ChunkAccumulator(options)
    for sentence in split_sentences(text):
        _add_bounded(acc, sentence, SENTENCE_SEPARATOR, "sentence")
    return acc.finish()


def _group_sentences(sentences: list[str], options: ChunkingOptions) -> list[tuple[str, bool]]:
    """Group consecutive sentences; the flag marks groups opened by topic drift."""
    groups: list[tuple[str, bool]] = []
    current: list[str] = []
    current_tokens = 0
    opened_by_drift = False
    min_group_tokens = options.chunk_size // 4

    for sentence in sentences:
        sentence_tokens = estimate_tokens(sentence)
        if current:
            drifted = (
                current_tokens >= min_group_tokens
                and lexical_similarity(sentence, " ".join(current)) < SEMANTIC_SIMILARITY_THRESHOLD
            )
            if drifted or current_tokens + sentence_tokens > options.chunk_size:
                groups.append((" ".join(current), opened_by_drift))
                current, current_tokens = [], 0
                opened_by_drift = drifted
        current.append(sentence)
        current_tokens += sentence_tokens

    if current:
        groups.append((" ".join(current), opened_by_drift))
    return groups


def _chunk_semantic(text: str, options: ChunkingOptions) -> list[_Piece]:
    acc = _ChunkAccumulator(options)
    for paragraph in split_paragraphs(text):
        if options.preserve_headers and is_heading(paragraph):
            acc.start(paragraph, "section")
            continue
        if estimate_tokens(paragraph) <= options.chunk_size:
            acc.add(paragraph, PARAGRAPH_SEPARATOR, "paragraph")
            continue

        sentences = split_sentences(paragraph)
        if len(sentences) < 2:
            _add_bounded(acc, paragraph, PARAGRAPH_SEPARATOR, "paragraph")
            continue
        for i, (group, opened_by_drift) in enumerate(_group_sentences(sentences, options)):
            if opened_by_drift:
                acc.start(group, "sentence-group")
            else:
                separator = PARAGRAPH_SEPARATOR if i == 0 else SENTENCE_SEPARATOR
                _add_bounded(acc, group, separator, "sentence-group")
    return acc.finish()


_STRATEGIES: dict[ChunkingStrategy, Callable[[str, ChunkingOptions], list[_Piece]]] = {
    ChunkingStrategy.PARAGRAPH: _chunk_paragraphs,
    ChunkingStrategy.SENTENCE: _chunk_sentences,
    ChunkingStrategy.SEMANTIC: _chunk_semantic,
}


# -- public API ---------------------------------------------------------------


def chunk_text(
    text: str,
    options: ChunkingOptions | None = None,
    *,
    document_id: str = "document",
) -> list[DocumentChunk]:
    """Split *text* into bounded, overlapping chunks.

    Parameters
    ----------
    text:
        Normalized document text (Markdown or plain text).
    options:
        Chunk size / overlap (estimated tokens), strategy and header handling.
    document_id:
        Owner of the chunks; chunk ids are ``f"{document_id}_{index}"``.

    Returns
    -------
    list[DocumentChunk]
        Chunks with contiguous 0-based ``chunk_index`` in reading order.
    """
    options = options or ChunkingOptions()
    if not text or not text.strip():
        return []

    normalized = text.replace("\r\n", "\n").replace("\r", "\n")
    pieces = _STRATEGIES[options.strategy](normalized, options)

    chunks: list[DocumentChunk] = []
    for index, piece in enumerate(pieces):
        metadata: dict[str, object] = {"strategy": options.strategy.value, "type": piece.kind}
        if piece.overlap_chars:
            metadata["overlap_chars"] = piece.overlap_chars
        chunks.append(
            DocumentChunk(
                id=f"{document_id}_{index}",
                document_id=document_id,
                chunk_index=index,
                content=piece.content,
                token_count=estimate_tokens(piece.content),
                metadata=metadata,
            )
        )

    logger.debug(
        "Chunked document %s into %d chunks (strategy=%s, size=%d, overlap=%d)",
        document_id,
        len(chunks),
        options.strategy.value,
        options.chunk_size,
        options.chunk_overlap,
    )
    return chunks
