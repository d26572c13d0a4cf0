"""Unit tests for the chunker."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from rag_ingest.ingestion.chunker import (
    chunk_text,
    is_heading,
    lexical_similarity,
    overlap_tail,
    split_paragraphs,
    split_sentences,
)
from rag_ingest.ingestion.models import ChunkingOptions, ChunkingStrategy
from rag_ingest.ingestion.tokens import estimate_tokens


def _paragraph(number: int, words: int = 57) -> str:
    """398 characters of six-letter words: exactly 100 estimated tokens."""
    return " ".join(f"p{number:02d}w{w:02d}" for w in range(words))


TWELVE_PARAGRAPHS = "\n\n".join(_paragraph(n) for n in range(12))

REFUND_SENTENCES = (
    "Customers can request a refund for any order. "
    "The refund for an order is issued within five days. "
    "Refund requests for an order need the receipt."
)
CLUSTER_SENTENCES = (
    "Kubernetes schedules pods onto cluster nodes. "
    "Cluster nodes run pods managed by Kubernetes. "
    "Kubernetes restarts failed pods on healthy nodes."
)


class TestHelpers:
    def test_split_paragraphs_drops_blank_runs(self) -> None:
        assert split_paragraphs("one\n\n\n  \ntwo\n\nthree") == ["one", "two", "three"]

    def test_split_sentences(self) -> None:
        assert split_sentences("First one. Second one! Third?") == ["First one.", "Second one!", "Third?"]

    def test_is_heading(self) -> None:
        assert is_heading("## Setup")
        assert not is_heading("#hashtag")
        assert not is_heading("plain text")

    def test_overlap_tail_starts_on_word_boundary(self) -> None:
        text = "alpha beta gamma delta epsilon zeta eta theta"
        tail = overlap_tail(text, 3)
        assert text.endswith(tail)
        assert len(tail) <= 12
        assert text[len(text) - len(tail) - 1] == " "

    def test_overlap_tail_returns_short_text_whole(self) -> None:
        assert overlap_tail("short", 10) == "short"

    def test_overlap_tail_disabled(self) -> None:
        assert overlap_tail("anything at all", 0) == ""

    def test_lexical_similarity(self) -> None:
        assert lexical_similarity("refund the order", "order refund policy") == pytest.approx(2 / 4)
        assert lexical_similarity("", "anything") == 0.0


class TestChunkingOptions:
    def test_overlap_must_be_smaller_than_size(self) -> None:
        with pytest.raises(ValidationError):
            ChunkingOptions(chunk_size=100, chunk_overlap=100)

    def test_defaults(self) -> None:
        options = ChunkingOptions()
        assert (options.chunk_size, options.chunk_overlap, options.strategy) == (500, 50, ChunkingStrategy.PARAGRAPH)


class TestParagraphStrategy:
    def test_empty_text_produces_no_chunks(self) -> None:
        assert chunk_text("") == []
        assert chunk_text("  \n\n ") == []

    def test_short_text_is_a_single_chunk(self) -> None:
        chunks = chunk_text("Just one paragraph.", document_id="doc1")
        assert len(chunks) == 1
        assert chunks[0].id == "doc1_0"
        assert chunks[0].chunk_index == 0
        assert chunks[0].metadata == {"strategy": "paragraph", "type": "paragraph"}

    def test_twelve_hundred_tokens_make_three_overlapping_chunks(self) -> None:
        """12 x 100-token paragraphs with size 500 / overlap 50."""
        chunks = chunk_text(TWELVE_PARAGRAPHS, ChunkingOptions(chunk_size=500, chunk_overlap=50), document_id="d")

        assert [c.chunk_index for c in chunks] == [0, 1, 2]
        assert [c.id for c in chunks] == ["d_0", "d_1", "d_2"]
        for previous, current in zip(chunks, chunks[1:]):
            tail = overlap_tail(previous.content, 50)
            assert tail
            assert current.content.startswith(tail)
            assert previous.content.endswith(tail)
        assert all(c.token_count <= 500 for c in chunks)
        assert chunks[0].content.startswith("p00w00")
        assert chunks[-1].content.endswith("p11w56")

    def test_overlap_chars_recover_the_full_text(self) -> None:
        chunks = chunk_text(TWELVE_PARAGRAPHS, ChunkingOptions(chunk_size=500, chunk_overlap=50))

        rebuilt = chunks[0].content
        for chunk in chunks[1:]:
            rebuilt += "\n\n" + chunk.content[chunk.metadata["overlap_chars"] :]
        assert rebuilt == TWELVE_PARAGRAPHS
        assert "overlap_chars" not in chunks[0].metadata

    def test_zero_overlap_has_no_shared_text(self) -> None:
        chunks = chunk_text(TWELVE_PARAGRAPHS, ChunkingOptions(chunk_size=500, chunk_overlap=0))
        assert "\n\n".join(c.content for c in chunks) == TWELVE_PARAGRAPHS

    def test_headings_open_new_chunks(self) -> None:
        text = "# Guide\n\nIntro text.\n\n## Install\n\nRun the installer."
        chunks = chunk_text(text)

        assert [c.content for c in chunks] == ["# Guide\n\nIntro text.", "## Install\n\nRun the installer."]
        assert all(c.metadata["type"] == "section" for c in chunks)

    def test_headings_ignored_when_not_preserved(self) -> None:
        text = "# Guide\n\nIntro text.\n\n## Install\n\nRun the installer."
        chunks = chunk_text(text, ChunkingOptions(preserve_headers=False))
        assert len(chunks) == 1

    def test_oversized_paragraph_is_split_on_lines(self) -> None:
        lines = "\n".join(f"Line {i:02d} describes one configuration step." for i in range(40))
        options = ChunkingOptions(chunk_size=50, chunk_overlap=10)

        chunks = chunk_text(lines, options)

        assert len(chunks) > 1
        assert all(c.metadata["type"] == "lines" for c in chunks)
        assert all(estimate_tokens(c.content) <= options.chunk_size for c in chunks)
        assert "Line 00" in chunks[0].content
        assert "Line 39" in chunks[-1].content

    def test_unbroken_text_falls_back_to_words(self) -> None:
        text = " ".join(["word"] * 600)
        options = ChunkingOptions(chunk_size=40, chunk_overlap=5)

        chunks = chunk_text(text, options)

        assert len(chunks) > 1
        assert all(estimate_tokens(c.content) <= options.chunk_size for c in chunks)

    def test_long_words_stay_within_bounds(self) -> None:
        text = " ".join(["internationalization"] * 200)
        options = ChunkingOptions(chunk_size=30, chunk_overlap=5)

        chunks = chunk_text(text, options)

        assert len(chunks) > 1
        assert all(estimate_tokens(c.content) <= options.chunk_size for c in chunks)
        assert all(c.metadata["type"] == "lines" for c in chunks)

    def test_oversized_pieces_overlap(self) -> None:
        text = " ".join(f"w{i:03d}" for i in range(300))
        chunks = chunk_text(text, ChunkingOptions(chunk_size=40, chunk_overlap=10))

        for previous, current in zip(chunks, chunks[1:]):
            assert current.content.split()[0] in previous.content.split()

    def test_windows_line_endings_are_normalized(self) -> None:
        chunks = chunk_text("first\r\n\r\nsecond")
        assert chunks[0].content == "first\n\nsecond"


class TestSentenceStrategy:
    def test_chunks_hold_whole_sentences(self) -> None:
        sentences = [f"Sentence number {i} talks about topic {i}." for i in range(30)]
        options = ChunkingOptions(chunk_size=30, chunk_overlap=0, strategy=ChunkingStrategy.SENTENCE)

        chunks = chunk_text(" ".join(sentences), options)

        assert len(chunks) > 1
        assert all(c.metadata == {"strategy": "sentence", "type": "sentence"} for c in chunks)
        joined = " ".join(c.content for c in chunks)
        for sentence in sentences:
            assert sentence in joined

    def test_headings_are_not_special(self) -> None:
        options = ChunkingOptions(strategy=ChunkingStrategy.SENTENCE)
        chunks = chunk_text("# Title. Body sentence.", options)
        assert len(chunks) == 1


class TestSemanticStrategy:
    def test_topic_change_starts_a_new_chunk(self) -> None:
        text = f"{REFUND_SENTENCES} {CLUSTER_SENTENCES}"
        options = ChunkingOptions(chunk_size=60, chunk_overlap=10, strategy=ChunkingStrategy.SEMANTIC)

        chunks = chunk_text(text, options)

        assert len(chunks) == 2
        assert "refund" in chunks[0].content.lower()
        assert "kubernetes" not in chunks[0].content.lower()
        assert "kubernetes" in chunks[1].content.lower()
        assert "refund" not in chunks[1].content.lower()
        assert all(c.metadata["type"] == "sentence-group" for c in chunks)
        assert "overlap_chars" not in chunks[1].metadata

    def test_paragraph_strategy_mixes_the_same_topics(self) -> None:
        text = f"{REFUND_SENTENCES} {CLUSTER_SENTENCES}"
        options = ChunkingOptions(chunk_size=60, chunk_overlap=10)

        chunks = chunk_text(text, options)

        assert "kubernetes" in chunks[0].content.lower()
        assert "refund" in chunks[0].content.lower()

    def test_small_paragraphs_behave_like_paragraph_strategy(self) -> None:
        text = "First paragraph.\n\nSecond paragraph."
        semantic = chunk_text(text, ChunkingOptions(strategy=ChunkingStrategy.SEMANTIC))
        paragraph = chunk_text(text)
        assert [c.content for c in semantic] == [c.content for c in paragraph]
        assert semantic[0].metadata["strategy"] == "semantic"
