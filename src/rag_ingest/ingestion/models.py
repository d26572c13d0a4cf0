"""Domain models produced by conversion and chunking."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, model_validator


class ChunkingStrategy(str, Enum):
    PARAGRAPH = "paragraph"
    SENTENCE = "sentence"
    SEMANTIC = "semantic"


class ChunkingOptions(BaseModel):
    """Chunker parameters.  Sizes are expressed in estimated tokens."""

    chunk_size: int = Field(default=500, gt=0)
    chunk_overlap: int = Field(default=50, ge=0)
    strategy: ChunkingStrategy = ChunkingStrategy.PARAGRAPH
    preserve_headers: bool = True

    @model_validator(mode="after")
    def _overlap_below_size(self) -> ChunkingOptions:
        if self.chunk_overlap >= self.chunk_size:
            raise ValueError(
                f"chunk_overlap ({self.chunk_overlap}) must be smaller than chunk_size ({self.chunk_size})"
            )
        return self


class DocumentChunk(BaseModel):
    """A bounded slice of a document's normalized text.

    ``metadata`` always carries ``strategy`` and ``type``; chunks opened by a
    size-triggered flush also record ``overlap_chars``, the length of the
    prefix copied from the previous chunk.
    """

    id: str
    document_id: str
    chunk_index: int
    content: str
    token_count: int
    metadata: dict[str, Any] = Field(default_factory=dict)


class ConversionResult(BaseModel):
    """Normalized text plus metadata returned by a format converter."""

    content: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    original_type: str
    from_cache: bool = Field(default=False, exclude=True)

    @property
    def warning(self) -> str | None:
        return self.metadata.get("warning")

    @property
    def degraded(self) -> bool:
        return "warning" in self.metadata
