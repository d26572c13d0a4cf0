"""Domain models for vector records, search results and RAG context."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class MetadataFilter(BaseModel):
    """Declarative metadata filter for vector-store queries.

    Attributes
    ----------
    field:
        The metadata key to filter on (e.g. ``"organization_id"``).
    operator:
        Comparison operator: one of ``eq``, ``ne``, ``gt``, ``gte``,
        ``lt``, ``lte``, ``in``, ``nin``.
    value:
        The value (or list of values for ``in`` / ``nin``) to compare against.
    """

    field: str
    operator: str = "eq"
    value: Any = None

    # -- helpers for common filters ------------------------------------------

    @classmethod
    def equals(cls, field: str, value: Any) -> MetadataFilter:
        return cls(field=field, operator="eq", value=value)

    @classmethod
    def not_equals(cls, field: str, value: Any) -> MetadataFilter:
        return cls(field=field, operator="ne", value=value)

    @classmethod
    def one_of(cls, field: str, values: list[Any]) -> MetadataFilter:
        return cls(field=field, operator="in", value=values)

    @classmethod
    def at_least(cls, field: str, value: Any) -> MetadataFilter:
        return cls(field=field, operator="gte", value=value)


class VectorRecord(BaseModel):
    """One chunk's vector plus the metadata needed to filter and cite it."""

    id: str
    embedding: list[float]
    content: str
    metadata: dict[str, Any] = Field(default_factory=dict)


class SemanticSearchResult(BaseModel):
    chunk_id: str
    document_id: str
    content: str
    similarity: float
    document_title: str = ""
    document_type: str | None = None
    chunk_index: int | None = None
    document_path: str | None = None


class SourceReference(BaseModel):
    """Citation record for a chunk that contributed to a RAG context."""

    document_id: str
    title: str = ""
    path: str | None = None
    chunk_index: int | None = None
    similarity: float


class RAGContext(BaseModel):
    query: str
    results: list[SemanticSearchResult] = Field(default_factory=list)
    context_text: str = ""
    sources: list[SourceReference] = Field(default_factory=list)
