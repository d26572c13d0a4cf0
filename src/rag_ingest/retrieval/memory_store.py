"""Exact-search in-memory vector store for tests and local runs."""

from __future__ import annotations

import math
from typing import Any

from rag_ingest.retrieval.base import VectorStoreBase
from rag_ingest.retrieval.models import MetadataFilter, VectorRecord


def cosine_similarity(a: list[float], b: list[float]) -> float:
    dot = sum(x * y for x, y in zip(a, b))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    return dot / norm if norm else 0.0


def matches(metadata: dict[str, Any], flt: MetadataFilter) -> bool:
    """Evaluate one :class:`MetadataFilter` against a metadata dict."""
    if flt.field not in metadata:
        return flt.operator in ("ne", "nin")
    value = metadata[flt.field]
    op = flt.operator
    if op == "eq":
        return value == flt.value
    if op == "ne":
        return value != flt.value
    if op == "in":
        return value in flt.value
    if op == "nin":
        return value not in flt.value
    if op == "gt":
        return value > flt.value
    if op == "gte":
        return value >= flt.value
    if op == "lt":
        return value < flt.value
    if op == "lte":
        return value <= flt.value
    raise ValueError(f"Unsupported filter operator: {op!r}")


class InMemoryVectorStore(VectorStoreBase):
    def __init__(self, collection_name: str = "memory") -> None:
        super().__init__(collection_name)
        self.records: dict[str, VectorRecord] = {}

    def upsert(self, records: list[VectorRecord]) -> None:
        for record in records:
            self.records[record.id] = record

    def get(self, ids: list[str]) -> list[VectorRecord]:
        return [self.records[i] for i in ids if i in self.records]

    def similarity_search(
        self,
        query_embedding: list[float],
        *,
        k: int = 5,
        filters: list[MetadataFilter] | None = None,
    ) -> list[dict[str, Any]]:
        hits = [
            {
                "id": record.id,
                "content": record.content,
                "score": max(0.0, min(1.0, cosine_similarity(query_embedding, record.embedding))),
                "metadata": dict(record.metadata),
            }
            for record in self.records.values()
            if all(matches(record.metadata, f) for f in filters or [])
        ]
        hits.sort(key=lambda h: h["score"], reverse=True)
        return hits[:k]

    def delete(self, ids: list[str]) -> None:
        for record_id in ids:
            self.records.pop(record_id, None)

    def delete_where(self, filters: list[MetadataFilter]) -> None:
        if not filters:
            raise ValueError("delete_where requires at least one filter")
        doomed = [r.id for r in self.records.values() if all(matches(r.metadata, f) for f in filters)]
        self.delete(doomed)

    def health_check(self) -> bool:
        return True
