"""Chroma implementation of the vector-store abstraction."""

from __future__ import annotations

import logging
from typing import Any

import chromadb

from rag_ingest.exceptions import StorageFailed
from rag_ingest.retrieval.base import VectorStoreBase
from rag_ingest.retrieval.models import MetadataFilter, VectorRecord

logger = logging.getLogger(__name__)

_OP_MAP = {
    "eq": "$eq",
    "ne": "$ne",
    "gt": "$gt",
    "gte": "$gte",
    "lt": "$lt",
    "lte": "$lte",
    "in": "$in",
    "nin": "$nin",
}


def _build_chroma_where(filters: list[MetadataFilter]) -> dict[str, Any] | None:
    """Convert a list of :class:`MetadataFilter` to Chroma ``where`` syntax."""
    if not filters:
        return None

    clauses: list[dict[str, Any]] = []
    for f in filters:
        chroma_op = _OP_MAP.get(f.operator)
        if chroma_op is None:
            raise ValueError(f"Unsupported filter operator: {f.operator!r}")
        clauses.append({f.field: {chroma_op: f.value}})

    if len(clauses) == 1:
        return clauses[0]
    return {"$and": clauses}


def _flat_metadata(metadata: dict[str, Any]) -> dict[str, Any]:
    # Chroma metadata values must be flat str/int/float/bool
    return {k: v for k, v in metadata.items() if isinstance(v, (str, int, float, bool))}


class ChromaVectorStore(VectorStoreBase):
    """Chroma-backed vector store using cosine distance.

    Parameters
    ----------
    collection_name:
        Name of the Chroma collection.
    host:
        Chroma server hostname.
    port:
        Chroma server port.
    client:
        Pre-built Chroma client; overrides *host* / *port*.
    """

    def __init__(
        self,
        collection_name: str,
        *,
        host: str = "localhost",
        port: int = 8000,
        client: Any | None = None,
    ) -> None:
        super().__init__(collection_name)
        self._client = client if client is not None else chromadb.HttpClient(host=host, port=port)
        self._collection = self._client.get_or_create_collection(
            name=collection_name,
            metadata={"hnsw:space": "cosine"},
        )

    # -- VectorStoreBase overrides --------------------------------------------

    def upsert(self, records: list[VectorRecord]) -> None:
        if not records:
            return
        try:
            self._collection.upsert(
                ids=[r.id for r in records],
                embeddings=[r.embedding for r in records],
                documents=[r.content for r in records],
                metadatas=[_flat_metadata(r.metadata) for r in records],
            )
        except Exception as exc:
            raise StorageFailed(f"Chroma upsert failed: {exc}", {"collection": self.collection_name}) from exc

    def get(self, ids: list[str]) -> list[VectorRecord]:
        if not ids:
            return []
        try:
            found = self._collection.get(ids=ids, include=["embeddings", "documents", "metadatas"])
        except Exception as exc:
            raise StorageFailed(f"Chroma get failed: {exc}", {"collection": self.collection_name}) from exc

        embeddings = found.get("embeddings")
        if embeddings is None:
            embeddings = []
        return [
            VectorRecord(id=record_id, embedding=[float(x) for x in vector], content=content or "", metadata=meta or {})
            for record_id, vector, content, meta in zip(
                found.get("ids") or [], embeddings, found.get("documents") or [], found.get("metadatas") or []
            )
        ]

    def similarity_search(
        self,
        query_embedding: list[float],
        *,
        k: int = 5,
        filters: list[MetadataFilter] | None = None,
    ) -> list[dict[str, Any]]:
        where = _build_chroma_where(filters) if filters else None

        results = self._collection.query(
            query_embeddings=[query_embedding],
            n_results=k,
            where=where,
            include=["documents", "metadatas", "distances"],
        )

        hits: list[dict[str, Any]] = []
        ids = (results.get("ids") or [[]])[0]
        docs = (results.get("documents") or [[]])[0]
        metas = (results.get("metadatas") or [[]])[0]
        distances = (results.get("distances") or [[]])[0]

        for chunk_id, content, meta, dist in zip(ids, docs, metas, distances):
            # Cosine distance is 1 - cosine similarity; clamp into [0, 1].
            score = min(1.0, max(0.0, 1.0 - dist))
            hits.append(
                {
                    "id": chunk_id,
                    "content": content or "",
                    "score": score,
                    "metadata": meta or {},
                }
            )
        hits.sort(key=lambda h: h["score"], reverse=True)
        return hits

    def delete(self, ids: list[str]) -> None:
        if ids:
            self._collection.delete(ids=ids)

    def delete_where(self, filters: list[MetadataFilter]) -> None:
        where = _build_chroma_where(filters)
        if where is None:
            raise ValueError("delete_where requires at least one filter")
        self._collection.delete(where=where)

    def health_check(self) -> bool:
        try:
            self._client.heartbeat()
            return True
        except Exception:
            logger.warning("Chroma health-check failed", exc_info=True)
            return False
