"""Semantic search over stored chunk vectors.

Usage::

    search = SemanticSearch(generator, vector_store)
    results = await search.search("refund policy", organization_id="org-1")
    for r in results:
        print(f"{r.similarity:.2f}", r.document_title, r.content[:80])
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from rag_ingest.embedding.generator import EmbeddingGenerator
from rag_ingest.retrieval.base import VectorStoreBase
from rag_ingest.retrieval.models import MetadataFilter, SemanticSearchResult

logger = logging.getLogger(__name__)


class SemanticSearch:
    """Embed a query and run filtered nearest-neighbour retrieval.

    Parameters
    ----------
    generator:
        Produces the query embedding (single-item path).
    store:
        Vector-store backend holding chunk vectors.
    match_threshold:
        Default minimum similarity; results below it are discarded.
    match_count:
        Default maximum number of results.
    """

    def __init__(
        self,
        generator: EmbeddingGenerator,
        store: VectorStoreBase,
        *,
        match_threshold: float = 0.7,
        match_count: int = 10,
    ) -> None:
        self._generator = generator
        self._store = store
        self.match_threshold = match_threshold
        self.match_count = match_count

    # -- public API -----------------------------------------------------------

    async def search(
        self,
        query: str,
        *,
        organization_id: str | None = None,
        document_type: str | None = None,
        match_threshold: float | None = None,
        match_count: int | None = None,
    ) -> list[SemanticSearchResult]:
        """Return results ordered by similarity, descending.

        An empty or whitespace-only *query* returns ``[]`` without calling
        the embedding provider.
        """
        if not query or not query.strip():
            return []

        threshold = self.match_threshold if match_threshold is None else match_threshold
        count = match_count or self.match_count

        embedding = await self._generator.generate_query_embedding(query.strip(), organization_id=organization_id)
        return await self.search_by_embedding(
            embedding,
            organization_id=organization_id,
            document_type=document_type,
            match_threshold=threshold,
            match_count=count,
        )

    async def search_by_embedding(
        self,
        embedding: list[float],
        *,
        organization_id: str | None = None,
        document_type: str | None = None,
        match_threshold: float | None = None,
        match_count: int | None = None,
    ) -> list[SemanticSearchResult]:
        """Same as :meth:`search` but accepts a pre-computed embedding."""
        threshold = self.match_threshold if match_threshold is None else match_threshold
        count = match_count or self.match_count

        filters: list[MetadataFilter] = []
        if organization_id:
            filters.append(MetadataFilter.equals("organization_id", organization_id))
        if document_type:
            filters.append(MetadataFilter.equals("document_type", document_type))

        raw_hits = await asyncio.to_thread(
            self._store.similarity_search, embedding, k=count, filters=filters or None
        )
        results = self._to_results(raw_hits, threshold)[:count]
        logger.debug("Semantic search returned %d/%d hits above %.2f", len(results), len(raw_hits), threshold)
        return results

    async def search_grouped(self, query: str, **options: Any) -> dict[str, list[SemanticSearchResult]]:
        """Group results by source document, each group sorted by similarity.

        Groups are ordered by their best match.
        """
        grouped: dict[str, list[SemanticSearchResult]] = {}
        for result in await self.search(query, **options):
            grouped.setdefault(result.document_id, []).append(result)
        for members in grouped.values():
            members.sort(key=lambda r: r.similarity, reverse=True)
        return dict(sorted(grouped.items(), key=lambda item: item[1][0].similarity, reverse=True))

    # -- internals ------------------------------------------------------------

    @staticmethod
    def _to_results(raw_hits: list[dict[str, Any]], threshold: float) -> list[SemanticSearchResult]:
        results: list[SemanticSearchResult] = []
        for hit in raw_hits:
            score = float(hit.get("score") or 0.0)
            if score < threshold:
                continue

            meta = hit.get("metadata", {})
            results.append(
                SemanticSearchResult(
                    chunk_id=hit["id"],
                    document_id=meta.get("document_id", ""),
                    content=hit.get("content", ""),
                    similarity=score,
                    document_title=meta.get("title", ""),
                    document_type=meta.get("document_type"),
                    chunk_index=meta.get("chunk_index"),
                    document_path=meta.get("path") or None,
                )
            )
        results.sort(key=lambda r: r.similarity, reverse=True)
        return results
