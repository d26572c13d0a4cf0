"""Unit tests for the retrieval layer: models, vector stores and SemanticSearch."""

from __future__ import annotations

from typing import Any

import pytest

from conftest import FakeEmbeddingProvider, keyword_vector
from rag_ingest.embedding.generator import EmbeddingGenerator
from rag_ingest.retrieval.base import VectorStoreBase
from rag_ingest.retrieval.memory_store import InMemoryVectorStore, cosine_similarity, matches
from rag_ingest.retrieval.models import MetadataFilter, VectorRecord
from rag_ingest.retrieval.search import SemanticSearch

# ── Fake vector store for deterministic testing ─────────────────────────


class FakeVectorStore(VectorStoreBase):
    """In-memory fake that returns canned results."""

    def __init__(self, hits: list[dict[str, Any]] | None = None) -> None:
        super().__init__("test-collection")
        self._hits: list[dict[str, Any]] = hits or []
        self.last_filters: list[MetadataFilter] | None = None
        self.last_k: int | None = None

    def upsert(self, records: list[VectorRecord]) -> None:
        raise NotImplementedError

    def get(self, ids: list[str]) -> list[VectorRecord]:
        raise NotImplementedError

    def similarity_search(
        self,
        query_embedding: list[float],
        *,
        k: int = 5,
        filters: list[MetadataFilter] | None = None,
    ) -> list[dict[str, Any]]:
        self.last_filters = filters
        self.last_k = k
        return self._hits[:k]

    def delete(self, ids: list[str]) -> None:
        raise NotImplementedError

    def delete_where(self, filters: list[MetadataFilter]) -> None:
        raise NotImplementedError

    def health_check(self) -> bool:
        return True


# ── Fixtures ────────────────────────────────────────────────────────────

SAMPLE_HITS: list[dict[str, Any]] = [
    {
        "id": "guide_3",
        "content": "Refunds are issued to the original payment method.",
        "score": 0.92,
        "metadata": {
            "document_id": "guide",
            "title": "Returns guide",
            "document_type": "policy",
            "chunk_index": 3,
            "path": "/policies/returns.md",
        },
    },
    {
        "id": "faq_1",
        "content": "Refund requests need the order number.",
        "score": 0.87,
        "metadata": {"document_id": "faq", "title": "FAQ", "document_type": "faq", "chunk_index": 1},
    },
    {
        "id": "guide_4",
        "content": "Exchanges follow the refund rules.",
        "score": 0.81,
        "metadata": {"document_id": "guide", "title": "Returns guide", "document_type": "policy", "chunk_index": 4},
    },
    {
        "id": "handbook_0",
        "content": "Vacation days accrue monthly.",
        "score": 0.45,
        "metadata": {"document_id": "handbook", "title": "Handbook", "chunk_index": 0},
    },
]


@pytest.fixture()
def fake_store() -> FakeVectorStore:
    return FakeVectorStore(hits=SAMPLE_HITS)


@pytest.fixture()
def search(generator: EmbeddingGenerator, fake_store: FakeVectorStore) -> SemanticSearch:
    return SemanticSearch(generator, fake_store, match_threshold=0.5, match_count=10)


# ── Model tests ─────────────────────────────────────────────────────────


class TestMetadataFilter:
    def test_equals_factory(self) -> None:
        f = MetadataFilter.equals("organization_id", "org-1")
        assert (f.field, f.operator, f.value) == ("organization_id", "eq", "org-1")

    def test_one_of_and_at_least(self) -> None:
        assert MetadataFilter.one_of("document_type", ["faq", "policy"]).operator == "in"
        assert MetadataFilter.at_least("chunk_index", 4).operator == "gte"

    def test_matches_operators(self) -> None:
        meta = {"chunk_index": 4, "document_type": "faq"}
        assert matches(meta, MetadataFilter.at_least("chunk_index", 4))
        assert not matches(meta, MetadataFilter(field="chunk_index", operator="lt", value=4))
        assert matches(meta, MetadataFilter.one_of("document_type", ["faq"]))
        assert matches(meta, MetadataFilter.not_equals("missing", "x"))
        assert not matches(meta, MetadataFilter.equals("missing", "x"))
        with pytest.raises(ValueError):
            matches(meta, MetadataFilter(field="chunk_index", operator="regex", value=".*"))


# ── In-memory store ─────────────────────────────────────────────────────


class TestInMemoryVectorStore:
    def test_upsert_overwrites_by_id(self) -> None:
        store = InMemoryVectorStore()
        store.upsert([VectorRecord(id="a", embedding=[1.0, 0.0], content="old")])
        store.upsert([VectorRecord(id="a", embedding=[1.0, 0.0], content="new")])
        assert len(store.records) == 1
        assert store.records["a"].content == "new"

    def test_search_orders_and_filters(self) -> None:
        store = InMemoryVectorStore()
        store.upsert(
            [
                VectorRecord(id="x", embedding=[1.0, 0.0], content="x", metadata={"organization_id": "o1"}),
                VectorRecord(id="y", embedding=[0.7, 0.7], content="y", metadata={"organization_id": "o1"}),
                VectorRecord(id="z", embedding=[1.0, 0.0], content="z", metadata={"organization_id": "o2"}),
            ]
        )

        hits = store.similarity_search([1.0, 0.0], k=5, filters=[MetadataFilter.equals("organization_id", "o1")])

        assert [h["id"] for h in hits] == ["x", "y"]
        assert hits[0]["score"] == pytest.approx(1.0)

    def test_delete_where_requires_filters(self) -> None:
        with pytest.raises(ValueError):
            InMemoryVectorStore().delete_where([])

    def test_cosine_of_zero_vector(self) -> None:
        assert cosine_similarity([0.0, 0.0], [1.0, 0.0]) == 0.0


# ── SemanticSearch tests ────────────────────────────────────────────────


class TestSemanticSearch:
    @pytest.mark.asyncio
    async def test_results_are_ordered_and_thresholded(self, search: SemanticSearch) -> None:
        results = await search.search("refund")

        assert [r.chunk_id for r in results] == ["guide_3", "faq_1", "guide_4"]
        first = results[0]
        assert (first.document_id, first.document_title, first.chunk_index) == ("guide", "Returns guide", 3)
        assert first.document_path == "/policies/returns.md"
        assert results[1].document_path is None

    @pytest.mark.asyncio
    async def test_explicit_threshold_and_count(self, search: SemanticSearch, fake_store: FakeVectorStore) -> None:
        results = await search.search("refund", match_threshold=0.9, match_count=2)

        assert fake_store.last_k == 2
        assert [r.chunk_id for r in results] == ["guide_3"]

    @pytest.mark.asyncio
    async def test_filters_forwarded(self, search: SemanticSearch, fake_store: FakeVectorStore) -> None:
        await search.search("refund", organization_id="org-1", document_type="faq")

        assert fake_store.last_filters is not None
        assert [(f.field, f.value) for f in fake_store.last_filters] == [
            ("organization_id", "org-1"),
            ("document_type", "faq"),
        ]

    @pytest.mark.asyncio
    async def test_empty_query_skips_the_provider(
        self, search: SemanticSearch, provider: FakeEmbeddingProvider
    ) -> None:
        assert await search.search("   ") == []
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_missing_metadata_fields_handled(self, generator: EmbeddingGenerator) -> None:
        store = FakeVectorStore(hits=[{"id": "x", "content": "text", "score": 0.8, "metadata": {}}])
        results = await SemanticSearch(generator, store).search("query")
        assert results[0].document_id == ""
        assert results[0].chunk_index is None

    @pytest.mark.asyncio
    async def test_grouped_by_document(self, search: SemanticSearch) -> None:
        grouped = await search.search_grouped("refund")

        assert list(grouped) == ["guide", "faq"]
        assert [r.chunk_id for r in grouped["guide"]] == ["guide_3", "guide_4"]

    @pytest.mark.asyncio
    async def test_against_stored_vectors(self, generator: EmbeddingGenerator, vector_store: InMemoryVectorStore) -> None:
        texts = {
            "refunds_0": "Refund rules: every refund is paid in five days.",
            "shipping_0": "Shipping takes two days; shipping is tracked.",
        }
        vector_store.upsert(
            [
                VectorRecord(
                    id=chunk_id,
                    embedding=keyword_vector(text),
                    content=text,
                    metadata={"document_id": chunk_id.split("_")[0], "organization_id": "org-1"},
                )
                for chunk_id, text in texts.items()
            ]
        )
        search = SemanticSearch(generator, vector_store, match_threshold=0.7)

        results = await search.search("refund", organization_id="org-1")

        assert [r.chunk_id for r in results] == ["refunds_0"]
        assert await search.search("refund", organization_id="org-2") == []


# ── Chroma store tests ──────────────────────────────────────────────────


class FakeCollection:
    def __init__(self) -> None:
        self.upserts: list[dict[str, Any]] = []
        self.deletes: list[dict[str, Any]] = []
        self.query_result: dict[str, Any] = {}
        self.get_result: dict[str, Any] = {}

    def upsert(self, **kwargs: Any) -> None:
        self.upserts.append(kwargs)

    def query(self, **kwargs: Any) -> dict[str, Any]:
        self.last_query = kwargs
        return self.query_result

    def get(self, **kwargs: Any) -> dict[str, Any]:
        self.last_get = kwargs
        return self.get_result

    def delete(self, **kwargs: Any) -> None:
        self.deletes.append(kwargs)


class FakeChromaClient:
    def __init__(self, healthy: bool = True) -> None:
        self.collection = FakeCollection()
        self.healthy = healthy
        self.created: dict[str, Any] = {}

    def get_or_create_collection(self, name: str, metadata: dict[str, Any]) -> FakeCollection:
        self.created = {"name": name, "metadata": metadata}
        return self.collection

    def heartbeat(self) -> int:
        if not self.healthy:
            raise ConnectionError("chroma unreachable")
        return 1


class TestChromaVectorStore:
    @pytest.fixture(autouse=True)
    def _require_chromadb(self) -> None:
        pytest.importorskip("chromadb")

    def test_single_filter(self) -> None:
        from rag_ingest.retrieval.chroma_store import _build_chroma_where

        assert _build_chroma_where([MetadataFilter.equals("organization_id", "o1")]) == {
            "organization_id": {"$eq": "o1"}
        }

    def test_multiple_filters_produce_and(self) -> None:
        from rag_ingest.retrieval.chroma_store import _build_chroma_where

        where = _build_chroma_where(
            [MetadataFilter.equals("document_id", "d"), MetadataFilter.at_least("chunk_index", 5)]
        )
        assert where == {"$and": [{"document_id": {"$eq": "d"}}, {"chunk_index": {"$gte": 5}}]}

    def test_none_when_empty_and_bad_operator(self) -> None:
        from rag_ingest.retrieval.chroma_store import _build_chroma_where

        assert _build_chroma_where([]) is None
        with pytest.raises(ValueError, match="Unsupported filter operator"):
            _build_chroma_where([MetadataFilter(field="x", operator="regex", value=".*")])

    def test_collection_uses_cosine_space(self) -> None:
        from rag_ingest.retrieval.chroma_store import ChromaVectorStore

        client = FakeChromaClient()
        ChromaVectorStore("chunks", client=client)
        assert client.created == {"name": "chunks", "metadata": {"hnsw:space": "cosine"}}

    def test_upsert_flattens_metadata(self) -> None:
        from rag_ingest.retrieval.chroma_store import ChromaVectorStore

        client = FakeChromaClient()
        store = ChromaVectorStore("chunks", client=client)
        store.upsert(
            [VectorRecord(id="d_0", embedding=[0.1], content="c", metadata={"chunk_index": 0, "tags": ["a"]})]
        )
        assert client.collection.upserts[0]["metadatas"] == [{"chunk_index": 0}]

    def test_distances_become_similarities(self) -> None:
        from rag_ingest.retrieval.chroma_store import ChromaVectorStore

        client = FakeChromaClient()
        client.collection.query_result = {
            "ids": [["far", "near"]],
            "documents": [["far text", "near text"]],
            "metadatas": [[{"document_id": "a"}, None]],
            "distances": [[1.4, 0.1]],
        }
        store = ChromaVectorStore("chunks", client=client)

        hits = store.similarity_search([0.1], k=2, filters=[MetadataFilter.equals("organization_id", "o1")])

        assert [h["id"] for h in hits] == ["near", "far"]
        assert hits[0]["score"] == pytest.approx(0.9)
        assert hits[1]["score"] == 0.0
        assert hits[0]["metadata"] == {}
        assert client.collection.last_query["where"] == {"organization_id": {"$eq": "o1"}}

    def test_delete_where_and_health(self) -> None:
        from rag_ingest.retrieval.chroma_store import ChromaVectorStore

        client = FakeChromaClient(healthy=False)
        store = ChromaVectorStore("chunks", client=client)
        store.delete_where([MetadataFilter.equals("document_id", "d")])

        assert client.collection.deletes == [{"where": {"document_id": {"$eq": "d"}}}]
        assert store.health_check() is False

    def test_get_rebuilds_records(self) -> None:
        from rag_ingest.retrieval.chroma_store import ChromaVectorStore

        client = FakeChromaClient()
        client.collection.get_result = {
            "ids": ["d_0"],
            "embeddings": [[0.5, 0.25]],
            "documents": ["text"],
            "metadatas": [{"document_id": "d"}],
        }
        store = ChromaVectorStore("chunks", client=client)

        [record] = store.get(["d_0", "d_9"])

        assert record == VectorRecord(id="d_0", embedding=[0.5, 0.25], content="text", metadata={"document_id": "d"})
        assert client.collection.last_get["ids"] == ["d_0", "d_9"]
        assert store.get([]) == []
