"""Shared pytest configuration, fakes and fixtures."""

from __future__ import annotations

from types import SimpleNamespace
from typing import Any

import pytest

from rag_ingest.embedding.generator import EmbeddingGenerator
from rag_ingest.embedding.providers import EmbeddingProvider
from rag_ingest.embedding.store import EmbeddingStore
from rag_ingest.metrics import IngestionMetrics
from rag_ingest.retrieval.memory_store import InMemoryVectorStore
from rag_ingest.storage.memory import InMemoryDocumentRepository

VOCABULARY = ("refund", "shipping", "warranty", "invoice", "kubernetes", "vacation")


def keyword_vector(text: str) -> list[float]:
    """Bag-of-keywords embedding; the constant last component avoids zero vectors."""
    lowered = text.lower()
    return [float(lowered.count(word)) for word in VOCABULARY] + [0.01]


class FakeEmbeddingProvider(EmbeddingProvider):
    """Deterministic provider that raises scripted failures before succeeding."""

    name = "fake"

    def __init__(self, failures: list[BaseException] | None = None) -> None:
        self.failures = list(failures or [])
        self.calls: list[list[str]] = []

    async def embed(self, texts: list[str], model: str) -> list[list[float]]:
        self.calls.append(list(texts))
        if self.failures:
            raise self.failures.pop(0)
        return [keyword_vector(t) for t in texts]


class FakeChatModel:
    """Chat-model stand-in: records prompts and returns a canned answer."""

    def __init__(self, answer: str = "Refunds take thirty days [1].") -> None:
        self.answer = answer
        self.prompts: list[Any] = []

    async def ainvoke(self, messages: Any) -> SimpleNamespace:
        self.prompts.append(messages)
        return SimpleNamespace(content=self.answer)


class RecordingSleep:
    """Stand-in for ``asyncio.sleep`` that records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line("markers", "integration: marks tests requiring external services")


@pytest.fixture()
def repository() -> InMemoryDocumentRepository:
    return InMemoryDocumentRepository()


@pytest.fixture()
def vector_store() -> InMemoryVectorStore:
    return InMemoryVectorStore("test-collection")


@pytest.fixture()
def provider() -> FakeEmbeddingProvider:
    return FakeEmbeddingProvider()


@pytest.fixture()
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture()
def metrics() -> IngestionMetrics:
    return IngestionMetrics()


@pytest.fixture()
def generator(provider: FakeEmbeddingProvider, sleep: RecordingSleep, metrics: IngestionMetrics) -> EmbeddingGenerator:
    return EmbeddingGenerator(lambda api_key: provider, model="test-embedding", metrics=metrics, sleep=sleep)


@pytest.fixture()
def embedding_store(
    repository: InMemoryDocumentRepository, vector_store: InMemoryVectorStore
) -> EmbeddingStore:
    return EmbeddingStore(repository, vector_store)
