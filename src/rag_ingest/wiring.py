"""Construct the pipeline's collaborators once and hand them out explicitly.

Entry points (API app, worker CLI) call :func:`build_services` at startup;
nothing in the package keeps hidden module-level connections.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from rag_ingest.config import Settings
from rag_ingest.embedding.credentials import CredentialResolver
from rag_ingest.embedding.generator import EmbeddingGenerator, ProviderFactory
from rag_ingest.embedding.providers import HuggingFaceEmbeddingProvider, OpenAIEmbeddingProvider
from rag_ingest.embedding.retry import RetryPolicy
from rag_ingest.embedding.store import EmbeddingStore
from rag_ingest.ingest_service import IngestionService
from rag_ingest.ingestion.cache import ConversionCache, MemoryCacheBackend, RedisCacheBackend
from rag_ingest.ingestion.conversion import DocumentConverter
from rag_ingest.ingestion.models import ChunkingOptions, ChunkingStrategy
from rag_ingest.jobs.dispatch import CeleryDispatcher, InlineDispatcher, JobDispatcher
from rag_ingest.jobs.queue import DocumentQueue
from rag_ingest.jobs.runner import JobRunner
from rag_ingest.jobs.store import JobStore, MemoryJobStore, RedisJobStore
from rag_ingest.metrics import IngestionMetrics
from rag_ingest.pipeline import DocumentProcessor
from rag_ingest.retrieval.base import VectorStoreBase
from rag_ingest.retrieval.memory_store import InMemoryVectorStore
from rag_ingest.retrieval.rag import RAGAnswerer, RAGContextBuilder
from rag_ingest.retrieval.search import SemanticSearch
from rag_ingest.storage.memory import InMemoryDocumentRepository
from rag_ingest.storage.repository import DocumentRepository

if TYPE_CHECKING:
    from langchain_core.language_models import BaseChatModel

logger = logging.getLogger(__name__)


@dataclass
class Services:
    settings: Settings
    repository: DocumentRepository
    vector_store: VectorStoreBase
    metrics: IngestionMetrics
    converter: DocumentConverter
    generator: EmbeddingGenerator
    embedding_store: EmbeddingStore
    queue: DocumentQueue
    processor: DocumentProcessor
    dispatcher: JobDispatcher
    runner: JobRunner
    ingestion: IngestionService
    search: SemanticSearch
    context_builder: RAGContextBuilder
    llm: BaseChatModel | None = None
    redis_client: Any | None = None
    _answerer: RAGAnswerer | None = field(default=None, repr=False)

    @property
    def answerer(self) -> RAGAnswerer:
        """Built on first use so the chat model is only configured when RAG answers are requested."""
        if self._answerer is None:
            if self.llm is None:
                from rag_ingest.retrieval.llm import get_llm

                self.llm = get_llm(self.settings)
            self._answerer = RAGAnswerer(
                self.context_builder, self.llm, max_prompt_chars=self.settings.rag_prompt_max_chars
            )
        return self._answerer

    async def aclose(self) -> None:
        await self.generator.aclose()
        if self.redis_client is not None:
            await self.redis_client.aclose()


def default_provider_factory(settings: Settings) -> ProviderFactory:
    """Provider per resolved API key; the local model is loaded once and shared."""
    if settings.embedding_provider == "huggingface":
        local = HuggingFaceEmbeddingProvider(settings.huggingface_model)
        return lambda api_key: local
    if settings.embedding_provider != "openai":
        raise ValueError(f"Unknown embedding provider: {settings.embedding_provider!r}")
    return lambda api_key: OpenAIEmbeddingProvider(api_key or "", base_url=settings.openai_base_url or None)


def _redis_client(settings: Settings) -> Any:
    import redis.asyncio as redis

    return redis.from_url(settings.redis_url)


def _vector_store(settings: Settings) -> VectorStoreBase:
    if settings.vector_store == "memory":
        return InMemoryVectorStore(settings.chroma_collection)
    if settings.vector_store != "chroma":
        raise ValueError(f"Unknown vector store: {settings.vector_store!r}")
    from rag_ingest.retrieval.chroma_store import ChromaVectorStore

    return ChromaVectorStore(settings.chroma_collection, host=settings.chroma_host, port=settings.chroma_port)


def build_services(
    settings: Settings,
    *,
    repository: DocumentRepository | None = None,
    vector_store: VectorStoreBase | None = None,
    provider_factory: ProviderFactory | None = None,
    job_store: JobStore | None = None,
    dispatcher: JobDispatcher | None = None,
    redis_client: Any | None = None,
    llm: BaseChatModel | None = None,
) -> Services:
    """Wire every collaborator from *settings*; explicit arguments override the defaults."""
    needs_redis = settings.cache_backend == "redis" or (job_store is None and settings.queue_backend == "redis")
    if redis_client is None and needs_redis:
        redis_client = _redis_client(settings)

    repository = repository or InMemoryDocumentRepository()
    vector_store = vector_store or _vector_store(settings)
    metrics = IngestionMetrics()

    cache = None
    if settings.cache_backend == "redis":
        cache = ConversionCache(RedisCacheBackend(redis_client), ttl_seconds=settings.conversion_cache_ttl)
    elif settings.cache_backend == "memory":
        cache = ConversionCache(MemoryCacheBackend(), ttl_seconds=settings.conversion_cache_ttl)
    converter = DocumentConverter(cache=cache, metrics=metrics)

    credentials = None
    if settings.embedding_provider == "openai":
        credentials = CredentialResolver(
            repository, global_key=settings.openai_api_key, encryption_secret=settings.encryption_key
        )
    generator = EmbeddingGenerator(
        provider_factory or default_provider_factory(settings),
        credentials=credentials,
        model=settings.embedding_model,
        batch_size=settings.embedding_batch_size,
        retry_policy=RetryPolicy(max_attempts=settings.embedding_max_retries),
        metrics=metrics,
    )
    embedding_store = EmbeddingStore(repository, vector_store)

    if job_store is None:
        if settings.queue_backend == "redis":
            job_store = RedisJobStore(redis_client, prefix=settings.queue_name)
        else:
            job_store = MemoryJobStore()
    if dispatcher is None:
        if settings.queue_backend == "redis":
            dispatcher = CeleryDispatcher()
        else:
            dispatcher = InlineDispatcher(autorun=settings.inline_autorun)
    queue = DocumentQueue(
        job_store,
        dispatcher,
        retry_policy=RetryPolicy(
            max_attempts=settings.job_max_attempts,
            base_delay=settings.job_backoff_seconds,
            max_delay=settings.job_backoff_max_seconds,
        ),
        metrics=metrics,
        lease_seconds=settings.job_lease_seconds,
    )

    processor = DocumentProcessor(
        repository,
        generator,
        embedding_store,
        chunking=ChunkingOptions(
            chunk_size=settings.chunk_size,
            chunk_overlap=settings.chunk_overlap,
            strategy=ChunkingStrategy(settings.chunking_strategy),
        ),
    )
    runner = JobRunner(queue, processor)
    if isinstance(dispatcher, InlineDispatcher):
        dispatcher.bind(runner)

    search = SemanticSearch(
        generator, vector_store, match_threshold=settings.match_threshold, match_count=settings.match_count
    )
    context_builder = RAGContextBuilder(
        search, max_context_chunks=settings.rag_max_context_chunks, min_similarity=settings.match_threshold
    )

    logger.info(
        "Services ready (vector_store=%s, cache=%s, queue=%s/%s, embeddings=%s)",
        type(vector_store).__name__,
        settings.cache_backend,
        type(job_store).__name__,
        type(dispatcher).__name__,
        settings.embedding_provider,
    )
    return Services(
        settings=settings,
        repository=repository,
        vector_store=vector_store,
        metrics=metrics,
        converter=converter,
        generator=generator,
        embedding_store=embedding_store,
        queue=queue,
        processor=processor,
        dispatcher=dispatcher,
        runner=runner,
        ingestion=IngestionService(repository, converter, queue),
        search=search,
        context_builder=context_builder,
        llm=llm,
        redis_client=redis_client,
    )
