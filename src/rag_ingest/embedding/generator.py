"""Batched embedding generation with rate-limit aware retries (tenacity)."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable

from pydantic import BaseModel
from tenacity import AsyncRetrying, RetryCallState, RetryError, retry_if_exception, stop_after_attempt

from rag_ingest.embedding.credentials import CredentialResolver
from rag_ingest.embedding.providers import EmbeddingProvider, validate_dimension
from rag_ingest.embedding.retry import RetryPolicy
from rag_ingest.exceptions import EmbeddingFailed, PipelineError
from rag_ingest.ingestion.models import DocumentChunk
from rag_ingest.ingestion.tokens import estimate_tokens
from rag_ingest.metrics import IngestionMetrics

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "text-embedding-3-small"
DEFAULT_BATCH_SIZE = 100
DEFAULT_MAX_RETRIES = 3

ProviderFactory = Callable[[str | None], EmbeddingProvider]
Sleep = Callable[[float], Awaitable[None]]


class EmbeddingResult(BaseModel):
    chunk_id: str
    embedding: list[float]
    model: str
    token_count: int


class EmbeddingGenerator:
    """Embed chunks batch by batch through an :class:`EmbeddingProvider`.

    Parameters
    ----------
    provider_factory:
        Builds a provider for a resolved API key (``None`` when no
        credential resolver is configured, e.g. local models).
    credentials:
        Resolves the organization-scoped or global API key.
    model:
        Default embedding model.
    batch_size:
        Default number of chunks per provider call.
    retry_policy:
        Default per-batch retry policy; ``max_retries`` overrides
        ``max_attempts`` per call.
    sleep:
        Awaitable used for backoff waits.

    Providers are built once per resolved API key and reused until
    :meth:`aclose`.
    """

    def __init__(
        self,
        provider_factory: ProviderFactory,
        *,
        credentials: CredentialResolver | None = None,
        model: str = DEFAULT_MODEL,
        batch_size: int = DEFAULT_BATCH_SIZE,
        retry_policy: RetryPolicy | None = None,
        metrics: IngestionMetrics | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._provider_factory = provider_factory
        self._credentials = credentials
        self.model = model
        self.batch_size = batch_size
        self.retry_policy = retry_policy or RetryPolicy(max_attempts=DEFAULT_MAX_RETRIES)
        self._metrics = metrics
        self._sleep = sleep
        self._providers: dict[str | None, EmbeddingProvider] = {}

    # -- public API -----------------------------------------------------------

    async def generate(
        self,
        chunks: list[DocumentChunk],
        *,
        organization_id: str | None = None,
        model: str | None = None,
        batch_size: int | None = None,
        max_retries: int | None = None,
    ) -> list[EmbeddingResult]:
        """Embed *chunks* in order; batches are issued strictly one after another.

        Raises
        ------
        MissingCredential
            No API key is available.
        EmbeddingFailed
            A batch still failed after ``max_retries`` attempts.
        """
        if not chunks:
            return []

        model = model or self.model
        batch_size = batch_size or self.batch_size
        policy = self._policy(max_retries)
        provider = await self._provider(organization_id)

        started = time.monotonic()
        results: list[EmbeddingResult] = []
        total_batches = (len(chunks) + batch_size - 1) // batch_size
        try:
            for number, start in enumerate(range(0, len(chunks), batch_size), start=1):
                batch = chunks[start : start + batch_size]
                vectors = await self._embed_with_retry(provider, [c.content for c in batch], model, policy)
                for chunk, vector in zip(batch, vectors):
                    results.append(
                        EmbeddingResult(
                            chunk_id=chunk.id,
                            embedding=vector,
                            model=model,
                            token_count=chunk.token_count or estimate_tokens(chunk.content),
                        )
                    )
                logger.info("Embedded batch %d/%d (%d chunks)", number, total_batches, len(batch))
        except PipelineError:
            if self._metrics:
                self._metrics.record_embedding(
                    chunks=len(chunks), tokens=0, seconds=time.monotonic() - started, success=False
                )
            raise

        check = validate_dimension(results[0].embedding, model)
        if not check.valid:
            logger.warning(
                "Embedding dimension %d does not match expected %s for model %s",
                check.actual,
                check.expected,
                model,
            )
        if self._metrics:
            self._metrics.record_embedding(
                chunks=len(results),
                tokens=sum(r.token_count for r in results),
                seconds=time.monotonic() - started,
            )
        return results

    async def generate_query_embedding(
        self,
        text: str,
        *,
        organization_id: str | None = None,
        model: str | None = None,
    ) -> list[float]:
        """Embed a single query string."""
        provider = await self._provider(organization_id)
        vectors = await self._embed_with_retry(provider, [text], model or self.model, self.retry_policy)
        return vectors[0]

    async def aclose(self) -> None:
        """Close every cached provider (one per resolved API key)."""
        providers, self._providers = list(self._providers.values()), {}
        for provider in providers:
            await provider.aclose()

    # -- internals ------------------------------------------------------------

    def _policy(self, max_retries: int | None) -> RetryPolicy:
        if max_retries is None or max_retries == self.retry_policy.max_attempts:
            return self.retry_policy
        return RetryPolicy(
            max_attempts=max_retries,
            base_delay=self.retry_policy.base_delay,
            max_delay=self.retry_policy.max_delay,
        )

    async def _provider(self, organization_id: str | None) -> EmbeddingProvider:
        api_key = await self._credentials.resolve(organization_id) if self._credentials else None
        provider = self._providers.get(api_key)
        if provider is None:
            provider = self._providers[api_key] = self._provider_factory(api_key)
        return provider

    async def _pause(self, seconds: float) -> None:
        # tenacity sleeps between every attempt; immediate retries skip the call.
        if seconds > 0:
            await self._sleep(seconds)

    async def _embed_with_retry(
        self,
        provider: EmbeddingProvider,
        texts: list[str],
        model: str,
        policy: RetryPolicy,
    ) -> list[list[float]]:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(policy.max_attempts),
            retry=retry_if_exception(policy.is_transient),
            wait=policy.wait,
            sleep=self._pause,
            before_sleep=_log_retry(policy),
        )
        try:
            async for attempt in retrying:
                with attempt:
                    vectors = await provider.embed(texts, model)
        except RetryError as exc:
            attempts = exc.last_attempt.attempt_number
            error = exc.last_attempt.exception()
            if isinstance(error, EmbeddingFailed):
                raise error
            message = error.message if isinstance(error, PipelineError) else str(error)
            raise EmbeddingFailed(
                f"Embedding failed after {attempts} attempts: {message}",
                {"attempts": attempts, "model": model},
            ) from error

        if len(vectors) != len(texts):
            raise EmbeddingFailed(
                "Provider returned a different number of vectors than inputs",
                {"expected": len(texts), "received": len(vectors)},
            )
        return vectors


def _log_retry(policy: RetryPolicy) -> Callable[[RetryCallState], None]:
    def before_sleep(retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        if policy.should_back_off(error):
            logger.warning(
                "Rate limited (attempt %d/%d), backing off %.1fs",
                retry_state.attempt_number,
                policy.max_attempts,
                delay,
            )
        else:
            logger.warning(
                "Embedding attempt %d/%d failed, retrying: %s",
                retry_state.attempt_number,
                policy.max_attempts,
                error,
            )

    return before_sleep
