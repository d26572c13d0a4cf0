"""Embedding provider adapters.

A provider turns a batch of texts into vectors in input order and signals
rate limiting with :class:`~rag_ingest.exceptions.RateLimited` so the
generator's retry policy can recognise it.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel

from rag_ingest.exceptions import EmbeddingFailed, RateLimited

logger = logging.getLogger(__name__)

EMBEDDING_DIMENSIONS: dict[str, int] = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
    "sentence-transformers/all-MiniLM-L6-v2": 384,
}


class DimensionCheck(BaseModel):
    valid: bool
    expected: int | None = None
    actual: int


def validate_dimension(embedding: list[float], model: str) -> DimensionCheck:
    """Compare *embedding* length against the known dimension of *model*."""
    expected = EMBEDDING_DIMENSIONS.get(model)
    actual = len(embedding)
    return DimensionCheck(valid=expected is None or expected == actual, expected=expected, actual=actual)


class EmbeddingProvider(ABC):
    """Batched ``embed(texts, model) -> vectors`` call."""

    name: str = "provider"

    @abstractmethod
    async def embed(self, texts: list[str], model: str) -> list[list[float]]: ...

    async def aclose(self) -> None:
        """Release network clients; local providers hold none."""


class OpenAIEmbeddingProvider(EmbeddingProvider):
    """OpenAI (or OpenAI-compatible) embeddings endpoint.

    Parameters
    ----------
    api_key:
        Key for this provider instance (organization-scoped or global).
    base_url:
        Optional OpenAI-compatible endpoint.
    client:
        Pre-built ``AsyncOpenAI`` client; mainly for tests.
    """

    name = "openai"

    def __init__(self, api_key: str, *, base_url: str | None = None, client: Any | None = None) -> None:
        if client is None:
            from openai import AsyncOpenAI

            # Retries are owned by EmbeddingGenerator; the SDK must not add its own.
            client = AsyncOpenAI(api_key=api_key, base_url=base_url or None, max_retries=0)
        self._client = client

    async def embed(self, texts: list[str], model: str) -> list[list[float]]:
        import openai

        try:
            response = await self._client.embeddings.create(model=model, input=texts, encoding_format="float")
        except openai.RateLimitError as exc:
            raise RateLimited("Embedding provider rate limit hit", {"model": model}) from exc
        except openai.OpenAIError as exc:
            raise EmbeddingFailed(f"Embedding request failed: {exc}", {"model": model}) from exc

        data = sorted(response.data, key=lambda item: item.index)
        if len(data) != len(texts):
            raise EmbeddingFailed(
                "Embedding response size mismatch",
                {"expected": len(texts), "received": len(data)},
            )
        return [list(item.embedding) for item in data]

    async def aclose(self) -> None:
        await self._client.close()


class HuggingFaceEmbeddingProvider(EmbeddingProvider):
    """Local sentence-transformers model via ``langchain-huggingface``.

    The model is fixed at construction time; the ``model`` argument of
    :meth:`embed` is only used for logging.
    """

    name = "huggingface"

    def __init__(self, model_name: str, *, embedder: Any | None = None) -> None:
        if embedder is None:
            from langchain_huggingface import HuggingFaceEmbeddings

            embedder = HuggingFaceEmbeddings(model_name=model_name)
        self.model_name = model_name
        self._embedder = embedder

    async def embed(self, texts: list[str], model: str) -> list[list[float]]:
        if model != self.model_name:
            logger.debug("Ignoring requested model %s; using local %s", model, self.model_name)
        # Inference is synchronous; run it off the event loop.
        return await asyncio.to_thread(self._embedder.embed_documents, texts)
