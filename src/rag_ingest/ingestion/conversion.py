"""Cache-aware document conversion front end."""

from __future__ import annotations

import asyncio
import logging
import time

from rag_ingest.exceptions import ConversionFailed
from rag_ingest.ingestion.cache import ConversionCache, content_hash
from rag_ingest.ingestion.converters import ConversionOptions, ConverterRegistry
from rag_ingest.ingestion.document_types import DocumentType
from rag_ingest.ingestion.models import ConversionResult
from rag_ingest.metrics import IngestionMetrics

logger = logging.getLogger(__name__)


class DocumentConverter:
    """Convert uploaded bytes, consulting the conversion cache first.

    Parameters
    ----------
    registry:
        Strategy chains per document type.
    cache:
        Optional conversion cache; ``None`` disables caching.
    metrics:
        Optional metrics sink.
    """

    def __init__(
        self,
        registry: ConverterRegistry | None = None,
        cache: ConversionCache | None = None,
        metrics: IngestionMetrics | None = None,
    ) -> None:
        self.registry = registry or ConverterRegistry()
        self.cache = cache
        self.metrics = metrics

    async def convert(
        self,
        document_type: DocumentType,
        data: bytes,
        options: ConversionOptions | None = None,
        *,
        use_cache: bool = True,
    ) -> ConversionResult:
        """Return normalized text for *data*; identical bytes hit the cache."""
        hash_hex = content_hash(data)
        if use_cache and self.cache is not None:
            cached = await self.cache.get(hash_hex)
            if cached is not None and cached.original_type == document_type.value:
                logger.info("Conversion cache hit for %s (%s)", hash_hex[:12], document_type.value)
                if self.metrics:
                    self.metrics.record_conversion(document_type.value, cached=True)
                return ConversionResult(
                    content=cached.content,
                    metadata=cached.metadata,
                    original_type=cached.original_type,
                    from_cache=True,
                )

        started = time.monotonic()
        try:
            # Parsers are CPU-bound and synchronous; keep the event loop free.
            result = await asyncio.to_thread(self.registry.convert, document_type, data, options)
        except ConversionFailed:
            if self.metrics:
                self.metrics.record_conversion(
                    document_type.value, seconds=time.monotonic() - started, success=False
                )
            raise
        elapsed = time.monotonic() - started

        if self.metrics:
            self.metrics.record_conversion(document_type.value, seconds=elapsed, degraded=result.degraded)
        if use_cache and self.cache is not None:
            await self.cache.set(hash_hex, result.content, result.metadata, result.original_type)
        return result
