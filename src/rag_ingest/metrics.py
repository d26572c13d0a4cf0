"""In-process ingestion counters exposed through the API."""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import asdict, dataclass
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class FormatStats:
    conversions: int = 0
    failures: int = 0
    cache_hits: int = 0
    degraded: int = 0
    total_seconds: float = 0.0

    @property
    def average_seconds(self) -> float:
        done = self.conversions - self.cache_hits
        return self.total_seconds / done if done > 0 else 0.0


@dataclass
class EmbeddingStats:
    runs: int = 0
    chunks: int = 0
    tokens: int = 0
    failed_runs: int = 0
    total_seconds: float = 0.0


class IngestionMetrics:
    """Counters for conversions, embedding runs and job outcomes."""

    def __init__(self) -> None:
        self._formats: dict[str, FormatStats] = defaultdict(FormatStats)
        self._embeddings = EmbeddingStats()
        self._jobs: dict[str, int] = defaultdict(int)

    def record_conversion(
        self,
        document_format: str,
        *,
        seconds: float = 0.0,
        success: bool = True,
        cached: bool = False,
        degraded: bool = False,
    ) -> None:
        stats = self._formats[document_format]
        if not success:
            stats.failures += 1
            logger.info("conversion failed format=%s seconds=%.3f", document_format, seconds)
            return
        stats.conversions += 1
        stats.cache_hits += int(cached)
        stats.degraded += int(degraded)
        if not cached:
            stats.total_seconds += seconds
        logger.info(
            "conversion format=%s cached=%s degraded=%s seconds=%.3f", document_format, cached, degraded, seconds
        )

    def record_embedding(self, *, chunks: int, tokens: int, seconds: float, success: bool = True) -> None:
        self._embeddings.runs += 1
        self._embeddings.total_seconds += seconds
        if success:
            self._embeddings.chunks += chunks
            self._embeddings.tokens += tokens
        else:
            self._embeddings.failed_runs += 1
        logger.info("embedding chunks=%d tokens=%d success=%s seconds=%.3f", chunks, tokens, success, seconds)

    def record_job(self, status: str) -> None:
        self._jobs[status] += 1

    def snapshot(self) -> dict[str, Any]:
        return {
            "conversions": {
                fmt: {**asdict(stats), "average_seconds": round(stats.average_seconds, 4)}
                for fmt, stats in sorted(self._formats.items())
            },
            "embeddings": asdict(self._embeddings),
            "jobs": dict(self._jobs),
        }
