"""Content-addressed cache of conversion results.

Keys are ``"conversion:" + sha256(raw bytes)``.  The cache is a pure
optimization: every backend error is logged and treated as a miss, and
an entry older than its TTL is ignored on read even if the backend has
not evicted it yet.
"""

from __future__ import annotations

import hashlib
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field, ValidationError

from rag_ingest.exceptions import CacheUnavailable

if TYPE_CHECKING:
    import redis.asyncio as redis

logger = logging.getLogger(__name__)

CACHE_PREFIX = "conversion:"
DEFAULT_TTL_SECONDS = 30 * 24 * 60 * 60

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def content_hash(data: bytes) -> str:
    """SHA-256 hex digest of raw file bytes."""
    return hashlib.sha256(data).hexdigest()


class CachedConversion(BaseModel):
    content_hash: str
    content: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    original_type: str
    cached_at: datetime = Field(default_factory=_utcnow)
    expires_at: datetime | None = None


# -- backends -----------------------------------------------------------------


class CacheBackend(ABC):
    """Narrow key/value interface with TTL; one adapter per backend."""

    @abstractmethod
    async def get(self, key: str) -> str | None: ...

    @abstractmethod
    async def set(self, key: str, value: str, ttl_seconds: int) -> None: ...

    @abstractmethod
    async def delete(self, key: str) -> None: ...


class RedisCacheBackend(CacheBackend):
    """``redis.asyncio`` adapter.  Connection errors become :class:`CacheUnavailable`."""

    def __init__(self, client: redis.Redis) -> None:
        self._client = client

    async def get(self, key: str) -> str | None:
        from redis.exceptions import RedisError

        try:
            value = await self._client.get(key)
        except (RedisError, OSError) as exc:
            raise CacheUnavailable(f"Redis GET failed for {key}", {"error": str(exc)}) from exc
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        from redis.exceptions import RedisError

        try:
            await self._client.setex(key, ttl_seconds, value)
        except (RedisError, OSError) as exc:
            raise CacheUnavailable(f"Redis SETEX failed for {key}", {"error": str(exc)}) from exc

    async def delete(self, key: str) -> None:
        from redis.exceptions import RedisError

        try:
            await self._client.delete(key)
        except (RedisError, OSError) as exc:
            raise CacheUnavailable(f"Redis DEL failed for {key}", {"error": str(exc)}) from exc


class MemoryCacheBackend(CacheBackend):
    """Process-local backend with explicit clock-based expiry."""

    def __init__(self, clock: Clock = _utcnow) -> None:
        self._clock = clock
        self._entries: dict[str, tuple[str, datetime]] = {}

    async def get(self, key: str) -> str | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return value

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self._entries[key] = (value, self._clock() + timedelta(seconds=ttl_seconds))

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def __len__(self) -> int:
        return len(self._entries)


# -- cache --------------------------------------------------------------------


class ConversionCache:
    """Fail-open cache of :class:`CachedConversion` records.

    Parameters
    ----------
    backend:
        Storage adapter.
    ttl_seconds:
        Default time-to-live for new entries.
    clock:
        Source of "now" for the read-side expiry check.
    """

    def __init__(
        self,
        backend: CacheBackend,
        *,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        clock: Clock = _utcnow,
    ) -> None:
        self._backend = backend
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    @staticmethod
    def key_for(hash_hex: str) -> str:
        return f"{CACHE_PREFIX}{hash_hex}"

    async def get(self, hash_hex: str) -> CachedConversion | None:
        key = self.key_for(hash_hex)
        try:
            raw = await self._backend.get(key)
        except CacheUnavailable as exc:
            logger.warning("Conversion cache read failed, treating as miss: %s", exc.message)
            return None
        if raw is None:
            return None

        try:
            entry = CachedConversion.model_validate_json(raw)
        except ValidationError:
            logger.warning("Discarding unreadable conversion cache entry %s", key)
            await self.invalidate(hash_hex)
            return None

        expires_at = entry.expires_at or entry.cached_at + timedelta(seconds=self.ttl_seconds)
        if self._clock() >= expires_at:
            logger.debug("Conversion cache entry %s expired", key)
            await self.invalidate(hash_hex)
            return None
        return entry

    async def set(
        self,
        hash_hex: str,
        content: str,
        metadata: dict[str, Any],
        original_type: str,
        ttl_seconds: int | None = None,
    ) -> None:
        ttl = ttl_seconds if ttl_seconds is not None else self.ttl_seconds
        now = self._clock()
        entry = CachedConversion(
            content_hash=hash_hex,
            content=content,
            metadata=metadata,
            original_type=original_type,
            cached_at=now,
            expires_at=now + timedelta(seconds=ttl),
        )
        try:
            await self._backend.set(self.key_for(hash_hex), entry.model_dump_json(), ttl)
        except CacheUnavailable as exc:
            logger.warning("Conversion cache write failed, continuing without cache: %s", exc.message)

    async def invalidate(self, hash_hex: str) -> None:
        try:
            await self._backend.delete(self.key_for(hash_hex))
        except CacheUnavailable as exc:
            logger.warning("Conversion cache invalidation failed: %s", exc.message)

