"""Durable job records.

Every state transition goes through :meth:`JobStore.update`, a
read-modify-write that is atomic per job: the Redis store runs it under
``WATCH``/``MULTI`` and retries when another writer touched the record
in between.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import TYPE_CHECKING

from pydantic import ValidationError

from rag_ingest.exceptions import StorageFailed
from rag_ingest.jobs.models import JobStatus, ProcessingJob

if TYPE_CHECKING:
    import redis.asyncio as redis

logger = logging.getLogger(__name__)

# Receives the current record (None when absent) and returns the record to
# write, or None to leave the store untouched.  It may raise to abort.
JobMutation = Callable[[ProcessingJob | None], ProcessingJob | None]


class JobStore(ABC):
    @abstractmethod
    async def get(self, job_id: str) -> ProcessingJob | None: ...

    @abstractmethod
    async def save(self, job: ProcessingJob) -> None: ...

    @abstractmethod
    async def delete(self, job_id: str) -> None: ...

    @abstractmethod
    async def list_jobs(self, status: JobStatus | None = None) -> list[ProcessingJob]:
        """Jobs ordered by creation time, oldest first."""

    @abstractmethod
    async def update(self, job_id: str, mutate: JobMutation) -> ProcessingJob | None:
        """Atomically apply *mutate* to the record of *job_id*; returns what it wrote."""


class MemoryJobStore(JobStore):
    """Process-local store for tests and single-process runs."""

    def __init__(self) -> None:
        self._jobs: dict[str, ProcessingJob] = {}

    async def get(self, job_id: str) -> ProcessingJob | None:
        job = self._jobs.get(job_id)
        return job.model_copy(deep=True) if job is not None else None

    async def save(self, job: ProcessingJob) -> None:
        self._jobs[job.job_id] = job.model_copy(deep=True)

    async def delete(self, job_id: str) -> None:
        self._jobs.pop(job_id, None)

    async def list_jobs(self, status: JobStatus | None = None) -> list[ProcessingJob]:
        jobs = [j for j in self._jobs.values() if status is None or j.status == status]
        return [j.model_copy(deep=True) for j in sorted(jobs, key=lambda j: j.created_at)]

    async def update(self, job_id: str, mutate: JobMutation) -> ProcessingJob | None:
        # No await between read and write: atomic on the event loop.
        current = self._jobs.get(job_id)
        updated = mutate(current.model_copy(deep=True) if current is not None else None)
        if updated is not None:
            self._jobs[job_id] = updated.model_copy(deep=True)
        return updated


class RedisJobStore(JobStore):
    """``redis.asyncio`` store.

    Layout under *prefix*: ``{prefix}:job:{id}`` holds the JSON record and
    ``{prefix}:ids`` is the set of known ids.
    """

    def __init__(self, client: redis.Redis, *, prefix: str = "document-processing") -> None:
        self._client = client
        self.prefix = prefix

    def _job_key(self, job_id: str) -> str:
        return f"{self.prefix}:job:{job_id}"

    @property
    def _ids_key(self) -> str:
        return f"{self.prefix}:ids"

    def _parse(self, job_id: str, raw: bytes | str | None) -> ProcessingJob | None:
        if raw is None:
            return None
        try:
            return ProcessingJob.model_validate_json(raw)
        except ValidationError:
            logger.warning("Discarding unreadable job record %s", job_id)
            return None

    async def get(self, job_id: str) -> ProcessingJob | None:
        return self._parse(job_id, await self._call("GET", self._client.get(self._job_key(job_id))))

    async def save(self, job: ProcessingJob) -> None:
        await self._call("SET", self._client.set(self._job_key(job.job_id), job.model_dump_json()))
        await self._call("SADD", self._client.sadd(self._ids_key, job.job_id))

    async def delete(self, job_id: str) -> None:
        await self._call("DEL", self._client.delete(self._job_key(job_id)))
        await self._call("SREM", self._client.srem(self._ids_key, job_id))

    async def list_jobs(self, status: JobStatus | None = None) -> list[ProcessingJob]:
        ids = await self._call("SMEMBERS", self._client.smembers(self._ids_key))
        jobs: list[ProcessingJob] = []
        for raw_id in ids:
            job = await self.get(raw_id.decode("utf-8") if isinstance(raw_id, bytes) else raw_id)
            if job is not None and (status is None or job.status == status):
                jobs.append(job)
        return sorted(jobs, key=lambda j: j.created_at)

    async def update(self, job_id: str, mutate: JobMutation) -> ProcessingJob | None:
        key = self._job_key(job_id)

        async def apply(pipe) -> ProcessingJob | None:  # noqa: ANN001
            # Runs after WATCH; redis-py re-invokes it on WatchError.
            updated = mutate(self._parse(job_id, await pipe.get(key)))
            if updated is not None:
                pipe.multi()
                pipe.set(key, updated.model_dump_json())
                pipe.sadd(self._ids_key, job_id)
            return updated

        return await self._call("WATCH/MULTI", self._client.transaction(apply, key, value_from_callable=True))

    async def _call(self, command: str, awaitable):  # noqa: ANN001, ANN202
        from redis.exceptions import RedisError

        try:
            return await awaitable
        except (RedisError, OSError) as exc:
            raise StorageFailed(f"Redis {command} failed for queue {self.prefix}", {"error": str(exc)}) from exc
