"""Hand runnable jobs to an execution backend.

:class:`CeleryDispatcher` publishes a ``process_document`` task whose task
id is the job id.  :class:`InlineDispatcher` keeps due jobs in process and
runs them on :meth:`~InlineDispatcher.drain`; it backs the ``memory``
queue mode and the tests.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from kombu.exceptions import OperationalError

from rag_ingest.exceptions import StorageFailed
from rag_ingest.jobs.models import DocumentJobData

if TYPE_CHECKING:
    from rag_ingest.jobs.runner import JobRunner

logger = logging.getLogger(__name__)


class JobDispatcher(ABC):
    @abstractmethod
    async def dispatch(self, job_id: str, data: DocumentJobData, *, countdown: float = 0.0) -> None:
        """Arrange for *data* to be processed as *job_id* after *countdown* seconds."""


class CeleryDispatcher(JobDispatcher):
    """Publish jobs to the Celery broker.

    Parameters
    ----------
    task:
        The Celery task to publish; defaults to ``process_document``.
    """

    def __init__(self, task: Any | None = None) -> None:
        if task is None:
            from rag_ingest.jobs.tasks import process_document

            task = process_document
        self._task = task

    async def dispatch(self, job_id: str, data: DocumentJobData, *, countdown: float = 0.0) -> None:
        try:
            await asyncio.to_thread(
                self._task.apply_async,
                args=[data.model_dump(mode="json")],
                task_id=job_id,
                countdown=countdown or None,
            )
        except (OperationalError, OSError) as exc:
            raise StorageFailed(f"Could not publish job {job_id}", {"job_id": job_id, "error": str(exc)}) from exc
        logger.debug("Published job %s (countdown=%.1fs)", job_id, countdown)


class InlineDispatcher(JobDispatcher):
    """In-process execution, one job at a time.

    With *autorun* every dispatch also schedules a background
    :meth:`drain` on the running event loop once the job is due.
    """

    def __init__(self, *, clock: Callable[[], float] = time.time, autorun: bool = False) -> None:
        self._clock = clock
        self.autorun = autorun
        self._due: dict[str, tuple[float, DocumentJobData]] = {}
        self._runner: JobRunner | None = None
        self._deliveries = itertools.count(1)
        self._tasks: set[asyncio.Task[int]] = set()

    def bind(self, runner: JobRunner) -> None:
        self._runner = runner

    @property
    def pending(self) -> int:
        return len(self._due)

    async def dispatch(self, job_id: str, data: DocumentJobData, *, countdown: float = 0.0) -> None:
        self._due[job_id] = (self._clock() + countdown, data)
        if self.autorun:
            asyncio.get_running_loop().call_later(max(countdown, 0.0), self._spawn_drain)

    async def drain(self) -> int:
        """Run every job that is due now, including retries that fall due; returns how many ran."""
        if self._runner is None:
            raise RuntimeError("InlineDispatcher has no runner bound")
        processed = 0
        while True:
            now = self._clock()
            due = sorted((run_at, job_id) for job_id, (run_at, _) in self._due.items() if run_at <= now)
            if not due:
                return processed
            for _, job_id in due:
                _, data = self._due.pop(job_id)
                outcome = await self._runner.run(data, token=f"inline:{job_id}:{next(self._deliveries)}")
                processed += 1
                if outcome.retry_in is not None:
                    self._due[job_id] = (self._clock() + outcome.retry_in, data)

    def _spawn_drain(self) -> None:
        task = asyncio.ensure_future(self.drain())
        self._tasks.add(task)
        task.add_done_callback(self._drained)

    def _drained(self, task: asyncio.Task[int]) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Background drain failed", exc_info=task.exception())
