"""Celery tasks: document processing and the stalled-job sweep.

Each worker process owns one :class:`WorkerRuntime`: an event loop plus
the wired services, built when the process starts and closed when it
exits.  Tasks run their coroutines on that loop, so async clients (Redis,
OpenAI) stay bound to a single loop for the life of the process.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine
from typing import TYPE_CHECKING, Any, TypeVar

from celery import signals

from rag_ingest.config import settings
from rag_ingest.exceptions import JobRetryScheduled
from rag_ingest.jobs.celery_app import celery_app
from rag_ingest.jobs.models import DocumentJobData

if TYPE_CHECKING:
    from rag_ingest.wiring import Services

logger = logging.getLogger(__name__)

T = TypeVar("T")


class WorkerRuntime:
    def __init__(self, services: Services, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self.services = services
        self.loop = loop or asyncio.new_event_loop()

    def run(self, coro: Coroutine[Any, Any, T]) -> T:
        return self.loop.run_until_complete(coro)

    def close(self) -> None:
        try:
            self.run(self.services.aclose())
        finally:
            self.loop.close()


_runtime: WorkerRuntime | None = None


def install_runtime(runtime: WorkerRuntime | None) -> WorkerRuntime | None:
    """Replace the process runtime; returns the previous one."""
    global _runtime
    previous, _runtime = _runtime, runtime
    return previous


def get_runtime() -> WorkerRuntime:
    global _runtime
    if _runtime is None:
        from rag_ingest.wiring import build_services

        _runtime = WorkerRuntime(build_services(settings))
        logger.info("Worker runtime ready")
    return _runtime


@signals.worker_process_init.connect
def _open_runtime(**kwargs: Any) -> None:
    get_runtime()


@signals.worker_process_shutdown.connect
def _close_runtime(**kwargs: Any) -> None:
    runtime = install_runtime(None)
    if runtime is not None:
        runtime.close()


@celery_app.task(
    bind=True,
    name="rag_ingest.process_document",
    acks_late=True,
    reject_on_worker_lost=True,
    rate_limit=settings.worker_rate_limit,
    autoretry_for=(JobRetryScheduled,),
    max_retries=max(settings.job_max_attempts - 1, 0),
    retry_backoff=max(int(settings.job_backoff_seconds), 1),
    retry_backoff_max=settings.job_backoff_max_seconds,
    retry_jitter=False,
)
def process_document(self, payload: dict[str, Any]) -> dict[str, Any]:
    """Process one document job.

    The task id is the job id.  Retries follow the ledger: only a failure the
    ledger scheduled for retry is re-raised as ``JobRetryScheduled`` so that
    Celery re-publishes the task after exponential backoff.
    """
    data = DocumentJobData.model_validate(payload)
    runtime = get_runtime()

    async def publish(progress: int, stage: str) -> None:
        if not self.request.is_eager:
            self.update_state(state="PROGRESS", meta={"stage": stage, "progress": progress})

    token = f"{self.request.id}:{self.request.retries}"
    outcome = runtime.run(runtime.services.runner.run(data, token=token, on_progress=publish))
    if outcome.status == "failed":
        if outcome.retry_in is not None:
            raise JobRetryScheduled(outcome.job_id, outcome.error)
        raise outcome.error
    return {"job_id": outcome.job_id, "status": outcome.status, "result": outcome.result}


@celery_app.task(name="rag_ingest.reclaim_stalled_jobs")
def reclaim_stalled_jobs() -> int:
    """Periodic sweep (celery beat) over jobs whose delivery was lost."""
    runtime = get_runtime()
    return runtime.run(runtime.services.queue.reclaim_stalled())
