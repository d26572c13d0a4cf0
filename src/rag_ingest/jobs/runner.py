"""Run one delivery of a document job against the ledger."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Literal

from rag_ingest.exceptions import LeaseLost
from rag_ingest.jobs.models import DocumentJobData, job_id_for
from rag_ingest.jobs.queue import DocumentQueue
from rag_ingest.pipeline import DocumentProcessor

logger = logging.getLogger(__name__)

ProgressHook = Callable[[int, str], Awaitable[None]]


@dataclass
class JobOutcome:
    job_id: str
    status: Literal["completed", "failed", "skipped"]
    result: dict[str, Any] | None = None
    error: BaseException | None = None
    # Seconds until the ledger's scheduled retry; None when no retry follows.
    retry_in: float | None = None


class JobRunner:
    """Lease, process and settle one job delivery.

    *token* identifies the delivery (Celery task id plus retry count).  A
    delivery the ledger refuses, or one that loses its lease midway, is
    reported as ``skipped`` and leaves the job record alone.
    """

    def __init__(self, queue: DocumentQueue, processor: DocumentProcessor) -> None:
        self.queue = queue
        self._processor = processor

    async def run(self, data: DocumentJobData, *, token: str, on_progress: ProgressHook | None = None) -> JobOutcome:
        job_id = job_id_for(data.document_id)
        job = await self.queue.start(job_id, token)
        if job is None:
            return JobOutcome(job_id, "skipped")

        async def report(progress: int, stage: str) -> None:
            updated = await self.queue.update_progress(job_id, progress, stage, token=token)
            if on_progress is not None:
                await on_progress(updated.progress_percentage, stage)

        try:
            result = await self._processor.process(job.data, report)
        except LeaseLost as exc:
            logger.warning("Job %s: %s; abandoning this delivery", job_id, exc.message)
            return JobOutcome(job_id, "skipped")
        except Exception as exc:
            logger.error("Job %s attempt %d raised %s: %s", job_id, job.attempts_made, type(exc).__name__, exc)
            try:
                failed = await self.queue.fail(job_id, exc, token=token)
            except LeaseLost:
                return JobOutcome(job_id, "skipped")
            retry_in = self.queue.retry_delay(failed) if failed.next_run_at is not None else None
            return JobOutcome(job_id, "failed", error=exc, retry_in=retry_in)

        payload = result.model_dump()
        try:
            await self.queue.complete(job_id, payload, token=token)
        except LeaseLost:
            logger.warning("Job %s finished after its lease moved on; result not recorded", job_id)
            return JobOutcome(job_id, "skipped")
        return JobOutcome(job_id, "completed", result=payload)
