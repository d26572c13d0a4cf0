"""Document job ledger: identity, state transitions, leases and retries.

State machine::

    pending -> processing -> completed
                          -> failed -> processing (retry, up to max_attempts)

Execution is delegated to a :class:`~rag_ingest.jobs.dispatch.JobDispatcher`
(Celery in production).  The ledger only decides *whether* a delivery may
run: a job is leased to one delivery token while processing, so duplicate
or late deliveries of the same job are skipped, and a job whose worker
died is taken over once its lease expires.

A failed job that still has attempts left is retried with exponential
backoff; one that exhausted them stays ``failed`` until retried manually.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any

from rag_ingest.embedding.retry import RetryPolicy
from rag_ingest.exceptions import JobNotFound, JobStalled, LeaseLost, PipelineError
from rag_ingest.jobs.dispatch import JobDispatcher
from rag_ingest.jobs.models import (
    FIRST_STAGE,
    FIRST_STAGE_PROGRESS,
    DocumentJobData,
    JobStatus,
    JobStatusView,
    ProcessingJob,
    QueueStats,
    RetrySummary,
    job_id_for,
)
from rag_ingest.jobs.store import JobStore
from rag_ingest.metrics import IngestionMetrics

logger = logging.getLogger(__name__)

COMPLETED_STAGE = "Completed"
DEFAULT_LEASE_SECONDS = 900.0

JobPredicate = Callable[[ProcessingJob], bool]


def _as_datetime(timestamp: float) -> datetime:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc)


def _error_message(error: BaseException) -> str:
    return error.message if isinstance(error, PipelineError) else str(error) or type(error).__name__


class DocumentQueue:
    """Producer and ledger side of the document processing queue.

    Parameters
    ----------
    store:
        Durable job records with atomic per-job updates.
    dispatcher:
        Hands runnable jobs to the execution backend.
    retry_policy:
        Job-level attempt cap and backoff; independent from the per-batch
        embedding retry.
    clock:
        Returns epoch seconds.
    lease_seconds:
        How long a delivery owns a processing job without reporting progress.
    """

    def __init__(
        self,
        store: JobStore,
        dispatcher: JobDispatcher,
        *,
        retry_policy: RetryPolicy | None = None,
        metrics: IngestionMetrics | None = None,
        clock: Callable[[], float] = time.time,
        lease_seconds: float = DEFAULT_LEASE_SECONDS,
    ) -> None:
        self._store = store
        self._dispatcher = dispatcher
        self.retry_policy = retry_policy or RetryPolicy(max_attempts=3, base_delay=2.0)
        self._metrics = metrics
        self._clock = clock
        self.lease_seconds = lease_seconds

    # -- producer -------------------------------------------------------------

    async def enqueue(self, data: DocumentJobData) -> ProcessingJob:
        """Add or replace the job for ``data.document_id`` and dispatch it.

        A job that is processing under a live lease is left untouched; any
        other existing job, including one whose worker lease expired, is
        overwritten with a fresh pending one.
        """
        job_id = job_id_for(data.document_id)
        now = self._now()
        existing: ProcessingJob | None = None

        def replace(current: ProcessingJob | None) -> ProcessingJob | None:
            nonlocal existing
            existing = current
            if current is not None and current.status == JobStatus.PROCESSING and not current.lease_expired(now):
                return None
            return ProcessingJob(
                job_id=job_id,
                data=data,
                max_attempts=self.retry_policy.max_attempts,
                created_at=now,
                updated_at=now,
            )

        job = await self._store.update(job_id, replace)
        if job is None and existing is not None:
            logger.info("Job %s is already processing; not re-enqueued", job_id)
            return existing

        await self._dispatcher.dispatch(job_id, data)
        logger.info("Enqueued job %s (replaced=%s)", job_id, existing is not None)
        return job

    # -- deliveries -----------------------------------------------------------

    async def start(self, job_id: str, token: str) -> ProcessingJob | None:
        """Lease *job_id* to the delivery *token*; ``None`` when it must not run.

        A job is runnable when pending, failed with a retry scheduled, or
        processing under an expired lease or the same token (a redelivery).
        Each start counts as an attempt and resets progress.
        """
        now = self._now()

        def begin(job: ProcessingJob | None) -> ProcessingJob | None:
            if job is None or not self._is_runnable(job, token, now):
                return None
            job.status = JobStatus.PROCESSING
            job.started_at = now
            job.completed_at = None
            job.next_run_at = None
            job.error_message = None
            job.attempts_made += 1
            job.lease_token = token
            job.lease_expires_at = now + timedelta(seconds=self.lease_seconds)
            job.restart(FIRST_STAGE_PROGRESS, FIRST_STAGE, now)
            return job

        job = await self._store.update(job_id, begin)
        if job is None:
            logger.info("Delivery %s of job %s skipped; job is not runnable", token, job_id)
            return None
        logger.info("Job %s started (attempt %d/%d)", job_id, job.attempts_made, job.max_attempts)
        return job

    async def update_progress(
        self, job_id: str, progress: int, stage: str, *, token: str | None = None
    ) -> ProcessingJob:
        """Record progress and renew the lease."""
        now = self._now()

        def step(job: ProcessingJob | None) -> ProcessingJob:
            job = self._owned(job_id, job, token)
            job.advance(progress, stage, now)
            if job.status == JobStatus.PROCESSING:
                job.lease_expires_at = now + timedelta(seconds=self.lease_seconds)
            return job

        job = await self._store.update(job_id, step)
        logger.debug("Job %s progress %d%% (%s)", job_id, job.progress_percentage, stage)
        return job

    async def complete(
        self, job_id: str, result: dict[str, Any] | None = None, *, token: str | None = None
    ) -> ProcessingJob:
        now = self._now()

        def finish(job: ProcessingJob | None) -> ProcessingJob:
            job = self._owned(job_id, job, token)
            job.status = JobStatus.COMPLETED
            job.completed_at = now
            job.error_message = None
            job.next_run_at = None
            job.result = result
            job.release()
            job.advance(100, COMPLETED_STAGE, now)
            return job

        job = await self._store.update(job_id, finish)
        self._record("completed")
        logger.info("Job %s completed after %d attempt(s)", job_id, job.attempts_made)
        return job

    async def fail(self, job_id: str, error: BaseException, *, token: str | None = None) -> ProcessingJob:
        """Record *error*; schedule a retry with backoff while attempts remain."""
        now = self._now()

        def record(job: ProcessingJob | None) -> ProcessingJob:
            return self._apply_failure(self._owned(job_id, job, token), error, now)

        job = await self._store.update(job_id, record)
        self._log_failure(job)
        return job

    def retry_delay(self, job: ProcessingJob) -> float:
        """Seconds until the scheduled retry of *job* is due."""
        if job.next_run_at is None:
            return 0.0
        return max(0.0, (job.next_run_at - self._now()).total_seconds())

    # -- management -----------------------------------------------------------

    async def get_job(self, job_id: str) -> ProcessingJob | None:
        return await self._store.get(job_id)

    async def get_status(self, document_id: str) -> JobStatusView:
        job = await self._store.get(job_id_for(document_id))
        if job is None:
            return JobStatusView(status="not_found")
        return job.status_view()

    async def retry(self, job_id: str) -> bool:
        """Manually re-run a failed or stalled job; returns ``False`` otherwise.

        A job past its attempt cap is granted one more attempt.
        """
        now = self._now()
        state: JobStatus | None = None

        def reschedule(job: ProcessingJob | None) -> ProcessingJob | None:
            nonlocal state
            if job is None:
                raise JobNotFound(job_id)
            state = job.status
            if job.status == JobStatus.PROCESSING and job.lease_expired(now):
                job.status = JobStatus.FAILED
                job.error_message = JobStalled(job_id).message
            elif job.status != JobStatus.FAILED:
                return None
            if job.exhausted:
                job.max_attempts = job.attempts_made + 1
                job.retryable = True
            job.release()
            job.next_run_at = now
            job.updated_at = now
            return job

        job = await self._store.update(job_id, reschedule)
        if job is None:
            logger.warning("Job %s is %s, not failed; retry ignored", job_id, state.value if state else "missing")
            return False
        await self._dispatcher.dispatch(job_id, job.data)
        logger.info("Job %s dispatched for manual retry", job_id)
        return True

    async def retry_failed(
        self,
        *,
        max_retries: int = 5,
        max_jobs: int = 10,
        predicate: JobPredicate | None = None,
    ) -> RetrySummary:
        """Retry permanently failed jobs.

        Stalled jobs are reclaimed first.  Jobs that already made
        ``max_retries`` attempts, or that *predicate* rejects, are skipped.
        At most *max_jobs* jobs are retried.
        """
        await self.reclaim_stalled()
        summary = RetrySummary()
        for job in await self.failed_jobs(limit=None):
            if summary.retried >= max_jobs:
                break
            if job.attempts_made >= max_retries or (predicate is not None and not predicate(job)):
                summary.skipped += 1
                continue
            try:
                retried = await self.retry(job.job_id)
            except PipelineError as exc:
                summary.errors += 1
                logger.warning("Could not retry job %s: %s", job.job_id, exc.message)
                continue
            if retried:
                summary.retried += 1
            else:
                summary.skipped += 1

        logger.info(
            "Retry sweep: %d retried, %d skipped, %d errors", summary.retried, summary.skipped, summary.errors
        )
        return summary

    async def reclaim_stalled(self) -> int:
        """Recover jobs whose delivery was lost; returns how many were touched.

        A processing job whose lease expired is failed with
        :class:`~rag_ingest.exceptions.JobStalled` and, while attempts
        remain, dispatched again after backoff.  A pending job, or a failed
        job whose retry is overdue, that nobody picked up for a whole lease
        period is dispatched again.
        """
        now = self._now()
        reclaimed = 0
        for job in await self._store.list_jobs():
            if job.status == JobStatus.PROCESSING and job.lease_expired(now):
                expired = await self._store.update(job.job_id, lambda current: self._expire(current, now))
                if expired is None:
                    continue
                self._log_failure(expired)
                if expired.next_run_at is not None:
                    await self._dispatcher.dispatch(expired.job_id, expired.data, countdown=self.retry_delay(expired))
                reclaimed += 1
            elif self._overdue(job, now):
                logger.warning("Job %s was never picked up; dispatching again", job.job_id)
                await self._dispatcher.dispatch(job.job_id, job.data)
                reclaimed += 1
        if reclaimed:
            logger.info("Reclaimed %d stalled job(s)", reclaimed)
        return reclaimed

    async def failed_jobs(self, limit: int | None = 100) -> list[ProcessingJob]:
        """Permanently failed jobs, most recently updated first."""
        jobs = [j for j in await self._store.list_jobs(JobStatus.FAILED) if j.next_run_at is None]
        jobs.sort(key=lambda j: j.updated_at, reverse=True)
        return jobs if limit is None else jobs[:limit]

    async def remove(self, job_id: str) -> None:
        await self._require(job_id)
        await self._store.delete(job_id)
        logger.info("Job %s removed", job_id)

    async def stats(self) -> QueueStats:
        stats = QueueStats()
        for job in await self._store.list_jobs():
            if job.status == JobStatus.PENDING:
                stats.waiting += 1
            elif job.status == JobStatus.PROCESSING:
                stats.active += 1
            elif job.status == JobStatus.COMPLETED:
                stats.completed += 1
            elif job.next_run_at is not None:
                stats.delayed += 1
            else:
                stats.failed += 1
        stats.total = stats.waiting + stats.active + stats.completed + stats.failed + stats.delayed
        return stats

    # -- internals ------------------------------------------------------------

    def _now(self) -> datetime:
        return _as_datetime(self._clock())

    @staticmethod
    def _is_runnable(job: ProcessingJob, token: str, now: datetime) -> bool:
        if job.status == JobStatus.PENDING:
            return True
        if job.status == JobStatus.FAILED:
            return job.next_run_at is not None
        if job.status == JobStatus.PROCESSING:
            return job.lease_token == token or job.lease_expired(now)
        return False

    def _overdue(self, job: ProcessingJob, now: datetime) -> bool:
        grace = timedelta(seconds=self.lease_seconds)
        if job.status == JobStatus.PENDING:
            return job.updated_at + grace <= now
        if job.status == JobStatus.FAILED and job.next_run_at is not None:
            return job.next_run_at + grace <= now
        return False

    @staticmethod
    def _owned(job_id: str, job: ProcessingJob | None, token: str | None) -> ProcessingJob:
        if job is None:
            raise JobNotFound(job_id)
        if token is not None and job.lease_token != token:
            raise LeaseLost(job_id, token)
        return job

    def _apply_failure(self, job: ProcessingJob, error: BaseException, now: datetime) -> ProcessingJob:
        job.status = JobStatus.FAILED
        job.error_message = _error_message(error)
        job.retryable = self.retry_policy.is_retryable(error)
        job.updated_at = now
        job.release()
        if job.exhausted:
            job.next_run_at = None
        else:
            job.next_run_at = now + timedelta(seconds=self.retry_policy.backoff(job.attempts_made))
        return job

    def _expire(self, job: ProcessingJob | None, now: datetime) -> ProcessingJob | None:
        if job is None or job.status != JobStatus.PROCESSING or not job.lease_expired(now):
            return None
        return self._apply_failure(job, JobStalled(job.job_id), now)

    def _log_failure(self, job: ProcessingJob) -> None:
        if job.next_run_at is None:
            self._record("failed")
            logger.error(
                "Job %s failed permanently after %d/%d attempt(s): %s",
                job.job_id,
                job.attempts_made,
                job.max_attempts,
                job.error_message,
            )
            return
        self._record("retried")
        logger.warning(
            "Job %s failed (attempt %d/%d), retrying at %s: %s",
            job.job_id,
            job.attempts_made,
            job.max_attempts,
            job.next_run_at.isoformat(),
            job.error_message,
        )

    async def _require(self, job_id: str) -> ProcessingJob:
        job = await self._store.get(job_id)
        if job is None:
            raise JobNotFound(job_id)
        return job

    def _record(self, status: str) -> None:
        if self._metrics:
            self._metrics.record_job(status)
