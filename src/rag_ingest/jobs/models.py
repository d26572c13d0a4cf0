"""Job records for document processing."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from rag_ingest.ingestion.models import ChunkingStrategy

JOB_ID_PREFIX = "doc-"
INITIAL_STAGE = "Waiting to be processed"
FIRST_STAGE = "Fetching document"
FIRST_STAGE_PROGRESS = 10


def job_id_for(document_id: str) -> str:
    """Deterministic job identity: one job slot per document."""
    return f"{JOB_ID_PREFIX}{document_id}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class DocumentJobData(BaseModel):
    """Queue payload for one document."""

    document_id: str
    organization_id: str
    chunking_strategy: ChunkingStrategy | None = None
    chunk_size: int | None = None
    chunk_overlap: int | None = None


class JobStatusView(BaseModel):
    """What a polling client sees."""

    job_id: str | None = None
    status: str
    stage: str | None = None
    progress: int | None = None
    error: str | None = None
    attempts_made: int | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime | None = None


class ProcessingJob(BaseModel):
    """Ledger record of a document job.

    While ``processing`` the job is leased to one task delivery
    (``lease_token``) until ``lease_expires_at``; progress reports renew the
    lease, and an expired lease lets another delivery or the stalled-job
    sweep take the job over.
    """

    job_id: str
    data: DocumentJobData
    status: JobStatus = JobStatus.PENDING
    stage: str = INITIAL_STAGE
    progress_percentage: int = 0
    error_message: str | None = None
    attempts_made: int = 0
    max_attempts: int = 3
    started_at: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    next_run_at: datetime | None = None
    retryable: bool = True
    lease_token: str | None = None
    lease_expires_at: datetime | None = None
    result: dict[str, Any] | None = None

    @property
    def document_id(self) -> str:
        return self.data.document_id

    @property
    def exhausted(self) -> bool:
        return self.attempts_made >= self.max_attempts or not self.retryable

    def lease_expired(self, now: datetime) -> bool:
        return self.lease_expires_at is None or self.lease_expires_at <= now

    def advance(self, progress: int, stage: str, at: datetime | None = None) -> None:
        """Move progress forward (never backwards) and update the stage label."""
        self.progress_percentage = max(self.progress_percentage, min(progress, 100))
        self.stage = stage
        self.updated_at = at or _utcnow()

    def restart(self, progress: int, stage: str, at: datetime | None = None) -> None:
        """Begin a new attempt: progress starts over from *progress*."""
        self.progress_percentage = 0
        self.advance(progress, stage, at)

    def release(self) -> None:
        self.lease_token = None
        self.lease_expires_at = None

    def status_view(self) -> JobStatusView:
        return JobStatusView(
            job_id=self.job_id,
            status=self.status.value,
            stage=self.stage,
            progress=self.progress_percentage,
            error=self.error_message,
            attempts_made=self.attempts_made,
            started_at=self.started_at,
            completed_at=self.completed_at,
            created_at=self.created_at,
        )


class QueueStats(BaseModel):
    waiting: int = 0
    active: int = 0
    completed: int = 0
    failed: int = 0
    delayed: int = 0
    total: int = 0


class RetrySummary(BaseModel):
    retried: int = 0
    skipped: int = 0
    errors: int = 0
