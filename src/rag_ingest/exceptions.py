"""Exception hierarchy shared by every stage of the ingestion pipeline.

Optimization-layer failures (cache, duplicate check) are caught inside
their component; everything else propagates to the caller or the job
record.  ``retryable`` tells the job queue whether another attempt can
possibly help.
"""

from __future__ import annotations

from typing import Any


class PipelineError(Exception):
    """Base error with a human-readable message and structured details."""

    retryable: bool = True

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)


class UnsupportedFormat(PipelineError):
    """No registered document type matches the filename or MIME type."""

    retryable = False

    def __init__(self, filename: str, mime_type: str | None = None) -> None:
        super().__init__(
            f"Unsupported document format: {filename!r}",
            {"filename": filename, "mime_type": mime_type},
        )


class ConversionFailed(PipelineError):
    """The byte stream is unreadable or the converted text is unusable."""

    retryable = False


class CacheUnavailable(PipelineError):
    """The cache backend could not be reached; callers treat it as a miss."""


class RateLimited(PipelineError):
    """The embedding provider rejected a call because of rate limiting."""


class EmbeddingFailed(PipelineError):
    """Embedding generation failed after exhausting retries."""


class StorageFailed(PipelineError):
    """A storage collaborator (documents, chunks, vectors) failed."""


class DocumentNotFound(StorageFailed):
    """The document referenced by a job does not exist."""

    def __init__(self, document_id: str) -> None:
        super().__init__(f"Document not found: {document_id}", {"document_id": document_id})


class EmptyDocument(PipelineError):
    """Chunking produced no chunks for a document."""

    retryable = False


class MissingCredential(PipelineError):
    """No API key is available for the embedding provider."""

    retryable = False


class JobNotFound(PipelineError):
    """No job record exists for the given job id."""

    retryable = False

    def __init__(self, job_id: str) -> None:
        super().__init__(f"Job not found: {job_id}", {"job_id": job_id})


class InvalidOptions(PipelineError):
    """Caller-supplied processing options are inconsistent."""

    retryable = False


class JobStalled(PipelineError):
    """A processing job's worker lease expired before it reported back."""

    def __init__(self, job_id: str) -> None:
        super().__init__(f"Worker lease expired for job {job_id}", {"job_id": job_id})


class LeaseLost(PipelineError):
    """Another delivery took over the job; this one must stop writing to it."""

    retryable = False

    def __init__(self, job_id: str, token: str) -> None:
        super().__init__(f"Job {job_id} is no longer leased to {token}", {"job_id": job_id, "token": token})


class JobRetryScheduled(PipelineError):
    """A failed attempt was recorded and another attempt is due after backoff."""

    def __init__(self, job_id: str, cause: BaseException | None = None) -> None:
        reason = getattr(cause, "message", None) or str(cause or "unknown error")
        super().__init__(f"Job {job_id} will be retried: {reason}", {"job_id": job_id})
