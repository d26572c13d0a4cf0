"""Retry policy shared by embedding calls and queue-level job retries."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from rag_ingest.exceptions import PipelineError, RateLimited

if TYPE_CHECKING:
    from tenacity import RetryCallState


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff: ``backoff(n) = base_delay * 2 ** (n - 1)``.

    With the default ``base_delay`` of 2 seconds the first retry waits 2s,
    the second 4s, i.e. ``2 ** attempt`` seconds after failed attempt *n*.
    """

    max_attempts: int = 3
    base_delay: float = 2.0
    max_delay: float | None = None

    def backoff(self, attempt: int) -> float:
        delay = self.base_delay * 2 ** (max(attempt, 1) - 1)
        return min(delay, self.max_delay) if self.max_delay is not None else delay

    def is_retryable(self, error: BaseException) -> bool:
        """Whether a failed *job* may run again; unexpected crashes count as transient."""
        if isinstance(error, PipelineError):
            return error.retryable
        return True

    def is_transient(self, error: BaseException) -> bool:
        """Whether a failed provider *call* may be repeated; only pipeline errors qualify."""
        return isinstance(error, PipelineError) and error.retryable

    def should_back_off(self, error: BaseException) -> bool:
        """Rate limits wait before retrying; other retryable errors retry at once."""
        return isinstance(error, RateLimited)

    def wait(self, retry_state: RetryCallState) -> float:
        """``tenacity`` wait strategy: back off after rate limits, retry others at once."""
        outcome = retry_state.outcome
        error = outcome.exception() if outcome is not None else None
        if error is not None and self.should_back_off(error):
            return self.backoff(retry_state.attempt_number)
        return 0.0
