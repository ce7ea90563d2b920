# jobs/retry.py
"""
Retry policy: given how many attempts a job has used, decide whether a
failed attempt goes back to the queue (and when) or ends the job.

Pure functions only. No database access, no sleeping.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from jobs.types import JobStatus

DEFAULT_BASE_DELAY = 1.0
DEFAULT_MAX_DELAY = 60.0


@dataclass(frozen=True)
class RetryDecision:
    status: JobStatus
    attempts: int
    run_at: datetime | None = None
    delay_seconds: float | None = None

    @property
    def terminal(self) -> bool:
        return self.status is JobStatus.FAILED


def retry_delay(
    attempts: int,
    base_delay: float = DEFAULT_BASE_DELAY,
    max_delay: float = DEFAULT_MAX_DELAY,
) -> float:
    """Seconds to wait before the next attempt: base * 2^attempts, capped."""
    return min(base_delay * (2 ** attempts), max_delay)


def decide_retry(
    attempts: int,
    max_attempts: int,
    now: datetime,
    *,
    base_delay: float = DEFAULT_BASE_DELAY,
    max_delay: float = DEFAULT_MAX_DELAY,
) -> RetryDecision:
    """
    Next state after a failed attempt.

    `attempts` is the count *before* this failure. The returned decision
    carries the incremented count; once it reaches `max_attempts` the job
    is failed for good and no new run_at is scheduled.
    """
    used = attempts + 1
    if used >= max_attempts:
        return RetryDecision(status=JobStatus.FAILED, attempts=used)

    delay = retry_delay(used, base_delay, max_delay)
    return RetryDecision(
        status=JobStatus.QUEUED,
        attempts=used,
        run_at=now + timedelta(seconds=delay),
        delay_seconds=delay,
    )
