# jobs/queue.py
"""
Durable job store backed by the `jobs` table.

Callers own the session and the transaction: functions here flush but
never commit, so an enqueue can ride along with the caller's own writes.
claim_next() must run in its own transaction, committed before the
handler starts.
"""
from __future__ import annotations

import enum
import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Iterable

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from jobs.retry import DEFAULT_BASE_DELAY, DEFAULT_MAX_DELAY, RetryDecision, decide_retry
from jobs.types import JobStatus, tag
from models.base import utcnow
from models.job import Job

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 3
LIST_LIMIT_MAX = 200


class JobNotFoundError(LookupError):
    """No job with that id is visible to the caller."""

    def __init__(self, job_id: uuid.UUID | str) -> None:
        super().__init__(f"Job not found: {job_id}")
        self.job_id = job_id


async def enqueue(
    db: AsyncSession,
    job_type: str | enum.Enum,
    owner_id: str,
    payload: dict | None = None,
    *,
    run_at: datetime | None = None,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
) -> Job:
    if max_attempts < 1:
        raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")

    job = Job(
        job_type=tag(job_type),
        owner_id=owner_id,
        payload=payload or {},
        status=JobStatus.QUEUED.value,
        attempts=0,
        max_attempts=max_attempts,
        run_at=run_at or utcnow(),
    )
    db.add(job)
    await db.flush()
    logger.info("Enqueued job %s [%s] owner=%s trace=%s", job.id, job.job_type, owner_id, job.trace_id)
    return job


async def claim_next(
    db: AsyncSession,
    worker_id: str,
    job_types: Iterable[str] | None = None,
) -> Job | None:
    """
    Claims the eligible job with the oldest run_at and marks it processing.

    The candidate row is picked with FOR UPDATE SKIP LOCKED so concurrent
    claimers never wait on (or take) a row another claimer is flipping.
    The UPDATE re-checks status = 'queued', which keeps the claim a
    compare-and-swap on backends that ignore row locks.

    Commit right after this returns; the row lock must not outlive the claim.
    """
    now = utcnow()
    candidate = aliased(Job, name="candidate")

    pick = (
        select(candidate.id)
        .where(
            candidate.status == JobStatus.QUEUED.value,
            candidate.run_at <= now,
        )
        .order_by(candidate.run_at.asc(), candidate.created_at.asc())
        .limit(1)
        .with_for_update(skip_locked=True)
    )
    types = [tag(t) for t in job_types] if job_types else None
    if types:
        pick = pick.where(candidate.job_type.in_(types))

    stmt = (
        update(Job)
        .where(
            Job.id == pick.scalar_subquery(),
            Job.status == JobStatus.QUEUED.value,
        )
        .values(
            status=JobStatus.PROCESSING.value,
            locked_by=worker_id,
            locked_at=now,
        )
        .returning(Job)
        .execution_options(synchronize_session=False, populate_existing=True)
    )

    result = await db.execute(stmt)
    job = result.scalar_one_or_none()

    if job is None:
        return None

    logger.info(
        "Worker %s claimed job %s [%s] attempt=%d/%d trace=%s",
        worker_id,
        job.id,
        job.job_type,
        job.attempts + 1,
        job.max_attempts,
        job.trace_id,
    )
    return job


async def update_job(
    db: AsyncSession,
    job_id: uuid.UUID,
    *,
    status: JobStatus | str | None = None,
    result: Any | None = None,
    error: str | None = None,
    run_at: datetime | None = None,
    attempts: int | None = None,
    claimed_by: str | None = None,
) -> bool:
    """
    Partial update of one job row. Arguments left as None are not touched.

    Leaving `processing` releases the worker stamp (locked_by / locked_at).
    With `claimed_by`, the row is only written while that worker still
    holds the claim; a job the reaper handed to someone else is left alone.
    Returns False when no row was written.
    """
    values: dict[str, Any] = {}
    if status is not None:
        status = JobStatus(status)
        values["status"] = status.value
        if status is not JobStatus.PROCESSING:
            values["locked_by"] = None
            values["locked_at"] = None
    if result is not None:
        values["result"] = result
    if error is not None:
        values["error"] = error
    if run_at is not None:
        values["run_at"] = run_at
    if attempts is not None:
        values["attempts"] = attempts

    if not values:
        return False

    stmt = update(Job).where(Job.id == job_id)
    if claimed_by is not None:
        stmt = stmt.where(
            Job.status == JobStatus.PROCESSING.value,
            Job.locked_by == claimed_by,
        )
    stmt = stmt.values(**values).execution_options(synchronize_session=False)

    cursor = await db.execute(stmt)
    return cursor.rowcount > 0


async def complete_job(
    db: AsyncSession,
    job_id: uuid.UUID,
    result: Any | None = None,
    *,
    claimed_by: str | None = None,
) -> bool:
    written = await update_job(
        db,
        job_id,
        status=JobStatus.COMPLETED,
        result=result if result is not None else {},
        claimed_by=claimed_by,
    )
    if written:
        logger.info("Job %s completed", job_id)
    else:
        logger.warning("Job %s no longer claimed by %s; result dropped", job_id, claimed_by)
    return written


async def fail_job(
    db: AsyncSession,
    job: Job,
    error: str,
    *,
    base_delay: float = DEFAULT_BASE_DELAY,
    max_delay: float = DEFAULT_MAX_DELAY,
    claimed_by: str | None = None,
) -> RetryDecision | None:
    """
    Schedules retry with backoff or marks permanently failed.
    No sleeping here. Returns None when `claimed_by` lost the claim.
    """
    decision = decide_retry(
        job.attempts,
        job.max_attempts,
        utcnow(),
        base_delay=base_delay,
        max_delay=max_delay,
    )

    written = await update_job(
        db,
        job.id,
        status=decision.status,
        error=error,
        run_at=decision.run_at,
        attempts=decision.attempts,
        claimed_by=claimed_by,
    )
    if not written:
        logger.warning("Job %s no longer claimed by %s; failure dropped: %s", job.id, claimed_by, error)
        return None

    if decision.terminal:
        logger.error(
            "Job %s permanently failed after %d attempts trace=%s: %s",
            job.id,
            decision.attempts,
            job.trace_id,
            error,
        )
    else:
        logger.warning(
            "Job %s retry %d/%d in %.0fs trace=%s: %s",
            job.id,
            decision.attempts,
            job.max_attempts,
            decision.delay_seconds,
            job.trace_id,
            error,
        )

    return decision


async def get_job(db: AsyncSession, job_id: uuid.UUID) -> Job | None:
    return await db.get(Job, job_id, populate_existing=True)


async def get_job_for_owner(
    db: AsyncSession,
    job_id: uuid.UUID,
    owner_id: str,
) -> Job:
    """
    Status query. A job owned by someone else is reported exactly like a
    missing one so existence does not leak.
    """
    stmt = select(Job).where(Job.id == job_id, Job.owner_id == owner_id)
    job = (await db.execute(stmt)).scalar_one_or_none()
    if job is None:
        raise JobNotFoundError(job_id)
    return job


async def list_jobs(
    db: AsyncSession,
    owner_id: str,
    status: JobStatus | str | None = None,
    limit: int = 50,
) -> list[Job]:
    limit = max(1, min(int(limit or 50), LIST_LIMIT_MAX))

    stmt = (
        select(Job)
        .where(Job.owner_id == owner_id)
        .order_by(Job.created_at.desc())
        .limit(limit)
    )
    if status is not None:
        stmt = stmt.where(Job.status == JobStatus(status).value)

    rows = (await db.execute(stmt)).scalars().all()
    return list(rows)


async def requeue_stale_jobs(
    db: AsyncSession,
    older_than: timedelta,
) -> list[uuid.UUID]:
    """
    Returns jobs stuck in `processing` (worker crashed mid-handler) to the
    queue. Attempts are left alone: the crashed attempt never reported.
    """
    now = utcnow()
    cutoff = now - older_than

    stmt = (
        update(Job)
        .where(
            Job.status == JobStatus.PROCESSING.value,
            Job.locked_at <= cutoff,
        )
        .values(
            status=JobStatus.QUEUED.value,
            run_at=now,
            locked_by=None,
            locked_at=None,
            error=f"Requeued after {older_than.total_seconds():.0f}s in processing",
        )
        .returning(Job.id)
        .execution_options(synchronize_session=False)
    )
    job_ids = list((await db.execute(stmt)).scalars().all())

    for job_id in job_ids:
        logger.warning("Requeued stale job %s", job_id)

    return job_ids
