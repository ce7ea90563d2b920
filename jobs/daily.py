# jobs/daily.py
"""Once-a-day fan-out of daily challenge jobs."""
from __future__ import annotations

import logging
from collections.abc import Iterable

from sqlalchemy.ext.asyncio import AsyncSession

from jobs.queue import DEFAULT_MAX_ATTEMPTS
from jobs.types import JobStatus, JobType
from models.base import utcnow
from models.job import Job

logger = logging.getLogger(__name__)


async def enqueue_daily_challenges(
    db: AsyncSession,
    owner_ids: Iterable[str],
    payload: dict | None = None,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
) -> list[Job]:
    """One `daily_challenge` job per owner, all with the same run_at."""
    now = utcnow()
    seen: set[str] = set()
    jobs: list[Job] = []

    for owner_id in owner_ids:
        owner_id = owner_id.strip()
        if not owner_id or owner_id in seen:
            continue
        seen.add(owner_id)
        jobs.append(
            Job(
                job_type=JobType.DAILY_CHALLENGE.value,
                owner_id=owner_id,
                payload=dict(payload or {}),
                status=JobStatus.QUEUED.value,
                attempts=0,
                max_attempts=max_attempts,
                run_at=now,
            )
        )

    if jobs:
        db.add_all(jobs)
        await db.flush()
    logger.info("Created %d daily challenge jobs", len(jobs))
    return jobs
