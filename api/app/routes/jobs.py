# api/app/routes/jobs.py
from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from api.app.config import Settings, get_settings
from api.app.dependencies import get_current_owner, get_session
from api.app.schemas.jobs import (
    JobCreateRequest,
    JobCreateResponse,
    JobListResponse,
    JobStatusResponse,
)
from jobs.queue import JobNotFoundError, enqueue, get_job_for_owner, list_jobs
from jobs.types import JobStatus
from services.observability import log_job_event

router = APIRouter(prefix="/jobs", tags=["jobs"])


@router.post("", response_model=JobCreateResponse, status_code=status.HTTP_202_ACCEPTED)
async def create_job(
    body: JobCreateRequest,
    owner_id: str = Depends(get_current_owner),
    db: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_settings),
):
    """Enqueue work and return immediately; poll GET /jobs/{id} for the outcome."""
    job = await enqueue(
        db,
        body.type,
        owner_id,
        body.payload,
        run_at=body.run_at,
        max_attempts=body.max_attempts or settings.job_max_attempts,
    )
    await log_job_event(db, "job_enqueued", job, source="api")

    return JobCreateResponse(job_id=job.id, status=JobStatus(job.status))


@router.get("", response_model=JobListResponse)
async def get_jobs(
    status_filter: JobStatus | None = Query(default=None, alias="status"),
    limit: int = Query(default=50, ge=1, le=200),
    owner_id: str = Depends(get_current_owner),
    db: AsyncSession = Depends(get_session),
):
    """List the caller's jobs, newest first."""
    jobs = await list_jobs(db, owner_id, status=status_filter, limit=limit)
    return JobListResponse(jobs=[JobStatusResponse.model_validate(j) for j in jobs])


@router.get("/{job_id}", response_model=JobStatusResponse)
async def get_job_status(
    job_id: uuid.UUID,
    owner_id: str = Depends(get_current_owner),
    db: AsyncSession = Depends(get_session),
):
    """Poll a job by id. Someone else's job is a 404, same as a missing one."""
    try:
        job = await get_job_for_owner(db, job_id, owner_id)
    except JobNotFoundError:
        raise HTTPException(status_code=404, detail="Job not found")

    return JobStatusResponse.model_validate(job)
