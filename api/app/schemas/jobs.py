# api/app/schemas/jobs.py
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from jobs.types import JobStatus, JobType


class JobCreateRequest(BaseModel):
    type: JobType
    payload: dict[str, Any] = Field(default_factory=dict)
    run_at: datetime | None = None
    max_attempts: int | None = Field(default=None, ge=1, le=10)


class JobCreateResponse(BaseModel):
    job_id: uuid.UUID
    status: JobStatus


class JobStatusResponse(BaseModel):
    """What a polling client sees: result on completed, error on failed."""
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    type: str = Field(validation_alias="job_type")
    status: JobStatus
    result: Any | None = None
    error: str | None = None
    attempts: int
    max_attempts: int
    run_at: datetime
    created_at: datetime
    updated_at: datetime


class JobListResponse(BaseModel):
    jobs: list[JobStatusResponse]
