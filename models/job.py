# models/job.py
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import CheckConstraint, DateTime, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from models.base import Base, JSONDocument, TimestampMixin, UUIDPrimaryKey, utcnow


class Job(Base, UUIDPrimaryKey, TimestampMixin):
    __tablename__ = "jobs"
    __table_args__ = (
        CheckConstraint(
            "status IN ('queued', 'processing', 'completed', 'failed')",
            name="ck_jobs_status",
        ),
        CheckConstraint("attempts <= max_attempts", name="ck_jobs_attempts"),
        # claim query: status = 'queued' AND run_at <= now ORDER BY run_at
        Index("ix_jobs_status_run_at", "status", "run_at"),
    )

    job_type: Mapped[str] = mapped_column(String(64), nullable=False)
    owner_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)

    # queued | processing | completed | failed
    status: Mapped[str] = mapped_column(String(32), default="queued")
    payload: Mapped[dict[str, Any]] = mapped_column(JSONDocument, default=dict)
    result: Mapped[Any | None] = mapped_column(JSONDocument, nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    attempts: Mapped[int] = mapped_column(Integer, default=0)
    max_attempts: Mapped[int] = mapped_column(Integer, default=3)
    run_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    locked_by: Mapped[str | None] = mapped_column(String(128), nullable=True)
    locked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    trace_id: Mapped[uuid.UUID] = mapped_column(Uuid, default=uuid.uuid4, nullable=False)

    def __repr__(self) -> str:
        return f"<Job {self.id} {self.job_type} {self.status} {self.attempts}/{self.max_attempts}>"
