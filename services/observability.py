# services/observability.py
"""
Structured event logging to the events table.

Events are written through the caller's session, so a job update and the
event describing it commit (or roll back) together.
"""
from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from models.event import Event
from models.job import Job

logger = logging.getLogger(__name__)


async def log_event(
    db: AsyncSession,
    event_type: str,
    level: str = "info",
    source: str | None = None,
    message: str | None = None,
    metadata: dict | None = None,
) -> Event:
    """Persist a structured event log entry."""
    event = Event(
        event_type=event_type,
        level=level,
        source=source,
        message=message,
        metadata_=metadata,
    )
    db.add(event)
    await db.flush()
    logger.log(
        getattr(logging, level.upper(), logging.INFO),
        "[%s] %s %s",
        event_type,
        message or "",
        metadata or {},
    )
    return event


async def log_job_event(
    db: AsyncSession,
    event_type: str,
    job: Job,
    level: str = "info",
    source: str = "worker",
    message: str | None = None,
    **extra: Any,
) -> Event:
    """Event keyed by a job: id, type, owner and trace id go into metadata."""
    metadata = {
        "job_id": str(job.id),
        "job_type": job.job_type,
        "owner_id": job.owner_id,
        "trace_id": str(job.trace_id),
    }
    metadata.update(extra)
    return await log_event(db, event_type, level, source=source, message=message, metadata=metadata)
