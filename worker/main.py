# worker/main.py
"""
Background worker: claims jobs one at a time and dispatches to handlers.

Run as many worker processes as throughput needs; they coordinate only
through the claim query. Each process handles a single job at a time.
SIGINT/SIGTERM stop polling after the current job has been persisted.
"""
from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import platform
import signal
import sys
import time
import uuid
from collections.abc import Awaitable, Callable, Mapping
from datetime import timedelta

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

# Ensure project root is on path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from api.app.config import Settings, get_settings
from db.session import close_sessions, get_session_factory
from jobs.backoff import IdleBackoff
from jobs.handlers import Handler, dispatch
from jobs.queue import claim_next, complete_job, fail_job, requeue_stale_jobs
from models.job import Job
from services.observability import log_job_event

logger = logging.getLogger("worker")


WORKER_ID = f"worker-{platform.node()}-{uuid.uuid4().hex[:8]}"

Sleep = Callable[[float], Awaitable[None]]


def _error_message(exc: BaseException) -> str:
    return str(exc) or exc.__class__.__name__


async def _record_failure(
    db: AsyncSession,
    job: Job,
    exc: Exception,
    *,
    worker_id: str,
    settings: Settings,
) -> None:
    error = _error_message(exc)

    # Revert any partial writes from the handler
    await db.rollback()

    decision = await fail_job(
        db,
        job,
        error,
        base_delay=settings.job_retry_base_delay,
        max_delay=settings.job_retry_max_delay,
        claimed_by=worker_id,
    )
    if decision is not None:
        await log_job_event(
            db,
            "job_dead" if decision.terminal else "job_failed",
            job,
            level="error" if decision.terminal else "warning",
            message=error,
            attempts=decision.attempts,
            max_attempts=job.max_attempts,
        )
    await db.commit()


async def process_next_job(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    worker_id: str = WORKER_ID,
    handlers: Mapping[str, Handler] | None = None,
    job_types: list[str] | None = None,
    settings: Settings | None = None,
) -> bool:
    """
    One claim/dispatch/persist cycle. Returns False when nothing was eligible.

    Handler exceptions, and errors writing the handler's result, are
    converted into a retry or terminal failure here. Store errors outside
    that (claim, recording the failure itself) propagate to the loop.
    Every write after the claim is conditional on this worker still
    holding it.
    """
    settings = settings or get_settings()

    # Claim in its own short transaction so no row lock is held while the
    # handler talks to external providers.
    async with session_factory() as db:
        job = await claim_next(db, worker_id, job_types)
        await db.commit()

    if job is None:
        return False

    async with session_factory() as db:
        try:
            result = await dispatch(db, job, handlers)
            # Surface the handler's own pending writes as part of the attempt
            await db.flush()
        except Exception as exc:
            logger.exception("Job %s [%s] handler failed", job.id, job.job_type)
            await _record_failure(db, job, exc, worker_id=worker_id, settings=settings)
            return True

        try:
            await complete_job(db, job.id, result, claimed_by=worker_id)
            await db.commit()
        except Exception as exc:
            # The row refused what the handler produced; count it as an attempt
            logger.exception("Job %s [%s] result could not be stored", job.id, job.job_type)
            await _record_failure(db, job, exc, worker_id=worker_id, settings=settings)

    return True


async def _reap_stale(
    session_factory: async_sessionmaker[AsyncSession],
    stale_after: timedelta,
) -> None:
    async with session_factory() as db:
        job_ids = await requeue_stale_jobs(db, stale_after)
        await db.commit()
    if job_ids:
        logger.warning("Reaper requeued %d stale jobs", len(job_ids))


async def _wait(stop_event: asyncio.Event, delay: float) -> None:
    with contextlib.suppress(asyncio.TimeoutError):
        await asyncio.wait_for(stop_event.wait(), timeout=delay)


async def run_loop(
    stop_event: asyncio.Event | None = None,
    *,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    handlers: Mapping[str, Handler] | None = None,
    worker_id: str = WORKER_ID,
    settings: Settings | None = None,
    sleep: Sleep | None = None,
) -> None:
    settings = settings or get_settings()
    session_factory = session_factory or get_session_factory()
    stop_event = stop_event or asyncio.Event()

    if sleep is None:
        async def sleep(delay: float) -> None:
            await _wait(stop_event, delay)

    backoff = IdleBackoff(
        base_delay=settings.worker_idle_base_delay,
        growth_factor=settings.worker_idle_growth_factor,
        max_steps=settings.worker_idle_max_steps,
        max_delay=settings.worker_idle_max_delay,
    )
    stale_after = (
        timedelta(seconds=settings.worker_stale_after_seconds)
        if settings.worker_stale_after_seconds
        else None
    )
    last_reap: float | None = None

    logger.info(
        "Worker %s starting (idle %.1fs..%.1fs, types=%s, reaper=%s)",
        worker_id,
        settings.worker_idle_base_delay,
        settings.worker_idle_max_delay,
        settings.worker_job_types or "all",
        f"{stale_after.total_seconds():.0f}s" if stale_after else "off",
    )

    while not stop_event.is_set():
        try:
            if stale_after is not None and (
                last_reap is None or time.monotonic() - last_reap >= stale_after.total_seconds()
            ):
                last_reap = time.monotonic()
                await _reap_stale(session_factory, stale_after)

            processed = await process_next_job(
                session_factory,
                worker_id=worker_id,
                handlers=handlers,
                job_types=settings.worker_job_types,
                settings=settings,
            )
        except Exception as exc:
            logger.exception("Worker loop error: %s", exc)
            backoff.reset()
            await sleep(settings.worker_error_delay)
            continue

        if processed:
            backoff.reset()
            await sleep(settings.worker_post_job_delay)
        else:
            await sleep(backoff.next_delay())

    logger.info("Worker %s stopped", worker_id)


async def serve() -> None:
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        # add_signal_handler is unavailable on Windows event loops
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop_event.set)

    try:
        await run_loop(stop_event)
    finally:
        await close_sessions()


def main() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    asyncio.run(serve())


if __name__ == "__main__":
    main()
