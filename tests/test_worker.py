# tests/test_worker.py
"""
Tests for the worker: one claim/dispatch/persist cycle, retries, and the
polling loop's idle backoff, error recovery and graceful stop.
"""
from __future__ import annotations

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import select

from jobs.queue import claim_next, enqueue, get_job, get_job_for_owner, requeue_stale_jobs
from jobs.types import JobStatus, JobType
from models.event import Event
from worker.main import process_next_job, run_loop


async def _enqueue(session_factory, job_type, owner_id, payload=None, **kwargs):
    async with session_factory() as db:
        job = await enqueue(db, job_type, owner_id, payload or {}, **kwargs)
        await db.commit()
        return job.id


async def _load(session_factory, job_id):
    async with session_factory() as db:
        return await get_job(db, job_id)


async def _events(session_factory, event_type):
    async with session_factory() as db:
        stmt = select(Event).where(Event.event_type == event_type)
        return list((await db.execute(stmt)).scalars().all())


@pytest.mark.asyncio
async def test_lesson_job_completes_after_one_cycle(session_factory, settings, owner_id):
    async def fake_lesson(db, job):
        assert job.payload == {"topic": "Algebra"}
        return {"lessonId": "abc"}

    job_id = await _enqueue(session_factory, "lesson_gen", owner_id, {"topic": "Algebra"})

    processed = await process_next_job(
        session_factory, handlers={"lesson_gen": fake_lesson}, settings=settings
    )
    assert processed is True

    async with session_factory() as db:
        job = await get_job_for_owner(db, job_id, owner_id)
    assert job.status == "completed"
    assert job.result == {"lessonId": "abc"}
    assert job.error is None
    assert job.locked_by is None


@pytest.mark.asyncio
async def test_empty_store_processes_nothing(session_factory, settings):
    assert await process_next_job(session_factory, handlers={}, settings=settings) is False


@pytest.mark.asyncio
async def test_retry_then_success(session_factory, settings, owner_id):
    calls = {"n": 0}

    async def flaky(db, job):
        calls["n"] += 1
        if calls["n"] == 1:
            raise RuntimeError("rate limited")
        return {"ok": True}

    job_id = await _enqueue(session_factory, JobType.ESSAY, owner_id, max_attempts=2)
    handlers = {"essay": flaky}

    await process_next_job(session_factory, handlers=handlers, settings=settings)
    job = await _load(session_factory, job_id)
    assert job.status == "queued"
    assert job.attempts == 1
    assert job.error == "rate limited"

    await process_next_job(session_factory, handlers=handlers, settings=settings)
    job = await _load(session_factory, job_id)
    assert job.status == "completed"
    assert job.result == {"ok": True}
    assert job.attempts == 1
    # last failure is kept for diagnostics
    assert job.error == "rate limited"

    failures = await _events(session_factory, "job_failed")
    assert len(failures) == 1
    assert failures[0].message == "rate limited"
    assert failures[0].metadata_["job_id"] == str(job_id)


@pytest.mark.asyncio
async def test_always_failing_handler_exhausts_attempts(session_factory, settings, owner_id):
    async def broken(db, job):
        raise ValueError("model returned garbage")

    job_id = await _enqueue(session_factory, JobType.QUIZ_GEN, owner_id, max_attempts=3)
    handlers = {"quiz_gen": broken}

    for expected_attempts in (1, 2):
        assert await process_next_job(session_factory, handlers=handlers, settings=settings)
        job = await _load(session_factory, job_id)
        assert job.status == "queued"
        assert job.attempts == expected_attempts

    assert await process_next_job(session_factory, handlers=handlers, settings=settings)
    job = await _load(session_factory, job_id)
    assert job.status == "failed"
    assert job.attempts == 3
    assert job.error == "model returned garbage"
    assert job.result is None

    # a fourth claim never returns the job
    assert await process_next_job(session_factory, handlers=handlers, settings=settings) is False
    async with session_factory() as db:
        assert await claim_next(db, "another-worker") is None

    assert len(await _events(session_factory, "job_dead")) == 1


@pytest.mark.asyncio
async def test_unknown_type_consumes_attempts_then_fails(session_factory, settings, owner_id):
    job_id = await _enqueue(session_factory, "mystery", owner_id, max_attempts=2)

    await process_next_job(session_factory, handlers={}, settings=settings)
    job = await _load(session_factory, job_id)
    assert job.status == "queued"
    assert job.error == "Unknown job type: mystery"

    await process_next_job(session_factory, handlers={}, settings=settings)
    job = await _load(session_factory, job_id)
    assert job.status == "failed"
    assert job.attempts == 2


@pytest.mark.asyncio
async def test_failed_handler_writes_are_rolled_back(session_factory, settings, owner_id):
    async def half_done(db, job):
        db.add(Event(event_type="lesson_written", level="info"))
        await db.flush()
        raise RuntimeError("provider timeout")

    await _enqueue(session_factory, JobType.LESSON_GEN, owner_id, max_attempts=1)
    await process_next_job(session_factory, handlers={"lesson_gen": half_done}, settings=settings)

    assert await _events(session_factory, "lesson_written") == []


@pytest.mark.asyncio
async def test_successful_handler_writes_commit_with_completion(session_factory, settings, owner_id):
    async def writes_row(db, job):
        db.add(Event(event_type="lesson_written", level="info"))
        return {"done": True}

    job_id = await _enqueue(session_factory, JobType.LESSON_GEN, owner_id)
    await process_next_job(session_factory, handlers={"lesson_gen": writes_row}, settings=settings)

    assert len(await _events(session_factory, "lesson_written")) == 1
    assert (await _load(session_factory, job_id)).status == "completed"


@pytest.mark.asyncio
async def test_non_json_result_fails_the_attempt(session_factory, settings, owner_id):
    async def returns_object(db, job):
        return {"when": object()}

    job_id = await _enqueue(session_factory, JobType.ESSAY, owner_id, max_attempts=1)
    await process_next_job(session_factory, handlers={"essay": returns_object}, settings=settings)

    job = await _load(session_factory, job_id)
    assert job.status == "failed"
    assert job.result is None


@pytest.mark.asyncio
async def test_idle_polling_backs_off_up_to_cap(session_factory, settings):
    stop = asyncio.Event()
    delays: list[float] = []

    async def record(delay: float) -> None:
        delays.append(delay)
        if len(delays) >= 8:
            stop.set()

    await run_loop(stop, session_factory=session_factory, handlers={}, settings=settings, sleep=record)

    assert len(delays) == 8
    assert delays == sorted(delays)
    assert all(d <= settings.worker_idle_max_delay for d in delays)
    assert delays[-1] == settings.worker_idle_max_delay
    assert delays[0] == settings.worker_idle_base_delay


@pytest.mark.asyncio
async def test_loop_survives_store_errors(settings):
    stop = asyncio.Event()
    delays: list[float] = []

    def broken_factory():
        raise ConnectionError("database is down")

    async def record(delay: float) -> None:
        delays.append(delay)
        if len(delays) >= 3:
            stop.set()

    await run_loop(stop, session_factory=broken_factory, handlers={}, settings=settings, sleep=record)

    assert delays == [settings.worker_error_delay] * 3


@pytest.mark.asyncio
async def test_job_resets_idle_backoff(session_factory, settings, owner_id):
    stop = asyncio.Event()
    delays: list[float] = []

    async def quick(db, job):
        return {"ok": True}

    async def record(delay: float) -> None:
        delays.append(delay)
        if len(delays) == 3:
            await _enqueue(session_factory, JobType.ESSAY, owner_id)
        if len(delays) >= 6:
            stop.set()

    await run_loop(stop, session_factory=session_factory, handlers={"essay": quick}, settings=settings, sleep=record)

    base = settings.worker_idle_base_delay
    # three idle polls, the job (post-job delay), then idle from the start again
    assert delays[3] == settings.worker_post_job_delay
    assert delays[4] == base


@pytest.mark.asyncio
async def test_stop_during_handler_drains_current_job(session_factory, settings, owner_id):
    stop = asyncio.Event()

    async def stops_worker(db, job):
        stop.set()
        return {"finished": True}

    job_id = await _enqueue(session_factory, JobType.STT, owner_id)

    async def no_sleep(delay: float) -> None:
        return None

    await asyncio.wait_for(
        run_loop(stop, session_factory=session_factory, handlers={"stt": stops_worker}, settings=settings, sleep=no_sleep),
        timeout=5,
    )

    job = await _load(session_factory, job_id)
    assert job.status == JobStatus.COMPLETED.value
    assert job.result == {"finished": True}


@pytest.mark.asyncio
async def test_reaper_requeues_orphaned_job(session_factory, owner_id):
    from api.app.config import Settings

    reaping = Settings(worker_stale_after_seconds=0.0001, worker_post_job_delay=0.0)
    job_id = await _enqueue(session_factory, JobType.ESSAY, owner_id)
    async with session_factory() as db:
        await claim_next(db, "crashed-worker")
        await db.commit()

    stop = asyncio.Event()
    seen: list[str] = []

    async def finish(db, job):
        seen.append(str(job.id))
        stop.set()
        return {"ok": True}

    async def no_sleep(delay: float) -> None:
        return None

    await asyncio.wait_for(
        run_loop(stop, session_factory=session_factory, handlers={"essay": finish}, settings=reaping, sleep=no_sleep),
        timeout=5,
    )

    assert seen == [str(job_id)]
    assert (await _load(session_factory, job_id)).status == "completed"


@pytest.mark.asyncio
async def test_nan_result_fails_the_attempt(session_factory, settings, owner_id):
    async def returns_nan(db, job):
        return {"final_answer": "4", "estimated_time": float("nan")}

    job_id = await _enqueue(session_factory, JobType.HOMEWORK_HELP, owner_id, max_attempts=2)
    await process_next_job(session_factory, handlers={"homework_help": returns_nan}, settings=settings)

    job = await _load(session_factory, job_id)
    assert job.status == "queued"
    assert job.attempts == 1
    assert job.result is None
    assert job.locked_by is None


@pytest.mark.asyncio
async def test_result_write_error_fails_the_attempt(session_factory, settings, owner_id):
    async def fine(db, job):
        return {"ok": True}

    job_id = await _enqueue(session_factory, JobType.ESSAY, owner_id, max_attempts=2)
    rejected = AsyncMock(side_effect=RuntimeError("unsupported Unicode escape sequence"))

    with patch("worker.main.complete_job", rejected):
        assert await process_next_job(session_factory, handlers={"essay": fine}, settings=settings)

    job = await _load(session_factory, job_id)
    assert job.status == "queued"
    assert job.attempts == 1
    assert job.error == "unsupported Unicode escape sequence"
    assert job.locked_by is None
    assert len(await _events(session_factory, "job_failed")) == 1


async def _hand_to_other_worker(session_factory) -> None:
    async with session_factory() as other:
        await requeue_stale_jobs(other, timedelta(seconds=0))
        await other.commit()
        assert await claim_next(other, "worker-b") is not None
        await other.commit()


@pytest.mark.asyncio
async def test_lost_claim_drops_result(session_factory, settings, owner_id):
    async def slow(db, job):
        await _hand_to_other_worker(session_factory)
        return {"late": True}

    job_id = await _enqueue(session_factory, JobType.LESSON_GEN, owner_id)
    await process_next_job(
        session_factory, worker_id="worker-a", handlers={"lesson_gen": slow}, settings=settings
    )

    job = await _load(session_factory, job_id)
    assert job.status == "processing"
    assert job.locked_by == "worker-b"
    assert job.result is None


@pytest.mark.asyncio
async def test_lost_claim_drops_failure(session_factory, settings, owner_id):
    async def slow_then_broken(db, job):
        await _hand_to_other_worker(session_factory)
        raise RuntimeError("provider timeout")

    job_id = await _enqueue(session_factory, JobType.LESSON_GEN, owner_id)
    await process_next_job(
        session_factory, worker_id="worker-a", handlers={"lesson_gen": slow_then_broken}, settings=settings
    )

    job = await _load(session_factory, job_id)
    assert job.status == "processing"
    assert job.locked_by == "worker-b"
    assert job.attempts == 0
    assert await _events(session_factory, "job_failed") == []
