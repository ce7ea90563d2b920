# jobs/handlers.py
"""
Job handlers for each job type, plus the dispatch table.

A handler receives the worker's session and the claimed job and returns a
JSON-serializable result, or raises. Raising is the only failure signal:
the worker turns every exception into a retry or a terminal failure.

Handlers may be re-run from the top after a partial failure. Domain rows
written through `db` are rolled back with the failed attempt; side effects
outside the database (provider calls, uploads) are the handler's problem.
"""
from __future__ import annotations

import json
import logging
import re
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from ai.model_output import parse_homework_solution, parse_quiz_questions
from ai.prompts import (
    DAILY_CHALLENGE_SYSTEM,
    ESSAY_SYSTEM,
    HOMEWORK_SYSTEM,
    LESSON_SYSTEM,
    QUIZ_SYSTEM,
    TUTOR_SYSTEM,
)
from api.app.config import get_settings
from jobs.types import JobType
from models.job import Job
from services.openai_llm import chat_completion, extract_json
from services.openai_stt import transcribe_audio

logger = logging.getLogger(__name__)

Handler = Callable[[AsyncSession, Job], Awaitable[Any]]

TUTOR_HISTORY_LIMIT = 25

# \u0000 escape not itself preceded by an escaped backslash
_NUL_ESCAPE_RE = re.compile(r"(?<!\\)(?:\\\\)*\\u0000")


class UnknownJobTypeError(LookupError):
    """No handler is registered for the job's type tag."""


class InvalidPayloadError(ValueError):
    """The job payload is missing something the handler needs."""


def _require(payload: dict, *keys: str) -> None:
    missing = [k for k in keys if not payload.get(k)]
    if missing:
        raise InvalidPayloadError(f"{', '.join(missing)} required")


# ─────────────────────────────────────────────
# handlers
# ─────────────────────────────────────────────

async def handle_ai_tutor(db: AsyncSession, job: Job) -> dict:
    payload = job.payload or {}
    messages = payload.get("messages") or []
    if not messages:
        raise InvalidPayloadError("messages required")

    # Last turn is the student's question; the rest is context.
    history = [
        {"role": m.get("role", "user"), "content": m.get("content", "")}
        for m in messages[-TUTOR_HISTORY_LIMIT:]
    ]
    question = history.pop()["content"]
    model = payload.get("model") or get_settings().openai_model

    reply = await chat_completion(
        TUTOR_SYSTEM.format(language=payload.get("language") or "English"),
        question,
        conversation_history=history,
        model=model,
    )
    return {"reply": reply, "model": model}


async def handle_lesson_gen(db: AsyncSession, job: Job) -> dict:
    payload = job.payload or {}
    _require(payload, "topic")

    topic = payload["topic"]
    level = payload.get("level") or "intermediate"
    language = payload.get("language") or "en"

    content = await chat_completion(
        LESSON_SYSTEM.format(level=level, language=language),
        f"Write a lesson about: {topic}",
        model=get_settings().lesson_model,
        max_tokens=4096,
    )
    return {
        "title": payload.get("title") or topic,
        "content": content,
        "level": level,
        "language": language,
    }


async def handle_quiz_gen(db: AsyncSession, job: Job) -> dict:
    payload = job.payload or {}
    _require(payload, "topic")

    topic = payload["topic"]
    num_questions = int(payload.get("num_questions") or 10)
    language = payload.get("language") or "en"

    raw = await extract_json(
        QUIZ_SYSTEM.format(language=language),
        f"Write {num_questions} questions about: {topic}",
        model=get_settings().quiz_model,
        max_tokens=4096,
    )
    questions = parse_quiz_questions(raw)

    return {
        "title": f"{topic} Quiz",
        "language": language,
        "questions": [q.to_dict() for q in questions],
    }


async def handle_essay(db: AsyncSession, job: Job) -> dict:
    payload = job.payload or {}
    _require(payload, "content", "essay_type", "topic")

    feedback = await chat_completion(
        ESSAY_SYSTEM.format(essay_type=payload["essay_type"], topic=payload["topic"]),
        f"Analyze this essay: {payload['content']}",
    )
    return {
        "feedback": feedback,
        "suggestions": "Review grammar, structure, and arguments",
    }


async def handle_homework_help(db: AsyncSession, job: Job) -> dict:
    payload = job.payload or {}
    image_url = payload.get("image_url")
    question = payload.get("question")
    if not question and not image_url:
        raise InvalidPayloadError("question or image_url required")

    subject = payload.get("subject") or "mathematics"
    problem = f"Solve this {subject} problem: {question or 'Problem from image'}"
    if image_url:
        problem += f"\n\nImage URL: {image_url}"

    raw = await chat_completion(
        HOMEWORK_SYSTEM.format(subject=subject),
        problem,
        temperature=0.2,
    )
    return parse_homework_solution(raw)


async def handle_stt(db: AsyncSession, job: Job) -> dict:
    payload = job.payload or {}
    _require(payload, "audio_path")

    language = payload.get("language")
    transcript = await transcribe_audio(payload["audio_path"], language=language)
    return {"transcript": transcript, "language": language or "en"}


async def handle_daily_challenge(db: AsyncSession, job: Job) -> dict:
    payload = job.payload or {}
    subject = payload.get("subject") or "general knowledge"
    language = payload.get("language") or "en"

    challenge = await chat_completion(
        DAILY_CHALLENGE_SYSTEM.format(subject=subject, language=language),
        "Create today's challenge.",
        temperature=0.9,
        max_tokens=512,
    )
    return {"challenge": challenge, "subject": subject}


HANDLERS: dict[str, Handler] = {
    JobType.AI_TUTOR.value: handle_ai_tutor,
    JobType.LESSON_GEN.value: handle_lesson_gen,
    JobType.QUIZ_GEN.value: handle_quiz_gen,
    JobType.ESSAY.value: handle_essay,
    JobType.HOMEWORK_HELP.value: handle_homework_help,
    JobType.STT.value: handle_stt,
    JobType.DAILY_CHALLENGE.value: handle_daily_challenge,
}


async def dispatch(
    db: AsyncSession,
    job: Job,
    handlers: Mapping[str, Handler] | None = None,
) -> Any:
    """
    Look up the handler for `job.job_type` and run it.

    The result must be storable as JSONB: no NaN/Infinity and no NUL
    characters. Anything else is a handler bug and fails the attempt here
    rather than at commit time.
    """
    table = HANDLERS if handlers is None else handlers
    handler = table.get(job.job_type)
    if handler is None:
        raise UnknownJobTypeError(f"Unknown job type: {job.job_type}")

    result = await handler(db, job)
    encoded = json.dumps(result, allow_nan=False)
    if _NUL_ESCAPE_RE.search(encoded):
        raise ValueError("Result contains NUL characters")
    return result
