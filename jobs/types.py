# jobs/types.py
"""Closed sets of job type tags and job statuses."""
from __future__ import annotations

import enum


class JobStatus(str, enum.Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class JobType(str, enum.Enum):
    AI_TUTOR = "ai_tutor"
    LESSON_GEN = "lesson_gen"
    QUIZ_GEN = "quiz_gen"
    ESSAY = "essay"
    HOMEWORK_HELP = "homework_help"
    STT = "stt"
    DAILY_CHALLENGE = "daily_challenge"


def tag(value: str | enum.Enum) -> str:
    """Return the raw string stored in the database for an enum member or plain string."""
    if isinstance(value, enum.Enum):
        return value.value
    return value
