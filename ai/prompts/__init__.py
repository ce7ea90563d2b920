# ai/prompts/__init__.py
from ai.prompts.tutor import ESSAY_SYSTEM, HOMEWORK_SYSTEM, TUTOR_SYSTEM
from ai.prompts.generation import DAILY_CHALLENGE_SYSTEM, LESSON_SYSTEM, QUIZ_SYSTEM

__all__ = [
    "TUTOR_SYSTEM",
    "ESSAY_SYSTEM",
    "HOMEWORK_SYSTEM",
    "LESSON_SYSTEM",
    "QUIZ_SYSTEM",
    "DAILY_CHALLENGE_SYSTEM",
]
