# ai/model_output.py
"""
Turn raw model text into structured results.

Models wrap JSON in markdown fences, use loose question-type names, and
mark correct answers in a handful of ways. Everything here is pure and
tolerant; callers decide what counts as unusable.
"""
from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any

_FENCE_RE = re.compile(r"^```(?:json)?\s*\n?(.*?)\n?```\s*$", re.DOTALL | re.IGNORECASE)

# Substring overlap only counts for reasonably long texts.
MIN_OVERLAP_LEN = 5


class ModelOutputError(ValueError):
    """Model output could not be turned into the expected structure."""


def strip_code_fences(text: str) -> str:
    t = (text or "").strip()
    m = _FENCE_RE.match(t)
    if m:
        return m.group(1).strip()
    return t


def _reject_constant(name: str) -> Any:
    raise ModelOutputError(f"Model returned non-finite number: {name}")


def parse_json_output(text: str) -> Any:
    """json.loads, minus the NaN/Infinity literals JSONB cannot store."""
    try:
        return json.loads(strip_code_fences(text), parse_constant=_reject_constant)
    except json.JSONDecodeError as exc:
        raise ModelOutputError(f"Model returned invalid JSON: {exc}") from exc


def normalize_question_type(raw: str | None) -> str:
    """Map free-form type names onto MCQ | TRUE_FALSE | SHORT_ANSWER."""
    if not raw:
        return "MCQ"

    t = raw.strip().lower()
    if "true" in t or "false" in t:
        return "TRUE_FALSE"
    if "short" in t or "text" in t:
        return "SHORT_ANSWER"
    return "MCQ"


@dataclass
class Choice:
    text: str
    is_correct: bool = False


@dataclass
class QuizQuestion:
    type: str
    prompt: str
    answer: str = ""
    choices: list[Choice] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "prompt": self.prompt,
            "answer": self.answer,
            "choices": [{"text": c.text, "is_correct": c.is_correct} for c in self.choices],
        }


def _choice_text(choice: Any) -> str:
    if isinstance(choice, str):
        return choice
    if isinstance(choice, dict):
        return str(choice.get("text") or choice.get("label") or "")
    return str(choice)


def _answer_matches(choice_text: str, answer: str) -> bool:
    c = choice_text.strip().lower()
    a = answer.strip().lower()
    if not a:
        return False
    if c == a:
        return True
    return len(c) > MIN_OVERLAP_LEN and len(a) > MIN_OVERLAP_LEN and (c in a or a in c)


def mark_choices(raw_choices: list[Any], answer: str) -> list[Choice]:
    """
    Decide which choices are correct, in order of preference:
    an explicit isCorrect/correct flag, a match against the answer text,
    or the first choice when there is no answer at all.
    """
    choices: list[Choice] = []
    for raw in raw_choices:
        text = _choice_text(raw)
        correct = False
        if isinstance(raw, dict):
            correct = bool(raw.get("isCorrect") or raw.get("is_correct") or raw.get("correct"))
        if not correct and answer:
            correct = _answer_matches(text, answer)
        choices.append(Choice(text=text, is_correct=correct))

    if choices and not answer.strip() and not any(c.is_correct for c in choices):
        choices[0].is_correct = True
    return choices


def parse_quiz_questions(text: str) -> list[QuizQuestion]:
    parsed = parse_json_output(text)

    if isinstance(parsed, dict):
        raw_questions = parsed.get("questions") or []
    elif isinstance(parsed, list):
        raw_questions = parsed
    else:
        raw_questions = []

    if not isinstance(raw_questions, list) or not raw_questions:
        raise ModelOutputError("No questions generated or invalid format")

    questions: list[QuizQuestion] = []
    for raw in raw_questions:
        if not isinstance(raw, dict):
            continue
        answer = str(raw.get("answer") or "")
        raw_choices = raw.get("choices") or []
        questions.append(
            QuizQuestion(
                type=normalize_question_type(raw.get("type")),
                prompt=str(raw.get("prompt") or raw.get("question") or ""),
                answer=answer,
                choices=mark_choices(raw_choices, answer) if isinstance(raw_choices, list) else [],
            )
        )

    if not questions:
        raise ModelOutputError("No questions generated or invalid format")
    return questions


def parse_homework_solution(text: str) -> dict:
    """
    Normalize a homework answer. Non-JSON output becomes a single step
    holding the raw explanation instead of failing the job.
    """
    try:
        data = parse_json_output(text)
    except ModelOutputError:
        data = None

    if not isinstance(data, dict):
        data = {
            "finalAnswer": "See explanation below",
            "method": "Problem solving",
            "difficulty": "medium",
            "estimatedTime": 10,
            "steps": [
                {"stepNumber": 1, "description": "Problem analysis", "explanation": text},
            ],
        }

    return {
        "final_answer": data.get("finalAnswer") or data.get("answer") or "Solution provided",
        "method": data.get("method") or "Problem solving",
        "difficulty": data.get("difficulty") or "medium",
        "steps": data.get("steps") or [
            {"stepNumber": 1, "description": "Solution", "explanation": text},
        ],
        "estimated_time": data.get("estimatedTime") or 10,
        "confidence": 0.8,
    }
