"""
farmhub.engine.grading — Quiz Question Rules & Grading
=======================================================

Pure functions shared by the quiz admin endpoints (question validation)
and attempt submission (grading).  No DB I/O.

Grading rules:
- Picking exactly the correct option set earns 1 point.
- Anything else earns partial credit
  ``max(0, hits / correct - wrong / correct)``.  A single-answer question
  has one correct option, so it can only score 0 or 1.
- The percentage rounds half up.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from farmhub.database.models import QuestionType
from farmhub.errors import ValidationError

__all__ = ["GradedAnswer", "grade_answer", "score_percent", "validate_question_options"]


def validate_question_options(question_type: str, options: Sequence[dict]) -> None:
    """Raise :class:`ValidationError` if *options* don't fit *question_type*.

    Each option is a mapping with at least ``text`` and ``is_correct``.
    """
    try:
        qtype = QuestionType(question_type)
    except ValueError:
        raise ValidationError(f"Unknown question type: {question_type}", "invalid_question_type")

    if any(not str(opt.get("text") or "").strip() for opt in options):
        raise ValidationError("Every option needs text", "invalid_options")

    correct = sum(1 for opt in options if opt.get("is_correct"))

    if qtype is QuestionType.MCQ:
        if len(options) < 2:
            raise ValidationError("MCQ questions need at least two options", "invalid_options")
        if correct != 1:
            raise ValidationError("MCQ questions must have exactly one correct option", "invalid_options")
    elif qtype is QuestionType.MULTI:
        if correct < 2:
            raise ValidationError(
                "Multiple-answer questions need at least two correct options", "invalid_options"
            )
    elif len(options) != 2 or correct != 1:
        raise ValidationError(
            "True/false questions need exactly two options with one correct", "invalid_options"
        )


@dataclass(frozen=True, slots=True)
class GradedAnswer:
    is_correct: bool
    points: float


def grade_answer(correct_ids: Iterable[str], selected_ids: Iterable[str]) -> GradedAnswer:
    correct = set(correct_ids)
    selected = set(selected_ids)
    if not correct:
        return GradedAnswer(is_correct=False, points=0.0)
    if selected == correct:
        return GradedAnswer(is_correct=True, points=1.0)

    hits = len(selected & correct)
    wrong = len(selected - correct)
    partial = max(0.0, hits / len(correct) - wrong / len(correct))
    return GradedAnswer(is_correct=False, points=partial)


def score_percent(points: float, max_points: int) -> int:
    """Percentage of *max_points* earned, rounded half up (0 when empty)."""
    if max_points <= 0:
        return 0
    return int(math.floor(points / max_points * 100 + 0.5))
