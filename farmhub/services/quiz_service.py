"""
farmhub.services.quiz_service — Quizzes, Attempts & Grading
============================================================

Admins author quizzes as a list of questions, each with its own option
set.  A member starts an attempt, which freezes the questions and their
correct answers into ``attempt_questions_snapshot``; later edits to the
quiz never change how an open attempt is graded.

Attempt lifecycle::

    start_attempt  → snapshot + expires_at (no answers yet)
    save_answers   → optional progress save before submission
    submit_attempt → grade against the snapshot, award QUIZ_COMPLETED

Running out of time does not reject a submission; it is recorded as
``time_exceeded`` on the attempt.
"""

from __future__ import annotations

import logging
import random
from datetime import UTC, datetime, timedelta

from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from farmhub.config import FarmhubConfig
from farmhub.database.models import (
    BestPracticeTag,
    Difficulty,
    Quiz,
    QuizAttempt,
    QuizAttemptAnswer,
    QuizQuestion,
    QuizQuestionOption,
)
from farmhub.engine.grading import grade_answer, score_percent, validate_question_options
from farmhub.engine.periods import as_utc
from farmhub.errors import ConflictError, NotFoundError, RateLimitedError, ValidationError
from farmhub.services import admin_service, scoring_actions, streak_service

logger = logging.getLogger(__name__)

DEFAULT_QUESTION_COUNT = 10
TITLE_MIN, TITLE_MAX = 3, 255


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------
def quiz_to_dict(quiz: Quiz, *, question_count: int | None = None) -> dict:
    data = {
        "id": quiz.id,
        "title": quiz.title,
        "description": quiz.description,
        "duration_minutes": quiz.duration_minutes,
        "passing_score": quiz.passing_score,
        "is_active": quiz.is_active,
        "best_practice_tag_id": quiz.best_practice_tag_id,
        "created_at": quiz.created_at.isoformat() if quiz.created_at else None,
    }
    if question_count is not None:
        data["question_count"] = question_count
    return data


def question_to_dict(question: QuizQuestion) -> dict:
    """Admin view of a question, correct flags included."""
    return {
        "id": question.id,
        "quiz_id": question.quiz_id,
        "text": question.text,
        "explanation": question.explanation,
        "order_index": question.order_index,
        "type": question.type,
        "difficulty": question.difficulty,
        "is_active": question.is_active,
        "options": [
            {"id": o.id, "text": o.text, "is_correct": o.is_correct, "order_index": o.order_index}
            for o in question.options
            if not o.is_deleted
        ],
    }


def _public_questions(snapshot: list[dict]) -> list[dict]:
    """Strip correctness from an attempt snapshot before sending it to the member."""
    return [
        {
            "id": q["id"],
            "text": q["text"],
            "type": q["type"],
            "difficulty": q.get("difficulty"),
            "options": [{"id": o["id"], "text": o["text"]} for o in q["options"]],
        }
        for q in snapshot
    ]


def _attempt_times(attempt: QuizAttempt) -> tuple[datetime, datetime]:
    started = as_utc(attempt.started_at)
    return started, started + timedelta(seconds=attempt.duration_seconds_snapshot)


def attempt_to_dict(attempt: QuizAttempt) -> dict:
    started, expires = _attempt_times(attempt)
    return {
        "id": attempt.id,
        "quiz_id": attempt.quiz_id,
        "started_at": started.isoformat(),
        "expires_at": expires.isoformat(),
        "duration_seconds": attempt.duration_seconds_snapshot,
        "submitted_at": as_utc(attempt.submitted_at).isoformat() if attempt.submitted_at else None,
        "score_points": attempt.score_points,
        "max_points": attempt.max_points,
        "score_percent": attempt.score_percent,
        "passed": attempt.passed,
        "time_exceeded": attempt.time_exceeded,
    }


# ---------------------------------------------------------------------------
# Member reads
# ---------------------------------------------------------------------------
def _active_question_count():
    return (
        select(func.count(QuizQuestion.id))
        .where(
            QuizQuestion.quiz_id == Quiz.id,
            QuizQuestion.is_active.is_(True),
            QuizQuestion.is_deleted.is_(False),
        )
        .scalar_subquery()
    )


def list_quizzes(
    session: Session,
    *,
    page: int = 1,
    limit: int = 10,
    search: str | None = None,
    include_inactive: bool = False,
) -> dict:
    query = select(Quiz, _active_question_count()).where(Quiz.is_deleted.is_(False))
    if not include_inactive:
        query = query.where(Quiz.is_active.is_(True))
    if search and search.strip():
        query = query.where(Quiz.title.ilike(f"%{search.strip()}%"))

    total = session.scalar(
        select(func.count()).select_from(query.with_only_columns(Quiz.id).subquery())
    ) or 0
    rows = session.execute(
        query.order_by(Quiz.created_at.desc(), Quiz.id).offset((page - 1) * limit).limit(limit)
    ).all()
    return {
        "quizzes": [quiz_to_dict(q, question_count=n) for q, n in rows],
        "total": total,
        "page": page,
        "limit": limit,
    }


def get_live_quiz(session: Session, quiz_id: str) -> Quiz:
    quiz = session.get(Quiz, quiz_id)
    if quiz is None or quiz.is_deleted or not quiz.is_active:
        raise NotFoundError("Quiz not found", "quiz_not_found")
    return quiz


def get_quiz(session: Session, quiz_id: str) -> dict:
    quiz = get_live_quiz(session, quiz_id)
    count = session.scalar(
        select(func.count(QuizQuestion.id)).where(
            QuizQuestion.quiz_id == quiz.id,
            QuizQuestion.is_active.is_(True),
            QuizQuestion.is_deleted.is_(False),
        )
    ) or 0
    return quiz_to_dict(quiz, question_count=count)


# ---------------------------------------------------------------------------
# Attempts
# ---------------------------------------------------------------------------
def _live_questions(session: Session, quiz_id: str) -> list[QuizQuestion]:
    return list(session.scalars(
        select(QuizQuestion)
        .options(selectinload(QuizQuestion.options))
        .where(
            QuizQuestion.quiz_id == quiz_id,
            QuizQuestion.is_active.is_(True),
            QuizQuestion.is_deleted.is_(False),
        )
        .order_by(QuizQuestion.order_index, QuizQuestion.id)
    ).all())


def _snapshot_question(question: QuizQuestion, shuffle: bool) -> dict:
    options = [
        {"id": o.id, "text": o.text, "is_correct": o.is_correct}
        for o in question.options
        if not o.is_deleted
    ]
    if shuffle:
        random.shuffle(options)
    return {
        "id": question.id,
        "text": question.text,
        "type": question.type,
        "difficulty": question.difficulty,
        "explanation": question.explanation,
        "options": options,
    }


def start_attempt(
    session: Session,
    quiz_id: str,
    user_id: int,
    *,
    question_count: int = DEFAULT_QUESTION_COUNT,
    shuffle: bool = True,
    config: FarmhubConfig | None = None,
    now: datetime | None = None,
) -> dict:
    config = config or FarmhubConfig()
    quiz = get_live_quiz(session, quiz_id)

    open_attempts = session.scalar(
        select(func.count(QuizAttempt.id)).where(
            QuizAttempt.quiz_id == quiz.id,
            QuizAttempt.user_id == user_id,
            QuizAttempt.submitted_at.is_(None),
        )
    ) or 0
    if open_attempts >= config.quiz_max_open_attempts:
        raise RateLimitedError(
            "Too many unfinished attempts for this quiz",
            "too_many_open_attempts",
            retry_after=60,
            open_attempts=open_attempts,
        )

    questions = _live_questions(session, quiz.id)
    if not questions:
        raise ConflictError("This quiz has no questions yet", "NO_QUESTIONS")

    count = max(1, min(int(question_count or DEFAULT_QUESTION_COUNT), config.quiz_max_questions))
    if shuffle:
        random.shuffle(questions)
    snapshot = [_snapshot_question(q, shuffle) for q in questions[:count]]

    attempt = QuizAttempt(
        quiz_id=quiz.id,
        user_id=user_id,
        started_at=now or datetime.now(UTC),
        duration_seconds_snapshot=quiz.duration_minutes * 60,
        attempt_questions_snapshot=snapshot,
    )
    session.add(attempt)
    session.flush()
    logger.info("User %s started attempt %s on quiz %s (%d questions)",
                user_id, attempt.id, quiz.id, len(snapshot))

    started, expires = _attempt_times(attempt)
    return {
        "attempt": {
            "id": attempt.id,
            "quiz_id": quiz.id,
            "started_at": started.isoformat(),
            "expires_at": expires.isoformat(),
            "duration_seconds": attempt.duration_seconds_snapshot,
        },
        "quiz": {
            "id": quiz.id,
            "title": quiz.title,
            "description": quiz.description,
            "passing_score": quiz.passing_score,
        },
        "questions": _public_questions(snapshot),
    }


def _get_own_attempt(session: Session, attempt_id: str, user_id: int) -> QuizAttempt:
    attempt = session.get(QuizAttempt, attempt_id)
    if attempt is None or attempt.user_id != user_id:
        raise NotFoundError("Attempt not found", "attempt_not_found")
    return attempt


def get_attempt(session: Session, attempt_id: str, user_id: int) -> dict:
    attempt = _get_own_attempt(session, attempt_id, user_id)
    return {
        "attempt": attempt_to_dict(attempt),
        "questions": _public_questions(attempt.attempt_questions_snapshot or []),
        "answers": {a.question_id: list(a.selected_option_ids or []) for a in attempt.answers},
    }


def _normalize_answers(snapshot: list[dict], answers: dict[str, list[str]] | None) -> dict[str, list[str]]:
    """Keep answers to snapshot questions only, limited to that question's options."""
    answers = answers or {}
    normalized: dict[str, list[str]] = {}
    for q in snapshot:
        picked = answers.get(q["id"])
        if picked is None:
            continue
        if isinstance(picked, str):
            picked = [picked]
        valid = {o["id"] for o in q["options"]}
        normalized[q["id"]] = sorted({p for p in picked if p in valid})
    return normalized


def _upsert_answer(session: Session, attempt: QuizAttempt, question_id: str, selected: list[str],
                   is_correct: bool = False, points: float = 0.0) -> None:
    existing = next((a for a in attempt.answers if a.question_id == question_id), None)
    if existing is None:
        attempt.answers.append(QuizAttemptAnswer(
            question_id=question_id,
            selected_option_ids=selected,
            is_correct_snapshot=is_correct,
            points_awarded=points,
        ))
    else:
        existing.selected_option_ids = selected
        existing.is_correct_snapshot = is_correct
        existing.points_awarded = points


def save_answers(session: Session, attempt_id: str, user_id: int, answers: dict[str, list[str]]) -> dict:
    """Store in-progress answers without grading them."""
    attempt = _get_own_attempt(session, attempt_id, user_id)
    if attempt.submitted_at is not None:
        raise ValidationError("Attempt already submitted", "already_submitted")
    normalized = _normalize_answers(attempt.attempt_questions_snapshot or [], answers)
    for question_id, selected in normalized.items():
        _upsert_answer(session, attempt, question_id, selected)
    session.flush()
    return {"attempt_id": attempt.id, "saved": len(normalized)}


def submit_attempt(
    session: Session,
    attempt_id: str,
    user_id: int,
    answers: dict[str, list[str]] | None,
    now: datetime | None = None,
) -> dict:
    """Grade every question of the snapshot; unanswered questions score 0."""
    attempt = _get_own_attempt(session, attempt_id, user_id)
    if attempt.submitted_at is not None:
        raise ValidationError("Attempt already submitted", "already_submitted")

    now = now or datetime.now(UTC)
    snapshot = attempt.attempt_questions_snapshot or []
    normalized = _normalize_answers(snapshot, answers)
    # Fall back to progress saved earlier for questions not in this payload
    for saved in attempt.answers:
        normalized.setdefault(saved.question_id, list(saved.selected_option_ids or []))

    results = []
    total_points = 0.0
    for q in snapshot:
        correct_ids = [o["id"] for o in q["options"] if o["is_correct"]]
        selected = normalized.get(q["id"], [])
        graded = grade_answer(correct_ids, selected)
        total_points += graded.points
        _upsert_answer(session, attempt, q["id"], selected, graded.is_correct, graded.points)
        results.append({
            "question_id": q["id"],
            "selected_option_ids": selected,
            "correct_option_ids": correct_ids,
            "is_correct": graded.is_correct,
            "points": round(graded.points, 4),
            "explanation": q.get("explanation"),
        })

    quiz = session.get(Quiz, attempt.quiz_id)
    percent = score_percent(total_points, len(snapshot))
    _, expires = _attempt_times(attempt)

    attempt.submitted_at = now
    attempt.score_points = round(total_points, 4)
    attempt.max_points = len(snapshot)
    attempt.score_percent = percent
    attempt.passed = percent >= quiz.passing_score
    attempt.time_exceeded = as_utc(now) > expires
    session.flush()

    scoring_actions.on_quiz_completed(
        session, user_id, attempt.id,
        quiz_id=attempt.quiz_id, passed=attempt.passed, score_percent=percent,
    )
    streak_service.record_activity(session, user_id, now)
    logger.info("Attempt %s submitted by user %s: %d%% (passed=%s)",
                attempt.id, user_id, percent, attempt.passed)

    return {"attempt": attempt_to_dict(attempt), "results": results}


def quiz_stats(session: Session, quiz_id: str, user_id: int | None = None) -> dict:
    """Attempt statistics for one quiz, for one member or across everyone."""
    quiz = session.get(Quiz, quiz_id)
    if quiz is None or quiz.is_deleted:
        raise NotFoundError("Quiz not found", "quiz_not_found")

    base = select(QuizAttempt).where(QuizAttempt.quiz_id == quiz.id)
    if user_id is not None:
        base = base.where(QuizAttempt.user_id == user_id)
    attempts = session.scalars(base).all()
    submitted = [a for a in attempts if a.submitted_at is not None]
    passed = [a for a in submitted if a.passed]
    best = max(submitted, key=lambda a: (a.score_percent or 0, -as_utc(a.submitted_at).timestamp()),
               default=None)

    return {
        "quiz_id": quiz.id,
        "user_id": str(user_id) if user_id is not None else None,
        "attempts": len(attempts),
        "submitted": len(submitted),
        "average_percent": (
            round(sum(a.score_percent or 0 for a in submitted) / len(submitted), 2) if submitted else 0.0
        ),
        "success_rate": round(len(passed) / len(submitted) * 100, 2) if submitted else 0.0,
        "best_attempt": attempt_to_dict(best) if best else None,
    }


# ---------------------------------------------------------------------------
# Admin writes
# ---------------------------------------------------------------------------
def _check_quiz_fields(title: str | None, duration_minutes: int | None, passing_score: int | None) -> None:
    if title is not None and not TITLE_MIN <= len(title.strip()) <= TITLE_MAX:
        raise ValidationError(
            f"Title must be between {TITLE_MIN} and {TITLE_MAX} characters", "invalid_title"
        )
    if duration_minutes is not None and duration_minutes < 1:
        raise ValidationError("Duration must be at least one minute", "invalid_duration")
    if passing_score is not None and not 0 <= passing_score <= 100:
        raise ValidationError("Passing score must be between 0 and 100", "invalid_passing_score")


def _check_tag(session: Session, tag_id: int | None) -> None:
    if tag_id is not None and session.get(BestPracticeTag, tag_id) is None:
        raise ValidationError("Unknown best-practice category", "invalid_category")


def _get_editable_quiz(session: Session, quiz_id: str) -> Quiz:
    quiz = session.get(Quiz, quiz_id)
    if quiz is None or quiz.is_deleted:
        raise NotFoundError("Quiz not found", "quiz_not_found")
    return quiz


def create_quiz(
    session: Session,
    admin_id: int,
    *,
    title: str,
    description: str | None = None,
    duration_minutes: int = 30,
    passing_score: int = 70,
    is_active: bool = True,
    best_practice_tag_id: int | None = None,
) -> Quiz:
    _check_quiz_fields(title, duration_minutes, passing_score)
    _check_tag(session, best_practice_tag_id)
    quiz = Quiz(
        title=title.strip(),
        description=description,
        duration_minutes=duration_minutes,
        passing_score=passing_score,
        is_active=is_active,
        best_practice_tag_id=best_practice_tag_id,
        created_by=admin_id,
    )
    return admin_service.audited_create(session, quiz, actor_id=admin_id)


def update_quiz(session: Session, quiz_id: str, admin_id: int, **changes) -> Quiz:
    quiz = _get_editable_quiz(session, quiz_id)
    _check_quiz_fields(changes.get("title"), changes.get("duration_minutes"), changes.get("passing_score"))
    _check_tag(session, changes.get("best_practice_tag_id"))
    if changes.get("title") is not None:
        changes["title"] = changes["title"].strip()
    return admin_service.audited_update(session, quiz, actor_id=admin_id, **changes)


def delete_quiz(session: Session, quiz_id: str, admin_id: int) -> Quiz:
    quiz = _get_editable_quiz(session, quiz_id)
    return admin_service.audited_soft_delete(session, quiz, actor_id=admin_id)


def list_questions(session: Session, quiz_id: str) -> list[dict]:
    quiz = _get_editable_quiz(session, quiz_id)
    return [question_to_dict(q) for q in quiz.questions if not q.is_deleted]


def _replace_options(question: QuizQuestion, options: list[dict]) -> None:
    for existing in question.options:
        existing.is_deleted = True
    for index, opt in enumerate(options):
        question.options.append(QuizQuestionOption(
            text=str(opt["text"]).strip(),
            is_correct=bool(opt.get("is_correct")),
            order_index=opt.get("order_index", index),
        ))


def _check_difficulty(difficulty: str | None) -> None:
    if difficulty is None:
        return
    try:
        Difficulty(difficulty)
    except ValueError:
        raise ValidationError(f"Unknown difficulty: {difficulty}", "invalid_difficulty")


def create_question(
    session: Session,
    quiz_id: str,
    admin_id: int,
    *,
    text: str,
    type: str,
    options: list[dict],
    explanation: str | None = None,
    difficulty: str = Difficulty.MEDIUM.value,
    order_index: int | None = None,
) -> QuizQuestion:
    quiz = _get_editable_quiz(session, quiz_id)
    if not (text or "").strip():
        raise ValidationError("Question text is required", "invalid_text")
    validate_question_options(type, options)
    _check_difficulty(difficulty)

    if order_index is None:
        order_index = (session.scalar(
            select(func.max(QuizQuestion.order_index)).where(QuizQuestion.quiz_id == quiz.id)
        ) or 0) + 1
    question = QuizQuestion(
        quiz=quiz,
        text=text.strip(),
        explanation=explanation,
        type=type,
        difficulty=difficulty,
        order_index=order_index,
    )
    _replace_options(question, options)
    return admin_service.audited_create(session, question, actor_id=admin_id)


def _get_editable_question(session: Session, question_id: str) -> QuizQuestion:
    question = session.get(QuizQuestion, question_id)
    if question is None or question.is_deleted:
        raise NotFoundError("Question not found", "question_not_found")
    return question


def update_question(
    session: Session,
    question_id: str,
    admin_id: int,
    *,
    options: list[dict] | None = None,
    **changes,
) -> QuizQuestion:
    """Update a question; a given *options* list replaces the whole option set."""
    question = _get_editable_question(session, question_id)
    qtype = changes.get("type") or question.type
    if options is not None:
        validate_question_options(qtype, options)
    elif changes.get("type") is not None:
        current = [{"text": o.text, "is_correct": o.is_correct} for o in question.options if not o.is_deleted]
        validate_question_options(qtype, current)
    _check_difficulty(changes.get("difficulty"))

    if options is not None:
        _replace_options(question, options)
    return admin_service.audited_update(
        session, question, actor_id=admin_id, frozen_keys=("id", "quiz_id"), **changes
    )


def delete_question(session: Session, question_id: str, admin_id: int) -> QuizQuestion:
    question = _get_editable_question(session, question_id)
    return admin_service.audited_soft_delete(session, question, actor_id=admin_id)
