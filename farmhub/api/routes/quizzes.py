"""
farmhub.api.routes.quizzes — Quizzes, attempts and quiz authoring
==================================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from farmhub.api.deps import get_config, get_current_admin, get_current_user, get_session, service_errors
from farmhub.api.rate_limit import rate_limited_admin
from farmhub.config import FarmhubConfig
from farmhub.services import quiz_service

router = APIRouter(prefix="/quizzes", tags=["quizzes"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class AttemptStart(BaseModel):
    question_count: int = Field(quiz_service.DEFAULT_QUESTION_COUNT, ge=1)
    shuffle: bool = True


class AttemptAnswers(BaseModel):
    answers: dict[str, list[str]] = Field(default_factory=dict)


class QuizCreate(BaseModel):
    title: str
    description: str | None = None
    duration_minutes: int = 30
    passing_score: int = 70
    is_active: bool = True
    best_practice_tag_id: int | None = None


class QuizUpdate(BaseModel):
    title: str | None = None
    description: str | None = None
    duration_minutes: int | None = None
    passing_score: int | None = None
    is_active: bool | None = None
    best_practice_tag_id: int | None = None


class OptionIn(BaseModel):
    text: str
    is_correct: bool = False
    order_index: int | None = None


class QuestionCreate(BaseModel):
    text: str
    type: str = "mcq"
    options: list[OptionIn]
    explanation: str | None = None
    difficulty: str = "medium"
    order_index: int | None = None


class QuestionUpdate(BaseModel):
    text: str | None = None
    type: str | None = None
    options: list[OptionIn] | None = None
    explanation: str | None = None
    difficulty: str | None = None
    order_index: int | None = None
    is_active: bool | None = None


def _options(options: list[OptionIn] | None) -> list[dict] | None:
    if options is None:
        return None
    return [o.model_dump(exclude_none=True) for o in options]


# ---------------------------------------------------------------------------
# Member endpoints
# ---------------------------------------------------------------------------
@router.get("")
def list_quizzes(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=50),
    search: str | None = Query(None),
    session: Session = Depends(get_session),
):
    return quiz_service.list_quizzes(session, page=page, limit=limit, search=search)


@router.get("/attempts/{attempt_id}")
def get_attempt(
    attempt_id: str,
    user: dict = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    with service_errors():
        return quiz_service.get_attempt(session, attempt_id, user["id"])


@router.put("/attempts/{attempt_id}/answers")
def save_answers(
    attempt_id: str,
    body: AttemptAnswers,
    user: dict = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    with service_errors():
        result = quiz_service.save_answers(session, attempt_id, user["id"], body.answers)
        session.commit()
    return result


@router.post("/attempts/{attempt_id}/submit")
def submit_attempt(
    attempt_id: str,
    body: AttemptAnswers,
    user: dict = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    with service_errors():
        result = quiz_service.submit_attempt(session, attempt_id, user["id"], body.answers)
        session.commit()
    return result


@router.get("/{quiz_id}")
def get_quiz(quiz_id: str, session: Session = Depends(get_session)):
    with service_errors():
        return {"quiz": quiz_service.get_quiz(session, quiz_id)}


@router.post("/{quiz_id}/attempts", status_code=201)
def start_attempt(
    quiz_id: str,
    body: AttemptStart | None = None,
    user: dict = Depends(get_current_user),
    session: Session = Depends(get_session),
    cfg: FarmhubConfig = Depends(get_config),
):
    body = body or AttemptStart()
    with service_errors():
        result = quiz_service.start_attempt(
            session, quiz_id, user["id"],
            question_count=body.question_count, shuffle=body.shuffle, config=cfg,
        )
        session.commit()
    return result


@router.get("/{quiz_id}/stats")
def my_quiz_stats(
    quiz_id: str,
    user: dict = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    with service_errors():
        return quiz_service.quiz_stats(session, quiz_id, user["id"])


# ---------------------------------------------------------------------------
# Admin endpoints
# ---------------------------------------------------------------------------
@router.get("/admin/all")
def admin_list_quizzes(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    admin: dict = Depends(get_current_admin),
    session: Session = Depends(get_session),
):
    return quiz_service.list_quizzes(session, page=page, limit=limit, include_inactive=True)


@router.get("/admin/{quiz_id}/stats")
def admin_quiz_stats(
    quiz_id: str,
    admin: dict = Depends(get_current_admin),
    session: Session = Depends(get_session),
):
    with service_errors():
        return quiz_service.quiz_stats(session, quiz_id)


@router.post("/admin", status_code=201)
def create_quiz(
    body: QuizCreate,
    admin: dict = Depends(rate_limited_admin),
    session: Session = Depends(get_session),
):
    with service_errors():
        quiz = quiz_service.create_quiz(session, admin["id"], **body.model_dump())
        session.commit()
    return {"quiz": quiz_service.quiz_to_dict(quiz)}


@router.put("/admin/{quiz_id}")
def update_quiz(
    quiz_id: str,
    body: QuizUpdate,
    admin: dict = Depends(rate_limited_admin),
    session: Session = Depends(get_session),
):
    with service_errors():
        quiz = quiz_service.update_quiz(session, quiz_id, admin["id"], **body.model_dump(exclude_unset=True))
        session.commit()
    return {"quiz": quiz_service.quiz_to_dict(quiz)}


@router.delete("/admin/{quiz_id}")
def delete_quiz(
    quiz_id: str,
    admin: dict = Depends(rate_limited_admin),
    session: Session = Depends(get_session),
):
    with service_errors():
        quiz_service.delete_quiz(session, quiz_id, admin["id"])
        session.commit()
    return {"deleted": True, "id": quiz_id}


@router.get("/admin/{quiz_id}/questions")
def admin_list_questions(
    quiz_id: str,
    admin: dict = Depends(get_current_admin),
    session: Session = Depends(get_session),
):
    with service_errors():
        return {"questions": quiz_service.list_questions(session, quiz_id)}


@router.post("/admin/{quiz_id}/questions", status_code=201)
def create_question(
    quiz_id: str,
    body: QuestionCreate,
    admin: dict = Depends(rate_limited_admin),
    session: Session = Depends(get_session),
):
    fields = body.model_dump(exclude={"options"})
    with service_errors():
        question = quiz_service.create_question(
            session, quiz_id, admin["id"], options=_options(body.options), **fields
        )
        session.commit()
    return {"question": quiz_service.question_to_dict(question)}


@router.put("/admin/questions/{question_id}")
def update_question(
    question_id: str,
    body: QuestionUpdate,
    admin: dict = Depends(rate_limited_admin),
    session: Session = Depends(get_session),
):
    fields = body.model_dump(exclude_unset=True, exclude={"options"})
    with service_errors():
        question = quiz_service.update_question(
            session, question_id, admin["id"], options=_options(body.options), **fields
        )
        session.commit()
    return {"question": quiz_service.question_to_dict(question)}


@router.delete("/admin/questions/{question_id}")
def delete_question(
    question_id: str,
    admin: dict = Depends(rate_limited_admin),
    session: Session = Depends(get_session),
):
    with service_errors():
        quiz_service.delete_question(session, question_id, admin["id"])
        session.commit()
    return {"deleted": True, "id": question_id}
