"""
farmhub.api.routes.moderation — Reports and moderator decisions
================================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from farmhub.api.deps import get_config, get_current_moderator, get_current_user, get_session, service_errors
from farmhub.api.rate_limit import rate_limited_moderator
from farmhub.config import FarmhubConfig
from farmhub.services import moderation_service

router = APIRouter(prefix="/moderation", tags=["moderation"])


class ReportCreate(BaseModel):
    reason: str
    details: str | None = None


class DecisionBody(BaseModel):
    decision: str
    justification: str | None = None


def _report(session: Session, cfg: FarmhubConfig, user: dict, body: ReportCreate, **target) -> dict:
    with service_errors():
        result = moderation_service.create_report(
            session, user["id"], reason=body.reason, details=body.details, config=cfg, **target
        )
        session.commit()
    return result


@router.post("/posts/{post_id}/report", status_code=201)
def report_post(
    post_id: str,
    body: ReportCreate,
    user: dict = Depends(get_current_user),
    session: Session = Depends(get_session),
    cfg: FarmhubConfig = Depends(get_config),
):
    return _report(session, cfg, user, body, post_id=post_id)


@router.post("/replies/{reply_id}/report", status_code=201)
def report_reply(
    reply_id: str,
    body: ReportCreate,
    user: dict = Depends(get_current_user),
    session: Session = Depends(get_session),
    cfg: FarmhubConfig = Depends(get_config),
):
    return _report(session, cfg, user, body, reply_id=reply_id)


@router.get("/pending")
def pending_reports(
    search: str | None = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    moderator: dict = Depends(get_current_moderator),
    session: Session = Depends(get_session),
):
    return moderation_service.list_pending(session, search=search, page=page, limit=limit)


@router.post("/posts/{post_id}/decision")
def decide(
    post_id: str,
    body: DecisionBody,
    moderator: dict = Depends(rate_limited_moderator),
    session: Session = Depends(get_session),
):
    with service_errors():
        result = moderation_service.decide(
            session, post_id, body.decision, body.justification, moderator["id"]
        )
        session.commit()
    return result


@router.get("/history")
def decision_history(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    decision: str | None = Query(None),
    moderator: dict = Depends(get_current_moderator),
    session: Session = Depends(get_session),
):
    return moderation_service.history(session, page=page, limit=limit, decision=decision)


@router.get("/metrics")
def moderation_metrics(
    moderator: dict = Depends(get_current_moderator),
    session: Session = Depends(get_session),
):
    return moderation_service.metrics(session)
