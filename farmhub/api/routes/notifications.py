"""
farmhub.api.routes.notifications — The caller's notification inbox
====================================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from farmhub.api.deps import get_current_user, get_session
from farmhub.services import notification_service

router = APIRouter(prefix="/notifications", tags=["notifications"])


class MarkRead(BaseModel):
    ids: list[str] = Field(default_factory=list)


@router.get("")
def list_notifications(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    unread_only: bool = Query(False),
    user: dict = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    return notification_service.list_notifications(
        session, user["id"], page=page, limit=limit, unread_only=unread_only
    )


@router.get("/unread-count")
def unread_count(user: dict = Depends(get_current_user), session: Session = Depends(get_session)):
    return {"unread_count": notification_service.unread_count(session, user["id"])}


@router.post("/mark-read")
def mark_read(
    body: MarkRead,
    user: dict = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    updated = notification_service.mark_read(session, user["id"], body.ids)
    session.commit()
    return {"updated": updated}


@router.post("/mark-all-read")
def mark_all_read(user: dict = Depends(get_current_user), session: Session = Depends(get_session)):
    updated = notification_service.mark_all_read(session, user["id"])
    session.commit()
    return {"updated": updated}


@router.delete("")
def clear_all(user: dict = Depends(get_current_user), session: Session = Depends(get_session)):
    deleted = notification_service.clear_all(session, user["id"])
    session.commit()
    return {"deleted": deleted}
