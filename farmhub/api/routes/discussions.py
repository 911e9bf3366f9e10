"""
farmhub.api.routes.discussions — Posts, replies, votes and tags
================================================================
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from farmhub.api.deps import get_current_user, get_optional_user, get_session, service_errors
from farmhub.api.rate_limit import rate_limited_moderator
from farmhub.database.models import VoteTarget
from farmhub.services import discussion_service

router = APIRouter(prefix="/discussions", tags=["discussions"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class PostCreate(BaseModel):
    title: str
    content: str
    tags: list[str] = Field(default_factory=list)
    is_market_post: bool = False
    is_available: bool = False


class ReplyCreate(BaseModel):
    content: str
    parent_reply_id: str | None = None


class VoteBody(BaseModel):
    vote_type: str


def _viewer_id(user: dict | None) -> int | None:
    return user["id"] if user else None


# ---------------------------------------------------------------------------
# Posts
# ---------------------------------------------------------------------------
@router.get("/posts")
def list_posts(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=50),
    search: str | None = Query(None),
    tag: str | None = Query(None),
    is_market_post: bool | None = Query(None),
    user_id: int | None = Query(None),
    sort: str = Query("recent"),
    user: dict | None = Depends(get_optional_user),
    session: Session = Depends(get_session),
):
    with service_errors():
        return discussion_service.list_posts(
            session,
            viewer_id=_viewer_id(user),
            page=page,
            limit=limit,
            search=search,
            tag=tag,
            is_market_post=is_market_post,
            user_id=user_id,
            sort=sort,
        )


@router.post("/posts", status_code=201)
def create_post(
    body: PostCreate,
    user: dict = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    with service_errors():
        post = discussion_service.create_post(
            session,
            user["id"],
            title=body.title,
            content=body.content,
            tags=body.tags,
            is_market_post=body.is_market_post,
            is_available=body.is_available,
        )
        session.commit()
    return {"post": discussion_service.post_to_dict(post)}


@router.get("/posts/{post_id}")
def get_post(
    post_id: str,
    user: dict | None = Depends(get_optional_user),
    session: Session = Depends(get_session),
):
    is_staff = bool(user and (user["is_admin"] or user["is_moderator"]))
    with service_errors():
        return {"post": discussion_service.get_post(session, post_id, _viewer_id(user), is_staff=is_staff)}


@router.post("/posts/{post_id}/vote")
def vote_post(
    post_id: str,
    body: VoteBody,
    user: dict = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    with service_errors():
        result = discussion_service.vote(session, VoteTarget.POST, post_id, user["id"], body.vote_type)
        session.commit()
    return result


@router.post("/posts/{post_id}/approve")
def approve_post(
    post_id: str,
    moderator: dict = Depends(rate_limited_moderator),
    session: Session = Depends(get_session),
):
    with service_errors():
        result = discussion_service.approve_post(session, post_id, moderator["id"])
        session.commit()
    return result


@router.post("/posts/{post_id}/reject")
def reject_post(
    post_id: str,
    moderator: dict = Depends(rate_limited_moderator),
    session: Session = Depends(get_session),
):
    with service_errors():
        result = discussion_service.reject_post(session, post_id, moderator["id"])
        session.commit()
    return result


# ---------------------------------------------------------------------------
# Replies
# ---------------------------------------------------------------------------
@router.get("/posts/{post_id}/replies")
def list_replies(
    post_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=50),
    user: dict | None = Depends(get_optional_user),
    session: Session = Depends(get_session),
):
    with service_errors():
        return discussion_service.list_replies(
            session, post_id, _viewer_id(user), page=page, limit=limit
        )


@router.post("/posts/{post_id}/replies", status_code=201)
def create_reply(
    post_id: str,
    body: ReplyCreate,
    user: dict = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    with service_errors():
        reply = discussion_service.create_reply(
            session, post_id, user["id"], body.content, body.parent_reply_id
        )
        session.commit()
    return {"reply": discussion_service.reply_to_dict(reply)}


@router.post("/replies/{reply_id}/vote")
def vote_reply(
    reply_id: str,
    body: VoteBody,
    user: dict = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    with service_errors():
        result = discussion_service.vote(session, VoteTarget.REPLY, reply_id, user["id"], body.vote_type)
        session.commit()
    return result


# ---------------------------------------------------------------------------
# Tags
# ---------------------------------------------------------------------------
@router.get("/tags")
def list_tags(session: Session = Depends(get_session)):
    return {"tags": discussion_service.list_tags(session)}
