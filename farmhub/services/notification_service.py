"""
farmhub.services.notification_service — In-App Notifications
=============================================================

Notifications are a side effect of the primary write (a vote, a reply, a
moderation decision).  :func:`notify` runs inside a SAVEPOINT and logs
failures instead of raising, so a broken notification never rolls back
the action that triggered it.

Members are never notified about their own actions.
"""

from __future__ import annotations

import logging
import re

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from farmhub.database.models import Notification, NotificationType, User

logger = logging.getLogger(__name__)

MENTION_RE = re.compile(r"(?<![\w@])@([A-Za-z0-9_][A-Za-z0-9_.-]{0,99})")


def create(
    session: Session,
    user_id: int,
    type: NotificationType | str,
    title: str,
    message: str,
    data: dict | None = None,
    *,
    actor_id: int | None = None,
) -> Notification | None:
    if actor_id is not None and actor_id == user_id:
        return None
    row = Notification(
        user_id=user_id,
        type=str(type),
        title=title,
        message=message,
        data=data or {},
    )
    session.add(row)
    session.flush()
    return row


def notify(session: Session, user_id: int, type: NotificationType | str, title: str,
           message: str, data: dict | None = None, *, actor_id: int | None = None) -> Notification | None:
    """Best-effort :func:`create`; errors are logged and swallowed into None."""
    try:
        with session.begin_nested():
            return create(session, user_id, type, title, message, data, actor_id=actor_id)
    except SQLAlchemyError:
        logger.exception("Failed to create %s notification for user %s", type, user_id)
        return None


def extract_mentions(content: str) -> set[str]:
    return {match.rstrip(".") for match in MENTION_RE.findall(content or "")}


def notify_mentions(
    session: Session,
    content: str,
    *,
    actor_id: int,
    data: dict,
    exclude: set[int] | None = None,
) -> int:
    """Notify every member ``@mentioned`` in *content*; returns how many were notified."""
    names = extract_mentions(content)
    if not names:
        return 0
    users = session.scalars(
        select(User).where(func.lower(User.username).in_([n.lower() for n in names]))
    ).all()
    actor = session.get(User, actor_id)
    actor_name = actor.username if actor is not None else "Someone"

    sent = 0
    for user in users:
        if exclude and user.id in exclude:
            continue
        row = notify(
            session,
            user.id,
            NotificationType.MENTION,
            "You were mentioned",
            f"{actor_name} mentioned you in a discussion",
            data,
            actor_id=actor_id,
        )
        if row is not None:
            sent += 1
    return sent


# ---------------------------------------------------------------------------
# Inbox
# ---------------------------------------------------------------------------
def to_dict(row: Notification) -> dict:
    return {
        "id": row.id,
        "type": row.type,
        "title": row.title,
        "message": row.message,
        "data": row.data or {},
        "read": row.read,
        "created_at": row.created_at.isoformat() if row.created_at else None,
    }


def unread_count(session: Session, user_id: int) -> int:
    return session.scalar(
        select(func.count(Notification.id)).where(
            Notification.user_id == user_id, Notification.read.is_(False)
        )
    ) or 0


def list_notifications(
    session: Session,
    user_id: int,
    *,
    page: int = 1,
    limit: int = 20,
    unread_only: bool = False,
) -> dict:
    query = select(Notification).where(Notification.user_id == user_id)
    if unread_only:
        query = query.where(Notification.read.is_(False))
    total = session.scalar(select(func.count()).select_from(query.subquery())) or 0
    rows = session.scalars(
        query.order_by(Notification.created_at.desc(), Notification.id)
        .offset((page - 1) * limit)
        .limit(limit)
    ).all()
    return {
        "notifications": [to_dict(r) for r in rows],
        "total": total,
        "page": page,
        "limit": limit,
        "unread_count": unread_count(session, user_id),
    }


def mark_read(session: Session, user_id: int, ids: list[str]) -> int:
    if not ids:
        return 0
    result = session.execute(
        update(Notification)
        .where(Notification.user_id == user_id, Notification.id.in_(ids))
        .values(read=True)
    )
    return result.rowcount or 0


def mark_all_read(session: Session, user_id: int) -> int:
    result = session.execute(
        update(Notification)
        .where(Notification.user_id == user_id, Notification.read.is_(False))
        .values(read=True)
    )
    return result.rowcount or 0


def clear_all(session: Session, user_id: int) -> int:
    result = session.execute(delete(Notification).where(Notification.user_id == user_id))
    return result.rowcount or 0
