"""
farmhub.api.auth — Caller identity
===================================

Tokens are issued by the community's identity provider; this service only
verifies them (see :mod:`farmhub.api.deps`).
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from farmhub.api.deps import get_current_user, get_session
from farmhub.database.models import User

router = APIRouter(prefix="/auth", tags=["auth"])


@router.get("/me")
def me(user: dict = Depends(get_current_user), session: Session = Depends(get_session)):
    """Return the caller's identity and staff flags."""
    row = session.get(User, user["id"])
    return {
        "id": str(user["id"]),
        "username": row.username if row else user.get("username"),
        "display_name": row.display_name if row else None,
        "timezone": row.timezone if row else "UTC",
        "is_admin": user["is_admin"],
        "is_moderator": user["is_moderator"],
    }
