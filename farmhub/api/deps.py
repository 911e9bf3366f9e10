"""
farmhub.api.deps — FastAPI dependency injection
================================================

Bearer-token identity for members, moderators and admins, plus the shared
engine/config/session dependencies.  The first request carrying a new
``sub`` creates the matching ``users`` row from the token claims.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterator
from contextlib import contextmanager
from functools import lru_cache
from typing import Annotated

import jwt
from fastapi import Depends, Header, HTTPException, status
from jwt.exceptions import InvalidTokenError
from sqlalchemy import Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from farmhub.config import FarmhubConfig, load_config
from farmhub.database.engine import create_db_engine
from farmhub.database.models import User, UserPrestige
from farmhub.errors import FarmhubError, RateLimitedError

logger = logging.getLogger(__name__)

_WEAK_SECRETS = frozenset({
    "farmhub-dev-secret-change-me",
    "change-me",
    "changeme",
    "secret",
    "dev",
    "",
})

_MIN_SECRET_LENGTH = 32

JWT_ALGORITHM = "HS256"


def _load_jwt_secret() -> str:
    """Load and validate JWT_SECRET from the environment.

    Raises RuntimeError at import time if the secret is missing, blank,
    too short (< 32 chars), or a known weak default.
    """
    secret = os.getenv("JWT_SECRET", "")
    if not secret:
        raise RuntimeError(
            "JWT_SECRET environment variable is not set. "
            "Generate one with: python -c \"import secrets; print(secrets.token_urlsafe(64))\""
        )
    if secret in _WEAK_SECRETS:
        raise RuntimeError(
            f"JWT_SECRET is set to a known weak default ('{secret}'). "
            "Please set a strong, unique secret."
        )
    if len(secret) < _MIN_SECRET_LENGTH:
        raise RuntimeError(
            f"JWT_SECRET is too short ({len(secret)} chars). "
            f"Minimum length is {_MIN_SECRET_LENGTH} characters."
        )
    return secret


JWT_SECRET: str = _load_jwt_secret()


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return create_db_engine()


@lru_cache(maxsize=1)
def get_config() -> FarmhubConfig:
    return load_config()


def get_session(engine: Annotated[Engine, Depends(get_engine)]):
    with Session(engine) as session:
        yield session


# ---------------------------------------------------------------------------
# Service error translation
# ---------------------------------------------------------------------------
@contextmanager
def service_errors() -> Iterator[None]:
    """Re-raise domain errors from the service layer as ``HTTPException``."""
    try:
        yield
    except FarmhubError as err:
        headers = None
        if isinstance(err, RateLimitedError):
            headers = {"Retry-After": str(err.retry_after)}
        raise HTTPException(err.status_code, detail=err.to_detail(), headers=headers) from err


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------
def _decode_bearer(authorization: str | None) -> dict | None:
    if not authorization:
        return None
    if not authorization.startswith("Bearer "):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Missing token")
    token = authorization.split(" ", 1)[1]
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except InvalidTokenError:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid token")
    try:
        payload["id"] = int(payload["sub"])
    except (KeyError, TypeError, ValueError):
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid token subject")
    return payload


def _ensure_user(session: Session, payload: dict) -> User:
    """Return the ``users`` row for the token, creating it on first sight."""
    user = session.get(User, payload["id"])
    if user is not None:
        return user
    user = User(
        id=payload["id"],
        username=str(payload.get("username") or f"user{payload['id']}")[:100],
        display_name=payload.get("display_name"),
    )
    session.add(user)
    try:
        session.commit()
        logger.info("Registered user %s (%s) from token", user.id, user.username)
    except IntegrityError:
        # A concurrent request registered the same member
        session.rollback()
        user = session.get(User, payload["id"])
    return user


def _is_promoted_moderator(session: Session, user_id: int) -> bool:
    prestige = session.get(UserPrestige, user_id)
    return bool(prestige and prestige.is_moderator)


def get_optional_user(
    authorization: Annotated[str | None, Header()] = None,
    session: Session = Depends(get_session),
) -> dict | None:
    """Payload of a valid token, or None when no token was sent."""
    payload = _decode_bearer(authorization)
    if payload is None:
        return None
    _ensure_user(session, payload)
    payload["is_admin"] = bool(payload.get("is_admin"))
    payload["is_moderator"] = bool(payload.get("is_moderator")) or _is_promoted_moderator(
        session, payload["id"]
    )
    return payload


def get_current_user(user: dict | None = Depends(get_optional_user)) -> dict:
    """Validate JWT and return the member payload. Raises 401 if missing."""
    if user is None:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Missing token")
    return user


def get_current_moderator(user: dict = Depends(get_current_user)) -> dict:
    if not (user["is_moderator"] or user["is_admin"]):
        raise HTTPException(status.HTTP_403_FORBIDDEN, "Not moderator")
    return user


def get_current_admin(user: dict = Depends(get_current_user)) -> dict:
    if not user["is_admin"]:
        raise HTTPException(status.HTTP_403_FORBIDDEN, "Not admin")
    return user
