"""
farmhub.api.rate_limit — Per-Staff Mutation Rate Limiting
==========================================================

Throttles write endpoints used by admins and moderators: 30 mutations per
minute per staff member.

Uses a sliding-window counter keyed by user ID (JWT ``sub`` claim) and
stored in ``admin_rate_limit_events`` so the limit survives restarts.
Returns HTTP 429 with a ``Retry-After`` header when the limit is exceeded.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime, timedelta
from typing import Any

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy import Engine, delete, func, select
from sqlalchemy.orm import Session

from farmhub.api.deps import get_current_admin, get_current_moderator
from farmhub.database.models import AdminRateLimitEvent
from farmhub.engine.periods import as_utc

logger = logging.getLogger(__name__)

DEFAULT_RATE_LIMIT = 30
DEFAULT_WINDOW_SECONDS = 60

_MUTATION_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})


class StaffRateLimiter:
    """DB-backed sliding window keyed by staff user ID."""

    def __init__(
        self,
        max_requests: int = DEFAULT_RATE_LIMIT,
        window_seconds: int = DEFAULT_WINDOW_SECONDS,
        *,
        engine: Engine,
    ) -> None:
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.engine = engine

    def _window_count(self, session: Session, staff_id: str, now: datetime) -> tuple[int, datetime | None]:
        cutoff = now - timedelta(seconds=self.window_seconds)
        session.execute(
            delete(AdminRateLimitEvent).where(
                AdminRateLimitEvent.admin_id == staff_id,
                AdminRateLimitEvent.timestamp < cutoff,
            )
        )
        count, oldest = session.execute(
            select(func.count(AdminRateLimitEvent.id), func.min(AdminRateLimitEvent.timestamp))
            .where(AdminRateLimitEvent.admin_id == staff_id)
        ).one()
        return count or 0, as_utc(oldest)

    def check(self, staff_id: str) -> tuple[bool, dict[str, Any]]:
        """Return ``(allowed, info)``; ``info["reset"]`` is seconds until a slot frees up."""
        now = datetime.now(UTC)
        with Session(self.engine) as session:
            count, oldest = self._window_count(session, staff_id, now)
            session.commit()

        if count >= self.max_requests and oldest is not None:
            reset = (oldest + timedelta(seconds=self.window_seconds) - now).total_seconds()
            return False, {"remaining": 0, "reset": max(1, int(reset) + 1), "limit": self.max_requests}
        return True, {
            "remaining": max(0, self.max_requests - count),
            "reset": self.window_seconds,
            "limit": self.max_requests,
        }

    def record(self, staff_id: str) -> dict[str, Any]:
        now = datetime.now(UTC)
        with Session(self.engine) as session:
            session.add(AdminRateLimitEvent(admin_id=staff_id, timestamp=now))
            session.flush()
            count, _ = self._window_count(session, staff_id, now)
            session.commit()
        return {
            "remaining": max(0, self.max_requests - count),
            "reset": self.window_seconds,
            "limit": self.max_requests,
        }

    def reset(self, staff_id: str | None = None) -> None:
        """Clear rate limit state. If staff_id is None, clear all."""
        with Session(self.engine) as session:
            query = delete(AdminRateLimitEvent)
            if staff_id is not None:
                query = query.where(AdminRateLimitEvent.admin_id == staff_id)
            session.execute(query)
            session.commit()


# ---------------------------------------------------------------------------
# Module-level singleton
# ---------------------------------------------------------------------------
_limiter: StaffRateLimiter | None = None


def get_rate_limiter() -> StaffRateLimiter:
    if _limiter is None:
        raise RuntimeError("Rate limiter not configured; call configure_rate_limiter() first")
    return _limiter


def configure_rate_limiter(*, engine: Engine) -> None:
    global _limiter
    _limiter = StaffRateLimiter(
        max_requests=DEFAULT_RATE_LIMIT,
        window_seconds=DEFAULT_WINDOW_SECONDS,
        engine=engine,
    )


# ---------------------------------------------------------------------------
# FastAPI dependencies
# ---------------------------------------------------------------------------
async def _enforce(request: Request, staff: dict) -> dict:
    if request.method not in _MUTATION_METHODS:
        return staff

    limiter = get_rate_limiter()
    staff_id = str(staff["sub"])
    allowed, info = await asyncio.to_thread(limiter.check, staff_id)
    if not allowed:
        logger.warning(
            "Rate limit exceeded for staff %s: %d requests in %ds",
            staff_id, limiter.max_requests, limiter.window_seconds,
        )
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail={
                "error": "rate_limit_exceeded",
                "message": f"Rate limit exceeded: {limiter.max_requests} mutations per minute.",
                "retry_after": info["reset"],
            },
            headers={"Retry-After": str(info["reset"])},
        )
    await asyncio.to_thread(limiter.record, staff_id)
    return staff


async def rate_limited_admin(request: Request, admin: dict = Depends(get_current_admin)) -> dict:
    """``get_current_admin`` plus the mutation throttle."""
    return await _enforce(request, admin)


async def rate_limited_moderator(request: Request, moderator: dict = Depends(get_current_moderator)) -> dict:
    """``get_current_moderator`` plus the mutation throttle."""
    return await _enforce(request, moderator)
