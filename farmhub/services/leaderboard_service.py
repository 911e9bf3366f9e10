"""
farmhub.services.leaderboard_service — Period Leaderboards & Snapshots
=======================================================================

Boards are computed on read from the ledger:

- ``daily`` / ``weekly`` / ``monthly`` sum ``score_events.delta`` inside
  the UTC window, so only members with activity in the window appear.
- ``all`` reads the running totals (``user_score_totals``); only members
  with a positive total are ranked, everyone else has no rank.

Ranks come from ``ROW_NUMBER()`` over points desc, then user id asc, so
ties are broken deterministically and ranks are always 1..N.

``snapshot()`` materializes the top N of a board into
``leaderboard_snapshots``; the periodic maintenance loop calls it for
every period.
"""

from __future__ import annotations

import logging
from datetime import date, datetime

from sqlalchemy import delete, func, or_, select
from sqlalchemy.orm import Session

from farmhub.database.models import LeaderboardSnapshot, ScoreEvent, User, UserScoreTotal
from farmhub.engine.periods import Period, PeriodWindow, period_window
from farmhub.engine.points import from_scaled

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Query builders
# ---------------------------------------------------------------------------
def _points_subquery(window: PeriodWindow):
    if window.period is Period.ALL:
        return (
            select(
                UserScoreTotal.user_id.label("user_id"),
                UserScoreTotal.total_points.label("points"),
            )
            .where(UserScoreTotal.total_points > 0)
            .subquery()
        )
    return (
        select(
            ScoreEvent.user_id.label("user_id"),
            func.sum(ScoreEvent.delta).label("points"),
        )
        .where(ScoreEvent.created_at >= window.start, ScoreEvent.created_at < window.end)
        .group_by(ScoreEvent.user_id)
        .subquery()
    )


def _ranked_subquery(window: PeriodWindow):
    pts = _points_subquery(window)
    return select(
        pts.c.user_id,
        pts.c.points,
        func.row_number().over(order_by=(pts.c.points.desc(), pts.c.user_id.asc())).label("rank"),
    ).subquery()


def _board_query(window: PeriodWindow):
    ranked = _ranked_subquery(window)
    query = (
        select(ranked.c.rank, ranked.c.points, User)
        .join(User, User.id == ranked.c.user_id)
        .order_by(ranked.c.rank)
    )
    return query, ranked


def _row_dict(rank: int, points: int, user: User) -> dict:
    return {
        "rank": rank,
        "user_id": str(user.id),
        "username": user.username,
        "display_name": user.display_name,
        "location": user.location,
        "points": from_scaled(points),
    }


def _search_clause(search: str):
    pattern = f"%{search.strip()}%"
    return or_(User.username.ilike(pattern), User.display_name.ilike(pattern))


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------
def get_leaderboard(
    session: Session,
    period: Period | str,
    limit: int = 20,
    ref: datetime | None = None,
) -> list[dict]:
    window = period_window(period, ref)
    query, _ = _board_query(window)
    return [_row_dict(rank, points, user) for rank, points, user in session.execute(query.limit(limit))]


def count_users_with_points(session: Session, window: PeriodWindow) -> int:
    """Members on the board: anyone with events in a period window, or a
    positive running total for ``all``.
    """
    pts = _points_subquery(window)
    return session.scalar(select(func.count()).select_from(pts)) or 0


def get_user_rank_and_points(
    session: Session,
    period: Period | str,
    user_id: int,
    ref: datetime | None = None,
) -> dict:
    """Rank and points of one member on a board; ``rank`` is None if absent."""
    window = period_window(period, ref)
    ranked = _ranked_subquery(window)
    row = session.execute(
        select(ranked.c.rank, ranked.c.points).where(ranked.c.user_id == user_id)
    ).first()
    return {
        "period": str(window.period),
        "rank": row.rank if row else None,
        "points": from_scaled(row.points) if row else 0.0,
        "total_users_with_points": count_users_with_points(session, window),
    }


def get_paginated(
    session: Session,
    period: Period | str,
    limit: int = 20,
    offset: int = 0,
    search: str | None = None,
    ref: datetime | None = None,
) -> dict:
    """One page of a board.  Searching filters rows but keeps board-wide ranks."""
    window = period_window(period, ref)
    query, ranked = _board_query(window)
    count_query = select(func.count()).select_from(ranked).join(User, User.id == ranked.c.user_id)
    total_period_users = session.scalar(count_query) or 0

    if search and search.strip():
        query = query.where(_search_clause(search))
        total = session.scalar(count_query.where(_search_clause(search))) or 0
    else:
        total = total_period_users

    rows = session.execute(query.offset(offset).limit(limit))
    return {
        "period": str(window.period),
        "rows": [_row_dict(rank, points, user) for rank, points, user in rows],
        "total": total,
        "total_period_users": total_period_users,
    }


def get_around(
    session: Session,
    period: Period | str,
    user_id: int,
    radius: int = 3,
    ref: datetime | None = None,
) -> dict:
    """The member's own row plus up to *radius* neighbours on each side."""
    window = period_window(period, ref)
    query, ranked = _board_query(window)
    own_rank = session.scalar(select(ranked.c.rank).where(ranked.c.user_id == user_id))
    if own_rank is None:
        return {"period": str(window.period), "user_rank": None, "rows": []}

    rows = session.execute(
        query.where(ranked.c.rank.between(own_rank - radius, own_rank + radius))
    )
    return {
        "period": str(window.period),
        "user_rank": own_rank,
        "rows": [_row_dict(rank, points, user) for rank, points, user in rows],
    }


# ---------------------------------------------------------------------------
# Snapshots
# ---------------------------------------------------------------------------
def snapshot(
    session: Session,
    period: Period | str,
    size: int = 100,
    ref: datetime | None = None,
) -> int:
    """Replace the stored top-*size* rows for the current window of *period*."""
    window = period_window(period, ref)
    query, _ = _board_query(window)
    rows = session.execute(query.limit(size)).all()

    session.execute(
        delete(LeaderboardSnapshot).where(
            LeaderboardSnapshot.period == str(window.period),
            LeaderboardSnapshot.period_start == window.start_day,
        )
    )
    for rank, points, user in rows:
        session.add(LeaderboardSnapshot(
            period=str(window.period),
            period_start=window.start_day,
            user_id=user.id,
            points=from_scaled(points),
            rank=rank,
        ))
    session.flush()
    logger.info(
        "Leaderboard snapshot %s@%s: %d rows", window.period, window.start_day, len(rows),
    )
    return len(rows)


def get_snapshot(session: Session, period: Period | str, period_start: date | None = None) -> dict:
    """Stored snapshot rows; defaults to the window containing now."""
    period = Period(period)
    if period_start is None:
        period_start = period_window(period).start_day
    rows = session.execute(
        select(LeaderboardSnapshot, User)
        .join(User, User.id == LeaderboardSnapshot.user_id)
        .where(
            LeaderboardSnapshot.period == str(period),
            LeaderboardSnapshot.period_start == period_start,
        )
        .order_by(LeaderboardSnapshot.rank)
    ).all()
    return {
        "period": str(period),
        "period_start": period_start.isoformat(),
        "rows": [
            {
                "rank": snap.rank,
                "user_id": str(user.id),
                "username": user.username,
                "display_name": user.display_name,
                "points": snap.points,
                "captured_at": snap.created_at.isoformat() if snap.created_at else None,
            }
            for snap, user in rows
        ],
    }
