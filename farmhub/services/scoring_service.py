"""
farmhub.services.scoring_service — Score Ledger Persistence
============================================================

The one place that writes ``score_events`` and ``user_score_totals``.

Every call appends the batch to the ledger, then folds the per-user sums
into the running totals under a row lock so concurrent writers serialize
on the total row.  The caller owns the transaction: all rows from one
user action commit or roll back together.

With ``verify`` on, each affected total is recomputed from the ledger and
repaired (with a warning) if it drifted.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Iterable
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from farmhub.database.models import ScoreEvent, UserScoreTotal
from farmhub.engine.points import LedgerEntry, from_scaled

logger = logging.getLogger(__name__)

MAX_EVENTS_PAGE = 200

# Process-wide default for ``record_events(verify=None)``; set from config at startup
_verify_totals = False


def configure(*, verify_totals: bool) -> None:
    global _verify_totals
    _verify_totals = verify_totals


def _lock_total(session: Session, user_id: int) -> UserScoreTotal | None:
    """Fetch a total row with ``SELECT ... FOR UPDATE`` where the backend supports it."""
    return session.scalar(
        select(UserScoreTotal)
        .where(UserScoreTotal.user_id == user_id)
        .with_for_update()
    )


def record_events(
    session: Session,
    events: Iterable[LedgerEntry],
    *,
    verify: bool | None = None,
) -> list[ScoreEvent]:
    """Append *events* to the ledger and update running totals.

    Returns the inserted rows.  An empty batch is a no-op.
    """
    entries = list(events)
    if not entries:
        return []

    rows: list[ScoreEvent] = []
    per_user: dict[int, int] = defaultdict(int)
    for entry in entries:
        row = ScoreEvent(
            user_id=entry.user_id,
            actor_user_id=entry.actor_user_id,
            event_type=str(entry.event_type),
            ref_type=entry.ref_type,
            ref_id=entry.ref_id,
            delta=entry.delta,
            meta=entry.meta or None,
        )
        if entry.created_at is not None:
            row.created_at = entry.created_at
        session.add(row)
        rows.append(row)
        per_user[entry.user_id] += entry.delta
    session.flush()

    # Lock in user-id order so two batches touching the same users can't deadlock
    for user_id in sorted(per_user):
        total = _lock_total(session, user_id)
        if total is None:
            session.add(UserScoreTotal(user_id=user_id, total_points=per_user[user_id]))
        else:
            total.total_points += per_user[user_id]
    session.flush()

    if verify is None:
        verify = _verify_totals
    if verify:
        verify_totals(session, per_user.keys())

    logger.debug(
        "Recorded %d score events for %d users", len(rows), len(per_user),
    )
    return rows


def verify_totals(session: Session, user_ids: Iterable[int]) -> int:
    """Recompute totals for *user_ids* from the ledger; return how many were repaired."""
    repaired = 0
    for user_id in user_ids:
        ledger_sum = session.scalar(
            select(func.coalesce(func.sum(ScoreEvent.delta), 0))
            .where(ScoreEvent.user_id == user_id)
        ) or 0
        total = session.get(UserScoreTotal, user_id)
        current = total.total_points if total else 0
        if current == ledger_sum:
            continue

        logger.warning(
            "Score total drift for user %s: total=%s ledger=%s, repairing",
            user_id, current, ledger_sum,
        )
        if total is None:
            session.add(UserScoreTotal(user_id=user_id, total_points=ledger_sum))
        else:
            total.total_points = ledger_sum
        repaired += 1
    if repaired:
        session.flush()
    return repaired


def get_total_points(session: Session, user_id: int) -> float:
    """Unscaled running total for *user_id* (0 when the user has no events)."""
    total = session.get(UserScoreTotal, user_id)
    return from_scaled(total.total_points if total else 0)


def event_to_dict(row: ScoreEvent) -> dict:
    return {
        "id": row.id,
        "event_type": row.event_type,
        "points": from_scaled(row.delta),
        "ref_type": row.ref_type,
        "ref_id": row.ref_id,
        "actor_user_id": str(row.actor_user_id) if row.actor_user_id is not None else None,
        "meta": row.meta or {},
        "created_at": row.created_at.isoformat() if row.created_at else None,
    }


def list_events(
    session: Session,
    user_id: int,
    limit: int = 50,
    before: datetime | None = None,
) -> list[ScoreEvent]:
    """Newest-first ledger page for *user_id*.  *before* is an exclusive cursor."""
    limit = max(1, min(int(limit), MAX_EVENTS_PAGE))
    query = select(ScoreEvent).where(ScoreEvent.user_id == user_id)
    if before is not None:
        query = query.where(ScoreEvent.created_at < before)
    query = query.order_by(ScoreEvent.created_at.desc(), ScoreEvent.id.desc()).limit(limit)
    return list(session.scalars(query).all())
