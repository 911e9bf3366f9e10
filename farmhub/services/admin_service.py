"""
farmhub.services.admin_service — Audited Staff Mutations
=========================================================

Every admin write follows the same pattern inside the caller's session:
  1. Read the "before" snapshot
  2. Apply the change
  3. Write admin_log with before/after JSON

Score adjustments and moderator promotions go through here so they leave
the same audit trail as content edits.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from farmhub.database.models import AdminActionType, AdminLog, User
from farmhub.errors import NotFoundError, ValidationError
from farmhub.services import scoring_actions
from farmhub.services.scoring_service import get_total_points

logger = logging.getLogger(__name__)

MAX_ADJUSTMENT = 100_000
"""Largest absolute point change one admin adjustment may apply."""


# ---------------------------------------------------------------------------
# Generic audit helpers
# ---------------------------------------------------------------------------
def row_to_dict(obj: Any) -> dict | None:
    """Convert a SQLAlchemy model instance to a JSON-serializable dict."""
    if obj is None:
        return None
    result = {}
    for col in obj.__table__.columns:
        val = getattr(obj, col.key, None)
        if isinstance(val, datetime | date):
            val = val.isoformat()
        result[col.name] = val
    return result


def log_admin_action(
    session: Session,
    *,
    actor_id: int,
    action_type: AdminActionType | str,
    target_table: str,
    target_id: str | None,
    before: dict | None,
    after: dict | None,
    reason: str | None = None,
) -> AdminLog:
    """Insert a row into admin_log within the current transaction."""
    entry = AdminLog(
        actor_id=actor_id,
        action_type=str(action_type),
        target_table=target_table,
        target_id=target_id,
        before_snapshot=before,
        after_snapshot=after,
        reason=reason,
    )
    session.add(entry)
    return entry


def audited_create(session: Session, row: Any, *, actor_id: int) -> Any:
    session.add(row)
    session.flush()
    log_admin_action(
        session,
        actor_id=actor_id,
        action_type=AdminActionType.CREATE,
        target_table=row.__tablename__,
        target_id=str(row.id),
        before=None,
        after=row_to_dict(row),
    )
    return row


def audited_update(
    session: Session,
    row: Any,
    *,
    actor_id: int,
    frozen_keys: tuple[str, ...] = ("id", "created_by", "created_at"),
    **changes: Any,
) -> Any:
    """Apply *changes* to *row* and audit the before/after state.

    Only keys the caller passed are touched, so an explicit None clears a
    nullable column.  None for a NOT NULL column is rejected.
    """
    columns = row.__table__.columns
    for key, value in changes.items():
        if value is None and key in columns and not columns[key].nullable:
            raise ValidationError(f"{key} cannot be empty", "invalid_field")

    before = row_to_dict(row)
    for key, value in changes.items():
        if hasattr(row, key) and key not in frozen_keys:
            setattr(row, key, value)
    session.flush()
    log_admin_action(
        session,
        actor_id=actor_id,
        action_type=AdminActionType.UPDATE,
        target_table=row.__tablename__,
        target_id=str(row.id),
        before=before,
        after=row_to_dict(row),
    )
    return row


def audited_soft_delete(session: Session, row: Any, *, actor_id: int) -> Any:
    before = row_to_dict(row)
    row.is_deleted = True
    session.flush()
    log_admin_action(
        session,
        actor_id=actor_id,
        action_type=AdminActionType.DELETE,
        target_table=row.__tablename__,
        target_id=str(row.id),
        before=before,
        after=row_to_dict(row),
    )
    return row


# ---------------------------------------------------------------------------
# Scoring administration
# ---------------------------------------------------------------------------
def adjust_score(session: Session, *, user_id: int, delta: float, reason: str, admin_id: int) -> dict:
    if session.get(User, user_id) is None:
        raise NotFoundError("User not found", "user_not_found")
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("A reason is required for score adjustments", "reason_required")
    if abs(delta) > MAX_ADJUSTMENT:
        raise ValidationError(
            f"Adjustments are limited to ±{MAX_ADJUSTMENT} points", "delta_out_of_range"
        )

    before = get_total_points(session, user_id)
    rows = scoring_actions.admin_adjust(session, user_id, delta, reason, admin_id)
    after = get_total_points(session, user_id)
    if rows:
        log_admin_action(
            session,
            actor_id=admin_id,
            action_type=AdminActionType.SCORE_ADJUST,
            target_table="user_score_totals",
            target_id=str(user_id),
            before={"total_points": before},
            after={"total_points": after, "delta": delta, "event_id": rows[0].id},
            reason=reason,
        )
        logger.info("Admin %s adjusted user %s by %s (%s)", admin_id, user_id, delta, reason)
    return {"user_id": str(user_id), "applied": bool(rows), "delta": delta, "total_points": after}


def promote_moderator(session: Session, *, user_id: int, admin_id: int) -> dict:
    if session.get(User, user_id) is None:
        raise NotFoundError("User not found", "user_not_found")
    prestige = scoring_actions.promote_moderator(session, user_id)
    log_admin_action(
        session,
        actor_id=admin_id,
        action_type=AdminActionType.PROMOTE_MODERATOR,
        target_table="user_prestige",
        target_id=str(user_id),
        before=None,
        after=row_to_dict(prestige),
    )
    logger.info("Admin %s promoted user %s to moderator", admin_id, user_id)
    return {
        "user_id": str(user_id),
        "is_moderator": prestige.is_moderator,
        "promoted_at": prestige.promoted_at.isoformat() if prestige.promoted_at else None,
    }


# ---------------------------------------------------------------------------
# Audit log reads
# ---------------------------------------------------------------------------
def list_audit_log(
    session: Session,
    *,
    page: int = 1,
    page_size: int = 50,
    action_type: str | None = None,
    target_table: str | None = None,
) -> dict:
    query = select(AdminLog)
    if action_type:
        query = query.where(AdminLog.action_type == action_type)
    if target_table:
        query = query.where(AdminLog.target_table == target_table)
    total = session.scalar(select(func.count()).select_from(query.subquery())) or 0
    rows = session.scalars(
        query.order_by(AdminLog.timestamp.desc(), AdminLog.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    ).all()
    return {
        "total": total,
        "page": page,
        "page_size": page_size,
        "entries": [
            {
                "id": r.id,
                "actor_id": str(r.actor_id),
                "action_type": r.action_type,
                "target_table": r.target_table,
                "target_id": r.target_id,
                "before": r.before_snapshot,
                "after": r.after_snapshot,
                "reason": r.reason,
                "timestamp": r.timestamp.isoformat() if r.timestamp else None,
            }
            for r in rows
        ],
    }
