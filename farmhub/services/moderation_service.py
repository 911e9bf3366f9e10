"""
farmhub.services.moderation_service — Content Reports & Decisions
==================================================================

Report lifecycle::

    pending ──decide()──▶ resolved ──(reopen cooldown elapsed)──▶ pending

Throttling lives in ``report_rate_limits``:

- key ``"*"`` is a per-member fixed hourly window (``rate_limit_per_hour``);
- key ``"post:<id>"`` / ``"reply:<id>"`` stamps the last report on that
  content and drives the per-content cooldown.

A decision snapshots the post, resolves every pending report on it,
applies scoring (penalty and reporter rewards) and notifies the people
involved, all in the caller's transaction.
"""

from __future__ import annotations

import logging
import math
from collections import Counter
from datetime import UTC, datetime, timedelta

from sqlalchemy import delete, func, or_, select
from sqlalchemy.orm import Session, selectinload

from farmhub.config import FarmhubConfig
from farmhub.database.models import (
    ContentReport,
    DiscussionPost,
    DiscussionReply,
    ModerationDecision,
    NotificationType,
    PostSnapshot,
    ReportRateLimit,
    ReportReason,
    ReportStatus,
)
from farmhub.engine.periods import as_utc
from farmhub.errors import NotFoundError, RateLimitedError, ValidationError
from farmhub.services import notification_service, scoring_actions

logger = logging.getLogger(__name__)

HOURLY_KEY = "*"
HOUR = timedelta(hours=1)


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------
def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def report_to_dict(report: ContentReport) -> dict:
    return {
        "id": report.id,
        "post_id": report.post_id,
        "reply_id": report.reply_id,
        "reporter_id": str(report.reporter_id),
        "reason": report.reason,
        "details": report.details,
        "status": report.status,
        "decision": report.decision,
        "moderator_id": str(report.moderator_id) if report.moderator_id is not None else None,
        "resolution_notes": report.resolution_notes,
        "resolved_at": _iso(report.resolved_at),
        "post_snapshot_id": report.post_snapshot_id,
        "created_at": _iso(report.created_at),
    }


def snapshot_to_dict(snap: PostSnapshot | None) -> dict | None:
    if snap is None:
        return None
    return {
        "id": snap.id,
        "post_id": snap.post_id,
        "title": snap.title,
        "content": snap.content,
        "author": snap.author_data,
        "tags": snap.tags_data or [],
        "media": snap.media_data or [],
        "reason": snap.snapshot_reason,
        "created_at": _iso(snap.created_at),
    }


# ---------------------------------------------------------------------------
# Rate limiting
# ---------------------------------------------------------------------------
def _limit_row(session: Session, user_id: int, key: str) -> ReportRateLimit | None:
    return session.scalar(
        select(ReportRateLimit).where(
            ReportRateLimit.user_id == user_id, ReportRateLimit.content_key == key
        )
    )


def _check_hourly(session: Session, user_id: int, limit: int, now: datetime) -> None:
    row = _limit_row(session, user_id, HOURLY_KEY)
    if row is None:
        return
    window_end = as_utc(row.window_start) + HOUR
    if now < window_end and row.count >= limit:
        raise RateLimitedError(
            "Too many reports in the last hour",
            "hourly_limit_exceeded",
            retry_after=max(1, math.ceil((window_end - now).total_seconds())),
        )


def _record_report(session: Session, user_id: int, content_key: str, now: datetime) -> None:
    hourly = _limit_row(session, user_id, HOURLY_KEY)
    if hourly is None:
        session.add(ReportRateLimit(
            user_id=user_id, content_key=HOURLY_KEY, window_start=now, count=1, last_reported_at=now,
        ))
    elif now >= as_utc(hourly.window_start) + HOUR:
        hourly.window_start = now
        hourly.count = 1
        hourly.last_reported_at = now
    else:
        hourly.count += 1
        hourly.last_reported_at = now

    content = _limit_row(session, user_id, content_key)
    if content is None:
        session.add(ReportRateLimit(
            user_id=user_id, content_key=content_key, window_start=now, count=1, last_reported_at=now,
        ))
    else:
        content.count += 1
        content.last_reported_at = now
    session.flush()


def _content_filter(post_id: str, reply_id: str | None):
    if reply_id is not None:
        return ContentReport.reply_id == reply_id
    return (ContentReport.post_id == post_id) & ContentReport.reply_id.is_(None)


def _pending_count(session: Session, post_id: str, reply_id: str | None) -> int:
    return session.scalar(
        select(func.count(ContentReport.id)).where(
            _content_filter(post_id, reply_id),
            ContentReport.status == ReportStatus.PENDING.value,
        )
    ) or 0


# ---------------------------------------------------------------------------
# Reporting
# ---------------------------------------------------------------------------
def create_report(
    session: Session,
    reporter_id: int,
    *,
    reason: str,
    post_id: str | None = None,
    reply_id: str | None = None,
    details: str | None = None,
    config: FarmhubConfig | None = None,
    now: datetime | None = None,
) -> dict:
    """File (or reopen) a report on a post or a reply.

    Returns ``{"duplicate": True, ...}`` without writing when the member
    already has a pending report on the same content.
    """
    cfg = config or FarmhubConfig()
    now = now or datetime.now(UTC)

    try:
        reason = ReportReason(reason).value
    except ValueError:
        raise ValidationError(f"Invalid report reason: {reason}", "invalid_reason")

    if reply_id is not None:
        reply = session.get(DiscussionReply, reply_id)
        if reply is None or reply.is_deleted:
            raise NotFoundError("Reply not found", "reply_not_found")
        post = session.get(DiscussionPost, reply.post_id)
        owner_id = reply.author_id
        content_key = f"reply:{reply.id}"
    else:
        post = session.get(DiscussionPost, post_id) if post_id else None
        if post is None or post.is_deleted:
            raise NotFoundError("Post not found", "post_not_found")
        owner_id = post.author_id
        content_key = f"post:{post.id}"

    _check_hourly(session, reporter_id, cfg.report_rate_limit_per_hour, now)

    existing = session.scalar(
        select(ContentReport)
        .where(_content_filter(post.id, reply_id), ContentReport.reporter_id == reporter_id)
        .order_by(ContentReport.created_at.desc())
        .limit(1)
    )

    reopened = False
    if existing is not None and existing.status == ReportStatus.PENDING.value:
        return {
            "duplicate": True,
            "report_id": existing.id,
            "report_count": _pending_count(session, post.id, reply_id),
        }

    if existing is not None:
        resolved_at = as_utc(existing.resolved_at)
        reopen_at = resolved_at + timedelta(hours=cfg.report_reopen_cooldown_hours) if resolved_at else None
        can_reopen = reopen_at is None or now >= reopen_at

        stamp = _limit_row(session, reporter_id, content_key)
        if stamp is not None and not can_reopen:
            cooldown_end = as_utc(stamp.last_reported_at) + timedelta(
                hours=cfg.report_content_cooldown_hours
            )
            if now < cooldown_end:
                raise RateLimitedError(
                    "Cannot report this content again so soon",
                    "content_cooldown",
                    retry_after=max(1, math.ceil((cooldown_end - now).total_seconds())),
                )
        if not can_reopen:
            hours_left = math.ceil((reopen_at - now).total_seconds() / 3600)
            raise ValidationError(
                f"Must wait {hours_left} more hours before reporting this content again",
                "reopen_cooldown",
                cooldown_hours=hours_left,
            )

        existing.status = ReportStatus.PENDING.value
        existing.reason = reason
        existing.details = details
        existing.decision = None
        existing.moderator_id = None
        existing.resolution_notes = None
        existing.resolved_at = None
        existing.post_snapshot_id = None
        existing.created_at = now
        report = existing
        reopened = True
    else:
        report = ContentReport(
            post_id=post.id,
            reply_id=reply_id,
            reporter_id=reporter_id,
            reason=reason,
            details=details,
            status=ReportStatus.PENDING.value,
            created_at=now,
        )
        session.add(report)
    session.flush()

    _record_report(session, reporter_id, content_key, now)

    notification_service.notify(
        session, owner_id, NotificationType.POST_REPORTED,
        "Your content was reported",
        f"Your {'reply' if reply_id else 'post'} was reported for review ({reason})",
        {"post_id": post.id, "reply_id": reply_id, "reason": reason},
        actor_id=reporter_id,
    )
    logger.info(
        "Report %s %s on %s by user %s", report.id,
        "reopened" if reopened else "filed", content_key, reporter_id,
    )
    return {
        "duplicate": False,
        "report": report_to_dict(report),
        "report_count": _pending_count(session, post.id, reply_id),
        "is_reopened": reopened,
    }


# ---------------------------------------------------------------------------
# Moderator queue
# ---------------------------------------------------------------------------
def list_pending(
    session: Session,
    *,
    search: str | None = None,
    page: int = 1,
    limit: int = 20,
) -> dict:
    """Pending reports grouped by post, busiest first."""
    query = (
        select(ContentReport)
        .join(DiscussionPost, DiscussionPost.id == ContentReport.post_id)
        .options(selectinload(ContentReport.reporter), selectinload(ContentReport.post))
        .where(ContentReport.status == ReportStatus.PENDING.value)
        .order_by(ContentReport.created_at.asc(), ContentReport.id)
    )
    if search and search.strip():
        pattern = f"%{search.strip()}%"
        query = query.where(
            or_(DiscussionPost.title.ilike(pattern), DiscussionPost.content.ilike(pattern))
        )

    groups: dict[str, list[ContentReport]] = {}
    for report in session.scalars(query).all():
        groups.setdefault(report.post_id, []).append(report)

    items = []
    for post_id, reports in groups.items():
        post = reports[0].post
        # Counter keeps first-seen order, so ties go to the earliest reason
        most_common = Counter(r.reason for r in reports).most_common(1)[0][0]
        latest = max(as_utc(r.created_at) for r in reports)
        items.append({
            "post_id": post_id,
            "report_count": len(reports),
            "most_common_reason": most_common,
            "latest_report_at": latest.isoformat(),
            "reporters": [
                {
                    "id": str(r.reporter_id),
                    "username": r.reporter.username if r.reporter else None,
                    "reason": r.reason,
                    "details": r.details,
                    "reply_id": r.reply_id,
                    "created_at": _iso(r.created_at),
                }
                for r in reports
            ],
            "post": {
                "id": post.id,
                "title": post.title,
                "content": post.content[:280],
                "author_id": str(post.author_id),
                "is_deleted": post.is_deleted,
                "is_approved": post.is_approved,
            },
            "_sort": (len(reports), latest),
        })

    items.sort(key=lambda item: item["_sort"], reverse=True)
    total = len(items)
    page_items = items[(page - 1) * limit:(page - 1) * limit + limit]
    for item in page_items:
        del item["_sort"]
    return {"items": page_items, "total": total, "page": page, "limit": limit}


def _snapshot_post(session: Session, post: DiscussionPost, reason: str) -> PostSnapshot:
    author = post.author
    snap = PostSnapshot(
        post_id=post.id,
        title=post.title,
        content=post.content,
        author_data={
            "id": str(post.author_id),
            "username": author.username if author else None,
            "display_name": author.display_name if author else None,
        },
        tags_data=sorted(t.name for t in post.tags),
        media_data=[],
        snapshot_reason=reason,
    )
    session.add(snap)
    session.flush()
    return snap


def decide(
    session: Session,
    post_id: str,
    decision: str,
    justification: str | None,
    moderator_id: int,
) -> dict:
    """Resolve every pending report on *post_id* with *decision*."""
    try:
        decision = ModerationDecision(decision)
    except ValueError:
        raise ValidationError(f"Invalid decision: {decision}", "invalid_decision")
    justification = (justification or "").strip()
    if decision in scoring_actions.VIOLATION_DECISIONS and not justification:
        raise ValidationError(
            "A justification is required when deleting or warning", "justification_required"
        )

    post = session.get(DiscussionPost, post_id)
    if post is None:
        raise NotFoundError("Post not found", "post_not_found")

    pending = session.scalars(
        select(ContentReport)
        .where(
            ContentReport.post_id == post.id,
            ContentReport.status == ReportStatus.PENDING.value,
        )
        .order_by(ContentReport.created_at.asc())
    ).all()
    if not pending:
        raise ValidationError("No pending reports for this post", "no_pending_reports")

    snap = _snapshot_post(session, post, f"moderation_{decision.value}")
    if decision is ModerationDecision.DELETED:
        post.is_deleted = True

    now = datetime.now(UTC)
    for report in pending:
        report.status = ReportStatus.RESOLVED.value
        report.decision = decision.value
        report.moderator_id = moderator_id
        report.resolution_notes = justification or None
        report.resolved_at = now
        report.post_snapshot_id = snap.id
    session.flush()

    scoring_actions.apply_report_decision(
        session,
        post_id=post.id,
        report_ids=[r.id for r in pending],
        post_author_id=post.author_id,
        reporter_ids=[r.reporter_id for r in pending],
        decision=decision,
        moderator_id=moderator_id,
    )
    _notify_decision(session, post, pending, decision, justification, moderator_id)

    logger.info(
        "Moderator %s resolved %d reports on post %s as %s",
        moderator_id, len(pending), post.id, decision.value,
    )
    return {
        "post_id": post.id,
        "decision": decision.value,
        "resolved": len(pending),
        "snapshot_id": snap.id,
    }


def _notify_decision(
    session: Session,
    post: DiscussionPost,
    reports: list[ContentReport],
    decision: ModerationDecision,
    justification: str,
    moderator_id: int,
) -> None:
    outcome = {
        ModerationDecision.RETAINED: "was reviewed and kept",
        ModerationDecision.DELETED: "was removed",
        ModerationDecision.WARNED: "received a warning",
    }[decision]
    data = {"post_id": post.id, "decision": decision.value}

    for reporter_id in dict.fromkeys(r.reporter_id for r in reports):
        notification_service.notify(
            session, reporter_id, NotificationType.MODERATION_DECISION_REPORTER,
            "Your report was reviewed",
            f"The post \"{post.title}\" you reported {outcome}. Thank you for helping.",
            data, actor_id=moderator_id,
        )
    notification_service.notify(
        session, post.author_id, NotificationType.MODERATION_DECISION_OWNER,
        "Moderation decision on your post",
        f"Your post \"{post.title}\" {outcome}." + (f" Reason: {justification}" if justification else ""),
        data, actor_id=moderator_id,
    )


# ---------------------------------------------------------------------------
# History & metrics
# ---------------------------------------------------------------------------
def history(
    session: Session,
    *,
    page: int = 1,
    limit: int = 20,
    decision: str | None = None,
) -> dict:
    query = select(ContentReport).where(ContentReport.status == ReportStatus.RESOLVED.value)
    if decision:
        query = query.where(ContentReport.decision == decision)
    total = session.scalar(select(func.count()).select_from(query.subquery())) or 0
    rows = session.scalars(
        query.options(selectinload(ContentReport.snapshot), selectinload(ContentReport.post))
        .order_by(ContentReport.resolved_at.desc(), ContentReport.id)
        .offset((page - 1) * limit)
        .limit(limit)
    ).all()
    return {
        "items": [
            {
                **report_to_dict(r),
                "post_title": r.post.title if r.post else None,
                "snapshot": snapshot_to_dict(r.snapshot),
            }
            for r in rows
        ],
        "total": total,
        "page": page,
        "limit": limit,
    }


def metrics(session: Session, now: datetime | None = None) -> dict:
    now = now or datetime.now(UTC)

    def count_by(column, status: str) -> dict[str, int]:
        rows = session.execute(
            select(column, func.count(ContentReport.id))
            .where(ContentReport.status == status)
            .group_by(column)
        ).all()
        return {key: n for key, n in rows if key is not None}

    by_status = dict(session.execute(
        select(ContentReport.status, func.count(ContentReport.id)).group_by(ContentReport.status)
    ).all())
    resolved_last_7_days = session.scalar(
        select(func.count(ContentReport.id)).where(
            ContentReport.status == ReportStatus.RESOLVED.value,
            ContentReport.resolved_at >= now - timedelta(days=7),
        )
    ) or 0
    return {
        "pending": by_status.get(ReportStatus.PENDING.value, 0),
        "resolved": by_status.get(ReportStatus.RESOLVED.value, 0),
        "by_decision": count_by(ContentReport.decision, ReportStatus.RESOLVED.value),
        "by_reason": {
            reason: n
            for reason, n in session.execute(
                select(ContentReport.reason, func.count(ContentReport.id)).group_by(ContentReport.reason)
            ).all()
        },
        "resolved_last_7_days": resolved_last_7_days,
    }


def prune_rate_limits(session: Session, config: FarmhubConfig | None = None, now: datetime | None = None) -> int:
    """Drop throttle rows that can no longer block anyone."""
    cfg = config or FarmhubConfig()
    now = now or datetime.now(UTC)
    horizon = timedelta(hours=max(cfg.report_content_cooldown_hours, 1))
    result = session.execute(
        delete(ReportRateLimit).where(ReportRateLimit.last_reported_at < now - horizon)
    )
    return result.rowcount or 0
