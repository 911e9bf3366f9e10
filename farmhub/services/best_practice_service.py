"""
farmhub.services.best_practice_service — Editorial Articles & Read Receipts
============================================================================

Admins publish best-practice articles filed under the seeded category
vocabulary.  Members read them; the first read by a member earns
``BEST_PRACTICE_FIRST_READ`` points and counts as streak activity, later
reads only bump the counters.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from farmhub.database.models import (
    BestPracticeContent,
    BestPracticeRead,
    BestPracticeTag,
    best_practice_tag_assignments,
)
from farmhub.engine.levels import map_points_to_level
from farmhub.engine.points import from_scaled
from farmhub.errors import NotFoundError, ValidationError
from farmhub.services import admin_service, scoring_actions, streak_service
from farmhub.services.scoring_service import get_total_points

logger = logging.getLogger(__name__)

TITLE_MIN, TITLE_MAX = 3, 255


def practice_to_dict(bp: BestPracticeContent, *, is_read: bool | None = None) -> dict:
    data = {
        "id": bp.id,
        "title": bp.title,
        "description": bp.description,
        "steps": list(bp.steps or []),
        "benefits": list(bp.benefits or []),
        "language": bp.language,
        "categories": sorted(t.name for t in bp.tags),
        "is_published": bp.is_published,
        "read_count": bp.read_count,
        "created_at": bp.created_at.isoformat() if bp.created_at else None,
    }
    if is_read is not None:
        data["is_read"] = is_read
    return data


def get_live_practice(session: Session, best_practice_id: str) -> BestPracticeContent:
    bp = session.get(BestPracticeContent, best_practice_id)
    if bp is None or bp.is_deleted or not bp.is_published:
        raise NotFoundError("Best practice not found", "best_practice_not_found")
    return bp


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------
def list_practices(
    session: Session,
    *,
    viewer_id: int | None = None,
    page: int = 1,
    limit: int = 10,
    search: str | None = None,
    category: str | None = None,
    language: str | None = None,
) -> dict:
    query = select(BestPracticeContent).where(
        BestPracticeContent.is_deleted.is_(False),
        BestPracticeContent.is_published.is_(True),
    )
    if search and search.strip():
        pattern = f"%{search.strip()}%"
        query = query.where(or_(
            BestPracticeContent.title.ilike(pattern),
            BestPracticeContent.description.ilike(pattern),
        ))
    if category:
        query = query.where(BestPracticeContent.tags.any(BestPracticeTag.name == category))
    if language:
        query = query.where(BestPracticeContent.language == language)

    total = session.scalar(select(func.count()).select_from(query.subquery())) or 0
    rows = session.scalars(
        query.options(selectinload(BestPracticeContent.tags))
        .order_by(BestPracticeContent.created_at.desc(), BestPracticeContent.id)
        .offset((page - 1) * limit)
        .limit(limit)
    ).all()

    read_ids: set[str] = set()
    if viewer_id is not None and rows:
        read_ids = set(session.scalars(
            select(BestPracticeRead.best_practice_id).where(
                BestPracticeRead.user_id == viewer_id,
                BestPracticeRead.best_practice_id.in_([r.id for r in rows]),
            )
        ).all())

    return {
        "practices": [
            practice_to_dict(r, is_read=(r.id in read_ids) if viewer_id is not None else None)
            for r in rows
        ],
        "total": total,
        "page": page,
        "limit": limit,
        "pages": (total + limit - 1) // limit if limit else 0,
    }


def list_categories(session: Session) -> list[dict]:
    """Every category with the number of live, published articles in it."""
    live = (
        select(
            best_practice_tag_assignments.c.tag_id,
            func.count(BestPracticeContent.id).label("n"),
        )
        .join(BestPracticeContent, BestPracticeContent.id == best_practice_tag_assignments.c.best_practice_id)
        .where(BestPracticeContent.is_deleted.is_(False), BestPracticeContent.is_published.is_(True))
        .group_by(best_practice_tag_assignments.c.tag_id)
        .subquery()
    )
    rows = session.execute(
        select(BestPracticeTag, func.coalesce(live.c.n, 0))
        .outerjoin(live, live.c.tag_id == BestPracticeTag.id)
        .order_by(BestPracticeTag.name)
    ).all()
    return [
        {"id": tag.id, "name": tag.name, "description": tag.description, "count": count}
        for tag, count in rows
    ]


# ---------------------------------------------------------------------------
# Reading
# ---------------------------------------------------------------------------
def _upsert_read(session: Session, best_practice_id: str, user_id: int, now: datetime) -> bool:
    """Record one read; returns True when this is the member's first."""
    existing = session.scalar(
        select(BestPracticeRead).where(
            BestPracticeRead.best_practice_id == best_practice_id,
            BestPracticeRead.user_id == user_id,
        ).with_for_update()
    )
    if existing is None:
        try:
            with session.begin_nested():   # SAVEPOINT
                session.add(BestPracticeRead(
                    best_practice_id=best_practice_id,
                    user_id=user_id,
                    first_read_at=now,
                    last_read_at=now,
                    read_count=1,
                ))
            return True
        except IntegrityError:
            # A concurrent first read won the insert
            existing = session.scalar(
                select(BestPracticeRead).where(
                    BestPracticeRead.best_practice_id == best_practice_id,
                    BestPracticeRead.user_id == user_id,
                )
            )
    existing.read_count += 1
    existing.last_read_at = now
    return False


def read_practice(
    session: Session,
    best_practice_id: str,
    user_id: int | None = None,
    now: datetime | None = None,
) -> dict:
    """Return the article; for a signed-in reader also record the read."""
    bp = get_live_practice(session, best_practice_id)
    if user_id is None:
        return {"practice": practice_to_dict(bp), "scoring": None}

    now = now or datetime.now(UTC)
    first = _upsert_read(session, bp.id, user_id, now)
    bp.read_count = (bp.read_count or 0) + 1

    points_delta = 0.0
    if first:
        rows = scoring_actions.on_best_practice_first_read(session, user_id, bp.id)
        points_delta = from_scaled(sum(r.delta for r in rows))
        streak_service.record_activity(session, user_id, now)
        logger.info("User %s read best practice %s for the first time", user_id, bp.id)
    session.flush()

    total = get_total_points(session, user_id)
    return {
        "practice": practice_to_dict(bp, is_read=True),
        "scoring": {
            "awarded_first_read": first,
            "points_delta": points_delta,
            "points": total,
            "level": map_points_to_level(total).to_dict(),
        },
    }


# ---------------------------------------------------------------------------
# Admin writes
# ---------------------------------------------------------------------------
def _resolve_categories(session: Session, names: list[str] | None) -> list[BestPracticeTag]:
    if not names:
        return []
    wanted = {n.strip() for n in names if n and n.strip()}
    tags = session.scalars(select(BestPracticeTag).where(BestPracticeTag.name.in_(wanted))).all()
    unknown = wanted - {t.name for t in tags}
    if unknown:
        raise ValidationError(
            f"Unknown categories: {', '.join(sorted(unknown))}", "invalid_categories",
            categories=sorted(unknown),
        )
    return list(tags)


def _check_title(title: str) -> str:
    title = (title or "").strip()
    if not TITLE_MIN <= len(title) <= TITLE_MAX:
        raise ValidationError(
            f"Title must be between {TITLE_MIN} and {TITLE_MAX} characters", "invalid_title"
        )
    return title


def create_practice(
    session: Session,
    admin_id: int,
    *,
    title: str,
    description: str = "",
    steps: list[str] | None = None,
    benefits: list[str] | None = None,
    categories: list[str] | None = None,
    language: str = "en",
    is_published: bool = True,
) -> BestPracticeContent:
    bp = BestPracticeContent(
        title=_check_title(title),
        description=description or "",
        steps=list(steps or []),
        benefits=list(benefits or []),
        language=language or "en",
        is_published=is_published,
        created_by=admin_id,
        tags=_resolve_categories(session, categories),
    )
    return admin_service.audited_create(session, bp, actor_id=admin_id)


def _get_editable(session: Session, best_practice_id: str) -> BestPracticeContent:
    bp = session.get(BestPracticeContent, best_practice_id)
    if bp is None or bp.is_deleted:
        raise NotFoundError("Best practice not found", "best_practice_not_found")
    return bp


def update_practice(session: Session, best_practice_id: str, admin_id: int, **changes) -> BestPracticeContent:
    bp = _get_editable(session, best_practice_id)
    if changes.get("title") is not None:
        changes["title"] = _check_title(changes["title"])
    categories = changes.pop("categories", None)
    if categories is not None:
        bp.tags = _resolve_categories(session, categories)
    return admin_service.audited_update(session, bp, actor_id=admin_id, **changes)


def delete_practice(session: Session, best_practice_id: str, admin_id: int) -> BestPracticeContent:
    bp = _get_editable(session, best_practice_id)
    return admin_service.audited_soft_delete(session, bp, actor_id=admin_id)
