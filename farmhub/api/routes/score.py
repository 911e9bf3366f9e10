"""
farmhub.api.routes.score — Points, levels, streaks and leaderboards
====================================================================
"""

from __future__ import annotations

from datetime import UTC, date, datetime, time

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from farmhub.api.deps import get_config, get_current_user, get_optional_user, get_session, service_errors
from farmhub.api.rate_limit import rate_limited_admin
from farmhub.config import FarmhubConfig
from farmhub.database.models import User, UserModerationStat, UserPrestige
from farmhub.engine.levels import compute_prestige, map_points_to_level
from farmhub.engine.periods import Period, parse_period
from farmhub.engine.streaks import supported_timezones
from farmhub.services import admin_service, discussion_service, leaderboard_service, streak_service
from farmhub.services.scoring_service import event_to_dict, get_total_points, list_events

router = APIRouter(prefix="/score", tags=["score"])

LEADERBOARD_MODES = ("simple", "paginated", "around")


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class AdjustBody(BaseModel):
    user_id: int
    delta: float = Field(ge=-admin_service.MAX_ADJUSTMENT, le=admin_service.MAX_ADJUSTMENT)
    reason: str


class PromoteBody(BaseModel):
    user_id: int


class SnapshotBody(BaseModel):
    period: str = "all"


class TimezoneBody(BaseModel):
    timezone: str


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _period_or_400(value: str) -> Period:
    period = parse_period(value)
    if period is None:
        raise HTTPException(400, detail={
            "error": "invalid_period",
            "message": f"Invalid period. Must be one of: {', '.join(p.value for p in Period)}",
        })
    return period


def _score_card(session: Session, user_id: int) -> dict:
    total = get_total_points(session, user_id)
    stat = session.get(UserModerationStat, user_id)
    prestige_row = session.get(UserPrestige, user_id)
    approvals = stat.mod_approvals if stat else 0
    is_moderator = bool(prestige_row and prestige_row.is_moderator)
    prestige = compute_prestige(total, approvals, is_moderator)
    return {
        "user_id": str(user_id),
        "total_points": total,
        "level": map_points_to_level(total).to_dict(),
        "prestige": {"tier": prestige.tier, "progress": prestige.progress},
        "mod_approvals": approvals,
        "is_moderator": is_moderator,
        "streak": streak_service.streak_summary(session, user_id),
    }


# ---------------------------------------------------------------------------
# Member endpoints
# ---------------------------------------------------------------------------
@router.get("/me")
def my_score(user: dict = Depends(get_current_user), session: Session = Depends(get_session)):
    return _score_card(session, user["id"])


@router.get("/events")
def my_events(
    limit: int = Query(50),
    before: datetime | None = Query(None),
    user: dict = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    rows = list_events(session, user["id"], limit=limit, before=before)
    return {
        "events": [event_to_dict(r) for r in rows],
        "next_before": rows[-1].created_at.isoformat() if rows else None,
    }


@router.get("/me/stats")
def my_stats(
    period: str = Query("weekly"),
    user: dict = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    selected = _period_or_400(period)
    rank = leaderboard_service.get_user_rank_and_points(session, selected, user["id"])
    midnight = datetime.combine(datetime.now(UTC).date(), time.min, tzinfo=UTC)
    return {
        **rank,
        "posts_today": discussion_service.count_posts_since(session, user["id"], midnight),
        "open_market_opportunities": discussion_service.count_open_market_posts(session),
    }


@router.put("/me/timezone")
def set_timezone(
    body: TimezoneBody,
    user: dict = Depends(get_current_user),
    session: Session = Depends(get_session),
):
    if body.timezone not in supported_timezones():
        raise HTTPException(400, detail={"error": "invalid_timezone", "message": "Unsupported timezone"})
    row = session.get(User, user["id"])
    row.timezone = body.timezone
    session.commit()
    return {"timezone": row.timezone}


@router.get("/timezones")
def timezones():
    return {"timezones": supported_timezones()}


@router.get("/users/{user_id}")
def public_score_card(user_id: int, session: Session = Depends(get_session)):
    user = session.get(User, user_id)
    if user is None:
        raise HTTPException(404, detail={"error": "user_not_found", "message": "User not found"})
    card = _score_card(session, user_id)
    card.pop("mod_approvals")
    card["username"] = user.username
    card["display_name"] = user.display_name
    card["location"] = user.location
    card["rank"] = leaderboard_service.get_user_rank_and_points(session, Period.ALL, user_id)["rank"]
    return card


@router.get("/leaderboard")
def leaderboard(
    period: str = Query("weekly"),
    mode: str = Query("simple"),
    limit: int = Query(20, ge=1, le=100),
    page: int = Query(1, ge=1),
    search: str | None = Query(None),
    radius: int = Query(3, ge=1, le=25),
    user: dict | None = Depends(get_optional_user),
    session: Session = Depends(get_session),
):
    selected = _period_or_400(period)
    if mode not in LEADERBOARD_MODES:
        raise HTTPException(400, detail={
            "error": "invalid_mode",
            "message": f"Invalid mode. Must be one of: {', '.join(LEADERBOARD_MODES)}",
        })

    if mode == "simple":
        return {
            "period": str(selected),
            "rows": leaderboard_service.get_leaderboard(session, selected, limit),
        }
    if mode == "paginated":
        result = leaderboard_service.get_paginated(
            session, selected, limit=limit, offset=(page - 1) * limit, search=search
        )
        result["page"] = page
        result["limit"] = limit
        return result

    if user is None:
        raise HTTPException(401, "Missing token")
    return leaderboard_service.get_around(session, selected, user["id"], radius=radius)


@router.get("/leaderboard/snapshot")
def leaderboard_snapshot(
    period: str = Query("weekly"),
    period_start: date | None = Query(None),
    session: Session = Depends(get_session),
):
    return leaderboard_service.get_snapshot(session, _period_or_400(period), period_start)


# ---------------------------------------------------------------------------
# Admin endpoints
# ---------------------------------------------------------------------------
@router.post("/admin/adjust")
def adjust(
    body: AdjustBody,
    admin: dict = Depends(rate_limited_admin),
    session: Session = Depends(get_session),
):
    with service_errors():
        result = admin_service.adjust_score(
            session, user_id=body.user_id, delta=body.delta, reason=body.reason, admin_id=admin["id"]
        )
        session.commit()
    return result


@router.post("/admin/promote-moderator")
def promote_moderator(
    body: PromoteBody,
    admin: dict = Depends(rate_limited_admin),
    session: Session = Depends(get_session),
):
    with service_errors():
        result = admin_service.promote_moderator(session, user_id=body.user_id, admin_id=admin["id"])
        session.commit()
    return result


@router.post("/admin/snapshot")
def snapshot_now(
    body: SnapshotBody,
    admin: dict = Depends(rate_limited_admin),
    session: Session = Depends(get_session),
    cfg: FarmhubConfig = Depends(get_config),
):
    selected = _period_or_400(body.period)
    rows = leaderboard_service.snapshot(session, selected, size=cfg.leaderboard_snapshot_size)
    session.commit()
    return {"period": str(selected), "rows": rows}
