"""
farmhub.services.streak_service — Daily Activity Streaks
=========================================================

Called from every scored member action (post, reply, vote, best-practice
read, quiz submission).  Milestone bonuses are written inside a SAVEPOINT: the partial
unique index ``uniq_streak_bonus_once`` lets each milestone pay out once
per member, so a repeat insert is rolled back and skipped.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from farmhub.database.models import ScoreEventType, User, UserStreak
from farmhub.engine.points import LedgerEntry
from farmhub.engine.streaks import StreakStep, advance_streak, local_day, next_milestone
from farmhub.services.scoring_service import record_events

logger = logging.getLogger(__name__)


def get_or_create_streak(session: Session, user_id: int) -> UserStreak:
    streak = session.get(UserStreak, user_id)
    if streak is None:
        streak = UserStreak(user_id=user_id, current_length=0, best_length=0)
        session.add(streak)
        session.flush()
    return streak


def record_activity(session: Session, user_id: int, now: datetime | None = None) -> StreakStep:
    """Count *now* as a day of activity for *user_id*."""
    now = now or datetime.now(UTC)
    user = session.get(User, user_id)
    today = local_day(now, user.timezone if user is not None else None)

    streak = get_or_create_streak(session, user_id)
    step = advance_streak(streak.current_length, streak.best_length, streak.last_day, today)
    if not step.changed:
        return step

    streak.current_length = step.current_length
    streak.best_length = step.best_length
    streak.last_day = step.last_day
    session.flush()

    if step.milestone_bonus:
        _award_milestone(session, user_id, step.current_length, step.milestone_bonus)
    return step


def _award_milestone(session: Session, user_id: int, length: int, bonus: int) -> bool:
    entry = LedgerEntry(
        user_id=user_id,
        event_type=ScoreEventType.STREAK_BONUS,
        points=bonus,
        ref_type="system",
        ref_id=f"streak-{length}",
        actor_user_id=user_id,
        meta={"streak_length": length},
    )
    try:
        with session.begin_nested():   # SAVEPOINT
            record_events(session, [entry])
    except IntegrityError:
        logger.debug("Streak bonus %s already awarded to user %s", length, user_id)
        return False
    logger.info("Streak bonus: user %s reached %d days (+%d)", user_id, length, bonus)
    return True


def streak_summary(session: Session, user_id: int) -> dict:
    streak = session.get(UserStreak, user_id)
    current = streak.current_length if streak else 0
    upcoming = next_milestone(current)
    return {
        "current": current,
        "best": streak.best_length if streak else 0,
        "last_day": streak.last_day.isoformat() if streak and streak.last_day else None,
        "next_milestone": upcoming,
        "days_to_next": upcoming - current if upcoming is not None else None,
    }
