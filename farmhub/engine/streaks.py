"""
farmhub.engine.streaks — Daily Streak Arithmetic
=================================================

Pure day-boundary logic for activity streaks.  The day is taken in the
member's own timezone so a late-evening post counts for the local day.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, date, datetime, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError, available_timezones

from farmhub.engine.points import STREAK_MILESTONES

__all__ = ["StreakStep", "advance_streak", "local_day", "next_milestone", "supported_timezones"]


@dataclass(frozen=True, slots=True)
class StreakStep:
    """Outcome of applying one day of activity to a streak."""

    current_length: int
    best_length: int
    last_day: date
    changed: bool
    milestone_bonus: int | None = None


def local_day(now: datetime, tz_name: str | None) -> date:
    """Calendar day of *now* in *tz_name*; unknown zones fall back to UTC."""
    if now.tzinfo is None:
        now = now.replace(tzinfo=UTC)
    try:
        zone = ZoneInfo(tz_name or "UTC")
    except (ZoneInfoNotFoundError, ValueError, OSError):
        zone = ZoneInfo("UTC")
    return now.astimezone(zone).date()


def next_milestone(current: int) -> int | None:
    return next((m for m in sorted(STREAK_MILESTONES) if m > current), None)


def advance_streak(
    current_length: int,
    best_length: int,
    last_day: date | None,
    today: date,
) -> StreakStep:
    """Apply activity on *today* to a streak.

    Same day is a no-op, the day after ``last_day`` extends the streak, any
    other gap restarts it at 1.  A bonus is reported only when the new
    length lands exactly on a milestone.
    """
    if last_day == today:
        return StreakStep(current_length, best_length, last_day, changed=False)

    if last_day is not None and today - last_day == timedelta(days=1):
        length = current_length + 1
    else:
        length = 1

    return StreakStep(
        current_length=length,
        best_length=max(best_length, length),
        last_day=today,
        changed=True,
        milestone_bonus=STREAK_MILESTONES.get(length),
    )


def supported_timezones() -> list[str]:
    return sorted(available_timezones())
