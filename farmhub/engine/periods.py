"""
farmhub.engine.periods — Leaderboard Period Windows
====================================================

Half-open UTC windows ``[start, end)`` for the leaderboard periods.
Weeks start on Monday.  The ``all`` period is anchored at 1970-01-01.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import UTC, date, datetime, time, timedelta

__all__ = ["ALL_TIME_ANCHOR", "Period", "PeriodWindow", "as_utc", "parse_period", "period_window"]

ALL_TIME_ANCHOR = date(1970, 1, 1)


class Period(enum.StrEnum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    ALL = "all"


@dataclass(frozen=True, slots=True)
class PeriodWindow:
    period: Period
    start: datetime
    end: datetime

    @property
    def start_day(self) -> date:
        return self.start.date()


def parse_period(value: str | None) -> Period | None:
    """Return the :class:`Period` for *value*, or None if it is not one."""
    try:
        return Period(value)
    except ValueError:
        return None


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes (SQLite drops the offset on read)."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


def _midnight(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=UTC)


def period_window(period: Period | str, ref: datetime | None = None) -> PeriodWindow:
    """Compute the window of *period* containing *ref* (default: now)."""
    period = Period(period)
    ref = ref or datetime.now(UTC)
    if ref.tzinfo is None:
        ref = ref.replace(tzinfo=UTC)
    today = ref.astimezone(UTC).date()

    if period is Period.ALL:
        # End is open; push it past any plausible clock skew
        return PeriodWindow(period, _midnight(ALL_TIME_ANCHOR), ref + timedelta(days=1))
    if period is Period.DAILY:
        start = today
        end = start + timedelta(days=1)
    elif period is Period.WEEKLY:
        start = today - timedelta(days=today.weekday())
        end = start + timedelta(days=7)
    else:
        start = today.replace(day=1)
        end = (start.replace(year=start.year + 1, month=1) if start.month == 12
               else start.replace(month=start.month + 1))
    return PeriodWindow(period, _midnight(start), _midnight(end))
