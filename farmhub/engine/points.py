"""
farmhub.engine.points — Point Values & Ledger Entries
======================================================

Every score change is expressed as a :class:`LedgerEntry` before it is
persisted.  Points are stored as integers scaled by :data:`POINT_SCALE` so
fractional trickle awards (0.5, 0.25) add up exactly.

No DB I/O in this module.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from farmhub.database.models import ScoreEventType, VoteType

__all__ = [
    "POINT_SCALE",
    "POINTS",
    "STREAK_MILESTONES",
    "LedgerEntry",
    "from_scaled",
    "to_scaled",
    "vote_points",
]

POINT_SCALE = 1000

# ---------------------------------------------------------------------------
# Point table (unscaled)
# ---------------------------------------------------------------------------
POINTS: dict[str, float] = {
    "POST_CREATED": 2,
    "REPLY_CREATED_REPLIER": 1,
    "REPLY_CREATED_PARENT": 1,
    "REACTION_UPVOTE": 1,
    "REACTION_DOWNVOTE": -1,
    "REACTION_ENGAGEMENT": 1,
    "MOD_APPROVED_BONUS": 15,
    "REPORT_CONFIRMED_PENALTY": -5,
    "REPORT_CONFIRMED_REPORTER_REWARD": 1,
    "REPORT_REJECTED_REPORTER_REWARD": 1,
    "BEST_PRACTICE_FIRST_READ": 1,
    "QUIZ_COMPLETED_PASS": 5,
    "QUIZ_COMPLETED_FAIL": 1,
}

STREAK_MILESTONES: dict[int, int] = {
    7: 5,
    30: 10,
    90: 25,
    180: 50,
    365: 100,
}
"""Streak length → bonus points, awarded once on reaching the length."""


def to_scaled(points: float) -> int:
    return int(round(points * POINT_SCALE))


def from_scaled(value: int | None) -> float:
    return (value or 0) / POINT_SCALE


def vote_points(vote: VoteType | str) -> int:
    """Points the content author receives for *vote*."""
    if vote == VoteType.UPVOTE:
        return POINTS["REACTION_UPVOTE"]
    return POINTS["REACTION_DOWNVOTE"]


# ---------------------------------------------------------------------------
# LedgerEntry — one pending score_events row
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class LedgerEntry:
    """A score change waiting to be written by ``scoring_service.record_events``.

    ``points`` is unscaled; the ledger converts with :func:`to_scaled`.
    """

    user_id: int
    event_type: ScoreEventType
    points: float
    ref_type: str | None = None
    ref_id: str | None = None
    actor_user_id: int | None = None
    meta: dict = field(default_factory=dict)
    created_at: datetime | None = None

    @property
    def delta(self) -> int:
        return to_scaled(self.points)
