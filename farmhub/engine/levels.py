"""
farmhub.engine.levels — Level Ladder & Prestige Tiers
======================================================

Pure mapping from a point total (and moderator approvals) to the badges
shown on a profile.  No DB I/O.
"""

from __future__ import annotations

from dataclasses import dataclass, field

__all__ = ["LEVELS", "PRESTIGE_TIERS", "LevelInfo", "Prestige", "compute_prestige", "map_points_to_level"]


@dataclass(frozen=True, slots=True)
class _Level:
    level: int
    label: str
    min_points: int
    max_points: int | None  # None = open-ended


LEVELS: tuple[_Level, ...] = (
    _Level(1, "Newcomer", 0, 20),
    _Level(2, "Amateur", 21, 149),
    _Level(3, "Contributor", 150, 299),
    _Level(4, "Knight", 300, 599),
    _Level(5, "Expert", 600, None),
)

# (tier name, min points, min moderator approvals); both must be met
PRESTIGE_TIERS: tuple[tuple[str, int, int], ...] = (
    ("Expert I", 1600, 10),
    ("Expert II", 4100, 50),
    ("Expert III", 14100, 50),
)

PRESTIGE_ENTRY_POINTS = 600
MODERATOR_TIER = "Moderator"


@dataclass(frozen=True, slots=True)
class LevelInfo:
    level: int
    label: str
    next_level_at: int | None
    points_into_level: int
    points_for_level: int

    def to_dict(self) -> dict:
        return {
            "level": self.level,
            "label": self.label,
            "next_level_at": self.next_level_at,
            "points_into_level": self.points_into_level,
            "points_for_level": self.points_for_level,
        }


@dataclass(frozen=True, slots=True)
class Prestige:
    tier: str | None
    progress: dict = field(default_factory=dict)


def map_points_to_level(total_points: float) -> LevelInfo:
    """Map a point total to its level band.

    Negative totals clamp to 0 so they land on level 1.  On the open-ended
    top band ``points_for_level`` tracks ``points_into_level + 1``.
    """
    points = max(int(total_points), 0)
    current = LEVELS[-1]
    for lvl in LEVELS:
        if lvl.max_points is None or points <= lvl.max_points:
            current = lvl
            break

    nxt = next((lvl for lvl in LEVELS if lvl.level == current.level + 1), None)
    span_max = current.max_points if current.max_points is not None else points
    points_into = max(points - current.min_points, 0)
    return LevelInfo(
        level=current.level,
        label=current.label,
        next_level_at=nxt.min_points if nxt else None,
        points_into_level=points_into,
        points_for_level=span_max - current.min_points + 1,
    )


def compute_prestige(total_points: float, approvals: int, is_moderator: bool = False) -> Prestige:
    """Resolve the prestige tier reached and the gap to the next one.

    Tiers are climbed in order; a tier counts only when both its point and
    approval thresholds are met.  Expert III holders flagged as moderators
    are shown as "Moderator".
    """
    if total_points < PRESTIGE_ENTRY_POINTS:
        return Prestige(
            tier=None,
            progress={
                "next_tier": PRESTIGE_TIERS[0][0],
                "points_needed": max(0, PRESTIGE_ENTRY_POINTS - total_points),
                "approvals_needed": PRESTIGE_TIERS[0][2],
            },
        )

    achieved_index = -1
    for index, (_, min_points, min_approvals) in enumerate(PRESTIGE_TIERS):
        if total_points >= min_points and approvals >= min_approvals:
            achieved_index = index
        else:
            break

    achieved = PRESTIGE_TIERS[achieved_index][0] if achieved_index >= 0 else None
    if achieved == PRESTIGE_TIERS[-1][0] and is_moderator:
        return Prestige(tier=MODERATOR_TIER)

    if achieved_index + 1 >= len(PRESTIGE_TIERS):
        return Prestige(tier=achieved)

    next_name, next_points, next_approvals = PRESTIGE_TIERS[achieved_index + 1]
    return Prestige(
        tier=achieved,
        progress={
            "next_tier": next_name,
            "points_needed": max(0, next_points - total_points),
            "approvals_needed": max(0, next_approvals - approvals),
        },
    )
