"""
farmhub.config — YAML Configuration Loader
===========================================

Reads ``config.yaml`` for community identity and the tunables of the
moderation, quiz, leaderboard and scoring subsystems.  Secrets and
infrastructure (``DATABASE_URL``, ``JWT_SECRET``) stay in the environment.

A handful of tunables can be overridden from the environment so operators
can flip them without editing the file:

- ``SCORING_VERIFY_TOTALS``              → ``scoring_verify_totals``
- ``MODERATION_RATE_LIMIT_PER_HOUR``     → ``report_rate_limit_per_hour``
- ``MODERATION_REOPEN_COOLDOWN_HOURS``   → ``report_reopen_cooldown_hours``

Usage::

    from farmhub.config import load_config

    cfg = load_config()          # reads ./config.yaml by default
    print(cfg.community_name)    # "FarmHub"
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

import yaml


@dataclass(frozen=True, slots=True)
class FarmhubConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    # Identity
    community_name: str = "FarmHub"
    default_timezone: str = "UTC"

    # Moderation
    report_rate_limit_per_hour: int = 10
    report_content_cooldown_hours: int = 72
    report_reopen_cooldown_hours: int = 24

    # Quizzes
    quiz_max_open_attempts: int = 5
    quiz_max_questions: int = 50

    # Leaderboards
    leaderboard_snapshot_size: int = 100
    leaderboard_snapshot_interval_minutes: int = 60

    # Scoring
    scoring_verify_totals: bool = False


def _env_flag(name: str) -> bool | None:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return None
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str) -> int | None:
    raw = os.getenv(name, "").strip()
    return int(raw) if raw else None


def _first(*values):
    """Return the first value that is not None."""
    for value in values:
        if value is not None:
            return value
    return None


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> FarmhubConfig:
    """Read *path* and return a :class:`FarmhubConfig` instance.

    Sections (``moderation``, ``quiz``, ``leaderboard``, ``scoring``) are
    optional; any missing key keeps its dataclass default.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    defaults = FarmhubConfig()
    moderation = raw.get("moderation") or {}
    quiz = raw.get("quiz") or {}
    leaderboard = raw.get("leaderboard") or {}
    scoring = raw.get("scoring") or {}

    return FarmhubConfig(
        community_name=raw.get("community_name", defaults.community_name),
        default_timezone=raw.get("default_timezone", defaults.default_timezone),
        report_rate_limit_per_hour=int(_first(
            _env_int("MODERATION_RATE_LIMIT_PER_HOUR"),
            moderation.get("rate_limit_per_hour"),
            defaults.report_rate_limit_per_hour,
        )),
        report_content_cooldown_hours=int(
            moderation.get("content_cooldown_hours", defaults.report_content_cooldown_hours)
        ),
        report_reopen_cooldown_hours=int(_first(
            _env_int("MODERATION_REOPEN_COOLDOWN_HOURS"),
            moderation.get("reopen_cooldown_hours"),
            defaults.report_reopen_cooldown_hours,
        )),
        quiz_max_open_attempts=int(quiz.get("max_open_attempts", defaults.quiz_max_open_attempts)),
        quiz_max_questions=int(quiz.get("max_questions", defaults.quiz_max_questions)),
        leaderboard_snapshot_size=int(
            leaderboard.get("snapshot_size", defaults.leaderboard_snapshot_size)
        ),
        leaderboard_snapshot_interval_minutes=int(
            leaderboard.get(
                "snapshot_interval_minutes", defaults.leaderboard_snapshot_interval_minutes
            )
        ),
        scoring_verify_totals=bool(_first(
            _env_flag("SCORING_VERIFY_TOTALS"),
            scoring.get("verify_totals"),
            defaults.scoring_verify_totals,
        )),
    )
