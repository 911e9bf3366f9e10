"""
FarmHub — Community Backend for Farmers
========================================
Discussion forum with moderator approval, member reports, curated
best-practice articles, timed quizzes and a points ledger that feeds
levels, streaks and leaderboards.  Served as a JSON API.

Package layout::

    farmhub/
    ├── config.py          # YAML → typed Python config
    ├── errors.py          # Domain error hierarchy (status + code)
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + async helper
    │   ├── models.py      # All ORM models
    │   └── seed.py        # Default best-practice categories
    ├── engine/            # Pure scoring rules, no I/O
    │   ├── points.py      # Point values, scaling
    │   ├── levels.py      # Level curve, prestige tiers
    │   ├── streaks.py     # Day-streak arithmetic, milestones
    │   ├── trickle.py     # Reply ancestry payouts
    │   ├── periods.py     # Leaderboard windows, timezone helpers
    │   └── grading.py     # Quiz answer grading
    ├── services/          # Session-scoped business operations
    └── api/
        ├── main.py        # FastAPI app
        ├── deps.py        # JWT identity, sessions, error mapping
        ├── rate_limit.py  # Staff mutation throttle
        └── routes/        # REST endpoints
"""

__version__ = "0.1.0"
