"""
farmhub.database.seed — Default Vocabulary Seeder
==================================================

Baseline best-practice categories seeded on first startup so articles and
quizzes can be categorized immediately.

Idempotent — only inserts names that don't already exist.  Descriptions
edited later by admins are never overwritten.
"""

from __future__ import annotations

import logging

from sqlalchemy import Engine, select
from sqlalchemy.orm import Session

from farmhub.database.models import BestPracticeTag

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Default best-practice categories
# ---------------------------------------------------------------------------
DEFAULT_BEST_PRACTICE_TAGS: dict[str, str] = {
    "Feeding & Nutrition": "Nutrition and feeding best practices",
    "Disease Control": "Health and disease prevention",
    "Growth & Weight Mgmt": "Growth performance and weight management",
    "Environment Mgmt": "Housing and environmental management",
    "Breeding & Insemination": "Breeding strategies and reproduction",
    "Farrowing Mgmt": "Farrowing and piglet care",
    "Record & Farm Mgmt": "Record keeping and overall farm management",
    "Marketing & Finance": "Marketing, finance and economics",
}
"""Each entry maps ``name`` → ``description``."""


# ---------------------------------------------------------------------------
# Seeder
# ---------------------------------------------------------------------------
def seed_defaults(engine: Engine) -> None:
    """Insert the default best-practice categories that don't yet exist."""
    session = Session(engine)
    inserted = 0
    try:
        existing = set(session.scalars(select(BestPracticeTag.name)).all())
        for name, description in DEFAULT_BEST_PRACTICE_TAGS.items():
            if name not in existing:
                session.add(BestPracticeTag(name=name, description=description))
                inserted += 1
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()

    if inserted:
        logger.info("Seeded %d best-practice categories.", inserted)
