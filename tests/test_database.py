"""
tests/test_database.py — Engine Factory & Default Seeding
==========================================================
"""

from __future__ import annotations

import os
from unittest.mock import patch

import pytest
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from farmhub.database.engine import create_db_engine, get_session, init_db
from farmhub.database.models import BestPracticeTag
from farmhub.database.seed import DEFAULT_BEST_PRACTICE_TAGS, seed_defaults


class TestCreateEngine:
    def test_requires_database_url(self):
        with patch.dict(os.environ):
            os.environ.pop("DATABASE_URL", None)
            with pytest.raises(RuntimeError, match="DATABASE_URL is not set"):
                create_db_engine()

    def test_sqlite_url_for_local_runs(self):
        engine = create_db_engine("sqlite://")
        assert engine.dialect.name == "sqlite"


class TestSeeding:
    def test_init_db_seeds_categories(self):
        engine = create_db_engine("sqlite://")
        init_db(engine)
        with Session(engine) as session:
            count = session.scalar(select(func.count(BestPracticeTag.id)))
        assert count == len(DEFAULT_BEST_PRACTICE_TAGS)

    def test_seeding_keeps_admin_edits(self, db_engine):
        with get_session(db_engine) as session:
            tag = session.scalar(select(BestPracticeTag).where(BestPracticeTag.name == "Disease Control"))
            tag.description = "Vaccination calendars and biosecurity"

        seed_defaults(db_engine)

        with Session(db_engine) as session:
            names = session.scalars(select(BestPracticeTag.name)).all()
            tag = session.scalar(select(BestPracticeTag).where(BestPracticeTag.name == "Disease Control"))
        assert len(names) == len(DEFAULT_BEST_PRACTICE_TAGS)
        assert tag.description == "Vaccination calendars and biosecurity"

    def test_get_session_rolls_back_on_error(self, db_engine):
        with pytest.raises(RuntimeError):
            with get_session(db_engine) as session:
                session.add(BestPracticeTag(name="Water Quality"))
                session.flush()
                raise RuntimeError("abort")

        with Session(db_engine) as session:
            assert session.scalar(select(BestPracticeTag).where(BestPracticeTag.name == "Water Quality")) is None
