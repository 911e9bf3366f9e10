"""
tests/test_tasks.py — Periodic Maintenance Jobs
================================================
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from conftest import make_user
from farmhub.config import FarmhubConfig
from farmhub.database.models import AdminRateLimitEvent, LeaderboardSnapshot, ReportRateLimit, ScoreEventType
from farmhub.engine.points import LedgerEntry
from farmhub.services import tasks
from farmhub.services.scoring_service import record_events


def _seed_points(engine) -> None:
    with Session(engine) as session:
        make_user(session, 1, "alice")
        make_user(session, 2, "bob")
        record_events(session, [
            LedgerEntry(user_id=1, event_type=ScoreEventType.ADMIN_ADJUST, points=3),
            LedgerEntry(user_id=2, event_type=ScoreEventType.ADMIN_ADJUST, points=1),
        ])
        session.commit()


class TestJobs:
    def test_snapshot_all_periods(self, db_engine):
        _seed_points(db_engine)
        counts = tasks.snapshot_all_periods(db_engine, FarmhubConfig(leaderboard_snapshot_size=1))

        assert counts == {"daily": 1, "weekly": 1, "monthly": 1, "all": 1}
        with Session(db_engine) as session:
            assert session.scalar(select(func.count(LeaderboardSnapshot.id))) == 4

    def test_prune_throttles(self, db_engine):
        old = datetime.now(UTC) - timedelta(days=5)
        fresh = datetime.now(UTC)
        with Session(db_engine) as session:
            make_user(session, 1, "alice")
            session.add_all([
                AdminRateLimitEvent(admin_id="9", timestamp=old),
                AdminRateLimitEvent(admin_id="9", timestamp=fresh),
                ReportRateLimit(user_id=1, content_key="*", window_start=old, count=1, last_reported_at=old),
            ])
            session.commit()

        result = tasks.prune_throttles(db_engine, FarmhubConfig())

        assert result == {"report_rate_limits": 1, "admin_rate_limit_events": 1}
        with Session(db_engine) as session:
            assert session.scalar(select(func.count(AdminRateLimitEvent.id))) == 1


class TestPeriodicTasks:
    def test_run_once_returns_job_result(self, db_engine):
        runner = tasks.PeriodicTasks(db_engine, FarmhubConfig())
        result = asyncio.run(runner.run_once("echo", lambda engine, config: {"ok": 1}))
        assert result == {"ok": 1}

    def test_failed_run_is_logged_not_raised(self, db_engine, caplog):
        def boom(engine, config):
            raise RuntimeError("database went away")

        runner = tasks.PeriodicTasks(db_engine, FarmhubConfig())
        assert asyncio.run(runner.run_once("boom", boom)) is None
        assert "Periodic task boom failed" in caplog.text

    def test_start_and_stop(self, db_engine):
        runner = tasks.PeriodicTasks(db_engine, FarmhubConfig())

        async def lifecycle():
            runner.start()
            started = runner.running
            await runner.stop()
            return started

        assert asyncio.run(lifecycle()) is True
        assert runner.running is False
