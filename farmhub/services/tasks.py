"""
farmhub.services.tasks — Periodic Background Maintenance
=========================================================

Scheduled jobs that run as asyncio tasks inside the API process:

- **Leaderboard snapshots** — every ``leaderboard.snapshot_interval_minutes``,
  materializes the top ``leaderboard.snapshot_size`` rows of every period.
- **Throttle pruning** — daily, deletes report rate-limit rows past their
  cooldown and admin rate-limit events older than a day.

The loops are started and stopped from the FastAPI lifespan.  Each job
runs through ``run_db()`` so the event loop is never blocked, and a failed
run is logged and retried on the next tick.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from sqlalchemy import Engine, delete

from farmhub.config import FarmhubConfig
from farmhub.database.engine import get_session, run_db
from farmhub.database.models import AdminRateLimitEvent
from farmhub.engine.periods import Period
from farmhub.services import leaderboard_service, moderation_service

logger = logging.getLogger(__name__)

PRUNE_INTERVAL_SECONDS = 24 * 60 * 60


# ---------------------------------------------------------------------------
# Jobs (sync, run on a worker thread)
# ---------------------------------------------------------------------------
def snapshot_all_periods(engine: Engine, config: FarmhubConfig) -> dict[str, int]:
    counts: dict[str, int] = {}
    with get_session(engine) as session:
        for period in Period:
            counts[str(period)] = leaderboard_service.snapshot(
                session, period, size=config.leaderboard_snapshot_size
            )
    return counts


def prune_throttles(engine: Engine, config: FarmhubConfig) -> dict[str, int]:
    now = datetime.now(UTC)
    with get_session(engine) as session:
        reports = moderation_service.prune_rate_limits(session, config, now)
        admin = session.execute(
            delete(AdminRateLimitEvent).where(AdminRateLimitEvent.timestamp < now - timedelta(days=1))
        ).rowcount or 0
    return {"report_rate_limits": reports, "admin_rate_limit_events": admin}


# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------
class PeriodicTasks:
    """Owns the asyncio tasks for every maintenance loop."""

    def __init__(self, engine: Engine, config: FarmhubConfig) -> None:
        self.engine = engine
        self.config = config
        self._tasks: list[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return any(not t.done() for t in self._tasks)

    def start(self) -> None:
        if self.running:
            return
        snapshot_seconds = max(1, self.config.leaderboard_snapshot_interval_minutes) * 60
        self._tasks = [
            asyncio.create_task(
                self._loop("leaderboard_snapshot", snapshot_seconds, snapshot_all_periods),
                name="farmhub-leaderboard-snapshot",
            ),
            asyncio.create_task(
                self._loop("throttle_prune", PRUNE_INTERVAL_SECONDS, prune_throttles),
                name="farmhub-throttle-prune",
            ),
        ]
        logger.info("Periodic tasks started (snapshot every %ds)", snapshot_seconds)

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("Periodic tasks stopped")

    async def run_once(self, name: str, job: Callable[[Engine, FarmhubConfig], dict]) -> dict | None:
        try:
            result = await run_db(job, self.engine, self.config)
        except Exception:
            logger.exception("Periodic task %s failed", name, extra={"task": name})
            return None
        logger.info("Periodic task %s complete: %s", name, result)
        return result

    async def _loop(self, name: str, interval: float, job: Callable[[Engine, FarmhubConfig], dict]) -> None:
        while True:
            await self.run_once(name, job)
            await asyncio.sleep(interval)
