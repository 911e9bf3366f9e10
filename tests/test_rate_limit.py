"""
tests/test_rate_limit.py — Staff API Rate Limiting Tests
=========================================================
Staff mutation endpoints are rate-limited at 30/min per staff member,
returning 429 with a consistent error payload.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy.orm import Session

from conftest import auth, make_token
from farmhub.api.rate_limit import StaffRateLimiter
from farmhub.database.models import AdminRateLimitEvent


# ---------------------------------------------------------------------------
# Unit tests for the StaffRateLimiter core (DB-backed)
# ---------------------------------------------------------------------------
class TestStaffRateLimiter:
    """Test the sliding-window rate limiter in isolation (DB-backed)."""

    @pytest.fixture(autouse=True)
    def _limiter(self, db_engine):
        self.limiter = StaffRateLimiter(max_requests=5, window_seconds=60, engine=db_engine)
        self.engine = db_engine

    def test_allows_requests_within_limit(self):
        for _ in range(5):
            allowed, _ = self.limiter.check("user1")
            assert allowed
            self.limiter.record("user1")

    def test_blocks_after_limit_exceeded(self):
        limiter = StaffRateLimiter(max_requests=3, window_seconds=60, engine=self.engine)
        for _ in range(3):
            limiter.record("user1")

        allowed, info = limiter.check("user1")
        assert not allowed
        assert info["remaining"] == 0
        assert 0 < info["reset"] <= 61

    def test_separate_users_have_separate_limits(self):
        limiter = StaffRateLimiter(max_requests=2, window_seconds=60, engine=self.engine)
        limiter.record("user1")
        limiter.record("user1")

        assert not limiter.check("user1")[0]
        assert limiter.check("user2")[0]

    def test_remaining_count_decreases(self):
        _, info = self.limiter.check("user1")
        assert info["remaining"] == 5

        assert self.limiter.record("user1")["remaining"] == 4
        _, info = self.limiter.check("user1")
        assert info["remaining"] == 4

    def test_old_events_fall_out_of_window(self):
        limiter = StaffRateLimiter(max_requests=2, window_seconds=60, engine=self.engine)
        stale = datetime.now(UTC) - timedelta(minutes=5)
        with Session(self.engine) as s:
            s.add_all([AdminRateLimitEvent(admin_id="user1", timestamp=stale) for _ in range(2)])
            s.commit()

        allowed, info = limiter.check("user1")
        assert allowed
        assert info["remaining"] == 2

    def test_reset_clears_specific_user(self):
        limiter = StaffRateLimiter(max_requests=2, window_seconds=60, engine=self.engine)
        limiter.record("user1")
        limiter.record("user1")
        limiter.record("user2")

        limiter.reset("user1")

        assert limiter.check("user1")[0]
        assert limiter.check("user2")[1]["remaining"] == 1

    def test_reset_all(self):
        limiter = StaffRateLimiter(max_requests=2, window_seconds=60, engine=self.engine)
        limiter.record("user1")
        limiter.record("user2")

        limiter.reset()

        assert limiter.check("user1")[0]
        assert limiter.check("user2")[0]


# ---------------------------------------------------------------------------
# Integration tests with FastAPI TestClient
# ---------------------------------------------------------------------------
class TestRateLimitDependency:
    """Test the rate limiter dependency end-to-end via TestClient."""

    LEVEL_URL = "/api/admin/logs/level"

    @pytest.fixture
    def limited(self, client, db_engine):
        """Swap in a limiter with a low ceiling."""
        import farmhub.api.rate_limit as rl_mod

        original = rl_mod._limiter
        rl_mod._limiter = StaffRateLimiter(max_requests=3, window_seconds=60, engine=db_engine)
        yield client, rl_mod._limiter
        rl_mod._limiter = original

    def test_get_requests_not_rate_limited(self, limited, admin_token):
        test_client, limiter = limited
        for _ in range(3):
            limiter.record("99999")

        resp = test_client.get("/api/admin/logs", headers=auth(admin_token))
        assert resp.status_code == 200

    def test_returns_429_after_limit(self, limited, admin_token):
        test_client, limiter = limited
        for _ in range(3):
            limiter.record("99999")

        resp = test_client.put(self.LEVEL_URL, headers=auth(admin_token), json={"level": "INFO"})
        assert resp.status_code == 429

        body = resp.json()
        assert body["detail"]["error"] == "rate_limit_exceeded"
        assert "retry_after" in body["detail"]
        assert "Retry-After" in resp.headers

    def test_successful_mutation_is_counted(self, limited, admin_token):
        test_client, limiter = limited
        resp = test_client.put(self.LEVEL_URL, headers=auth(admin_token), json={"level": "INFO"})
        assert resp.status_code == 200
        assert limiter.check("99999")[1]["remaining"] == 2

    def test_different_admins_have_separate_limits(self, limited, admin_token):
        test_client, limiter = limited
        for _ in range(3):
            limiter.record("99999")
        other = make_token("88888", "OtherAdmin", is_admin=True)

        assert test_client.put(self.LEVEL_URL, headers=auth(admin_token), json={"level": "INFO"}).status_code == 429
        assert test_client.put(self.LEVEL_URL, headers=auth(other), json={"level": "INFO"}).status_code == 200

    def test_moderator_decisions_are_throttled(self, limited):
        test_client, limiter = limited
        for _ in range(3):
            limiter.record("7001")
        token = make_token("7001", "mod", is_moderator=True)

        resp = test_client.post(
            "/api/moderation/posts/missing/decision", headers=auth(token), json={"decision": "retained"},
        )
        assert resp.status_code == 429

    def test_unauthenticated_mutation_is_rejected_first(self, limited):
        test_client, _ = limited
        resp = test_client.put(self.LEVEL_URL, json={"level": "INFO"})
        assert resp.status_code == 401
