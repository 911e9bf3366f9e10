"""
tests/test_moderation.py — Reports, Throttling & Decisions
===========================================================
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import select

from conftest import make_post
from farmhub.config import FarmhubConfig
from farmhub.database.models import ContentReport, Notification, PostSnapshot, ReportRateLimit
from farmhub.errors import NotFoundError, RateLimitedError, ValidationError
from farmhub.services import discussion_service, moderation_service, scoring_service


def _types(session, user_id: int) -> list[str]:
    return [
        n.type for n in session.scalars(select(Notification).where(Notification.user_id == user_id)).all()
    ]


@pytest.fixture
def post(db_session, users):
    return make_post(db_session, 1)


class TestCreateReport:
    def test_report_is_filed_and_owner_notified(self, db_session, post):
        result = moderation_service.create_report(db_session, 2, reason="spam", post_id=post.id)

        assert result["duplicate"] is False
        assert result["is_reopened"] is False
        assert result["report_count"] == 1
        assert result["report"]["status"] == "pending"
        assert _types(db_session, 1) == ["post_reported"]

    def test_second_report_while_pending_is_duplicate(self, db_session, post):
        first = moderation_service.create_report(db_session, 2, reason="spam", post_id=post.id)
        again = moderation_service.create_report(db_session, 2, reason="fraudulent", post_id=post.id)

        assert again["duplicate"] is True
        assert again["report_id"] == first["report"]["id"]
        assert len(db_session.scalars(select(ContentReport)).all()) == 1

    def test_reports_from_different_members_count_up(self, db_session, post):
        moderation_service.create_report(db_session, 2, reason="spam", post_id=post.id)
        result = moderation_service.create_report(db_session, 3, reason="spam", post_id=post.id)
        assert result["report_count"] == 2

    def test_invalid_reason(self, db_session, post):
        with pytest.raises(ValidationError) as exc:
            moderation_service.create_report(db_session, 2, reason="boring", post_id=post.id)
        assert exc.value.code == "invalid_reason"

    def test_missing_or_deleted_post(self, db_session, users):
        gone = make_post(db_session, 1, is_deleted=True)
        with pytest.raises(NotFoundError):
            moderation_service.create_report(db_session, 2, reason="spam", post_id=gone.id)
        with pytest.raises(NotFoundError):
            moderation_service.create_report(db_session, 2, reason="spam", post_id="missing")

    def test_reply_report(self, db_session, post):
        reply = discussion_service.create_reply(db_session, post.id, 3, "Buy cheap seeds at my shop!!")
        result = moderation_service.create_report(db_session, 2, reason="spam", reply_id=reply.id)

        assert result["report"]["post_id"] == post.id
        assert result["report"]["reply_id"] == reply.id
        assert "post_reported" in _types(db_session, 3)
        keys = set(db_session.scalars(select(ReportRateLimit.content_key)).all())
        assert keys == {"*", f"reply:{reply.id}"}


class TestHourlyLimit:
    def test_limit_then_window_resets(self, db_session, users):
        config = FarmhubConfig(report_rate_limit_per_hour=2)
        posts = [make_post(db_session, 1, title=f"Maize question number {i}") for i in range(3)]
        now = datetime(2026, 6, 1, 9, 0, tzinfo=UTC)

        for p in posts[:2]:
            moderation_service.create_report(
                db_session, 2, reason="spam", post_id=p.id, config=config, now=now,
            )
        with pytest.raises(RateLimitedError) as exc:
            moderation_service.create_report(
                db_session, 2, reason="spam", post_id=posts[2].id, config=config,
                now=now + timedelta(minutes=10),
            )
        assert exc.value.code == "hourly_limit_exceeded"
        assert exc.value.retry_after == 50 * 60

        result = moderation_service.create_report(
            db_session, 2, reason="spam", post_id=posts[2].id, config=config,
            now=now + timedelta(minutes=61),
        )
        assert result["duplicate"] is False


class TestDecide:
    def _report(self, session, post, *reporters, reason="spam"):
        for reporter in reporters:
            moderation_service.create_report(session, reporter, reason=reason, post_id=post.id)

    def test_delete_requires_justification(self, db_session, post):
        self._report(db_session, post, 2)
        with pytest.raises(ValidationError) as exc:
            moderation_service.decide(db_session, post.id, "deleted", "  ", 9)
        assert exc.value.code == "justification_required"

    def test_invalid_decision(self, db_session, post):
        with pytest.raises(ValidationError) as exc:
            moderation_service.decide(db_session, post.id, "banished", "x", 9)
        assert exc.value.code == "invalid_decision"

    def test_no_pending_reports(self, db_session, post):
        with pytest.raises(ValidationError) as exc:
            moderation_service.decide(db_session, post.id, "retained", None, 9)
        assert exc.value.code == "no_pending_reports"

    def test_delete_resolves_scores_and_snapshots(self, db_session, post):
        self._report(db_session, post, 2, 3)
        result = moderation_service.decide(db_session, post.id, "deleted", "Spam link", 9)

        assert result["resolved"] == 2
        assert post.is_deleted is True
        snap = db_session.get(PostSnapshot, result["snapshot_id"])
        assert snap.title == post.title
        assert snap.snapshot_reason == "moderation_deleted"
        assert all(
            r.status == "resolved" and r.post_snapshot_id == snap.id
            for r in db_session.scalars(select(ContentReport)).all()
        )
        assert scoring_service.get_total_points(db_session, 1) == -5
        assert scoring_service.get_total_points(db_session, 2) == 1
        assert "moderation_decision_reporter" in _types(db_session, 3)
        assert "moderation_decision_owner" in _types(db_session, 1)

    def test_retained_keeps_post_visible(self, db_session, post):
        self._report(db_session, post, 2)
        moderation_service.decide(db_session, post.id, "retained", None, 9)

        assert post.is_deleted is False
        assert scoring_service.get_total_points(db_session, 1) == 0
        assert scoring_service.get_total_points(db_session, 2) == 1


class TestReopen:
    def test_reopen_after_cooldown(self, db_session, post):
        moderation_service.create_report(db_session, 2, reason="spam", post_id=post.id)
        moderation_service.decide(db_session, post.id, "retained", None, 9)

        later = datetime.now(UTC) + timedelta(hours=25)
        result = moderation_service.create_report(
            db_session, 2, reason="misinformation", post_id=post.id, now=later,
        )
        assert result["is_reopened"] is True
        assert result["report"]["reason"] == "misinformation"
        assert result["report"]["decision"] is None
        assert len(db_session.scalars(select(ContentReport)).all()) == 1

    def test_content_cooldown_blocks_quick_rereport(self, db_session, post):
        moderation_service.create_report(db_session, 2, reason="spam", post_id=post.id)
        moderation_service.decide(db_session, post.id, "retained", None, 9)

        with pytest.raises(RateLimitedError) as exc:
            moderation_service.create_report(
                db_session, 2, reason="spam", post_id=post.id,
                now=datetime.now(UTC) + timedelta(hours=1),
            )
        assert exc.value.code == "content_cooldown"

    def test_reopen_cooldown_when_content_cooldown_elapsed(self, db_session, post):
        config = FarmhubConfig(report_content_cooldown_hours=1, report_reopen_cooldown_hours=24)
        moderation_service.create_report(db_session, 2, reason="spam", post_id=post.id, config=config)
        moderation_service.decide(db_session, post.id, "retained", None, 9)

        with pytest.raises(ValidationError) as exc:
            moderation_service.create_report(
                db_session, 2, reason="spam", post_id=post.id, config=config,
                now=datetime.now(UTC) + timedelta(hours=2),
            )
        assert exc.value.code == "reopen_cooldown"
        assert exc.value.extra["cooldown_hours"] >= 22


class TestQueueAndHistory:
    def test_pending_grouped_busiest_first(self, db_session, users):
        quiet = make_post(db_session, 1, title="Quiet maize question")
        busy = make_post(db_session, 1, title="Busy maize question")
        moderation_service.create_report(db_session, 2, reason="spam", post_id=quiet.id)
        moderation_service.create_report(db_session, 2, reason="spam", post_id=busy.id)
        moderation_service.create_report(db_session, 3, reason="fraudulent", post_id=busy.id)

        queue = moderation_service.list_pending(db_session)
        assert queue["total"] == 2
        first = queue["items"][0]
        assert first["post_id"] == busy.id
        assert first["report_count"] == 2
        assert first["most_common_reason"] == "spam"
        assert {r["username"] for r in first["reporters"]} == {"bob", "carol"}
        assert "_sort" not in first

    def test_search_filters_queue(self, db_session, users):
        post = make_post(db_session, 1, title="Selling goats cheap")
        moderation_service.create_report(db_session, 2, reason="spam", post_id=post.id)
        assert moderation_service.list_pending(db_session, search="goat")["total"] == 1
        assert moderation_service.list_pending(db_session, search="tractor")["total"] == 0

    def test_history_and_metrics(self, db_session, post):
        moderation_service.create_report(db_session, 2, reason="spam", post_id=post.id)
        moderation_service.decide(db_session, post.id, "warned", "Keep it civil", 9)

        history = moderation_service.history(db_session)
        assert history["total"] == 1
        item = history["items"][0]
        assert item["decision"] == "warned"
        assert item["resolution_notes"] == "Keep it civil"
        assert item["snapshot"]["title"] == post.title

        assert moderation_service.history(db_session, decision="deleted")["total"] == 0

        stats = moderation_service.metrics(db_session)
        assert stats["pending"] == 0
        assert stats["resolved"] == 1
        assert stats["by_decision"] == {"warned": 1}
        assert stats["by_reason"] == {"spam": 1}
        assert stats["resolved_last_7_days"] == 1

    def test_prune_rate_limits(self, db_session, post):
        moderation_service.create_report(db_session, 2, reason="spam", post_id=post.id)
        assert moderation_service.prune_rate_limits(db_session) == 0
        pruned = moderation_service.prune_rate_limits(
            db_session, now=datetime.now(UTC) + timedelta(days=4)
        )
        assert pruned == 2
