"""
tests/test_api_routes.py — FastAPI Route Integration Tests
============================================================
Exercises the HTTP surface end to end with the FastAPI TestClient:

- Auth guards on staff endpoints
- Response structure of member endpoints
- Error payloads raised from the service layer
"""

from __future__ import annotations

import pytest

from conftest import auth, make_token

POST = {
    "title": "Weaning piglets at four weeks",
    "content": "Has anyone had good results weaning at 28 days with creep feed?",
    "tags": ["Piglets"],
}


@pytest.fixture
def member():
    return make_token("1001", "wanjiru")


@pytest.fixture
def moderator():
    return make_token("2002", "otieno", is_moderator=True)


# ---------------------------------------------------------------------------
# Health & identity
# ---------------------------------------------------------------------------
class TestHealth:
    def test_health_returns_ok(self, client):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}


class TestIdentity:
    def test_me_requires_token(self, client):
        assert client.get("/api/auth/me").status_code == 401

    def test_me_registers_member_on_first_request(self, client, member):
        resp = client.get("/api/auth/me", headers=auth(member))
        assert resp.status_code == 200
        body = resp.json()
        assert body["id"] == "1001"
        assert body["username"] == "wanjiru"
        assert body["timezone"] == "UTC"
        assert body["is_admin"] is False
        assert body["is_moderator"] is False

    def test_moderator_claim_is_reported(self, client, moderator):
        assert client.get("/api/auth/me", headers=auth(moderator)).json()["is_moderator"] is True


# ---------------------------------------------------------------------------
# Admin auth guards
# ---------------------------------------------------------------------------
class TestAdminAuthGuards:
    """Staff endpoints must reject unauthenticated and non-staff callers."""

    @pytest.mark.parametrize("path", ["/api/admin/audit", "/api/admin/logs"])
    def test_requires_token(self, client, path):
        assert client.get(path).status_code == 401

    @pytest.mark.parametrize("path", ["/api/admin/audit", "/api/admin/logs"])
    def test_rejects_member(self, client, member, path):
        assert client.get(path, headers=auth(member)).status_code == 403

    def test_moderator_is_not_admin(self, client, moderator):
        assert client.get("/api/admin/audit", headers=auth(moderator)).status_code == 403

    def test_admin_reads_audit_log(self, client, admin_token):
        resp = client.get("/api/admin/audit", headers=auth(admin_token))
        assert resp.status_code == 200

    def test_member_cannot_author_quizzes(self, client, member):
        resp = client.post(
            "/api/quizzes/admin", headers=auth(member),
            json={"title": "Biosecurity basics", "duration_minutes": 10},
        )
        assert resp.status_code == 403

    def test_member_cannot_adjust_scores(self, client, member):
        resp = client.post(
            "/api/score/admin/adjust", headers=auth(member),
            json={"user_id": 1001, "delta": 5, "reason": "nice"},
        )
        assert resp.status_code == 403

    def test_adjustment_out_of_range_is_rejected(self, client, admin_token):
        resp = client.post(
            "/api/score/admin/adjust", headers=auth(admin_token),
            json={"user_id": 99999, "delta": 5_000_000, "reason": "typo"},
        )
        assert resp.status_code == 422


class TestAdminLogs:
    def test_logs_payload(self, client, admin_token):
        resp = client.get("/api/admin/logs", headers=auth(admin_token))
        assert resp.status_code == 200
        body = resp.json()
        for key in ("entries", "total", "last_seq", "capture_level", "valid_levels"):
            assert key in body
        assert "DEBUG" in body["valid_levels"]

    def test_invalid_level_filter(self, client, admin_token):
        resp = client.get("/api/admin/logs?level=LOUD", headers=auth(admin_token))
        assert resp.status_code == 400


# ---------------------------------------------------------------------------
# Discussions
# ---------------------------------------------------------------------------
class TestDiscussionFlow:
    def test_create_approve_and_list(self, client, member, moderator):
        created = client.post("/api/discussions/posts", headers=auth(member), json=POST)
        assert created.status_code == 201
        post = created.json()["post"]
        assert post["is_approved"] is False
        assert post["tags"] == ["piglets"]

        # Pending posts are hidden from the public listing
        assert client.get("/api/discussions/posts").json()["total"] == 0

        approved = client.post(f"/api/discussions/posts/{post['id']}/approve", headers=auth(moderator))
        assert approved.status_code == 200
        assert approved.json()["is_approved"] is True

        listing = client.get("/api/discussions/posts").json()
        assert listing["total"] == 1
        assert listing["posts"][0]["id"] == post["id"]

    def test_owner_sees_own_pending_post(self, client, member):
        client.post("/api/discussions/posts", headers=auth(member), json=POST)
        mine = client.get("/api/discussions/posts?user_id=1001", headers=auth(member)).json()
        assert mine["total"] == 1

    def test_member_cannot_approve(self, client, member):
        post_id = client.post("/api/discussions/posts", headers=auth(member), json=POST).json()["post"]["id"]
        resp = client.post(f"/api/discussions/posts/{post_id}/approve", headers=auth(member))
        assert resp.status_code == 403

    def test_validation_error_payload(self, client, member):
        resp = client.post(
            "/api/discussions/posts", headers=auth(member),
            json={"title": "short", "content": "also too short"},
        )
        assert resp.status_code == 400
        assert resp.json()["detail"]["error"] == "invalid_title"

    def test_unknown_post_is_404(self, client):
        resp = client.get("/api/discussions/posts/does-not-exist")
        assert resp.status_code == 404
        assert resp.json()["detail"]["error"] == "post_not_found"

    def test_reply_and_vote(self, client, member, moderator):
        post_id = client.post("/api/discussions/posts", headers=auth(member), json=POST).json()["post"]["id"]
        client.post(f"/api/discussions/posts/{post_id}/approve", headers=auth(moderator))
        voter = make_token("3003", "akinyi")

        reply = client.post(
            f"/api/discussions/posts/{post_id}/replies", headers=auth(voter),
            json={"content": "We wean at 28 days and it works well."},
        )
        assert reply.status_code == 201
        assert reply.json()["reply"]["post_id"] == post_id

        vote = client.post(
            f"/api/discussions/posts/{post_id}/vote", headers=auth(voter), json={"vote_type": "upvote"},
        )
        assert vote.status_code == 200
        assert vote.json() == {"upvotes": 1, "downvotes": 0, "user_vote": "upvote"}


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------
class TestNotifications:
    def test_approval_notifies_author(self, client, member, moderator):
        post_id = client.post("/api/discussions/posts", headers=auth(member), json=POST).json()["post"]["id"]
        client.post(f"/api/discussions/posts/{post_id}/approve", headers=auth(moderator))

        inbox = client.get("/api/notifications", headers=auth(member)).json()
        assert inbox["unread_count"] == 1
        assert inbox["notifications"][0]["type"] == "post_approved"

        resp = client.post("/api/notifications/mark-all-read", headers=auth(member))
        assert resp.json() == {"updated": 1}
        assert client.get("/api/notifications/unread-count", headers=auth(member)).json() == {"unread_count": 0}

    def test_inbox_requires_token(self, client):
        assert client.get("/api/notifications").status_code == 401


# ---------------------------------------------------------------------------
# Score & leaderboard
# ---------------------------------------------------------------------------
class TestScore:
    def test_my_score_card(self, client, member):
        client.post("/api/discussions/posts", headers=auth(member), json=POST)
        body = client.get("/api/score/me", headers=auth(member)).json()
        assert body["user_id"] == "1001"
        assert body["total_points"] > 0
        assert "level" in body
        assert "streak" in body

    def test_unknown_user_card(self, client):
        resp = client.get("/api/score/users/424242")
        assert resp.status_code == 404
        assert resp.json()["detail"]["error"] == "user_not_found"

    def test_set_timezone(self, client, member):
        resp = client.put("/api/score/me/timezone", headers=auth(member), json={"timezone": "Africa/Nairobi"})
        assert resp.status_code == 200
        assert client.get("/api/auth/me", headers=auth(member)).json()["timezone"] == "Africa/Nairobi"

    def test_rejects_unknown_timezone(self, client, member):
        resp = client.put("/api/score/me/timezone", headers=auth(member), json={"timezone": "Mars/Olympus"})
        assert resp.status_code == 400


class TestLeaderboardRoutes:
    def test_simple_mode(self, client):
        resp = client.get("/api/score/leaderboard?period=all")
        assert resp.status_code == 200
        assert resp.json()["period"] == "all"

    def test_invalid_period(self, client):
        resp = client.get("/api/score/leaderboard?period=yearly")
        assert resp.status_code == 400
        assert resp.json()["detail"]["error"] == "invalid_period"

    def test_invalid_mode(self, client):
        resp = client.get("/api/score/leaderboard?mode=sideways")
        assert resp.status_code == 400
        assert resp.json()["detail"]["error"] == "invalid_mode"

    def test_around_requires_token(self, client):
        assert client.get("/api/score/leaderboard?mode=around").status_code == 401

    def test_paginated_mode_echoes_page(self, client):
        body = client.get("/api/score/leaderboard?mode=paginated&page=2&limit=5").json()
        assert body["page"] == 2
        assert body["limit"] == 5


# ---------------------------------------------------------------------------
# Best practices & quizzes
# ---------------------------------------------------------------------------
class TestPublicCatalogues:
    def test_best_practice_categories(self, client):
        resp = client.get("/api/best-practices/categories")
        assert resp.status_code == 200
        assert len(resp.json()["categories"]) == 8

    def test_quiz_listing_is_public(self, client):
        resp = client.get("/api/quizzes")
        assert resp.status_code == 200

    def test_admin_creates_quiz(self, client, admin_token):
        resp = client.post(
            "/api/quizzes/admin", headers=auth(admin_token),
            json={"title": "Biosecurity basics", "duration_minutes": 10},
        )
        assert resp.status_code == 201
        assert resp.json()["quiz"]["title"] == "Biosecurity basics"
