"""
tests/test_discussions.py — Discussion Board Service Tests
===========================================================
Posts, threaded replies, votes, moderator approval and the notifications
they fan out.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import select

from conftest import make_post, make_user
from farmhub.database.models import Notification, ReplyAncestry, UserVote
from farmhub.errors import NotFoundError, ValidationError
from farmhub.services import discussion_service, notification_service, scoring_service

CONTENT = "We lost half our maize to weevils last season. What worked for you?"


def _notifications(session, user_id: int) -> list[Notification]:
    return list(session.scalars(select(Notification).where(Notification.user_id == user_id)).all())


class TestCreatePost:
    def test_post_starts_pending_and_scores(self, db_session, users):
        post = discussion_service.create_post(
            db_session, 1, title="Storing maize after harvest", content=CONTENT, tags=["Maize", "storage"],
        )
        assert post.is_approved is False
        assert sorted(t.name for t in post.tags) == ["maize", "storage"]
        assert scoring_service.get_total_points(db_session, 1) == 2

    @pytest.mark.parametrize("title, content, code", [
        ("Too short", CONTENT, "invalid_title"),
        ("A perfectly fine title", "short body", "invalid_content"),
    ])
    def test_length_limits(self, db_session, users, title, content, code):
        with pytest.raises(ValidationError) as exc:
            discussion_service.create_post(db_session, 1, title=title, content=content)
        assert exc.value.code == code

    def test_too_many_tags(self, db_session, users):
        with pytest.raises(ValidationError) as exc:
            discussion_service.create_post(
                db_session, 1, title="Storing maize after harvest", content=CONTENT,
                tags=["a", "b", "c", "d"],
            )
        assert exc.value.code == "too_many_tags"

    def test_availability_ignored_for_regular_posts(self, db_session, users):
        post = discussion_service.create_post(
            db_session, 1, title="Storing maize after harvest", content=CONTENT, is_available=True,
        )
        assert post.is_available is False

    def test_market_post_counts_as_open_once_approved(self, db_session, users):
        post = discussion_service.create_post(
            db_session, 1, title="Selling 20 bags of beans", content=CONTENT,
            is_market_post=True, is_available=True,
        )
        assert discussion_service.count_open_market_posts(db_session) == 0
        discussion_service.approve_post(db_session, post.id, 9)
        assert discussion_service.count_open_market_posts(db_session) == 1

    def test_count_posts_since(self, db_session, users):
        discussion_service.create_post(db_session, 1, title="Storing maize after harvest", content=CONTENT)
        since = datetime.now(UTC) - timedelta(hours=1)
        assert discussion_service.count_posts_since(db_session, 1, since) == 1
        assert discussion_service.count_posts_since(db_session, 2, since) == 0


class TestListPosts:
    def test_only_approved_posts_listed(self, db_session, users):
        make_post(db_session, 1, title="Approved maize post")
        make_post(db_session, 1, title="Pending maize post", approved=False)
        result = discussion_service.list_posts(db_session)
        assert [p["title"] for p in result["posts"]] == ["Approved maize post"]
        assert result["total"] == 1

    def test_owner_sees_own_pending_posts(self, db_session, users):
        make_post(db_session, 1, title="Pending maize post", approved=False)
        own = discussion_service.list_posts(db_session, viewer_id=1, user_id=1)
        other = discussion_service.list_posts(db_session, viewer_id=2, user_id=1)
        assert own["total"] == 1
        assert other["total"] == 0

    def test_search_and_tag_filters(self, db_session, users):
        discussion_service.create_post(
            db_session, 1, title="Weevils in stored maize", content=CONTENT, tags=["pests"],
        )
        discussion_service.create_post(
            db_session, 2, title="Best goat breeds for milk", content="Which goat breed gives the most milk?",
        )
        for post in discussion_service.list_posts(db_session, viewer_id=1, user_id=1)["posts"]:
            discussion_service.approve_post(db_session, post["id"], 9)
        for post in discussion_service.list_posts(db_session, viewer_id=2, user_id=2)["posts"]:
            discussion_service.approve_post(db_session, post["id"], 9)

        assert discussion_service.list_posts(db_session, search="goat")["total"] == 1
        assert discussion_service.list_posts(db_session, tag="PESTS")["total"] == 1
        assert discussion_service.list_tags(db_session) == [{"name": "pests", "post_count": 1}]

    def test_unknown_sort(self, db_session, users):
        with pytest.raises(ValidationError):
            discussion_service.list_posts(db_session, sort="oldest")

    def test_pagination(self, db_session, users):
        for i in range(5):
            make_post(db_session, 1, title=f"Maize question number {i}")
        result = discussion_service.list_posts(db_session, page=2, limit=2)
        assert len(result["posts"]) == 2
        assert result["pages"] == 3


class TestGetPost:
    def test_pending_post_hidden_from_others(self, db_session, users):
        post = make_post(db_session, 1, approved=False)
        with pytest.raises(NotFoundError):
            discussion_service.get_post(db_session, post.id, 2)
        assert discussion_service.get_post(db_session, post.id, 1)["id"] == post.id
        assert discussion_service.get_post(db_session, post.id, 2, is_staff=True)["id"] == post.id

    def test_deleted_post_is_not_found(self, db_session, users):
        post = make_post(db_session, 1, is_deleted=True)
        with pytest.raises(NotFoundError):
            discussion_service.get_post(db_session, post.id, 1)


class TestReplies:
    def test_reply_scores_and_notifies_post_author(self, db_session, users):
        post = make_post(db_session, 1)
        reply = discussion_service.create_reply(db_session, post.id, 2, "Try hermetic storage bags.")

        assert post.replies_count == 1
        assert db_session.get(ReplyAncestry, reply.id).root_post_id == post.id
        assert scoring_service.get_total_points(db_session, 2) == 1
        assert [n.type for n in _notifications(db_session, 1)] == ["reply_created"]

    def test_nested_reply_notifies_parent_author_once(self, db_session, users):
        post = make_post(db_session, 1)
        top = discussion_service.create_reply(db_session, post.id, 2, "Try hermetic storage bags.")
        discussion_service.create_reply(db_session, post.id, 3, "Agreed, they worked for us.", top.id)

        assert len(_notifications(db_session, 2)) == 1
        assert len(_notifications(db_session, 1)) == 2

    def test_depth_limit(self, db_session, users):
        post = make_post(db_session, 1)
        parent = None
        for _ in range(4):
            parent = discussion_service.create_reply(
                db_session, post.id, 2, "Going one level deeper.", parent.id if parent else None,
            )
        assert parent.depth == 3
        with pytest.raises(ValidationError) as exc:
            discussion_service.create_reply(db_session, post.id, 2, "One level too deep.", parent.id)
        assert exc.value.code == "depth_exceeded"

    def test_parent_from_another_post(self, db_session, users):
        post = make_post(db_session, 1)
        other = make_post(db_session, 1, title="Another maize question")
        foreign = discussion_service.create_reply(db_session, other.id, 2, "Reply on the other post.")
        with pytest.raises(NotFoundError) as exc:
            discussion_service.create_reply(db_session, post.id, 2, "Misplaced reply here.", foreign.id)
        assert exc.value.code == "parent_not_found"

    def test_reply_length(self, db_session, users):
        post = make_post(db_session, 1)
        with pytest.raises(ValidationError):
            discussion_service.create_reply(db_session, post.id, 2, "too short")

    def test_mentions_notify_other_members(self, db_session, users):
        post = make_post(db_session, 1)
        discussion_service.create_reply(
            db_session, post.id, 2, "@carol had the same problem last year, ask her.",
        )
        assert [n.type for n in _notifications(db_session, 3)] == ["mention"]

    def test_list_replies_builds_threads(self, db_session, users):
        post = make_post(db_session, 1)
        top = discussion_service.create_reply(db_session, post.id, 2, "Try hermetic storage bags.")
        discussion_service.create_reply(db_session, post.id, 3, "Agreed, they worked for us.", top.id)

        result = discussion_service.list_replies(db_session, post.id)
        assert result["total"] == 1
        assert result["replies"][0]["replies"][0]["author"]["username"] == "carol"


class TestVotes:
    def test_vote_toggle_and_switch(self, db_session, users):
        post = make_post(db_session, 1)

        assert discussion_service.vote(db_session, "post", post.id, 2, "upvote") == {
            "upvotes": 1, "downvotes": 0, "user_vote": "upvote",
        }
        assert discussion_service.vote(db_session, "post", post.id, 2, "downvote") == {
            "upvotes": 0, "downvotes": 1, "user_vote": "downvote",
        }
        assert discussion_service.vote(db_session, "post", post.id, 2, "downvote") == {
            "upvotes": 0, "downvotes": 0, "user_vote": None,
        }
        assert db_session.scalar(select(UserVote)) is None

    def test_invalid_vote_type(self, db_session, users):
        post = make_post(db_session, 1)
        with pytest.raises(ValidationError) as exc:
            discussion_service.vote(db_session, "post", post.id, 2, "sideways")
        assert exc.value.code == "invalid_vote"

    def test_vote_on_deleted_reply(self, db_session, users):
        post = make_post(db_session, 1)
        reply = discussion_service.create_reply(db_session, post.id, 2, "Try hermetic storage bags.")
        reply.is_deleted = True
        db_session.flush()
        with pytest.raises(NotFoundError):
            discussion_service.vote(db_session, "reply", reply.id, 3, "upvote")

    def test_user_vote_reported_in_listing(self, db_session, users):
        post = make_post(db_session, 1)
        discussion_service.vote(db_session, "post", post.id, 2, "upvote")
        listed = discussion_service.list_posts(db_session, viewer_id=2)["posts"][0]
        assert listed["user_vote"] == "upvote"
        assert listed["upvotes"] == 1

    def test_self_vote_does_not_notify(self, db_session, users):
        post = make_post(db_session, 1)
        discussion_service.vote(db_session, "post", post.id, 1, "upvote")
        assert _notifications(db_session, 1) == []


class TestApproval:
    def test_approve_then_reject(self, db_session, users):
        post = make_post(db_session, 1, approved=False)

        assert discussion_service.approve_post(db_session, post.id, 9)["already_approved"] is False
        assert discussion_service.approve_post(db_session, post.id, 9)["already_approved"] is True
        assert scoring_service.get_total_points(db_session, 1) == 15
        assert [n.type for n in _notifications(db_session, 1)] == ["post_approved"]

        result = discussion_service.reject_post(db_session, post.id, 9)
        assert result["bonus_reversed"] is True
        assert scoring_service.get_total_points(db_session, 1) == 0

    def test_reject_without_approval_reverses_nothing(self, db_session, users):
        post = make_post(db_session, 1, approved=False)
        assert discussion_service.reject_post(db_session, post.id, 9)["bonus_reversed"] is False


# ===========================================================================
# Notification inbox
# ===========================================================================
class TestNotifications:
    def test_self_notification_skipped(self, db_session, users):
        assert notification_service.create(
            db_session, 1, "post_vote", "t", "m", actor_id=1
        ) is None

    def test_extract_mentions(self):
        assert notification_service.extract_mentions(
            "Thanks @bob and @carol. Email me at me@example.com"
        ) == {"bob", "carol"}

    def test_inbox_lifecycle(self, db_session, users):
        first = notification_service.create(db_session, 1, "mention", "Hi", "one", actor_id=2)
        notification_service.create(db_session, 1, "mention", "Hi", "two", actor_id=3)

        assert notification_service.unread_count(db_session, 1) == 2
        assert notification_service.mark_read(db_session, 1, [first.id]) == 1
        inbox = notification_service.list_notifications(db_session, 1, unread_only=True)
        assert inbox["total"] == 1
        assert inbox["unread_count"] == 1

        assert notification_service.mark_all_read(db_session, 1) == 1
        assert notification_service.clear_all(db_session, 1) == 2
        assert notification_service.list_notifications(db_session, 1)["total"] == 0

    def test_mark_read_ignores_other_members(self, db_session, users):
        row = notification_service.create(db_session, 1, "mention", "Hi", "one", actor_id=2)
        assert notification_service.mark_read(db_session, 2, [row.id]) == 0

    def test_mentions_are_case_insensitive(self, db_session, users):
        make_user(db_session, 4, "MamaNjeri")
        sent = notification_service.notify_mentions(
            db_session, "ask @mamanjeri about drip lines", actor_id=1, data={},
        )
        assert sent == 1
