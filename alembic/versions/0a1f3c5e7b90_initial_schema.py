"""Initial FarmHub schema

Revision ID: 0a1f3c5e7b90
Revises:
Create Date: 2026-09-28 10:00:00.000000

"""
from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0a1f3c5e7b90"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

JSON = postgresql.JSONB().with_variant(sa.JSON(), "sqlite")


def _now() -> sa.TextClause:
    return sa.text("CURRENT_TIMESTAMP")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=_now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=_now()),
    ]


def _user_fk(name: str = "user_id", **kw) -> sa.Column:
    return sa.Column(
        name, sa.BigInteger(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, **kw
    )


def upgrade() -> None:
    """Create every table of the community backend."""
    # -- Users & discussions -------------------------------------------------
    op.create_table(
        "users",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=False),
        sa.Column("username", sa.String(100), nullable=False, unique=True),
        sa.Column("display_name", sa.String(200)),
        sa.Column("location", sa.String(200)),
        sa.Column("timezone", sa.String(64), nullable=False, server_default="UTC"),
        *_timestamps(),
    )
    op.create_table(
        "tags",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(50), nullable=False, unique=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=_now()),
    )
    op.create_table(
        "discussion_posts",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        _user_fk("author_id"),
        sa.Column("upvotes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("downvotes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("replies_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_market_post", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_available", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_approved", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("approved_at", sa.DateTime(timezone=True)),
        sa.Column("moderator_id", sa.BigInteger()),
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.CheckConstraint(
            "NOT is_available OR is_market_post",
            name="chk_discussion_posts_available_requires_market",
        ),
    )
    op.create_index("ix_discussion_posts_author", "discussion_posts", ["author_id"])
    op.create_index(
        "ix_discussion_posts_listing", "discussion_posts", ["is_deleted", "is_approved", "created_at"]
    )
    op.create_table(
        "post_tags",
        sa.Column(
            "post_id", sa.String(36),
            sa.ForeignKey("discussion_posts.id", ondelete="CASCADE"), primary_key=True,
        ),
        sa.Column("tag_id", sa.Integer(), sa.ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True),
    )
    op.create_table(
        "discussion_replies",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "post_id", sa.String(36),
            sa.ForeignKey("discussion_posts.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column(
            "parent_reply_id", sa.String(36),
            sa.ForeignKey("discussion_replies.id", ondelete="CASCADE"),
        ),
        _user_fk("author_id"),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("upvotes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("downvotes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("depth", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
    )
    op.create_index("ix_discussion_replies_post_created", "discussion_replies", ["post_id", "created_at"])
    op.create_index("ix_discussion_replies_parent", "discussion_replies", ["parent_reply_id"])
    op.create_table(
        "reply_ancestry",
        sa.Column(
            "reply_id", sa.String(36),
            sa.ForeignKey("discussion_replies.id", ondelete="CASCADE"), primary_key=True,
        ),
        sa.Column("parent_id", sa.String(36)),
        sa.Column("grandparent_id", sa.String(36)),
        sa.Column("root_post_id", sa.String(36), nullable=False),
    )
    op.create_table(
        "user_votes",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        _user_fk(),
        sa.Column("target_type", sa.String(10), nullable=False),
        sa.Column("target_id", sa.String(36), nullable=False),
        sa.Column("vote_type", sa.String(10), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "target_type", "target_id", name="uq_user_votes_target"),
    )
    op.create_index("ix_user_votes_target", "user_votes", ["target_type", "target_id"])

    # -- Moderation ----------------------------------------------------------
    op.create_table(
        "post_snapshots",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("post_id", sa.String(36), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("author_data", JSON, nullable=False),
        sa.Column("tags_data", JSON),
        sa.Column("media_data", JSON),
        sa.Column("snapshot_reason", sa.String(100), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=_now()),
    )
    op.create_index("ix_post_snapshots_post", "post_snapshots", ["post_id"])
    op.create_table(
        "content_reports",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "post_id", sa.String(36),
            sa.ForeignKey("discussion_posts.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column(
            "reply_id", sa.String(36),
            sa.ForeignKey("discussion_replies.id", ondelete="CASCADE"),
        ),
        _user_fk("reporter_id"),
        sa.Column("reason", sa.String(30), nullable=False),
        sa.Column("details", sa.Text()),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("decision", sa.String(20)),
        sa.Column("moderator_id", sa.BigInteger()),
        sa.Column("resolution_notes", sa.Text()),
        sa.Column("resolved_at", sa.DateTime(timezone=True)),
        sa.Column(
            "post_snapshot_id", sa.String(36),
            sa.ForeignKey("post_snapshots.id", ondelete="SET NULL"),
        ),
        *_timestamps(),
    )
    op.create_index("ix_content_reports_status_post", "content_reports", ["status", "post_id"])
    op.create_index("ix_content_reports_reporter", "content_reports", ["reporter_id", "created_at"])
    op.create_table(
        "report_rate_limits",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        _user_fk(),
        sa.Column("content_key", sa.String(80), nullable=False),
        sa.Column("window_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_reported_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("user_id", "content_key", name="uq_report_rate_limits_user_key"),
    )

    # -- Notifications -------------------------------------------------------
    op.create_table(
        "notifications",
        sa.Column("id", sa.String(36), primary_key=True),
        _user_fk(),
        sa.Column("type", sa.String(50), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("data", JSON),
        sa.Column("read", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
    )
    op.create_index("ix_notifications_user_read", "notifications", ["user_id", "read"])
    op.create_index("ix_notifications_user_created", "notifications", ["user_id", "created_at"])

    # -- Best practices ------------------------------------------------------
    op.create_table(
        "best_practice_tags",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(100), nullable=False, unique=True),
        sa.Column("description", sa.Text()),
    )
    op.create_table(
        "best_practice_contents",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("steps", JSON, nullable=False),
        sa.Column("benefits", JSON, nullable=False),
        sa.Column("language", sa.String(10), nullable=False, server_default="en"),
        sa.Column("is_published", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("read_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_by", sa.BigInteger()),
        *_timestamps(),
    )
    op.create_index(
        "ix_best_practice_contents_listing",
        "best_practice_contents",
        ["is_deleted", "is_published", "created_at"],
    )
    op.create_table(
        "best_practice_tag_assignments",
        sa.Column(
            "best_practice_id", sa.String(36),
            sa.ForeignKey("best_practice_contents.id", ondelete="CASCADE"), primary_key=True,
        ),
        sa.Column(
            "tag_id", sa.Integer(),
            sa.ForeignKey("best_practice_tags.id", ondelete="CASCADE"), primary_key=True,
        ),
    )
    op.create_table(
        "best_practice_reads",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column(
            "best_practice_id", sa.String(36),
            sa.ForeignKey("best_practice_contents.id", ondelete="CASCADE"), nullable=False,
        ),
        _user_fk(),
        sa.Column("first_read_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_read_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("read_count", sa.Integer(), nullable=False, server_default="1"),
        sa.UniqueConstraint("best_practice_id", "user_id", name="uq_best_practice_reads_user"),
    )

    # -- Quizzes -------------------------------------------------------------
    op.create_table(
        "quizzes",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("duration_minutes", sa.Integer(), nullable=False, server_default="30"),
        sa.Column("passing_score", sa.Integer(), nullable=False, server_default="70"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column(
            "best_practice_tag_id", sa.Integer(),
            sa.ForeignKey("best_practice_tags.id", ondelete="SET NULL"),
        ),
        sa.Column("created_by", sa.BigInteger()),
        *_timestamps(),
    )
    op.create_table(
        "quiz_questions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("quiz_id", sa.String(36), sa.ForeignKey("quizzes.id", ondelete="CASCADE"), nullable=False),
        sa.Column("text", sa.Text(), nullable=False),
        sa.Column("explanation", sa.Text()),
        sa.Column("order_index", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("type", sa.String(20), nullable=False, server_default="mcq"),
        sa.Column("difficulty", sa.String(20), nullable=False, server_default="medium"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.false()),
    )
    op.create_index("ix_quiz_questions_quiz_order", "quiz_questions", ["quiz_id", "order_index"])
    op.create_table(
        "quiz_question_options",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "question_id", sa.String(36),
            sa.ForeignKey("quiz_questions.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("text", sa.Text(), nullable=False),
        sa.Column("is_correct", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("order_index", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.false()),
    )
    op.create_table(
        "quiz_attempts",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("quiz_id", sa.String(36), sa.ForeignKey("quizzes.id", ondelete="CASCADE"), nullable=False),
        _user_fk(),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False, server_default=_now()),
        sa.Column("submitted_at", sa.DateTime(timezone=True)),
        sa.Column("duration_seconds_snapshot", sa.Integer(), nullable=False),
        sa.Column("attempt_questions_snapshot", JSON, nullable=False),
        sa.Column("score_points", sa.Float()),
        sa.Column("max_points", sa.Integer()),
        sa.Column("score_percent", sa.Integer()),
        sa.Column("passed", sa.Boolean()),
        sa.Column("time_exceeded", sa.Boolean(), nullable=False, server_default=sa.false()),
    )
    op.create_index("ix_quiz_attempts_user_quiz", "quiz_attempts", ["user_id", "quiz_id", "submitted_at"])
    op.create_table(
        "quiz_attempt_answers",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column(
            "attempt_id", sa.String(36),
            sa.ForeignKey("quiz_attempts.id", ondelete="CASCADE"), nullable=False,
        ),
        sa.Column("question_id", sa.String(36), nullable=False),
        sa.Column("selected_option_ids", JSON, nullable=False),
        sa.Column("is_correct_snapshot", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("points_awarded", sa.Float(), nullable=False, server_default="0"),
        sa.UniqueConstraint("attempt_id", "question_id", name="uq_quiz_attempt_answers_question"),
    )

    # -- Scoring -------------------------------------------------------------
    op.create_table(
        "score_events",
        sa.Column("id", sa.String(36), primary_key=True),
        _user_fk(),
        sa.Column("actor_user_id", sa.BigInteger()),
        sa.Column("event_type", sa.String(64), nullable=False),
        sa.Column("ref_type", sa.String(32)),
        sa.Column("ref_id", sa.String(64)),
        sa.Column("delta", sa.BigInteger(), nullable=False),
        sa.Column("meta", JSON),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=_now()),
    )
    op.create_index("ix_score_events_user_time", "score_events", ["user_id", "created_at"])
    op.create_index("ix_score_events_type", "score_events", ["event_type"])
    op.create_index("ix_score_events_ref", "score_events", ["ref_type", "ref_id"])
    op.create_index("ix_score_events_time", "score_events", ["created_at"])
    op.create_index(
        "uniq_streak_bonus_once",
        "score_events",
        ["user_id", "event_type", "ref_id"],
        unique=True,
        postgresql_where=sa.text("event_type = 'STREAK_BONUS'"),
        sqlite_where=sa.text("event_type = 'STREAK_BONUS'"),
    )
    op.create_table(
        "user_score_totals",
        sa.Column(
            "user_id", sa.BigInteger(),
            sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True,
        ),
        sa.Column("total_points", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=_now()),
    )
    op.create_index("ix_user_score_totals_points", "user_score_totals", ["total_points"])
    op.create_table(
        "user_streaks",
        sa.Column(
            "user_id", sa.BigInteger(),
            sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True,
        ),
        sa.Column("current_length", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("best_length", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_day", sa.Date()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=_now()),
    )
    op.create_table(
        "user_moderation_stats",
        sa.Column(
            "user_id", sa.BigInteger(),
            sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True,
        ),
        sa.Column("mod_approvals", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=_now()),
    )
    op.create_table(
        "user_prestige",
        sa.Column(
            "user_id", sa.BigInteger(),
            sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True,
        ),
        sa.Column("is_moderator", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("promoted_at", sa.DateTime(timezone=True)),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=_now()),
    )
    op.create_table(
        "leaderboard_snapshots",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("period", sa.String(10), nullable=False),
        sa.Column("period_start", sa.Date(), nullable=False),
        _user_fk(),
        sa.Column("points", sa.Float(), nullable=False),
        sa.Column("rank", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=_now()),
        sa.UniqueConstraint("period", "period_start", "user_id", name="uq_leaderboard_snapshots_user"),
    )
    op.create_index(
        "ix_leaderboard_snapshots_period_rank", "leaderboard_snapshots", ["period", "period_start", "rank"]
    )

    # -- Staff audit & throttling -------------------------------------------
    op.create_table(
        "admin_log",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("actor_id", sa.BigInteger(), nullable=False),
        sa.Column("action_type", sa.String(50), nullable=False),
        sa.Column("target_table", sa.String(50), nullable=False),
        sa.Column("target_id", sa.String(100)),
        sa.Column("before_snapshot", JSON),
        sa.Column("after_snapshot", JSON),
        sa.Column("reason", sa.Text()),
        sa.Column("timestamp", sa.DateTime(timezone=True), server_default=_now()),
    )
    op.create_index("ix_admin_log_actor_time", "admin_log", ["actor_id", "timestamp"])
    op.create_index("ix_admin_log_target", "admin_log", ["target_table", "target_id", "timestamp"])
    op.create_table(
        "admin_rate_limit_events",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("admin_id", sa.String(64), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False, server_default=_now()),
    )
    op.create_index("ix_admin_rate_limit_admin_ts", "admin_rate_limit_events", ["admin_id", "timestamp"])
    op.create_index("ix_admin_rate_limit_ts", "admin_rate_limit_events", ["timestamp"])


def downgrade() -> None:
    """Drop every table, children first."""
    for table in (
        "admin_rate_limit_events",
        "admin_log",
        "leaderboard_snapshots",
        "user_prestige",
        "user_moderation_stats",
        "user_streaks",
        "user_score_totals",
        "score_events",
        "quiz_attempt_answers",
        "quiz_attempts",
        "quiz_question_options",
        "quiz_questions",
        "quizzes",
        "best_practice_reads",
        "best_practice_tag_assignments",
        "best_practice_contents",
        "best_practice_tags",
        "notifications",
        "report_rate_limits",
        "content_reports",
        "post_snapshots",
        "user_votes",
        "reply_ancestry",
        "discussion_replies",
        "post_tags",
        "discussion_posts",
        "tags",
        "users",
    ):
        op.drop_table(table)
