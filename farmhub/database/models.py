"""
farmhub.database.models — SQLAlchemy 2.0 Data Models
=====================================================

Tables:
- users                  — Community members (id = JWT ``sub``)
- tags / post_tags       — Discussion tag vocabulary and assignments
- discussion_posts       — Forum posts (market posts carry availability)
- discussion_replies     — Threaded replies, max depth 3
- reply_ancestry         — Parent / grandparent / root chain per reply
- user_votes             — One vote per user per post or reply
- content_reports        — Moderation reports and their resolution
- report_rate_limits     — Per-user report throttling state
- post_snapshots         — Frozen copy of a post at decision time
- notifications          — In-app notification inbox
- best_practice_*        — Editorial articles, tags and read receipts
- quiz*                  — Quizzes, questions, options, attempts, answers
- score_events           — Append-only scoring ledger (scaled deltas)
- user_score_totals      — Running total per user
- user_streaks           — Daily activity streaks
- user_moderation_stats  — Moderator approval counters
- user_prestige          — Moderator flag for the prestige ladder
- leaderboard_snapshots  — Materialized rankings per period
- admin_log              — Append-only audit trail
- admin_rate_limit_events — Durable admin mutation throttle
"""

from __future__ import annotations

import enum
import uuid
from datetime import UTC, date, datetime

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _uuid() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all FarmHub ORM models."""


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class ScoreEventType(enum.StrEnum):
    """Every kind of row that can land in the scoring ledger."""
    POST_CREATED = "POST_CREATED"
    REPLY_CREATED = "REPLY_CREATED"
    REACTION_RECEIVED = "REACTION_RECEIVED"
    REACTION_REMOVED = "REACTION_REMOVED"
    REACTION_ENGAGEMENT = "REACTION_ENGAGEMENT"
    TRICKLE_PARENT = "TRICKLE_PARENT"
    TRICKLE_GRANDPARENT = "TRICKLE_GRANDPARENT"
    TRICKLE_ROOT = "TRICKLE_ROOT"
    MOD_APPROVED_BONUS = "MOD_APPROVED_BONUS"
    MOD_APPROVED_BONUS_REVERSAL = "MOD_APPROVED_BONUS_REVERSAL"
    REPORT_CONFIRMED_PENALTY = "REPORT_CONFIRMED_PENALTY"
    REPORT_CONFIRMED_REPORTER_REWARD = "REPORT_CONFIRMED_REPORTER_REWARD"
    REPORT_REJECTED_REPORTER_REWARD = "REPORT_REJECTED_REPORTER_REWARD"
    STREAK_BONUS = "STREAK_BONUS"
    ADMIN_ADJUST = "ADMIN_ADJUST"
    BEST_PRACTICE_FIRST_READ = "BEST_PRACTICE_FIRST_READ"
    QUIZ_COMPLETED = "QUIZ_COMPLETED"


class VoteType(enum.StrEnum):
    UPVOTE = "upvote"
    DOWNVOTE = "downvote"


class VoteTarget(enum.StrEnum):
    POST = "post"
    REPLY = "reply"


class ReportReason(enum.StrEnum):
    INAPPROPRIATE = "inappropriate"
    SPAM = "spam"
    FRAUDULENT = "fraudulent"
    MISINFORMATION = "misinformation"
    TECHNICAL = "technical"
    OTHER = "other"


class ReportStatus(enum.StrEnum):
    PENDING = "pending"
    RESOLVED = "resolved"


class ModerationDecision(enum.StrEnum):
    """Outcome of a moderator review.  ``deleted`` and ``warned`` confirm a violation."""
    RETAINED = "retained"
    DELETED = "deleted"
    WARNED = "warned"


class NotificationType(enum.StrEnum):
    POST_VOTE = "post_vote"
    REPLY_CREATED = "reply_created"
    REPLY_VOTE = "reply_vote"
    POST_APPROVED = "post_approved"
    MENTION = "mention"
    POST_REPORTED = "post_reported"
    MODERATION_DECISION_REPORTER = "moderation_decision_reporter"
    MODERATION_DECISION_OWNER = "moderation_decision_owner"


class QuestionType(enum.StrEnum):
    MCQ = "mcq"
    MULTI = "multi"
    TRUEFALSE = "truefalse"


class Difficulty(enum.StrEnum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


class AdminActionType(enum.StrEnum):
    """Categories of admin mutations recorded in admin_log."""
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    SCORE_ADJUST = "SCORE_ADJUST"
    PROMOTE_MODERATOR = "PROMOTE_MODERATOR"


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------
class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    username: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    display_name: Mapped[str | None] = mapped_column(String(200), default=None)
    location: Mapped[str | None] = mapped_column(String(200), default=None)
    timezone: Mapped[str] = mapped_column(String(64), nullable=False, default="UTC")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    posts: Mapped[list[DiscussionPost]] = relationship(back_populates="author")

    def __repr__(self) -> str:
        return f"<User id={self.id} username={self.username!r}>"


# ---------------------------------------------------------------------------
# Discussions
# ---------------------------------------------------------------------------
post_tags = Table(
    "post_tags",
    Base.metadata,
    Column("post_id", String(36), ForeignKey("discussion_posts.id", ondelete="CASCADE"), primary_key=True),
    Column("tag_id", Integer, ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True),
)


class Tag(Base):
    __tablename__ = "tags"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    def __repr__(self) -> str:
        return f"<Tag id={self.id} name={self.name!r}>"


class DiscussionPost(Base):
    """A forum post.  New posts wait for moderator approval before listing."""
    __tablename__ = "discussion_posts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    author_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    upvotes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    downvotes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    replies_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_market_post: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_available: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_approved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    moderator_id: Mapped[int | None] = mapped_column(BigInteger, default=None)
    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    author: Mapped[User] = relationship(back_populates="posts")
    tags: Mapped[list[Tag]] = relationship(secondary=post_tags)
    replies: Mapped[list[DiscussionReply]] = relationship(
        back_populates="post", cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint(
            "NOT is_available OR is_market_post",
            name="chk_discussion_posts_available_requires_market",
        ),
        Index("ix_discussion_posts_author", "author_id"),
        Index("ix_discussion_posts_listing", "is_deleted", "is_approved", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<DiscussionPost id={self.id} approved={self.is_approved}>"


class DiscussionReply(Base):
    __tablename__ = "discussion_replies"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    post_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("discussion_posts.id", ondelete="CASCADE"), nullable=False
    )
    parent_reply_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("discussion_replies.id", ondelete="CASCADE"), default=None
    )
    author_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)
    upvotes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    downvotes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    depth: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    post: Mapped[DiscussionPost] = relationship(back_populates="replies")
    author: Mapped[User] = relationship()

    __table_args__ = (
        Index("ix_discussion_replies_post_created", "post_id", "created_at"),
        Index("ix_discussion_replies_parent", "parent_reply_id"),
    )

    def __repr__(self) -> str:
        return f"<DiscussionReply id={self.id} post={self.post_id} depth={self.depth}>"


class ReplyAncestry(Base):
    """Denormalized chain used for trickle scoring."""
    __tablename__ = "reply_ancestry"

    reply_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("discussion_replies.id", ondelete="CASCADE"), primary_key=True
    )
    parent_id: Mapped[str | None] = mapped_column(String(36), default=None)
    grandparent_id: Mapped[str | None] = mapped_column(String(36), default=None)
    root_post_id: Mapped[str] = mapped_column(String(36), nullable=False)

    def __repr__(self) -> str:
        return f"<ReplyAncestry reply={self.reply_id} parent={self.parent_id}>"


class UserVote(Base):
    __tablename__ = "user_votes"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    target_type: Mapped[str] = mapped_column(String(10), nullable=False)
    target_id: Mapped[str] = mapped_column(String(36), nullable=False)
    vote_type: Mapped[str] = mapped_column(String(10), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        UniqueConstraint("user_id", "target_type", "target_id", name="uq_user_votes_target"),
        Index("ix_user_votes_target", "target_type", "target_id"),
    )

    def __repr__(self) -> str:
        return f"<UserVote user={self.user_id} {self.target_type}={self.target_id} {self.vote_type}>"


# ---------------------------------------------------------------------------
# Moderation
# ---------------------------------------------------------------------------
class ContentReport(Base):
    __tablename__ = "content_reports"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    post_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("discussion_posts.id", ondelete="CASCADE"), nullable=False
    )
    reply_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("discussion_replies.id", ondelete="CASCADE"), default=None
    )
    reporter_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    reason: Mapped[str] = mapped_column(String(30), nullable=False)
    details: Mapped[str | None] = mapped_column(Text, default=None)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ReportStatus.PENDING.value
    )
    decision: Mapped[str | None] = mapped_column(String(20), default=None)
    moderator_id: Mapped[int | None] = mapped_column(BigInteger, default=None)
    resolution_notes: Mapped[str | None] = mapped_column(Text, default=None)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    post_snapshot_id: Mapped[str | None] = mapped_column(
        String(36), ForeignKey("post_snapshots.id", ondelete="SET NULL"), default=None
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    post: Mapped[DiscussionPost] = relationship()
    reporter: Mapped[User] = relationship()
    snapshot: Mapped[PostSnapshot | None] = relationship()

    __table_args__ = (
        Index("ix_content_reports_status_post", "status", "post_id"),
        Index("ix_content_reports_reporter", "reporter_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<ContentReport id={self.id} post={self.post_id} status={self.status}>"


class ReportRateLimit(Base):
    """Per-user report throttle.

    ``content_key`` is ``"*"`` for the rolling hourly window, or
    ``"post:<id>"`` / ``"reply:<id>"`` for the per-content cooldown.
    """
    __tablename__ = "report_rate_limits"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    content_key: Mapped[str] = mapped_column(String(80), nullable=False)
    window_start: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_reported_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "content_key", name="uq_report_rate_limits_user_key"),
    )

    def __repr__(self) -> str:
        return f"<ReportRateLimit user={self.user_id} key={self.content_key!r} count={self.count}>"


class PostSnapshot(Base):
    __tablename__ = "post_snapshots"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    post_id: Mapped[str] = mapped_column(String(36), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    author_data: Mapped[dict] = mapped_column(JSONB, nullable=False)
    tags_data: Mapped[list | None] = mapped_column(JSONB, default=None)
    media_data: Mapped[list | None] = mapped_column(JSONB, default=None)
    snapshot_reason: Mapped[str] = mapped_column(String(100), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_post_snapshots_post", "post_id"),
    )

    def __repr__(self) -> str:
        return f"<PostSnapshot id={self.id} post={self.post_id}>"


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------
class Notification(Base):
    __tablename__ = "notifications"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    data: Mapped[dict | None] = mapped_column(JSONB, default=None)
    read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("ix_notifications_user_read", "user_id", "read"),
        Index("ix_notifications_user_created", "user_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<Notification id={self.id} user={self.user_id} type={self.type}>"


# ---------------------------------------------------------------------------
# Best practices
# ---------------------------------------------------------------------------
best_practice_tag_assignments = Table(
    "best_practice_tag_assignments",
    Base.metadata,
    Column(
        "best_practice_id", String(36),
        ForeignKey("best_practice_contents.id", ondelete="CASCADE"), primary_key=True,
    ),
    Column(
        "tag_id", Integer,
        ForeignKey("best_practice_tags.id", ondelete="CASCADE"), primary_key=True,
    ),
)


class BestPracticeTag(Base):
    __tablename__ = "best_practice_tags"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    description: Mapped[str | None] = mapped_column(Text, default=None)

    def __repr__(self) -> str:
        return f"<BestPracticeTag id={self.id} name={self.name!r}>"


class BestPracticeContent(Base):
    __tablename__ = "best_practice_contents"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    steps: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    benefits: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    language: Mapped[str] = mapped_column(String(10), nullable=False, default="en")
    is_published: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    read_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_by: Mapped[int | None] = mapped_column(BigInteger, default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    tags: Mapped[list[BestPracticeTag]] = relationship(secondary=best_practice_tag_assignments)

    __table_args__ = (
        Index("ix_best_practice_contents_listing", "is_deleted", "is_published", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<BestPracticeContent id={self.id} title={self.title!r}>"


class BestPracticeRead(Base):
    __tablename__ = "best_practice_reads"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    best_practice_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("best_practice_contents.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    first_read_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_read_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    read_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __table_args__ = (
        UniqueConstraint("best_practice_id", "user_id", name="uq_best_practice_reads_user"),
    )

    def __repr__(self) -> str:
        return f"<BestPracticeRead bp={self.best_practice_id} user={self.user_id} n={self.read_count}>"


# ---------------------------------------------------------------------------
# Quizzes
# ---------------------------------------------------------------------------
class Quiz(Base):
    __tablename__ = "quizzes"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, default=None)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=30)
    passing_score: Mapped[int] = mapped_column(Integer, nullable=False, default=70)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    best_practice_tag_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("best_practice_tags.id", ondelete="SET NULL"), default=None
    )
    created_by: Mapped[int | None] = mapped_column(BigInteger, default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    questions: Mapped[list[QuizQuestion]] = relationship(
        back_populates="quiz", cascade="all, delete-orphan", order_by="QuizQuestion.order_index"
    )

    def __repr__(self) -> str:
        return f"<Quiz id={self.id} title={self.title!r} active={self.is_active}>"


class QuizQuestion(Base):
    __tablename__ = "quiz_questions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    quiz_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("quizzes.id", ondelete="CASCADE"), nullable=False
    )
    text: Mapped[str] = mapped_column(Text, nullable=False)
    explanation: Mapped[str | None] = mapped_column(Text, default=None)
    order_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    type: Mapped[str] = mapped_column(String(20), nullable=False, default=QuestionType.MCQ.value)
    difficulty: Mapped[str] = mapped_column(
        String(20), nullable=False, default=Difficulty.MEDIUM.value
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    quiz: Mapped[Quiz] = relationship(back_populates="questions")
    options: Mapped[list[QuizQuestionOption]] = relationship(
        back_populates="question",
        cascade="all, delete-orphan",
        order_by="QuizQuestionOption.order_index",
    )

    __table_args__ = (
        Index("ix_quiz_questions_quiz_order", "quiz_id", "order_index"),
    )

    def __repr__(self) -> str:
        return f"<QuizQuestion id={self.id} type={self.type}>"


class QuizQuestionOption(Base):
    __tablename__ = "quiz_question_options"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    question_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("quiz_questions.id", ondelete="CASCADE"), nullable=False
    )
    text: Mapped[str] = mapped_column(Text, nullable=False)
    is_correct: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    order_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    question: Mapped[QuizQuestion] = relationship(back_populates="options")

    def __repr__(self) -> str:
        return f"<QuizQuestionOption id={self.id} correct={self.is_correct}>"


class QuizAttempt(Base):
    __tablename__ = "quiz_attempts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    quiz_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("quizzes.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    duration_seconds_snapshot: Mapped[int] = mapped_column(Integer, nullable=False)
    attempt_questions_snapshot: Mapped[list] = mapped_column(JSONB, nullable=False)
    score_points: Mapped[float | None] = mapped_column(Float, default=None)
    max_points: Mapped[int | None] = mapped_column(Integer, default=None)
    score_percent: Mapped[int | None] = mapped_column(Integer, default=None)
    passed: Mapped[bool | None] = mapped_column(Boolean, default=None)
    time_exceeded: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    answers: Mapped[list[QuizAttemptAnswer]] = relationship(
        back_populates="attempt", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("ix_quiz_attempts_user_quiz", "user_id", "quiz_id", "submitted_at"),
    )

    def __repr__(self) -> str:
        return f"<QuizAttempt id={self.id} quiz={self.quiz_id} user={self.user_id}>"


class QuizAttemptAnswer(Base):
    __tablename__ = "quiz_attempt_answers"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    attempt_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("quiz_attempts.id", ondelete="CASCADE"), nullable=False
    )
    question_id: Mapped[str] = mapped_column(String(36), nullable=False)
    selected_option_ids: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    is_correct_snapshot: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    points_awarded: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)

    attempt: Mapped[QuizAttempt] = relationship(back_populates="answers")

    __table_args__ = (
        UniqueConstraint("attempt_id", "question_id", name="uq_quiz_attempt_answers_question"),
    )

    def __repr__(self) -> str:
        return f"<QuizAttemptAnswer attempt={self.attempt_id} q={self.question_id}>"


# ---------------------------------------------------------------------------
# Scoring ledger
# ---------------------------------------------------------------------------
class ScoreEvent(Base):
    """Append-only ledger row.  ``delta`` is scaled by ``POINT_SCALE``."""
    __tablename__ = "score_events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    actor_user_id: Mapped[int | None] = mapped_column(BigInteger, default=None)
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    ref_type: Mapped[str | None] = mapped_column(String(32), default=None)
    ref_id: Mapped[str | None] = mapped_column(String(64), default=None)
    delta: Mapped[int] = mapped_column(BigInteger, nullable=False)
    meta: Mapped[dict | None] = mapped_column(JSONB, default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (
        Index("ix_score_events_user_time", "user_id", "created_at"),
        Index("ix_score_events_type", "event_type"),
        Index("ix_score_events_ref", "ref_type", "ref_id"),
        Index("ix_score_events_time", "created_at"),
        # One bonus per streak milestone per user
        Index(
            "uniq_streak_bonus_once",
            "user_id",
            "event_type",
            "ref_id",
            unique=True,
            postgresql_where=text("event_type = 'STREAK_BONUS'"),
            sqlite_where=text("event_type = 'STREAK_BONUS'"),
        ),
    )

    def __repr__(self) -> str:
        return f"<ScoreEvent id={self.id} user={self.user_id} type={self.event_type} delta={self.delta}>"


class UserScoreTotal(Base):
    __tablename__ = "user_score_totals"

    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    total_points: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (
        Index("ix_user_score_totals_points", "total_points"),
    )

    def __repr__(self) -> str:
        return f"<UserScoreTotal user={self.user_id} total={self.total_points}>"


class UserStreak(Base):
    __tablename__ = "user_streaks"

    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    current_length: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    best_length: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_day: Mapped[date | None] = mapped_column(Date, default=None)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self) -> str:
        return f"<UserStreak user={self.user_id} current={self.current_length} best={self.best_length}>"


class UserModerationStat(Base):
    __tablename__ = "user_moderation_stats"

    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    mod_approvals: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self) -> str:
        return f"<UserModerationStat user={self.user_id} approvals={self.mod_approvals}>"


class UserPrestige(Base):
    __tablename__ = "user_prestige"

    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    is_moderator: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    promoted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), default=None)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self) -> str:
        return f"<UserPrestige user={self.user_id} moderator={self.is_moderator}>"


class LeaderboardSnapshot(Base):
    __tablename__ = "leaderboard_snapshots"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    period: Mapped[str] = mapped_column(String(10), nullable=False)
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    points: Mapped[float] = mapped_column(Float, nullable=False)
    rank: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint(
            "period", "period_start", "user_id", name="uq_leaderboard_snapshots_user"
        ),
        Index("ix_leaderboard_snapshots_period_rank", "period", "period_start", "rank"),
    )

    def __repr__(self) -> str:
        return f"<LeaderboardSnapshot {self.period}@{self.period_start} #{self.rank} user={self.user_id}>"


# ---------------------------------------------------------------------------
# AdminLog — append-only audit trail
# ---------------------------------------------------------------------------
class AdminLog(Base):
    __tablename__ = "admin_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    actor_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    action_type: Mapped[str] = mapped_column(String(50), nullable=False)
    target_table: Mapped[str] = mapped_column(String(50), nullable=False)
    target_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    before_snapshot: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    after_snapshot: Mapped[dict | None] = mapped_column(JSONB, nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_admin_log_actor_time", "actor_id", "timestamp"),
        Index("ix_admin_log_target", "target_table", "target_id", "timestamp"),
    )

    def __repr__(self) -> str:
        return f"<AdminLog id={self.id} actor={self.actor_id} action={self.action_type}>"


# ---------------------------------------------------------------------------
# AdminRateLimitEvent — durable mutation events for staff throttling
# ---------------------------------------------------------------------------
class AdminRateLimitEvent(Base):
    __tablename__ = "admin_rate_limit_events"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    admin_id: Mapped[str] = mapped_column(String(64), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (
        Index("ix_admin_rate_limit_admin_ts", "admin_id", "timestamp"),
        Index("ix_admin_rate_limit_ts", "timestamp"),
    )

    def __repr__(self) -> str:
        return f"<AdminRateLimitEvent admin={self.admin_id!r} ts={self.timestamp}>"
