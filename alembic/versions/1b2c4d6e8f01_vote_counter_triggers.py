"""Keep post/reply vote counters in step with user_votes

Revision ID: 1b2c4d6e8f01
Revises: 0a1f3c5e7b90
Create Date: 2026-09-28 10:30:00.000000

Installs ``apply_user_vote_changes()`` and AFTER INSERT/UPDATE/DELETE
triggers on ``user_votes``, then backfills every counter from the votes
that already exist.  PostgreSQL only; other backends skip it.
"""
from collections.abc import Sequence

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "1b2c4d6e8f01"
down_revision: str | Sequence[str] | None = "0a1f3c5e7b90"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

_FUNCTION = """
CREATE OR REPLACE FUNCTION apply_user_vote_changes() RETURNS trigger AS $$
DECLARE
    t_type text;
    t_id   text;
BEGIN
    IF TG_OP = 'DELETE' THEN
        t_type := OLD.target_type;
        t_id   := OLD.target_id;
    ELSE
        t_type := NEW.target_type;
        t_id   := NEW.target_id;
    END IF;

    IF t_type = 'post' THEN
        UPDATE discussion_posts p SET
            upvotes   = (SELECT COUNT(*) FROM user_votes v
                         WHERE v.target_type = 'post' AND v.target_id = p.id AND v.vote_type = 'upvote'),
            downvotes = (SELECT COUNT(*) FROM user_votes v
                         WHERE v.target_type = 'post' AND v.target_id = p.id AND v.vote_type = 'downvote')
        WHERE p.id = t_id;
    ELSIF t_type = 'reply' THEN
        UPDATE discussion_replies r SET
            upvotes   = (SELECT COUNT(*) FROM user_votes v
                         WHERE v.target_type = 'reply' AND v.target_id = r.id AND v.vote_type = 'upvote'),
            downvotes = (SELECT COUNT(*) FROM user_votes v
                         WHERE v.target_type = 'reply' AND v.target_id = r.id AND v.vote_type = 'downvote')
        WHERE r.id = t_id;
    END IF;

    -- An UPDATE may move a vote to another target
    IF TG_OP = 'UPDATE' AND (OLD.target_type, OLD.target_id) IS DISTINCT FROM (NEW.target_type, NEW.target_id) THEN
        UPDATE discussion_posts p SET
            upvotes   = (SELECT COUNT(*) FROM user_votes v
                         WHERE v.target_type = 'post' AND v.target_id = p.id AND v.vote_type = 'upvote'),
            downvotes = (SELECT COUNT(*) FROM user_votes v
                         WHERE v.target_type = 'post' AND v.target_id = p.id AND v.vote_type = 'downvote')
        WHERE OLD.target_type = 'post' AND p.id = OLD.target_id;
        UPDATE discussion_replies r SET
            upvotes   = (SELECT COUNT(*) FROM user_votes v
                         WHERE v.target_type = 'reply' AND v.target_id = r.id AND v.vote_type = 'upvote'),
            downvotes = (SELECT COUNT(*) FROM user_votes v
                         WHERE v.target_type = 'reply' AND v.target_id = r.id AND v.vote_type = 'downvote')
        WHERE OLD.target_type = 'reply' AND r.id = OLD.target_id;
    END IF;

    RETURN NULL;
END;
$$ LANGUAGE plpgsql;
"""

_TRIGGERS = {
    "trg_user_votes_insert": "AFTER INSERT",
    "trg_user_votes_update": "AFTER UPDATE",
    "trg_user_votes_delete": "AFTER DELETE",
}

_BACKFILL = (
    """
    UPDATE discussion_posts p SET
        upvotes   = COALESCE(c.up, 0),
        downvotes = COALESCE(c.down, 0)
    FROM discussion_posts p2
    LEFT JOIN (
        SELECT target_id,
               COUNT(*) FILTER (WHERE vote_type = 'upvote')   AS up,
               COUNT(*) FILTER (WHERE vote_type = 'downvote') AS down
        FROM user_votes WHERE target_type = 'post' GROUP BY target_id
    ) c ON c.target_id = p2.id
    WHERE p.id = p2.id
    """,
    """
    UPDATE discussion_replies r SET
        upvotes   = COALESCE(c.up, 0),
        downvotes = COALESCE(c.down, 0)
    FROM discussion_replies r2
    LEFT JOIN (
        SELECT target_id,
               COUNT(*) FILTER (WHERE vote_type = 'upvote')   AS up,
               COUNT(*) FILTER (WHERE vote_type = 'downvote') AS down
        FROM user_votes WHERE target_type = 'reply' GROUP BY target_id
    ) c ON c.target_id = r2.id
    WHERE r.id = r2.id
    """,
)


def _is_postgres() -> bool:
    return op.get_bind().dialect.name == "postgresql"


def upgrade() -> None:
    if not _is_postgres():
        return
    op.execute(_FUNCTION)
    for name, timing in _TRIGGERS.items():
        op.execute(f"DROP TRIGGER IF EXISTS {name} ON user_votes")
        op.execute(
            f"CREATE TRIGGER {name} {timing} ON user_votes "
            "FOR EACH ROW EXECUTE FUNCTION apply_user_vote_changes()"
        )
    for statement in _BACKFILL:
        op.execute(statement)


def downgrade() -> None:
    if not _is_postgres():
        return
    for name in _TRIGGERS:
        op.execute(f"DROP TRIGGER IF EXISTS {name} ON user_votes")
    op.execute("DROP FUNCTION IF EXISTS apply_user_vote_changes()")
