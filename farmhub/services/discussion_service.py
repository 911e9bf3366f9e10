"""
farmhub.services.discussion_service — Posts, Replies & Votes
=============================================================

Business rules for the discussion board.  Every mutating function runs in
the caller's session and leaves the commit to the caller, so the content
row, its score events, the streak update and its notifications land in one
transaction.

Vote counters on posts and replies are recomputed from ``user_votes``
after every change.  In PostgreSQL the vote-counter triggers keep them in
step for writes made outside this module; recomputing is idempotent with
the triggers.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import UTC, datetime

from sqlalchemy import and_, func, or_, select
from sqlalchemy.orm import Session, selectinload

from farmhub.database.models import (
    DiscussionPost,
    DiscussionReply,
    NotificationType,
    ReplyAncestry,
    Tag,
    User,
    UserVote,
    VoteTarget,
    VoteType,
    post_tags,
)
from farmhub.errors import NotFoundError, ValidationError
from farmhub.services import notification_service, scoring_actions, streak_service

logger = logging.getLogger(__name__)

TITLE_MIN, TITLE_MAX = 10, 255
CONTENT_MIN, CONTENT_MAX = 20, 10000
REPLY_MIN, REPLY_MAX = 10, 2000
MAX_TAGS = 3
MAX_REPLY_DEPTH = 3
TAG_MAX_LENGTH = 50

SORTS = {
    "recent": (DiscussionPost.created_at.desc(),),
    "popular": (
        (DiscussionPost.upvotes - DiscussionPost.downvotes).desc(),
        DiscussionPost.created_at.desc(),
    ),
    "replies": (DiscussionPost.replies_count.desc(), DiscussionPost.created_at.desc()),
}


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------
def _author_dict(user: User | None) -> dict | None:
    if user is None:
        return None
    return {"id": str(user.id), "username": user.username, "display_name": user.display_name}


def post_to_dict(post: DiscussionPost, user_vote: str | None = None) -> dict:
    return {
        "id": post.id,
        "title": post.title,
        "content": post.content,
        "author": _author_dict(post.author),
        "tags": sorted(t.name for t in post.tags),
        "upvotes": post.upvotes,
        "downvotes": post.downvotes,
        "replies_count": post.replies_count,
        "is_market_post": post.is_market_post,
        "is_available": post.is_available,
        "is_approved": post.is_approved,
        "created_at": post.created_at.isoformat() if post.created_at else None,
        "user_vote": user_vote,
    }


def reply_to_dict(reply: DiscussionReply, user_vote: str | None = None) -> dict:
    return {
        "id": reply.id,
        "post_id": reply.post_id,
        "parent_reply_id": reply.parent_reply_id,
        "content": reply.content,
        "author": _author_dict(reply.author),
        "depth": reply.depth,
        "upvotes": reply.upvotes,
        "downvotes": reply.downvotes,
        "created_at": reply.created_at.isoformat() if reply.created_at else None,
        "user_vote": user_vote,
    }


def _user_votes(session: Session, user_id: int | None, target_type: VoteTarget, ids: list[str]) -> dict[str, str]:
    if user_id is None or not ids:
        return {}
    rows = session.execute(
        select(UserVote.target_id, UserVote.vote_type).where(
            UserVote.user_id == user_id,
            UserVote.target_type == str(target_type),
            UserVote.target_id.in_(ids),
        )
    ).all()
    return dict(rows)


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------
def get_live_post(session: Session, post_id: str) -> DiscussionPost:
    post = session.get(DiscussionPost, post_id)
    if post is None or post.is_deleted:
        raise NotFoundError("Post not found", "post_not_found")
    return post


def get_live_reply(session: Session, reply_id: str) -> DiscussionReply:
    reply = session.get(DiscussionReply, reply_id)
    if reply is None or reply.is_deleted:
        raise NotFoundError("Reply not found", "reply_not_found")
    return reply


def _resolve_tags(session: Session, names: list[str] | None) -> list[Tag]:
    cleaned: list[str] = []
    for raw in names or []:
        name = raw.strip().lower()
        if name and name not in cleaned:
            cleaned.append(name)
    if len(cleaned) > MAX_TAGS:
        raise ValidationError(f"A post can have at most {MAX_TAGS} tags", "too_many_tags")
    if any(len(name) > TAG_MAX_LENGTH for name in cleaned):
        raise ValidationError(f"Tags are limited to {TAG_MAX_LENGTH} characters", "invalid_tag")

    existing = {
        t.name: t for t in session.scalars(select(Tag).where(Tag.name.in_(cleaned))).all()
    } if cleaned else {}
    tags = []
    for name in cleaned:
        tag = existing.get(name)
        if tag is None:
            tag = Tag(name=name)
            session.add(tag)
        tags.append(tag)
    return tags


# ---------------------------------------------------------------------------
# Posts
# ---------------------------------------------------------------------------
def create_post(
    session: Session,
    author_id: int,
    *,
    title: str,
    content: str,
    tags: list[str] | None = None,
    is_market_post: bool = False,
    is_available: bool = False,
) -> DiscussionPost:
    """Create a post awaiting approval, award POST_CREATED and count streak activity."""
    title = (title or "").strip()
    content = (content or "").strip()
    if not TITLE_MIN <= len(title) <= TITLE_MAX:
        raise ValidationError(
            f"Title must be between {TITLE_MIN} and {TITLE_MAX} characters", "invalid_title"
        )
    if not CONTENT_MIN <= len(content) <= CONTENT_MAX:
        raise ValidationError(
            f"Content must be between {CONTENT_MIN} and {CONTENT_MAX} characters", "invalid_content"
        )

    post = DiscussionPost(
        title=title,
        content=content,
        author_id=author_id,
        is_market_post=bool(is_market_post),
        # Availability only means something for market listings
        is_available=bool(is_available) if is_market_post else False,
        is_approved=False,
        tags=_resolve_tags(session, tags),
    )
    session.add(post)
    session.flush()

    scoring_actions.on_post_created(session, post)
    streak_service.record_activity(session, author_id)
    logger.info("Post %s created by user %s (pending approval)", post.id, author_id)
    return post


def list_posts(
    session: Session,
    *,
    viewer_id: int | None = None,
    page: int = 1,
    limit: int = 10,
    search: str | None = None,
    tag: str | None = None,
    is_market_post: bool | None = None,
    user_id: int | None = None,
    sort: str = "recent",
) -> dict:
    """Approved posts, or a member's own posts (pending ones included) when
    ``user_id`` is the viewer.
    """
    if sort not in SORTS:
        raise ValidationError(f"Unknown sort: {sort}", "invalid_sort")

    query = select(DiscussionPost).where(DiscussionPost.is_deleted.is_(False))
    if user_id is not None:
        query = query.where(DiscussionPost.author_id == user_id)
        if user_id != viewer_id:
            query = query.where(DiscussionPost.is_approved.is_(True))
    else:
        query = query.where(DiscussionPost.is_approved.is_(True))

    if search and search.strip():
        pattern = f"%{search.strip()}%"
        query = query.where(
            or_(DiscussionPost.title.ilike(pattern), DiscussionPost.content.ilike(pattern))
        )
    if tag:
        query = query.where(DiscussionPost.tags.any(Tag.name == tag.strip().lower()))
    if is_market_post is not None:
        query = query.where(DiscussionPost.is_market_post.is_(is_market_post))

    total = session.scalar(select(func.count()).select_from(query.subquery())) or 0
    posts = session.scalars(
        query.options(selectinload(DiscussionPost.tags), selectinload(DiscussionPost.author))
        .order_by(*SORTS[sort])
        .offset((page - 1) * limit)
        .limit(limit)
    ).all()
    votes = _user_votes(session, viewer_id, VoteTarget.POST, [p.id for p in posts])

    return {
        "posts": [post_to_dict(p, votes.get(p.id)) for p in posts],
        "total": total,
        "page": page,
        "limit": limit,
        "pages": (total + limit - 1) // limit,
    }


def get_post(session: Session, post_id: str, viewer_id: int | None = None, *, is_staff: bool = False) -> dict:
    post = get_live_post(session, post_id)
    if not post.is_approved and not is_staff and post.author_id != viewer_id:
        raise NotFoundError("Post not found", "post_not_found")
    votes = _user_votes(session, viewer_id, VoteTarget.POST, [post.id])
    return post_to_dict(post, votes.get(post.id))


# ---------------------------------------------------------------------------
# Replies
# ---------------------------------------------------------------------------
def create_reply(
    session: Session,
    post_id: str,
    author_id: int,
    content: str,
    parent_reply_id: str | None = None,
) -> DiscussionReply:
    post = get_live_post(session, post_id)

    content = (content or "").strip()
    if not REPLY_MIN <= len(content) <= REPLY_MAX:
        raise ValidationError(
            f"Reply must be between {REPLY_MIN} and {REPLY_MAX} characters", "invalid_content"
        )

    parent: DiscussionReply | None = None
    depth = 0
    if parent_reply_id:
        parent = session.get(DiscussionReply, parent_reply_id)
        if parent is None or parent.is_deleted or parent.post_id != post.id:
            raise NotFoundError("Parent reply not found", "parent_not_found")
        depth = parent.depth + 1
        if depth > MAX_REPLY_DEPTH:
            raise ValidationError("Reply nesting depth limit exceeded", "depth_exceeded")

    reply = DiscussionReply(
        post_id=post.id,
        parent_reply_id=parent.id if parent is not None else None,
        author_id=author_id,
        content=content,
        depth=depth,
    )
    session.add(reply)
    post.replies_count = (post.replies_count or 0) + 1
    session.flush()

    session.add(ReplyAncestry(
        reply_id=reply.id,
        parent_id=parent.id if parent is not None else None,
        grandparent_id=parent.parent_reply_id if parent is not None else None,
        root_post_id=post.id,
    ))
    session.flush()

    scoring_actions.on_reply_created(session, reply, post, parent)
    streak_service.record_activity(session, author_id)
    _notify_reply(session, reply, post, parent)
    return reply


def _notify_reply(
    session: Session,
    reply: DiscussionReply,
    post: DiscussionPost,
    parent: DiscussionReply | None,
) -> None:
    author = session.get(User, reply.author_id)
    name = author.username if author is not None else "Someone"
    data = {"post_id": post.id, "reply_id": reply.id}
    notified = {reply.author_id}

    notification_service.notify(
        session, post.author_id, NotificationType.REPLY_CREATED,
        "New reply on your post", f"{name} replied to \"{post.title}\"",
        data, actor_id=reply.author_id,
    )
    notified.add(post.author_id)
    if parent is not None and parent.author_id not in notified:
        notification_service.notify(
            session, parent.author_id, NotificationType.REPLY_CREATED,
            "New reply to your comment", f"{name} replied to your comment",
            data, actor_id=reply.author_id,
        )
        notified.add(parent.author_id)

    notification_service.notify_mentions(
        session, reply.content, actor_id=reply.author_id, data=data, exclude=notified,
    )


def list_replies(
    session: Session,
    post_id: str,
    viewer_id: int | None = None,
    *,
    page: int = 1,
    limit: int = 10,
) -> dict:
    """Top-level replies newest first, each carrying its nested thread."""
    post = get_live_post(session, post_id)
    live = session.scalars(
        select(DiscussionReply)
        .options(selectinload(DiscussionReply.author))
        .where(DiscussionReply.post_id == post.id, DiscussionReply.is_deleted.is_(False))
        .order_by(DiscussionReply.created_at.asc())
    ).all()
    votes = _user_votes(session, viewer_id, VoteTarget.REPLY, [r.id for r in live])

    children: dict[str | None, list[DiscussionReply]] = defaultdict(list)
    for reply in live:
        children[reply.parent_reply_id].append(reply)

    def build(reply: DiscussionReply) -> dict:
        node = reply_to_dict(reply, votes.get(reply.id))
        node["replies"] = [build(child) for child in children.get(reply.id, [])]
        return node

    top_level = list(reversed(children.get(None, [])))
    start = (page - 1) * limit
    return {
        "replies": [build(r) for r in top_level[start:start + limit]],
        "total": len(top_level),
        "page": page,
        "limit": limit,
    }


# ---------------------------------------------------------------------------
# Votes
# ---------------------------------------------------------------------------
def _recount(session: Session, target_type: VoteTarget, target) -> None:
    counts = dict(session.execute(
        select(UserVote.vote_type, func.count(UserVote.id))
        .where(UserVote.target_type == str(target_type), UserVote.target_id == target.id)
        .group_by(UserVote.vote_type)
    ).all())
    target.upvotes = counts.get(VoteType.UPVOTE.value, 0)
    target.downvotes = counts.get(VoteType.DOWNVOTE.value, 0)


def vote(
    session: Session,
    target_type: VoteTarget | str,
    target_id: str,
    voter_id: int,
    vote_type: VoteType | str,
) -> dict:
    """Cast, switch or toggle off a vote.

    Repeating the current vote removes it; the other vote switches it.
    """
    try:
        target_type = VoteTarget(target_type)
        vote_type = VoteType(vote_type)
    except ValueError:
        raise ValidationError('Invalid vote type. Must be "upvote" or "downvote"', "invalid_vote")

    if target_type is VoteTarget.POST:
        target = get_live_post(session, target_id)
    else:
        target = get_live_reply(session, target_id)
        get_live_post(session, target.post_id)

    existing = session.scalar(
        select(UserVote).where(
            UserVote.user_id == voter_id,
            UserVote.target_type == str(target_type),
            UserVote.target_id == target.id,
        )
    )
    previous = VoteType(existing.vote_type) if existing is not None else None

    if existing is None:
        session.add(UserVote(
            user_id=voter_id,
            target_type=str(target_type),
            target_id=target.id,
            vote_type=str(vote_type),
        ))
        new: VoteType | None = vote_type
    elif previous is vote_type:
        session.delete(existing)
        new = None
    else:
        existing.vote_type = str(vote_type)
        new = vote_type
    session.flush()
    _recount(session, target_type, target)

    if target_type is VoteTarget.POST:
        scoring_actions.on_post_vote(session, target, voter_id, previous, new)
    else:
        scoring_actions.on_reply_vote(session, target, voter_id, previous, new)
    streak_service.record_activity(session, voter_id)

    if new is not None:
        _notify_vote(session, target_type, target, voter_id, new)

    session.flush()
    return {"upvotes": target.upvotes, "downvotes": target.downvotes, "user_vote": new}


def _notify_vote(session: Session, target_type: VoteTarget, target, voter_id: int, vote_type: VoteType) -> None:
    voter = session.get(User, voter_id)
    name = voter.username if voter is not None else "Someone"
    verb = "upvoted" if vote_type is VoteType.UPVOTE else "downvoted"
    if target_type is VoteTarget.POST:
        notification_service.notify(
            session, target.author_id, NotificationType.POST_VOTE,
            "New vote on your post", f"{name} {verb} \"{target.title}\"",
            {"post_id": target.id, "vote_type": str(vote_type)}, actor_id=voter_id,
        )
    else:
        notification_service.notify(
            session, target.author_id, NotificationType.REPLY_VOTE,
            "New vote on your reply", f"{name} {verb} your reply",
            {"post_id": target.post_id, "reply_id": target.id, "vote_type": str(vote_type)},
            actor_id=voter_id,
        )


# ---------------------------------------------------------------------------
# Moderator approval
# ---------------------------------------------------------------------------
def approve_post(session: Session, post_id: str, moderator_id: int) -> dict:
    post = get_live_post(session, post_id)
    if post.is_approved:
        return {"post_id": post.id, "is_approved": True, "already_approved": True}

    post.is_approved = True
    post.approved_at = datetime.now(UTC)
    post.moderator_id = moderator_id
    session.flush()

    scoring_actions.award_moderator_approval(session, post, moderator_id)
    notification_service.notify(
        session, post.author_id, NotificationType.POST_APPROVED,
        "Your post was approved", f"\"{post.title}\" is now visible to the community",
        {"post_id": post.id}, actor_id=moderator_id,
    )
    logger.info("Post %s approved by moderator %s", post.id, moderator_id)
    return {"post_id": post.id, "is_approved": True, "already_approved": False}


def reject_post(session: Session, post_id: str, moderator_id: int) -> dict:
    """Withdraw approval; any outstanding approval bonus is reversed first."""
    post = get_live_post(session, post_id)
    reversed_bonus = scoring_actions.reverse_moderator_approval(session, post, moderator_id)
    post.is_approved = False
    post.moderator_id = moderator_id
    session.flush()
    logger.info("Post %s rejected by moderator %s (bonus reversed=%s)", post.id, moderator_id, reversed_bonus)
    return {"post_id": post.id, "is_approved": False, "bonus_reversed": reversed_bonus}


def list_tags(session: Session) -> list[dict]:
    """Discussion tags with the number of visible posts using each."""
    rows = session.execute(
        select(Tag.name, func.count(DiscussionPost.id))
        .outerjoin(post_tags, post_tags.c.tag_id == Tag.id)
        .outerjoin(
            DiscussionPost,
            and_(
                DiscussionPost.id == post_tags.c.post_id,
                DiscussionPost.is_deleted.is_(False),
                DiscussionPost.is_approved.is_(True),
            ),
        )
        .group_by(Tag.id, Tag.name)
        .order_by(Tag.name)
    ).all()
    return [{"name": name, "post_count": count} for name, count in rows]


# ---------------------------------------------------------------------------
# Activity counters
# ---------------------------------------------------------------------------
def count_posts_since(session: Session, user_id: int, since: datetime) -> int:
    return session.scalar(
        select(func.count(DiscussionPost.id)).where(
            DiscussionPost.author_id == user_id,
            DiscussionPost.is_deleted.is_(False),
            DiscussionPost.created_at >= since,
        )
    ) or 0


def count_open_market_posts(session: Session) -> int:
    """Approved market listings still marked available."""
    return session.scalar(
        select(func.count(DiscussionPost.id)).where(
            DiscussionPost.is_market_post.is_(True),
            DiscussionPost.is_available.is_(True),
            DiscussionPost.is_approved.is_(True),
            DiscussionPost.is_deleted.is_(False),
        )
    ) or 0
