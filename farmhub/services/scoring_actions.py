"""
farmhub.services.scoring_actions — Domain Actions → Ledger Entries
===================================================================

Translates what happened in the community (a post, a vote, a moderator
decision) into :class:`LedgerEntry` batches and hands them to
:func:`scoring_service.record_events`.

All functions run inside the caller's session and never commit.

Vote transitions (``previous`` → ``new``):

    None   → vote    REACTION_RECEIVED to the author (+ first-engagement bonus)
    vote   → None    REACTION_REMOVED with the inverse delta
    up     ↔ down    REMOVED then RECEIVED, both flagged ``switched``
    same   → same    nothing

Reply votes additionally trickle up the thread (see
:mod:`farmhub.engine.trickle`).  Undoing a reply vote negates exactly the
trickle that vote produced, read back from the ledger.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from farmhub.database.models import (
    DiscussionPost,
    DiscussionReply,
    ModerationDecision,
    ReplyAncestry,
    ScoreEvent,
    ScoreEventType,
    UserModerationStat,
    UserPrestige,
    VoteType,
)
from farmhub.engine.points import POINTS, LedgerEntry, from_scaled, vote_points
from farmhub.engine.trickle import ReplyChain, get_semantic_classifier, plan_trickle
from farmhub.services.scoring_service import record_events

logger = logging.getLogger(__name__)

TRICKLE_EVENT_TYPES = (
    ScoreEventType.TRICKLE_PARENT,
    ScoreEventType.TRICKLE_GRANDPARENT,
    ScoreEventType.TRICKLE_ROOT,
)

VIOLATION_DECISIONS = frozenset({ModerationDecision.DELETED, ModerationDecision.WARNED})


# ---------------------------------------------------------------------------
# Content creation
# ---------------------------------------------------------------------------
def on_post_created(session: Session, post: DiscussionPost) -> list[ScoreEvent]:
    return record_events(session, [
        LedgerEntry(
            user_id=post.author_id,
            event_type=ScoreEventType.POST_CREATED,
            points=POINTS["POST_CREATED"],
            ref_type="post",
            ref_id=post.id,
            actor_user_id=post.author_id,
        )
    ])


def on_reply_created(
    session: Session,
    reply: DiscussionReply,
    post: DiscussionPost,
    parent_reply: DiscussionReply | None = None,
) -> list[ScoreEvent]:
    """Reward the replier, and whoever they replied to (unless it's themselves)."""
    entries = [
        LedgerEntry(
            user_id=reply.author_id,
            event_type=ScoreEventType.REPLY_CREATED,
            points=POINTS["REPLY_CREATED_REPLIER"],
            ref_type="reply",
            ref_id=reply.id,
            actor_user_id=reply.author_id,
            meta={"role": "replier", "post_id": post.id},
        )
    ]
    parent_author_id = parent_reply.author_id if parent_reply is not None else post.author_id
    if parent_author_id != reply.author_id:
        entries.append(LedgerEntry(
            user_id=parent_author_id,
            event_type=ScoreEventType.REPLY_CREATED,
            points=POINTS["REPLY_CREATED_PARENT"],
            ref_type="reply",
            ref_id=reply.id,
            actor_user_id=reply.author_id,
            meta={"role": "parent_author", "post_id": post.id},
        ))
    return record_events(session, entries)


# ---------------------------------------------------------------------------
# Votes
# ---------------------------------------------------------------------------
def _has_engaged(session: Session, voter_id: int, ref_type: str, ref_id: str) -> bool:
    return session.scalar(
        select(ScoreEvent.id).where(
            ScoreEvent.user_id == voter_id,
            ScoreEvent.event_type == ScoreEventType.REACTION_ENGAGEMENT,
            ScoreEvent.ref_type == ref_type,
            ScoreEvent.ref_id == ref_id,
        ).limit(1)
    ) is not None


def _reaction_entries(
    session: Session,
    *,
    ref_type: str,
    ref_id: str,
    author_id: int,
    voter_id: int,
    previous: str | None,
    new: str | None,
) -> list[LedgerEntry]:
    if previous == new:
        return []

    switched = previous is not None and new is not None
    entries: list[LedgerEntry] = []

    if previous is not None:
        meta = {"vote": str(previous)}
        if switched:
            meta["switched"] = True
        entries.append(LedgerEntry(
            user_id=author_id,
            event_type=ScoreEventType.REACTION_REMOVED,
            points=-vote_points(previous),
            ref_type=ref_type,
            ref_id=ref_id,
            actor_user_id=voter_id,
            meta=meta,
        ))

    if new is not None:
        meta = {"vote": str(new)}
        if switched:
            meta["switched"] = True
        entries.append(LedgerEntry(
            user_id=author_id,
            event_type=ScoreEventType.REACTION_RECEIVED,
            points=vote_points(new),
            ref_type=ref_type,
            ref_id=ref_id,
            actor_user_id=voter_id,
            meta=meta,
        ))
        if previous is None and not _has_engaged(session, voter_id, ref_type, ref_id):
            entries.append(LedgerEntry(
                user_id=voter_id,
                event_type=ScoreEventType.REACTION_ENGAGEMENT,
                points=POINTS["REACTION_ENGAGEMENT"],
                ref_type=ref_type,
                ref_id=ref_id,
                actor_user_id=voter_id,
            ))

    return entries


def on_post_vote(
    session: Session,
    post: DiscussionPost,
    voter_id: int,
    previous: VoteType | str | None,
    new: VoteType | str | None,
) -> list[ScoreEvent]:
    entries = _reaction_entries(
        session,
        ref_type="post",
        ref_id=post.id,
        author_id=post.author_id,
        voter_id=voter_id,
        previous=previous,
        new=new,
    )
    return record_events(session, entries)


def ensure_ancestry(session: Session, reply: DiscussionReply) -> ReplyAncestry:
    """Return the ancestry row for *reply*, creating it on first use."""
    row = session.get(ReplyAncestry, reply.id)
    if row is not None:
        return row

    grandparent_id = None
    if reply.parent_reply_id is not None:
        parent = session.get(DiscussionReply, reply.parent_reply_id)
        grandparent_id = parent.parent_reply_id if parent is not None else None

    row = ReplyAncestry(
        reply_id=reply.id,
        parent_id=reply.parent_reply_id,
        grandparent_id=grandparent_id,
        root_post_id=reply.post_id,
    )
    session.add(row)
    session.flush()
    return row


def _author_of(session: Session, reply_id: str | None) -> int | None:
    if reply_id is None:
        return None
    return session.scalar(select(DiscussionReply.author_id).where(DiscussionReply.id == reply_id))


def _trickle_reversal(session: Session, reply: DiscussionReply, voter_id: int) -> list[LedgerEntry]:
    """Negate whatever trickle *voter_id*'s votes on *reply* have produced so far."""
    rows = session.execute(
        select(ScoreEvent.user_id, ScoreEvent.event_type, func.sum(ScoreEvent.delta))
        .where(
            ScoreEvent.actor_user_id == voter_id,
            ScoreEvent.ref_type == "reply",
            ScoreEvent.ref_id == reply.id,
            ScoreEvent.event_type.in_([str(t) for t in TRICKLE_EVENT_TYPES]),
        )
        .group_by(ScoreEvent.user_id, ScoreEvent.event_type)
    ).all()

    return [
        LedgerEntry(
            user_id=user_id,
            event_type=ScoreEventType(event_type),
            points=-from_scaled(net),
            ref_type="reply",
            ref_id=reply.id,
            actor_user_id=voter_id,
            meta={"reversal": True},
        )
        for user_id, event_type, net in rows
        if net
    ]


def _trickle_award(session: Session, reply: DiscussionReply, voter_id: int, vote: str) -> list[LedgerEntry]:
    ancestry = ensure_ancestry(session, reply)
    if ancestry.parent_id is None:
        return []

    parent = session.get(DiscussionReply, ancestry.parent_id)
    chain = ReplyChain(
        parent_author_id=parent.author_id if parent is not None else None,
        grandparent_author_id=_author_of(session, ancestry.grandparent_id),
        root_author_id=session.scalar(
            select(DiscussionPost.author_id).where(DiscussionPost.id == ancestry.root_post_id)
        ),
    )
    classification = get_semantic_classifier().classify(
        reply.content, parent.content if parent is not None else None
    )
    awards = plan_trickle(chain, reply.author_id, classification.label, vote)
    meta = {
        "classification": classification.label,
        "confidence": classification.confidence,
        "source": classification.source,
        "vote": str(vote),
    }
    return [
        LedgerEntry(
            user_id=award.user_id,
            event_type=award.event_type,
            points=award.points,
            ref_type="reply",
            ref_id=reply.id,
            actor_user_id=voter_id,
            meta=meta,
        )
        for award in awards
    ]


def on_reply_vote(
    session: Session,
    reply: DiscussionReply,
    voter_id: int,
    previous: VoteType | str | None,
    new: VoteType | str | None,
) -> list[ScoreEvent]:
    if previous == new:
        return []

    entries = _reaction_entries(
        session,
        ref_type="reply",
        ref_id=reply.id,
        author_id=reply.author_id,
        voter_id=voter_id,
        previous=previous,
        new=new,
    )
    if previous is not None:
        entries.extend(_trickle_reversal(session, reply, voter_id))
    if new is not None:
        entries.extend(_trickle_award(session, reply, voter_id, new))
    return record_events(session, entries)


# ---------------------------------------------------------------------------
# Moderation
# ---------------------------------------------------------------------------
def _moderation_stat(session: Session, user_id: int) -> UserModerationStat:
    stat = session.get(UserModerationStat, user_id)
    if stat is None:
        stat = UserModerationStat(user_id=user_id, mod_approvals=0)
        session.add(stat)
        session.flush()
    return stat


def _count_events(session: Session, user_id: int, event_type: ScoreEventType, post_id: str) -> int:
    return session.scalar(
        select(func.count(ScoreEvent.id)).where(
            ScoreEvent.user_id == user_id,
            ScoreEvent.event_type == event_type,
            ScoreEvent.ref_type == "post",
            ScoreEvent.ref_id == post_id,
        )
    ) or 0


def award_moderator_approval(session: Session, post: DiscussionPost, moderator_id: int) -> list[ScoreEvent]:
    rows = record_events(session, [
        LedgerEntry(
            user_id=post.author_id,
            event_type=ScoreEventType.MOD_APPROVED_BONUS,
            points=POINTS["MOD_APPROVED_BONUS"],
            ref_type="post",
            ref_id=post.id,
            actor_user_id=moderator_id,
        )
    ])
    _moderation_stat(session, post.author_id).mod_approvals += 1
    session.flush()
    return rows


def reverse_moderator_approval(session: Session, post: DiscussionPost, moderator_id: int) -> bool:
    """Take back one approval bonus for *post*, if any is outstanding.

    Returns True when a reversal was written.
    """
    approvals = _count_events(session, post.author_id, ScoreEventType.MOD_APPROVED_BONUS, post.id)
    reversals = _count_events(
        session, post.author_id, ScoreEventType.MOD_APPROVED_BONUS_REVERSAL, post.id
    )
    if reversals >= approvals:
        return False

    record_events(session, [
        LedgerEntry(
            user_id=post.author_id,
            event_type=ScoreEventType.MOD_APPROVED_BONUS_REVERSAL,
            points=-POINTS["MOD_APPROVED_BONUS"],
            ref_type="post",
            ref_id=post.id,
            actor_user_id=moderator_id,
            meta={"reason": "approval_revoked", "sequence": reversals + 1},
        )
    ])
    stat = _moderation_stat(session, post.author_id)
    stat.mod_approvals = max(0, stat.mod_approvals - 1)
    session.flush()
    logger.info("Reversed approval bonus for post %s (author %s)", post.id, post.author_id)
    return True


def apply_report_decision(
    session: Session,
    *,
    post_id: str,
    report_ids: list[str],
    post_author_id: int,
    reporter_ids: list[int],
    decision: ModerationDecision | str,
    moderator_id: int,
) -> list[ScoreEvent]:
    """Score a moderation decision.

    ``report_ids`` and ``reporter_ids`` are parallel lists, one entry per
    resolved report.
    """
    decision = ModerationDecision(decision)
    entries: list[LedgerEntry] = []

    if decision in VIOLATION_DECISIONS:
        entries.append(LedgerEntry(
            user_id=post_author_id,
            event_type=ScoreEventType.REPORT_CONFIRMED_PENALTY,
            points=POINTS["REPORT_CONFIRMED_PENALTY"],
            ref_type="post",
            ref_id=post_id,
            actor_user_id=moderator_id,
            meta={"decision": str(decision), "report_count": len(report_ids)},
        ))
        reward_type = ScoreEventType.REPORT_CONFIRMED_REPORTER_REWARD
        reward = POINTS["REPORT_CONFIRMED_REPORTER_REWARD"]
    else:
        reward_type = ScoreEventType.REPORT_REJECTED_REPORTER_REWARD
        reward = POINTS["REPORT_REJECTED_REPORTER_REWARD"]

    for report_id, reporter_id in zip(report_ids, reporter_ids, strict=True):
        entries.append(LedgerEntry(
            user_id=reporter_id,
            event_type=reward_type,
            points=reward,
            ref_type="report",
            ref_id=report_id,
            actor_user_id=moderator_id,
            meta={"decision": str(decision), "post_id": post_id},
        ))

    return record_events(session, entries)


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------
def admin_adjust(
    session: Session,
    user_id: int,
    delta: float,
    reason: str,
    admin_id: int,
) -> list[ScoreEvent]:
    """Manual correction by an admin.  A zero delta writes nothing."""
    if not delta:
        return []
    epoch_ms = int(datetime.now(UTC).timestamp() * 1000)
    return record_events(session, [
        LedgerEntry(
            user_id=user_id,
            event_type=ScoreEventType.ADMIN_ADJUST,
            points=delta,
            ref_type="system",
            ref_id=f"admin-adjust-{epoch_ms}",
            actor_user_id=admin_id,
            meta={"reason": reason},
        )
    ])


def promote_moderator(session: Session, user_id: int) -> UserPrestige:
    prestige = session.get(UserPrestige, user_id)
    if prestige is None:
        prestige = UserPrestige(user_id=user_id)
        session.add(prestige)
    if not prestige.is_moderator:
        prestige.is_moderator = True
        prestige.promoted_at = datetime.now(UTC)
    session.flush()
    return prestige


# ---------------------------------------------------------------------------
# Learning
# ---------------------------------------------------------------------------
def on_best_practice_first_read(session: Session, user_id: int, best_practice_id: str) -> list[ScoreEvent]:
    return record_events(session, [
        LedgerEntry(
            user_id=user_id,
            event_type=ScoreEventType.BEST_PRACTICE_FIRST_READ,
            points=POINTS["BEST_PRACTICE_FIRST_READ"],
            ref_type="best_practice",
            ref_id=best_practice_id,
            actor_user_id=user_id,
        )
    ])


def on_quiz_completed(
    session: Session,
    user_id: int,
    attempt_id: str,
    *,
    quiz_id: str,
    passed: bool,
    score_percent: int,
) -> list[ScoreEvent]:
    points = POINTS["QUIZ_COMPLETED_PASS"] if passed else POINTS["QUIZ_COMPLETED_FAIL"]
    return record_events(session, [
        LedgerEntry(
            user_id=user_id,
            event_type=ScoreEventType.QUIZ_COMPLETED,
            points=points,
            ref_type="quiz_attempt",
            ref_id=attempt_id,
            actor_user_id=user_id,
            meta={"quiz_id": quiz_id, "passed": passed, "score_percent": score_percent},
        )
    ])
