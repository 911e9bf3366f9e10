"""
farmhub.engine.trickle — Reply Classification & Trickle Planning
=================================================================

When a reply is voted on, part of the signal trickles up the thread:

- A *supportive* reply that is upvoted rewards the authors it builds on.
- A *contradictory* reply that is upvoted costs the authors it argues
  against; downvoting it gives those authors the points back.

The chain is the reply's parent reply, grandparent reply and the post
(root).  Top-level replies have no parent reply and never trickle.
Chain members who wrote the voted reply themselves are skipped.

Classification is pluggable via :func:`set_semantic_classifier`; the
default is a deterministic cue-word matcher.  No DB I/O in this module.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Protocol

from farmhub.database.models import ScoreEventType, VoteType

__all__ = [
    "Classification",
    "KeywordClassifier",
    "ReplyChain",
    "SemanticClassifier",
    "TrickleAward",
    "get_semantic_classifier",
    "plan_trickle",
    "set_semantic_classifier",
]

SUPPORTIVE = "supportive"
CONTRADICTORY = "contradictory"

# (label, vote) → points for (parent, grandparent, root)
TRICKLE_POINTS: dict[tuple[str, str], tuple[float, float, float]] = {
    (SUPPORTIVE, VoteType.UPVOTE): (1, 0.5, 0.25),
    (CONTRADICTORY, VoteType.UPVOTE): (-1, -0.5, -0.25),
    (CONTRADICTORY, VoteType.DOWNVOTE): (1, 0.5, 0.25),
}


@dataclass(frozen=True, slots=True)
class Classification:
    label: str
    confidence: float
    source: str


class SemanticClassifier(Protocol):
    def classify(self, reply_content: str, parent_content: str | None = None) -> Classification:
        ...


class KeywordClassifier:
    """Flags a reply as contradictory when it contains a disagreement cue."""

    CUES = (
        r"\bdisagree\b",
        r"\bnot true\b",
        r"\bincorrect\b",
        r"\bwrong\b",
        r"\bmisleading\b",
        r"\bthat's not\b",
        r"\bi doubt\b",
        r"\bactually,? no\b",
        r"\bon the contrary\b",
    )

    def __init__(self) -> None:
        self._pattern = re.compile("|".join(self.CUES), re.IGNORECASE)

    def classify(self, reply_content: str, parent_content: str | None = None) -> Classification:
        if self._pattern.search(reply_content or ""):
            return Classification(CONTRADICTORY, 0.6, "keyword")
        return Classification(SUPPORTIVE, 0.5, "keyword")


_classifier: SemanticClassifier = KeywordClassifier()


def get_semantic_classifier() -> SemanticClassifier:
    return _classifier


def set_semantic_classifier(classifier: SemanticClassifier) -> SemanticClassifier:
    """Install *classifier* process-wide and return the previous one."""
    global _classifier
    previous = _classifier
    _classifier = classifier
    return previous


# ---------------------------------------------------------------------------
# Planning
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class ReplyChain:
    """Authors above a reply.  ``parent_author_id`` is None for top-level replies."""

    parent_author_id: int | None
    grandparent_author_id: int | None
    root_author_id: int | None


@dataclass(frozen=True, slots=True)
class TrickleAward:
    user_id: int
    event_type: ScoreEventType
    points: float


def plan_trickle(
    chain: ReplyChain,
    reply_author_id: int,
    label: str,
    vote: VoteType | str,
) -> list[TrickleAward]:
    """Return the trickle awards one *vote* on a reply labelled *label* produces."""
    if chain.parent_author_id is None:
        return []
    values = TRICKLE_POINTS.get((label, VoteType(vote)))
    if values is None:
        return []

    targets = (
        (chain.parent_author_id, ScoreEventType.TRICKLE_PARENT, values[0]),
        (chain.grandparent_author_id, ScoreEventType.TRICKLE_GRANDPARENT, values[1]),
        (chain.root_author_id, ScoreEventType.TRICKLE_ROOT, values[2]),
    )
    return [
        TrickleAward(user_id=user_id, event_type=event_type, points=points)
        for user_id, event_type, points in targets
        if user_id is not None and user_id != reply_author_id
    ]
