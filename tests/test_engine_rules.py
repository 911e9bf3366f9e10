"""
tests/test_engine_rules.py — Pure Scoring Rule Tests
=====================================================
Covers the I/O-free engine modules: point scaling, the level ladder and
prestige tiers, streak arithmetic, trickle planning, leaderboard windows
and quiz grading.
"""

from __future__ import annotations

from datetime import UTC, date, datetime

import pytest

from farmhub.database.models import ScoreEventType, VoteType
from farmhub.engine.grading import grade_answer, score_percent, validate_question_options
from farmhub.engine.levels import compute_prestige, map_points_to_level
from farmhub.engine.periods import ALL_TIME_ANCHOR, Period, as_utc, parse_period, period_window
from farmhub.engine.points import POINT_SCALE, LedgerEntry, from_scaled, to_scaled, vote_points
from farmhub.engine.streaks import advance_streak, local_day, next_milestone
from farmhub.engine.trickle import (
    CONTRADICTORY,
    SUPPORTIVE,
    Classification,
    KeywordClassifier,
    ReplyChain,
    get_semantic_classifier,
    plan_trickle,
    set_semantic_classifier,
)
from farmhub.errors import ValidationError


# ===========================================================================
# Points
# ===========================================================================
class TestPoints:
    def test_scaling_round_trips_fractions(self):
        assert to_scaled(0.25) == 250
        assert to_scaled(-0.5) == -500
        assert from_scaled(1750) == 1.75

    def test_from_scaled_treats_none_as_zero(self):
        assert from_scaled(None) == 0

    def test_ledger_entry_delta_is_scaled(self):
        entry = LedgerEntry(user_id=1, event_type=ScoreEventType.POST_CREATED, points=2)
        assert entry.delta == 2 * POINT_SCALE

    def test_vote_points(self):
        assert vote_points(VoteType.UPVOTE) == 1
        assert vote_points("downvote") == -1


# ===========================================================================
# Levels & prestige
# ===========================================================================
class TestLevels:
    @pytest.mark.parametrize("points, level", [
        (0, 1), (20, 1), (21, 2), (149, 2), (150, 3), (299, 3), (300, 4), (599, 4), (600, 5),
    ])
    def test_band_boundaries(self, points, level):
        assert map_points_to_level(points).level == level

    def test_negative_total_clamps_to_first_level(self):
        info = map_points_to_level(-12)
        assert info.level == 1
        assert info.points_into_level == 0

    def test_progress_inside_band(self):
        info = map_points_to_level(30)
        assert info.label == "Amateur"
        assert info.next_level_at == 150
        assert info.points_into_level == 9
        assert info.points_for_level == 129

    def test_open_ended_top_band(self):
        info = map_points_to_level(700)
        assert info.level == 5
        assert info.next_level_at is None
        assert info.points_into_level == 100
        assert info.points_for_level == 101


class TestPrestige:
    def test_below_entry_points(self):
        prestige = compute_prestige(500, 0)
        assert prestige.tier is None
        assert prestige.progress == {
            "next_tier": "Expert I", "points_needed": 100, "approvals_needed": 10,
        }

    def test_points_without_approvals_stay_untiered(self):
        prestige = compute_prestige(2000, 4)
        assert prestige.tier is None
        assert prestige.progress["next_tier"] == "Expert I"
        assert prestige.progress["points_needed"] == 0
        assert prestige.progress["approvals_needed"] == 6

    def test_first_tier_reports_gap_to_second(self):
        prestige = compute_prestige(1600, 10)
        assert prestige.tier == "Expert I"
        assert prestige.progress == {
            "next_tier": "Expert II", "points_needed": 2500, "approvals_needed": 40,
        }

    def test_top_tier(self):
        prestige = compute_prestige(20000, 60)
        assert prestige.tier == "Expert III"
        assert prestige.progress == {}

    def test_top_tier_moderator_label(self):
        assert compute_prestige(20000, 60, is_moderator=True).tier == "Moderator"

    def test_moderator_flag_needs_top_tier(self):
        assert compute_prestige(1600, 10, is_moderator=True).tier == "Expert I"


# ===========================================================================
# Streaks
# ===========================================================================
class TestStreaks:
    def test_first_activity_starts_streak(self):
        step = advance_streak(0, 0, None, date(2026, 3, 1))
        assert (step.current_length, step.best_length, step.changed) == (1, 1, True)

    def test_same_day_is_noop(self):
        day = date(2026, 3, 1)
        step = advance_streak(4, 9, day, day)
        assert not step.changed
        assert step.current_length == 4

    def test_next_day_extends(self):
        step = advance_streak(4, 4, date(2026, 3, 1), date(2026, 3, 2))
        assert step.current_length == 5
        assert step.best_length == 5

    def test_gap_restarts_but_keeps_best(self):
        step = advance_streak(12, 12, date(2026, 3, 1), date(2026, 3, 5))
        assert step.current_length == 1
        assert step.best_length == 12

    def test_milestone_reported_on_exact_length(self):
        step = advance_streak(6, 6, date(2026, 3, 6), date(2026, 3, 7))
        assert step.milestone_bonus == 5
        assert advance_streak(7, 7, date(2026, 3, 7), date(2026, 3, 8)).milestone_bonus is None

    def test_local_day_uses_member_timezone(self):
        late_evening = datetime(2026, 1, 1, 22, 30, tzinfo=UTC)
        assert local_day(late_evening, "Africa/Nairobi") == date(2026, 1, 2)
        assert local_day(late_evening, "UTC") == date(2026, 1, 1)

    def test_unknown_timezone_falls_back_to_utc(self):
        assert local_day(datetime(2026, 1, 1, 22, 30), "Mars/Olympus") == date(2026, 1, 1)

    def test_zone_directory_name_falls_back_to_utc(self):
        # "America" names a directory of zones, not a zone
        assert local_day(datetime(2026, 1, 1, 22, 30, tzinfo=UTC), "America") == date(2026, 1, 1)

    def test_next_milestone(self):
        assert next_milestone(0) == 7
        assert next_milestone(7) == 30
        assert next_milestone(365) is None


# ===========================================================================
# Trickle
# ===========================================================================
class TestTrickle:
    CHAIN = ReplyChain(parent_author_id=2, grandparent_author_id=3, root_author_id=4)

    def _plan(self, label, vote, chain=CHAIN, author=1):
        return [(a.user_id, a.event_type, a.points) for a in plan_trickle(chain, author, label, vote)]

    def test_supportive_upvote_rewards_chain(self):
        assert self._plan(SUPPORTIVE, VoteType.UPVOTE) == [
            (2, ScoreEventType.TRICKLE_PARENT, 1),
            (3, ScoreEventType.TRICKLE_GRANDPARENT, 0.5),
            (4, ScoreEventType.TRICKLE_ROOT, 0.25),
        ]

    def test_supportive_downvote_does_nothing(self):
        assert self._plan(SUPPORTIVE, VoteType.DOWNVOTE) == []

    def test_contradictory_upvote_costs_chain(self):
        points = [p for _, _, p in self._plan(CONTRADICTORY, VoteType.UPVOTE)]
        assert points == [-1, -0.5, -0.25]

    def test_contradictory_downvote_restores_chain(self):
        points = [p for _, _, p in self._plan(CONTRADICTORY, "downvote")]
        assert points == [1, 0.5, 0.25]

    def test_top_level_reply_never_trickles(self):
        chain = ReplyChain(parent_author_id=None, grandparent_author_id=None, root_author_id=4)
        assert self._plan(SUPPORTIVE, VoteType.UPVOTE, chain) == []

    def test_reply_author_is_skipped(self):
        chain = ReplyChain(parent_author_id=2, grandparent_author_id=None, root_author_id=1)
        assert self._plan(SUPPORTIVE, VoteType.UPVOTE, chain) == [
            (2, ScoreEventType.TRICKLE_PARENT, 1),
        ]

    def test_keyword_classifier(self):
        classifier = KeywordClassifier()
        assert classifier.classify("I disagree, that is wrong").label == CONTRADICTORY
        assert classifier.classify("Great tip, thanks!").label == SUPPORTIVE

    def test_classifier_is_pluggable(self):
        class AlwaysContradicts:
            def classify(self, reply_content, parent_content=None):
                return Classification(CONTRADICTORY, 0.99, "test")

        previous = set_semantic_classifier(AlwaysContradicts())
        try:
            assert get_semantic_classifier().classify("anything").source == "test"
        finally:
            set_semantic_classifier(previous)
        assert isinstance(get_semantic_classifier(), KeywordClassifier)


# ===========================================================================
# Periods
# ===========================================================================
class TestPeriods:
    REF = datetime(2026, 10, 21, 15, 0, tzinfo=UTC)  # a Wednesday

    def test_daily(self):
        window = period_window(Period.DAILY, self.REF)
        assert window.start == datetime(2026, 10, 21, tzinfo=UTC)
        assert window.end == datetime(2026, 10, 22, tzinfo=UTC)

    def test_weekly_starts_monday(self):
        window = period_window("weekly", self.REF)
        assert window.start_day == date(2026, 10, 19)
        assert window.end == datetime(2026, 10, 26, tzinfo=UTC)

    def test_monthly_december_rolls_year(self):
        window = period_window(Period.MONTHLY, datetime(2026, 12, 31, 23, 0, tzinfo=UTC))
        assert window.start_day == date(2026, 12, 1)
        assert window.end == datetime(2027, 1, 1, tzinfo=UTC)

    def test_all_time_anchor(self):
        window = period_window(Period.ALL, self.REF)
        assert window.start_day == ALL_TIME_ANCHOR
        assert window.end > self.REF

    def test_parse_period(self):
        assert parse_period("monthly") is Period.MONTHLY
        assert parse_period("yearly") is None
        assert parse_period(None) is None

    def test_as_utc(self):
        naive = datetime(2026, 1, 1, 12, 0)
        assert as_utc(naive).tzinfo is UTC
        assert as_utc(None) is None


# ===========================================================================
# Grading
# ===========================================================================
class TestGrading:
    def test_exact_match_scores_one(self):
        graded = grade_answer(["a", "b"], ["b", "a"])
        assert graded.is_correct
        assert graded.points == 1.0

    def test_partial_credit(self):
        assert grade_answer(["a", "b"], ["a"]).points == 0.5

    def test_wrong_picks_cancel_hits(self):
        graded = grade_answer(["a", "b"], ["a", "c"])
        assert not graded.is_correct
        assert graded.points == 0.0

    def test_single_answer_wrong_is_zero(self):
        assert grade_answer(["a"], ["b"]).points == 0.0

    def test_no_correct_options(self):
        assert grade_answer([], ["a"]).points == 0.0

    @pytest.mark.parametrize("points, max_points, expected", [
        (2.5, 4, 63), (1, 3, 33), (2, 3, 67), (0, 5, 0), (3, 0, 0),
    ])
    def test_percent_rounds_half_up(self, points, max_points, expected):
        assert score_percent(points, max_points) == expected


class TestQuestionValidation:
    def _opts(self, *flags):
        return [{"text": f"Option {i}", "is_correct": flag} for i, flag in enumerate(flags)]

    def test_valid_shapes(self):
        validate_question_options("mcq", self._opts(True, False, False))
        validate_question_options("multi", self._opts(True, True, False))
        validate_question_options("truefalse", self._opts(False, True))

    @pytest.mark.parametrize("qtype, flags", [
        ("mcq", (True,)),
        ("mcq", (True, True)),
        ("mcq", (False, False)),
        ("multi", (True, False)),
        ("truefalse", (True, False, False)),
        ("truefalse", (True, True)),
    ])
    def test_invalid_shapes(self, qtype, flags):
        with pytest.raises(ValidationError) as exc:
            validate_question_options(qtype, self._opts(*flags))
        assert exc.value.code == "invalid_options"

    def test_unknown_type(self):
        with pytest.raises(ValidationError) as exc:
            validate_question_options("essay", self._opts(True, False))
        assert exc.value.code == "invalid_question_type"

    def test_blank_option_text(self):
        with pytest.raises(ValidationError):
            validate_question_options("mcq", [{"text": " ", "is_correct": True}, {"text": "B"}])
