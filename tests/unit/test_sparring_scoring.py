"""
Unit tests for sparring scoring.

Tests totals and the winner precedence:
disqualification, senshu gap, points, first score, first-listed default.
"""

from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from shiai.errors import ValidationError
from shiai.scoring.sparring import (
    RULE_DEFAULT_FIRST_LISTED,
    RULE_DISQUALIFICATION,
    RULE_FIRST_SCORE,
    RULE_POINTS,
    RULE_SENSHU_GAP,
    SparringTally,
    aggregate_tallies,
    decide_winner,
    decisive_rule,
    totals_for_pair,
)


def _pair(first, second, **kwargs):
    return totals_for_pair(1, first, 2, second, **kwargs)


class TestTally:
    """Tests for SparringTally."""

    def test_points_and_deductions(self):
        tally = SparringTally(yuko=1, waza_ari=1, ippon=2, chukoku=1, hansoku_chui=1)
        assert tally.points == 9
        assert tally.deductions == Decimal("2.0")

    def test_from_dict_rejects_unknown(self):
        with pytest.raises(ValidationError) as exc:
            SparringTally.from_dict({"yuko": 1, "jogai": 2})
        assert exc.value.details == {"unknown": ["jogai"]}

    @pytest.mark.parametrize("value", [-1, 1.5, True, "2"])
    def test_from_dict_rejects_bad_counts(self, value):
        with pytest.raises(ValidationError):
            SparringTally.from_dict({"ippon": value})

    def test_from_dict_fills_missing_with_zero(self):
        tally = SparringTally.from_dict({"ippon": 1})
        assert tally.to_dict() == {
            "yuko": 0,
            "waza_ari": 0,
            "ippon": 1,
            "chukoku": 0,
            "keikoku": 0,
            "hansoku_chui": 0,
            "hansoku": 0,
        }

    def test_aggregate_sums_judges(self):
        combined = aggregate_tallies([SparringTally(ippon=1), SparringTally(ippon=1, yuko=2)])
        assert combined.ippon == 2
        assert combined.yuko == 2


class TestTotals:
    """Tests for totals_for_pair."""

    def test_plain_points(self):
        a, b = _pair(SparringTally(ippon=2, yuko=1), SparringTally(waza_ari=1))
        assert a.total == Decimal("7")
        assert b.total == Decimal("2")

    def test_keikoku_gives_opponent_a_point(self):
        a, b = _pair(SparringTally(yuko=1, keikoku=1), SparringTally(yuko=1))
        assert a.total == Decimal("0.0")
        assert b.total == Decimal("2")

    def test_hansoku_disqualifies(self):
        a, b = _pair(SparringTally(ippon=3, hansoku=1), SparringTally())
        assert a.disqualified
        assert not b.disqualified


class TestDecideWinner:
    """Tests for the precedence rules."""

    def test_points(self):
        decision = decide_winner(*_pair(SparringTally(ippon=2, yuko=1), SparringTally(waza_ari=1)))
        assert decision.winner_id == 1
        assert decision.rule == RULE_POINTS
        assert decision.winner_total == Decimal("7")

    def test_second_listed_wins_on_points(self):
        decision = decide_winner(*_pair(SparringTally(yuko=1), SparringTally(ippon=1)))
        assert decision.winner_id == 2
        assert decision.loser_id == 1

    def test_disqualification_beats_points(self):
        """A disqualified leader still loses."""
        decision = decide_winner(*_pair(SparringTally(ippon=3, hansoku=1), SparringTally(yuko=1)))
        assert decision.winner_id == 2
        assert decision.rule == RULE_DISQUALIFICATION
        assert decision.disqualified_id == 1

    def test_both_disqualified_goes_to_second_listed(self):
        decision = decide_winner(*_pair(SparringTally(hansoku=1), SparringTally(hansoku=1)))
        assert decision.winner_id == 2

    def test_senshu_gap(self):
        decision = decide_winner(*_pair(SparringTally(ippon=3), SparringTally(yuko=1)))
        assert decision.winner_id == 1
        assert decision.rule == RULE_SENSHU_GAP

    def test_gap_just_below_threshold_is_points(self):
        decision = decide_winner(*_pair(SparringTally(ippon=2, yuko=1), SparringTally()))
        assert decision.rule == RULE_POINTS

    def test_tie_goes_to_earliest_first_score(self):
        start = datetime(2026, 10, 19, 10, 0, 0)
        first, second = _pair(
            SparringTally(waza_ari=1),
            SparringTally(waza_ari=1),
            first_scored_at=start + timedelta(seconds=30),
            second_scored_at=start,
        )
        decision = decide_winner(first, second)
        assert decision.winner_id == 2
        assert decision.rule == RULE_FIRST_SCORE

    def test_tie_with_equal_timestamps_goes_to_first_listed(self):
        start = datetime(2026, 10, 19, 10, 0, 0)
        decision = decide_winner(
            *_pair(SparringTally(), SparringTally(), first_scored_at=start, second_scored_at=start)
        )
        assert decision.winner_id == 1
        assert decision.rule == RULE_FIRST_SCORE

    def test_tie_with_one_timestamp(self):
        decision = decide_winner(
            *_pair(SparringTally(), SparringTally(), second_scored_at=datetime(2026, 10, 19, 10, 0))
        )
        assert decision.winner_id == 2

    def test_no_scores_defaults_to_first_listed(self):
        decision = decide_winner(*_pair(SparringTally(), SparringTally()))
        assert decision.winner_id == 1
        assert decision.rule == RULE_DEFAULT_FIRST_LISTED

    def test_custom_gap(self):
        decision = decide_winner(
            *_pair(SparringTally(ippon=1), SparringTally()),
            senshu_gap=Decimal("3"),
        )
        assert decision.rule == RULE_SENSHU_GAP


class TestDecisiveRule:
    """Tests for early finalization checks."""

    def test_close_match_is_not_decisive(self):
        assert decisive_rule(*_pair(SparringTally(ippon=1), SparringTally(yuko=1))) is None

    def test_gap_is_decisive(self):
        assert decisive_rule(*_pair(SparringTally(ippon=3), SparringTally())) == RULE_SENSHU_GAP

    def test_hansoku_is_decisive(self):
        assert decisive_rule(*_pair(SparringTally(), SparringTally(hansoku=1))) == RULE_DISQUALIFICATION
