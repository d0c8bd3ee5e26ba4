"""Unit tests for the outcome calculator."""

import pytest

from matchday.services.results.outcomes import (
    AWAY,
    DRAW,
    HOME,
    NO,
    OVER,
    UNDER,
    YES,
    derive_outcomes,
    moneyline,
    over_under,
)


class TestMoneyline:
    """Full-time and half-time 1/X/2."""

    @pytest.mark.parametrize(
        "home,away,expected",
        [(2, 1, HOME), (0, 3, AWAY), (1, 1, DRAW), (0, 0, DRAW)],
    )
    def test_moneyline(self, home, away, expected):
        assert moneyline(home, away) == expected


class TestOverUnder:
    """Totals against a goal line."""

    def test_total_equal_to_line_floor_is_under(self):
        """Two goals is under 2.5, three is over."""
        assert over_under(2, 2.5) == UNDER
        assert over_under(3, 2.5) == OVER

    def test_goalless_is_under_every_line(self):
        for line in (1.5, 2.5, 3.5):
            assert over_under(0, line) == UNDER


class TestDeriveOutcomes:
    """derive_outcomes() produces every settled column."""

    def test_home_win_high_scoring(self):
        outcomes = derive_outcomes(1, 3, 1, 1, 0)

        assert outcomes.moneyline == HOME
        assert outcomes.total_goals == 4
        assert outcomes.over_under == {1.5: OVER, 2.5: OVER, 3.5: OVER}
        assert outcomes.both_scored is True
        assert outcomes.half_time_moneyline == HOME
        assert outcomes.full_score == "3-1"
        assert outcomes.ht_score == "1-0"

    def test_goalless_draw(self):
        outcomes = derive_outcomes(2, 0, 0)

        assert outcomes.moneyline == DRAW
        assert outcomes.over_under == {1.5: UNDER, 2.5: UNDER, 3.5: UNDER}
        assert outcomes.both_scored is False
        assert outcomes.half_time_moneyline is None
        assert outcomes.ht_score is None

    def test_as_columns_maps_stored_codes(self):
        columns = derive_outcomes(3, 1, 2, 1, 1).as_columns()

        assert columns["result_1x2"] == AWAY
        assert columns["result_ou15"] == OVER
        assert columns["result_ou25"] == OVER
        assert columns["result_ou35"] == UNDER
        assert columns["result_btts"] == YES
        assert columns["result_ht"] == DRAW
        assert columns["full_score"] == "1-2"

    def test_clean_sheet_is_not_both_scored(self):
        assert derive_outcomes(4, 2, 0).as_columns()["result_btts"] == NO

    def test_missing_full_time_score_rejected(self):
        with pytest.raises(ValueError, match="no full-time score"):
            derive_outcomes(5, None, None)

    @pytest.mark.parametrize("home,away", [(1, None), (None, 2)])
    def test_one_sided_full_time_score_rejected(self, home, away):
        with pytest.raises(ValueError, match="one-sided"):
            derive_outcomes(6, home, away)

    def test_one_sided_half_time_score_rejected(self):
        with pytest.raises(ValueError, match="one-sided half-time"):
            derive_outcomes(7, 2, 1, 1, None)

    def test_negative_score_rejected(self):
        with pytest.raises(ValueError, match="negative"):
            derive_outcomes(8, -1, 0)
