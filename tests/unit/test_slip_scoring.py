"""Unit tests for slip scoring."""

from matchday.config.pipeline import EvaluationPolicy
from matchday.services.cycles.entities import Selection, parse_pick
from matchday.services.cycles.evaluator import score_predictions, winning_selection

RESULTS = {
    1: {
        "result_1x2": "1",
        "result_ht": "X",
        "result_btts": "yes",
        "result_ou15": "over",
        "result_ou25": "over",
        "result_ou35": "under",
    },
    2: {
        "result_1x2": "X",
        "result_ht": "X",
        "result_btts": "no",
        "result_ou15": "under",
        "result_ou25": "under",
        "result_ou35": "under",
    },
}


def pick(fixture_id, market, selection, line=None):
    raw = {"fixture_id": fixture_id, "market": market, "selection": selection}
    if line is not None:
        raw["line"] = line
    return raw


class TestWinningSelection:
    def test_each_market(self):
        result = RESULTS[1]

        assert winning_selection(parse_pick(pick(1, "moneyline", "home")), result) == Selection.HOME
        assert winning_selection(parse_pick(pick(1, "half_time_moneyline", "draw")), result) == Selection.DRAW
        assert winning_selection(parse_pick(pick(1, "both_scored", "no")), result) == Selection.YES
        assert winning_selection(parse_pick(pick(1, "over_under", "under", 3.5)), result) == Selection.UNDER
        assert winning_selection(parse_pick(pick(1, "over_under", "under", 2.5)), result) == Selection.OVER

    def test_no_result_is_not_gradeable(self):
        assert winning_selection(parse_pick(pick(1, "moneyline", "home")), None) is None


class TestScorePredictions:
    def test_counts_correct_picks(self):
        predictions = [
            pick(1, "moneyline", "home"),         # correct
            pick(1, "over_under", "over", 2.5),   # correct
            pick(2, "moneyline", "away"),         # wrong
            pick(2, "both_scored", "no"),         # correct
        ]
        correct, graded = score_predictions(predictions, RESULTS)

        assert correct == 3
        assert [detail["is_correct"] for detail in graded] == [True, True, False, True]
        assert graded[2]["predicted"] == "away"
        assert graded[2]["actual"] == "draw"
        assert graded[2]["reason"] is None

    def test_unsettled_or_malformed_picks_are_incorrect(self):
        predictions = [
            pick(99, "moneyline", "home"),
            {"fixture_id": 1, "market": "corners", "selection": "home"},
            "garbage",
            pick(3, "moneyline", "home"),
        ]
        correct, graded = score_predictions(predictions, RESULTS, void_ids={3})

        assert correct == 0
        assert [detail["reason"] for detail in graded] == [
            "no_result",
            "invalid_pick",
            "invalid_pick",
            "void_fixture",
        ]
        assert graded[2]["prediction"] == "garbage"
        assert all(detail["is_correct"] is False for detail in graded)

    def test_missing_market_outcome_is_recorded(self):
        results = {1: {**RESULTS[1], "result_ht": None}}

        correct, graded = score_predictions([pick(1, "half_time_moneyline", "draw")], results)

        assert correct == 0
        assert graded[0]["reason"] == "market_unsettled"
        assert graded[0]["actual"] is None

    def test_empty_slip(self):
        assert score_predictions([], RESULTS) == (0, [])
        assert score_predictions(None, RESULTS) == (0, [])


class TestRankTiers:
    def test_rank_for(self):
        policy = EvaluationPolicy()

        assert policy.rank_for(10) == 1
        assert policy.rank_for(6) == 1
        assert policy.rank_for(5) == 2
        assert policy.rank_for(2) == 3
        assert policy.rank_for(1) is None
