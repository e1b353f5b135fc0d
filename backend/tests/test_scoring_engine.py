"""ScoringEngine — round gains, awards, rank bonuses, titles, final standings."""

import random

import pytest

from models.game import RoundRecord
from agents.scoring_engine import (
    PERFECT_MATCH_BONUS, RANK_BONUSES, ScoringEngine, LOWEST_TIER,
)
from conftest import make_player


@pytest.fixture
def engine():
    return ScoringEngine(random.Random(42))


@pytest.fixture
def trio():
    return [
        make_player("a", 0, secret=10),
        make_player("b", 1, secret=50),
        make_player("c", 2, secret=90),
    ]


def _by_id(items, attr="player_id"):
    return {getattr(i, attr): i for i in items}


class TestScoreRound:

    def test_three_player_example(self, engine, trio):
        table = {
            "a": {"b": 45, "c": 95},
            "b": {"a": 15, "c": 85},
            "c": {"a": 5, "b": 55},
        }
        results = _by_id(engine.score_round(trio, table))

        assert results["a"].incoming_score == -10
        assert results["a"].outgoing_score == -10
        assert results["a"].score_gain == -20
        assert results["b"].score_gain == -20
        assert results["c"].score_gain == -20
        assert results["a"].guesses == {"b": 15, "c": 5}
        assert results["a"].secret_number == 10

    def test_gain_is_negated_total_misjudgment(self, engine, trio):
        table = {
            "a": {"b": 1, "c": 100},
            "b": {"a": 60, "c": 90},
            "c": {"a": 10, "b": 20},
        }
        for res in engine.score_round(trio, table):
            assert res.incoming_score <= 0
            assert res.outgoing_score <= 0
            assert res.score_gain == res.incoming_score + res.outgoing_score

    def test_perfect_round_scores_zero(self, engine, trio):
        table = {
            "a": {"b": 50, "c": 90},
            "b": {"a": 10, "c": 90},
            "c": {"a": 10, "b": 50},
        }
        assert all(r.score_gain == 0 for r in engine.score_round(trio, table))

    def test_unknown_and_self_guesses_are_ignored(self, engine, trio):
        table = {
            "a": {"a": 99, "b": 50, "c": 90, "ghost": 1},
            "ghost": {"a": 100},
        }
        results = _by_id(engine.score_round(trio, table))
        assert results["a"].score_gain == 0
        assert results["a"].guesses == {}
        assert results["b"].guesses == {"a": 50}


class TestSettleRound:

    @pytest.fixture
    def settled(self, engine, trio):
        table = {
            "a": {"b": 50, "c": 90},     # two perfect matches
            "b": {"a": 20, "c": 80},
            "c": {"a": 30, "b": 70},
        }
        results = engine.score_round(trio, table)
        history = [RoundRecord(round_index=0, results=results)]
        return engine.settle_round(trio, results, history)

    def test_rank_order_and_scores(self, settled):
        assert [p.id for p in settled] == ["a", "b", "c"]
        scores = _by_id(settled, "id")
        # a: -30 gain, +20 understander, -20 zero empathy, +40 perfect, +100 rank
        assert scores["a"].score == 110
        assert scores["b"].score == -40 + 50
        # c: -50 gain, -20 whiff, +20 resonator, +30 rank
        assert scores["c"].score == -50 + 30

    def test_score_history_holds_raw_gain(self, settled):
        history = {p.id: p.score_history for p in settled}
        assert history == {"a": [-30], "b": [-40], "c": [-50]}

    def test_cumulative_equals_gains_plus_bonuses(self, settled):
        for p in settled:
            bonuses = sum(a.bonus for a in p.awards)
            assert p.cumulative_score == sum(p.score_history) + bonuses

    def test_special_awards(self, settled):
        names = {p.id: [a.name for a in p.awards] for p in settled}
        assert names["a"].count("Perfect Match") == 2
        assert "True Understander" in names["a"]
        assert "Zero Empathy" in names["a"]
        assert "Whiff" in names["c"]
        assert "Resonator" in names["c"]
        assert "Rank 1" in names["a"]

    def test_awards_replaced_each_pass(self, engine, settled):
        results = engine.score_round(settled, {})
        history = [RoundRecord(round_index=1, results=results)]
        again = engine.settle_round(settled, results, history)
        for p in again:
            assert all(a.name != "Perfect Match" for a in p.awards)

    def test_perfect_matches_only_count_current_round(self, engine, trio, settled):
        table = {
            "a": {"b": 60, "c": 80},
            "b": {"a": 20, "c": 80},
            "c": {"a": 30, "b": 70},
        }
        results = engine.score_round(settled, table)
        first = RoundRecord(
            round_index=0,
            results=engine.score_round(trio, {"a": {"b": 50, "c": 90}}),
        )
        history = [first, RoundRecord(round_index=1, results=results)]
        again = _by_id(engine.settle_round(settled, results, history), "id")
        assert not any(a.bonus == PERFECT_MATCH_BONUS and a.name == "Perfect Match"
                       for a in again["a"].awards)

    def test_equal_round_scores_keep_join_order(self, engine, trio):
        # Every guess is off by 5: all gains tie, the roster-first player takes
        # both "best" awards, b and c stay tied.
        table = {
            "a": {"b": 55, "c": 95},
            "b": {"a": 15, "c": 95},
            "c": {"a": 15, "b": 55},
        }
        results = engine.score_round(trio, table)
        history = [RoundRecord(round_index=0, results=results)]
        settled = engine.settle_round(trio, results, history)

        assert [p.id for p in settled] == ["a", "b", "c"]
        assert settled[1].score == -20 + RANK_BONUSES[1]
        assert settled[2].score == -20 + RANK_BONUSES[2]

    def test_fourth_place_gets_no_rank_bonus(self, engine):
        players = [make_player(pid, i, secret=10 + i * 20) for i, pid in enumerate("abcd")]
        results = engine.score_round(players, {})
        settled = engine.settle_round(players, results, [RoundRecord(round_index=0, results=results)])
        assert settled[3].score == 0
        assert not settled[3].awards


class TestFinalizeStandings:

    def test_sum_of_raw_gains_sorted(self, engine):
        players = [
            make_player("a", 0, score_history=[-30, -10], cumulative_score=200),
            make_player("b", 1, score_history=[-5, -5]),
            make_player("c", 2, score_history=[-20, -20]),
        ]
        final = engine.finalize_standings(players, [None, None])
        assert [(p.id, p.score) for p in final] == [("b", -10), ("a", -40), ("c", -40)]
        assert all(p.awards == [] for p in final)

    def test_idempotent(self, engine):
        players = [
            make_player("a", 0, score_history=[-12, -40]),
            make_player("b", 1, score_history=[-30, -3]),
        ]
        once = engine.finalize_standings(players, [None, None])
        twice = engine.finalize_standings(once, [None, None])
        assert [(p.id, p.score) for p in once] == [(p.id, p.score) for p in twice]


class TestTitles:

    def test_tiers_scale_with_player_count(self):
        assert ScoringEngine.title_tier(0, 4) == "winner"
        assert ScoringEngine.title_tier(-40, 4) == "normal"
        assert ScoringEngine.title_tier(-80, 4) == "normal"
        assert ScoringEngine.title_tier(-81, 4) == "abnormal"
        assert ScoringEngine.title_tier(-121, 4) == "danger"
        # eight players double every threshold
        assert ScoringEngine.title_tier(-160, 8) == "normal"
        assert ScoringEngine.title_tier(-161, 8) == "abnormal"

    def test_every_threshold_opens_its_own_band(self):
        assert ScoringEngine.title_tier(-120, 4) == "abnormal"
        assert ScoringEngine.title_tier(-160, 4) == "danger"
        assert ScoringEngine.title_tier(-161, 4) == LOWEST_TIER
        assert ScoringEngine.title_tier(-320, 8) == "danger"
        assert ScoringEngine.title_tier(-321, 8) == LOWEST_TIER

    def test_below_last_threshold_uses_most_severe_pool(self):
        assert ScoringEngine.title_tier(-10_000, 4) == LOWEST_TIER

    def test_decorated_title_has_two_words_from_pools(self, engine):
        title = engine.pick_title(-500, 4)
        assert len(title.split(" ")) >= 2

    def test_seeded_titles_repeat(self):
        first = ScoringEngine(random.Random(3)).pick_title(5, 4)
        second = ScoringEngine(random.Random(3)).pick_title(5, 4)
        assert first == second
