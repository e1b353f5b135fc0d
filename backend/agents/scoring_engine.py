"""
Scoring Engine — pure computation, no I/O.

Responsibilities:
- Per-round score from the guess table (how well a player conveyed their own
  number + how well they read everyone else's)
- Historical accuracy stats and the special awards derived from them
- Perfect-match awards
- Rank bonuses for the top three round scores
- Cumulative score bookkeeping
- Cosmetic titles
- Final standings

Every random draw (title flavour text only) goes through the injected
random.Random so the numbers are reproducible under a fixed seed.
"""
import logging
import random
from typing import Dict, List, Optional, Sequence, Tuple

from models.game import GuessTable, Player, RoundRecord, RoundResult, SpecialAward

logger = logging.getLogger(__name__)


# ── Bonuses ───────────────────────────────────────────────────────────────────

RANK_BONUSES: List[int] = [100, 50, 30]
ACCURACY_AWARD_BONUS = 20
PERFECT_MATCH_BONUS = 20

TRUE_UNDERSTANDER = ("True Understander", "Smallest average miss when guessing others", ACCURACY_AWARD_BONUS)
WHIFF = ("Whiff", "Largest average miss when guessing others", -ACCURACY_AWARD_BONUS)
RESONATOR = ("Resonator", "Others read this player's number most accurately", ACCURACY_AWARD_BONUS)
ZERO_EMPATHY = ("Zero Empathy", "Others read this player's number least accurately", -ACCURACY_AWARD_BONUS)
PERFECT_MATCH = ("Perfect Match", "Guessed a number exactly", PERFECT_MATCH_BONUS)


# ── Titles ────────────────────────────────────────────────────────────────────

# Thresholds are tuned for four players and scale linearly with the roster:
# more players means more guesses per round and therefore larger misses.
BASE_PLAYER_COUNT = 4
# (pool, lowest score for it) per band. Mild misses stay in the normal pool
# for two bands; anything below the last band is decorated danger.
TITLE_TIERS: List[Tuple[str, int]] = [
    ("winner", 0),
    ("normal", -40),
    ("normal", -80),
    ("abnormal", -120),
    ("danger", -160),
]
LOWEST_TIER = "decorated"

WINNER_WORDS: List[str] = [
    "Mind Reader", "Telepath", "Oracle", "Soulmate", "Harmonizer", "Empath Supreme",
]
NORMAL_WORDS: List[str] = [
    "Civilian", "Regular", "Passerby", "Commuter", "Neighbor", "Office Worker",
]
ABNORMAL_WORDS: List[str] = [
    "Eccentric", "Oddball", "Weirdo", "Free Spirit", "Maverick", "Wildcard",
]
DANGER_WORDS: List[str] = [
    "Menace", "Hazard", "Loose Cannon", "Walking Disaster", "Chaos Agent", "Public Nuisance",
]
DECORATOR_WORDS: List[str] = [
    "Legendary", "Certified", "Unhinged", "Galactic", "Notorious", "Ultimate",
]

_TIER_WORDS: Dict[str, List[str]] = {
    "winner": WINNER_WORDS,
    "normal": NORMAL_WORDS,
    "abnormal": ABNORMAL_WORDS,
    "danger": DANGER_WORDS,
}


def _award(entry: Tuple[str, str, int]) -> SpecialAward:
    name, description, bonus = entry
    return SpecialAward(name=name, description=description, bonus=bonus)


class ScoringEngine:
    """
    Turns guess tables into round results and round results into standings.
    Stateless apart from the random source.
    """

    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()

    # ── Per-round gain ────────────────────────────────────────────────────────

    def score_round(self, players: Sequence[Player], guess_table: GuessTable) -> List[RoundResult]:
        """
        For each player P:
          incoming = Σ |guess(G→P) − secret(P)| over every other guesser G
          outgoing = Σ |guess(P→T) − secret(T)| over every target T
          score_gain = −round(incoming + outgoing)

        Guesses from or about ids outside `players`, and self-guesses, are ignored.
        """
        secrets = {p.id: p.secret_number for p in players}
        results: List[RoundResult] = []

        for player in players:
            guesses_for_me: Dict[str, int] = {}
            incoming = 0
            for guesser_id, row in guess_table.items():
                if guesser_id == player.id or guesser_id not in secrets:
                    continue
                value = row.get(player.id)
                if value is None:
                    continue
                guesses_for_me[guesser_id] = value
                incoming += abs(value - player.secret_number)

            outgoing = 0
            for target_id, value in guess_table.get(player.id, {}).items():
                if target_id == player.id or target_id not in secrets:
                    continue
                outgoing += abs(value - secrets[target_id])

            results.append(RoundResult(
                player_id=player.id,
                secret_number=player.secret_number,
                guesses=guesses_for_me,
                incoming_score=-round(incoming),
                outgoing_score=-round(outgoing),
                score_gain=-round(incoming + outgoing),
            ))

        return results

    # ── Historical accuracy ───────────────────────────────────────────────────

    @staticmethod
    def accuracy_totals(
        history: Sequence[RoundRecord],
    ) -> Tuple[Dict[str, Tuple[int, int]], Dict[str, Tuple[int, int]]]:
        """
        Recompute (sum of diffs, count) per player across the whole history.

        Returns (given, received): `given` is keyed by guesser, `received` by the
        player whose number was being guessed.
        """
        given: Dict[str, Tuple[int, int]] = {}
        received: Dict[str, Tuple[int, int]] = {}
        for record in history:
            for res in record.results:
                for guesser_id, value in res.guesses.items():
                    diff = abs(value - res.secret_number)
                    total, count = given.get(guesser_id, (0, 0))
                    given[guesser_id] = (total + diff, count + 1)
                    total, count = received.get(res.player_id, (0, 0))
                    received[res.player_id] = (total + diff, count + 1)
        return given, received

    @staticmethod
    def _averages(totals: Dict[str, Tuple[int, int]], roster: Sequence[str]) -> Dict[str, float]:
        # Players with no data have no average and take no part in the award.
        return {
            pid: totals[pid][0] / totals[pid][1]
            for pid in roster
            if pid in totals and totals[pid][1] > 0
        }

    @staticmethod
    def _grant_extremes(
        awards: Dict[str, List[SpecialAward]],
        averages: Dict[str, float],
        best: Tuple[str, str, int],
        worst: Tuple[str, str, int],
    ) -> None:
        if not averages:
            return
        # min()/max() keep the first of equal values, i.e. roster order breaks ties
        best_id = min(averages, key=lambda pid: averages[pid])
        worst_id = max(averages, key=lambda pid: averages[pid])
        awards[best_id].append(_award(best))
        if worst_id != best_id:
            awards[worst_id].append(_award(worst))

    # ── Scoring pass ──────────────────────────────────────────────────────────

    def settle_round(
        self,
        players: Sequence[Player],
        results: Sequence[RoundResult],
        history: Sequence[RoundRecord],
    ) -> List[Player]:
        """
        Apply one round's results to the roster.

        `history` must already contain the round being settled; the special
        awards are computed from all of it, perfect matches only from `results`.

        Steps:
          1. score_history += gain, cumulative += gain, round score = gain
          2. special awards (+20/−20 ×2) and perfect matches (+20 each)
          3. rank by round score; +100/+50/+30 for ranks 1–3
          4. every bonus lands in both the round score and the cumulative score
          5. awards replaced wholesale; title from the post-bonus round score

        Returns the players in rank order.
        """
        roster = [p.id for p in players]
        by_player = {r.player_id: r for r in results}

        awards: Dict[str, List[SpecialAward]] = {pid: [] for pid in roster}
        given, received = self.accuracy_totals(history)
        self._grant_extremes(awards, self._averages(given, roster), TRUE_UNDERSTANDER, WHIFF)
        self._grant_extremes(awards, self._averages(received, roster), RESONATOR, ZERO_EMPATHY)

        for res in results:
            for guesser_id, value in res.guesses.items():
                if value == res.secret_number and guesser_id in awards:
                    awards[guesser_id].append(_award(PERFECT_MATCH))

        settled: List[Player] = []
        for p in players:
            result = by_player.get(p.id)
            if result is None:
                logger.warning("settle_round: no result for player %s — counting a zero gain", p.id)
            gain = result.score_gain if result else 0
            award_bonus = sum(a.bonus for a in awards[p.id])
            settled.append(p.model_copy(update={
                "score_history": [*p.score_history, gain],
                "cumulative_score": p.cumulative_score + gain + award_bonus,
                "score": gain + award_bonus,
                "awards": awards[p.id],
            }))

        join_order = {pid: idx for idx, pid in enumerate(roster)}
        settled.sort(key=lambda p: (-p.score, -p.cumulative_score, join_order[p.id]))

        ranked: List[Player] = []
        for idx, p in enumerate(settled):
            bonus = RANK_BONUSES[idx] if idx < len(RANK_BONUSES) else 0
            player_awards = list(p.awards)
            if bonus:
                player_awards.append(SpecialAward(
                    name=f"Rank {idx + 1}", description="Rank bonus", bonus=bonus,
                ))
            score = p.score + bonus
            ranked.append(p.model_copy(update={
                "score": score,
                "cumulative_score": p.cumulative_score + bonus,
                "awards": player_awards,
                "title": self.pick_title(score, len(players)),
            }))

        return ranked

    # ── End of game ───────────────────────────────────────────────────────────

    def finalize_standings(
        self, players: Sequence[Player], history: Sequence[RoundRecord]
    ) -> List[Player]:
        """
        Final ranking: score is the plain sum of raw round gains — no awards,
        no rank bonuses. Ties keep join order.
        """
        completed = len(history)
        final: List[Player] = []
        for p in players:
            if len(p.score_history) != completed:
                logger.warning(
                    "finalize_standings: player %s has %d round scores for %d rounds",
                    p.id, len(p.score_history), completed,
                )
            total = sum(p.score_history)
            final.append(p.model_copy(update={
                "score": total,
                "awards": [],
                "title": self.pick_title(total, len(players)),
            }))

        join_order = {p.id: idx for idx, p in enumerate(players)}
        final.sort(key=lambda p: (-p.score, join_order[p.id]))
        return final

    # ── Titles ────────────────────────────────────────────────────────────────

    @staticmethod
    def title_tier(score: int, player_count: int) -> str:
        scale = max(player_count, 1) / BASE_PLAYER_COUNT
        for tier, threshold in TITLE_TIERS:
            if score >= threshold * scale:
                return tier
        return LOWEST_TIER

    def pick_title(self, score: int, player_count: int) -> str:
        tier = self.title_tier(score, player_count)
        if tier == LOWEST_TIER:
            return f"{self.rng.choice(DECORATOR_WORDS)} {self.rng.choice(DANGER_WORDS)}"
        return self.rng.choice(_TIER_WORDS[tier])


# Module-level singleton
scoring_engine = ScoringEngine()
