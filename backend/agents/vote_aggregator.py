"""
Vote Aggregator — guess tables and memos, no I/O.

Responsibilities:
- Guess and memo recording (a resubmission overwrites)
- "Everyone has placed everyone" detection
- Discussion re-adjustment: one revision per player, touching one target
- Host forced completion with uniform synthetic fills
- Synthetic guesses for NPC players

Tables are treated as values: every operation returns a new mapping.
"""
import logging
import random
from typing import Dict, List, Mapping, Optional, Sequence

from models.errors import GameError
from models.game import SECRET_MAX, SECRET_MIN, GuessTable, Player

logger = logging.getLogger(__name__)

MEMO_MAX_LENGTH = 40

# NPC guesses land near the true number, occasionally far off.
NPC_NEAR_SPREAD = 10
NPC_FAR_SPREAD = 30
NPC_FAR_CHANCE = 0.2


def _clamp(value: int) -> int:
    return max(SECRET_MIN, min(SECRET_MAX, value))


def validate_guess(guesser_id: str, target_id: str, value: int) -> int:
    if guesser_id == target_id:
        raise GameError("You cannot place your own number", code="INVALID_GUESS")
    if isinstance(value, bool) or not isinstance(value, int):
        raise GameError("Guesses must be whole numbers", code="INVALID_GUESS")
    if not SECRET_MIN <= value <= SECRET_MAX:
        raise GameError(f"Guesses must be between {SECRET_MIN} and {SECRET_MAX}", code="INVALID_GUESS")
    return value


class DiscussionDraft:
    """
    One player's editable placements during discussion.

    Only one target may differ from the pre-discussion snapshot at a time:
    moving a different target snaps the previously edited one back.
    """

    def __init__(self, snapshot: Mapping[str, int]):
        self._snapshot: Dict[str, int] = dict(snapshot)
        self._values: Dict[str, int] = dict(snapshot)
        self.editing: Optional[str] = None

    def select(self, target_id: str) -> None:
        if self.editing is not None and self.editing != target_id:
            previous = self.editing
            if previous in self._snapshot:
                self._values[previous] = self._snapshot[previous]
            else:
                self._values.pop(previous, None)
        self.editing = target_id

    def move(self, target_id: str, value: int) -> None:
        if not SECRET_MIN <= value <= SECRET_MAX:
            raise GameError(f"Guesses must be between {SECRET_MIN} and {SECRET_MAX}", code="INVALID_GUESS")
        self.select(target_id)
        self._values[target_id] = value

    def reset(self) -> None:
        self._values = dict(self._snapshot)
        self.editing = None

    @property
    def values(self) -> Dict[str, int]:
        return dict(self._values)

    def diverged(self) -> List[str]:
        return [t for t, v in self._values.items() if self._snapshot.get(t) != v]


class VoteAggregator:

    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()

    # ── Recording ─────────────────────────────────────────────────────────────

    def record_guess(self, table: GuessTable, guesser_id: str, target_id: str, value: int) -> GuessTable:
        value = validate_guess(guesser_id, target_id, value)
        row = {**table.get(guesser_id, {}), target_id: value}
        return {**table, guesser_id: row}

    @staticmethod
    def clean_memo(text: str) -> str:
        return text.strip()[:MEMO_MAX_LENGTH]

    def record_memo(self, memos: Mapping[str, str], player_id: str, text: str) -> Dict[str, str]:
        return {**memos, player_id: self.clean_memo(text)}

    # ── Completeness ──────────────────────────────────────────────────────────

    @staticmethod
    def is_complete(players: Sequence[Player], table: GuessTable) -> bool:
        """Every player has an entry with a guess for each of the other players."""
        ids = {p.id for p in players}
        if not ids:
            return False
        for pid in ids:
            row = table.get(pid)
            if row is None:
                return False
            placed = sum(1 for target in row if target in ids and target != pid)
            if placed != len(ids) - 1:
                return False
        return True

    @staticmethod
    def is_discussion_complete(players: Sequence[Player], discussion_voted: Mapping[str, bool]) -> bool:
        return bool(players) and all(discussion_voted.get(p.id) for p in players)

    # ── Host fallback ─────────────────────────────────────────────────────────

    def force_complete(self, players: Sequence[Player], table: GuessTable) -> GuessTable:
        """
        Fill every missing (guesser, target) pair with a uniform draw from 1–100.
        Existing guesses are kept. No bias toward the true number.
        """
        filled: GuessTable = {}
        synthesized = 0
        for guesser in players:
            row = dict(table.get(guesser.id, {}))
            for target in players:
                if target.id == guesser.id or target.id in row:
                    continue
                row[target.id] = self.rng.randint(SECRET_MIN, SECRET_MAX)
                synthesized += 1
            filled[guesser.id] = row
        if synthesized:
            logger.info("force_complete: synthesized %d guesses", synthesized)
        return filled

    # ── Discussion ────────────────────────────────────────────────────────────

    @staticmethod
    def apply_revision(snapshot: Mapping[str, int], revised: Mapping[str, int]) -> Dict[str, int]:
        """
        Merge a discussion revision into the pre-discussion row.
        At most one target may end up with a different value.
        """
        merged = {**snapshot, **revised}
        changed = [t for t, v in merged.items() if snapshot.get(t) != v]
        if len(changed) > 1:
            raise GameError(
                "During discussion you can move only one player's placement",
                code="TOO_MANY_CHANGES",
            )
        return merged

    # ── NPCs ──────────────────────────────────────────────────────────────────

    def npc_guesses(self, guesser_id: str, players: Sequence[Player]) -> Dict[str, int]:
        guesses: Dict[str, int] = {}
        for target in players:
            if target.id == guesser_id:
                continue
            spread = NPC_FAR_SPREAD if self.rng.random() < NPC_FAR_CHANCE else NPC_NEAR_SPREAD
            offset = self.rng.randint(-spread, spread - 1)
            guesses[target.id] = _clamp(target.secret_number + offset)
        return guesses

    def fill_npc_guesses(self, players: Sequence[Player], table: GuessTable) -> GuessTable:
        filled = dict(table)
        for p in players:
            if p.is_npc and p.id not in filled:
                filled[p.id] = self.npc_guesses(p.id, players)
        return filled


# Module-level singleton
vote_aggregator = VoteAggregator()
