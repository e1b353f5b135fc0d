"""
Round Orchestrator — per-round setup, no I/O.

Responsibilities:
- Distinct secret numbers for every player (rejection sampling over 1–100)
- Turn-player rotation: everyone picks a theme once before anyone repeats
- Two theme candidates per round; a theme is not offered again until its
  genre pool runs dry
- Custom theme validation for ORIGINAL mode
"""
import logging
import random
from typing import Any, Dict, FrozenSet, List, Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict

from models.errors import GameError
from models.game import (
    SECRET_MAX, SECRET_MIN, GameMode, GameSettings, Genre, Phase, Player,
    SessionState, Theme,
)
from models.themes import THEMES

logger = logging.getLogger(__name__)

THEME_CANDIDATE_COUNT = 2


class RoundSetup(BaseModel):
    """Everything that changes when a round begins."""
    model_config = ConfigDict(frozen=True)

    round_index: int
    secret_numbers: Dict[str, int]
    turn_player_id: str
    past_turn_player_ids: FrozenSet[str]
    theme_candidates: List[Theme]
    used_theme_texts: FrozenSet[str]

    def to_updates(self, state: SessionState) -> Dict[str, Any]:
        """Top-level SessionState updates that publish this setup and clear round-scoped data."""
        players = {
            pid: p.model_copy(update={
                "secret_number": self.secret_numbers.get(pid, p.secret_number),
                "awards": [],
                "is_ready": False,
            })
            for pid, p in state.players.items()
        }
        return {
            "phase": Phase.SETTING,
            "round_count": self.round_index,
            "players": players,
            "current_theme": None,
            "theme_candidates": list(self.theme_candidates),
            "used_theme_texts": self.used_theme_texts,
            "current_turn_player_id": self.turn_player_id,
            "past_turn_player_ids": self.past_turn_player_ids,
            "pending_theme": None,
            "all_guesses": {},
            "shared_memos": {},
            "discussion_voted": {},
            "round_results": [],
        }


def theme_pool(game_settings: GameSettings, catalog: Sequence[Theme] = THEMES) -> List[Theme]:
    """Genre-filtered catalog. Falls back to NORMAL, then to everything."""
    genres = set()
    if game_settings.include_normal_themes:
        genres.add(Genre.NORMAL)
    if game_settings.include_abnormal_themes:
        genres.add(Genre.ABNORMAL)

    pool = [t for t in catalog if t.genre in genres]
    if not pool:
        pool = [t for t in catalog if t.genre == Genre.NORMAL]
    if not pool:
        pool = list(catalog)
    return pool


class RoundOrchestrator:

    def __init__(self, rng: Optional[random.Random] = None, catalog: Sequence[Theme] = THEMES):
        self.rng = rng or random.Random()
        self.catalog = list(catalog)

    # ── Secret numbers ────────────────────────────────────────────────────────

    def assign_numbers(self, players: Sequence[Player]) -> Dict[str, int]:
        span = SECRET_MAX - SECRET_MIN + 1
        if len(players) > span:
            raise ValueError(f"Cannot assign distinct numbers to {len(players)} players (max {span})")

        used: set = set()
        numbers: Dict[str, int] = {}
        for p in players:
            value = self.rng.randint(SECRET_MIN, SECRET_MAX)
            while value in used:
                value = self.rng.randint(SECRET_MIN, SECRET_MAX)
            used.add(value)
            numbers[p.id] = value
        return numbers

    # ── Turn player ───────────────────────────────────────────────────────────

    def pick_turn_player(
        self, players: Sequence[Player], past_turn_player_ids: FrozenSet[str]
    ) -> Tuple[str, FrozenSet[str]]:
        """
        Uniform pick among players who have not had a turn yet.
        When everyone has had one, the tracking set starts over.
        Returns (chosen id, updated tracking set).
        """
        roster = [p.id for p in players]
        candidates = [pid for pid in roster if pid not in past_turn_player_ids]
        if not candidates:
            past_turn_player_ids = frozenset()
            candidates = roster
        chosen = self.rng.choice(candidates)
        return chosen, past_turn_player_ids | {chosen}

    # ── Theme candidates ──────────────────────────────────────────────────────

    def pick_theme_candidates(
        self, game_settings: GameSettings, used_theme_texts: FrozenSet[str]
    ) -> Tuple[List[Theme], FrozenSet[str]]:
        """
        Draw two distinct, not-yet-used themes from the genre pool.

        If fewer than two unused themes remain, only this pool's texts are
        dropped from the used set (other pools keep their history) and the
        draw is made from the whole pool.
        Returns (candidates, updated used set).
        """
        pool = theme_pool(game_settings, self.catalog)
        available = [t for t in pool if t.text not in used_theme_texts]

        if len(available) < THEME_CANDIDATE_COUNT:
            pool_texts = {t.text for t in pool}
            logger.info(
                "Theme pool exhausted (%d unused of %d) — resetting its used texts",
                len(available), len(pool),
            )
            used_theme_texts = used_theme_texts - pool_texts
            available = pool

        count = min(THEME_CANDIDATE_COUNT, len(available))
        return self.rng.sample(available, count), used_theme_texts

    # ── Round setup ───────────────────────────────────────────────────────────

    def start_round(
        self,
        players: Sequence[Player],
        round_index: int,
        game_settings: GameSettings,
        used_theme_texts: FrozenSet[str] = frozenset(),
        past_turn_player_ids: FrozenSet[str] = frozenset(),
    ) -> RoundSetup:
        if not players:
            raise ValueError("Cannot start a round with no players")

        numbers = self.assign_numbers(players)
        turn_player_id, past = self.pick_turn_player(players, past_turn_player_ids)

        if game_settings.game_mode == GameMode.AUTO:
            candidates, used = self.pick_theme_candidates(game_settings, used_theme_texts)
        else:
            # ORIGINAL mode: the turn player writes the theme
            candidates, used = [], used_theme_texts

        logger.info(
            "Round %d set up: turn player %s, %d candidate theme(s)",
            round_index, turn_player_id, len(candidates),
        )
        return RoundSetup(
            round_index=round_index,
            secret_numbers=numbers,
            turn_player_id=turn_player_id,
            past_turn_player_ids=past,
            theme_candidates=candidates,
            used_theme_texts=used,
        )

    # ── Theme choice ──────────────────────────────────────────────────────────

    def is_catalog_theme(self, theme: Theme) -> bool:
        return any(t.text == theme.text for t in self.catalog)

    @staticmethod
    def validate_theme_choice(state: SessionState, theme: Theme) -> Theme:
        """
        AUTO mode: the theme must be one of this round's candidates.
        ORIGINAL mode: any theme with a non-empty prompt and both pole labels.
        """
        if state.settings.game_mode == GameMode.AUTO:
            for candidate in state.theme_candidates:
                if candidate.text == theme.text:
                    return candidate
            raise GameError("Pick one of the offered themes", code="INVALID_THEME")

        text = theme.text.strip()
        min_label = theme.min_label.strip()
        max_label = theme.max_label.strip()
        if not text or not min_label or not max_label:
            raise GameError("Enter a theme and labels for both ends of the scale", code="INVALID_THEME")
        return Theme(text=text, min_label=min_label, max_label=max_label, genre=theme.genre)


# Module-level singleton
round_orchestrator = RoundOrchestrator()
