"""
Game Master — deterministic game progression, no I/O of its own.

Responsibilities:
- Phase transitions (Lobby → Setting → Game → (Discussion) → Result → Final Result → Lobby)
- Host actions: start, force progress, next round, return to lobby, NPC seats
- Player actions: theme choice, vote batches, memos, colour
- Derived transitions the host evaluates from the shared state
  (theme picked, everyone placed, everyone done discussing)

Every effect is expressed as an intent on a StateSink; the sink decides
whether it lands in memory or in the shared room document.
"""
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Dict, FrozenSet, List, Optional, Tuple

from config import settings
from models.errors import GameError, HostOnlyError, InvalidPhaseError
from models.game import (
    COLOR_PALETTE, GameSettings, GuessTable, Phase, Player, ROOKIE_TITLE,
    RoundRecord, SessionState, Theme, ThemeChoice,
)
from models.themes import NPC_NAMES
from agents.round_orchestrator import RoundOrchestrator, round_orchestrator
from agents.scoring_engine import ScoringEngine, scoring_engine
from agents.vote_aggregator import VoteAggregator, vote_aggregator
from services.state_sink import StateSink

logger = logging.getLogger(__name__)

# (game_number, round_count, phase): identifies one logical round step
TransitionKey = Tuple[int, int, Phase]


class PhaseStateMachine:
    """Legal phase moves. Anything else is an InvalidPhaseError."""

    TRANSITIONS: Dict[Phase, FrozenSet[Phase]] = {
        Phase.LOBBY: frozenset({Phase.SETTING}),
        Phase.SETTING: frozenset({Phase.GAME, Phase.LOBBY}),
        Phase.GAME: frozenset({Phase.DISCUSSION, Phase.RESULT, Phase.LOBBY}),
        Phase.DISCUSSION: frozenset({Phase.RESULT, Phase.LOBBY}),
        Phase.RESULT: frozenset({Phase.SETTING, Phase.FINAL_RESULT, Phase.LOBBY}),
        Phase.FINAL_RESULT: frozenset({Phase.LOBBY}),
    }

    def can_transition(self, current: Phase, target: Phase) -> bool:
        return target in self.TRANSITIONS.get(current, frozenset())

    def require(self, current: Phase, target: Phase) -> None:
        if not self.can_transition(current, target):
            raise InvalidPhaseError(f"Cannot move from {current.value} to {target.value}")

    @staticmethod
    def require_phase(state: SessionState, *phases: Phase) -> None:
        if state.phase not in phases:
            allowed = " or ".join(p.value for p in phases)
            raise InvalidPhaseError(f"This action is only available during {allowed}")


def clean_player_name(name: str) -> str:
    name = (name or "").strip()
    if not name:
        raise GameError("Please enter a name", code="NAME_REQUIRED")
    if len(name) > settings.max_name_length:
        raise GameError(
            f"Names can be at most {settings.max_name_length} characters", code="NAME_TOO_LONG"
        )
    return name


def free_colors(state: SessionState) -> List[str]:
    taken = {p.color for p in state.players.values()}
    return [c for c in COLOR_PALETTE if c not in taken]


def new_player(state: SessionState, name: str, is_host: bool = False, is_npc: bool = False) -> Player:
    """A fresh seat with the first free colour. The roster is capped by the palette."""
    colors = free_colors(state)
    if not colors:
        raise GameError("This room is full", code="ROOM_FULL")
    return Player(
        id=uuid.uuid4().hex,
        name=name,
        color=colors[0],
        is_host=is_host,
        is_npc=is_npc,
    )


class GameMaster:
    """
    Deterministic game logic engine.
    Each action takes the session's StateSink and the acting player's id,
    validates against the current projection, then writes.
    """

    def __init__(
        self,
        orchestrator: Optional[RoundOrchestrator] = None,
        aggregator: Optional[VoteAggregator] = None,
        scoring: Optional[ScoringEngine] = None,
    ):
        self.orchestrator = orchestrator or round_orchestrator
        self.aggregator = aggregator or vote_aggregator
        self.scoring = scoring or scoring_engine
        self.machine = PhaseStateMachine()

    @staticmethod
    def _require_host(state: SessionState, player_id: str) -> None:
        state.player(player_id)
        if not state.is_host(player_id):
            raise HostOnlyError("Only the host can do that")

    # ── Lobby ─────────────────────────────────────────────────────────────────

    async def start_game(
        self, sink: StateSink, player_id: str, game_settings: Optional[GameSettings] = None
    ) -> SessionState:
        state = sink.state
        self._require_host(state, player_id)
        self.machine.require(state.phase, Phase.SETTING)
        if len(state.players) < settings.min_players:
            raise GameError(
                f"At least {settings.min_players} players are needed to start",
                code="NOT_ENOUGH_PLAYERS",
            )

        game_settings = game_settings or state.settings
        setup = self.orchestrator.start_round(
            state.ordered_players(), 0, game_settings,
            state.used_theme_texts, state.past_turn_player_ids,
        )
        updates = setup.to_updates(state)
        updates.update({
            "settings": game_settings,
            "game_number": state.game_number + 1,
            "game_history": [],
        })
        new_state = await sink.commit(updates)
        logger.info(
            f"[{state.room_id}] Game {new_state.game_number} started with "
            f"{len(state.players)} players (mode={game_settings.game_mode.value}, "
            f"discussion={game_settings.is_discussion_enabled})"
        )
        return new_state

    async def update_color(self, sink: StateSink, player_id: str, color: str) -> None:
        state = sink.state
        player = state.player(player_id)
        self.machine.require_phase(state, Phase.LOBBY)
        if color not in COLOR_PALETTE:
            raise GameError("That colour is not available", code="INVALID_COLOR")
        if color == player.color:
            return
        if any(p.color == color for p in state.players.values() if p.id != player_id):
            raise GameError("That colour is already taken", code="COLOR_TAKEN")
        await sink.write_player_fields(player_id, {"color": color})

    async def add_npc_players(self, sink: StateSink, player_id: str, count: int) -> List[Player]:
        state = sink.state
        self._require_host(state, player_id)
        self.machine.require_phase(state, Phase.LOBBY)
        if count < 1:
            raise GameError("Add at least one NPC", code="INVALID_COUNT")

        colors = free_colors(state)
        if count > len(colors):
            raise GameError(f"Only {len(colors)} more players fit in this room", code="ROOM_FULL")

        taken_names = {p.name for p in state.players.values()}
        names = [n for n in NPC_NAMES if n not in taken_names]
        base_time = datetime.now(timezone.utc)
        added: List[Player] = []
        for idx in range(count):
            name = names[idx] if idx < len(names) else f"NPC {len(taken_names) + idx + 1}"
            added.append(Player(
                id=uuid.uuid4().hex,
                name=name,
                color=colors[idx],
                is_npc=True,
                joined_at=base_time + timedelta(microseconds=idx),
            ))

        await sink.commit({"players": {**state.players, **{p.id: p for p in added}}})
        logger.info(f"[{state.room_id}] Added {count} NPC player(s)")
        return added

    # ── Setting ───────────────────────────────────────────────────────────────

    async def select_theme(self, sink: StateSink, player_id: str, theme: Theme) -> None:
        """
        The turn player (or the host) fixes the round's theme.
        A non-host replica cannot commit the phase change itself, so it
        records its choice and the host's evaluator commits it.
        """
        state = sink.state
        state.player(player_id)
        self.machine.require_phase(state, Phase.SETTING)
        if player_id != state.current_turn_player_id and not state.is_host(player_id):
            raise GameError("Only the turn player or the host can choose the theme", code="NOT_YOUR_TURN")

        theme = self.orchestrator.validate_theme_choice(state, theme)
        if sink.is_authoritative:
            await self._enter_game(sink, theme)
        else:
            await sink.write_theme_choice(ThemeChoice(player_id=player_id, theme=theme))
            logger.info(f"[{state.room_id}] Theme choice by {player_id} sent to host")

    async def _enter_game(self, sink: StateSink, theme: Theme) -> None:
        state = sink.state
        self.machine.require(state.phase, Phase.GAME)
        players = state.ordered_players()
        table = self.aggregator.fill_npc_guesses(players, state.all_guesses)
        used = state.used_theme_texts
        # Only catalog texts take part in pool exhaustion.
        if self.orchestrator.is_catalog_theme(theme):
            used = used | {theme.text}
        await sink.commit({
            "phase": Phase.GAME,
            "current_theme": theme,
            "used_theme_texts": used,
            "pending_theme": None,
            "all_guesses": table,
        })
        logger.info(f"[{state.room_id}] Phase: SETTING → GAME (round {state.round_count}, theme={theme.text!r})")

    # ── Game / Discussion ─────────────────────────────────────────────────────

    async def submit_votes(
        self, sink: StateSink, player_id: str, guesses: Dict[str, int], memo: str = ""
    ) -> None:
        """
        One player's vote batch. In GAME it must place every other player;
        in DISCUSSION it is the single allowed revision and may move one
        placement only.
        """
        state = sink.state
        state.player(player_id)
        self.machine.require_phase(state, Phase.GAME, Phase.DISCUSSION)
        batch: GuessTable = {}
        for target_id, value in guesses.items():
            state.player(target_id)
            batch = self.aggregator.record_guess(batch, player_id, target_id, value)
        placed = batch.get(player_id, {})

        if state.phase == Phase.GAME:
            missing = [pid for pid in state.players if pid != player_id and pid not in placed]
            if missing:
                raise GameError("Place every other player before submitting", code="INCOMPLETE_PLACEMENTS")
            row = placed
        else:
            if state.discussion_voted.get(player_id):
                raise GameError("You have already submitted your adjustment", code="ALREADY_SUBMITTED")
            row = self.aggregator.apply_revision(state.all_guesses.get(player_id, {}), placed)

        if memo:
            memos = self.aggregator.record_memo(state.shared_memos, player_id, memo)
            await sink.write_memo(player_id, memos[player_id])
        await sink.write_guesses(player_id, row)
        if state.phase == Phase.DISCUSSION:
            await sink.write_discussion_done(player_id)

    async def update_memo(self, sink: StateSink, player_id: str, text: str) -> None:
        state = sink.state
        state.player(player_id)
        self.machine.require_phase(state, Phase.GAME, Phase.DISCUSSION)
        memos = self.aggregator.record_memo(state.shared_memos, player_id, text)
        await sink.write_memo(player_id, memos[player_id])

    async def force_progress(self, sink: StateSink, player_id: str) -> None:
        """Host fallback for stalled rounds: synthesize the missing guesses and score."""
        state = sink.state
        self._require_host(state, player_id)
        self.machine.require_phase(state, Phase.GAME, Phase.DISCUSSION)
        table = self.aggregator.force_complete(state.ordered_players(), state.all_guesses)
        logger.info(f"[{state.room_id}] Host forced completion in {state.phase.value}")
        await self._score_and_publish(sink, table)

    async def _score_and_publish(self, sink: StateSink, table: GuessTable) -> None:
        state = sink.state
        self.machine.require(state.phase, Phase.RESULT)
        players = state.ordered_players()

        results = self.scoring.score_round(players, table)
        history = [*state.game_history, RoundRecord(round_index=state.round_count, results=results)]
        ranked = self.scoring.settle_round(players, results, history)

        await sink.commit({
            "phase": Phase.RESULT,
            "all_guesses": table,
            "round_results": results,
            "game_history": history,
            "players": {p.id: p for p in ranked},
        })
        scores = ", ".join(f"{p.name}={p.score:+d}" for p in ranked)
        logger.info(f"[{state.room_id}] Phase: {state.phase.value} → RESULT (round {state.round_count}): {scores}")

    # ── Result ────────────────────────────────────────────────────────────────

    async def next_round(self, sink: StateSink, player_id: str) -> SessionState:
        state = sink.state
        self._require_host(state, player_id)
        self.machine.require_phase(state, Phase.RESULT)
        players = state.ordered_players()
        next_index = state.round_count + 1

        if next_index >= len(players):
            final = self.scoring.finalize_standings(players, state.game_history)
            new_state = await sink.commit({
                "phase": Phase.FINAL_RESULT,
                "players": {p.id: p for p in final},
            })
            logger.info(f"[{state.room_id}] Phase: RESULT → FINAL_RESULT after {len(state.game_history)} rounds")
            return new_state

        setup = self.orchestrator.start_round(
            players, next_index, state.settings,
            state.used_theme_texts, state.past_turn_player_ids,
        )
        new_state = await sink.commit(setup.to_updates(state))
        logger.info(f"[{state.room_id}] Phase: RESULT → SETTING (round {next_index})")
        return new_state

    async def return_to_lobby(self, sink: StateSink, player_id: str) -> SessionState:
        """Reset all game data; the roster (ids, names, colours, flags) stays."""
        state = sink.state
        self._require_host(state, player_id)
        self.machine.require(state.phase, Phase.LOBBY)

        players = {
            pid: p.model_copy(update={
                "secret_number": 0,
                "score": 0,
                "score_history": [],
                "cumulative_score": 0,
                "title": ROOKIE_TITLE,
                "awards": [],
                "is_ready": False,
            })
            for pid, p in state.players.items()
        }
        new_state = await sink.commit({
            "phase": Phase.LOBBY,
            "players": players,
            "round_count": 0,
            "current_theme": None,
            "theme_candidates": [],
            "current_turn_player_id": None,
            "past_turn_player_ids": frozenset(),
            "pending_theme": None,
            "shared_memos": {},
            "all_guesses": {},
            "discussion_voted": {},
            "round_results": [],
            "game_history": [],
        })
        logger.info(f"[{state.room_id}] Phase: {state.phase.value} → LOBBY")
        return new_state

    # ── Derived transitions (host only) ───────────────────────────────────────

    def pending_transition(self, state: SessionState) -> Optional[TransitionKey]:
        """The round step that the current state says should be committed, if any."""
        key = (state.game_number, state.round_count, state.phase)
        if state.phase == Phase.SETTING:
            choice = state.pending_theme
            if choice and (choice.player_id == state.current_turn_player_id or state.is_host(choice.player_id)):
                return key
        elif state.phase == Phase.GAME:
            if self.aggregator.is_complete(state.ordered_players(), state.all_guesses):
                return key
        elif state.phase == Phase.DISCUSSION:
            if self.aggregator.is_discussion_complete(state.ordered_players(), state.discussion_voted):
                return key
        return None

    async def resolve(self, sink: StateSink) -> Optional[Phase]:
        """
        Commit the derived transition for the current state.
        Returns the phase entered, or None if nothing was due.
        """
        state = sink.state
        if self.pending_transition(state) is None:
            return None

        if state.phase == Phase.SETTING:
            await self._enter_game(sink, state.pending_theme.theme)
            return Phase.GAME

        if state.phase == Phase.GAME and state.settings.is_discussion_enabled:
            self.machine.require(state.phase, Phase.DISCUSSION)
            voted = {p.id: True for p in state.players.values() if p.is_npc}
            await sink.commit({"phase": Phase.DISCUSSION, "discussion_voted": voted})
            logger.info(f"[{state.room_id}] Phase: GAME → DISCUSSION (round {state.round_count})")
            return Phase.DISCUSSION

        await self._score_and_publish(sink, state.all_guesses)
        return Phase.RESULT


# Module-level singleton
game_master = GameMaster()
