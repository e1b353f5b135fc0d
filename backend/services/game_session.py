"""
Game sessions — the outward operations facade.

GameSession binds a StateSink to a TransitionEvaluator and exposes the
GameMaster actions. A local game is a single GameSession over a LocalSink;
a networked room has one RoomReplica per participant, each subscribed to
the room document.
"""
import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional

from models.errors import RoomNotFoundError
from models.game import GameSettings, Phase, Player, SessionState, Theme
from agents.game_master import GameMaster, game_master
from services.state_sink import ReplicatedSink, StateListener, StateSink
from services.transition_evaluator import TransitionEvaluator

logger = logging.getLogger(__name__)

REVEAL_PHASES = (Phase.RESULT, Phase.FINAL_RESULT)


class GameSession:

    def __init__(self, sink: StateSink, master: Optional[GameMaster] = None, settle_delay: float = 0.0):
        self.sink = sink
        self.master = master or game_master
        self.evaluator = TransitionEvaluator(sink, self.master, settle_delay)

    @property
    def room_id(self) -> Optional[str]:
        return self.sink.room_id

    @property
    def state(self) -> SessionState:
        return self.sink.state

    def add_listener(self, listener: StateListener) -> None:
        self.sink.add_listener(listener)

    def remove_listener(self, listener: StateListener) -> None:
        self.sink.remove_listener(listener)

    def close(self) -> None:
        self.evaluator.close()

    def view(self, player_id: Optional[str] = None) -> Dict[str, Any]:
        """
        State as one player may see it. Until results, other players' numbers
        stay hidden, and so do NPC guess rows, which sit close to the true numbers.
        """
        state = self.state
        reveal = state.phase in REVEAL_PHASES
        data = state.to_document()
        data["room_id"] = state.room_id
        data["players"] = {
            pid: p.to_public(reveal_secret=reveal or pid == player_id)
            for pid, p in state.players.items()
        }
        if not reveal:
            npc_ids = {p.id for p in state.players.values() if p.is_npc}
            data["all_guesses"] = {
                pid: row for pid, row in data["all_guesses"].items() if pid not in npc_ids
            }
        data["player_order"] = [p.id for p in state.ordered_players()]
        return data

    # ── Actions ───────────────────────────────────────────────────────────────

    def _ensure_open(self) -> None:
        """Raise before acting on a session that can no longer be written."""

    async def start_game(self, player_id: str, game_settings: Optional[GameSettings] = None) -> SessionState:
        self._ensure_open()
        return await self.master.start_game(self.sink, player_id, game_settings)

    async def select_theme(self, player_id: str, theme: Theme) -> None:
        self._ensure_open()
        await self.master.select_theme(self.sink, player_id, theme)

    async def submit_votes(self, player_id: str, guesses: Dict[str, int], memo: str = "") -> None:
        self._ensure_open()
        await self.master.submit_votes(self.sink, player_id, guesses, memo)

    async def update_memo(self, player_id: str, text: str) -> None:
        self._ensure_open()
        await self.master.update_memo(self.sink, player_id, text)

    async def force_progress(self, player_id: str) -> None:
        self._ensure_open()
        await self.master.force_progress(self.sink, player_id)

    async def next_round(self, player_id: str) -> SessionState:
        self._ensure_open()
        return await self.master.next_round(self.sink, player_id)

    async def return_to_lobby(self, player_id: str) -> SessionState:
        self._ensure_open()
        return await self.master.return_to_lobby(self.sink, player_id)

    async def update_color(self, player_id: str, color: str) -> None:
        self._ensure_open()
        await self.master.update_color(self.sink, player_id, color)

    async def add_npc_players(self, player_id: str, count: int) -> List[Player]:
        self._ensure_open()
        return await self.master.add_npc_players(self.sink, player_id, count)


class RoomReplica(GameSession):
    """One participant's replica of a networked room."""

    def __init__(
        self,
        firestore,
        state: SessionState,
        player_id: str,
        master: Optional[GameMaster] = None,
        settle_delay: float = 0.0,
    ):
        super().__init__(ReplicatedSink(firestore, state, player_id), master, settle_delay)
        self.player_id = player_id
        self._fs = firestore
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._unsubscribe: Optional[Callable[[], None]] = None
        self.deleted = False

    def start(self) -> None:
        """Subscribe to the room document. Must be called from the event loop."""
        self._loop = asyncio.get_running_loop()
        self._unsubscribe = self._fs.subscribe(self.room_id, self._on_snapshot)
        logger.info(f"[{self.room_id}] Replica for {self.player_id} subscribed")

    def close(self) -> None:
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None
            logger.info(f"[{self.room_id}] Replica for {self.player_id} unsubscribed")
        super().close()

    def _ensure_open(self) -> None:
        if self.deleted:
            raise RoomNotFoundError(self.room_id)

    def _on_snapshot(self, state: Optional[SessionState]) -> None:
        # Firestore calls this on its own listener thread.
        if self._loop is None or self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(self._dispatch, state)

    def _dispatch(self, state: Optional[SessionState]) -> None:
        if state is None:
            logger.warning(f"[{self.room_id}] Room document disappeared")
            self.deleted = True
            return
        asyncio.ensure_future(self._receive(state))

    async def _receive(self, state: SessionState) -> None:
        try:
            await self.sink.receive(state)
        except Exception:
            logger.exception(f"[{self.room_id}] Snapshot handling failed for {self.player_id}")
