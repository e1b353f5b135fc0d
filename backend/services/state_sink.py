"""
State sinks — where GameMaster intents become state.

Two implementations behind one interface:
- LocalSink: a single in-memory SessionState, no I/O. Every seat of a local
  game shares it, so every write is allowed.
- ReplicatedSink: one participant's replica of a Firestore room document.
  Field-scoped writes (own guesses, memo, colour, discussion marker, theme
  choice) are open to everyone; full-state commits only to the host.

Both keep a projection of the latest known state and notify listeners
(the TransitionEvaluator, WebSocket fan-out) when it changes.
"""
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, List, Optional

from models.errors import HostOnlyError
from models.game import SessionState, ThemeChoice

logger = logging.getLogger(__name__)

StateListener = Callable[[SessionState], Awaitable[None]]


class StateSink(ABC):

    def __init__(self, state: SessionState, player_id: str):
        self._state = state
        self.player_id = player_id
        self._listeners: List[StateListener] = []

    # ── Projection ────────────────────────────────────────────────────────────

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def room_id(self) -> Optional[str]:
        return self._state.room_id

    @property
    def is_authoritative(self) -> bool:
        """True when this sink may publish full-state commits."""
        return True

    def add_listener(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: StateListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def _publish(self, state: SessionState) -> None:
        self._state = state
        for listener in list(self._listeners):
            await listener(state)

    # ── Typed updates shared by both sinks ───────────────────────────────────

    def _guess_updates(self, player_id: str, guesses: Dict[str, int]) -> Dict[str, Any]:
        return {"all_guesses": {**self._state.all_guesses, player_id: dict(guesses)}}

    def _memo_updates(self, player_id: str, text: str) -> Dict[str, Any]:
        return {"shared_memos": {**self._state.shared_memos, player_id: text}}

    def _discussion_updates(self, player_id: str) -> Dict[str, Any]:
        return {"discussion_voted": {**self._state.discussion_voted, player_id: True}}

    def _player_updates(self, player_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        player = self._state.player(player_id).model_copy(update=fields)
        return {"players": {**self._state.players, player_id: player}}

    # ── Intents ───────────────────────────────────────────────────────────────

    @abstractmethod
    async def commit(self, updates: Dict[str, Any]) -> SessionState:
        """Full-state publish of typed top-level fields."""

    @abstractmethod
    async def write_guesses(self, player_id: str, guesses: Dict[str, int]) -> None:
        """Replace one guesser's row in the guess table."""

    @abstractmethod
    async def write_memo(self, player_id: str, text: str) -> None:
        ...

    @abstractmethod
    async def write_discussion_done(self, player_id: str) -> None:
        ...

    @abstractmethod
    async def write_player_fields(self, player_id: str, fields: Dict[str, Any]) -> None:
        """Profile fields of one player (JSON-compatible values)."""

    @abstractmethod
    async def write_theme_choice(self, choice: ThemeChoice) -> None:
        """A turn player's theme pick, committed later by the host."""


class LocalSink(StateSink):
    """Direct in-memory apply for single-device games."""

    async def commit(self, updates: Dict[str, Any]) -> SessionState:
        await self._publish(self._state.apply(updates))
        return self._state

    async def write_guesses(self, player_id: str, guesses: Dict[str, int]) -> None:
        await self._publish(self._state.apply(self._guess_updates(player_id, guesses)))

    async def write_memo(self, player_id: str, text: str) -> None:
        await self._publish(self._state.apply(self._memo_updates(player_id, text)))

    async def write_discussion_done(self, player_id: str) -> None:
        await self._publish(self._state.apply(self._discussion_updates(player_id)))

    async def write_player_fields(self, player_id: str, fields: Dict[str, Any]) -> None:
        await self._publish(self._state.apply(self._player_updates(player_id, fields)))

    async def write_theme_choice(self, choice: ThemeChoice) -> None:
        await self._publish(self._state.apply({"pending_theme": choice}))


class ReplicatedSink(StateSink):
    """
    Writes go to the shared Firestore document. The projection is updated
    optimistically; listeners fire only when the document snapshot arrives
    (see receive()), so everybody reacts to the same merged view.
    """

    def __init__(self, firestore, state: SessionState, player_id: str):
        super().__init__(state, player_id)
        self._fs = firestore

    @property
    def is_authoritative(self) -> bool:
        return self._state.is_host(self.player_id)

    async def receive(self, state: SessionState) -> None:
        """Snapshot from the document store replaces the projection."""
        await self._publish(state)

    async def commit(self, updates: Dict[str, Any]) -> SessionState:
        if not self.is_authoritative:
            raise HostOnlyError("Only the host can publish the game state")
        payload = self._state.serialize_updates(updates)
        await self._fs.update_room(self.room_id, payload)
        self._state = self._state.apply(updates)
        return self._state

    async def write_guesses(self, player_id: str, guesses: Dict[str, int]) -> None:
        await self._fs.patch(self.room_id, ("all_guesses",), {player_id: dict(guesses)})
        self._state = self._state.apply(self._guess_updates(player_id, guesses))

    async def write_memo(self, player_id: str, text: str) -> None:
        await self._fs.patch(self.room_id, ("shared_memos",), {player_id: text})
        self._state = self._state.apply(self._memo_updates(player_id, text))

    async def write_discussion_done(self, player_id: str) -> None:
        await self._fs.patch(self.room_id, ("discussion_voted",), {player_id: True})
        self._state = self._state.apply(self._discussion_updates(player_id))

    async def write_player_fields(self, player_id: str, fields: Dict[str, Any]) -> None:
        await self._fs.patch(self.room_id, ("players", player_id), fields)
        self._state = self._state.apply(self._player_updates(player_id, fields))

    async def write_theme_choice(self, choice: ThemeChoice) -> None:
        await self._fs.update_room(self.room_id, {"pending_theme": choice.model_dump(mode="json")})
        self._state = self._state.apply({"pending_theme": choice})
