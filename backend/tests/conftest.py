"""Shared fixtures: seeded engines, in-memory lobbies, and a fake Firestore service."""

import asyncio
import copy
import os
import random
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Sequence

# Keep the host's settle delay short and never reach for real credentials.
os.environ.setdefault("HOST_SETTLE_MS", "10")
os.environ.setdefault("GOOGLE_CLOUD_PROJECT", "test-project")

import pytest

from models.game import COLOR_PALETTE, GameSettings, Player, SessionState
from agents.game_master import GameMaster
from agents.round_orchestrator import RoundOrchestrator
from agents.scoring_engine import ScoringEngine
from agents.vote_aggregator import VoteAggregator
from services.game_session import GameSession
from services.state_sink import LocalSink


# -- Builders ------------------------------------------------------------------

_EPOCH = datetime(2024, 1, 1, tzinfo=timezone.utc)


def make_player(pid: str, idx: int = 0, secret: int = 0, **kwargs) -> Player:
    """A player with a deterministic join time so roster order follows `idx`."""
    return Player(
        id=pid,
        name=kwargs.pop("name", pid.upper()),
        color=kwargs.pop("color", COLOR_PALETTE[idx]),
        secret_number=secret,
        joined_at=_EPOCH + timedelta(seconds=idx),
        **kwargs,
    )


def make_lobby(
    ids: Sequence[str] = ("alice", "bob", "carol"),
    npc_ids: Sequence[str] = (),
    room_id: str = "local-test",
    game_settings: Optional[GameSettings] = None,
) -> SessionState:
    players: Dict[str, Player] = {}
    for idx, pid in enumerate(ids):
        players[pid] = make_player(pid, idx, is_host=(idx == 0))
    for offset, pid in enumerate(npc_ids, start=len(ids)):
        players[pid] = make_player(pid, offset, is_npc=True)
    return SessionState(
        room_id=room_id,
        host_id=ids[0],
        players=players,
        settings=game_settings or GameSettings(),
    )


def make_master(seed: int = 7) -> GameMaster:
    return GameMaster(
        orchestrator=RoundOrchestrator(random.Random(seed)),
        aggregator=VoteAggregator(random.Random(seed + 1)),
        scoring=ScoringEngine(random.Random(seed + 2)),
    )


def make_local_session(state: SessionState, seed: int = 7) -> GameSession:
    return GameSession(LocalSink(state, state.host_id), master=make_master(seed))


async def settle(seconds: float = 0.1) -> None:
    """Let scheduled snapshot deliveries and deferred re-checks run."""
    await asyncio.sleep(seconds)


# -- Fake Firestore ------------------------------------------------------------

class FakeFirestore:
    """
    In-memory stand-in for FirestoreService. Documents are stored in their
    JSON shape; every write notifies subscribers with the parsed state.
    """

    def __init__(self):
        self.docs: Dict[str, Dict] = {}
        self.writes: List[tuple] = []
        self._subscribers: Dict[str, List[Callable]] = {}

    def _notify(self, room_id: str) -> None:
        doc = self.docs.get(room_id)
        state = SessionState.from_document(room_id, copy.deepcopy(doc)) if doc is not None else None
        for callback in list(self._subscribers.get(room_id, [])):
            callback(state)

    async def create_room(self, state: SessionState) -> SessionState:
        self.docs[state.room_id] = state.to_document()
        self.writes.append(("create", state.room_id))
        self._notify(state.room_id)
        return state

    async def get_room(self, room_id: str) -> Optional[SessionState]:
        doc = self.docs.get(room_id)
        if doc is None:
            return None
        return SessionState.from_document(room_id, copy.deepcopy(doc))

    async def room_exists(self, room_id: str) -> bool:
        return room_id in self.docs

    async def delete_room(self, room_id: str):
        self.docs.pop(room_id, None)
        self.writes.append(("delete", room_id))
        self._notify(room_id)

    async def update_room(self, room_id: str, updates: Dict):
        self.docs[room_id].update(copy.deepcopy(updates))
        self.writes.append(("update", room_id, tuple(sorted(updates))))
        self._notify(room_id)

    async def patch(self, room_id: str, path: Sequence[str], fields: Dict):
        target = self.docs[room_id]
        for segment in path:
            target = target.setdefault(segment, {})
        target.update(copy.deepcopy(fields))
        self.writes.append(("patch", room_id, tuple(path), tuple(sorted(fields))))
        self._notify(room_id)

    async def add_player(self, room_id: str, player: Player) -> Player:
        await self.patch(room_id, ("players",), {player.id: player.model_dump(mode="json")})
        return player

    def subscribe(self, room_id: str, on_change: Callable) -> Callable[[], None]:
        self._subscribers.setdefault(room_id, []).append(on_change)

        def _unsubscribe():
            callbacks = self._subscribers.get(room_id, [])
            if on_change in callbacks:
                callbacks.remove(on_change)

        return _unsubscribe

    def subscriber_count(self, room_id: str) -> int:
        return len(self._subscribers.get(room_id, []))


# -- Fixtures ------------------------------------------------------------------

@pytest.fixture
def rng():
    return random.Random(1234)


@pytest.fixture
def fake_fs():
    return FakeFirestore()
