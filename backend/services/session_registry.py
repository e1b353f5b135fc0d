"""
Session registry — which sessions this process is serving.

Local games live entirely in memory, keyed by room id. Networked rooms get one
RoomReplica per (room, participant); a replica is reopened from the room
document on demand, so a restarted server picks up where it left off.
"""
import logging
import random
import re
import uuid
from typing import Callable, Dict, Optional, Tuple

from config import settings
from models.errors import GameError, InvalidPhaseError, RoomNotFoundError, UnknownPlayerError
from models.game import Phase, Player, SessionState
from agents.game_master import clean_player_name, new_player
from services.firestore_service import get_firestore_service
from services.game_session import GameSession, RoomReplica
from services.state_sink import LocalSink

logger = logging.getLogger(__name__)

ROOM_CODE_PATTERN = re.compile(r"^\d{4}$")
ROOM_CODE_ATTEMPTS = 20
LOCAL_PREFIX = "local-"


def validate_room_code(room_id: str) -> str:
    room_id = (room_id or "").strip()
    if not ROOM_CODE_PATTERN.match(room_id):
        raise GameError("Room codes are 4 digits", code="INVALID_ROOM_CODE")
    return room_id


class SessionRegistry:

    def __init__(self, firestore_provider: Callable = get_firestore_service, rng: Optional[random.Random] = None):
        self._firestore_provider = firestore_provider
        self.rng = rng or random.Random()
        self._local: Dict[str, GameSession] = {}
        self._replicas: Dict[Tuple[str, str], RoomReplica] = {}

    @property
    def settle_delay(self) -> float:
        return settings.host_settle_ms / 1000

    def _open_replica(self, firestore, state: SessionState, player_id: str) -> RoomReplica:
        replica = RoomReplica(firestore, state, player_id, settle_delay=self.settle_delay)
        replica.start()
        self._replicas[(state.room_id, player_id)] = replica
        return replica

    # ── Local games ───────────────────────────────────────────────────────────

    async def create_local(self, player_name: str) -> Tuple[GameSession, Player]:
        name = clean_player_name(player_name)
        room_id = f"{LOCAL_PREFIX}{uuid.uuid4().hex[:8]}"
        state = SessionState(room_id=room_id)
        host = new_player(state, name, is_host=True)
        state = state.apply({"host_id": host.id, "players": {host.id: host}})

        session = GameSession(LocalSink(state, host.id))
        self._local[room_id] = session
        logger.info(f"[{room_id}] Local game created by {name}")
        return session, host

    # ── Networked rooms ───────────────────────────────────────────────────────

    async def create_room(self, host_name: str, room_id: Optional[str] = None) -> Tuple[RoomReplica, Player]:
        name = clean_player_name(host_name)
        fs = self._firestore_provider()

        if room_id:
            room_id = validate_room_code(room_id)
            if await fs.room_exists(room_id):
                raise GameError(f"Room {room_id} already exists", code="ROOM_EXISTS")
        else:
            room_id = await self._free_room_code(fs)

        state = SessionState(room_id=room_id)
        host = new_player(state, name, is_host=True)
        state = state.apply({"host_id": host.id, "players": {host.id: host}})
        await fs.create_room(state)

        replica = self._open_replica(fs, state, host.id)
        logger.info(f"[{room_id}] Room created by {name}")
        return replica, host

    async def _free_room_code(self, fs) -> str:
        for _ in range(ROOM_CODE_ATTEMPTS):
            candidate = f"{self.rng.randint(0, 9999):04d}"
            if not await fs.room_exists(candidate):
                return candidate
        raise GameError("No free room code — try again", code="ROOM_CODE_EXHAUSTED")

    async def join_room(self, room_id: str, player_name: str) -> Tuple[RoomReplica, Player]:
        room_id = validate_room_code(room_id)
        name = clean_player_name(player_name)
        fs = self._firestore_provider()

        state = await fs.get_room(room_id)
        if state is None:
            raise RoomNotFoundError(room_id)
        if state.phase != Phase.LOBBY:
            raise InvalidPhaseError("The game has already started")

        player = new_player(state, name)
        await fs.add_player(room_id, player)
        state = state.apply({"players": {**state.players, player.id: player}})

        replica = self._open_replica(fs, state, player.id)
        logger.info(f"[{room_id}] {name} joined ({len(state.players)} players)")
        return replica, player

    # ── Lookup / teardown ─────────────────────────────────────────────────────

    async def get(self, room_id: str, player_id: str) -> GameSession:
        """The session `player_id` acts through. Unknown players are a LookupError."""
        session = self._local.get(room_id)
        if session is not None:
            session.state.player(player_id)
            return session

        replica = self._replicas.get((room_id, player_id))
        if replica is not None:
            if not replica.deleted:
                return replica
            # The document was deleted elsewhere; drop every replica of the room.
            self._drop_replicas(room_id)
            raise RoomNotFoundError(room_id)

        fs = self._firestore_provider()
        state = await fs.get_room(room_id)
        if state is None:
            raise RoomNotFoundError(room_id)
        if player_id not in state.players:
            raise UnknownPlayerError(player_id)
        logger.info(f"[{room_id}] Reopening replica for {player_id}")
        return self._open_replica(fs, state, player_id)

    async def leave(self, room_id: str, player_id: str) -> None:
        """Drop this participant's session. The roster keeps the player."""
        session = self._local.get(room_id)
        if session is not None:
            # A local game is one device: leaving ends it.
            self._local.pop(room_id).close()
            logger.info(f"[{room_id}] Local game closed")
            return

        replica = self._replicas.pop((room_id, player_id), None)
        if replica is not None:
            replica.close()
            logger.info(f"[{room_id}] {player_id} left")

    async def delete_room(self, room_id: str) -> None:
        session = self._local.pop(room_id, None)
        if session is not None:
            session.close()
            logger.info(f"[{room_id}] Local game deleted")
            return

        self._drop_replicas(room_id)
        await self._firestore_provider().delete_room(room_id)

    def _drop_replicas(self, room_id: str) -> None:
        for key in [k for k in self._replicas if k[0] == room_id]:
            self._replicas.pop(key).close()
        logger.info(f"[{room_id}] Replicas closed")

    def close_all(self) -> None:
        for session in self._local.values():
            session.close()
        for replica in self._replicas.values():
            replica.close()
        self._local.clear()
        self._replicas.clear()


# Module-level singleton
session_registry = SessionRegistry()
