"""
WebSocket Hub — pushes state snapshots to connected players.

URL: /ws/{room_id}?playerId={player_id}

Connection flow:
  1. Resolve the player's session (local game or room replica)
  2. Accept connection and send the current state
  3. Re-send the state on every change the session observes
  4. Message loop (_dispatch_message)
  5. On disconnect: drop the connection and its state listener

Client → server message types:
  ping   — keep-alive heartbeat → responds with "pong"
  memo   — live memo text for the current round
  vote   — vote batch {guesses, memo}; in DISCUSSION this is the one revision
"""
import json
import logging
from typing import Dict

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, Query
from pydantic import ValidationError

from models.errors import GameError
from models.game import SessionState, WSMessage
from services.game_session import GameSession
from services.session_registry import session_registry

logger = logging.getLogger(__name__)

router = APIRouter(tags=["websocket"])


class ConnectionManager:
    """
    Tracks active WebSocket connections per room.
    Safe for asyncio single-threaded event loop (no extra locking needed).
    """

    def __init__(self):
        # {room_id: {player_id: WebSocket}}
        self._rooms: Dict[str, Dict[str, WebSocket]] = {}

    # ── Lifecycle ──────────────────────────────────────────────────────────────

    async def connect(self, room_id: str, player_id: str, ws: WebSocket) -> None:
        await ws.accept()
        self._rooms.setdefault(room_id, {})[player_id] = ws
        logger.debug(f"[{room_id}] {player_id} connected ({self.count(room_id)} total)")

    def disconnect(self, room_id: str, player_id: str) -> None:
        room_conns = self._rooms.get(room_id, {})
        room_conns.pop(player_id, None)
        if not room_conns:
            self._rooms.pop(room_id, None)

    def count(self, room_id: str) -> int:
        return len(self._rooms.get(room_id, {}))

    # ── Sending ────────────────────────────────────────────────────────────────

    async def send_to(self, room_id: str, player_id: str, message: Dict) -> None:
        """Send a private message to a single player."""
        ws = self._rooms.get(room_id, {}).get(player_id)
        if ws:
            try:
                await ws.send_json(message)
            except Exception as exc:
                logger.warning(f"[{room_id}] send_to {player_id} failed: {exc}")
                self.disconnect(room_id, player_id)

    async def send_state(self, room_id: str, player_id: str, session: GameSession) -> None:
        await self.send_to(room_id, player_id, {"type": "state", "state": session.view(player_id)})

    async def send_error(self, room_id: str, player_id: str, message: str, code: str) -> None:
        await self.send_to(room_id, player_id, {"type": "error", "message": message, "code": code})


# Module-level singleton
manager = ConnectionManager()


# ── WebSocket endpoint ─────────────────────────────────────────────────────────

@router.websocket("/ws/{room_id}")
async def websocket_endpoint(
    ws: WebSocket,
    room_id: str,
    playerId: str = Query(..., description="Player id from the create/join response"),
):
    try:
        session = await session_registry.get(room_id, playerId)
    except LookupError as exc:
        await ws.close(code=4404, reason=str(exc))
        return

    await manager.connect(room_id, playerId, ws)

    async def _push(state: SessionState) -> None:
        # The projection may be newer than `state` after nested commits.
        await manager.send_state(room_id, playerId, session)

    session.add_listener(_push)
    await manager.send_state(room_id, playerId, session)

    try:
        while True:
            raw = await ws.receive_text()
            try:
                message = WSMessage.model_validate(json.loads(raw))
            except (json.JSONDecodeError, ValidationError):
                await manager.send_error(room_id, playerId, "Invalid message", "PARSE_ERROR")
                continue

            # Frontend sends { type, data: { ... } }; handlers get the inner payload
            await _handle_message(session, room_id, playerId, message.type, message.data)

    except WebSocketDisconnect:
        pass
    finally:
        session.remove_listener(_push)
        manager.disconnect(room_id, playerId)


# ── Message dispatcher ─────────────────────────────────────────────────────────

async def _handle_message(
    session: GameSession,
    room_id: str,
    player_id: str,
    msg_type: str,
    data: Dict,
) -> None:
    try:
        await _dispatch_message(session, room_id, player_id, msg_type, data)
    except WebSocketDisconnect:
        raise
    except GameError as exc:
        await manager.send_error(room_id, player_id, exc.message, exc.code)
    except LookupError as exc:
        await manager.send_error(room_id, player_id, str(exc), "NOT_FOUND")
    except Exception:
        logger.exception("[%s] Unhandled error in _handle_message (type=%s)", room_id, msg_type)
        await manager.send_error(room_id, player_id, "Internal server error", "SERVER_ERROR")


async def _dispatch_message(
    session: GameSession,
    room_id: str,
    player_id: str,
    msg_type: str,
    data: Dict,
) -> None:
    if msg_type == "ping":
        await manager.send_to(room_id, player_id, {"type": "pong"})

    elif msg_type == "memo":
        await session.update_memo(player_id, str(data.get("text", "")))

    elif msg_type == "vote":
        guesses = data.get("guesses")
        if not isinstance(guesses, dict):
            raise GameError("Vote must include a guesses object", code="INVALID_MESSAGE")
        await session.submit_votes(player_id, _parse_guesses(guesses), str(data.get("memo", "")))

    else:
        await manager.send_error(room_id, player_id, f"Unknown message type: {msg_type}", "UNKNOWN_TYPE")


def _parse_guesses(raw: Dict) -> Dict[str, int]:
    guesses: Dict[str, int] = {}
    for target_id, value in raw.items():
        if isinstance(value, bool) or not isinstance(value, (int, float)) or int(value) != value:
            raise GameError("Guesses must be whole numbers", code="INVALID_GUESS")
        guesses[str(target_id)] = int(value)
    return guesses
