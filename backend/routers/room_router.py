"""
Room HTTP endpoints.

Routes:
  POST   /api/rooms                        — Create a networked room + register host
  POST   /api/rooms/{room_id}/join         — Player joins the lobby
  POST   /api/local                        — Single-device game
  GET    /api/rooms/{room_id}              — State as seen by ?playerId= (numbers hidden)
  POST   /api/rooms/{room_id}/start        — Host starts the game
  POST   /api/rooms/{room_id}/theme        — Turn player (or host) fixes the theme
  POST   /api/rooms/{room_id}/votes        — Vote batch (guesses + memo)
  POST   /api/rooms/{room_id}/memo         — Live memo text
  POST   /api/rooms/{room_id}/force        — Host fills missing guesses and scores
  POST   /api/rooms/{room_id}/next-round   — Host advances past the results
  POST   /api/rooms/{room_id}/lobby        — Host returns everyone to the lobby
  POST   /api/rooms/{room_id}/color        — Player changes colour (lobby)
  POST   /api/rooms/{room_id}/npcs         — Host adds NPC seats (lobby)
  POST   /api/rooms/{room_id}/leave        — Drop this participant's session
  DELETE /api/rooms/{room_id}              — Delete the room

Every action acts as ?playerId= and answers with that player's view.
"""
import logging
from typing import Any, Awaitable, Dict

from fastapi import APIRouter, HTTPException, Query

from models.errors import GameError, HostOnlyError, InvalidPhaseError
from models.game import (
    AddNpcRequest, ColorRequest, CreateLocalRequest, CreateRoomRequest,
    JoinRoomRequest, MemoRequest, RoomResponse, SelectThemeRequest,
    StartGameRequest, SubmitVotesRequest,
)
from services.game_session import GameSession
from services.session_registry import session_registry

logger = logging.getLogger(__name__)

router = APIRouter(tags=["rooms"])


def _http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, HostOnlyError):
        return HTTPException(status_code=403, detail=exc.message)
    if isinstance(exc, InvalidPhaseError):
        return HTTPException(status_code=409, detail=exc.message)
    if isinstance(exc, GameError):
        return HTTPException(status_code=400, detail=exc.message)
    return HTTPException(status_code=404, detail=str(exc))


async def _session(room_id: str, player_id: str) -> GameSession:
    try:
        return await session_registry.get(room_id, player_id)
    except LookupError as exc:
        raise _http_error(exc) from exc


async def _act(session: GameSession, player_id: str, action: Awaitable[Any]) -> Dict[str, Any]:
    try:
        await action
    except (GameError, LookupError) as exc:
        raise _http_error(exc) from exc
    return session.view(player_id)


# ── Entry ─────────────────────────────────────────────────────────────────────

@router.post("/rooms", response_model=RoomResponse, status_code=201)
async def create_room(body: CreateRoomRequest):
    try:
        replica, host = await session_registry.create_room(body.host_name, body.room_id)
    except GameError as exc:
        raise HTTPException(
            status_code=409 if exc.code == "ROOM_EXISTS" else 400, detail=exc.message
        ) from exc
    return RoomResponse(room_id=replica.room_id, player_id=host.id)


@router.post("/rooms/{room_id}/join", response_model=RoomResponse, status_code=200)
async def join_room(room_id: str, body: JoinRoomRequest):
    try:
        replica, player = await session_registry.join_room(room_id, body.player_name)
    except (GameError, LookupError) as exc:
        raise _http_error(exc) from exc
    return RoomResponse(room_id=replica.room_id, player_id=player.id)


@router.post("/local", response_model=RoomResponse, status_code=201)
async def create_local(body: CreateLocalRequest):
    try:
        session, host = await session_registry.create_local(body.player_name)
    except GameError as exc:
        raise _http_error(exc) from exc
    return RoomResponse(room_id=session.room_id, player_id=host.id)


# ── State ─────────────────────────────────────────────────────────────────────

@router.get("/rooms/{room_id}")
async def get_room(room_id: str, playerId: str = Query(...)):
    session = await _session(room_id, playerId)
    return session.view(playerId)


# ── Actions ───────────────────────────────────────────────────────────────────

@router.post("/rooms/{room_id}/start")
async def start_game(room_id: str, body: StartGameRequest, playerId: str = Query(...)):
    session = await _session(room_id, playerId)
    return await _act(session, playerId, session.start_game(playerId, body.settings))


@router.post("/rooms/{room_id}/theme")
async def select_theme(room_id: str, body: SelectThemeRequest, playerId: str = Query(...)):
    session = await _session(room_id, playerId)
    return await _act(session, playerId, session.select_theme(playerId, body.theme))


@router.post("/rooms/{room_id}/votes")
async def submit_votes(room_id: str, body: SubmitVotesRequest, playerId: str = Query(...)):
    session = await _session(room_id, playerId)
    return await _act(session, playerId, session.submit_votes(playerId, body.guesses, body.memo))


@router.post("/rooms/{room_id}/memo")
async def update_memo(room_id: str, body: MemoRequest, playerId: str = Query(...)):
    session = await _session(room_id, playerId)
    return await _act(session, playerId, session.update_memo(playerId, body.text))


@router.post("/rooms/{room_id}/force")
async def force_progress(room_id: str, playerId: str = Query(...)):
    session = await _session(room_id, playerId)
    return await _act(session, playerId, session.force_progress(playerId))


@router.post("/rooms/{room_id}/next-round")
async def next_round(room_id: str, playerId: str = Query(...)):
    session = await _session(room_id, playerId)
    return await _act(session, playerId, session.next_round(playerId))


@router.post("/rooms/{room_id}/lobby")
async def return_to_lobby(room_id: str, playerId: str = Query(...)):
    session = await _session(room_id, playerId)
    return await _act(session, playerId, session.return_to_lobby(playerId))


@router.post("/rooms/{room_id}/color")
async def update_color(room_id: str, body: ColorRequest, playerId: str = Query(...)):
    session = await _session(room_id, playerId)
    return await _act(session, playerId, session.update_color(playerId, body.color))


@router.post("/rooms/{room_id}/npcs")
async def add_npc_players(room_id: str, body: AddNpcRequest, playerId: str = Query(...)):
    session = await _session(room_id, playerId)
    return await _act(session, playerId, session.add_npc_players(playerId, body.count))


# ── Teardown ──────────────────────────────────────────────────────────────────

@router.post("/rooms/{room_id}/leave", status_code=204)
async def leave_room(room_id: str, playerId: str = Query(...)):
    await session_registry.leave(room_id, playerId)


@router.delete("/rooms/{room_id}", status_code=204)
async def delete_room(room_id: str):
    await session_registry.delete_room(room_id)
    logger.info(f"[{room_id}] Deleted via API")
