import asyncio
import logging
import os
from typing import Optional, Dict, Any, Callable, Sequence

from models.game import Player, SessionState
from config import settings

logger = logging.getLogger(__name__)

SnapshotCallback = Callable[[Optional[SessionState]], None]


class FirestoreService:
    """
    Async-friendly Firestore wrapper using run_in_executor to avoid
    blocking the event loop. One document per room; the document body is
    SessionState.to_document().
    """

    def __init__(self):
        if settings.firestore_emulator_host:
            os.environ["FIRESTORE_EMULATOR_HOST"] = settings.firestore_emulator_host
        if settings.google_application_credentials:
            os.environ.setdefault("GOOGLE_APPLICATION_CREDENTIALS", settings.google_application_credentials)
        # Lazy import so the service can be instantiated before GCP creds exist
        from google.cloud import firestore
        self.db = firestore.Client(project=settings.google_cloud_project or None)
        self._field_path = firestore.FieldPath

    def _run(self, fn):
        """Run a sync Firestore call in the default thread pool."""
        loop = asyncio.get_running_loop()
        return loop.run_in_executor(None, fn)

    # ── Collection helpers ────────────────────────────────────────────────────

    def _room_ref(self, room_id: str):
        return self.db.collection(settings.rooms_collection).document(room_id)

    def _path(self, *segments: str) -> str:
        # Player ids are not valid bare field names, so segments are quoted.
        return self._field_path(*segments).to_api_repr()

    # ── Room CRUD ─────────────────────────────────────────────────────────────

    async def create_room(self, state: SessionState) -> SessionState:
        data = state.to_document()
        await self._run(lambda: self._room_ref(state.room_id).set(data))
        logger.info(f"[{state.room_id}] Room document created")
        return state

    async def get_room(self, room_id: str) -> Optional[SessionState]:
        doc = await self._run(lambda: self._room_ref(room_id).get())
        if doc.exists:
            return SessionState.from_document(room_id, doc.to_dict())
        return None

    async def room_exists(self, room_id: str) -> bool:
        doc = await self._run(lambda: self._room_ref(room_id).get())
        return doc.exists

    async def delete_room(self, room_id: str):
        await self._run(lambda: self._room_ref(room_id).delete())
        logger.info(f"[{room_id}] Room document deleted")

    async def update_room(self, room_id: str, updates: Dict[str, Any]):
        await self._run(lambda: self._room_ref(room_id).update(updates))

    async def patch(self, room_id: str, path: Sequence[str], fields: Dict[str, Any]):
        """Shallow merge of `fields` into the map at `path`; sibling keys are untouched."""
        updates = {self._path(*path, key): value for key, value in fields.items()}
        await self.update_room(room_id, updates)

    # ── Players ───────────────────────────────────────────────────────────────

    async def add_player(self, room_id: str, player: Player) -> Player:
        await self.patch(room_id, ("players",), {player.id: player.model_dump(mode="json")})
        return player

    # ── Subscription ──────────────────────────────────────────────────────────

    def subscribe(self, room_id: str, on_change: SnapshotCallback) -> Callable[[], None]:
        """
        Watch the room document. `on_change` runs on Firestore's listener
        thread with the parsed state, or None once the document is gone.
        Returns the unsubscribe function.
        """
        def _on_snapshot(doc_snapshots, changes, read_time):
            for doc in doc_snapshots:
                if doc.exists:
                    on_change(SessionState.from_document(room_id, doc.to_dict()))
                else:
                    on_change(None)

        watch = self._room_ref(room_id).on_snapshot(_on_snapshot)
        return watch.unsubscribe


_firestore_service: Optional["FirestoreService"] = None


def get_firestore_service() -> "FirestoreService":
    """Lazy singleton — initialised on first call, not at import time.
    This prevents credential errors from crashing the app before FastAPI boots.
    Use as a FastAPI dependency: Depends(get_firestore_service)
    """
    global _firestore_service
    if _firestore_service is None:
        _firestore_service = FirestoreService()
    return _firestore_service
