"""
Transition Evaluator — the host's reaction to observed submissions.

Every state the sink publishes is a "submission observed" event. When the
state says a derived transition is due (theme picked, everyone placed,
everyone done discussing) the evaluator waits `settle_delay` seconds so that
writes still in flight can land, re-checks against the newest projection and
asks the GameMaster to commit. Each (game, round, phase) step is committed at
most once.

Local games use a zero delay: the re-check runs inline.
"""
import asyncio
import logging
from typing import Dict, Optional, Set

from models.game import Phase, SessionState
from agents.game_master import GameMaster, TransitionKey, game_master
from services.state_sink import StateSink

logger = logging.getLogger(__name__)


class TransitionEvaluator:

    def __init__(self, sink: StateSink, master: Optional[GameMaster] = None, settle_delay: float = 0.0):
        self.sink = sink
        self.master = master or game_master
        self.settle_delay = settle_delay
        self._handled: Set[TransitionKey] = set()
        self._pending: Dict[TransitionKey, asyncio.Task] = {}
        sink.add_listener(self.on_state)

    def close(self) -> None:
        self.sink.remove_listener(self.on_state)
        self._cancel_pending()

    def _cancel_pending(self) -> None:
        for task in self._pending.values():
            task.cancel()
        self._pending.clear()

    async def on_state(self, state: SessionState) -> None:
        # Nested commits may already have moved the projection past `state`.
        state = self.sink.state
        if state.phase == Phase.LOBBY:
            self._handled.clear()
            self._cancel_pending()
            return
        if not self.sink.is_authoritative:
            return

        key = self.master.pending_transition(state)
        if key is None or key in self._handled or key in self._pending:
            return

        if self.settle_delay <= 0:
            await self._commit(key)
        else:
            self._pending[key] = asyncio.create_task(self._recheck(key))

    async def _recheck(self, key: TransitionKey) -> None:
        try:
            await asyncio.sleep(self.settle_delay)
            await self._commit(key)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception(f"[{self.sink.room_id}] Deferred transition {key} failed")
        finally:
            self._pending.pop(key, None)

    async def _commit(self, key: TransitionKey) -> None:
        if key in self._handled:
            return
        current = self.master.pending_transition(self.sink.state)
        if current != key:
            logger.warning(f"[{self.sink.room_id}] Transition {key} no longer due after settle — skipped")
            return
        self._handled.add(key)
        entered = await self.master.resolve(self.sink)
        logger.info(f"[{self.sink.room_id}] Derived transition {key[2].value} → {entered.value if entered else None}")
