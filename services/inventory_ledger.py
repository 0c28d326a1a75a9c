import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Dict, List, Optional

import pytz

from models.draw_event import DrawEvent
from models.prize import Prize
from services.errors import NotFoundError, StoreError, ValidationError
from services.overlay_state import OverlayStateMachine
from services.record_store import (
    BOARDS,
    DRAW_EVENTS,
    PRIZES,
    RECONCILIATION_FLAGS,
    RecordStore,
    StoreSession,
)

logger = logging.getLogger(__name__)


class InventoryLedger:
    """Owns prize quantities and draw-event creation.

    A draw is three writes, in this order: insert the event, decrement the
    prize, flag the overlay. With a transactional store they commit together.
    Without one, a failure after the event insert is logged and flagged in
    `reconciliation_flags` so an operator can reconcile it by hand.
    """

    def __init__(self, store: RecordStore, overlay: Optional[OverlayStateMachine] = None):
        self.store = store
        self.overlay = overlay or OverlayStateMachine(store)
        # Single writer per prize within this process
        self._prize_locks: Dict[str, asyncio.Lock] = {}
        # Draws holding or waiting on each lock; the entry goes when this drops to zero
        self._lock_users: Dict[str, int] = {}

    @property
    def locked_prizes(self) -> List[str]:
        return list(self._prize_locks)

    @asynccontextmanager
    async def _prize_lock(self, prize_id: str) -> AsyncIterator[None]:
        lock = self._prize_locks.setdefault(prize_id, asyncio.Lock())
        self._lock_users[prize_id] = self._lock_users.get(prize_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[prize_id] -= 1
            if self._lock_users[prize_id] == 0:
                del self._lock_users[prize_id]
                del self._prize_locks[prize_id]

    async def commit_draw(self, board_id: str, prize_id: str, viewer_name: str,
                          note: Optional[str] = None) -> DrawEvent:
        viewer = (viewer_name or "").strip()
        if not viewer:
            raise ValidationError("Viewer name is required")

        async with self._prize_lock(prize_id):
            board = await self.store.find_one(BOARDS, {"_id": board_id})
            if not board:
                raise NotFoundError(f"Board {board_id} not found")

            prize_doc = await self.store.find_one(PRIZES, {"_id": prize_id})
            if not prize_doc or prize_doc.get("board_id") != board_id:
                raise NotFoundError(f"Prize {prize_id} not found on board {board_id}")

            prize = Prize.model_validate(prize_doc)
            if prize.qty_left <= 0:
                raise ValidationError(f"No {prize.tier} prizes left")

            async with self.store.transaction() as session:
                event = await self._commit(board_id, prize, viewer, note, session)

        logger.info(f"Draw committed on board {board_id}: {viewer} -> {prize.tier} ({prize.id})")
        return event

    async def _commit(self, board_id: str, prize: Prize, viewer: str, note: Optional[str],
                      session: StoreSession) -> DrawEvent:
        event_doc = await self.store.insert_one(DRAW_EVENTS, {
            "board_id": board_id,
            "prize_id": prize.id,
            "viewer_name": viewer,
            "note": note,
            "created_at": datetime.now(pytz.UTC),
        }, session=session)

        try:
            updated = await self.store.decrement_if_positive(
                PRIZES, {"_id": prize.id, "board_id": board_id}, "qty_left", session=session
            )
        except StoreError as e:
            await self._flag_partial(session, board_id, prize.id, event_doc["_id"], "decrement", str(e))
            raise

        if updated is None:
            # Another writer took the last unit between our read and the decrement
            await self._flag_partial(session, board_id, prize.id, event_doc["_id"], "decrement",
                                     "quantity already exhausted")
            raise ValidationError(f"No {prize.tier} prizes left")

        try:
            await self.overlay.reveal_last_result(board_id, prize.id, session=session)
        except (StoreError, NotFoundError) as e:
            await self._flag_partial(session, board_id, prize.id, event_doc["_id"], "overlay", str(e))
            raise

        return DrawEvent.model_validate({**event_doc, "prize": Prize.model_validate(updated)})

    async def _flag_partial(self, session: StoreSession, board_id: str, prize_id: str,
                            draw_event_id: str, step: str, reason: str) -> None:
        if session.transactional:
            # The transaction rolls everything back
            return

        logger.error(
            f"Partial draw on board {board_id}: event {draw_event_id} recorded but "
            f"{step} failed for prize {prize_id}: {reason}"
        )
        try:
            await self.store.insert_one(RECONCILIATION_FLAGS, {
                "board_id": board_id,
                "prize_id": prize_id,
                "draw_event_id": draw_event_id,
                "step": step,
                "reason": reason,
                "resolved": False,
                "created_at": datetime.now(pytz.UTC),
            })
        except StoreError as e:
            logger.error(f"Could not flag partial draw {draw_event_id} for reconciliation: {e}")
