"""
Overlay state: the single shared, mutable row per board.

The control room writes it, the overlay reads it. The row stores levels
(booleans), so readers that need edges ("did the result just get flagged?")
keep their own last-observed copy and diff against it with
`OverlayStateTracker`.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

import pytz

from models.overlay import OverlayState
from services.errors import NotFoundError
from services.record_store import OVERLAY_STATES, RecordStore, StoreSession

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(pytz.UTC)


@dataclass(frozen=True)
class OverlayTransitions:
    modal_opened: bool = False
    modal_closed: bool = False
    reveal_started: bool = False
    reveal_hidden: bool = False
    focus_changed: bool = False

    @property
    def modal_changed(self) -> bool:
        return self.modal_opened or self.modal_closed


def diff_overlay_states(previous: Optional[OverlayState], current: OverlayState) -> OverlayTransitions:
    """Field-level edges between two snapshots; a missing snapshot reads as all flags off"""
    was_open = previous.is_modal_open if previous else False
    was_showing = previous.show_last_result if previous else False
    was_focused = previous.focused_prize_id if previous else None

    return OverlayTransitions(
        modal_opened=current.is_modal_open and not was_open,
        modal_closed=was_open and not current.is_modal_open,
        reveal_started=current.show_last_result and not was_showing,
        reveal_hidden=was_showing and not current.show_last_result,
        focus_changed=current.focused_prize_id != was_focused,
    )


class OverlayStateTracker:
    """Keeps one reader's last observed overlay state"""

    def __init__(self):
        self.last: Optional[OverlayState] = None

    def observe(self, state: OverlayState) -> OverlayTransitions:
        transitions = diff_overlay_states(self.last, state)
        self.last = state
        return transitions


class OverlayStateMachine:
    """Operator-initiated transitions on a board's overlay state.

    Every write bumps `updated_at`. Writes are last-write-wins: a board is
    steered by one operator at a time, no locking is done here.
    """

    def __init__(self, store: RecordStore):
        self.store = store

    async def create(self, board_id: str, session: Optional[StoreSession] = None) -> OverlayState:
        doc = {
            "_id": board_id,
            "board_id": board_id,
            "is_modal_open": False,
            "focused_prize_id": None,
            "show_last_result": False,
            "connection_status": "idle",
            "updated_at": _now(),
        }
        stored = await self.store.insert_one(OVERLAY_STATES, doc, session=session)
        return OverlayState.model_validate(stored)

    async def get(self, board_id: str) -> Optional[OverlayState]:
        doc = await self.store.find_one(OVERLAY_STATES, {"board_id": board_id})
        return OverlayState.model_validate(doc) if doc else None

    async def ensure(self, board_id: str) -> OverlayState:
        state = await self.get(board_id)
        if state is None:
            logger.warning(f"Overlay state missing for board {board_id}; recreating")
            state = await self.create(board_id)
        return state

    async def _write(self, board_id: str, changes: Dict[str, Any],
                     session: Optional[StoreSession] = None) -> OverlayState:
        changes = {**changes, "updated_at": _now()}
        updated = await self.store.update_one(OVERLAY_STATES, {"board_id": board_id}, changes, session=session)
        if updated is None:
            raise NotFoundError(f"Overlay state for board {board_id} not found")
        return OverlayState.model_validate(updated)

    async def open_modal(self, board_id: str, prize_id: Optional[str]) -> OverlayState:
        return await self._write(board_id, {"is_modal_open": True, "focused_prize_id": prize_id})

    async def close_modal(self, board_id: str) -> OverlayState:
        return await self._write(board_id, {"is_modal_open": False, "focused_prize_id": None})

    async def reveal_last_result(self, board_id: str, prize_id: Optional[str],
                                 session: Optional[StoreSession] = None) -> OverlayState:
        return await self._write(
            board_id,
            {"show_last_result": True, "focused_prize_id": prize_id},
            session=session,
        )

    async def hide_last_result(self, board_id: str) -> OverlayState:
        return await self._write(board_id, {"show_last_result": False})
