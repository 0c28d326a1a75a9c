"""
Control room session: the operator's console for one board.

Holds the operator's local state (selected prize, viewer-name input, notices),
mirrors the board's prizes, recent draws and overlay state, and refreshes
them whenever the sync channel reports a change on any of those record sets.
"""
import asyncio
import logging
from typing import Awaitable, Callable, List, Optional

import config
from models.board import Board
from models.control import ControlRoomView, DrawCounters, Notice
from models.draw_event import DrawEvent
from models.overlay import OverlayState
from models.prize import Prize
from services.board_service import attach_prizes
from services.errors import DrawBoardError, NotFoundError, StoreError, ValidationError
from services.inventory_ledger import InventoryLedger
from services.overlay_state import OverlayStateMachine
from services.record_store import BOARDS, DRAW_EVENTS, OVERLAY_STATES, PRIZES, RecordStore
from services.sync_channel import ChangeEvent, SyncChannel

logger = logging.getLogger(__name__)

ChangeListener = Callable[["ControlRoomSession"], Awaitable[None]]

MAX_NOTICES = 5


class ControlRoomSession:
    def __init__(self, board_id: str, seller_id: str, store: RecordStore, channel: SyncChannel,
                 ledger: InventoryLedger, overlay: Optional[OverlayStateMachine] = None,
                 history_limit: int = config.DRAW_HISTORY_LIMIT,
                 on_change: Optional[ChangeListener] = None):
        self.board_id = board_id
        self.seller_id = seller_id
        self.store = store
        self.channel = channel
        self.ledger = ledger
        self.overlay = overlay or ledger.overlay
        self.history_limit = history_limit
        self.on_change = on_change

        self.board: Optional[Board] = None
        self.prizes: List[Prize] = []
        self.draw_events: List[DrawEvent] = []
        self.overlay_state: Optional[OverlayState] = None

        self.selected_prize: Optional[Prize] = None
        self.viewer_name = ""
        self.focus_input = False
        self.is_drawing = False
        self.notices: List[Notice] = []

        self._subscriptions: List[int] = []
        self._refresh_lock = asyncio.Lock()

    # Lifecycle

    async def start(self) -> None:
        await self.refresh()
        if self.overlay_state is None:
            self.overlay_state = await self.overlay.ensure(self.board_id)
        for table, filter in (
            (BOARDS, {"_id": self.board_id}),
            (PRIZES, {"board_id": self.board_id}),
            (DRAW_EVENTS, {"board_id": self.board_id}),
            (OVERLAY_STATES, {"board_id": self.board_id}),
        ):
            self._subscriptions.append(self.channel.subscribe(table, filter, self._on_store_change))
        logger.info(f"Control room opened for board {self.board_id}")

    async def close(self) -> None:
        for handle in self._subscriptions:
            self.channel.unsubscribe(handle)
        self._subscriptions = []
        logger.info(f"Control room closed for board {self.board_id}")

    async def _on_store_change(self, event: ChangeEvent) -> None:
        try:
            await self.refresh()
        except DrawBoardError as e:
            self.notice("error", e.message)
            await self.emit()

    async def refresh(self) -> None:
        async with self._refresh_lock:
            board_doc, prize_docs, event_docs, overlay_doc = await asyncio.gather(
                self.store.find_one(BOARDS, {"_id": self.board_id}),
                self.store.find(PRIZES, {"board_id": self.board_id}, sort=[("sort_order", 1)]),
                self.store.find(DRAW_EVENTS, {"board_id": self.board_id},
                                sort=[("created_at", -1)], limit=self.history_limit),
                self.store.find_one(OVERLAY_STATES, {"board_id": self.board_id}),
            )
            if not board_doc or board_doc.get("seller_id") != self.seller_id:
                raise NotFoundError("Board not found")

            self.board = Board.model_validate(board_doc)
            self.prizes = [Prize.model_validate(doc) for doc in prize_docs]
            self.draw_events = attach_prizes(event_docs, self.prizes)
            self.overlay_state = OverlayState.model_validate(overlay_doc) if overlay_doc else None

            # Keep the selection pointing at the fresh row
            if self.selected_prize is not None:
                self.selected_prize = self._find_displayed(self.selected_prize.id)

        await self.emit()

    # Derived state

    @property
    def displayed_prizes(self) -> List[Prize]:
        """Winning tiers in sort order; these are the numbered slots"""
        return [prize for prize in self.prizes if not prize.is_blank]

    @property
    def counters(self) -> DrawCounters:
        return DrawCounters(
            remaining=sum(prize.display_left for prize in self.prizes),
            total=sum(prize.qty_total for prize in self.prizes),
        )

    def _find_displayed(self, prize_id: str) -> Optional[Prize]:
        return next((prize for prize in self.displayed_prizes if prize.id == prize_id), None)

    # Local input

    def select_prize(self, prize_id: str) -> bool:
        prize = self._find_displayed(prize_id)
        if prize is None:
            self.notice("error", "Prize not found on this board")
            return False
        self.selected_prize = prize
        self.focus_input = True
        return True

    def select_slot(self, slot: int) -> bool:
        """Select the slot-th displayed prize (1-indexed); out-of-range slots are ignored"""
        displayed = self.displayed_prizes
        if slot < 1 or slot > len(displayed):
            return False
        self.selected_prize = displayed[slot - 1]
        self.focus_input = True
        return True

    def set_viewer_name(self, value: str) -> None:
        self.viewer_name = value or ""

    def clear_selection(self) -> None:
        self.selected_prize = None
        self.viewer_name = ""
        self.focus_input = False

    async def handle_key(self, key: str, input_focused: bool = False) -> bool:
        """Apply a keyboard shortcut; returns whether the key was consumed.

        1-9 select a numbered slot, Escape clears the selection and input.
        While the text input has focus only Enter is honoured, and only when
        a prize is selected.
        """
        if input_focused:
            if key == "Enter" and self.selected_prize is not None:
                await self.submit_draw()
                return True
            return False

        if key == "Escape":
            self.clear_selection()
            await self.emit()
            return True

        if len(key) == 1 and key in "123456789":
            if self.select_slot(int(key)):
                await self.emit()
                return True

        return False

    # Operations

    async def submit_draw(self) -> Optional[DrawEvent]:
        """Commit the selected prize to the typed viewer name.

        On failure a notice is pushed and the selection and input are kept
        for a retry.
        """
        if self.is_drawing:
            return None

        prize = self.selected_prize
        viewer = self.viewer_name.strip()
        try:
            if prize is None or not viewer:
                raise ValidationError("Select a prize and enter the viewer name")
            if prize.qty_left <= 0:
                raise ValidationError(f"No {prize.tier} prizes left")

            self.is_drawing = True
            await self.emit()
            event = await self.ledger.commit_draw(self.board_id, prize.id, viewer)
        except (ValidationError, NotFoundError) as e:
            logger.warning(f"Draw rejected on board {self.board_id}: {e.message}")
            self.notice("error", e.message)
            return None
        except StoreError as e:
            logger.error(f"Draw failed on board {self.board_id}: {e}")
            self.notice("error", "Draw failed, please try again")
            return None
        finally:
            # Pushes the cleared busy flag or the failure notice
            self.is_drawing = False
            await self.emit()

        self.notice("success", f"{viewer} - {prize.tier} won!")
        self.clear_selection()
        self.focus_input = True
        await self._resync()
        return event

    async def toggle_modal(self, open: Optional[bool] = None, prize_id: Optional[str] = None) -> None:
        if open is None:
            open = not (self.overlay_state is not None and self.overlay_state.is_modal_open)

        try:
            if open:
                if prize_id is not None and not any(prize.id == prize_id for prize in self.prizes):
                    raise NotFoundError("Prize not found on this board")
                await self.overlay.open_modal(self.board_id, prize_id)
            else:
                await self.overlay.close_modal(self.board_id)
        except DrawBoardError as e:
            self.notice("error", e.message)
        await self._resync()

    async def show_prize(self, prize_id: str) -> None:
        await self.toggle_modal(True, prize_id)

    async def hide_last_result(self) -> None:
        try:
            await self.overlay.hide_last_result(self.board_id)
        except DrawBoardError as e:
            self.notice("error", e.message)
        await self._resync()

    async def _resync(self) -> None:
        try:
            await self.refresh()
        except DrawBoardError as e:
            self.notice("error", e.message)
            await self.emit()

    # Notices and output

    def notice(self, level: str, message: str) -> None:
        self.notices.append(Notice(level=level, message=message))
        del self.notices[:-MAX_NOTICES]

    def dismiss_notice(self, index: Optional[int] = None) -> None:
        if index is None:
            self.notices = []
        elif 0 <= index < len(self.notices):
            del self.notices[index]

    def view(self) -> ControlRoomView:
        return ControlRoomView(
            board=self.board,
            prizes=self.prizes,
            draw_events=self.draw_events,
            overlay_state=self.overlay_state,
            selected_prize_id=self.selected_prize.id if self.selected_prize else None,
            viewer_name=self.viewer_name,
            focus_input=self.focus_input,
            is_drawing=self.is_drawing,
            counters=self.counters,
            notices=list(self.notices),
        )

    async def emit(self) -> None:
        if self.on_change is not None:
            await self.on_change(self)
