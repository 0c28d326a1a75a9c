"""
Overlay render session: the read-only, token-gated broadcast view of a board.

Access is checked once, before anything about the board is loaded; a failed
check denies the session for good. After that the session follows the overlay
state, the latest draw and the prize list, and turns level changes on the
shared overlay row into one-shot animations (modal entry, result reveal).
"""
import asyncio
import hmac
import logging
from typing import Awaitable, Callable, List, Optional

import config
from models.board import Board
from models.draw_event import DrawEvent
from models.overlay import (
    ModalView,
    OverlayState,
    OverlayView,
    RecentWinnerChip,
    ResultView,
    RevealPhase,
)
from models.prize import Prize, PrizeCounter
from services.board_service import attach_prizes
from services.errors import AuthorizationError
from services.overlay_state import OverlayStateTracker
from services.record_store import BOARDS, DRAW_EVENTS, OVERLAY_STATES, PRIZES, RecordStore
from services.sync_channel import ChangeEvent, SyncChannel

logger = logging.getLogger(__name__)

RenderListener = Callable[["OverlayRenderSession"], Awaitable[None]]


def token_matches(expected: Optional[str], presented: Optional[str]) -> bool:
    if not expected or not presented:
        return False
    return hmac.compare_digest(expected.encode("utf-8"), presented.encode("utf-8"))


class OverlayRenderSession:
    def __init__(self, board_id: str, token: Optional[str], store: RecordStore, channel: SyncChannel,
                 pre_roll_seconds: float = config.REVEAL_PRE_ROLL_SECONDS,
                 on_render: Optional[RenderListener] = None):
        self.board_id = board_id
        self.token = token
        self.store = store
        self.channel = channel
        self.pre_roll_seconds = pre_roll_seconds
        self.on_render = on_render

        self.denied = False
        self.loaded = False
        self.board: Optional[Board] = None
        self.prizes: List[Prize] = []
        self.last_draw: Optional[DrawEvent] = None

        self.tracker = OverlayStateTracker()
        self.modal_open = False
        self.focused_prize_id: Optional[str] = None
        self.phase = RevealPhase.HIDDEN
        # Animation starts, counted on edges only
        self.modal_entries = 0
        self.reveal_starts = 0

        self._reveal_task: Optional[asyncio.Task] = None
        self._subscriptions: List[int] = []
        self._refresh_lock = asyncio.Lock()

    async def authorize(self) -> None:
        board = await self.store.find_one(BOARDS, {"_id": self.board_id})
        # A missing board looks exactly like a wrong token
        if not board or not token_matches(board.get("overlay_token"), self.token):
            self.denied = True
            logger.warning(f"Overlay access denied for board {self.board_id}")
            raise AuthorizationError("Access denied")

    async def start(self) -> None:
        try:
            await self.authorize()
        except AuthorizationError:
            await self.emit()
            raise

        await self.refresh()
        for table, filter in (
            (BOARDS, {"_id": self.board_id}),
            (OVERLAY_STATES, {"board_id": self.board_id}),
            (DRAW_EVENTS, {"board_id": self.board_id}),
            (PRIZES, {"board_id": self.board_id}),
        ):
            self._subscriptions.append(self.channel.subscribe(table, filter, self._on_store_change))
        logger.info(f"Overlay opened for board {self.board_id}")

    async def close(self) -> None:
        for handle in self._subscriptions:
            self.channel.unsubscribe(handle)
        self._subscriptions = []
        self._cancel_reveal()
        logger.info(f"Overlay closed for board {self.board_id}")

    async def _on_store_change(self, event: ChangeEvent) -> None:
        await self.refresh()

    async def refresh(self) -> None:
        if self.denied:
            return

        async with self._refresh_lock:
            board_doc, prize_docs, overlay_doc, draw_docs = await asyncio.gather(
                self.store.find_one(BOARDS, {"_id": self.board_id}),
                self.store.find(PRIZES, {"board_id": self.board_id}, sort=[("sort_order", 1)]),
                self.store.find_one(OVERLAY_STATES, {"board_id": self.board_id}),
                self.store.find(DRAW_EVENTS, {"board_id": self.board_id},
                                sort=[("created_at", -1)], limit=1),
            )
            if not board_doc:
                # Board torn down while the overlay was open
                self.denied = True
                self._cancel_reveal()
            else:
                self.board = Board.model_validate(board_doc)
                self.prizes = [Prize.model_validate(doc) for doc in prize_docs]
                self.last_draw = attach_prizes(draw_docs, self.prizes)[0] if draw_docs else None
                if overlay_doc:
                    self.observe_overlay_state(OverlayState.model_validate(overlay_doc))
                self.loaded = True

        await self.emit()

    def observe_overlay_state(self, state: OverlayState) -> None:
        """Project a new overlay snapshot, starting animations only on edges"""
        transitions = self.tracker.observe(state)

        self.modal_open = state.is_modal_open
        self.focused_prize_id = state.focused_prize_id
        # Switching prizes inside an open modal replays the entry too
        if transitions.modal_opened or (state.is_modal_open and transitions.focus_changed):
            self.modal_entries += 1

        if transitions.reveal_started:
            self._start_reveal()
        elif transitions.reveal_hidden:
            self._cancel_reveal()
            self.phase = RevealPhase.HIDDEN

    def _start_reveal(self) -> None:
        self._cancel_reveal()
        self.phase = RevealPhase.PRE_ROLL
        self.reveal_starts += 1
        self._reveal_task = asyncio.get_running_loop().create_task(self._finish_reveal())

    async def _finish_reveal(self) -> None:
        # Pre-roll lets the entry transition play before the result mounts
        await asyncio.sleep(self.pre_roll_seconds)
        if self.phase == RevealPhase.PRE_ROLL:
            self.phase = RevealPhase.SHOWING
            await self.emit()

    def _cancel_reveal(self) -> None:
        if self._reveal_task is not None and not self._reveal_task.done():
            self._reveal_task.cancel()
        self._reveal_task = None

    async def settle(self) -> None:
        """Wait for a pending reveal pre-roll to finish"""
        task = self._reveal_task
        if task is not None:
            try:
                await task
            except asyncio.CancelledError:
                pass

    def _prize(self, prize_id: Optional[str]) -> Optional[Prize]:
        if prize_id is None:
            return None
        return next((prize for prize in self.prizes if prize.id == prize_id), None)

    def view(self) -> OverlayView:
        if self.denied:
            return OverlayView(board_id=self.board_id, denied=True)
        if not self.loaded:
            return OverlayView(board_id=self.board_id, loading=True)

        focused = self._prize(self.focused_prize_id)
        revealing = self.phase != RevealPhase.HIDDEN and self.last_draw is not None

        recent_winner = None
        if self.last_draw is not None and self.phase == RevealPhase.HIDDEN:
            recent_winner = RecentWinnerChip(
                viewer_name=self.last_draw.viewer_name,
                tier=self.last_draw.tier_label,
            )

        return OverlayView(
            board_id=self.board_id,
            title=self.board.title if self.board else None,
            modal=ModalView(visible=self.modal_open and focused is not None, prize=focused),
            result=ResultView(phase=self.phase, draw=self.last_draw if revealing else None),
            counters=[
                PrizeCounter(prize_id=prize.id, tier=prize.tier,
                             qty_left=prize.display_left, qty_total=prize.qty_total)
                for prize in self.prizes if not prize.is_blank
            ],
            recent_winner=recent_winner,
        )

    async def emit(self) -> None:
        if self.on_render is not None:
            await self.on_render(self)
