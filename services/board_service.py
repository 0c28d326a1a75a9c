import logging
import secrets
from datetime import datetime
from typing import Dict, List, Optional, Set

import pytz

import config
from models.board import Board, BoardCreate, BoardListItem, BoardStatus, BoardSummary, BoardUpdate
from models.draw_event import DrawEvent
from models.prize import BLANK_TIER, WINNING_TIERS, Prize, PrizeTierInput
from services.errors import NotFoundError, ValidationError
from services.overlay_state import OverlayStateMachine
from services.record_store import BOARDS, DRAW_EVENTS, OVERLAY_STATES, PRIZES, RecordStore

logger = logging.getLogger(__name__)

# Owner-controlled lifecycle
STATUS_TRANSITIONS: Dict[BoardStatus, Set[BoardStatus]] = {
    BoardStatus.DRAFT: {BoardStatus.LIVE},
    BoardStatus.LIVE: {BoardStatus.PAUSED, BoardStatus.CLOSED},
    BoardStatus.PAUSED: {BoardStatus.LIVE, BoardStatus.CLOSED},
    BoardStatus.CLOSED: {BoardStatus.DRAFT},
}


def generate_overlay_token() -> str:
    return secrets.token_urlsafe(24)


def attach_prizes(events: List[dict], prizes: List[Prize]) -> List[DrawEvent]:
    """Join draw events with their prize rows for display"""
    by_id = {prize.id: prize for prize in prizes}
    return [
        DrawEvent.model_validate({**event, "prize": by_id.get(event.get("prize_id"))})
        for event in events
    ]


class BoardService:
    """Board creation, editing, lifecycle and teardown.

    Prize configuration can only be replaced wholesale while the board is a
    draft without any draw events.
    """

    def __init__(self, store: RecordStore, overlay: Optional[OverlayStateMachine] = None):
        self.store = store
        self.overlay = overlay or OverlayStateMachine(store)

    async def get_owned_board(self, board_id: str, seller_id: str) -> Board:
        doc = await self.store.find_one(BOARDS, {"_id": board_id, "seller_id": seller_id})
        if not doc:
            raise NotFoundError("Board not found")
        return Board.model_validate(doc)

    async def list_prizes(self, board_id: str) -> List[Prize]:
        docs = await self.store.find(PRIZES, {"board_id": board_id}, sort=[("sort_order", 1)])
        return [Prize.model_validate(doc) for doc in docs]

    async def has_draw_events(self, board_id: str) -> bool:
        return await self.store.count(DRAW_EVENTS, {"board_id": board_id}) > 0

    async def can_edit_prizes(self, board: Board) -> bool:
        if board.status != BoardStatus.DRAFT:
            return False
        return not await self.has_draw_events(board.id)

    @staticmethod
    def _validate_tiers(title: str, tiers: List[PrizeTierInput], total_draws: int) -> None:
        if not title or not title.strip():
            raise ValidationError("Board title is required")
        if not tiers:
            raise ValidationError("At least one prize tier is required")
        if len(tiers) > len(WINNING_TIERS):
            raise ValidationError(f"At most {len(WINNING_TIERS)} prize tiers are supported")
        if any(not tier.name.strip() for tier in tiers):
            raise ValidationError("Every prize tier needs a name")

        total_prizes = sum(tier.quantity for tier in tiers)
        if total_prizes > total_draws:
            raise ValidationError(
                f"Winning prizes ({total_prizes}) exceed the total number of draws ({total_draws})"
            )

    async def _insert_prizes(self, board_id: str, tiers: List[PrizeTierInput], total_draws: int) -> None:
        now = datetime.now(pytz.UTC)
        for index, tier in enumerate(tiers):
            await self.store.insert_one(PRIZES, {
                "board_id": board_id,
                "tier": (tier.tier or "").strip() or WINNING_TIERS[index],
                "name": tier.name.strip(),
                "description": tier.description,
                "qty_total": tier.quantity,
                "qty_left": tier.quantity,
                "images": list(tier.images),
                "sort_order": index,
                "created_at": now,
            })

        # Whatever is not a winning draw is a blank
        blank_count = max(0, total_draws - sum(tier.quantity for tier in tiers))
        if blank_count > 0:
            await self.store.insert_one(PRIZES, {
                "board_id": board_id,
                "tier": BLANK_TIER,
                "name": BLANK_TIER,
                "description": None,
                "qty_total": blank_count,
                "qty_left": blank_count,
                "images": [],
                "sort_order": len(tiers),
                "created_at": now,
            })

    async def create_board(self, seller_id: str, data: BoardCreate) -> Board:
        self._validate_tiers(data.title, data.tiers, data.total_draws)

        now = datetime.now(pytz.UTC)
        doc = await self.store.insert_one(BOARDS, {
            "seller_id": seller_id,
            "title": data.title.strip(),
            "description": data.description,
            "status": BoardStatus.DRAFT.value,
            "mode": "manual",
            "public_slug": None,
            "overlay_token": generate_overlay_token(),
            "sound_enabled": True,
            "theme": {},
            "created_at": now,
            "updated_at": now,
        })
        board = Board.model_validate(doc)

        await self._insert_prizes(board.id, data.tiers, data.total_draws)
        await self.overlay.create(board.id)

        logger.info(f"Board {board.id} created by seller {seller_id}")
        return board

    async def list_boards(self, seller_id: str) -> List[BoardListItem]:
        docs = await self.store.find(BOARDS, {"seller_id": seller_id}, sort=[("created_at", -1)])
        items = []
        for doc in docs:
            board = Board.model_validate(doc)
            has_events = await self.has_draw_events(board.id)
            items.append(BoardListItem(
                board=board,
                has_draw_events=has_events,
                can_edit=board.status == BoardStatus.DRAFT and not has_events,
            ))
        return items

    async def update_details(self, board_id: str, seller_id: str, data: BoardUpdate) -> Board:
        await self.get_owned_board(board_id, seller_id)

        changes = data.model_dump(exclude_unset=True, exclude_none=True)
        if not changes:
            raise ValidationError("No updates provided")
        if "title" in changes:
            if not changes["title"].strip():
                raise ValidationError("Board title is required")
            changes["title"] = changes["title"].strip()

        changes["updated_at"] = datetime.now(pytz.UTC)
        updated = await self.store.update_one(BOARDS, {"_id": board_id}, changes)
        if updated is None:
            raise NotFoundError("Board not found")
        return Board.model_validate(updated)

    async def replace_prizes(self, board_id: str, seller_id: str, tiers: List[PrizeTierInput],
                             total_draws: int) -> List[Prize]:
        board = await self.get_owned_board(board_id, seller_id)
        if not await self.can_edit_prizes(board):
            raise ValidationError("Prizes can only be edited on a draft board with no draws")

        self._validate_tiers(board.title, tiers, total_draws)

        await self.store.delete_many(PRIZES, {"board_id": board_id})
        await self._insert_prizes(board_id, tiers, total_draws)
        await self.store.update_one(BOARDS, {"_id": board_id}, {"updated_at": datetime.now(pytz.UTC)})

        logger.info(f"Prizes replaced on board {board_id}")
        return await self.list_prizes(board_id)

    async def set_status(self, board_id: str, seller_id: str, new_status: BoardStatus) -> Board:
        board = await self.get_owned_board(board_id, seller_id)
        if new_status not in STATUS_TRANSITIONS[board.status]:
            raise ValidationError(
                f"Cannot change board status from {board.status.value} to {new_status.value}"
            )

        updated = await self.store.update_one(BOARDS, {"_id": board_id}, {
            "status": new_status.value,
            "updated_at": datetime.now(pytz.UTC),
        })
        if updated is None:
            raise NotFoundError("Board not found")

        logger.info(f"Board {board_id} status {board.status.value} -> {new_status.value}")
        return Board.model_validate(updated)

    async def delete_board(self, board_id: str, seller_id: str) -> None:
        await self.get_owned_board(board_id, seller_id)

        # Dependents first
        await self.store.delete_many(DRAW_EVENTS, {"board_id": board_id})
        await self.store.delete_many(PRIZES, {"board_id": board_id})
        await self.store.delete_many(OVERLAY_STATES, {"board_id": board_id})
        await self.store.delete_many(BOARDS, {"_id": board_id})

        logger.info(f"Board {board_id} deleted")

    async def summary(self, board_id: str, seller_id: str, recent_limit: int = 10) -> BoardSummary:
        board = await self.get_owned_board(board_id, seller_id)
        prizes = await self.list_prizes(board_id)
        events = await self.store.find(
            DRAW_EVENTS, {"board_id": board_id}, sort=[("created_at", -1)], limit=recent_limit
        )
        draw_count = await self.store.count(DRAW_EVENTS, {"board_id": board_id})

        total = sum(prize.qty_total for prize in prizes)
        remaining = sum(prize.display_left for prize in prizes)
        progress = round((total - remaining) / total * 100) if total > 0 else 0

        return BoardSummary(
            board=board,
            prizes=prizes,
            total_draws=total,
            remaining_draws=remaining,
            progress_percent=progress,
            draw_count=draw_count,
            recent_draws=attach_prizes(events, prizes),
            overlay_url=overlay_url(board),
            can_edit=board.status == BoardStatus.DRAFT and draw_count == 0,
        )


def overlay_url(board: Board) -> str:
    return f"{config.SITE_URL}/o/{board.id}?token={board.overlay_token}"
