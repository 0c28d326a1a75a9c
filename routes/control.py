import asyncio
import logging
from typing import Optional

import pydantic
from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect, status

from database import get_record_store, get_sync_channel
from dependencies import get_board_service, get_ledger, get_overlay_machine
from models.control import ControlCommand, ControlRoomView
from models.draw_event import DrawCreate, DrawEvent
from models.overlay import ModalCommand, OverlayState
from routes.auth import get_current_seller, is_seller, resolve_user
from routes.boards import to_http_error
from services.board_service import BoardService
from services.control_room import ControlRoomSession
from services.errors import DrawBoardError, NotFoundError
from services.inventory_ledger import InventoryLedger
from services.overlay_state import OverlayStateMachine
from services.record_store import RecordStore
from services.sync_channel import SyncChannel

router = APIRouter()
# Mounted without a prefix, next to the overlay socket
socket_router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/boards/{board_id}/control", response_model=ControlRoomView)
async def get_control_room(
        board_id: str,
        current_user: dict = Depends(get_current_seller),
        store: RecordStore = Depends(get_record_store),
        channel: SyncChannel = Depends(get_sync_channel),
        ledger: InventoryLedger = Depends(get_ledger)
):
    """Snapshot of what the control room shows for a board"""
    session = ControlRoomSession(board_id, str(current_user["_id"]), store, channel, ledger)
    try:
        await session.refresh()
    except DrawBoardError as e:
        raise to_http_error(e)
    return session.view()


@router.post("/boards/{board_id}/draws", response_model=DrawEvent)
async def commit_draw(
        board_id: str,
        data: DrawCreate,
        current_user: dict = Depends(get_current_seller),
        boards: BoardService = Depends(get_board_service),
        ledger: InventoryLedger = Depends(get_ledger)
):
    """Award one unit of a prize to a viewer"""
    try:
        await boards.get_owned_board(board_id, str(current_user["_id"]))
        return await ledger.commit_draw(board_id, data.prize_id, data.viewer_name, data.note)
    except DrawBoardError as e:
        raise to_http_error(e)


@router.post("/boards/{board_id}/overlay/modal", response_model=OverlayState)
async def set_modal(
        board_id: str,
        command: ModalCommand,
        current_user: dict = Depends(get_current_seller),
        boards: BoardService = Depends(get_board_service),
        overlay: OverlayStateMachine = Depends(get_overlay_machine)
):
    """Open (optionally on a prize), close or toggle the overlay's prize modal"""
    try:
        await boards.get_owned_board(board_id, str(current_user["_id"]))
        should_open = command.open
        if should_open is None:
            state = await overlay.ensure(board_id)
            should_open = not state.is_modal_open
        if should_open:
            if command.prize_id is not None:
                prizes = await boards.list_prizes(board_id)
                if not any(prize.id == command.prize_id for prize in prizes):
                    raise NotFoundError("Prize not found on this board")
            return await overlay.open_modal(board_id, command.prize_id)
        return await overlay.close_modal(board_id)
    except DrawBoardError as e:
        raise to_http_error(e)


@router.post("/boards/{board_id}/overlay/hide-result", response_model=OverlayState)
async def hide_result(
        board_id: str,
        current_user: dict = Depends(get_current_seller),
        boards: BoardService = Depends(get_board_service),
        overlay: OverlayStateMachine = Depends(get_overlay_machine)
):
    try:
        await boards.get_owned_board(board_id, str(current_user["_id"]))
        return await overlay.hide_last_result(board_id)
    except DrawBoardError as e:
        raise to_http_error(e)


async def dispatch_command(session: ControlRoomSession, command: ControlCommand) -> None:
    if command.type == "key":
        await session.handle_key(command.key or "", command.input_focused)
    elif command.type == "select":
        if command.index is not None:
            session.select_slot(command.index)
        else:
            session.select_prize(command.prize_id or "")
        await session.emit()
    elif command.type == "viewer_name":
        session.set_viewer_name(command.value or "")
        await session.emit()
    elif command.type == "submit":
        await session.submit_draw()
    elif command.type == "toggle_modal":
        await session.toggle_modal(prize_id=command.prize_id)
    elif command.type == "show_prize":
        await session.show_prize(command.prize_id or "")
    elif command.type == "hide_result":
        await session.hide_last_result()
    elif command.type == "dismiss_notice":
        session.dismiss_notice(command.index)
        await session.emit()
    else:
        session.notice("error", f"Unknown command: {command.type}")
        await session.emit()


@socket_router.websocket("/ws/control/{board_id}")
async def control_room_socket(
        websocket: WebSocket,
        board_id: str,
        access_token: Optional[str] = None,
        store: RecordStore = Depends(get_record_store),
        channel: SyncChannel = Depends(get_sync_channel),
        ledger: InventoryLedger = Depends(get_ledger)
):
    user = await resolve_user(access_token, store)
    if user is None or not is_seller(user):
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    send_lock = asyncio.Lock()

    async def push(session: ControlRoomSession):
        async with send_lock:
            await websocket.send_json(session.view().model_dump(mode="json"))

    session = ControlRoomSession(board_id, str(user["_id"]), store, channel, ledger, on_change=push)
    try:
        await session.start()
    except DrawBoardError as e:
        await websocket.send_json({"error": e.message})
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    try:
        while True:
            data = await websocket.receive_json()
            try:
                command = ControlCommand.model_validate(data)
            except pydantic.ValidationError as e:
                logger.warning(f"Invalid control command on board {board_id}: {e}")
                continue
            await dispatch_command(session, command)
    except WebSocketDisconnect:
        pass
    finally:
        await session.close()
