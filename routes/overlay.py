import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect, status

from database import get_record_store, get_sync_channel
from models.overlay import OverlayView
from services.errors import AuthorizationError, DrawBoardError
from services.overlay_render import OverlayRenderSession
from services.record_store import RecordStore
from services.sync_channel import SyncChannel

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/o/{board_id}", response_model=OverlayView)
async def get_overlay(
        board_id: str,
        token: Optional[str] = None,
        store: RecordStore = Depends(get_record_store),
        channel: SyncChannel = Depends(get_sync_channel)
):
    """Current overlay view; the board's overlay token is the only credential"""
    session = OverlayRenderSession(board_id, token, store, channel, pre_roll_seconds=0)
    try:
        await session.authorize()
        await session.refresh()
        await session.settle()
        return session.view()
    except AuthorizationError as e:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=e.message)
    except DrawBoardError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    finally:
        await session.close()


@router.websocket("/ws/overlay/{board_id}")
async def overlay_socket(
        websocket: WebSocket,
        board_id: str,
        token: Optional[str] = None,
        store: RecordStore = Depends(get_record_store),
        channel: SyncChannel = Depends(get_sync_channel)
):
    await websocket.accept()
    send_lock = asyncio.Lock()

    async def push(session: OverlayRenderSession):
        async with send_lock:
            await websocket.send_json(session.view().model_dump(mode="json"))

    session = OverlayRenderSession(board_id, token, store, channel, on_render=push)
    try:
        await session.start()
    except AuthorizationError:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return
    except DrawBoardError as e:
        logger.error(f"Overlay for board {board_id} could not load: {e.message}")
        await session.close()
        await websocket.send_json(session.view().model_dump(mode="json"))
        await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
        return

    try:
        # Read-only: incoming messages only keep the connection alive
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        await session.close()
