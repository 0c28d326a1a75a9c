from fastapi import APIRouter, HTTPException, Depends
from typing import List
import logging

from models.board import (
    Board,
    BoardCreate,
    BoardListItem,
    BoardSummary,
    BoardUpdate,
    PrizeReplace,
    StatusUpdate,
)
from models.prize import Prize
from routes.auth import get_current_seller
from dependencies import get_board_service
from services.board_service import BoardService
from services.errors import DrawBoardError

router = APIRouter()
logger = logging.getLogger(__name__)


def to_http_error(e: DrawBoardError) -> HTTPException:
    return HTTPException(status_code=e.status_code, detail=e.message)


@router.post("", response_model=Board)
async def create_board(
        data: BoardCreate,
        current_user: dict = Depends(get_current_seller),
        boards: BoardService = Depends(get_board_service)
):
    """Create a draft board with its prize tiers"""
    try:
        return await boards.create_board(str(current_user["_id"]), data)
    except DrawBoardError as e:
        raise to_http_error(e)


@router.get("", response_model=List[BoardListItem])
async def list_boards(
        current_user: dict = Depends(get_current_seller),
        boards: BoardService = Depends(get_board_service)
):
    """List the current seller's boards, newest first"""
    try:
        return await boards.list_boards(str(current_user["_id"]))
    except DrawBoardError as e:
        raise to_http_error(e)


@router.get("/{board_id}", response_model=BoardSummary)
async def get_board(
        board_id: str,
        current_user: dict = Depends(get_current_seller),
        boards: BoardService = Depends(get_board_service)
):
    try:
        return await boards.summary(board_id, str(current_user["_id"]))
    except DrawBoardError as e:
        raise to_http_error(e)


@router.put("/{board_id}", response_model=Board)
async def update_board(
        board_id: str,
        data: BoardUpdate,
        current_user: dict = Depends(get_current_seller),
        boards: BoardService = Depends(get_board_service)
):
    try:
        return await boards.update_details(board_id, str(current_user["_id"]), data)
    except DrawBoardError as e:
        raise to_http_error(e)


@router.put("/{board_id}/prizes", response_model=List[Prize])
async def replace_prizes(
        board_id: str,
        data: PrizeReplace,
        current_user: dict = Depends(get_current_seller),
        boards: BoardService = Depends(get_board_service)
):
    """Replace the whole prize set (draft boards without draws only)"""
    try:
        return await boards.replace_prizes(board_id, str(current_user["_id"]), data.tiers, data.total_draws)
    except DrawBoardError as e:
        raise to_http_error(e)


@router.post("/{board_id}/status", response_model=Board)
async def set_status(
        board_id: str,
        data: StatusUpdate,
        current_user: dict = Depends(get_current_seller),
        boards: BoardService = Depends(get_board_service)
):
    try:
        return await boards.set_status(board_id, str(current_user["_id"]), data.status)
    except DrawBoardError as e:
        raise to_http_error(e)


@router.delete("/{board_id}", response_model=dict)
async def delete_board(
        board_id: str,
        current_user: dict = Depends(get_current_seller),
        boards: BoardService = Depends(get_board_service)
):
    """Delete a board together with its prizes, draws and overlay state"""
    try:
        await boards.delete_board(board_id, str(current_user["_id"]))
        return {"message": "Board deleted successfully"}
    except DrawBoardError as e:
        raise to_http_error(e)
