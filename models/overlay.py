from pydantic import BaseModel
from typing import List, Optional
from datetime import datetime
from enum import Enum

from models.draw_event import DrawEvent
from models.prize import Prize, PrizeCounter


class OverlayState(BaseModel):
    board_id: str
    is_modal_open: bool = False
    focused_prize_id: Optional[str] = None
    show_last_result: bool = False
    connection_status: str = "idle"
    updated_at: Optional[datetime] = None


class ModalCommand(BaseModel):
    # None toggles the current modal state
    open: Optional[bool] = None
    prize_id: Optional[str] = None


class RevealPhase(str, Enum):
    HIDDEN = "hidden"
    PRE_ROLL = "pre_roll"
    SHOWING = "showing"


class ModalView(BaseModel):
    visible: bool = False
    prize: Optional[Prize] = None


class ResultView(BaseModel):
    phase: RevealPhase = RevealPhase.HIDDEN
    draw: Optional[DrawEvent] = None


class RecentWinnerChip(BaseModel):
    viewer_name: str
    tier: str


class OverlayView(BaseModel):
    board_id: str
    denied: bool = False
    loading: bool = False
    title: Optional[str] = None
    modal: ModalView = ModalView()
    result: ResultView = ResultView()
    counters: List[PrizeCounter] = []
    recent_winner: Optional[RecentWinnerChip] = None
