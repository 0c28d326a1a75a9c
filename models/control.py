from pydantic import BaseModel
from typing import List, Optional

from models.board import Board
from models.draw_event import DrawEvent
from models.overlay import OverlayState
from models.prize import Prize


class Notice(BaseModel):
    level: str  # success | error
    message: str


class DrawCounters(BaseModel):
    remaining: int = 0
    total: int = 0


class ControlRoomView(BaseModel):
    board: Optional[Board] = None
    prizes: List[Prize] = []
    draw_events: List[DrawEvent] = []
    overlay_state: Optional[OverlayState] = None
    selected_prize_id: Optional[str] = None
    viewer_name: str = ""
    focus_input: bool = False
    is_drawing: bool = False
    counters: DrawCounters = DrawCounters()
    notices: List[Notice] = []


class ControlCommand(BaseModel):
    """Message sent by the control room client over its WebSocket"""

    type: str  # key | select | viewer_name | submit | toggle_modal | show_prize | hide_result | dismiss_notice
    key: Optional[str] = None
    input_focused: bool = False
    prize_id: Optional[str] = None
    value: Optional[str] = None
    index: Optional[int] = None
