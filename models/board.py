from pydantic import AliasChoices, BaseModel, Field
from typing import Any, Dict, List, Optional
from datetime import datetime
from enum import Enum

from models.draw_event import DrawEvent
from models.prize import Prize, PrizeTierInput


class BoardStatus(str, Enum):
    DRAFT = "draft"
    LIVE = "live"
    PAUSED = "paused"
    CLOSED = "closed"


class DrawMode(str, Enum):
    MANUAL = "manual"
    RANDOM = "random"


class Board(BaseModel):
    id: str = Field(validation_alias=AliasChoices("_id", "id"))
    seller_id: str
    title: str
    description: Optional[str] = None
    status: BoardStatus = BoardStatus.DRAFT
    mode: DrawMode = DrawMode.MANUAL
    public_slug: Optional[str] = None
    overlay_token: str
    sound_enabled: bool = True
    theme: Dict[str, Any] = {}
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class BoardCreate(BaseModel):
    title: str
    description: Optional[str] = None
    total_draws: int = Field(100, ge=0)
    tiers: List[PrizeTierInput]


class BoardUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    sound_enabled: Optional[bool] = None


class PrizeReplace(BaseModel):
    total_draws: int = Field(..., ge=0)
    tiers: List[PrizeTierInput]


class StatusUpdate(BaseModel):
    status: BoardStatus


class BoardListItem(BaseModel):
    board: Board
    has_draw_events: bool
    can_edit: bool


class BoardSummary(BaseModel):
    board: Board
    prizes: List[Prize]
    total_draws: int
    remaining_draws: int
    progress_percent: int
    draw_count: int
    recent_draws: List[DrawEvent]
    overlay_url: str
    can_edit: bool
