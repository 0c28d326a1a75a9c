from pydantic import AliasChoices, BaseModel, Field
from typing import Optional
from datetime import datetime

from models.prize import BLANK_TIER, Prize


class DrawEvent(BaseModel):
    id: str = Field(validation_alias=AliasChoices("_id", "id"))
    board_id: str
    prize_id: Optional[str] = None
    viewer_name: str
    note: Optional[str] = None
    created_at: datetime
    # Joined for display; not stored on the event
    prize: Optional[Prize] = None

    @property
    def tier_label(self) -> str:
        return self.prize.tier if self.prize else BLANK_TIER


class DrawCreate(BaseModel):
    prize_id: str
    viewer_name: str
    note: Optional[str] = None
