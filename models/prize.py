from pydantic import AliasChoices, BaseModel, Field, field_validator
from typing import List, Optional
from datetime import datetime

# Reserved tier label for the non-winning outcome
BLANK_TIER = "꽝"
WINNING_TIERS = ["1등", "2등", "3등", "4등", "5등"]


class Prize(BaseModel):
    id: str = Field(validation_alias=AliasChoices("_id", "id"))
    board_id: str
    tier: str
    name: str
    description: Optional[str] = None
    qty_total: int = 0
    qty_left: int = 0
    images: List[str] = []
    sort_order: int = 0
    created_at: Optional[datetime] = None

    @property
    def is_blank(self) -> bool:
        return self.tier == BLANK_TIER

    @property
    def display_left(self) -> int:
        """Remaining quantity clamped to [0, qty_total] for rendering"""
        return max(0, min(self.qty_left, self.qty_total))


class PrizeTierInput(BaseModel):
    name: str
    quantity: int = Field(1, ge=1)
    tier: Optional[str] = None
    description: Optional[str] = None
    images: List[str] = []

    @field_validator("tier")
    @classmethod
    def tier_is_not_blank(cls, v):
        if v is not None and v.strip() == BLANK_TIER:
            raise ValueError(f"'{BLANK_TIER}' is reserved for the non-winning tier")
        return v


class PrizeCounter(BaseModel):
    prize_id: str
    tier: str
    qty_left: int
    qty_total: int
