"""
Schemas para conciliación manual y vínculos extracto ↔ movimientos.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from app.models.ledger import MovementType
from app.models.match_link import MatchType


class ManualMatchRequest(BaseModel):
    movement_ids: list[int] = Field(..., min_length=1)

    @field_validator("movement_ids")
    @classmethod
    def _unique(cls, value: list[int]) -> list[int]:
        if len(set(value)) != len(value):
            raise ValueError("movement_ids no puede contener repetidos")
        return value


class MatchLinkResponse(BaseModel):
    id: UUID
    period_id: UUID
    line_id: UUID
    match_type: MatchType
    confidence: Decimal | None = None
    movement_ids: list[int]
    created_by: str
    created_at: datetime

    model_config = {"from_attributes": True}


class UnmatchResponse(BaseModel):
    line_id: UUID
    status: str
    removed_link_id: UUID
    released_movement_ids: list[int]


class LedgerMovementResponse(BaseModel):
    id: int
    account_id: int
    movement_type: MovementType
    amount: Decimal
    movement_date: date
    source_ref: str | None = None
    description: str | None = None
    balance_before: Decimal
    balance_after: Decimal
    is_adjustment: bool

    model_config = {"from_attributes": True}
