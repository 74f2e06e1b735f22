"""
Schemas para partidas en suspenso.
"""

from datetime import date, datetime
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from app.config import get_settings
from app.models.suspense import SuspenseOutcome, SuspenseReason

settings = get_settings()


class SuspenseJustification(BaseModel):
    """Request para dejar pendiente o dar de baja una partida."""
    justification: str

    @field_validator("justification")
    @classmethod
    def _check(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("La justificación es obligatoria")
        if len(value) > settings.JUSTIFICATION_MAX_LENGTH:
            raise ValueError(
                f"La justificación admite como máximo {settings.JUSTIFICATION_MAX_LENGTH} caracteres"
            )
        return value


class MovementDraft(BaseModel):
    """Borrador del movimiento a crear desde una partida en suspenso."""
    description: str = Field(..., min_length=1, max_length=500)
    source_ref: str | None = Field(None, max_length=100)
    movement_date: date | None = None


class SuspenseAssign(BaseModel):
    assignee: str = Field(..., min_length=1, max_length=100)


class SuspenseItemResponse(BaseModel):
    id: UUID
    period_id: UUID
    line_id: UUID
    reason: SuspenseReason
    candidate_movement_ids: list[int] | None = None
    assigned_to: str | None = None
    outcome: SuspenseOutcome | None = None
    justification: str | None = None
    movement_id: int | None = None
    resolved_by: str | None = None
    resolved_at: datetime | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class SuspenseItemListResponse(BaseModel):
    items: list[SuspenseItemResponse]
    total: int
