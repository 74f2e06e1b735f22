"""
Schemas de auditoría — payload tipado por variante (`kind`).

Cada AuditEntry guarda una de estas variantes; al leer se decodifica con
`AUDIT_PAYLOAD_ADAPTER` para poder hacer pattern matching exhaustivo.
"""

from datetime import datetime
from decimal import Decimal
from typing import Annotated, Literal, Union
from uuid import UUID

from pydantic import BaseModel, Field, TypeAdapter


class StatementImported(BaseModel):
    kind: Literal["StatementImported"] = "StatementImported"
    batch_reference: str
    line_count: int


class MatchCreated(BaseModel):
    kind: Literal["MatchCreated"] = "MatchCreated"
    link_id: UUID
    line_id: UUID
    match_type: str
    movement_ids: list[int]
    amount: Decimal
    confidence: Decimal | None = None


class MatchRemoved(BaseModel):
    kind: Literal["MatchRemoved"] = "MatchRemoved"
    link_id: UUID
    line_id: UUID
    match_type: str
    movement_ids: list[int]
    amount: Decimal
    confidence: Decimal | None = None
    created_by: str
    created_at: datetime


class SuspenseOpened(BaseModel):
    kind: Literal["SuspenseOpened"] = "SuspenseOpened"
    item_id: UUID
    line_id: UUID
    reason: str
    candidate_movement_ids: list[int] = Field(default_factory=list)


class SuspenseResolved(BaseModel):
    kind: Literal["SuspenseResolved"] = "SuspenseResolved"
    item_id: UUID
    line_id: UUID
    outcome: str
    justification: str | None = None
    movement_id: int | None = None


class PeriodClosed(BaseModel):
    kind: Literal["PeriodClosed"] = "PeriodClosed"
    pending_count: int
    suspense_count: int
    total_difference: Decimal
    adjustment_posted: bool
    adjustment_id: UUID | None = None
    forced: bool
    saldo_bancario: Decimal


class PeriodReopened(BaseModel):
    kind: Literal["PeriodReopened"] = "PeriodReopened"
    reason: str
    intermediate_state: str


class AdjustmentPosted(BaseModel):
    kind: Literal["AdjustmentPosted"] = "AdjustmentPosted"
    adjustment_id: UUID
    movement_id: int
    adjustment_type: str
    amount: Decimal
    balance_before: Decimal
    balance_after: Decimal


AuditPayload = Annotated[
    Union[
        StatementImported,
        MatchCreated,
        MatchRemoved,
        SuspenseOpened,
        SuspenseResolved,
        PeriodClosed,
        PeriodReopened,
        AdjustmentPosted,
    ],
    Field(discriminator="kind"),
]

AUDIT_PAYLOAD_ADAPTER: TypeAdapter[AuditPayload] = TypeAdapter(AuditPayload)


class AuditEntryResponse(BaseModel):
    id: UUID
    period_id: UUID
    entity_type: str
    entity_id: str
    kind: str
    before_state: str | None = None
    after_state: str | None = None
    actor: str
    payload: AuditPayload
    created_at: datetime


class AuditEntryListResponse(BaseModel):
    items: list[AuditEntryResponse]
    total: int
    page: int
    size: int
    pages: int
