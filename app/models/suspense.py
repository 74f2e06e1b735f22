"""
Modelo SuspenseItem — partidas del extracto sin conciliación automática.
"""

import enum
import uuid
from datetime import datetime

from sqlalchemy import (
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base, JSONType, utcnow


class SuspenseReason(str, enum.Enum):
    NO_CANDIDATE = "no_candidate"
    AMBIGUOUS_CANDIDATE = "ambiguous_candidate"


class SuspenseOutcome(str, enum.Enum):
    CONVERTED_TO_MOVEMENT = "converted_to_movement"
    WRITTEN_OFF = "written_off"
    STILL_PENDING = "still_pending"


class SuspenseItem(Base):
    __tablename__ = "suspense_items"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    period_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("reconciliation_periods.id"), nullable=False
    )
    line_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("statement_lines.id"), nullable=False,
        unique=True,
    )
    reason: Mapped[SuspenseReason] = mapped_column(
        Enum(SuspenseReason, values_callable=lambda e: [x.value for x in e]),
        nullable=False,
    )
    candidate_movement_ids: Mapped[list | None] = mapped_column(
        JSONType, comment="Candidatos empatados (solo AMBIGUOUS_CANDIDATE)"
    )
    assigned_to: Mapped[str | None] = mapped_column(String(100))

    outcome: Mapped[SuspenseOutcome | None] = mapped_column(
        Enum(SuspenseOutcome, values_callable=lambda e: [x.value for x in e]),
    )
    justification: Mapped[str | None] = mapped_column(Text)
    movement_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("ledger_movements.id"),
        comment="Movimiento creado al convertir la partida"
    )
    resolved_by: Mapped[str | None] = mapped_column(String(100))
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )

    __table_args__ = (
        Index("idx_suspense_period_outcome", "period_id", "outcome"),
    )

    @property
    def is_open(self) -> bool:
        return self.outcome in (None, SuspenseOutcome.STILL_PENDING)

    def __repr__(self) -> str:
        outcome = self.outcome.value if self.outcome else "open"
        reason = self.reason.value if self.reason else "?"
        return f"<SuspenseItem line={self.line_id} {reason} [{outcome}]>"
