"""
Modelo AuditEntry — Registro de auditoría INMUTABLE.
INSERT-only: cada alta o transición de la conciliación deja una entrada.
"""

import uuid
from datetime import datetime

from sqlalchemy import String, DateTime, ForeignKey, Index, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base, JSONType, utcnow


class AuditEntry(Base):
    __tablename__ = "reconciliation_audit_log"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    period_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("reconciliation_periods.id"), nullable=False,
        index=True,
    )

    # ── Datos del evento ─────────────────────────────
    entity_type: Mapped[str] = mapped_column(
        String(50), nullable=False,
        comment="period, statement_line, match_link, suspense_item, closing_adjustment"
    )
    entity_id: Mapped[str] = mapped_column(
        String(36), nullable=False, comment="Id del registro afectado"
    )
    kind: Mapped[str] = mapped_column(
        String(40), nullable=False, index=True,
        comment="Variante del payload: MatchCreated, PeriodClosed, etc."
    )
    before_state: Mapped[str | None] = mapped_column(String(40))
    after_state: Mapped[str | None] = mapped_column(String(40))

    payload: Mapped[dict] = mapped_column(
        JSONType, nullable=False, comment="Payload tipado según `kind`"
    )
    actor: Mapped[str] = mapped_column(String(100), nullable=False)

    # ── Timestamp inmutable ──────────────────────────
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )

    __table_args__ = (
        Index("idx_audit_entity", "entity_type", "entity_id"),
    )

    def __repr__(self) -> str:
        return f"<AuditEntry {self.kind} on {self.entity_type} {self.entity_id}>"
