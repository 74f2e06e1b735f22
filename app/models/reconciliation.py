"""
Modelos de Conciliación Bancaria — período, extractos importados y ajustes.

Un ReconciliationPeriod es la ventana de conciliación de una cuenta bancaria.
Nunca se elimina: los períodos cerrados se conservan para auditoría.
"""

import enum
import uuid
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base, JSONType, utcnow
from app.models.ledger import MovementType


# ── Enums ─────────────────────────────────────────────


class PeriodState(str, enum.Enum):
    """Estados del ciclo de cierre."""
    OPEN = "open"
    CLOSING = "closing"
    COMPLETED = "completed"
    WITH_DIFFERENCES = "with_differences"
    REOPENED = "reopened"


class LineStatus(str, enum.Enum):
    """Estado de conciliación de una línea del extracto."""
    UNMATCHED = "unmatched"
    MATCHED = "matched"
    SUSPENSE = "suspense"


# ── ReconciliationPeriod ──────────────────────────────


class ReconciliationPeriod(Base):
    __tablename__ = "reconciliation_periods"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    account_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("bank_accounts.id"), nullable=False
    )
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)

    saldo_contable: Mapped[Decimal] = mapped_column(
        Numeric(14, 2), nullable=False, default=Decimal("0.00"),
        comment="Saldo contable al momento del último cálculo"
    )
    saldo_bancario: Mapped[Decimal] = mapped_column(
        Numeric(14, 2), nullable=False, default=Decimal("0.00"),
        comment="Saldo informado por el banco (o declarado al cierre)"
    )
    state: Mapped[PeriodState] = mapped_column(
        Enum(PeriodState, values_callable=lambda e: [x.value for x in e]),
        nullable=False, default=PeriodState.OPEN,
    )
    date_window_days: Mapped[int | None] = mapped_column(
        Integer, comment="Ventana de fechas para auto-conciliación (None = default)"
    )

    # ── Datos de cierre ──────────────────────────────
    closing_notes: Mapped[str | None] = mapped_column(Text)
    difference_justifications: Mapped[list | None] = mapped_column(JSONType)
    total_difference: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    closed_by: Mapped[str | None] = mapped_column(String(100))

    # ── Reapertura ───────────────────────────────────
    reopen_reason: Mapped[str | None] = mapped_column(Text)
    reopened_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    reopened_by: Mapped[str | None] = mapped_column(String(100))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint(
            "account_id", "period_start", "period_end", name="uq_period_account_range"
        ),
        Index("idx_period_account_state", "account_id", "state"),
    )

    def __repr__(self) -> str:
        state = self.state.value if self.state else "?"
        return f"<ReconciliationPeriod {self.period_start}..{self.period_end} [{state}]>"


# ── StatementImport ───────────────────────────────────


class StatementImport(Base):
    """Lote de extracto importado; protege contra la doble carga."""
    __tablename__ = "statement_imports"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    period_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("reconciliation_periods.id"), nullable=False
    )
    batch_reference: Mapped[str] = mapped_column(String(100), nullable=False)
    line_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    imported_by: Mapped[str | None] = mapped_column(String(100))
    imported_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("period_id", "batch_reference", name="uq_import_period_batch"),
    )


# ── StatementLine ─────────────────────────────────────


class StatementLine(Base):
    __tablename__ = "statement_lines"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    period_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("reconciliation_periods.id"), nullable=False
    )
    import_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("statement_imports.id"), nullable=False
    )
    position: Mapped[int] = mapped_column(
        Integer, nullable=False, comment="Orden de llegada dentro del período"
    )
    amount: Mapped[Decimal] = mapped_column(
        Numeric(14, 2), nullable=False,
        comment="Monto con signo: positivo crédito, negativo débito"
    )
    value_date: Mapped[date] = mapped_column(Date, nullable=False)
    description: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    external_reference: Mapped[str | None] = mapped_column(String(100))
    status: Mapped[LineStatus] = mapped_column(
        Enum(LineStatus, values_callable=lambda e: [x.value for x in e]),
        nullable=False, default=LineStatus.UNMATCHED,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )

    __table_args__ = (
        Index("idx_line_period_status", "period_id", "status"),
        Index("idx_line_period_order", "period_id", "value_date", "position"),
    )

    def __repr__(self) -> str:
        status = self.status.value if self.status else "?"
        return f"<StatementLine {self.value_date} {self.amount} [{status}]>"


# ── ClosingAdjustment ─────────────────────────────────


class ClosingAdjustment(Base):
    """Movimiento de ajuste generado al cerrar con diferencias justificadas."""
    __tablename__ = "closing_adjustments"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    period_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("reconciliation_periods.id"), nullable=False
    )
    movement_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("ledger_movements.id"), nullable=False
    )
    adjustment_type: Mapped[MovementType] = mapped_column(
        Enum(MovementType, values_callable=lambda e: [x.value for x in e]),
        nullable=False,
    )
    amount: Mapped[Decimal] = mapped_column(
        Numeric(14, 2), nullable=False, comment="Valor absoluto de la diferencia"
    )
    justification: Mapped[str] = mapped_column(Text, nullable=False)
    created_by: Mapped[str | None] = mapped_column(String(100))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )

    __table_args__ = (
        Index("idx_adjustment_period", "period_id"),
    )
