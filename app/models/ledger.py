"""
Modelos BankAccount + LedgerMovement — Libro de movimientos bancarios.

Pertenecen al módulo de tesorería (cobranzas, cheques, transferencias).
La conciliación solo los lee, salvo el ajuste de cierre, que se registra
a través de `SqlLedgerGateway`.
"""

import enum
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base, utcnow


class MovementType(str, enum.Enum):
    """Tipo de movimiento derivado del signo del monto."""
    INGRESO = "ingreso"
    EGRESO = "egreso"

    @classmethod
    def for_amount(cls, amount: Decimal) -> "MovementType":
        return cls.INGRESO if amount > 0 else cls.EGRESO


class BankAccount(Base):
    __tablename__ = "bank_accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    bank: Mapped[str] = mapped_column(String(100), nullable=False)
    account_number: Mapped[str] = mapped_column(String(50), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="ARS")

    saldo_contable: Mapped[Decimal] = mapped_column(
        Numeric(14, 2), nullable=False, default=Decimal("0.00"),
        comment="Saldo según el libro de movimientos"
    )
    saldo_bancario: Mapped[Decimal] = mapped_column(
        Numeric(14, 2), nullable=False, default=Decimal("0.00"),
        comment="Último saldo informado por el banco"
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )

    def __repr__(self) -> str:
        return f"<BankAccount {self.bank} {self.account_number} saldo={self.saldo_contable}>"


class LedgerMovement(Base):
    __tablename__ = "ledger_movements"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("bank_accounts.id"), nullable=False
    )
    movement_type: Mapped[MovementType] = mapped_column(
        Enum(MovementType, values_callable=lambda e: [x.value for x in e]),
        nullable=False,
    )
    amount: Mapped[Decimal] = mapped_column(
        Numeric(14, 2), nullable=False,
        comment="Monto con signo: positivo ingreso, negativo egreso"
    )
    movement_date: Mapped[date] = mapped_column(Date, nullable=False)
    source_ref: Mapped[str | None] = mapped_column(
        String(100), comment="Referencia de origen: nro de cheque, transferencia, recibo"
    )
    description: Mapped[str | None] = mapped_column(String(500))

    balance_before: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    balance_after: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)

    is_adjustment: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False,
        comment="Ajuste de cierre de conciliación"
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )

    __table_args__ = (
        Index("idx_ledger_movement_account_date", "account_id", "movement_date"),
    )

    def __repr__(self) -> str:
        movement_type = self.movement_type.value if self.movement_type else "?"
        return f"<LedgerMovement {self.id} {self.amount} [{movement_type}]>"
