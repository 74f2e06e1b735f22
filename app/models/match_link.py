"""
Modelos MatchLink + MatchLinkMovement — vínculo extracto ↔ movimientos.

Una línea tiene como máximo un vínculo activo; desconciliar elimina el
vínculo. Un movimiento solo puede estar en un vínculo a la vez.
"""

import enum
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base, utcnow


class MatchType(str, enum.Enum):
    AUTO = "auto"
    MANUAL = "manual"


class MatchLink(Base):
    __tablename__ = "match_links"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    period_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("reconciliation_periods.id"), nullable=False,
        index=True,
    )
    line_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("statement_lines.id"), nullable=False,
        unique=True,
    )
    match_type: Mapped[MatchType] = mapped_column(
        Enum(MatchType, values_callable=lambda e: [x.value for x in e]),
        nullable=False,
    )
    confidence: Mapped[Decimal | None] = mapped_column(
        Numeric(4, 3), comment="Solo para conciliaciones automáticas"
    )
    created_by: Mapped[str] = mapped_column(String(100), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )

    movements: Mapped[list["MatchLinkMovement"]] = relationship(
        "MatchLinkMovement",
        back_populates="link",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="MatchLinkMovement.movement_id",
    )

    @property
    def movement_ids(self) -> list[int]:
        return [m.movement_id for m in self.movements]

    def __repr__(self) -> str:
        match_type = self.match_type.value if self.match_type else "?"
        return f"<MatchLink line={self.line_id} [{match_type}]>"


class MatchLinkMovement(Base):
    __tablename__ = "match_link_movements"

    link_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("match_links.id", ondelete="CASCADE"),
        primary_key=True,
    )
    movement_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("ledger_movements.id"), primary_key=True, unique=True,
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)

    link: Mapped["MatchLink"] = relationship("MatchLink", back_populates="movements")
