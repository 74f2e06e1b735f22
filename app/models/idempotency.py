"""
Modelo IdempotencyRecord — guarda de ejecución única por clave del cliente.

Clave: (scope, token). La respuesta se cachea al completar y se repite
tal cual ante reintentos hasta que el registro expira.
"""

import enum
import uuid
from datetime import datetime

from sqlalchemy import (
    DateTime,
    Enum,
    Index,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base, JSONType, utcnow


class IdempotencyStatus(str, enum.Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class IdempotencyRecord(Base):
    __tablename__ = "idempotency_records"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    scope: Mapped[str] = mapped_column(String(100), nullable=False)
    operation: Mapped[str] = mapped_column(String(50), nullable=False)
    token: Mapped[str] = mapped_column(String(200), nullable=False)

    status: Mapped[IdempotencyStatus] = mapped_column(
        Enum(IdempotencyStatus, values_callable=lambda e: [x.value for x in e]),
        nullable=False, default=IdempotencyStatus.PROCESSING,
    )
    response: Mapped[dict | None] = mapped_column(JSONType)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("scope", "token", name="uq_idempotency_scope_token"),
        Index("idx_idempotency_status_expiry", "status", "expires_at"),
    )

    def __repr__(self) -> str:
        status = self.status.value if self.status else "?"
        return f"<IdempotencyRecord {self.scope}/{self.operation} [{status}]>"
