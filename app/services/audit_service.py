"""
Servicio de Audit Log — registra cada alta y transición de la conciliación.
INSERT-only, nunca se modifica ni elimina.
"""

from math import ceil
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.audit_log import AuditEntry
from app.schemas.audit import (
    AUDIT_PAYLOAD_ADAPTER,
    AuditEntryListResponse,
    AuditEntryResponse,
    AuditPayload,
)


async def log_event(
    db: AsyncSession,
    *,
    period_id: UUID,
    entity_type: str,
    entity_id: UUID | int | str,
    payload: AuditPayload,
    actor: str,
    before_state: str | None = None,
    after_state: str | None = None,
) -> AuditEntry:
    """Inserta un registro de auditoría inmutable."""
    entry = AuditEntry(
        period_id=period_id,
        entity_type=entity_type,
        entity_id=str(entity_id),
        kind=payload.kind,
        before_state=before_state,
        after_state=after_state,
        payload=payload.model_dump(mode="json"),
        actor=actor,
    )
    db.add(entry)
    await db.flush()
    return entry


def _to_response(entry: AuditEntry) -> AuditEntryResponse:
    return AuditEntryResponse(
        id=entry.id,
        period_id=entry.period_id,
        entity_type=entry.entity_type,
        entity_id=entry.entity_id,
        kind=entry.kind,
        before_state=entry.before_state,
        after_state=entry.after_state,
        actor=entry.actor,
        payload=AUDIT_PAYLOAD_ADAPTER.validate_python(entry.payload),
        created_at=entry.created_at,
    )


async def get_audit_entries(
    db: AsyncSession,
    *,
    period_id: UUID,
    kind: str | None = None,
    entity_type: str | None = None,
    page: int = 1,
    size: int = 50,
) -> AuditEntryListResponse:
    """Consulta paginada del audit log de un período, en orden cronológico."""
    filters = [AuditEntry.period_id == period_id]
    if kind:
        filters.append(AuditEntry.kind == kind)
    if entity_type:
        filters.append(AuditEntry.entity_type == entity_type)

    total = await db.scalar(select(func.count(AuditEntry.id)).where(*filters)) or 0

    result = await db.execute(
        select(AuditEntry)
        .where(*filters)
        .order_by(AuditEntry.created_at, AuditEntry.id)
        .offset((page - 1) * size)
        .limit(size)
    )
    items = result.scalars().all()

    return AuditEntryListResponse(
        items=[_to_response(e) for e in items],
        total=total,
        page=page,
        size=size,
        pages=ceil(total / size) if total else 1,
    )
