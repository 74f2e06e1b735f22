"""
Endpoints de Partidas en Suspenso.
Dejar pendiente, dar de baja, convertir en movimiento y asignar responsable.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Response
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies import get_actor, get_idempotency_key, idempotent_response
from app.database import get_db
from app.schemas.suspense import (
    MovementDraft,
    SuspenseAssign,
    SuspenseItemResponse,
    SuspenseJustification,
)
from app.services import suspense_service
from app.services.idempotency_service import with_idempotency

router = APIRouter()


@router.get("/{item_id}", response_model=SuspenseItemResponse)
async def get_item(
    item_id: UUID,
    db: AsyncSession = Depends(get_db),
):
    return await suspense_service.get_item(db, item_id)


@router.post("/{item_id}/skip", response_model=SuspenseItemResponse)
async def resolve_by_skip(
    item_id: UUID,
    data: SuspenseJustification,
    response: Response,
    actor: str = Depends(get_actor),
    idempotency_key: str | None = Depends(get_idempotency_key),
    db: AsyncSession = Depends(get_db),
):
    """Deja la partida pendiente con justificación; sigue contando en el cierre."""
    result = await with_idempotency(
        db,
        token=idempotency_key,
        scope=f"suspense:{item_id}",
        operation="SUSPENSE_SKIP",
        execute=lambda: suspense_service.resolve_by_skip(
            db, item_id, data.justification, actor
        ),
    )
    return idempotent_response(response, result, SuspenseItemResponse)


@router.post("/{item_id}/write-off", response_model=SuspenseItemResponse)
async def resolve_by_write_off(
    item_id: UUID,
    data: SuspenseJustification,
    response: Response,
    actor: str = Depends(get_actor),
    idempotency_key: str | None = Depends(get_idempotency_key),
    db: AsyncSession = Depends(get_db),
):
    """Da de baja la partida."""
    result = await with_idempotency(
        db,
        token=idempotency_key,
        scope=f"suspense:{item_id}",
        operation="SUSPENSE_WRITE_OFF",
        execute=lambda: suspense_service.resolve_by_write_off(
            db, item_id, data.justification, actor
        ),
    )
    return idempotent_response(response, result, SuspenseItemResponse)


@router.post("/{item_id}/convert", response_model=SuspenseItemResponse)
async def resolve_by_movement_creation(
    item_id: UUID,
    data: MovementDraft,
    response: Response,
    actor: str = Depends(get_actor),
    idempotency_key: str | None = Depends(get_idempotency_key),
    db: AsyncSession = Depends(get_db),
):
    """Crea el movimiento faltante en tesorería y concilia la línea contra él."""
    result = await with_idempotency(
        db,
        token=idempotency_key,
        scope=f"suspense:{item_id}",
        operation="SUSPENSE_CONVERT",
        execute=lambda: suspense_service.resolve_by_movement_creation(
            db, item_id, data, actor
        ),
    )
    return idempotent_response(response, result, SuspenseItemResponse)


@router.put("/{item_id}/assign", response_model=SuspenseItemResponse)
async def assign(
    item_id: UUID,
    data: SuspenseAssign,
    db: AsyncSession = Depends(get_db),
):
    return await suspense_service.assign(db, item_id, data.assignee)
