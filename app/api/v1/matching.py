"""
Endpoints de conciliación manual sobre líneas del extracto.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Response
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies import get_actor, get_idempotency_key, idempotent_response
from app.database import get_db
from app.schemas.matching import ManualMatchRequest, MatchLinkResponse, UnmatchResponse
from app.services import matching_service
from app.services.idempotency_service import with_idempotency

router = APIRouter()


@router.post("/{line_id}/match", response_model=MatchLinkResponse)
async def manual_match(
    line_id: UUID,
    data: ManualMatchRequest,
    response: Response,
    actor: str = Depends(get_actor),
    idempotency_key: str | None = Depends(get_idempotency_key),
    db: AsyncSession = Depends(get_db),
):
    """Concilia la línea contra los movimientos elegidos (la suma debe ser exacta)."""
    result = await with_idempotency(
        db,
        token=idempotency_key,
        scope=f"line:{line_id}",
        operation="MANUAL_MATCH",
        execute=lambda: matching_service.manual_match(
            db, line_id, data.movement_ids, actor
        ),
    )
    return idempotent_response(response, result, MatchLinkResponse)


@router.post("/{line_id}/unmatch", response_model=UnmatchResponse)
async def unmatch(
    line_id: UUID,
    response: Response,
    actor: str = Depends(get_actor),
    idempotency_key: str | None = Depends(get_idempotency_key),
    db: AsyncSession = Depends(get_db),
):
    """Elimina la conciliación activa de la línea."""
    result = await with_idempotency(
        db,
        token=idempotency_key,
        scope=f"line:{line_id}",
        operation="UNMATCH",
        execute=lambda: matching_service.unmatch(db, line_id, actor),
    )
    return idempotent_response(response, result, UnmatchResponse)
