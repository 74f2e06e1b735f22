"""
Endpoints de Períodos de Conciliación.
Alta de período, importación de extractos, auto-conciliación, resumen,
auditoría, cierre y reapertura.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies import get_actor, get_idempotency_key, idempotent_response
from app.database import get_db
from app.models.reconciliation import LineStatus
from app.schemas.audit import AuditEntryListResponse
from app.schemas.matching import LedgerMovementResponse
from app.schemas.reconciliation import (
    AutoMatchResponse,
    PeriodCloseRequest,
    PeriodCloseResponse,
    PeriodOpen,
    PeriodReopenRequest,
    PeriodReopenResponse,
    PeriodResponse,
    ReconciliationSummary,
    StatementImportRequest,
    StatementImportResponse,
    StatementLineListResponse,
)
from app.schemas.suspense import SuspenseItemListResponse
from app.services import (
    audit_service,
    closing_service,
    matching_service,
    period_service,
    statement_service,
    suspense_service,
)
from app.services.idempotency_service import with_idempotency

router = APIRouter()


@router.post("/", response_model=PeriodResponse, status_code=201)
async def open_period(
    data: PeriodOpen,
    db: AsyncSession = Depends(get_db),
):
    """Registra el período de conciliación de una cuenta (o devuelve el existente)."""
    return await period_service.open_period(db, data)


@router.get("/{period_id}", response_model=PeriodResponse)
async def get_period(
    period_id: UUID,
    db: AsyncSession = Depends(get_db),
):
    return await period_service.get_period_response(db, period_id)


@router.get("/{period_id}/summary", response_model=ReconciliationSummary)
async def get_summary(
    period_id: UUID,
    db: AsyncSession = Depends(get_db),
):
    """Resumen: líneas conciliadas, pendientes, suspenso y diferencia de saldos."""
    return await period_service.get_summary(db, period_id)


# ── Extractos ────────────────────────────────────────


@router.post(
    "/{period_id}/statements", response_model=StatementImportResponse, status_code=202
)
async def import_statement(
    period_id: UUID,
    data: StatementImportRequest,
    actor: str = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    """Importa un lote de líneas del extracto y, por defecto, auto-concilia."""
    return await statement_service.import_statement(db, period_id, data, actor)


@router.get("/{period_id}/lines", response_model=StatementLineListResponse)
async def list_lines(
    period_id: UUID,
    status: LineStatus | None = Query(None, description="Filtrar por estado"),
    page: int = Query(1, ge=1),
    size: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
):
    return await statement_service.list_lines(
        db, period_id, status=status, page=page, size=size
    )


@router.post("/{period_id}/auto-match", response_model=AutoMatchResponse)
async def auto_match(
    period_id: UUID,
    actor: str = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    """Ejecuta la auto-conciliación sobre las líneas sin conciliar."""
    return await matching_service.auto_match(db, period_id, actor)


@router.post("/{period_id}/auto-match/async", status_code=202)
async def enqueue_auto_match(
    period_id: UUID,
    actor: str = Depends(get_actor),
    db: AsyncSession = Depends(get_db),
):
    """Encola la auto-conciliación en Celery para lotes grandes."""
    from app.tasks.reconciliation_tasks import auto_match_period_task

    await period_service.get_period(db, period_id)
    task = auto_match_period_task.delay(str(period_id), actor)
    return {"task_id": task.id, "period_id": str(period_id)}


@router.get("/{period_id}/movements/unmatched", response_model=list[LedgerMovementResponse])
async def list_unmatched_movements(
    period_id: UUID,
    date_from: date | None = Query(None),
    date_to: date | None = Query(None),
    amount_min: Decimal | None = Query(None),
    amount_max: Decimal | None = Query(None),
    db: AsyncSession = Depends(get_db),
):
    """Movimientos de la cuenta todavía sin vincular a una línea del extracto."""
    return await period_service.list_unmatched_movements(
        db, period_id,
        date_from=date_from, date_to=date_to,
        amount_min=amount_min, amount_max=amount_max,
    )


@router.get("/{period_id}/suspense", response_model=SuspenseItemListResponse)
async def list_suspense(
    period_id: UUID,
    open_only: bool = Query(False, description="Solo partidas sin resolver"),
    db: AsyncSession = Depends(get_db),
):
    return await suspense_service.list_items(db, period_id, open_only=open_only)


@router.get("/{period_id}/audit", response_model=AuditEntryListResponse)
async def get_audit_log(
    period_id: UUID,
    kind: str | None = Query(None, description="Filtrar por tipo de evento"),
    page: int = Query(1, ge=1),
    size: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
):
    """Historial de auditoría del período en orden cronológico."""
    await period_service.get_period(db, period_id)
    return await audit_service.get_audit_entries(
        db, period_id=period_id, kind=kind, page=page, size=size
    )


# ── Cierre ───────────────────────────────────────────


@router.post("/{period_id}/close", response_model=PeriodCloseResponse)
async def close_period(
    period_id: UUID,
    data: PeriodCloseRequest,
    response: Response,
    actor: str = Depends(get_actor),
    idempotency_key: str | None = Depends(get_idempotency_key),
    db: AsyncSession = Depends(get_db),
):
    """Cierra el período. Reintentos con el mismo Idempotency-Key no re-ejecutan."""
    result = await with_idempotency(
        db,
        token=idempotency_key,
        scope=f"period:{period_id}",
        operation="CLOSE_PERIOD",
        execute=lambda: closing_service.close_period(db, period_id, data, actor),
    )
    return idempotent_response(response, result, PeriodCloseResponse)


@router.post("/{period_id}/reopen", response_model=PeriodReopenResponse)
async def reopen_period(
    period_id: UUID,
    data: PeriodReopenRequest,
    response: Response,
    actor: str = Depends(get_actor),
    idempotency_key: str | None = Depends(get_idempotency_key),
    db: AsyncSession = Depends(get_db),
):
    """Reabre un período cerrado. Requiere motivo."""
    result = await with_idempotency(
        db,
        token=idempotency_key,
        scope=f"period:{period_id}",
        operation="REOPEN_PERIOD",
        execute=lambda: closing_service.reopen_period(db, period_id, data.reason, actor),
    )
    return idempotent_response(response, result, PeriodReopenResponse)
