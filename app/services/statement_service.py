"""
Servicio de Extractos — importación de líneas bancarias y consulta por estado.
"""

import logging
from math import ceil
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import DuplicateImportError
from app.models.reconciliation import LineStatus, StatementImport, StatementLine
from app.schemas.audit import StatementImported
from app.schemas.reconciliation import (
    StatementImportRequest,
    StatementImportResponse,
    StatementLineListResponse,
    StatementLineResponse,
)
from app.services import audit_service, matching_service
from app.services.ledger_gateway import LedgerGateway
from app.services.period_service import get_period, require_open

logger = logging.getLogger(__name__)


async def import_statement(
    db: AsyncSession,
    period_id: UUID,
    data: StatementImportRequest,
    actor: str,
    gateway: LedgerGateway | None = None,
) -> StatementImportResponse:
    """
    Agrega las filas del extracto como líneas UNMATCHED del período.
    Un mismo `batch_reference` solo puede importarse una vez por período.
    Con `auto_match` se ejecuta la auto-conciliación a continuación.
    """
    period = await get_period(db, period_id, for_update=True)
    require_open(period, "import")

    existing = await db.scalar(
        select(StatementImport.id).where(
            StatementImport.period_id == period_id,
            StatementImport.batch_reference == data.batch_reference,
        )
    )
    if existing:
        logger.warning(f"Lote duplicado '{data.batch_reference}' en período {period_id}")
        raise DuplicateImportError(data.batch_reference)

    last_position = await db.scalar(
        select(func.max(StatementLine.position)).where(StatementLine.period_id == period_id)
    ) or 0

    batch = StatementImport(
        period_id=period_id,
        batch_reference=data.batch_reference,
        line_count=len(data.rows),
        imported_by=actor,
    )
    db.add(batch)
    await db.flush()

    for offset, row in enumerate(data.rows, start=1):
        db.add(StatementLine(
            period_id=period_id,
            import_id=batch.id,
            position=last_position + offset,
            amount=row.amount,
            value_date=row.value_date,
            description=row.description,
            external_reference=row.external_reference,
            status=LineStatus.UNMATCHED,
        ))
    await db.flush()

    await audit_service.log_event(
        db,
        period_id=period_id,
        entity_type="statement_import",
        entity_id=batch.id,
        payload=StatementImported(
            batch_reference=data.batch_reference, line_count=len(data.rows)
        ),
        actor=actor,
    )
    logger.info(
        f"Extracto '{data.batch_reference}' importado en período {period_id}: "
        f"{len(data.rows)} líneas"
    )

    response = StatementImportResponse(
        import_id=batch.id,
        period_id=period_id,
        batch_reference=data.batch_reference,
        imported=len(data.rows),
    )
    if data.auto_match:
        counts = await matching_service.auto_match(db, period_id, actor, gateway)
        response.matched = counts.matched
        response.suspense = counts.suspense
    return response


async def list_lines(
    db: AsyncSession,
    period_id: UUID,
    status: LineStatus | None = None,
    page: int = 1,
    size: int = 50,
) -> StatementLineListResponse:
    """Lista las líneas del período, opcionalmente filtradas por estado."""
    await get_period(db, period_id)

    query = select(StatementLine).where(StatementLine.period_id == period_id)
    if status:
        query = query.where(StatementLine.status == status)

    count_q = select(func.count()).select_from(query.subquery())
    total = (await db.execute(count_q)).scalar() or 0

    query = query.order_by(StatementLine.value_date, StatementLine.position)
    query = query.offset((page - 1) * size).limit(size)
    result = await db.execute(query)
    items = result.scalars().all()

    return StatementLineListResponse(
        items=[StatementLineResponse.model_validate(line) for line in items],
        total=total,
        page=page,
        size=size,
        pages=ceil(total / size) if total else 1,
    )
