"""
Servicio de Partidas en Suspenso — resolución manual de líneas sin conciliar.

Resoluciones posibles:
- STILL_PENDING: queda pendiente con justificación; sigue contando en el cierre.
- WRITTEN_OFF: se da de baja; deja de contar pero permanece en el historial.
- CONVERTED_TO_MOVEMENT: se registra el movimiento faltante en tesorería y se
  concilia la línea contra él.
"""

import logging
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ConflictException, NotFoundException
from app.database import utcnow
from app.models.match_link import MatchType
from app.models.reconciliation import ReconciliationPeriod, StatementLine
from app.models.suspense import SuspenseItem, SuspenseOutcome
from app.schemas.audit import SuspenseResolved
from app.schemas.suspense import (
    MovementDraft,
    SuspenseItemListResponse,
    SuspenseItemResponse,
)
from app.services import audit_service, matching_service
from app.services.ledger_gateway import LedgerGateway, SqlLedgerGateway
from app.services.period_service import get_period, require_open

logger = logging.getLogger(__name__)


async def _get_item(db: AsyncSession, item_id: UUID) -> SuspenseItem:
    item = await db.get(SuspenseItem, item_id, populate_existing=True)
    if not item:
        raise NotFoundException("Partida en suspenso")
    return item


async def _load_for_resolution(
    db: AsyncSession, item_id: UUID, attempted: str
) -> tuple[SuspenseItem, ReconciliationPeriod]:
    item = await _get_item(db, item_id)
    period = await get_period(db, item.period_id, for_update=True)
    require_open(period, attempted)
    if not item.is_open:
        raise ConflictException(
            f"La partida ya fue resuelta ({item.outcome.value})"
        )
    return item, period


async def _resolve(
    db: AsyncSession,
    item: SuspenseItem,
    *,
    outcome: SuspenseOutcome,
    actor: str,
    justification: str | None = None,
    movement_id: int | None = None,
) -> SuspenseItemResponse:
    before = item.outcome.value if item.outcome else "open"

    item.outcome = outcome
    item.justification = justification
    item.movement_id = movement_id
    item.resolved_by = actor
    item.resolved_at = utcnow()
    await db.flush()

    await audit_service.log_event(
        db,
        period_id=item.period_id,
        entity_type="suspense_item",
        entity_id=item.id,
        payload=SuspenseResolved(
            item_id=item.id,
            line_id=item.line_id,
            outcome=outcome.value,
            justification=justification,
            movement_id=movement_id,
        ),
        actor=actor,
        before_state=before,
        after_state=outcome.value,
    )
    logger.info(f"Partida {item.id} resuelta como {outcome.value} por {actor}")
    return SuspenseItemResponse.model_validate(item)


async def resolve_by_skip(
    db: AsyncSession, item_id: UUID, justification: str, actor: str
) -> SuspenseItemResponse:
    """Deja la partida pendiente con justificación (STILL_PENDING)."""
    item, _ = await _load_for_resolution(db, item_id, "resolve_by_skip")
    return await _resolve(
        db, item,
        outcome=SuspenseOutcome.STILL_PENDING,
        actor=actor,
        justification=justification,
    )


async def resolve_by_write_off(
    db: AsyncSession, item_id: UUID, justification: str, actor: str
) -> SuspenseItemResponse:
    """Da de baja la partida (WRITTEN_OFF); deja de contar como pendiente."""
    item, _ = await _load_for_resolution(db, item_id, "resolve_by_write_off")
    return await _resolve(
        db, item,
        outcome=SuspenseOutcome.WRITTEN_OFF,
        actor=actor,
        justification=justification,
    )


async def resolve_by_movement_creation(
    db: AsyncSession,
    item_id: UUID,
    draft: MovementDraft,
    actor: str,
    gateway: LedgerGateway | None = None,
) -> SuspenseItemResponse:
    """
    Registra en tesorería el movimiento que refleja la línea del extracto y
    concilia la línea contra él (vínculo MANUAL).
    """
    gateway = gateway or SqlLedgerGateway(db)
    item, period = await _load_for_resolution(db, item_id, "resolve_by_movement_creation")

    line = await db.get(StatementLine, item.line_id, populate_existing=True)
    movement = await gateway.create_movement(
        period.account_id,
        line.amount,
        draft.movement_date or line.value_date,
        draft.source_ref or line.external_reference,
        description=draft.description,
    )

    await matching_service.create_link(
        db,
        line=line,
        movements=[movement],
        match_type=MatchType.MANUAL,
        actor=actor,
    )
    return await _resolve(
        db, item,
        outcome=SuspenseOutcome.CONVERTED_TO_MOVEMENT,
        actor=actor,
        movement_id=movement.id,
    )


async def assign(
    db: AsyncSession, item_id: UUID, assignee: str
) -> SuspenseItemResponse:
    """Asigna la partida a un responsable de resolverla."""
    item = await _get_item(db, item_id)
    item.assigned_to = assignee
    await db.flush()
    logger.info(f"Partida {item_id} asignada a {assignee}")
    return SuspenseItemResponse.model_validate(item)


async def get_item(db: AsyncSession, item_id: UUID) -> SuspenseItemResponse:
    return SuspenseItemResponse.model_validate(await _get_item(db, item_id))


async def list_items(
    db: AsyncSession, period_id: UUID, open_only: bool = False
) -> SuspenseItemListResponse:
    """Partidas en suspenso del período, las más antiguas primero."""
    await get_period(db, period_id)

    query = select(SuspenseItem).where(SuspenseItem.period_id == period_id)
    if open_only:
        query = query.where(or_(
            SuspenseItem.outcome.is_(None),
            SuspenseItem.outcome == SuspenseOutcome.STILL_PENDING,
        ))
    result = await db.execute(query.order_by(SuspenseItem.created_at, SuspenseItem.id))
    items = result.scalars().all()

    return SuspenseItemListResponse(
        items=[SuspenseItemResponse.model_validate(i) for i in items],
        total=len(items),
    )
