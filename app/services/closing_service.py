"""
Servicio de Cierre de Conciliación — máquina de estados del período.

OPEN → CLOSING → {COMPLETED, WITH_DIFFERENCES} → REOPENED → OPEN

El cierre completo corre en una sola transacción: si falla cualquier paso,
el rollback deja el período en OPEN sin ajuste ni auditoría.
"""

import logging
from decimal import Decimal
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import (
    InvalidStateTransitionError,
    MissingJustificationError,
    UnresolvedItemsError,
    ValidationException,
)
from app.database import utcnow
from app.models.ledger import MovementType
from app.models.reconciliation import (
    ClosingAdjustment,
    PeriodState,
    ReconciliationPeriod,
)
from app.schemas.audit import AdjustmentPosted, PeriodClosed, PeriodReopened
from app.schemas.reconciliation import (
    DifferenceJustification,
    PeriodCloseRequest,
    PeriodCloseResponse,
    PeriodReopenResponse,
)
from app.services import audit_service
from app.services.ledger_gateway import LedgerGateway, SqlLedgerGateway
from app.services.period_service import count_pending, get_period

logger = logging.getLogger(__name__)

_CLOSED_STATES = (PeriodState.COMPLETED, PeriodState.WITH_DIFFERENCES)


async def _post_adjustment(
    db: AsyncSession,
    gateway: LedgerGateway,
    period: ReconciliationPeriod,
    total_difference: Decimal,
    justifications: list[DifferenceJustification],
    actor: str,
) -> ClosingAdjustment:
    """Registra el movimiento de ajuste y su ClosingAdjustment."""
    adjustment_type = MovementType.for_amount(total_difference)
    movement = await gateway.create_movement(
        period.account_id,
        total_difference,
        period.period_end,
        f"AJUSTE-{period.id.hex[:8].upper()}",
        description="Ajuste por cierre de conciliación bancaria",
        is_adjustment=True,
    )

    adjustment = ClosingAdjustment(
        period_id=period.id,
        movement_id=movement.id,
        adjustment_type=adjustment_type,
        amount=abs(total_difference),
        justification="; ".join(
            f"{j.concept}: {j.justification}" for j in justifications
        ),
        created_by=actor,
    )
    db.add(adjustment)
    await db.flush()

    await audit_service.log_event(
        db,
        period_id=period.id,
        entity_type="closing_adjustment",
        entity_id=adjustment.id,
        payload=AdjustmentPosted(
            adjustment_id=adjustment.id,
            movement_id=movement.id,
            adjustment_type=adjustment_type.value,
            amount=adjustment.amount,
            balance_before=movement.balance_before,
            balance_after=movement.balance_after,
        ),
        actor=actor,
    )
    logger.info(
        f"Ajuste de cierre {adjustment_type.value} por {adjustment.amount} "
        f"en período {period.id} (movimiento {movement.id})"
    )
    return adjustment


async def close_period(
    db: AsyncSession,
    period_id: UUID,
    data: PeriodCloseRequest,
    actor: str,
    gateway: LedgerGateway | None = None,
) -> PeriodCloseResponse:
    """
    Cierra el período:
    1. Cuenta pendientes y partidas en suspenso.
    2. Con pendientes y sin forzar → UnresolvedItemsError.
    3. Forzado sin justificaciones → MissingJustificationError.
    4. Diferencia total = suma de los montos justificados.
    5. Con `post_adjustment` y diferencia ≠ 0 se registra el ajuste.
    6. Estado final COMPLETED sin pendientes, WITH_DIFFERENCES con pendientes.
    7. Persiste notas, justificaciones y el saldo bancario declarado.
    8. Registra un único PeriodClosed en auditoría.
    """
    if data.statement_id is not None and data.statement_id != period_id:
        raise ValidationException(
            f"statementId {data.statement_id} no corresponde al período {period_id}"
        )

    gateway = gateway or SqlLedgerGateway(db)
    period = await get_period(db, period_id, for_update=True)
    if period.state != PeriodState.OPEN:
        raise InvalidStateTransitionError(period.state.value, "close")

    previous_state = period.state
    period.state = PeriodState.CLOSING
    await db.flush()

    pending, suspense = await count_pending(db, period_id)

    if pending > 0 and not data.force_close:
        logger.info(f"Cierre rechazado período {period_id}: {pending} pendientes")
        raise UnresolvedItemsError(pending, suspense)
    if pending > 0 and not data.difference_justifications:
        raise MissingJustificationError(pending, suspense)

    total_difference = sum(
        (j.amount for j in data.difference_justifications), Decimal("0.00")
    )

    adjustment = None
    if data.post_adjustment and total_difference != 0:
        adjustment = await _post_adjustment(
            db, gateway, period, total_difference, data.difference_justifications, actor
        )

    final_state = PeriodState.COMPLETED if pending == 0 else PeriodState.WITH_DIFFERENCES

    period.state = final_state
    period.closing_notes = data.notes
    period.difference_justifications = [
        j.model_dump(mode="json") for j in data.difference_justifications
    ]
    period.total_difference = total_difference
    period.closed_at = utcnow()
    period.closed_by = actor
    if data.stated_bank_balance is not None:
        period.saldo_bancario = data.stated_bank_balance
    period.saldo_contable = await gateway.current_balance(period.account_id)
    await db.flush()

    await audit_service.log_event(
        db,
        period_id=period.id,
        entity_type="reconciliation_period",
        entity_id=period.id,
        payload=PeriodClosed(
            pending_count=pending,
            suspense_count=suspense,
            total_difference=total_difference,
            adjustment_posted=adjustment is not None,
            adjustment_id=adjustment.id if adjustment else None,
            forced=data.force_close,
            saldo_bancario=period.saldo_bancario,
        ),
        actor=actor,
        before_state=previous_state.value,
        after_state=final_state.value,
    )
    logger.info(
        f"Período {period_id} cerrado como {final_state.value} por {actor}: "
        f"{pending} pendientes, diferencia {total_difference}"
    )

    return PeriodCloseResponse(
        period_id=period.id,
        previous_state=previous_state,
        state=final_state,
        pending_count=pending,
        suspense_count=suspense,
        total_difference=total_difference,
        adjustment_id=adjustment.id if adjustment else None,
        adjustment_type=adjustment.adjustment_type if adjustment else None,
        saldo_contable=period.saldo_contable,
        saldo_bancario=period.saldo_bancario,
    )


async def reopen_period(
    db: AsyncSession, period_id: UUID, reason: str, actor: str
) -> PeriodReopenResponse:
    """
    Reabre un período cerrado. Pasa por REOPENED y vuelve a OPEN en la misma
    transacción; los ajustes ya registrados no se revierten.
    """
    period = await get_period(db, period_id, for_update=True)
    if period.state not in _CLOSED_STATES:
        raise InvalidStateTransitionError(period.state.value, "reopen")

    previous_state = period.state
    period.state = PeriodState.REOPENED
    await db.flush()

    period.state = PeriodState.OPEN
    period.reopen_reason = reason
    period.reopened_at = utcnow()
    period.reopened_by = actor
    await db.flush()

    await audit_service.log_event(
        db,
        period_id=period.id,
        entity_type="reconciliation_period",
        entity_id=period.id,
        payload=PeriodReopened(
            reason=reason, intermediate_state=PeriodState.REOPENED.value
        ),
        actor=actor,
        before_state=previous_state.value,
        after_state=PeriodState.OPEN.value,
    )
    logger.info(f"Período {period_id} reabierto por {actor}: {reason}")

    return PeriodReopenResponse(
        period_id=period.id,
        previous_state=previous_state,
        state=PeriodState.OPEN,
        reason=reason,
    )
