"""
Servicio de Períodos de Conciliación — alta, bloqueo, conteos y resumen.
"""

import logging
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import InvalidStateTransitionError, NotFoundException
from app.models.ledger import BankAccount
from app.models.match_link import MatchLink
from app.models.reconciliation import LineStatus, PeriodState, ReconciliationPeriod, StatementLine
from app.models.suspense import SuspenseItem, SuspenseOutcome
from app.schemas.matching import LedgerMovementResponse
from app.schemas.reconciliation import PeriodOpen, PeriodResponse, ReconciliationSummary
from app.services.ledger_gateway import LedgerGateway, SqlLedgerGateway

logger = logging.getLogger(__name__)


async def get_period(
    db: AsyncSession, period_id: UUID, for_update: bool = False
) -> ReconciliationPeriod:
    """Lee el período fresco desde la base; `for_update` bloquea la fila."""
    query = (
        select(ReconciliationPeriod)
        .where(ReconciliationPeriod.id == period_id)
        .execution_options(populate_existing=True)
    )
    if for_update:
        query = query.with_for_update()
    period = (await db.execute(query)).scalar_one_or_none()
    if not period:
        raise NotFoundException("Período de conciliación")
    return period


def require_open(period: ReconciliationPeriod, attempted: str) -> None:
    if period.state != PeriodState.OPEN:
        raise InvalidStateTransitionError(period.state.value, attempted)


async def open_period(
    db: AsyncSession,
    data: PeriodOpen,
    gateway: LedgerGateway | None = None,
) -> PeriodResponse:
    """Devuelve el período de la cuenta para ese rango o lo crea en estado OPEN."""
    gateway = gateway or SqlLedgerGateway(db)

    account = await db.get(BankAccount, data.account_id)
    if not account:
        raise NotFoundException("Cuenta bancaria")

    result = await db.execute(
        select(ReconciliationPeriod).where(
            ReconciliationPeriod.account_id == data.account_id,
            ReconciliationPeriod.period_start == data.period_start,
            ReconciliationPeriod.period_end == data.period_end,
        )
    )
    period = result.scalar_one_or_none()
    if period:
        return PeriodResponse.model_validate(period)

    period = ReconciliationPeriod(
        account_id=data.account_id,
        period_start=data.period_start,
        period_end=data.period_end,
        saldo_contable=await gateway.current_balance(data.account_id),
        saldo_bancario=data.saldo_bancario,
        state=PeriodState.OPEN,
        date_window_days=data.date_window_days,
    )
    db.add(period)
    await db.flush()

    logger.info(
        f"Período {period.id} abierto para cuenta {data.account_id}: "
        f"{data.period_start}..{data.period_end}"
    )
    return PeriodResponse.model_validate(period)


async def get_period_response(db: AsyncSession, period_id: UUID) -> PeriodResponse:
    return PeriodResponse.model_validate(await get_period(db, period_id))


async def count_pending(db: AsyncSession, period_id: UUID) -> tuple[int, int]:
    """
    Devuelve (pendientes, en suspenso) del período.

    Pendientes = líneas UNMATCHED + líneas en suspenso cuya partida no fue dada
    de baja. Las partidas STILL_PENDING siguen contando en cada cierre.
    """
    unmatched = await db.scalar(
        select(func.count(StatementLine.id)).where(
            StatementLine.period_id == period_id,
            StatementLine.status == LineStatus.UNMATCHED,
        )
    ) or 0

    suspense = await db.scalar(
        select(func.count(StatementLine.id))
        .join(SuspenseItem, SuspenseItem.line_id == StatementLine.id)
        .where(
            StatementLine.period_id == period_id,
            StatementLine.status == LineStatus.SUSPENSE,
            or_(
                SuspenseItem.outcome.is_(None),
                SuspenseItem.outcome == SuspenseOutcome.STILL_PENDING,
            ),
        )
    ) or 0

    return unmatched + suspense, suspense


async def get_summary(
    db: AsyncSession,
    period_id: UUID,
    gateway: LedgerGateway | None = None,
) -> ReconciliationSummary:
    """Resumen de conciliación del período: líneas, suspenso, totales y saldos."""
    gateway = gateway or SqlLedgerGateway(db)
    period = await get_period(db, period_id)

    rows = (await db.execute(
        select(StatementLine.amount, StatementLine.status)
        .where(StatementLine.period_id == period_id)
    )).all()

    statement_total = sum((amount for amount, _ in rows), Decimal("0.00"))
    matched_total = sum(
        (amount for amount, status in rows if status == LineStatus.MATCHED),
        Decimal("0.00"),
    )
    matched = sum(1 for _, status in rows if status == LineStatus.MATCHED)

    pending, suspense = await count_pending(db, period_id)

    outcomes = dict((await db.execute(
        select(SuspenseItem.outcome, func.count(SuspenseItem.id))
        .where(SuspenseItem.period_id == period_id, SuspenseItem.outcome.is_not(None))
        .group_by(SuspenseItem.outcome)
    )).all())

    breakdown = dict((await db.execute(
        select(MatchLink.match_type, func.count(MatchLink.id))
        .where(MatchLink.period_id == period_id)
        .group_by(MatchLink.match_type)
    )).all())

    # Un período cerrado muestra el saldo contable congelado al cierre
    if period.state == PeriodState.OPEN:
        saldo_contable = await gateway.current_balance(period.account_id)
    else:
        saldo_contable = period.saldo_contable

    return ReconciliationSummary(
        period_id=period.id,
        state=period.state,
        total_lines=len(rows),
        matched=matched,
        pending=pending,
        suspense=suspense,
        suspense_resolved=sum(outcomes.values()),
        written_off=outcomes.get(SuspenseOutcome.WRITTEN_OFF, 0),
        converted=outcomes.get(SuspenseOutcome.CONVERTED_TO_MOVEMENT, 0),
        still_pending=outcomes.get(SuspenseOutcome.STILL_PENDING, 0),
        match_breakdown={
            match_type.value: count for match_type, count in breakdown.items()
        },
        statement_total=statement_total,
        matched_total=matched_total,
        saldo_contable=saldo_contable,
        saldo_bancario=period.saldo_bancario,
        balance_difference=period.saldo_bancario - saldo_contable,
    )


async def list_unmatched_movements(
    db: AsyncSession,
    period_id: UUID,
    date_from: date | None = None,
    date_to: date | None = None,
    amount_min: Decimal | None = None,
    amount_max: Decimal | None = None,
    gateway: LedgerGateway | None = None,
) -> list[LedgerMovementResponse]:
    """Movimientos de la cuenta del período sin conciliar, más recientes primero."""
    gateway = gateway or SqlLedgerGateway(db)
    period = await get_period(db, period_id)

    movements = await gateway.list_movements(
        period.account_id,
        date_from=date_from,
        date_to=date_to,
        amount_min=amount_min,
        amount_max=amount_max,
        newest_first=True,
    )
    return [LedgerMovementResponse.model_validate(m) for m in movements]
