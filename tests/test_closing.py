"""
Tests del cierre y la reapertura de períodos.
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
import pytest_asyncio
from pydantic import ValidationError
from sqlalchemy import func, select

from app.core.exceptions import (
    InvalidStateTransitionError,
    MissingJustificationError,
    UnresolvedItemsError,
    ValidationException,
)
from app.models.audit_log import AuditEntry
from app.models.ledger import BankAccount, LedgerMovement, MovementType
from app.models.reconciliation import ClosingAdjustment, PeriodState, ReconciliationPeriod
from app.schemas.reconciliation import DifferenceJustification, PeriodCloseRequest
from app.services import audit_service, closing_service, period_service

ACTOR = "tesoreria@test"


def _justification(amount: str, concept: str = "Comisión bancaria") -> dict:
    return {"monto": amount, "concepto": concept, "justificacion": "Comisión no registrada"}


async def _count(db, model, *filters) -> int:
    return await db.scalar(select(func.count()).select_from(model).where(*filters)) or 0


@pytest_asyncio.fixture
async def fully_matched(db_session, period, make_movement, import_rows):
    await make_movement("1000.00", date(2026, 3, 10))
    await make_movement("500.00", date(2026, 3, 12))
    await import_rows([
        ("1000.00", date(2026, 3, 10), "Cobro cliente"),
        ("500.00", date(2026, 3, 13), "Depósito"),
    ])
    return period.id


@pytest_asyncio.fixture
async def two_pending(db_session, period, make_movement, import_rows):
    await make_movement("1000.00", date(2026, 3, 10))
    await import_rows([
        ("1000.00", date(2026, 3, 10), "Cobro cliente"),
        ("-200.00", date(2026, 3, 15), "Comisión mantenimiento"),
        ("-35.40", date(2026, 3, 20), "Impuesto débitos y créditos"),
    ])
    return period.id


async def test_close_without_pending_completes(db_session, fully_matched):
    period_id = fully_matched

    result = await closing_service.close_period(
        db_session, period_id, PeriodCloseRequest(notasCierre="Cierre marzo"), ACTOR
    )
    await db_session.commit()

    assert result.previous_state == PeriodState.OPEN
    assert result.state == PeriodState.COMPLETED
    assert result.pending_count == 0
    assert result.adjustment_id is None
    assert await _count(db_session, ClosingAdjustment) == 0

    period = await period_service.get_period(db_session, period_id)
    assert period.closing_notes == "Cierre marzo"
    assert period.closed_by == ACTOR

    closed = await audit_service.get_audit_entries(
        db_session, period_id=period_id, kind="PeriodClosed"
    )
    assert closed.total == 1
    entry = closed.items[0]
    assert entry.before_state == "open"
    assert entry.after_state == "completed"
    assert entry.payload.adjustment_posted is False


async def test_close_with_pending_requires_force(db_session, two_pending):
    period_id = two_pending

    with pytest.raises(UnresolvedItemsError) as exc_info:
        await closing_service.close_period(db_session, period_id, PeriodCloseRequest(), ACTOR)
    await db_session.rollback()

    assert exc_info.value.detail["pending_count"] == 2
    assert exc_info.value.detail["suspense_count"] == 2
    period = await period_service.get_period(db_session, period_id)
    assert period.state == PeriodState.OPEN


async def test_forced_close_without_justifications_fails(db_session, two_pending):
    period_id = two_pending

    with pytest.raises(MissingJustificationError) as exc_info:
        await closing_service.close_period(
            db_session, period_id, PeriodCloseRequest(forzarCierre=True), ACTOR
        )
    await db_session.rollback()

    assert exc_info.value.status_code == 422
    period = await period_service.get_period(db_session, period_id)
    assert period.state == PeriodState.OPEN
    assert await _count(db_session, AuditEntry, AuditEntry.kind == "PeriodClosed") == 0


async def test_forced_close_posts_ingreso_adjustment(db_session, bank_account, two_pending):
    period_id = two_pending
    account_id = bank_account.id
    balance_before = (await db_session.get(BankAccount, account_id)).saldo_contable

    result = await closing_service.close_period(
        db_session,
        period_id,
        PeriodCloseRequest(
            forzarCierre=True,
            generarAjuste=True,
            differenceJustifications=[_justification("150.50")],
        ),
        ACTOR,
    )
    await db_session.commit()

    assert result.state == PeriodState.WITH_DIFFERENCES
    assert result.pending_count == 2
    assert result.total_difference == Decimal("150.50")
    assert result.adjustment_type == MovementType.INGRESO

    adjustment = (await db_session.execute(select(ClosingAdjustment))).scalar_one()
    assert adjustment.amount == Decimal("150.50")
    assert adjustment.adjustment_type == MovementType.INGRESO
    assert adjustment.id == result.adjustment_id

    movement = await db_session.get(LedgerMovement, adjustment.movement_id)
    assert movement.is_adjustment is True
    assert movement.amount == Decimal("150.50")
    assert movement.balance_after == balance_before + Decimal("150.50")

    account = await db_session.get(BankAccount, account_id)
    assert account.saldo_contable == balance_before + Decimal("150.50")
    assert result.saldo_contable == account.saldo_contable

    assert await _count(db_session, AuditEntry, AuditEntry.kind == "AdjustmentPosted") == 1
    assert await _count(db_session, AuditEntry, AuditEntry.kind == "PeriodClosed") == 1


async def test_negative_difference_posts_egreso(db_session, two_pending):
    period_id = two_pending

    result = await closing_service.close_period(
        db_session,
        period_id,
        PeriodCloseRequest(
            forzarCierre=True,
            generarAjuste=True,
            differenceJustifications=[_justification("-200.00"), _justification("-35.40")],
        ),
        ACTOR,
    )
    await db_session.commit()

    assert result.adjustment_type == MovementType.EGRESO
    adjustment = (await db_session.execute(select(ClosingAdjustment))).scalar_one()
    assert adjustment.amount == Decimal("235.40")
    movement = await db_session.get(LedgerMovement, adjustment.movement_id)
    assert movement.amount == Decimal("-235.40")


async def test_zero_difference_never_posts_adjustment(db_session, two_pending):
    period_id = two_pending

    result = await closing_service.close_period(
        db_session,
        period_id,
        PeriodCloseRequest(
            forzarCierre=True,
            generarAjuste=True,
            differenceJustifications=[_justification("100.00"), _justification("-100.00")],
        ),
        ACTOR,
    )
    await db_session.commit()

    assert result.state == PeriodState.WITH_DIFFERENCES
    assert result.total_difference == Decimal("0")
    assert result.adjustment_id is None
    assert await _count(db_session, ClosingAdjustment) == 0
    assert await _count(db_session, AuditEntry, AuditEntry.kind == "AdjustmentPosted") == 0


async def test_written_off_items_allow_completed_close(db_session, two_pending):
    from app.models.suspense import SuspenseItem
    from app.services import suspense_service

    period_id = two_pending
    item_ids = (await db_session.execute(select(SuspenseItem.id))).scalars().all()
    for item_id in item_ids:
        await suspense_service.resolve_by_write_off(db_session, item_id, "Baja", ACTOR)
    await db_session.commit()

    result = await closing_service.close_period(
        db_session, period_id, PeriodCloseRequest(), ACTOR
    )
    await db_session.commit()

    assert result.state == PeriodState.COMPLETED


async def test_stated_bank_balance_overrides_recorded(db_session, fully_matched):
    period_id = fully_matched

    result = await closing_service.close_period(
        db_session,
        period_id,
        PeriodCloseRequest(saldoBancarioReal=Decimal("11480.00")),
        ACTOR,
    )
    await db_session.commit()

    assert result.saldo_bancario == Decimal("11480.00")
    period = await db_session.get(ReconciliationPeriod, period_id)
    assert period.saldo_bancario == Decimal("11480.00")


async def test_close_is_only_allowed_from_open(db_session, fully_matched):
    period_id = fully_matched
    await closing_service.close_period(db_session, period_id, PeriodCloseRequest(), ACTOR)
    await db_session.commit()

    with pytest.raises(InvalidStateTransitionError) as exc_info:
        await closing_service.close_period(db_session, period_id, PeriodCloseRequest(), ACTOR)
    await db_session.rollback()

    assert exc_info.value.detail["current_state"] == "completed"


async def test_statement_id_must_match_closed_period(db_session, fully_matched):
    period_id = fully_matched

    with pytest.raises(ValidationException):
        await closing_service.close_period(
            db_session, period_id, PeriodCloseRequest(statementId=uuid4()), ACTOR
        )
    await db_session.rollback()

    period = await period_service.get_period(db_session, period_id)
    assert period.state == PeriodState.OPEN

    result = await closing_service.close_period(
        db_session, period_id, PeriodCloseRequest(statementId=period_id), ACTOR
    )
    await db_session.commit()

    assert result.state == PeriodState.COMPLETED


# ── Reapertura ───────────────────────────────────────


async def test_reopen_returns_to_open_and_keeps_adjustment(db_session, two_pending):
    period_id = two_pending
    await closing_service.close_period(
        db_session,
        period_id,
        PeriodCloseRequest(
            forzarCierre=True, generarAjuste=True,
            differenceJustifications=[_justification("150.50")],
        ),
        ACTOR,
    )
    await db_session.commit()

    result = await closing_service.reopen_period(
        db_session, period_id, "Llegó el detalle de comisiones", ACTOR
    )
    await db_session.commit()

    assert result.previous_state == PeriodState.WITH_DIFFERENCES
    assert result.state == PeriodState.OPEN
    assert await _count(db_session, ClosingAdjustment) == 1

    reopened = await audit_service.get_audit_entries(
        db_session, period_id=period_id, kind="PeriodReopened"
    )
    assert reopened.total == 1
    assert reopened.items[0].payload.intermediate_state == "reopened"
    assert reopened.items[0].after_state == "open"


async def test_reopen_open_period_is_invalid(db_session, period):
    period_id = period.id

    with pytest.raises(InvalidStateTransitionError):
        await closing_service.reopen_period(db_session, period_id, "Motivo", ACTOR)
    await db_session.rollback()


async def test_reopened_period_can_close_again(db_session, fully_matched):
    period_id = fully_matched
    await closing_service.close_period(db_session, period_id, PeriodCloseRequest(), ACTOR)
    await db_session.commit()
    await closing_service.reopen_period(db_session, period_id, "Revisión", ACTOR)
    await db_session.commit()

    result = await closing_service.close_period(
        db_session, period_id, PeriodCloseRequest(), ACTOR
    )
    await db_session.commit()

    assert result.state == PeriodState.COMPLETED
    closed = await audit_service.get_audit_entries(
        db_session, period_id=period_id, kind="PeriodClosed"
    )
    assert closed.total == 2


def test_difference_justification_limits():
    with pytest.raises(ValidationError):
        DifferenceJustification(monto="10", concepto="x" * 201, justificacion="ok")
    with pytest.raises(ValidationError):
        DifferenceJustification(monto="10", concepto="Comisión", justificacion="")
    entry = DifferenceJustification(amount="10.00", concept="Comisión", justification="ok")
    assert entry.amount == Decimal("10.00")
