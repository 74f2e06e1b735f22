"""
Tests del motor de conciliación: auto-conciliación, manual y desconciliación.
"""

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from app.core.exceptions import (
    AmountMismatchError,
    ConflictException,
    InvalidStateTransitionError,
    NotMatchedError,
    ValidationException,
)
from app.models.audit_log import AuditEntry
from app.models.ledger import LedgerMovement
from app.models.match_link import MatchLink, MatchType
from app.models.reconciliation import (
    LineStatus,
    PeriodState,
    ReconciliationPeriod,
    StatementLine,
)
from app.models.suspense import SuspenseItem, SuspenseReason
from app.services import matching_service, period_service
from app.services.matching_service import decide_match, reference_hit

ACTOR = "tesoreria@test"


async def _lines(db, period_id) -> list[StatementLine]:
    result = await db.execute(
        select(StatementLine)
        .where(StatementLine.period_id == period_id)
        .order_by(StatementLine.position)
    )
    return list(result.scalars().all())


async def _count(db, model, *filters) -> int:
    return await db.scalar(select(func.count()).select_from(model).where(*filters)) or 0


# ── Ranking (sin base de datos) ──────────────────────


def _line(amount: str, value_date: date, description: str = "") -> StatementLine:
    return StatementLine(amount=Decimal(amount), value_date=value_date, description=description)


def _movement(id: int, amount: str, movement_date: date, source_ref: str | None = None):
    return LedgerMovement(
        id=id, amount=Decimal(amount), movement_date=movement_date, source_ref=source_ref
    )


def test_reference_hit_is_case_insensitive():
    assert reference_hit("TRANSF RECIBIDA trf-889 CLIENTE SA", "TRF-889")
    assert not reference_hit("TRANSF RECIBIDA", "TRF-889")
    assert not reference_hit("TRANSF RECIBIDA", None)


def test_blank_source_ref_is_not_a_reference_hit():
    assert not reference_hit("Cobro cliente", "   ")

    line = _line("100.00", date(2026, 3, 10), "Cobro cliente")
    pool = [
        _movement(1, "100.00", date(2026, 3, 10)),
        _movement(2, "100.00", date(2026, 3, 13), source_ref="  "),
    ]

    decision = decide_match(line, pool, window_days=3)

    assert decision.movement.id == 1
    assert decision.confidence < Decimal("1.000")


def test_reference_hit_dominates_date_proximity():
    line = _line("750.00", date(2026, 3, 10), "Transferencia TRF-889")
    pool = [
        _movement(1, "750.00", date(2026, 3, 10)),
        _movement(2, "750.00", date(2026, 3, 12), source_ref="TRF-889"),
    ]

    decision = decide_match(line, pool, window_days=3)

    assert decision.movement.id == 2
    assert decision.confidence == Decimal("1.000")
    assert decision.ranked_ids == [2, 1]


def test_closest_date_dominates_without_reference():
    line = _line("750.00", date(2026, 3, 10))
    pool = [
        _movement(1, "750.00", date(2026, 3, 12)),
        _movement(2, "750.00", date(2026, 3, 9)),
    ]

    decision = decide_match(line, pool, window_days=3)

    assert decision.movement.id == 2
    assert decision.reason is None
    assert decision.confidence < Decimal("1.000")


def test_equal_rank_is_ambiguous_and_ordered_by_id():
    line = _line("750.00", date(2026, 3, 10))
    pool = [
        _movement(7, "750.00", date(2026, 3, 11)),
        _movement(3, "750.00", date(2026, 3, 9)),
    ]

    decision = decide_match(line, pool, window_days=3)

    assert decision.movement is None
    assert decision.reason == SuspenseReason.AMBIGUOUS_CANDIDATE
    assert decision.ranked_ids == [3, 7]


def test_amount_must_match_exactly_and_within_window():
    line = _line("1000.00", date(2026, 3, 10))
    pool = [
        _movement(1, "999.99", date(2026, 3, 10)),
        _movement(2, "1000.00", date(2026, 3, 14)),
        _movement(3, "-1000.00", date(2026, 3, 10)),
    ]

    decision = decide_match(line, pool, window_days=3)

    assert decision.movement is None
    assert decision.reason == SuspenseReason.NO_CANDIDATE


# ── Auto-conciliación ────────────────────────────────


async def test_auto_match_matches_two_and_suspends_the_rest(
    db_session, period, make_movement, import_rows
):
    period_id = period.id
    m1 = await make_movement("1000.00", date(2026, 3, 10), "REC-1001")
    m2 = await make_movement("500.00", date(2026, 3, 12))

    response = await import_rows([
        ("1000.00", date(2026, 3, 10), "Cobro cliente"),
        ("500.00", date(2026, 3, 13), "Depósito"),
        ("-200.00", date(2026, 3, 15), "Comisión mantenimiento"),
    ])

    assert response.imported == 3
    assert response.matched == 2
    assert response.suspense == 1

    lines = await _lines(db_session, period_id)
    assert [line.status for line in lines] == [
        LineStatus.MATCHED, LineStatus.MATCHED, LineStatus.SUSPENSE,
    ]

    links = (await db_session.execute(select(MatchLink))).scalars().all()
    by_line = {link.line_id: link for link in links}
    assert by_line[lines[0].id].movement_ids == [m1.id]
    assert by_line[lines[1].id].movement_ids == [m2.id]
    assert all(link.match_type == MatchType.AUTO for link in links)

    item = (await db_session.execute(select(SuspenseItem))).scalar_one()
    assert item.line_id == lines[2].id
    assert item.reason == SuspenseReason.NO_CANDIDATE


async def test_auto_match_amounts_equal_sum_of_movements(
    db_session, period, make_movement, import_rows
):
    await make_movement("1000.00", date(2026, 3, 3))
    await make_movement("-350.25", date(2026, 3, 4))
    await import_rows([
        ("1000.00", date(2026, 3, 2), "Cobro"),
        ("-350.25", date(2026, 3, 5), "Pago proveedor"),
    ])

    links = (await db_session.execute(select(MatchLink))).scalars().all()
    assert len(links) == 2
    for link in links:
        line = await db_session.get(StatementLine, link.line_id)
        assert line.amount == sum(m.amount for m in link.movements)


async def test_consumed_movement_leaves_pool_oldest_line_first(
    db_session, period, make_movement, import_rows
):
    period_id = period.id
    movement = await make_movement("300.00", date(2026, 3, 11))

    await import_rows([
        ("300.00", date(2026, 3, 12), "Segundo depósito"),
        ("300.00", date(2026, 3, 10), "Primer depósito"),
    ])

    lines = await _lines(db_session, period_id)
    later, earlier = lines
    assert earlier.status == LineStatus.MATCHED
    assert later.status == LineStatus.SUSPENSE

    link = (await db_session.execute(
        select(MatchLink).where(MatchLink.line_id == earlier.id)
    )).scalar_one()
    assert link.movement_ids == [movement.id]

    item = (await db_session.execute(select(SuspenseItem))).scalar_one()
    assert item.reason == SuspenseReason.NO_CANDIDATE


async def test_ambiguous_candidates_go_to_suspense(
    db_session, period, make_movement, import_rows
):
    a = await make_movement("750.00", date(2026, 3, 9))
    b = await make_movement("750.00", date(2026, 3, 11))

    response = await import_rows([("750.00", date(2026, 3, 10), "Depósito efectivo")])

    assert response.matched == 0
    item = (await db_session.execute(select(SuspenseItem))).scalar_one()
    assert item.reason == SuspenseReason.AMBIGUOUS_CANDIDATE
    assert item.candidate_movement_ids == [a.id, b.id]


async def test_period_window_override(
    db_session, period, make_movement, import_rows
):
    period.date_window_days = 7
    await db_session.commit()
    await make_movement("420.00", date(2026, 3, 16))

    response = await import_rows([("420.00", date(2026, 3, 10), "Cobro")])

    assert response.matched == 1


async def test_auto_match_skips_lines_already_in_suspense(
    db_session, period, make_movement, import_rows
):
    period_id = period.id
    await import_rows([("-200.00", date(2026, 3, 15), "Comisión")])
    await make_movement("-200.00", date(2026, 3, 15))

    result = await matching_service.auto_match(db_session, period_id, ACTOR)

    assert result.matched == 0
    assert result.suspense == 0


async def test_auto_match_writes_one_audit_entry_per_decision(
    db_session, period, make_movement, import_rows
):
    period_id = period.id
    await make_movement("1000.00", date(2026, 3, 10))
    await import_rows([
        ("1000.00", date(2026, 3, 10), "Cobro"),
        ("-200.00", date(2026, 3, 15), "Comisión"),
    ])

    assert await _count(db_session, AuditEntry, AuditEntry.kind == "MatchCreated") == 1
    assert await _count(db_session, AuditEntry, AuditEntry.kind == "SuspenseOpened") == 1
    assert await _count(db_session, AuditEntry, AuditEntry.period_id == period_id) == 3


# ── Conciliación manual ──────────────────────────────


async def test_manual_match_amount_mismatch_creates_nothing(
    db_session, period, make_movement, import_rows
):
    period_id = period.id
    m1 = await make_movement("600.00", date(2026, 3, 1))
    m2 = await make_movement("399.00", date(2026, 3, 1))
    await import_rows([("1000.00", date(2026, 3, 10), "Cobro")], auto_match=False)
    line_id = (await _lines(db_session, period_id))[0].id
    movement_ids = [m1.id, m2.id]

    with pytest.raises(AmountMismatchError) as exc_info:
        await matching_service.manual_match(db_session, line_id, movement_ids, ACTOR)
    await db_session.rollback()

    assert exc_info.value.status_code == 400
    assert exc_info.value.detail["code"] == "AMOUNT_MISMATCH"
    assert Decimal(exc_info.value.detail["difference"]) == Decimal("1.00")
    assert await _count(db_session, MatchLink) == 0
    line = await db_session.get(StatementLine, line_id)
    assert line.status == LineStatus.UNMATCHED


async def test_manual_match_rejects_repeated_movement_ids(
    db_session, period, make_movement, import_rows
):
    period_id = period.id
    movement = await make_movement("500.00", date(2026, 3, 10))
    await import_rows([("1000.00", date(2026, 3, 10), "Cobro")], auto_match=False)
    line_id = (await _lines(db_session, period_id))[0].id
    movement_ids = [movement.id, movement.id]

    with pytest.raises(ValidationException):
        await matching_service.manual_match(db_session, line_id, movement_ids, ACTOR)
    await db_session.rollback()

    assert await _count(db_session, MatchLink) == 0


async def test_manual_split_match_removes_suspense_item(
    db_session, period, make_movement, import_rows
):
    period_id = period.id
    await import_rows([("1000.00", date(2026, 3, 10), "Cobro")])
    m1 = await make_movement("600.00", date(2026, 3, 20))
    m2 = await make_movement("400.00", date(2026, 3, 21))
    line_id = (await _lines(db_session, period_id))[0].id
    assert await _count(db_session, SuspenseItem) == 1

    link = await matching_service.manual_match(db_session, line_id, [m2.id, m1.id], ACTOR)
    await db_session.commit()

    assert link.match_type == MatchType.MANUAL
    assert link.confidence is None
    assert sorted(link.movement_ids) == sorted([m1.id, m2.id])
    assert await _count(db_session, SuspenseItem) == 0
    line = await db_session.get(StatementLine, line_id)
    assert line.status == LineStatus.MATCHED


async def test_manual_match_rejects_already_linked_movement(
    db_session, period, make_movement, import_rows
):
    period_id = period.id
    movement = await make_movement("1000.00", date(2026, 3, 10))
    await import_rows([
        ("1000.00", date(2026, 3, 10), "Cobro"),
        ("1000.00", date(2026, 3, 25), "Cobro duplicado"),
    ])
    second = (await _lines(db_session, period_id))[1]
    second_id = second.id

    with pytest.raises(ConflictException):
        await matching_service.manual_match(db_session, second_id, [movement.id], ACTOR)
    await db_session.rollback()


async def test_match_then_unmatch_round_trip(
    db_session, period, make_movement, import_rows
):
    period_id = period.id
    movement = await make_movement("1000.00", date(2026, 3, 1))
    movement_id = movement.id
    await import_rows([("1000.00", date(2026, 3, 10), "Cobro")], auto_match=False)
    line_id = (await _lines(db_session, period_id))[0].id

    before = await period_service.list_unmatched_movements(db_session, period_id)
    assert [m.id for m in before] == [movement_id]

    await matching_service.manual_match(db_session, line_id, [movement_id], ACTOR)
    await db_session.commit()
    assert await period_service.list_unmatched_movements(db_session, period_id) == []

    result = await matching_service.unmatch(db_session, line_id, ACTOR)
    await db_session.commit()

    assert result.released_movement_ids == [movement_id]
    line = await db_session.get(StatementLine, line_id)
    assert line.status == LineStatus.UNMATCHED
    assert await _count(db_session, MatchLink) == 0
    after = await period_service.list_unmatched_movements(db_session, period_id)
    assert [m.id for m in after] == [movement_id]

    kinds = (await db_session.execute(
        select(AuditEntry.kind)
        .where(AuditEntry.entity_type == "match_link")
        .order_by(AuditEntry.created_at)
    )).scalars().all()
    assert kinds == ["MatchCreated", "MatchRemoved"]


async def test_unmatch_without_link_raises_not_matched(
    db_session, period, import_rows
):
    period_id = period.id
    await import_rows([("1000.00", date(2026, 3, 10), "Cobro")], auto_match=False)
    line_id = (await _lines(db_session, period_id))[0].id

    with pytest.raises(NotMatchedError) as exc_info:
        await matching_service.unmatch(db_session, line_id, ACTOR)
    await db_session.rollback()

    assert exc_info.value.status_code == 404
    assert await _count(db_session, AuditEntry, AuditEntry.kind == "MatchRemoved") == 0


async def test_matching_requires_open_period(
    db_session, period, make_movement, import_rows
):
    period_id = period.id
    movement = await make_movement("1000.00", date(2026, 3, 10))
    await import_rows([("1000.00", date(2026, 3, 10), "Cobro")], auto_match=False)
    line_id = (await _lines(db_session, period_id))[0].id

    period.state = PeriodState.COMPLETED
    await db_session.commit()

    with pytest.raises(InvalidStateTransitionError):
        await matching_service.manual_match(db_session, line_id, [movement.id], ACTOR)
    await db_session.rollback()


def test_repr_of_transient_models_without_enums():
    assert "?" in repr(_movement(1, "10.00", date(2026, 3, 1)))
    assert "?" in repr(_line("10.00", date(2026, 3, 1)))
    assert "?" in repr(ReconciliationPeriod())
    assert "?" in repr(MatchLink())
