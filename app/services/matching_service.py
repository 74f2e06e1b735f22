"""
Motor de conciliación — auto-conciliación, conciliación manual y desconciliación.

Auto-conciliación:
1. Líneas UNMATCHED del período, de la fecha valor más antigua a la más nueva.
2. Candidatos: movimientos no conciliados de la cuenta con monto exacto y
   dentro de la ventana de fechas (±N días).
3. Ranking: (a) la descripción contiene la referencia del movimiento,
   (b) menor distancia en días, (c) menor id de movimiento.
4. Un candidato único o dominante genera un vínculo AUTO; sin candidatos o con
   empate en (a)+(b) la línea pasa a suspenso.
5. Un movimiento consumido sale del pool antes de evaluar la línea siguiente.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.core.exceptions import (
    AmountMismatchError,
    ConflictException,
    NotFoundException,
    NotMatchedError,
    ValidationException,
)
from app.models.ledger import LedgerMovement
from app.models.match_link import MatchLink, MatchLinkMovement, MatchType
from app.models.reconciliation import LineStatus, ReconciliationPeriod, StatementLine
from app.models.suspense import SuspenseItem, SuspenseOutcome, SuspenseReason
from app.schemas.audit import MatchCreated, MatchRemoved, SuspenseOpened
from app.schemas.matching import MatchLinkResponse, UnmatchResponse
from app.schemas.reconciliation import AutoMatchResponse
from app.services import audit_service
from app.services.ledger_gateway import LedgerGateway, SqlLedgerGateway
from app.services.period_service import get_period, require_open

logger = logging.getLogger(__name__)
settings = get_settings()

_FULL_CONFIDENCE = Decimal("1.000")
_MIN_CONFIDENCE = Decimal("0.500")


# ── Ranking de candidatos ────────────────────────────


@dataclass
class MatchDecision:
    """Resultado de evaluar una línea contra su pool de candidatos."""
    movement: LedgerMovement | None = None
    reason: SuspenseReason | None = None
    ranked_ids: list[int] = field(default_factory=list)
    confidence: Decimal | None = None


def reference_hit(description: str | None, source_ref: str | None) -> bool:
    ref = (source_ref or "").strip()
    if not description or not ref:
        return False
    return ref.lower() in description.lower()


def _rank_key(line: StatementLine, movement: LedgerMovement) -> tuple[int, int, int]:
    distance = abs((movement.movement_date - line.value_date).days)
    no_hit = 0 if reference_hit(line.description, movement.source_ref) else 1
    return (no_hit, distance, movement.id)


def _confidence(hit: bool, distance: int, contested: bool) -> Decimal:
    if hit:
        return _FULL_CONFIDENCE
    score = Decimal("0.900") - Decimal("0.100") * distance
    if contested:
        score -= Decimal("0.050")
    return max(score, _MIN_CONFIDENCE).quantize(Decimal("0.001"))


def decide_match(
    line: StatementLine, pool: list[LedgerMovement], window_days: int
) -> MatchDecision:
    """Elige el movimiento para una línea, o el motivo por el que queda en suspenso."""
    candidates = [
        m for m in pool
        if m.amount == line.amount
        and abs((m.movement_date - line.value_date).days) <= window_days
    ]
    if not candidates:
        return MatchDecision(reason=SuspenseReason.NO_CANDIDATE)

    ranked = sorted(candidates, key=lambda m: _rank_key(line, m))
    ranked_ids = [m.id for m in ranked]
    best = _rank_key(line, ranked[0])

    if len(ranked) > 1 and _rank_key(line, ranked[1])[:2] == best[:2]:
        return MatchDecision(
            reason=SuspenseReason.AMBIGUOUS_CANDIDATE, ranked_ids=ranked_ids
        )

    return MatchDecision(
        movement=ranked[0],
        ranked_ids=ranked_ids,
        confidence=_confidence(
            hit=best[0] == 0, distance=best[1], contested=len(ranked) > 1
        ),
    )


# ── Escritura de vínculos y partidas ─────────────────


async def create_link(
    db: AsyncSession,
    *,
    line: StatementLine,
    movements: list[LedgerMovement],
    match_type: MatchType,
    actor: str,
    confidence: Decimal | None = None,
) -> MatchLink:
    """Crea el vínculo, marca la línea MATCHED y registra MatchCreated."""
    before = line.status
    link = MatchLink(
        period_id=line.period_id,
        line_id=line.id,
        match_type=match_type,
        confidence=confidence,
        created_by=actor,
        movements=[
            MatchLinkMovement(movement_id=m.id, amount=m.amount) for m in movements
        ],
    )
    db.add(link)
    line.status = LineStatus.MATCHED
    await db.flush()

    await audit_service.log_event(
        db,
        period_id=line.period_id,
        entity_type="match_link",
        entity_id=link.id,
        payload=MatchCreated(
            link_id=link.id,
            line_id=line.id,
            match_type=match_type.value,
            movement_ids=[m.id for m in movements],
            amount=line.amount,
            confidence=confidence,
        ),
        actor=actor,
        before_state=before.value,
        after_state=LineStatus.MATCHED.value,
    )
    return link


async def _open_suspense(
    db: AsyncSession,
    *,
    line: StatementLine,
    decision: MatchDecision,
    actor: str,
) -> SuspenseItem:
    item = SuspenseItem(
        period_id=line.period_id,
        line_id=line.id,
        reason=decision.reason,
        candidate_movement_ids=decision.ranked_ids or None,
    )
    db.add(item)
    line.status = LineStatus.SUSPENSE
    await db.flush()

    await audit_service.log_event(
        db,
        period_id=line.period_id,
        entity_type="suspense_item",
        entity_id=item.id,
        payload=SuspenseOpened(
            item_id=item.id,
            line_id=line.id,
            reason=decision.reason.value,
            candidate_movement_ids=decision.ranked_ids,
        ),
        actor=actor,
        before_state=LineStatus.UNMATCHED.value,
        after_state=LineStatus.SUSPENSE.value,
    )
    return item


def _window_days(period: ReconciliationPeriod) -> int:
    if period.date_window_days is not None:
        return period.date_window_days
    return settings.MATCH_DATE_WINDOW_DAYS


# ── Auto-conciliación ────────────────────────────────


async def auto_match(
    db: AsyncSession,
    period_id: UUID,
    actor: str,
    gateway: LedgerGateway | None = None,
) -> AutoMatchResponse:
    """Ejecuta la auto-conciliación sobre las líneas UNMATCHED del período."""
    gateway = gateway or SqlLedgerGateway(db)
    period = await get_period(db, period_id, for_update=True)
    require_open(period, "auto_match")

    result = await db.execute(
        select(StatementLine)
        .where(
            StatementLine.period_id == period_id,
            StatementLine.status == LineStatus.UNMATCHED,
        )
        .order_by(StatementLine.value_date, StatementLine.position)
    )
    lines = list(result.scalars().all())
    if not lines:
        return AutoMatchResponse(matched=0, suspense=0)

    window = _window_days(period)
    earliest = min(period.period_start, lines[0].value_date)
    latest = max(period.period_end, max(line.value_date for line in lines))
    pool = await gateway.list_movements(
        period.account_id,
        date_from=earliest - timedelta(days=window),
        date_to=latest + timedelta(days=window),
    )

    matched = suspense = 0
    for line in lines:
        decision = decide_match(line, pool, window)
        if decision.movement is not None:
            await create_link(
                db,
                line=line,
                movements=[decision.movement],
                match_type=MatchType.AUTO,
                actor=actor,
                confidence=decision.confidence,
            )
            pool.remove(decision.movement)
            matched += 1
        else:
            await _open_suspense(db, line=line, decision=decision, actor=actor)
            suspense += 1

    logger.info(
        f"Auto-conciliación período {period_id}: "
        f"{matched} conciliadas, {suspense} en suspenso (ventana ±{window} días)"
    )
    return AutoMatchResponse(matched=matched, suspense=suspense)


# ── Conciliación manual ──────────────────────────────


async def _get_line(db: AsyncSession, line_id: UUID) -> StatementLine:
    line = await db.get(StatementLine, line_id, populate_existing=True)
    if not line:
        raise NotFoundException("Línea de extracto")
    return line


async def _get_suspense_item(db: AsyncSession, line_id: UUID) -> SuspenseItem | None:
    result = await db.execute(
        select(SuspenseItem).where(SuspenseItem.line_id == line_id)
    )
    return result.scalar_one_or_none()


async def manual_match(
    db: AsyncSession,
    line_id: UUID,
    movement_ids: list[int],
    actor: str,
    gateway: LedgerGateway | None = None,
) -> MatchLinkResponse:
    """
    Concilia una línea contra uno o más movimientos elegidos por el operador.
    La suma de los movimientos debe coincidir exactamente con el monto de la línea.
    """
    if len(set(movement_ids)) != len(movement_ids):
        raise ValidationException("movement_ids no puede contener repetidos")

    gateway = gateway or SqlLedgerGateway(db)
    line = await _get_line(db, line_id)
    period = await get_period(db, line.period_id, for_update=True)
    require_open(period, "manual_match")

    if line.status == LineStatus.MATCHED:
        raise ConflictException("La línea del extracto ya está conciliada")

    item = await _get_suspense_item(db, line_id)
    if item and item.outcome == SuspenseOutcome.WRITTEN_OFF:
        raise ConflictException("La partida fue dada de baja y no puede conciliarse")

    movements: list[LedgerMovement] = []
    for movement_id in movement_ids:
        movement = await gateway.get_movement(movement_id)
        if not movement:
            raise NotFoundException("Movimiento", f"Movimiento {movement_id} no encontrado")
        if movement.account_id != period.account_id:
            raise ValidationException(
                f"El movimiento {movement_id} no pertenece a la cuenta del período"
            )
        movements.append(movement)

    linked = (await db.execute(
        select(MatchLinkMovement.movement_id)
        .where(MatchLinkMovement.movement_id.in_(movement_ids))
    )).scalars().all()
    if linked:
        raise ConflictException(
            f"Movimientos ya conciliados: {', '.join(str(i) for i in sorted(linked))}"
        )

    selected = sum((m.amount for m in movements), Decimal("0.00"))
    if selected != line.amount:
        raise AmountMismatchError(expected=line.amount, selected=selected)

    if item:
        await db.delete(item)
        await db.flush()

    link = await create_link(
        db, line=line, movements=movements, match_type=MatchType.MANUAL, actor=actor
    )
    logger.info(f"Línea {line_id} conciliada manualmente con {movement_ids}")
    return MatchLinkResponse.model_validate(link)


async def unmatch(db: AsyncSession, line_id: UUID, actor: str) -> UnmatchResponse:
    """Elimina el vínculo activo de la línea y la devuelve a UNMATCHED."""
    line = await _get_line(db, line_id)
    period = await get_period(db, line.period_id, for_update=True)
    require_open(period, "unmatch")

    result = await db.execute(select(MatchLink).where(MatchLink.line_id == line_id))
    link = result.scalar_one_or_none()
    if not link:
        raise NotMatchedError(line_id)

    removed = MatchRemoved(
        link_id=link.id,
        line_id=line.id,
        match_type=link.match_type.value,
        movement_ids=link.movement_ids,
        amount=line.amount,
        confidence=link.confidence,
        created_by=link.created_by,
        created_at=link.created_at,
    )

    # La partida convertida pierde sentido sin su vínculo
    item = await _get_suspense_item(db, line_id)
    if item and item.outcome == SuspenseOutcome.CONVERTED_TO_MOVEMENT:
        await db.delete(item)

    await db.delete(link)
    line.status = LineStatus.UNMATCHED
    await db.flush()

    await audit_service.log_event(
        db,
        period_id=line.period_id,
        entity_type="match_link",
        entity_id=removed.link_id,
        payload=removed,
        actor=actor,
        before_state=LineStatus.MATCHED.value,
        after_state=LineStatus.UNMATCHED.value,
    )
    logger.info(f"Línea {line_id} desconciliada (vínculo {removed.link_id})")

    return UnmatchResponse(
        line_id=line.id,
        status=LineStatus.UNMATCHED.value,
        removed_link_id=removed.link_id,
        released_movement_ids=removed.movement_ids,
    )
