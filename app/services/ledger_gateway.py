"""
Gateway hacia el libro de movimientos bancarios (módulo de tesorería).

La conciliación consume movimientos y saldos a través de esta interfaz; la
única escritura es `create_movement`, que actualiza el saldo corriente de la
cuenta una sola vez y deja registrados los saldos antes/después.
"""

import logging
from datetime import date
from decimal import Decimal
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import NotFoundException, ValidationException
from app.models.ledger import BankAccount, LedgerMovement, MovementType
from app.models.match_link import MatchLinkMovement

logger = logging.getLogger(__name__)


class LedgerGateway(Protocol):
    async def get_movement(self, movement_id: int) -> LedgerMovement | None: ...

    async def create_movement(
        self,
        account_id: int,
        amount: Decimal,
        movement_date: date,
        source_ref: str | None,
        description: str | None = None,
        is_adjustment: bool = False,
    ) -> LedgerMovement: ...

    async def current_balance(self, account_id: int) -> Decimal: ...

    async def list_movements(
        self,
        account_id: int,
        *,
        date_from: date | None = None,
        date_to: date | None = None,
        exclude_matched: bool = True,
        exclude_adjustments: bool = True,
        amount_min: Decimal | None = None,
        amount_max: Decimal | None = None,
        newest_first: bool = False,
    ) -> list[LedgerMovement]: ...


class SqlLedgerGateway:
    """Implementación sobre las tablas `bank_accounts` y `ledger_movements`."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_movement(self, movement_id: int) -> LedgerMovement | None:
        return await self.db.get(LedgerMovement, movement_id, populate_existing=True)

    async def _get_account(self, account_id: int, for_update: bool = False) -> BankAccount:
        query = (
            select(BankAccount)
            .where(BankAccount.id == account_id)
            .execution_options(populate_existing=True)
        )
        if for_update:
            query = query.with_for_update()
        account = (await self.db.execute(query)).scalar_one_or_none()
        if not account:
            raise NotFoundException("Cuenta bancaria")
        return account

    async def create_movement(
        self,
        account_id: int,
        amount: Decimal,
        movement_date: date,
        source_ref: str | None,
        description: str | None = None,
        is_adjustment: bool = False,
    ) -> LedgerMovement:
        """Registra un movimiento y actualiza el saldo contable de la cuenta."""
        if amount == 0:
            raise ValidationException("El monto del movimiento no puede ser cero")

        account = await self._get_account(account_id, for_update=True)
        balance_before = account.saldo_contable
        balance_after = balance_before + amount
        account.saldo_contable = balance_after

        movement = LedgerMovement(
            account_id=account_id,
            movement_type=MovementType.for_amount(amount),
            amount=amount,
            movement_date=movement_date,
            source_ref=source_ref,
            description=description,
            balance_before=balance_before,
            balance_after=balance_after,
            is_adjustment=is_adjustment,
        )
        self.db.add(movement)
        await self.db.flush()

        logger.info(
            f"Movimiento {movement.id} registrado en cuenta {account_id}: "
            f"{amount} (saldo {balance_before} → {balance_after})"
        )
        return movement

    async def current_balance(self, account_id: int) -> Decimal:
        account = await self._get_account(account_id)
        return account.saldo_contable

    async def list_movements(
        self,
        account_id: int,
        *,
        date_from: date | None = None,
        date_to: date | None = None,
        exclude_matched: bool = True,
        exclude_adjustments: bool = True,
        amount_min: Decimal | None = None,
        amount_max: Decimal | None = None,
        newest_first: bool = False,
    ) -> list[LedgerMovement]:
        """Movimientos de una cuenta con filtros de fecha, monto y estado de conciliación."""
        query = select(LedgerMovement).where(LedgerMovement.account_id == account_id)

        if date_from:
            query = query.where(LedgerMovement.movement_date >= date_from)
        if date_to:
            query = query.where(LedgerMovement.movement_date <= date_to)
        if amount_min is not None:
            query = query.where(LedgerMovement.amount >= amount_min)
        if amount_max is not None:
            query = query.where(LedgerMovement.amount <= amount_max)
        if exclude_adjustments:
            query = query.where(LedgerMovement.is_adjustment.is_(False))
        if exclude_matched:
            query = query.where(
                LedgerMovement.id.not_in(select(MatchLinkMovement.movement_id))
            )

        if newest_first:
            query = query.order_by(LedgerMovement.movement_date.desc(), LedgerMovement.id.desc())
        else:
            query = query.order_by(LedgerMovement.movement_date, LedgerMovement.id)

        result = await self.db.execute(query)
        return list(result.scalars().all())
