"""
Fixtures compartidas para Pytest.
Configura base de datos de test, cliente HTTP y datos de tesorería.
"""

from collections.abc import AsyncGenerator
from datetime import date
from decimal import Decimal

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.database import Base, get_db
from app.main import app
from app.models.ledger import BankAccount, LedgerMovement
from app.models.reconciliation import ReconciliationPeriod
from app.schemas.reconciliation import PeriodOpen, StatementImportRequest, StatementRow
from app.services import period_service, statement_service
from app.services.ledger_gateway import SqlLedgerGateway

ACTOR = "tesoreria@test"


# ── Engine de test (SQLite async, una base por test) ─
@pytest_asyncio.fixture
async def test_engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path}/test.db", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(test_engine) -> AsyncGenerator[AsyncSession, None]:
    """Provee una sesión de DB de test."""
    session_factory = async_sessionmaker(
        test_engine, class_=AsyncSession, expire_on_commit=False
    )
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Cliente HTTP de test que usa la DB de test."""

    async def _get_test_db():
        try:
            yield db_session
            await db_session.commit()
        except Exception:
            await db_session.rollback()
            raise

    app.dependency_overrides[get_db] = _get_test_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ── Datos de tesorería ───────────────────────────────


@pytest_asyncio.fixture
async def bank_account(db_session: AsyncSession) -> BankAccount:
    """Cuenta bancaria con saldo contable inicial de 10.000."""
    account = BankAccount(
        name="Cuenta corriente operativa",
        bank="Banco Nación",
        account_number="0011-2233-44",
        currency="ARS",
        saldo_contable=Decimal("10000.00"),
        saldo_bancario=Decimal("10000.00"),
    )
    db_session.add(account)
    await db_session.commit()
    return account


@pytest_asyncio.fixture
async def period(db_session: AsyncSession, bank_account: BankAccount) -> ReconciliationPeriod:
    """Período de marzo 2026 en estado OPEN."""
    response = await period_service.open_period(
        db_session,
        PeriodOpen(
            account_id=bank_account.id,
            period_start=date(2026, 3, 1),
            period_end=date(2026, 3, 31),
            saldo_bancario=Decimal("11300.00"),
        ),
    )
    await db_session.commit()
    return await db_session.get(ReconciliationPeriod, response.id)


@pytest.fixture
def make_movement(db_session: AsyncSession, bank_account: BankAccount):
    """Factory de movimientos de tesorería a través del gateway."""
    account_id = bank_account.id

    async def _make(
        amount: str,
        movement_date: date,
        source_ref: str | None = None,
        description: str | None = None,
    ) -> LedgerMovement:
        movement = await SqlLedgerGateway(db_session).create_movement(
            account_id,
            Decimal(amount),
            movement_date,
            source_ref,
            description=description,
        )
        await db_session.commit()
        return movement

    return _make


@pytest.fixture
def import_rows(db_session: AsyncSession, period: ReconciliationPeriod):
    """Importa filas de extracto al período de test."""
    period_id = period.id

    async def _import(
        rows: list[tuple[str, date, str]],
        batch_reference: str = "EXT-2026-03",
        auto_match: bool = True,
    ):
        response = await statement_service.import_statement(
            db_session,
            period_id,
            StatementImportRequest(
                batch_reference=batch_reference,
                rows=[
                    StatementRow(amount=Decimal(amount), value_date=value_date, description=text)
                    for amount, value_date, text in rows
                ],
                auto_match=auto_match,
            ),
            ACTOR,
        )
        await db_session.commit()
        return response

    return _import
