"""
Guarda de idempotencia para operaciones que mutan estado.

Flujo de `with_idempotency`:
1. Sin token → ejecuta directo (llamadas internas), commit o rollback.
2. Registro COMPLETED vigente → devuelve la respuesta cacheada sin ejecutar.
3. Registro PROCESSING vigente → ConcurrentOperationError (el cliente reintenta).
4. Registro FAILED, expirado o inexistente → se reclama como PROCESSING (commit),
   se ejecuta, y el efecto de la operación se confirma junto con el COMPLETED
   en un único commit. Ante error: rollback total y el registro queda FAILED.

Un PROCESSING huérfano (proceso caído) bloquea la clave hasta que expira.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Awaitable, Callable

from pydantic import BaseModel
from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from app.core.exceptions import ConcurrentOperationError, IdempotencyKeyReuseError
from app.database import as_aware, utcnow
from app.models.idempotency import IdempotencyRecord, IdempotencyStatus

logger = logging.getLogger(__name__)
settings = get_settings()


@dataclass
class IdempotentResult:
    payload: dict
    replayed: bool = False


async def _find_record(
    db: AsyncSession, scope: str, token: str
) -> IdempotencyRecord | None:
    result = await db.execute(
        select(IdempotencyRecord)
        .where(IdempotencyRecord.scope == scope, IdempotencyRecord.token == token)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def _claim(
    db: AsyncSession,
    *,
    scope: str,
    operation: str,
    token: str,
    existing: IdempotencyRecord | None,
    now: datetime,
) -> None:
    """Marca la clave como PROCESSING y lo confirma para que otras requests lo vean."""
    expires_at = now + timedelta(hours=settings.IDEMPOTENCY_TTL_HOURS)

    if existing is None:
        db.add(IdempotencyRecord(
            scope=scope,
            operation=operation,
            token=token,
            status=IdempotencyStatus.PROCESSING,
            expires_at=expires_at,
        ))
        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            logger.warning(f"Clave de idempotencia reclamada en paralelo: {scope}/{operation}")
            raise ConcurrentOperationError(scope, operation)
        return

    # Compare-and-set sobre el estado leído: si otra request lo tomó, rowcount = 0
    result = await db.execute(
        update(IdempotencyRecord)
        .where(
            IdempotencyRecord.id == existing.id,
            IdempotencyRecord.status == existing.status,
            IdempotencyRecord.expires_at == existing.expires_at,
        )
        .values(
            operation=operation,
            status=IdempotencyStatus.PROCESSING,
            response=None,
            expires_at=expires_at,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.rollback()
        raise ConcurrentOperationError(scope, operation)
    await db.commit()


async def _finish(
    db: AsyncSession,
    *,
    scope: str,
    token: str,
    status: IdempotencyStatus,
    response: dict | None = None,
) -> None:
    await db.execute(
        update(IdempotencyRecord)
        .where(IdempotencyRecord.scope == scope, IdempotencyRecord.token == token)
        .values(status=status, response=response, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )


async def with_idempotency(
    db: AsyncSession,
    *,
    token: str | None,
    scope: str,
    operation: str,
    execute: Callable[[], Awaitable[BaseModel]],
) -> IdempotentResult:
    """Ejecuta `execute` como máximo una vez por (scope, token)."""
    if not token:
        try:
            result = await execute()
            payload = result.model_dump(mode="json")
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        return IdempotentResult(payload=payload)

    now = utcnow()
    existing = await _find_record(db, scope, token)

    if existing is not None and as_aware(existing.expires_at) > now:
        if existing.operation != operation:
            raise IdempotencyKeyReuseError(scope, operation, existing.operation)
        if existing.status == IdempotencyStatus.COMPLETED:
            logger.info(f"Respuesta repetida desde caché: {scope}/{operation}")
            return IdempotentResult(payload=existing.response or {}, replayed=True)
        if existing.status == IdempotencyStatus.PROCESSING:
            logger.warning(f"Operación concurrente rechazada: {scope}/{operation}")
            raise ConcurrentOperationError(scope, operation)

    await _claim(
        db, scope=scope, operation=operation, token=token, existing=existing, now=now
    )

    try:
        result = await execute()
        payload = result.model_dump(mode="json")
        await _finish(
            db, scope=scope, token=token,
            status=IdempotencyStatus.COMPLETED, response=payload,
        )
        await db.commit()
    except Exception:
        await db.rollback()
        await _finish(db, scope=scope, token=token, status=IdempotencyStatus.FAILED)
        await db.commit()
        raise

    return IdempotentResult(payload=payload)


async def purge_expired(db: AsyncSession, now: datetime | None = None) -> int:
    """
    Elimina registros expirados en estado terminal (COMPLETED / FAILED).
    Los PROCESSING expirados no se borran: la guarda los trata como libres.
    """
    now = now or utcnow()
    result = await db.execute(
        select(IdempotencyRecord.id)
        .where(
            IdempotencyRecord.expires_at <= now,
            IdempotencyRecord.status.in_(
                [IdempotencyStatus.COMPLETED, IdempotencyStatus.FAILED]
            ),
        )
        .limit(settings.IDEMPOTENCY_PURGE_BATCH)
    )
    ids = list(result.scalars().all())
    if not ids:
        return 0

    await db.execute(delete(IdempotencyRecord).where(IdempotencyRecord.id.in_(ids)))
    await db.flush()
    logger.info(f"Purga de idempotencia: {len(ids)} registros expirados eliminados")
    return len(ids)
