"""
Tareas Celery de conciliación bancaria.
Auto-conciliación en background y mantenimiento de claves de idempotencia.
"""

import asyncio
import logging

from fastapi import HTTPException

from app.tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(
    bind=True,
    max_retries=3,
    default_retry_delay=30,
    name="reconciliation.auto_match_period",
)
def auto_match_period_task(self, period_id: str, actor: str = "system"):
    """
    Ejecuta la auto-conciliación de un período en su propia sesión.
    Se usa para extractos grandes, para no bloquear el endpoint HTTP.
    """
    from uuid import UUID

    async def _run():
        from app.database import async_session_factory
        from app.services.matching_service import auto_match

        async with async_session_factory() as db:
            try:
                result = await auto_match(db, UUID(period_id), actor)
                await db.commit()
            except Exception:
                await db.rollback()
                raise

        logger.info(
            f"Auto-conciliación en background período {period_id}: "
            f"{result.matched} conciliadas, {result.suspense} en suspenso"
        )
        return result.model_dump()

    try:
        return asyncio.run(_run())
    except HTTPException as exc:
        # Errores de negocio (período cerrado, inexistente): reintentar no sirve
        logger.warning(f"Auto-conciliación período {period_id} rechazada: {exc.detail}")
        return {"error": exc.detail}
    except Exception as exc:
        logger.error(f"Error en auto-conciliación del período {period_id}: {exc}")
        raise self.retry(exc=exc)


@celery_app.task(name="idempotency.purge_expired")
def purge_expired_idempotency_records():
    """
    Task periódico: elimina claves de idempotencia vencidas en estado
    COMPLETED o FAILED. Programado cada hora con Celery Beat.
    """
    async def _purge():
        from app.database import async_session_factory
        from app.services.idempotency_service import purge_expired

        async with async_session_factory() as db:
            deleted = await purge_expired(db)
            await db.commit()
        return deleted

    deleted = asyncio.run(_purge())
    return {"deleted": deleted}
