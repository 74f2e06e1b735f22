"""
Dependencies de FastAPI compartidas por los endpoints de conciliación.

La autenticación queda fuera de este servicio: el actor llega en `X-Actor-Id`
desde el gateway que la resuelve.
"""

from typing import TypeVar

from fastapi import Header, Response
from pydantic import BaseModel

from app.services.idempotency_service import IdempotentResult

ModelT = TypeVar("ModelT", bound=BaseModel)

REPLAY_HEADER = "Idempotency-Replayed"


async def get_actor(
    x_actor_id: str | None = Header(None, alias="X-Actor-Id", max_length=100),
) -> str:
    """Usuario que ejecuta la operación; `system` si no se informa."""
    return x_actor_id or "system"


async def get_idempotency_key(
    idempotency_key: str | None = Header(None, alias="Idempotency-Key", max_length=200),
) -> str | None:
    return idempotency_key or None


def idempotent_response(
    response: Response, result: IdempotentResult, model: type[ModelT]
) -> ModelT:
    """Reconstruye la respuesta guardada y marca las repeticiones con un header."""
    if result.replayed:
        response.headers[REPLAY_HEADER] = "true"
    return model.model_validate(result.payload)
