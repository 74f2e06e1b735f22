"""
Excepciones HTTP personalizadas para la API.

Las excepciones de dominio de conciliación llevan un `detail` estructurado
(`code`, `message` y contexto) para que el cliente pueda corregir y reintentar.
"""

from decimal import Decimal
from typing import Any

from fastapi import HTTPException, status


class NotFoundException(HTTPException):
    """Recurso no encontrado (404)."""

    def __init__(self, resource: str = "Recurso", detail: str | None = None):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=detail or f"{resource} no encontrado",
        )


class ConflictException(HTTPException):
    """Conflicto de datos (409)."""

    def __init__(self, detail: str = "El recurso ya existe"):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=detail,
        )


class ValidationException(HTTPException):
    """Error de validación de negocio (422)."""

    def __init__(self, detail: str = "Error de validación"):
        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=detail,
        )


# ── Errores de dominio ───────────────────────────────


class ReconciliationError(HTTPException):
    """Base de los errores de conciliación con detalle estructurado."""

    code: str = "RECONCILIATION_ERROR"
    status_code_default: int = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, **context: Any):
        self.message = message
        self.context = context
        super().__init__(
            status_code=self.status_code_default,
            detail={"code": self.code, "message": message, **_jsonable(context)},
        )


def _jsonable(context: dict[str, Any]) -> dict[str, Any]:
    return {
        key: str(value) if isinstance(value, Decimal) else value
        for key, value in context.items()
    }


class DuplicateImportError(ReconciliationError):
    code = "DUPLICATE_IMPORT"
    status_code_default = status.HTTP_409_CONFLICT

    def __init__(self, batch_reference: str):
        self.batch_reference = batch_reference
        super().__init__(
            f"El lote '{batch_reference}' ya fue importado en este período",
            batch_reference=batch_reference,
        )


class AmountMismatchError(ReconciliationError):
    code = "AMOUNT_MISMATCH"
    status_code_default = status.HTTP_400_BAD_REQUEST

    def __init__(self, expected: Decimal, selected: Decimal):
        self.expected = expected
        self.selected = selected
        super().__init__(
            "La suma de los movimientos no coincide con el monto del extracto",
            expected=expected,
            selected=selected,
            difference=expected - selected,
        )


class NotMatchedError(ReconciliationError):
    code = "NOT_MATCHED"
    status_code_default = status.HTTP_404_NOT_FOUND

    def __init__(self, line_id: Any):
        super().__init__(
            "La línea del extracto no tiene una conciliación activa",
            line_id=str(line_id),
        )


class UnresolvedItemsError(ReconciliationError):
    code = "UNRESOLVED_ITEMS"
    status_code_default = status.HTTP_409_CONFLICT

    def __init__(self, pending_count: int, suspense_count: int):
        self.pending_count = pending_count
        self.suspense_count = suspense_count
        super().__init__(
            f"Hay {pending_count} partidas pendientes de conciliar",
            pending_count=pending_count,
            suspense_count=suspense_count,
        )


class MissingJustificationError(ReconciliationError):
    code = "MISSING_JUSTIFICATION"
    status_code_default = status.HTTP_422_UNPROCESSABLE_ENTITY

    def __init__(self, pending_count: int, suspense_count: int):
        self.pending_count = pending_count
        self.suspense_count = suspense_count
        super().__init__(
            "El cierre forzado con partidas pendientes requiere justificar las diferencias",
            pending_count=pending_count,
            suspense_count=suspense_count,
        )


class ConcurrentOperationError(ReconciliationError):
    code = "CONCURRENT_OPERATION"
    status_code_default = status.HTTP_409_CONFLICT

    def __init__(self, scope: str, operation: str):
        super().__init__(
            "La operación ya se está procesando; reintente más tarde",
            scope=scope,
            operation=operation,
        )


class InvalidStateTransitionError(ReconciliationError):
    code = "INVALID_STATE_TRANSITION"
    status_code_default = status.HTTP_409_CONFLICT

    def __init__(self, current_state: str, attempted: str):
        self.current_state = current_state
        super().__init__(
            f"No se puede '{attempted}' un período en estado '{current_state}'",
            current_state=current_state,
            attempted=attempted,
        )


class IdempotencyKeyReuseError(ReconciliationError):
    code = "IDEMPOTENCY_KEY_REUSED"
    status_code_default = status.HTTP_422_UNPROCESSABLE_ENTITY

    def __init__(self, scope: str, operation: str, bound_operation: str):
        super().__init__(
            "La clave de idempotencia ya fue usada para otra operación",
            scope=scope,
            operation=operation,
            bound_operation=bound_operation,
        )
