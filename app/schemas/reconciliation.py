"""
Schemas para períodos de conciliación, importación de extractos y cierre.

Los campos del cierre aceptan los nombres que usa el frontend de tesorería
(`monto`, `concepto`, `justificacion`, `forzarCierre`, ...) como alias.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from app.config import get_settings
from app.models.ledger import MovementType
from app.models.reconciliation import LineStatus, PeriodState

settings = get_settings()


def _require_text(value: str, field: str, max_length: int) -> str:
    value = value.strip()
    if not value:
        raise ValueError(f"{field} no puede estar vacío")
    if len(value) > max_length:
        raise ValueError(f"{field} admite como máximo {max_length} caracteres")
    return value


# ── Período ───────────────────────────────────────────


class PeriodOpen(BaseModel):
    """Request para registrar (u obtener) el período de una cuenta."""
    account_id: int
    period_start: date
    period_end: date
    saldo_bancario: Decimal = Field(Decimal("0.00"), decimal_places=2)
    date_window_days: int | None = Field(None, ge=0, le=31)

    @model_validator(mode="after")
    def _check_range(self) -> "PeriodOpen":
        if self.period_end < self.period_start:
            raise ValueError("period_end debe ser posterior a period_start")
        return self


class PeriodResponse(BaseModel):
    id: UUID
    account_id: int
    period_start: date
    period_end: date
    saldo_contable: Decimal
    saldo_bancario: Decimal
    state: PeriodState
    date_window_days: int | None = None
    closing_notes: str | None = None
    total_difference: Decimal | None = None
    closed_at: datetime | None = None
    closed_by: str | None = None
    reopen_reason: str | None = None
    reopened_at: datetime | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


# ── Importación de extracto ───────────────────────────


class StatementRow(BaseModel):
    """Fila ya decodificada del extracto bancario."""
    amount: Decimal = Field(..., decimal_places=2)
    value_date: date
    description: str = Field("", max_length=500)
    external_reference: str | None = Field(None, max_length=100)

    @field_validator("amount")
    @classmethod
    def _non_zero(cls, value: Decimal) -> Decimal:
        if value == 0:
            raise ValueError("El monto de la línea no puede ser cero")
        return value


class StatementImportRequest(BaseModel):
    batch_reference: str = Field(..., min_length=1, max_length=100)
    rows: list[StatementRow] = Field(..., min_length=1)
    auto_match: bool = True


class StatementImportResponse(BaseModel):
    import_id: UUID
    period_id: UUID
    batch_reference: str
    imported: int
    matched: int | None = None
    suspense: int | None = None


class StatementLineResponse(BaseModel):
    id: UUID
    period_id: UUID
    position: int
    amount: Decimal
    value_date: date
    description: str
    external_reference: str | None = None
    status: LineStatus

    model_config = {"from_attributes": True}


class StatementLineListResponse(BaseModel):
    items: list[StatementLineResponse]
    total: int
    page: int
    size: int
    pages: int


# ── Resumen ───────────────────────────────────────────


class ReconciliationSummary(BaseModel):
    """Resumen de conciliación por período."""
    period_id: UUID
    state: PeriodState
    total_lines: int = 0
    matched: int = 0
    pending: int = 0
    suspense: int = 0
    suspense_resolved: int = 0
    written_off: int = 0
    converted: int = 0
    still_pending: int = 0
    match_breakdown: dict[str, int] = Field(default_factory=dict)
    statement_total: Decimal = Decimal("0.00")
    matched_total: Decimal = Decimal("0.00")
    saldo_contable: Decimal = Decimal("0.00")
    saldo_bancario: Decimal = Decimal("0.00")
    balance_difference: Decimal = Decimal("0.00")


class AutoMatchResponse(BaseModel):
    matched: int
    suspense: int


# ── Cierre ────────────────────────────────────────────


class DifferenceJustification(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    amount: Decimal = Field(..., alias="monto", decimal_places=2)
    concept: str = Field(..., alias="concepto")
    justification: str = Field(..., alias="justificacion")

    @field_validator("concept")
    @classmethod
    def _check_concept(cls, value: str) -> str:
        return _require_text(value, "concepto", settings.CONCEPT_MAX_LENGTH)

    @field_validator("justification")
    @classmethod
    def _check_justification(cls, value: str) -> str:
        return _require_text(value, "justificacion", settings.JUSTIFICATION_MAX_LENGTH)


class PeriodCloseRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    # Si se informa, debe coincidir con el período de la ruta
    statement_id: UUID | None = Field(None, alias="statementId")
    difference_justifications: list[DifferenceJustification] = Field(
        default_factory=list, alias="differenceJustifications"
    )
    notes: str | None = Field(None, alias="notasCierre", max_length=2000)
    force_close: bool = Field(False, alias="forzarCierre")
    post_adjustment: bool = Field(False, alias="generarAjuste")
    stated_bank_balance: Decimal | None = Field(
        None, alias="saldoBancarioReal", decimal_places=2
    )


class PeriodCloseResponse(BaseModel):
    period_id: UUID
    previous_state: PeriodState
    state: PeriodState
    pending_count: int
    suspense_count: int
    total_difference: Decimal
    adjustment_id: UUID | None = None
    adjustment_type: MovementType | None = None
    saldo_contable: Decimal
    saldo_bancario: Decimal


class PeriodReopenRequest(BaseModel):
    reason: str

    @field_validator("reason")
    @classmethod
    def _check_reason(cls, value: str) -> str:
        return _require_text(value, "reason", settings.JUSTIFICATION_MAX_LENGTH)


class PeriodReopenResponse(BaseModel):
    period_id: UUID
    previous_state: PeriodState
    state: PeriodState
    reason: str
