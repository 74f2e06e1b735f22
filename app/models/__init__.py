"""
Modelos SQLAlchemy — exportar todos para que Alembic los detecte.
"""

from app.models.ledger import BankAccount, LedgerMovement
from app.models.reconciliation import (
    ClosingAdjustment,
    ReconciliationPeriod,
    StatementImport,
    StatementLine,
)
from app.models.match_link import MatchLink, MatchLinkMovement
from app.models.suspense import SuspenseItem
from app.models.audit_log import AuditEntry
from app.models.idempotency import IdempotencyRecord
