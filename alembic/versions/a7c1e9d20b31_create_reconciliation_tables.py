"""Conciliación bancaria: períodos, extractos, vínculos, suspenso, cierre e idempotencia

Revision ID: a7c1e9d20b31
Revises:
Create Date: 2026-10-18

- Crea tablas bank_accounts y ledger_movements (libro de tesorería)
- Crea tablas reconciliation_periods, statement_imports, statement_lines
- Crea tablas match_links, match_link_movements, suspense_items
- Crea tablas closing_adjustments, reconciliation_audit_log, idempotency_records
- Crea enums de estados
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql
from sqlalchemy.dialects.postgresql import UUID, JSONB


# revision identifiers, used by Alembic.
revision: str = 'a7c1e9d20b31'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


_ENUMS = {
    'movementtype': ('ingreso', 'egreso'),
    'periodstate': ('open', 'closing', 'completed', 'with_differences', 'reopened'),
    'linestatus': ('unmatched', 'matched', 'suspense'),
    'matchtype': ('auto', 'manual'),
    'suspensereason': ('no_candidate', 'ambiguous_candidate'),
    'suspenseoutcome': ('converted_to_movement', 'written_off', 'still_pending'),
    'idempotencystatus': ('processing', 'completed', 'failed'),
}


def _enum(name: str) -> postgresql.ENUM:
    return postgresql.ENUM(*_ENUMS[name], name=name, create_type=False)


def upgrade() -> None:
    # ── 1. Enums ─────────────────────────────────────
    for name, values in _ENUMS.items():
        labels = ", ".join(f"'{v}'" for v in values)
        op.execute(f"CREATE TYPE {name} AS ENUM ({labels})")

    # ── 2. Libro de tesorería ────────────────────────
    op.create_table(
        'bank_accounts',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('bank', sa.String(100), nullable=False),
        sa.Column('account_number', sa.String(50), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False, server_default='ARS'),
        sa.Column('saldo_contable', sa.Numeric(14, 2), nullable=False, server_default='0'),
        sa.Column('saldo_bancario', sa.Numeric(14, 2), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        'ledger_movements',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('account_id', sa.Integer(), sa.ForeignKey('bank_accounts.id'), nullable=False),
        sa.Column('movement_type', _enum('movementtype'), nullable=False),
        sa.Column('amount', sa.Numeric(14, 2), nullable=False),
        sa.Column('movement_date', sa.Date(), nullable=False),
        sa.Column('source_ref', sa.String(100), nullable=True),
        sa.Column('description', sa.String(500), nullable=True),
        sa.Column('balance_before', sa.Numeric(14, 2), nullable=False),
        sa.Column('balance_after', sa.Numeric(14, 2), nullable=False),
        sa.Column('is_adjustment', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index(
        'idx_ledger_movement_account_date', 'ledger_movements', ['account_id', 'movement_date']
    )

    # ── 3. Períodos y extractos ──────────────────────
    op.create_table(
        'reconciliation_periods',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('account_id', sa.Integer(), sa.ForeignKey('bank_accounts.id'), nullable=False),
        sa.Column('period_start', sa.Date(), nullable=False),
        sa.Column('period_end', sa.Date(), nullable=False),
        sa.Column('saldo_contable', sa.Numeric(14, 2), nullable=False, server_default='0'),
        sa.Column('saldo_bancario', sa.Numeric(14, 2), nullable=False, server_default='0'),
        sa.Column('state', _enum('periodstate'), nullable=False, server_default='open'),
        sa.Column('date_window_days', sa.Integer(), nullable=True),
        sa.Column('closing_notes', sa.Text(), nullable=True),
        sa.Column('difference_justifications', JSONB, nullable=True),
        sa.Column('total_difference', sa.Numeric(14, 2), nullable=True),
        sa.Column('closed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('closed_by', sa.String(100), nullable=True),
        sa.Column('reopen_reason', sa.Text(), nullable=True),
        sa.Column('reopened_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('reopened_by', sa.String(100), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint(
            'account_id', 'period_start', 'period_end', name='uq_period_account_range'
        ),
    )
    op.create_index(
        'idx_period_account_state', 'reconciliation_periods', ['account_id', 'state']
    )

    op.create_table(
        'statement_imports',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('period_id', UUID(as_uuid=True), sa.ForeignKey('reconciliation_periods.id'), nullable=False),
        sa.Column('batch_reference', sa.String(100), nullable=False),
        sa.Column('line_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('imported_by', sa.String(100), nullable=True),
        sa.Column('imported_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint('period_id', 'batch_reference', name='uq_import_period_batch'),
    )

    op.create_table(
        'statement_lines',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('period_id', UUID(as_uuid=True), sa.ForeignKey('reconciliation_periods.id'), nullable=False),
        sa.Column('import_id', UUID(as_uuid=True), sa.ForeignKey('statement_imports.id'), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('amount', sa.Numeric(14, 2), nullable=False),
        sa.Column('value_date', sa.Date(), nullable=False),
        sa.Column('description', sa.String(500), nullable=False, server_default=''),
        sa.Column('external_reference', sa.String(100), nullable=True),
        sa.Column('status', _enum('linestatus'), nullable=False, server_default='unmatched'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('idx_line_period_status', 'statement_lines', ['period_id', 'status'])
    op.create_index(
        'idx_line_period_order', 'statement_lines', ['period_id', 'value_date', 'position']
    )

    # ── 4. Vínculos y suspenso ───────────────────────
    op.create_table(
        'match_links',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('period_id', UUID(as_uuid=True), sa.ForeignKey('reconciliation_periods.id'), nullable=False),
        sa.Column('line_id', UUID(as_uuid=True), sa.ForeignKey('statement_lines.id'), nullable=False, unique=True),
        sa.Column('match_type', _enum('matchtype'), nullable=False),
        sa.Column('confidence', sa.Numeric(4, 3), nullable=True),
        sa.Column('created_by', sa.String(100), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_match_links_period_id', 'match_links', ['period_id'])

    op.create_table(
        'match_link_movements',
        sa.Column(
            'link_id', UUID(as_uuid=True),
            sa.ForeignKey('match_links.id', ondelete='CASCADE'), primary_key=True,
        ),
        sa.Column(
            'movement_id', sa.Integer(),
            sa.ForeignKey('ledger_movements.id'), primary_key=True, unique=True,
        ),
        sa.Column('amount', sa.Numeric(14, 2), nullable=False),
    )

    op.create_table(
        'suspense_items',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('period_id', UUID(as_uuid=True), sa.ForeignKey('reconciliation_periods.id'), nullable=False),
        sa.Column('line_id', UUID(as_uuid=True), sa.ForeignKey('statement_lines.id'), nullable=False, unique=True),
        sa.Column('reason', _enum('suspensereason'), nullable=False),
        sa.Column('candidate_movement_ids', JSONB, nullable=True),
        sa.Column('assigned_to', sa.String(100), nullable=True),
        sa.Column('outcome', _enum('suspenseoutcome'), nullable=True),
        sa.Column('justification', sa.Text(), nullable=True),
        sa.Column('movement_id', sa.Integer(), sa.ForeignKey('ledger_movements.id'), nullable=True),
        sa.Column('resolved_by', sa.String(100), nullable=True),
        sa.Column('resolved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('idx_suspense_period_outcome', 'suspense_items', ['period_id', 'outcome'])

    # ── 5. Cierre ────────────────────────────────────
    op.create_table(
        'closing_adjustments',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('period_id', UUID(as_uuid=True), sa.ForeignKey('reconciliation_periods.id'), nullable=False),
        sa.Column('movement_id', sa.Integer(), sa.ForeignKey('ledger_movements.id'), nullable=False),
        sa.Column('adjustment_type', _enum('movementtype'), nullable=False),
        sa.Column('amount', sa.Numeric(14, 2), nullable=False),
        sa.Column('justification', sa.Text(), nullable=False),
        sa.Column('created_by', sa.String(100), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('idx_adjustment_period', 'closing_adjustments', ['period_id'])

    # ── 6. Auditoría e idempotencia ──────────────────
    op.create_table(
        'reconciliation_audit_log',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('period_id', UUID(as_uuid=True), sa.ForeignKey('reconciliation_periods.id'), nullable=False),
        sa.Column('entity_type', sa.String(50), nullable=False),
        sa.Column('entity_id', sa.String(36), nullable=False),
        sa.Column('kind', sa.String(40), nullable=False),
        sa.Column('before_state', sa.String(40), nullable=True),
        sa.Column('after_state', sa.String(40), nullable=True),
        sa.Column('payload', JSONB, nullable=False),
        sa.Column('actor', sa.String(100), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_reconciliation_audit_log_period_id', 'reconciliation_audit_log', ['period_id'])
    op.create_index('ix_reconciliation_audit_log_kind', 'reconciliation_audit_log', ['kind'])
    op.create_index('idx_audit_entity', 'reconciliation_audit_log', ['entity_type', 'entity_id'])

    op.create_table(
        'idempotency_records',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('scope', sa.String(100), nullable=False),
        sa.Column('operation', sa.String(50), nullable=False),
        sa.Column('token', sa.String(200), nullable=False),
        sa.Column('status', _enum('idempotencystatus'), nullable=False, server_default='processing'),
        sa.Column('response', JSONB, nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint('scope', 'token', name='uq_idempotency_scope_token'),
    )
    op.create_index(
        'idx_idempotency_status_expiry', 'idempotency_records', ['status', 'expires_at']
    )


def downgrade() -> None:
    op.drop_table('idempotency_records')
    op.drop_table('reconciliation_audit_log')
    op.drop_table('closing_adjustments')
    op.drop_table('suspense_items')
    op.drop_table('match_link_movements')
    op.drop_table('match_links')
    op.drop_table('statement_lines')
    op.drop_table('statement_imports')
    op.drop_table('reconciliation_periods')
    op.drop_table('ledger_movements')
    op.drop_table('bank_accounts')

    for name in reversed(list(_ENUMS)):
        op.execute(f"DROP TYPE IF EXISTS {name}")
