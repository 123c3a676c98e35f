"""Initial caja schema: shifts, orders, settlements, discounts, refunds, settings, ledger

Revision ID: 20261019_initial
Revises:
Create Date: 2026-10-19

This migration creates:
1. Shifts with the one-open-shift-per-terminal partial unique index
2. Cash counts (arqueo) and their denomination lines
3. Dining tables, orders, order items and per-operator drafts
4. Settlements and payments (one settlement per order)
5. Discount presets and applied discounts (one per order)
6. Refunds
7. Settings and the audit ledger
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261019_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ==========================================================================
    # 1. SHIFTS
    # ==========================================================================
    op.create_table('shifts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('operator_id', sa.String(length=64), nullable=False),
        sa.Column('terminal_id', sa.String(length=64), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='OPEN'),
        sa.Column('opening_amount', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('cash_sales', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('card_sales', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('transfer_sales', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('total_sales', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('total_orders', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('cash_refunds', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('refund_total', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('closing_amount', sa.BigInteger(), nullable=True),
        sa.Column('expected_amount', sa.BigInteger(), nullable=True),
        sa.Column('difference', sa.BigInteger(), nullable=True),
        sa.Column('closed_by', sa.String(length=64), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('opened_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('closed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('shifts', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_shifts_operator_id'), ['operator_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_shifts_terminal_id'), ['terminal_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_shifts_status'), ['status'], unique=False)
        batch_op.create_index(batch_op.f('ix_shifts_opened_at'), ['opened_at'], unique=False)
        batch_op.create_index(
            'uq_shifts_open_terminal', ['terminal_id'], unique=True,
            sqlite_where=sa.text("status = 'OPEN'"),
            postgresql_where=sa.text("status = 'OPEN'"),
        )

    # ==========================================================================
    # 2. CASH COUNTS
    # ==========================================================================
    op.create_table('cash_counts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('shift_id', sa.Integer(), nullable=False),
        sa.Column('cash_total', sa.BigInteger(), nullable=False),
        sa.Column('counted_card', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('counted_transfer', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('counted_total', sa.BigInteger(), nullable=False),
        sa.Column('expected_total', sa.BigInteger(), nullable=False),
        sa.Column('difference', sa.BigInteger(), nullable=False),
        sa.Column('counted_by', sa.String(length=64), nullable=False),
        sa.Column('counted_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['shift_id'], ['shifts.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('cash_counts', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_cash_counts_shift_id'), ['shift_id'], unique=False)

    op.create_table('cash_count_lines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('cash_count_id', sa.Integer(), nullable=False),
        sa.Column('kind', sa.String(length=8), nullable=False),
        sa.Column('denomination', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['cash_count_id'], ['cash_counts.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('cash_count_lines', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_cash_count_lines_cash_count_id'), ['cash_count_id'], unique=False)

    # ==========================================================================
    # 3. TABLES, ORDERS, ITEMS, DRAFTS
    # ==========================================================================
    op.create_table('dining_tables',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=64), nullable=False),
        sa.Column('area', sa.String(length=64), nullable=True),
        sa.Column('capacity', sa.Integer(), nullable=False, server_default='4'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='AVAILABLE'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name', name='uq_dining_tables_name'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('dining_tables', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_dining_tables_status'), ['status'], unique=False)

    op.create_table('orders',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_number', sa.Integer(), nullable=False),
        sa.Column('order_type', sa.String(length=16), nullable=False, server_default='DINE_IN'),
        sa.Column('table_id', sa.Integer(), nullable=True),
        sa.Column('waiter_name', sa.String(length=128), nullable=True),
        sa.Column('operator_id', sa.String(length=64), nullable=True),
        sa.Column('shift_id', sa.Integer(), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='PENDING'),
        sa.Column('subtotal', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('discount_amount', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('tax', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('tip', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('total', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('payment_method', sa.String(length=16), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('cancel_reason', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['table_id'], ['dining_tables.id'], ),
        sa.ForeignKeyConstraint(['shift_id'], ['shifts.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_number', name='uq_orders_number'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('orders', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_orders_table_id'), ['table_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_orders_shift_id'), ['shift_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_orders_status'), ['status'], unique=False)
        batch_op.create_index(batch_op.f('ix_orders_created_at'), ['created_at'], unique=False)
        batch_op.create_index('ix_orders_status_created', ['status', 'created_at'], unique=False)

    op.create_table('order_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('product_name', sa.String(length=128), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price', sa.BigInteger(), nullable=False),
        sa.Column('line_total', sa.BigInteger(), nullable=False),
        sa.Column('notes', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('order_items', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_order_items_order_id'), ['order_id'], unique=False)

    op.create_table('order_drafts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('operator_id', sa.String(length=64), nullable=False),
        sa.Column('table_key', sa.String(length=64), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('operator_id', 'table_key', name='uq_order_drafts_operator_table'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('order_drafts', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_order_drafts_operator_id'), ['operator_id'], unique=False)

    # ==========================================================================
    # 4. SETTLEMENTS AND PAYMENTS
    # ==========================================================================
    op.create_table('settlements',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('shift_id', sa.Integer(), nullable=False),
        sa.Column('idempotency_key', sa.String(length=128), nullable=True),
        sa.Column('invoice_number', sa.String(length=32), nullable=False),
        sa.Column('subtotal', sa.BigInteger(), nullable=False),
        sa.Column('discount_amount', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('taxable_base', sa.BigInteger(), nullable=False),
        sa.Column('tax_rate', sa.Numeric(precision=6, scale=3), nullable=False),
        sa.Column('tax', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('tip', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('amount_due', sa.BigInteger(), nullable=False),
        sa.Column('amount_paid', sa.BigInteger(), nullable=False),
        sa.Column('change_amount', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('created_by', sa.String(length=64), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ),
        sa.ForeignKeyConstraint(['shift_id'], ['shifts.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_id', name='uq_settlements_order'),
        sa.UniqueConstraint('invoice_number', name='uq_settlements_invoice'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('settlements', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_settlements_order_id'), ['order_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_settlements_shift_id'), ['shift_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_settlements_idempotency_key'), ['idempotency_key'], unique=True)
        batch_op.create_index(batch_op.f('ix_settlements_created_at'), ['created_at'], unique=False)

    op.create_table('payments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('shift_id', sa.Integer(), nullable=False),
        sa.Column('settlement_id', sa.Integer(), nullable=False),
        sa.Column('method', sa.String(length=16), nullable=False),
        sa.Column('amount', sa.BigInteger(), nullable=False),
        sa.Column('received_amount', sa.BigInteger(), nullable=True),
        sa.Column('change_amount', sa.BigInteger(), nullable=True),
        sa.Column('reference', sa.String(length=128), nullable=True),
        sa.Column('created_by', sa.String(length=64), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.CheckConstraint('amount > 0', name='ck_payments_amount_positive'),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ),
        sa.ForeignKeyConstraint(['shift_id'], ['shifts.id'], ),
        sa.ForeignKeyConstraint(['settlement_id'], ['settlements.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('payments', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_payments_order_id'), ['order_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_payments_shift_id'), ['shift_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_payments_settlement_id'), ['settlement_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_payments_method'), ['method'], unique=False)
        batch_op.create_index(batch_op.f('ix_payments_created_at'), ['created_at'], unique=False)

    # ==========================================================================
    # 5. DISCOUNTS
    # ==========================================================================
    op.create_table('discount_presets',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('description', sa.String(length=255), nullable=True),
        sa.Column('discount_type', sa.String(length=16), nullable=False),
        sa.Column('value', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('requires_authorization', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('times_used', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name', name='uq_discount_presets_name'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('discount_presets', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_discount_presets_is_active'), ['is_active'], unique=False)

    op.create_table('applied_discounts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('preset_id', sa.Integer(), nullable=True),
        sa.Column('discount_type', sa.String(length=16), nullable=False),
        sa.Column('discount_value', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('discount_amount', sa.BigInteger(), nullable=False),
        sa.Column('reason', sa.String(length=255), nullable=False),
        sa.Column('applied_by', sa.String(length=64), nullable=False),
        sa.Column('applied_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ),
        sa.ForeignKeyConstraint(['preset_id'], ['discount_presets.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_id', name='uq_applied_discounts_order'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('applied_discounts', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_applied_discounts_order_id'), ['order_id'], unique=False)

    # ==========================================================================
    # 6. REFUNDS
    # ==========================================================================
    op.create_table('refunds',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('shift_id', sa.Integer(), nullable=False),
        sa.Column('amount', sa.BigInteger(), nullable=False),
        sa.Column('method', sa.String(length=16), nullable=False),
        sa.Column('reason_code', sa.String(length=32), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='PENDING'),
        sa.Column('created_by', sa.String(length=64), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('decided_by', sa.String(length=64), nullable=True),
        sa.Column('decided_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('decision_note', sa.String(length=255), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.CheckConstraint('amount > 0', name='ck_refunds_amount_positive'),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ),
        sa.ForeignKeyConstraint(['shift_id'], ['shifts.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('refunds', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_refunds_order_id'), ['order_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_refunds_shift_id'), ['shift_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_refunds_status'), ['status'], unique=False)
        batch_op.create_index(batch_op.f('ix_refunds_created_at'), ['created_at'], unique=False)

    # ==========================================================================
    # 7. SETTINGS AND LEDGER
    # ==========================================================================
    op.create_table('settings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('key', sa.String(length=128), nullable=False),
        sa.Column('value', sa.Text(), nullable=True),
        sa.Column('updated_by', sa.String(length=64), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('key', name='uq_settings_key'),
        sqlite_autoincrement=True
    )

    op.create_table('ledger_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('event_type', sa.String(length=64), nullable=False),
        sa.Column('event_category', sa.String(length=32), nullable=False),
        sa.Column('entity_type', sa.String(length=64), nullable=False),
        sa.Column('entity_id', sa.Integer(), nullable=False),
        sa.Column('actor_id', sa.String(length=64), nullable=True),
        sa.Column('terminal_id', sa.String(length=64), nullable=True),
        sa.Column('shift_id', sa.Integer(), nullable=True),
        sa.Column('order_id', sa.Integer(), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('note', sa.String(length=255), nullable=True),
        sa.Column('payload', sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(['shift_id'], ['shifts.id'], ),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('ledger_events', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_ledger_events_event_type'), ['event_type'], unique=False)
        batch_op.create_index(batch_op.f('ix_ledger_events_event_category'), ['event_category'], unique=False)
        batch_op.create_index(batch_op.f('ix_ledger_events_entity_type'), ['entity_type'], unique=False)
        batch_op.create_index(batch_op.f('ix_ledger_events_entity_id'), ['entity_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_ledger_events_actor_id'), ['actor_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_ledger_events_shift_id'), ['shift_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_ledger_events_order_id'), ['order_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_ledger_events_occurred_at'), ['occurred_at'], unique=False)
        batch_op.create_index('ix_ledger_events_category_occurred', ['event_category', 'occurred_at'], unique=False)


def downgrade():
    op.drop_table('ledger_events')
    op.drop_table('settings')
    op.drop_table('refunds')
    op.drop_table('applied_discounts')
    op.drop_table('discount_presets')
    op.drop_table('payments')
    op.drop_table('settlements')
    op.drop_table('order_drafts')
    op.drop_table('order_items')
    op.drop_table('orders')
    op.drop_table('dining_tables')
    op.drop_table('cash_count_lines')
    op.drop_table('cash_counts')
    op.drop_table('shifts')
