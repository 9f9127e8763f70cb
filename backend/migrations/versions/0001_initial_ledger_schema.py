"""initial ledger schema

Revision ID: 0001_initial_ledger
Revises:
Create Date: 2024-03-01 00:00:00.000000

Creates the consignment / agent ledger schema from scratch:
- locations, products, parties: catalog records the ledger reads
- stock_batches, stock_movements, allocation_lines: batch-level stock pool
- consignment_periods, assignment_lines, assignment_holdings,
  assignment_history: party ledgers with batch provenance
- transaction_sequences, sale_transactions, sale_line_items, payments,
  payment_events: sales and payment reconciliation
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '0001_initial_ledger'
down_revision = None
branch_labels = None
depends_on = None


def _now():
    return sa.text('CURRENT_TIMESTAMP')


def upgrade():
    # ============================================================================
    # Catalog
    # ============================================================================
    op.create_table(
        'locations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('code', sa.String(length=16), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=_now()),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('code'),
        sqlite_autoincrement=True
    )

    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sku', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('unit', sa.String(length=32), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=_now()),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('sku'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_products_active', 'products', ['is_active'])

    op.create_table(
        'parties',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('party_type', sa.String(length=16), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('location_id', sa.Integer(), nullable=False),
        sa.Column('area', sa.String(length=120), nullable=True),
        sa.Column('contact_number', sa.String(length=64), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=_now()),
        sa.ForeignKeyConstraint(['location_id'], ['locations.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_parties_location_id', 'parties', ['location_id'])
    op.create_index('ix_parties_type_active', 'parties', ['party_type', 'is_active'])

    # ============================================================================
    # Stock pool
    # ============================================================================
    op.create_table(
        'stock_batches',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('location_id', sa.Integer(), nullable=False),
        sa.Column('batch_no', sa.String(length=64), nullable=True),
        sa.Column('supplier_reference', sa.String(length=128), nullable=True),
        sa.Column('manufactured_on', sa.Date(), nullable=True),
        sa.Column('expires_on', sa.Date(), nullable=True),
        sa.Column('unit_cost_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('quantity_received', sa.Integer(), nullable=False),
        sa.Column('quantity_remaining', sa.Integer(), nullable=False),
        sa.Column('received_at', sa.DateTime(timezone=True), nullable=False, server_default=_now()),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.ForeignKeyConstraint(['location_id'], ['locations.id']),
        sa.CheckConstraint('quantity_remaining >= 0', name='ck_stock_batches_remaining_nonneg'),
        sa.CheckConstraint('quantity_received > 0', name='ck_stock_batches_received_positive'),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_stock_batches_product_id', 'stock_batches', ['product_id'])
    op.create_index('ix_stock_batches_location_id', 'stock_batches', ['location_id'])
    op.create_index('ix_stock_batches_product_location', 'stock_batches', ['product_id', 'location_id'])

    op.create_table(
        'stock_movements',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('batch_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('location_id', sa.Integer(), nullable=False),
        sa.Column('movement_type', sa.String(length=16), nullable=False),
        sa.Column('quantity_delta', sa.Integer(), nullable=False),
        sa.Column('quantity_after', sa.Integer(), nullable=False),
        sa.Column('reference_type', sa.String(length=32), nullable=True),
        sa.Column('reference_id', sa.Integer(), nullable=True),
        sa.Column('reason', sa.String(length=32), nullable=True),
        sa.Column('note', sa.String(length=255), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False, server_default=_now()),
        sa.ForeignKeyConstraint(['batch_id'], ['stock_batches.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.ForeignKeyConstraint(['location_id'], ['locations.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_stock_movements_batch_id', 'stock_movements', ['batch_id'])
    op.create_index('ix_stock_movements_movement_type', 'stock_movements', ['movement_type'])
    op.create_index('ix_stock_movements_product_location', 'stock_movements', ['product_id', 'location_id', 'occurred_at'])

    # ============================================================================
    # Party ledgers
    # ============================================================================
    op.create_table(
        'consignment_periods',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('party_id', sa.Integer(), nullable=False),
        sa.Column('location_id', sa.Integer(), nullable=False),
        sa.Column('consignment_number', sa.String(length=64), nullable=False),
        sa.Column('month', sa.Integer(), nullable=False),
        sa.Column('year', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='ACTIVE'),
        sa.Column('previous_balance_qty', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('added_qty', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('sold_qty', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('returned_qty', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('current_balance_qty', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_consigned_value_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_sold_value_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_paid_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('balance_due_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('rolled_from_period_id', sa.Integer(), nullable=True),
        sa.Column('closed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=_now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=_now()),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['party_id'], ['parties.id']),
        sa.ForeignKeyConstraint(['location_id'], ['locations.id']),
        sa.ForeignKeyConstraint(['rolled_from_period_id'], ['consignment_periods.id']),
        sa.CheckConstraint('month BETWEEN 1 AND 12', name='ck_consignment_periods_month'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('consignment_number'),
        sa.UniqueConstraint('party_id', 'year', 'month', name='uq_consignment_periods_party_month'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_consignment_periods_party_id', 'consignment_periods', ['party_id'])
    op.create_index('ix_consignment_periods_location_id', 'consignment_periods', ['location_id'])
    op.create_index('ix_consignment_periods_status', 'consignment_periods', ['status'])

    op.create_table(
        'assignment_lines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('party_id', sa.Integer(), nullable=False),
        sa.Column('period_id', sa.Integer(), nullable=True),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('unit_price_cents', sa.Integer(), nullable=False),
        sa.Column('previous_balance', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('quantity_added', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('quantity_sold', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('quantity_returned', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('current_balance', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_assigned_value_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_sold_value_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=_now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=_now()),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['party_id'], ['parties.id']),
        sa.ForeignKeyConstraint(['period_id'], ['consignment_periods.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.CheckConstraint('current_balance >= 0', name='ck_assignment_lines_balance_nonneg'),
        sa.CheckConstraint(
            'previous_balance >= 0 AND quantity_added >= 0 AND quantity_sold >= 0 AND quantity_returned >= 0',
            name='ck_assignment_lines_counters_nonneg'
        ),
        sa.CheckConstraint(
            'current_balance = previous_balance + quantity_added - quantity_sold - quantity_returned',
            name='ck_assignment_lines_conservation'
        ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('party_id', 'period_id', 'product_id', name='uq_assignment_lines_party_period_product'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_assignment_lines_party_id', 'assignment_lines', ['party_id'])
    op.create_index('ix_assignment_lines_period_id', 'assignment_lines', ['period_id'])
    op.create_index('ix_assignment_lines_party_product', 'assignment_lines', ['party_id', 'product_id'])

    op.create_table(
        'assignment_holdings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('assignment_line_id', sa.Integer(), nullable=False),
        sa.Column('batch_id', sa.Integer(), nullable=False),
        sa.Column('quantity_allocated', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('quantity_sold', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('quantity_returned', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['assignment_line_id'], ['assignment_lines.id']),
        sa.ForeignKeyConstraint(['batch_id'], ['stock_batches.id']),
        sa.CheckConstraint(
            'quantity_allocated - quantity_sold - quantity_returned >= 0',
            name='ck_assignment_holdings_outstanding_nonneg'
        ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('assignment_line_id', 'batch_id', name='uq_assignment_holdings_line_batch'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_assignment_holdings_assignment_line_id', 'assignment_holdings', ['assignment_line_id'])
    op.create_index('ix_assignment_holdings_batch_id', 'assignment_holdings', ['batch_id'])

    # ============================================================================
    # Sales and payments
    # ============================================================================
    op.create_table(
        'transaction_sequences',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('location_id', sa.Integer(), nullable=False),
        sa.Column('business_day', sa.Date(), nullable=False),
        sa.Column('prefix', sa.String(length=64), nullable=False),
        sa.Column('next_number', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=_now()),
        sa.ForeignKeyConstraint(['location_id'], ['locations.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('prefix', name='uq_transaction_sequences_prefix'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_transaction_sequences_location_id', 'transaction_sequences', ['location_id'])

    op.create_table(
        'sale_transactions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('transaction_number', sa.String(length=64), nullable=False),
        sa.Column('transaction_type', sa.String(length=16), nullable=False),
        sa.Column('location_id', sa.Integer(), nullable=False),
        sa.Column('party_id', sa.Integer(), nullable=True),
        sa.Column('period_id', sa.Integer(), nullable=True),
        sa.Column('customer_name', sa.String(length=255), nullable=True),
        sa.Column('payment_type', sa.String(length=32), nullable=False, server_default='CASH'),
        sa.Column('total_amount_cents', sa.Integer(), nullable=False),
        sa.Column('payment_status', sa.String(length=16), nullable=False, server_default='UNPAID'),
        sa.Column('total_paid_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('note', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=_now()),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['location_id'], ['locations.id']),
        sa.ForeignKeyConstraint(['party_id'], ['parties.id']),
        sa.ForeignKeyConstraint(['period_id'], ['consignment_periods.id']),
        sa.CheckConstraint('total_amount_cents >= 0', name='ck_sale_transactions_total_nonneg'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('transaction_number', name='uq_sale_transactions_number'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_sale_transactions_transaction_type', 'sale_transactions', ['transaction_type'])
    op.create_index('ix_sale_transactions_party_id', 'sale_transactions', ['party_id'])
    op.create_index('ix_sale_transactions_period_id', 'sale_transactions', ['period_id'])
    op.create_index('ix_sale_transactions_payment_status', 'sale_transactions', ['payment_status'])
    op.create_index('ix_sale_transactions_location_created', 'sale_transactions', ['location_id', 'created_at'])

    op.create_table(
        'allocation_lines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('batch_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('location_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_cost_cents', sa.Integer(), nullable=False),
        sa.Column('assignment_line_id', sa.Integer(), nullable=True),
        sa.Column('sale_id', sa.Integer(), nullable=True),
        sa.Column('reference', sa.String(length=128), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=_now()),
        sa.ForeignKeyConstraint(['batch_id'], ['stock_batches.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.ForeignKeyConstraint(['location_id'], ['locations.id']),
        sa.ForeignKeyConstraint(['assignment_line_id'], ['assignment_lines.id']),
        sa.ForeignKeyConstraint(['sale_id'], ['sale_transactions.id']),
        sa.CheckConstraint('quantity > 0', name='ck_allocation_lines_quantity_positive'),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_allocation_lines_batch_id', 'allocation_lines', ['batch_id'])
    op.create_index('ix_allocation_lines_assignment_line_id', 'allocation_lines', ['assignment_line_id'])
    op.create_index('ix_allocation_lines_sale_id', 'allocation_lines', ['sale_id'])

    op.create_table(
        'sale_line_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sale_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('batch_id', sa.Integer(), nullable=True),
        sa.Column('assignment_line_id', sa.Integer(), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price_cents', sa.Integer(), nullable=False),
        sa.Column('line_total_cents', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['sale_id'], ['sale_transactions.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.ForeignKeyConstraint(['batch_id'], ['stock_batches.id']),
        sa.ForeignKeyConstraint(['assignment_line_id'], ['assignment_lines.id']),
        sa.CheckConstraint('quantity > 0', name='ck_sale_line_items_quantity_positive'),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_sale_line_items_sale_id', 'sale_line_items', ['sale_id'])
    op.create_index('ix_sale_line_items_batch_id', 'sale_line_items', ['batch_id'])

    op.create_table(
        'assignment_history',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('party_id', sa.Integer(), nullable=False),
        sa.Column('period_id', sa.Integer(), nullable=True),
        sa.Column('assignment_line_id', sa.Integer(), nullable=True),
        sa.Column('product_id', sa.Integer(), nullable=True),
        sa.Column('sale_id', sa.Integer(), nullable=True),
        sa.Column('action_type', sa.String(length=32), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=True),
        sa.Column('amount_cents', sa.Integer(), nullable=True),
        sa.Column('note', sa.String(length=255), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False, server_default=_now()),
        sa.ForeignKeyConstraint(['party_id'], ['parties.id']),
        sa.ForeignKeyConstraint(['period_id'], ['consignment_periods.id']),
        sa.ForeignKeyConstraint(['assignment_line_id'], ['assignment_lines.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.ForeignKeyConstraint(['sale_id'], ['sale_transactions.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_assignment_history_party_id', 'assignment_history', ['party_id'])
    op.create_index('ix_assignment_history_period_id', 'assignment_history', ['period_id'])
    op.create_index('ix_assignment_history_action_type', 'assignment_history', ['action_type'])
    op.create_index('ix_assignment_history_party_occurred', 'assignment_history', ['party_id', 'occurred_at'])

    op.create_table(
        'payments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sale_id', sa.Integer(), nullable=False),
        sa.Column('method', sa.String(length=32), nullable=False),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('reference_number', sa.String(length=128), nullable=True),
        sa.Column('cheque_number', sa.String(length=64), nullable=True),
        sa.Column('bank_name', sa.String(length=128), nullable=True),
        sa.Column('cheque_date', sa.Date(), nullable=True),
        sa.Column('settles_transaction', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('remarks', sa.String(length=255), nullable=True),
        sa.Column('recorded_at', sa.DateTime(timezone=True), nullable=False, server_default=_now()),
        sa.ForeignKeyConstraint(['sale_id'], ['sale_transactions.id']),
        sa.CheckConstraint('amount_cents > 0', name='ck_payments_amount_positive'),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_payments_sale_id', 'payments', ['sale_id'])
    op.create_index('ix_payments_method', 'payments', ['method'])
    op.create_index('ix_payments_recorded_at', 'payments', ['recorded_at'])

    op.create_table(
        'payment_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('payment_id', sa.Integer(), nullable=False),
        sa.Column('sale_id', sa.Integer(), nullable=False),
        sa.Column('event_type', sa.String(length=16), nullable=False),
        sa.Column('method', sa.String(length=32), nullable=False),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('note', sa.String(length=255), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False, server_default=_now()),
        sa.ForeignKeyConstraint(['sale_id'], ['sale_transactions.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_payment_events_payment_id', 'payment_events', ['payment_id'])
    op.create_index('ix_payment_events_sale_occurred', 'payment_events', ['sale_id', 'occurred_at'])


def downgrade():
    """Drop all tables (destructive operation)."""
    op.drop_table('payment_events')
    op.drop_table('payments')
    op.drop_table('assignment_history')
    op.drop_table('sale_line_items')
    op.drop_table('allocation_lines')
    op.drop_table('sale_transactions')
    op.drop_table('transaction_sequences')
    op.drop_table('assignment_holdings')
    op.drop_table('assignment_lines')
    op.drop_table('consignment_periods')
    op.drop_table('stock_movements')
    op.drop_table('stock_batches')
    op.drop_table('parties')
    op.drop_table('products')
    op.drop_table('locations')
