"""reconciliation schema

Revision ID: 0001_reconciliation
Revises:
Create Date: 2026-10-18 00:00:00.000000

Creates the storeledger schema from scratch:
- products / stock_movements: stock in canonical integer units, append-only movements
- customers / customer_ledger_entries: cached balance plus append-only ledger
- invoices / invoice_items: invoices with derived total caches
- returns / return_items: returns against original invoice items
- payments: invoice payments and payments on account
- payment_allocations: payments on account applied to invoices, oldest first
- domain_events / balance_corrections: event outbox and audit repair trail
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '0001_reconciliation'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
    ]


def upgrade():
    """
    Create all tables.

    Money columns are integer cents; quantity columns are canonical integers
    (grams, pieces, centimetres) next to the unit type code.
    """

    # ============================================================================
    # products: Product master with stock on hand
    # ============================================================================
    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('unit_type', sa.String(length=32), nullable=False),
        sa.Column('rate_per_unit_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('current_stock_canonical', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('min_stock_alert_canonical', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id', name='pk_products'),
        sa.UniqueConstraint('name', name='uq_products_name'),
        sa.CheckConstraint('current_stock_canonical >= 0', name='ck_products_stock_non_negative'),
        sa.CheckConstraint('min_stock_alert_canonical >= 0', name='ck_products_alert_non_negative'),
        sqlite_autoincrement=True
    )

    # ============================================================================
    # customers: Customer master with cached ledger balance
    # ============================================================================
    op.create_table(
        'customers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('phone', sa.String(length=32), nullable=True),
        sa.Column('address', sa.String(length=255), nullable=True),
        sa.Column('balance_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('balance_reconciled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id', name='pk_customers'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_customers_name', 'customers', ['name'])

    # ============================================================================
    # invoices: Invoice header with derived caches
    # ============================================================================
    op.create_table(
        'invoices',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('bill_number', sa.String(length=32), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='DRAFT'),
        sa.Column('discount_bps', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('subtotal_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('discount_amount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('grand_total_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_returned_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('payment_amount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('remaining_balance_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('payment_status', sa.String(length=16), nullable=False, server_default='UNPAID'),
        sa.Column('has_returns', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('posted_total_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('notes', sa.String(length=255), nullable=True),
        sa.Column('submitted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('reconciled_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.PrimaryKeyConstraint('id', name='pk_invoices'),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id'], name='fk_invoices_customer_id_customers'),
        sa.UniqueConstraint('bill_number', name='uq_invoices_bill_number'),
        sa.CheckConstraint('discount_bps >= 0 AND discount_bps <= 10000', name='ck_invoices_discount_range'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_invoices_customer_id', 'invoices', ['customer_id'])
    op.create_index('ix_invoices_status', 'invoices', ['status'])
    op.create_index('ix_invoices_payment_status', 'invoices', ['payment_status'])
    op.create_index('ix_invoices_customer_status', 'invoices', ['customer_id', 'status'])

    # ============================================================================
    # invoice_items: Lines with unit snapshot and derived line totals
    # ============================================================================
    op.create_table(
        'invoice_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('invoice_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('unit_type', sa.String(length=32), nullable=False),
        sa.Column('quantity_canonical', sa.BigInteger(), nullable=False),
        sa.Column('unit_price_cents', sa.Integer(), nullable=False),
        sa.Column('line_total_cents', sa.Integer(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id', name='pk_invoice_items'),
        sa.ForeignKeyConstraint(['invoice_id'], ['invoices.id'], name='fk_invoice_items_invoice_id_invoices'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], name='fk_invoice_items_product_id_products'),
        sa.CheckConstraint('quantity_canonical > 0', name='ck_invoice_items_quantity_positive'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_invoice_items_invoice_id', 'invoice_items', ['invoice_id'])
    op.create_index('ix_invoice_items_product_id', 'invoice_items', ['product_id'])

    # ============================================================================
    # returns / return_items
    # ============================================================================
    op.create_table(
        'returns',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('invoice_id', sa.Integer(), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=False),
        sa.Column('reason', sa.String(length=255), nullable=True),
        sa.Column('total_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id', name='pk_returns'),
        sa.ForeignKeyConstraint(['invoice_id'], ['invoices.id'], name='fk_returns_invoice_id_invoices'),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id'], name='fk_returns_customer_id_customers'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_returns_invoice_id', 'returns', ['invoice_id'])
    op.create_index('ix_returns_customer_id', 'returns', ['customer_id'])

    op.create_table(
        'return_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('return_id', sa.Integer(), nullable=False),
        sa.Column('invoice_item_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('unit_type', sa.String(length=32), nullable=False),
        sa.Column('return_quantity_canonical', sa.BigInteger(), nullable=False),
        sa.Column('unit_price_cents', sa.Integer(), nullable=False),
        sa.Column('line_total_cents', sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint('id', name='pk_return_items'),
        sa.ForeignKeyConstraint(['return_id'], ['returns.id'], name='fk_return_items_return_id_returns'),
        sa.ForeignKeyConstraint(['invoice_item_id'], ['invoice_items.id'],
                                name='fk_return_items_invoice_item_id_invoice_items'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], name='fk_return_items_product_id_products'),
        sa.CheckConstraint('return_quantity_canonical > 0', name='ck_return_items_return_quantity_positive'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_return_items_return_id', 'return_items', ['return_id'])
    op.create_index('ix_return_items_invoice_item_id', 'return_items', ['invoice_item_id'])

    # ============================================================================
    # payments
    # ============================================================================
    op.create_table(
        'payments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('invoice_id', sa.Integer(), nullable=True),
        sa.Column('customer_id', sa.Integer(), nullable=False),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('method', sa.String(length=32), nullable=False, server_default='cash'),
        sa.Column('reference', sa.String(length=128), nullable=True),
        sa.Column('notes', sa.String(length=255), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='RECORDED'),
        sa.Column('recorded_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancel_reason', sa.String(length=255), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.PrimaryKeyConstraint('id', name='pk_payments'),
        sa.ForeignKeyConstraint(['invoice_id'], ['invoices.id'], name='fk_payments_invoice_id_invoices'),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id'], name='fk_payments_customer_id_customers'),
        sa.CheckConstraint('amount_cents > 0', name='ck_payments_amount_positive'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_payments_invoice_id', 'payments', ['invoice_id'])
    op.create_index('ix_payments_customer_id', 'payments', ['customer_id'])
    op.create_index('ix_payments_status', 'payments', ['status'])
    op.create_index('ix_payments_invoice_status', 'payments', ['invoice_id', 'status'])

    # ============================================================================
    # payment_allocations: FIFO application of payments on account
    # ============================================================================
    op.create_table(
        'payment_allocations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('payment_id', sa.Integer(), nullable=False),
        sa.Column('invoice_id', sa.Integer(), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=False),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('allocation_order', sa.Integer(), nullable=False),
        sa.Column('invoice_previous_balance_cents', sa.Integer(), nullable=False),
        sa.Column('invoice_new_balance_cents', sa.Integer(), nullable=False),
        sa.Column('allocated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id', name='pk_payment_allocations'),
        sa.ForeignKeyConstraint(['payment_id'], ['payments.id'], name='fk_payment_allocations_payment_id_payments'),
        sa.ForeignKeyConstraint(['invoice_id'], ['invoices.id'], name='fk_payment_allocations_invoice_id_invoices'),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id'], name='fk_payment_allocations_customer_id_customers'),
        sa.UniqueConstraint('payment_id', 'invoice_id', name='uq_payment_allocations_payment_invoice'),
        sa.CheckConstraint('amount_cents > 0', name='ck_payment_allocations_allocation_amount_positive'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_payment_allocations_payment_id', 'payment_allocations', ['payment_id'])
    op.create_index('ix_payment_allocations_invoice_id', 'payment_allocations', ['invoice_id'])
    op.create_index('ix_payment_allocations_customer_id', 'payment_allocations', ['customer_id'])

    # ============================================================================
    # stock_movements: Append-only stock history
    # ============================================================================
    op.create_table(
        'stock_movements',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('reason', sa.String(length=32), nullable=False),
        sa.Column('delta_canonical', sa.BigInteger(), nullable=False),
        sa.Column('stock_before_canonical', sa.BigInteger(), nullable=False),
        sa.Column('stock_after_canonical', sa.BigInteger(), nullable=False),
        sa.Column('status_after', sa.String(length=16), nullable=False),
        sa.Column('forced', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('shortfall_canonical', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('invoice_id', sa.Integer(), nullable=True),
        sa.Column('invoice_item_id', sa.Integer(), nullable=True),
        sa.Column('return_id', sa.Integer(), nullable=True),
        sa.Column('note', sa.String(length=255), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id', name='pk_stock_movements'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], name='fk_stock_movements_product_id_products'),
        sa.ForeignKeyConstraint(['invoice_id'], ['invoices.id'], name='fk_stock_movements_invoice_id_invoices'),
        sa.ForeignKeyConstraint(['invoice_item_id'], ['invoice_items.id'], ondelete='SET NULL',
                                name='fk_stock_movements_invoice_item_id_invoice_items'),
        sa.ForeignKeyConstraint(['return_id'], ['returns.id'], name='fk_stock_movements_return_id_returns'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_stock_movements_product_id', 'stock_movements', ['product_id'])
    op.create_index('ix_stock_movements_reason', 'stock_movements', ['reason'])
    op.create_index('ix_stock_movements_invoice_id', 'stock_movements', ['invoice_id'])
    op.create_index('ix_stock_movements_product_occurred', 'stock_movements', ['product_id', 'occurred_at'])

    # ============================================================================
    # customer_ledger_entries: Append-only customer ledger
    # ============================================================================
    op.create_table(
        'customer_ledger_entries',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=False),
        sa.Column('entry_type', sa.String(length=16), nullable=False),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('description', sa.String(length=255), nullable=False, server_default=''),
        sa.Column('reference_type', sa.String(length=32), nullable=True),
        sa.Column('reference_id', sa.Integer(), nullable=True),
        sa.Column('invoice_id', sa.Integer(), nullable=True),
        sa.Column('is_balance_correction', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id', name='pk_customer_ledger_entries'),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id'],
                                name='fk_customer_ledger_entries_customer_id_customers'),
        sa.ForeignKeyConstraint(['invoice_id'], ['invoices.id'],
                                name='fk_customer_ledger_entries_invoice_id_invoices'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_customer_ledger_entries_customer_id', 'customer_ledger_entries', ['customer_id'])
    op.create_index('ix_customer_ledger_entries_entry_type', 'customer_ledger_entries', ['entry_type'])
    op.create_index('ix_customer_ledger_entries_invoice_id', 'customer_ledger_entries', ['invoice_id'])
    op.create_index('ix_customer_ledger_entries_occurred_at', 'customer_ledger_entries', ['occurred_at'])
    op.create_index('ix_ledger_customer_occurred', 'customer_ledger_entries', ['customer_id', 'occurred_at', 'id'])
    op.create_index('ix_ledger_reference', 'customer_ledger_entries', ['reference_type', 'reference_id'])

    # ============================================================================
    # domain_events / balance_corrections
    # ============================================================================
    op.create_table(
        'domain_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('event_type', sa.String(length=64), nullable=False),
        sa.Column('entity_type', sa.String(length=32), nullable=False),
        sa.Column('entity_id', sa.Integer(), nullable=False),
        sa.Column('payload', sa.Text(), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id', name='pk_domain_events'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_domain_events_event_type', 'domain_events', ['event_type'])
    op.create_index('ix_domain_events_entity', 'domain_events', ['entity_type', 'entity_id'])

    op.create_table(
        'balance_corrections',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('entity_type', sa.String(length=32), nullable=False),
        sa.Column('entity_id', sa.Integer(), nullable=False),
        sa.Column('field', sa.String(length=64), nullable=False),
        sa.Column('persisted_cents', sa.Integer(), nullable=False),
        sa.Column('recomputed_cents', sa.Integer(), nullable=False),
        sa.Column('hint', sa.String(length=64), nullable=True),
        sa.Column('corrected_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id', name='pk_balance_corrections'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_balance_corrections_entity', 'balance_corrections', ['entity_type', 'entity_id'])


def downgrade():
    op.drop_table('balance_corrections')
    op.drop_table('domain_events')
    op.drop_table('customer_ledger_entries')
    op.drop_table('stock_movements')
    op.drop_table('payment_allocations')
    op.drop_table('payments')
    op.drop_table('return_items')
    op.drop_table('returns')
    op.drop_table('invoice_items')
    op.drop_table('invoices')
    op.drop_table('customers')
    op.drop_table('products')
