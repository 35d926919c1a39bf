"""initial back office schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-17 00:00:00.000000

Creates the complete back office schema from scratch:
- users / session_tokens: staff accounts and bearer sessions
- products / branch_inventory: catalog and per-branch stock counters
- safes / safe_transactions: cash registers and their append-only ledger
- suppliers / stock_purchases / accounting_entries: stock-in and payables
- expense_categories / expenses: money spent outside sales and purchases
- sales_invoices / invoice_items / credit_payments: the sales side
- document_sequences / idempotency_keys / outbox_events / operation_log
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '0001_initial'
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

    WHY: Stock counters and totals carry CHECK constraints so that a bug in a
    service cannot write a negative quantity or total even under concurrency.
    """

    # ============================================================================
    # users / session_tokens
    # ============================================================================
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('username', sa.String(length=64), nullable=False),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('role', sa.String(length=32), nullable=False),
        sa.Column('first_name', sa.String(length=64), nullable=True),
        sa.Column('last_name', sa.String(length=64), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('last_login_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('username'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_users_username', 'users', ['username'])

    op.create_table(
        'session_tokens',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('token_hash', sa.String(length=64), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('last_used_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('user_agent', sa.String(length=255), nullable=True),
        sa.Column('ip_address', sa.String(length=64), nullable=True),
        sa.Column('is_revoked', sa.Boolean(), nullable=False),
        sa.Column('revoked_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('token_hash'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_session_tokens_user_id', 'session_tokens', ['user_id'])
    op.create_index('ix_session_tokens_token_hash', 'session_tokens', ['token_hash'])

    # ============================================================================
    # products / branch_inventory
    # ============================================================================
    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('sku', sa.String(length=64), nullable=True),
        sa.Column('category', sa.String(length=128), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('price_cents', sa.Integer(), nullable=False),
        sa.Column('cost_price_cents', sa.Integer(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint('price_cents >= 0', name='ck_products_price_nonneg'),
        sa.CheckConstraint('cost_price_cents IS NULL OR cost_price_cents >= 0',
                           name='ck_products_cost_nonneg'),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_products_name', 'products', ['name'])
    op.create_index('ix_products_sku', 'products', ['sku'])
    op.create_index('ix_products_category', 'products', ['category'])

    op.create_table(
        'branch_inventory',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('branch', sa.String(length=32), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('low_stock_threshold', sa.Integer(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint('quantity >= 0', name='ck_branch_inventory_quantity_nonneg'),
        sa.CheckConstraint('low_stock_threshold >= 0', name='ck_branch_inventory_threshold_nonneg'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('product_id', 'branch', name='uq_branch_inventory_product_branch'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_branch_inventory_product_id', 'branch_inventory', ['product_id'])
    op.create_index('ix_branch_inventory_branch', 'branch_inventory', ['branch'])

    # ============================================================================
    # safes / safe_transactions
    # ============================================================================
    op.create_table(
        'safes',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('code', sa.String(length=32), nullable=False),
        sa.Column('parent_id', sa.Integer(), nullable=True),
        sa.Column('balance_usd_cents', sa.Integer(), nullable=False),
        sa.Column('balance_lyd_cents', sa.Integer(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['parent_id'], ['safes.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('code'),
        sqlite_autoincrement=True
    )

    op.create_table(
        'safe_transactions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('safe_id', sa.Integer(), nullable=False),
        sa.Column('type', sa.String(length=32), nullable=False),
        sa.Column('amount_usd_cents', sa.Integer(), nullable=False),
        sa.Column('amount_lyd_cents', sa.Integer(), nullable=False),
        sa.Column('exchange_rate', sa.Numeric(12, 4), nullable=True),
        sa.Column('description', sa.String(length=255), nullable=True),
        sa.Column('reference_type', sa.String(length=32), nullable=True),
        sa.Column('reference_id', sa.String(length=64), nullable=True),
        sa.Column('created_by_user_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['safe_id'], ['safes.id']),
        sa.ForeignKeyConstraint(['created_by_user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_safe_transactions_safe_id', 'safe_transactions', ['safe_id'])
    op.create_index('ix_safe_transactions_reference', 'safe_transactions',
                    ['reference_type', 'reference_id'])

    # ============================================================================
    # suppliers / stock_purchases / accounting_entries
    # ============================================================================
    op.create_table(
        'suppliers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('code', sa.String(length=32), nullable=False),
        sa.Column('balance_owed_cents', sa.Integer(), nullable=False),
        sa.Column('currency', sa.String(length=8), nullable=False),
        sa.Column('contact_name', sa.String(length=255), nullable=True),
        sa.Column('contact_phone', sa.String(length=64), nullable=True),
        sa.Column('address', sa.Text(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint('balance_owed_cents >= 0', name='ck_suppliers_balance_nonneg'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('code'),
        sqlite_autoincrement=True
    )

    op.create_table(
        'stock_purchases',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('product_name', sa.String(length=255), nullable=False),
        sa.Column('branch', sa.String(length=32), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('cost_per_unit_cents', sa.Integer(), nullable=False),
        sa.Column('total_cost_cents', sa.Integer(), nullable=False),
        sa.Column('purchase_type', sa.String(length=16), nullable=False),
        sa.Column('currency', sa.String(length=8), nullable=False),
        sa.Column('exchange_rate', sa.Numeric(12, 4), nullable=True),
        sa.Column('supplier_id', sa.Integer(), nullable=True),
        sa.Column('supplier_invoice_number', sa.String(length=64), nullable=True),
        sa.Column('safe_id', sa.Integer(), nullable=True),
        sa.Column('safe_transaction_id', sa.Integer(), nullable=True),
        sa.Column('created_by_user_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.ForeignKeyConstraint(['supplier_id'], ['suppliers.id']),
        sa.ForeignKeyConstraint(['safe_id'], ['safes.id']),
        sa.ForeignKeyConstraint(['safe_transaction_id'], ['safe_transactions.id']),
        sa.ForeignKeyConstraint(['created_by_user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_stock_purchases_product_id', 'stock_purchases', ['product_id'])

    op.create_table(
        'accounting_entries',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('entry_number', sa.String(length=64), nullable=False),
        sa.Column('description', sa.String(length=255), nullable=True),
        sa.Column('debit_account_type', sa.String(length=32), nullable=False),
        sa.Column('debit_account_id', sa.String(length=64), nullable=True),
        sa.Column('credit_account_type', sa.String(length=32), nullable=False),
        sa.Column('credit_account_id', sa.String(length=64), nullable=True),
        sa.Column('amount_usd_cents', sa.Integer(), nullable=False),
        sa.Column('amount_lyd_cents', sa.Integer(), nullable=False),
        sa.Column('exchange_rate', sa.Numeric(12, 4), nullable=True),
        sa.Column('reference_type', sa.String(length=32), nullable=True),
        sa.Column('reference_id', sa.String(length=64), nullable=True),
        sa.Column('created_by_user_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['created_by_user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('entry_number'),
        sqlite_autoincrement=True
    )

    # ============================================================================
    # expense_categories / expenses
    # ============================================================================
    op.create_table(
        'expense_categories',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=64), nullable=False),
        sa.Column('description', sa.String(length=255), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name'),
        sqlite_autoincrement=True
    )

    op.create_table(
        'expenses',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('category_id', sa.Integer(), nullable=False),
        sa.Column('person_name', sa.String(length=255), nullable=False),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('currency', sa.String(length=8), nullable=False),
        sa.Column('direction', sa.String(length=16), nullable=False),
        sa.Column('description', sa.String(length=255), nullable=True),
        sa.Column('safe_id', sa.Integer(), nullable=True),
        sa.Column('safe_transaction_id', sa.Integer(), nullable=True),
        sa.Column('created_by_user_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.CheckConstraint('amount_cents > 0', name='ck_expenses_amount_pos'),
        sa.ForeignKeyConstraint(['category_id'], ['expense_categories.id']),
        sa.ForeignKeyConstraint(['safe_id'], ['safes.id']),
        sa.ForeignKeyConstraint(['safe_transaction_id'], ['safe_transactions.id']),
        sa.ForeignKeyConstraint(['created_by_user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_expenses_category_id', 'expenses', ['category_id'])

    # ============================================================================
    # sales_invoices / invoice_items / credit_payments
    # ============================================================================
    op.create_table(
        'sales_invoices',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('invoice_number', sa.String(length=64), nullable=False),
        sa.Column('customer_name', sa.String(length=255), nullable=False),
        sa.Column('branch', sa.String(length=32), nullable=False),
        sa.Column('payment_type', sa.String(length=16), nullable=False),
        sa.Column('subtotal_cents', sa.Integer(), nullable=False),
        sa.Column('discount_type', sa.String(length=16), nullable=False),
        sa.Column('discount_value', sa.Numeric(12, 2), nullable=False),
        sa.Column('discount_amount_cents', sa.Integer(), nullable=False),
        sa.Column('service_amount_cents', sa.Integer(), nullable=False),
        sa.Column('total_amount_cents', sa.Integer(), nullable=False),
        sa.Column('payment_status', sa.String(length=16), nullable=False),
        sa.Column('paid_amount_cents', sa.Integer(), nullable=False),
        sa.Column('remaining_amount_cents', sa.Integer(), nullable=False),
        sa.Column('safe_id', sa.Integer(), nullable=True),
        sa.Column('created_by_user_id', sa.Integer(), nullable=True),
        *_timestamps(),
        sa.Column('version_id', sa.Integer(), nullable=False),
        sa.CheckConstraint('total_amount_cents >= 0', name='ck_sales_invoices_total_nonneg'),
        sa.CheckConstraint('remaining_amount_cents >= 0', name='ck_sales_invoices_remaining_nonneg'),
        sa.ForeignKeyConstraint(['safe_id'], ['safes.id']),
        sa.ForeignKeyConstraint(['created_by_user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('invoice_number'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_sales_invoices_branch', 'sales_invoices', ['branch'])
    op.create_index('ix_sales_invoices_branch_created', 'sales_invoices', ['branch', 'created_at'])
    op.create_index('ix_sales_invoices_payment', 'sales_invoices', ['payment_type', 'payment_status'])
    op.create_index('ix_sales_invoices_payment_status', 'sales_invoices', ['payment_status'])
    op.create_index('ix_sales_invoices_safe_id', 'sales_invoices', ['safe_id'])
    op.create_index('ix_sales_invoices_created_by_user_id', 'sales_invoices', ['created_by_user_id'])

    op.create_table(
        'invoice_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('invoice_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('product_name', sa.String(length=255), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price_cents', sa.Integer(), nullable=False),
        sa.Column('line_total_cents', sa.Integer(), nullable=False),
        sa.CheckConstraint('quantity > 0', name='ck_invoice_items_quantity_pos'),
        sa.ForeignKeyConstraint(['invoice_id'], ['sales_invoices.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_invoice_items_invoice_id', 'invoice_items', ['invoice_id'])
    op.create_index('ix_invoice_items_product_id', 'invoice_items', ['product_id'])

    op.create_table(
        'credit_payments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('invoice_id', sa.Integer(), nullable=False),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('payment_method', sa.String(length=32), nullable=False),
        sa.Column('safe_id', sa.Integer(), nullable=True),
        sa.Column('description', sa.String(length=255), nullable=True),
        sa.Column('created_by_user_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.CheckConstraint('amount_cents > 0', name='ck_credit_payments_amount_pos'),
        sa.ForeignKeyConstraint(['invoice_id'], ['sales_invoices.id']),
        sa.ForeignKeyConstraint(['safe_id'], ['safes.id']),
        sa.ForeignKeyConstraint(['created_by_user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_credit_payments_invoice_id', 'credit_payments', ['invoice_id'])

    # ============================================================================
    # document_sequences / idempotency_keys / outbox_events / operation_log
    # ============================================================================
    op.create_table(
        'document_sequences',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('document_type', sa.String(length=32), nullable=False),
        sa.Column('next_number', sa.Integer(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('document_type'),
        sqlite_autoincrement=True
    )

    op.create_table(
        'idempotency_keys',
        sa.Column('key', sa.String(length=128), nullable=False),
        sa.Column('scope', sa.String(length=64), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('response_status', sa.Integer(), nullable=True),
        sa.Column('response_body', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('key'),
    )

    op.create_table(
        'outbox_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('event_type', sa.String(length=32), nullable=False),
        sa.Column('payload', sa.Text(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('attempts', sa.Integer(), nullable=False),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_outbox_events_status_id', 'outbox_events', ['status', 'id'])

    op.create_table(
        'operation_log',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('operation', sa.String(length=64), nullable=False),
        sa.Column('invoice_id', sa.Integer(), nullable=True),
        sa.Column('product_id', sa.Integer(), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=True),
        sa.Column('details', sa.Text(), nullable=True),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('created_by_user_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_operation_log_operation', 'operation_log', ['operation'])
    op.create_index('ix_operation_log_invoice_id', 'operation_log', ['invoice_id'])


def downgrade():
    for table in (
        'operation_log',
        'outbox_events',
        'idempotency_keys',
        'document_sequences',
        'credit_payments',
        'invoice_items',
        'sales_invoices',
        'expenses',
        'expense_categories',
        'accounting_entries',
        'stock_purchases',
        'suppliers',
        'safe_transactions',
        'safes',
        'branch_inventory',
        'products',
        'session_tokens',
        'users',
    ):
        op.drop_table(table)
