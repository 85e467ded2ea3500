"""initial ledger schema

Revision ID: 20260301_initial_ledger
Revises:
Create Date: 2026-03-01 00:00:00.000000

This migration creates the complete ledger schema from scratch:
- products / product_components: catalog and composite recipes
- customers / job_sites: credit accounts
- receipts / receipt_items / receipt_item_components: sales documents and postings
- stock_movements: append-only stock ledger
- payments / receipt_payments: payments and their allocations
- audit_logs: audit trail
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20260301_initial_ledger'
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
    # ============================================================================
    # products: catalog
    # ============================================================================
    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('unit', sa.String(length=32), nullable=True),
        sa.Column('unit_price', sa.Float(), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('stock_qty', sa.Float(), nullable=False, server_default='0'),
        sa.Column('is_composite', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('is_manufactured', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('is_fuel', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('production_powder_product_id', sa.Integer(), nullable=True),
        sa.Column('production_powder_quantity', sa.Float(), nullable=True),
        sa.Column('production_cement_product_id', sa.Integer(), nullable=True),
        sa.Column('production_cement_quantity', sa.Float(), nullable=True),
        sa.Column('tehmil_fee', sa.Float(), nullable=True),
        sa.Column('tenzil_fee', sa.Float(), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        *_timestamps(),
        sa.ForeignKeyConstraint(['production_powder_product_id'], ['products.id'], ),
        sa.ForeignKeyConstraint(['production_cement_product_id'], ['products.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name', name='uq_products_name'),
        sqlite_autoincrement=True
    )

    op.create_table(
        'product_components',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('parent_product_id', sa.Integer(), nullable=False),
        sa.Column('component_product_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Float(), nullable=False),
        sa.ForeignKeyConstraint(['parent_product_id'], ['products.id'], ),
        sa.ForeignKeyConstraint(['component_product_id'], ['products.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('parent_product_id', 'component_product_id', name='uq_product_components_pair'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_product_components_parent_product_id', 'product_components', ['parent_product_id'])
    op.create_index('ix_product_components_component_product_id', 'product_components', ['component_product_id'])

    # ============================================================================
    # customers / job_sites
    # ============================================================================
    op.create_table(
        'customers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('phone', sa.String(length=64), nullable=True),
        sa.Column('receipt_type', sa.String(length=16), nullable=False, server_default='NORMAL'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_customers_name', 'customers', ['name'])

    op.create_table(
        'job_sites',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_job_sites_customer_id', 'job_sites', ['customer_id'])

    # ============================================================================
    # receipts: sales documents
    # ============================================================================
    op.create_table(
        'receipts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('receipt_no', sa.String(length=64), nullable=False),
        sa.Column('date', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('type', sa.String(length=16), nullable=False, server_default='NORMAL'),
        sa.Column('customer_id', sa.Integer(), nullable=True),
        sa.Column('job_site_id', sa.Integer(), nullable=True),
        sa.Column('walk_in_name', sa.String(length=255), nullable=True),
        sa.Column('total', sa.Float(), nullable=False, server_default='0'),
        sa.Column('amount_paid', sa.Float(), nullable=False, server_default='0'),
        sa.Column('is_paid', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('tehmil', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('tenzil', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('tehmil_paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('tehmil_payment_amount', sa.Float(), nullable=True),
        sa.Column('tehmil_payment_note', sa.String(length=255), nullable=True),
        sa.Column('tenzil_paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('tenzil_payment_amount', sa.Float(), nullable=True),
        sa.Column('tenzil_payment_note', sa.String(length=255), nullable=True),
        sa.Column('created_by', sa.String(length=255), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        *_timestamps(),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id'], ),
        sa.ForeignKeyConstraint(['job_site_id'], ['job_sites.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('receipt_no'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_receipts_date', 'receipts', ['date'])
    op.create_index('ix_receipts_type', 'receipts', ['type'])
    op.create_index('ix_receipts_is_paid', 'receipts', ['is_paid'])
    op.create_index('ix_receipts_customer_id', 'receipts', ['customer_id'])
    op.create_index('ix_receipts_job_site_id', 'receipts', ['job_site_id'])
    op.create_index('ix_receipts_customer_date', 'receipts', ['customer_id', 'date'])

    op.create_table(
        'receipt_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('receipt_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Float(), nullable=False),
        sa.Column('unit_price', sa.Float(), nullable=True),
        sa.Column('subtotal', sa.Float(), nullable=True),
        sa.Column('display_quantity', sa.Float(), nullable=True),
        sa.Column('display_unit', sa.String(length=32), nullable=True),
        sa.Column('stock_delta', sa.Float(), nullable=False, server_default='0'),
        sa.ForeignKeyConstraint(['receipt_id'], ['receipts.id'], ),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_receipt_items_receipt_id', 'receipt_items', ['receipt_id'])
    op.create_index('ix_receipt_items_product_id', 'receipt_items', ['product_id'])

    op.create_table(
        'receipt_item_components',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('receipt_item_id', sa.Integer(), nullable=False),
        sa.Column('component_product_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Float(), nullable=False),
        sa.Column('stock_delta', sa.Float(), nullable=False),
        sa.ForeignKeyConstraint(['receipt_item_id'], ['receipt_items.id'], ),
        sa.ForeignKeyConstraint(['component_product_id'], ['products.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_receipt_item_components_receipt_item_id', 'receipt_item_components', ['receipt_item_id'])
    op.create_index('ix_receipt_item_components_component_product_id', 'receipt_item_components', ['component_product_id'])

    # ============================================================================
    # stock_movements: append-only stock ledger
    # ============================================================================
    # receipt_id is nulled (never cascaded) when a receipt is deleted
    op.create_table(
        'stock_movements',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('receipt_id', sa.Integer(), nullable=True),
        sa.Column('kind', sa.String(length=16), nullable=False),
        sa.Column('quantity', sa.Float(), nullable=False),
        sa.Column('is_reversal', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('note', sa.String(length=255), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.ForeignKeyConstraint(['receipt_id'], ['receipts.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_stock_movements_product_id', 'stock_movements', ['product_id'])
    op.create_index('ix_stock_movements_receipt_id', 'stock_movements', ['receipt_id'])
    op.create_index('ix_stock_movements_occurred_at', 'stock_movements', ['occurred_at'])
    op.create_index('ix_stock_movements_product_date', 'stock_movements', ['product_id', 'occurred_at'])

    # ============================================================================
    # payments / receipt_payments
    # ============================================================================
    op.create_table(
        'payments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('date', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('amount', sa.Float(), nullable=False),
        sa.Column('type', sa.String(length=32), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('category', sa.String(length=64), nullable=True),
        sa.Column('reference', sa.String(length=128), nullable=True),
        sa.Column('customer_id', sa.Integer(), nullable=True),
        sa.Column('supplier_id', sa.Integer(), nullable=True),
        sa.Column('receipt_id', sa.Integer(), nullable=True),
        sa.Column('created_by', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id'], ),
        sa.ForeignKeyConstraint(['receipt_id'], ['receipts.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_payments_date', 'payments', ['date'])
    op.create_index('ix_payments_type', 'payments', ['type'])
    op.create_index('ix_payments_customer_id', 'payments', ['customer_id'])
    op.create_index('ix_payments_supplier_id', 'payments', ['supplier_id'])
    op.create_index('ix_payments_receipt_id', 'payments', ['receipt_id'])

    # No FK constraints: orphans are reported by the receivables health sweep
    op.create_table(
        'receipt_payments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('payment_id', sa.Integer(), nullable=False),
        sa.Column('receipt_id', sa.Integer(), nullable=False),
        sa.Column('amount', sa.Float(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_receipt_payments_payment_id', 'receipt_payments', ['payment_id'])
    op.create_index('ix_receipt_payments_receipt_id', 'receipt_payments', ['receipt_id'])

    # ============================================================================
    # audit_logs
    # ============================================================================
    op.create_table(
        'audit_logs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('action', sa.String(length=64), nullable=False),
        sa.Column('entity_type', sa.String(length=64), nullable=False),
        sa.Column('entity_id', sa.Integer(), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('user', sa.String(length=255), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_audit_logs_action', 'audit_logs', ['action'])
    op.create_index('ix_audit_logs_entity_id', 'audit_logs', ['entity_id'])
    op.create_index('ix_audit_logs_created_at', 'audit_logs', ['created_at'])


def downgrade():
    op.drop_table('audit_logs')
    op.drop_table('receipt_payments')
    op.drop_table('payments')
    op.drop_table('stock_movements')
    op.drop_table('receipt_item_components')
    op.drop_table('receipt_items')
    op.drop_table('receipts')
    op.drop_table('job_sites')
    op.drop_table('customers')
    op.drop_table('product_components')
    op.drop_table('products')
