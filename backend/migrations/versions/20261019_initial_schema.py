"""Initial schema: catalog, serialized inventory, dispatches, documents, defects, transactions

Revision ID: 20261019_initial
Revises:
Create Date: 2026-10-19

Creates:
1. stores, products, batches (catalog)
2. inventory_units (one row per barcode, optimistic version_id)
3. dispatch_records (one row per unit leg between outlets)
4. sales, social_orders (JSON line items / amounts / payments)
5. defect_items (defects and customer returns)
6. financial_transactions (append-only audit trail)
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261019_initial'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade():
    # ==========================================================================
    # 1. CATALOG
    # ==========================================================================
    op.create_table('stores',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('code', sa.String(length=32), nullable=True),
        sa.Column('location', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_stores_code', 'stores', ['code'], unique=True)

    op.create_table('products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('attributes', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_products_name', 'products', ['name'])

    op.create_table('batches',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), sa.ForeignKey('products.id'), nullable=False),
        sa.Column('cost_price', sa.Numeric(12, 2), nullable=True),
        sa.Column('selling_price', sa.Numeric(12, 2), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('base_code', sa.String(length=64), nullable=True),
        sa.Column('paid', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('base_code'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_batches_product_id', 'batches', ['product_id'])

    # ==========================================================================
    # 2. INVENTORY UNITS
    # ==========================================================================
    op.create_table('inventory_units',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('barcode', sa.String(length=128), nullable=False),
        sa.Column('product_id', sa.Integer(), sa.ForeignKey('products.id'), nullable=False),
        sa.Column('batch_id', sa.Integer(), sa.ForeignKey('batches.id'), nullable=True),
        sa.Column('cost_price', sa.Numeric(12, 2), nullable=True),
        sa.Column('selling_price', sa.Numeric(12, 2), nullable=True),
        sa.Column('location', sa.String(length=255), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='available'),
        sa.Column('admitted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('sold_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('barcode', name='uq_inventory_units_barcode'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_inventory_units_product_id', 'inventory_units', ['product_id'])
    op.create_index('ix_inventory_units_batch_id', 'inventory_units', ['batch_id'])
    op.create_index('ix_inventory_units_status', 'inventory_units', ['status'])
    op.create_index('ix_inventory_units_status_location', 'inventory_units', ['status', 'location'])
    op.create_index('ix_inventory_units_product_location', 'inventory_units', ['product_id', 'location'])

    # ==========================================================================
    # 3. DISPATCH RECORDS
    # ==========================================================================
    op.create_table('dispatch_records',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('inventory_id', sa.Integer(), sa.ForeignKey('inventory_units.id'), nullable=False),
        sa.Column('product_id', sa.Integer(), sa.ForeignKey('products.id'), nullable=False),
        sa.Column('batch_id', sa.Integer(), sa.ForeignKey('batches.id'), nullable=True),
        sa.Column('barcode', sa.String(length=128), nullable=False),
        sa.Column('cost_price', sa.Numeric(12, 2), nullable=True),
        sa.Column('selling_price', sa.Numeric(12, 2), nullable=True),
        sa.Column('from_store', sa.String(length=120), nullable=False),
        sa.Column('from_store_id', sa.Integer(), sa.ForeignKey('stores.id'), nullable=False),
        sa.Column('from_location', sa.String(length=255), nullable=True),
        sa.Column('to_store', sa.String(length=120), nullable=False),
        sa.Column('to_store_id', sa.Integer(), sa.ForeignKey('stores.id'), nullable=False),
        sa.Column('to_location', sa.String(length=255), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='in-transit'),
        sa.Column('dispatched_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('received_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_dispatch_records_inventory_id', 'dispatch_records', ['inventory_id'])
    op.create_index('ix_dispatch_records_from_store', 'dispatch_records', ['from_store'])
    op.create_index('ix_dispatch_records_to_store_id', 'dispatch_records', ['to_store_id'])
    op.create_index('ix_dispatch_records_status', 'dispatch_records', ['status'])
    op.create_index('ix_dispatch_records_to_store_status', 'dispatch_records', ['to_store', 'status'])
    op.create_index('ix_dispatch_records_barcode_status', 'dispatch_records', ['barcode', 'status'])

    # ==========================================================================
    # 4. SALES / SOCIAL ORDERS
    # ==========================================================================
    for table, extra in (('sales', []), ('social_orders', [sa.Column('delivery_address', sa.JSON(), nullable=False)])):
        op.create_table(table,
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('date', sa.DateTime(timezone=True), nullable=False),
            sa.Column('store_id', sa.Integer(), sa.ForeignKey('stores.id'), nullable=True),
            sa.Column('outlet', sa.String(length=120), nullable=True),
            sa.Column('sales_by', sa.String(length=120), nullable=True),
            sa.Column('customer', sa.JSON(), nullable=False),
            *extra,
            sa.Column('items', sa.JSON(), nullable=False),
            sa.Column('amounts', sa.JSON(), nullable=False),
            sa.Column('payments', sa.JSON(), nullable=False),
            sa.Column('exchange_history', sa.JSON(), nullable=False),
            *_timestamps(),
            sa.PrimaryKeyConstraint('id'),
            sqlite_autoincrement=True,
        )
        op.create_index(f'ix_{table}_date', table, ['date'])
        op.create_index(f'ix_{table}_store_id', table, ['store_id'])

    # ==========================================================================
    # 5. DEFECTS
    # ==========================================================================
    op.create_table('defect_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('barcode', sa.String(length=128), nullable=False),
        sa.Column('product_id', sa.Integer(), sa.ForeignKey('products.id'), nullable=False),
        sa.Column('product_name', sa.String(length=255), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('added_by', sa.String(length=120), nullable=True),
        sa.Column('added_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('original_order_id', sa.Integer(), nullable=True),
        sa.Column('original_source', sa.String(length=16), nullable=True),
        sa.Column('customer_phone', sa.String(length=32), nullable=True),
        sa.Column('selling_price', sa.Numeric(12, 2), nullable=True),
        sa.Column('original_selling_price', sa.Numeric(12, 2), nullable=True),
        sa.Column('cost_price', sa.Numeric(12, 2), nullable=True),
        sa.Column('return_reason', sa.Text(), nullable=True),
        sa.Column('store', sa.String(length=120), nullable=True),
        sa.Column('image', sa.String(length=255), nullable=True),
        sa.Column('sale_id', sa.Integer(), nullable=True),
        sa.Column('sale_source', sa.String(length=16), nullable=True),
        sa.Column('sold_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_defect_items_status', 'defect_items', ['status'])
    op.create_index('ix_defect_items_store', 'defect_items', ['store'])
    op.create_index('ix_defect_items_barcode_status', 'defect_items', ['barcode', 'status'])

    # ==========================================================================
    # 6. FINANCIAL TRANSACTIONS
    # ==========================================================================
    op.create_table('financial_transactions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('type', sa.String(length=16), nullable=False),
        sa.Column('source_id', sa.Integer(), nullable=False),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('amount', sa.Numeric(14, 2), nullable=False),
        sa.Column('description', sa.String(length=255), nullable=True),
        sa.Column('payload', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_financial_transactions_type', 'financial_transactions', ['type'])
    op.create_index('ix_financial_transactions_occurred_at', 'financial_transactions', ['occurred_at'])
    op.create_index('ix_financial_transactions_type_source', 'financial_transactions', ['type', 'source_id'])


def downgrade():
    for table in (
        'financial_transactions',
        'defect_items',
        'social_orders',
        'sales',
        'dispatch_records',
        'inventory_units',
        'batches',
        'products',
        'stores',
    ):
        op.drop_table(table)
