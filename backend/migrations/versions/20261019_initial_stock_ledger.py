"""initial stock ledger schema

Revision ID: 20261019_initial
Revises:
Create Date: 2026-10-19 00:00:00.000000

Creates the complete schema from scratch:
- branches, warehouses, online_shops: placement tables
- products, distributors, users: reference data
- units: serialized items with a partial unique index on live serials
- quantity_buckets: non-serialized counts, never negative
- stock_outs, stock_out_items, stock_out_shipments: outbound movements
- ledger_entries: append-only stock ledger
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261019_initial'
down_revision = None
branch_labels = None
depends_on = None


def _placement_table(name: str) -> None:
    op.create_table(
        name,
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('code', sa.String(length=32), nullable=True),
        sa.Column('address', sa.Text(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('code'),
        sqlite_autoincrement=True
    )


def upgrade():
    # ============================================================================
    # Placements
    # ============================================================================
    _placement_table('branches')
    _placement_table('warehouses')
    _placement_table('online_shops')

    # ============================================================================
    # Reference data
    # ============================================================================
    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sku', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('brand', sa.String(length=128), nullable=True),
        sa.Column('category', sa.String(length=128), nullable=True),
        sa.Column('tracks_serial', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('price', sa.Numeric(precision=15, scale=2), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('sku', name='uq_products_sku'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_products_name', 'products', ['name'])

    op.create_table(
        'distributors',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('phone', sa.String(length=64), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_distributors_name', 'distributors', ['name'])

    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('username', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=True),
        sa.Column('role', sa.String(length=64), nullable=False, server_default='staff'),
        sa.Column('branch_id', sa.Integer(), nullable=True),
        sa.Column('warehouse_id', sa.Integer(), nullable=True),
        sa.Column('online_shop_id', sa.Integer(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['branch_id'], ['branches.id'], ),
        sa.ForeignKeyConstraint(['warehouse_id'], ['warehouses.id'], ),
        sa.ForeignKeyConstraint(['online_shop_id'], ['online_shops.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('username', name='uq_users_username'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_users_branch_id', 'users', ['branch_id'])
    op.create_index('ix_users_warehouse_id', 'users', ['warehouse_id'])
    op.create_index('ix_users_online_shop_id', 'users', ['online_shop_id'])

    # ============================================================================
    # units: one row per serialized item
    # ============================================================================
    op.create_table(
        'units',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('serial', sa.String(length=64), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('condition', sa.String(length=16), nullable=False, server_default='new'),
        sa.Column('color', sa.String(length=64), nullable=True),
        sa.Column('ram', sa.String(length=32), nullable=True),
        sa.Column('storage', sa.String(length=32), nullable=True),
        sa.Column('cost_price', sa.Numeric(precision=15, scale=2), nullable=False, server_default='0'),
        sa.Column('selling_price', sa.Numeric(precision=15, scale=2), nullable=False, server_default='0'),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='available'),
        sa.Column('placement_kind', sa.String(length=32), nullable=False),
        sa.Column('placement_id', sa.Integer(), nullable=False),
        sa.Column('distributor_id', sa.Integer(), nullable=True),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.ForeignKeyConstraint(['distributor_id'], ['distributors.id'], ),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    # A serial may be reused only once the previous unit carrying it is deleted
    op.create_index(
        'uq_units_serial_live', 'units', ['serial'], unique=True,
        sqlite_where=sa.text("status <> 'deleted'"),
        postgresql_where=sa.text("status <> 'deleted'"),
    )
    op.create_index('ix_units_placement', 'units', ['placement_kind', 'placement_id'])
    op.create_index('ix_units_product_status', 'units', ['product_id', 'status'])
    op.create_index('ix_units_status', 'units', ['status'])
    op.create_index('ix_units_product_id', 'units', ['product_id'])
    op.create_index('ix_units_distributor_id', 'units', ['distributor_id'])
    op.create_index('ix_units_user_id', 'units', ['user_id'])

    # ============================================================================
    # quantity_buckets: non-serialized stock
    # ============================================================================
    op.create_table(
        'quantity_buckets',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('placement_kind', sa.String(length=32), nullable=False),
        sa.Column('placement_id', sa.Integer(), nullable=False),
        sa.Column('owner_user_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.CheckConstraint('quantity >= 0', name='ck_quantity_buckets_non_negative'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.ForeignKeyConstraint(['owner_user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('product_id', 'placement_kind', 'placement_id', 'owner_user_id',
                            name='uq_quantity_buckets_product_placement_owner'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_quantity_buckets_placement', 'quantity_buckets', ['placement_kind', 'placement_id'])
    op.create_index('ix_quantity_buckets_product_id', 'quantity_buckets', ['product_id'])
    op.create_index('ix_quantity_buckets_owner_user_id', 'quantity_buckets', ['owner_user_id'])

    # ============================================================================
    # stock_outs and their membership/shipping rows
    # ============================================================================
    op.create_table(
        'stock_outs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('receipt_id', sa.String(length=20), nullable=False),
        sa.Column('category', sa.String(length=32), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('source_placement_kind', sa.String(length=32), nullable=True),
        sa.Column('source_placement_id', sa.Integer(), nullable=True),
        sa.Column('destination_branch_id', sa.Integer(), nullable=True),
        sa.Column('receiver_name', sa.String(length=255), nullable=True),
        sa.Column('transfer_notes', sa.Text(), nullable=True),
        sa.Column('deletion_reason', sa.Text(), nullable=True),
        sa.Column('return_officer', sa.String(length=255), nullable=True),
        sa.Column('return_seal', sa.String(length=255), nullable=True),
        sa.Column('return_issue', sa.Text(), nullable=True),
        sa.Column('customer_name', sa.String(length=255), nullable=True),
        sa.Column('customer_phone', sa.String(length=50), nullable=True),
        sa.Column('return_destination_id', sa.Integer(), nullable=True),
        sa.Column('channel_name', sa.String(length=64), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('confirmed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('confirmed_by', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['confirmed_by'], ['users.id'], ),
        sa.ForeignKeyConstraint(['destination_branch_id'], ['branches.id'], ),
        sa.ForeignKeyConstraint(['return_destination_id'], ['warehouses.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('receipt_id', name='uq_stock_outs_receipt_id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_stock_outs_category', 'stock_outs', ['category'])
    op.create_index('ix_stock_outs_created_at', 'stock_outs', ['created_at'])
    op.create_index('ix_stock_outs_pending', 'stock_outs',
                    ['category', 'destination_branch_id', 'confirmed_at'])
    op.create_index('ix_stock_outs_user_id', 'stock_outs', ['user_id'])
    op.create_index('ix_stock_outs_destination_branch_id', 'stock_outs', ['destination_branch_id'])

    op.create_table(
        'stock_out_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('stock_out_id', sa.Integer(), nullable=False),
        sa.Column('unit_id', sa.Integer(), nullable=False),
        sa.Column('open_unit_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['stock_out_id'], ['stock_outs.id'], ),
        sa.ForeignKeyConstraint(['unit_id'], ['units.id'], ),
        sa.ForeignKeyConstraint(['open_unit_id'], ['units.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('stock_out_id', 'unit_id', name='uq_stock_out_items_stock_out_unit'),
        sa.UniqueConstraint('open_unit_id', name='uq_stock_out_items_open_unit'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_stock_out_items_stock_out_id', 'stock_out_items', ['stock_out_id'])
    op.create_index('ix_stock_out_items_unit_id', 'stock_out_items', ['unit_id'])

    op.create_table(
        'stock_out_shipments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('stock_out_id', sa.Integer(), nullable=False),
        sa.Column('unit_id', sa.Integer(), nullable=True),
        sa.Column('receiver_name', sa.String(length=255), nullable=False),
        sa.Column('phone', sa.String(length=50), nullable=True),
        sa.Column('address', sa.Text(), nullable=True),
        sa.Column('province', sa.String(length=128), nullable=True),
        sa.Column('city', sa.String(length=128), nullable=True),
        sa.Column('district', sa.String(length=128), nullable=True),
        sa.Column('village', sa.String(length=128), nullable=True),
        sa.Column('postal_code', sa.String(length=16), nullable=True),
        sa.Column('tracking_no', sa.String(length=100), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(['stock_out_id'], ['stock_outs.id'], ),
        sa.ForeignKeyConstraint(['unit_id'], ['units.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_stock_out_shipments_tracking_no', 'stock_out_shipments', ['tracking_no'])
    op.create_index('ix_stock_out_shipments_stock_out_id', 'stock_out_shipments', ['stock_out_id'])
    op.create_index('ix_stock_out_shipments_unit_id', 'stock_out_shipments', ['unit_id'])

    # ============================================================================
    # ledger_entries: append-only (no UPDATE/DELETE from the application)
    # ============================================================================
    op.create_table(
        'ledger_entries',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('placement_kind', sa.String(length=32), nullable=False),
        sa.Column('placement_id', sa.Integer(), nullable=False),
        sa.Column('quantity_bucket_id', sa.Integer(), nullable=True),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('distributor_id', sa.Integer(), nullable=True),
        sa.Column('stock_out_id', sa.Integer(), nullable=True),
        sa.Column('event_type', sa.String(length=64), nullable=False),
        sa.Column('direction', sa.String(length=8), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('balance_after', sa.Integer(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('reference_id', sa.String(length=64), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.CheckConstraint("direction IN ('in', 'out')", name='ck_ledger_entries_direction'),
        sa.CheckConstraint('quantity > 0', name='ck_ledger_entries_quantity_positive'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.ForeignKeyConstraint(['quantity_bucket_id'], ['quantity_buckets.id'], ),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['distributor_id'], ['distributors.id'], ),
        sa.ForeignKeyConstraint(['stock_out_id'], ['stock_outs.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_ledger_entries_created_at', 'ledger_entries', ['created_at'])
    op.create_index('ix_ledger_entries_product_placement', 'ledger_entries',
                    ['product_id', 'placement_kind', 'placement_id'])
    op.create_index('ix_ledger_entries_product_id', 'ledger_entries', ['product_id'])
    op.create_index('ix_ledger_entries_quantity_bucket_id', 'ledger_entries', ['quantity_bucket_id'])
    op.create_index('ix_ledger_entries_user_id', 'ledger_entries', ['user_id'])
    op.create_index('ix_ledger_entries_distributor_id', 'ledger_entries', ['distributor_id'])
    op.create_index('ix_ledger_entries_stock_out_id', 'ledger_entries', ['stock_out_id'])
    op.create_index('ix_ledger_entries_event_type', 'ledger_entries', ['event_type'])
    op.create_index('ix_ledger_entries_reference_id', 'ledger_entries', ['reference_id'])


def downgrade():
    """Drop all tables (destructive operation)."""
    op.drop_table('ledger_entries')
    op.drop_table('stock_out_shipments')
    op.drop_table('stock_out_items')
    op.drop_table('stock_outs')
    op.drop_table('quantity_buckets')
    op.drop_table('units')
    op.drop_table('users')
    op.drop_table('distributors')
    op.drop_table('products')
    op.drop_table('online_shops')
    op.drop_table('warehouses')
    op.drop_table('branches')
