"""stock opname baseline: cabang, user, produk, sesi opname, item, mutasi stok

Revision ID: a1f3c5e7b9d2
Revises:
Create Date: 2026-10-17 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'a1f3c5e7b9d2'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'branch',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column('address', sa.String(length=200), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name')
    )

    op.create_table(
        'user',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('username', sa.String(length=80), nullable=False),
        sa.Column('email', sa.String(length=120), nullable=False),
        sa.Column('password', sa.String(length=200), nullable=False),
        sa.Column('role', sa.String(length=50), nullable=False, server_default='gudang'),
        sa.Column('branch_id', sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(['branch_id'], ['branch.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('username'),
        sa.UniqueConstraint('email')
    )

    op.create_table(
        'produk',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('branch_id', sa.Integer(), nullable=False),
        sa.Column('kode_produk', sa.String(length=50), nullable=False),
        sa.Column('sku', sa.String(length=50), nullable=True),
        sa.Column('nama_produk', sa.String(length=100), nullable=False),
        sa.Column('stok', sa.Integer(), nullable=False, server_default='0'),
        sa.ForeignKeyConstraint(['branch_id'], ['branch.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('branch_id', 'kode_produk', name='uq_produk_branch_kode'),
        sa.UniqueConstraint('branch_id', 'sku', name='uq_produk_branch_sku')
    )
    op.create_index('ix_produk_branch_id', 'produk', ['branch_id'])
    op.create_index('ix_produk_kode_produk', 'produk', ['kode_produk'])

    op.create_table(
        'stock_opname_session',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('code', sa.String(length=50), nullable=False),
        sa.Column('branch_id', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='DRAFT'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('admin_notes', sa.Text(), nullable=True),
        sa.Column('created_by', sa.Integer(), nullable=True),
        sa.Column('submitted_by', sa.Integer(), nullable=True),
        sa.Column('approved_by', sa.Integer(), nullable=True),
        sa.Column('rejected_by', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('submitted_at', sa.DateTime(), nullable=True),
        sa.Column('approved_at', sa.DateTime(), nullable=True),
        sa.Column('rejected_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['branch_id'], ['branch.id']),
        sa.ForeignKeyConstraint(['created_by'], ['user.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['submitted_by'], ['user.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['approved_by'], ['user.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['rejected_by'], ['user.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('code')
    )
    op.create_index('ix_stock_opname_session_branch_id', 'stock_opname_session', ['branch_id'])
    op.create_index('ix_stock_opname_session_status', 'stock_opname_session', ['status'])
    op.create_index('ix_stock_opname_session_created_at', 'stock_opname_session', ['created_at'])

    op.create_table(
        'stock_opname_item',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('session_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=True),
        sa.Column('product_sku', sa.String(length=50), nullable=True),
        sa.Column('product_name', sa.String(length=100), nullable=False),
        sa.Column('system_quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('counted_quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('notes', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['product_id'], ['produk.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['session_id'], ['stock_opname_session.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('session_id', 'product_id', name='uq_opname_item_product')
    )

    op.create_table(
        'stock_movement',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=True),
        sa.Column('branch_id', sa.Integer(), nullable=False),
        sa.Column('ref_type', sa.String(length=30), nullable=False),
        sa.Column('ref_id', sa.Integer(), nullable=False),
        sa.Column('qty_change', sa.Integer(), nullable=False),
        sa.Column('created_by', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['product_id'], ['produk.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['branch_id'], ['branch.id']),
        sa.ForeignKeyConstraint(['created_by'], ['user.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_stock_movement_product_id', 'stock_movement', ['product_id'])
    op.create_index('ix_stock_movement_ref', 'stock_movement', ['ref_type', 'ref_id'])


def downgrade():
    op.drop_index('ix_stock_movement_ref', table_name='stock_movement')
    op.drop_index('ix_stock_movement_product_id', table_name='stock_movement')
    op.drop_table('stock_movement')
    op.drop_table('stock_opname_item')
    op.drop_index('ix_stock_opname_session_created_at', table_name='stock_opname_session')
    op.drop_index('ix_stock_opname_session_status', table_name='stock_opname_session')
    op.drop_index('ix_stock_opname_session_branch_id', table_name='stock_opname_session')
    op.drop_table('stock_opname_session')
    op.drop_index('ix_produk_kode_produk', table_name='produk')
    op.drop_index('ix_produk_branch_id', table_name='produk')
    op.drop_table('produk')
    op.drop_table('user')
    op.drop_table('branch')
