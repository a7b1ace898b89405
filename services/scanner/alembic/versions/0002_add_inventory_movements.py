from alembic import op
import sqlalchemy as sa

revision = '0002_add_inventory_movements'
down_revision = '0001_init'
branch_labels = None
depends_on = None

def upgrade():
    op.create_table(
        'inventory_movements',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('product_id', sa.Integer, nullable=False),
        sa.Column('movement_type', sa.String(10), nullable=False),
        sa.Column('quantity', sa.Integer, nullable=False),
        sa.Column('notes', sa.Text, nullable=True),
        sa.Column('esp32_device_id', sa.String(100), nullable=True),
        sa.Column('created_at', sa.DateTime, server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(
            ['product_id'], ['products.id'],
            name='fk_inventory_movements_product_id_products',
            ondelete='RESTRICT'
        ),
        sa.CheckConstraint("movement_type IN ('in', 'out')", name='ck_inventory_movements_type'),
    )
    op.create_index('ix_inventory_movements_product_id', 'inventory_movements', ['product_id'])
    op.create_index('ix_inventory_movements_esp32_device_id', 'inventory_movements', ['esp32_device_id'])
    op.create_index('ix_inventory_movements_created_at', 'inventory_movements', ['created_at'])

def downgrade():
    op.drop_table('inventory_movements')
