from alembic import op
import sqlalchemy as sa

revision = '0001_init'
down_revision = None
branch_labels = None
depends_on = None

def upgrade():
    op.create_table(
        'products',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('sku', sa.String(100), nullable=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('category', sa.String(100), nullable=True),
        sa.Column('price', sa.Numeric(12, 2), nullable=True),
        sa.Column('quantity', sa.Integer, nullable=False, server_default='0'),
        sa.Column('min_quantity', sa.Integer, nullable=True),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint('quantity >= 0', name='ck_products_quantity_non_negative'),
    )
    op.create_index('ix_products_sku', 'products', ['sku'], unique=True)

def downgrade():
    op.drop_index('ix_products_sku', table_name='products')
    op.drop_table('products')
