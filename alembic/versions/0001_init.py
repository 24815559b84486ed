from alembic import op
import sqlalchemy as sa

revision = '0001_init'
down_revision = None
branch_labels = None
depends_on = None

def upgrade():
    op.create_table(
        'users',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('name', sa.String(200), nullable=True),
        sa.Column('company', sa.String(200), nullable=True),
        sa.Column('role', sa.String(20), nullable=False),
        sa.Column('tier', sa.String(20), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False)
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    op.create_table(
        'products',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('slug', sa.String(220), nullable=False),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('category', sa.String(50), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('price_gold', sa.Numeric(12,2), nullable=False),
        sa.Column('price_platinum', sa.Numeric(12,2), nullable=False),
        sa.Column('price_diamond', sa.Numeric(12,2), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False)
    )
    op.create_index('ix_products_slug', 'products', ['slug'], unique=True)
    op.create_index('ix_products_category', 'products', ['category'])

    op.create_table(
        'product_variants',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('product_id', sa.Integer, sa.ForeignKey('products.id', ondelete='CASCADE'), nullable=False),
        sa.Column('subcategory', sa.String(100), nullable=False),
        sa.Column('price_gold', sa.Numeric(12,2), nullable=False),
        sa.Column('price_platinum', sa.Numeric(12,2), nullable=False),
        sa.Column('price_diamond', sa.Numeric(12,2), nullable=False)
    )
    op.create_index('ix_product_variants_product_id', 'product_variants', ['product_id'])

def downgrade():
    op.drop_table('product_variants')
    op.drop_table('products')
    op.drop_table('users')
