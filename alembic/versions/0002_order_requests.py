"""order_requests, invoices, payments and audit log

Revision ID: 0002
Revises: 0001_init
Create Date: 2025-01-02

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '0002'
down_revision = '0001_init'
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'order_requests',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('order_id', sa.String(30), nullable=False),
        sa.Column('user_id', sa.Integer, sa.ForeignKey('users.id'), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('total_price', sa.Numeric(12,2), nullable=False),
        sa.Column('notes', sa.Text, nullable=True),
        sa.Column('last_actor_id', sa.Integer, nullable=True),
        sa.Column('last_actor_role', sa.String(20), nullable=True),
        sa.Column('version', sa.Integer, nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False)
    )
    op.create_index('ix_order_requests_order_id', 'order_requests', ['order_id'], unique=True)
    op.create_index('ix_order_requests_user_id', 'order_requests', ['user_id'])
    op.create_index('ix_order_requests_status', 'order_requests', ['status'])

    op.create_table(
        'order_items',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('order_request_id', sa.Integer, sa.ForeignKey('order_requests.id', ondelete='CASCADE'), nullable=False),
        sa.Column('product_id', sa.Integer, sa.ForeignKey('products.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('variant_id', sa.Integer, sa.ForeignKey('product_variants.id', ondelete='RESTRICT'), nullable=True),
        sa.Column('strain', sa.String(100), nullable=True),
        sa.Column('quantity', sa.Integer, nullable=False),
        sa.Column('unit_price', sa.Numeric(12,2), nullable=False),
        sa.Column('total_price', sa.Numeric(12,2), nullable=False),
        sa.Column('notes', sa.Text, nullable=True)
    )
    op.create_index('ix_order_items_order_request_id', 'order_items', ['order_request_id'])

    op.create_table(
        'invoices',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('invoice_number', sa.String(30), nullable=False),
        sa.Column('user_id', sa.Integer, sa.ForeignKey('users.id'), nullable=False),
        sa.Column('order_request_id', sa.Integer, sa.ForeignKey('order_requests.id', ondelete='CASCADE'), nullable=False),
        sa.Column('total', sa.Numeric(12,2), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('issue_date', sa.DateTime(), nullable=False),
        sa.Column('due_date', sa.DateTime(), nullable=False),
        sa.Column('paid_at', sa.DateTime(), nullable=True),
        sa.Column('payment_method', sa.String(20), nullable=True),
        sa.Column('notes', sa.Text, nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('order_request_id', name='uq_invoices_order_request_id')
    )
    op.create_index('ix_invoices_invoice_number', 'invoices', ['invoice_number'], unique=True)
    op.create_index('ix_invoices_user_id', 'invoices', ['user_id'])
    op.create_index('ix_invoices_status', 'invoices', ['status'])

    op.create_table(
        'payments',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('invoice_id', sa.Integer, sa.ForeignKey('invoices.id', ondelete='CASCADE'), nullable=False),
        sa.Column('amount', sa.Numeric(12,2), nullable=False),
        sa.Column('method', sa.String(20), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('reference', sa.String(100), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False)
    )
    op.create_index('ix_payments_invoice_id', 'payments', ['invoice_id'])

    # Append-only: the service never updates or deletes rows here
    op.create_table(
        'audit_logs',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('actor_id', sa.Integer, nullable=True),
        sa.Column('actor_role', sa.String(20), nullable=True),
        sa.Column('action', sa.String(60), nullable=False),
        sa.Column('entity', sa.String(40), nullable=False),
        sa.Column('entity_id', sa.String(64), nullable=False),
        sa.Column('meta', sa.JSON, nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False)
    )
    op.create_index('ix_audit_logs_actor_id', 'audit_logs', ['actor_id'])
    op.create_index('ix_audit_logs_action', 'audit_logs', ['action'])
    op.create_index('ix_audit_logs_entity', 'audit_logs', ['entity'])
    op.create_index('ix_audit_logs_entity_id', 'audit_logs', ['entity_id'])
    op.create_index('ix_audit_logs_created_at', 'audit_logs', ['created_at'])


def downgrade() -> None:
    op.drop_table('audit_logs')
    op.drop_table('payments')
    op.drop_table('invoices')
    op.drop_table('order_items')
    op.drop_table('order_requests')
