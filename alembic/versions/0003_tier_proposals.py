"""tier_proposals

Revision ID: 0003
Revises: 0002
Create Date: 2025-01-09

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '0003'
down_revision = '0002'
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'tier_proposals',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('user_id', sa.Integer, sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('current_tier', sa.String(20), nullable=False),
        sa.Column('proposed_tier', sa.String(20), nullable=False),
        sa.Column('reason', sa.Text, nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('created_by', sa.Integer, sa.ForeignKey('users.id'), nullable=False),
        sa.Column('decided_by', sa.Integer, sa.ForeignKey('users.id'), nullable=True),
        sa.Column('decided_at', sa.DateTime(), nullable=True),
        sa.Column('decision_note', sa.Text, nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False)
    )
    op.create_index('ix_tier_proposals_user_id', 'tier_proposals', ['user_id'])
    op.create_index('ix_tier_proposals_status', 'tier_proposals', ['status'])


def downgrade() -> None:
    op.drop_table('tier_proposals')
