"""add refund tracking to orders

Revision ID: 0002_add_refund_fields
Revises: 0001_init
Create Date: 2026-10-16

"""
from alembic import op
import sqlalchemy as sa

revision = '0002_add_refund_fields'
down_revision = '0001_init'
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.add_column('orders', sa.Column('refunded_amount', sa.Integer(), nullable=False, server_default='0'))
    op.add_column('orders', sa.Column('last_refund_id', sa.String(100), nullable=True))


def downgrade() -> None:
    op.drop_column('orders', 'last_refund_id')
    op.drop_column('orders', 'refunded_amount')
