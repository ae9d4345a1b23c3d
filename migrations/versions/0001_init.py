"""create checkout tables

Revision ID: 0001_init
Revises:
Create Date: 2026-10-16

"""
from alembic import op
import sqlalchemy as sa

revision = '0001_init'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Collaborator-owned tables checkout reads and adjusts
    op.create_table(
        'products',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('price', sa.Integer, nullable=False),
        sa.Column('sale_price', sa.Integer, nullable=True),
        sa.Column('stock', sa.Integer, nullable=False, server_default='0'),
        sa.Column('updated_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint('stock >= 0', name='ck_products_stock_non_negative'),
    )
    op.create_table(
        'cart_items',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('user_id', sa.Integer, nullable=False),
        sa.Column('product_id', sa.Integer, nullable=False),
        sa.Column('quantity', sa.Integer, nullable=False, server_default='1'),
    )
    op.create_index('ix_cart_items_user_id', 'cart_items', ['user_id'])

    op.create_table(
        'orders',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('user_id', sa.Integer, nullable=False),
        sa.Column('total_amount', sa.Integer, nullable=False),
        sa.Column('currency', sa.String(3), nullable=False, server_default='INR'),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('gateway', sa.String(30), nullable=False),
        sa.Column('merchant_transaction_id', sa.String(100), nullable=False),
        sa.Column('receipt', sa.String(100), nullable=False),
        sa.Column('gateway_order_id', sa.String(100), nullable=True),
        sa.Column('gateway_transaction_id', sa.String(100), nullable=True),
        sa.Column('gateway_signature', sa.String(255), nullable=True),
        sa.Column('payment_instrument', sa.String(50), nullable=True),
        sa.Column('shipping_address', sa.JSON, nullable=False),
        sa.Column('notes', sa.Text, nullable=True),
        sa.Column('shipped_at', sa.DateTime, nullable=True),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint('receipt', name='uq_orders_receipt'),
        sa.UniqueConstraint('gateway_order_id', name='uq_orders_gateway_order_id'),
    )
    op.create_index('ix_orders_user_id', 'orders', ['user_id'])
    op.create_index('ix_orders_status', 'orders', ['status'])
    op.create_index('ix_orders_merchant_transaction_id', 'orders', ['merchant_transaction_id'], unique=True)
    op.create_index('ix_orders_gateway_transaction_id', 'orders', ['gateway_transaction_id'])

    op.create_table(
        'order_items',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('order_id', sa.Integer, sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False),
        sa.Column('product_id', sa.Integer, nullable=False),
        sa.Column('quantity', sa.Integer, nullable=False),
        sa.Column('unit_price', sa.Integer, nullable=False),
        sa.Column('product_name', sa.String(200), nullable=False),
        sa.Column('product_description', sa.Text, nullable=True),
    )


def downgrade() -> None:
    op.drop_table('order_items')
    op.drop_index('ix_orders_gateway_transaction_id', table_name='orders')
    op.drop_index('ix_orders_merchant_transaction_id', table_name='orders')
    op.drop_index('ix_orders_status', table_name='orders')
    op.drop_index('ix_orders_user_id', table_name='orders')
    op.drop_table('orders')
    op.drop_index('ix_cart_items_user_id', table_name='cart_items')
    op.drop_table('cart_items')
    op.drop_table('products')
