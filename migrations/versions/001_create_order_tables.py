"""
Alembic migration: Create order lifecycle tables.

Creates the orders table with its status enum, the immutable order_items
table and the order_receipts table, with indexes for the common lookups and
check constraints for amounts, quantities and the PIN/courier pairing.

Revision ID: 001
Revises:
Create Date: 2024-03-04 10:12:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# Revision identifiers, used by Alembic
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ORDER_STATUSES = (
    'PENDING',
    'CONFIRMED',
    'PREPARING',
    'READY_FOR_DELIVERY',
    'OUT_FOR_DELIVERY',
    'DELIVERED',
    'CANCELLED',
    'FAILED',
)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            'created_at',
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
            comment='Timestamp when record was created',
        ),
        sa.Column(
            'updated_at',
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
            comment='Timestamp when record was last updated',
        ),
    ]


def upgrade() -> None:
    """
    Create orders, order_items and order_receipts.
    """
    order_status = sa.Enum(*ORDER_STATUSES, name='order_status')

    op.create_table(
        'orders',
        sa.Column('id', sa.String(length=36), primary_key=True, comment='Unique identifier for the record'),
        sa.Column('status', order_status, nullable=False, comment='Current order status'),
        sa.Column('total_amount', sa.Numeric(precision=10, scale=2), nullable=False, comment='Total order amount fixed at creation'),
        sa.Column('estimated_delivery_minutes', sa.Integer(), nullable=True, comment='Estimated delivery duration in minutes'),
        sa.Column('paid', sa.Boolean(), nullable=False, server_default=sa.false(), comment='Payment confirmed flag'),
        sa.Column('stripe_charge_id', sa.String(length=255), nullable=True, comment='Payment provider charge reference'),
        sa.Column('restaurant_id', sa.String(length=64), nullable=False, comment='Restaurant that prepares the order'),
        sa.Column('restaurant_name', sa.String(length=255), nullable=False, comment='Denormalized restaurant name'),
        sa.Column('customer_id', sa.String(length=64), nullable=False, comment='Customer who placed the order'),
        sa.Column('pin_code', sa.String(length=4), nullable=False, server_default='', comment='Delivery confirmation PIN'),
        sa.Column('courier_id', sa.String(length=64), nullable=False, server_default='', comment='Assigned courier'),
        *_timestamps(),
        sa.CheckConstraint('total_amount >= 0', name='ck_orders_total_amount_non_negative'),
        sa.CheckConstraint("(pin_code = '') OR (courier_id <> '')", name='ck_orders_pin_requires_courier'),
        sa.CheckConstraint('(paid = false) OR (stripe_charge_id IS NOT NULL)', name='ck_orders_paid_requires_charge'),
    )

    op.create_index('ix_orders_status', 'orders', ['status'])
    op.create_index('ix_orders_customer_id', 'orders', ['customer_id'])
    op.create_index('ix_orders_restaurant_status', 'orders', ['restaurant_id', 'status'])
    op.create_index('ix_orders_customer_created', 'orders', ['customer_id', 'created_at'])
    op.create_index('ix_orders_status_created', 'orders', ['status', 'created_at'])

    op.create_table(
        'order_items',
        sa.Column('id', sa.String(length=36), primary_key=True, comment='Unique identifier for the record'),
        sa.Column(
            'order_id',
            sa.String(length=36),
            sa.ForeignKey('orders.id', ondelete='RESTRICT'),
            nullable=False,
        ),
        sa.Column('position', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('dish_id', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('price', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.CheckConstraint('quantity >= 1', name='ck_order_items_quantity_positive'),
        sa.CheckConstraint('price >= 0', name='ck_order_items_price_non_negative'),
    )

    op.create_index('ix_order_items_order_id', 'order_items', ['order_id'])

    op.create_table(
        'order_receipts',
        sa.Column('id', sa.String(length=36), primary_key=True, comment='Unique identifier for the record'),
        sa.Column(
            'order_id',
            sa.String(length=36),
            sa.ForeignKey('orders.id', ondelete='RESTRICT'),
            nullable=False,
        ),
        sa.Column('receipt_url', sa.String(length=2048), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint('order_id', name='uq_order_receipts_order_id'),
    )


def downgrade() -> None:
    """
    Drop order lifecycle tables and the status enum.
    """
    op.drop_table('order_receipts')
    op.drop_index('ix_order_items_order_id', table_name='order_items')
    op.drop_table('order_items')
    op.drop_index('ix_orders_status_created', table_name='orders')
    op.drop_index('ix_orders_customer_created', table_name='orders')
    op.drop_index('ix_orders_restaurant_status', table_name='orders')
    op.drop_index('ix_orders_customer_id', table_name='orders')
    op.drop_index('ix_orders_status', table_name='orders')
    op.drop_table('orders')
    sa.Enum(name='order_status').drop(op.get_bind(), checkfirst=True)
