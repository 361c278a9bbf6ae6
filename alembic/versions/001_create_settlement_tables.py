"""Create products, orders and stock movement tables.

Revision ID: 001
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create settlement tables."""
    op.create_table(
        'products',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('wholesaler_id', sa.String(100), nullable=False, index=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('price_cents', sa.Integer(), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False, server_default='GBP'),
        sa.Column('moq', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('stock', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('promo_price_cents', sa.Integer(), nullable=True),
        sa.Column('promo_active', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('promo_starts_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('promo_ends_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
    )

    op.create_table(
        'orders',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('wholesaler_id', sa.String(100), nullable=False, index=True),
        sa.Column('retailer_id', sa.String(255), nullable=False, index=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending', index=True),
        sa.Column('payment_reference', sa.String(255), nullable=True, unique=True),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        # Customer contact
        sa.Column('customer_name', sa.String(255), nullable=True),
        sa.Column('customer_email', sa.String(255), nullable=True),
        sa.Column('customer_phone', sa.String(50), nullable=True),
        # Fulfillment
        sa.Column('fulfillment_type', sa.String(20), nullable=False, server_default='pickup'),
        sa.Column('delivery_carrier', sa.String(100), nullable=True),
        sa.Column('delivery_address', sa.Text(), nullable=True),
        # Totals (minor units)
        sa.Column('currency', sa.String(3), nullable=False),
        sa.Column('subtotal_cents', sa.Integer(), nullable=False),
        sa.Column('platform_fee_cents', sa.Integer(), nullable=False),
        sa.Column('customer_fee_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('delivery_cost_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_cents', sa.Integer(), nullable=False),
        sa.Column('wholesaler_net_cents', sa.Integer(), nullable=False),
        # Frozen fee schedule
        sa.Column('fee_model', sa.String(30), nullable=False),
        sa.Column('commission_rate', sa.Numeric(6, 4), nullable=False),
        sa.Column('surcharge_rate', sa.Numeric(6, 4), nullable=False),
        sa.Column('fixed_surcharge_cents', sa.Integer(), nullable=False, server_default='0'),
        # Cancellation/refund
        sa.Column('cancelled_reason', sa.Text(), nullable=True),
        sa.Column('refunded_amount_cents', sa.Integer(), nullable=True),
        sa.Column('refund_notes', sa.JSON(), nullable=False),
        # Timestamps
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('fulfilled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('archive_due_at', sa.DateTime(timezone=True), nullable=True, index=True),
        sa.Column('archived_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('refunded_at', sa.DateTime(timezone=True), nullable=True),
    )

    op.create_table(
        'order_items',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('order_id', sa.String(36),
                  sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.String(36), nullable=False),
        sa.Column('product_name', sa.String(255), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price_cents', sa.Integer(), nullable=False),
        sa.Column('line_total_cents', sa.Integer(), nullable=False),
        sa.Column('stock_deducted', sa.Boolean(), nullable=False, server_default=sa.false()),
    )

    op.create_table(
        'order_status_history',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('order_id', sa.String(36),
                  sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('from_status', sa.String(20), nullable=True),
        sa.Column('to_status', sa.String(20), nullable=False),
        sa.Column('actor', sa.String(50), nullable=False),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
    )

    op.create_table(
        'stock_movements',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('product_id', sa.String(36), nullable=False, index=True),
        sa.Column('wholesaler_id', sa.String(100), nullable=False, index=True),
        sa.Column('delta', sa.Integer(), nullable=False),
        sa.Column('stock_before', sa.Integer(), nullable=False),
        sa.Column('stock_after', sa.Integer(), nullable=False),
        sa.Column('reason', sa.String(30), nullable=False),
        sa.Column('order_id', sa.String(36), nullable=True, index=True),
        sa.Column('note', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
    )


def downgrade() -> None:
    """Drop settlement tables."""
    op.drop_table('stock_movements')
    op.drop_table('order_status_history')
    op.drop_table('order_items')
    op.drop_table('orders')
    op.drop_table('products')
