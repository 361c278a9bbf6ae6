"""SQLAlchemy models for database tables.

Provides ORM models for products, orders, order items, order status
history and stock movements. Money columns hold integer minor units.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any
from uuid import uuid4

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from quikpik.infrastructure.database import Base


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# Product Model
# ============================================================================


class ProductModel(Base):
    """Product pricing and stock.

    The wider product catalogue is managed elsewhere; this table holds
    the fields the settlement core reads and the stock it mutates.
    """

    __tablename__ = "products"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    wholesaler_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    price_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="GBP")
    moq: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    stock: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    promo_price_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)
    promo_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    promo_starts_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    promo_ends_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_now, onupdate=_now
    )


# ============================================================================
# Order Models
# ============================================================================


class OrderModel(Base):
    """Order model for database persistence.

    Tracks the frozen money breakdown and fee schedule alongside the
    lifecycle status.
    """

    __tablename__ = "orders"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    wholesaler_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    retailer_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending", index=True)
    payment_reference: Mapped[str | None] = mapped_column(String(255), nullable=True, unique=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    # Customer contact
    customer_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    customer_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    customer_phone: Mapped[str | None] = mapped_column(String(50), nullable=True)

    # Fulfillment
    fulfillment_type: Mapped[str] = mapped_column(String(20), nullable=False, default="pickup")
    delivery_carrier: Mapped[str | None] = mapped_column(String(100), nullable=True)
    delivery_address: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Totals
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    subtotal_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    platform_fee_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    customer_fee_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    delivery_cost_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    wholesaler_net_cents: Mapped[int] = mapped_column(Integer, nullable=False)

    # Frozen fee schedule
    fee_model: Mapped[str] = mapped_column(String(30), nullable=False)
    commission_rate: Mapped[Decimal] = mapped_column(Numeric(6, 4), nullable=False)
    surcharge_rate: Mapped[Decimal] = mapped_column(Numeric(6, 4), nullable=False)
    fixed_surcharge_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Cancellation/refund
    cancelled_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    refunded_amount_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)
    refund_notes: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    fulfilled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    archive_due_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    archived_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    refunded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Relationships
    items: Mapped[list["OrderItemModel"]] = relationship(
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItemModel.position",
    )
    status_history: Mapped[list["OrderStatusHistoryModel"]] = relationship(
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderStatusHistoryModel.id",
    )


class OrderItemModel(Base):
    """Order line; ``position`` preserves cart order."""

    __tablename__ = "order_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    product_id: Mapped[str] = mapped_column(String(36), nullable=False)
    product_name: Mapped[str] = mapped_column(String(255), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    line_total_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    stock_deducted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    order: Mapped[OrderModel] = relationship(back_populates="items")


class OrderStatusHistoryModel(Base):
    """Applied status transition."""

    __tablename__ = "order_status_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    order_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True
    )
    from_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    to_status: Mapped[str] = mapped_column(String(20), nullable=False)
    actor: Mapped[str] = mapped_column(String(50), nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    metadata_: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)

    order: Mapped[OrderModel] = relationship(back_populates="status_history")


# ============================================================================
# Stock Movement Model
# ============================================================================


class StockMovementModel(Base):
    """Audit record of a stock change."""

    __tablename__ = "stock_movements"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    product_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    wholesaler_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    delta: Mapped[int] = mapped_column(Integer, nullable=False)
    stock_before: Mapped[int] = mapped_column(Integer, nullable=False)
    stock_after: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str] = mapped_column(String(30), nullable=False)
    order_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_now)
