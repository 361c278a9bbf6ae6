"""API schemas for the Quikpik settlement API.

Pydantic models for request/response validation and serialization.
Money travels as integer minor units plus a currency code.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from quikpik.domain.entities import Order, StockMovement
from quikpik.domain.pricing import OrderTotals
from quikpik.domain.value_objects import FeeModel, FulfillmentType, Money


# ============================================================================
# Common Schemas
# ============================================================================


class PriceSchema(BaseModel):
    """Price representation."""

    amount: int = Field(..., description="Amount in smallest currency unit (pence)")
    currency: str = Field(default="GBP", min_length=3, max_length=3, description="Currency code")

    @classmethod
    def from_money(cls, money: Money) -> "PriceSchema":
        return cls(amount=money.amount_cents, currency=money.currency)


class ErrorResponse(BaseModel):
    """Standard error response.

    All API errors follow this format for consistency.
    """

    error_code: str = Field(..., description="Machine-readable error code")
    message: str = Field(..., description="Human-readable error message")
    details: dict[str, Any] | list[Any] = Field(default_factory=list, description="Additional error details")
    request_id: str | None = Field(default=None, description="Request ID for correlation")


# ============================================================================
# Pricing Schemas
# ============================================================================


class QuoteLineRequest(BaseModel):
    """A priced line to quote."""

    unit_price: str | int | float = Field(..., description="Unit price in major units, e.g. '2.00'")
    quantity: int = Field(..., description="Quantity")
    moq: int = Field(default=1, ge=1, description="Minimum order quantity")
    product_id: str | None = None


class QuoteRequest(BaseModel):
    """Request to price a set of lines without creating an order."""

    lines: list[QuoteLineRequest] = Field(..., min_length=1)
    currency: str = Field(default="GBP", min_length=3, max_length=3)
    fee_model: FeeModel | None = Field(default=None, description="Defaults to the configured fee model")
    commission_rate: Decimal | None = Field(default=None, ge=0, lt=1)
    surcharge_rate: Decimal | None = Field(default=None, ge=0, lt=1)
    fixed_surcharge: Decimal | None = Field(default=None, ge=0)
    delivery_cost: Decimal | None = Field(default=None, ge=0)


class TotalsResponse(BaseModel):
    """Money breakdown for an order or quote."""

    subtotal: PriceSchema
    platform_fee: PriceSchema
    customer_fee: PriceSchema
    delivery_cost: PriceSchema
    total: PriceSchema
    wholesaler_net: PriceSchema
    platform_take: PriceSchema

    @classmethod
    def from_totals(cls, totals: OrderTotals) -> "TotalsResponse":
        return cls(
            subtotal=PriceSchema.from_money(totals.subtotal),
            platform_fee=PriceSchema.from_money(totals.platform_fee),
            customer_fee=PriceSchema.from_money(totals.customer_fee),
            delivery_cost=PriceSchema.from_money(totals.delivery_cost),
            total=PriceSchema.from_money(totals.total),
            wholesaler_net=PriceSchema.from_money(totals.wholesaler_net),
            platform_take=PriceSchema.from_money(totals.platform_take),
        )


class QuoteResponse(BaseModel):
    fee_model: FeeModel
    totals: TotalsResponse


# ============================================================================
# Order Schemas
# ============================================================================


class OrderStatusEnum(str, Enum):
    """Order status values."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    PAID = "paid"
    FULFILLED = "fulfilled"
    ARCHIVED = "archived"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class CartLineRequest(BaseModel):
    product_id: str = Field(..., min_length=1)
    quantity: int = Field(..., description="Requested quantity")


class CustomerSchema(BaseModel):
    name: str | None = None
    email: str | None = None
    phone: str | None = None


class DeliverySchema(BaseModel):
    fulfillment_type: FulfillmentType = FulfillmentType.PICKUP
    delivery_cost: Decimal | None = Field(default=None, ge=0, description="Delivery charge in major units")
    carrier: str | None = None
    address: str | None = None


class OrderCreateRequest(BaseModel):
    """Request to submit a cart as an order."""

    wholesaler_id: str = Field(..., min_length=1)
    retailer_id: str = Field(..., min_length=1)
    items: list[CartLineRequest] = Field(..., min_length=1)
    customer: CustomerSchema | None = None
    delivery: DeliverySchema | None = None


class OrderItemSchema(BaseModel):
    product_id: str
    product_name: str
    quantity: int
    unit_price: PriceSchema
    line_total: PriceSchema
    stock_deducted: bool


class OrderStatusHistorySchema(BaseModel):
    from_status: str | None
    to_status: str
    actor: str
    reason: str | None = None
    metadata: dict[str, Any] | None = None
    created_at: datetime


class FeeScheduleSchema(BaseModel):
    model: FeeModel
    commission_rate: Decimal
    surcharge_rate: Decimal
    fixed_surcharge: PriceSchema


class OrderResponse(BaseModel):
    """Order details."""

    id: str
    wholesaler_id: str
    retailer_id: str
    status: OrderStatusEnum
    items: list[OrderItemSchema]
    subtotal: PriceSchema
    platform_fee: PriceSchema
    customer_fee: PriceSchema
    delivery_cost: PriceSchema
    total: PriceSchema
    wholesaler_net: PriceSchema
    fee_schedule: FeeScheduleSchema
    customer: CustomerSchema | None = None
    delivery: DeliverySchema
    payment_reference: str | None = None
    refunded_amount: PriceSchema | None = None
    refund_notes: list[str] = Field(default_factory=list)
    cancelled_reason: str | None = None
    created_at: datetime
    updated_at: datetime
    paid_at: datetime | None = None
    fulfilled_at: datetime | None = None
    archive_due_at: datetime | None = None
    archived_at: datetime | None = None
    cancelled_at: datetime | None = None
    refunded_at: datetime | None = None
    status_history: list[OrderStatusHistorySchema] = Field(default_factory=list)


def order_to_response(order: Order) -> OrderResponse:
    """Convert an Order aggregate to OrderResponse."""
    customer = None
    if order.customer:
        customer = CustomerSchema(name=order.customer.name, email=order.customer.email, phone=order.customer.phone)

    return OrderResponse(
        id=order.id,
        wholesaler_id=order.wholesaler_id,
        retailer_id=order.retailer_id,
        status=OrderStatusEnum(order.status.value),
        items=[
            OrderItemSchema(
                product_id=item.product_id,
                product_name=item.product_name,
                quantity=item.quantity,
                unit_price=PriceSchema.from_money(item.unit_price),
                line_total=PriceSchema.from_money(item.line_total),
                stock_deducted=item.stock_deducted,
            )
            for item in order.items
        ],
        subtotal=PriceSchema.from_money(order.subtotal),
        platform_fee=PriceSchema.from_money(order.platform_fee),
        customer_fee=PriceSchema.from_money(order.customer_fee),
        delivery_cost=PriceSchema.from_money(order.delivery_cost),
        total=PriceSchema.from_money(order.total),
        wholesaler_net=PriceSchema.from_money(order.wholesaler_net),
        fee_schedule=FeeScheduleSchema(
            model=order.fee_schedule.model,
            commission_rate=order.fee_schedule.commission_rate,
            surcharge_rate=order.fee_schedule.surcharge_rate,
            fixed_surcharge=PriceSchema.from_money(order.fee_schedule.fixed_surcharge),
        ),
        customer=customer,
        delivery=DeliverySchema(
            fulfillment_type=order.delivery.fulfillment_type,
            delivery_cost=order.delivery_cost.to_decimal(),
            carrier=order.delivery.carrier,
            address=order.delivery.address,
        ),
        payment_reference=order.payment_reference,
        refunded_amount=PriceSchema.from_money(order.refunded_amount) if order.refunded_amount else None,
        refund_notes=list(order.refund_notes),
        cancelled_reason=order.cancelled_reason,
        created_at=order.created_at,
        updated_at=order.updated_at,
        paid_at=order.paid_at,
        fulfilled_at=order.fulfilled_at,
        archive_due_at=order.archive_due_at,
        archived_at=order.archived_at,
        cancelled_at=order.cancelled_at,
        refunded_at=order.refunded_at,
        status_history=[
            OrderStatusHistorySchema(
                from_status=entry.from_status.value if entry.from_status else None,
                to_status=entry.to_status.value,
                actor=entry.actor,
                reason=entry.reason,
                metadata=entry.metadata,
                created_at=entry.created_at,
            )
            for entry in order.status_history
        ],
    )


class TransitionResponse(BaseModel):
    """Result of a lifecycle operation."""

    outcome: str = Field(..., description="applied or already_in_state")
    order: OrderResponse
    restored_items: list[str] = Field(default_factory=list)


class PaymentReferenceRequest(BaseModel):
    payment_reference: str = Field(..., min_length=1, description="Processor payment id")


class PaymentInstructionsResponse(BaseModel):
    order_id: str
    payment_reference: str
    amount: PriceSchema
    metadata: dict[str, Any]


class OrderCancelRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500, description="Cancellation reason")
    cancelled_by: str = Field(default="wholesaler", description="Who cancelled (wholesaler, retailer, platform)")


class OrderRefundRequest(BaseModel):
    amount: int | None = Field(default=None, gt=0, description="Refund amount in pence; remaining balance if omitted")
    reason: str = Field(default="", max_length=500, description="Refund reason")


class RefundResponse(BaseModel):
    amount: PriceSchema
    fully_refunded: bool
    outcome: str | None = None
    order: OrderResponse
    restored_items: list[str] = Field(default_factory=list)


# ============================================================================
# Inventory Schemas
# ============================================================================


class StockMovementSchema(BaseModel):
    id: str
    product_id: str
    delta: int
    stock_before: int
    stock_after: int
    reason: str
    order_id: str | None = None
    note: str | None = None
    created_at: datetime

    @classmethod
    def from_movement(cls, movement: StockMovement) -> "StockMovementSchema":
        return cls(
            id=movement.id,
            product_id=movement.product_id,
            delta=movement.delta,
            stock_before=movement.stock_before,
            stock_after=movement.stock_after,
            reason=movement.reason.value,
            order_id=movement.order_id,
            note=movement.note,
            created_at=movement.created_at,
        )


class StockMovementsResponse(BaseModel):
    product_id: str
    movements: list[StockMovementSchema]


class StockAdjustRequest(BaseModel):
    delta: int = Field(..., description="Signed change in units")
    note: str | None = Field(default=None, max_length=500)
