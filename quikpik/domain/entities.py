"""Domain entities.

Product (external, referenced for price/MOQ/stock), the Order aggregate
with its OrderItems, and the StockMovement audit record.
"""

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any
from uuid import uuid4

from quikpik.domain.base import AggregateRoot, Entity, utcnow
from quikpik.domain.exceptions import InvalidRefundAmount
from quikpik.domain.pricing import OrderTotals
from quikpik.domain.state_machines import OrderStatus, TransitionOutcome, check_order_transition
from quikpik.domain.value_objects import CustomerContact, DeliveryInfo, FeeSchedule, Money


# ============================================================================
# Product
# ============================================================================


@dataclass(eq=False)
class Product(Entity[str]):
    """A wholesaler's product, as far as pricing and stock are concerned.

    Attributes:
        id: Product identifier.
        wholesaler_id: Owning wholesaler.
        name: Display name.
        price: List price per unit.
        moq: Minimum order quantity.
        stock: Units currently in stock.
        promo_price: Promotional price per unit, if any.
        promo_active: Whether the promotion is switched on.
        promo_starts_at: Optional start of the promotion window.
        promo_ends_at: Optional end of the promotion window.
    """

    wholesaler_id: str
    name: str
    price: Money
    moq: int = 1
    stock: int = 0
    promo_price: Money | None = None
    promo_active: bool = False
    promo_starts_at: datetime | None = None
    promo_ends_at: datetime | None = None

    def promotion_active(self, now: datetime | None = None) -> bool:
        """Check whether the promotional price applies right now."""
        if not self.promo_active or self.promo_price is None or self.promo_price.is_zero():
            return False
        now = now or utcnow()
        if self.promo_starts_at and now < self.promo_starts_at:
            return False
        if self.promo_ends_at and now > self.promo_ends_at:
            return False
        return True

    def effective_price(self, now: datetime | None = None) -> Money:
        """Unit price a retailer pays right now."""
        if self.promo_price is not None and self.promotion_active(now):
            return self.promo_price
        return self.price


# ============================================================================
# Stock Movement
# ============================================================================


class MovementReason(str, Enum):
    """Why stock changed."""

    ORDER_CONFIRMED = "order_confirmed"
    ORDER_CANCELLED = "order_cancelled"
    ORDER_REFUNDED = "order_refunded"
    MANUAL_ADJUSTMENT = "manual_adjustment"


@dataclass(eq=False)
class StockMovement(Entity[str]):
    """Auditable record of a single stock change."""

    product_id: str
    wholesaler_id: str
    delta: int
    stock_before: int
    stock_after: int
    reason: MovementReason
    order_id: str | None = None
    note: str | None = None
    created_at: datetime = field(default_factory=utcnow)

    @classmethod
    def record(
        cls,
        product: Product,
        delta: int,
        stock_before: int,
        reason: MovementReason,
        order_id: str | None = None,
        note: str | None = None,
    ) -> "StockMovement":
        return cls(
            id=str(uuid4()),
            product_id=product.id,
            wholesaler_id=product.wholesaler_id,
            delta=delta,
            stock_before=stock_before,
            stock_after=stock_before + delta,
            reason=reason,
            order_id=order_id,
            note=note,
        )


# ============================================================================
# Order Item
# ============================================================================


@dataclass
class OrderItem:
    """A line item in an order.

    Order items are snapshots: the unit price never changes after the
    order is built, even if the product price does.

    Attributes:
        product_id: Product identifier.
        product_name: Product name at time of order.
        quantity: Ordered quantity.
        unit_price: Price per unit at time of order.
        stock_deducted: Whether inventory has been deducted for this line.
    """

    product_id: str
    product_name: str
    quantity: int
    unit_price: Money
    stock_deducted: bool = False

    @property
    def line_total(self) -> Money:
        return self.unit_price * self.quantity


@dataclass
class StatusHistoryEntry:
    """One applied status transition."""

    from_status: OrderStatus | None
    to_status: OrderStatus
    actor: str
    reason: str | None = None
    metadata: dict[str, Any] | None = None
    created_at: datetime = field(default_factory=utcnow)


# ============================================================================
# Order Aggregate Root
# ============================================================================


@dataclass(kw_only=True, eq=False)
class Order(AggregateRoot[str]):
    """Order aggregate root.

    Money fields and the fee schedule are frozen at build time.
    ``status`` changes only through :meth:`transition_to`.
    """

    id: str
    wholesaler_id: str
    retailer_id: str
    items: list[OrderItem]
    fee_schedule: FeeSchedule
    subtotal: Money
    platform_fee: Money
    customer_fee: Money
    delivery_cost: Money
    total: Money
    wholesaler_net: Money
    customer: CustomerContact | None = None
    delivery: DeliveryInfo = field(default_factory=DeliveryInfo.pickup)
    status: OrderStatus = OrderStatus.PENDING
    payment_reference: str | None = None
    refunded_amount: Money | None = None
    refund_notes: list[str] = field(default_factory=list)
    cancelled_reason: str | None = None
    paid_at: datetime | None = None
    fulfilled_at: datetime | None = None
    archive_due_at: datetime | None = None
    archived_at: datetime | None = None
    cancelled_at: datetime | None = None
    refunded_at: datetime | None = None
    status_history: list[StatusHistoryEntry] = field(default_factory=list)

    @classmethod
    def create(
        cls,
        wholesaler_id: str,
        retailer_id: str,
        items: list[OrderItem],
        totals: OrderTotals,
        fee_schedule: FeeSchedule,
        customer: CustomerContact | None = None,
        delivery: DeliveryInfo | None = None,
        payment_reference: str | None = None,
        order_id: str | None = None,
    ) -> "Order":
        """Create a pending order from priced items and computed totals."""
        order = cls(
            id=order_id or str(uuid4()),
            wholesaler_id=wholesaler_id,
            retailer_id=retailer_id,
            items=items,
            fee_schedule=fee_schedule,
            subtotal=totals.subtotal,
            platform_fee=totals.platform_fee,
            customer_fee=totals.customer_fee,
            delivery_cost=totals.delivery_cost,
            total=totals.total,
            wholesaler_net=totals.wholesaler_net,
            customer=customer,
            delivery=delivery or DeliveryInfo.pickup(),
            payment_reference=payment_reference,
        )
        order.status_history.append(
            StatusHistoryEntry(
                from_status=None,
                to_status=OrderStatus.PENDING,
                actor="system",
                reason="Order created from cart",
            )
        )
        return order

    # -------------------------------------------------------------------------
    # Query Methods
    # -------------------------------------------------------------------------

    @property
    def currency(self) -> str:
        return self.total.currency

    @property
    def item_count(self) -> int:
        return sum(item.quantity for item in self.items)

    @property
    def refundable_amount(self) -> Money:
        refunded = self.refunded_amount or Money.zero(self.currency)
        return self.total - refunded

    def is_archive_due(self, now: datetime) -> bool:
        return (
            self.status == OrderStatus.FULFILLED
            and self.archive_due_at is not None
            and self.archive_due_at <= now
        )

    # -------------------------------------------------------------------------
    # State Transitions
    # -------------------------------------------------------------------------

    def transition_to(
        self,
        target: OrderStatus,
        actor: str = "system",
        reason: str | None = None,
        metadata: dict[str, Any] | None = None,
        now: datetime | None = None,
        archive_after: timedelta | None = None,
    ) -> TransitionOutcome:
        """Move the order to ``target`` if the transition table allows it.

        Args:
            target: Requested status.
            actor: Who requested the change.
            reason: Free-form reason recorded in the history.
            metadata: Extra context recorded in the history.
            now: Transition time.
            archive_after: Delay before a fulfilled order is archived.

        Returns:
            APPLIED, or ALREADY_IN_STATE when nothing changed.

        Raises:
            IllegalTransition: If the transition is not allowed.
        """
        outcome = check_order_transition(self.id, self.status, target)
        if outcome == TransitionOutcome.ALREADY_IN_STATE:
            return outcome

        now = now or utcnow()
        previous = self.status
        self.status = target

        if target == OrderStatus.PAID:
            self.paid_at = now
        elif target == OrderStatus.FULFILLED:
            self.fulfilled_at = now
            if archive_after is not None:
                self.archive_due_at = now + archive_after
        elif target == OrderStatus.ARCHIVED:
            self.archived_at = now
        elif target == OrderStatus.CANCELLED:
            self.cancelled_at = now
            self.cancelled_reason = reason
        elif target == OrderStatus.REFUNDED:
            self.refunded_at = now

        self.status_history.append(
            StatusHistoryEntry(
                from_status=previous,
                to_status=target,
                actor=actor,
                reason=reason,
                metadata=metadata,
                created_at=now,
            )
        )
        self._touch(now)
        return TransitionOutcome.APPLIED

    def attach_payment_reference(self, payment_reference: str) -> None:
        """Record the processor payment id created for this order."""
        self.payment_reference = payment_reference
        self._touch()

    def mark_stock_deducted(self, product_ids: Iterable[str]) -> None:
        """Flag the items whose stock has been taken from inventory."""
        deducted = set(product_ids)
        for item in self.items:
            if item.product_id in deducted:
                item.stock_deducted = True
        self._touch()

    def release_deducted_items(self) -> list[OrderItem]:
        """Clear the stock flag on every deducted item and return those items.

        The caller persists the cleared flags before returning the stock,
        so two callers can never restore the same item twice.
        """
        released = [item for item in self.items if item.stock_deducted]
        for item in released:
            item.stock_deducted = False
        if released:
            self._touch()
        return released

    # -------------------------------------------------------------------------
    # Refunds
    # -------------------------------------------------------------------------

    def record_refund(self, amount: Money, reason: str = "") -> bool:
        """Record a (partial) refund against the order.

        Args:
            amount: Amount refunded in this operation.
            reason: Refund reason, kept in the refund notes.

        Returns:
            True if the order is now fully refunded.

        Raises:
            InvalidRefundAmount: If amount is zero or exceeds the refundable balance.
        """
        refundable = self.refundable_amount
        if amount.is_zero() or refundable < amount:
            raise InvalidRefundAmount(self.id, amount.amount_cents, refundable.amount_cents)

        already = self.refunded_amount or Money.zero(self.currency)
        self.refunded_amount = already + amount
        note = f"Refunded {amount}"
        if reason:
            note = f"{note}: {reason}"
        self.refund_notes.append(note)
        self._touch()
        return self.refundable_amount.is_zero()
