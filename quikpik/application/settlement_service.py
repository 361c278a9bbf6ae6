"""Settlement reconciler.

Applies a confirmed payment to its order:

1. Extract a typed locator from the event metadata.
2. Find the order by id or payment reference, or build it from the cart
   carried in the metadata (pay-first checkout).
3. Short-circuit if the order is already paid or beyond.
4. Check the paid amount against the order total.
5. Walk the order to ``paid`` with conditional writes, then deduct stock.
6. Send notifications.

Only the delivery that wins the final conditional write to ``paid``
deducts stock, so duplicate deliveries of the same event never deduct
twice.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from quikpik.application.inventory_service import InventoryAdjuster
from quikpik.application.notifications import NotificationDispatcher
from quikpik.application.order_builder import OrderBuilder
from quikpik.domain.entities import MovementReason, Order, OrderItem
from quikpik.domain.exceptions import (
    AmountMismatch,
    DomainError,
    DuplicatePaymentReference,
    InsufficientStock,
    ProductNotFound,
    StockContention,
    UnresolvableEvent,
)
from quikpik.domain.state_machines import SETTLEMENT_PATH, OrderStatus, check_order_transition
from quikpik.domain.value_objects import (
    CustomerContact,
    DeliveryInfo,
    FeeSchedule,
    FulfillmentType,
    LineItem,
    Money,
)
from quikpik.infrastructure.config import settings
from quikpik.infrastructure.storage import Storage, get_storage

logger = structlog.get_logger()

MAX_FLAG_WRITE_ATTEMPTS = 3


# ============================================================================
# Payment Events
# ============================================================================


class PaymentEventType(str, Enum):
    """Processor events that confirm a payment."""

    PAYMENT_INTENT_SUCCEEDED = "payment_intent.succeeded"
    CHECKOUT_SESSION_COMPLETED = "checkout.session.completed"


@dataclass(frozen=True)
class PaymentConfirmationEvent:
    """A confirmed payment, as delivered (at least once) by the processor.

    Attributes:
        event_id: Processor event id.
        event_type: Kind of confirmation.
        payment_reference: Processor payment id.
        amount: Amount captured.
        metadata: Locator data set when the payment was initiated.
    """

    event_id: str
    event_type: PaymentEventType
    payment_reference: str
    amount: Money
    metadata: dict[str, Any] = field(default_factory=dict)


# ============================================================================
# Locators
# ============================================================================


def _decode_json_once(value: Any) -> Any:
    """Decode a JSON-encoded string once; nested encodings are rejected."""
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError as e:
            raise ValueError(f"not valid JSON: {e.msg}") from e
        if isinstance(value, str):
            raise ValueError("value is JSON-encoded more than once")
    return value


class CartLinePayload(BaseModel):
    """One cart line carried in payment metadata."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    product_id: str = Field(min_length=1, alias="productId")
    quantity: int = Field(ge=1)

    @field_validator("product_id", mode="before")
    @classmethod
    def _stringify_id(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value


class CustomerPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str | None = None
    email: str | None = None
    phone: str | None = None


class DeliveryPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    fulfillment_type: FulfillmentType = FulfillmentType.PICKUP
    delivery_cost: str | None = None
    carrier: str | None = None
    address: str | None = None

    @field_validator("delivery_cost", mode="before")
    @classmethod
    def _cost_as_text(cls, value: Any) -> Any:
        if isinstance(value, int | float) and not isinstance(value, bool):
            return str(value)
        return value


class OrderIdLocator(BaseModel):
    """Locates an order created before payment."""

    model_config = ConfigDict(extra="ignore")

    order_id: str = Field(min_length=1)


class CartLocator(BaseModel):
    """Carries what is needed to build the order after payment."""

    model_config = ConfigDict(extra="ignore")

    wholesaler_id: str = Field(min_length=1)
    cart: list[CartLinePayload] = Field(min_length=1)
    retailer_id: str | None = None
    customer: CustomerPayload | None = None
    delivery: DeliveryPayload | None = None

    @field_validator("cart", "customer", "delivery", mode="before")
    @classmethod
    def _decode(cls, value: Any) -> Any:
        return _decode_json_once(value)

    def line_items(self) -> list[LineItem]:
        return [LineItem(product_id=line.product_id, quantity=line.quantity) for line in self.cart]


Locator = OrderIdLocator | CartLocator


def _describe_validation_error(error: ValidationError) -> str:
    parts = []
    for err in error.errors():
        location = ".".join(str(p) for p in err["loc"]) or "metadata"
        parts.append(f"{location}: {err['msg']}")
    return "; ".join(parts)


def extract_locator(event: PaymentConfirmationEvent) -> Locator:
    """Extract the order locator from an event's metadata.

    An explicit ``order_id`` wins; otherwise ``wholesaler_id`` plus
    ``cart`` (a list, or a single JSON-encoded string) is required.

    Raises:
        UnresolvableEvent: If no locator is present or the metadata is malformed.
    """
    metadata = event.metadata or {}
    try:
        if metadata.get("order_id"):
            return OrderIdLocator.model_validate(metadata)
        if "cart" in metadata:
            return CartLocator.model_validate(metadata)
    except ValidationError as e:
        raise UnresolvableEvent(event.event_id, _describe_validation_error(e)) from e
    raise UnresolvableEvent(event.event_id, "metadata carries neither order_id nor cart")


# ============================================================================
# Results
# ============================================================================


class ReconciliationStatus(str, Enum):
    """Outcome of reconciling a payment event."""

    SETTLED = "settled"
    ALREADY_PROCESSED = "already_processed"


@dataclass
class StockShortfall:
    """Stock that could not be deducted for a paid order."""

    product_id: str
    requested: int
    available: int | None
    reason: str


@dataclass
class ReconciliationResult:
    """Result of reconciling a payment event."""

    status: ReconciliationStatus
    order_id: str
    message: str
    stock_shortfalls: list[StockShortfall] = field(default_factory=list)
    order_created: bool = False


# ============================================================================
# Reconciler
# ============================================================================


class SettlementReconciler:
    """Applies confirmed payments to orders."""

    def __init__(
        self,
        storage: Storage | None = None,
        builder: OrderBuilder | None = None,
        inventory: InventoryAdjuster | None = None,
        notifications: NotificationDispatcher | None = None,
        fee_schedule: FeeSchedule | None = None,
    ) -> None:
        """Initialize reconciler.

        Args:
            storage: Storage backend.
            builder: Builder used for pay-first orders.
            inventory: Adjuster used to deduct stock.
            notifications: Dispatcher for settlement notifications.
            fee_schedule: Fee schedule for pay-first orders.
        """
        self.storage = storage or get_storage()
        self.builder = builder or OrderBuilder(self.storage)
        self.inventory = inventory or InventoryAdjuster(self.storage)
        self.notifications = notifications or NotificationDispatcher()
        self.fee_schedule = fee_schedule or settings.fee_schedule()

    async def reconcile(self, event: PaymentConfirmationEvent) -> ReconciliationResult:
        """Apply a payment confirmation to its order.

        Args:
            event: Confirmed payment.

        Returns:
            SETTLED when this call moved the order to ``paid``,
            ALREADY_PROCESSED when it was already paid or another delivery
            won the race.

        Raises:
            UnresolvableEvent: If the event cannot be tied to an order.
            AmountMismatch: If the amount or currency differs from the order total.
            IllegalTransition: If the order can no longer be paid (e.g. cancelled).
        """
        log = logger.bind(event_id=event.event_id, payment_reference=event.payment_reference)
        locator = extract_locator(event)
        order, created = await self._locate_order(event, locator)
        log = log.bind(order_id=order.id)

        if order.status.is_settled():
            log.info("Payment already applied", status=order.status.value)
            return ReconciliationResult(
                status=ReconciliationStatus.ALREADY_PROCESSED,
                order_id=order.id,
                message=f"Order already {order.status.value}",
                order_created=created,
            )

        self._check_amount(order, event)

        settled = await self._settle(order, event)
        if settled is None:
            log.info("Order settled by a concurrent delivery")
            return ReconciliationResult(
                status=ReconciliationStatus.ALREADY_PROCESSED,
                order_id=order.id,
                message="Order settled by another delivery",
                order_created=created,
            )

        settled, shortfalls = await self._deduct_stock(settled)
        if shortfalls:
            log.error(
                "Stock shortfall on paid order, manual reconciliation needed",
                shortfalls=[vars(s) for s in shortfalls],
            )

        await self.notifications.order_settled(settled)

        log.info(
            "Payment settled",
            total_cents=settled.total.amount_cents,
            order_created=created,
            shortfall_count=len(shortfalls),
        )
        return ReconciliationResult(
            status=ReconciliationStatus.SETTLED,
            order_id=settled.id,
            message="Payment applied" if not shortfalls else "Payment applied with stock shortfall",
            stock_shortfalls=shortfalls,
            order_created=created,
        )

    # -------------------------------------------------------------------------
    # Steps
    # -------------------------------------------------------------------------

    async def _locate_order(self, event: PaymentConfirmationEvent, locator: Locator) -> tuple[Order, bool]:
        if isinstance(locator, OrderIdLocator):
            order = await self.storage.get_order(locator.order_id)
            if order is None:
                order = await self.storage.get_order_by_payment_reference(event.payment_reference)
            if order is None:
                raise UnresolvableEvent(event.event_id, f"order {locator.order_id} does not exist")
            return order, False

        existing = await self.storage.get_order_by_payment_reference(event.payment_reference)
        if existing is not None:
            return existing, False
        return await self._build_from_cart(event, locator)

    async def _build_from_cart(self, event: PaymentConfirmationEvent, locator: CartLocator) -> tuple[Order, bool]:
        currency = event.amount.currency
        try:
            customer = CustomerContact(**locator.customer.model_dump()) if locator.customer else None
            delivery = DeliveryInfo.pickup()
            if locator.delivery is not None:
                cost = locator.delivery.delivery_cost
                delivery = DeliveryInfo(
                    fulfillment_type=locator.delivery.fulfillment_type,
                    delivery_cost=Money.parse(cost, currency) if cost else None,
                    carrier=locator.delivery.carrier,
                    address=locator.delivery.address,
                )
        except ValueError as e:
            raise UnresolvableEvent(event.event_id, str(e)) from e

        if locator.retailer_id:
            retailer_id = locator.retailer_id
        elif customer is not None:
            retailer_id = f"guest:{customer.handle}"
        else:
            raise UnresolvableEvent(event.event_id, "cart metadata carries neither retailer_id nor customer")

        try:
            order = await self.builder.build_order(
                locator.line_items(),
                wholesaler_id=locator.wholesaler_id,
                retailer_id=retailer_id,
                delivery=delivery,
                fee_schedule=self.fee_schedule,
                customer=customer,
                payment_reference=event.payment_reference,
                enforce_stock=False,
            )
        except DuplicatePaymentReference:
            existing = await self.storage.get_order_by_payment_reference(event.payment_reference)
            if existing is None:
                raise
            logger.info("Order for payment built by a concurrent delivery", order_id=existing.id)
            return existing, False

        logger.info("Order built from paid cart", order_id=order.id, event_id=event.event_id)
        return order, True

    def _check_amount(self, order: Order, event: PaymentConfirmationEvent) -> None:
        if event.amount.currency == order.currency and event.amount.amount_cents == order.total.amount_cents:
            return
        logger.warning(
            "Payment amount does not match order total",
            order_id=order.id,
            event_id=event.event_id,
            expected_cents=order.total.amount_cents,
            received_cents=event.amount.amount_cents,
            expected_currency=order.currency,
            received_currency=event.amount.currency,
        )
        raise AmountMismatch(
            order_id=order.id,
            expected_cents=order.total.amount_cents,
            received_cents=event.amount.amount_cents,
            expected_currency=order.currency,
            received_currency=event.amount.currency,
        )

    async def _settle(self, order: Order, event: PaymentConfirmationEvent) -> Order | None:
        """Walk the order to PAID, one conditional write per hop.

        Returns the paid order, or None when another writer got it there.
        """
        # Each hop either advances the order or re-reads it
        for _ in range(len(SETTLEMENT_PATH) + 2):
            if order.status.is_settled():
                return None
            path = SETTLEMENT_PATH.get(order.status)
            if path is None:
                check_order_transition(order.id, order.status, OrderStatus.PAID)
                return None

            target = path[0]
            expected = order.status
            expected_version = order.version
            if target == OrderStatus.PAID:
                if order.payment_reference and order.payment_reference != event.payment_reference:
                    logger.warning(
                        "Replacing payment reference on order",
                        order_id=order.id,
                        previous=order.payment_reference,
                        payment_reference=event.payment_reference,
                    )
                order.payment_reference = event.payment_reference
            order.transition_to(
                target,
                actor="payment_processor",
                reason=f"Payment {event.payment_reference} confirmed",
                metadata={"event_id": event.event_id, "payment_reference": event.payment_reference},
            )

            if await self.storage.update_order_status(
                order, expected_status=expected, expected_version=expected_version
            ):
                if target == OrderStatus.PAID:
                    return order
                continue

            reloaded = await self.storage.get_order(order.id)
            if reloaded is None:
                raise UnresolvableEvent(event.event_id, f"order {order.id} disappeared during settlement")
            order = reloaded
        return None

    async def _deduct_stock(self, order: Order) -> tuple[Order, list[StockShortfall]]:
        shortfalls: list[StockShortfall] = []
        deducted: list[OrderItem] = []
        for item in order.items:
            if item.stock_deducted:
                continue
            try:
                await self.inventory.deduct(
                    item.product_id,
                    item.quantity,
                    reason=MovementReason.ORDER_CONFIRMED,
                    order_id=order.id,
                )
            except InsufficientStock as e:
                shortfalls.append(StockShortfall(item.product_id, item.quantity, e.available, e.error_code))
                continue
            except ProductNotFound as e:
                shortfalls.append(StockShortfall(item.product_id, item.quantity, None, e.error_code))
                continue
            except StockContention as e:
                shortfalls.append(StockShortfall(item.product_id, item.quantity, None, e.error_code))
                continue
            deducted.append(item)

        if deducted:
            order = await self._record_deductions(order, deducted)
        return order, shortfalls

    async def _record_deductions(self, order: Order, deducted: list[OrderItem]) -> Order:
        """Persist the stock flags of freshly deducted items.

        A full refund can land between the write to ``paid`` and this one.
        Its restore found nothing flagged, so the stock goes back here.
        """
        product_ids = [item.product_id for item in deducted]
        for _ in range(MAX_FLAG_WRITE_ATTEMPTS):
            if order.status == OrderStatus.REFUNDED:
                logger.warning("Order refunded during settlement, returning deducted stock", order_id=order.id)
                await self._return_stock(order.id, deducted)
                return order

            expected_version = order.version
            order.mark_stock_deducted(product_ids)
            if await self.storage.update_order(order, expected_version=expected_version):
                return order

            reloaded = await self.storage.get_order(order.id)
            if reloaded is None:
                break
            order = reloaded

        logger.error(
            "Could not record stock deduction, manual reconciliation needed",
            order_id=order.id,
            product_ids=product_ids,
        )
        return order

    async def _return_stock(self, order_id: str, items: list[OrderItem]) -> None:
        for item in items:
            try:
                await self.inventory.restore(
                    item.product_id, item.quantity, MovementReason.ORDER_REFUNDED, order_id=order_id
                )
            except DomainError as e:
                logger.error(
                    "Failed to restore stock",
                    order_id=order_id,
                    product_id=item.product_id,
                    quantity=item.quantity,
                    error=e.message,
                    error_code=e.error_code,
                )


# Global reconciler instance
_reconciler: SettlementReconciler | None = None


def get_settlement_reconciler() -> SettlementReconciler:
    """Get or create the settlement reconciler."""
    global _reconciler
    if _reconciler is None:
        _reconciler = SettlementReconciler()
    return _reconciler


def reset_settlement_reconciler() -> None:
    """Reset the reconciler (for testing)."""
    global _reconciler
    _reconciler = None
