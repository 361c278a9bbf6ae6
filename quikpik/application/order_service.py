"""Order application service.

Orchestrates order lifecycle management including:
- Submitting carts through the order builder
- Attaching a payment reference before checkout
- Confirming, fulfilling, archiving, cancelling and refunding orders
- Restoring deducted stock on cancellation and refund
- Sweeping fulfilled orders whose archive time has passed
"""

import asyncio
import contextlib
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

import structlog

from quikpik.application.inventory_service import InventoryAdjuster
from quikpik.application.order_builder import OrderBuilder
from quikpik.domain.base import utcnow
from quikpik.domain.entities import MovementReason, Order, OrderItem
from quikpik.domain.exceptions import ConcurrentModification, DomainError, OrderNotFound
from quikpik.domain.state_machines import OrderStatus, TransitionOutcome, check_order_transition
from quikpik.domain.value_objects import CustomerContact, DeliveryInfo, FeeSchedule, LineItem, Money
from quikpik.infrastructure.config import settings
from quikpik.infrastructure.storage import Storage, get_storage

logger = structlog.get_logger()

MAX_WRITE_ATTEMPTS = 3


# ============================================================================
# Service Result Types
# ============================================================================


@dataclass
class TransitionResult:
    """Result of a lifecycle operation."""

    order: Order
    outcome: TransitionOutcome
    restored_items: list[str] = field(default_factory=list)

    @property
    def applied(self) -> bool:
        return self.outcome == TransitionOutcome.APPLIED


@dataclass
class RefundResult:
    """Result of a (partial) refund."""

    order: Order
    amount: Money
    fully_refunded: bool
    outcome: TransitionOutcome | None = None
    restored_items: list[str] = field(default_factory=list)


@dataclass
class PaymentInstructions:
    """What the caller must put on the payment it initiates."""

    order_id: str
    payment_reference: str
    amount: Money
    metadata: dict[str, Any]


@dataclass
class SweepResult:
    """Result of one auto-archive sweep."""

    archived: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)


# ============================================================================
# Order Service
# ============================================================================


class OrderService:
    """Service for order lifecycle management."""

    def __init__(
        self,
        storage: Storage | None = None,
        builder: OrderBuilder | None = None,
        inventory: InventoryAdjuster | None = None,
        fee_schedule: FeeSchedule | None = None,
        archive_after: timedelta | None = None,
    ) -> None:
        """Initialize order service.

        Args:
            storage: Storage backend.
            builder: Order builder for cart submission.
            inventory: Adjuster used to restore stock.
            fee_schedule: Fee schedule applied to new orders.
            archive_after: Delay between fulfillment and auto-archive.
        """
        self.storage = storage or get_storage()
        self.builder = builder or OrderBuilder(self.storage)
        self.inventory = inventory or InventoryAdjuster(self.storage)
        self.fee_schedule = fee_schedule or settings.fee_schedule()
        self.archive_after = archive_after or timedelta(hours=settings.auto_archive_after_hours)

    async def submit_cart(
        self,
        line_items: Iterable[LineItem],
        wholesaler_id: str,
        retailer_id: str,
        delivery: DeliveryInfo | None = None,
        customer: CustomerContact | None = None,
    ) -> Order:
        """Build a pending order from a retailer's cart."""
        return await self.builder.build_order(
            line_items,
            wholesaler_id=wholesaler_id,
            retailer_id=retailer_id,
            delivery=delivery,
            fee_schedule=self.fee_schedule,
            customer=customer,
        )

    async def get_order(self, order_id: str) -> Order:
        """Get an order.

        Raises:
            OrderNotFound: If the order does not exist.
        """
        order = await self.storage.get_order(order_id)
        if order is None:
            raise OrderNotFound(order_id)
        return order

    async def attach_payment_reference(self, order_id: str, payment_reference: str) -> PaymentInstructions:
        """Record the processor payment id created for an order.

        Returns the amount to charge and the metadata to put on the
        payment so the confirmation can be tied back to the order.

        Raises:
            OrderNotFound: If the order does not exist.
            IllegalTransition: If the order can no longer be paid.
            DuplicatePaymentReference: If another order holds the reference.
        """

        def attach(order: Order) -> None:
            if order.status not in (OrderStatus.PENDING, OrderStatus.CONFIRMED):
                check_order_transition(order.id, order.status, OrderStatus.PAID)
            order.attach_payment_reference(payment_reference)

        order = await self._update(order_id, attach, "payment reference update")
        logger.info("Payment reference attached", order_id=order.id, payment_reference=payment_reference)

        return PaymentInstructions(
            order_id=order.id,
            payment_reference=payment_reference,
            amount=order.total,
            metadata={"order_id": order.id, "wholesaler_id": order.wholesaler_id},
        )

    async def _update(self, order_id: str, mutate: Callable[[Order], None], operation: str) -> Order:
        """Read, change and write back an order, re-reading when another write wins.

        ``mutate`` runs against fresh state on every attempt, so its checks
        always see the latest stored order.

        Raises:
            ConcurrentModification: If every attempt lost its write.
        """
        for _ in range(MAX_WRITE_ATTEMPTS):
            order = await self.get_order(order_id)
            expected_version = order.version
            mutate(order)
            if await self.storage.update_order(order, expected_version=expected_version):
                return order
            logger.info("Order changed concurrently, re-reading", order_id=order_id, operation=operation)
        raise ConcurrentModification(order_id, operation)

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    async def _transition(
        self,
        order_id: str,
        target: OrderStatus,
        actor: str,
        reason: str | None = None,
        metadata: dict[str, Any] | None = None,
        now: datetime | None = None,
    ) -> tuple[Order, TransitionOutcome, OrderStatus]:
        """Apply a transition with a conditional write, retrying on races.

        Returns the order, the outcome and the status it moved from.
        """
        for _ in range(MAX_WRITE_ATTEMPTS):
            order = await self.get_order(order_id)
            previous = order.status
            expected_version = order.version
            outcome = order.transition_to(
                target,
                actor=actor,
                reason=reason,
                metadata=metadata,
                now=now,
                archive_after=self.archive_after if target == OrderStatus.FULFILLED else None,
            )
            if outcome == TransitionOutcome.ALREADY_IN_STATE:
                logger.info("Order already in requested status", order_id=order_id, status=target.value)
                return order, outcome, previous

            if await self.storage.update_order_status(
                order, expected_status=previous, expected_version=expected_version
            ):
                logger.info(
                    "Order status updated",
                    order_id=order_id,
                    from_status=previous.value,
                    to_status=target.value,
                    actor=actor,
                )
                return order, outcome, previous

            logger.info("Order changed concurrently, re-reading", order_id=order_id)

        # The last re-read decides: already there, or illegal from where it is now
        order = await self.get_order(order_id)
        outcome = order.transition_to(target, actor=actor, reason=reason)
        if outcome == TransitionOutcome.ALREADY_IN_STATE:
            return order, outcome, order.status
        raise ConcurrentModification(order_id, f"transition to '{target.value}'")

    async def confirm_order(self, order_id: str, actor: str = "wholesaler") -> TransitionResult:
        """Wholesaler accepts a pending order before payment."""
        order, outcome, _ = await self._transition(order_id, OrderStatus.CONFIRMED, actor, "Order confirmed")
        return TransitionResult(order=order, outcome=outcome)

    async def fulfill_order(self, order_id: str, actor: str = "wholesaler", now: datetime | None = None) -> TransitionResult:
        """Mark a paid order fulfilled and schedule its auto-archive."""
        order, outcome, _ = await self._transition(order_id, OrderStatus.FULFILLED, actor, "Order fulfilled", now=now)
        return TransitionResult(order=order, outcome=outcome)

    async def archive_order(self, order_id: str, actor: str = "wholesaler") -> TransitionResult:
        order, outcome, _ = await self._transition(order_id, OrderStatus.ARCHIVED, actor, "Order archived")
        return TransitionResult(order=order, outcome=outcome)

    async def cancel_order(self, order_id: str, reason: str, cancelled_by: str = "wholesaler") -> TransitionResult:
        """Cancel an order and restore any stock deducted for it.

        Raises:
            OrderNotFound: If the order does not exist.
            IllegalTransition: If the order is paid or beyond.
        """
        order, outcome, _ = await self._transition(order_id, OrderStatus.CANCELLED, cancelled_by, reason)
        order, restored = await self._restore_stock(order, MovementReason.ORDER_CANCELLED)
        return TransitionResult(order=order, outcome=outcome, restored_items=restored)

    async def refund_order(
        self,
        order_id: str,
        amount: Money | None = None,
        reason: str = "",
        actor: str = "wholesaler",
    ) -> RefundResult:
        """Refund all or part of a paid order.

        A full refund (or partial refunds adding up to the total) moves
        the order to ``refunded`` and restores its stock. A partial refund
        leaves the status unchanged. The refunded amount and the status
        change are written together, conditional on the version read.

        Args:
            order_id: Order to refund.
            amount: Amount to refund; the remaining refundable balance when None.
            reason: Refund reason.
            actor: Who issued the refund.

        Raises:
            OrderNotFound: If the order does not exist.
            IllegalTransition: If the order cannot be refunded from its status.
            InvalidRefundAmount: If the amount exceeds the refundable balance.
            ConcurrentModification: If the order kept changing underneath.
        """
        for _ in range(MAX_WRITE_ATTEMPTS):
            order = await self.get_order(order_id)
            if order.status == OrderStatus.REFUNDED:
                # Retries pick up stock a previous attempt failed to return
                order, restored = await self._restore_stock(order, MovementReason.ORDER_REFUNDED)
                return RefundResult(
                    order=order,
                    amount=Money.zero(order.currency),
                    fully_refunded=True,
                    outcome=TransitionOutcome.ALREADY_IN_STATE,
                    restored_items=restored,
                )
            if not order.status.is_refundable():
                check_order_transition(order.id, order.status, OrderStatus.REFUNDED)

            previous = order.status
            expected_version = order.version
            if amount is None and order.refundable_amount.is_zero():
                # Balance already refunded, only the status change is missing
                refund = Money.zero(order.currency)
                fully_refunded = True
            else:
                refund = amount if amount is not None else order.refundable_amount
                fully_refunded = order.record_refund(refund, reason)

            if fully_refunded:
                order.transition_to(OrderStatus.REFUNDED, actor=actor, reason=reason or "Order refunded")
                written = await self.storage.update_order_status(
                    order, expected_status=previous, expected_version=expected_version
                )
            else:
                written = await self.storage.update_order(order, expected_version=expected_version)

            if not written:
                logger.info("Order changed concurrently, re-reading", order_id=order_id, operation="refund")
                continue

            logger.info(
                "Refund recorded",
                order_id=order_id,
                amount_cents=refund.amount_cents,
                refunded_cents=order.refunded_amount.amount_cents if order.refunded_amount else 0,
                fully_refunded=fully_refunded,
            )
            if not fully_refunded:
                return RefundResult(order=order, amount=refund, fully_refunded=False)

            order, restored = await self._restore_stock(order, MovementReason.ORDER_REFUNDED)
            return RefundResult(
                order=order,
                amount=refund,
                fully_refunded=True,
                outcome=TransitionOutcome.APPLIED,
                restored_items=restored,
            )

        raise ConcurrentModification(order_id, "refund")

    async def _restore_stock(self, order: Order, reason: MovementReason) -> tuple[Order, list[str]]:
        """Return the stock of every item still flagged as deducted.

        The cleared flags are persisted before any stock moves, so two
        callers never restore the same item. Items whose restore fails are
        flagged again and picked up by the next cancel or refund call.
        """
        if not any(item.stock_deducted for item in order.items):
            return order, []

        released: list[OrderItem] = []

        def release(fresh: Order) -> None:
            released[:] = fresh.release_deducted_items()

        order = await self._update(order.id, release, "stock release")

        restored: list[str] = []
        failed: list[str] = []
        for item in released:
            try:
                await self.inventory.restore(item.product_id, item.quantity, reason, order_id=order.id)
            except DomainError as e:
                logger.error(
                    "Failed to restore stock",
                    order_id=order.id,
                    product_id=item.product_id,
                    quantity=item.quantity,
                    error=e.message,
                    error_code=e.error_code,
                )
                failed.append(item.product_id)
                continue
            restored.append(item.product_id)

        if failed:
            order = await self._update(order.id, lambda fresh: fresh.mark_stock_deducted(failed), "stock release")
        return order, restored

    # -------------------------------------------------------------------------
    # Auto-archive
    # -------------------------------------------------------------------------

    async def sweep_auto_archive(self, now: datetime | None = None) -> SweepResult:
        """Archive every fulfilled order whose archive time has passed.

        Safe to run repeatedly and concurrently: orders that moved on
        (refunded, or archived by someone else) are skipped.
        """
        now = now or utcnow()
        result = SweepResult()
        for order in await self.storage.list_orders_due_for_archive(now):
            try:
                _, outcome, _ = await self._transition(
                    order.id, OrderStatus.ARCHIVED, "system", "Auto-archived after fulfillment", now=now
                )
            except DomainError as e:
                logger.info("Skipping auto-archive", order_id=order.id, reason=e.message)
                result.skipped.append(order.id)
                continue
            if outcome == TransitionOutcome.APPLIED:
                result.archived.append(order.id)
            else:
                result.skipped.append(order.id)

        if result.archived:
            logger.info("Auto-archive sweep", archived=len(result.archived), skipped=len(result.skipped))
        return result


class ArchiveSweeper:
    """Runs the auto-archive sweep periodically in the background."""

    def __init__(self, service_factory: Callable[[], "OrderService"] | None = None, interval_seconds: float | None = None) -> None:
        self._service_factory = service_factory
        self.interval_seconds = interval_seconds or settings.archive_sweep_interval_seconds
        self._task: asyncio.Task[None] | None = None

    def _service(self) -> OrderService:
        if self._service_factory is not None:
            return self._service_factory()
        return get_order_service()

    async def _run(self) -> None:
        while True:
            try:
                await self._service().sweep_auto_archive()
            except Exception as e:
                logger.error("Auto-archive sweep failed", error=str(e), error_type=type(e).__name__)
            await asyncio.sleep(self.interval_seconds)

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run())
            logger.info("Archive sweeper started", interval_seconds=self.interval_seconds)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("Archive sweeper stopped")


# Global service instance
_order_service: OrderService | None = None


def get_order_service() -> OrderService:
    """Get or create the order service instance."""
    global _order_service
    if _order_service is None:
        _order_service = OrderService()
    return _order_service


def reset_order_service() -> None:
    """Reset the order service (for testing)."""
    global _order_service
    _order_service = None
