"""Tests for domain entities."""

from datetime import datetime, timedelta, timezone

import pytest

from quikpik.domain import (
    FeeSchedule,
    IllegalTransition,
    InvalidRefundAmount,
    Money,
    Order,
    OrderItem,
    OrderStatus,
    PricedLine,
    Product,
    TransitionOutcome,
    compute_order_totals,
)

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


def make_order(quantity: int = 5, unit_cents: int = 200) -> Order:
    unit_price = Money(amount_cents=unit_cents)
    schedule = FeeSchedule.wholesaler_funded("0.05")
    totals = compute_order_totals([PricedLine(unit_price=unit_price, quantity=quantity)], schedule)
    return Order.create(
        wholesaler_id="wholesaler-1",
        retailer_id="retailer-1",
        items=[OrderItem(product_id="1", product_name="Crisps", quantity=quantity, unit_price=unit_price)],
        totals=totals,
        fee_schedule=schedule,
    )


class TestProduct:
    """Tests for Product pricing."""

    @pytest.fixture
    def product(self) -> Product:
        return Product(
            id="1",
            wholesaler_id="wholesaler-1",
            name="Crisps",
            price=Money(amount_cents=200),
            promo_price=Money(amount_cents=150),
            promo_active=True,
            promo_starts_at=NOW - timedelta(days=1),
            promo_ends_at=NOW + timedelta(days=1),
        )

    def test_promo_price_inside_window(self, product: Product) -> None:
        """Active promotions price at the promo price."""
        assert product.effective_price(NOW) == Money(amount_cents=150)

    def test_list_price_outside_window(self, product: Product) -> None:
        """Expired promotions fall back to the list price."""
        assert product.effective_price(NOW + timedelta(days=2)) == Money(amount_cents=200)

    def test_inactive_promo_ignored(self, product: Product) -> None:
        """A switched-off promotion never applies."""
        product.promo_active = False
        assert product.effective_price(NOW) == Money(amount_cents=200)

    def test_active_promo_without_price(self, product: Product) -> None:
        """A promotion switched on without a promo price charges the list price."""
        product.promo_price = None
        assert not product.promotion_active(NOW)
        assert product.effective_price(NOW) == Money(amount_cents=200)


class TestOrderCreation:
    """Tests for Order.create."""

    def test_starts_pending_with_history(self) -> None:
        """New orders are pending with one history entry."""
        order = make_order()
        assert order.status == OrderStatus.PENDING
        assert len(order.status_history) == 1
        assert order.status_history[0].from_status is None

    def test_totals_frozen(self) -> None:
        """Totals come from the calculator."""
        order = make_order()
        assert order.subtotal == Money(amount_cents=1000)
        assert order.platform_fee == Money(amount_cents=50)
        assert order.wholesaler_net == Money(amount_cents=950)
        assert order.total == Money(amount_cents=1000)

    def test_item_line_total(self) -> None:
        """Item line totals are unit price times quantity."""
        order = make_order()
        assert order.items[0].line_total == Money(amount_cents=1000)


class TestOrderTransitions:
    """Tests for Order.transition_to."""

    def test_transition_records_history(self) -> None:
        """Applied transitions append to the history and bump the version."""
        order = make_order()
        version = order.version
        outcome = order.transition_to(OrderStatus.CONFIRMED, actor="wholesaler", now=NOW)
        assert outcome == TransitionOutcome.APPLIED
        assert order.status_history[-1].from_status == OrderStatus.PENDING
        assert order.status_history[-1].to_status == OrderStatus.CONFIRMED
        assert order.version == version + 1

    def test_repeat_transition_is_noop(self) -> None:
        """Repeating a transition changes nothing."""
        order = make_order()
        order.transition_to(OrderStatus.CONFIRMED)
        history = len(order.status_history)
        assert order.transition_to(OrderStatus.CONFIRMED) == TransitionOutcome.ALREADY_IN_STATE
        assert len(order.status_history) == history

    def test_illegal_transition_leaves_order_unchanged(self) -> None:
        """Illegal transitions raise and do not mutate."""
        order = make_order()
        with pytest.raises(IllegalTransition):
            order.transition_to(OrderStatus.PAID)
        assert order.status == OrderStatus.PENDING

    def test_fulfill_schedules_archive(self) -> None:
        """Fulfillment sets the archive due time."""
        order = make_order()
        order.transition_to(OrderStatus.CONFIRMED)
        order.transition_to(OrderStatus.PAID, now=NOW)
        order.transition_to(OrderStatus.FULFILLED, now=NOW, archive_after=timedelta(hours=24))
        assert order.paid_at == NOW
        assert order.archive_due_at == NOW + timedelta(hours=24)
        assert not order.is_archive_due(NOW + timedelta(hours=23))
        assert order.is_archive_due(NOW + timedelta(hours=24))

    def test_cancel_keeps_reason(self) -> None:
        """Cancellation stores the reason."""
        order = make_order()
        order.transition_to(OrderStatus.CANCELLED, reason="Out of stock", now=NOW)
        assert order.cancelled_reason == "Out of stock"
        assert order.cancelled_at == NOW


class TestOrderRefunds:
    """Tests for Order.record_refund."""

    def test_partial_refunds_accumulate(self) -> None:
        """Partial refunds add up until the total is reached."""
        order = make_order()
        assert order.record_refund(Money(amount_cents=300), "damaged") is False
        assert order.refunded_amount == Money(amount_cents=300)
        assert order.refundable_amount == Money(amount_cents=700)
        assert order.record_refund(Money(amount_cents=700)) is True
        assert len(order.refund_notes) == 2
        assert "damaged" in order.refund_notes[0]

    def test_refund_above_balance_rejected(self) -> None:
        """Refunds cannot exceed the refundable balance."""
        order = make_order()
        with pytest.raises(InvalidRefundAmount):
            order.record_refund(Money(amount_cents=1001))

    def test_zero_refund_rejected(self) -> None:
        """A refund must be positive."""
        order = make_order()
        with pytest.raises(InvalidRefundAmount):
            order.record_refund(Money.zero())
