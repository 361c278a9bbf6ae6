"""Domain exceptions.

All domain-level errors that represent business rule violations.
Each error carries a machine-readable ``error_code`` and a ``details``
mapping so the API layer can return an actionable response without
parsing messages.
"""

from typing import Any


class DomainError(Exception):
    """Base class for all domain exceptions."""

    error_code: str = "DOMAIN_ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize domain error.

        Args:
            message: Human-readable error message.
            details: Optional dictionary with additional error context.
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}


# ============================================================================
# Line Item / Cart Errors
# ============================================================================


class InvalidLineItem(DomainError):
    """Raised when a line item has an invalid quantity or price."""

    error_code = "INVALID_LINE_ITEM"

    def __init__(self, reason: str, product_id: str | None = None, **details: Any) -> None:
        """Initialize invalid line item error.

        Args:
            reason: Explanation of why the line item is invalid.
            product_id: Offending product, when known.
            **details: Extra context (quantity, unit price, moq).
        """
        prefix = f"Invalid line item for product {product_id}" if product_id else "Invalid line item"
        super().__init__(
            f"{prefix}: {reason}",
            details={"product_id": product_id, "reason": reason, **details},
        )


class BelowMinimumOrderQuantity(DomainError):
    """Raised when a requested quantity is below the product's MOQ."""

    error_code = "BELOW_MINIMUM_ORDER_QUANTITY"

    def __init__(self, product_id: str, quantity: int, moq: int, product_name: str | None = None) -> None:
        label = product_name or product_id
        super().__init__(
            f"{label} has a minimum order quantity of {moq}; requested {quantity}",
            details={
                "product_id": product_id,
                "product_name": product_name,
                "requested_quantity": quantity,
                "minimum_order_quantity": moq,
            },
        )
        self.product_id = product_id


class InsufficientStock(DomainError):
    """Raised when a product does not have enough stock."""

    error_code = "INSUFFICIENT_STOCK"

    def __init__(self, product_id: str, requested: int, available: int, product_name: str | None = None) -> None:
        label = product_name or product_id
        super().__init__(
            f"Only {available} of {label} in stock; requested {requested}",
            details={
                "product_id": product_id,
                "product_name": product_name,
                "requested_quantity": requested,
                "available_stock": available,
            },
        )
        self.product_id = product_id
        self.requested = requested
        self.available = available


class ProductNotFound(DomainError):
    """Raised when a referenced product does not exist."""

    error_code = "PRODUCT_NOT_FOUND"

    def __init__(self, product_id: str) -> None:
        super().__init__(
            f"Product not found: {product_id}",
            details={"product_id": product_id},
        )
        self.product_id = product_id


class StockContention(DomainError):
    """Raised when a stock update keeps losing its compare-and-swap."""

    error_code = "STOCK_CONTENTION"

    def __init__(self, product_id: str, attempts: int) -> None:
        super().__init__(
            f"Stock for product {product_id} kept changing after {attempts} attempts",
            details={"product_id": product_id, "attempts": attempts},
        )
        self.product_id = product_id
        self.attempts = attempts


# ============================================================================
# Order Errors
# ============================================================================


class OrderNotFound(DomainError):
    """Raised when an order does not exist."""

    error_code = "ORDER_NOT_FOUND"

    def __init__(self, order_id: str) -> None:
        super().__init__(f"Order not found: {order_id}", details={"order_id": order_id})


class IllegalTransition(DomainError):
    """Raised when an order status transition is not in the transition table."""

    error_code = "ILLEGAL_TRANSITION"

    def __init__(
        self,
        order_id: str,
        current_state: str,
        target_state: str,
        allowed_transitions: list[str] | None = None,
    ) -> None:
        """Initialize illegal transition error.

        Args:
            order_id: ID of the order.
            current_state: Current state of the order.
            target_state: Attempted target state.
            allowed_transitions: States reachable from the current state.
        """
        allowed = allowed_transitions or []
        super().__init__(
            f"Cannot transition Order({order_id}) from '{current_state}' to '{target_state}'. "
            f"Allowed transitions: {allowed}",
            details={
                "order_id": order_id,
                "current_state": current_state,
                "target_state": target_state,
                "allowed_transitions": allowed,
            },
        )


class InvalidRefundAmount(DomainError):
    """Raised when a refund exceeds the refundable balance of an order."""

    error_code = "INVALID_REFUND_AMOUNT"

    def __init__(self, order_id: str, requested_cents: int, refundable_cents: int) -> None:
        super().__init__(
            f"Refund of {requested_cents} cents exceeds refundable balance of "
            f"{refundable_cents} cents on order {order_id}",
            details={
                "order_id": order_id,
                "requested_cents": requested_cents,
                "refundable_cents": refundable_cents,
            },
        )


class DuplicatePaymentReference(DomainError):
    """Raised by storage when an order already exists for a payment reference."""

    error_code = "DUPLICATE_PAYMENT_REFERENCE"

    def __init__(self, payment_reference: str) -> None:
        super().__init__(
            f"An order already exists for payment {payment_reference}",
            details={"payment_reference": payment_reference},
        )
        self.payment_reference = payment_reference


# ============================================================================
# Settlement Errors
# ============================================================================


class UnresolvableEvent(DomainError):
    """Raised when a payment event carries no usable order locator.

    The event is malformed rather than transient, so it is reported
    and never retried.
    """

    error_code = "UNRESOLVABLE_EVENT"

    def __init__(self, event_id: str, reason: str) -> None:
        super().__init__(
            f"Cannot resolve payment event {event_id} to an order: {reason}",
            details={"event_id": event_id, "reason": reason},
        )


class AmountMismatch(DomainError):
    """Raised when a confirmed payment amount differs from the order total."""

    error_code = "AMOUNT_MISMATCH"

    def __init__(
        self,
        order_id: str,
        expected_cents: int,
        received_cents: int,
        expected_currency: str,
        received_currency: str,
    ) -> None:
        super().__init__(
            f"Payment for order {order_id} was {received_cents} {received_currency}, "
            f"expected {expected_cents} {expected_currency}",
            details={
                "order_id": order_id,
                "expected_cents": expected_cents,
                "received_cents": received_cents,
                "expected_currency": expected_currency,
                "received_currency": received_currency,
            },
        )


# ============================================================================
# Money Errors
# ============================================================================


class MoneyError(DomainError):
    """Base class for money-related errors."""

    error_code = "MONEY_ERROR"


class CurrencyMismatchError(MoneyError):
    """Raised when attempting to combine money with different currencies."""

    error_code = "CURRENCY_MISMATCH"

    def __init__(self, currency1: str, currency2: str) -> None:
        super().__init__(
            f"Cannot combine money with different currencies: {currency1} and {currency2}",
            details={"currency1": currency1, "currency2": currency2},
        )


class NegativeMoneyError(MoneyError):
    """Raised when attempting to create money with negative amount."""

    error_code = "NEGATIVE_MONEY"

    def __init__(self, amount: int) -> None:
        super().__init__(
            f"Money amount cannot be negative: {amount}",
            details={"amount": amount},
        )


# ============================================================================
# Concurrency Errors
# ============================================================================


class ConcurrentModification(DomainError):
    """Raised when an order keeps changing underneath a conditional write."""

    error_code = "CONCURRENT_MODIFICATION"

    def __init__(self, order_id: str, operation: str) -> None:
        super().__init__(
            f"Order {order_id} kept changing; {operation} not applied",
            details={"order_id": order_id, "operation": operation},
        )
