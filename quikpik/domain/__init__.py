"""Domain layer - Entities, value objects, pricing, state machine.

This module exports the core domain building blocks:

- **Entities**: Objects with identity (Product, Order, StockMovement)
- **Value Objects**: Immutable objects compared by value (Money, FeeSchedule, LineItem)
- **Pricing**: The money/fee calculator
- **State Machine**: Order lifecycle transitions
- **Exceptions**: Domain-specific errors and invariant violations

Example usage:
    from quikpik.domain import FeeSchedule, Money, PricedLine, compute_order_totals

    totals = compute_order_totals(
        [PricedLine(unit_price=Money.parse("2.00"), quantity=5, moq=5)],
        FeeSchedule.wholesaler_funded("0.05"),
    )
    print(totals.wholesaler_net)  # £9.50 GBP
"""

from quikpik.domain.base import AggregateRoot, Entity, ValueObject
from quikpik.domain.entities import (
    MovementReason,
    Order,
    OrderItem,
    Product,
    StatusHistoryEntry,
    StockMovement,
)
from quikpik.domain.exceptions import (
    AmountMismatch,
    BelowMinimumOrderQuantity,
    ConcurrentModification,
    CurrencyMismatchError,
    DomainError,
    DuplicatePaymentReference,
    IllegalTransition,
    InsufficientStock,
    InvalidLineItem,
    InvalidRefundAmount,
    MoneyError,
    NegativeMoneyError,
    OrderNotFound,
    ProductNotFound,
    StockContention,
    UnresolvableEvent,
)
from quikpik.domain.pricing import OrderTotals, PricedLine, compute_order_totals, parse_unit_price
from quikpik.domain.state_machines import OrderStatus, TransitionOutcome, check_order_transition
from quikpik.domain.value_objects import (
    CustomerContact,
    DeliveryInfo,
    FeeModel,
    FeeSchedule,
    FulfillmentType,
    LineItem,
    Money,
)

__all__ = [
    # Base classes
    "AggregateRoot",
    "Entity",
    "ValueObject",
    # Entities
    "MovementReason",
    "Order",
    "OrderItem",
    "Product",
    "StatusHistoryEntry",
    "StockMovement",
    # Value Objects
    "CustomerContact",
    "DeliveryInfo",
    "FeeModel",
    "FeeSchedule",
    "FulfillmentType",
    "LineItem",
    "Money",
    # Pricing
    "OrderTotals",
    "PricedLine",
    "compute_order_totals",
    "parse_unit_price",
    # State Machine
    "OrderStatus",
    "TransitionOutcome",
    "check_order_transition",
    # Exceptions
    "AmountMismatch",
    "BelowMinimumOrderQuantity",
    "ConcurrentModification",
    "CurrencyMismatchError",
    "DomainError",
    "DuplicatePaymentReference",
    "IllegalTransition",
    "InsufficientStock",
    "InvalidLineItem",
    "InvalidRefundAmount",
    "MoneyError",
    "NegativeMoneyError",
    "OrderNotFound",
    "ProductNotFound",
    "StockContention",
    "UnresolvableEvent",
]
