"""Order lifecycle state machine.

The transition table below is the single source of truth for order
status changes. Every component consults it before mutating
``Order.status``.
"""

from enum import Enum

from quikpik.domain.exceptions import IllegalTransition


class OrderStatus(str, Enum):
    """Order lifecycle states.

    State diagram:
        PENDING ─────────────────────────────────────► CANCELLED
          │                                              ▲
          │ confirm                                      │
          ▼                                              │
        CONFIRMED ───────────────────────────────────────┘
          │
          │ pay
          ▼
        PAID ────────────────────────────────────────► REFUNDED
          │                                              ▲
          │ fulfill                                      │
          ▼                                              │
        FULFILLED ───────────────────────────────────────┘
          │
          │ archive (24h after fulfillment)
          ▼
        ARCHIVED
    """

    PENDING = "pending"
    CONFIRMED = "confirmed"
    PAID = "paid"
    FULFILLED = "fulfilled"
    ARCHIVED = "archived"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"

    def can_transition_to(self, target: "OrderStatus") -> bool:
        """Check if transition to target state is valid."""
        return target in _ORDER_TRANSITIONS.get(self, set())

    def allowed_transitions(self) -> list["OrderStatus"]:
        """Get list of valid target states, in declaration order."""
        allowed = _ORDER_TRANSITIONS.get(self, set())
        return [status for status in OrderStatus if status in allowed]

    def is_terminal(self) -> bool:
        """Check if this is a terminal (final) state."""
        return len(_ORDER_TRANSITIONS.get(self, set())) == 0

    def is_settled(self) -> bool:
        """Check if payment has been applied (paid or any later state).

        Cancelled orders never received a payment and are not settled.
        """
        return self in _SETTLED_STATES

    def is_cancellable(self) -> bool:
        return self.can_transition_to(OrderStatus.CANCELLED)

    def is_refundable(self) -> bool:
        return self.can_transition_to(OrderStatus.REFUNDED)


# Order state transitions (defined outside enum to avoid Enum restrictions)
_ORDER_TRANSITIONS: dict[OrderStatus, set[OrderStatus]] = {
    OrderStatus.PENDING: {OrderStatus.CONFIRMED, OrderStatus.CANCELLED},
    OrderStatus.CONFIRMED: {OrderStatus.PAID, OrderStatus.CANCELLED},
    OrderStatus.PAID: {OrderStatus.FULFILLED, OrderStatus.REFUNDED},
    OrderStatus.FULFILLED: {OrderStatus.ARCHIVED, OrderStatus.REFUNDED},
    OrderStatus.CANCELLED: set(),  # Terminal state
    OrderStatus.ARCHIVED: set(),  # Terminal state
    OrderStatus.REFUNDED: set(),  # Terminal state
}

_SETTLED_STATES = frozenset(
    {OrderStatus.PAID, OrderStatus.FULFILLED, OrderStatus.ARCHIVED, OrderStatus.REFUNDED}
)

# Path settlement walks to reach PAID from a pre-payment state
SETTLEMENT_PATH: dict[OrderStatus, list[OrderStatus]] = {
    OrderStatus.PENDING: [OrderStatus.CONFIRMED, OrderStatus.PAID],
    OrderStatus.CONFIRMED: [OrderStatus.PAID],
}


class TransitionOutcome(str, Enum):
    """Result of requesting a status transition.

    ALREADY_IN_STATE is a soft success: the order is already where the
    caller wanted it, so repeating a transition is a no-op.
    """

    APPLIED = "applied"
    ALREADY_IN_STATE = "already_in_state"


def check_order_transition(
    order_id: str,
    current_status: OrderStatus,
    target_status: OrderStatus,
) -> TransitionOutcome:
    """Validate an order status transition.

    Args:
        order_id: Order identifier for error message.
        current_status: Current order status.
        target_status: Target order status.

    Returns:
        APPLIED if the transition may be applied, ALREADY_IN_STATE if
        the order is already in the target status.

    Raises:
        IllegalTransition: If transition is not in the transition table.
    """
    if current_status == target_status:
        return TransitionOutcome.ALREADY_IN_STATE
    if not current_status.can_transition_to(target_status):
        raise IllegalTransition(
            order_id=order_id,
            current_state=current_status.value,
            target_state=target_status.value,
            allowed_transitions=[s.value for s in current_status.allowed_transitions()],
        )
    return TransitionOutcome.APPLIED
