"""
Order status transitions.

    pending         -> paid | payment_failed | cancelled
    payment_failed  -> paid | cancelled
    paid            -> processing | refunded
    processing      -> shipped | refunded
    shipped         -> delivered | refunded

delivered, cancelled and refunded are terminal.
"""

from typing import Dict, FrozenSet, List

from core.errors import ConflictError

from .models import OrderStatus

TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.PAID, OrderStatus.PAYMENT_FAILED, OrderStatus.CANCELLED}),
    OrderStatus.PAYMENT_FAILED: frozenset({OrderStatus.PAID, OrderStatus.CANCELLED}),
    OrderStatus.PAID: frozenset({OrderStatus.PROCESSING, OrderStatus.REFUNDED}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.SHIPPED, OrderStatus.REFUNDED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED, OrderStatus.REFUNDED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
    OrderStatus.REFUNDED: frozenset(),
}

TERMINAL_STATUSES = frozenset(s for s, targets in TRANSITIONS.items() if not targets)

# Statuses reached only after a successful payment
PAID_STATUSES = frozenset({
    OrderStatus.PAID, OrderStatus.PROCESSING, OrderStatus.SHIPPED,
    OrderStatus.DELIVERED, OrderStatus.REFUNDED,
})


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return target in TRANSITIONS[current]


def sources_for(target: OrderStatus) -> List[OrderStatus]:
    """Statuses from which `target` may be entered"""
    return [s for s, targets in TRANSITIONS.items() if target in targets]


def check_transition(order_id: str, current: OrderStatus, target: OrderStatus) -> None:
    """Raise ConflictError unless current -> target is allowed"""
    if can_transition(current, target):
        return
    if current in TERMINAL_STATUSES:
        message = f"Order {order_id} is {current.value} (terminal), cannot move to {target.value}"
    else:
        message = f"Order {order_id} is {current.value}, cannot move to {target.value}"
    raise ConflictError(message, details={"status": current.value, "target": target.value})
