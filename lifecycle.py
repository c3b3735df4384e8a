# lifecycle.py
"""
Order status transition rules.

No I/O and no side effects: the orchestrator consults these before every
status patch, so a transition is never issued twice or out of order.
"""
from models import Order, OrderStatus


class InvalidTransitionError(Exception):
    pass


TERMINAL_STATES = {
    OrderStatus.COMPLETED,
    OrderStatus.CANCELLED,
}

ALLOWED_TRANSITIONS = {
    OrderStatus.PENDING: {OrderStatus.CONFIRMED, OrderStatus.CANCELLED},
    OrderStatus.CONFIRMED: {OrderStatus.DELIVERING},
    OrderStatus.DELIVERING: {OrderStatus.COMPLETED},
}

# The fixed chain applied once payment is settled
AUTO_ADVANCE_STEPS = (
    (OrderStatus.PENDING, OrderStatus.CONFIRMED),
    (OrderStatus.CONFIRMED, OrderStatus.DELIVERING),
    (OrderStatus.DELIVERING, OrderStatus.COMPLETED),
)

_RANK = {
    OrderStatus.PENDING: 0,
    OrderStatus.CONFIRMED: 1,
    OrderStatus.DELIVERING: 2,
    OrderStatus.COMPLETED: 3,
}


def can_transition(*, from_status: OrderStatus, to_status: OrderStatus) -> bool:
    if from_status in TERMINAL_STATES:
        return False
    return to_status in ALLOWED_TRANSITIONS.get(from_status, set())


def validate_transition(*, order: Order, target_status: OrderStatus):
    if not can_transition(from_status=order.status, to_status=target_status):
        raise InvalidTransitionError(
            f"Order {order.id} cannot transition from "
            f"'{order.status.value}' to '{target_status.value}'"
        )


def is_forward_sequence(statuses) -> bool:
    """
    True when `statuses` is a strictly increasing walk along
    PENDING, CONFIRMED, DELIVERING, COMPLETED, or PENDING then CANCELLED.
    """
    statuses = list(statuses)
    if OrderStatus.CANCELLED in statuses:
        return statuses[-1] == OrderStatus.CANCELLED and statuses[:-1] in ([], [OrderStatus.PENDING])
    ranks = [_RANK[s] for s in statuses]
    return all(b > a for a, b in zip(ranks, ranks[1:]))
