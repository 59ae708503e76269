"""
Transition authority for order fulfillment status.

Two layers decide whether a status change is legal:

1. ``BASE_TRANSITIONS`` is the role-agnostic state graph. It encodes what can
   physically happen to an order (an order cannot be un-shipped).
2. ``ROLE_ALLOWLIST`` filters the edges the graph allows by who is asking.

A request failing the graph is an :class:`InvalidTransition`; a request the
graph allows but the role does not is :class:`Unauthorized`.
"""

from typing import FrozenSet, Mapping

from .errors import AlreadyFinalized, InvalidTransition, Unauthorized
from .enums import OrderStatus, Role, TERMINAL_STATUSES

BASE_TRANSITIONS: Mapping[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED, OrderStatus.CANCELLED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELLED}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.IN_TRANSIT, OrderStatus.CANCELLED}),
    OrderStatus.IN_TRANSIT: frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
    OrderStatus.REFUNDED: frozenset(),
}

# Buyers may only cancel before the goods leave the farm
BUYER_CANCELLABLE: FrozenSet[OrderStatus] = frozenset({
    OrderStatus.PENDING,
    OrderStatus.CONFIRMED,
    OrderStatus.PROCESSING,
})

ROLE_ALLOWLIST: Mapping[Role, FrozenSet[OrderStatus]] = {
    Role.BUYER: frozenset({OrderStatus.CANCELLED}),
    Role.FARMER: frozenset({
        OrderStatus.CONFIRMED,
        OrderStatus.PROCESSING,
        OrderStatus.SHIPPED,
        OrderStatus.IN_TRANSIT,
        OrderStatus.DELIVERED,
        OrderStatus.CANCELLED,
    }),
    Role.TRANSPORTER: frozenset({
        OrderStatus.SHIPPED,
        OrderStatus.IN_TRANSIT,
        OrderStatus.DELIVERED,
    }),
    Role.ADMIN: frozenset(OrderStatus),
}


def graph_allows(current: OrderStatus, requested: OrderStatus) -> bool:
    return OrderStatus(requested) in BASE_TRANSITIONS[OrderStatus(current)]


def role_allows(current: OrderStatus, requested: OrderStatus, role: Role) -> bool:
    current, requested = OrderStatus(current), OrderStatus(requested)
    try:
        role = Role(role)
    except ValueError:
        return False
    if requested not in ROLE_ALLOWLIST.get(role, frozenset()):
        return False
    if role is Role.BUYER:
        return current in BUYER_CANCELLABLE
    return True


def allowed(current: OrderStatus, requested: OrderStatus, role: Role) -> bool:
    """True when ``role`` may move an order from ``current`` to ``requested``."""
    return graph_allows(current, requested) and role_allows(current, requested, role)


def permitted_next(current: OrderStatus, role: Role) -> FrozenSet[OrderStatus]:
    """Every status ``role`` may request from ``current``."""
    return frozenset(
        status for status in BASE_TRANSITIONS[OrderStatus(current)]
        if role_allows(current, status, role)
    )


def check(current: OrderStatus, requested: OrderStatus, role: Role) -> None:
    """
    Raise the specific error kind when the transition is not permitted.

    Terminal orders are reported as :class:`AlreadyFinalized` rather than as a
    plain graph violation so clients can stop retrying.
    """
    current, requested = OrderStatus(current), OrderStatus(requested)
    if current in TERMINAL_STATUSES:
        raise AlreadyFinalized(f"Order is already {current.value}; its status can no longer change")
    if not graph_allows(current, requested):
        raise InvalidTransition(f"Cannot move an order from {current.value} to {requested.value}")
    if not role_allows(current, requested, role):
        raise Unauthorized(f"Role {getattr(role, 'value', role)} may not move an order from {current.value} to {requested.value}")
