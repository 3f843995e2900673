"""
Order State Machine

Pure transition rules for the order lifecycle:

    PENDING_PAYMENT -> PAID -> IN_PROGRESS -> READY_FOR_PICKUP -> SERVED
    any non-terminal -> CANCELLED

Nothing here touches the store. The service layer asks this module which
predecessor statuses a requested target allows, then performs a conditional
update keyed on exactly those statuses.
"""

from typing import Optional

from dineflow.core.exceptions import AuthorizationError, ConflictError
from dineflow.models import ActorRole, OrderStatus

TERMINAL_STATUSES = frozenset({OrderStatus.SERVED, OrderStatus.CANCELLED})

NON_TERMINAL_STATUSES = frozenset(s for s in OrderStatus if s not in TERMINAL_STATUSES)

# target -> the only status it may be reached from
PREDECESSORS: dict[OrderStatus, OrderStatus] = {
    OrderStatus.PAID: OrderStatus.PENDING_PAYMENT,
    OrderStatus.IN_PROGRESS: OrderStatus.PAID,
    OrderStatus.READY_FOR_PICKUP: OrderStatus.IN_PROGRESS,
    OrderStatus.SERVED: OrderStatus.READY_FOR_PICKUP,
}

AUTHORITY: dict[OrderStatus, frozenset[ActorRole]] = {
    OrderStatus.PAID: frozenset({ActorRole.CUSTOMER}),
    OrderStatus.IN_PROGRESS: frozenset({ActorRole.KITCHEN, ActorRole.ADMIN}),
    OrderStatus.READY_FOR_PICKUP: frozenset({ActorRole.KITCHEN, ActorRole.ADMIN}),
    OrderStatus.SERVED: frozenset({ActorRole.STAFF, ActorRole.ADMIN}),
    OrderStatus.CANCELLED: frozenset({ActorRole.STAFF, ActorRole.ADMIN}),
}

# Statuses at which a payment is considered confirmed
PAYMENT_CONFIRMED_STATUSES = frozenset({
    OrderStatus.PAID,
    OrderStatus.IN_PROGRESS,
    OrderStatus.READY_FOR_PICKUP,
    OrderStatus.SERVED,
})


def is_terminal(status: OrderStatus) -> bool:
    return status in TERMINAL_STATUSES


def allowed_predecessors(
    order_id: int,
    target: OrderStatus,
    expected: Optional[OrderStatus] = None,
) -> frozenset[OrderStatus]:
    """
    Return the statuses the order must currently be in for ``target`` to apply.

    ``expected`` is the status the caller last observed. For cancellation it
    narrows the compare-and-swap to that single status; for every other target
    it has to agree with the table.

    Raises:
        ConflictError: If no legal transition leads to ``target`` from ``expected``
    """
    if target == OrderStatus.CANCELLED:
        if expected is None:
            return NON_TERMINAL_STATUSES
        if expected in TERMINAL_STATUSES:
            raise ConflictError(order_id, expected.value)
        return frozenset({expected})

    predecessor = PREDECESSORS.get(target)
    if predecessor is None:
        # Nothing transitions into PENDING_PAYMENT; it is only the creation status
        raise ConflictError(
            order_id,
            expected.value if expected else None,
            message=f"Order #{order_id} cannot be moved to {target.value}",
        )
    if expected is not None and expected != predecessor:
        raise ConflictError(
            order_id,
            expected.value,
            message=(
                f"Order #{order_id} cannot go from {expected.value} "
                f"to {target.value}"
            ),
        )
    return frozenset({predecessor})


def check_authority(role: Optional[ActorRole], target: OrderStatus) -> None:
    """
    Enforce who may trigger a transition.

    A ``None`` role means the caller did not identify itself beyond its
    restaurant scope; the restaurant check is then the only gate.
    """
    if role is None:
        return
    if role not in AUTHORITY.get(target, frozenset()):
        raise AuthorizationError(
            f"{role.value} may not move an order to {target.value}",
            details={"role": role.value, "target": target.value},
        )
