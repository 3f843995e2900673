"""
Order Service

Business operations on orders, written against BaseOrderStore:

    - create_order: checkout of a non-empty cart at a resolved table
    - transition: kitchen/staff/admin status changes (compare-and-swap)
    - confirm_payment: idempotent PENDING_PAYMENT -> PAID handshake
    - list_slice: the polling read for one view
    - find_stale_pending: orders nobody paid for (reported, never cancelled)

Author: Khalil Bannouri
Version: 1.0.0
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from dineflow.core.config import Settings, get_settings
from dineflow.core.exceptions import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    PaymentDeclinedError,
    ValidationError,
)
from dineflow.models import ActorRole, OrderStatus
from dineflow.services.payment import BasePaymentService, PaymentResult, get_payment_service
from dineflow.services.state_machine import (
    PAYMENT_CONFIRMED_STATUSES,
    allowed_predecessors,
    check_authority,
)
from dineflow.services.store.base import (
    BaseOrderStore,
    NewOrder,
    OrderLine,
    OrderQuery,
    OrderRecord,
)
from dineflow.services.sync import OrderSlice, OrderView, build_slice_query, poll_interval
from dineflow.services.table_session import TableSessionResolver

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")


@dataclass(frozen=True)
class LineRequest:
    """A cart line as submitted by the device. Only id, quantity and note are trusted."""
    menu_item_id: int
    quantity: int = 1
    note: Optional[str] = None


@dataclass(frozen=True)
class Actor:
    """Who is asking for a transition."""
    restaurant_id: int
    role: Optional[ActorRole] = None
    actor_id: Optional[int] = None


@dataclass(frozen=True)
class TransitionResult:
    order: OrderRecord
    previous_status: OrderStatus


@dataclass(frozen=True)
class PaymentConfirmation:
    order: OrderRecord
    already_confirmed: bool
    payment: Optional[PaymentResult] = None


def compute_total(lines: list[OrderLine]) -> Decimal:
    """Sum of price x quantity, rounded to cents."""
    total = sum((line.line_total for line in lines), Decimal("0"))
    return total.quantize(CENTS, rounding=ROUND_HALF_UP)


class OrderService:
    """
    Order lifecycle operations.

    Example:
        >>> service = OrderService(store)
        >>> order = await service.create_order(3, "7", [LineRequest(menu_item_id=12, quantity=2)])
        >>> order.status
        <OrderStatus.PENDING_PAYMENT: 'PENDING_PAYMENT'>
    """

    def __init__(
        self,
        store: BaseOrderStore,
        payment_service: Optional[BasePaymentService] = None,
        settings: Optional[Settings] = None,
    ):
        self.store = store
        self.payment_service = payment_service or get_payment_service()
        self.settings = settings or get_settings()
        self.tables = TableSessionResolver(store, self.settings)

    # =========================================================================
    # CREATION
    # =========================================================================

    async def create_order(
        self,
        restaurant_id: int,
        table_id: str,
        lines: list[LineRequest],
        customer_id: Optional[str] = None,
        customer_name: Optional[str] = None,
        note: Optional[str] = None,
    ) -> OrderRecord:
        """
        Check out a cart.

        Names and prices are copied from the live menu; whatever price the
        device submitted is ignored.

        Raises:
            ValidationError: Empty cart, unknown restaurant, invalid table,
                unknown or out-of-stock item, bad quantity
        """
        if not lines:
            raise ValidationError("An order needs at least one item")
        if not table_id or not str(table_id).strip():
            raise ValidationError("tableId is required")
        for line in lines:
            if line.quantity < 1:
                raise ValidationError(
                    f"Quantity for menu item #{line.menu_item_id} must be at least 1"
                )

        try:
            session = await self.tables.resolve(restaurant_id, table_id)
        except NotFoundError as e:
            raise ValidationError(e.message, details=e.details)

        snapshot = []
        for line in lines:
            item = session.orderable_item(line.menu_item_id)
            if item is None:
                if any(u.id == line.menu_item_id for u in session.unavailable):
                    raise ValidationError(
                        f"Menu item #{line.menu_item_id} is out of stock",
                        details={"menu_item_id": line.menu_item_id},
                    )
                raise ValidationError(
                    f"Menu item #{line.menu_item_id} is not on this restaurant's menu",
                    details={"menu_item_id": line.menu_item_id},
                )
            snapshot.append(OrderLine(
                menu_item_id=item.id,
                name=item.name,
                price=item.price,
                quantity=line.quantity,
                note=line.note or None,
            ))

        new_order = NewOrder(
            restaurant_id=session.restaurant.id,
            table_id=session.table_id,
            lines=tuple(snapshot),
            total_amount=compute_total(snapshot),
            customer_id=customer_id or None,
            customer_name=customer_name or None,
            note=note or None,
        )
        order = await self.store.create_order(new_order)
        logger.info(
            f"Order #{order.id} created - restaurant #{order.restaurant_id} "
            f"table {order.table_id} - {len(order.lines)} lines - total {order.total_amount}"
        )
        return order

    async def get_order(self, order_id: int) -> OrderRecord:
        order = await self.store.get_order(order_id)
        if order is None:
            raise NotFoundError(f"Order #{order_id} not found", details={"order_id": order_id})
        return order

    # =========================================================================
    # TRANSITIONS
    # =========================================================================

    async def _resolve_role(self, actor: Actor) -> Optional[ActorRole]:
        """Look the actor up on the roster when it named itself."""
        if actor.actor_id is None:
            return actor.role
        member = await self.store.get_staff_member(actor.actor_id)
        if member is None or member.restaurant_id != actor.restaurant_id:
            raise AuthorizationError(
                f"User #{actor.actor_id} is not on restaurant #{actor.restaurant_id}'s roster"
            )
        if actor.role is not None and actor.role != member.role:
            raise AuthorizationError(
                f"User #{actor.actor_id} is {member.role.value}, not {actor.role.value}"
            )
        return member.role

    async def transition(
        self,
        order_id: int,
        target: OrderStatus,
        actor: Actor,
        expected: Optional[OrderStatus] = None,
    ) -> TransitionResult:
        """
        Move an order to ``target`` if, and only if, it is still where the
        transition table says it must be.

        Args:
            order_id: Order to move
            target: Requested status
            actor: Restaurant scope plus optional role / roster id
            expected: Status the caller last observed

        Raises:
            NotFoundError: Unknown order
            AuthorizationError: Target is PAID, wrong restaurant, or role lacks authority
            ConflictError: Current status does not allow the transition
        """
        order = await self.get_order(order_id)
        if target == OrderStatus.PAID:
            # Only a gateway-confirmed payment may set PAID
            raise AuthorizationError(
                f"Order #{order_id} is marked PAID by confirming payment "
                f"(POST /orders/{order_id}/payment), not by a status update",
                details={"order_id": order_id, "target": target.value},
            )
        if order.restaurant_id != actor.restaurant_id:
            raise AuthorizationError(
                "You do not have permission to update this order",
                details={"order_id": order_id},
            )
        role = await self._resolve_role(actor)

        if target == OrderStatus.CANCELLED and expected is None:
            # Cancel exactly what this request saw
            expected = order.status
        predecessors = allowed_predecessors(order_id, target, expected)
        check_authority(role, target)

        try:
            updated = await self.store.update_status(order_id, predecessors, target)
        except ConflictError as e:
            logger.warning(
                f"Conflict on order #{order_id}: wanted {target.value}, "
                f"found {e.current_status}"
            )
            raise

        previous = next(iter(predecessors)) if len(predecessors) == 1 else order.status
        logger.info(
            f"Order #{order_id}: {previous.value} -> {updated.status.value}"
            f" ({role.value if role else 'restaurant'})"
        )
        return TransitionResult(order=updated, previous_status=previous)

    # =========================================================================
    # PAYMENT
    # =========================================================================

    async def confirm_payment(
        self,
        order_id: int,
        customer_id: Optional[str] = None,
        simulate_failure: bool = False,
    ) -> PaymentConfirmation:
        """
        Pay for an order and flip it to PAID exactly once.

        Retried confirmations of an already-paid order return the current
        order without charging again. A decline leaves the order in
        PENDING_PAYMENT.

        Raises:
            NotFoundError: Unknown order
            AuthorizationError: Order bound to a different customer
            ConflictError: Order was cancelled
            PaymentDeclinedError: Gateway declined
        """
        order = await self.get_order(order_id)
        if (
            customer_id is not None
            and order.customer_id is not None
            and customer_id != order.customer_id
        ):
            raise AuthorizationError("This order belongs to another customer")

        if order.status in PAYMENT_CONFIRMED_STATUSES:
            logger.info(f"Order #{order_id}: payment already confirmed ({order.status.value})")
            return PaymentConfirmation(order=order, already_confirmed=True)
        if order.status != OrderStatus.PENDING_PAYMENT:
            raise ConflictError(order_id, order.status.value)

        result = await self.payment_service.process_payment(
            order_id=order.id,
            amount=float(order.total_amount),
            currency=self.settings.currency,
            simulate_failure=simulate_failure,
        )
        if not result.success:
            logger.warning(
                f"Order #{order_id}: payment declined ({result.error_code}); "
                f"order stays {OrderStatus.PENDING_PAYMENT.value}"
            )
            raise PaymentDeclinedError(
                order_id,
                result.error_message or "Payment failed",
                result.error_code,
            )

        try:
            updated = await self.store.update_status(
                order_id,
                {OrderStatus.PENDING_PAYMENT},
                OrderStatus.PAID,
                payment_id=result.payment_id,
            )
        except ConflictError:
            current = await self.get_order(order_id)
            if current.status in PAYMENT_CONFIRMED_STATUSES:
                # A concurrent confirmation won; this charge is the duplicate
                logger.warning(
                    f"Order #{order_id}: confirmed concurrently, "
                    f"duplicate payment {result.payment_id} not recorded"
                )
                return PaymentConfirmation(order=current, already_confirmed=True, payment=result)
            raise

        logger.info(f"Order #{order_id}: PENDING_PAYMENT -> PAID ({result.payment_id})")
        return PaymentConfirmation(order=updated, already_confirmed=False, payment=result)

    # =========================================================================
    # SLICE READS
    # =========================================================================

    async def list_slice(
        self,
        view: OrderView,
        restaurant_id: Optional[int] = None,
        status: Optional[OrderStatus] = None,
        table_id: Optional[str] = None,
        customer_id: Optional[str] = None,
    ) -> OrderSlice:
        """Snapshot of the orders one view polls for."""
        query = build_slice_query(
            view,
            restaurant_id=restaurant_id,
            status=status,
            table_id=table_id,
            customer_id=customer_id,
        )
        orders = await self.store.list_orders(query)
        return OrderSlice(
            view=view,
            orders=orders,
            poll_interval_seconds=poll_interval(view, self.settings),
            fetched_at=datetime.now(timezone.utc),
        )

    async def find_stale_pending(
        self,
        older_than: Optional[timedelta] = None,
        now: Optional[datetime] = None,
    ) -> list[OrderRecord]:
        """Orders still waiting for payment after ``older_than``."""
        older_than = older_than or timedelta(minutes=self.settings.stale_payment_minutes)
        now = now or datetime.now(timezone.utc)
        return await self.store.list_orders(OrderQuery(
            statuses=frozenset({OrderStatus.PENDING_PAYMENT}),
            created_before=now - older_than,
        ))
