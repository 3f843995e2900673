"""
In-Memory Order Store

Process-local implementation of BaseOrderStore used by the test suite and by
local demos. Records are immutable dataclasses kept in plain dicts; a status
update replaces the whole record.

Every method finishes its check-and-write without yielding to the event loop,
so conditional updates are atomic with respect to other coroutines.

Author: Khalil Bannouri
Version: 1.0.0
"""

import logging
from collections.abc import Collection
from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal
from itertools import count
from typing import Optional

from dineflow.core.exceptions import ConflictError, NotFoundError, StoreUnavailable
from dineflow.models import ActorRole, OrderStatus
from dineflow.services.store.base import (
    BaseOrderStore,
    MenuItemRecord,
    NewOrder,
    OrderQuery,
    OrderRecord,
    RatingEntry,
    RatingRecord,
    RatingSummary,
    RestaurantRecord,
    StaffRecord,
)

logger = logging.getLogger(__name__)


class InMemoryOrderStore(BaseOrderStore):
    """
    Dict-backed order store.

    Example:
        >>> store = InMemoryOrderStore()
        >>> restaurant = store.add_restaurant("Trattoria", table_count=12)
        >>> pasta = store.add_menu_item(restaurant.id, "Carbonara", "13.50", "Mains")
    """

    def __init__(self):
        self._ids = count(1)
        self._restaurants: dict[int, RestaurantRecord] = {}
        self._staff: dict[int, StaffRecord] = {}
        self._menu: dict[int, MenuItemRecord] = {}
        self._orders: dict[int, OrderRecord] = {}
        self._ratings: dict[tuple[int, int], RatingRecord] = {}
        self.available = True

    @property
    def backend_name(self) -> str:
        return "memory"

    # =========================================================================
    # SEEDING
    # =========================================================================

    def add_restaurant(self, name: str, table_count: Optional[int] = None) -> RestaurantRecord:
        record = RestaurantRecord(id=next(self._ids), name=name, table_count=table_count)
        self._restaurants[record.id] = record
        return record

    def add_staff_member(self, restaurant_id: int, name: str, role: ActorRole) -> StaffRecord:
        record = StaffRecord(id=next(self._ids), restaurant_id=restaurant_id, name=name, role=role)
        self._staff[record.id] = record
        return record

    def add_menu_item(
        self,
        restaurant_id: int,
        name: str,
        price,
        category: str,
        **extra,
    ) -> MenuItemRecord:
        record = MenuItemRecord(
            id=next(self._ids),
            restaurant_id=restaurant_id,
            name=name,
            price=Decimal(str(price)),
            category=category,
            **extra,
        )
        self._menu[record.id] = record
        return record

    def _check_available(self) -> None:
        # Lets tests simulate an outage
        if not self.available:
            raise StoreUnavailable("In-memory store is marked unavailable")

    # =========================================================================
    # RESTAURANTS & MENU
    # =========================================================================

    async def get_restaurant(self, restaurant_id: int) -> Optional[RestaurantRecord]:
        self._check_available()
        return self._restaurants.get(restaurant_id)

    async def get_staff_member(self, member_id: int) -> Optional[StaffRecord]:
        self._check_available()
        return self._staff.get(member_id)

    async def list_menu_items(self, restaurant_id: int) -> list[MenuItemRecord]:
        self._check_available()
        items = [m for m in self._menu.values() if m.restaurant_id == restaurant_id]
        return sorted(items, key=lambda m: (m.category, m.name))

    async def get_menu_item(self, item_id: int) -> Optional[MenuItemRecord]:
        self._check_available()
        return self._menu.get(item_id)

    async def update_menu_item(
        self,
        item_id: int,
        price: Optional[Decimal] = None,
        is_out_of_stock: Optional[bool] = None,
    ) -> MenuItemRecord:
        self._check_available()
        item = self._menu.get(item_id)
        if item is None:
            raise NotFoundError(f"Menu item #{item_id} not found")
        changes = {}
        if price is not None:
            changes["price"] = Decimal(str(price))
        if is_out_of_stock is not None:
            changes["is_out_of_stock"] = is_out_of_stock
        item = replace(item, **changes)
        self._menu[item_id] = item
        return item

    # =========================================================================
    # ORDERS
    # =========================================================================

    async def create_order(self, order: NewOrder) -> OrderRecord:
        self._check_available()
        now = datetime.now(timezone.utc)
        record = OrderRecord(
            id=next(self._ids),
            restaurant_id=order.restaurant_id,
            table_id=order.table_id,
            lines=tuple(order.lines),
            total_amount=order.total_amount,
            status=OrderStatus.PENDING_PAYMENT,
            created_at=now,
            updated_at=now,
            customer_id=order.customer_id,
            customer_name=order.customer_name,
            note=order.note,
        )
        self._orders[record.id] = record
        return record

    async def get_order(self, order_id: int) -> Optional[OrderRecord]:
        self._check_available()
        return self._orders.get(order_id)

    async def list_orders(self, query: OrderQuery) -> list[OrderRecord]:
        self._check_available()

        def matches(o: OrderRecord) -> bool:
            if query.restaurant_id is not None and o.restaurant_id != query.restaurant_id:
                return False
            if query.statuses is not None and o.status not in query.statuses:
                return False
            if query.table_id is not None and o.table_id != query.table_id:
                return False
            if query.customer_id is not None and o.customer_id != query.customer_id:
                return False
            if query.created_before is not None and o.created_at >= query.created_before:
                return False
            return True

        found = [o for o in self._orders.values() if matches(o)]
        return sorted(found, key=lambda o: (o.created_at, o.id), reverse=True)

    async def update_status(
        self,
        order_id: int,
        expected: Collection[OrderStatus],
        new_status: OrderStatus,
        payment_id: Optional[str] = None,
    ) -> OrderRecord:
        self._check_available()
        current = self._orders.get(order_id)
        if current is None:
            raise NotFoundError(f"Order #{order_id} not found")
        if current.status not in expected:
            raise ConflictError(order_id, current.status.value)

        changes = {"status": new_status, "updated_at": datetime.now(timezone.utc)}
        if payment_id is not None:
            changes["payment_id"] = payment_id
        updated = replace(current, **changes)
        self._orders[order_id] = updated
        logger.debug(f"Memory: order #{order_id} {current.status.value} -> {new_status.value}")
        return updated

    # =========================================================================
    # RATINGS
    # =========================================================================

    async def upsert_ratings(
        self,
        order: OrderRecord,
        entries: list[RatingEntry],
        customer_id: Optional[str] = None,
    ) -> dict[int, RatingSummary]:
        self._check_available()
        for entry in entries:
            self._ratings[(order.id, entry.menu_item_id)] = RatingRecord(
                order_id=order.id,
                menu_item_id=entry.menu_item_id,
                rating=entry.rating,
                review=entry.review,
                customer_id=customer_id,
            )

        summaries = {}
        for item_id in {e.menu_item_id for e in entries}:
            values = [r.rating for r in self._ratings.values() if r.menu_item_id == item_id]
            summary = RatingSummary(average=sum(values) / len(values), count=len(values))
            self._menu[item_id] = replace(self._menu[item_id], rating=summary)
            summaries[item_id] = summary
        return summaries

    async def list_order_ratings(self, order_id: int) -> list[RatingRecord]:
        self._check_available()
        return [r for (oid, _), r in self._ratings.items() if oid == order_id]

    async def health_check(self) -> bool:
        return self.available
