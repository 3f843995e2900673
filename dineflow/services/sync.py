"""
Synchronization Layer

There is no push channel between the four views. Each one polls the slice of
orders it cares about on a fixed interval and replaces its local copy with
whatever comes back. This module owns the two halves of that contract:

    - which orders belong to which view (slice definitions)
    - how often each view is told to poll (the staleness window)

Slices:
    KITCHEN   -> one restaurant, {PAID, IN_PROGRESS} only
    STAFF     -> one restaurant, every order (filtering is presentational)
    ADMIN     -> same as STAFF, slower interval
    CUSTOMER  -> one table of one restaurant, or one authenticated customer
"""

import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from dineflow.core.config import Settings, get_settings
from dineflow.core.exceptions import ValidationError
from dineflow.models import OrderStatus
from dineflow.services.store.base import OrderQuery, OrderRecord

KITCHEN_STATUSES = frozenset({OrderStatus.PAID, OrderStatus.IN_PROGRESS})


class OrderView(str, enum.Enum):
    KITCHEN = "kitchen"
    STAFF = "staff"
    ADMIN = "admin"
    CUSTOMER = "customer"


@dataclass(frozen=True)
class OrderSlice:
    """One poll's worth of orders for a view."""
    view: OrderView
    orders: list[OrderRecord]
    poll_interval_seconds: float
    fetched_at: datetime


def poll_interval(view: OrderView, settings: Optional[Settings] = None) -> float:
    """Seconds between two polls of ``view``; also its worst-case staleness."""
    settings = settings or get_settings()
    return {
        OrderView.KITCHEN: settings.kitchen_poll_seconds,
        OrderView.STAFF: settings.staff_poll_seconds,
        OrderView.ADMIN: settings.admin_poll_seconds,
        OrderView.CUSTOMER: settings.customer_poll_seconds,
    }[view]


def infer_view(
    view: Optional[OrderView],
    table_id: Optional[str] = None,
    customer_id: Optional[str] = None,
) -> OrderView:
    """Pick the view when the caller did not name one."""
    if view is not None:
        return view
    if table_id is not None or customer_id is not None:
        return OrderView.CUSTOMER
    return OrderView.STAFF


def build_slice_query(
    view: OrderView,
    restaurant_id: Optional[int] = None,
    status: Optional[OrderStatus] = None,
    table_id: Optional[str] = None,
    customer_id: Optional[str] = None,
) -> OrderQuery:
    """
    Translate a view and its request parameters into a store query.

    Raises:
        ValidationError: Missing scope, or a status filter outside the view's slice
    """
    if view == OrderView.CUSTOMER:
        if customer_id is not None:
            return OrderQuery(
                customer_id=customer_id,
                restaurant_id=restaurant_id,
                table_id=table_id,
                statuses=frozenset({status}) if status else None,
            )
        if table_id is None or restaurant_id is None:
            raise ValidationError(
                "Order tracking needs customerId, or tableId together with restaurantId"
            )
        return OrderQuery(
            restaurant_id=restaurant_id,
            table_id=table_id,
            statuses=frozenset({status}) if status else None,
        )

    if restaurant_id is None:
        raise ValidationError(f"restaurantId is required for the {view.value} view")

    if view == OrderView.KITCHEN:
        statuses = KITCHEN_STATUSES
        if status is not None:
            if status not in KITCHEN_STATUSES:
                raise ValidationError(
                    f"The kitchen view only shows {sorted(s.value for s in KITCHEN_STATUSES)}"
                )
            statuses = frozenset({status})
        return OrderQuery(restaurant_id=restaurant_id, statuses=statuses)

    return OrderQuery(
        restaurant_id=restaurant_id,
        statuses=frozenset({status}) if status else None,
    )
