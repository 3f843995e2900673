"""
Order Feed Client

The polling half of the synchronization contract, as used by a view:

    - refresh() fetches the view's slice and replaces the local copy wholesale
    - poll() keeps refreshing on the view's interval
    - transition() writes, then always re-fetches; the new status is never
      assumed locally

Usage:
    async with httpx.AsyncClient(base_url="http://localhost:8000") as http:
        feed = OrderFeed.for_kitchen(http, restaurant_id=1)
        await feed.refresh()
        await feed.transition(feed.orders[0]["id"], "IN_PROGRESS")

Author: Khalil Bannouri
Version: 1.0.0
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

import httpx

from dineflow.core.config import Settings, get_settings
from dineflow.core.exceptions import (
    AuthorizationError,
    ConflictError,
    DineFlowError,
    NotFoundError,
    PaymentDeclinedError,
    StoreUnavailable,
    ValidationError,
)

logger = logging.getLogger(__name__)

ERRORS_BY_STATUS: dict[int, type[DineFlowError]] = {
    400: ValidationError,
    403: AuthorizationError,
    404: NotFoundError,
    503: StoreUnavailable,
}


def _detail(response: httpx.Response) -> str:
    try:
        return response.json().get("detail") or response.text
    except ValueError:
        return response.text


def raise_for_error(response: httpx.Response, order_id: Optional[int] = None) -> None:
    """Turn an error response back into the service's exception types."""
    if response.is_success:
        return
    detail = _detail(response)
    if response.status_code == 409:
        raise ConflictError(order_id or 0, message=detail)
    if response.status_code == 402:
        raise PaymentDeclinedError(order_id or 0, detail)
    error_class = ERRORS_BY_STATUS.get(response.status_code)
    if error_class is not None:
        raise error_class(detail)
    response.raise_for_status()


class OrderFeed:
    """
    Local snapshot of one view's order slice.

    Attributes:
        orders: Orders from the last successful refresh, newest first
        fetched_at: Server timestamp of that refresh
        interval: Seconds between polls
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        params: dict[str, Any],
        interval: float,
        restaurant_id: Optional[int] = None,
        actor_role: Optional[str] = None,
        actor_id: Optional[int] = None,
    ):
        self.client = client
        self.params = {k: v for k, v in params.items() if v is not None}
        self.interval = interval
        self.restaurant_id = restaurant_id
        self.actor_role = actor_role
        self.actor_id = actor_id
        self.orders: list[dict[str, Any]] = []
        self.fetched_at: Optional[str] = None

    # =========================================================================
    # CONSTRUCTORS
    # =========================================================================

    @classmethod
    def for_kitchen(
        cls,
        client: httpx.AsyncClient,
        restaurant_id: int,
        actor_id: Optional[int] = None,
        settings: Optional[Settings] = None,
    ) -> "OrderFeed":
        settings = settings or get_settings()
        return cls(
            client,
            {"restaurantId": restaurant_id, "view": "kitchen"},
            settings.kitchen_poll_seconds,
            restaurant_id=restaurant_id,
            actor_role="KITCHEN",
            actor_id=actor_id,
        )

    @classmethod
    def for_staff(
        cls,
        client: httpx.AsyncClient,
        restaurant_id: int,
        actor_id: Optional[int] = None,
        settings: Optional[Settings] = None,
    ) -> "OrderFeed":
        settings = settings or get_settings()
        return cls(
            client,
            {"restaurantId": restaurant_id, "view": "staff"},
            settings.staff_poll_seconds,
            restaurant_id=restaurant_id,
            actor_role="STAFF",
            actor_id=actor_id,
        )

    @classmethod
    def for_admin(
        cls,
        client: httpx.AsyncClient,
        restaurant_id: int,
        actor_id: Optional[int] = None,
        settings: Optional[Settings] = None,
    ) -> "OrderFeed":
        settings = settings or get_settings()
        return cls(
            client,
            {"restaurantId": restaurant_id, "view": "admin"},
            settings.admin_poll_seconds,
            restaurant_id=restaurant_id,
            actor_role="ADMIN",
            actor_id=actor_id,
        )

    @classmethod
    def for_table(
        cls,
        client: httpx.AsyncClient,
        restaurant_id: int,
        table_id: str,
        settings: Optional[Settings] = None,
    ) -> "OrderFeed":
        settings = settings or get_settings()
        return cls(
            client,
            {"restaurantId": restaurant_id, "tableId": str(table_id)},
            settings.customer_poll_seconds,
            actor_role="CUSTOMER",
        )

    @classmethod
    def for_customer(
        cls,
        client: httpx.AsyncClient,
        customer_id: str,
        settings: Optional[Settings] = None,
    ) -> "OrderFeed":
        settings = settings or get_settings()
        return cls(
            client,
            {"customerId": customer_id},
            settings.customer_poll_seconds,
            actor_role="CUSTOMER",
        )

    # =========================================================================
    # READS
    # =========================================================================

    def get(self, order_id: int) -> Optional[dict[str, Any]]:
        for order in self.orders:
            if order["id"] == order_id:
                return order
        return None

    async def refresh(self) -> list[dict[str, Any]]:
        """Fetch the slice and replace the local copy with it."""
        response = await self.client.get("/orders", params=self.params)
        raise_for_error(response)
        data = response.json()
        self.orders = data["orders"]
        self.fetched_at = data.get("fetchedAt")
        return self.orders

    async def poll(
        self,
        stop: asyncio.Event,
        on_update: Optional[Callable[[list[dict[str, Any]]], Awaitable[None]]] = None,
    ) -> None:
        """
        Refresh every ``interval`` seconds until ``stop`` is set.

        A failed refresh keeps the previous snapshot and is retried on the
        next tick.
        """
        while not stop.is_set():
            try:
                orders = await self.refresh()
            except (httpx.HTTPError, DineFlowError) as e:
                logger.warning(f"Poll of {self.params} failed: {e}")
            else:
                if on_update is not None:
                    await on_update(orders)
            try:
                await asyncio.wait_for(stop.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass

    # =========================================================================
    # WRITES
    # =========================================================================

    async def transition(
        self,
        order_id: int,
        status: str,
        expected_status: Optional[str] = None,
    ) -> dict[str, Any]:
        """
        Ask the server to move an order, then re-fetch the slice.

        Raises:
            ConflictError: The order moved elsewhere first; the feed is
                already refreshed and nothing is retried
        """
        if self.restaurant_id is None:
            raise AuthorizationError("This feed is not scoped to a restaurant")

        body: dict[str, Any] = {"status": status, "actorRestaurantId": self.restaurant_id}
        if self.actor_role is not None:
            body["actorRole"] = self.actor_role
        if self.actor_id is not None:
            body["actorId"] = self.actor_id
        if expected_status is not None:
            body["expectedStatus"] = expected_status

        response = await self.client.patch(f"/orders/{order_id}/status", json=body)
        await self.refresh()
        raise_for_error(response, order_id)
        return response.json()

    async def confirm_payment(
        self,
        order_id: int,
        customer_id: Optional[str] = None,
        simulate_failure: bool = False,
    ) -> dict[str, Any]:
        """Customer-side payment confirmation, followed by a refresh."""
        body: dict[str, Any] = {"simulateFailure": simulate_failure}
        if customer_id is not None:
            body["customerId"] = customer_id
        response = await self.client.post(f"/orders/{order_id}/payment", json=body)
        await self.refresh()
        raise_for_error(response, order_id)
        return response.json()
