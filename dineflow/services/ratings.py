"""
Rating Aggregator

Post-service feedback. Each submission is an upsert keyed by (order, menu item);
after it, the item's {average, count} is rebuilt from every rating row that
references the item, inside the same store transaction.

Author: Khalil Bannouri
Version: 1.0.0
"""

import logging
from typing import Optional

from dineflow.core.exceptions import AuthorizationError, ConflictError, NotFoundError, ValidationError
from dineflow.models import OrderStatus
from dineflow.services.store.base import BaseOrderStore, RatingEntry, RatingRecord, RatingSummary

logger = logging.getLogger(__name__)

MIN_RATING = 1
MAX_RATING = 5


def normalize_entries(entries: list[RatingEntry]) -> list[RatingEntry]:
    """
    Validate rating values and collapse repeats of the same item.

    The last entry for an item wins, matching what a resubmission would do.

    Raises:
        ValidationError: Empty submission or a rating outside 1-5
    """
    if not entries:
        raise ValidationError("At least one rating is required")

    latest: dict[int, RatingEntry] = {}
    for entry in entries:
        if isinstance(entry.rating, bool) or not isinstance(entry.rating, int):
            raise ValidationError(f"Rating for menu item #{entry.menu_item_id} must be a whole number")
        if not MIN_RATING <= entry.rating <= MAX_RATING:
            raise ValidationError(
                f"Rating for menu item #{entry.menu_item_id} must be between "
                f"{MIN_RATING} and {MAX_RATING}",
                details={"menu_item_id": entry.menu_item_id, "rating": entry.rating},
            )
        review = entry.review.strip() if entry.review else None
        latest[entry.menu_item_id] = RatingEntry(entry.menu_item_id, entry.rating, review or None)
    return list(latest.values())


class RatingAggregator:
    """
    Accepts ratings for served orders and keeps menu aggregates exact.

    Example:
        >>> aggregator = RatingAggregator(store)
        >>> summaries = await aggregator.submit(order.id, [RatingEntry(12, 5)])
        >>> summaries[12].count
        1
    """

    def __init__(self, store: BaseOrderStore):
        self.store = store

    async def submit(
        self,
        order_id: int,
        entries: list[RatingEntry],
        customer_id: Optional[str] = None,
    ) -> dict[int, RatingSummary]:
        """
        Upsert ratings for a served order.

        Returns:
            Fresh aggregate per rated menu item

        Raises:
            ValidationError: Bad rating value, or item not on the order
            NotFoundError: Unknown order
            AuthorizationError: Order belongs to a different customer
            ConflictError: Order is not SERVED
        """
        entries = normalize_entries(entries)

        order = await self.store.get_order(order_id)
        if order is None:
            raise NotFoundError(f"Order #{order_id} not found", details={"order_id": order_id})
        if order.customer_id is not None and customer_id != order.customer_id:
            raise AuthorizationError("Only the customer who placed this order can rate it")
        if order.status != OrderStatus.SERVED:
            raise ConflictError(
                order_id,
                order.status.value,
                message=f"Order #{order_id} can only be rated once served (now {order.status.value})",
            )

        ordered = {line.menu_item_id for line in order.lines}
        stray = sorted(e.menu_item_id for e in entries if e.menu_item_id not in ordered)
        if stray:
            raise ValidationError(
                f"Menu items {stray} are not part of order #{order_id}",
                details={"menu_item_ids": stray},
            )

        summaries = await self.store.upsert_ratings(order, entries, customer_id=customer_id)
        for item_id, summary in summaries.items():
            logger.info(
                f"Menu item #{item_id} rating recomputed: "
                f"{summary.average:.2f} over {summary.count}"
            )
        return summaries

    async def order_ratings(self, order_id: int) -> list[RatingRecord]:
        order = await self.store.get_order(order_id)
        if order is None:
            raise NotFoundError(f"Order #{order_id} not found", details={"order_id": order_id})
        return await self.store.list_order_ratings(order_id)
