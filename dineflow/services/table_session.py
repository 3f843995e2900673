"""
Table Session Resolver (QR binding)

Turns a scanned table code into a live menu for that table.

A printed code carries at least ``restaurantId`` and ``tableId``. It may also
carry the menu as it was when the code was generated; that copy is advisory
and never used. Stock and prices always come from the store.

Accepted payload forms:
    {"restaurantId": "3", "tableId": "7", ...}                 (JSON)
    https://menu.example.com/menu?restaurant=3&table=7          (deep link)

Author: Khalil Bannouri
Version: 1.0.0
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Optional
from urllib.parse import parse_qs, urlencode, urlparse

from dineflow.core.config import Settings, get_settings
from dineflow.core.exceptions import NotFoundError, ValidationError
from dineflow.services.store.base import BaseOrderStore, MenuItemRecord, RestaurantRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TableRef:
    """The (restaurant, table) pair a code points at."""
    restaurant_id: int
    table_id: str


@dataclass(frozen=True)
class TableSession:
    """What one scan sees: the restaurant, the table and the live menu."""
    restaurant: RestaurantRecord
    table_id: str
    orderable: list[MenuItemRecord]
    unavailable: list[MenuItemRecord]

    def orderable_item(self, item_id: int) -> Optional[MenuItemRecord]:
        for item in self.orderable:
            if item.id == item_id:
                return item
        return None


def _coerce_restaurant_id(value: Any) -> int:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid restaurant id: {value!r}")


def _first(params: dict[str, list[str]], *names: str) -> Optional[str]:
    for name in names:
        values = params.get(name)
        if values and values[0].strip():
            return values[0].strip()
    return None


def parse_table_payload(raw: str) -> TableRef:
    """
    Extract the table reference from a scanned code.

    Raises:
        ValidationError: Payload is neither JSON nor a deep link, or lacks a key
    """
    if raw is None or not raw.strip():
        raise ValidationError("Empty table code")
    raw = raw.strip()

    if raw.startswith("{"):
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            raise ValidationError("Table code is not valid JSON")
        if not isinstance(data, dict):
            raise ValidationError("Table code must be a JSON object")
        restaurant_id = data.get("restaurantId")
        table_id = data.get("tableId")
        if restaurant_id in (None, "") or table_id in (None, ""):
            raise ValidationError("Table code must carry restaurantId and tableId")
        return TableRef(_coerce_restaurant_id(restaurant_id), str(table_id).strip())

    parsed = urlparse(raw)
    if not parsed.query:
        raise ValidationError("Unrecognized table code")
    params = parse_qs(parsed.query)
    restaurant_id = _first(params, "restaurant", "restaurantId")
    table_id = _first(params, "table", "tableId")
    if restaurant_id is None or table_id is None:
        raise ValidationError("Table link must carry restaurant and table parameters")
    return TableRef(_coerce_restaurant_id(restaurant_id), table_id)


class TableSessionResolver:
    """
    Resolves (restaurant, table) pairs against the store. Read-only.

    Example:
        >>> resolver = TableSessionResolver(store)
        >>> session = await resolver.resolve(3, "7")
        >>> [item.name for item in session.orderable]
    """

    def __init__(self, store: BaseOrderStore, settings: Optional[Settings] = None):
        self.store = store
        self.settings = settings or get_settings()

    async def get_restaurant(self, restaurant_id: int) -> RestaurantRecord:
        restaurant = await self.store.get_restaurant(restaurant_id)
        if restaurant is None or not restaurant.is_active:
            raise NotFoundError(
                "Restaurant not found",
                details={"restaurant_id": restaurant_id},
            )
        return restaurant

    def check_table(self, restaurant: RestaurantRecord, table_id: str) -> str:
        """
        Validate a table id against the restaurant's configured table count.

        Tables are numbered 1..table_count.

        Raises:
            ValidationError: Not a number, or out of range
        """
        table_count = restaurant.table_count or self.settings.default_table_count
        table_id = str(table_id).strip()
        try:
            number = int(table_id)
        except ValueError:
            number = 0
        if number < 1 or number > table_count:
            raise ValidationError(
                f"Invalid table. Must be between 1 and {table_count}",
                details={"table_id": table_id, "table_count": table_count},
            )
        return table_id

    async def resolve(self, restaurant_id: int, table_id: str) -> TableSession:
        """
        Fetch the live menu for one table.

        Raises:
            NotFoundError: Unknown restaurant
            ValidationError: Invalid table
        """
        restaurant = await self.get_restaurant(restaurant_id)
        table_id = self.check_table(restaurant, table_id)

        items = await self.store.list_menu_items(restaurant.id)
        session = TableSession(
            restaurant=restaurant,
            table_id=table_id,
            orderable=[i for i in items if not i.is_out_of_stock],
            unavailable=[i for i in items if i.is_out_of_stock],
        )
        logger.debug(
            f"Resolved table {table_id} at restaurant #{restaurant.id}: "
            f"{len(session.orderable)} orderable, {len(session.unavailable)} unavailable"
        )
        return session

    async def resolve_payload(self, raw: str) -> TableSession:
        """Parse a scanned code, then resolve it against live data."""
        ref = parse_table_payload(raw)
        return await self.resolve(ref.restaurant_id, ref.table_id)

    def table_url(self, restaurant_id: int, table_id: str) -> str:
        query = urlencode({"restaurant": restaurant_id, "table": table_id})
        return f"{self.settings.frontend_url}/menu?{query}"

    async def build_payload(self, restaurant_id: int, table_id: str) -> dict[str, Any]:
        """
        Build the JSON object printed into a table's code.

        The embedded menu is a convenience snapshot; scanners re-fetch it.
        """
        session = await self.resolve(restaurant_id, table_id)
        return {
            "restaurantId": str(session.restaurant.id),
            "restaurantName": session.restaurant.name,
            "tableId": session.table_id,
            "url": self.table_url(session.restaurant.id, session.table_id),
            "menu": [
                {
                    "id": str(item.id),
                    "name": item.name,
                    "price": float(item.price),
                    "category": item.category,
                }
                for item in session.orderable
            ],
        }
