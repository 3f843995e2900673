"""
Order Store Abstract Base Class

Defines the interface contract for every store backend. The SQL store is used
by the running service; the in-memory store backs the test suite. Both return
the same plain records, so the services never see ORM objects.

Design Pattern: Strategy Pattern
    - Services are written once against BaseOrderStore
    - Status writes are conditional (compare-and-swap) in every backend

Author: Khalil Bannouri
Version: 1.0.0
"""

from abc import ABC, abstractmethod
from collections.abc import Collection
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Optional

from dineflow.models import ActorRole, OrderStatus


@dataclass(frozen=True)
class RestaurantRecord:
    id: int
    name: str
    table_count: Optional[int] = None
    is_active: bool = True


@dataclass(frozen=True)
class StaffRecord:
    id: int
    restaurant_id: int
    name: str
    role: ActorRole


@dataclass(frozen=True)
class RatingSummary:
    """Aggregate rating of a menu item."""
    average: float = 0.0
    count: int = 0


@dataclass(frozen=True)
class MenuItemRecord:
    id: int
    restaurant_id: int
    name: str
    price: Decimal
    category: str
    description: Optional[str] = None
    is_vegetarian: bool = False
    is_spicy: bool = False
    is_out_of_stock: bool = False
    rating: RatingSummary = field(default_factory=RatingSummary)


@dataclass(frozen=True)
class OrderLine:
    """
    One ordered menu item.

    ``name`` and ``price`` are copies taken at checkout; later menu edits
    never reach them.
    """
    menu_item_id: int
    name: str
    price: Decimal
    quantity: int
    note: Optional[str] = None

    @property
    def line_total(self) -> Decimal:
        return self.price * self.quantity


@dataclass(frozen=True)
class NewOrder:
    """Validated order ready to be persisted."""
    restaurant_id: int
    table_id: str
    lines: tuple[OrderLine, ...]
    total_amount: Decimal
    customer_id: Optional[str] = None
    customer_name: Optional[str] = None
    note: Optional[str] = None


@dataclass(frozen=True)
class OrderRecord:
    id: int
    restaurant_id: int
    table_id: str
    lines: tuple[OrderLine, ...]
    total_amount: Decimal
    status: OrderStatus
    created_at: datetime
    updated_at: datetime
    customer_id: Optional[str] = None
    customer_name: Optional[str] = None
    note: Optional[str] = None
    payment_id: Optional[str] = None


@dataclass(frozen=True)
class OrderQuery:
    """
    Filter for slice reads. Unset fields do not filter.

    Results are always ordered newest first.
    """
    restaurant_id: Optional[int] = None
    statuses: Optional[frozenset[OrderStatus]] = None
    table_id: Optional[str] = None
    customer_id: Optional[str] = None
    created_before: Optional[datetime] = None


@dataclass(frozen=True)
class RatingEntry:
    menu_item_id: int
    rating: int
    review: Optional[str] = None


@dataclass(frozen=True)
class RatingRecord:
    order_id: int
    menu_item_id: int
    rating: int
    review: Optional[str] = None
    customer_id: Optional[str] = None


class BaseOrderStore(ABC):
    """
    Abstract base class for order stores.

    Implementations must make ``update_status`` atomic: the write applies only
    if the persisted status is one of ``expected``, otherwise ConflictError.
    Connectivity failures must surface as StoreUnavailable.
    """

    @property
    @abstractmethod
    def backend_name(self) -> str:
        """Return the backend name (e.g. "sql", "memory")."""
        pass

    # =========================================================================
    # RESTAURANTS & MENU
    # =========================================================================

    @abstractmethod
    async def get_restaurant(self, restaurant_id: int) -> Optional[RestaurantRecord]:
        pass

    @abstractmethod
    async def get_staff_member(self, member_id: int) -> Optional[StaffRecord]:
        pass

    @abstractmethod
    async def list_menu_items(self, restaurant_id: int) -> list[MenuItemRecord]:
        """All menu items of a restaurant, ordered by category then name."""
        pass

    @abstractmethod
    async def get_menu_item(self, item_id: int) -> Optional[MenuItemRecord]:
        pass

    @abstractmethod
    async def update_menu_item(
        self,
        item_id: int,
        price: Optional[Decimal] = None,
        is_out_of_stock: Optional[bool] = None,
    ) -> MenuItemRecord:
        """
        Change price and/or stock flag of a menu item.

        Raises:
            NotFoundError: Unknown item
        """
        pass

    # =========================================================================
    # ORDERS
    # =========================================================================

    @abstractmethod
    async def create_order(self, order: NewOrder) -> OrderRecord:
        """Persist a new order in PENDING_PAYMENT."""
        pass

    @abstractmethod
    async def get_order(self, order_id: int) -> Optional[OrderRecord]:
        pass

    @abstractmethod
    async def list_orders(self, query: OrderQuery) -> list[OrderRecord]:
        pass

    @abstractmethod
    async def update_status(
        self,
        order_id: int,
        expected: Collection[OrderStatus],
        new_status: OrderStatus,
        payment_id: Optional[str] = None,
    ) -> OrderRecord:
        """
        Conditionally move an order to ``new_status``.

        Args:
            order_id: Order to update
            expected: Statuses the order must currently be in
            new_status: Status to write
            payment_id: Optional payment reference stored with the change

        Returns:
            OrderRecord: The order after the update

        Raises:
            NotFoundError: Unknown order
            ConflictError: Current status is not in ``expected``
        """
        pass

    # =========================================================================
    # RATINGS
    # =========================================================================

    @abstractmethod
    async def upsert_ratings(
        self,
        order: OrderRecord,
        entries: list[RatingEntry],
        customer_id: Optional[str] = None,
    ) -> dict[int, RatingSummary]:
        """
        Insert or replace the (order, item) ratings and recompute aggregates.

        Runs as one unit of work: each affected menu item's summary is
        recomputed from all of its rating rows before anything is committed.

        Returns:
            Mapping of menu item id to its new summary
        """
        pass

    @abstractmethod
    async def list_order_ratings(self, order_id: int) -> list[RatingRecord]:
        pass

    # =========================================================================
    # HEALTH
    # =========================================================================

    @abstractmethod
    async def health_check(self) -> bool:
        """Check the store is reachable."""
        pass
