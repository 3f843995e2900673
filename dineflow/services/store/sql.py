"""
SQL Order Store

SQLAlchemy (asyncio) implementation of BaseOrderStore.

Status changes are a single conditional statement:

    UPDATE orders SET status = :new ... WHERE id = :id AND status IN (:expected)

Zero affected rows means another actor got there first (or the order does
not exist), never success. Rating upserts and the aggregate recomputation
share one transaction.

Author: Khalil Bannouri
Version: 1.0.0
"""

import logging
from collections.abc import Collection
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterator, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import DBAPIError, IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from dineflow.core.exceptions import ConflictError, NotFoundError, StoreUnavailable
from dineflow.models import MenuItem, Order, OrderLineItem, OrderStatus, Rating, Restaurant, StaffMember
from dineflow.services.store.base import (
    BaseOrderStore,
    MenuItemRecord,
    NewOrder,
    OrderLine,
    OrderQuery,
    OrderRecord,
    RatingEntry,
    RatingRecord,
    RatingSummary,
    RestaurantRecord,
    StaffRecord,
)

logger = logging.getLogger(__name__)


@contextmanager
def store_errors() -> Iterator[None]:
    """Translate driver connectivity failures into StoreUnavailable."""
    try:
        yield
    except (OperationalError, InterfaceError) as e:
        logger.error(f"Database unavailable: {e}", exc_info=True)
        raise StoreUnavailable("Order store is unreachable") from e
    except DBAPIError as e:
        if e.connection_invalidated:
            logger.error(f"Database connection lost: {e}", exc_info=True)
            raise StoreUnavailable("Order store connection was lost") from e
        raise
    except OSError as e:
        logger.error(f"Database connection refused: {e}", exc_info=True)
        raise StoreUnavailable("Order store is unreachable") from e


# =============================================================================
# ROW -> RECORD MAPPING
# =============================================================================

def _menu_record(row: MenuItem) -> MenuItemRecord:
    return MenuItemRecord(
        id=row.id,
        restaurant_id=row.restaurant_id,
        name=row.name,
        price=Decimal(row.price),
        category=row.category,
        description=row.description,
        is_vegetarian=bool(row.is_vegetarian),
        is_spicy=bool(row.is_spicy),
        is_out_of_stock=bool(row.is_out_of_stock),
        rating=RatingSummary(average=row.rating_average or 0.0, count=row.rating_count or 0),
    )


def _order_record(row: Order) -> OrderRecord:
    return OrderRecord(
        id=row.id,
        restaurant_id=row.restaurant_id,
        table_id=row.table_id,
        lines=tuple(
            OrderLine(
                menu_item_id=line.menu_item_id,
                name=line.name,
                price=Decimal(line.unit_price),
                quantity=line.quantity,
                note=line.note,
            )
            for line in row.lines
        ),
        total_amount=Decimal(row.total_amount),
        status=row.status,
        created_at=row.created_at,
        updated_at=row.updated_at,
        customer_id=row.customer_id,
        customer_name=row.customer_name,
        note=row.note,
        payment_id=row.payment_id,
    )


class SqlOrderStore(BaseOrderStore):
    """
    Order store over an AsyncSession.

    One instance per request; the session is owned by the caller.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    @property
    def backend_name(self) -> str:
        return "sql"

    # =========================================================================
    # RESTAURANTS & MENU
    # =========================================================================

    async def get_restaurant(self, restaurant_id: int) -> Optional[RestaurantRecord]:
        with store_errors():
            row = await self.session.get(Restaurant, restaurant_id)
        if row is None:
            return None
        return RestaurantRecord(
            id=row.id,
            name=row.name,
            table_count=row.table_count,
            is_active=row.is_active,
        )

    async def get_staff_member(self, member_id: int) -> Optional[StaffRecord]:
        with store_errors():
            row = await self.session.get(StaffMember, member_id)
        if row is None:
            return None
        return StaffRecord(id=row.id, restaurant_id=row.restaurant_id, name=row.name, role=row.role)

    async def list_menu_items(self, restaurant_id: int) -> list[MenuItemRecord]:
        query = (
            select(MenuItem)
            .where(MenuItem.restaurant_id == restaurant_id)
            .order_by(MenuItem.category, MenuItem.name)
            .execution_options(populate_existing=True)
        )
        with store_errors():
            result = await self.session.execute(query)
        return [_menu_record(row) for row in result.scalars().all()]

    async def get_menu_item(self, item_id: int) -> Optional[MenuItemRecord]:
        with store_errors():
            row = await self.session.get(MenuItem, item_id, populate_existing=True)
        return _menu_record(row) if row is not None else None

    async def update_menu_item(
        self,
        item_id: int,
        price: Optional[Decimal] = None,
        is_out_of_stock: Optional[bool] = None,
    ) -> MenuItemRecord:
        with store_errors():
            row = await self.session.get(MenuItem, item_id)
            if row is None:
                raise NotFoundError(f"Menu item #{item_id} not found")
            if price is not None:
                row.price = Decimal(str(price))
            if is_out_of_stock is not None:
                row.is_out_of_stock = is_out_of_stock
            await self.session.commit()
            await self.session.refresh(row)
        return _menu_record(row)

    # =========================================================================
    # ORDERS
    # =========================================================================

    async def create_order(self, order: NewOrder) -> OrderRecord:
        now = datetime.now(timezone.utc)
        row = Order(
            table_id=order.table_id,
            restaurant_id=order.restaurant_id,
            customer_id=order.customer_id,
            customer_name=order.customer_name,
            note=order.note,
            total_amount=order.total_amount,
            status=OrderStatus.PENDING_PAYMENT,
            created_at=now,
            updated_at=now,
        )
        row.lines = [
            OrderLineItem(
                position=position,
                menu_item_id=line.menu_item_id,
                name=line.name,
                unit_price=line.price,
                quantity=line.quantity,
                note=line.note,
            )
            for position, line in enumerate(order.lines)
        ]
        with store_errors():
            try:
                self.session.add(row)
                await self.session.commit()
            except Exception:
                await self.session.rollback()
                raise
            order_id = row.id
        created = await self.get_order(order_id)
        return created

    async def get_order(self, order_id: int) -> Optional[OrderRecord]:
        query = select(Order).where(Order.id == order_id).execution_options(populate_existing=True)
        with store_errors():
            result = await self.session.execute(query)
        row = result.scalar_one_or_none()
        return _order_record(row) if row is not None else None

    async def list_orders(self, query: OrderQuery) -> list[OrderRecord]:
        stmt = select(Order).execution_options(populate_existing=True)
        if query.restaurant_id is not None:
            stmt = stmt.where(Order.restaurant_id == query.restaurant_id)
        if query.statuses is not None:
            stmt = stmt.where(Order.status.in_(list(query.statuses)))
        if query.table_id is not None:
            stmt = stmt.where(Order.table_id == query.table_id)
        if query.customer_id is not None:
            stmt = stmt.where(Order.customer_id == query.customer_id)
        if query.created_before is not None:
            stmt = stmt.where(Order.created_at < query.created_before)
        stmt = stmt.order_by(Order.created_at.desc(), Order.id.desc())

        with store_errors():
            result = await self.session.execute(stmt)
        return [_order_record(row) for row in result.scalars().all()]

    async def update_status(
        self,
        order_id: int,
        expected: Collection[OrderStatus],
        new_status: OrderStatus,
        payment_id: Optional[str] = None,
    ) -> OrderRecord:
        values = {"status": new_status, "updated_at": datetime.now(timezone.utc)}
        if payment_id is not None:
            values["payment_id"] = payment_id

        stmt = (
            update(Order)
            .where(Order.id == order_id, Order.status.in_(list(expected)))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        with store_errors():
            try:
                result = await self.session.execute(stmt)
                await self.session.commit()
            except Exception:
                await self.session.rollback()
                raise

        if result.rowcount == 0:
            current = await self.get_order(order_id)
            if current is None:
                raise NotFoundError(f"Order #{order_id} not found")
            raise ConflictError(order_id, current.status.value)

        return await self.get_order(order_id)

    # =========================================================================
    # RATINGS
    # =========================================================================

    async def upsert_ratings(
        self,
        order: OrderRecord,
        entries: list[RatingEntry],
        customer_id: Optional[str] = None,
    ) -> dict[int, RatingSummary]:
        summaries: dict[int, RatingSummary] = {}
        with store_errors():
            try:
                for entry in entries:
                    existing = await self.session.execute(
                        select(Rating).where(
                            Rating.order_id == order.id,
                            Rating.menu_item_id == entry.menu_item_id,
                        )
                    )
                    row = existing.scalar_one_or_none()
                    if row is None:
                        self.session.add(Rating(
                            order_id=order.id,
                            menu_item_id=entry.menu_item_id,
                            restaurant_id=order.restaurant_id,
                            customer_id=customer_id,
                            rating=entry.rating,
                            review=entry.review,
                        ))
                    else:
                        row.rating = entry.rating
                        row.review = entry.review
                        row.updated_at = datetime.now(timezone.utc)
                    await self.session.flush()

                    summary = await self._recompute(entry.menu_item_id)
                    summaries[entry.menu_item_id] = summary

                await self.session.commit()
            except IntegrityError as e:
                await self.session.rollback()
                # Concurrent first-time submission for the same (order, item)
                raise ConflictError(
                    order.id,
                    message=f"Ratings for order #{order.id} were just submitted elsewhere; refresh and retry",
                ) from e
            except Exception:
                await self.session.rollback()
                raise
        return summaries

    async def _recompute(self, menu_item_id: int) -> RatingSummary:
        """Rebuild one item's summary from every rating row that references it."""
        result = await self.session.execute(
            select(func.count(Rating.id), func.sum(Rating.rating))
            .where(Rating.menu_item_id == menu_item_id)
        )
        total_count, total_sum = result.one()
        total_count = total_count or 0
        average = (float(total_sum) / total_count) if total_count else 0.0

        await self.session.execute(
            update(MenuItem)
            .where(MenuItem.id == menu_item_id)
            .values(rating_average=average, rating_count=total_count)
            .execution_options(synchronize_session=False)
        )
        return RatingSummary(average=average, count=total_count)

    async def list_order_ratings(self, order_id: int) -> list[RatingRecord]:
        with store_errors():
            result = await self.session.execute(
                select(Rating).where(Rating.order_id == order_id).order_by(Rating.menu_item_id)
            )
        return [
            RatingRecord(
                order_id=row.order_id,
                menu_item_id=row.menu_item_id,
                rating=row.rating,
                review=row.review,
                customer_id=row.customer_id,
            )
            for row in result.scalars().all()
        ]

    # =========================================================================
    # HEALTH
    # =========================================================================

    async def health_check(self) -> bool:
        try:
            await self.session.execute(select(1))
            return True
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return False

