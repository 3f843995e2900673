"""
Order Store Factory

Provides the store dependency used by every endpoint. The running service
wraps the request's database session in a SqlOrderStore; tests override the
dependency with an InMemoryOrderStore.

Usage:
    from dineflow.services.store import get_order_store

    @app.get("/orders")
    async def list_orders(store: BaseOrderStore = Depends(get_order_store)):
        ...

Author: Khalil Bannouri
Version: 1.0.0
"""

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from dineflow.database import get_db
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
from dineflow.services.store.memory import InMemoryOrderStore
from dineflow.services.store.sql import SqlOrderStore


async def get_order_store(db: AsyncSession = Depends(get_db)) -> BaseOrderStore:
    """Get the order store bound to the current request's session."""
    return SqlOrderStore(db)


__all__ = [
    "get_order_store",
    "BaseOrderStore",
    "InMemoryOrderStore",
    "SqlOrderStore",
    "MenuItemRecord",
    "NewOrder",
    "OrderLine",
    "OrderQuery",
    "OrderRecord",
    "RatingEntry",
    "RatingRecord",
    "RatingSummary",
    "RestaurantRecord",
    "StaffRecord",
]
