"""
                        Services Module

Business logic of the ordering core, written against the store abstraction.

Services:
    - orders: order creation, guarded status transitions, payment handshake
    - ratings: post-service rating upserts and menu aggregates
    - table_session: QR payload parsing and live menu resolution
    - sync: per-view order slices and poll intervals
    - payment: gateway abstraction (mock implementation)
    - store: SQL and in-memory order stores
"""

from dineflow.services.orders import Actor, LineRequest, OrderService
from dineflow.services.ratings import RatingAggregator
from dineflow.services.table_session import TableSessionResolver

__all__ = ["Actor", "LineRequest", "OrderService", "RatingAggregator", "TableSessionResolver"]
