"""
SQLAlchemy Database Models

Restaurant ordering data model:
- Restaurants (tenants) with their staff/kitchen roster
- Menu items with derived rating statistics
- Orders with snapshotted line items
- Per-(order, item) ratings

Author: Khalil Bannouri
Version: 1.0.0
"""

import enum
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from dineflow.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OrderStatus(str, enum.Enum):
    """Order status workflow."""
    PENDING_PAYMENT = "PENDING_PAYMENT"
    PAID = "PAID"
    IN_PROGRESS = "IN_PROGRESS"
    READY_FOR_PICKUP = "READY_FOR_PICKUP"
    SERVED = "SERVED"
    CANCELLED = "CANCELLED"


class ActorRole(str, enum.Enum):
    """Who is asking for a status change."""
    CUSTOMER = "CUSTOMER"
    KITCHEN = "KITCHEN"
    STAFF = "STAFF"
    ADMIN = "ADMIN"


class Restaurant(Base):
    """
    A restaurant tenant (the admin account in the dashboards).

    Never hard-deleted; ``is_active`` is the soft lifecycle flag.
    """
    __tablename__ = "restaurants"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    table_count = Column(Integer, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    staff = relationship("StaffMember", back_populates="restaurant")

    def __repr__(self):
        return f"<Restaurant #{self.id} - {self.name}>"


class StaffMember(Base):
    """
    Staff or kitchen user on a restaurant's roster.

    ``restaurant_id`` is a lookup relation used to scope the member's actions.
    """
    __tablename__ = "staff_members"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    restaurant_id = Column(Integer, ForeignKey("restaurants.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True, unique=True)
    role = Column(Enum(ActorRole), nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow)

    restaurant = relationship("Restaurant", back_populates="staff")

    def __repr__(self):
        return f"<StaffMember #{self.id} - {self.name} - {self.role.value}>"


class MenuItem(Base):
    """
    Menu item owned by exactly one restaurant.

    ``rating_average`` and ``rating_count`` are maintained by the rating
    aggregator only.
    """
    __tablename__ = "menu_items"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    restaurant_id = Column(Integer, ForeignKey("restaurants.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    price = Column(Numeric(10, 2), nullable=False)
    category = Column(String(50), nullable=False, index=True)
    is_vegetarian = Column(Boolean, default=False, nullable=False)
    is_spicy = Column(Boolean, default=False, nullable=False)
    is_out_of_stock = Column(Boolean, default=False, nullable=False)

    # =========================================================================
    # DERIVED RATING STATISTICS
    # =========================================================================
    rating_average = Column(Float, default=0.0, nullable=False)
    rating_count = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<MenuItem #{self.id} - {self.name} - {self.price}>"


class Order(Base):
    """
    Table order from checkout to service.

    Status changes go through conditional updates only; orders are never deleted.
    """
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # =========================================================================
    # LINKAGE
    # =========================================================================
    table_id = Column(String(50), nullable=False, index=True)
    restaurant_id = Column(Integer, ForeignKey("restaurants.id"), nullable=False, index=True)
    customer_id = Column(String(64), nullable=True, index=True)
    customer_name = Column(String(255), nullable=True)

    # =========================================================================
    # ORDER DETAILS
    # =========================================================================
    note = Column(Text, nullable=True)  # order-level cooking instructions
    total_amount = Column(Numeric(10, 2), nullable=False)

    # =========================================================================
    # STATUS & PAYMENT
    # =========================================================================
    status = Column(
        Enum(OrderStatus),
        default=OrderStatus.PENDING_PAYMENT,
        nullable=False,
        index=True
    )
    payment_id = Column(String(100), nullable=True)

    # =========================================================================
    # TIMESTAMPS
    # =========================================================================
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow)

    lines = relationship(
        "OrderLineItem",
        back_populates="order",
        order_by="OrderLineItem.position",
        lazy="selectin",
    )

    def __repr__(self):
        return f"<Order #{self.id} - table {self.table_id} - {self.status.value}>"


class OrderLineItem(Base):
    """One line of an order; name and price are snapshots taken at checkout."""
    __tablename__ = "order_lines"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    position = Column(Integer, nullable=False)
    menu_item_id = Column(Integer, ForeignKey("menu_items.id"), nullable=False)
    name = Column(String(255), nullable=False)
    unit_price = Column(Numeric(10, 2), nullable=False)
    quantity = Column(Integer, nullable=False)
    note = Column(Text, nullable=True)

    order = relationship("Order", back_populates="lines")


class Rating(Base):
    """Customer rating of one menu item on one served order."""
    __tablename__ = "ratings"
    __table_args__ = (
        UniqueConstraint("order_id", "menu_item_id", name="uq_ratings_order_item"),
        CheckConstraint("rating >= 1 AND rating <= 5", name="ck_ratings_range"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    menu_item_id = Column(Integer, ForeignKey("menu_items.id"), nullable=False, index=True)
    restaurant_id = Column(Integer, ForeignKey("restaurants.id"), nullable=False, index=True)
    customer_id = Column(String(64), nullable=True)
    rating = Column(Integer, nullable=False)
    review = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<Rating order #{self.order_id} item #{self.menu_item_id} = {self.rating}>"
