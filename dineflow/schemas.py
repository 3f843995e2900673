"""
Pydantic Schemas for Request/Response Validation

Wire names are camelCase (tableId, restaurantId, totalAmount...), Python
attributes stay snake_case. Money goes out as float rounded to cents.

Author: Khalil Bannouri
Version: 1.0.0
"""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from dineflow.models import ActorRole, OrderStatus
from dineflow.services.store.base import MenuItemRecord, OrderRecord, RatingSummary
from dineflow.services.sync import OrderView


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# =============================================================================
# REQUEST SCHEMAS
# =============================================================================

class OrderLineCreate(CamelModel):
    """Single cart line. ``price`` and ``name`` are accepted but never trusted."""
    menu_item_id: int = Field(..., examples=[12])
    quantity: int = Field(default=1, ge=1, le=99, examples=[2])
    price: Optional[float] = Field(None, examples=[13.5])
    name: Optional[str] = Field(None, max_length=100)
    note: Optional[str] = Field(None, max_length=200, examples=["no onions"])


class OrderCreate(CamelModel):
    """Request schema for checking out a cart."""
    restaurant_id: int = Field(..., examples=[1])
    table_id: str = Field(..., min_length=1, max_length=20, examples=["7"])
    lines: List[OrderLineCreate] = Field(..., min_length=1)
    customer_id: Optional[str] = Field(None, max_length=64)
    customer_name: Optional[str] = Field(None, max_length=100, examples=["Sam"])
    note: Optional[str] = Field(None, max_length=500, examples=["extra spicy please"])
    total_amount: Optional[float] = Field(None, description="Ignored; recomputed server-side")

    @field_validator("table_id", mode="before")
    @classmethod
    def coerce_table_id(cls, v):
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v


class StatusUpdate(CamelModel):
    """Request to move an order to a new status."""
    status: OrderStatus
    actor_restaurant_id: int
    actor_role: Optional[ActorRole] = None
    actor_id: Optional[int] = None
    expected_status: Optional[OrderStatus] = None


class PaymentConfirm(CamelModel):
    customer_id: Optional[str] = None
    simulate_failure: bool = False


class StockUpdate(CamelModel):
    """Out-of-stock toggle from the restaurant side."""
    actor_restaurant_id: int
    is_out_of_stock: bool


class QrResolveRequest(CamelModel):
    payload: str = Field(..., min_length=1)


class RatingItem(CamelModel):
    menu_item_id: int
    rating: int = Field(..., ge=1, le=5)
    review: Optional[str] = Field(None, max_length=1000)


class RatingSubmit(CamelModel):
    order_id: int
    ratings: List[RatingItem] = Field(..., min_length=1)
    customer_id: Optional[str] = None


# =============================================================================
# RESPONSE SCHEMAS
# =============================================================================

class RatingSummaryResponse(CamelModel):
    average: float
    count: int

    @classmethod
    def from_summary(cls, summary: RatingSummary) -> "RatingSummaryResponse":
        return cls(average=round(summary.average, 2), count=summary.count)


class MenuItemResponse(CamelModel):
    id: int
    name: str
    price: float
    category: str
    description: Optional[str] = None
    is_vegetarian: bool = False
    is_spicy: bool = False
    is_out_of_stock: bool = False
    rating: RatingSummaryResponse

    @classmethod
    def from_record(cls, item: MenuItemRecord) -> "MenuItemResponse":
        return cls(
            id=item.id,
            name=item.name,
            price=float(item.price),
            category=item.category,
            description=item.description,
            is_vegetarian=item.is_vegetarian,
            is_spicy=item.is_spicy,
            is_out_of_stock=item.is_out_of_stock,
            rating=RatingSummaryResponse.from_summary(item.rating),
        )


class RestaurantSummary(CamelModel):
    id: int
    name: str


class MenuResponse(CamelModel):
    """Live menu for one table."""
    restaurant: RestaurantSummary
    table_id: str
    menu: List[MenuItemResponse]
    unavailable: List[MenuItemResponse]


class OrderLineResponse(CamelModel):
    menu_item_id: int
    name: str
    price: float
    quantity: int
    note: Optional[str] = None


class OrderResponse(CamelModel):
    """Response schema for a single order."""
    id: int
    restaurant_id: int
    table_id: str
    customer_id: Optional[str] = None
    customer_name: Optional[str] = None
    lines: List[OrderLineResponse]
    total_amount: float
    status: OrderStatus
    note: Optional[str] = None
    payment_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_record(cls, order: OrderRecord) -> "OrderResponse":
        return cls(
            id=order.id,
            restaurant_id=order.restaurant_id,
            table_id=order.table_id,
            customer_id=order.customer_id,
            customer_name=order.customer_name,
            lines=[
                OrderLineResponse(
                    menu_item_id=line.menu_item_id,
                    name=line.name,
                    price=float(line.price),
                    quantity=line.quantity,
                    note=line.note,
                )
                for line in order.lines
            ],
            total_amount=float(order.total_amount),
            status=order.status,
            note=order.note,
            payment_id=order.payment_id,
            created_at=order.created_at,
            updated_at=order.updated_at,
        )


class OrderListResponse(CamelModel):
    """One poll's worth of orders for a view."""
    total: int
    orders: List[OrderResponse]
    view: OrderView
    poll_interval_seconds: float
    fetched_at: datetime


class StatusUpdateResponse(CamelModel):
    id: int
    status: OrderStatus
    previous_status: OrderStatus
    updated_at: datetime


class PaymentResponse(CamelModel):
    success: bool = True
    already_confirmed: bool
    payment_id: Optional[str] = None
    order: OrderResponse


class QrMenuEntry(CamelModel):
    id: str
    name: str
    price: float
    category: str


class QrPayloadResponse(CamelModel):
    """The object printed into a table's code."""
    restaurant_id: str
    restaurant_name: str
    table_id: str
    url: str
    menu: List[QrMenuEntry]


class ItemRatingResponse(CamelModel):
    menu_item_id: int
    rating: RatingSummaryResponse


class RatingSubmitResponse(CamelModel):
    success: bool = True
    order_id: int
    items: List[ItemRatingResponse]


class OrderRatingEntry(CamelModel):
    rating: int
    review: Optional[str] = None


class OrderRatingsResponse(CamelModel):
    order_id: int
    ratings: Dict[str, OrderRatingEntry]


class ErrorResponse(BaseModel):
    """Standard error response."""
    success: bool = False
    error: str
    detail: Optional[str] = None


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    database: str
    redis: str
    payment_service: str
    timestamp: datetime
