"""
FastAPI Application Entry Point

Restaurant order lifecycle service shared by the customer, kitchen, staff and
admin views. The views never talk to each other; each one polls its slice.

Endpoints:
    - GET /menu: Live menu for one table
    - GET /qr/payload, POST /qr/resolve: Table code generation and scanning
    - POST /orders: Checkout
    - GET /orders: Slice read for one view
    - PATCH /orders/{id}/status: Guarded status transition
    - POST /orders/{id}/payment: Idempotent payment confirmation
    - POST /ratings, GET /ratings/order/{id}: Post-service ratings
    - GET /health: System health check

Author: Khalil Bannouri
Version: 1.0.0
"""

import asyncio
import logging
import sys
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Optional

import redis
from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# Windows-specific event loop policy
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

from dineflow.core.config import get_settings, setup_logging
from dineflow.core.exceptions import AuthorizationError, DineFlowError, NotFoundError
from dineflow.database import engine, init_db
from dineflow.models import OrderStatus
from dineflow.schemas import (
    ErrorResponse,
    HealthResponse,
    ItemRatingResponse,
    MenuItemResponse,
    MenuResponse,
    OrderCreate,
    OrderListResponse,
    OrderRatingEntry,
    OrderRatingsResponse,
    OrderResponse,
    PaymentConfirm,
    PaymentResponse,
    QrPayloadResponse,
    QrResolveRequest,
    RatingSubmit,
    RatingSubmitResponse,
    RatingSummaryResponse,
    RestaurantSummary,
    StatusUpdate,
    StatusUpdateResponse,
    StockUpdate,
)
from dineflow.services.orders import Actor, LineRequest, OrderService
from dineflow.services.payment import BasePaymentService, get_payment_service
from dineflow.services.ratings import RatingAggregator
from dineflow.services.store import BaseOrderStore, RatingEntry, get_order_store
from dineflow.services.sync import OrderView, infer_view
from dineflow.services.table_session import TableSession, TableSessionResolver

# Initialize configuration and logging
settings = get_settings()
setup_logging()
logger = logging.getLogger(__name__)


# =============================================================================
# APPLICATION LIFECYCLE
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application startup and shutdown events.
    """
    # Startup
    logger.info("=" * 60)
    logger.info(f"Starting {settings.app_name}")
    logger.info(f"   Version: {settings.app_version}")
    logger.info(f"   Environment: {settings.env_mode.value}")
    logger.info(f"   Debug: {settings.debug}")
    logger.info(
        f"   Poll intervals: kitchen={settings.kitchen_poll_seconds}s "
        f"staff={settings.staff_poll_seconds}s customer={settings.customer_poll_seconds}s "
        f"admin={settings.admin_poll_seconds}s"
    )
    logger.info("=" * 60)

    await init_db()
    logger.info("Database initialized")

    payment_service = get_payment_service()
    logger.info(f"Payment Service: {payment_service.provider_name}")

    missing = settings.validate_production_config()
    if missing:
        logger.warning(f"Production config still at development defaults: {missing}")

    logger.info("Application ready")

    yield  # Application runs

    # Shutdown
    logger.info("Shutting down...")
    await engine.dispose()
    logger.info("Cleanup complete")


# =============================================================================
# APPLICATION INSTANCE
# =============================================================================

app = FastAPI(
    title=settings.app_name,
    description=(
        "Order lifecycle, polling sync, QR table sessions, payment confirmation "
        "and rating aggregation for dine-in restaurants."
    ),
    version=settings.app_version,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# The four views are separate front-ends
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# DEPENDENCIES
# =============================================================================

async def get_order_service(
    store: BaseOrderStore = Depends(get_order_store),
    payment_service: BasePaymentService = Depends(get_payment_service),
) -> OrderService:
    return OrderService(store, payment_service=payment_service, settings=settings)


async def get_rating_aggregator(store: BaseOrderStore = Depends(get_order_store)) -> RatingAggregator:
    return RatingAggregator(store)


async def get_table_resolver(store: BaseOrderStore = Depends(get_order_store)) -> TableSessionResolver:
    return TableSessionResolver(store, settings)


def menu_response(session: TableSession) -> MenuResponse:
    return MenuResponse(
        restaurant=RestaurantSummary(id=session.restaurant.id, name=session.restaurant.name),
        table_id=session.table_id,
        menu=[MenuItemResponse.from_record(i) for i in session.orderable],
        unavailable=[MenuItemResponse.from_record(i) for i in session.unavailable],
    )


# =============================================================================
# ROOT & HEALTH ENDPOINTS
# =============================================================================

@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    """API root with navigation links."""
    return {
        "message": f"Welcome to {settings.app_name}",
        "version": settings.app_version,
        "environment": settings.env_mode.value,
        "documentation": "/docs",
        "health": "/health",
    }


@app.get(
    "/health",
    response_model=HealthResponse,
    tags=["Health"],
    summary="System Health Check",
)
async def health_check(
    store: BaseOrderStore = Depends(get_order_store),
    payment_service: BasePaymentService = Depends(get_payment_service),
) -> HealthResponse:
    """Verify all system components are operational."""

    db_status = "healthy" if await store.health_check() else "unhealthy"

    redis_status = "healthy"
    try:
        r = redis.Redis.from_url(settings.redis_url, socket_timeout=2)
        r.ping()
        r.close()
    except redis.RedisError as e:
        redis_status = f"unhealthy: {str(e)}"
        logger.error(f"Redis health check failed: {e}")

    payment_status = "healthy" if await payment_service.health_check() else "unhealthy"

    overall = "operational" if all(
        s == "healthy" for s in [db_status, redis_status, payment_status]
    ) else "degraded"

    return HealthResponse(
        status=overall,
        database=db_status,
        redis=redis_status,
        payment_service=payment_status,
        timestamp=datetime.now(timezone.utc),
    )


# =============================================================================
# MENU & TABLE SESSION ENDPOINTS
# =============================================================================

@app.get(
    "/menu",
    response_model=MenuResponse,
    tags=["Menu"],
    summary="Live menu for a table",
)
async def get_menu(
    restaurant_id: int = Query(..., alias="restaurantId"),
    table_id: str = Query(..., alias="tableId"),
    resolver: TableSessionResolver = Depends(get_table_resolver),
) -> MenuResponse:
    """Stock and prices are always read live; out-of-stock items are listed separately."""
    session = await resolver.resolve(restaurant_id, table_id)
    return menu_response(session)


@app.patch(
    "/menu/{item_id}/stock",
    response_model=MenuItemResponse,
    tags=["Menu"],
)
async def update_stock(
    item_id: int,
    body: StockUpdate,
    store: BaseOrderStore = Depends(get_order_store),
) -> MenuItemResponse:
    """Mark a menu item in or out of stock."""
    item = await store.get_menu_item(item_id)
    if item is None:
        raise NotFoundError(f"Menu item #{item_id} not found")
    if item.restaurant_id != body.actor_restaurant_id:
        raise AuthorizationError("You do not have permission to update this menu item")

    updated = await store.update_menu_item(item_id, is_out_of_stock=body.is_out_of_stock)
    logger.info(
        f"Menu item #{item_id} ({updated.name}) "
        f"{'out of stock' if updated.is_out_of_stock else 'back in stock'}"
    )
    return MenuItemResponse.from_record(updated)


@app.get(
    "/qr/payload",
    response_model=QrPayloadResponse,
    tags=["QR"],
    summary="Build the payload printed into a table code",
)
async def qr_payload(
    restaurant_id: int = Query(..., alias="restaurantId"),
    table_id: str = Query(..., alias="tableId"),
    resolver: TableSessionResolver = Depends(get_table_resolver),
) -> QrPayloadResponse:
    payload = await resolver.build_payload(restaurant_id, table_id)
    return QrPayloadResponse.model_validate(payload)


@app.post(
    "/qr/resolve",
    response_model=MenuResponse,
    tags=["QR"],
    summary="Resolve a scanned table code",
)
async def qr_resolve(
    body: QrResolveRequest,
    resolver: TableSessionResolver = Depends(get_table_resolver),
) -> MenuResponse:
    """Accepts the JSON payload or the deep-link URL; any embedded menu is ignored."""
    session = await resolver.resolve_payload(body.payload)
    return menu_response(session)


# =============================================================================
# ORDER ENDPOINTS
# =============================================================================

@app.post(
    "/orders",
    response_model=OrderResponse,
    status_code=201,
    tags=["Orders"],
    summary="Check out a cart",
)
async def create_order(
    body: OrderCreate,
    service: OrderService = Depends(get_order_service),
) -> OrderResponse:
    """
    Create an order in PENDING_PAYMENT.

    Line names and prices are taken from the live menu; the submitted
    prices and total are ignored.
    """
    order = await service.create_order(
        restaurant_id=body.restaurant_id,
        table_id=body.table_id,
        lines=[
            LineRequest(menu_item_id=line.menu_item_id, quantity=line.quantity, note=line.note)
            for line in body.lines
        ],
        customer_id=body.customer_id,
        customer_name=body.customer_name,
        note=body.note,
    )
    return OrderResponse.from_record(order)


@app.get(
    "/orders",
    response_model=OrderListResponse,
    tags=["Orders"],
    summary="Slice read for one view",
)
async def list_orders(
    restaurant_id: Optional[int] = Query(None, alias="restaurantId"),
    status: Optional[OrderStatus] = Query(None),
    view: Optional[OrderView] = Query(None),
    table_id: Optional[str] = Query(None, alias="tableId"),
    customer_id: Optional[str] = Query(None, alias="customerId"),
    service: OrderService = Depends(get_order_service),
) -> OrderListResponse:
    """
    Kitchen: PAID and IN_PROGRESS only. Staff/Admin: every order of the
    restaurant. Customer: one table (with restaurantId) or one customer.
    Newest first.
    """
    view = infer_view(view, table_id=table_id, customer_id=customer_id)
    result = await service.list_slice(
        view,
        restaurant_id=restaurant_id,
        status=status,
        table_id=table_id,
        customer_id=customer_id,
    )
    return OrderListResponse(
        total=len(result.orders),
        orders=[OrderResponse.from_record(o) for o in result.orders],
        view=result.view,
        poll_interval_seconds=result.poll_interval_seconds,
        fetched_at=result.fetched_at,
    )


@app.get(
    "/orders/{order_id}",
    response_model=OrderResponse,
    tags=["Orders"],
)
async def get_order(
    order_id: int,
    service: OrderService = Depends(get_order_service),
) -> OrderResponse:
    """Get a specific order by ID."""
    return OrderResponse.from_record(await service.get_order(order_id))


@app.patch(
    "/orders/{order_id}/status",
    response_model=StatusUpdateResponse,
    tags=["Orders"],
    summary="Guarded status transition",
)
async def update_order_status(
    order_id: int,
    body: StatusUpdate,
    service: OrderService = Depends(get_order_service),
) -> StatusUpdateResponse:
    """
    Applies only if the order is still in the transition's predecessor
    status; otherwise 409 and the caller must refresh.
    """
    result = await service.transition(
        order_id,
        body.status,
        Actor(
            restaurant_id=body.actor_restaurant_id,
            role=body.actor_role,
            actor_id=body.actor_id,
        ),
        expected=body.expected_status,
    )
    return StatusUpdateResponse(
        id=result.order.id,
        status=result.order.status,
        previous_status=result.previous_status,
        updated_at=result.order.updated_at,
    )


@app.post(
    "/orders/{order_id}/payment",
    response_model=PaymentResponse,
    tags=["Payment"],
    summary="Confirm payment for an order",
)
async def confirm_payment(
    order_id: int,
    body: Optional[PaymentConfirm] = None,
    service: OrderService = Depends(get_order_service),
) -> PaymentResponse:
    """Safe to retry: an order that is already paid is returned as-is."""
    body = body or PaymentConfirm()
    confirmation = await service.confirm_payment(
        order_id,
        customer_id=body.customer_id,
        simulate_failure=body.simulate_failure,
    )
    return PaymentResponse(
        already_confirmed=confirmation.already_confirmed,
        payment_id=confirmation.order.payment_id,
        order=OrderResponse.from_record(confirmation.order),
    )


# =============================================================================
# RATING ENDPOINTS
# =============================================================================

@app.post(
    "/ratings",
    response_model=RatingSubmitResponse,
    tags=["Ratings"],
    summary="Rate the items of a served order",
)
async def submit_ratings(
    body: RatingSubmit,
    aggregator: RatingAggregator = Depends(get_rating_aggregator),
) -> RatingSubmitResponse:
    summaries = await aggregator.submit(
        body.order_id,
        [RatingEntry(r.menu_item_id, r.rating, r.review) for r in body.ratings],
        customer_id=body.customer_id,
    )
    return RatingSubmitResponse(
        order_id=body.order_id,
        items=[
            ItemRatingResponse(
                menu_item_id=item_id,
                rating=RatingSummaryResponse.from_summary(summary),
            )
            for item_id, summary in sorted(summaries.items())
        ],
    )


@app.get(
    "/ratings/order/{order_id}",
    response_model=OrderRatingsResponse,
    tags=["Ratings"],
)
async def get_order_ratings(
    order_id: int,
    aggregator: RatingAggregator = Depends(get_rating_aggregator),
) -> OrderRatingsResponse:
    """What this order's customer already rated."""
    records = await aggregator.order_ratings(order_id)
    return OrderRatingsResponse(
        order_id=order_id,
        ratings={
            str(r.menu_item_id): OrderRatingEntry(rating=r.rating, review=r.review)
            for r in records
        },
    )


# =============================================================================
# ERROR HANDLERS
# =============================================================================

def error_body(code: str, detail: Optional[str]) -> dict[str, Any]:
    return ErrorResponse(error=code, detail=detail).model_dump()


@app.exception_handler(DineFlowError)
async def dineflow_exception_handler(request: Request, exc: DineFlowError) -> JSONResponse:
    """Map the error taxonomy onto HTTP statuses."""
    if exc.status_code >= 500:
        logger.error(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
    else:
        logger.info(f"{exc.code} on {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=error_body(exc.code, exc.message))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed requests are 400, like every other validation failure."""
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        messages.append(f"{location}: {error.get('msg')}" if location else error.get("msg"))
    return JSONResponse(status_code=400, content=error_body("validation_error", "; ".join(messages)))


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all exception handler."""
    logger.exception(f"Unhandled exception: {exc}")

    return JSONResponse(
        status_code=500,
        content=error_body(
            "internal_error",
            str(exc) if settings.debug else "An unexpected error occurred",
        ),
    )


# =============================================================================
# DEVELOPMENT SERVER
# =============================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "dineflow.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.is_development,
    )
