"""
Celery Tasks
Background checks on the order store.

Orders left in PENDING_PAYMENT are only reported, never cancelled: a customer
may still come back and pay.
"""

import asyncio
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from dineflow.celery_worker import celery_app
from dineflow.core.config import Settings, get_settings
from dineflow.core.exceptions import StoreUnavailable
from dineflow.services.orders import OrderService
from dineflow.services.payment import get_payment_service
from dineflow.services.store import BaseOrderStore, SqlOrderStore

logger = logging.getLogger(__name__)


async def collect_stale_payments(
    store: BaseOrderStore,
    settings: Optional[Settings] = None,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    """
    Summarize orders stuck in PENDING_PAYMENT.

    Returns:
        dict with the threshold, the count and one entry per stale order
    """
    settings = settings or get_settings()
    now = now or datetime.now(timezone.utc)
    service = OrderService(store, payment_service=get_payment_service(), settings=settings)
    stale = await service.find_stale_pending(
        timedelta(minutes=settings.stale_payment_minutes),
        now=now,
    )

    for order in stale:
        age_minutes = int((now - _aware(order.created_at)).total_seconds() // 60)
        logger.warning(
            f"Order #{order.id} (restaurant #{order.restaurant_id}, table {order.table_id}) "
            f"unpaid for {age_minutes} min"
        )

    return {
        'threshold_minutes': settings.stale_payment_minutes,
        'count': len(stale),
        'orders': [
            {
                'order_id': o.id,
                'restaurant_id': o.restaurant_id,
                'table_id': o.table_id,
                'total_amount': float(o.total_amount),
                'created_at': o.created_at.isoformat(),
            }
            for o in stale
        ],
        'checked_at': now.isoformat(),
    }


def _aware(value: datetime) -> datetime:
    # SQLite hands back naive timestamps
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


async def _report_from_database(settings: Settings) -> dict[str, Any]:
    """Run the report on a private engine; the worker has no request session."""
    engine = create_async_engine(settings.database_url)
    session_maker = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
    try:
        async with session_maker() as session:
            return await collect_stale_payments(SqlOrderStore(session), settings)
    finally:
        await engine.dispose()


@celery_app.task(
    bind=True,
    max_retries=3,
    default_retry_delay=30,
    autoretry_for=(StoreUnavailable,),
    retry_backoff=True
)
def report_stale_payments(self) -> dict:
    """
    Periodic report of unpaid orders.

    Retried with backoff while the database is unreachable.

    Returns:
        dict: Summary produced by collect_stale_payments
    """
    task_id = self.request.id
    start_time = time.time()

    result = asyncio.run(_report_from_database(get_settings()))

    elapsed = round(time.time() - start_time, 3)
    result['task_id'] = task_id
    result['processing_time_seconds'] = elapsed
    logger.info(f"Task {task_id}: {result['count']} stale unpaid orders ({elapsed}s)")
    return result


@celery_app.task
def health_check() -> dict:
    """
    Simple health check task to verify Celery is working.
    """
    return {
        'status': 'healthy',
        'worker': 'celery',
        'timestamp': datetime.now(timezone.utc).isoformat()
    }
