"""
Payment Service Factory

Provides a single entry point for obtaining a payment service instance.
The order lifecycle stays agnostic about which implementation is used.

Usage:
    from dineflow.services.payment import get_payment_service

    payment_service = get_payment_service()
    result = await payment_service.process_payment(order_id=42, amount=29.99)

Author: Khalil Bannouri
Version: 1.0.0
"""

import logging
from functools import lru_cache

from dineflow.core.config import get_settings
from dineflow.services.payment.base import BasePaymentService, PaymentResult
from dineflow.services.payment.mock import MockPaymentService

logger = logging.getLogger(__name__)


@lru_cache()
def get_payment_service() -> BasePaymentService:
    """
    Get the configured payment service instance.

    The gateway is stubbed in every environment; the delay and decline rate
    come from settings. The instance is cached.

    Returns:
        BasePaymentService: Configured payment service instance
    """
    settings = get_settings()
    logger.info(f"Payment Service: Using MockPaymentService ({settings.env_mode.value} mode)")
    return MockPaymentService(
        delay_seconds=settings.payment_delay_seconds,
        failure_rate=settings.payment_failure_rate,
    )


__all__ = [
    "get_payment_service",
    "BasePaymentService",
    "PaymentResult",
    "MockPaymentService",
]
