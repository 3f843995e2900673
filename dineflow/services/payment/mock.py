"""
Mock Payment Service Implementation

Stands in for the payment gateway: "processing" is a fixed artificial delay
followed by an approval, the same shape the table-side checkout expects.

Behavior:
    - Waits a fixed, configurable delay (cancellable asyncio.sleep)
    - Optionally declines a share of payments (failure_rate)
    - Declines on request (simulate_failure) so the unpaid path can be exercised
    - Generates gateway-like IDs (pay_mock_xxx)

Author: Khalil Bannouri
Version: 1.0.0
"""

import asyncio
import logging
import random
import uuid
from datetime import datetime

from dineflow.services.payment.base import BasePaymentService, PaymentResult

logger = logging.getLogger(__name__)


class MockPaymentService(BasePaymentService):
    """
    Mock implementation of the payment service.

    Attributes:
        delay_seconds: Fixed simulated processing time
        failure_rate: Probability of simulated payment failure (0.0-1.0)

    Example:
        >>> service = MockPaymentService(delay_seconds=0)
        >>> result = await service.process_payment(order_id=1, amount=25.0)
        >>> result.success
        True
    """

    # Simulated failure reasons (mimics real card decline codes)
    DECLINE_REASONS = [
        ("card_declined", "Your card was declined."),
        ("insufficient_funds", "Your card has insufficient funds."),
        ("expired_card", "Your card has expired."),
        ("processing_error", "An error occurred while processing your card."),
    ]

    def __init__(self, delay_seconds: float = 1.5, failure_rate: float = 0.0):
        self.delay_seconds = delay_seconds
        self.failure_rate = failure_rate

        logger.info(
            f"MockPaymentService initialized "
            f"(delay={delay_seconds}s, failure_rate={failure_rate:.0%})"
        )

    @property
    def provider_name(self) -> str:
        """Return the provider name."""
        return "mock"

    def _generate_payment_id(self) -> str:
        return f"pay_mock_{uuid.uuid4().hex[:24]}"

    def _should_fail(self) -> bool:
        return self.failure_rate > 0 and random.random() < self.failure_rate

    async def process_payment(
        self,
        order_id: int,
        amount: float,
        currency: str = "usd",
        simulate_failure: bool = False,
    ) -> PaymentResult:
        """
        Simulate charging an order.

        Behavior:
            - Rejects non-positive amounts immediately
            - Sleeps the fixed delay
            - Declines when asked to or when the failure draw hits
        """
        start_time = datetime.now()

        if amount <= 0:
            return PaymentResult(
                success=False,
                amount=amount,
                currency=currency,
                error_message="Amount must be greater than 0",
                error_code="invalid_amount",
            )

        logger.debug(f"Mock: Processing order #{order_id} - {amount:.2f} {currency.upper()}")
        await asyncio.sleep(self.delay_seconds)
        elapsed_ms = (datetime.now() - start_time).total_seconds() * 1000

        if simulate_failure or self._should_fail():
            error_code, error_message = random.choice(self.DECLINE_REASONS)
            logger.info(f"Mock: Payment for order #{order_id} declined - {error_code}")
            return PaymentResult(
                success=False,
                amount=amount,
                currency=currency,
                error_message=error_message,
                error_code=error_code,
                response_time_ms=elapsed_ms,
            )

        payment_id = self._generate_payment_id()
        logger.info(f"Mock: Payment successful - {payment_id} - order #{order_id} - {amount:.2f}")

        return PaymentResult(
            success=True,
            payment_id=payment_id,
            amount=amount,
            currency=currency,
            response_time_ms=elapsed_ms,
        )

    async def health_check(self) -> bool:
        """Mock health check always returns True."""
        return True
