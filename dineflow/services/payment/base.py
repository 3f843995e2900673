"""
Payment Service Abstract Base Class

Defines the interface contract for payment gateway implementations.
Order confirmation talks to this interface only, so a real gateway can be
dropped in without touching the order lifecycle.

Design Pattern: Strategy Pattern

Author: Khalil Bannouri
Version: 1.0.0
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional


@dataclass
class PaymentResult:
    """
    Standardized result from payment processing.

    Attributes:
        success: Whether the payment was successful
        payment_id: Unique identifier for the payment
        amount: Amount charged
        currency: Currency code (e.g., "usd")
        error_message: Error description if payment failed
        error_code: Machine-readable error code
        response_time_ms: Time taken to process the payment
    """
    success: bool
    payment_id: Optional[str] = None
    amount: Optional[float] = None
    currency: str = "usd"
    error_message: Optional[str] = None
    error_code: Optional[str] = None
    response_time_ms: float = 0.0

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "success": self.success,
            "payment_id": self.payment_id,
            "amount": self.amount,
            "currency": self.currency,
            "error_message": self.error_message,
            "error_code": self.error_code,
            "response_time_ms": self.response_time_ms,
        }


class BasePaymentService(ABC):
    """
    Abstract base class for payment services.

    Example:
        >>> service = get_payment_service()
        >>> result = await service.process_payment(order_id=42, amount=25.0)
        >>> if result.success:
        ...     print(f"Payment ID: {result.payment_id}")
    """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """
        Return the name of the payment provider.

        Returns:
            str: Provider name (e.g., "mock")
        """
        pass

    @abstractmethod
    async def process_payment(
        self,
        order_id: int,
        amount: float,
        currency: str = "usd",
        simulate_failure: bool = False,
    ) -> PaymentResult:
        """
        Charge the amount of one order.

        Args:
            order_id: Order being paid, attached as reference
            amount: Amount to charge in currency units (e.g., 29.99)
            currency: Three-letter currency code
            simulate_failure: Force a decline (test and demo hook)

        Returns:
            PaymentResult: Standardized result object
        """
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """
        Verify connectivity to the payment service.

        Returns:
            bool: True if service is reachable and operational
        """
        pass
