"""
Custom exceptions for the ordering core.

Every error raised by the services carries the HTTP status it maps to and a
machine-readable code, so the API layer can translate it with one handler.
"""

from typing import Optional


class DineFlowError(Exception):
    """Base exception for ordering-core errors."""

    status_code: int = 500
    code: str = "internal_error"

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(DineFlowError):
    """Raised when a request is malformed or missing fields. Nothing was written."""

    status_code = 400
    code = "validation_error"


class NotFoundError(DineFlowError):
    """Raised when a restaurant, table, menu item or order does not exist."""

    status_code = 404
    code = "not_found"


class AuthorizationError(DineFlowError):
    """Raised when the actor is not scoped to the resource it tries to touch."""

    status_code = 403
    code = "forbidden"


class ConflictError(DineFlowError):
    """
    Raised when a conditional status update finds a different status than expected.

    Never retried automatically: the caller must refresh its view first.
    """

    status_code = 409
    code = "conflict"

    def __init__(
        self,
        order_id: int,
        current_status: Optional[str] = None,
        message: Optional[str] = None,
    ):
        self.order_id = order_id
        self.current_status = current_status
        if message is None:
            now = f" (now {current_status})" if current_status else ""
            message = (
                f"Order #{order_id} was just updated elsewhere{now}; "
                f"refresh and retry"
            )
        super().__init__(
            message,
            details={"order_id": order_id, "current_status": current_status},
        )


class PaymentDeclinedError(DineFlowError):
    """Raised when the payment gateway declines. The order stays unpaid."""

    status_code = 402
    code = "payment_declined"

    def __init__(self, order_id: int, reason: str, error_code: Optional[str] = None):
        self.order_id = order_id
        self.error_code = error_code
        super().__init__(
            f"Payment for order #{order_id} failed: {reason}",
            details={"order_id": order_id, "decline_code": error_code},
        )


class StoreUnavailable(DineFlowError):
    """Raised when the backing store cannot be reached."""

    status_code = 503
    code = "store_unavailable"
