"""
Core module initialization.
Exports configuration, logging utilities and the error taxonomy.
"""

from dineflow.core.config import get_settings, Settings, EnvironmentMode, setup_logging
from dineflow.core.exceptions import (
    DineFlowError,
    ValidationError,
    NotFoundError,
    AuthorizationError,
    ConflictError,
    PaymentDeclinedError,
    StoreUnavailable,
)

__all__ = [
    "get_settings",
    "Settings",
    "EnvironmentMode",
    "setup_logging",
    "DineFlowError",
    "ValidationError",
    "NotFoundError",
    "AuthorizationError",
    "ConflictError",
    "PaymentDeclinedError",
    "StoreUnavailable",
]
