"""
External service adapters for payment processing.

This package provides adapters for third-party payment services.
All gateway calls should go through these adapters.
"""

from payments.adapters.phonepe_adapter import (
    AccessTokenResult,
    CreateOrderParams,
    OrderResult,
    OrderStatusResult,
    PhonePeAdapter,
    is_retryable_gateway_error,
)

__all__ = [
    "AccessTokenResult",
    "CreateOrderParams",
    "OrderResult",
    "OrderStatusResult",
    "PhonePeAdapter",
    "is_retryable_gateway_error",
]
