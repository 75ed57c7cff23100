"""
Payment-specific exceptions for payment operations.

This module provides a hierarchy of exceptions for the payment core:
ledger validation, gateway communication, idempotency conflicts and
persistence failures after an external side effect.

Exception Hierarchy:
    PaymentError (base for payment domain, 500)
    ├── PaymentValidationError - Bad input or business rule (400)
    │   ├── InvoiceNotPayableError - Invoice is not pending
    │   └── AmountMismatchError - Caller amount differs from stored amount
    ├── PaymentNotFoundError - Lookup failures (404)
    │   ├── InvoiceNotFoundError
    │   └── TransactionNotFoundError
    └── PersistencyFailureError - Local write failed (500)
        └── PersistAfterGatewaySuccessError - ...after the gateway accepted an order

    GatewayError (ExternalServiceError, 502)
    ├── AuthUnavailableError - Credential fetch/refresh failed (503, retryable)
    └── GatewayRequestFailedError - Upstream non-2xx/timeout (502, retryable)

    DuplicateReferenceError - merchant reference already used (ConflictError)
    AlreadyFinalizedError - Transaction already terminal (ConflictError)
    InvalidStateTransitionError - FSM transition not allowed (ConflictError)

Usage:
    from payments.exceptions import GatewayRequestFailedError

    try:
        PhonePeAdapter.fetch_order_status(order_id, token)
    except GatewayRequestFailedError as e:
        if e.is_retryable:
            schedule_retry()
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.exceptions import (
    BaseApplicationError,
    ConflictError,
    ExternalServiceError,
)

if TYPE_CHECKING:
    from typing import Any


# =============================================================================
# Payment Domain Exceptions
# =============================================================================


class PaymentError(BaseApplicationError):
    """
    Base exception for all payment operations.

    Inherits from BaseApplicationError so the API exception handler can
    render it into the standard failure envelope.
    """

    default_error_code: str = "PAYMENT_ERROR"


class PaymentValidationError(PaymentError):
    """
    Raised when payment input fails validation.

    Always user-visible; non-retriable without new input.
    """

    default_error_code: str = "PAYMENT_VALIDATION_ERROR"
    http_status: int = 400


class InvoiceNotPayableError(PaymentValidationError):
    """Raised when an order is requested for an invoice that is not pending."""

    default_error_code: str = "INVOICE_NOT_PENDING"


class AmountMismatchError(PaymentValidationError):
    """
    Raised when the caller-supplied amount differs from the invoice amount.

    Example:
        raise AmountMismatchError(
            "Amount mismatch",
            details={"expected": "100.00", "received": "99.00"},
        )
    """

    default_error_code: str = "AMOUNT_MISMATCH"


class PaymentNotFoundError(PaymentError):
    """Raised when a payment entity lookup fails."""

    default_error_code: str = "PAYMENT_NOT_FOUND"
    http_status: int = 404


class InvoiceNotFoundError(PaymentNotFoundError):
    """Raised when an invoice does not exist or belongs to another user."""

    default_error_code: str = "INVOICE_NOT_FOUND"


class TransactionNotFoundError(PaymentNotFoundError):
    """Raised when no transaction matches a gateway order id or merchant reference."""

    default_error_code: str = "TRANSACTION_NOT_FOUND"


class PersistencyFailureError(PaymentError):
    """
    Raised when a local write fails after an external side effect.

    Logged at CRITICAL level by the raiser so operators can reconcile
    manually.
    """

    default_error_code: str = "PERSISTENCE_FAILURE"


class PersistAfterGatewaySuccessError(PersistencyFailureError):
    """
    Raised when the gateway created an order but the local insert failed.

    Callers must not blindly retry order creation: a retry creates a second
    gateway order. Reconcile against gateway_order_id instead.

    Attributes:
        gateway_order_id: Order id the gateway returned
        merchant_reference: Merchant order id sent to the gateway
    """

    default_error_code: str = "PERSIST_AFTER_GATEWAY_SUCCESS"

    def __init__(
        self,
        message: str,
        gateway_order_id: str,
        merchant_reference: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = details or {}
        details["gateway_order_id"] = gateway_order_id
        details["merchant_reference"] = merchant_reference
        super().__init__(message, error_code=error_code, details=details)
        self.gateway_order_id = gateway_order_id
        self.merchant_reference = merchant_reference


# =============================================================================
# Gateway Exceptions
# =============================================================================


class GatewayError(ExternalServiceError):
    """
    Base exception for payment gateway communication errors.

    Attributes:
        status_code: Upstream HTTP status (None for transport errors)
        body: Upstream response body, kept for diagnostics
        is_retryable: Whether the operation can be retried after backoff
    """

    default_error_code: str = "GATEWAY_ERROR"
    is_retryable: bool = False

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        body: str | None = None,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = details or {}
        if status_code is not None:
            details["upstream_status"] = status_code
        if body:
            details["upstream_body"] = body[:2000]
        super().__init__(message, error_code=error_code, details=details)
        self.status_code = status_code
        self.body = body


class AuthUnavailableError(GatewayError):
    """
    Raised when a gateway access token cannot be obtained.

    Covers missing client credentials and OAuth endpoint failures.
    Retriable by the caller after backoff.
    """

    default_error_code: str = "GATEWAY_AUTH_UNAVAILABLE"
    http_status: int = 503
    is_retryable: bool = True


class GatewayRequestFailedError(GatewayError):
    """
    Raised when a gateway API call fails (non-2xx, timeout, bad response).

    Safe to retry for read-only status checks. Order creation must not be
    retried without first checking for an existing transaction by reference.
    """

    default_error_code: str = "GATEWAY_REQUEST_FAILED"
    is_retryable: bool = True


# =============================================================================
# Idempotency & Concurrency Exceptions
# =============================================================================


class DuplicateReferenceError(ConflictError):
    """
    Raised when a transaction with the same merchant reference already exists.

    Treated as success-equivalent by callers that retry.
    """

    default_error_code: str = "DUPLICATE_REFERENCE"


class AlreadyFinalizedError(ConflictError):
    """
    Raised when a terminal transaction would move to a different terminal state.

    The reconciliation engine treats this as success-equivalent and returns
    the stored outcome.

    Attributes:
        current_status: The terminal status already stored
    """

    default_error_code: str = "ALREADY_FINALIZED"

    def __init__(
        self,
        message: str,
        current_status: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = details or {}
        details["current_status"] = current_status
        super().__init__(message, error_code=error_code, details=details)
        self.current_status = current_status


class InvalidStateTransitionError(ConflictError):
    """
    Raised when a state machine transition is not allowed.

    Wraps django-fsm's TransitionNotAllowed to provide the standard
    error format with additional context.
    """

    default_error_code: str = "INVALID_STATE_TRANSITION"


# =============================================================================
# Exports
# =============================================================================

__all__ = [
    "AlreadyFinalizedError",
    "AmountMismatchError",
    "AuthUnavailableError",
    "DuplicateReferenceError",
    "GatewayError",
    "GatewayRequestFailedError",
    "InvalidStateTransitionError",
    "InvoiceNotFoundError",
    "InvoiceNotPayableError",
    "PaymentError",
    "PaymentNotFoundError",
    "PaymentValidationError",
    "PersistAfterGatewaySuccessError",
    "PersistencyFailureError",
    "TransactionNotFoundError",
]
