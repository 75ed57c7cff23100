"""
State enums for payment models.

This module defines all state enums used by payment models with django-fsm.
These are Django TextChoices for database storage and admin integration.

State Machines Overview:

Invoice States:
    pending → payment_initiated → paid
    (no regression; a failed attempt leaves the invoice payment_initiated)

Transaction States:
    initiated → success | failure | cancelled | expired   (terminal, absorbing)
    initiated → initiated                                 (non-terminal gateway state,
                                                           counters only)

WebhookEvent States:
    pending → processing → processed
    pending → processing → failed → processing (retry)
"""

from django.db import models


class InvoiceStatus(models.TextChoices):
    """
    States for the Invoice lifecycle.

    Invoices are created elsewhere in PENDING. Order creation moves them
    to PAYMENT_INITIATED; a successful reconciliation moves them to PAID.
    """

    PENDING = "pending", "Pending"
    PAYMENT_INITIATED = "payment_initiated", "Payment Initiated"
    PAID = "paid", "Paid"


class TransactionStatus(models.TextChoices):
    """
    States for the Transaction lifecycle.

    Terminal states: SUCCESS, FAILURE, CANCELLED, EXPIRED

    PENDING is reserved for rows written by external processes; the
    reconciliation engine never moves a transaction into it.
    """

    INITIATED = "initiated", "Initiated"
    PENDING = "pending", "Pending"
    SUCCESS = "success", "Success"
    FAILURE = "failure", "Failure"
    CANCELLED = "cancelled", "Cancelled"
    EXPIRED = "expired", "Expired"


TERMINAL_TRANSACTION_STATUSES = frozenset(
    {
        TransactionStatus.SUCCESS,
        TransactionStatus.FAILURE,
        TransactionStatus.CANCELLED,
        TransactionStatus.EXPIRED,
    }
)

OPEN_TRANSACTION_STATUSES = (TransactionStatus.INITIATED, TransactionStatus.PENDING)


def is_terminal_status(value: str) -> bool:
    """Check whether a transaction status value is terminal."""
    return value in TERMINAL_TRANSACTION_STATUSES


class TokenSource(models.TextChoices):
    """Where TokenCache served a gateway credential from."""

    CACHED = "cached", "Cached"
    FRESH = "fresh", "Fresh"


class WebhookEventStatus(models.TextChoices):
    """
    Processing status for gateway callback events.

    Used for idempotent webhook handling and retry logic.
    """

    PENDING = "pending", "Pending"
    PROCESSING = "processing", "Processing"
    PROCESSED = "processed", "Processed"
    FAILED = "failed", "Failed"
