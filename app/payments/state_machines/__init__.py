"""
State machine enums and helpers for payment models.

This module defines the state enums used by payment models with django-fsm
and the total mapping from gateway status strings to transaction states.
"""

from payments.state_machines.states import (
    OPEN_TRANSACTION_STATUSES,
    TERMINAL_TRANSACTION_STATUSES,
    InvoiceStatus,
    TokenSource,
    TransactionStatus,
    WebhookEventStatus,
    is_terminal_status,
)
from payments.state_machines.status_mapping import (
    extract_failure_reason,
    extract_gateway_status,
    map_gateway_status,
    normalize_gateway_status,
)

__all__ = [
    "InvoiceStatus",
    "OPEN_TRANSACTION_STATUSES",
    "TERMINAL_TRANSACTION_STATUSES",
    "TokenSource",
    "TransactionStatus",
    "WebhookEventStatus",
    "extract_failure_reason",
    "extract_gateway_status",
    "is_terminal_status",
    "map_gateway_status",
    "normalize_gateway_status",
]
