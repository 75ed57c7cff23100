"""
Payment domain models.

This module contains all payment-related models:
- Invoice: Amount a user owes a vendor (pending → payment_initiated → paid)
- Transaction: One gateway payment attempt for an invoice
- GatewayAuthToken: Cached OAuth credential for the gateway
- WebhookEvent: Gateway callback tracking for idempotent processing
"""

from payments.models.auth_token import GatewayAuthToken
from payments.models.invoice import Invoice
from payments.models.transaction import Transaction
from payments.models.webhook_event import WebhookEvent

__all__ = [
    "GatewayAuthToken",
    "Invoice",
    "Transaction",
    "WebhookEvent",
]
