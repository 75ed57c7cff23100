"""
Payment services for coordinating payment operations.

This module provides:
- TokenCache: Serves and refreshes the gateway OAuth token
- Ledger: Atomic reads and writes of invoices and transactions
- OrderOrchestrator: Entry point for starting a payment
- ReconciliationEngine: Applies gateway status to local state

Usage:
    from payments.services import CreateOrderParams, OrderOrchestrator

    creation = OrderOrchestrator.create_order(
        CreateOrderParams(invoice_id=invoice.id, amount=invoice.amount, owner=user)
    )

    from payments.services import ReconciliationEngine

    outcome = ReconciliationEngine.reconcile(creation.gateway_order_id)
"""

from payments.services.ledger import Ledger, TransactionRecord
from payments.services.order_orchestrator import (
    CreateOrderParams,
    OrderCreation,
    OrderOrchestrator,
)
from payments.services.reconciliation_engine import (
    ReconciliationEngine,
    ReconciliationOutcome,
)
from payments.services.token_cache import TokenCache, TokenResult

__all__ = [
    "CreateOrderParams",
    "Ledger",
    "OrderCreation",
    "OrderOrchestrator",
    "ReconciliationEngine",
    "ReconciliationOutcome",
    "TokenCache",
    "TokenResult",
    "TransactionRecord",
]
