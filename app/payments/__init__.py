"""
Payments app for PhonePe checkout integration.

This app handles:
- Order creation for pending invoices
- Gateway OAuth token caching
- Transaction and invoice state (the ledger)
- Reconciliation from callbacks, client reports and polling
- Callback event handling

Related apps:
    - core: Base models, service layer, exception handling

Usage:
    from payments.services import CreateOrderParams, OrderOrchestrator

    creation = OrderOrchestrator.create_order(
        CreateOrderParams(invoice_id=invoice.id, amount=invoice.amount, owner=user)
    )

    from payments.services import ReconciliationEngine

    outcome = ReconciliationEngine.reconcile(creation.gateway_order_id)
"""
