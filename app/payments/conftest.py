"""
Pytest fixtures for payment tests.

This module provides fixtures for creating payment-related test data.
It sits at the app root so the model, service, adapter and webhook test
packages share it.
Fixtures provide invoices and transactions in the states the payment
flow moves them through, plus helpers for gateway credentials.

Usage:
    def test_mark_success(initiated_transaction):
        initiated_transaction.mark_success()
        initiated_transaction.save()
        assert initiated_transaction.status == TransactionStatus.SUCCESS
"""

import hashlib
from decimal import Decimal

import pytest
from django.utils import timezone
from rest_framework.test import APIClient

from payments.state_machines import InvoiceStatus, TransactionStatus
from payments.tests.factories import (
    GatewayAuthTokenFactory,
    InvoiceFactory,
    TransactionFactory,
    UserFactory,
    WebhookEventFactory,
)

WEBHOOK_USERNAME = "merchant-callback"
WEBHOOK_PASSWORD = "callback-secret"


# =============================================================================
# User Fixtures
# =============================================================================


@pytest.fixture
def user(db):
    """Create a test user."""
    return UserFactory()


@pytest.fixture
def other_user(db):
    """Create a second user who owns nothing of the first."""
    return UserFactory()


@pytest.fixture
def staff_user(db):
    """Create a staff user for internal endpoints."""
    return UserFactory(is_staff=True)


@pytest.fixture
def api_client():
    return APIClient()


@pytest.fixture
def auth_client(api_client, user):
    """APIClient authenticated as ``user``."""
    api_client.force_authenticate(user=user)
    return api_client


# =============================================================================
# Invoice Fixtures
# =============================================================================


@pytest.fixture
def pending_invoice(db, user):
    """Create a pending invoice of 100.00 owned by ``user``."""
    return InvoiceFactory(owner=user, amount=Decimal("100.00"))


@pytest.fixture
def initiated_invoice(db, user):
    """Create an invoice that already has a payment attempt."""
    return InvoiceFactory(owner=user, status=InvoiceStatus.PAYMENT_INITIATED)


@pytest.fixture
def paid_invoice(db, user):
    return InvoiceFactory(owner=user, status=InvoiceStatus.PAID, paid_at=timezone.now())


# =============================================================================
# Transaction Fixtures
# =============================================================================


@pytest.fixture
def initiated_transaction(db, initiated_invoice):
    """Create an initiated transaction bound to an initiated invoice."""
    txn = TransactionFactory(invoice=initiated_invoice)
    initiated_invoice.current_transaction = txn
    initiated_invoice.save()
    return txn


@pytest.fixture
def successful_transaction(db, user):
    """Create a transaction that already succeeded, with its invoice paid."""
    invoice = InvoiceFactory(owner=user, status=InvoiceStatus.PAID, paid_at=timezone.now())
    return TransactionFactory(
        invoice=invoice,
        status=TransactionStatus.SUCCESS,
        gateway_order_status="COMPLETED",
        completed_at=timezone.now(),
    )


@pytest.fixture
def failed_transaction(db, user):
    """Create a transaction that already failed."""
    invoice = InvoiceFactory(owner=user, status=InvoiceStatus.PAYMENT_INITIATED)
    return TransactionFactory(
        invoice=invoice,
        status=TransactionStatus.FAILURE,
        gateway_order_status="FAILED",
        failure_reason="Payment failed",
    )


# =============================================================================
# Gateway Fixtures
# =============================================================================


@pytest.fixture
def active_token(db):
    """Create an active gateway token valid for one hour."""
    return GatewayAuthTokenFactory()


@pytest.fixture
def phonepe_credentials(settings):
    """Configure gateway OAuth credentials."""
    settings.PHONEPE_CLIENT_ID = "TEST-M22"
    settings.PHONEPE_CLIENT_SECRET = "client-secret"
    settings.PHONEPE_CLIENT_VERSION = "1"
    return settings


@pytest.fixture
def webhook_credentials(settings):
    """Configure callback credentials and return the expected header value."""
    settings.PHONEPE_WEBHOOK_USERNAME = WEBHOOK_USERNAME
    settings.PHONEPE_WEBHOOK_PASSWORD = WEBHOOK_PASSWORD
    return hashlib.sha256(f"{WEBHOOK_USERNAME}:{WEBHOOK_PASSWORD}".encode()).hexdigest()


@pytest.fixture
def webhook_event(db, initiated_transaction):
    """Create a pending completed-callback for the initiated transaction."""
    return WebhookEventFactory(
        merchant_reference=initiated_transaction.merchant_reference,
        payload={
            "event": "checkout.order.completed",
            "payload": {
                "merchantOrderId": initiated_transaction.merchant_reference,
                "orderId": initiated_transaction.gateway_order_id,
                "state": "COMPLETED",
                "amount": 10000,
            },
        },
    )
