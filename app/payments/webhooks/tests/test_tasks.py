"""
Tests for payment Celery tasks.

Tests cover:
- process_webhook_event: status handling and idempotency
- retry_failed_webhooks: re-queueing below the retry limit
- cleanup_stuck_webhooks: resetting abandoned processing
- reconcile_initiated_transactions: polling open transactions

Tasks are called directly (synchronously); .delay is patched where a
task queues another.
"""

import logging
from datetime import timedelta
from unittest.mock import patch

import pytest
from django.utils import timezone
from freezegun import freeze_time

from core.services import ServiceResult

from payments.adapters import OrderStatusResult
from payments.exceptions import GatewayError, GatewayRequestFailedError
from payments.models import Transaction, WebhookEvent
from payments.models.webhook_event import MAX_WEBHOOK_RETRIES
from payments.services import TokenResult
from payments.state_machines import TokenSource, TransactionStatus, WebhookEventStatus
from payments.tasks import (
    cleanup_stuck_webhooks,
    process_webhook_event,
    reconcile_initiated_transactions,
    retry_failed_webhooks,
)
from payments.tests.factories import TransactionFactory, WebhookEventFactory


# =============================================================================
# process_webhook_event
# =============================================================================


@pytest.mark.django_db
class TestProcessWebhookEvent:
    """Tests for the process_webhook_event task."""

    def test_processes_completed_callback(self, webhook_event, initiated_transaction):
        result = process_webhook_event(str(webhook_event.id))

        assert result["status"] == "processed"
        webhook_event.refresh_from_db()
        assert webhook_event.status == WebhookEventStatus.PROCESSED
        assert webhook_event.retry_count == 1
        assert webhook_event.processed_at is not None
        initiated_transaction.refresh_from_db()
        assert initiated_transaction.status == TransactionStatus.SUCCESS

    def test_missing_event(self, db):
        result = process_webhook_event("00000000-0000-0000-0000-000000000000")

        assert result["status"] == "not_found"

    def test_already_processed_event_is_skipped(self, db):
        event = WebhookEventFactory(status=WebhookEventStatus.PROCESSED)

        with patch("payments.webhooks.handlers.dispatch_webhook") as mock_dispatch:
            result = process_webhook_event(str(event.id))

        assert result["status"] == "already_processed"
        mock_dispatch.assert_not_called()

    def test_handler_failure_marks_event_failed(self, db):
        event = WebhookEventFactory(merchant_reference="INV_unknown")

        result = process_webhook_event(str(event.id))

        assert result["status"] == "handler_failed"
        event.refresh_from_db()
        assert event.status == WebhookEventStatus.FAILED
        assert event.error_message

    def test_exception_marks_failed_and_reraises(self, webhook_event):
        with patch(
            "payments.webhooks.handlers.dispatch_webhook",
            side_effect=RuntimeError("unexpected"),
        ):
            with pytest.raises(RuntimeError):
                process_webhook_event(str(webhook_event.id))

        webhook_event.refresh_from_db()
        assert webhook_event.status == WebhookEventStatus.FAILED
        assert "RuntimeError" in webhook_event.error_message

    def test_failed_event_succeeds_on_retry(self, webhook_event):
        with patch(
            "payments.webhooks.handlers.dispatch_webhook",
            return_value=ServiceResult.failure("Transaction not found", "TRANSACTION_NOT_FOUND"),
        ):
            process_webhook_event(str(webhook_event.id))

        result = process_webhook_event(str(webhook_event.id))

        assert result["status"] == "processed"
        webhook_event.refresh_from_db()
        assert webhook_event.retry_count == 2
        assert webhook_event.error_message is None


# =============================================================================
# retry_failed_webhooks / cleanup_stuck_webhooks
# =============================================================================


@pytest.mark.django_db
class TestRetryFailedWebhooks:
    def test_requeues_failed_events_below_retry_limit(self):
        retryable = WebhookEventFactory(status=WebhookEventStatus.FAILED, retry_count=1)
        WebhookEventFactory(status=WebhookEventStatus.FAILED, retry_count=MAX_WEBHOOK_RETRIES)
        WebhookEventFactory(status=WebhookEventStatus.PROCESSED)

        with patch("payments.tasks.process_webhook_event.delay") as mock_delay:
            result = retry_failed_webhooks()

        assert result == {"queued_count": 1}
        mock_delay.assert_called_once_with(str(retryable.id))

    def test_nothing_to_retry(self):
        with patch("payments.tasks.process_webhook_event.delay") as mock_delay:
            result = retry_failed_webhooks()

        assert result == {"queued_count": 0}
        mock_delay.assert_not_called()


@pytest.mark.django_db
class TestCleanupStuckWebhooks:
    def test_resets_old_processing_events(self):
        with freeze_time(timezone.now() - timedelta(hours=1)):
            stuck = WebhookEventFactory(status=WebhookEventStatus.PROCESSING)
        recent = WebhookEventFactory(status=WebhookEventStatus.PROCESSING)

        result = cleanup_stuck_webhooks()

        assert result == {"reset_count": 1}
        stuck.refresh_from_db()
        recent.refresh_from_db()
        assert stuck.status == WebhookEventStatus.FAILED
        assert recent.status == WebhookEventStatus.PROCESSING


# =============================================================================
# reconcile_initiated_transactions
# =============================================================================


@pytest.fixture
def mock_gateway():
    """Patch token and status read used by the reconciliation engine."""
    with patch(
        "payments.services.reconciliation_engine.TokenCache.get_token",
        return_value=TokenResult(token="access-token", source=TokenSource.CACHED),
    ), patch(
        "payments.services.reconciliation_engine.PhonePeAdapter.fetch_order_status"
    ) as mock_status:
        yield mock_status


def stale_transaction(minutes: int = 30, **kwargs) -> Transaction:
    with freeze_time(timezone.now() - timedelta(minutes=minutes)):
        return TransactionFactory(**kwargs)


@pytest.mark.django_db
class TestReconcileInitiatedTransactions:
    """Tests for the reconcile_initiated_transactions task."""

    def test_finalizes_stale_transactions(self, mock_gateway):
        txn = stale_transaction()
        mock_gateway.return_value = OrderStatusResult(raw_status="COMPLETED", raw_response={"state": "COMPLETED"})

        result = reconcile_initiated_transactions()

        assert result == {"checked": 1, "finalized": 1, "errors": 0}
        txn.refresh_from_db()
        assert txn.status == TransactionStatus.SUCCESS

    def test_skips_recent_and_final_transactions(self, mock_gateway):
        TransactionFactory()
        stale_transaction(status=TransactionStatus.FAILURE)
        stale_transaction(gateway_order_id=None)

        result = reconcile_initiated_transactions()

        assert result == {"checked": 0, "finalized": 0, "errors": 0}
        mock_gateway.assert_not_called()

    def test_pending_gateway_state_is_counted_not_finalized(self, mock_gateway):
        txn = stale_transaction()
        mock_gateway.return_value = OrderStatusResult(raw_status="PENDING", raw_response={"state": "PENDING"})

        result = reconcile_initiated_transactions()

        assert result == {"checked": 1, "finalized": 0, "errors": 0}
        txn.refresh_from_db()
        assert txn.status_check_count == 1

    def test_one_failure_does_not_stop_the_batch(self, mock_gateway):
        first = stale_transaction(minutes=40)
        second = stale_transaction(minutes=30)
        mock_gateway.side_effect = [
            GatewayRequestFailedError("Gateway returned status 503", status_code=503),
            OrderStatusResult(raw_status="FAILED", raw_response={"state": "FAILED"}),
        ]

        result = reconcile_initiated_transactions()

        assert result == {"checked": 2, "finalized": 1, "errors": 1}
        first.refresh_from_db()
        second.refresh_from_db()
        assert first.status == TransactionStatus.INITIATED
        assert second.status == TransactionStatus.FAILURE

    def test_batch_size_and_order(self, mock_gateway, settings):
        settings.PAYMENTS_RECONCILE_BATCH_SIZE = 1
        oldest = stale_transaction(minutes=60)
        stale_transaction(minutes=30)
        mock_gateway.return_value = OrderStatusResult(raw_status="PENDING", raw_response={})

        result = reconcile_initiated_transactions()

        assert result["checked"] == 1
        mock_gateway.assert_called_once_with(oldest.gateway_order_id, "access-token")

    def test_permanent_gateway_errors_are_logged_as_errors(self, mock_gateway, caplog):
        transient = stale_transaction(minutes=40)
        permanent = stale_transaction(minutes=30)
        mock_gateway.side_effect = [
            GatewayRequestFailedError("Gateway returned status 503", status_code=503),
            GatewayError("Unexpected order status response"),
        ]

        with caplog.at_level(logging.WARNING, logger="payments.tasks"):
            result = reconcile_initiated_transactions()

        assert result["errors"] == 2
        levels = {
            r.gateway_order_id: r.levelno
            for r in caplog.records
            if r.getMessage().startswith("Reconciliation failed")
        }
        assert levels == {
            transient.gateway_order_id: logging.WARNING,
            permanent.gateway_order_id: logging.ERROR,
        }
