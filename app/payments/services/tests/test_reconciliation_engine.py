"""
Tests for ReconciliationEngine.

Tests cover:
- Poll path (gateway status read) and push path (callback/SDK payload)
- Mapping of each gateway state to the transaction and invoice
- Idempotence for already-final transactions
- Losing a concurrent finalization
- Ownership scoping and lookup failures
"""

from unittest.mock import patch

import pytest
from django.db import DatabaseError
from django.utils import timezone

from payments.adapters import OrderStatusResult
from payments.exceptions import (
    AlreadyFinalizedError,
    GatewayRequestFailedError,
    TransactionNotFoundError,
)
from payments.models import Invoice, Transaction
from payments.services import ReconciliationEngine, TokenResult
from payments.state_machines import InvoiceStatus, TokenSource, TransactionStatus


@pytest.fixture
def mock_token():
    with patch("payments.services.reconciliation_engine.TokenCache.get_token") as mock:
        mock.return_value = TokenResult(token="access-token", source=TokenSource.CACHED)
        yield mock


@pytest.fixture
def gateway_status():
    """Patch the gateway status read; set ``return_value`` per test."""
    with patch(
        "payments.services.reconciliation_engine.PhonePeAdapter.fetch_order_status"
    ) as mock:
        yield mock


def status_result(state: str, **extra) -> OrderStatusResult:
    body = {"orderId": "OMO2403071234", "state": state, **extra}
    return OrderStatusResult(raw_status=state, raw_response=body)


@pytest.mark.django_db
class TestReconcilePoll:
    """Reconcile by reading the gateway's order status."""

    def test_completed_marks_success_and_invoice_paid(
        self, initiated_transaction, mock_token, gateway_status
    ):
        gateway_status.return_value = status_result("COMPLETED")

        outcome = ReconciliationEngine.reconcile(initiated_transaction.gateway_order_id)

        gateway_status.assert_called_once_with(
            initiated_transaction.gateway_order_id, "access-token"
        )
        assert outcome.verified is True
        assert outcome.status == TransactionStatus.SUCCESS
        assert outcome.gateway_status == "COMPLETED"
        assert outcome.already_final is False

        initiated_transaction.refresh_from_db()
        assert initiated_transaction.status == TransactionStatus.SUCCESS
        invoice = initiated_transaction.invoice
        invoice.refresh_from_db()
        assert invoice.status == InvoiceStatus.PAID
        assert invoice.paid_at == initiated_transaction.completed_at

    def test_failed_marks_failure_and_keeps_invoice(
        self, initiated_transaction, mock_token, gateway_status
    ):
        gateway_status.return_value = status_result("FAILED", errorCode="TXN_AUTO_FAILED")

        outcome = ReconciliationEngine.reconcile(initiated_transaction.gateway_order_id)

        assert outcome.verified is False
        assert outcome.status == TransactionStatus.FAILURE
        initiated_transaction.refresh_from_db()
        assert initiated_transaction.failure_reason == "TXN_AUTO_FAILED"
        initiated_transaction.invoice.refresh_from_db()
        assert initiated_transaction.invoice.status == InvoiceStatus.PAYMENT_INITIATED

    @pytest.mark.parametrize(
        "state, expected",
        [
            ("CANCELLED", TransactionStatus.CANCELLED),
            ("EXPIRED", TransactionStatus.EXPIRED),
        ],
    )
    def test_other_terminal_states(
        self, initiated_transaction, mock_token, gateway_status, state, expected
    ):
        gateway_status.return_value = status_result(state)

        outcome = ReconciliationEngine.reconcile(initiated_transaction.merchant_reference)

        assert outcome.status == expected
        assert outcome.verified is False

    @pytest.mark.parametrize("state", ["PENDING", "CREATED", "SOMETHING_NEW"])
    def test_non_terminal_state_only_counts_the_check(
        self, initiated_transaction, mock_token, gateway_status, state
    ):
        gateway_status.return_value = status_result(state)

        outcome = ReconciliationEngine.reconcile(initiated_transaction.gateway_order_id)

        assert outcome.verified is False
        assert outcome.status == TransactionStatus.INITIATED
        initiated_transaction.refresh_from_db()
        assert initiated_transaction.status == TransactionStatus.INITIATED
        assert initiated_transaction.status_check_count == 1
        assert initiated_transaction.gateway_order_status == state

    def test_gateway_failure_propagates(self, initiated_transaction, mock_token, gateway_status):
        gateway_status.side_effect = GatewayRequestFailedError("Gateway returned status 503")

        with pytest.raises(GatewayRequestFailedError):
            ReconciliationEngine.reconcile(initiated_transaction.gateway_order_id)

        initiated_transaction.refresh_from_db()
        assert initiated_transaction.status == TransactionStatus.INITIATED

    def test_transaction_without_gateway_order(self, initiated_transaction, mock_token, gateway_status):
        Transaction.objects.filter(pk=initiated_transaction.pk).update(gateway_order_id=None)

        with pytest.raises(TransactionNotFoundError):
            ReconciliationEngine.reconcile(initiated_transaction.merchant_reference)

        gateway_status.assert_not_called()

    def test_unknown_reference(self, db, mock_token, gateway_status):
        with pytest.raises(TransactionNotFoundError):
            ReconciliationEngine.reconcile("OMO-does-not-exist")

        mock_token.assert_not_called()


@pytest.mark.django_db
class TestReconcilePush:
    """Reconcile from a pushed callback or SDK payload."""

    def test_pushed_payload_skips_gateway(self, initiated_transaction, mock_token, gateway_status):
        payload = {"merchantOrderId": initiated_transaction.merchant_reference, "state": "COMPLETED"}

        outcome = ReconciliationEngine.reconcile(
            initiated_transaction.merchant_reference, pushed_payload=payload
        )

        mock_token.assert_not_called()
        gateway_status.assert_not_called()
        assert outcome.verified is True
        initiated_transaction.refresh_from_db()
        assert initiated_transaction.gateway_response == payload

    def test_sdk_payload_code(self, initiated_transaction, mock_token, gateway_status):
        outcome = ReconciliationEngine.reconcile(
            initiated_transaction.merchant_reference,
            pushed_payload={"code": "PAYMENT_ERROR", "message": "Declined by bank"},
        )

        assert outcome.status == TransactionStatus.FAILURE
        initiated_transaction.refresh_from_db()
        assert initiated_transaction.failure_reason == "Declined by bank"

    def test_payload_without_status_is_non_terminal(self, initiated_transaction, mock_token, gateway_status):
        outcome = ReconciliationEngine.reconcile(
            initiated_transaction.merchant_reference, pushed_payload={"unexpected": "shape"}
        )

        assert outcome.status == TransactionStatus.INITIATED
        gateway_status.assert_not_called()


@pytest.mark.django_db
class TestIdempotence:
    """Already-final transactions return their stored outcome."""

    def test_final_transaction_is_not_requeried(self, successful_transaction, mock_token, gateway_status):
        outcome = ReconciliationEngine.reconcile(successful_transaction.gateway_order_id)

        gateway_status.assert_not_called()
        assert outcome.verified is True
        assert outcome.already_final is True

    def test_contradicting_push_does_not_change_final_state(
        self, successful_transaction, mock_token, gateway_status
    ):
        outcome = ReconciliationEngine.reconcile(
            successful_transaction.merchant_reference,
            pushed_payload={"state": "FAILED"},
        )

        assert outcome.status == TransactionStatus.SUCCESS
        successful_transaction.refresh_from_db()
        assert successful_transaction.status == TransactionStatus.SUCCESS

    def test_repeated_reconcile_is_stable(self, initiated_transaction, mock_token, gateway_status):
        gateway_status.return_value = status_result("COMPLETED")

        first = ReconciliationEngine.reconcile(initiated_transaction.gateway_order_id)
        second = ReconciliationEngine.reconcile(initiated_transaction.gateway_order_id)

        assert gateway_status.call_count == 1
        assert first.status == second.status == TransactionStatus.SUCCESS
        assert second.already_final is True

    def test_losing_a_concurrent_finalization(self, initiated_transaction, mock_token, gateway_status):
        """The loser returns what the winner stored."""
        gateway_status.return_value = status_result("FAILED")

        def winner_then_conflict(*args, **kwargs):
            Transaction.objects.filter(pk=initiated_transaction.pk).update(
                status=TransactionStatus.SUCCESS
            )
            raise AlreadyFinalizedError("Transaction already success", current_status="success")

        with patch(
            "payments.services.reconciliation_engine.Ledger.apply_terminal_transition",
            side_effect=winner_then_conflict,
        ):
            outcome = ReconciliationEngine.reconcile(initiated_transaction.gateway_order_id)

        assert outcome.status == TransactionStatus.SUCCESS
        assert outcome.verified is True
        assert outcome.already_final is True

    def test_failed_invoice_update_rolls_back_the_transition(
        self, initiated_transaction, mock_token, gateway_status
    ):
        gateway_status.return_value = status_result("COMPLETED")

        with patch(
            "payments.services.reconciliation_engine.Ledger.mark_invoice_paid",
            side_effect=DatabaseError("could not write invoice"),
        ):
            with pytest.raises(DatabaseError):
                ReconciliationEngine.reconcile(initiated_transaction.gateway_order_id)

        initiated_transaction.refresh_from_db()
        assert initiated_transaction.status == TransactionStatus.INITIATED

        outcome = ReconciliationEngine.reconcile(initiated_transaction.gateway_order_id)

        assert outcome.verified is True
        initiated_transaction.refresh_from_db()
        assert initiated_transaction.status == TransactionStatus.SUCCESS
        invoice = Invoice.objects.get(pk=initiated_transaction.invoice_id)
        assert invoice.status == InvoiceStatus.PAID
        assert invoice.paid_at == initiated_transaction.completed_at

    def test_successful_transaction_with_unpaid_invoice_is_settled(
        self, initiated_transaction, mock_token, gateway_status
    ):
        completed_at = timezone.now()
        Transaction.objects.filter(pk=initiated_transaction.pk).update(
            status=TransactionStatus.SUCCESS, completed_at=completed_at
        )

        outcome = ReconciliationEngine.reconcile(initiated_transaction.gateway_order_id)

        gateway_status.assert_not_called()
        assert outcome.already_final is True
        invoice = Invoice.objects.get(pk=initiated_transaction.invoice_id)
        assert invoice.status == InvoiceStatus.PAID
        assert invoice.paid_at == completed_at

    def test_losing_to_a_success_settles_the_invoice(
        self, initiated_transaction, mock_token, gateway_status
    ):
        gateway_status.return_value = status_result("FAILED")

        def winner_then_conflict(*args, **kwargs):
            Transaction.objects.filter(pk=initiated_transaction.pk).update(
                status=TransactionStatus.SUCCESS
            )
            raise AlreadyFinalizedError("Transaction already success", current_status="success")

        with patch(
            "payments.services.reconciliation_engine.Ledger.apply_terminal_transition",
            side_effect=winner_then_conflict,
        ):
            ReconciliationEngine.reconcile(initiated_transaction.gateway_order_id)

        invoice = Invoice.objects.get(pk=initiated_transaction.invoice_id)
        assert invoice.status == InvoiceStatus.PAID

    def test_failed_transaction_leaves_invoice_alone(self, failed_transaction, mock_token, gateway_status):
        ReconciliationEngine.reconcile(failed_transaction.gateway_order_id)

        invoice = Invoice.objects.get(pk=failed_transaction.invoice_id)
        assert invoice.status == InvoiceStatus.PAYMENT_INITIATED


@pytest.mark.django_db
class TestReconcileOwned:
    def test_owner_can_reconcile(self, initiated_transaction, user, mock_token, gateway_status):
        gateway_status.return_value = status_result("COMPLETED")

        outcome = ReconciliationEngine.reconcile_owned(initiated_transaction.gateway_order_id, user)

        assert outcome.verified is True

    def test_other_user_gets_not_found(self, initiated_transaction, other_user, mock_token, gateway_status):
        with pytest.raises(TransactionNotFoundError):
            ReconciliationEngine.reconcile_owned(initiated_transaction.gateway_order_id, other_user)

        gateway_status.assert_not_called()
        initiated_transaction.refresh_from_db()
        assert initiated_transaction.status_check_count == 0
