"""
Tests for state machine transitions using django-fsm.

Tests valid and invalid state transitions for Invoice and Transaction,
and the compare-and-set behaviour of ConcurrentTransitionMixin.
"""

from datetime import timedelta

import pytest
from django.utils import timezone
from django_fsm import ConcurrentTransition, TransitionNotAllowed

from payments.models import Invoice, Transaction
from payments.state_machines import InvoiceStatus, TransactionStatus


# =============================================================================
# Invoice State Transition Tests
# =============================================================================


@pytest.mark.django_db
class TestInvoiceTransitions:
    """Tests for Invoice state machine transitions."""

    def test_pending_to_payment_initiated(self, pending_invoice, initiated_transaction):
        """Should bind the transaction when initiating payment."""
        pending_invoice.initiate_payment(transaction_id=initiated_transaction.id)
        pending_invoice.save()

        pending_invoice.refresh_from_db()
        assert pending_invoice.status == InvoiceStatus.PAYMENT_INITIATED
        assert pending_invoice.current_transaction_id == initiated_transaction.id

    def test_payment_initiated_to_paid(self, initiated_invoice):
        initiated_invoice.mark_paid()
        initiated_invoice.save()

        assert initiated_invoice.status == InvoiceStatus.PAID
        assert initiated_invoice.paid_at is not None

    def test_mark_paid_keeps_given_timestamp(self, initiated_invoice):
        paid_at = timezone.now() - timedelta(minutes=3)

        initiated_invoice.mark_paid(paid_at=paid_at)

        assert initiated_invoice.paid_at == paid_at

    def test_cannot_pay_pending_invoice(self, pending_invoice):
        """Should not skip payment_initiated."""
        with pytest.raises(TransitionNotAllowed):
            pending_invoice.mark_paid()

    def test_cannot_initiate_paid_invoice(self, paid_invoice):
        """Should never move backwards."""
        with pytest.raises(TransitionNotAllowed):
            paid_invoice.initiate_payment()

    def test_cannot_initiate_twice(self, initiated_invoice):
        with pytest.raises(TransitionNotAllowed):
            initiated_invoice.initiate_payment()

    def test_concurrent_transition_detected(self, initiated_invoice):
        """Second writer that loaded the same status should lose."""
        first = Invoice.objects.get(pk=initiated_invoice.pk)
        second = Invoice.objects.get(pk=initiated_invoice.pk)

        first.mark_paid()
        first.save()

        second.mark_paid()
        with pytest.raises(ConcurrentTransition):
            second.save()


# =============================================================================
# Transaction State Transition Tests
# =============================================================================


@pytest.mark.django_db
class TestTransactionTransitions:
    """Tests for Transaction state machine transitions."""

    # -------------------------------------------------------------------------
    # Valid Transitions
    # -------------------------------------------------------------------------

    def test_initiated_to_success(self, initiated_transaction):
        initiated_transaction.mark_success()
        initiated_transaction.save()

        assert initiated_transaction.status == TransactionStatus.SUCCESS
        assert initiated_transaction.completed_at is not None
        assert initiated_transaction.failure_reason is None

    def test_initiated_to_failure(self, initiated_transaction):
        initiated_transaction.mark_failure(reason="Insufficient funds")
        initiated_transaction.save()

        assert initiated_transaction.status == TransactionStatus.FAILURE
        assert initiated_transaction.failure_reason == "Insufficient funds"
        assert initiated_transaction.completed_at is None

    def test_initiated_to_cancelled(self, initiated_transaction):
        initiated_transaction.mark_cancelled()
        initiated_transaction.save()

        assert initiated_transaction.status == TransactionStatus.CANCELLED
        assert initiated_transaction.failure_reason == "Payment cancelled"

    def test_initiated_to_expired(self, initiated_transaction):
        initiated_transaction.mark_expired()
        initiated_transaction.save()

        assert initiated_transaction.status == TransactionStatus.EXPIRED
        assert initiated_transaction.failure_reason == "Payment expired"

    def test_pending_to_success(self, initiated_transaction):
        """Rows written as pending by external processes can still finalize."""
        Transaction.objects.filter(pk=initiated_transaction.pk).update(
            status=TransactionStatus.PENDING
        )
        txn = Transaction.objects.get(pk=initiated_transaction.pk)

        txn.mark_success()
        txn.save()

        assert txn.status == TransactionStatus.SUCCESS

    # -------------------------------------------------------------------------
    # Invalid Transitions
    # -------------------------------------------------------------------------

    @pytest.mark.parametrize(
        "transition",
        ["mark_success", "mark_failure", "mark_cancelled", "mark_expired"],
    )
    def test_terminal_state_is_absorbing(self, successful_transaction, transition):
        """No transition may leave a terminal state."""
        with pytest.raises(TransitionNotAllowed):
            getattr(successful_transaction, transition)()

    def test_failure_cannot_become_success(self, failed_transaction):
        with pytest.raises(TransitionNotAllowed):
            failed_transaction.mark_success()

    def test_concurrent_terminal_writes(self, initiated_transaction):
        """A webhook and a poll that loaded the same row cannot both finalize it."""
        webhook_copy = Transaction.objects.get(pk=initiated_transaction.pk)
        poll_copy = Transaction.objects.get(pk=initiated_transaction.pk)

        webhook_copy.mark_success()
        webhook_copy.save()

        poll_copy.mark_failure()
        with pytest.raises(ConcurrentTransition):
            poll_copy.save()

        initiated_transaction.refresh_from_db()
        assert initiated_transaction.status == TransactionStatus.SUCCESS
