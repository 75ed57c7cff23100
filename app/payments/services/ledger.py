"""
Ledger service: atomic reads and writes of invoices and transactions.

The Ledger is the only component that writes Invoice and Transaction rows.
The orchestrator and reconciliation engine call it for every
read-modify-write, so the concurrency rules live in one place:

- Transaction creation is guarded by the merchant_reference unique
  constraint (insert-or-fetch-existing contract).
- Terminal transitions run under a row lock and a compare-and-set on
  status; a writer that loses observes the stored terminal state.
- Invoice status updates are conditional on the expected prior status;
  a mismatch is logged and reported, never fatal.

Usage:
    from payments.services import Ledger

    invoice = Ledger.get_pending_invoice(invoice_id, user, Decimal("100.00"))
    txn, created = Ledger.insert_or_fetch_transaction(record)
    Ledger.mark_invoice_initiated(invoice.id, txn.id)

    txn = Ledger.apply_terminal_transition(
        txn.id,
        TransactionStatus.SUCCESS,
        raw_status="COMPLETED",
        raw_response=body,
    )
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import IntegrityError, transaction
from django.db.models import Q
from django_fsm import ConcurrentTransition, TransitionNotAllowed

from core.services import BaseService

from payments.exceptions import (
    AlreadyFinalizedError,
    AmountMismatchError,
    DuplicateReferenceError,
    InvalidStateTransitionError,
    InvoiceNotFoundError,
    InvoiceNotPayableError,
    TransactionNotFoundError,
)
from payments.models import Invoice, Transaction
from payments.state_machines import (
    InvoiceStatus,
    TransactionStatus,
    is_terminal_status,
)

if TYPE_CHECKING:
    from datetime import datetime
    from typing import Any
    from uuid import UUID


# Transition method per terminal status
TERMINAL_TRANSITIONS = {
    TransactionStatus.SUCCESS: "mark_success",
    TransactionStatus.FAILURE: "mark_failure",
    TransactionStatus.CANCELLED: "mark_cancelled",
    TransactionStatus.EXPIRED: "mark_expired",
}

AUDIT_FIELDS = [
    "status_check_count",
    "last_status_check_at",
    "gateway_order_status",
    "gateway_response",
    "updated_at",
]

MAX_TRANSITION_ATTEMPTS = 2


@dataclass
class TransactionRecord:
    """
    Values for a new Transaction row.

    Amounts are major-unit Decimals frozen at order creation.
    """

    invoice: Invoice
    amount: Decimal
    fee: Decimal
    rewards_earned: Decimal
    merchant_reference: str
    merchant_user_id: str = ""
    gateway_order_id: str | None = None
    gateway_order_token: str = ""
    gateway_order_status: str = ""
    gateway_response: dict[str, Any] = field(default_factory=dict)
    payment_method: str = "PhonePe"

    def __post_init__(self) -> None:
        if not self.merchant_reference:
            raise ValueError("merchant_reference is required")


class Ledger(BaseService):
    """Persistent store operations for Invoice and Transaction."""

    # =========================================================================
    # Invoice Lookup
    # =========================================================================

    @classmethod
    def get_pending_invoice(cls, invoice_id: UUID | str, owner, amount) -> Invoice:
        """
        Load an invoice the caller may pay now.

        Args:
            invoice_id: Invoice primary key
            owner: Calling user; the invoice must belong to them
            amount: Caller-supplied amount; must equal the stored amount

        Raises:
            InvoiceNotFoundError: Unknown id or owned by someone else
            InvoiceNotPayableError: Invoice is not pending
            AmountMismatchError: Amount differs from the stored amount
        """
        try:
            invoice = Invoice.objects.get(pk=invoice_id, owner=owner)
        except (Invoice.DoesNotExist, DjangoValidationError, ValueError):
            raise InvoiceNotFoundError(
                "Invoice not found",
                details={"invoice_id": str(invoice_id)},
            )

        if not invoice.is_payable:
            raise InvoiceNotPayableError(
                "Invoice is not pending",
                details={"invoice_id": str(invoice.id), "status": invoice.status},
            )

        try:
            requested = Decimal(str(amount))
        except (InvalidOperation, TypeError, ValueError):
            raise AmountMismatchError(
                "Amount mismatch",
                details={"expected": str(invoice.amount), "received": str(amount)},
            )
        if requested != invoice.amount:
            raise AmountMismatchError(
                "Amount mismatch",
                details={"expected": str(invoice.amount), "received": str(requested)},
            )

        return invoice

    # =========================================================================
    # Transaction Creation
    # =========================================================================

    @classmethod
    def insert_transaction(cls, record: TransactionRecord) -> Transaction:
        """
        Insert a new initiated Transaction.

        Raises:
            DuplicateReferenceError: merchant_reference or gateway_order_id
                already exists
        """
        invoice = record.invoice
        try:
            with transaction.atomic():
                txn = Transaction.objects.create(
                    invoice=invoice,
                    owner_id=invoice.owner_id,
                    vendor_reference=invoice.vendor_reference,
                    vendor_name=invoice.vendor_name,
                    amount=record.amount,
                    fee=record.fee,
                    rewards_earned=record.rewards_earned,
                    payment_method=record.payment_method,
                    merchant_reference=record.merchant_reference,
                    merchant_user_id=record.merchant_user_id,
                    gateway_order_id=record.gateway_order_id,
                    gateway_order_token=record.gateway_order_token,
                    gateway_order_status=record.gateway_order_status,
                    gateway_response=record.gateway_response,
                )
        except IntegrityError as e:
            duplicate = Q(merchant_reference=record.merchant_reference)
            if record.gateway_order_id:
                duplicate |= Q(gateway_order_id=record.gateway_order_id)
            if Transaction.objects.filter(duplicate).exists():
                raise DuplicateReferenceError(
                    "Transaction reference already exists",
                    details={
                        "merchant_reference": record.merchant_reference,
                        "gateway_order_id": record.gateway_order_id,
                    },
                ) from e
            raise

        cls.get_logger().info(
            "Inserted transaction",
            extra={
                "transaction_id": str(txn.id),
                "invoice_id": str(invoice.id),
                "merchant_reference": txn.merchant_reference,
            },
        )
        return txn

    @classmethod
    def insert_or_fetch_transaction(cls, record: TransactionRecord) -> tuple[Transaction, bool]:
        """
        Insert a Transaction, or return the one already stored for the same attempt.

        Returns:
            (transaction, created)

        Raises:
            DuplicateReferenceError: The reference belongs to a different invoice
        """
        try:
            return cls.insert_transaction(record), True
        except DuplicateReferenceError:
            existing = Transaction.objects.filter(
                merchant_reference=record.merchant_reference
            ).first()
            if existing is None or existing.invoice_id != record.invoice.id:
                raise
            cls.get_logger().info(
                "Transaction already stored for merchant reference",
                extra={
                    "transaction_id": str(existing.id),
                    "merchant_reference": record.merchant_reference,
                },
            )
            return existing, False

    # =========================================================================
    # Transaction Lookup
    # =========================================================================

    @classmethod
    def find_transaction_by_reference(cls, reference: str) -> Transaction:
        """
        Find a transaction by gateway order id or merchant reference.

        Raises:
            TransactionNotFoundError: Nothing matches
        """
        txn = cls._reference_queryset(reference).first()
        if txn is None:
            raise TransactionNotFoundError(
                "Transaction not found",
                details={"reference": reference},
            )
        return txn

    @classmethod
    def find_transaction_for_owner(cls, reference: str, owner) -> Transaction:
        """Same as find_transaction_by_reference, limited to one user's rows."""
        txn = cls._reference_queryset(reference).filter(owner=owner).first()
        if txn is None:
            raise TransactionNotFoundError(
                "Transaction not found",
                details={"reference": reference},
            )
        return txn

    @staticmethod
    def _reference_queryset(reference: str):
        if not reference:
            return Transaction.objects.none()
        return Transaction.objects.filter(
            Q(gateway_order_id=reference) | Q(merchant_reference=reference)
        )

    # =========================================================================
    # Transaction Transitions
    # =========================================================================

    @classmethod
    def apply_terminal_transition(
        cls,
        transaction_id: UUID,
        new_status: str,
        raw_status: str | None = None,
        raw_response: dict[str, Any] | None = None,
        completed_at: datetime | None = None,
        failure_reason: str | None = None,
    ) -> Transaction:
        """
        Apply a gateway outcome to a transaction exactly once.

        - Open transaction + terminal status: transition, record audit fields
        - Terminal transaction + same status: refresh audit fields only
        - Terminal transaction + different status: AlreadyFinalizedError
        - Non-terminal status: audit fields only, status unchanged

        A lost compare-and-set is retried once against the re-read row, so
        the second of two racing writers sees the first writer's result.

        Raises:
            TransactionNotFoundError: Unknown transaction id
            AlreadyFinalizedError: Stored terminal status differs
            InvalidStateTransitionError: Transition refused by the state machine
        """
        logger = cls.get_logger()

        for attempt in range(1, MAX_TRANSITION_ATTEMPTS + 1):
            try:
                with transaction.atomic():
                    try:
                        txn = Transaction.objects.select_for_update().get(pk=transaction_id)
                    except Transaction.DoesNotExist:
                        raise TransactionNotFoundError(
                            "Transaction not found",
                            details={"transaction_id": str(transaction_id)},
                        )
                    return cls._apply_locked(
                        txn,
                        new_status,
                        raw_status,
                        raw_response,
                        completed_at,
                        failure_reason,
                    )
            except ConcurrentTransition:
                logger.warning(
                    "Concurrent transition detected, re-reading transaction",
                    extra={
                        "transaction_id": str(transaction_id),
                        "new_status": new_status,
                        "attempt": attempt,
                    },
                )

        raise InvalidStateTransitionError(
            "Transaction was modified concurrently",
            details={"transaction_id": str(transaction_id), "target_state": new_status},
        )

    @classmethod
    def _apply_locked(
        cls,
        txn: Transaction,
        new_status: str,
        raw_status: str | None,
        raw_response: dict[str, Any] | None,
        completed_at: datetime | None,
        failure_reason: str | None,
    ) -> Transaction:
        logger = cls.get_logger()
        log_context = {
            "transaction_id": str(txn.id),
            "current_status": txn.status,
            "new_status": new_status,
            "raw_status": raw_status,
        }

        if not is_terminal_status(new_status):
            txn.record_status_check(raw_status, raw_response)
            txn.save(update_fields=AUDIT_FIELDS)
            logger.info("Recorded non-terminal gateway status", extra=log_context)
            return txn

        if txn.is_terminal:
            if txn.status != new_status:
                logger.warning("Transaction already finalized", extra=log_context)
                raise AlreadyFinalizedError(
                    f"Transaction already {txn.status}",
                    current_status=txn.status,
                    details={"transaction_id": str(txn.id), "requested_status": new_status},
                )
            txn.record_status_check(raw_status, raw_response)
            txn.save(update_fields=AUDIT_FIELDS)
            logger.info("Re-applied terminal status, audit fields refreshed", extra=log_context)
            return txn

        transition_method = getattr(txn, TERMINAL_TRANSITIONS[new_status])
        try:
            if new_status == TransactionStatus.SUCCESS:
                transition_method(completed_at=completed_at)
            else:
                transition_method(reason=failure_reason)
        except TransitionNotAllowed:
            raise InvalidStateTransitionError(
                f"Cannot move transaction from '{txn.status}' to '{new_status}'",
                details={
                    "current_state": txn.status,
                    "target_state": new_status,
                    "transition": TERMINAL_TRANSITIONS[new_status],
                },
            )

        txn.record_status_check(raw_status, raw_response)
        txn.save()
        logger.info("Applied terminal transition", extra=log_context)
        return txn

    @classmethod
    def record_status_check(
        cls,
        transaction_id: UUID,
        raw_status: str | None,
        raw_response: dict[str, Any] | None,
    ) -> Transaction:
        """Bump status-check bookkeeping without touching status."""
        return cls.apply_terminal_transition(
            transaction_id,
            TransactionStatus.PENDING,
            raw_status=raw_status,
            raw_response=raw_response,
        )

    # =========================================================================
    # Invoice Updates
    # =========================================================================

    @classmethod
    def mark_invoice_initiated(cls, invoice_id: UUID, transaction_id: UUID) -> bool:
        """
        Move an invoice pending → payment_initiated and bind the transaction.

        Returns:
            True if the invoice was updated, False on a status mismatch
        """
        return cls._advance_invoice(
            invoice_id,
            expected=InvoiceStatus.PENDING,
            transition_name="initiate_payment",
            transition_kwargs={"transaction_id": transaction_id},
        )

    @classmethod
    def mark_invoice_paid(cls, invoice_id: UUID, paid_at: datetime | None = None) -> bool:
        """
        Move an invoice payment_initiated → paid.

        Returns:
            True if the invoice was updated, False on a status mismatch
        """
        return cls._advance_invoice(
            invoice_id,
            expected=InvoiceStatus.PAYMENT_INITIATED,
            transition_name="mark_paid",
            transition_kwargs={"paid_at": paid_at},
        )

    @classmethod
    def _advance_invoice(
        cls,
        invoice_id: UUID,
        expected: str,
        transition_name: str,
        transition_kwargs: dict[str, Any],
    ) -> bool:
        logger = cls.get_logger()
        log_context = {
            "invoice_id": str(invoice_id),
            "expected_status": expected,
            "transition": transition_name,
        }

        try:
            with transaction.atomic():
                invoice = Invoice.objects.select_for_update().filter(pk=invoice_id).first()
                if invoice is None:
                    logger.warning("Invoice not found for status update", extra=log_context)
                    return False
                if invoice.status != expected:
                    logger.warning(
                        "Invoice status mismatch, update skipped",
                        extra={**log_context, "current_status": invoice.status},
                    )
                    return False
                getattr(invoice, transition_name)(**transition_kwargs)
                invoice.save()
        except ConcurrentTransition:
            logger.warning("Invoice changed concurrently, update skipped", extra=log_context)
            return False

        logger.info("Invoice status updated", extra={**log_context, "status": invoice.status})
        return True
