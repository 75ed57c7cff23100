"""
Reconciliation engine: applies the gateway's view of a payment locally.

Webhook deliveries, client verification and the polling task all share
one path:

    1. Look up the Transaction by gateway order id or merchant reference
    2. Already terminal -> return the stored outcome (idempotent), first
       marking the invoice paid if a successful payment left it unpaid
    3. Status from the pushed payload, or read from the gateway
    4. Map the gateway status to an internal status (total mapping)
    5. Apply through the Ledger; on success mark the invoice paid in the
       same database transaction
    6. Return the outcome

Concurrent reconciles of the same transaction are serialized by the
Ledger's compare-and-set; the loser observes the winner's terminal state
and returns it as its own outcome.

Usage:
    from payments.services import ReconciliationEngine

    # Poll / verify path
    outcome = ReconciliationEngine.reconcile("OMO2403...")

    # Webhook path
    outcome = ReconciliationEngine.reconcile(merchant_ref, pushed_payload=body)
    outcome.verified  # True only when the payment succeeded
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING

from core.services import BaseService

from payments.adapters import PhonePeAdapter
from payments.exceptions import AlreadyFinalizedError, TransactionNotFoundError
from payments.models import Invoice, Transaction
from payments.services.ledger import Ledger
from payments.services.token_cache import TokenCache
from payments.state_machines import (
    InvoiceStatus,
    extract_failure_reason,
    extract_gateway_status,
    is_terminal_status,
    map_gateway_status,
)

if TYPE_CHECKING:
    import uuid
    from typing import Any


@dataclass
class ReconciliationOutcome:
    """
    Result of reconciling one transaction.

    Attributes:
        verified: True iff the transaction is in success
        status: Internal transaction status after reconciliation
        transaction_id: Transaction primary key
        gateway_status: Last raw status reported by the gateway
        gateway_order_id: Order id at the gateway
        amount: Transaction amount in major units
        already_final: True when the stored terminal state was returned as-is
    """

    verified: bool
    status: str
    transaction_id: uuid.UUID
    gateway_status: str | None = None
    gateway_order_id: str | None = None
    amount: Decimal | None = None
    already_final: bool = False

    @classmethod
    def from_transaction(cls, txn: Transaction, already_final: bool = False) -> ReconciliationOutcome:
        return cls(
            verified=txn.is_successful,
            status=txn.status,
            transaction_id=txn.id,
            gateway_status=txn.gateway_order_status or None,
            gateway_order_id=txn.gateway_order_id,
            amount=txn.amount,
            already_final=already_final,
        )


class ReconciliationEngine(BaseService):
    """Drives transactions to the gateway-reported state."""

    @classmethod
    def reconcile(
        cls,
        reference: str,
        pushed_payload: dict[str, Any] | None = None,
    ) -> ReconciliationOutcome:
        """
        Reconcile one transaction with the gateway.

        Args:
            reference: Gateway order id or merchant reference
            pushed_payload: Callback body (webhook path); the gateway is
                queried when omitted

        Returns:
            ReconciliationOutcome

        Raises:
            TransactionNotFoundError: No transaction matches the reference
            AuthUnavailableError: Status read needed a token and none was available
            GatewayRequestFailedError: Status read failed
        """
        txn = Ledger.find_transaction_by_reference(reference)
        return cls._reconcile_transaction(txn, pushed_payload)

    @classmethod
    def reconcile_owned(
        cls,
        reference: str,
        owner,
        pushed_payload: dict[str, Any] | None = None,
    ) -> ReconciliationOutcome:
        """
        Reconcile a transaction that must belong to ``owner``.

        Raises:
            TransactionNotFoundError: No transaction of ``owner`` matches
        """
        txn = Ledger.find_transaction_for_owner(reference, owner)
        return cls._reconcile_transaction(txn, pushed_payload)

    @classmethod
    def _reconcile_transaction(
        cls,
        txn: Transaction,
        pushed_payload: dict[str, Any] | None,
    ) -> ReconciliationOutcome:
        logger = cls.get_logger()
        log_context = {
            "transaction_id": str(txn.id),
            "merchant_reference": txn.merchant_reference,
            "source": "push" if pushed_payload is not None else "poll",
        }

        if txn.is_terminal:
            logger.info(
                "Transaction already final, returning stored outcome",
                extra={**log_context, "status": txn.status},
            )
            cls._settle_stranded_invoice(txn)
            return ReconciliationOutcome.from_transaction(txn, already_final=True)

        raw_status, raw_response = cls._gateway_status(txn, pushed_payload)
        new_status = map_gateway_status(raw_status)
        log_context.update({"raw_status": raw_status, "mapped_status": new_status})

        if not is_terminal_status(new_status):
            txn = Ledger.record_status_check(txn.id, raw_status, raw_response)
            logger.info("Gateway status not final yet", extra=log_context)
            return ReconciliationOutcome.from_transaction(txn)

        try:
            with cls.atomic():
                txn = Ledger.apply_terminal_transition(
                    txn.id,
                    new_status,
                    raw_status=raw_status,
                    raw_response=raw_response,
                    failure_reason=extract_failure_reason(raw_response, new_status),
                )
                if txn.is_successful:
                    Ledger.mark_invoice_paid(txn.invoice_id, paid_at=txn.completed_at)
        except AlreadyFinalizedError:
            stored = Transaction.objects.get(pk=txn.id)
            logger.warning(
                "Transaction finalized concurrently with a different status",
                extra={**log_context, "stored_status": stored.status},
            )
            cls._settle_stranded_invoice(stored)
            return ReconciliationOutcome.from_transaction(stored, already_final=True)

        logger.info("Transaction reconciled", extra={**log_context, "status": txn.status})
        return ReconciliationOutcome.from_transaction(txn)

    @classmethod
    def _settle_stranded_invoice(cls, txn: Transaction) -> None:
        """Mark the invoice paid if a successful transaction left it payment_initiated."""
        if not txn.is_successful:
            return
        stranded = Invoice.objects.filter(
            pk=txn.invoice_id,
            status=InvoiceStatus.PAYMENT_INITIATED,
        ).exists()
        if stranded:
            cls.get_logger().warning(
                "Invoice still unpaid for a successful transaction, marking paid",
                extra={"transaction_id": str(txn.id), "invoice_id": str(txn.invoice_id)},
            )
            Ledger.mark_invoice_paid(txn.invoice_id, paid_at=txn.completed_at)

    @staticmethod
    def _gateway_status(
        txn: Transaction,
        pushed_payload: dict[str, Any] | None,
    ) -> tuple[str | None, dict[str, Any]]:
        """Raw status and body, from the pushed payload or a gateway read."""
        if pushed_payload is not None:
            return extract_gateway_status(pushed_payload), pushed_payload

        if not txn.gateway_order_id:
            raise TransactionNotFoundError(
                "Transaction has no gateway order to query",
                details={"transaction_id": str(txn.id)},
            )

        token = TokenCache.get_token()
        result = PhonePeAdapter.fetch_order_status(txn.gateway_order_id, token.token)
        return result.raw_status, result.raw_response
