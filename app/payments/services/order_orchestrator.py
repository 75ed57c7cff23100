"""
Order orchestrator: turns a pending invoice into a gateway checkout order.

This module provides the OrderOrchestrator class, the entry point for
starting a payment. It coordinates the Ledger, TokenCache and the
PhonePe adapter:

    1. Validate the invoice (owner, pending, amount)
    2. Obtain a gateway token
    3. Generate the merchant reference (idempotency key for the attempt)
    4. Create the order at the gateway
    5. Compute fee and rewards from the validated invoice amount
    6. Persist the Transaction and mark the invoice payment_initiated
    7. Return the order details for the client SDK

Once step 4 succeeds the gateway holds an order. A failure in step 6 is
raised as PersistAfterGatewaySuccessError and logged CRITICAL; callers
reconcile against the gateway order id instead of retrying.

Usage:
    from payments.services import CreateOrderParams, OrderOrchestrator

    creation = OrderOrchestrator.create_order(
        CreateOrderParams(
            invoice_id=invoice.id,
            amount=Decimal("100.00"),
            owner=request.user,
        )
    )
    creation.gateway_token  # handed to the mobile SDK
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING

from django.conf import settings
from django.db import DatabaseError

from core.services import BaseService

from payments.adapters import CreateOrderParams as GatewayOrderParams
from payments.adapters import PhonePeAdapter
from payments.exceptions import (
    DuplicateReferenceError,
    PaymentValidationError,
    PersistAfterGatewaySuccessError,
)
from payments.services.ledger import Ledger, TransactionRecord
from payments.services.token_cache import TokenCache
from payments.state_machines import TransactionStatus
from payments.utils import (
    generate_merchant_reference,
    generate_merchant_user_id,
    percent_of,
    to_minor_units,
)

if TYPE_CHECKING:
    from payments.models import Invoice

MOCK_PAYMENT_METHOD = "Mock Payment"
GATEWAY_PAYMENT_METHOD = "PhonePe"


# =============================================================================
# Parameter Types
# =============================================================================


@dataclass
class CreateOrderParams:
    """
    Parameters for starting a payment on an invoice.

    Attributes:
        invoice_id: Invoice to pay
        amount: Amount the caller expects to pay (must match the invoice)
        owner: Authenticated user; must own the invoice
        callback_url: Override for the gateway callback URL
        mock_mode: Complete the payment locally without the gateway
    """

    invoice_id: uuid.UUID | str
    amount: Decimal
    owner: object
    callback_url: str | None = None
    mock_mode: bool = False

    def __post_init__(self) -> None:
        """Validate parameters after initialization."""
        if not self.invoice_id:
            raise ValueError("invoice_id is required")
        if self.owner is None:
            raise ValueError("owner is required")
        self.amount = Decimal(str(self.amount))
        if self.amount <= 0:
            raise ValueError("amount must be positive")


@dataclass
class OrderCreation:
    """
    Result of a successful create_order call.

    Attributes:
        gateway_order_id: Order id at the gateway
        gateway_token: Token the client SDK uses to open checkout
        transaction_id: Local Transaction primary key
        merchant_reference: Merchant order id sent to the gateway
        amount: Invoice amount in major units
        fee: Fee frozen on the transaction
        rewards: Rewards frozen on the transaction
        status: Transaction status after creation
    """

    gateway_order_id: str
    gateway_token: str
    transaction_id: uuid.UUID
    merchant_reference: str
    amount: Decimal
    fee: Decimal
    rewards: Decimal
    status: str = TransactionStatus.INITIATED


# =============================================================================
# Order Orchestrator
# =============================================================================


class OrderOrchestrator(BaseService):
    """
    Coordinates order creation across the ledger and the gateway.

    All methods are class methods - no instance state is maintained.
    """

    @staticmethod
    def fee_percent() -> Decimal:
        return Decimal(str(getattr(settings, "PAYMENT_FEE_PERCENT", "2")))

    @staticmethod
    def rewards_percent() -> Decimal:
        return Decimal(str(getattr(settings, "PAYMENT_REWARDS_PERCENT", "1.5")))

    @classmethod
    def compute_fee_and_rewards(cls, amount: Decimal) -> tuple[Decimal, Decimal]:
        """Fee and rewards for an amount, each rounded half-up to the cent."""
        return percent_of(amount, cls.fee_percent()), percent_of(amount, cls.rewards_percent())

    @staticmethod
    def callback_url(params: CreateOrderParams) -> str:
        return params.callback_url or getattr(settings, "PHONEPE_CALLBACK_URL", "")

    @classmethod
    def create_order(cls, params: CreateOrderParams) -> OrderCreation:
        """
        Create a gateway order for a pending invoice.

        Args:
            params: CreateOrderParams

        Returns:
            OrderCreation for the client

        Raises:
            InvoiceNotFoundError: Unknown invoice or not owned by the caller
            InvoiceNotPayableError: Invoice is not pending
            AmountMismatchError: Amount differs from the invoice amount
            AuthUnavailableError: No gateway token could be obtained
            GatewayRequestFailedError: Gateway rejected or did not answer
            PersistAfterGatewaySuccessError: Gateway order exists but the
                local write failed
        """
        log = cls.get_logger()

        invoice = Ledger.get_pending_invoice(params.invoice_id, params.owner, params.amount)

        if params.mock_mode:
            return cls._create_mock_order(invoice)

        token = TokenCache.get_token()

        merchant_reference = generate_merchant_reference()
        merchant_user_id = generate_merchant_user_id()
        log_context = {
            "invoice_id": str(invoice.id),
            "merchant_reference": merchant_reference,
            "amount": str(invoice.amount),
            "token_source": token.source,
        }
        log.info("Creating gateway order", extra=log_context)

        order = PhonePeAdapter.create_order(
            GatewayOrderParams(
                merchant_order_id=merchant_reference,
                amount_minor=to_minor_units(invoice.amount),
                merchant_user_id=merchant_user_id,
                callback_url=cls.callback_url(params),
            ),
            token.token,
        )

        fee, rewards = cls.compute_fee_and_rewards(invoice.amount)
        record = TransactionRecord(
            invoice=invoice,
            amount=invoice.amount,
            fee=fee,
            rewards_earned=rewards,
            merchant_reference=merchant_reference,
            merchant_user_id=merchant_user_id,
            gateway_order_id=order.gateway_order_id,
            gateway_order_token=order.gateway_token,
            gateway_order_status=order.state or "CREATED",
            gateway_response=order.raw_response,
            payment_method=GATEWAY_PAYMENT_METHOD,
        )

        try:
            with cls.atomic():
                txn, _ = Ledger.insert_or_fetch_transaction(record)
                invoice_bound = Ledger.mark_invoice_initiated(invoice.id, txn.id)
        except (DatabaseError, DuplicateReferenceError) as e:
            log.critical(
                "Gateway order created but local persist failed",
                extra={**log_context, "gateway_order_id": order.gateway_order_id},
                exc_info=True,
            )
            raise PersistAfterGatewaySuccessError(
                "Payment order was created but could not be recorded",
                gateway_order_id=order.gateway_order_id,
                merchant_reference=merchant_reference,
            ) from e

        if not invoice_bound:
            log.warning(
                "Invoice already initiated by a concurrent order, two live gateway orders exist",
                extra={
                    **log_context,
                    "transaction_id": str(txn.id),
                    "gateway_order_id": order.gateway_order_id,
                    "duplicate_gateway_order": True,
                },
            )

        log.info(
            "Gateway order created",
            extra={
                **log_context,
                "transaction_id": str(txn.id),
                "gateway_order_id": order.gateway_order_id,
                "fee": str(fee),
                "rewards": str(rewards),
                "invoice_bound": invoice_bound,
            },
        )
        return OrderCreation(
            gateway_order_id=order.gateway_order_id,
            gateway_token=order.gateway_token,
            transaction_id=txn.id,
            merchant_reference=merchant_reference,
            amount=txn.amount,
            fee=txn.fee,
            rewards=txn.rewards_earned,
            status=txn.status,
        )

    @classmethod
    def _create_mock_order(cls, invoice: Invoice) -> OrderCreation:
        """
        Complete a payment locally without calling the gateway.

        Only available when PAYMENTS_ALLOW_MOCK_MODE is enabled.
        """
        if not getattr(settings, "PAYMENTS_ALLOW_MOCK_MODE", False):
            raise PaymentValidationError(
                "Mock payments are disabled",
                error_code="MOCK_MODE_DISABLED",
            )

        merchant_reference = generate_merchant_reference(prefix="MOCK")
        fee, rewards = cls.compute_fee_and_rewards(invoice.amount)
        mock_response = {"mock": True, "state": "COMPLETED", "orderId": merchant_reference}

        with cls.atomic():
            txn = Ledger.insert_transaction(
                TransactionRecord(
                    invoice=invoice,
                    amount=invoice.amount,
                    fee=fee,
                    rewards_earned=rewards,
                    merchant_reference=merchant_reference,
                    merchant_user_id=generate_merchant_user_id(),
                    gateway_order_id=merchant_reference,
                    gateway_order_status="CREATED",
                    gateway_response=mock_response,
                    payment_method=MOCK_PAYMENT_METHOD,
                )
            )
            Ledger.mark_invoice_initiated(invoice.id, txn.id)
            txn = Ledger.apply_terminal_transition(
                txn.id,
                TransactionStatus.SUCCESS,
                raw_status="COMPLETED",
                raw_response=mock_response,
            )
            Ledger.mark_invoice_paid(invoice.id, paid_at=txn.completed_at)

        cls.get_logger().info(
            "Mock payment completed",
            extra={
                "invoice_id": str(invoice.id),
                "transaction_id": str(txn.id),
                "merchant_reference": merchant_reference,
            },
        )
        return OrderCreation(
            gateway_order_id=merchant_reference,
            gateway_token="",
            transaction_id=txn.id,
            merchant_reference=merchant_reference,
            amount=txn.amount,
            fee=txn.fee,
            rewards=txn.rewards_earned,
            status=txn.status,
        )
