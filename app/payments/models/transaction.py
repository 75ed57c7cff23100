"""
Transaction model for a single gateway payment attempt.

A Transaction is created in the initiated state when the gateway accepts
an order, and is moved exactly once to a terminal state by reconciliation.

Usage:
    from payments.models import Transaction
    from payments.state_machines import TransactionStatus

    txn = Transaction.objects.get(gateway_order_id="OMO123")
    txn.mark_success()
    txn.save()  # compare-and-set on status

    txn.status == TransactionStatus.SUCCESS
"""

from __future__ import annotations

from django.conf import settings
from django.db import models
from django.utils import timezone

from django_fsm import ConcurrentTransitionMixin, FSMField, transition

from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin

from payments.state_machines import (
    OPEN_TRANSACTION_STATUSES,
    TransactionStatus,
    is_terminal_status,
)


class Transaction(ConcurrentTransitionMixin, UUIDPrimaryKeyMixin, BaseModel):
    """
    One payment attempt for an invoice, bound to one gateway order.

    State Flow:
        INITIATED -> SUCCESS | FAILURE | CANCELLED | EXPIRED (terminal, absorbing)

    Concurrency:
        merchant_reference is unique, so one payment attempt can never
        produce two rows. Saves are compare-and-set on status
        (ConcurrentTransitionMixin): a webhook and a poll that both loaded
        the row as INITIATED cannot both write a terminal state.

    Fields:
        invoice / owner: What is being paid and by whom
        amount / fee / rewards_earned: Frozen at order creation
        merchant_reference: Merchant order id sent to the gateway (idempotency key)
        gateway_order_id / gateway_order_token: Returned by the gateway
        gateway_order_status: Last raw state string reported by the gateway
        gateway_response: Snapshot of the last gateway body (audit)
        status_check_count / last_status_check_at: Reconciliation bookkeeping
        completed_at: When the payment succeeded
        failure_reason: Why the payment did not succeed
    """

    # ==========================================================================
    # Relationships
    # ==========================================================================

    invoice = models.ForeignKey(
        "payments.Invoice",
        on_delete=models.PROTECT,
        related_name="transactions",
        help_text="Invoice this payment attempt settles",
    )

    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="payment_transactions",
        help_text="User making the payment",
    )

    vendor_reference = models.CharField(
        max_length=255,
        help_text="Vendor identifier copied from the invoice",
    )

    vendor_name = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Vendor display name copied from the invoice",
    )

    # ==========================================================================
    # Amounts (frozen at creation)
    # ==========================================================================

    amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        help_text="Amount charged in major currency units",
    )

    fee = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=0,
        help_text="Processing fee derived from the invoice amount",
    )

    rewards_earned = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=0,
        help_text="Rewards credited for this payment",
    )

    # ==========================================================================
    # State
    # ==========================================================================

    status = FSMField(
        default=TransactionStatus.INITIATED,
        choices=TransactionStatus.choices,
        db_index=True,
        help_text="Current state of the transaction (managed by FSM)",
    )

    payment_method = models.CharField(
        max_length=50,
        default="PhonePe",
        help_text="Payment method label",
    )

    # ==========================================================================
    # Gateway Integration
    # ==========================================================================

    merchant_reference = models.CharField(
        max_length=64,
        unique=True,
        help_text="Merchant order id sent to the gateway - unique for idempotency",
    )

    merchant_user_id = models.CharField(
        max_length=64,
        blank=True,
        default="",
        help_text="Opaque user id sent to the gateway",
    )

    gateway_order_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        unique=True,
        help_text="Order id returned by the gateway",
    )

    gateway_order_token = models.TextField(
        blank=True,
        default="",
        help_text="Order token the client SDK uses to open checkout",
    )

    gateway_order_status = models.CharField(
        max_length=50,
        blank=True,
        default="",
        help_text="Last raw order state reported by the gateway",
    )

    gateway_response = models.JSONField(
        default=dict,
        blank=True,
        help_text="Snapshot of the last gateway response body",
    )

    # ==========================================================================
    # Reconciliation Bookkeeping
    # ==========================================================================

    status_check_count = models.PositiveIntegerField(
        default=0,
        help_text="Number of times gateway status was applied to this row",
    )

    last_status_check_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When gateway status was last applied",
    )

    completed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the payment succeeded",
    )

    failure_reason = models.TextField(
        null=True,
        blank=True,
        help_text="Reason reported when the payment did not succeed",
    )

    # ==========================================================================
    # Meta & Methods
    # ==========================================================================

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Transaction"
        verbose_name_plural = "Transactions"
        indexes = [
            models.Index(fields=["owner", "status"], name="transaction_owner_status_idx"),
            models.Index(fields=["status", "created_at"], name="transaction_status_created_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(amount__gt=0),
                name="transaction_amount_positive",
            ),
            models.CheckConstraint(
                condition=models.Q(fee__gte=0) & models.Q(rewards_earned__gte=0),
                name="transaction_fee_rewards_non_negative",
            ),
        ]

    def __str__(self) -> str:
        return f"Transaction({self.id}, {self.status}, {self.merchant_reference})"

    # ==========================================================================
    # Properties
    # ==========================================================================

    @property
    def is_terminal(self) -> bool:
        """Check if the transaction reached an absorbing state."""
        return is_terminal_status(self.status)

    @property
    def is_successful(self) -> bool:
        """Check if the payment went through."""
        return self.status == TransactionStatus.SUCCESS

    # ==========================================================================
    # Helper Methods
    # ==========================================================================

    def record_status_check(self, raw_status: str | None, response: dict | None) -> None:
        """
        Record one application of gateway status (bookkeeping only).

        Note: Does not save - caller must save after calling.
        """
        self.status_check_count += 1
        self.last_status_check_at = timezone.now()
        if raw_status:
            self.gateway_order_status = raw_status[:50]
        if response is not None:
            self.gateway_response = response

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=status,
        source=list(OPEN_TRANSACTION_STATUSES),
        target=TransactionStatus.SUCCESS,
    )
    def mark_success(self, completed_at=None):
        """
        Mark the payment as succeeded.

        Transition: INITIATED/PENDING -> SUCCESS
        """
        self.completed_at = completed_at or timezone.now()
        self.failure_reason = None

    @transition(
        field=status,
        source=list(OPEN_TRANSACTION_STATUSES),
        target=TransactionStatus.FAILURE,
    )
    def mark_failure(self, reason: str | None = None):
        """
        Mark the payment as failed.

        Transition: INITIATED/PENDING -> FAILURE
        """
        self.failure_reason = reason or "Payment failed"

    @transition(
        field=status,
        source=list(OPEN_TRANSACTION_STATUSES),
        target=TransactionStatus.CANCELLED,
    )
    def mark_cancelled(self, reason: str | None = None):
        """
        Mark the payment as cancelled by the payer.

        Transition: INITIATED/PENDING -> CANCELLED
        """
        self.failure_reason = reason or "Payment cancelled"

    @transition(
        field=status,
        source=list(OPEN_TRANSACTION_STATUSES),
        target=TransactionStatus.EXPIRED,
    )
    def mark_expired(self, reason: str | None = None):
        """
        Mark the gateway order as expired.

        Transition: INITIATED/PENDING -> EXPIRED
        """
        self.failure_reason = reason or "Payment expired"
