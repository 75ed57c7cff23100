"""
Invoice model for amounts owed by a user to a vendor.

Invoices are created by the invoicing flow (outside this app) in the
pending state. The payment core only advances them:

    pending → payment_initiated   (order created at the gateway)
    payment_initiated → paid      (gateway confirmed success)

Usage:
    from payments.models import Invoice

    invoice = Invoice.objects.get(pk=invoice_id, owner=user)
    invoice.initiate_payment(transaction_id=transaction.id)
    invoice.save()
"""

from __future__ import annotations

from decimal import Decimal

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import models
from django.utils import timezone

from django_fsm import ConcurrentTransitionMixin, FSMField, transition

from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin

from payments.state_machines import InvoiceStatus


class Invoice(ConcurrentTransitionMixin, UUIDPrimaryKeyMixin, BaseModel):
    """
    An amount a user owes a vendor, settled through one payment attempt.

    Status moves forward only (django-fsm). Saves are compare-and-set on
    status via ConcurrentTransitionMixin, so two writers that both loaded
    the invoice in the same status cannot both advance it.

    Fields:
        owner: User who must pay the invoice
        vendor_reference: Identifier of the vendor in the invoicing system
        vendor_name: Vendor display name, copied onto transactions
        amount: Amount in major currency units (immutable once created)
        status: Current FSM state
        current_transaction: Transaction of the latest payment attempt
        paid_at: When the gateway confirmed payment
    """

    # ==========================================================================
    # Relationships
    # ==========================================================================

    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="invoices",
        help_text="User responsible for paying this invoice",
    )

    vendor_reference = models.CharField(
        max_length=255,
        help_text="Vendor identifier from the invoicing system",
    )

    vendor_name = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Vendor display name",
    )

    current_transaction = models.ForeignKey(
        "payments.Transaction",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
        help_text="Transaction of the most recent payment attempt",
    )

    # ==========================================================================
    # Amount & State
    # ==========================================================================

    amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        help_text="Invoice amount in major currency units (immutable)",
    )

    status = FSMField(
        default=InvoiceStatus.PENDING,
        choices=InvoiceStatus.choices,
        db_index=True,
        help_text="Current state of the invoice (managed by FSM)",
    )

    paid_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When payment for this invoice was confirmed",
    )

    # ==========================================================================
    # Meta & Methods
    # ==========================================================================

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Invoice"
        verbose_name_plural = "Invoices"
        indexes = [
            models.Index(fields=["owner", "status"], name="invoice_owner_status_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(amount__gt=0),
                name="invoice_amount_positive",
            ),
        ]

    def __str__(self) -> str:
        return f"Invoice({self.id}, {self.status}, {self.amount})"

    def save(self, *args, **kwargs):
        """Save, refusing to change the amount of an existing invoice."""
        if not self._state.adding:
            stored_amount = (
                Invoice.objects.filter(pk=self.pk)
                .values_list("amount", flat=True)
                .first()
            )
            if stored_amount is not None and stored_amount != Decimal(str(self.amount)):
                raise ValidationError(
                    f"Invoice {self.pk} amount is immutable "
                    f"({stored_amount} -> {self.amount})"
                )
        super().save(*args, **kwargs)

    @property
    def is_payable(self) -> bool:
        """Check if a new order may be created for this invoice."""
        return self.status == InvoiceStatus.PENDING

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=status,
        source=InvoiceStatus.PENDING,
        target=InvoiceStatus.PAYMENT_INITIATED,
    )
    def initiate_payment(self, transaction_id=None):
        """
        Bind the invoice to a gateway payment attempt.

        Transition: PENDING -> PAYMENT_INITIATED
        """
        if transaction_id is not None:
            self.current_transaction_id = transaction_id

    @transition(
        field=status,
        source=InvoiceStatus.PAYMENT_INITIATED,
        target=InvoiceStatus.PAID,
    )
    def mark_paid(self, paid_at=None):
        """
        Mark the invoice as paid.

        Transition: PAYMENT_INITIATED -> PAID
        """
        self.paid_at = paid_at or timezone.now()
