import uuid

import django.db.models.deletion
import django_fsm
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="GatewayAuthToken",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True,
                        primary_key=True,
                        serialize=False,
                        verbose_name="ID",
                    ),
                ),
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "access_token",
                    models.TextField(help_text="Access token issued by the gateway"),
                ),
                (
                    "token_type",
                    models.CharField(
                        default="Bearer",
                        help_text="Token type reported by the gateway",
                        max_length=32,
                    ),
                ),
                (
                    "expires_at",
                    models.DateTimeField(
                        db_index=True,
                        help_text="When the gateway stops accepting this token",
                    ),
                ),
                (
                    "is_active",
                    models.BooleanField(
                        db_index=True,
                        default=True,
                        help_text="Whether this is the current credential",
                    ),
                ),
            ],
            options={
                "verbose_name": "Gateway Auth Token",
                "verbose_name_plural": "Gateway Auth Tokens",
                "ordering": ["-created_at"],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(("is_active", True)),
                        fields=("is_active",),
                        name="single_active_gateway_token",
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="Invoice",
            fields=[
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "vendor_reference",
                    models.CharField(
                        help_text="Vendor identifier from the invoicing system",
                        max_length=255,
                    ),
                ),
                (
                    "vendor_name",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Vendor display name",
                        max_length=255,
                    ),
                ),
                (
                    "amount",
                    models.DecimalField(
                        decimal_places=2,
                        help_text="Invoice amount in major currency units (immutable)",
                        max_digits=12,
                    ),
                ),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=[
                            ("pending", "Pending"),
                            ("payment_initiated", "Payment Initiated"),
                            ("paid", "Paid"),
                        ],
                        db_index=True,
                        default="pending",
                        help_text="Current state of the invoice (managed by FSM)",
                        max_length=50,
                    ),
                ),
                (
                    "paid_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When payment for this invoice was confirmed",
                        null=True,
                    ),
                ),
                (
                    "owner",
                    models.ForeignKey(
                        help_text="User responsible for paying this invoice",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="invoices",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Invoice",
                "verbose_name_plural": "Invoices",
                "ordering": ["-created_at"],
            },
        ),
        migrations.CreateModel(
            name="Transaction",
            fields=[
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "vendor_reference",
                    models.CharField(
                        help_text="Vendor identifier copied from the invoice",
                        max_length=255,
                    ),
                ),
                (
                    "vendor_name",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Vendor display name copied from the invoice",
                        max_length=255,
                    ),
                ),
                (
                    "amount",
                    models.DecimalField(
                        decimal_places=2,
                        help_text="Amount charged in major currency units",
                        max_digits=12,
                    ),
                ),
                (
                    "fee",
                    models.DecimalField(
                        decimal_places=2,
                        default=0,
                        help_text="Processing fee derived from the invoice amount",
                        max_digits=12,
                    ),
                ),
                (
                    "rewards_earned",
                    models.DecimalField(
                        decimal_places=2,
                        default=0,
                        help_text="Rewards credited for this payment",
                        max_digits=12,
                    ),
                ),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=[
                            ("initiated", "Initiated"),
                            ("pending", "Pending"),
                            ("success", "Success"),
                            ("failure", "Failure"),
                            ("cancelled", "Cancelled"),
                            ("expired", "Expired"),
                        ],
                        db_index=True,
                        default="initiated",
                        help_text="Current state of the transaction (managed by FSM)",
                        max_length=50,
                    ),
                ),
                (
                    "payment_method",
                    models.CharField(
                        default="PhonePe",
                        help_text="Payment method label",
                        max_length=50,
                    ),
                ),
                (
                    "merchant_reference",
                    models.CharField(
                        help_text="Merchant order id sent to the gateway - unique for idempotency",
                        max_length=64,
                        unique=True,
                    ),
                ),
                (
                    "merchant_user_id",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Opaque user id sent to the gateway",
                        max_length=64,
                    ),
                ),
                (
                    "gateway_order_id",
                    models.CharField(
                        blank=True,
                        help_text="Order id returned by the gateway",
                        max_length=255,
                        null=True,
                        unique=True,
                    ),
                ),
                (
                    "gateway_order_token",
                    models.TextField(
                        blank=True,
                        default="",
                        help_text="Order token the client SDK uses to open checkout",
                    ),
                ),
                (
                    "gateway_order_status",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Last raw order state reported by the gateway",
                        max_length=50,
                    ),
                ),
                (
                    "gateway_response",
                    models.JSONField(
                        blank=True,
                        default=dict,
                        help_text="Snapshot of the last gateway response body",
                    ),
                ),
                (
                    "status_check_count",
                    models.PositiveIntegerField(
                        default=0,
                        help_text="Number of times gateway status was applied to this row",
                    ),
                ),
                (
                    "last_status_check_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When gateway status was last applied",
                        null=True,
                    ),
                ),
                (
                    "completed_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the payment succeeded",
                        null=True,
                    ),
                ),
                (
                    "failure_reason",
                    models.TextField(
                        blank=True,
                        help_text="Reason reported when the payment did not succeed",
                        null=True,
                    ),
                ),
                (
                    "invoice",
                    models.ForeignKey(
                        help_text="Invoice this payment attempt settles",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="transactions",
                        to="payments.invoice",
                    ),
                ),
                (
                    "owner",
                    models.ForeignKey(
                        help_text="User making the payment",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="payment_transactions",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Transaction",
                "verbose_name_plural": "Transactions",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["owner", "status"],
                        name="transaction_owner_status_idx",
                    ),
                    models.Index(
                        fields=["status", "created_at"],
                        name="transaction_status_created_idx",
                    ),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("amount__gt", 0)),
                        name="transaction_amount_positive",
                    ),
                    models.CheckConstraint(
                        condition=models.Q(("fee__gte", 0), ("rewards_earned__gte", 0)),
                        name="transaction_fee_rewards_non_negative",
                    ),
                ],
            },
        ),
        migrations.AddField(
            model_name="invoice",
            name="current_transaction",
            field=models.ForeignKey(
                blank=True,
                help_text="Transaction of the most recent payment attempt",
                null=True,
                on_delete=django.db.models.deletion.SET_NULL,
                related_name="+",
                to="payments.transaction",
            ),
        ),
        migrations.AddIndex(
            model_name="invoice",
            index=models.Index(
                fields=["owner", "status"],
                name="invoice_owner_status_idx",
            ),
        ),
        migrations.AddConstraint(
            model_name="invoice",
            constraint=models.CheckConstraint(
                condition=models.Q(("amount__gt", 0)),
                name="invoice_amount_positive",
            ),
        ),
        migrations.CreateModel(
            name="WebhookEvent",
            fields=[
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "event_key",
                    models.CharField(
                        help_text="event:merchantOrderId:state - unique constraint for idempotency",
                        max_length=255,
                        unique=True,
                    ),
                ),
                (
                    "event_type",
                    models.CharField(
                        db_index=True,
                        help_text="Gateway event type (e.g., 'checkout.order.completed')",
                        max_length=100,
                    ),
                ),
                (
                    "merchant_reference",
                    models.CharField(
                        db_index=True,
                        help_text="Merchant order id the callback refers to",
                        max_length=64,
                    ),
                ),
                (
                    "payload",
                    models.JSONField(help_text="Full callback body from the gateway (JSON)"),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("pending", "Pending"),
                            ("processing", "Processing"),
                            ("processed", "Processed"),
                            ("failed", "Failed"),
                        ],
                        db_index=True,
                        default="pending",
                        help_text="Current processing status",
                        max_length=20,
                    ),
                ),
                (
                    "processed_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When event was successfully processed",
                        null=True,
                    ),
                ),
                (
                    "error_message",
                    models.TextField(
                        blank=True,
                        help_text="Error message if processing failed",
                        null=True,
                    ),
                ),
                (
                    "retry_count",
                    models.PositiveSmallIntegerField(
                        default=0,
                        help_text="Number of processing attempts",
                    ),
                ),
            ],
            options={
                "verbose_name": "Webhook Event",
                "verbose_name_plural": "Webhook Events",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["status", "created_at"],
                        name="webhook_status_created_idx",
                    ),
                    models.Index(
                        fields=["status", "retry_count"],
                        name="webhook_status_retry_idx",
                    ),
                ],
            },
        ),
    ]
