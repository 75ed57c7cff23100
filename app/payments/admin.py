"""
Payment admin configuration.

Registers the payment models with the Django admin. Status fields are
read-only: state changes go through the services so the state machines
and audit fields stay consistent.
"""

from django.contrib import admin

from core.exceptions import BaseApplicationError

from payments.models import GatewayAuthToken, Invoice, Transaction, WebhookEvent
from payments.state_machines import WebhookEventStatus

__all__ = [
    "GatewayAuthTokenAdmin",
    "InvoiceAdmin",
    "TransactionAdmin",
    "WebhookEventAdmin",
]


@admin.register(Invoice)
class InvoiceAdmin(admin.ModelAdmin):
    """
    Admin configuration for Invoice.

    The amount is immutable once created; status is FSM-managed.
    """

    list_display = [
        "id",
        "owner",
        "vendor_name",
        "amount",
        "status",
        "paid_at",
        "created_at",
    ]
    list_filter = ["status", "created_at"]
    search_fields = ["id", "vendor_reference", "vendor_name", "owner__username", "owner__email"]
    readonly_fields = [
        "id",
        "status",
        "current_transaction",
        "paid_at",
        "created_at",
        "updated_at",
    ]
    raw_id_fields = ["owner"]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]

    fieldsets = (
        (
            None,
            {
                "fields": ("id", "owner", "vendor_reference", "vendor_name"),
            },
        ),
        (
            "Payment",
            {
                "fields": ("amount", "status", "current_transaction", "paid_at"),
            },
        ),
        (
            "Timestamps",
            {
                "fields": ("created_at", "updated_at"),
            },
        ),
    )

    def get_readonly_fields(self, request, obj=None):
        if obj is not None:
            return [*self.readonly_fields, "amount", "owner"]
        return self.readonly_fields

    def has_delete_permission(self, request, obj=None) -> bool:
        """Disable delete for invoices (transactions reference them)."""
        return False


@admin.register(Transaction)
class TransactionAdmin(admin.ModelAdmin):
    """
    Admin configuration for Transaction.

    Transactions are created by the orchestrator and finalized by
    reconciliation. The reconcile action re-reads gateway status for
    open transactions.
    """

    list_display = [
        "id",
        "merchant_reference",
        "gateway_order_id",
        "owner",
        "amount",
        "fee",
        "rewards_earned",
        "status",
        "gateway_order_status",
        "created_at",
    ]
    list_filter = ["status", "payment_method", "created_at"]
    search_fields = ["id", "merchant_reference", "gateway_order_id", "owner__username"]
    readonly_fields = [f.name for f in Transaction._meta.fields]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]
    actions = ["reconcile_selected"]

    fieldsets = (
        (
            None,
            {
                "fields": ("id", "invoice", "owner", "vendor_reference", "vendor_name"),
            },
        ),
        (
            "Amounts",
            {
                "fields": ("amount", "fee", "rewards_earned", "payment_method"),
            },
        ),
        (
            "Gateway",
            {
                "fields": (
                    "merchant_reference",
                    "merchant_user_id",
                    "gateway_order_id",
                    "gateway_order_token",
                    "gateway_order_status",
                ),
            },
        ),
        (
            "Status",
            {
                "fields": (
                    "status",
                    "status_check_count",
                    "last_status_check_at",
                    "completed_at",
                    "failure_reason",
                ),
            },
        ),
        (
            "Gateway Response",
            {
                "fields": ("gateway_response",),
                "classes": ("collapse",),
            },
        ),
        (
            "Timestamps",
            {
                "fields": ("created_at", "updated_at"),
            },
        ),
    )

    @admin.action(description="Reconcile selected transactions with the gateway")
    def reconcile_selected(self, request, queryset):
        """Bulk action to poll gateway status for open transactions."""
        from payments.services import ReconciliationEngine

        reconciled = failed = 0
        for txn in queryset.exclude(gateway_order_id__isnull=True):
            try:
                ReconciliationEngine.reconcile(txn.gateway_order_id)
                reconciled += 1
            except BaseApplicationError:
                failed += 1
        self.message_user(request, f"Reconciled {reconciled} transactions, {failed} failed.")

    def has_add_permission(self, request) -> bool:
        """Disable adding transactions through admin."""
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        """Disable delete for transactions (audit trail)."""
        return False


@admin.register(GatewayAuthToken)
class GatewayAuthTokenAdmin(admin.ModelAdmin):
    """Admin configuration for GatewayAuthToken. The token value is never displayed."""

    list_display = ["id", "token_type", "is_active", "expires_at", "created_at"]
    list_filter = ["is_active"]
    exclude = ["access_token"]
    readonly_fields = ["token_type", "expires_at", "is_active", "created_at", "updated_at"]
    ordering = ["-created_at"]

    def has_add_permission(self, request) -> bool:
        return False


@admin.register(WebhookEvent)
class WebhookEventAdmin(admin.ModelAdmin):
    """
    Admin configuration for WebhookEvent.

    Provides visibility into callback processing status.
    Callback events are immutable once received.
    """

    list_display = [
        "id",
        "event_key",
        "event_type",
        "status",
        "retry_count",
        "processed_at",
        "created_at",
    ]
    list_filter = ["status", "event_type", "created_at"]
    search_fields = ["id", "event_key", "merchant_reference"]
    readonly_fields = [
        "id",
        "created_at",
        "updated_at",
        "event_key",
        "event_type",
        "merchant_reference",
        "payload",
        "processed_at",
    ]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]
    actions = ["requeue_selected"]

    fieldsets = (
        (
            None,
            {
                "fields": ("id", "event_key", "event_type", "merchant_reference", "status"),
            },
        ),
        (
            "Processing",
            {
                "fields": ("processed_at", "retry_count"),
            },
        ),
        (
            "Error Info",
            {
                "fields": ("error_message",),
                "classes": ("collapse",),
            },
        ),
        (
            "Payload",
            {
                "fields": ("payload",),
                "classes": ("collapse",),
            },
        ),
        (
            "Timestamps",
            {
                "fields": ("created_at", "updated_at"),
            },
        ),
    )

    @admin.action(description="Re-queue selected events for processing")
    def requeue_selected(self, request, queryset):
        """Bulk action to queue unprocessed events again."""
        from payments.tasks import process_webhook_event

        count = 0
        for event in queryset.exclude(status=WebhookEventStatus.PROCESSED):
            process_webhook_event.delay(str(event.id))
            count += 1
        self.message_user(request, f"Queued {count} events for processing.")

    def has_delete_permission(self, request, obj=None) -> bool:
        """Disable delete for webhook events (audit trail)."""
        return False

    def has_add_permission(self, request) -> bool:
        """Disable adding webhook events through admin."""
        return False
