"""
WebhookEvent model for gateway callback tracking.

Stores every server-to-server callback received from the gateway for
idempotent processing and audit trails. The unique event_key constraint
ensures duplicate deliveries are detected and handled correctly.

Usage:
    from payments.models import WebhookEvent

    event, created = WebhookEvent.objects.get_or_create(
        event_key="checkout.order.completed:INV_1700000000000_ab12cd34e:COMPLETED",
        defaults={
            "event_type": "checkout.order.completed",
            "merchant_reference": "INV_1700000000000_ab12cd34e",
            "payload": callback_body,
        },
    )
"""

from __future__ import annotations

from django.db import models
from django.utils import timezone

from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin

from payments.state_machines import WebhookEventStatus

MAX_WEBHOOK_RETRIES = 5


class WebhookEvent(UUIDPrimaryKeyMixin, BaseModel):
    """
    Tracks gateway callbacks for idempotent processing.

    Processing Flow:
        1. Callback arrives, verify Authorization header
        2. Insert/get WebhookEvent by event_key
        3. If exists and PROCESSED -> return 200 (duplicate)
        4. Queue the event for async processing
        5. Task marks PROCESSING, reconciles, then PROCESSED or FAILED
        6. If FAILED, the retry task picks it up later

    The gateway has no event id, so event_key is built from the event
    type, merchant order id and reported state. Redelivery of the same
    callback maps to the same row.
    """

    # ==========================================================================
    # Event Identification
    # ==========================================================================

    event_key = models.CharField(
        max_length=255,
        unique=True,
        help_text="event:merchantOrderId:state - unique constraint for idempotency",
    )

    event_type = models.CharField(
        max_length=100,
        db_index=True,
        help_text="Gateway event type (e.g., 'checkout.order.completed')",
    )

    merchant_reference = models.CharField(
        max_length=64,
        db_index=True,
        help_text="Merchant order id the callback refers to",
    )

    # ==========================================================================
    # Payload
    # ==========================================================================

    payload = models.JSONField(
        help_text="Full callback body from the gateway (JSON)",
    )

    # ==========================================================================
    # Processing Status
    # ==========================================================================

    status = models.CharField(
        max_length=20,
        choices=WebhookEventStatus.choices,
        default=WebhookEventStatus.PENDING,
        db_index=True,
        help_text="Current processing status",
    )

    processed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When event was successfully processed",
    )

    # ==========================================================================
    # Error Handling
    # ==========================================================================

    error_message = models.TextField(
        null=True,
        blank=True,
        help_text="Error message if processing failed",
    )

    retry_count = models.PositiveSmallIntegerField(
        default=0,
        help_text="Number of processing attempts",
    )

    # ==========================================================================
    # Meta & Methods
    # ==========================================================================

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Webhook Event"
        verbose_name_plural = "Webhook Events"
        indexes = [
            models.Index(fields=["status", "created_at"], name="webhook_status_created_idx"),
            models.Index(fields=["status", "retry_count"], name="webhook_status_retry_idx"),
        ]

    def __str__(self) -> str:
        return f"WebhookEvent({self.event_key})"

    @staticmethod
    def build_event_key(event_type: str, merchant_reference: str, state: str | None) -> str:
        """Build the idempotency key for a callback delivery."""
        return f"{event_type}:{merchant_reference}:{state or 'UNKNOWN'}"[:255]

    # ==========================================================================
    # Properties
    # ==========================================================================

    @property
    def is_processed(self) -> bool:
        return self.status == WebhookEventStatus.PROCESSED

    @property
    def is_failed(self) -> bool:
        return self.status == WebhookEventStatus.FAILED

    @property
    def can_retry(self) -> bool:
        """Check if event can be retried (failed with retry count < max)."""
        return self.is_failed and self.retry_count < MAX_WEBHOOK_RETRIES

    # ==========================================================================
    # Helper Methods
    # ==========================================================================

    def mark_processing(self) -> None:
        """
        Mark event as being processed.

        Note: Does not save - caller must save after calling.
        """
        self.status = WebhookEventStatus.PROCESSING
        self.retry_count += 1

    def mark_processed(self) -> None:
        """
        Mark event as successfully processed.

        Note: Does not save - caller must save after calling.
        """
        self.status = WebhookEventStatus.PROCESSED
        self.processed_at = timezone.now()
        self.error_message = None

    def mark_failed(self, error_message: str) -> None:
        """
        Mark event as failed with error message.

        Note: Does not save - caller must save after calling.
        """
        self.status = WebhookEventStatus.FAILED
        self.error_message = error_message

    def get_order_payload(self) -> dict:
        """Return the order section of the callback body."""
        inner = self.payload.get("payload") if isinstance(self.payload, dict) else None
        return inner if isinstance(inner, dict) else {}
