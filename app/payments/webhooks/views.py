"""
Webhook endpoint view for PhonePe callbacks.

The view:
1. Verifies the Authorization header (SHA-256 of the callback credentials)
2. Creates/retrieves the WebhookEvent record (idempotent)
3. Queues the event for async processing
4. Returns immediately

Usage:
    # In urls.py
    from payments.webhooks.views import phonepe_webhook

    urlpatterns = [
        path("webhooks/phonepe/", phonepe_webhook, name="phonepe_webhook"),
    ]
"""

from __future__ import annotations

import json
import logging

from django.http import HttpRequest, HttpResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from payments.adapters import PhonePeAdapter
from payments.models import WebhookEvent
from payments.state_machines import WebhookEventStatus, extract_gateway_status

logger = logging.getLogger(__name__)


@csrf_exempt
@require_POST
def phonepe_webhook(request: HttpRequest) -> HttpResponse:
    """
    Receive and queue PhonePe callbacks.

    Security:
    - Authorization must equal SHA256(username:password) of the configured
      callback credentials; anything else is rejected before storage
    - CSRF exemption required for external callbacks
    - Only POST requests accepted

    Idempotency:
    - WebhookEvent.event_key (event:merchantOrderId:state) is unique
    - Duplicate deliveries of a processed event return 200 without reprocessing

    Returns:
        HttpResponse with status:
        - 200: Event accepted (new or duplicate)
        - 400: Malformed body
        - 401: Missing or wrong Authorization header
    """
    if not PhonePeAdapter.verify_callback_authorization(request.headers.get("Authorization")):
        logger.warning("Callback rejected: invalid Authorization header")
        return HttpResponse("Unauthorized", status=401)

    try:
        body = json.loads(request.body)
    except (TypeError, ValueError):
        logger.warning("Callback body is not valid JSON")
        return HttpResponse("Invalid payload", status=400)

    if not isinstance(body, dict):
        return HttpResponse("Invalid payload", status=400)

    event_type = body.get("event") or body.get("type")
    order = body.get("payload") if isinstance(body.get("payload"), dict) else {}
    merchant_reference = order.get("merchantOrderId") or body.get("merchantOrderId")

    if not event_type or not merchant_reference:
        logger.warning(
            "Callback missing required fields",
            extra={"event_type": event_type, "merchant_reference": merchant_reference},
        )
        return HttpResponse("Invalid event", status=400)

    event_key = WebhookEvent.build_event_key(
        event_type, merchant_reference, extract_gateway_status(order or body)
    )

    logger.info(
        f"Received PhonePe callback: {event_type}",
        extra={"event_key": event_key, "merchant_reference": merchant_reference},
    )

    webhook_event, created = WebhookEvent.objects.get_or_create(
        event_key=event_key,
        defaults={
            "event_type": event_type,
            "merchant_reference": merchant_reference,
            "payload": body,
            "status": WebhookEventStatus.PENDING,
        },
    )

    if not created:
        if webhook_event.is_processed:
            logger.info(
                "Callback already processed, returning success",
                extra={"event_key": event_key},
            )
            return HttpResponse("Already processed", status=200)

        logger.info(
            f"Callback already exists with status: {webhook_event.status}",
            extra={"event_key": event_key},
        )

    try:
        from payments.tasks import process_webhook_event

        process_webhook_event.delay(str(webhook_event.id))
        logger.info(
            "Callback queued for processing",
            extra={"event_key": event_key, "webhook_event_id": str(webhook_event.id)},
        )
    except Exception:
        # The stored event is picked up by retry_failed_webhooks or a redelivery
        logger.error(
            "Failed to queue callback",
            extra={"event_key": event_key},
            exc_info=True,
        )

    return HttpResponse("Accepted", status=200)
