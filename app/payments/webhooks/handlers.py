"""
Webhook event handlers for PhonePe callbacks.

This module provides a handler registry and implementations for
processing the gateway's checkout callbacks. Every order callback is
handed to the ReconciliationEngine with the callback body as the pushed
status, so webhook and poll share one idempotent path.

Usage:
    from payments.webhooks.handlers import dispatch_webhook, register_handler

    # Register a custom handler
    @register_handler("checkout.order.custom")
    def handle_custom_event(webhook_event: WebhookEvent) -> ServiceResult:
        ...

    # Dispatch an event to its handler
    result = dispatch_webhook(webhook_event)
"""

from __future__ import annotations

import logging
from typing import Callable

from core.services import ServiceResult

from payments.exceptions import PaymentNotFoundError
from payments.models import WebhookEvent
from payments.services import ReconciliationEngine, ReconciliationOutcome

logger = logging.getLogger(__name__)

ORDER_COMPLETED = "checkout.order.completed"
ORDER_FAILED = "checkout.order.failed"


# =============================================================================
# Handler Registry
# =============================================================================


# Maps event type strings to handler functions
WEBHOOK_HANDLERS: dict[str, Callable[[WebhookEvent], ServiceResult]] = {}


def register_handler(event_type: str) -> Callable:
    """
    Decorator to register a webhook event handler.

    Args:
        event_type: The gateway event type (e.g., "checkout.order.completed")

    Returns:
        Decorator function that registers the handler
    """

    def decorator(func: Callable[[WebhookEvent], ServiceResult]) -> Callable:
        WEBHOOK_HANDLERS[event_type] = func
        logger.debug(f"Registered webhook handler for {event_type}")
        return func

    return decorator


def dispatch_webhook(webhook_event: WebhookEvent) -> ServiceResult:
    """
    Dispatch a webhook event to the appropriate handler.

    Unknown event types are acknowledged as success so the gateway stops
    redelivering them.

    Returns:
        ServiceResult from the handler, or success if no handler
    """
    handler = WEBHOOK_HANDLERS.get(webhook_event.event_type)

    if not handler:
        logger.info(
            f"No handler registered for event type: {webhook_event.event_type}",
            extra={"event_key": webhook_event.event_key},
        )
        return ServiceResult.success(None)

    logger.info(
        f"Dispatching {webhook_event.event_type} to handler",
        extra={"event_key": webhook_event.event_key},
    )

    return handler(webhook_event)


# =============================================================================
# Order Handlers
# =============================================================================


@register_handler(ORDER_COMPLETED)
@register_handler(ORDER_FAILED)
def handle_order_callback(webhook_event: WebhookEvent) -> ServiceResult[ReconciliationOutcome]:
    """
    Reconcile the transaction a checkout callback refers to.

    A callback for an unknown merchant reference is a failure (retried by
    the task) since it may arrive before the order-creation commit.
    """
    merchant_reference = webhook_event.merchant_reference
    if not merchant_reference:
        logger.error(
            "Callback without merchantOrderId",
            extra={"event_key": webhook_event.event_key},
        )
        return ServiceResult.failure(
            "Could not extract merchantOrderId from callback",
            error_code="INVALID_WEBHOOK_PAYLOAD",
        )

    pushed_payload = webhook_event.get_order_payload() or webhook_event.payload

    try:
        outcome = ReconciliationEngine.reconcile(
            merchant_reference,
            pushed_payload=pushed_payload,
        )
    except PaymentNotFoundError as e:
        return ReconciliationEngine.handle_exception(
            e,
            context=f"Callback for unknown transaction {merchant_reference}",
            log_level=logging.WARNING,
        )

    logger.info(
        "Callback reconciled",
        extra={
            "event_key": webhook_event.event_key,
            "transaction_id": str(outcome.transaction_id),
            "status": outcome.status,
            "already_final": outcome.already_final,
        },
    )
    return ServiceResult.success(outcome)
