"""
Celery tasks for payment processing.

This module provides async tasks for:
- Processing PhonePe callback events
- Retrying failed callback events
- Resetting callback events stuck in processing
- Polling the gateway for transactions still awaiting a final status

Usage:
    from payments.tasks import process_webhook_event

    # Queue a callback for async processing
    process_webhook_event.delay(str(webhook_event_id))

    # Reconcile stale initiated transactions (typically via celery-beat)
    from payments.tasks import reconcile_initiated_transactions
    reconcile_initiated_transactions.delay()
"""

from __future__ import annotations

import logging
from datetime import timedelta
from uuid import UUID

from celery import shared_task
from django.conf import settings
from django.db import transaction
from django.utils import timezone

from core.exceptions import BaseApplicationError

from payments.models import Transaction, WebhookEvent
from payments.models.webhook_event import MAX_WEBHOOK_RETRIES
from payments.state_machines import OPEN_TRANSACTION_STATUSES, WebhookEventStatus

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

STUCK_PROCESSING_THRESHOLD_MINUTES = 30
RETRY_BATCH_SIZE = 100


# =============================================================================
# Webhook Processing Tasks
# =============================================================================


@shared_task(
    bind=True,
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_backoff_max=300,
    retry_kwargs={"max_retries": MAX_WEBHOOK_RETRIES},
    acks_late=True,
)
def process_webhook_event(self, webhook_event_id: str) -> dict:
    """
    Process a PhonePe callback asynchronously.

    This task:
    1. Loads the WebhookEvent by ID
    2. Checks if already processed (idempotency)
    3. Marks as processing
    4. Dispatches to the handler (reconciliation)
    5. Marks as processed or failed

    Args:
        webhook_event_id: UUID of the WebhookEvent to process

    Returns:
        Dict with processing result status

    Raises:
        Exception: Re-raised to trigger Celery retry mechanism
    """
    from payments.webhooks.handlers import dispatch_webhook

    if isinstance(webhook_event_id, str):
        webhook_event_id = UUID(webhook_event_id)

    logger.info(
        "Processing webhook event",
        extra={"webhook_event_id": str(webhook_event_id)},
    )

    try:
        webhook_event = WebhookEvent.objects.get(id=webhook_event_id)
    except WebhookEvent.DoesNotExist:
        logger.error(
            "WebhookEvent not found",
            extra={"webhook_event_id": str(webhook_event_id)},
        )
        return {"status": "not_found", "webhook_event_id": str(webhook_event_id)}

    if webhook_event.is_processed:
        logger.info(
            "WebhookEvent already processed, skipping",
            extra={
                "webhook_event_id": str(webhook_event_id),
                "event_key": webhook_event.event_key,
            },
        )
        return {
            "status": "already_processed",
            "webhook_event_id": str(webhook_event_id),
        }

    webhook_event.mark_processing()
    webhook_event.save()

    logger.info(
        f"Dispatching webhook: {webhook_event.event_type}",
        extra={
            "webhook_event_id": str(webhook_event_id),
            "event_key": webhook_event.event_key,
            "retry_count": webhook_event.retry_count,
        },
    )

    try:
        with transaction.atomic():
            result = dispatch_webhook(webhook_event)

        if result.success:
            webhook_event.mark_processed()
            webhook_event.save()
            logger.info(
                "Webhook processed successfully",
                extra={
                    "webhook_event_id": str(webhook_event_id),
                    "event_key": webhook_event.event_key,
                },
            )
            return {
                "status": "processed",
                "webhook_event_id": str(webhook_event_id),
                "event_key": webhook_event.event_key,
            }

        error_msg = result.error or "Handler returned failure"
        webhook_event.mark_failed(error_msg)
        webhook_event.save()
        logger.warning(
            f"Webhook handler failed: {error_msg}",
            extra={
                "webhook_event_id": str(webhook_event_id),
                "event_key": webhook_event.event_key,
                "error_code": result.error_code,
            },
        )
        return {
            "status": "handler_failed",
            "webhook_event_id": str(webhook_event_id),
            "error": error_msg,
        }

    except Exception as e:
        error_msg = f"{type(e).__name__}: {str(e)}"
        webhook_event.mark_failed(error_msg)
        webhook_event.save()

        logger.exception(
            "Webhook processing failed with exception",
            extra={
                "webhook_event_id": str(webhook_event_id),
                "event_key": webhook_event.event_key,
            },
        )
        raise


@shared_task
def retry_failed_webhooks() -> dict:
    """
    Periodic task to retry failed callback events.

    Finds failed events that haven't exceeded max retries and re-queues
    them for processing. Scheduled via CELERY_BEAT_SCHEDULE.

    Returns:
        Dict with count of webhooks queued for retry
    """
    failed_webhooks = WebhookEvent.objects.filter(
        status=WebhookEventStatus.FAILED,
        retry_count__lt=MAX_WEBHOOK_RETRIES,
    ).order_by("created_at")[:RETRY_BATCH_SIZE]

    queued_count = 0
    for webhook in failed_webhooks:
        try:
            process_webhook_event.delay(str(webhook.id))
            queued_count += 1
            logger.info(
                "Queued failed webhook for retry",
                extra={
                    "webhook_event_id": str(webhook.id),
                    "event_key": webhook.event_key,
                    "retry_count": webhook.retry_count,
                },
            )
        except Exception as e:
            logger.error(
                f"Failed to queue webhook for retry: {e}",
                extra={"webhook_event_id": str(webhook.id)},
            )

    logger.info(
        f"Queued {queued_count} failed webhooks for retry",
        extra={"queued_count": queued_count},
    )

    return {"queued_count": queued_count}


@shared_task
def cleanup_stuck_webhooks() -> dict:
    """
    Periodic task to reset callback events stuck in processing.

    A worker that crashed mid-processing leaves its event in PROCESSING;
    resetting it to FAILED makes it eligible for retry_failed_webhooks.

    Returns:
        Dict with count of webhooks reset
    """
    threshold = timezone.now() - timedelta(minutes=STUCK_PROCESSING_THRESHOLD_MINUTES)

    stuck_webhooks = WebhookEvent.objects.filter(
        status=WebhookEventStatus.PROCESSING,
        updated_at__lt=threshold,
    )

    reset_count = 0
    for webhook in stuck_webhooks:
        webhook.mark_failed("Processing timed out - reset for retry")
        webhook.save()
        reset_count += 1
        logger.warning(
            "Reset stuck webhook",
            extra={
                "webhook_event_id": str(webhook.id),
                "event_key": webhook.event_key,
                "stuck_since": webhook.updated_at.isoformat(),
            },
        )

    if reset_count > 0:
        logger.info(
            f"Reset {reset_count} stuck webhooks",
            extra={"reset_count": reset_count},
        )

    return {"reset_count": reset_count}


# =============================================================================
# Reconciliation Tasks
# =============================================================================


@shared_task
def reconcile_initiated_transactions() -> dict:
    """
    Periodic task to poll the gateway for transactions without a final status.

    Picks open transactions that have a gateway order and are older than
    PAYMENTS_RECONCILE_GRACE_MINUTES, oldest first, at most
    PAYMENTS_RECONCILE_BATCH_SIZE per run. A failure on one row is logged
    and does not stop the batch; transient gateway errors are logged as
    warnings and permanent ones as errors.

    Returns:
        Dict with counts of checked, finalized and errored transactions
    """
    from payments.adapters import is_retryable_gateway_error
    from payments.services import ReconciliationEngine

    grace = timedelta(minutes=getattr(settings, "PAYMENTS_RECONCILE_GRACE_MINUTES", 15))
    batch_size = getattr(settings, "PAYMENTS_RECONCILE_BATCH_SIZE", 50)
    cutoff = timezone.now() - grace

    candidates = (
        Transaction.objects.filter(
            status__in=OPEN_TRANSACTION_STATUSES,
            gateway_order_id__isnull=False,
            created_at__lt=cutoff,
        )
        .order_by("created_at")
        .values_list("gateway_order_id", flat=True)[:batch_size]
    )

    checked = finalized = errors = 0
    for gateway_order_id in list(candidates):
        checked += 1
        try:
            outcome = ReconciliationEngine.reconcile(gateway_order_id)
        except BaseApplicationError as e:
            errors += 1
            # Transient gateway failures are picked up again by the next run
            retryable = is_retryable_gateway_error(e)
            logger.log(
                logging.WARNING if retryable else logging.ERROR,
                f"Reconciliation failed: {e}",
                extra={
                    "gateway_order_id": gateway_order_id,
                    "error_code": e.error_code,
                    "retryable": retryable,
                },
            )
            continue

        if outcome.status not in OPEN_TRANSACTION_STATUSES:
            finalized += 1

    logger.info(
        f"Reconciled {checked} open transactions",
        extra={"checked": checked, "finalized": finalized, "errors": errors},
    )

    return {"checked": checked, "finalized": finalized, "errors": errors}
