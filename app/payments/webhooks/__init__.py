"""
Webhook handling for PhonePe callbacks.

Callbacks are authenticated, stored idempotently and processed
asynchronously via Celery tasks.

Usage:
    # In urls.py
    from payments.webhooks.views import phonepe_webhook

    urlpatterns = [
        path("webhooks/phonepe/", phonepe_webhook, name="phonepe_webhook"),
    ]
"""

from payments.webhooks.handlers import dispatch_webhook, register_handler
from payments.webhooks.views import phonepe_webhook

__all__ = [
    "dispatch_webhook",
    "phonepe_webhook",
    "register_handler",
]
