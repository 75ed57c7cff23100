"""
Celery configuration for the payment orchestration service.

Celery runs:
- Gateway callback processing (queued by the webhook view)
- Periodic reconciliation of transactions without a final status
- Periodic retry of failed callback events

The beat schedule lives in settings.CELERY_BEAT_SCHEDULE. Tasks are
auto-discovered from all installed Django apps.

Usage:
    celery -A config worker -l info
    celery -A config beat -l info

For more information, see:
https://docs.celeryq.dev/en/stable/django/first-steps-with-django.html
"""

import os

from celery import Celery

# Set the default Django settings module for the Celery worker
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

app = Celery("config")

# All Celery settings are prefixed with CELERY_ in settings.py
app.config_from_object("django.conf:settings", namespace="CELERY")

# Celery will look for a tasks.py module in each installed app
app.autodiscover_tasks()
