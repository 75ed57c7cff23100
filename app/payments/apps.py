"""
Payments app configuration.

This app provides the payment orchestration core:
- Invoice and Transaction ledger with FSM-managed status
- PhonePe checkout orders and OAuth token caching
- Reconciliation of gateway status (callbacks, client reports, polling)
"""

from django.apps import AppConfig


class PaymentsConfig(AppConfig):
    """Configuration for the payments application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "payments"
    verbose_name = "Payments"
