"""
Tests for payments app.

This package contains test modules for:
- test_models.py: Invoice, Transaction, GatewayAuthToken, WebhookEvent model tests
- test_state_transitions.py: django-fsm transition tests
- test_status_mapping.py: Gateway status normalisation and mapping
- test_utils.py: Money and reference helpers
- test_views.py: API endpoint tests
- test_integration.py: Full payment journeys across the API

Service, adapter and webhook tests live beside their packages.

Usage:
    pytest payments/tests/
    pytest payments/tests/test_views.py
"""
