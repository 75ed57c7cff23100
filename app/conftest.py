"""
Project-wide pytest configuration.

This module adjusts settings for the test run and auto-marks tests.
App-specific fixtures are defined in each app's tests/conftest.py.

Tests run against the database from settings; with the default
DATABASE_URL that is sqlite, which pytest-django creates in memory.
"""

import pytest


def pytest_configure():
    """Adjust Django settings for the test run."""
    from django.conf import settings

    # Disable throttling during tests to prevent rate limit failures
    settings.REST_FRAMEWORK["DEFAULT_THROTTLE_CLASSES"] = []
    settings.REST_FRAMEWORK["DEFAULT_THROTTLE_RATES"] = {}

    # Use fast password hasher for tests (PBKDF2 is too slow with 870K iterations)
    settings.PASSWORD_HASHERS = [
        "django.contrib.auth.hashers.MD5PasswordHasher",
    ]


def pytest_collection_modifyitems(items):
    """
    Auto-mark tests based on filename patterns.

    Mapping:
    - test_integration.py → e2e (full payment journeys)
    - test_views.py, test_tasks.py, test_handlers.py, service tests → integration
    - test_models.py, test_status_mapping.py, test_utils.py, etc. → unit
    - Unmatched files → integration (safe default for Django)

    Explicit markers on test functions/classes take precedence.
    """
    e2e_patterns = ["test_integration.py"]

    integration_patterns = [
        "test_views.py",
        "test_tasks.py",
        "test_handlers.py",
        "test_ledger.py",
        "test_orchestrator.py",
        "test_reconciliation_engine.py",
        "test_token_cache.py",
        "test_exception_handler.py",
    ]

    unit_patterns = [
        "test_models.py",
        "test_serializers.py",
        "test_phonepe_adapter.py",
        "test_state_transitions.py",
        "test_status_mapping.py",
        "test_utils.py",
        "test_exceptions.py",
        "test_services.py",
    ]

    for item in items:
        # Skip if test already has unit/integration/e2e marker
        existing_markers = {m.name for m in item.iter_markers()}
        if existing_markers & {"unit", "integration", "e2e"}:
            continue

        filename = item.path.name

        if any(pattern in filename for pattern in e2e_patterns):
            item.add_marker(pytest.mark.e2e)
        elif any(pattern in filename for pattern in integration_patterns):
            item.add_marker(pytest.mark.integration)
        elif any(pattern in filename for pattern in unit_patterns):
            item.add_marker(pytest.mark.unit)
        else:
            # Default: integration (safe for Django where most tests hit DB)
            item.add_marker(pytest.mark.integration)
