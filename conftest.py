"""
Root pytest configuration for the Django project.

This module makes sure Django settings are configured before any tests run.
Project-wide hooks live in app/conftest.py; app-specific fixtures are
defined in each app's tests/conftest.py.
"""

import os

import django

# Ensure Django settings are configured before any tests run
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")


def pytest_configure():
    """Configure Django settings before tests run."""
    django.setup()
