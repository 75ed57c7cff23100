"""
Tests for the API exception handler.

Tests cover:
- Envelope shape for application and DRF exceptions
- HTTP status mapping
- Debug-only fields
- Unhandled exceptions
"""

import pytest
from django.http import Http404
from rest_framework import exceptions as drf_exceptions

from core.exception_handler import GENERIC_ERROR_MESSAGE, api_exception_handler
from core.exceptions import ConflictError, ExternalServiceError, NotFoundError, ValidationError


@pytest.fixture
def context():
    return {"view": None, "request": None}


def assert_envelope(response, status_code: int, message: str | None = None):
    assert response.status_code == status_code
    assert response.data["success"] is False
    assert "timestamp" in response.data
    if message is not None:
        assert response.data["error"] == message


class TestApplicationErrors:
    @pytest.mark.parametrize(
        "exc, status_code",
        [
            (ValidationError("Amount must be positive"), 400),
            (NotFoundError("Invoice not found"), 404),
            (ConflictError("Transaction already success"), 409),
            (ExternalServiceError("Gateway returned status 500"), 502),
        ],
    )
    def test_status_and_message(self, context, exc, status_code):
        response = api_exception_handler(exc, context)

        assert_envelope(response, status_code, exc.message)

    def test_error_code_hidden_without_debug(self, context, settings):
        settings.DEBUG = False

        response = api_exception_handler(
            ValidationError("Amount mismatch", details={"expected": "100.00"}), context
        )

        assert "error_code" not in response.data
        assert "details" not in response.data

    def test_error_code_and_details_in_debug(self, context, settings):
        settings.DEBUG = True

        response = api_exception_handler(
            ValidationError("Amount mismatch", error_code="AMOUNT_MISMATCH", details={"expected": "100.00"}),
            context,
        )

        assert response.data["error_code"] == "AMOUNT_MISMATCH"
        assert response.data["details"] == {"expected": "100.00"}


class TestFrameworkErrors:
    def test_serializer_errors_are_flattened(self, context):
        exc = drf_exceptions.ValidationError({"amount": ["A valid number is required."]})

        response = api_exception_handler(exc, context)

        assert_envelope(response, 400, "amount: A valid number is required.")

    def test_not_authenticated(self, context):
        response = api_exception_handler(drf_exceptions.NotAuthenticated(), context)

        assert_envelope(response, 401)

    def test_permission_denied(self, context):
        response = api_exception_handler(drf_exceptions.PermissionDenied(), context)

        assert_envelope(response, 403)

    def test_django_404(self, context):
        response = api_exception_handler(Http404(), context)

        assert_envelope(response, 404)


class TestUnhandledErrors:
    def test_generic_message_without_debug(self, context, settings):
        settings.DEBUG = False

        response = api_exception_handler(RuntimeError("connection string leaked"), context)

        assert_envelope(response, 500, GENERIC_ERROR_MESSAGE)

    def test_message_in_debug(self, context, settings):
        settings.DEBUG = True

        response = api_exception_handler(RuntimeError("boom"), context)

        assert_envelope(response, 500, "boom")
        assert response.data["error_code"] == "RUNTIMEERROR"

    def test_is_logged(self, context, caplog):
        api_exception_handler(KeyError("missing"), context)

        assert "Unhandled exception in API view" in caplog.text
