"""
Tests for core service patterns and application exceptions.
"""

import logging

import pytest

from core.exceptions import BaseApplicationError, ExternalServiceError, ValidationError
from core.services import BaseService, ServiceResult


class SampleService(BaseService):
    pass


class TestServiceResult:
    def test_success(self):
        result = ServiceResult.success({"id": 1})

        assert result.success is True
        assert result.data == {"id": 1}
        assert result.error is None
        assert bool(result) is True

    def test_failure(self):
        result = ServiceResult.failure("Transaction not found", "TRANSACTION_NOT_FOUND")

        assert bool(result) is False
        assert result.data is None
        assert result.error_code == "TRANSACTION_NOT_FOUND"

    def test_from_application_error_keeps_code(self):
        result = ServiceResult.from_exception(ValidationError("Bad amount", error_code="AMOUNT_MISMATCH"))

        assert result.error == "Bad amount"
        assert result.error_code == "AMOUNT_MISMATCH"

    def test_from_plain_exception(self):
        result = ServiceResult.from_exception(KeyError("merchantOrderId"))

        assert result.error_code == "KEYERROR"


class TestBaseService:
    def test_logger_name(self):
        assert SampleService.get_logger().name.endswith("SampleService")

    def test_handle_exception_logs_and_wraps(self, caplog):
        with caplog.at_level(logging.ERROR):
            result = SampleService.handle_exception(RuntimeError("boom"), context="Dispatch failed")

        assert result.success is False
        assert "Dispatch failed: boom" in caplog.text

    @pytest.mark.django_db
    def test_atomic_rolls_back(self, django_user_model):
        with pytest.raises(RuntimeError):
            with SampleService.atomic():
                django_user_model.objects.create(username="rolled-back")
                raise RuntimeError("abort")

        assert not django_user_model.objects.filter(username="rolled-back").exists()


class TestApplicationErrors:
    def test_defaults(self):
        exc = BaseApplicationError("Something failed")

        assert exc.error_code == "APPLICATION_ERROR"
        assert exc.http_status == 500
        assert exc.details == {}
        assert str(exc) == "[APPLICATION_ERROR] Something failed"

    def test_to_dict(self):
        exc = ExternalServiceError("Gateway down", details={"upstream_status": 503})

        assert exc.to_dict() == {
            "error": "Gateway down",
            "error_code": exc.error_code,
            "details": {"upstream_status": 503},
        }
        assert exc.http_status == 502
