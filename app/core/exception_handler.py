"""
DRF exception handler rendering the uniform failure envelope.

Every failed API call returns:

    {"success": false, "error": "<message>", "timestamp": "<ISO-8601>"}

The HTTP status comes from the exception: BaseApplicationError subclasses
carry ``http_status``; DRF's own APIExceptions keep their status code.
error_code and details are only exposed when DEBUG is on.

Configured in settings:
    REST_FRAMEWORK = {
        "EXCEPTION_HANDLER": "core.exception_handler.api_exception_handler",
    }
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from django.conf import settings
from django.utils import timezone
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler

from core.exceptions import BaseApplicationError

if TYPE_CHECKING:
    from typing import Any

logger = logging.getLogger(__name__)

GENERIC_ERROR_MESSAGE = "An unexpected error occurred"


def error_envelope(
    message: str,
    error_code: str | None = None,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Build the failure envelope body."""
    body: dict[str, Any] = {
        "success": False,
        "error": message,
        "timestamp": timezone.now().isoformat(),
    }
    if settings.DEBUG:
        if error_code:
            body["error_code"] = error_code
        if details:
            body["details"] = details
    return body


def _drf_message(data: Any) -> str:
    """Flatten a DRF error payload into one message string."""
    if isinstance(data, dict):
        if "detail" in data:
            return str(data["detail"])
        parts = []
        for field_name, errors in data.items():
            if isinstance(errors, (list, tuple)):
                errors = " ".join(str(e) for e in errors)
            parts.append(f"{field_name}: {errors}")
        return "; ".join(parts)
    if isinstance(data, (list, tuple)):
        return " ".join(str(e) for e in data)
    return str(data)


def api_exception_handler(exc: Exception, context: dict) -> Response:
    """
    Convert any exception raised by an API view into the failure envelope.

    Args:
        exc: The raised exception
        context: DRF handler context (view, request, ...)

    Returns:
        Response with the envelope and the mapped HTTP status
    """
    view_name = context.get("view").__class__.__name__ if context.get("view") else None

    if isinstance(exc, BaseApplicationError):
        log_level = logging.WARNING if exc.http_status < 500 else logging.ERROR
        logger.log(
            log_level,
            f"API request failed: {exc}",
            extra={"view": view_name, "error_code": exc.error_code},
        )
        return Response(
            error_envelope(exc.message, exc.error_code, exc.details),
            status=exc.http_status,
        )

    response = exception_handler(exc, context)
    if response is not None:
        response.data = error_envelope(
            _drf_message(response.data),
            error_code=getattr(exc, "default_code", None),
        )
        return response

    logger.exception(
        "Unhandled exception in API view",
        extra={"view": view_name},
    )
    message = str(exc) if settings.DEBUG else GENERIC_ERROR_MESSAGE
    return Response(
        error_envelope(message, exc.__class__.__name__.upper()),
        status=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
