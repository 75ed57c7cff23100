"""
PhonePe PG Checkout v2 adapter.

This module provides the PhonePeAdapter class, which encapsulates all
calls to the gateway's HTTP API. Every gateway call goes through this
adapter so that timeouts, error translation and logging stay consistent.

Features:
- Configurable timeouts on all API calls
- Translation of HTTP/transport failures to domain exceptions
- Structured logging with timing metrics
- No internal retries; retry policy belongs to callers

Configuration (via settings):
- PHONEPE_CLIENT_ID / PHONEPE_CLIENT_SECRET / PHONEPE_CLIENT_VERSION: OAuth credentials
- PHONEPE_ENVIRONMENT: "PRODUCTION" or anything else for the pre-production host
- PHONEPE_API_TIMEOUT_SECONDS: API call timeout (default: 10)
- PHONEPE_WEBHOOK_USERNAME / PHONEPE_WEBHOOK_PASSWORD: callback credentials

Usage:
    from payments.adapters import CreateOrderParams, PhonePeAdapter

    token = PhonePeAdapter.fetch_access_token()
    order = PhonePeAdapter.create_order(
        CreateOrderParams(
            merchant_order_id="INV_1700000000000_ab12cd34e",
            amount_minor=10000,
            merchant_user_id="USER_0f8fad5bd9cb469f",
            callback_url="https://example.com/api/v1/payments/webhooks/phonepe/",
        ),
        token.access_token,
    )
    status = PhonePeAdapter.fetch_order_status(order.gateway_order_id, token.access_token)
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from datetime import timezone as dt_timezone
from typing import TYPE_CHECKING

import requests
from django.conf import settings
from django.utils import timezone

from payments.exceptions import (
    AuthUnavailableError,
    GatewayError,
    GatewayRequestFailedError,
)
from payments.state_machines import extract_gateway_status

if TYPE_CHECKING:
    from typing import Any


PRODUCTION_BASE_URL = "https://api.phonepe.com"
PREPROD_BASE_URL = "https://api-preprod.phonepe.com"
API_PREFIX = "/apis/pg-sandbox"

DEFAULT_TOKEN_LIFETIME_SECONDS = 3600


# =============================================================================
# Data Types
# =============================================================================


@dataclass
class CreateOrderParams:
    """
    Parameters for creating a checkout order.

    Attributes:
        merchant_order_id: Merchant reference (idempotency key for the attempt)
        amount_minor: Amount in minor currency units (paise)
        merchant_user_id: Opaque user id shared with the gateway
        callback_url: Where the gateway posts server-to-server callbacks
        device_context: Device information forwarded to the gateway
    """

    merchant_order_id: str
    amount_minor: int
    merchant_user_id: str
    callback_url: str = ""
    device_context: dict[str, Any] = field(default_factory=lambda: {"deviceOS": "ANDROID"})

    def __post_init__(self) -> None:
        """Validate parameters after initialization."""
        if not self.merchant_order_id:
            raise ValueError("merchant_order_id is required")
        if self.amount_minor <= 0:
            raise ValueError("amount_minor must be positive")


@dataclass
class AccessTokenResult:
    """
    Result of an OAuth token request.

    Attributes:
        access_token: Token value
        token_type: Token type (default "Bearer")
        expires_at: Absolute expiry instant (aware datetime)
        raw_response: Full response body
    """

    access_token: str
    token_type: str
    expires_at: datetime
    raw_response: dict[str, Any] = field(default_factory=dict)


@dataclass
class OrderResult:
    """Result of order creation."""

    gateway_order_id: str
    gateway_token: str
    state: str | None = None
    raw_response: dict[str, Any] = field(default_factory=dict)


@dataclass
class OrderStatusResult:
    """
    Result of an order status read.

    Attributes:
        raw_status: Status string as reported (unmapped)
        raw_response: Full response body, kept for audit
    """

    raw_status: str | None
    raw_response: dict[str, Any] = field(default_factory=dict)


# =============================================================================
# Retry Logic Helpers
# =============================================================================


def is_retryable_gateway_error(error: Exception) -> bool:
    """
    Check if a gateway error is transient.

    Use this in Celery tasks to decide whether to retry a read-only call.
    Order creation must not be retried on this signal alone.
    """
    if isinstance(error, GatewayError):
        return getattr(error, "is_retryable", False)
    return False


# =============================================================================
# PhonePe Adapter
# =============================================================================


class PhonePeAdapter:
    """
    Adapter for PhonePe PG Checkout v2 API operations.

    All methods are classmethods - no instance state is maintained.
    Safe to use from web workers and Celery workers alike.
    """

    # =========================================================================
    # Configuration
    # =========================================================================

    @staticmethod
    def base_url() -> str:
        """Gateway host for the configured environment."""
        if getattr(settings, "PHONEPE_ENVIRONMENT", "SANDBOX") == "PRODUCTION":
            return PRODUCTION_BASE_URL
        return PREPROD_BASE_URL

    @classmethod
    def _url(cls, path: str) -> str:
        return f"{cls.base_url()}{API_PREFIX}{path}"

    @staticmethod
    def _timeout() -> float:
        return getattr(settings, "PHONEPE_API_TIMEOUT_SECONDS", 10)

    @classmethod
    def get_logger(cls) -> logging.Logger:
        """Get logger for this adapter."""
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    # =========================================================================
    # OAuth
    # =========================================================================

    @classmethod
    def fetch_access_token(cls) -> AccessTokenResult:
        """
        Request a new access token with the client-credentials grant.

        Returns:
            AccessTokenResult with the token and its absolute expiry

        Raises:
            AuthUnavailableError: Credentials missing, upstream non-2xx,
                transport failure, or a response without access_token
        """
        client_id = getattr(settings, "PHONEPE_CLIENT_ID", "")
        client_secret = getattr(settings, "PHONEPE_CLIENT_SECRET", "")
        if not client_id or not client_secret:
            raise AuthUnavailableError("PhonePe client credentials are not configured")

        logger = cls.get_logger()
        log_context = {"operation": "fetch_access_token", "client_id": client_id}

        start_time = time.time()
        logger.info("Starting PhonePe operation", extra=log_context)

        try:
            response = requests.post(
                cls._url("/v1/oauth/token"),
                data={
                    "client_id": client_id,
                    "client_version": getattr(settings, "PHONEPE_CLIENT_VERSION", "1"),
                    "client_secret": client_secret,
                    "grant_type": "client_credentials",
                },
                headers={"Content-Type": "application/x-www-form-urlencoded"},
                timeout=cls._timeout(),
            )
        except requests.RequestException as e:
            duration_ms = (time.time() - start_time) * 1000
            logger.error(
                "PhonePe token request failed",
                extra={**log_context, "duration_ms": duration_ms},
                exc_info=True,
            )
            raise AuthUnavailableError(f"Token request failed: {e}") from e

        duration_ms = (time.time() - start_time) * 1000
        if not response.ok:
            logger.error(
                "PhonePe token request rejected",
                extra={**log_context, "status_code": response.status_code, "duration_ms": duration_ms},
            )
            raise AuthUnavailableError(
                f"Token request failed with status {response.status_code}",
                status_code=response.status_code,
                body=response.text,
            )

        data = cls._json_body(response)
        access_token = data.get("access_token")
        if not access_token:
            raise AuthUnavailableError(
                "Token response did not include access_token",
                status_code=response.status_code,
                body=response.text,
            )

        logger.info(
            "PhonePe operation completed",
            extra={**log_context, "duration_ms": duration_ms},
        )
        return AccessTokenResult(
            access_token=access_token,
            token_type=data.get("token_type") or "Bearer",
            expires_at=cls._token_expiry(data),
            raw_response=data,
        )

    @staticmethod
    def _token_expiry(data: dict[str, Any]) -> datetime:
        """Absolute expiry from ``expires_at`` (epoch seconds) or ``expires_in``."""
        expires_at = data.get("expires_at")
        if isinstance(expires_at, (int, float)) and expires_at > 0:
            return datetime.fromtimestamp(expires_at, tz=dt_timezone.utc)
        expires_in = data.get("expires_in")
        if not isinstance(expires_in, (int, float)) or expires_in <= 0:
            expires_in = DEFAULT_TOKEN_LIFETIME_SECONDS
        return timezone.now() + timedelta(seconds=expires_in)

    # =========================================================================
    # Orders
    # =========================================================================

    @classmethod
    def create_order(cls, params: CreateOrderParams, token: str) -> OrderResult:
        """
        Create a checkout order for the mobile SDK.

        Args:
            params: Order parameters
            token: Access token from TokenCache

        Returns:
            OrderResult with the gateway order id and SDK token

        Raises:
            GatewayRequestFailedError: Non-2xx, transport failure, or a
                response missing orderId/token
        """
        logger = cls.get_logger()
        log_context = {
            "operation": "create_order",
            "merchant_order_id": params.merchant_order_id,
            "amount_minor": params.amount_minor,
        }

        body = {
            "merchantOrderId": params.merchant_order_id,
            "amount": params.amount_minor,
            "paymentFlow": {"type": "PG_CHECKOUT"},
            "merchantUserId": params.merchant_user_id,
            "callbackUrl": params.callback_url,
            "deviceContext": params.device_context,
        }

        data, status_code, text = cls._request(
            "POST", "/checkout/v2/sdk/order", token, log_context, json=body
        )

        order_id = data.get("orderId")
        order_token = data.get("token")
        if not order_id or not order_token:
            cls.get_logger().error(
                "PhonePe order response missing required fields",
                extra={**log_context, "keys": sorted(data.keys())},
            )
            raise GatewayRequestFailedError(
                "Order response missing orderId or token",
                status_code=status_code,
                body=text,
            )

        logger.info(
            "PhonePe order created",
            extra={**log_context, "gateway_order_id": order_id},
        )
        return OrderResult(
            gateway_order_id=order_id,
            gateway_token=order_token,
            state=data.get("state"),
            raw_response=data,
        )

    @classmethod
    def fetch_order_status(cls, gateway_order_id: str, token: str) -> OrderStatusResult:
        """
        Read the authoritative order status.

        Returns:
            OrderStatusResult with the raw status string and full body

        Raises:
            GatewayRequestFailedError: Non-2xx or transport failure
        """
        log_context = {"operation": "fetch_order_status", "gateway_order_id": gateway_order_id}
        data, _, _ = cls._request(
            "GET", f"/checkout/v2/order/{gateway_order_id}/status", token, log_context
        )
        return OrderStatusResult(raw_status=extract_gateway_status(data), raw_response=data)

    # =========================================================================
    # Callbacks
    # =========================================================================

    @staticmethod
    def expected_callback_authorization() -> str | None:
        """SHA-256 hex of ``username:password``, or None when not configured."""
        username = getattr(settings, "PHONEPE_WEBHOOK_USERNAME", "")
        password = getattr(settings, "PHONEPE_WEBHOOK_PASSWORD", "")
        if not username or not password:
            return None
        return hashlib.sha256(f"{username}:{password}".encode()).hexdigest()

    @classmethod
    def verify_callback_authorization(cls, header_value: str | None) -> bool:
        """
        Check the Authorization header of a gateway callback.

        The gateway sends SHA256(username:password) as a hex string,
        optionally prefixed with "SHA256 ".
        """
        expected = cls.expected_callback_authorization()
        if not expected or not header_value:
            return False
        received = header_value.strip()
        if received.upper().startswith("SHA256 "):
            received = received[7:].strip()
        return hmac.compare_digest(received.lower(), expected)

    # =========================================================================
    # Transport
    # =========================================================================

    @classmethod
    def _request(
        cls,
        method: str,
        path: str,
        token: str,
        log_context: dict[str, Any],
        json: dict[str, Any] | None = None,
    ) -> tuple[dict[str, Any], int, str]:
        """
        Perform an authenticated call and return (body, status_code, text).

        Raises:
            GatewayRequestFailedError: Non-2xx or transport failure
        """
        logger = cls.get_logger()
        start_time = time.time()
        logger.info("Starting PhonePe operation", extra=log_context)

        try:
            response = requests.request(
                method,
                cls._url(path),
                json=json,
                headers={
                    "Content-Type": "application/json",
                    "Authorization": f"O-Bearer {token}",
                },
                timeout=cls._timeout(),
            )
        except requests.Timeout as e:
            duration_ms = (time.time() - start_time) * 1000
            logger.error(
                "PhonePe request timed out",
                extra={**log_context, "duration_ms": duration_ms},
            )
            raise GatewayRequestFailedError(
                f"Gateway request timed out after {cls._timeout()}s"
            ) from e
        except requests.RequestException as e:
            duration_ms = (time.time() - start_time) * 1000
            logger.error(
                "Connection error to PhonePe",
                extra={**log_context, "duration_ms": duration_ms},
                exc_info=True,
            )
            raise GatewayRequestFailedError(f"Gateway request failed: {e}") from e

        duration_ms = (time.time() - start_time) * 1000
        if not response.ok:
            logger.error(
                "PhonePe request rejected",
                extra={
                    **log_context,
                    "status_code": response.status_code,
                    "duration_ms": duration_ms,
                },
            )
            raise GatewayRequestFailedError(
                f"Gateway returned status {response.status_code}",
                status_code=response.status_code,
                body=response.text,
            )

        logger.info(
            "PhonePe operation completed",
            extra={**log_context, "status_code": response.status_code, "duration_ms": duration_ms},
        )
        return cls._json_body(response), response.status_code, response.text

    @staticmethod
    def _json_body(response: requests.Response) -> dict[str, Any]:
        try:
            data = response.json()
        except ValueError:
            return {"raw": response.text}
        return data if isinstance(data, dict) else {"raw": data}
