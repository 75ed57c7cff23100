"""
DRF serializers for payments app.

This module provides serializers for:
- Order creation, verification and processing requests
- Camel-cased responses for the mobile client

Response serializers read the service dataclasses directly
(OrderCreation, ReconciliationOutcome, TokenResult).

Related files:
    - services/: OrderOrchestrator, ReconciliationEngine, TokenCache
    - views.py: Payment API views

Usage:
    serializer = CreateOrderRequestSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    data = OrderCreationSerializer(creation).data
"""

from __future__ import annotations

from decimal import Decimal

from django.utils import timezone
from rest_framework import serializers


# =============================================================================
# Request Serializers
# =============================================================================


class CreateOrderRequestSerializer(serializers.Serializer):
    """
    Input for POST /api/v1/payments/orders/.

    Fields:
        invoice_id: Invoice to pay
        amount: Expected amount in major units; must equal the invoice amount
        mock_mode: Complete locally without the gateway (when enabled)
    """

    invoice_id = serializers.UUIDField()
    amount = serializers.DecimalField(
        max_digits=12,
        decimal_places=2,
        min_value=Decimal("0.01"),
    )
    mock_mode = serializers.BooleanField(required=False, default=False)


class VerifyPaymentRequestSerializer(serializers.Serializer):
    """Input for POST /api/v1/payments/verify/."""

    order_id = serializers.CharField(
        max_length=255,
        help_text="Gateway order id or merchant reference",
    )


class ProcessPaymentRequestSerializer(serializers.Serializer):
    """
    Input for POST /api/v1/payments/process/.

    Fields:
        merchant_reference: Merchant order id of the payment attempt
        gateway_response_payload: Result object returned to the client SDK
    """

    merchant_reference = serializers.CharField(max_length=64)
    gateway_response_payload = serializers.DictField()


# =============================================================================
# Response Serializers
# =============================================================================


class OrderCreationSerializer(serializers.Serializer):
    """Response for a created order (reads an OrderCreation)."""

    success = serializers.SerializerMethodField()
    orderId = serializers.CharField(source="gateway_order_id")
    orderToken = serializers.CharField(source="gateway_token")
    transactionId = serializers.UUIDField(source="transaction_id")
    merchantOrderId = serializers.CharField(source="merchant_reference")
    status = serializers.CharField()
    amount = serializers.DecimalField(max_digits=12, decimal_places=2)
    fee = serializers.DecimalField(max_digits=12, decimal_places=2)
    rewards = serializers.DecimalField(max_digits=12, decimal_places=2)

    def get_success(self, obj) -> bool:
        return True


class VerifyPaymentResponseSerializer(serializers.Serializer):
    """Response for payment verification (reads a ReconciliationOutcome)."""

    success = serializers.SerializerMethodField()
    verified = serializers.BooleanField()
    transactionId = serializers.UUIDField(source="transaction_id")
    status = serializers.CharField()
    gatewayStatus = serializers.CharField(source="gateway_status", allow_null=True)
    orderId = serializers.CharField(source="gateway_order_id", allow_null=True)
    amount = serializers.DecimalField(max_digits=12, decimal_places=2, allow_null=True)
    timestamp = serializers.SerializerMethodField()

    def get_success(self, obj) -> bool:
        return True

    def get_timestamp(self, obj) -> str:
        return timezone.now().isoformat()


class ProcessPaymentResponseSerializer(serializers.Serializer):
    """
    Response for client-reported payment results.

    success mirrors whether the payment went through.
    """

    success = serializers.BooleanField(source="verified")
    status = serializers.CharField()
    transactionId = serializers.UUIDField(source="transaction_id")


class AuthTokenResponseSerializer(serializers.Serializer):
    """Response for the internal token endpoint (reads a TokenResult)."""

    success = serializers.SerializerMethodField()
    token = serializers.CharField()
    source = serializers.CharField()
    expiresAt = serializers.DateTimeField(source="expires_at", allow_null=True)

    def get_success(self, obj) -> bool:
        return True


class ErrorEnvelopeSerializer(serializers.Serializer):
    """Error envelope rendered by core.exception_handler (schema only)."""

    success = serializers.BooleanField(default=False)
    error = serializers.CharField()
    timestamp = serializers.DateTimeField()
