"""
DRF views for payments app.

This module provides API views for:
- Order creation for an invoice
- Payment verification against the gateway
- Client-reported payment results
- Internal gateway token access

Related files:
    - services/: OrderOrchestrator, ReconciliationEngine, TokenCache
    - serializers.py: Request/response serializers
    - webhooks/views.py: Gateway callback endpoint
    - urls.py: URL routing

Endpoints:
    POST /api/v1/payments/orders/ - Create a gateway order for an invoice
    POST /api/v1/payments/verify/ - Verify a payment with the gateway
    POST /api/v1/payments/process/ - Apply the client SDK result
    GET /api/v1/payments/auth-token/ - Current gateway token (staff only)
    POST /api/v1/payments/webhooks/phonepe/ - Gateway callback endpoint

Security:
    - All endpoints require authentication except the callback
    - Callback verifies the SHA-256 Authorization header

Errors raised by the services are rendered by
core.exception_handler.api_exception_handler.
"""

from __future__ import annotations

import logging

from drf_spectacular.utils import OpenApiResponse, extend_schema
from rest_framework import status
from rest_framework.permissions import IsAdminUser, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from payments.serializers import (
    AuthTokenResponseSerializer,
    CreateOrderRequestSerializer,
    ErrorEnvelopeSerializer,
    OrderCreationSerializer,
    ProcessPaymentRequestSerializer,
    ProcessPaymentResponseSerializer,
    VerifyPaymentRequestSerializer,
    VerifyPaymentResponseSerializer,
)
from payments.services import (
    CreateOrderParams,
    OrderOrchestrator,
    ReconciliationEngine,
    TokenCache,
)

logger = logging.getLogger(__name__)


class CreateOrderView(APIView):
    """
    Create a gateway order for a pending invoice.

    POST /api/v1/payments/orders/

    Request body:
        {
            "invoice_id": "0f8fad5b-d9cb-469f-a165-70867728950e",
            "amount": "100.00"
        }

    Returns:
        201 with orderId/orderToken for the client SDK
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="create_payment_order",
        summary="Create payment order",
        description=(
            "Validate the invoice (owner, pending, amount), create a checkout order "
            "at the gateway and record an initiated transaction. Fee and rewards are "
            "computed from the invoice amount and frozen on the transaction."
        ),
        request=CreateOrderRequestSerializer,
        responses={
            201: OpenApiResponse(
                response=OrderCreationSerializer,
                description="Order created",
            ),
            400: OpenApiResponse(
                response=ErrorEnvelopeSerializer,
                description="Invalid input, amount mismatch or invoice not pending",
            ),
            404: OpenApiResponse(response=ErrorEnvelopeSerializer, description="Invoice not found"),
            502: OpenApiResponse(response=ErrorEnvelopeSerializer, description="Gateway request failed"),
            503: OpenApiResponse(response=ErrorEnvelopeSerializer, description="Gateway auth unavailable"),
        },
        tags=["Payments - Orders"],
    )
    def post(self, request):
        """Create an order."""
        serializer = CreateOrderRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        creation = OrderOrchestrator.create_order(
            CreateOrderParams(
                invoice_id=data["invoice_id"],
                amount=data["amount"],
                owner=request.user,
                mock_mode=data["mock_mode"],
            )
        )

        return Response(
            OrderCreationSerializer(creation).data,
            status=status.HTTP_201_CREATED,
        )


class VerifyPaymentView(APIView):
    """
    Verify a payment with the gateway.

    POST /api/v1/payments/verify/

    Request body:
        {"order_id": "OMO2403..."}

    Returns:
        {"success": true, "verified": true, "status": "success", ...}
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="verify_payment",
        summary="Verify payment",
        description=(
            "Reconcile the caller's transaction with the gateway's order status. "
            "Safe to call repeatedly; a final transaction returns its stored outcome."
        ),
        request=VerifyPaymentRequestSerializer,
        responses={
            200: OpenApiResponse(
                response=VerifyPaymentResponseSerializer,
                description="Current payment outcome",
            ),
            404: OpenApiResponse(response=ErrorEnvelopeSerializer, description="Transaction not found"),
            502: OpenApiResponse(response=ErrorEnvelopeSerializer, description="Gateway request failed"),
        },
        tags=["Payments - Verification"],
    )
    def post(self, request):
        """Verify a payment."""
        serializer = VerifyPaymentRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        outcome = ReconciliationEngine.reconcile_owned(
            serializer.validated_data["order_id"],
            request.user,
        )

        return Response(VerifyPaymentResponseSerializer(outcome).data)


class ProcessPaymentView(APIView):
    """
    Apply the payment result reported by the client SDK.

    POST /api/v1/payments/process/

    Request body:
        {
            "merchant_reference": "INV_1700000000000_ab12cd34e",
            "gateway_response_payload": {"code": "PAYMENT_SUCCESS", ...}
        }

    Duplicate submissions return the stored outcome.
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        operation_id="process_payment",
        summary="Process payment result",
        description=(
            "Reconcile the caller's transaction using the result payload the "
            "client received from the gateway SDK."
        ),
        request=ProcessPaymentRequestSerializer,
        responses={
            200: OpenApiResponse(
                response=ProcessPaymentResponseSerializer,
                description="Payment outcome",
            ),
            404: OpenApiResponse(response=ErrorEnvelopeSerializer, description="Transaction not found"),
        },
        tags=["Payments - Verification"],
    )
    def post(self, request):
        """Process a client-reported result."""
        serializer = ProcessPaymentRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        outcome = ReconciliationEngine.reconcile_owned(
            data["merchant_reference"],
            request.user,
            pushed_payload=data["gateway_response_payload"],
        )

        return Response(ProcessPaymentResponseSerializer(outcome).data)


class AuthTokenView(APIView):
    """
    Return the current gateway token.

    GET /api/v1/payments/auth-token/

    Internal endpoint for service-to-service use; staff only.
    """

    permission_classes = [IsAdminUser]

    @extend_schema(
        operation_id="get_gateway_auth_token",
        summary="Get gateway token",
        description="Return a gateway token valid beyond the refresh margin, refreshing it if needed.",
        responses={
            200: OpenApiResponse(response=AuthTokenResponseSerializer, description="Gateway token"),
            503: OpenApiResponse(response=ErrorEnvelopeSerializer, description="Gateway auth unavailable"),
        },
        tags=["Payments - Internal"],
    )
    def get(self, request):
        """Get the gateway token."""
        result = TokenCache.get_token()
        logger.info(
            "Gateway token served",
            extra={"user_id": request.user.pk, "source": result.source},
        )
        return Response(AuthTokenResponseSerializer(result).data)
