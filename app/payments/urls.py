"""
URL configuration for the payments app.

Routes:
    - POST /orders/ - Create a gateway order for an invoice
    - POST /verify/ - Verify a payment with the gateway
    - POST /process/ - Apply the client SDK result
    - GET /auth-token/ - Current gateway token (staff only)
    - POST /webhooks/phonepe/ - PhonePe callback endpoint

All routes are prefixed with /api/v1/payments/ when included in the main URLconf.
"""

from django.urls import path

from payments.views import (
    AuthTokenView,
    CreateOrderView,
    ProcessPaymentView,
    VerifyPaymentView,
)
from payments.webhooks.views import phonepe_webhook

app_name = "payments"

urlpatterns = [
    path("orders/", CreateOrderView.as_view(), name="create_order"),
    path("verify/", VerifyPaymentView.as_view(), name="verify_payment"),
    path("process/", ProcessPaymentView.as_view(), name="process_payment"),
    path("auth-token/", AuthTokenView.as_view(), name="auth_token"),
    # Webhook endpoints
    path("webhooks/phonepe/", phonepe_webhook, name="phonepe_webhook"),
]
