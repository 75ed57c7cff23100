"""
GatewayAuthToken model: the cached OAuth credential for the payment gateway.

At most one row is active at any instant. The invariant is enforced by a
partial unique constraint, and TokenCache keeps it by deactivating all
active rows before inserting a new one inside a single transaction.
"""

from __future__ import annotations

from datetime import timedelta

from django.db import models
from django.utils import timezone

from core.models import BaseModel


class GatewayAuthTokenQuerySet(models.QuerySet):
    """QuerySet helpers for looking up usable gateway credentials."""

    def active(self) -> GatewayAuthTokenQuerySet:
        return self.filter(is_active=True)

    def usable(self, margin: timedelta) -> GatewayAuthTokenQuerySet:
        """
        Active tokens that stay valid for at least ``margin`` from now.

        Ordered newest first.
        """
        return self.active().filter(expires_at__gt=timezone.now() + margin).order_by(
            "-created_at"
        )


class GatewayAuthToken(BaseModel):
    """
    Bearer credential issued by the gateway's OAuth endpoint.

    Fields:
        access_token: Token value sent as ``O-Bearer <token>``
        token_type: Token type reported by the gateway
        expires_at: Absolute expiry instant
        is_active: Whether this is the current credential
    """

    access_token = models.TextField(
        help_text="Access token issued by the gateway",
    )

    token_type = models.CharField(
        max_length=32,
        default="Bearer",
        help_text="Token type reported by the gateway",
    )

    expires_at = models.DateTimeField(
        db_index=True,
        help_text="When the gateway stops accepting this token",
    )

    is_active = models.BooleanField(
        default=True,
        db_index=True,
        help_text="Whether this is the current credential",
    )

    objects = GatewayAuthTokenQuerySet.as_manager()

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Gateway Auth Token"
        verbose_name_plural = "Gateway Auth Tokens"
        constraints = [
            models.UniqueConstraint(
                fields=["is_active"],
                condition=models.Q(is_active=True),
                name="single_active_gateway_token",
            ),
        ]

    def __str__(self) -> str:
        state = "active" if self.is_active else "inactive"
        return f"GatewayAuthToken({self.pk}, {state}, expires {self.expires_at:%Y-%m-%d %H:%M})"
