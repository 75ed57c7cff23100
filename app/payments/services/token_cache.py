"""
Token cache for the gateway's OAuth credential.

TokenCache serves a single active bearer token from the database and
refreshes it from the gateway when it is absent or about to expire.

Accepted race:
    Refreshes are not serialized across processes. Two callers that both
    miss the cache each fetch a token upstream. The deactivate-then-insert
    sequence runs in one transaction and a partial unique index allows a
    single active row; when the second insert loses on that index, its
    token (still valid upstream) is returned uncached. Redundant upstream
    calls are the cost; two active rows never exist.

Usage:
    from payments.services import TokenCache

    result = TokenCache.get_token()
    result.token    # "eyJ..."
    result.source   # "cached" or "fresh"
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from django.conf import settings
from django.db import IntegrityError

from core.services import BaseService

from payments.adapters import PhonePeAdapter
from payments.models import GatewayAuthToken
from payments.state_machines import TokenSource


@dataclass
class TokenResult:
    """
    A usable gateway credential.

    Attributes:
        token: Access token value
        source: TokenSource.CACHED or TokenSource.FRESH
        expires_at: Absolute expiry
        token_type: Token type reported by the gateway
    """

    token: str
    source: str
    expires_at: datetime | None = None
    token_type: str = "Bearer"


class TokenCache(BaseService):
    """Serve and refresh the single active gateway credential."""

    @staticmethod
    def refresh_margin() -> timedelta:
        """Minimum remaining lifetime for a cached token to be served."""
        return timedelta(seconds=getattr(settings, "PHONEPE_TOKEN_REFRESH_MARGIN_SECONDS", 300))

    @classmethod
    def get_token(cls) -> TokenResult:
        """
        Return a token valid for longer than the refresh margin.

        Returns:
            TokenResult tagged cached or fresh

        Raises:
            AuthUnavailableError: Credentials missing or the OAuth call failed
        """
        cached = GatewayAuthToken.objects.usable(cls.refresh_margin()).first()
        if cached is not None:
            cls.get_logger().debug(
                "Using cached gateway token",
                extra={"token_id": cached.pk, "expires_at": cached.expires_at.isoformat()},
            )
            return TokenResult(
                token=cached.access_token,
                source=TokenSource.CACHED,
                expires_at=cached.expires_at,
                token_type=cached.token_type,
            )

        return cls.refresh()

    @classmethod
    def refresh(cls) -> TokenResult:
        """
        Fetch a new token upstream and make it the only active row.

        Raises:
            AuthUnavailableError: Credentials missing or the OAuth call failed
        """
        logger = cls.get_logger()
        logger.info("Refreshing gateway token")

        fetched = PhonePeAdapter.fetch_access_token()

        try:
            with cls.atomic():
                deactivated = GatewayAuthToken.objects.active().update(is_active=False)
                stored = GatewayAuthToken.objects.create(
                    access_token=fetched.access_token,
                    token_type=fetched.token_type,
                    expires_at=fetched.expires_at,
                    is_active=True,
                )
        except IntegrityError:
            # Another caller committed its token between our deactivate and insert
            logger.warning(
                "Concurrent gateway token refresh detected, serving uncached token",
                extra={"expires_at": fetched.expires_at.isoformat()},
            )
            return TokenResult(
                token=fetched.access_token,
                source=TokenSource.FRESH,
                expires_at=fetched.expires_at,
                token_type=fetched.token_type,
            )

        logger.info(
            "Stored fresh gateway token",
            extra={
                "token_id": stored.pk,
                "deactivated_count": deactivated,
                "expires_at": stored.expires_at.isoformat(),
            },
        )
        return TokenResult(
            token=stored.access_token,
            source=TokenSource.FRESH,
            expires_at=stored.expires_at,
            token_type=stored.token_type,
        )
