"""
Mapping from raw gateway status strings to internal transaction states.

The gateway reports state under different keys depending on the endpoint
(``status`` on order status reads, ``code`` on SDK callbacks relayed by
the app, ``state`` on server callbacks) and with several spellings. This
module normalises all of them to a closed set of canonical states and
maps those, through a fixed table, to TransactionStatus.

The mapping is total: unknown, empty or missing values map to PENDING
and never raise.

Usage:
    from payments.state_machines.status_mapping import (
        extract_gateway_status,
        map_gateway_status,
    )

    raw = extract_gateway_status(response_body)       # "COMPLETED"
    internal = map_gateway_status(raw)                 # TransactionStatus.SUCCESS
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from payments.state_machines.states import TransactionStatus

if TYPE_CHECKING:
    from typing import Any


class GatewayState:
    """Canonical gateway states understood by the reconciliation table."""

    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"


STATUS_TABLE: dict[str, str] = {
    GatewayState.SUCCESS: TransactionStatus.SUCCESS,
    GatewayState.FAILURE: TransactionStatus.FAILURE,
    GatewayState.CANCELLED: TransactionStatus.CANCELLED,
    GatewayState.EXPIRED: TransactionStatus.EXPIRED,
}

# Alternate spellings used by checkout v2 callbacks and the SDK response codes
STATUS_ALIASES: dict[str, str] = {
    "COMPLETED": GatewayState.SUCCESS,
    "PAYMENT_SUCCESS": GatewayState.SUCCESS,
    "FAILED": GatewayState.FAILURE,
    "PAYMENT_ERROR": GatewayState.FAILURE,
    "PAYMENT_DECLINED": GatewayState.FAILURE,
    "PAYMENT_CANCELLED": GatewayState.CANCELLED,
    "CANCELED": GatewayState.CANCELLED,
}

STATUS_KEYS = ("status", "code", "state")
NESTED_KEYS = ("payload", "data")


def normalize_gateway_status(raw_status: Any) -> str | None:
    """
    Upper-case and de-alias a raw gateway status.

    Returns:
        The canonical spelling, or None when the value is empty or not a string
    """
    if not isinstance(raw_status, str):
        return None
    value = raw_status.strip().upper()
    if not value:
        return None
    return STATUS_ALIASES.get(value, value)


def map_gateway_status(raw_status: Any) -> str:
    """
    Map a raw gateway status to a TransactionStatus value.

    SUCCESS → success, FAILURE → failure, CANCELLED → cancelled,
    EXPIRED → expired; everything else → pending (non-terminal).
    """
    canonical = normalize_gateway_status(raw_status)
    return STATUS_TABLE.get(canonical, TransactionStatus.PENDING)


def extract_gateway_status(payload: Any) -> str | None:
    """
    Find the raw status string in a gateway response or callback body.

    Looks at the top level first, then one level down under ``payload``
    or ``data``. Within a level, ``status`` wins over ``code`` and
    ``code`` wins over ``state``.
    """
    if not isinstance(payload, dict):
        return None

    for key in STATUS_KEYS:
        value = payload.get(key)
        if isinstance(value, str) and value.strip():
            return value

    for nested_key in NESTED_KEYS:
        nested = payload.get(nested_key)
        if isinstance(nested, dict):
            found = extract_gateway_status(nested)
            if found:
                return found
    return None


def extract_failure_reason(payload: Any, internal_status: str) -> str:
    """
    Build a failure reason for a non-success terminal status.

    Uses the gateway's ``message`` (or ``errorCode``/``detailedErrorCode``)
    when present, otherwise a generic description of the status.
    """
    if isinstance(payload, dict):
        candidates = [payload]
        candidates.extend(
            payload[key] for key in NESTED_KEYS if isinstance(payload.get(key), dict)
        )
        for candidate in candidates:
            for key in ("message", "errorCode", "detailedErrorCode"):
                value = candidate.get(key)
                if isinstance(value, str) and value.strip():
                    return value.strip()
    if internal_status == TransactionStatus.FAILURE:
        return "Payment failed"
    return f"Payment {internal_status}"
