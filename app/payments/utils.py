"""
Money and reference helpers for the payment core.

Amounts are Decimal in major units inside the ledger and integers in minor
units (paise) at the gateway boundary. All rounding is ROUND_HALF_UP to
the cent.
"""

from __future__ import annotations

import secrets
import string
import time
import uuid
from decimal import ROUND_HALF_UP, Decimal

CENT = Decimal("0.01")
MINOR_UNITS_PER_MAJOR = 100

REFERENCE_ALPHABET = string.ascii_lowercase + string.digits
REFERENCE_SUFFIX_LENGTH = 9


def to_minor_units(amount) -> int:
    """Convert a major-unit amount to integer minor units, rounding half-up."""
    minor = Decimal(str(amount)) * MINOR_UNITS_PER_MAJOR
    return int(minor.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def percent_of(amount, percent) -> Decimal:
    """
    ``percent`` % of ``amount``, quantized to the cent half-up.

    >>> percent_of(Decimal("100.00"), Decimal("2"))
    Decimal('2.00')
    >>> percent_of(Decimal("100.00"), Decimal("1.5"))
    Decimal('1.50')
    """
    raw = Decimal(str(amount)) * Decimal(str(percent)) / Decimal("100")
    return raw.quantize(CENT, rounding=ROUND_HALF_UP)


def _random_suffix(length: int = REFERENCE_SUFFIX_LENGTH) -> str:
    return "".join(secrets.choice(REFERENCE_ALPHABET) for _ in range(length))


def generate_merchant_reference(prefix: str = "INV") -> str:
    """
    Merchant order id: ``{prefix}_{epoch_ms}_{9 random base36 chars}``.

    The timestamp keeps references sortable; the random suffix keeps them
    unpredictable and collision-free within the same millisecond.
    """
    return f"{prefix}_{int(time.time() * 1000)}_{_random_suffix()}"


def generate_merchant_user_id() -> str:
    """Opaque per-order user id sent to the gateway instead of the real user id."""
    return f"USER_{uuid.uuid4().hex[:16]}"
