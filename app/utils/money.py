"""Decimal helpers for currency amounts and commission splits."""
from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

CENT = Decimal("0.01")
MAX_COMMISSION_RATE = Decimal("0.30")


def to_decimal(value: Any) -> Decimal:
    """
    Convert an amount to a two-decimal ``Decimal``.

    Accepts Decimal, int, float and str. Raises ``ValueError`` if invalid.
    """
    if isinstance(value, Decimal):
        d = value
    else:
        try:
            # str() avoids binary float artefacts
            d = Decimal(str(value))
        except (InvalidOperation, ValueError, TypeError) as e:
            raise ValueError(f"Invalid money amount: {value!r}") from e

    if not d.is_finite():
        raise ValueError(f"Invalid money amount: {value!r}")
    return d.quantize(CENT, rounding=ROUND_HALF_UP)


def to_rate(value: Any) -> Decimal:
    """Parse a commission rate and check it lies within ``[0, MAX_COMMISSION_RATE]``."""

    try:
        rate = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError, TypeError) as e:
        raise ValueError(f"Invalid commission rate: {value!r}") from e
    if not rate.is_finite() or rate < 0 or rate > MAX_COMMISSION_RATE:
        raise ValueError(f"Commission rate must be between 0 and {MAX_COMMISSION_RATE}, got {value!r}")
    return rate


def to_minor_units(amount: Decimal) -> int:
    """Convert a decimal amount to the smallest currency unit (kuruş)."""

    return int((to_decimal(amount) * 100).to_integral_value(rounding=ROUND_HALF_UP))


def split_commission(amount: Any, rate: Any) -> tuple[Decimal, Decimal]:
    """Return ``(commission_amount, seller_amount)`` for a purchase.

    The commission is rounded half-up to the cent and the seller receives the
    remainder, so both parts always add back to ``amount`` exactly.
    """

    total = to_decimal(amount)
    commission = (total * to_rate(rate)).quantize(CENT, rounding=ROUND_HALF_UP)
    return commission, total - commission


__all__ = ["CENT", "MAX_COMMISSION_RATE", "to_decimal", "to_rate", "to_minor_units", "split_commission"]
