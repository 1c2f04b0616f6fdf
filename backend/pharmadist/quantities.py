# Overview: Decimal helpers for quantities, money and percentages.

"""
Quantities and prices are Decimal end to end (stored as strings, see
models.types.DecimalString). EPSILON absorbs representation noise and is only
used where an allocation decision is made, never when persisting.
"""
from __future__ import annotations

from decimal import Decimal, InvalidOperation

EPSILON = Decimal("1e-9")
ZERO = Decimal("0")
HUNDRED = Decimal("100")


def to_decimal(value, field: str = "value") -> Decimal:
    """Coerce JSON input (str/int/float/Decimal) to Decimal, rejecting junk."""
    from .errors import ValidationError

    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field} must be a number")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, float):
        # via str() so 0.1 stays 0.1
        result = Decimal(str(value))
    else:
        try:
            result = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            raise ValidationError(f"{field} must be a number")
    if not result.is_finite():
        raise ValidationError(f"{field} must be a finite number")
    return result


def non_negative(value: Decimal) -> Decimal:
    return value if value > ZERO else ZERO


def clamp_pct(value: Decimal) -> Decimal:
    if value < ZERO:
        return ZERO
    if value > HUNDRED:
        return HUNDRED
    return value


def is_short(available: Decimal, required: Decimal) -> bool:
    """True when available stock does not cover required, within EPSILON."""
    return available + EPSILON < required


def format_quantity(value) -> str | None:
    """Decimal -> plain string without exponent or trailing zeros."""
    if value is None:
        return None
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    text = format(value, "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text or "0"
