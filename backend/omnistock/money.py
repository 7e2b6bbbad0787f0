# Overview: Minor-unit money helpers: half-up integer division, amount validation, presentation.

"""
All stored and computed money is an integer number of cents. Decimal values
exist only at the presentation boundary, and every division is rounded
half-up exactly once, at the point where an integer result is required.

Amounts entering a service must already be integer cents. Strings, Decimals
and floats are refused rather than guessed at: "12.50" could mean cents or
major units depending on the caller.
"""

from __future__ import annotations

from decimal import Decimal

from .services.errors import InvariantViolation

CENTS_PER_UNIT = 100


def div_round_half_up(numerator: int, denominator: int) -> int:
    """Integer division rounded half-up (away from zero on ties)."""
    if denominator == 0:
        raise ZeroDivisionError("denominator must be non-zero")
    if denominator < 0:
        numerator, denominator = -numerator, -denominator
    if numerator >= 0:
        return (2 * numerator + denominator) // (2 * denominator)
    return -((2 * -numerator + denominator) // (2 * denominator))


def require_cents(value, field_name: str, *, default: int = 0, line: int | None = None) -> int:
    """
    Validate a non-negative integer cent amount; None yields default.

    Raises:
        InvariantViolation: for negative amounts or anything that is not an int
    """
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvariantViolation(
            f"{field_name} must be an integer number of cents, got {value!r}",
            line=line,
        )
    if value < 0:
        raise InvariantViolation(f"{field_name} must be >= 0", line=line)
    return value


def cents_to_decimal(cents: int | None) -> Decimal | None:
    """Presentation view of a cent amount, e.g. 12345 -> Decimal('123.45')."""
    if cents is None:
        return None
    return (Decimal(int(cents)) / CENTS_PER_UNIT).quantize(Decimal("0.01"))
