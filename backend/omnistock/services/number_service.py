# Overview: Document number formatting on top of the sequence counters.

"""
Document number formats:

- Orders:    "YYYYMM-NNNN"        (counter domain "order", period "YYYY-MM")
- Purchases: "PO-YYYYMMDD-NNNN"   (counter domain "purchase", period "YYYYMMDD")

NNNN is zero-padded to at least SEQUENCE_MIN_WIDTH digits and simply grows
past it (9999 -> 10000); numbers are never truncated.
"""

from __future__ import annotations

import re
from datetime import date

from flask import current_app

from ..time_utils import coerce_date
from .concurrency import run_in_transaction
from .errors import InvariantViolation
from .sequence_service import DOMAIN_ORDER, DOMAIN_PURCHASE, _next_sequence_inner


DEFAULT_MIN_WIDTH = 4
PURCHASE_PREFIX = "PO"

ORDER_NUMBER_RE = re.compile(r"^(?P<year>\d{4})(?P<month>\d{2})-(?P<sequence>\d+)$")
PURCHASE_NUMBER_RE = re.compile(
    r"^PO-(?P<year>\d{4})(?P<month>\d{2})(?P<day>\d{2})-(?P<sequence>\d+)$"
)


def _min_width() -> int:
    return int(current_app.config.get("SEQUENCE_MIN_WIDTH", DEFAULT_MIN_WIDTH))


def _pad(sequence: int, width: int) -> str:
    if sequence < 0:
        raise InvariantViolation("sequence must be >= 0")
    return f"{sequence:0{width}d}"


def order_period_key(value: date) -> str:
    return value.strftime("%Y-%m")


def purchase_period_key(value: date) -> str:
    return value.strftime("%Y%m%d")


def period_key_for(domain: str, value=None) -> str:
    day = coerce_date(value)
    if domain == DOMAIN_ORDER:
        return order_period_key(day)
    if domain == DOMAIN_PURCHASE:
        return purchase_period_key(day)
    raise InvariantViolation(f"Invalid sequence domain '{domain}'")


def format_order_number(value, sequence: int, *, width: int = DEFAULT_MIN_WIDTH) -> str:
    """format_order_number(date(2025, 6, 1), 1) -> "202506-0001"."""
    day = coerce_date(value)
    return f"{day.strftime('%Y%m')}-{_pad(sequence, width)}"


def format_purchase_number(value, sequence: int, *, width: int = DEFAULT_MIN_WIDTH) -> str:
    """format_purchase_number(date(2025, 6, 15), 1) -> "PO-20250615-0001"."""
    day = coerce_date(value)
    return f"{PURCHASE_PREFIX}-{day.strftime('%Y%m%d')}-{_pad(sequence, width)}"


_FORMATTERS = {
    DOMAIN_ORDER: format_order_number,
    DOMAIN_PURCHASE: format_purchase_number,
}


def _draw(domain: str, day: date) -> str:
    sequence = _next_sequence_inner(domain, period_key_for(domain, day))
    return _FORMATTERS[domain](day, sequence, width=_min_width())


def next_order_number(value=None, *, commit: bool = True) -> str:
    """Allocate the next order number for the month of value (default: today, UTC)."""
    day = coerce_date(value)
    number = run_in_transaction(lambda: _draw(DOMAIN_ORDER, day), commit=commit)
    current_app.logger.info("Issued order number %s", number)
    return number


def next_purchase_number(value=None, *, commit: bool = True) -> str:
    """Allocate the next purchase number for the day of value (default: today, UTC)."""
    day = coerce_date(value)
    number = run_in_transaction(lambda: _draw(DOMAIN_PURCHASE, day), commit=commit)
    current_app.logger.info("Issued purchase number %s", number)
    return number


def generate_batch(domain: str, count: int, value=None, *, commit: bool = True) -> list[str]:
    """
    Allocate count numbers for the same period in one transaction.

    The counter is called count times, so the numbers are distinct and
    strictly increasing. count <= 0 returns an empty list.
    """
    if domain not in _FORMATTERS:
        raise InvariantViolation(f"Invalid sequence domain '{domain}'")
    if count is None or count <= 0:
        return []
    day = coerce_date(value)

    def _op() -> list[str]:
        return [_draw(domain, day) for _ in range(count)]

    numbers = run_in_transaction(_op, commit=commit)
    current_app.logger.info("Issued %d %s numbers (%s .. %s)", count, domain, numbers[0], numbers[-1])
    return numbers


def parse_number(number: str) -> dict:
    """
    Split a document number into its parts.

    Returns {"valid": False} for anything that is not an order or purchase
    number, otherwise the domain, calendar date (first of month for orders),
    period key and integer sequence.
    """
    if not number:
        return {"valid": False}

    match = PURCHASE_NUMBER_RE.match(number)
    if match:
        try:
            day = date(int(match["year"]), int(match["month"]), int(match["day"]))
        except ValueError:
            return {"valid": False}
        return {
            "valid": True,
            "domain": DOMAIN_PURCHASE,
            "date": day,
            "period_key": purchase_period_key(day),
            "sequence": int(match["sequence"]),
        }

    match = ORDER_NUMBER_RE.match(number)
    if match:
        try:
            day = date(int(match["year"]), int(match["month"]), 1)
        except ValueError:
            return {"valid": False}
        return {
            "valid": True,
            "domain": DOMAIN_ORDER,
            "date": day,
            "period_key": order_period_key(day),
            "sequence": int(match["sequence"]),
        }

    return {"valid": False}
