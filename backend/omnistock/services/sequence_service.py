# Overview: Service-layer operations for sequence counters; encapsulates business logic and database work.

"""
Sequence Counter Invariants (authoritative)

- One counter row per (domain, period_key); created lazily with value 0.
- next_sequence increments under the row's exclusive lock
  (UPDATE ... SET last_sequence = last_sequence + 1) and reads the new value
  back inside the same transaction, so concurrent callers for the same key
  serialize and never see the same value.
- Gapless on success: a rolled-back transaction leaves no trace, and the next
  caller is issued the same value again.
- Only reset_sequence moves a counter backwards.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import update

from ..extensions import db
from ..models import SequenceCounter
from .concurrency import insert_if_absent, run_in_transaction
from .errors import InvariantViolation


DOMAIN_ORDER = "order"
DOMAIN_PURCHASE = "purchase"
VALID_DOMAINS = {DOMAIN_ORDER, DOMAIN_PURCHASE}


def _validate_key(domain: str, period_key: str) -> None:
    if domain not in VALID_DOMAINS:
        raise InvariantViolation(
            f"Invalid sequence domain '{domain}'. Must be one of: {', '.join(sorted(VALID_DOMAINS))}"
        )
    if not period_key:
        raise InvariantViolation("period_key is required")


def _increment_stmt(domain: str, period_key: str):
    return (
        update(SequenceCounter)
        .where(
            SequenceCounter.domain == domain,
            SequenceCounter.period_key == period_key,
        )
        .values(last_sequence=SequenceCounter.last_sequence + 1)
        .execution_options(synchronize_session=False)
    )


def _ensure_counter_row(domain: str, period_key: str) -> None:
    """Insert the counter row at 0 unless a concurrent transaction already did."""
    insert_if_absent(
        SequenceCounter,
        index_elements=["domain", "period_key"],
        domain=domain,
        period_key=period_key,
        last_sequence=0,
    )


def _read_counter(domain: str, period_key: str) -> int | None:
    return (
        db.session.query(SequenceCounter.last_sequence)
        .filter_by(domain=domain, period_key=period_key)
        .scalar()
    )


def _next_sequence_inner(domain: str, period_key: str) -> int:
    """Core increment without commit; the caller owns the transaction."""
    _validate_key(domain, period_key)

    result = db.session.execute(_increment_stmt(domain, period_key))
    if not result.rowcount:
        _ensure_counter_row(domain, period_key)
        result = db.session.execute(_increment_stmt(domain, period_key))
        if not result.rowcount:
            raise InvariantViolation(f"Sequence counter {domain}:{period_key} could not be created")

    value = _read_counter(domain, period_key)
    return int(value)


def next_sequence(domain: str, period_key: str, *, commit: bool = True) -> int:
    """
    Atomically allocate the next sequence value for (domain, period_key).

    With commit=False the increment joins the caller's transaction and is
    undone if that transaction rolls back.
    """
    value = run_in_transaction(lambda: _next_sequence_inner(domain, period_key), commit=commit)
    current_app.logger.debug("Issued sequence %s:%s -> %d", domain, period_key, value)
    return value


def current_sequence(domain: str, period_key: str) -> int:
    """Last issued value for the period, 0 if the period has no counter yet. Read-only."""
    _validate_key(domain, period_key)
    value = _read_counter(domain, period_key)
    return int(value or 0)


def reset_sequence(domain: str, period_key: str, value: int = 0) -> int:
    """
    Administrative override: set the counter so the next issued value is value + 1.

    Idempotent; creates the counter row when the period has none.
    """
    _validate_key(domain, period_key)
    if value is None or int(value) < 0:
        raise InvariantViolation("reset value must be >= 0")
    value = int(value)

    stmt = (
        update(SequenceCounter)
        .where(
            SequenceCounter.domain == domain,
            SequenceCounter.period_key == period_key,
        )
        .values(last_sequence=value)
        .execution_options(synchronize_session=False)
    )

    def _op() -> int:
        result = db.session.execute(stmt)
        if not result.rowcount:
            _ensure_counter_row(domain, period_key)
            db.session.execute(stmt)
        return value

    run_in_transaction(_op)
    current_app.logger.info("Sequence %s:%s reset to %d", domain, period_key, value)
    return value


def list_counters(domain: str | None = None) -> list[SequenceCounter]:
    query = db.session.query(SequenceCounter)
    if domain:
        query = query.filter(SequenceCounter.domain == domain)
    return query.order_by(SequenceCounter.domain, SequenceCounter.period_key).all()
