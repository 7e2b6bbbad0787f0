# Overview: Transaction, row-locking and retry helpers shared by every mutating service.

from __future__ import annotations

import time

from flask import current_app
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from .errors import LockTimeout


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE; there the conditional UPDATE
    statements issued by the services take the database write lock instead.
    """
    return query.with_for_update()


def apply_lock_timeout() -> None:
    """
    Bound how long the current transaction waits on row locks.

    PostgreSQL honors SET LOCAL for the rest of the transaction. SQLite uses
    the driver busy timeout configured on the engine (see create_app).
    """
    dialect = db.session.get_bind().dialect.name
    timeout_ms = int(current_app.config.get("LOCK_TIMEOUT_MS", 5000))
    if dialect == "postgresql":
        db.session.execute(text(f"SET LOCAL lock_timeout = {timeout_ms}"))
    elif dialect == "mysql":
        seconds = max(1, timeout_ms // 1000)
        db.session.execute(text(f"SET SESSION innodb_lock_wait_timeout = {seconds}"))


def run_with_retry(func, *, attempts: int | None = None, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, lock waits) and StaleDataError.
    When every attempt fails the error surfaces as LockTimeout.
    """
    if attempts is None:
        attempts = int(current_app.config.get("TRANSACTION_RETRY_ATTEMPTS", 3))
    attempts = max(1, attempts)

    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            if attempt >= attempts - 1:
                current_app.logger.warning(
                    "Giving up after %d attempt(s) on lock contention: %s", attempts, exc
                )
                raise LockTimeout(
                    "Could not acquire the required row locks; nothing was applied, retry later"
                ) from exc
            time.sleep(backoff_base * (2 ** attempt))


def run_in_transaction(
    func,
    *,
    commit: bool = True,
    attempts: int | None = None,
    backoff_base: float = 0.1,
):
    """
    Run func as one "begin, lock, mutate, commit" unit.

    Any exception rolls the whole unit back before it propagates, so callers
    never observe partial effects. With commit=False the caller owns the
    transaction (the work is only flushed) and is responsible for rollback.
    """
    if not commit:
        result = func()
        db.session.flush()
        return result

    def _op():
        try:
            apply_lock_timeout()
            result = func()
            db.session.commit()
            return result
        except (OperationalError, StaleDataError):
            raise
        except Exception:
            db.session.rollback()
            raise

    return run_with_retry(_op, attempts=attempts, backoff_base=backoff_base)


def insert_if_absent(model, *, index_elements: list[str], **values) -> bool:
    """
    Insert a row unless one with the same unique key already exists.

    Uses INSERT ... ON CONFLICT DO NOTHING where the dialect has it, so a
    concurrent creator never aborts the surrounding transaction. Returns
    True when this call inserted the row.
    """
    dialect = db.session.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        nested = db.session.begin_nested()
        try:
            db.session.add(model(**values))
            db.session.flush()
            nested.commit()
            return True
        except IntegrityError:
            nested.rollback()
            return False

    stmt = insert(model.__table__).values(**values).on_conflict_do_nothing(index_elements=index_elements)
    result = db.session.execute(stmt)
    return bool(result.rowcount)
