# Overview: Service-layer operations for the per-store inventory ledger; encapsulates business logic and database work.

"""
Inventory Ledger Invariants (authoritative)

Inventory model:
- One Inventory row per (store, variant); quantity is a mutable counter that
  is the single point of truth for stock at that store.
- Rows are created on demand with quantity 0 (variant or store creation,
  first purchase receipt) and only disappear by cascade with the variant.

Business invariants:
- quantity never goes negative. Every decrement is a conditional UPDATE
  (... WHERE quantity >= n), backed by a CHECK constraint.
- A failed deduction raises InsufficientStock and changes nothing.

Locking:
- Order-time deductions and purchase receipts lock the same rows with the
  same discipline: rows of one transaction are locked in sorted
  (store_id, variant_id) order, then mutated, then committed together.
"""

from __future__ import annotations

from typing import Iterable

from flask import current_app
from sqlalchemy import update

from ..extensions import db
from ..models import Inventory, ProductVariant, Store
from .concurrency import insert_if_absent, lock_for_update, run_in_transaction
from .errors import InsufficientStock, InvariantViolation, NotFound


def get_store(store_id: int) -> Store:
    store = db.session.get(Store, store_id)
    if store is None:
        raise NotFound("Store", store_id)
    return store


def get_variant(variant_id: int, *, lock: bool = False) -> ProductVariant:
    query = db.session.query(ProductVariant).filter_by(id=variant_id)
    if lock:
        query = lock_for_update(query)
    variant = query.first()
    if variant is None:
        raise NotFound("ProductVariant", variant_id)
    return variant


def get_inventory(store_id: int, variant_id: int) -> Inventory | None:
    return db.session.query(Inventory).filter_by(
        store_id=store_id,
        product_variant_id=variant_id,
    ).first()


def get_quantity(store_id: int, variant_id: int) -> int:
    """Current on-hand quantity; 0 when the store has no ledger row for the variant."""
    qty = (
        db.session.query(Inventory.quantity)
        .filter_by(store_id=store_id, product_variant_id=variant_id)
        .scalar()
    )
    return int(qty or 0)


def _ensure_inventory_inner(store_id: int, variant_id: int, low_stock_threshold: int = 0) -> Inventory:
    """Create the ledger row at quantity 0 if absent, without commit."""
    insert_if_absent(
        Inventory,
        index_elements=["store_id", "product_variant_id"],
        store_id=store_id,
        product_variant_id=variant_id,
        quantity=0,
        low_stock_threshold=low_stock_threshold,
    )
    return get_inventory(store_id, variant_id)


def ensure_inventory(
    store_id: int,
    variant_id: int,
    low_stock_threshold: int = 0,
    *,
    commit: bool = True,
) -> Inventory:
    """
    Make sure (store, variant) has a ledger row. Idempotent.

    An existing row is returned unchanged (its threshold is not overwritten).
    """
    if low_stock_threshold < 0:
        raise InvariantViolation("low_stock_threshold must be >= 0")

    def _op() -> Inventory:
        get_store(store_id)
        get_variant(variant_id)
        return _ensure_inventory_inner(store_id, variant_id, low_stock_threshold)

    return run_in_transaction(_op, commit=commit)


def lock_inventory_rows(keys: Iterable[tuple[int, int]]) -> dict[tuple[int, int], Inventory | None]:
    """
    Lock the ledger rows for the given (store_id, variant_id) keys.

    Keys are de-duplicated and locked in sorted order so two transactions
    touching overlapping rows cannot deadlock on each other. Missing rows map
    to None.
    """
    locked: dict[tuple[int, int], Inventory | None] = {}
    for store_id, variant_id in sorted(set(keys)):
        query = db.session.query(Inventory).filter_by(
            store_id=store_id,
            product_variant_id=variant_id,
        )
        locked[(store_id, variant_id)] = lock_for_update(query).first()
    return locked


def _deduct_inner(store_id: int, variant_id: int, quantity: int, *, line: int | None = None) -> int:
    """
    Conditionally decrement one ledger row, without commit.

    Returns the new quantity. Raises InsufficientStock (and leaves the row
    untouched) when fewer than quantity units are on hand.
    """
    if quantity <= 0:
        raise InvariantViolation("deduction quantity must be positive", line=line)

    result = db.session.execute(
        update(Inventory)
        .where(
            Inventory.store_id == store_id,
            Inventory.product_variant_id == variant_id,
            Inventory.quantity >= quantity,
        )
        .values(quantity=Inventory.quantity - quantity)
        .execution_options(synchronize_session="fetch")
    )
    if not result.rowcount:
        available = get_quantity(store_id, variant_id)
        current_app.logger.warning(
            "Insufficient stock: store=%s variant=%s requested=%s available=%s",
            store_id, variant_id, quantity, available,
        )
        raise InsufficientStock(
            store_id=store_id,
            variant_id=variant_id,
            requested=quantity,
            available=available,
            line=line,
        )
    return get_quantity(store_id, variant_id)


def _increment_inner(store_id: int, variant_id: int, quantity: int) -> int:
    """Increment one ledger row (creating it at 0 first if needed), without commit."""
    if quantity <= 0:
        raise InvariantViolation("increment quantity must be positive")

    stmt = (
        update(Inventory)
        .where(
            Inventory.store_id == store_id,
            Inventory.product_variant_id == variant_id,
        )
        .values(quantity=Inventory.quantity + quantity)
        .execution_options(synchronize_session="fetch")
    )
    result = db.session.execute(stmt)
    if not result.rowcount:
        _ensure_inventory_inner(store_id, variant_id)
        db.session.execute(stmt)
    return get_quantity(store_id, variant_id)


def deduct_stock(store_id: int, variant_id: int, quantity: int, *, commit: bool = True) -> int:
    """Deduct quantity from (store, variant); all-or-nothing. Returns the new quantity."""
    def _op() -> int:
        get_store(store_id)
        get_variant(variant_id)
        lock_inventory_rows([(store_id, variant_id)])
        return _deduct_inner(store_id, variant_id, quantity)

    return run_in_transaction(_op, commit=commit)


def increment_stock(store_id: int, variant_id: int, quantity: int, *, commit: bool = True) -> int:
    """Add quantity to (store, variant), creating the ledger row if needed. Returns the new quantity."""
    def _op() -> int:
        get_store(store_id)
        get_variant(variant_id)
        lock_inventory_rows([(store_id, variant_id)])
        return _increment_inner(store_id, variant_id, quantity)

    return run_in_transaction(_op, commit=commit)


def adjust_inventory(
    store_id: int,
    variant_id: int,
    quantity_delta: int,
    *,
    note: str | None = None,
) -> int:
    """
    Manual stock correction (count differences, damage, found stock).

    Positive deltas behave like increment_stock; negative deltas like
    deduct_stock, so an adjustment can never make on-hand negative.
    """
    if quantity_delta == 0:
        raise InvariantViolation("quantity_delta must be non-zero")

    def _op() -> int:
        get_store(store_id)
        get_variant(variant_id)
        lock_inventory_rows([(store_id, variant_id)])
        if quantity_delta > 0:
            return _increment_inner(store_id, variant_id, quantity_delta)
        return _deduct_inner(store_id, variant_id, -quantity_delta)

    new_quantity = run_in_transaction(_op)
    current_app.logger.info(
        "Inventory adjusted: store=%s variant=%s delta=%+d quantity=%d note=%s",
        store_id, variant_id, quantity_delta, new_quantity, note,
    )
    return new_quantity


def set_low_stock_threshold(store_id: int, variant_id: int, threshold: int) -> Inventory:
    if threshold < 0:
        raise InvariantViolation("low_stock_threshold must be >= 0")

    def _op() -> Inventory:
        get_store(store_id)
        get_variant(variant_id)
        _ensure_inventory_inner(store_id, variant_id)
        entry = lock_inventory_rows([(store_id, variant_id)])[(store_id, variant_id)]
        entry.low_stock_threshold = threshold
        return entry

    return run_in_transaction(_op)


def check_low_stock(store_id: int | None = None) -> list[dict]:
    """Rows that still have stock but are at or below their low-stock threshold."""
    query = db.session.query(Inventory).filter(
        Inventory.quantity <= Inventory.low_stock_threshold,
        Inventory.quantity > 0,
    )
    if store_id is not None:
        query = query.filter(Inventory.store_id == store_id)

    alerts = [
        {
            "inventory_id": entry.id,
            "store_id": entry.store_id,
            "product_variant_id": entry.product_variant_id,
            "sku": entry.product_variant.sku if entry.product_variant else None,
            "current_quantity": entry.quantity,
            "threshold": entry.low_stock_threshold,
            "alert_type": "low_stock",
        }
        for entry in query.order_by(Inventory.store_id, Inventory.product_variant_id).all()
    ]
    current_app.logger.info("Low stock check (store=%s): %d alert(s)", store_id, len(alerts))
    return alerts


def check_exhausted_stock(store_id: int | None = None) -> list[dict]:
    """Rows with nothing left on hand."""
    query = db.session.query(Inventory).filter(Inventory.quantity == 0)
    if store_id is not None:
        query = query.filter(Inventory.store_id == store_id)

    return [
        {
            "inventory_id": entry.id,
            "store_id": entry.store_id,
            "product_variant_id": entry.product_variant_id,
            "sku": entry.product_variant.sku if entry.product_variant else None,
            "alert_type": "stock_exhausted",
        }
        for entry in query.order_by(Inventory.store_id, Inventory.product_variant_id).all()
    ]
