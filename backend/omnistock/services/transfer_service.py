# backend/omnistock/services/transfer_service.py
"""
Inter-store transfer service.

WHY: An order line that the ordering store cannot cover alone can pull stock
from other stores. The origin quantity is deducted when the transfer is
created, inside the same transaction as the rest of the order, so the units
cannot be sold twice while they travel.

LIFECYCLE:
1. pending: created, origin already deducted
2. in_transit: shipped from origin
3. completed: arrived at destination. Order-linked transfers are consumed by
   their order line; free-standing transfers are added to the destination.
4. cancelled: cancelled before completion; origin quantity restored
"""
from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import InventoryTransfer
from .concurrency import lock_for_update, run_in_transaction
from .errors import InvalidStatusTransition, InvariantViolation, NotFound
from .inventory_service import (
    _deduct_inner,
    _increment_inner,
    get_store,
    get_variant,
    lock_inventory_rows,
)


# Transfer status constants
TRANSFER_STATUS_PENDING = "pending"
TRANSFER_STATUS_IN_TRANSIT = "in_transit"
TRANSFER_STATUS_COMPLETED = "completed"
TRANSFER_STATUS_CANCELLED = "cancelled"

TRANSFER_TRANSITIONS = {
    TRANSFER_STATUS_PENDING: {TRANSFER_STATUS_IN_TRANSIT, TRANSFER_STATUS_CANCELLED},
    TRANSFER_STATUS_IN_TRANSIT: {TRANSFER_STATUS_COMPLETED, TRANSFER_STATUS_CANCELLED},
    TRANSFER_STATUS_COMPLETED: set(),
    TRANSFER_STATUS_CANCELLED: set(),
}


def _initiate_transfer_inner(
    *,
    from_store_id: int,
    to_store_id: int,
    variant_id: int,
    quantity: int,
    order_id: int | None = None,
    order_item_id: int | None = None,
    initiated_by: int | None = None,
    notes: str | None = None,
    line: int | None = None,
) -> InventoryTransfer:
    """
    Deduct the origin and create a pending transfer, without commit.

    The caller must already hold the origin ledger row lock.
    """
    if from_store_id == to_store_id:
        raise InvariantViolation("Cannot transfer to the same store", line=line)
    if quantity <= 0:
        raise InvariantViolation("Transfer quantity must be positive", line=line)

    _deduct_inner(from_store_id, variant_id, quantity, line=line)

    transfer = InventoryTransfer(
        from_store_id=from_store_id,
        to_store_id=to_store_id,
        product_variant_id=variant_id,
        quantity=quantity,
        status=TRANSFER_STATUS_PENDING,
        order_id=order_id,
        order_item_id=order_item_id,
        initiated_by=initiated_by,
        notes=notes,
    )
    db.session.add(transfer)
    db.session.flush()  # Get ID

    current_app.logger.info(
        "Transfer %s created: variant=%s qty=%s store %s -> %s (order=%s)",
        transfer.id, variant_id, quantity, from_store_id, to_store_id, order_id,
    )
    return transfer


def create_transfer(
    from_store_id: int,
    to_store_id: int,
    variant_id: int,
    quantity: int,
    *,
    initiated_by: int | None = None,
    notes: str | None = None,
) -> InventoryTransfer:
    """Create a free-standing transfer (not tied to an order line)."""
    def _op() -> InventoryTransfer:
        get_store(from_store_id)
        get_store(to_store_id)
        get_variant(variant_id)
        lock_inventory_rows([(from_store_id, variant_id)])
        return _initiate_transfer_inner(
            from_store_id=from_store_id,
            to_store_id=to_store_id,
            variant_id=variant_id,
            quantity=quantity,
            initiated_by=initiated_by,
            notes=notes,
        )

    return run_in_transaction(_op)


def get_transfer(transfer_id: int, *, lock: bool = False) -> InventoryTransfer:
    query = db.session.query(InventoryTransfer).filter_by(id=transfer_id)
    if lock:
        query = lock_for_update(query)
    transfer = query.first()
    if transfer is None:
        raise NotFound("InventoryTransfer", transfer_id)
    return transfer


def update_transfer_status(transfer, new_status: str) -> InventoryTransfer:
    """
    Move a transfer along its lifecycle.

    Raises:
        InvalidStatusTransition: if new_status is not reachable from the
            current status
    """
    transfer_id = transfer.id if isinstance(transfer, InventoryTransfer) else transfer

    def _op() -> InventoryTransfer:
        locked = get_transfer(transfer_id, lock=True)
        current = locked.status
        if new_status not in TRANSFER_TRANSITIONS.get(current, set()):
            raise InvalidStatusTransition("transfer", current, new_status)

        if new_status == TRANSFER_STATUS_CANCELLED:
            lock_inventory_rows([(locked.from_store_id, locked.product_variant_id)])
            _increment_inner(locked.from_store_id, locked.product_variant_id, locked.quantity)
        elif new_status == TRANSFER_STATUS_COMPLETED and locked.order_item_id is None:
            lock_inventory_rows([(locked.to_store_id, locked.product_variant_id)])
            _increment_inner(locked.to_store_id, locked.product_variant_id, locked.quantity)

        locked.status = new_status
        return locked

    result = run_in_transaction(_op)
    current_app.logger.info("Transfer %s -> %s", transfer_id, new_status)
    return result
