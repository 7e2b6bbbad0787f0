# Overview: Service-layer operations for purchase documents; encapsulates business logic and database work.

"""
Purchase Service

WHY: Stock enters the system through purchase documents. Receipt is the only
moment a purchase touches inventory and cost, and it must do both or neither.

LIFECYCLE:
1. pending: created, items and shipping cost editable
2. confirmed: supplier confirmed, still editable
3. received: goods arrived, awaiting completion
4. completed: stock and cost accumulators updated (terminal)
5. cancelled: abandoned before completion (terminal)

SHIPPING ALLOCATION:
- Every item but the last gets round_half_up(shipping * qty / total_qty).
- The last item (input order) gets the remainder, so the allocations sum
  to shipping_cost exactly.

COMPLETION (one transaction):
- Lock the purchase, then the destination ledger rows and variants in sorted
  order (the same discipline order-time deductions use).
- Increment each destination row (creating it at 0 if absent).
- Fold each line into the variant's weighted-average cost.
- Hand received units to open backorder lines FIFO (backorder_service);
  those units leave the ledger again.
- Flip the status and stamp completed_at.
"""

from __future__ import annotations

from datetime import date, datetime, time

from flask import current_app

from ..extensions import db
from ..models import Purchase, PurchaseItem
from ..money import div_round_half_up, require_cents
from ..time_utils import coerce_date, parse_iso_datetime, utcnow
from .backorder_service import _allocate_inner
from .concurrency import lock_for_update, run_in_transaction
from .cost_service import apply_receipt
from .errors import InvalidStatusTransition, InvariantViolation, NotFound
from .inventory_service import (
    _increment_inner,
    get_store,
    get_variant,
    lock_inventory_rows,
)
from .number_service import next_purchase_number


# Purchase status constants
PURCHASE_STATUS_PENDING = "pending"
PURCHASE_STATUS_CONFIRMED = "confirmed"
PURCHASE_STATUS_RECEIVED = "received"
PURCHASE_STATUS_COMPLETED = "completed"
PURCHASE_STATUS_CANCELLED = "cancelled"

VALID_TRANSITIONS = {
    PURCHASE_STATUS_PENDING: {PURCHASE_STATUS_CONFIRMED, PURCHASE_STATUS_CANCELLED},
    PURCHASE_STATUS_CONFIRMED: {PURCHASE_STATUS_RECEIVED, PURCHASE_STATUS_CANCELLED},
    PURCHASE_STATUS_RECEIVED: {PURCHASE_STATUS_COMPLETED, PURCHASE_STATUS_CANCELLED},
    PURCHASE_STATUS_COMPLETED: set(),
    PURCHASE_STATUS_CANCELLED: set(),
}

EDITABLE_STATUSES = {PURCHASE_STATUS_PENDING, PURCHASE_STATUS_CONFIRMED}


def can_transition(from_status: str, to_status: str) -> bool:
    """
    Check if a purchase status transition is valid.

    Transitions to the same state are not valid; terminal states
    (completed, cancelled) allow none.
    """
    return to_status in VALID_TRANSITIONS.get(from_status, set())


def allocate_shipping_cost(shipping_cost: int, quantities: list[int]) -> list[int]:
    """
    Split shipping_cost across lines proportionally to quantity.

    >>> allocate_shipping_cost(10000, [10, 5])
    [6667, 3333]
    >>> allocate_shipping_cost(100000, [1, 1, 1])
    [33333, 33333, 33334]
    """
    if shipping_cost < 0:
        raise InvariantViolation("shipping_cost must be >= 0")
    if not quantities:
        if shipping_cost:
            raise InvariantViolation("Cannot allocate shipping cost to a purchase without items")
        return []
    if any(qty <= 0 for qty in quantities):
        raise InvariantViolation("quantities must be positive")

    total_quantity = sum(quantities)
    allocations = [
        div_round_half_up(shipping_cost * qty, total_quantity)
        for qty in quantities[:-1]
    ]
    remainder = shipping_cost - sum(allocations)
    if remainder < 0:
        # Half-up rounding on many small lines can overshoot; take it back from the front.
        for index in range(len(allocations)):
            take = min(allocations[index], -remainder)
            allocations[index] -= take
            remainder += take
            if remainder == 0:
                break
    allocations.append(remainder)
    return allocations


def _build_items(lines: list[dict]) -> list[PurchaseItem]:
    if not lines:
        raise InvariantViolation("Purchase must have at least one item")

    items = []
    for index, line in enumerate(lines):
        variant_id = line.get("product_variant_id")
        if variant_id is None:
            raise InvariantViolation("product_variant_id is required", line=index)
        quantity = int(line.get("quantity") or 0)
        if quantity <= 0:
            raise InvariantViolation("quantity must be positive", line=index)
        get_variant(int(variant_id))

        items.append(PurchaseItem(
            product_variant_id=int(variant_id),
            quantity=quantity,
            unit_cost=require_cents(line.get("unit_cost"), "unit_cost", line=index),
        ))
    return items


def _apply_allocation(purchase: Purchase) -> None:
    """Re-split shipping across the current items and refresh the document total."""
    allocations = allocate_shipping_cost(
        purchase.shipping_cost,
        [item.quantity for item in purchase.items],
    )
    for item, allocated in zip(purchase.items, allocations):
        item.allocated_shipping_cost = allocated
    purchase.total_amount = sum(item.line_cost for item in purchase.items) + purchase.shipping_cost


def _purchased_at(value):
    if value is None:
        return utcnow()
    if isinstance(value, str):
        try:
            parsed = parse_iso_datetime(value)
        except ValueError as exc:
            raise InvariantViolation("Invalid purchased_at format") from exc
        if parsed is None:
            raise InvariantViolation("Invalid purchased_at format")
        return parsed
    if isinstance(value, date) and not isinstance(value, datetime):
        return datetime.combine(value, time.min)
    return value


def get_purchase(purchase_id: int, *, lock: bool = False) -> Purchase:
    query = db.session.query(Purchase).filter_by(id=purchase_id)
    if lock:
        query = lock_for_update(query)
    purchase = query.first()
    if purchase is None:
        raise NotFound("Purchase", purchase_id)
    return purchase


def create_purchase(data: dict) -> Purchase:
    """
    Create a pending purchase with its items.

    data keys: store_id, items [{product_variant_id, quantity, unit_cost}],
    shipping_cost?, purchased_at?, notes?

    The purchase number is drawn for the day of purchased_at inside the same
    transaction, so a failed create leaves the counter untouched.
    """
    store_id = data.get("store_id")
    if store_id is None:
        raise InvariantViolation("store_id is required")
    shipping_cost = require_cents(data.get("shipping_cost"), "shipping_cost")
    purchased_at = _purchased_at(data.get("purchased_at"))

    def _op() -> Purchase:
        get_store(int(store_id))
        purchase = Purchase(
            purchase_number=next_purchase_number(coerce_date(purchased_at), commit=False),
            store_id=int(store_id),
            status=PURCHASE_STATUS_PENDING,
            shipping_cost=shipping_cost,
            purchased_at=purchased_at,
            notes=data.get("notes"),
        )
        purchase.items = _build_items(data.get("items") or [])
        _apply_allocation(purchase)
        db.session.add(purchase)
        return purchase

    purchase = run_in_transaction(_op)
    current_app.logger.info(
        "Purchase %s created at store %s: %d item(s), total=%d",
        purchase.purchase_number, purchase.store_id, len(purchase.items), purchase.total_amount,
    )
    return purchase


def update_purchase(purchase, data: dict) -> Purchase:
    """
    Edit a pending or confirmed purchase.

    "items" replaces every item; "shipping_cost" replaces the shipping cost.
    Either way shipping is re-allocated over the resulting items.

    Raises:
        InvariantViolation: if the purchase is no longer pending or confirmed
    """
    purchase_id = purchase.id if isinstance(purchase, Purchase) else purchase

    def _op() -> Purchase:
        locked = get_purchase(purchase_id, lock=True)
        if locked.status not in EDITABLE_STATUSES:
            raise InvariantViolation(
                f"Purchase {locked.purchase_number} cannot be edited in status '{locked.status}'"
            )

        if "shipping_cost" in data:
            locked.shipping_cost = require_cents(data.get("shipping_cost"), "shipping_cost")
        if "items" in data:
            locked.items = _build_items(data.get("items") or [])
        if "notes" in data:
            locked.notes = data.get("notes")
        if "purchased_at" in data:
            locked.purchased_at = _purchased_at(data.get("purchased_at"))

        _apply_allocation(locked)
        return locked

    result = run_in_transaction(_op)
    current_app.logger.info("Purchase %s updated", result.purchase_number)
    return result


def _complete_inner(purchase: Purchase) -> None:
    """Receive every item into the destination store, without commit."""
    items = sorted(purchase.items, key=lambda item: (item.product_variant_id, item.id))

    lock_inventory_rows((purchase.store_id, item.product_variant_id) for item in items)
    variants = {
        variant_id: get_variant(variant_id, lock=True)
        for variant_id in sorted({item.product_variant_id for item in items})
    }

    for item in items:
        _increment_inner(purchase.store_id, item.product_variant_id, item.quantity)
        variant = apply_receipt(
            variants[item.product_variant_id],
            quantity=item.quantity,
            unit_cost=item.unit_cost,
            allocated_shipping_cost=item.allocated_shipping_cost,
        )
        current_app.logger.info(
            "Received %d x variant %s into store %s; average_cost=%d",
            item.quantity, item.product_variant_id, purchase.store_id, variant.average_cost,
        )

    # Received units serve waiting backorders before they count as on hand
    for item in items:
        _allocate_inner(purchase.store_id, item)


def transition_purchase_status(purchase, new_status: str) -> Purchase:
    """
    Move a purchase to new_status.

    Entering completed receives the goods (ledger increment plus cost
    accumulation) in the same transaction as the status change.

    Raises:
        InvalidStatusTransition: naming the current and requested status;
            nothing is changed
    """
    purchase_id = purchase.id if isinstance(purchase, Purchase) else purchase

    def _op() -> Purchase:
        locked = get_purchase(purchase_id, lock=True)
        current = locked.status
        if not can_transition(current, new_status):
            raise InvalidStatusTransition("purchase", current, new_status)

        if new_status == PURCHASE_STATUS_COMPLETED:
            _complete_inner(locked)
            locked.completed_at = utcnow()
        elif new_status == PURCHASE_STATUS_CANCELLED:
            locked.cancelled_at = utcnow()

        locked.status = new_status
        return locked

    try:
        result = run_in_transaction(_op)
    except InvalidStatusTransition as exc:
        current_app.logger.warning("Rejected purchase %s transition: %s", purchase_id, exc)
        raise

    current_app.logger.info("Purchase %s -> %s", result.purchase_number, new_status)
    return result
