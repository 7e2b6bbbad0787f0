# Overview: Hands received purchase units to open backorder lines, oldest order first.

"""
Backorder Allocation

WHY: A "purchase" stock decision leaves an order line waiting on goods that
have not arrived. When they do, the customer who waited longest is served
first instead of the units quietly joining general stock.

RULES:
- Only lines of orders at the receiving store, for the received variant,
  with is_backorder set and fulfilled_quantity < backorder_quantity, are
  candidates. Cancelled orders are skipped.
- Candidates are served FIFO: order created_at, then order id, then line id.
- Each line takes min(units left, its open backorder quantity); a line can
  be covered partly now and the rest by a later receipt.
- Allocated units are deducted from the receiving store's ledger row (they
  belong to a customer now) and recorded on the purchase item, so the same
  units are never handed out twice.
- Only units still on hand can be allocated.

Purchase completion runs this inside its own transaction, right after the
receipt increments the ledger.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass

from flask import current_app

from ..extensions import db
from ..models import Order, OrderItem, PurchaseItem
from .concurrency import lock_for_update, run_in_transaction
from .errors import InvariantViolation, NotFound
from .inventory_service import _deduct_inner, get_quantity, lock_inventory_rows


@dataclass
class BackorderAllocation:
    order_id: int
    order_number: str
    order_item_id: int
    product_variant_id: int
    quantity: int
    remaining_backorder: int

    def to_dict(self) -> dict:
        return asdict(self)


def pending_backorders(store_id: int, variant_id: int, *, lock: bool = False) -> list[OrderItem]:
    """Open backorder lines for (store, variant) in allocation order."""
    query = (
        db.session.query(OrderItem)
        .join(Order)
        .filter(
            Order.store_id == store_id,
            Order.status != "cancelled",
            OrderItem.product_variant_id == variant_id,
            OrderItem.is_backorder.is_(True),
            OrderItem.fulfilled_quantity < OrderItem.backorder_quantity,
        )
        .order_by(Order.created_at, Order.id, OrderItem.id)
    )
    if lock:
        query = lock_for_update(query)
    return query.all()


def _allocate_inner(store_id: int, purchase_item: PurchaseItem) -> list[BackorderAllocation]:
    """Allocate the item's unallocated, still on-hand units. Caller holds the ledger row lock."""
    variant_id = purchase_item.product_variant_id
    already = purchase_item.backorder_allocated_quantity or 0
    units = min(purchase_item.quantity - already, get_quantity(store_id, variant_id))
    if units <= 0:
        return []

    allocations = []
    left = units
    for item in pending_backorders(store_id, variant_id, lock=True):
        if left == 0:
            break
        take = min(left, item.open_backorder_quantity)
        item.fulfilled_quantity = (item.fulfilled_quantity or 0) + take
        left -= take
        allocations.append(BackorderAllocation(
            order_id=item.order_id,
            order_number=item.order.order_number,
            order_item_id=item.id,
            product_variant_id=variant_id,
            quantity=take,
            remaining_backorder=item.open_backorder_quantity,
        ))

    allocated = units - left
    if allocated:
        _deduct_inner(store_id, variant_id, allocated)
        purchase_item.backorder_allocated_quantity = already + allocated
        current_app.logger.info(
            "Allocated %d x variant %s at store %s to %d backorder line(s)",
            allocated, variant_id, store_id, len(allocations),
        )
    return allocations


def allocate_to_backorders(purchase_item, *, commit: bool = True) -> list[BackorderAllocation]:
    """
    Allocate a completed purchase item's unallocated units to open backorders.

    Completion already does this for backorders that existed at receipt time;
    calling it later serves backorders placed since, from whatever of the
    item's units are still unallocated and on hand.

    Raises:
        NotFound: if the purchase item does not exist
        InvariantViolation: if its purchase has not been completed
    """
    item_id = purchase_item.id if isinstance(purchase_item, PurchaseItem) else purchase_item

    def _op() -> list[BackorderAllocation]:
        item = db.session.get(PurchaseItem, item_id)
        if item is None:
            raise NotFound("PurchaseItem", item_id)
        purchase = item.purchase
        if purchase.completed_at is None:
            raise InvariantViolation(
                f"Purchase {purchase.purchase_number} has not been received into stock"
            )
        lock_inventory_rows([(purchase.store_id, item.product_variant_id)])
        return _allocate_inner(purchase.store_id, item)

    return run_in_transaction(_op, commit=commit)
