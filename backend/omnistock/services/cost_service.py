# Overview: Weighted-average cost accumulation for product variants.

"""
Cost Accumulator Invariants (authoritative)

- total_purchased_quantity and total_cost_amount are running sums over every
  completed purchase receipt; they never decrease here.
- Receipt of `quantity` units at `unit_cost` with `allocated_shipping_cost`:
      landed_unit_cost = unit_cost + allocated_shipping_cost / quantity
      total_cost_amount += quantity * landed_unit_cost
  quantity * landed_unit_cost is exactly quantity * unit_cost +
  allocated_shipping_cost, so the running total stays an exact integer.
- average_cost = total_cost_amount / total_purchased_quantity, rounded
  half-up once (0 when nothing has been purchased yet).
- Because both totals are plain sums, the average is independent of the
  order in which receipts arrive.
"""

from __future__ import annotations

from ..money import div_round_half_up
from ..models import ProductVariant, PurchaseItem
from .errors import InvariantViolation


def average_cost_of(total_cost_amount: int, total_purchased_quantity: int) -> int:
    if total_purchased_quantity <= 0:
        return 0
    return div_round_half_up(total_cost_amount, total_purchased_quantity)


def landed_line_cost(quantity: int, unit_cost: int, allocated_shipping_cost: int) -> int:
    """Exact landed cost of a receipt line in cents."""
    return quantity * unit_cost + allocated_shipping_cost


def landed_unit_cost(item: PurchaseItem) -> int:
    """Per-unit landed cost of a purchase line, rounded half-up for display."""
    return div_round_half_up(
        landed_line_cost(item.quantity, item.unit_cost, item.allocated_shipping_cost),
        item.quantity,
    )


def apply_receipt(
    variant: ProductVariant,
    *,
    quantity: int,
    unit_cost: int,
    allocated_shipping_cost: int = 0,
) -> ProductVariant:
    """
    Fold one received purchase line into the variant's accumulator.

    The caller must hold the variant row lock and owns the transaction.
    """
    if quantity <= 0:
        raise InvariantViolation("received quantity must be positive")
    if unit_cost < 0 or allocated_shipping_cost < 0:
        raise InvariantViolation("costs must be >= 0")

    new_total_quantity = (variant.total_purchased_quantity or 0) + quantity
    new_total_cost = (variant.total_cost_amount or 0) + landed_line_cost(
        quantity, unit_cost, allocated_shipping_cost
    )

    variant.total_purchased_quantity = new_total_quantity
    variant.total_cost_amount = new_total_cost
    variant.average_cost = average_cost_of(new_total_cost, new_total_quantity)
    return variant
