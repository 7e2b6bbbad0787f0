# Overview: Resolves order lines against the inventory ledger using caller-supplied stock decisions.

"""
Stock Decision Invariants (authoritative)

Per-line actions (requested = order line quantity):
- sufficient / no decision: deduct requested from the ordering store.
- transfer: each TransferSpec deducts its quantity from its origin store and
  creates one pending InventoryTransfer into the ordering store. Whatever the
  specs do not cover is deducted from the ordering store itself.
- purchase: nothing is deducted; the line becomes a backorder for the full
  requested quantity and is not a stocked sale.
- mixed: the transfer part follows "transfer", purchase_quantity follows
  "purchase", and sum(transfers) + purchase_quantity == requested.

Atomicity:
- Every decision is validated before anything is touched; a malformed
  decision raises InvariantViolation with no mutation.
- All ledger rows the order touches are locked up front in sorted
  (store_id, variant_id) order, then lines are applied in input order.
- The whole order commits or rolls back together. A shortage on any line
  raises InsufficientStock and nothing from the order persists.

Lines are identified by their 0-based position in the order unless the
caller supplies an explicit "id". A decision pinned to a line must name that
line's variant, and a decision that governs no line is rejected.

Resolution happens once per order: stock_resolved_at is stamped by a
conditional UPDATE, so a second attempt (or a concurrent one) is rejected.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from collections.abc import Iterable, Mapping

from flask import current_app
from sqlalchemy import update

from ..extensions import db
from ..models import InventoryTransfer, OrderItem, Order
from ..time_utils import utcnow
from .concurrency import run_in_transaction
from .errors import InvariantViolation
from .inventory_service import (
    _deduct_inner,
    get_quantity,
    get_store,
    get_variant,
    lock_inventory_rows,
)
from .transfer_service import _initiate_transfer_inner


ACTION_SUFFICIENT = "sufficient"
ACTION_TRANSFER = "transfer"
ACTION_PURCHASE = "purchase"
ACTION_MIXED = "mixed"
VALID_ACTIONS = {ACTION_SUFFICIENT, ACTION_TRANSFER, ACTION_PURCHASE, ACTION_MIXED}


@dataclass
class TransferSpec:
    from_store_id: int
    quantity: int

    @classmethod
    def from_value(cls, value) -> "TransferSpec":
        if isinstance(value, TransferSpec):
            return value
        return cls(from_store_id=int(value["from_store_id"]), quantity=int(value["quantity"]))


@dataclass
class StockDecision:
    """
    Caller's choice for one order line.

    line pins the decision to one line position; otherwise it applies to
    every line of product_variant_id.
    """
    product_variant_id: int
    action: str = ACTION_SUFFICIENT
    quantity: int | None = None
    transfers: list[TransferSpec] = field(default_factory=list)
    purchase_quantity: int = 0
    line: int | None = None

    @classmethod
    def from_value(cls, value) -> "StockDecision":
        if isinstance(value, StockDecision):
            return value
        return cls(
            product_variant_id=int(value["product_variant_id"]),
            action=value.get("action") or ACTION_SUFFICIENT,
            quantity=value.get("quantity"),
            transfers=[TransferSpec.from_value(spec) for spec in value.get("transfers") or []],
            purchase_quantity=int(value.get("purchase_quantity") or 0),
            line=None if value.get("line") is None else int(value["line"]),
        )

    @property
    def transfer_quantity(self) -> int:
        return sum(spec.quantity for spec in self.transfers)


@dataclass
class LinePlan:
    """Validated resolution of one line, computed before any mutation."""
    index: int
    line_id: object
    variant_id: int
    requested: int
    action: str
    local_quantity: int
    transfers: list[TransferSpec]
    backorder_quantity: int


@dataclass
class StockResolution:
    deductions: list[dict] = field(default_factory=list)
    transfers: list[InventoryTransfer] = field(default_factory=list)
    backorder_items: list = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "deductions": list(self.deductions),
            "transfers": [t.to_dict() for t in self.transfers],
            "backorder_items": [
                item.to_dict() if hasattr(item, "to_dict") else item
                for item in self.backorder_items
            ],
        }


def _line_value(line, name: str, default=None):
    if isinstance(line, Mapping):
        return line.get(name, default)
    return getattr(line, name, default)


def _line_id(line, index: int):
    line_id = _line_value(line, "id")
    return index if line_id is None else line_id


def normalize_decisions(decisions) -> list[StockDecision]:
    """Accept a list of StockDecision/dicts, or a {variant_id: decision} mapping."""
    if not decisions:
        return []
    if isinstance(decisions, Mapping):
        normalized = []
        for variant_id, value in decisions.items():
            if isinstance(value, Mapping) and "product_variant_id" not in value:
                value = {**value, "product_variant_id": variant_id}
            normalized.append(StockDecision.from_value(value))
        return normalized
    return [StockDecision.from_value(value) for value in decisions]


def _decision_for(decisions: list[StockDecision], index: int, variant_id) -> StockDecision | None:
    for decision in decisions:
        if decision.line == index:
            return decision
    if variant_id is None:
        return None
    for decision in decisions:
        if decision.line is None and decision.product_variant_id == int(variant_id):
            return decision
    return None


def plan_line(store_id: int, index: int, line, decision: StockDecision | None) -> LinePlan:
    """
    Validate one line against its decision and split it into a local part,
    transfer parts and a backorder part.

    Raises:
        InvariantViolation: if the decision is malformed or its quantities
            do not add up to the requested quantity
    """
    variant_id = _line_value(line, "product_variant_id")
    requested = _line_value(line, "quantity")
    if variant_id is None:
        raise InvariantViolation("product_variant_id is required", line=index)
    if requested is None or int(requested) <= 0:
        raise InvariantViolation("quantity must be positive", line=index)
    requested = int(requested)

    action = decision.action if decision else ACTION_SUFFICIENT
    if action not in VALID_ACTIONS:
        raise InvariantViolation(
            f"Invalid stock action '{action}'. Must be one of: {', '.join(sorted(VALID_ACTIONS))}",
            line=index,
        )
    if decision and decision.quantity is not None and int(decision.quantity) != requested:
        raise InvariantViolation(
            f"Decision quantity {decision.quantity} does not match requested quantity {requested}",
            line=index,
        )

    transfers = list(decision.transfers) if decision else []
    for spec in transfers:
        if spec.quantity <= 0:
            raise InvariantViolation("Transfer quantity must be positive", line=index)
        if spec.from_store_id == store_id:
            raise InvariantViolation("Transfer origin must differ from the ordering store", line=index)

    transfer_total = decision.transfer_quantity if decision else 0
    purchase_quantity = decision.purchase_quantity if decision else 0
    if purchase_quantity < 0:
        raise InvariantViolation("purchase_quantity must be >= 0", line=index)

    if action == ACTION_SUFFICIENT:
        if transfers or purchase_quantity:
            raise InvariantViolation("A 'sufficient' decision takes no transfers or purchase quantity", line=index)
        local_quantity, backorder_quantity = requested, 0
    elif action == ACTION_TRANSFER:
        if not transfers:
            raise InvariantViolation("A 'transfer' decision needs at least one transfer", line=index)
        if transfer_total > requested:
            raise InvariantViolation(
                f"Transfers total {transfer_total} exceeds requested quantity {requested}",
                line=index,
            )
        if purchase_quantity:
            raise InvariantViolation("A 'transfer' decision takes no purchase quantity", line=index)
        local_quantity, backorder_quantity = requested - transfer_total, 0
    elif action == ACTION_PURCHASE:
        if transfers:
            raise InvariantViolation("A 'purchase' decision takes no transfers", line=index)
        if purchase_quantity and purchase_quantity != requested:
            raise InvariantViolation(
                f"purchase_quantity {purchase_quantity} does not match requested quantity {requested}",
                line=index,
            )
        local_quantity, backorder_quantity = 0, requested
    else:
        if transfer_total + purchase_quantity != requested:
            raise InvariantViolation(
                f"Mixed decision quantities ({transfer_total} transferred + {purchase_quantity} purchased) "
                f"must equal requested quantity {requested}",
                line=index,
            )
        local_quantity, backorder_quantity = 0, purchase_quantity

    return LinePlan(
        index=index,
        line_id=_line_id(line, index),
        variant_id=int(variant_id),
        requested=requested,
        action=action,
        local_quantity=local_quantity,
        transfers=transfers,
        backorder_quantity=backorder_quantity,
    )


def plan_lines(store_id: int, lines: Iterable, decisions=None) -> list[LinePlan]:
    """
    Plan every line, matching each decision to the line(s) it governs.

    Raises:
        InvariantViolation: if a pinned decision names another variant than
            its line, or a decision matches no line at all
    """
    normalized = normalize_decisions(decisions)
    used: set[int] = set()
    plans = []
    for index, line in enumerate(lines):
        variant_id = _line_value(line, "product_variant_id")
        decision = _decision_for(normalized, index, variant_id)
        if decision is not None:
            used.add(id(decision))
            if variant_id is not None and decision.product_variant_id != int(variant_id):
                raise InvariantViolation(
                    f"Decision for variant {decision.product_variant_id} is pinned to a line "
                    f"of variant {variant_id}",
                    line=index,
                )
        plans.append(plan_line(store_id, index, line, decision))

    for decision in normalized:
        if id(decision) not in used:
            raise InvariantViolation(
                f"Decision for variant {decision.product_variant_id} matches no order line",
                line=decision.line,
            )
    return plans


def _lock_keys(store_id: int, plans: list[LinePlan]) -> set[tuple[int, int]]:
    keys = set()
    for plan in plans:
        if plan.local_quantity:
            keys.add((store_id, plan.variant_id))
        for spec in plan.transfers:
            keys.add((spec.from_store_id, plan.variant_id))
    return keys


def _mark_resolved(order: Order) -> None:
    """Stamp stock_resolved_at; raises InvariantViolation if it was already set."""
    if order.id is None:
        raise InvariantViolation("Order must be saved before its stock is resolved")

    result = db.session.execute(
        update(Order)
        .where(Order.id == order.id, Order.stock_resolved_at.is_(None))
        .values(stock_resolved_at=utcnow())
        .execution_options(synchronize_session="fetch")
    )
    if not result.rowcount:
        raise InvariantViolation(f"Order {order.order_number} stock already resolved")


def _resolve_inner(order: Order, decisions=None) -> StockResolution:
    items = list(order.items)
    plans = plan_lines(order.store_id, items, decisions)

    # Reference checks, still before any mutation
    get_store(order.store_id)
    for plan in plans:
        get_variant(plan.variant_id)
        for spec in plan.transfers:
            get_store(spec.from_store_id)

    _mark_resolved(order)
    lock_inventory_rows(_lock_keys(order.store_id, plans))

    resolution = StockResolution()
    for plan, item in zip(plans, items):
        if plan.local_quantity:
            remaining = _deduct_inner(order.store_id, plan.variant_id, plan.local_quantity, line=plan.index)
            resolution.deductions.append({
                "line": plan.index,
                "store_id": order.store_id,
                "product_variant_id": plan.variant_id,
                "quantity": plan.local_quantity,
                "remaining": remaining,
            })

        for spec in plan.transfers:
            transfer = _initiate_transfer_inner(
                from_store_id=spec.from_store_id,
                to_store_id=order.store_id,
                variant_id=plan.variant_id,
                quantity=spec.quantity,
                order_id=order.id,
                order_item_id=item.id,
                initiated_by=order.created_by,
                notes=f"Order {order.order_number} line {plan.index}",
                line=plan.index,
            )
            resolution.transfers.append(transfer)

        item.is_backorder = plan.backorder_quantity > 0
        item.backorder_quantity = plan.backorder_quantity
        item.is_stocked_sale = plan.backorder_quantity < plan.requested
        if item.is_backorder:
            resolution.backorder_items.append(item)

    current_app.logger.info(
        "Order %s stock resolved: %d deduction(s), %d transfer(s), %d backorder line(s)",
        order.order_number,
        len(resolution.deductions),
        len(resolution.transfers),
        len(resolution.backorder_items),
    )
    return resolution


def resolve_order_stock(order: Order, decisions=None, *, commit: bool = True) -> StockResolution:
    """
    Apply the stock side of an order: deductions, transfers and backorder flags.

    All-or-nothing: with commit=True this is its own transaction; with
    commit=False it joins the caller's (create_order uses this so the order
    number, the order rows and the stock moves commit together).
    """
    return run_in_transaction(lambda: _resolve_inner(order, decisions), commit=commit)


def batch_check_stock(store_id: int, lines: Iterable, decisions=None, include_backorders: bool | None = None) -> list:
    """
    Identify lines that the current stock cannot cover. Read-only.

    Requirements accumulate across lines in input order, so two lines for the
    same variant are checked against the same on-hand quantity. Lines with a
    purchase part are only checked when include_backorders is True (default:
    the BACKORDER_STOCK_PRECHECK setting); then the purchased units are
    checked against the ordering store as if they were to be taken from stock.
    """
    if include_backorders is None:
        include_backorders = bool(current_app.config.get("BACKORDER_STOCK_PRECHECK", False))

    lines = list(lines)
    plans = plan_lines(store_id, lines, decisions)

    available: dict[tuple[int, int], int] = {}

    def _available(key: tuple[int, int]) -> int:
        if key not in available:
            available[key] = get_quantity(*key)
        return available[key]

    short = []
    for plan, line in zip(plans, lines):
        needs: dict[tuple[int, int], int] = {}
        local = plan.local_quantity + (plan.backorder_quantity if include_backorders else 0)
        if local:
            needs[(store_id, plan.variant_id)] = local
        for spec in plan.transfers:
            key = (spec.from_store_id, plan.variant_id)
            needs[key] = needs.get(key, 0) + spec.quantity

        if any(qty > _available(key) for key, qty in needs.items()):
            short.append(plan.line_id)
            continue
        for key, qty in needs.items():
            available[key] -= qty

    current_app.logger.debug("Batch stock check store=%s: %d short line(s)", store_id, len(short))
    return short


def list_backorders(store_id: int | None = None, variant_id: int | None = None) -> list[OrderItem]:
    """Open backorder lines: flagged as backorder with backordered units still uncovered."""
    query = db.session.query(OrderItem).join(Order).filter(
        OrderItem.is_backorder.is_(True),
        OrderItem.fulfilled_quantity < OrderItem.backorder_quantity,
    )
    if store_id is not None:
        query = query.filter(Order.store_id == store_id)
    if variant_id is not None:
        query = query.filter(OrderItem.product_variant_id == variant_id)
    return query.order_by(OrderItem.id).all()
