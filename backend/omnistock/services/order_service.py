# Overview: Order creation; draws the order number and resolves stock in one transaction.

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import Order, OrderItem
from ..money import require_cents
from .concurrency import run_in_transaction
from .errors import InvariantViolation, NotFound
from .inventory_service import get_store, get_variant
from .number_service import next_order_number
from .stock_decision_service import StockResolution, resolve_order_stock


__all__ = ["create_order", "get_order", "next_order_number"]


def _build_items(lines: list[dict]) -> list[OrderItem]:
    if not lines:
        raise InvariantViolation("Order must have at least one item")

    items = []
    for index, line in enumerate(lines):
        variant_id = line.get("product_variant_id")
        if variant_id is None:
            raise InvariantViolation("product_variant_id is required", line=index)
        quantity = int(line.get("quantity") or 0)
        if quantity <= 0:
            raise InvariantViolation("quantity must be positive", line=index)

        variant = get_variant(int(variant_id))
        price = require_cents(line.get("price"), "price", default=variant.price, line=index)

        items.append(OrderItem(
            product_variant_id=variant.id,
            product_name=line.get("product_name") or (variant.product.name if variant.product else variant.sku),
            sku=line.get("sku") or variant.sku,
            price=price,
            # Snapshot so later receipts do not rewrite this order's margin
            cost=variant.average_cost or 0,
            quantity=quantity,
        ))
    return items


def create_order(data: dict, *, created_by: int | None = None) -> tuple[Order, StockResolution]:
    """
    Create an order and apply its stock decisions atomically.

    data keys: store_id, items [{product_variant_id, quantity, price?,
    product_name?, sku?}], stock_decisions?, customer_id?, shipping_fee?,
    discount_amount?, order_date? (period for the order number).

    The order number, the order rows, every deduction and every transfer
    commit together. On any failure nothing persists, including the number:
    the next order is issued the same value again.
    """
    store_id = data.get("store_id")
    if store_id is None:
        raise InvariantViolation("store_id is required")
    shipping_fee = require_cents(data.get("shipping_fee"), "shipping_fee")
    discount_amount = require_cents(data.get("discount_amount"), "discount_amount")

    def _op() -> tuple[Order, StockResolution]:
        get_store(int(store_id))
        items = _build_items(data.get("items") or [])
        subtotal = sum(item.price * item.quantity for item in items)
        if discount_amount > subtotal + shipping_fee:
            raise InvariantViolation("discount_amount exceeds the order total")

        order = Order(
            order_number=next_order_number(data.get("order_date"), commit=False),
            store_id=int(store_id),
            customer_id=data.get("customer_id"),
            status="pending",
            subtotal=subtotal,
            shipping_fee=shipping_fee,
            discount_amount=discount_amount,
            grand_total=subtotal + shipping_fee - discount_amount,
            created_by=created_by,
        )
        order.items = items
        db.session.add(order)
        db.session.flush()  # item IDs are needed to link transfers

        resolution = resolve_order_stock(order, data.get("stock_decisions"), commit=False)
        return order, resolution

    order, resolution = run_in_transaction(_op)
    current_app.logger.info(
        "Order %s created at store %s: %d line(s), grand_total=%d",
        order.order_number, order.store_id, len(order.items), order.grand_total,
    )
    return order, resolution


def get_order(order_id: int) -> Order:
    order = db.session.get(Order, order_id)
    if order is None:
        raise NotFound("Order", order_id)
    return order
