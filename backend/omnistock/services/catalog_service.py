# Overview: Store, product and variant creation; keeps the inventory ledger complete.

"""
Every (store, variant) pair gets its ledger row at quantity 0 as soon as
both exist, so order-time stock checks never have to special-case a
missing row.
"""

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import Product, ProductVariant, Store
from .concurrency import run_in_transaction
from .errors import InvariantViolation, NotFound
from .inventory_service import _ensure_inventory_inner


def create_store(name: str, code: str | None = None) -> Store:
    if not name or not name.strip():
        raise InvariantViolation("Store name is required")

    def _op() -> Store:
        store = Store(name=name.strip(), code=code)
        db.session.add(store)
        db.session.flush()  # Get ID

        for variant_id, in db.session.query(ProductVariant.id).order_by(ProductVariant.id):
            _ensure_inventory_inner(store.id, variant_id)
        return store

    store = run_in_transaction(_op)
    current_app.logger.info("Store %s created: %s", store.id, store.name)
    return store


def create_product(name: str, description: str | None = None) -> Product:
    if not name or not name.strip():
        raise InvariantViolation("Product name is required")

    def _op() -> Product:
        product = Product(name=name.strip(), description=description)
        db.session.add(product)
        return product

    return run_in_transaction(_op)


def create_variant(
    product_id: int,
    sku: str,
    *,
    name: str | None = None,
    price: int = 0,
    low_stock_threshold: int = 0,
) -> ProductVariant:
    """Create a variant and a zero-quantity ledger row for it in every store."""
    if not sku or not sku.strip():
        raise InvariantViolation("SKU is required")
    if price < 0:
        raise InvariantViolation("price must be >= 0")
    if low_stock_threshold < 0:
        raise InvariantViolation("low_stock_threshold must be >= 0")

    def _op() -> ProductVariant:
        if db.session.get(Product, product_id) is None:
            raise NotFound("Product", product_id)
        if db.session.query(ProductVariant.id).filter_by(sku=sku.strip()).first():
            raise InvariantViolation(f"SKU '{sku}' already exists")

        variant = ProductVariant(product_id=product_id, sku=sku.strip(), name=name, price=price)
        db.session.add(variant)
        db.session.flush()  # Get ID

        for store_id, in db.session.query(Store.id).order_by(Store.id):
            _ensure_inventory_inner(store_id, variant.id, low_stock_threshold)
        return variant

    variant = run_in_transaction(_op)
    current_app.logger.info("Variant %s created: sku=%s", variant.id, variant.sku)
    return variant
