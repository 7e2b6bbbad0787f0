from __future__ import annotations

from ..extensions import db
from omnistock.time_utils import to_utc_z


class Inventory(db.Model):
    """
    Per (store, variant) quantity record: the single point of truth for stock.

    INVARIANTS:
    - Unique per (store_id, product_variant_id)
    - quantity is never persisted negative (enforced by a CHECK constraint and
      by conditional decrements in inventory_service)
    - Rows are created on demand and only removed by cascade with the variant

    CONCURRENCY: Order-time deductions and purchase receipts both lock this
    row (SELECT ... FOR UPDATE, then a conditional UPDATE) so they serialize
    on the same key without blocking unrelated keys.
    """
    __tablename__ = "inventories"
    __table_args__ = (
        db.UniqueConstraint("store_id", "product_variant_id", name="uq_inventories_store_variant"),
        db.CheckConstraint("quantity >= 0", name="ck_inventories_quantity_nonneg"),
        db.CheckConstraint("low_stock_threshold >= 0", name="ck_inventories_threshold_nonneg"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    product_variant_id = db.Column(
        db.Integer,
        db.ForeignKey("product_variants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    quantity = db.Column(db.Integer, nullable=False, default=0)
    low_stock_threshold = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    store = db.relationship("Store")
    product_variant = db.relationship("ProductVariant", back_populates="inventories")

    def __repr__(self) -> str:
        return (
            f"<Inventory store_id={self.store_id} variant_id={self.product_variant_id} "
            f"quantity={self.quantity}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "product_variant_id": self.product_variant_id,
            "quantity": self.quantity,
            "low_stock_threshold": self.low_stock_threshold,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class InventoryTransfer(db.Model):
    """
    Inter-store movement of one variant.

    LIFECYCLE:
    1. pending: created; origin quantity already deducted
    2. in_transit: shipped from origin
    3. completed: arrived; consumed by the linked order line, or added to the
       destination ledger when the transfer is not tied to an order
    4. cancelled: origin quantity restored

    Transfers created while resolving an order line are created in the same
    transaction as the origin deduction.
    """
    __tablename__ = "inventory_transfers"
    __table_args__ = (
        db.CheckConstraint("from_store_id <> to_store_id", name="ck_transfers_distinct_stores"),
        db.CheckConstraint("quantity > 0", name="ck_transfers_quantity_positive"),
        db.Index("ix_transfers_status", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    from_store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    to_store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    product_variant_id = db.Column(
        db.Integer,
        db.ForeignKey("product_variants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    quantity = db.Column(db.Integer, nullable=False)

    # pending, in_transit, completed, cancelled
    status = db.Column(db.String(16), nullable=False, default="pending")

    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)
    order_item_id = db.Column(db.Integer, db.ForeignKey("order_items.id"), nullable=True, index=True)
    initiated_by = db.Column(db.Integer, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    from_store = db.relationship("Store", foreign_keys=[from_store_id])
    to_store = db.relationship("Store", foreign_keys=[to_store_id])
    product_variant = db.relationship("ProductVariant")
    order_item = db.relationship("OrderItem", backref=db.backref("transfers", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "from_store_id": self.from_store_id,
            "to_store_id": self.to_store_id,
            "product_variant_id": self.product_variant_id,
            "quantity": self.quantity,
            "status": self.status,
            "order_id": self.order_id,
            "order_item_id": self.order_item_id,
            "initiated_by": self.initiated_by,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
