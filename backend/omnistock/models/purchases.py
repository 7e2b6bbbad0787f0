from __future__ import annotations

from ..extensions import db
from omnistock.time_utils import to_utc_z


class Purchase(db.Model):
    """
    Purchase document for goods received into one store.

    LIFECYCLE:
        pending -> confirmed -> received -> completed
        pending | confirmed | received -> cancelled

    Only the transition into completed touches inventory and cost
    accumulators. shipping_cost is split across items by quantity when the
    document is created or updated; the allocations always sum to it exactly.
    """
    __tablename__ = "purchases"
    __table_args__ = (
        db.CheckConstraint("shipping_cost >= 0", name="ck_purchases_shipping_nonneg"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    purchase_number = db.Column(db.String(32), nullable=False, unique=True, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default="pending", index=True)

    shipping_cost = db.Column(db.Integer, nullable=False, default=0)
    total_amount = db.Column(db.Integer, nullable=False, default=0)

    purchased_at = db.Column(db.DateTime(timezone=True), nullable=False)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    store = db.relationship("Store")
    items = db.relationship(
        "PurchaseItem",
        back_populates="purchase",
        cascade="all, delete-orphan",
        order_by="PurchaseItem.id",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "purchase_number": self.purchase_number,
            "store_id": self.store_id,
            "status": self.status,
            "shipping_cost": self.shipping_cost,
            "total_amount": self.total_amount,
            "purchased_at": to_utc_z(self.purchased_at),
            "completed_at": to_utc_z(self.completed_at) if self.completed_at else None,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "notes": self.notes,
            "items": [item.to_dict() for item in self.items],
        }


class PurchaseItem(db.Model):
    __tablename__ = "purchase_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_purchase_items_quantity_positive"),
        db.CheckConstraint("unit_cost >= 0", name="ck_purchase_items_unit_cost_nonneg"),
        db.CheckConstraint("allocated_shipping_cost >= 0", name="ck_purchase_items_shipping_nonneg"),
        db.CheckConstraint(
            "backorder_allocated_quantity >= 0 AND backorder_allocated_quantity <= quantity",
            name="ck_purchase_items_backorder_allocated_range",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    purchase_id = db.Column(db.Integer, db.ForeignKey("purchases.id", ondelete="CASCADE"), nullable=False, index=True)
    product_variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_cost = db.Column(db.Integer, nullable=False, default=0)
    allocated_shipping_cost = db.Column(db.Integer, nullable=False, default=0)
    # Received units handed to backorder lines instead of going on hand
    backorder_allocated_quantity = db.Column(db.Integer, nullable=False, default=0)

    purchase = db.relationship("Purchase", back_populates="items")
    product_variant = db.relationship("ProductVariant")

    @property
    def line_cost(self) -> int:
        return self.quantity * self.unit_cost

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "purchase_id": self.purchase_id,
            "product_variant_id": self.product_variant_id,
            "quantity": self.quantity,
            "unit_cost": self.unit_cost,
            "allocated_shipping_cost": self.allocated_shipping_cost,
            "backorder_allocated_quantity": self.backorder_allocated_quantity,
            "line_cost": self.line_cost,
        }
