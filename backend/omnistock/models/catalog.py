from __future__ import annotations

from ..extensions import db
from omnistock.time_utils import to_utc_z


class Store(db.Model):
    """
    Physical store holding its own inventory.

    Every (store, variant) pair has at most one Inventory row; stores are the
    origin and destination of inventory transfers and the receiving location
    of purchases.
    """
    __tablename__ = "stores"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False, unique=True)
    code = db.Column(db.String(32), nullable=True, unique=True, index=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Store id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "created_at": to_utc_z(self.created_at),
        }


class Product(db.Model):
    __tablename__ = "products"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "created_at": to_utc_z(self.created_at),
        }


class ProductVariant(db.Model):
    """
    Sellable variant (SKU) of a product.

    COST ACCUMULATOR: total_purchased_quantity and total_cost_amount are
    running totals over every completed purchase receipt. average_cost is
    derived from them (total_cost_amount / total_purchased_quantity, half-up)
    and stored so readers do not recompute it. Only purchase completion
    mutates these three columns.

    All money columns are integer cents.
    """
    __tablename__ = "product_variants"
    __table_args__ = (
        db.CheckConstraint("total_purchased_quantity >= 0", name="ck_variants_total_qty_nonneg"),
        db.CheckConstraint("total_cost_amount >= 0", name="ck_variants_total_cost_nonneg"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    sku = db.Column(db.String(64), nullable=False, unique=True)
    name = db.Column(db.String(255), nullable=True)
    price = db.Column(db.Integer, nullable=False, default=0)

    total_purchased_quantity = db.Column(db.Integer, nullable=False, default=0)
    total_cost_amount = db.Column(db.BigInteger, nullable=False, default=0)
    average_cost = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product", backref=db.backref("variants", lazy=True, cascade="all, delete-orphan"))
    inventories = db.relationship(
        "Inventory",
        back_populates="product_variant",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return f"<ProductVariant id={self.id} sku={self.sku!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "sku": self.sku,
            "name": self.name,
            "price": self.price,
            "total_purchased_quantity": self.total_purchased_quantity,
            "total_cost_amount": self.total_cost_amount,
            "average_cost": self.average_cost,
            "created_at": to_utc_z(self.created_at),
        }
