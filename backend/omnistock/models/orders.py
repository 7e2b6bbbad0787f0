from __future__ import annotations

from ..extensions import db
from omnistock.time_utils import to_utc_z


class Order(db.Model):
    """
    Customer order placed at one store.

    order_number is drawn from the "order" sequence counter for the order's
    month ("YYYYMM-NNNN"). Totals are integer cents.
    """
    __tablename__ = "orders"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(32), nullable=False, unique=True, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, nullable=True, index=True)

    # pending, confirmed, cancelled (order workflow beyond creation is external)
    status = db.Column(db.String(16), nullable=False, default="pending")

    subtotal = db.Column(db.Integer, nullable=False, default=0)
    shipping_fee = db.Column(db.Integer, nullable=False, default=0)
    discount_amount = db.Column(db.Integer, nullable=False, default=0)
    grand_total = db.Column(db.Integer, nullable=False, default=0)

    created_by = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    # Set once the order's stock decisions have been applied
    stock_resolved_at = db.Column(db.DateTime(timezone=True), nullable=True)

    store = db.relationship("Store")
    items = db.relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_number": self.order_number,
            "store_id": self.store_id,
            "customer_id": self.customer_id,
            "status": self.status,
            "subtotal": self.subtotal,
            "shipping_fee": self.shipping_fee,
            "discount_amount": self.discount_amount,
            "grand_total": self.grand_total,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
            "stock_resolved_at": to_utc_z(self.stock_resolved_at),
            "items": [item.to_dict() for item in self.items],
        }


class OrderItem(db.Model):
    """
    One order line.

    STOCK FLAGS:
    - is_stocked_sale: line is (at least partly) satisfied from stock or transfer
    - is_backorder: line (or backorder_quantity of it) waits on a purchase
    - fulfilled_quantity: backordered units since covered by received purchases
      (allocated FIFO on purchase completion)

    cost is the variant's average cost snapshot at order time, so profit can
    be computed later without re-reading a moving average.
    """
    __tablename__ = "order_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),
        db.CheckConstraint("backorder_quantity >= 0", name="ck_order_items_backorder_nonneg"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=True, index=True)

    product_name = db.Column(db.String(255), nullable=False)
    sku = db.Column(db.String(64), nullable=False)
    price = db.Column(db.Integer, nullable=False, default=0)
    cost = db.Column(db.Integer, nullable=False, default=0)
    quantity = db.Column(db.Integer, nullable=False)

    is_stocked_sale = db.Column(db.Boolean, nullable=False, default=True)
    is_backorder = db.Column(db.Boolean, nullable=False, default=False, index=True)
    backorder_quantity = db.Column(db.Integer, nullable=False, default=0)
    fulfilled_quantity = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    order = db.relationship("Order", back_populates="items")
    product_variant = db.relationship("ProductVariant")

    @property
    def line_total(self) -> int:
        return self.price * self.quantity

    @property
    def open_backorder_quantity(self) -> int:
        return max(0, (self.backorder_quantity or 0) - (self.fulfilled_quantity or 0))

    @property
    def is_fully_fulfilled(self) -> bool:
        return self.open_backorder_quantity == 0

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_variant_id": self.product_variant_id,
            "product_name": self.product_name,
            "sku": self.sku,
            "price": self.price,
            "cost": self.cost,
            "quantity": self.quantity,
            "line_total": self.line_total,
            "is_stocked_sale": self.is_stocked_sale,
            "is_backorder": self.is_backorder,
            "backorder_quantity": self.backorder_quantity,
            "fulfilled_quantity": self.fulfilled_quantity,
            "open_backorder_quantity": self.open_backorder_quantity,
        }
