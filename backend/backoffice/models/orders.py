from __future__ import annotations

from ..extensions import db
from backoffice.time_utils import to_utc_z


ORDER_STATUS_PENDING = "pending"
ORDER_STATUS_CONFIRMED = "confirmed"
ORDER_STATUS_CANCELED = "canceled"
ORDER_STATUS_PARTIALLY_RETURNED = "partially_returned"
ORDER_STATUS_RETURNED = "returned"

ORDER_STATUSES = (
    ORDER_STATUS_PENDING,
    ORDER_STATUS_CONFIRMED,
    ORDER_STATUS_CANCELED,
    ORDER_STATUS_PARTIALLY_RETURNED,
    ORDER_STATUS_RETURNED,
)

# Statuses reached through confirmation: stock already consumed, sale booked.
CONFIRMED_STATUSES = (
    ORDER_STATUS_CONFIRMED,
    ORDER_STATUS_PARTIALLY_RETURNED,
    ORDER_STATUS_RETURNED,
)


class Order(db.Model):
    """
    Customer order document.

    LIFECYCLE:
    - pending: items hold reservations (Product.reserved), order is editable
    - confirmed: reservations consumed into physical stock, sale registered
    - canceled: reservations released (terminal)
    - partially_returned / returned: credit notes issued against the order

    INVARIANT: total_cents == SUM(items.line_total_cents).
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.Index("ix_orders_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable document code (e.g., "PED001")
    code = db.Column(db.String(16), nullable=True, unique=True)

    status = db.Column(db.String(32), nullable=False, default=ORDER_STATUS_PENDING, index=True)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)

    total_cents = db.Column(db.Integer, nullable=False, default=0)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    confirmed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    canceled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer = db.relationship("Customer", backref=db.backref("orders", lazy=True))
    items = db.relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
        lazy=True,
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self, include_items: bool = True, include_customer: bool = False) -> dict:
        data = {
            "id": self.id,
            "code": self.code,
            "status": self.status,
            "customer_id": self.customer_id,
            "total_cents": self.total_cents,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "confirmed_at": to_utc_z(self.confirmed_at) if self.confirmed_at else None,
            "canceled_at": to_utc_z(self.canceled_at) if self.canceled_at else None,
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        if include_customer:
            data["customer"] = self.customer.to_dict() if self.customer else None
        return data


class OrderItem(db.Model):
    """
    Line of an order.

    product_name and unit_price_cents are snapshots taken when the line is
    written; later catalog edits don't change historical orders.
    discount_cents is an absolute amount for the whole line.
    """
    __tablename__ = "order_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_order_items_quantity_pos"),
        db.CheckConstraint("discount_cents >= 0", name="ck_order_items_discount_nonneg"),
        db.CheckConstraint("returned_qty >= 0", name="ck_order_items_returned_nonneg"),
        db.CheckConstraint("returned_qty <= quantity", name="ck_order_items_returned_le_qty"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id", ondelete="RESTRICT"), nullable=False, index=True)

    product_name = db.Column(db.String(255), nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    line_total_cents = db.Column(db.Integer, nullable=False)

    # Units already credited back through credit notes
    returned_qty = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    order = db.relationship("Order", back_populates="items")
    product = db.relationship("Product")

    @property
    def returnable_qty(self) -> int:
        return self.quantity - (self.returned_qty or 0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "unit_price_cents": self.unit_price_cents,
            "quantity": self.quantity,
            "discount_cents": self.discount_cents,
            "line_total_cents": self.line_total_cents,
            "returned_qty": self.returned_qty,
            "created_at": to_utc_z(self.created_at),
        }
