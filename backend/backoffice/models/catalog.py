from __future__ import annotations

from ..extensions import db
from backoffice.time_utils import to_utc_z


class Product(db.Model):
    """
    Product master data with its stock counters.

    STOCK MODEL:
    - stock: physical units on hand
    - reserved: units promised to pending orders but not yet handed over
    - available = max(0, stock - reserved) is derived, never stored

    INVARIANT: 0 <= reserved <= stock after every committed transaction.
    Enforced by the check constraints below and by inventory_service, which is
    the only code allowed to mutate the counters (always under a row lock).
    """
    __tablename__ = "products"
    __table_args__ = (
        db.CheckConstraint("stock >= 0", name="ck_products_stock_nonneg"),
        db.CheckConstraint("reserved >= 0", name="ck_products_reserved_nonneg"),
        db.CheckConstraint("reserved <= stock", name="ck_products_reserved_le_stock"),
        db.CheckConstraint("price_cents >= 0", name="ck_products_price_nonneg"),
        db.Index("ix_products_name", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Three uppercase letters + three digits (e.g. "ABC123")
    sku = db.Column(db.String(6), nullable=False, unique=True)
    name = db.Column(db.String(255), nullable=False)

    # Authoritative storage in cents (frontend may only format for display)
    price_cents = db.Column(db.Integer, nullable=False, default=0)

    stock = db.Column(db.Integer, nullable=False, default=0)
    reserved = db.Column(db.Integer, nullable=False, default=0)

    category = db.Column(db.String(120), nullable=True)
    barcode = db.Column(db.String(64), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def available(self) -> int:
        return max(0, (self.stock or 0) - (self.reserved or 0))

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} stock={self.stock} reserved={self.reserved}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sku": self.sku,
            "name": self.name,
            "price_cents": self.price_cents,
            "stock": self.stock,
            "reserved": self.reserved,
            "available": self.available,
            "category": self.category,
            "barcode": self.barcode,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
