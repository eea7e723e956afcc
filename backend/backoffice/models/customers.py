from __future__ import annotations

from ..extensions import db
from backoffice.time_utils import to_utc_z


class Customer(db.Model):
    """
    Customer account.

    balance_cents is a denormalized running total of the customer's ledger
    entries (positive = the customer owes the store). It is only ever changed
    by ledger_service.record_entry, in the same transaction that appends the
    entry, so it always equals SUM(ledger_entries.amount_cents).
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.Index("ix_customers_name", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(32), nullable=True)
    phone2 = db.Column(db.String(32), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    address = db.Column(db.String(255), nullable=True)
    postal_code = db.Column(db.String(16), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    balance_cents = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "phone": self.phone,
            "phone2": self.phone2,
            "email": self.email,
            "address": self.address,
            "postal_code": self.postal_code,
            "notes": self.notes,
            "balance_cents": self.balance_cents,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
