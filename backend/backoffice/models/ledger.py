from __future__ import annotations

from ..extensions import db
from backoffice.time_utils import to_utc_z


LEDGER_TYPE_ORDER = "order"
LEDGER_TYPE_PAYMENT = "payment"
LEDGER_TYPE_CREDIT_NOTE = "credit_note"
LEDGER_TYPE_ADJUSTMENT = "adjustment"

LEDGER_TYPES = (
    LEDGER_TYPE_ORDER,
    LEDGER_TYPE_PAYMENT,
    LEDGER_TYPE_CREDIT_NOTE,
    LEDGER_TYPE_ADJUSTMENT,
)

# Source documents an entry can point at
LEDGER_SOURCE_TYPES = LEDGER_TYPES


class LedgerEntry(db.Model):
    """
    Customer ledger entry (cuenta corriente).

    Append-only: rows are never updated or deleted by the application.

    SIGN: positive amount_cents increases what the customer owes (order
    charges); payments and credit notes are negative.

    customer_id is a weak reference (no foreign key) so entries survive the
    customer row; source_type/source_id identify the document that produced
    the entry.
    """
    __tablename__ = "ledger_entries"
    __table_args__ = (
        db.Index("ix_ledger_entries_source", "source_type", "source_id"),
        db.Index("ix_ledger_entries_customer_date", "customer_id", "date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    customer_id = db.Column(db.Integer, nullable=True, index=True)

    date = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    type = db.Column(db.String(32), nullable=False, index=True)
    source_type = db.Column(db.String(32), nullable=False)
    source_id = db.Column(db.String(64), nullable=False)

    amount_cents = db.Column(db.Integer, nullable=False)
    description = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "date": to_utc_z(self.date),
            "type": self.type,
            "source_type": self.source_type,
            "source_id": self.source_id,
            "amount_cents": self.amount_cents,
            "description": self.description,
            "created_at": to_utc_z(self.created_at),
        }
