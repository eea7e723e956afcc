from __future__ import annotations

from ..extensions import db
from backoffice.time_utils import to_utc_z


REFUND_METHOD_CASH = "cash"
REFUND_METHOD_CREDIT = "credit"
REFUND_METHODS = (REFUND_METHOD_CASH, REFUND_METHOD_CREDIT)

CREDIT_NOTE_STATUS_CREATED = "created"


class CreditNote(db.Model):
    """
    Credit note (return) issued against a confirmed order.

    Amounts on the header are stored NEGATIVE, the way they are booked;
    line amounts are positive magnitudes of what was returned.

    refund_method:
    - cash: money leaves the drawer (expense movement in the cash session)
    - credit: the customer's ledger balance is reduced, nothing leaves the drawer

    Both methods post the negative ledger entry.
    """
    __tablename__ = "credit_notes"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable document number (e.g., "NC0001")
    number = db.Column(db.String(16), nullable=False, unique=True)

    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, nullable=True, index=True)

    refund_method = db.Column(db.String(16), nullable=False)
    reason = db.Column(db.Text, nullable=True)

    subtotal_cents = db.Column(db.Integer, nullable=False)
    tax_cents = db.Column(db.Integer, nullable=False)
    total_cents = db.Column(db.Integer, nullable=False)

    status = db.Column(db.String(16), nullable=False, default=CREDIT_NOTE_STATUS_CREATED)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    order = db.relationship("Order", backref=db.backref("credit_notes", lazy=True))
    lines = db.relationship(
        "CreditNoteLine",
        back_populates="credit_note",
        cascade="all, delete-orphan",
        order_by="CreditNoteLine.id",
        lazy=True,
    )

    def to_dict(self, include_lines: bool = True) -> dict:
        data = {
            "id": self.id,
            "number": self.number,
            "order_id": self.order_id,
            "customer_id": self.customer_id,
            "refund_method": self.refund_method,
            "reason": self.reason,
            "subtotal_cents": self.subtotal_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        return data


class CreditNoteLine(db.Model):
    """Returned quantity of one order item, with the amounts it produced."""
    __tablename__ = "credit_note_lines"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_credit_note_lines_quantity_pos"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    credit_note_id = db.Column(db.Integer, db.ForeignKey("credit_notes.id", ondelete="CASCADE"), nullable=False, index=True)
    order_item_id = db.Column(db.Integer, db.ForeignKey("order_items.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_rate_bps = db.Column(db.Integer, nullable=False)

    base_cents = db.Column(db.Integer, nullable=False)  # unit * qty - discount, before tax
    tax_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    credit_note = db.relationship("CreditNote", back_populates="lines")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "credit_note_id": self.credit_note_id,
            "order_item_id": self.order_item_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "discount_cents": self.discount_cents,
            "tax_rate_bps": self.tax_rate_bps,
            "base_cents": self.base_cents,
            "tax_cents": self.tax_cents,
            "line_total_cents": self.line_total_cents,
        }


class DocumentSequence(db.Model):
    """
    Per-document-type counter backing human-readable numbers.

    next_number is advanced with an atomic UPDATE so concurrent creators never
    receive the same number.
    """
    __tablename__ = "document_sequences"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    document_type = db.Column(db.String(32), nullable=False, unique=True)
    next_number = db.Column(db.Integer, nullable=False, default=1)
