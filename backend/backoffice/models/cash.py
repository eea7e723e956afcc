from __future__ import annotations

from ..extensions import db
from backoffice.time_utils import to_utc_z


MOVEMENT_INCOME = "income"
MOVEMENT_EXPENSE = "expense"
MOVEMENT_SALE = "sale"
MOVEMENT_CLOSE = "close"

# Types a caller may post through cash_service.record_movement
MANUAL_MOVEMENT_TYPES = (MOVEMENT_INCOME, MOVEMENT_EXPENSE, MOVEMENT_SALE)


class CashSession(db.Model):
    """
    Cash register session for one calendar day.

    LIFECYCLE:
    - open: accepts movements and sales
    - closed: closing count recorded; may be reopened the same day with a new
      opening amount (the row is reused, movements are kept)

    Totals and balance are never stored; cash_service computes them from the
    session's movements on read.
    """
    __tablename__ = "cash_sessions"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)

    date = db.Column(db.Date, nullable=False, unique=True)

    opening_cents = db.Column(db.Integer, nullable=False, default=0)
    closing_cents = db.Column(db.Integer, nullable=False, default=0)
    is_open = db.Column(db.Boolean, nullable=False, default=True, index=True)

    opened_at = db.Column(db.DateTime(timezone=True), nullable=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "date": self.date.isoformat() if self.date else None,
            "opening_cents": self.opening_cents,
            "closing_cents": self.closing_cents,
            "is_open": self.is_open,
            "opened_at": to_utc_z(self.opened_at) if self.opened_at else None,
            "closed_at": to_utc_z(self.closed_at) if self.closed_at else None,
            "version_id": self.version_id,
        }


class CashMovement(db.Model):
    """
    Append-only money movement inside a cash session.

    SIGN: amount_cents is positive for income and sale, negative for expense.
    MOVEMENT_CLOSE rows are audit markers written on close (amount 0) and are
    ignored by the totals.
    """
    __tablename__ = "cash_movements"
    __table_args__ = (
        db.Index("ix_cash_movements_session_occurred", "session_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.Integer, db.ForeignKey("cash_sessions.id"), nullable=False, index=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    type = db.Column(db.String(16), nullable=False, index=True)
    description = db.Column(db.String(255), nullable=False)

    # Source documents, when the movement was booked by another flow
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id", ondelete="SET NULL"), nullable=True, index=True)
    credit_note_id = db.Column(db.Integer, db.ForeignKey("credit_notes.id", ondelete="SET NULL"), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    session = db.relationship("CashSession", backref=db.backref("movements", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "amount_cents": self.amount_cents,
            "type": self.type,
            "description": self.description,
            "order_id": self.order_id,
            "credit_note_id": self.credit_note_id,
            "occurred_at": to_utc_z(self.occurred_at),
        }
