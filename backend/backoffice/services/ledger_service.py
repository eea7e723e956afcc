# Overview: Service-layer operations for the customer ledger; append-only signed entries.

from __future__ import annotations

from datetime import datetime

from sqlalchemy import func, or_, cast, String

from ..extensions import db
from ..models import Customer, LedgerEntry
from ..models.ledger import LEDGER_TYPES, LEDGER_SOURCE_TYPES
from ..errors import ValidationError, NotFoundError
from backoffice.time_utils import utcnow
from .concurrency import lock_for_update
"""
Customer Ledger Invariants (authoritative)

- Append-only: entries are never updated or deleted.
- Sign: positive amount increases what the customer owes (order charges);
  payments and credit notes are negative; adjustments carry their own sign.
- Customer.balance_cents == SUM(amount_cents) of the customer's entries.
  record_entry updates the column under a row lock in the same transaction
  that inserts the entry; nothing else writes balance_cents.
- record_entry never commits: the entry belongs to the document transaction
  (order confirmation, credit note, payment) that produced it.
"""

MAX_PAGE_SIZE = 500
DEFAULT_PAGE_SIZE = 20


def record_entry(
    *,
    customer_id: int | None,
    type: str,
    source_type: str,
    source_id,
    amount_cents: int,
    description: str | None = None,
    occurred_at: datetime | None = None,
) -> LedgerEntry:
    """
    Append a ledger entry and keep the customer's balance column in step.

    No business validation beyond the enums and a required source_id; callers
    own the meaning of the amount.
    """
    if type not in LEDGER_TYPES:
        raise ValidationError(f"Invalid ledger type: {type}. Must be one of {list(LEDGER_TYPES)}")
    if source_type not in LEDGER_SOURCE_TYPES:
        raise ValidationError(f"Invalid ledger source_type: {source_type}")
    if source_id is None or str(source_id).strip() == "":
        raise ValidationError("source_id is required")
    if isinstance(amount_cents, bool) or not isinstance(amount_cents, int):
        raise ValidationError("amount_cents must be an integer")

    if customer_id is not None:
        customer = lock_for_update(db.session.query(Customer).filter_by(id=customer_id)).first()
        if customer is None:
            raise NotFoundError(f"Customer {customer_id} not found")
        customer.balance_cents = (customer.balance_cents or 0) + amount_cents

    entry = LedgerEntry(
        customer_id=customer_id,
        date=occurred_at or utcnow(),
        type=type,
        source_type=source_type,
        source_id=str(source_id),
        amount_cents=amount_cents,
        description=description,
    )
    db.session.add(entry)
    db.session.flush()  # ensures entry.id is assigned without committing
    return entry


def _apply_filters(
    query,
    *,
    customer_id: int | None = None,
    type: str | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    q: str | None = None,
):
    if customer_id is not None:
        query = query.filter(LedgerEntry.customer_id == customer_id)
    if type:
        if type not in LEDGER_TYPES:
            raise ValidationError(f"Invalid ledger type: {type}")
        query = query.filter(LedgerEntry.type == type)
    if date_from is not None:
        query = query.filter(LedgerEntry.date >= date_from)
    if date_to is not None:
        query = query.filter(LedgerEntry.date <= date_to)
    if q:
        pattern = f"%{q.strip()}%"
        query = query.filter(
            or_(
                LedgerEntry.description.ilike(pattern),
                cast(LedgerEntry.source_id, String).ilike(pattern),
            )
        )
    return query


def list_entries(
    *,
    customer_id: int | None = None,
    type: str | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    q: str | None = None,
    page: int = 1,
    page_size: int = DEFAULT_PAGE_SIZE,
) -> dict:
    """
    Filtered, paginated entries plus the balance of the whole filtered set.

    The balance ignores pagination: it is what the filters select, summed.
    """
    page = max(1, int(page or 1))
    page_size = min(MAX_PAGE_SIZE, max(1, int(page_size or DEFAULT_PAGE_SIZE)))

    filters = dict(customer_id=customer_id, type=type, date_from=date_from, date_to=date_to, q=q)

    base = _apply_filters(db.session.query(LedgerEntry), **filters)
    total = base.count()
    items = (
        base.order_by(LedgerEntry.date.desc(), LedgerEntry.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )

    balance = _apply_filters(
        db.session.query(func.coalesce(func.sum(LedgerEntry.amount_cents), 0)),
        **filters,
    ).scalar()

    return {
        "items": [entry.to_dict() for entry in items],
        "total": total,
        "page": page,
        "page_size": page_size,
        "balance_cents": int(balance or 0),
    }


def customer_balance(customer_id: int) -> int:
    """Balance computed from the entries (not the denormalized column)."""
    value = db.session.query(
        func.coalesce(func.sum(LedgerEntry.amount_cents), 0)
    ).filter(LedgerEntry.customer_id == customer_id).scalar()
    return int(value or 0)


def find_balance_mismatches() -> list[dict]:
    """
    Customers whose balance column disagrees with their ledger entries.

    Empty in a healthy database; anything listed needs reconciliation.
    """
    sums = (
        db.session.query(
            LedgerEntry.customer_id.label("customer_id"),
            func.sum(LedgerEntry.amount_cents).label("ledger_cents"),
        )
        .filter(LedgerEntry.customer_id.isnot(None))
        .group_by(LedgerEntry.customer_id)
        .subquery()
    )

    rows = (
        db.session.query(
            Customer.id,
            Customer.name,
            Customer.balance_cents,
            func.coalesce(sums.c.ledger_cents, 0),
        )
        .outerjoin(sums, sums.c.customer_id == Customer.id)
        .order_by(Customer.id)
        .all()
    )

    mismatches = []
    for customer_id, name, balance_cents, ledger_cents in rows:
        ledger_cents = int(ledger_cents or 0)
        if (balance_cents or 0) != ledger_cents:
            mismatches.append({
                "customer_id": customer_id,
                "name": name,
                "balance_cents": balance_cents,
                "ledger_cents": ledger_cents,
                "difference_cents": (balance_cents or 0) - ledger_cents,
            })
    return mismatches
