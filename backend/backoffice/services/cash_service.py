"""
Cash Session Manager

WHY: Every sale, refund and manual drawer movement lands in the session of a
business day. The drawer balance is never stored: it is recomputed from the
session's movements so it can't drift from them.

DESIGN PRINCIPLES:
- One session row per calendar date (reused when a closed day is reopened)
- Sessions are selected by an explicit business_date; callers that don't pass
  one get business_today() (BUSINESS_TIMEZONE)
- Movements are append-only; expense amounts are stored negative
- What happens when the day has no open session is configuration
  (CASH_SESSION_POLICY), not a per-call decision
"""

from __future__ import annotations

from datetime import date, datetime

from flask import current_app, has_app_context

from ..extensions import db
from ..models import CashSession, CashMovement
from ..models.cash import (
    MOVEMENT_INCOME,
    MOVEMENT_EXPENSE,
    MOVEMENT_SALE,
    MOVEMENT_CLOSE,
    MANUAL_MOVEMENT_TYPES,
)
from ..config import CASH_POLICY_AUTO_CREATE, CASH_POLICY_REQUIRE_OPEN
from ..errors import (
    ValidationError,
    InvalidAmountError,
    InvalidTypeError,
    AlreadyOpenError,
    NoOpenSessionError,
)
from backoffice.time_utils import utcnow, business_today
from .concurrency import lock_for_update, begin_write, run_with_retry


def _policy() -> str:
    if not has_app_context():
        return CASH_POLICY_AUTO_CREATE
    policy = current_app.config.get("CASH_SESSION_POLICY", CASH_POLICY_AUTO_CREATE)
    if policy not in (CASH_POLICY_AUTO_CREATE, CASH_POLICY_REQUIRE_OPEN):
        raise ValidationError(f"Unknown CASH_SESSION_POLICY: {policy}")
    return policy


def _require_non_negative_amount(amount_cents, field: str = "amount_cents") -> int:
    if isinstance(amount_cents, bool) or not isinstance(amount_cents, int):
        raise InvalidAmountError(f"{field} must be an integer (cents)")
    if amount_cents < 0:
        raise InvalidAmountError(f"{field} must be >= 0")
    return amount_cents


# =============================================================================
# SESSION RESOLUTION
# =============================================================================

def resolve_session(
    business_date: date | None = None,
    *,
    create: bool = False,
    lock: bool = False,
) -> CashSession | None:
    """
    Session row for a business date, optionally creating it open with opening 0.

    Never commits; a created row belongs to the caller's transaction.
    """
    business_date = business_date or business_today()

    query = db.session.query(CashSession).filter_by(date=business_date)
    if lock:
        query = lock_for_update(query)
    session = query.first()

    if session is None and create:
        session = CashSession(
            date=business_date,
            opening_cents=0,
            closing_cents=0,
            is_open=True,
            opened_at=utcnow(),
        )
        db.session.add(session)
        db.session.flush()

    return session


def require_session_for_movement(business_date: date | None = None) -> CashSession:
    """
    Locked, open session that may receive a movement on business_date.

    auto_create: a missing session is created open; a closed one rejects.
    require_open: anything but an open session rejects.
    """
    business_date = business_date or business_today()
    create = _policy() == CASH_POLICY_AUTO_CREATE

    session = resolve_session(business_date, create=create, lock=True)
    if session is None:
        raise NoOpenSessionError(
            f"No open cash session for {business_date.isoformat()}",
            details={"date": business_date.isoformat()},
        )
    if not session.is_open:
        raise NoOpenSessionError(
            f"Cash session for {business_date.isoformat()} is closed",
            details={"date": business_date.isoformat(), "session_id": session.id},
        )
    return session


# =============================================================================
# OPEN / CLOSE
# =============================================================================

def open_session(amount_cents: int, *, business_date: date | None = None) -> dict:
    """
    Open the day's session with a counted opening amount.

    A closed session for the same date is reopened in place: its movements
    are kept and the opening amount replaced.

    Raises:
        AlreadyOpenError: the day's session is already open
        InvalidAmountError: amount is not a non-negative integer
    """
    _require_non_negative_amount(amount_cents)
    business_date = business_date or business_today()

    def _op():
        begin_write()
        session = resolve_session(business_date, lock=True)
        if session is not None and session.is_open:
            raise AlreadyOpenError(
                "Cash session is already open",
                details={"date": business_date.isoformat(), "session_id": session.id},
            )

        if session is None:
            session = CashSession(date=business_date)
            db.session.add(session)

        session.opening_cents = amount_cents
        session.closing_cents = 0
        session.is_open = True
        session.opened_at = utcnow()
        session.closed_at = None

        db.session.commit()
        return session

    session = run_with_retry(_op)
    return build_report(session)


def close_session(amount_cents: int, *, business_date: date | None = None) -> dict:
    """
    Close the day's session with the counted closing amount.

    Writes a zero-amount close movement that snapshots the totals at close
    time for the audit trail.

    Raises:
        NoOpenSessionError: no open session for the date
        InvalidAmountError: amount is not a non-negative integer
    """
    _require_non_negative_amount(amount_cents)
    business_date = business_date or business_today()

    def _op():
        begin_write()
        session = resolve_session(business_date, lock=True)
        if session is None or not session.is_open:
            raise NoOpenSessionError(
                f"No open cash session for {business_date.isoformat()}",
                details={"date": business_date.isoformat()},
            )

        totals = compute_totals(session)
        summary = (
            f"Close: opening={session.opening_cents} sales={totals['total_sales_cents']} "
            f"income={totals['total_income_cents']} expense={totals['total_expense_cents']} "
            f"balance={totals['balance_cents']} counted={amount_cents}"
        )

        session.closing_cents = amount_cents
        session.is_open = False
        session.closed_at = utcnow()

        db.session.add(CashMovement(
            session_id=session.id,
            amount_cents=0,
            type=MOVEMENT_CLOSE,
            description=summary,
            occurred_at=utcnow(),
        ))
        db.session.commit()
        return session

    session = run_with_retry(_op)
    return build_report(session)


# =============================================================================
# MOVEMENTS
# =============================================================================

def _normalize_amount(amount_cents: int, movement_type: str) -> int:
    """Expenses are stored negative, income and sales positive."""
    magnitude = abs(amount_cents)
    return -magnitude if movement_type == MOVEMENT_EXPENSE else magnitude


def append_movement(
    *,
    amount_cents: int,
    type: str,
    description: str,
    business_date: date | None = None,
    occurred_at: datetime | None = None,
    order_id: int | None = None,
    credit_note_id: int | None = None,
) -> CashMovement:
    """
    Validate and append a movement to the day's session (no commit).

    Used by record_movement and by the order / credit note transactions.
    """
    if isinstance(amount_cents, bool) or not isinstance(amount_cents, int) or amount_cents == 0:
        raise InvalidAmountError(
            "amount_cents must be a non-zero integer (cents)",
            details={"amount_cents": amount_cents},
        )
    if type not in MANUAL_MOVEMENT_TYPES:
        raise InvalidTypeError(
            f"Invalid movement type: {type}. Must be one of {list(MANUAL_MOVEMENT_TYPES)}",
            details={"type": type},
        )
    if not description or not str(description).strip():
        raise ValidationError("description is required")

    session = require_session_for_movement(business_date)

    movement = CashMovement(
        session_id=session.id,
        amount_cents=_normalize_amount(amount_cents, type),
        type=type,
        description=str(description).strip()[:255],
        order_id=order_id,
        credit_note_id=credit_note_id,
        occurred_at=occurred_at or utcnow(),
    )
    db.session.add(movement)
    db.session.flush()
    return movement


def record_movement(
    amount_cents: int,
    type: str,
    description: str,
    *,
    occurred_at: datetime | None = None,
    business_date: date | None = None,
) -> CashMovement:
    """Manual drawer movement (own transaction)."""
    def _op():
        begin_write()
        movement = append_movement(
            amount_cents=amount_cents,
            type=type,
            description=description,
            business_date=business_date,
            occurred_at=occurred_at,
        )
        db.session.commit()
        return movement

    return run_with_retry(_op)


def register_sale(
    total_cents: int,
    description: str,
    *,
    order_id: int | None = None,
    business_date: date | None = None,
) -> CashMovement:
    """Sale movement for a confirmed order. Runs in the caller's transaction."""
    return append_movement(
        amount_cents=total_cents,
        type=MOVEMENT_SALE,
        description=description,
        business_date=business_date,
        order_id=order_id,
    )


def register_refund(
    total_cents: int,
    description: str,
    *,
    credit_note_id: int | None = None,
    order_id: int | None = None,
    business_date: date | None = None,
) -> CashMovement:
    """Cash paid back for a credit note (expense). Runs in the caller's transaction."""
    return append_movement(
        amount_cents=total_cents,
        type=MOVEMENT_EXPENSE,
        description=description,
        business_date=business_date,
        order_id=order_id,
        credit_note_id=credit_note_id,
    )


# =============================================================================
# REPORTS
# =============================================================================

def _session_movements(session: CashSession, *, newest_first: bool = False) -> list[CashMovement]:
    order = (
        (CashMovement.occurred_at.desc(), CashMovement.id.desc())
        if newest_first
        else (CashMovement.occurred_at.asc(), CashMovement.id.asc())
    )
    return (
        db.session.query(CashMovement)
        .filter(CashMovement.session_id == session.id)
        .order_by(*order)
        .all()
    )


def compute_totals(session: CashSession | None, movements: list[CashMovement] | None = None) -> dict:
    """
    Totals of a session: balance = opening + income + sales - expense.

    close movements are audit markers and never count.
    """
    totals = {
        "total_income_cents": 0,
        "total_expense_cents": 0,
        "total_sales_cents": 0,
    }
    if session is None:
        totals["balance_cents"] = 0
        return totals

    if movements is None:
        movements = _session_movements(session)

    for movement in movements:
        if movement.type == MOVEMENT_EXPENSE:
            totals["total_expense_cents"] += abs(movement.amount_cents)
        elif movement.type == MOVEMENT_SALE:
            totals["total_sales_cents"] += movement.amount_cents
        elif movement.type == MOVEMENT_INCOME:
            totals["total_income_cents"] += movement.amount_cents

    totals["balance_cents"] = (
        session.opening_cents
        + totals["total_income_cents"]
        + totals["total_sales_cents"]
        - totals["total_expense_cents"]
    )
    return totals


def build_report(session: CashSession | None, business_date: date | None = None) -> dict:
    """Report dict for a session; a date without a session reports zeros."""
    movements = _session_movements(session) if session is not None else []
    totals = compute_totals(session, movements)

    report_date = session.date if session is not None else (business_date or business_today())
    return {
        "date": report_date.isoformat(),
        "session": session.to_dict() if session is not None else None,
        "opening_cents": session.opening_cents if session is not None else 0,
        "closing_cents": session.closing_cents if session is not None else 0,
        "is_open": bool(session.is_open) if session is not None else False,
        **totals,
        "movements": [m.to_dict() for m in movements],
    }


def get_report(business_date: date) -> dict:
    """Report for a date. Reads never create a session."""
    return build_report(resolve_session(business_date), business_date)


def current_report() -> dict:
    return get_report(business_today())


def list_movements(business_date: date | None = None) -> list[CashMovement]:
    """Movements of a day's session, newest first."""
    session = resolve_session(business_date or business_today())
    if session is None:
        return []
    return _session_movements(session, newest_first=True)
