# Overview: Service-layer operations for customers; account data and balance-moving postings.

from __future__ import annotations

import uuid

from ..extensions import db
from ..models import Customer, Order
from ..models.ledger import LEDGER_TYPE_PAYMENT, LEDGER_TYPE_ADJUSTMENT
from ..models.cash import MOVEMENT_INCOME
from ..errors import ValidationError, NotFoundError, InvalidStateError
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_customer,
    coerce_int,
)
from .concurrency import begin_write, run_with_retry
from .order_service import PAYMENT_METHODS, PAYMENT_METHOD_CASH
from . import ledger_service, cash_service


CUSTOMER_POLICY = ModelValidationPolicy(
    writable_fields=frozenset({"name", "phone", "phone2", "email", "address", "postal_code", "notes"}),
    required_on_create=frozenset({"name"}),
)


def get_customer(customer_id: int) -> Customer:
    customer = db.session.get(Customer, customer_id)
    if customer is None:
        raise NotFoundError(f"Customer {customer_id} not found", details={"customer_id": customer_id})
    return customer


def create_customer(payload: dict) -> Customer:
    patch = validate_payload(model=Customer, payload=payload, policy=CUSTOMER_POLICY, partial=False)
    enforce_rules_customer(patch)

    def _op():
        begin_write()
        customer = Customer(**patch)
        customer.balance_cents = 0
        db.session.add(customer)
        db.session.commit()
        return customer

    return run_with_retry(_op)


def update_customer(customer_id: int, payload: dict) -> Customer:
    """balance_cents is not writable here; it only moves through ledger entries."""
    patch = validate_payload(model=Customer, payload=payload, policy=CUSTOMER_POLICY, partial=True)
    enforce_rules_customer(patch)

    def _op():
        begin_write()
        customer = get_customer(customer_id)
        for key, value in patch.items():
            setattr(customer, key, value)
        db.session.commit()
        return customer

    return run_with_retry(_op)


def delete_customer(customer_id: int) -> None:
    """
    Delete a customer with no orders.

    Ledger entries reference customers by id only and are kept.
    """
    def _op():
        begin_write()
        customer = get_customer(customer_id)
        order_count = db.session.query(Order).filter(Order.customer_id == customer_id).count()
        if order_count:
            raise InvalidStateError(
                "Customer has orders and can't be deleted",
                details={"customer_id": customer_id, "orders": order_count},
            )
        db.session.delete(customer)
        db.session.commit()

    run_with_retry(_op)


def get_balance(customer_id: int) -> dict:
    customer = get_customer(customer_id)
    return {
        "customer_id": customer.id,
        "balance_cents": customer.balance_cents,
        "ledger_balance_cents": ledger_service.customer_balance(customer.id),
    }


def record_payment(
    customer_id: int,
    amount_cents,
    *,
    method: str = PAYMENT_METHOD_CASH,
    description: str | None = None,
):
    """
    Customer pays towards their account.

    Posts a payment entry of -amount; cash payments also enter the drawer as
    an income movement in the same transaction.
    """
    amount_cents = coerce_int(amount_cents, "amount_cents", minimum=1)
    if method not in PAYMENT_METHODS:
        raise ValidationError(
            f"method must be one of {list(PAYMENT_METHODS)}",
            details={"method": method},
        )

    def _op():
        begin_write()
        entry = ledger_service.record_entry(
            customer_id=customer_id,
            type=LEDGER_TYPE_PAYMENT,
            source_type=LEDGER_TYPE_PAYMENT,
            source_id=uuid.uuid4().hex,
            amount_cents=-amount_cents,
            description=description or f"Payment ({method})",
        )
        if method == PAYMENT_METHOD_CASH:
            cash_service.append_movement(
                amount_cents=amount_cents,
                type=MOVEMENT_INCOME,
                description=f"Customer payment #{customer_id}",
            )

        db.session.commit()
        return entry

    return run_with_retry(_op)


def adjust_balance(customer_id: int, amount_cents, *, reason: str | None = None):
    """Manual correction of a customer's balance (signed, non-zero)."""
    amount_cents = coerce_int(amount_cents, "amount_cents")
    if amount_cents == 0:
        raise ValidationError("amount_cents must be non-zero")

    def _op():
        begin_write()
        entry = ledger_service.record_entry(
            customer_id=customer_id,
            type=LEDGER_TYPE_ADJUSTMENT,
            source_type=LEDGER_TYPE_ADJUSTMENT,
            source_id=uuid.uuid4().hex,
            amount_cents=amount_cents,
            description=reason or "Balance adjustment",
        )
        db.session.commit()
        return entry

    return run_with_retry(_op)
