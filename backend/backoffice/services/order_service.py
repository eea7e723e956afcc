# Overview: Service-layer operations for the order lifecycle; reservations, confirmation and checkout.

from __future__ import annotations

from datetime import date

from ..extensions import db
from ..models import Order, OrderItem, Customer, Product
from ..models.orders import (
    ORDER_STATUS_PENDING,
    ORDER_STATUS_CONFIRMED,
    ORDER_STATUS_CANCELED,
    ORDER_STATUSES,
    CONFIRMED_STATUSES,
)
from ..models.ledger import LEDGER_TYPE_ORDER, LEDGER_TYPE_PAYMENT
from ..errors import (
    ValidationError,
    NotFoundError,
    OrderNotFoundError,
    InvalidStateError,
    InsufficientPaymentError,
)
from ..validation import coerce_int, optional_int
from backoffice.time_utils import utcnow
from .concurrency import lock_for_update, begin_write, run_with_retry
from .document_service import DOCUMENT_TYPE_ORDER, next_document_number, parse_document_number
from . import inventory_service, cash_service, ledger_service
"""
Order Lifecycle Invariants (authoritative)

States:
- pending -> confirmed | canceled
- confirmed -> partially_returned -> returned (credit notes only)
- canceled and returned are terminal

Counters:
- A pending order holds Product.reserved for each of its items.
- Confirming consumes the reservation (stock and reserved both drop).
- Canceling releases it (reserved drops, stock untouched).

Transactions:
- Every public operation is one transaction; any exception rolls back all of
  it (run_with_retry rolls back before re-raising).
- Lock order: order row, then product rows in ascending id.
- Confirmation books the sale movement and the customer's ledger charge in the
  same transaction as the stock consumption.

Totals:
- line_total_cents = unit_price_cents * quantity - discount_cents
- Order.total_cents == SUM(line_total_cents) at all times.
"""

ORDER_CODE_PREFIX = "PED"
ORDER_CODE_PAD = 3

SORT_DATE_DESC = "date_desc"
SORT_DATE_ASC = "date_asc"
SORT_CODE_ASC = "code_asc"
SORT_CODE_DESC = "code_desc"
SORT_OPTIONS = (SORT_DATE_DESC, SORT_DATE_ASC, SORT_CODE_ASC, SORT_CODE_DESC)

PAYMENT_METHOD_CASH = "cash"
PAYMENT_METHODS = ("cash", "debit", "credit", "transfer")

_UNSET = object()


# =============================================================================
# INPUT NORMALIZATION
# =============================================================================

def _normalize_items(items) -> list[dict]:
    """
    Validate an item list: [{product_id, quantity, unit_price_cents?, discount_cents?}].

    discount_cents is the absolute discount for the whole line.
    """
    if not isinstance(items, list) or not items:
        raise ValidationError("items must be a non-empty list")

    normalized = []
    for index, raw in enumerate(items):
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{index}] must be an object")
        normalized.append({
            "product_id": coerce_int(raw.get("product_id"), f"items[{index}].product_id", minimum=1),
            "quantity": coerce_int(raw.get("quantity"), f"items[{index}].quantity", minimum=1),
            "unit_price_cents": optional_int(
                raw.get("unit_price_cents"), f"items[{index}].unit_price_cents", minimum=0
            ),
            "discount_cents": coerce_int(
                raw.get("discount_cents", 0) or 0, f"items[{index}].discount_cents", minimum=0
            ),
        })
    return normalized


def _quantities_by_product(lines) -> dict[int, int]:
    """Aggregate quantity per product id (lines may repeat a product)."""
    totals: dict[int, int] = {}
    for line in lines:
        product_id = line["product_id"] if isinstance(line, dict) else line.product_id
        quantity = line["quantity"] if isinstance(line, dict) else line.quantity
        totals[product_id] = totals.get(product_id, 0) + quantity
    return totals


def _build_items(lines: list[dict], products: dict[int, Product]) -> list[OrderItem]:
    """OrderItem rows with name/price snapshots taken from the locked products."""
    items = []
    for line in lines:
        product = products[line["product_id"]]
        unit_price = line["unit_price_cents"]
        if unit_price is None:
            unit_price = product.price_cents

        gross = unit_price * line["quantity"]
        if line["discount_cents"] > gross:
            raise ValidationError(
                f"Discount exceeds line amount for {product.name}",
                details={
                    "product_id": product.id,
                    "discount_cents": line["discount_cents"],
                    "line_amount_cents": gross,
                },
            )

        items.append(OrderItem(
            product_id=product.id,
            product_name=product.name,
            unit_price_cents=unit_price,
            quantity=line["quantity"],
            discount_cents=line["discount_cents"],
            line_total_cents=gross - line["discount_cents"],
            returned_qty=0,
        ))
    return items


def _require_customer(customer_id: int) -> Customer:
    customer = db.session.get(Customer, customer_id)
    if customer is None:
        raise NotFoundError(f"Customer {customer_id} not found", details={"customer_id": customer_id})
    return customer


def _lock_order(order_id: int) -> Order:
    order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
    if order is None:
        raise OrderNotFoundError(f"Order {order_id} not found", details={"order_id": order_id})
    return order


# =============================================================================
# TRANSITIONS (caller's transaction, no commit)
# =============================================================================

def _create_pending(
    lines: list[dict],
    *,
    customer_id: int | None = None,
    notes: str | None = None,
) -> Order:
    if customer_id is not None:
        _require_customer(customer_id)

    products = inventory_service.lock_products(line["product_id"] for line in lines)
    requested = _quantities_by_product(lines)

    # Validate everything before the first counter moves
    for product_id in sorted(requested):
        inventory_service.check_available(products[product_id], requested[product_id])
    items = _build_items(lines, products)

    for product_id in sorted(requested):
        inventory_service.reserve(products[product_id], requested[product_id])

    order = Order(
        code=next_document_number(
            document_type=DOCUMENT_TYPE_ORDER,
            prefix=ORDER_CODE_PREFIX,
            pad=ORDER_CODE_PAD,
        ),
        status=ORDER_STATUS_PENDING,
        customer_id=customer_id,
        notes=notes,
        total_cents=sum(item.line_total_cents for item in items),
    )
    order.items = items
    db.session.add(order)
    db.session.flush()
    return order


def _confirm_locked(
    order: Order,
    *,
    business_date: date | None = None,
    sale_amount_cents: int | None = None,
) -> Order:
    """
    pending -> confirmed. Already-confirmed orders are returned untouched.

    sale_amount_cents: what actually entered the drawer (checkout passes the
    cash portion); defaults to the order total.
    """
    if order.status == ORDER_STATUS_CANCELED:
        raise InvalidStateError(
            "Cannot confirm a canceled order",
            details={"order_id": order.id, "status": order.status},
        )
    if order.status in CONFIRMED_STATUSES:
        return order

    requested = _quantities_by_product(order.items)
    products = inventory_service.lock_products(requested.keys())
    for product_id in sorted(requested):
        inventory_service.consume(products[product_id], requested[product_id])

    order.status = ORDER_STATUS_CONFIRMED
    order.confirmed_at = utcnow()
    db.session.flush()

    sale_amount = order.total_cents if sale_amount_cents is None else sale_amount_cents
    if sale_amount > 0:
        cash_service.register_sale(
            sale_amount,
            f"Sale order {order.code}",
            order_id=order.id,
            business_date=business_date,
        )

    if order.customer_id is not None:
        ledger_service.record_entry(
            customer_id=order.customer_id,
            type=LEDGER_TYPE_ORDER,
            source_type=LEDGER_TYPE_ORDER,
            source_id=order.id,
            amount_cents=order.total_cents,
            description=f"Order {order.code}",
        )
    return order


def _cancel_locked(order: Order) -> Order:
    """pending -> canceled. Already-canceled orders are returned untouched."""
    if order.status in CONFIRMED_STATUSES:
        raise InvalidStateError(
            "Cannot cancel a confirmed order",
            details={"order_id": order.id, "status": order.status},
        )
    if order.status == ORDER_STATUS_CANCELED:
        return order

    requested = _quantities_by_product(order.items)
    products = inventory_service.lock_products(requested.keys())
    for product_id in sorted(requested):
        inventory_service.release(products[product_id], requested[product_id])

    order.status = ORDER_STATUS_CANCELED
    order.canceled_at = utcnow()
    db.session.flush()
    return order


def _replace_items(order: Order, lines: list[dict]) -> None:
    """
    Swap a pending order's items, moving its reservation with them.

    The new set is checked against available + what this order already holds
    before anything is released, so a rejected edit leaves the old reservation
    exactly as it was.
    """
    held = _quantities_by_product(order.items)
    requested = _quantities_by_product(lines)

    products = inventory_service.lock_products(set(held) | set(requested))
    for product_id in sorted(requested):
        inventory_service.check_available(
            products[product_id],
            requested[product_id],
            extra=held.get(product_id, 0),
        )
    items = _build_items(lines, products)

    for product_id in sorted(held):
        inventory_service.release(products[product_id], held[product_id])
    for product_id in sorted(requested):
        inventory_service.reserve(products[product_id], requested[product_id])

    order.items = items
    order.total_cents = sum(item.line_total_cents for item in items)


# =============================================================================
# PUBLIC OPERATIONS (own transaction)
# =============================================================================

def create_order(
    items,
    *,
    customer_id: int | None = None,
    notes: str | None = None,
) -> Order:
    """
    Create a pending order and reserve its stock.

    Raises:
        ValidationError: empty/malformed items, discount above line amount
        NotFoundError: unknown customer
        InvalidProductError: unknown product
        InsufficientStockError: a product can't cover the requested quantity
    """
    lines = _normalize_items(items)

    def _op():
        begin_write()
        order = _create_pending(lines, customer_id=customer_id, notes=notes)
        db.session.commit()
        return order

    return run_with_retry(_op)


def update_order(
    order_id: int,
    *,
    items=None,
    customer_id=_UNSET,
    notes=_UNSET,
    status: str | None = None,
    business_date: date | None = None,
) -> Order:
    """
    Edit a pending order.

    items replaces the whole item set; status may be "confirmed" or
    "canceled" to run that transition in the same transaction.
    """
    lines = _normalize_items(items) if items is not None else None
    if status is not None and status not in (
        ORDER_STATUS_PENDING, ORDER_STATUS_CONFIRMED, ORDER_STATUS_CANCELED
    ):
        raise ValidationError(
            f"Invalid status: {status}",
            details={"allowed": [ORDER_STATUS_PENDING, ORDER_STATUS_CONFIRMED, ORDER_STATUS_CANCELED]},
        )

    def _op():
        begin_write()
        order = _lock_order(order_id)
        if order.status != ORDER_STATUS_PENDING:
            raise InvalidStateError(
                f"Order {order.code} can't be modified in status {order.status}",
                details={"order_id": order.id, "status": order.status},
            )

        if lines is not None:
            _replace_items(order, lines)

        if customer_id is not _UNSET:
            if customer_id is not None:
                _require_customer(customer_id)
            order.customer_id = customer_id

        if notes is not _UNSET:
            order.notes = notes

        db.session.flush()

        if status == ORDER_STATUS_CONFIRMED:
            _confirm_locked(order, business_date=business_date)
        elif status == ORDER_STATUS_CANCELED:
            _cancel_locked(order)

        db.session.commit()
        return order

    return run_with_retry(_op)


def confirm_order(order_id: int, *, business_date: date | None = None) -> Order:
    """
    Confirm a pending order: consume stock, book the sale, charge the customer.

    Idempotent: confirming a confirmed order changes nothing.
    """
    def _op():
        begin_write()
        order = _lock_order(order_id)
        _confirm_locked(order, business_date=business_date)
        db.session.commit()
        return order

    return run_with_retry(_op)


def cancel_order(order_id: int) -> Order:
    """Cancel a pending order and release its reservation. Idempotent."""
    def _op():
        begin_write()
        order = _lock_order(order_id)
        _cancel_locked(order)
        db.session.commit()
        return order

    return run_with_retry(_op)


def remove_order(order_id: int) -> None:
    """Delete a pending or canceled order (pending ones are canceled first)."""
    def _op():
        begin_write()
        order = _lock_order(order_id)
        if order.status in CONFIRMED_STATUSES:
            raise InvalidStateError(
                "Cannot delete a confirmed order",
                details={"order_id": order.id, "status": order.status},
            )
        _cancel_locked(order)
        db.session.delete(order)
        db.session.commit()

    run_with_retry(_op)


def get_order(order_id: int) -> Order:
    order = db.session.get(Order, order_id)
    if order is None:
        raise OrderNotFoundError(f"Order {order_id} not found", details={"order_id": order_id})
    return order


def list_orders(
    *,
    sort: str = SORT_DATE_DESC,
    status: str | None = None,
    customer_id: int | None = None,
) -> list[Order]:
    sort = sort or SORT_DATE_DESC
    if sort not in SORT_OPTIONS:
        raise ValidationError(f"Invalid sort: {sort}", details={"allowed": list(SORT_OPTIONS)})
    if status is not None and status not in ORDER_STATUSES:
        raise ValidationError(f"Invalid status: {status}", details={"allowed": list(ORDER_STATUSES)})

    query = db.session.query(Order)
    if status is not None:
        query = query.filter(Order.status == status)
    if customer_id is not None:
        query = query.filter(Order.customer_id == customer_id)

    if sort == SORT_DATE_ASC:
        return query.order_by(Order.created_at.asc(), Order.id.asc()).all()
    if sort == SORT_DATE_DESC:
        return query.order_by(Order.created_at.desc(), Order.id.desc()).all()

    # Codes sort by their number: PED1000 comes after PED999
    orders = query.all()
    orders.sort(
        key=lambda o: (parse_document_number(o.code) or 0, o.id),
        reverse=(sort == SORT_CODE_DESC),
    )
    return orders


# =============================================================================
# CHECKOUT
# =============================================================================

def allocate_discount(amounts: list[int], discount_cents: int) -> list[int]:
    """
    Split discount_cents across amounts proportionally (largest remainder).

    Shares always sum to discount_cents and none exceeds its amount, provided
    discount_cents <= sum(amounts).
    """
    total = sum(amounts)
    if discount_cents <= 0 or total <= 0:
        return [0] * len(amounts)

    shares = [amount * discount_cents // total for amount in amounts]
    leftover = discount_cents - sum(shares)
    by_remainder = sorted(
        range(len(amounts)),
        key=lambda i: (-(amounts[i] * discount_cents % total), i),
    )
    for i in by_remainder[:leftover]:
        shares[i] += 1
    return shares


def _normalize_payments(payments) -> list[dict]:
    if not isinstance(payments, list) or not payments:
        raise ValidationError("payments must be a non-empty list")

    normalized = []
    for index, raw in enumerate(payments):
        if not isinstance(raw, dict):
            raise ValidationError(f"payments[{index}] must be an object")
        method = raw.get("method")
        if method not in PAYMENT_METHODS:
            raise ValidationError(
                f"payments[{index}].method must be one of {list(PAYMENT_METHODS)}",
                details={"method": method},
            )
        normalized.append({
            "method": method,
            "amount_cents": coerce_int(raw.get("amount_cents"), f"payments[{index}].amount_cents", minimum=0),
        })
    return normalized


def checkout(
    items,
    payments,
    *,
    discount_global_cents: int = 0,
    customer_id: int | None = None,
    notes: str | None = None,
    business_date: date | None = None,
) -> dict:
    """
    Counter sale: create the order and confirm it in one transaction.

    items carry a per-unit discount (discount_cents); the global discount is
    spread over the lines so line totals still add up to the order total.
    Only cash that stays in the drawer is booked as the sale movement:
    min(cash tendered, total - non-cash payments), never below zero.

    Raises:
        InsufficientPaymentError: payments don't cover the total (nothing persisted)
    """
    lines = _normalize_items(items)
    paid_lines = _normalize_payments(payments)
    discount_global_cents = coerce_int(discount_global_cents or 0, "discount_global_cents", minimum=0)

    def _op():
        begin_write()
        products = inventory_service.lock_products(line["product_id"] for line in lines)

        priced = []
        for line in lines:
            product = products[line["product_id"]]
            unit_price = line["unit_price_cents"]
            if unit_price is None:
                unit_price = product.price_cents
            if line["discount_cents"] > unit_price:
                raise ValidationError(
                    f"Unit discount exceeds unit price for {product.name}",
                    details={"product_id": product.id},
                )
            priced.append({
                **line,
                "unit_price_cents": unit_price,
                "discount_cents": line["discount_cents"] * line["quantity"],
            })

        gross = [p["unit_price_cents"] * p["quantity"] - p["discount_cents"] for p in priced]
        subtotal = sum(gross)
        if discount_global_cents > subtotal:
            raise ValidationError(
                "discount_global_cents exceeds the sale subtotal",
                details={"subtotal_cents": subtotal, "discount_global_cents": discount_global_cents},
            )
        for line, share in zip(priced, allocate_discount(gross, discount_global_cents)):
            line["discount_cents"] += share

        total = subtotal - discount_global_cents
        paid = sum(p["amount_cents"] for p in paid_lines)
        if paid < total:
            raise InsufficientPaymentError(
                "Payments do not cover the total",
                details={"total_cents": total, "paid_cents": paid},
            )

        cash_tendered = sum(p["amount_cents"] for p in paid_lines if p["method"] == PAYMENT_METHOD_CASH)
        non_cash = paid - cash_tendered
        cash_retained = max(0, min(cash_tendered, total - non_cash))

        order = _create_pending(priced, customer_id=customer_id, notes=notes)
        _confirm_locked(order, business_date=business_date, sale_amount_cents=cash_retained)

        if order.customer_id is not None:
            # Paid at the counter: the charge posted on confirm is settled at once
            ledger_service.record_entry(
                customer_id=order.customer_id,
                type=LEDGER_TYPE_PAYMENT,
                source_type=LEDGER_TYPE_ORDER,
                source_id=order.id,
                amount_cents=-order.total_cents,
                description=f"Payment order {order.code}",
            )

        db.session.commit()
        return {
            "order": order.to_dict(),
            "total_cents": order.total_cents,
            "paid_cents": paid,
            "cash_cents": cash_retained,
            "change_cents": paid - order.total_cents,
            "payments": paid_lines,
        }

    return run_with_retry(_op)
