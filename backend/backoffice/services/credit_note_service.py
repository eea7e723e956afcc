"""
Credit Note / Return Processing Service

WHY: A return must undo a confirmed sale consistently: the goods go back on
the shelf, the customer's account is credited and, for cash refunds, the
money leaves the drawer. All of it happens in one transaction or not at all.

DESIGN PRINCIPLES:
- Only confirmed orders (or partially returned ones) accept credit notes
- Requested quantities are clamped to what is still returnable; asking for
  more than that is not an error, the excess is dropped
- Amounts are integer cents; tax is a flat rate in basis points rounded half up
- Header amounts are stored negative (the way they are booked); lines carry
  positive magnitudes
- Returned lines come in two shapes: by order item, or by product (spread over
  the order's items for that product, oldest first)
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date

from flask import current_app, has_app_context

from ..extensions import db
from ..models import Order, CreditNote, CreditNoteLine
from ..models.orders import (
    ORDER_STATUS_CONFIRMED,
    ORDER_STATUS_PARTIALLY_RETURNED,
    ORDER_STATUS_RETURNED,
)
from ..models.documents import REFUND_METHODS, REFUND_METHOD_CASH, CREDIT_NOTE_STATUS_CREATED
from ..models.ledger import LEDGER_TYPE_CREDIT_NOTE
from ..errors import (
    ValidationError,
    NotFoundError,
    OrderNotFoundError,
    InvalidStateError,
    NoValidItemsError,
    ZeroAmountError,
)
from ..validation import coerce_int, optional_int
from .concurrency import lock_for_update, begin_write, run_with_retry
from .document_service import DOCUMENT_TYPE_CREDIT_NOTE, next_document_number
from . import inventory_service, cash_service, ledger_service


CREDIT_NOTE_PREFIX = "NC"
CREDIT_NOTE_PAD = 4

DEFAULT_TAX_RATE_BPS = 2100

# Statuses that still have something to return
RETURNABLE_STATUSES = (ORDER_STATUS_CONFIRMED, ORDER_STATUS_PARTIALLY_RETURNED)


# =============================================================================
# LINE REQUESTS
# =============================================================================

@dataclass(frozen=True)
class ReturnByOrderItem:
    """Return units of one specific order line."""
    order_item_id: int
    quantity: int
    unit_price_cents: int | None = None
    discount_cents: int = 0
    tax_rate_bps: int | None = None


@dataclass(frozen=True)
class ReturnByProduct:
    """Return units of a product, whichever order lines it was sold on."""
    product_id: int
    quantity: int
    unit_price_cents: int | None = None
    discount_cents: int = 0
    tax_rate_bps: int | None = None


def parse_line(raw: dict, index: int = 0) -> ReturnByOrderItem | ReturnByProduct:
    """
    Resolve a JSON line into one of the two request shapes.

    Exactly one of order_item_id / product_id must be present.
    """
    if not isinstance(raw, dict):
        raise ValidationError(f"items[{index}] must be an object")

    has_item = raw.get("order_item_id") is not None
    has_product = raw.get("product_id") is not None
    if has_item == has_product:
        raise ValidationError(
            f"items[{index}] needs exactly one of order_item_id or product_id"
        )

    common = dict(
        quantity=coerce_int(raw.get("quantity"), f"items[{index}].quantity", minimum=1),
        unit_price_cents=optional_int(raw.get("unit_price_cents"), f"items[{index}].unit_price_cents", minimum=0),
        discount_cents=coerce_int(raw.get("discount_cents", 0) or 0, f"items[{index}].discount_cents", minimum=0),
        tax_rate_bps=optional_int(raw.get("tax_rate_bps"), f"items[{index}].tax_rate_bps", minimum=0),
    )
    if has_item:
        return ReturnByOrderItem(
            order_item_id=coerce_int(raw["order_item_id"], f"items[{index}].order_item_id", minimum=1),
            **common,
        )
    return ReturnByProduct(
        product_id=coerce_int(raw["product_id"], f"items[{index}].product_id", minimum=1),
        **common,
    )


def round_half_up_div(numerator: int, denominator: int) -> int:
    """Integer division rounded half away from zero."""
    sign = -1 if (numerator < 0) != (denominator < 0) else 1
    n, d = abs(numerator), abs(denominator)
    return sign * ((2 * n + d) // (2 * d))


def compute_tax_cents(base_cents: int, tax_rate_bps: int) -> int:
    return round_half_up_div(base_cents * tax_rate_bps, 10_000)


def _default_tax_rate_bps() -> int:
    if has_app_context():
        return int(current_app.config.get("DEFAULT_TAX_RATE_BPS", DEFAULT_TAX_RATE_BPS))
    return DEFAULT_TAX_RATE_BPS


# =============================================================================
# RESOLUTION
# =============================================================================

def _resolve_lines(order: Order, requests) -> list[tuple]:
    """
    Map requests onto order items, clamping each to what is left to return.

    Returns (item, quantity, request) triples with quantity > 0 only. Earlier
    requests in the same call reduce what later ones may take.
    """
    items_by_id = {item.id: item for item in order.items}
    taken: dict[int, int] = {}
    resolved = []

    def _remaining(item) -> int:
        return item.returnable_qty - taken.get(item.id, 0)

    for request in requests:
        if isinstance(request, ReturnByOrderItem):
            item = items_by_id.get(request.order_item_id)
            if item is None:
                raise ValidationError(
                    f"Order item {request.order_item_id} does not belong to order {order.code}",
                    details={"order_item_id": request.order_item_id, "order_id": order.id},
                )
            quantity = min(request.quantity, _remaining(item))
            if quantity > 0:
                taken[item.id] = taken.get(item.id, 0) + quantity
                resolved.append((item, quantity, request))

        elif isinstance(request, ReturnByProduct):
            candidates = sorted(
                (item for item in order.items if item.product_id == request.product_id),
                key=lambda item: item.id,
            )
            if not candidates:
                raise ValidationError(
                    f"Product {request.product_id} is not part of order {order.code}",
                    details={"product_id": request.product_id, "order_id": order.id},
                )
            wanted = request.quantity
            first = True
            for item in candidates:
                if wanted <= 0:
                    break
                quantity = min(wanted, _remaining(item))
                if quantity <= 0:
                    continue
                taken[item.id] = taken.get(item.id, 0) + quantity
                wanted -= quantity
                # The line discount is applied once, on the first item used
                piece = request if first else ReturnByProduct(
                    product_id=request.product_id,
                    quantity=quantity,
                    unit_price_cents=request.unit_price_cents,
                    discount_cents=0,
                    tax_rate_bps=request.tax_rate_bps,
                )
                first = False
                resolved.append((item, quantity, piece))

        else:
            raise ValidationError(f"Unsupported return line: {request!r}")

    return resolved


def _recompute_order_status(order: Order) -> None:
    if all(item.returned_qty >= item.quantity for item in order.items):
        order.status = ORDER_STATUS_RETURNED
    elif any(item.returned_qty > 0 for item in order.items):
        order.status = ORDER_STATUS_PARTIALLY_RETURNED


# =============================================================================
# CREATE / READ
# =============================================================================

def create_credit_note(
    order_id: int,
    lines,
    *,
    refund_method: str,
    reason: str | None = None,
    customer_id: int | None = None,
    business_date: date | None = None,
) -> CreditNote:
    """
    Issue a credit note against a confirmed order.

    lines: ReturnByOrderItem / ReturnByProduct instances (or raw dicts, which
    are parsed with parse_line).

    Raises:
        OrderNotFoundError: unknown order
        InvalidStateError: order is pending, canceled or fully returned
        NoValidItemsError: nothing left to return for the requested lines
        ZeroAmountError: computed total is not positive
    """
    if refund_method not in REFUND_METHODS:
        raise ValidationError(
            f"refund_method must be one of {list(REFUND_METHODS)}",
            details={"refund_method": refund_method},
        )
    if not isinstance(lines, list) or not lines:
        raise ValidationError("items must be a non-empty list")
    requests = [
        line if isinstance(line, (ReturnByOrderItem, ReturnByProduct)) else parse_line(line, i)
        for i, line in enumerate(lines)
    ]
    default_rate = _default_tax_rate_bps()

    def _op():
        begin_write()
        order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).first()
        if order is None:
            raise OrderNotFoundError(f"Order {order_id} not found", details={"order_id": order_id})
        if order.status == ORDER_STATUS_RETURNED:
            raise NoValidItemsError(
                f"Order {order.code} has already been fully returned",
                details={"order_id": order.id},
            )
        if order.status not in RETURNABLE_STATUSES:
            raise InvalidStateError(
                f"Credit notes require a confirmed order (status: {order.status})",
                details={"order_id": order.id, "status": order.status},
            )

        resolved = _resolve_lines(order, requests)
        if not resolved:
            raise NoValidItemsError(
                "No returnable quantity left for the requested items",
                details={"order_id": order.id},
            )

        note_lines = []
        for item, quantity, request in resolved:
            unit_price = item.unit_price_cents if request.unit_price_cents is None else request.unit_price_cents
            rate = default_rate if request.tax_rate_bps is None else request.tax_rate_bps
            gross = unit_price * quantity
            discount = min(request.discount_cents, gross)
            base = gross - discount
            tax = compute_tax_cents(base, rate)
            note_lines.append(CreditNoteLine(
                order_item_id=item.id,
                product_id=item.product_id,
                quantity=quantity,
                unit_price_cents=unit_price,
                discount_cents=discount,
                tax_rate_bps=rate,
                base_cents=base,
                tax_cents=tax,
                line_total_cents=base + tax,
            ))

        subtotal = sum(line.base_cents for line in note_lines)
        tax_total = sum(line.tax_cents for line in note_lines)
        total = sum(line.line_total_cents for line in note_lines)
        if total <= 0:
            raise ZeroAmountError(
                "Credit note total must be greater than zero",
                details={"order_id": order.id, "total_cents": total},
            )

        # Stock comes back and the order remembers what was returned
        restock_by_product: dict[int, int] = {}
        for item, quantity, _request in resolved:
            item.returned_qty = (item.returned_qty or 0) + quantity
            restock_by_product[item.product_id] = restock_by_product.get(item.product_id, 0) + quantity
        products = inventory_service.lock_products(restock_by_product.keys())
        for product_id in sorted(restock_by_product):
            inventory_service.restock(products[product_id], restock_by_product[product_id])
        _recompute_order_status(order)

        note = CreditNote(
            number=next_document_number(
                document_type=DOCUMENT_TYPE_CREDIT_NOTE,
                prefix=CREDIT_NOTE_PREFIX,
                pad=CREDIT_NOTE_PAD,
            ),
            order_id=order.id,
            customer_id=order.customer_id if order.customer_id is not None else customer_id,
            refund_method=refund_method,
            reason=reason,
            subtotal_cents=-subtotal,
            tax_cents=-tax_total,
            total_cents=-total,
            status=CREDIT_NOTE_STATUS_CREATED,
        )
        note.lines = note_lines
        db.session.add(note)
        db.session.flush()

        if note.customer_id is not None:
            ledger_service.record_entry(
                customer_id=note.customer_id,
                type=LEDGER_TYPE_CREDIT_NOTE,
                source_type=LEDGER_TYPE_CREDIT_NOTE,
                source_id=note.id,
                amount_cents=-total,
                description=f"Credit note {note.number} (order {order.code})",
            )

        if refund_method == REFUND_METHOD_CASH:
            cash_service.register_refund(
                total,
                f"Refund credit note {note.number}",
                credit_note_id=note.id,
                order_id=order.id,
                business_date=business_date,
            )

        db.session.commit()
        return note

    return run_with_retry(_op)


def get_credit_note(credit_note_id: int) -> CreditNote:
    note = db.session.get(CreditNote, credit_note_id)
    if note is None:
        raise NotFoundError(
            f"Credit note {credit_note_id} not found",
            details={"credit_note_id": credit_note_id},
        )
    return note


def list_for_order(order_id: int) -> list[CreditNote]:
    if db.session.get(Order, order_id) is None:
        raise OrderNotFoundError(f"Order {order_id} not found", details={"order_id": order_id})
    return (
        db.session.query(CreditNote)
        .filter(CreditNote.order_id == order_id)
        .order_by(CreditNote.id.asc())
        .all()
    )
