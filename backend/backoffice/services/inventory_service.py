# Overview: Service-layer operations for inventory; encapsulates stock/reservation counters.

# backend/backoffice/services/inventory_service.py

from __future__ import annotations

from collections.abc import Iterable

from ..extensions import db
from ..models import Product
from ..errors import (
    ValidationError,
    NotFoundError,
    InvalidProductError,
    InvalidStateError,
    InsufficientStockError,
    InconsistencyError,
)
from .concurrency import lock_for_update, begin_write, run_with_retry
"""
Inventory Invariants (authoritative)

Counters:
- Product.stock is the physical count; Product.reserved is what pending
  orders hold. available = max(0, stock - reserved).
- 0 <= reserved <= stock after every committed transaction.

Locking:
- Every mutation reads the counters from a row fetched WITH FOR UPDATE in the
  caller's transaction. Helpers below never commit; the order/credit note/
  checkout transaction that calls them commits or rolls back as a whole.
- When several products are touched, rows are locked in ascending id order so
  two transactions sharing products can't deadlock on each other.

Failure policy:
- Asking for more than is available is a business rejection (InsufficientStock).
- A counter that would go negative on release/consume means an earlier step
  booked the wrong numbers: InconsistencyError, never silently clamped.
- adjust() is the manual correction path: stock is floored at 0, and it may
  not drop stock under what is already reserved.
"""


def _require_quantity(qty) -> int:
    if isinstance(qty, bool) or not isinstance(qty, int):
        raise ValidationError("quantity must be an integer")
    if qty <= 0:
        raise ValidationError("quantity must be > 0")
    return qty


def get_product(product_id: int, *, lock: bool = False) -> Product:
    query = db.session.query(Product).filter_by(id=product_id)
    if lock:
        query = lock_for_update(query)
    product = query.first()
    if product is None:
        raise NotFoundError(f"Product {product_id} not found")
    return product


def lock_products(product_ids: Iterable[int]) -> dict[int, Product]:
    """
    Lock the given products (deterministic id order) and return them by id.

    Raises InvalidProductError naming the first id that doesn't exist.
    """
    ids = sorted(set(product_ids))
    if not ids:
        return {}

    query = db.session.query(Product).filter(Product.id.in_(ids)).order_by(Product.id)
    products = lock_for_update(query).all()
    by_id = {p.id: p for p in products}

    for product_id in ids:
        if product_id not in by_id:
            raise InvalidProductError(
                f"Invalid product: {product_id}",
                details={"product_id": product_id},
            )
    return by_id


def check_available(product: Product, qty: int, *, extra: int = 0) -> None:
    """
    Raise InsufficientStockError unless qty units can be reserved.

    extra: units the caller already holds on this product and is about to give
    back (order edits validate against available + own reservation).
    """
    available = product.available + extra
    if available < qty:
        raise InsufficientStockError(
            f"Insufficient stock for {product.name} (available: {available})",
            details={
                "product_id": product.id,
                "requested_quantity": qty,
                "available": available,
            },
        )


def reserve(product: Product, qty: int) -> Product:
    """Hold qty units for a pending order."""
    _require_quantity(qty)
    check_available(product, qty)
    product.reserved = (product.reserved or 0) + qty
    return product


def release(product: Product, qty: int) -> Product:
    """Give back a reservation (order canceled or edited)."""
    _require_quantity(qty)
    remaining = (product.reserved or 0) - qty
    if remaining < 0:
        raise InconsistencyError(
            f"Reservation inconsistency for {product.name}",
            details={"product_id": product.id, "reserved": product.reserved, "release": qty},
        )
    product.reserved = remaining
    return product


def consume(product: Product, qty: int) -> Product:
    """Turn a reservation into a physical stock decrement (order confirmed)."""
    _require_quantity(qty)
    reserved = (product.reserved or 0) - qty
    stock = (product.stock or 0) - qty
    if reserved < 0 or stock < 0:
        raise InconsistencyError(
            f"Stock inconsistency for {product.name}",
            details={
                "product_id": product.id,
                "stock": product.stock,
                "reserved": product.reserved,
                "consume": qty,
            },
        )
    product.reserved = reserved
    product.stock = stock
    return product


def restock(product: Product, qty: int) -> Product:
    """Put returned units back on the shelf."""
    _require_quantity(qty)
    product.stock = (product.stock or 0) + qty
    return product


def adjust(product: Product, delta: int) -> Product:
    """
    Manual stock correction: stock += delta, floored at 0.

    Not reservation-aware beyond refusing to strand reservations: if the new
    stock would fall below reserved, cancel or edit the pending orders first.
    """
    if isinstance(delta, bool) or not isinstance(delta, int):
        raise ValidationError("quantity_delta must be an integer")
    if delta == 0:
        raise ValidationError("quantity_delta must be non-zero")

    new_stock = max(0, (product.stock or 0) + delta)
    if new_stock < (product.reserved or 0):
        raise InvalidStateError(
            f"Adjustment would leave {product.name} with less stock than reserved",
            details={
                "product_id": product.id,
                "stock": new_stock,
                "reserved": product.reserved,
            },
        )
    product.stock = new_stock
    return product


def adjust_stock(product_id: int, quantity_delta: int) -> Product:
    """Public entry point for manual corrections (own transaction)."""
    def _op():
        begin_write()
        product = get_product(product_id, lock=True)
        adjust(product, quantity_delta)
        db.session.commit()
        return product

    return run_with_retry(_op)


def get_stock_summary(product_id: int) -> dict:
    product = get_product(product_id)
    return {
        "product_id": product.id,
        "sku": product.sku,
        "stock": product.stock,
        "reserved": product.reserved,
        "available": product.available,
    }
