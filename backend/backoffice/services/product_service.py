# Overview: Service-layer operations for products; catalog master data and SKU assignment.

from __future__ import annotations

import re

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Product
from ..errors import ValidationError, InvalidStateError
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_product,
)
from .concurrency import begin_write, run_with_retry
from .document_service import next_document_number
from .inventory_service import get_product


DOCUMENT_TYPE_PRODUCT_SKU = "PRODUCT_SKU"

# Stock only moves through inventory operations after creation
PRODUCT_CREATE_POLICY = ModelValidationPolicy(
    writable_fields=frozenset({"sku", "name", "price_cents", "stock", "category", "barcode"}),
    required_on_create=frozenset({"name", "price_cents"}),
)
PRODUCT_UPDATE_POLICY = ModelValidationPolicy(
    writable_fields=frozenset({"sku", "name", "price_cents", "category", "barcode"}),
)


def sku_prefix(category: str | None, name: str | None) -> str:
    """First three letters of category (else name), uppercased, padded with P."""
    raw = category or name or "PRD"
    letters = re.sub(r"[^A-Za-z]", "", raw).upper()
    return letters[:3].ljust(3, "P")


def _sku_taken(sku: str, *, exclude_id: int | None = None) -> bool:
    query = db.session.query(Product.id).filter(Product.sku == sku)
    if exclude_id is not None:
        query = query.filter(Product.id != exclude_id)
    return query.first() is not None


def _generate_sku(patch: dict) -> str:
    """Next running number under the prefix, skipping SKUs already assigned by hand."""
    prefix = sku_prefix(patch.get("category"), patch.get("name"))
    while True:
        sku = next_document_number(
            document_type=DOCUMENT_TYPE_PRODUCT_SKU,
            prefix=prefix,
            pad=3,
        )
        if len(sku) != 6:
            raise ValidationError("Automatic SKU numbers are exhausted; provide sku explicitly")
        if not _sku_taken(sku):
            return sku


def _ensure_sku_free(sku: str, *, exclude_id: int | None = None) -> None:
    if _sku_taken(sku, exclude_id=exclude_id):
        raise InvalidStateError(f"SKU {sku} already exists", details={"sku": sku})


def create_product(payload: dict) -> Product:
    """
    Create a product. When sku is omitted one is generated as AAA999 from the
    category (or name) and a running number.
    """
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_CREATE_POLICY, partial=False)
    enforce_rules_product(patch)

    def _op():
        begin_write()
        sku = patch.get("sku") or _generate_sku(patch)
        _ensure_sku_free(sku)

        product = Product(**{**patch, "sku": sku})
        product.reserved = 0
        if product.stock is None:
            product.stock = 0

        db.session.add(product)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise InvalidStateError(f"SKU {sku} already exists", details={"sku": sku})
        return product

    return run_with_retry(_op)


def update_product(product_id: int, payload: dict) -> Product:
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_UPDATE_POLICY, partial=True)
    enforce_rules_product(patch)

    def _op():
        begin_write()
        product = get_product(product_id)
        if patch.get("sku"):
            _ensure_sku_free(patch["sku"], exclude_id=product.id)

        for key, value in patch.items():
            setattr(product, key, value)

        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            raise InvalidStateError(
                "Product update violates a uniqueness constraint",
                details={"product_id": product_id},
            )
        return product

    return run_with_retry(_op)
