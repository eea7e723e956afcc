from __future__ import annotations
import re
from datetime import date
from backoffice.time_utils import parse_iso_date

from dataclasses import dataclass, field as dataclass_field
from typing import Any

from sqlalchemy import Integer, String, Text

from .errors import ValidationError


# 9,999,999.99 in cents
MAX_PRICE_CENTS = 999_999_999

# Three uppercase letters followed by three digits, e.g. "ABC123"
SKU_PATTERN = re.compile(r"^[A-Z]{3}\d{3}$")

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Which columns a JSON payload may touch for one model.

    writable_fields: keys a client may send at all
    required_on_create: keys that must be present on create
    """
    writable_fields: frozenset[str]
    required_on_create: frozenset[str] = dataclass_field(default_factory=frozenset)


def coerce_int(value: Any, field: str, *, minimum: int | None = None) -> int:
    """
    Strict integer coercion for JSON input.

    Accepts ints and plain digit strings; rejects bools, floats, decimals and
    scientific notation so "12.5" never silently becomes 12 cents.
    """
    if isinstance(value, bool) or isinstance(value, float):
        raise ValidationError(f"{field} must be an integer")

    if isinstance(value, int):
        result = value
    elif isinstance(value, str):
        text = value.strip()
        # "1e3" and "12.5" are numbers, but not integer cents
        if not re.fullmatch(r"[+-]?\d+", text):
            raise ValidationError(f"{field} must be a plain integer")
        result = int(text)
    else:
        raise ValidationError(f"{field} must be an integer")

    if minimum is not None and result < minimum:
        raise ValidationError(f"{field} must be >= {minimum}")
    return result


def optional_int(value: Any, field: str, *, minimum: int | None = None) -> int | None:
    if value is None:
        return None
    return coerce_int(value, field, minimum=minimum)


def parse_business_date(value: Any, field: str = "business_date") -> date | None:
    """"YYYY-MM-DD" string (or date) into a date; None / "" -> None."""
    if value is None or isinstance(value, date):
        return value
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a YYYY-MM-DD date")
    try:
        return parse_iso_date(value)
    except ValueError:
        raise ValidationError(f"{field} must be a YYYY-MM-DD date")


def _clean_column_value(column, raw: Any):
    """Coerce one non-null JSON value to what the column stores."""
    if isinstance(column.type, Integer):
        return coerce_int(raw, column.key)

    if isinstance(column.type, (String, Text)):
        if not isinstance(raw, (str, int)):
            raise ValidationError(f"{column.key} must be a string")
        cleaned = str(raw).strip()
        if cleaned == "" and not column.nullable:
            raise ValidationError(f"{column.key} must not be empty")
        limit = getattr(column.type, "length", None)
        if limit and len(cleaned) > limit:
            raise ValidationError(f"{column.key} is longer than {limit} characters")
        return cleaned

    return raw


def validate_payload(
    *,
    model,
    payload: dict | None,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Turn a JSON body into a patch of column values for `model`.

    Keys outside policy.writable_fields are rejected, values are coerced
    using the mapped column (type, nullability, String length). With
    partial=False every required_on_create key must be present.
    """
    payload = {} if payload is None else payload
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")

    if not partial:
        missing = sorted(set(policy.required_on_create) - set(payload))
        if missing:
            raise ValidationError(
                f"Missing required fields: {', '.join(missing)}",
                details={"missing": missing},
            )

    columns = {column.key: column for column in model.__mapper__.columns}

    patch: dict = {}
    for key, raw in payload.items():
        if key not in policy.writable_fields or key not in columns:
            raise ValidationError(f"Field not allowed: {key}", details={"field": key})

        column = columns[key]
        if raw is None:
            if not column.nullable:
                raise ValidationError(f"{key} cannot be null")
            patch[key] = None
        else:
            patch[key] = _clean_column_value(column, raw)

    return patch


def enforce_rules_product(patch: dict) -> None:
    """Product rules the column metadata can't express."""
    price = patch.get("price_cents")
    if price is not None and not 0 <= price <= MAX_PRICE_CENTS:
        raise ValidationError(f"price_cents must be between 0 and {MAX_PRICE_CENTS}")

    stock = patch.get("stock")
    if stock is not None and stock < 0:
        raise ValidationError("stock must be >= 0")

    if patch.get("sku") is not None:
        sku = patch["sku"].upper()
        if not SKU_PATTERN.match(sku):
            raise ValidationError("sku must be three letters followed by three digits (e.g. ABC123)")
        patch["sku"] = sku


def enforce_rules_customer(patch: dict) -> None:
    email = patch.get("email")
    if email and not EMAIL_PATTERN.match(email):
        raise ValidationError("email is not a valid address")

    # Empty optional strings are stored as NULL
    for key in ("phone", "phone2", "email", "address", "postal_code", "notes"):
        if patch.get(key) == "":
            patch[key] = None
