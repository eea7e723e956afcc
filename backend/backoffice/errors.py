# Overview: Error taxonomy shared by services and routes.

"""
Every business rejection raised by a service is a BackofficeError subclass.

Routes translate them to JSON with the class's http_status; anything else is
an unexpected failure and becomes a logged 500. Raising any of these aborts
the enclosing transaction: callers roll back, nothing is partially applied.
"""

from __future__ import annotations

from flask import current_app, jsonify


class BackofficeError(Exception):
    """Base class for errors that map to a specific client-visible rejection."""

    http_status = 400
    code = "error"

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        body = {"error": self.message, "code": self.code}
        if self.details:
            body["details"] = self.details
        return body


# =============================================================================
# INPUT
# =============================================================================

class ValidationError(BackofficeError, ValueError):
    """400-level input problem (bad amount, unknown type, empty item list)."""
    code = "validation_error"


class InvalidAmountError(ValidationError):
    code = "invalid_amount"


class InvalidTypeError(ValidationError):
    code = "invalid_type"


class NoValidItemsError(ValidationError):
    """Every return line resolved to a zero quantity after clamping."""
    code = "no_valid_items"


class ZeroAmountError(ValidationError):
    """Computed credit note total is not positive."""
    code = "zero_amount"


# =============================================================================
# LOOKUP
# =============================================================================

class NotFoundError(BackofficeError):
    """Referenced order/product/customer/session doesn't exist."""
    http_status = 404
    code = "not_found"


class OrderNotFoundError(NotFoundError):
    code = "order_not_found"


class InvalidProductError(NotFoundError):
    """A product referenced from a request payload doesn't exist."""
    http_status = 400
    code = "invalid_product"


# =============================================================================
# LIFECYCLE / BUSINESS RULES
# =============================================================================

class InvalidStateError(BackofficeError):
    """Operation not permitted in the entity's current lifecycle state."""
    http_status = 409
    code = "invalid_state"


class AlreadyOpenError(InvalidStateError):
    code = "already_open"


class NoOpenSessionError(InvalidStateError):
    code = "no_open_session"


class InsufficientStockError(BackofficeError):
    http_status = 409
    code = "insufficient_stock"


class InsufficientPaymentError(BackofficeError):
    code = "insufficient_payment"


class InconsistencyError(BackofficeError):
    """
    An internal invariant would be violated (e.g. reserved going negative).

    This means an earlier step is wrong, not that the caller sent bad input.
    """
    http_status = 500
    code = "inconsistency"


def error_response(exc: BackofficeError):
    """JSON body and status for a BackofficeError raised inside a route."""
    if exc.http_status >= 500:
        current_app.logger.error("Invariant violated: %s details=%s", exc.message, exc.details)
    return jsonify(exc.to_dict()), exc.http_status
