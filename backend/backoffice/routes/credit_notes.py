# Overview: Flask API routes for credit notes operations; parses input and returns JSON responses.

# backend/backoffice/routes/credit_notes.py
"""
Credit Note API Routes

Returns against confirmed orders. Lines are given either by order item or by
product; over-requested quantities are clamped to what is still returnable.
"""

from flask import Blueprint, request, jsonify, current_app

from ..errors import BackofficeError, ValidationError, error_response
from ..services import credit_note_service
from ..validation import coerce_int, optional_int, parse_business_date


credit_notes_bp = Blueprint("credit_notes", __name__, url_prefix="/api/credit-notes")


@credit_notes_bp.post("")
def create_credit_note_route():
    """
    Issue a credit note.

    Request body:
    {
        "order_id": 12,
        "refund_method": "cash",     (cash | credit)
        "reason": "Damaged box",     (optional)
        "customer_id": 3,            (optional, used when the order has none)
        "items": [
            {"order_item_id": 40, "quantity": 1},
            {"product_id": 7, "quantity": 2, "unit_price_cents": 900, "discount_cents": 0, "tax_rate_bps": 2100}
        ]
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        raw_items = data.get("items")
        if not isinstance(raw_items, list) or not raw_items:
            raise ValidationError("items must be a non-empty list")
        lines = [credit_note_service.parse_line(raw, i) for i, raw in enumerate(raw_items)]

        note = credit_note_service.create_credit_note(
            coerce_int(data.get("order_id"), "order_id", minimum=1),
            lines,
            refund_method=data.get("refund_method"),
            reason=data.get("reason"),
            customer_id=optional_int(data.get("customer_id"), "customer_id"),
            business_date=parse_business_date(data.get("business_date")),
        )
        current_app.logger.info(
            "Credit note issued number=%s order_id=%s total_cents=%s",
            note.number, note.order_id, note.total_cents,
        )
        return jsonify({"credit_note": note.to_dict()}), 201
    except BackofficeError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create credit note")
        return jsonify({"error": "Internal server error"}), 500


@credit_notes_bp.get("/<int:credit_note_id>")
def get_credit_note_route(credit_note_id: int):
    try:
        note = credit_note_service.get_credit_note(credit_note_id)
        return jsonify({"credit_note": note.to_dict()}), 200
    except BackofficeError as e:
        return error_response(e)
