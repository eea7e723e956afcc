# Overview: Flask API routes for cash operations; parses input and returns JSON responses.

# backend/backoffice/routes/cash.py
"""
Cash Session API Routes

WHY: One drawer session per business day. Sales and refunds land here
automatically; these routes open and close the day, post manual movements,
run counter checkouts and report the computed balance.

SESSION POLICY:
- CASH_SESSION_POLICY=auto_create: movements on a day with no session create it
- CASH_SESSION_POLICY=require_open: movements need an explicitly opened session
"""

from flask import Blueprint, request, jsonify, current_app

from ..errors import BackofficeError, ValidationError, error_response
from ..services import cash_service, order_service
from ..validation import coerce_int, optional_int, parse_business_date
from backoffice.time_utils import parse_iso_datetime, business_today


cash_bp = Blueprint("cash", __name__, url_prefix="/api/cash")


@cash_bp.get("/current")
def current_report_route():
    """Report for today's session (zeros when the day has no session yet)."""
    try:
        return jsonify({"report": cash_service.current_report()}), 200
    except BackofficeError as e:
        return error_response(e)


@cash_bp.get("/report")
def report_route():
    """
    Report for a given day.

    Query params:
    - date: YYYY-MM-DD (default today)
    """
    try:
        day = parse_business_date(request.args.get("date"), "date") or business_today()
        return jsonify({"report": cash_service.get_report(day)}), 200
    except BackofficeError as e:
        return error_response(e)


@cash_bp.get("/movements")
def movements_route():
    """Movements of a day's session, newest first. Query: date=YYYY-MM-DD."""
    try:
        day = parse_business_date(request.args.get("date"), "date")
        movements = cash_service.list_movements(day)
        return jsonify({"movements": [m.to_dict() for m in movements]}), 200
    except BackofficeError as e:
        return error_response(e)


@cash_bp.post("/open")
def open_route():
    """
    Open today's session.

    Request body:
    {
        "amount_cents": 10000   (opening count, >= 0)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        report = cash_service.open_session(
            coerce_int(data.get("amount_cents", 0), "amount_cents", minimum=0),
            business_date=parse_business_date(data.get("business_date")),
        )
        current_app.logger.info("Cash session opened date=%s opening_cents=%s", report["date"], report["opening_cents"])
        return jsonify({"report": report}), 200
    except BackofficeError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to open cash session")
        return jsonify({"error": "Internal server error"}), 500


@cash_bp.post("/close")
def close_route():
    """
    Close today's session.

    Request body:
    {
        "amount_cents": 25300   (closing count, >= 0)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        report = cash_service.close_session(
            coerce_int(data.get("amount_cents", 0), "amount_cents", minimum=0),
            business_date=parse_business_date(data.get("business_date")),
        )
        current_app.logger.info(
            "Cash session closed date=%s closing_cents=%s balance_cents=%s",
            report["date"], report["closing_cents"], report["balance_cents"],
        )
        return jsonify({"report": report}), 200
    except BackofficeError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to close cash session")
        return jsonify({"error": "Internal server error"}), 500


@cash_bp.post("/movement")
def movement_route():
    """
    Post a manual movement.

    Request body:
    {
        "amount_cents": -500,          (non-zero; expenses are stored negative)
        "type": "expense",             (income | expense | sale)
        "description": "Cleaning supplies",
        "occurred_at": "2025-01-31T10:00:00Z"   (optional)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        occurred_at = None
        if data.get("occurred_at"):
            try:
                occurred_at = parse_iso_datetime(data["occurred_at"])
            except ValueError:
                raise ValidationError("occurred_at must be an ISO-8601 datetime")

        movement = cash_service.record_movement(
            data.get("amount_cents"),
            data.get("type"),
            data.get("description"),
            occurred_at=occurred_at,
            business_date=parse_business_date(data.get("business_date")),
        )
        return jsonify({"movement": movement.to_dict()}), 201
    except BackofficeError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to record cash movement")
        return jsonify({"error": "Internal server error"}), 500


@cash_bp.post("/checkout")
def checkout_route():
    """
    Counter sale: order created and confirmed in one step.

    Request body:
    {
        "items": [
            {"product_id": 1, "quantity": 2, "unit_price_cents": 1500, "discount_cents": 100}
        ],
        "payments": [
            {"method": "cash", "amount_cents": 2000},
            {"method": "debit", "amount_cents": 1000}
        ],
        "discount_global_cents": 200,  (optional)
        "customer_id": 1,              (optional)
        "notes": "..."                 (optional)
    }

    Item discount_cents is per unit here. Responds with the order, the
    amount booked to the drawer and the change owed.
    """
    try:
        data = request.get_json(silent=True) or {}
        result = order_service.checkout(
            data.get("items"),
            data.get("payments"),
            discount_global_cents=data.get("discount_global_cents") or 0,
            customer_id=optional_int(data.get("customer_id"), "customer_id"),
            notes=data.get("notes"),
            business_date=parse_business_date(data.get("business_date")),
        )
        current_app.logger.info(
            "Checkout order=%s total_cents=%s change_cents=%s",
            result["order"]["code"], result["total_cents"], result["change_cents"],
        )
        return jsonify(result), 201
    except BackofficeError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to process checkout")
        return jsonify({"error": "Internal server error"}), 500
