# Overview: Flask API routes for orders operations; parses input and returns JSON responses.

# backend/backoffice/routes/orders.py
"""
Order Lifecycle API Routes

WHY: Orders are the documents that move stock. Every route here maps to one
order_service transition, which runs as a single transaction.

LIFECYCLE:
- POST /api/orders                 -> pending (stock reserved)
- PATCH /api/orders/<id>           -> edit while pending (optionally confirm/cancel)
- POST /api/orders/<id>/confirm    -> confirmed (stock consumed, sale booked)
- POST /api/orders/<id>/cancel     -> canceled (reservation released)
- DELETE /api/orders/<id>          -> removed (pending or canceled only)
"""

from flask import Blueprint, request, jsonify, current_app

from ..errors import BackofficeError, error_response
from ..services import order_service, credit_note_service
from ..validation import optional_int, parse_business_date


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


@orders_bp.get("")
def list_orders_route():
    """
    List orders.

    Query params:
    - sort: date_desc (default) | date_asc | code_asc | code_desc
    - status: pending | confirmed | canceled | partially_returned | returned
    - customer_id: int
    """
    try:
        orders = order_service.list_orders(
            sort=request.args.get("sort") or order_service.SORT_DATE_DESC,
            status=request.args.get("status") or None,
            customer_id=optional_int(request.args.get("customer_id"), "customer_id"),
        )
        return jsonify({"orders": [o.to_dict(include_items=False) for o in orders], "count": len(orders)}), 200
    except BackofficeError as e:
        return error_response(e)


@orders_bp.post("")
def create_order_route():
    """
    Create a pending order and reserve its stock.

    Request body:
    {
        "items": [
            {"product_id": 1, "quantity": 2, "unit_price_cents": 1500, "discount_cents": 100}
        ],
        "customer_id": 1,   (optional)
        "notes": "..."      (optional)
    }

    unit_price_cents defaults to the product's current price; discount_cents
    is the absolute discount for the line.
    """
    try:
        data = request.get_json(silent=True) or {}
        order = order_service.create_order(
            data.get("items"),
            customer_id=optional_int(data.get("customer_id"), "customer_id"),
            notes=data.get("notes"),
        )
        current_app.logger.info("Order created code=%s total_cents=%s", order.code, order.total_cents)
        return jsonify({"order": order.to_dict()}), 201
    except BackofficeError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<int:order_id>")
def get_order_route(order_id: int):
    try:
        order = order_service.get_order(order_id)
        return jsonify({"order": order.to_dict(include_customer=True)}), 200
    except BackofficeError as e:
        return error_response(e)


@orders_bp.patch("/<int:order_id>")
def update_order_route(order_id: int):
    """
    Edit a pending order.

    Request body (all optional):
    {
        "items": [...],          (replaces the whole item set)
        "customer_id": 1,        (null detaches the customer)
        "notes": "...",
        "status": "confirmed",   (pending | confirmed | canceled)
        "business_date": "2025-01-31"
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        kwargs = {}
        if "customer_id" in data:
            kwargs["customer_id"] = optional_int(data.get("customer_id"), "customer_id")
        if "notes" in data:
            kwargs["notes"] = data.get("notes")

        order = order_service.update_order(
            order_id,
            items=data.get("items"),
            status=data.get("status"),
            business_date=parse_business_date(data.get("business_date")),
            **kwargs,
        )
        return jsonify({"order": order.to_dict()}), 200
    except BackofficeError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/confirm")
def confirm_order_route(order_id: int):
    """
    Confirm a pending order. Confirming twice is a no-op.

    Request body (optional):
    {
        "business_date": "2025-01-31"   (cash session day, default today)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        order = order_service.confirm_order(
            order_id,
            business_date=parse_business_date(data.get("business_date")),
        )
        current_app.logger.info("Order confirmed code=%s total_cents=%s", order.code, order.total_cents)
        return jsonify({"order": order.to_dict()}), 200
    except BackofficeError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to confirm order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/cancel")
def cancel_order_route(order_id: int):
    try:
        order = order_service.cancel_order(order_id)
        current_app.logger.info("Order canceled code=%s", order.code)
        return jsonify({"order": order.to_dict()}), 200
    except BackofficeError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to cancel order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.delete("/<int:order_id>")
def delete_order_route(order_id: int):
    try:
        order_service.remove_order(order_id)
        return jsonify({"deleted": True, "id": order_id}), 200
    except BackofficeError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to delete order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<int:order_id>/credit-notes")
def list_order_credit_notes_route(order_id: int):
    try:
        notes = credit_note_service.list_for_order(order_id)
        return jsonify({"credit_notes": [n.to_dict() for n in notes]}), 200
    except BackofficeError as e:
        return error_response(e)
