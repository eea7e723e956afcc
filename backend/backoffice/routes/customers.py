# Overview: Flask API routes for customers operations; parses input and returns JSON responses.

# backend/backoffice/routes/customers.py
"""
Customer account routes.

The balance is never written directly: payments and adjustments go through
the customer ledger, which keeps Customer.balance_cents in step.
"""
from flask import Blueprint, request, jsonify, current_app

from ..errors import BackofficeError, error_response
from ..services import customer_service

customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")


@customers_bp.post("")
def create_customer_route():
    """
    Create a customer.

    Request body:
    {
        "name": "Ana Torres",
        "phone": "...",        (optional)
        "phone2": "...",       (optional)
        "email": "...",        (optional)
        "address": "...",      (optional)
        "postal_code": "...",  (optional)
        "notes": "..."         (optional)
    }
    """
    try:
        customer = customer_service.create_customer(request.get_json(silent=True))
        return jsonify({"customer": customer.to_dict()}), 201
    except BackofficeError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create customer")
        return jsonify({"error": "Internal server error"}), 500


@customers_bp.get("/<int:customer_id>")
def get_customer_route(customer_id: int):
    try:
        customer = customer_service.get_customer(customer_id)
        return jsonify({"customer": customer.to_dict()}), 200
    except BackofficeError as e:
        return error_response(e)


@customers_bp.patch("/<int:customer_id>")
def update_customer_route(customer_id: int):
    try:
        customer = customer_service.update_customer(customer_id, request.get_json(silent=True))
        return jsonify({"customer": customer.to_dict()}), 200
    except BackofficeError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update customer")
        return jsonify({"error": "Internal server error"}), 500


@customers_bp.delete("/<int:customer_id>")
def delete_customer_route(customer_id: int):
    """Delete a customer; refused (409) while orders reference them."""
    try:
        customer_service.delete_customer(customer_id)
        return jsonify({"deleted": True, "id": customer_id}), 200
    except BackofficeError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to delete customer")
        return jsonify({"error": "Internal server error"}), 500


@customers_bp.get("/<int:customer_id>/balance")
def get_balance_route(customer_id: int):
    try:
        return jsonify({"balance": customer_service.get_balance(customer_id)}), 200
    except BackofficeError as e:
        return error_response(e)


@customers_bp.post("/<int:customer_id>/payments")
def record_payment_route(customer_id: int):
    """
    Record a payment on the customer's account.

    Request body:
    {
        "amount_cents": 5000,
        "method": "cash",           (cash | debit | credit | transfer, default cash)
        "description": "..."        (optional)
    }

    Cash payments also enter today's cash session as income.
    """
    try:
        data = request.get_json(silent=True) or {}
        entry = customer_service.record_payment(
            customer_id,
            data.get("amount_cents"),
            method=data.get("method") or "cash",
            description=data.get("description"),
        )
        customer = customer_service.get_customer(customer_id)
        return jsonify({"entry": entry.to_dict(), "customer": customer.to_dict()}), 201
    except BackofficeError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to record customer payment")
        return jsonify({"error": "Internal server error"}), 500


@customers_bp.post("/<int:customer_id>/adjust")
def adjust_balance_route(customer_id: int):
    """
    Manual balance adjustment.

    Request body:
    {
        "amount_cents": -1500,  (signed, non-zero; positive increases the debt)
        "reason": "..."         (optional)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        entry = customer_service.adjust_balance(
            customer_id,
            data.get("amount_cents"),
            reason=data.get("reason"),
        )
        customer = customer_service.get_customer(customer_id)
        return jsonify({"entry": entry.to_dict(), "customer": customer.to_dict()}), 201
    except BackofficeError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to adjust customer balance")
        return jsonify({"error": "Internal server error"}), 500
