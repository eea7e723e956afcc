# Overview: Flask API routes for products operations; parses input and returns JSON responses.

# backend/backoffice/routes/products.py
"""
Product catalog routes.

Stock counters are read-only here except through adjust-stock; reservations
only move through orders.
"""
from flask import Blueprint, request, jsonify, current_app

from ..errors import BackofficeError, error_response
from ..services import product_service, inventory_service
from ..validation import coerce_int

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.post("")
def create_product_route():
    """
    Create a product.

    Request body:
    {
        "name": "Coffee beans 1kg",
        "price_cents": 1599,
        "stock": 10,          (optional, default 0)
        "sku": "COF001",      (optional, generated when omitted)
        "category": "Coffee", (optional)
        "barcode": "7790001"  (optional)
    }
    """
    try:
        product = product_service.create_product(request.get_json(silent=True))
        return jsonify({"product": product.to_dict()}), 201
    except BackofficeError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create product")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.get("/<int:product_id>")
def get_product_route(product_id: int):
    try:
        product = inventory_service.get_product(product_id)
        return jsonify({"product": product.to_dict()}), 200
    except BackofficeError as e:
        return error_response(e)


@products_bp.patch("/<int:product_id>")
def update_product_route(product_id: int):
    """Update name, price, sku, category or barcode (stock is not writable here)."""
    try:
        product = product_service.update_product(product_id, request.get_json(silent=True))
        return jsonify({"product": product.to_dict()}), 200
    except BackofficeError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update product")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.post("/<int:product_id>/adjust-stock")
def adjust_stock_route(product_id: int):
    """
    Manual stock correction.

    Request body:
    {
        "quantity_delta": -3
    }

    Stock is floored at 0; a correction that would leave less stock than
    pending orders hold is rejected (409).
    """
    try:
        data = request.get_json(silent=True) or {}
        delta = coerce_int(data.get("quantity_delta"), "quantity_delta")
        product = inventory_service.adjust_stock(product_id, delta)
        current_app.logger.info(
            "Stock adjusted product_id=%s delta=%s stock=%s", product_id, delta, product.stock
        )
        return jsonify({"product": product.to_dict()}), 200
    except BackofficeError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to adjust stock")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.get("/<int:product_id>/stock")
def stock_summary_route(product_id: int):
    """Stock, reserved and available units of one product."""
    try:
        return jsonify({"stock": inventory_service.get_stock_summary(product_id)}), 200
    except BackofficeError as e:
        return error_response(e)
