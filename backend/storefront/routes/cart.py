# Overview: Flask API routes for the shopping cart; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import StorefrontError
from ..decorators import error_response, require_auth
from ..services import cart_service
from ..validation import parse_quantity

cart_bp = Blueprint("cart", __name__, url_prefix="/api/cart")


@cart_bp.get("")
@require_auth
def get_cart():
    try:
        cart = cart_service.get_cart(g.ctx)
        return jsonify({"cart": cart.to_dict()}), 200
    except Exception:
        current_app.logger.exception("Failed to load cart")
        return jsonify({"error": "Internal server error"}), 500


@cart_bp.post("/items")
@require_auth
def add_item():
    """
    Request body:
    {
        "product_id": 12,
        "quantity": 1  (optional, default 1)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        product_id = data.get("product_id")
        if not product_id:
            return jsonify({"error": "product_id required"}), 400
        quantity = parse_quantity(data.get("quantity", 1))

        cart = cart_service.add_item(g.ctx, int(product_id), quantity)
        return jsonify({"cart": cart.to_dict()}), 201
    except StorefrontError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to add cart item")
        return jsonify({"error": "Internal server error"}), 500


@cart_bp.patch("/items/<int:product_id>")
@require_auth
def update_item(product_id: int):
    try:
        data = request.get_json(silent=True) or {}
        quantity = data.get("quantity")
        if quantity is None:
            return jsonify({"error": "quantity required"}), 400
        quantity = 0 if quantity == 0 else parse_quantity(quantity)

        cart = cart_service.update_quantity(g.ctx, product_id, quantity)
        return jsonify({"cart": cart.to_dict()}), 200
    except StorefrontError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update cart item")
        return jsonify({"error": "Internal server error"}), 500


@cart_bp.delete("/items/<int:product_id>")
@require_auth
def remove_item(product_id: int):
    try:
        cart = cart_service.remove_item(g.ctx, product_id)
        return jsonify({"cart": cart.to_dict()}), 200
    except StorefrontError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to remove cart item")
        return jsonify({"error": "Internal server error"}), 500
