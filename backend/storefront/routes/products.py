# Overview: Flask API routes for the public catalog; parses input and returns JSON responses.

from flask import Blueprint, jsonify, current_app

from ..errors import StorefrontError
from ..decorators import error_response
from ..services import catalog_service, inventory_service
from ..services.pricing import unit_price_for

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


def _product_view(product) -> dict:
    data = product.to_dict()
    data["price_cents"] = unit_price_for(product)
    data["available"] = inventory_service.get_available(product.id)
    return data


@products_bp.get("")
def list_products():
    """Listed products in listed categories, with their current selling price."""
    try:
        products = catalog_service.list_products(listed_only=True)
        return jsonify({"products": [_product_view(p) for p in products]}), 200
    except Exception:
        current_app.logger.exception("Failed to list products")
        return jsonify({"error": "Internal server error"}), 500


@products_bp.get("/<int:product_id>")
def get_product(product_id: int):
    try:
        listed = catalog_service.get_listed_product(product_id)
        if listed is None or not listed.is_listed:
            return jsonify({"error": "Product not found"}), 404
        return jsonify({
            "product_id": listed.product_id,
            "name": listed.name,
            "category_id": listed.category_id,
            "price_cents": listed.price_cents,
            "available": listed.available,
        }), 200
    except StorefrontError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get product")
        return jsonify({"error": "Internal server error"}), 500
