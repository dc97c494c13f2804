# Overview: Flask API routes for a shopper's orders; history, cancellation and returns.

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import StorefrontError
from ..decorators import error_response, require_auth
from ..services import cancellation_service, order_service

orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


@orders_bp.get("")
@require_auth
def list_orders():
    try:
        orders = order_service.list_orders_for_user(g.ctx)
        return jsonify({"orders": [o.to_dict(include_items=False) for o in orders]}), 200
    except Exception:
        current_app.logger.exception("Failed to list orders")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<int:order_id>")
@require_auth
def get_order(order_id: int):
    """Order with items and its status timeline."""
    try:
        order = order_service.get_order_for_user(g.ctx, order_id)
        data = order.to_dict()
        data["events"] = [ev.to_dict() for ev in order.events]
        data["is_paid"] = order_service.is_order_paid(order)
        return jsonify({"order": data}), 200
    except StorefrontError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/cancel")
@require_auth
def cancel_order(order_id: int):
    try:
        data = request.get_json(silent=True) or {}
        order = cancellation_service.cancel_order(g.ctx, order_id, reason=data.get("reason"))
        return jsonify({"order": order.to_dict()}), 200
    except StorefrontError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to cancel order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/items/<int:item_id>/cancel")
@require_auth
def cancel_item(order_id: int, item_id: int):
    """
    Cancel one line before shipment.

    The refund (line paid share, or the order remainder for the last line)
    goes to the wallet.
    """
    try:
        data = request.get_json(silent=True) or {}
        item = cancellation_service.cancel_item(g.ctx, order_id, item_id, reason=data.get("reason"))
        order = order_service.get_order_for_user(g.ctx, order_id)
        return jsonify({"item": item.to_dict(), "order": order.to_dict()}), 200
    except StorefrontError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to cancel order item")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/items/<int:item_id>/return")
@require_auth
def request_return(order_id: int, item_id: int):
    """
    Request body:
    {
        "reason": "Wrong size"   (required)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        item = cancellation_service.request_return(g.ctx, order_id, item_id, data.get("reason") or "")
        return jsonify({"item": item.to_dict()}), 200
    except StorefrontError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to request return")
        return jsonify({"error": "Internal server error"}), 500
