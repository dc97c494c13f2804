# Overview: Flask API routes for checkout; draft previews, order placement and coupons.

"""
Checkout API Routes

FLOW:
1. POST /api/checkout/draft  -> priced preview, nothing stored
2. POST /api/checkout        -> order in PENDING_PAYMENT (send Idempotency-Key)
3. POST /api/payments/start  -> see payments.py
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import StorefrontError
from ..decorators import error_response, require_auth
from ..services import checkout_service, coupon_service

checkout_bp = Blueprint("checkout", __name__, url_prefix="/api")


@checkout_bp.post("/checkout/draft")
@require_auth
def preview_draft():
    """
    Request body:
    {
        "coupon_code": "SAVE10",  (optional)
        "payment_method": "ONLINE" | "WALLET" | "COD"
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        draft = checkout_service.build_draft(
            g.ctx,
            coupon_code=data.get("coupon_code"),
            payment_method=data.get("payment_method"),
        )
        return jsonify({"draft": draft.to_dict()}), 200
    except StorefrontError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to build checkout draft")
        return jsonify({"error": "Internal server error"}), 500


@checkout_bp.post("/checkout")
@require_auth
def place_order():
    """
    Accept the current cart as an order awaiting payment.

    Replaying the same Idempotency-Key returns the same order.

    Returns:
        201: Order created (or replayed)
        400: Empty cart, bad payment method, COD over limit
        409: Product unavailable, stock short, coupon invalid
    """
    try:
        data = request.get_json(silent=True) or {}
        order = checkout_service.checkout(
            g.ctx,
            coupon_code=data.get("coupon_code"),
            payment_method=data.get("payment_method"),
        )
        return jsonify({"order": order.to_dict()}), 201
    except StorefrontError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to place order")
        return jsonify({"error": "Internal server error"}), 500


@checkout_bp.get("/coupons")
@require_auth
def available_coupons():
    try:
        coupons = coupon_service.list_available_coupons(g.ctx.user_id)
        return jsonify({"coupons": [c.to_dict() for c in coupons]}), 200
    except Exception:
        current_app.logger.exception("Failed to list coupons")
        return jsonify({"error": "Internal server error"}), 500
