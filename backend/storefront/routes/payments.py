# Overview: Flask API routes for payments; starting attempts, gateway callbacks and reported failures.

"""
Payment API Routes

The capture callback is unauthenticated: trust comes from the gateway
signature, and the amount is re-read from the gateway rather than taken from
the request body.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import StorefrontError
from ..decorators import error_response, require_auth
from ..services import payment_service

payments_bp = Blueprint("payments", __name__, url_prefix="/api/payments")


def _attempt_view(attempt) -> dict | None:
    return attempt.to_dict() if attempt is not None else None


@payments_bp.post("/start")
@require_auth
def start_payment():
    """
    Request body:
    {
        "draft_key": "..."   (the Idempotency-Key used at checkout)
    }

    Returns:
        200: ONLINE attempt awaiting capture, or a WALLET/COD order confirmed
        409: Draft expired, insufficient wallet balance, stock gone, coupon no longer valid
        503: Gateway unavailable (retry with the same draft_key)
    """
    try:
        data = request.get_json(silent=True) or {}
        draft_key = (data.get("draft_key") or "").strip()
        if not draft_key:
            return jsonify({"error": "draft_key required"}), 400

        order, attempt = payment_service.start_payment(g.ctx, draft_key)
        return jsonify({
            "order": order.to_dict(),
            "payment_attempt": _attempt_view(attempt),
        }), 200
    except StorefrontError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to start payment")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.post("/callback")
def capture_callback():
    """
    Gateway capture callback.

    Request body:
    {
        "razorpay_order_id": "order_...",
        "razorpay_payment_id": "pay_...",
        "razorpay_signature": "..."   (or X-Razorpay-Signature header)
    }

    Replays return the same order with 200.
    """
    try:
        data = request.get_json(silent=True) or {}
        signature = data.get("razorpay_signature") or request.headers.get("X-Razorpay-Signature") or ""

        order = payment_service.handle_capture_callback(signature, data)
        return jsonify({"order": order.to_dict()}), 200
    except StorefrontError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to handle capture callback")
        return jsonify({"error": "Internal server error"}), 500


@payments_bp.post("/failure")
@require_auth
def report_failure():
    """
    Request body:
    {
        "draft_key": "...",
        "reason": "User closed the payment window"  (optional)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        draft_key = (data.get("draft_key") or "").strip()
        if not draft_key:
            return jsonify({"error": "draft_key required"}), 400

        order = payment_service.record_payment_failure(g.ctx, draft_key, reason=data.get("reason"))
        return jsonify({"order": order.to_dict()}), 200
    except StorefrontError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to record payment failure")
        return jsonify({"error": "Internal server error"}), 500
