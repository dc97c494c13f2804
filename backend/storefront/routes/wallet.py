# Overview: Flask API routes for the wallet and referrals.

from flask import Blueprint, request, jsonify, g, current_app

from ..extensions import db
from ..errors import StorefrontError
from ..decorators import error_response, require_auth
from ..services import referral_service, wallet_service

wallet_bp = Blueprint("wallet", __name__, url_prefix="/api")


@wallet_bp.get("/wallet")
@require_auth
def get_wallet():
    """Balance plus the most recent ledger entries (newest first)."""
    try:
        user_id = g.ctx.user_id
        entries = wallet_service.list_entries(user_id)
        return jsonify({
            "balance_cents": wallet_service.get_balance(user_id),
            "entries": [e.to_dict() for e in entries],
        }), 200
    except Exception:
        current_app.logger.exception("Failed to load wallet")
        return jsonify({"error": "Internal server error"}), 500


@wallet_bp.get("/referrals")
@require_auth
def get_referrals():
    try:
        code = referral_service.ensure_referral_code(g.current_user)
        db.session.commit()
        referrals = referral_service.list_referrals(g.ctx.user_id)
        return jsonify({
            "referral_code": code,
            "referrals": [r.to_dict() for r in referrals],
        }), 200
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to load referrals")
        return jsonify({"error": "Internal server error"}), 500


@wallet_bp.post("/referrals")
@require_auth
def register_referral():
    """
    Request body:
    {
        "referral_code": "AB12CD34"
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        code = (data.get("referral_code") or "").strip()
        if not code:
            return jsonify({"error": "referral_code required"}), 400

        referral = referral_service.register_referral(code, g.ctx.user_id)
        return jsonify({"referral": referral.to_dict()}), 201
    except StorefrontError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to register referral")
        return jsonify({"error": "Internal server error"}), 500
