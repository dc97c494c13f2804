# Overview: Flask API routes for admin operations; catalog, stock, coupons, fulfilment and returns.

"""
Admin routes.

Provides endpoints for:
- Catalog (categories, products)
- Stock movements and ledger verification
- Coupons
- Order fulfilment (ship, deliver) and return decisions
- Payment reversals and capture reconciliation
- Sales report
- Wallet adjustments and the audit log

All endpoints require an authenticated admin.
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import StorefrontError
from ..decorators import error_response, require_admin, require_auth
from ..services import (
    cancellation_service,
    catalog_service,
    coupon_service,
    inventory_service,
    ledger_service,
    order_service,
    payment_service,
    reporting_service,
    reversal_service,
    wallet_service,
)

admin_bp = Blueprint("admin", __name__, url_prefix="/api/admin")


def _int_field(data: dict, name: str) -> int | None:
    value = data.get(name)
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _handle(action: str, fn, status: int = 200):
    try:
        return fn(), status
    except StorefrontError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to %s", action)
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# CATALOG
# =============================================================================

@admin_bp.post("/categories")
@require_auth
@require_admin
def create_category():
    data = request.get_json(silent=True) or {}
    return _handle(
        "create category",
        lambda: jsonify({"category": catalog_service.create_category(data, g.ctx.user_id).to_dict()}),
        201,
    )


@admin_bp.patch("/categories/<int:category_id>")
@require_auth
@require_admin
def update_category(category_id: int):
    data = request.get_json(silent=True) or {}
    return _handle(
        "update category",
        lambda: jsonify({"category": catalog_service.update_category(category_id, data, g.ctx.user_id).to_dict()}),
    )


@admin_bp.get("/products")
@require_auth
@require_admin
def list_products():
    """All non-deleted products, listed or not."""
    return _handle(
        "list products",
        lambda: jsonify({"products": [p.to_dict() for p in catalog_service.list_products(listed_only=False)]}),
    )


@admin_bp.post("/products")
@require_auth
@require_admin
def create_product():
    """
    Request body:
    {
        "name": "Cotton Tee",
        "category_id": 1,
        "price_cents": 79900,
        "sale_price_cents": 59900,   (optional)
        "discount_percent": 10       (optional)
    }
    """
    data = request.get_json(silent=True) or {}
    return _handle(
        "create product",
        lambda: jsonify({"product": catalog_service.create_product(data, g.ctx.user_id).to_dict()}),
        201,
    )


@admin_bp.patch("/products/<int:product_id>")
@require_auth
@require_admin
def update_product(product_id: int):
    data = request.get_json(silent=True) or {}
    return _handle(
        "update product",
        lambda: jsonify({"product": catalog_service.update_product(product_id, data, g.ctx.user_id).to_dict()}),
    )


@admin_bp.delete("/products/<int:product_id>")
@require_auth
@require_admin
def delete_product(product_id: int):
    return _handle(
        "delete product",
        lambda: jsonify({"product": catalog_service.delete_product(product_id, g.ctx.user_id).to_dict()}),
    )


# =============================================================================
# INVENTORY
# =============================================================================

@admin_bp.post("/inventory/receive")
@require_auth
@require_admin
def receive_stock():
    """
    Request body:
    {
        "product_id": 1,
        "quantity": 25,
        "note": "PO 1182"   (optional)
    }

    Idempotency-Key header makes a retried receive a no-op.
    """
    data = request.get_json(silent=True) or {}
    product_id = _int_field(data, "product_id")
    quantity = _int_field(data, "quantity")
    if product_id is None or quantity is None:
        return jsonify({"error": "product_id and quantity required"}), 400

    def _do():
        tx = inventory_service.receive_stock(
            product_id,
            quantity,
            actor_user_id=g.ctx.user_id,
            note=data.get("note"),
            idempotency_key=g.ctx.idempotency_key,
        )
        return jsonify({"transaction": tx.to_dict(), "available": inventory_service.get_available(product_id)})

    return _handle("receive stock", _do, 201)


@admin_bp.post("/inventory/adjust")
@require_auth
@require_admin
def adjust_stock():
    data = request.get_json(silent=True) or {}
    product_id = _int_field(data, "product_id")
    quantity_delta = _int_field(data, "quantity_delta")
    if product_id is None or quantity_delta is None:
        return jsonify({"error": "product_id and quantity_delta required"}), 400

    def _do():
        tx = inventory_service.adjust_stock(
            product_id,
            quantity_delta,
            actor_user_id=g.ctx.user_id,
            note=data.get("note"),
            idempotency_key=g.ctx.idempotency_key,
        )
        return jsonify({"transaction": tx.to_dict(), "available": inventory_service.get_available(product_id)})

    return _handle("adjust stock", _do, 201)


@admin_bp.get("/inventory/<int:product_id>/movements")
@require_auth
@require_admin
def list_movements(product_id: int):
    return _handle(
        "list stock movements",
        lambda: jsonify({
            "product_id": product_id,
            "available": inventory_service.get_available(product_id),
            "movements": [tx.to_dict() for tx in inventory_service.list_movements(product_id)],
        }),
    )


@admin_bp.get("/inventory/verify")
@require_auth
@require_admin
def verify_inventory():
    """Products whose stock level disagrees with their movement history."""
    def _do():
        mismatches = inventory_service.verify_stock_ledger()
        return jsonify({"ok": not mismatches, "mismatches": mismatches})

    return _handle("verify inventory", _do)


# =============================================================================
# COUPONS
# =============================================================================

@admin_bp.post("/coupons")
@require_auth
@require_admin
def create_coupon():
    data = request.get_json(silent=True) or {}
    return _handle(
        "create coupon",
        lambda: jsonify({"coupon": coupon_service.create_coupon(data, g.ctx.user_id).to_dict()}),
        201,
    )


@admin_bp.post("/coupons/<int:coupon_id>/deactivate")
@require_auth
@require_admin
def deactivate_coupon(coupon_id: int):
    return _handle(
        "deactivate coupon",
        lambda: jsonify({"coupon": coupon_service.deactivate_coupon(coupon_id, g.ctx.user_id).to_dict()}),
    )


# =============================================================================
# ORDERS & FULFILMENT
# =============================================================================

@admin_bp.get("/orders")
@require_auth
@require_admin
def list_orders():
    """
    Query params:
    - status: PENDING_PAYMENT | CONFIRMED | PAYMENT_FAILED | CANCELLED
    - limit: int (default 100)
    """
    status = request.args.get("status")
    limit = request.args.get("limit", default=100, type=int)
    return _handle(
        "list orders",
        lambda: jsonify({"orders": [o.to_dict(include_items=False) for o in order_service.list_orders(status=status, limit=limit)]}),
    )


@admin_bp.post("/orders/<int:order_id>/ship")
@require_auth
@require_admin
def ship_order(order_id: int):
    return _handle(
        "ship order",
        lambda: jsonify({"order": order_service.mark_shipped(order_id, g.ctx.user_id).to_dict()}),
    )


@admin_bp.post("/orders/<int:order_id>/deliver")
@require_auth
@require_admin
def deliver_order(order_id: int):
    return _handle(
        "deliver order",
        lambda: jsonify({"order": order_service.mark_delivered(order_id, g.ctx.user_id).to_dict()}),
    )


# =============================================================================
# RETURNS
# =============================================================================

@admin_bp.get("/returns")
@require_auth
@require_admin
def pending_returns():
    return _handle(
        "list pending returns",
        lambda: jsonify({"items": [item.to_dict() for item in cancellation_service.list_pending_returns()]}),
    )


@admin_bp.post("/orders/<int:order_id>/items/<int:item_id>/return/approve")
@require_auth
@require_admin
def approve_return(order_id: int, item_id: int):
    return _handle(
        "approve return",
        lambda: jsonify({"item": cancellation_service.approve_return(order_id, item_id, g.ctx.user_id).to_dict()}),
    )


@admin_bp.post("/orders/<int:order_id>/items/<int:item_id>/return/reject")
@require_auth
@require_admin
def reject_return(order_id: int, item_id: int):
    data = request.get_json(silent=True) or {}
    return _handle(
        "reject return",
        lambda: jsonify({
            "item": cancellation_service.reject_return(order_id, item_id, g.ctx.user_id, note=data.get("note")).to_dict()
        }),
    )


# =============================================================================
# PAYMENTS
# =============================================================================

@admin_bp.post("/payments/reversals/process")
@require_auth
@require_admin
def process_reversals():
    return _handle("process reversals", lambda: jsonify(reversal_service.process_pending_reversals()))


@admin_bp.post("/payments/reconcile")
@require_auth
@require_admin
def reconcile_captures():
    """Confirm or reverse ONLINE payments captured without a verified callback."""
    return _handle("reconcile captures", lambda: jsonify(payment_service.reconcile_awaiting_captures()))


# =============================================================================
# REPORTS
# =============================================================================

@admin_bp.get("/reports/sales")
@require_auth
@require_admin
def sales_report():
    """
    Query params:
    - start, end: ISO-8601 datetimes bounding confirmed_at (either optional)
    - payment_method: ONLINE | WALLET | COD
    - group_by: day | month (default day)
    """
    return _handle(
        "build sales report",
        lambda: jsonify(reporting_service.sales_report(
            request.args.get("start"),
            request.args.get("end"),
            payment_method=request.args.get("payment_method"),
            group_by=request.args.get("group_by", "day"),
        )),
    )


# =============================================================================
# WALLET & AUDIT
# =============================================================================

@admin_bp.post("/wallet/<int:user_id>/adjust")
@require_auth
@require_admin
def adjust_wallet(user_id: int):
    """
    Request body:
    {
        "amount_cents": -5000,   (signed, non-zero)
        "description": "Goodwill"
    }

    Requires an Idempotency-Key header.
    """
    data = request.get_json(silent=True) or {}
    amount_cents = _int_field(data, "amount_cents")
    if amount_cents is None:
        return jsonify({"error": "amount_cents required"}), 400
    if not g.ctx.idempotency_key:
        return jsonify({"error": "Idempotency-Key header required"}), 400

    def _do():
        entry = wallet_service.admin_adjust(
            user_id,
            amount_cents,
            idempotency_key=f"adjust:{g.ctx.idempotency_key}",
            description=data.get("description"),
        )
        return jsonify({"entry": entry.to_dict(), "balance_cents": wallet_service.get_balance(user_id)})

    return _handle("adjust wallet", _do, 201)


@admin_bp.get("/audit-events")
@require_auth
@require_admin
def audit_events():
    """
    Query params:
    - order_id: int
    - category: orders | payments | inventory | wallet | coupons | returns | referrals | catalog
    - limit: int (default 200)
    """
    order_id = request.args.get("order_id", type=int)
    category = request.args.get("category")
    limit = request.args.get("limit", default=200, type=int)
    return _handle(
        "list audit events",
        lambda: jsonify({
            "events": [ev.to_dict() for ev in ledger_service.list_events(order_id=order_id, event_category=category, limit=limit)]
        }),
    )
