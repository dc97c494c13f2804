# Overview: Service-layer operations for cancellations and returns; restock plus pro-rata wallet refunds.

"""
Cancellation / Return Flow

WHY: Partial cancellation and returns must give back exactly what was paid
for the line, no more, and put the units back on the shelf exactly once.

REFUND AMOUNT for an item:
- normally its paid share: line_total - discount_share (fixed at checkout)
- if it is the last item of the order still holding money, the order's
  unrefunded remainder instead, so shipping and rounding come back too

RULES:
- Cancel (user): confirmed orders, before shipment; restock CANCEL_RESTOCK
- Return request (user): after delivery, within RETURN_WINDOW_DAYS
- Return approve (admin): restock RETURN_RESTOCK, refund, REFUNDED
- Return reject (admin): RETURN_REJECTED
- Refunds go to the wallet, except for COD money never collected; the
  order's refunded_cents grows either way
- Every operation is idempotent on re-run
"""

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import Order, OrderItem
from ..errors import ConflictError, NotFoundError, ValidationError
from storefront.time_utils import utcnow, within_days
from .concurrency import begin_write_transaction, lock_for_update, run_with_retry
from .inventory_service import TX_CANCEL_RESTOCK, TX_RETURN_RESTOCK, restock_item
from .ledger_service import append_ledger_event
from .order_service import (
    FULFILLMENT_DELIVERED,
    FULFILLMENT_UNFULFILLED,
    ORDER_CANCELLED,
    ORDER_CONFIRMED,
    ORDER_PAYMENT_FAILED,
    ORDER_PENDING_PAYMENT,
    add_order_event,
    is_order_paid,
)
from .session_service import RequestContext
from .wallet_service import ENTRY_REFUND, credit


ITEM_ACTIVE = "ACTIVE"
ITEM_CANCELLED = "CANCELLED"
ITEM_RETURN_REQUESTED = "RETURN_REQUESTED"
ITEM_REFUNDED = "REFUNDED"
ITEM_RETURN_REJECTED = "RETURN_REJECTED"

# Items whose money has gone back to the customer
CLOSED_ITEM_STATES = (ITEM_CANCELLED, ITEM_REFUNDED)


def refund_key(order_item_id: int) -> str:
    return f"refund:{order_item_id}"


def _lock_order(order_id: int) -> Order:
    order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).populate_existing().first()
    if order is None:
        raise NotFoundError("Order not found")
    return order


def _owned_order(ctx: RequestContext, order_id: int) -> Order:
    order = _lock_order(order_id)
    if order.user_id != ctx.user_id and not ctx.is_admin:
        raise NotFoundError("Order not found")
    return order


def _find_item(order: Order, item_id: int) -> OrderItem:
    for item in order.items:
        if item.id == item_id:
            return item
    raise NotFoundError("Order item not found")


def item_refund_cents(order: Order, item: OrderItem) -> int:
    """Amount to give back for `item`, given the order's other items as they stand now."""
    remaining = order.total_cents - order.refunded_cents
    others_closed = all(other.status in CLOSED_ITEM_STATES for other in order.items if other.id != item.id)
    if others_closed:
        return max(remaining, 0)
    return max(0, min(item.paid_share_cents, remaining))


def _refund_item(order: Order, item: OrderItem, *, restock_type: str, actor_user_id: int | None, description: str) -> int:
    """Restock, refund and account for one item inside the current transaction."""
    restock_item(item, restock_type, actor_user_id=actor_user_id)

    amount = item_refund_cents(order, item)
    paid = is_order_paid(order)
    if amount > 0 and paid:
        credit(
            order.user_id,
            amount,
            entry_type=ENTRY_REFUND,
            idempotency_key=refund_key(item.id),
            order_id=order.id,
            description=description,
        )

    item.refund_cents = amount
    order.refunded_cents += amount

    append_ledger_event(
        event_type="ORDER_ITEM_REFUNDED",
        event_category="orders",
        entity_type="order_item",
        entity_id=item.id,
        actor_user_id=actor_user_id,
        order_id=order.id,
        payload={"amount_cents": amount, "to_wallet": paid, "restock": restock_type},
    )
    return amount


def _run(op):
    try:
        return run_with_retry(op)
    except Exception:
        db.session.rollback()
        raise


# =============================================================================
# CANCELLATION (USER)
# =============================================================================

def _cancel_one(order: Order, item: OrderItem, reason: str | None, actor_user_id: int) -> None:
    _refund_item(
        order,
        item,
        restock_type=TX_CANCEL_RESTOCK,
        actor_user_id=actor_user_id,
        description=f"Refund for cancelled item in order {order.order_number}",
    )
    item.status = ITEM_CANCELLED
    item.cancel_reason = (reason or "")[:255] or None
    item.cancelled_at = utcnow()
    add_order_event(order, "ITEM_CANCELLED", f"{item.product_name} cancelled")


def _close_order_if_done(order: Order) -> None:
    if all(item.status == ITEM_CANCELLED for item in order.items):
        order.status = ORDER_CANCELLED
        order.cancelled_at = utcnow()
        add_order_event(order, ORDER_CANCELLED, "Order cancelled")


def _check_cancellable(order: Order) -> None:
    if order.status != ORDER_CONFIRMED:
        raise ConflictError(f"Cannot cancel items of a {order.status} order")
    if order.fulfillment_status != FULFILLMENT_UNFULFILLED:
        raise ConflictError("Order has already shipped and can no longer be cancelled")


def cancel_item(ctx: RequestContext, order_id: int, item_id: int, reason: str | None = None) -> OrderItem:
    """Cancel one line before shipment. Cancelling a cancelled line is a no-op."""
    def _op():
        begin_write_transaction()
        order = _owned_order(ctx, order_id)
        item = _find_item(order, item_id)
        if item.status == ITEM_CANCELLED:
            return item
        _check_cancellable(order)
        if item.status != ITEM_ACTIVE:
            raise ConflictError(f"Cannot cancel an item that is {item.status}")

        _cancel_one(order, item, reason, ctx.user_id)
        _close_order_if_done(order)
        db.session.commit()
        current_app.logger.info("Order %s item %s cancelled", order.id, item.id)
        return item

    return _run(_op)


def cancel_order(ctx: RequestContext, order_id: int, reason: str | None = None) -> Order:
    """
    Cancel every remaining line (confirmed, before shipment), or abandon an
    unpaid order. Cancelling a cancelled order is a no-op.
    """
    def _op():
        begin_write_transaction()
        order = _owned_order(ctx, order_id)
        if order.status == ORDER_CANCELLED:
            return order

        if order.status in (ORDER_PENDING_PAYMENT, ORDER_PAYMENT_FAILED):
            order.status = ORDER_CANCELLED
            order.cancelled_at = utcnow()
            for item in order.items:
                item.status = ITEM_CANCELLED
                item.cancelled_at = order.cancelled_at
                item.cancel_reason = (reason or "")[:255] or None
            add_order_event(order, ORDER_CANCELLED, "Order cancelled before payment")
        else:
            _check_cancellable(order)
            for item in order.items:
                if item.status == ITEM_ACTIVE:
                    _cancel_one(order, item, reason, ctx.user_id)
            _close_order_if_done(order)

        append_ledger_event(
            event_type="ORDER_CANCELLED",
            event_category="orders",
            entity_type="order",
            entity_id=order.id,
            actor_user_id=ctx.user_id,
            order_id=order.id,
            note=reason,
        )
        db.session.commit()
        current_app.logger.info("Order %s cancelled", order.id)
        return order

    return _run(_op)


# =============================================================================
# RETURNS
# =============================================================================

def request_return(ctx: RequestContext, order_id: int, item_id: int, reason: str) -> OrderItem:
    if not reason or not reason.strip():
        raise ValidationError("A return reason is required")

    def _op():
        begin_write_transaction()
        order = _owned_order(ctx, order_id)
        item = _find_item(order, item_id)
        if item.status == ITEM_RETURN_REQUESTED:
            return item
        if order.fulfillment_status != FULFILLMENT_DELIVERED:
            raise ConflictError("Only delivered orders can be returned")
        if not within_days(order.delivered_at, current_app.config["RETURN_WINDOW_DAYS"]):
            raise ConflictError("The return window for this order has closed")
        if item.status != ITEM_ACTIVE:
            raise ConflictError(f"Cannot return an item that is {item.status}")

        item.status = ITEM_RETURN_REQUESTED
        item.return_reason = reason.strip()[:255]
        item.return_requested_at = utcnow()
        add_order_event(order, ITEM_RETURN_REQUESTED, f"Return requested for {item.product_name}")
        append_ledger_event(
            event_type="RETURN_REQUESTED",
            event_category="returns",
            entity_type="order_item",
            entity_id=item.id,
            actor_user_id=ctx.user_id,
            order_id=order.id,
            note=item.return_reason,
        )
        db.session.commit()
        return item

    return _run(_op)


def approve_return(order_id: int, item_id: int, actor_user_id: int | None = None) -> OrderItem:
    def _op():
        begin_write_transaction()
        order = _lock_order(order_id)
        item = _find_item(order, item_id)
        if item.status == ITEM_REFUNDED:
            return item
        if item.status != ITEM_RETURN_REQUESTED:
            raise ConflictError(f"No pending return for this item (status {item.status})")

        _refund_item(
            order,
            item,
            restock_type=TX_RETURN_RESTOCK,
            actor_user_id=actor_user_id,
            description=f"Refund for returned item in order {order.order_number}",
        )
        item.status = ITEM_REFUNDED
        item.return_decided_at = utcnow()
        add_order_event(order, ITEM_REFUNDED, f"Return approved for {item.product_name}, refund issued")
        db.session.commit()
        current_app.logger.info("Return approved for order %s item %s", order.id, item.id)
        return item

    return _run(_op)


def reject_return(order_id: int, item_id: int, actor_user_id: int | None = None, note: str | None = None) -> OrderItem:
    def _op():
        begin_write_transaction()
        order = _lock_order(order_id)
        item = _find_item(order, item_id)
        if item.status == ITEM_RETURN_REJECTED:
            return item
        if item.status != ITEM_RETURN_REQUESTED:
            raise ConflictError(f"No pending return for this item (status {item.status})")

        item.status = ITEM_RETURN_REJECTED
        item.return_decided_at = utcnow()
        add_order_event(order, ITEM_RETURN_REJECTED, f"Return rejected for {item.product_name}")
        append_ledger_event(
            event_type="RETURN_REJECTED",
            event_category="returns",
            entity_type="order_item",
            entity_id=item.id,
            actor_user_id=actor_user_id,
            order_id=order.id,
            note=note,
        )
        db.session.commit()
        return item

    return _run(_op)


def list_pending_returns() -> list[OrderItem]:
    return (
        db.session.query(OrderItem)
        .filter_by(status=ITEM_RETURN_REQUESTED)
        .order_by(OrderItem.return_requested_at.asc())
        .all()
    )
