# Overview: Service-layer operations for orders; confirmation with inventory commit, fulfilment and queries.

"""
Order Confirmation & Inventory Commit

WHY: Confirmation is the one place where money, stock, coupon usage and
referral rewards all move. It runs as ONE database transaction (BEGIN
IMMEDIATE on SQLite, row locks elsewhere):

1. Lock attempt + order. Attempt already CAPTURED -> replay, no-op.
2. WALLET attempts debit the wallet (balance check in the same transaction).
3. Attempt -> CAPTURED (partial unique index: one per order).
4. Coupon: re-validate and compare-and-set used_count; CouponRedemption.
5. Stock: compare-and-set decrement + SALE movement per line.
6. Order -> CONFIRMED, timeline event.
7. Clear the cart.
8. Referral reward on a first purchase.

Any failure rolls the whole thing back (no stock moved, no wallet debit),
then a second transaction marks the attempt FAILED, the order
PAYMENT_FAILED, and schedules a reversal for money the gateway captured.

A capture for an order that another attempt already confirmed is an
invariant violation: logged, reversed, and the order is left alone.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Order, OrderEvent, PaymentAttempt
from ..errors import ConflictError, InvariantViolation, NotFoundError
from storefront.time_utils import utcnow
from .cart_service import clear_cart
from .checkout_service import METHOD_COD, METHOD_ONLINE, METHOD_WALLET
from .concurrency import begin_write_transaction, lock_for_update, run_with_retry
from .coupon_service import redeem_coupon
from .inventory_service import commit_sale
from .ledger_service import append_ledger_event
from .notification_service import send_order_confirmation
from .referral_service import reward_first_purchase
from .reversal_service import schedule_reversal
from .session_service import RequestContext
from .wallet_service import ENTRY_ORDER_PAYMENT, debit


# =============================================================================
# STATUS (CONSTANTS)
# =============================================================================

ORDER_PENDING_PAYMENT = "PENDING_PAYMENT"
ORDER_CONFIRMED = "CONFIRMED"
ORDER_PAYMENT_FAILED = "PAYMENT_FAILED"
ORDER_CANCELLED = "CANCELLED"

FULFILLMENT_UNFULFILLED = "UNFULFILLED"
FULFILLMENT_SHIPPED = "SHIPPED"
FULFILLMENT_DELIVERED = "DELIVERED"

ATTEMPT_CREATED = "CREATED"
ATTEMPT_AWAITING_CAPTURE = "AWAITING_CAPTURE"
ATTEMPT_CAPTURED = "CAPTURED"
ATTEMPT_FAILED = "FAILED"


def payment_key(attempt_id: int) -> str:
    return f"payment:{attempt_id}"


def add_order_event(order: Order, status: str, description: str) -> OrderEvent:
    event = OrderEvent(order_id=order.id, status=status, description=description[:255])
    db.session.add(event)
    return event


def _lock_attempt_and_order(attempt_id: int) -> tuple[PaymentAttempt, Order]:
    attempt = lock_for_update(
        db.session.query(PaymentAttempt).filter_by(id=attempt_id)
    ).populate_existing().first()
    if attempt is None:
        raise NotFoundError("Payment attempt not found")
    order = lock_for_update(
        db.session.query(Order).filter_by(id=attempt.order_id)
    ).populate_existing().first()
    return attempt, order


# =============================================================================
# CONFIRMATION
# =============================================================================

def confirm_order(attempt_id: int, *, gateway_payment_ref: str | None = None) -> Order:
    """
    Capture `attempt_id` and confirm its order, exactly once.

    Raises StockUnavailableError, CouponInvalidError, InsufficientBalanceError
    or ConflictError (order cancelled) after recording the failure, and
    InvariantViolation when a storage constraint catches a defect.
    """
    outcome = {"newly_confirmed": False}

    def _op():
        outcome["newly_confirmed"] = False
        begin_write_transaction()
        attempt, order = _lock_attempt_and_order(attempt_id)

        if attempt.status == ATTEMPT_CAPTURED:
            return order

        if order.status == ORDER_CONFIRMED:
            _handle_duplicate_capture(order, attempt, gateway_payment_ref)
            db.session.commit()
            return order

        if order.status == ORDER_CANCELLED:
            raise ConflictError("Order was cancelled before payment completed", details={"order_id": order.id})

        now = utcnow()

        if attempt.method == METHOD_WALLET:
            debit(
                order.user_id,
                order.total_cents,
                entry_type=ENTRY_ORDER_PAYMENT,
                idempotency_key=payment_key(attempt.id),
                order_id=order.id,
                description=f"Payment for order {order.order_number}",
            )

        attempt.status = ATTEMPT_CAPTURED
        attempt.captured_at = now
        attempt.failure_reason = None
        if gateway_payment_ref:
            attempt.gateway_payment_ref = gateway_payment_ref
        db.session.flush()

        if order.coupon_id:
            redeem_coupon(
                order.coupon_id,
                user_id=order.user_id,
                order_id=order.id,
                discount_cents=order.discount_cents,
            )

        for item in order.items:
            commit_sale(item, actor_user_id=order.user_id)

        order.status = ORDER_CONFIRMED
        order.confirmed_at = now
        order.failure_reason = None
        if attempt.method == METHOD_COD:
            add_order_event(order, ORDER_CONFIRMED, "Order confirmed, pay on delivery")
        else:
            add_order_event(order, ORDER_CONFIRMED, "Payment received, order confirmed")

        clear_cart(order.user_id)
        reward_first_purchase(order)

        append_ledger_event(
            event_type="ORDER_CONFIRMED",
            event_category="orders",
            entity_type="order",
            entity_id=order.id,
            actor_user_id=order.user_id,
            order_id=order.id,
            payload={"attempt_id": attempt.id, "method": attempt.method, "total_cents": order.total_cents},
        )
        db.session.commit()
        outcome["newly_confirmed"] = True
        return order

    try:
        order = run_with_retry(_op)
    except NotFoundError:
        db.session.rollback()
        raise
    except ConflictError as exc:
        db.session.rollback()
        current_app.logger.info("Confirmation failed for attempt %s: %s", attempt_id, exc.message)
        record_attempt_failure(attempt_id, reason=exc.message, gateway_payment_ref=gateway_payment_ref)
        raise
    except IntegrityError as exc:
        db.session.rollback()
        violation = InvariantViolation(
            "Order confirmation violated a storage constraint",
            details={"attempt_id": attempt_id},
        )
        current_app.logger.error("Invariant violation confirming attempt %s: %s", attempt_id, exc.orig)
        record_attempt_failure(attempt_id, reason=violation.message, gateway_payment_ref=gateway_payment_ref)
        raise violation from exc

    if outcome["newly_confirmed"]:
        current_app.logger.info("Order %s confirmed via attempt %s", order.id, attempt_id)
        send_order_confirmation(order.user_id, order.id)
    return order


def _handle_duplicate_capture(order: Order, attempt: PaymentAttempt, gateway_payment_ref: str | None) -> None:
    violation = InvariantViolation(
        "Second capture for an already confirmed order",
        details={"order_id": order.id, "attempt_id": attempt.id},
    )
    current_app.logger.error("%s: order %s attempt %s", violation.message, order.id, attempt.id)

    attempt.status = ATTEMPT_FAILED
    attempt.failed_at = utcnow()
    attempt.failure_reason = "Duplicate capture"
    if gateway_payment_ref:
        attempt.gateway_payment_ref = gateway_payment_ref
    db.session.flush()

    if attempt.method == METHOD_ONLINE and attempt.gateway_payment_ref:
        schedule_reversal(attempt, order, "Duplicate capture")

    append_ledger_event(
        event_type="PAYMENT_DUPLICATE_CAPTURE",
        event_category="payments",
        entity_type="payment_attempt",
        entity_id=attempt.id,
        order_id=order.id,
        note=violation.message,
    )


def record_attempt_failure(
    attempt_id: int,
    *,
    reason: str,
    gateway_payment_ref: str | None = None,
    captured_amount_cents: int | None = None,
) -> Order | None:
    """
    Mark an attempt FAILED and its order PAYMENT_FAILED, in its own transaction.

    When the gateway already captured money for the attempt
    (gateway_payment_ref known), a reversal is scheduled for
    captured_amount_cents, or the attempt amount when not given. A no-op for
    attempts that are already CAPTURED.
    """
    def _op():
        begin_write_transaction()
        attempt, order = _lock_attempt_and_order(attempt_id)
        if attempt.status == ATTEMPT_CAPTURED:
            return order

        if order.status == ORDER_CONFIRMED:
            # Another attempt confirmed the order meanwhile
            _handle_duplicate_capture(order, attempt, gateway_payment_ref)
            db.session.commit()
            return order

        attempt.status = ATTEMPT_FAILED
        attempt.failed_at = utcnow()
        attempt.failure_reason = reason[:255]
        if gateway_payment_ref:
            attempt.gateway_payment_ref = gateway_payment_ref
        db.session.flush()

        if order.status in (ORDER_PENDING_PAYMENT, ORDER_PAYMENT_FAILED):
            order.status = ORDER_PAYMENT_FAILED
            order.failure_reason = reason[:255]
            add_order_event(order, ORDER_PAYMENT_FAILED, f"Payment failed: {reason}")

        if attempt.method == METHOD_ONLINE and attempt.gateway_payment_ref:
            schedule_reversal(attempt, order, reason, amount_cents=captured_amount_cents)

        append_ledger_event(
            event_type="PAYMENT_FAILED",
            event_category="payments",
            entity_type="payment_attempt",
            entity_id=attempt.id,
            order_id=order.id,
            note=reason,
        )
        db.session.commit()
        current_app.logger.info("Attempt %s failed for order %s: %s", attempt.id, order.id, reason)
        return order

    return run_with_retry(_op)


# =============================================================================
# FULFILMENT (ADMIN)
# =============================================================================

def _advance_fulfillment(order_id: int, *, expected: str, target: str, actor_user_id: int | None) -> Order:
    def _op():
        begin_write_transaction()
        order = lock_for_update(db.session.query(Order).filter_by(id=order_id)).populate_existing().first()
        if order is None:
            raise NotFoundError("Order not found")
        if order.fulfillment_status == target:
            return order
        if order.status != ORDER_CONFIRMED:
            raise ConflictError(f"Cannot mark a {order.status} order as {target}")
        if order.fulfillment_status != expected:
            raise ConflictError(f"Order must be {expected} before it is {target}")
        if not any(item.status == "ACTIVE" for item in order.items):
            raise ConflictError("Order has no active items")

        now = utcnow()
        order.fulfillment_status = target
        if target == FULFILLMENT_SHIPPED:
            order.shipped_at = now
            add_order_event(order, target, "Order shipped")
        else:
            order.delivered_at = now
            add_order_event(order, target, "Order delivered")

        append_ledger_event(
            event_type=f"ORDER_{target}",
            event_category="orders",
            entity_type="order",
            entity_id=order.id,
            actor_user_id=actor_user_id,
            order_id=order.id,
        )
        db.session.commit()
        return order

    try:
        return run_with_retry(_op)
    except Exception:
        db.session.rollback()
        raise


def mark_shipped(order_id: int, actor_user_id: int | None = None) -> Order:
    return _advance_fulfillment(
        order_id, expected=FULFILLMENT_UNFULFILLED, target=FULFILLMENT_SHIPPED, actor_user_id=actor_user_id,
    )


def mark_delivered(order_id: int, actor_user_id: int | None = None) -> Order:
    """Delivery also settles COD: the money counts as collected from here on."""
    return _advance_fulfillment(
        order_id, expected=FULFILLMENT_SHIPPED, target=FULFILLMENT_DELIVERED, actor_user_id=actor_user_id,
    )


# =============================================================================
# QUERIES
# =============================================================================

def captured_attempt(order: Order) -> PaymentAttempt | None:
    return db.session.query(PaymentAttempt).filter_by(order_id=order.id, status=ATTEMPT_CAPTURED).first()


def is_order_paid(order: Order) -> bool:
    """Money was actually collected: captured online/wallet, or COD after delivery."""
    attempt = captured_attempt(order)
    if attempt is None:
        return False
    if attempt.method == METHOD_COD:
        return order.fulfillment_status == FULFILLMENT_DELIVERED
    return True


def get_order_for_user(ctx: RequestContext, order_id: int) -> Order:
    order = db.session.get(Order, order_id)
    if order is None or (order.user_id != ctx.user_id and not ctx.is_admin):
        raise NotFoundError("Order not found")
    return order


def list_orders_for_user(ctx: RequestContext, limit: int = 50) -> list[Order]:
    return (
        db.session.query(Order)
        .filter_by(user_id=ctx.user_id)
        .order_by(Order.id.desc())
        .limit(limit)
        .all()
    )


def list_orders(*, status: str | None = None, limit: int = 100) -> list[Order]:
    query = db.session.query(Order)
    if status:
        query = query.filter_by(status=status)
    return query.order_by(Order.id.desc()).limit(limit).all()
