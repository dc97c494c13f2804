# Overview: Service-layer operations for payments; the attempt state machine and gateway callbacks.

"""
Payment Reconciliation State Machine

ATTEMPT STATES:
    CREATED -> AWAITING_CAPTURE -> CAPTURED
    CREATED | AWAITING_CAPTURE -> FAILED
    FAILED -> CAPTURED   (reconciliation finds the money was taken after all)

DESIGN PRINCIPLES:
- An attempt row is committed before any gateway call, so a crash mid-call
  still leaves a record to reconcile.
- Gateway calls run outside DB transactions and are bounded by a timeout.
- WALLET and COD capture locally; their capture and the order confirmation
  are one transaction (order_service.confirm_order).
- ONLINE capture arrives by signed callback. Replaying a callback for a
  CAPTURED attempt returns the same order and changes nothing.
- A callback that fails verification changes nothing: its sender is unproven.
- reconcile_awaiting_captures() asks the gateway about AWAITING_CAPTURE and
  recently FAILED attempts, so money captured without a callback is either
  confirmed or reversed.
- After a failure a new attempt may start until the order's draft expires.
"""

from __future__ import annotations

from datetime import timedelta

from flask import current_app
from sqlalchemy import and_, func, or_
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Order, PaymentAttempt, PaymentReversal
from ..errors import (
    ConflictError,
    DraftExpiredError,
    NotFoundError,
    PaymentError,
    PaymentVerificationError,
    StorefrontError,
    ValidationError,
)
from storefront.time_utils import is_past, utcnow
from .checkout_service import METHOD_ONLINE, find_order_by_key
from .order_service import (
    ATTEMPT_AWAITING_CAPTURE,
    ATTEMPT_CAPTURED,
    ATTEMPT_CREATED,
    ATTEMPT_FAILED,
    ORDER_CANCELLED,
    ORDER_CONFIRMED,
    ORDER_PAYMENT_FAILED,
    ORDER_PENDING_PAYMENT,
    add_order_event,
    captured_attempt,
    confirm_order,
    record_attempt_failure,
)
from .payment_gateway import get_gateway
from .session_service import RequestContext


OPEN_ATTEMPT_STATES = (ATTEMPT_CREATED, ATTEMPT_AWAITING_CAPTURE)


def _order_for_key(ctx: RequestContext, draft_key: str) -> Order:
    order = find_order_by_key(draft_key) if draft_key else None
    if order is None or order.user_id != ctx.user_id:
        raise NotFoundError("Order not found for this checkout")
    return order


def _latest_open_attempt(order_id: int) -> PaymentAttempt | None:
    return (
        db.session.query(PaymentAttempt)
        .filter(PaymentAttempt.order_id == order_id, PaymentAttempt.status.in_(OPEN_ATTEMPT_STATES))
        .order_by(PaymentAttempt.attempt_number.desc())
        .first()
    )


def _create_attempt(order: Order) -> PaymentAttempt:
    """Commit a CREATED attempt numbered after the order's previous ones."""
    for _ in range(3):
        next_number = (
            db.session.query(func.coalesce(func.max(PaymentAttempt.attempt_number), 0))
            .filter(PaymentAttempt.order_id == order.id)
            .scalar()
        ) + 1
        attempt = PaymentAttempt(
            order_id=order.id,
            idempotency_key=order.draft_key,
            attempt_number=next_number,
            method=order.payment_method,
            status=ATTEMPT_CREATED,
            amount_cents=order.total_cents,
            currency=order.currency,
        )
        db.session.add(attempt)
        if order.status == ORDER_PAYMENT_FAILED:
            order.status = ORDER_PENDING_PAYMENT
            add_order_event(order, ORDER_PENDING_PAYMENT, "Payment retried")
        try:
            db.session.commit()
            return attempt
        except IntegrityError:
            # Concurrent start for the same order took this number
            db.session.rollback()
    raise ConflictError("Another payment for this order is starting, retry shortly")


# =============================================================================
# START
# =============================================================================

def start_payment(ctx: RequestContext, draft_key: str) -> tuple[Order, PaymentAttempt]:
    """
    Start collecting money for the order accepted under draft_key.

    ONLINE: creates a gateway order and leaves the attempt AWAITING_CAPTURE.
    WALLET / COD: captures and confirms immediately.

    Raises DraftExpiredError, GatewayUnavailableError, InsufficientBalanceError,
    StockUnavailableError, CouponInvalidError.
    """
    order = _order_for_key(ctx, draft_key)

    if order.status == ORDER_CONFIRMED:
        return order, captured_attempt(order)
    if order.status == ORDER_CANCELLED:
        raise ConflictError("Order is cancelled", details={"order_id": order.id})
    if is_past(order.expires_at):
        raise DraftExpiredError("Checkout has expired, please check out again", details={"order_id": order.id})

    if order.payment_method == METHOD_ONLINE:
        open_attempt = _latest_open_attempt(order.id)
        if open_attempt is not None and open_attempt.status == ATTEMPT_AWAITING_CAPTURE:
            return order, open_attempt

    attempt = _create_attempt(order)
    current_app.logger.info(
        "Payment attempt %s (%s #%s) created for order %s",
        attempt.id, attempt.method, attempt.attempt_number, order.id,
    )

    if order.payment_method != METHOD_ONLINE:
        order = confirm_order(attempt.id)
        return order, attempt

    try:
        gateway_order = get_gateway().create_order(
            amount_cents=attempt.amount_cents,
            currency=attempt.currency,
            receipt=attempt.idempotency_key,
        )
    except PaymentError as exc:
        record_attempt_failure(attempt.id, reason=exc.message)
        raise

    attempt = db.session.get(PaymentAttempt, attempt.id)
    attempt.status = ATTEMPT_AWAITING_CAPTURE
    attempt.gateway_order_ref = gateway_order.order_ref
    db.session.commit()
    current_app.logger.info("Attempt %s awaiting capture (gateway order %s)", attempt.id, gateway_order.order_ref)
    return db.session.get(Order, attempt.order_id), attempt


# =============================================================================
# CAPTURE CALLBACK
# =============================================================================

def handle_capture_callback(signature: str, payload: dict) -> Order:
    """
    Verify a gateway capture callback and confirm the order.

    payload carries razorpay_order_id and razorpay_payment_id. The amount and
    receipt are re-read from the gateway, never taken from the payload.

    Raises PaymentVerificationError without touching the attempt when the
    signature or the gateway payment does not check out.
    """
    payload = payload or {}
    order_ref = payload.get("razorpay_order_id")
    payment_ref = payload.get("razorpay_payment_id")
    if not order_ref or not payment_ref:
        raise ValidationError("razorpay_order_id and razorpay_payment_id are required")

    attempt = db.session.query(PaymentAttempt).filter_by(gateway_order_ref=order_ref).first()
    if attempt is None:
        raise NotFoundError("No payment attempt for this gateway order")

    if attempt.status == ATTEMPT_CAPTURED:
        if attempt.gateway_payment_ref != payment_ref:
            current_app.logger.warning(
                "Callback for captured attempt %s carries a different payment %s", attempt.id, payment_ref,
            )
        return db.session.get(Order, attempt.order_id)

    attempt_id = attempt.id
    expected_amount = attempt.amount_cents
    expected_receipt = attempt.idempotency_key
    db.session.commit()

    try:
        verified = get_gateway().verify_callback(order_ref, payment_ref, signature)
    except PaymentVerificationError as exc:
        current_app.logger.warning("Callback verification failed for attempt %s: %s", attempt_id, exc.message)
        raise

    if verified.payment.amount_cents != expected_amount or verified.receipt != expected_receipt:
        exc = PaymentVerificationError(
            "Captured payment does not match the order",
            details={
                "expected_amount_cents": expected_amount,
                "captured_amount_cents": verified.payment.amount_cents,
            },
        )
        current_app.logger.error("Capture mismatch for attempt %s", attempt_id)
        record_attempt_failure(
            attempt_id,
            reason=exc.message,
            gateway_payment_ref=payment_ref,
            captured_amount_cents=verified.payment.amount_cents,
        )
        raise exc

    return confirm_order(attempt_id, gateway_payment_ref=payment_ref)


# =============================================================================
# CLIENT-REPORTED FAILURE
# =============================================================================

def record_payment_failure(ctx: RequestContext, draft_key: str, reason: str | None = None) -> Order:
    """
    The client reports the gateway checkout failed or was dismissed.

    The report is unverified; if the gateway captured anyway,
    reconcile_awaiting_captures() confirms or reverses the attempt.
    """
    order = _order_for_key(ctx, draft_key)
    if order.status == ORDER_CONFIRMED:
        raise ConflictError("Order is already paid", details={"order_id": order.id})

    attempt = _latest_open_attempt(order.id)
    if attempt is None:
        return order

    result = record_attempt_failure(attempt.id, reason=(reason or "Payment failed").strip() or "Payment failed")
    return result or order


# =============================================================================
# RECONCILIATION
# =============================================================================

def _unreconciled_attempts(limit: int, lookback_hours: int) -> list:
    """
    ONLINE attempts the gateway may hold money for: AWAITING_CAPTURE ones, and
    FAILED ones from the lookback window that have no reversal yet.
    """
    since = utcnow() - timedelta(hours=lookback_hours)
    return (
        db.session.query(
            PaymentAttempt.id,
            PaymentAttempt.status,
            PaymentAttempt.gateway_order_ref,
            PaymentAttempt.amount_cents,
        )
        .outerjoin(PaymentReversal, PaymentReversal.payment_attempt_id == PaymentAttempt.id)
        .filter(
            PaymentAttempt.gateway_order_ref.isnot(None),
            or_(
                PaymentAttempt.status == ATTEMPT_AWAITING_CAPTURE,
                and_(
                    PaymentAttempt.status == ATTEMPT_FAILED,
                    PaymentReversal.id.is_(None),
                    PaymentAttempt.failed_at >= since,
                ),
            ),
        )
        .order_by(PaymentAttempt.id.asc())
        .limit(limit)
        .all()
    )


def reconcile_awaiting_captures(limit: int = 100, lookback_hours: int = 72) -> dict:
    """
    Settle ONLINE attempts against what the gateway actually captured.

    For each attempt from _unreconciled_attempts():
    - captured payment for the full amount -> confirm_order (a duplicate or a
      cancelled order ends in a reversal instead)
    - captured payment for another amount  -> attempt FAILED, reversal scheduled
    - nothing captured                     -> left alone
    """
    rows = _unreconciled_attempts(limit, lookback_hours)
    db.session.commit()

    gateway = get_gateway()
    summary = {"checked": 0, "confirmed": 0, "failed": 0}
    for attempt_id, status, order_ref, amount_cents in rows:
        summary["checked"] += 1
        try:
            payments = gateway.fetch_order_payments(order_ref)
        except PaymentError as exc:
            current_app.logger.warning("Could not reconcile attempt %s: %s", attempt_id, exc.message)
            continue

        captured = [p for p in payments if p.status == "captured"]
        if not captured:
            continue
        exact = [p for p in captured if p.amount_cents == amount_cents]

        if not exact:
            payment = captured[0]
            current_app.logger.error(
                "Attempt %s captured %s instead of %s", attempt_id, payment.amount_cents, amount_cents,
            )
            record_attempt_failure(
                attempt_id,
                reason="Captured payment does not match the order",
                gateway_payment_ref=payment.payment_ref,
                captured_amount_cents=payment.amount_cents,
            )
            summary["failed"] += 1
            continue

        if status == ATTEMPT_FAILED:
            current_app.logger.warning("Failed attempt %s was captured at the gateway", attempt_id)
        try:
            confirm_order(attempt_id, gateway_payment_ref=exact[0].payment_ref)
        except StorefrontError as exc:
            current_app.logger.warning("Reconciled attempt %s did not confirm: %s", attempt_id, exc.message)
            summary["failed"] += 1
            continue

        if db.session.get(PaymentAttempt, attempt_id).status == ATTEMPT_CAPTURED:
            summary["confirmed"] += 1
        else:
            summary["failed"] += 1
    return summary
