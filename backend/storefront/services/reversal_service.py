# Overview: Service-layer operations for payment reversals; giving back money captured for orders that cannot be kept.

"""
Payment Reversals

A PaymentReversal is written in the same transaction that decides captured
money has to go back (failed confirmation, duplicate capture, mismatched
capture). It is unique per payment attempt.

DESTINATIONS:
- WALLET: credited to the user's wallet immediately (key `reversal:{attempt_id}`)
- GATEWAY: refunded through the gateway later by process_pending_reversals()
  (`flask payments process-reversals`); gateway calls never run inside the
  transaction that scheduled them
"""

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import Order, PaymentAttempt, PaymentReversal
from ..errors import PaymentError
from storefront.time_utils import utcnow
from .ledger_service import append_ledger_event
from .payment_gateway import get_gateway
from .wallet_service import ENTRY_PAYMENT_REVERSAL, credit


DESTINATION_WALLET = "WALLET"
DESTINATION_GATEWAY = "GATEWAY"

REVERSAL_PENDING = "PENDING"
REVERSAL_COMPLETED = "COMPLETED"
REVERSAL_FAILED = "FAILED"

MAX_GATEWAY_ATTEMPTS = 5


def reversal_key(attempt_id: int) -> str:
    return f"reversal:{attempt_id}"


def schedule_reversal(attempt: PaymentAttempt, order: Order, reason: str, amount_cents: int | None = None) -> PaymentReversal:
    """
    Record (and for WALLET, complete) the reversal of a captured attempt.

    amount_cents defaults to the attempt amount; pass the captured amount when
    the gateway took something else. Runs in the caller's transaction.
    Idempotent per attempt.
    """
    existing = db.session.query(PaymentReversal).filter_by(payment_attempt_id=attempt.id).first()
    if existing is not None:
        return existing

    destination = current_app.config["PAYMENT_REVERSAL_DESTINATION"]
    amount = attempt.amount_cents if amount_cents is None else amount_cents
    reversal = PaymentReversal(
        payment_attempt_id=attempt.id,
        order_id=order.id,
        amount_cents=amount,
        destination=destination,
        status=REVERSAL_PENDING,
        reason=reason[:255] if reason else None,
    )
    db.session.add(reversal)
    db.session.flush()

    if destination == DESTINATION_WALLET:
        credit(
            order.user_id,
            amount,
            entry_type=ENTRY_PAYMENT_REVERSAL,
            idempotency_key=reversal_key(attempt.id),
            order_id=order.id,
            description=f"Payment returned for order {order.order_number}",
        )
        reversal.status = REVERSAL_COMPLETED
        reversal.completed_at = utcnow()

    append_ledger_event(
        event_type="PAYMENT_REVERSAL_SCHEDULED",
        event_category="payments",
        entity_type="payment_reversal",
        entity_id=reversal.id,
        order_id=order.id,
        note=reason,
        payload={"attempt_id": attempt.id, "amount_cents": amount, "destination": destination},
    )
    current_app.logger.info(
        "Reversal %s scheduled for attempt %s (%s, %s)",
        reversal.id, attempt.id, destination, reversal.status,
    )
    return reversal


def process_pending_reversals(limit: int = 50, max_attempts: int = MAX_GATEWAY_ATTEMPTS) -> dict:
    """
    Push PENDING gateway reversals through the gateway's refund API.

    Each try is counted in `attempts` and committed before the gateway is
    called; after max_attempts the reversal is marked FAILED for manual
    follow-up. Refunds carry the receipt `reversal:{attempt_id}`, so a retry
    first looks for a refund an earlier run made but never recorded.
    """
    pending_ids = [
        row.id
        for row in db.session.query(PaymentReversal.id)
        .filter_by(status=REVERSAL_PENDING, destination=DESTINATION_GATEWAY)
        .order_by(PaymentReversal.id.asc())
        .limit(limit)
        .all()
    ]
    db.session.commit()

    gateway = get_gateway()
    summary = {"completed": 0, "retrying": 0, "failed": 0}

    for reversal_id in pending_ids:
        reversal = db.session.get(PaymentReversal, reversal_id)
        attempt = reversal.payment_attempt
        payment_ref = attempt.gateway_payment_ref
        receipt = reversal_key(attempt.id)
        amount_cents = reversal.amount_cents
        tried_before = reversal.attempts > 0
        reversal.attempts += 1
        db.session.commit()

        try:
            refund_ref = gateway.find_refund(payment_ref, receipt) if tried_before else None
            if refund_ref is not None:
                current_app.logger.warning("Reversal %s was already refunded as %s", reversal_id, refund_ref)
            else:
                refund_ref = gateway.refund(
                    payment_ref, amount_cents, receipt, notes={"reversal_id": str(reversal_id)},
                )
        except PaymentError as exc:
            reversal = db.session.get(PaymentReversal, reversal_id)
            reversal.last_error = exc.message[:255]
            if reversal.attempts >= max_attempts:
                reversal.status = REVERSAL_FAILED
                summary["failed"] += 1
                current_app.logger.error("Reversal %s failed permanently: %s", reversal_id, exc.message)
            else:
                summary["retrying"] += 1
            db.session.commit()
            continue

        reversal = db.session.get(PaymentReversal, reversal_id)
        reversal.status = REVERSAL_COMPLETED
        reversal.gateway_refund_ref = refund_ref
        reversal.completed_at = utcnow()
        reversal.last_error = None
        append_ledger_event(
            event_type="PAYMENT_REVERSAL_COMPLETED",
            event_category="payments",
            entity_type="payment_reversal",
            entity_id=reversal.id,
            order_id=reversal.order_id,
            payload={"gateway_refund_ref": refund_ref},
        )
        db.session.commit()
        summary["completed"] += 1

    return summary
