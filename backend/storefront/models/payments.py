from __future__ import annotations

from ..extensions import db
from storefront.time_utils import to_utc_z


class PaymentAttempt(db.Model):
    """
    One try at collecting money for an order.

    METHODS:
    - ONLINE: gateway order created, captured via signed callback
    - WALLET: captured locally by a ledger debit
    - COD: captured locally, money collected on delivery

    STATUS:
    - CREATED -> AWAITING_CAPTURE -> CAPTURED
    - any non-captured state -> FAILED

    At most one attempt per order may ever be CAPTURED (partial unique index).
    A second capture for the same order is a defect and gets reversed.
    """
    __tablename__ = "payment_attempts"
    __table_args__ = (
        db.UniqueConstraint("order_id", "attempt_number", name="uq_payment_attempts_order_number"),
        db.UniqueConstraint("gateway_order_ref", name="uq_payment_attempts_gateway_order_ref"),
        db.Index(
            "uq_payment_attempts_one_captured",
            "order_id",
            unique=True,
            sqlite_where=db.text("status = 'CAPTURED'"),
            postgresql_where=db.text("status = 'CAPTURED'"),
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)

    # Same value as the order's draft_key
    idempotency_key = db.Column(db.String(128), nullable=False, index=True)
    attempt_number = db.Column(db.Integer, nullable=False)

    method = db.Column(db.String(16), nullable=False)
    status = db.Column(db.String(24), nullable=False, default="CREATED", index=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="INR")

    gateway_order_ref = db.Column(db.String(64), nullable=True)
    gateway_payment_ref = db.Column(db.String(64), nullable=True)
    failure_reason = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    captured_at = db.Column(db.DateTime(timezone=True), nullable=True)
    failed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    order = db.relationship("Order", backref=db.backref("payment_attempts", lazy=True, order_by="PaymentAttempt.id"))
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "attempt_number": self.attempt_number,
            "method": self.method,
            "status": self.status,
            "amount_cents": self.amount_cents,
            "currency": self.currency,
            "gateway_order_ref": self.gateway_order_ref,
            "gateway_payment_ref": self.gateway_payment_ref,
            "failure_reason": self.failure_reason,
            "created_at": to_utc_z(self.created_at),
            "captured_at": to_utc_z(self.captured_at),
            "failed_at": to_utc_z(self.failed_at),
        }


class PaymentReversal(db.Model):
    """
    Durable intent to give captured money back.

    Written in the same transaction that decides the money cannot be kept
    (failed confirmation, duplicate capture). WALLET reversals complete in
    that transaction; GATEWAY reversals stay PENDING until
    `flask payments process-reversals` gets a refund through.
    """
    __tablename__ = "payment_reversals"
    __table_args__ = (
        db.UniqueConstraint("payment_attempt_id", name="uq_payment_reversals_attempt"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    payment_attempt_id = db.Column(db.Integer, db.ForeignKey("payment_attempts.id"), nullable=False)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    destination = db.Column(db.String(16), nullable=False)  # WALLET, GATEWAY
    status = db.Column(db.String(16), nullable=False, default="PENDING", index=True)  # PENDING, COMPLETED, FAILED
    reason = db.Column(db.String(255), nullable=True)

    attempts = db.Column(db.Integer, nullable=False, default=0)
    last_error = db.Column(db.String(255), nullable=True)
    gateway_refund_ref = db.Column(db.String(64), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    payment_attempt = db.relationship("PaymentAttempt")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "payment_attempt_id": self.payment_attempt_id,
            "order_id": self.order_id,
            "amount_cents": self.amount_cents,
            "destination": self.destination,
            "status": self.status,
            "reason": self.reason,
            "attempts": self.attempts,
            "last_error": self.last_error,
            "gateway_refund_ref": self.gateway_refund_ref,
            "created_at": to_utc_z(self.created_at),
            "completed_at": to_utc_z(self.completed_at),
        }
