from __future__ import annotations

from ..extensions import db
from storefront.time_utils import to_utc_z


class Order(db.Model):
    """
    Customer order (draft-first, like the cart it was built from).

    WHY: An accepted checkout draft is persisted immediately as
    PENDING_PAYMENT so payment attempts have something durable to point at.
    Confirmation is the only path to CONFIRMED and happens at most once.

    STATUS:
    - PENDING_PAYMENT: draft accepted, awaiting capture
    - CONFIRMED: payment captured, stock committed
    - PAYMENT_FAILED: last attempt failed; retry allowed until expires_at
    - CANCELLED: every item cancelled, or abandoned before payment

    FULFILLMENT:
    - UNFULFILLED -> SHIPPED -> DELIVERED

    refunded_cents grows with each cancelled or returned item; the remaining
    total is always total_cents - refunded_cents.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("order_number", name="uq_orders_order_number"),
        db.UniqueConstraint("draft_key", name="uq_orders_draft_key"),
        db.Index("ix_orders_user_created", "user_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(32), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    # Idempotency key of the draft this order was accepted from
    draft_key = db.Column(db.String(128), nullable=False)

    status = db.Column(db.String(24), nullable=False, default="PENDING_PAYMENT", index=True)
    fulfillment_status = db.Column(db.String(16), nullable=False, default="UNFULFILLED")
    payment_method = db.Column(db.String(16), nullable=False)

    currency = db.Column(db.String(3), nullable=False, default="INR")
    subtotal_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    shipping_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)
    refunded_cents = db.Column(db.Integer, nullable=False, default=0)

    coupon_id = db.Column(db.Integer, db.ForeignKey("coupons.id"), nullable=True)
    coupon_code = db.Column(db.String(32), nullable=True)

    failure_reason = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False)
    confirmed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    shipped_at = db.Column(db.DateTime(timezone=True), nullable=True)
    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    items = db.relationship("OrderItem", backref="order", lazy=True, order_by="OrderItem.id")
    events = db.relationship("OrderEvent", backref="order", lazy=True, order_by="OrderEvent.id")
    coupon = db.relationship("Coupon")
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def remaining_cents(self) -> int:
        return self.total_cents - self.refunded_cents

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "order_number": self.order_number,
            "user_id": self.user_id,
            "draft_key": self.draft_key,
            "status": self.status,
            "fulfillment_status": self.fulfillment_status,
            "payment_method": self.payment_method,
            "currency": self.currency,
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "shipping_cents": self.shipping_cents,
            "total_cents": self.total_cents,
            "refunded_cents": self.refunded_cents,
            "remaining_cents": self.remaining_cents,
            "coupon_code": self.coupon_code,
            "failure_reason": self.failure_reason,
            "created_at": to_utc_z(self.created_at),
            "expires_at": to_utc_z(self.expires_at),
            "confirmed_at": to_utc_z(self.confirmed_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "shipped_at": to_utc_z(self.shipped_at),
            "delivered_at": to_utc_z(self.delivered_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class OrderItem(db.Model):
    """
    Line on an order, priced at draft time.

    discount_share_cents is this line's pro-rata part of the order discount,
    fixed when the draft is accepted so later refunds never re-derive it.
    """
    __tablename__ = "order_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)

    product_name = db.Column(db.String(255), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)
    discount_share_cents = db.Column(db.Integer, nullable=False, default=0)

    # ACTIVE, CANCELLED, RETURN_REQUESTED, REFUNDED, RETURN_REJECTED
    status = db.Column(db.String(24), nullable=False, default="ACTIVE")
    refund_cents = db.Column(db.Integer, nullable=False, default=0)

    cancel_reason = db.Column(db.String(255), nullable=True)
    return_reason = db.Column(db.String(255), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    return_requested_at = db.Column(db.DateTime(timezone=True), nullable=True)
    return_decided_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    product = db.relationship("Product")
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def paid_share_cents(self) -> int:
        return self.line_total_cents - self.discount_share_cents

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
            "discount_share_cents": self.discount_share_cents,
            "status": self.status,
            "refund_cents": self.refund_cents,
            "cancel_reason": self.cancel_reason,
            "return_reason": self.return_reason,
            "cancelled_at": to_utc_z(self.cancelled_at),
            "return_requested_at": to_utc_z(self.return_requested_at),
            "return_decided_at": to_utc_z(self.return_decided_at),
        }


class OrderEvent(db.Model):
    """Customer-facing order timeline entry."""
    __tablename__ = "order_events"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    status = db.Column(db.String(32), nullable=False)
    description = db.Column(db.String(255), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "description": self.description,
            "created_at": to_utc_z(self.created_at),
        }
