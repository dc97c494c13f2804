# Overview: Service-layer operations for checkout; builds priced drafts and accepts them as pending orders.

"""
Checkout Draft Builder

WHY: The cart is untrusted (prices are snapshots, products may have been
unlisted since). build_draft() re-reads every product through the catalog
and prices the whole order from scratch.

FLOW:
1. build_draft(): read-only. Returns a Draft or raises CartEmptyError,
   ProductUnavailableError, StockUnavailableError or CouponInvalidError.
2. accept_draft(): persists the Draft as an Order in PENDING_PAYMENT, keyed
   by the draft's idempotency key. Accepting the same key again returns the
   same order.

TOTALS:
    subtotal = sum(unit price after best offer * qty)
    discount = coupon discount on the eligible lines
    shipping = free at or above FREE_SHIPPING_THRESHOLD_CENTS (on subtotal)
    total    = subtotal - discount + shipping
"""

from __future__ import annotations

import secrets
import string
import uuid
from dataclasses import dataclass, field

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Order, OrderEvent, OrderItem
from ..errors import (
    CartEmptyError,
    ConflictError,
    ProductUnavailableError,
    StockUnavailableError,
    ValidationError,
)
from storefront.time_utils import minutes_from_now, utcnow
from .cart_service import cart_lines
from .catalog_service import get_listed_product
from .concurrency import run_with_retry
from .coupon_service import CouponLine, check_coupon, find_coupon, normalize_code
from .ledger_service import append_ledger_event
from .pricing import allocate_pro_rata, shipping_cents
from .session_service import RequestContext


METHOD_ONLINE = "ONLINE"
METHOD_WALLET = "WALLET"
METHOD_COD = "COD"
PAYMENT_METHODS = (METHOD_ONLINE, METHOD_WALLET, METHOD_COD)

ORDER_NUMBER_ALPHABET = string.ascii_uppercase + string.digits


@dataclass(frozen=True)
class DraftLine:
    product_id: int
    name: str
    category_id: int
    quantity: int
    unit_price_cents: int
    line_total_cents: int
    discount_share_cents: int = 0


@dataclass(frozen=True)
class Draft:
    user_id: int
    idempotency_key: str
    payment_method: str
    currency: str
    lines: tuple[DraftLine, ...] = field(default_factory=tuple)
    subtotal_cents: int = 0
    discount_cents: int = 0
    shipping_cents: int = 0
    total_cents: int = 0
    coupon_id: int | None = None
    coupon_code: str | None = None

    def to_dict(self) -> dict:
        return {
            "idempotency_key": self.idempotency_key,
            "payment_method": self.payment_method,
            "currency": self.currency,
            "lines": [
                {
                    "product_id": line.product_id,
                    "name": line.name,
                    "quantity": line.quantity,
                    "unit_price_cents": line.unit_price_cents,
                    "line_total_cents": line.line_total_cents,
                    "discount_share_cents": line.discount_share_cents,
                }
                for line in self.lines
            ],
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "shipping_cents": self.shipping_cents,
            "total_cents": self.total_cents,
            "coupon_code": self.coupon_code,
        }


def normalize_payment_method(payment_method: str | None) -> str:
    method = (payment_method or METHOD_ONLINE).strip().upper()
    if method not in PAYMENT_METHODS:
        raise ValidationError(f"Invalid payment method: {payment_method}. Must be one of {list(PAYMENT_METHODS)}")
    return method


# =============================================================================
# DRAFT
# =============================================================================

def build_draft(ctx: RequestContext, coupon_code: str | None = None, payment_method: str | None = None) -> Draft:
    """Price the user's cart from fresh catalog reads. Writes nothing."""
    method = normalize_payment_method(payment_method)
    config = current_app.config

    cart_items = cart_lines(ctx.user_id)
    if not cart_items:
        raise CartEmptyError()

    priced = []
    for item in cart_items:
        listed = get_listed_product(item.product_id)
        if listed is None or not listed.is_listed:
            raise ProductUnavailableError(item.product_id)
        if item.quantity > listed.available:
            raise StockUnavailableError(item.product_id, requested=item.quantity, available=listed.available)
        priced.append((listed, item.quantity, listed.price_cents * item.quantity))

    subtotal = sum(line_total for _, _, line_total in priced)

    coupon = None
    discount = 0
    if coupon_code:
        coupon = find_coupon(coupon_code)
        discount = check_coupon(
            coupon,
            user_id=ctx.user_id,
            lines=[CouponLine(listed.product_id, listed.category_id, line_total) for listed, _, line_total in priced],
            subtotal_cents=subtotal,
        )

    shipping = shipping_cents(subtotal, config["FREE_SHIPPING_THRESHOLD_CENTS"], config["SHIPPING_FEE_CENTS"])
    total = subtotal - discount + shipping

    if method == METHOD_COD and total > config["COD_LIMIT_CENTS"]:
        raise ValidationError(
            "Cash on delivery is not available for this order amount",
            details={"cod_limit_cents": config["COD_LIMIT_CENTS"], "total_cents": total},
        )

    shares = allocate_pro_rata([line_total for _, _, line_total in priced], discount)
    lines = tuple(
        DraftLine(
            product_id=listed.product_id,
            name=listed.name,
            category_id=listed.category_id,
            quantity=quantity,
            unit_price_cents=listed.price_cents,
            line_total_cents=line_total,
            discount_share_cents=share,
        )
        for (listed, quantity, line_total), share in zip(priced, shares)
    )

    return Draft(
        user_id=ctx.user_id,
        idempotency_key=ctx.idempotency_key or uuid.uuid4().hex,
        payment_method=method,
        currency=config["CURRENCY"],
        lines=lines,
        subtotal_cents=subtotal,
        discount_cents=discount,
        shipping_cents=shipping,
        total_cents=total,
        coupon_id=coupon.id if coupon else None,
        coupon_code=normalize_code(coupon_code) if coupon else None,
    )


# =============================================================================
# ACCEPT
# =============================================================================

def generate_order_number() -> str:
    """ORD-YYYYMMDD-XXXX, unique."""
    prefix = f"ORD-{utcnow():%Y%m%d}-"
    while True:
        candidate = prefix + "".join(secrets.choice(ORDER_NUMBER_ALPHABET) for _ in range(4))
        if db.session.query(Order.id).filter_by(order_number=candidate).first() is None:
            return candidate


def find_order_by_key(draft_key: str) -> Order | None:
    return db.session.query(Order).filter_by(draft_key=draft_key).first()


def _owned(order: Order, ctx: RequestContext) -> Order:
    if order.user_id != ctx.user_id:
        raise ConflictError("Idempotency key already used by another request")
    return order


def accept_draft(ctx: RequestContext, draft: Draft) -> Order:
    """Persist a draft as a PENDING_PAYMENT order. Idempotent on draft.idempotency_key."""
    if draft.user_id != ctx.user_id:
        raise ConflictError("Draft belongs to another user")

    def _op():
        existing = find_order_by_key(draft.idempotency_key)
        if existing is not None:
            return _owned(existing, ctx)

        order = Order(
            order_number=generate_order_number(),
            user_id=ctx.user_id,
            draft_key=draft.idempotency_key,
            status="PENDING_PAYMENT",
            fulfillment_status="UNFULFILLED",
            payment_method=draft.payment_method,
            currency=draft.currency,
            subtotal_cents=draft.subtotal_cents,
            discount_cents=draft.discount_cents,
            shipping_cents=draft.shipping_cents,
            total_cents=draft.total_cents,
            refunded_cents=0,
            coupon_id=draft.coupon_id,
            coupon_code=draft.coupon_code,
            expires_at=minutes_from_now(current_app.config["DRAFT_TTL_MINUTES"]),
        )
        db.session.add(order)
        db.session.flush()

        for line in draft.lines:
            db.session.add(OrderItem(
                order_id=order.id,
                product_id=line.product_id,
                product_name=line.name,
                quantity=line.quantity,
                unit_price_cents=line.unit_price_cents,
                line_total_cents=line.line_total_cents,
                discount_share_cents=line.discount_share_cents,
                status="ACTIVE",
            ))
        db.session.add(OrderEvent(order_id=order.id, status="PENDING_PAYMENT", description="Order placed"))

        append_ledger_event(
            event_type="ORDER_CREATED",
            event_category="orders",
            entity_type="order",
            entity_id=order.id,
            actor_user_id=ctx.user_id,
            order_id=order.id,
            note=order.order_number,
            payload={"total_cents": order.total_cents, "payment_method": order.payment_method},
        )
        db.session.commit()
        return order

    try:
        return run_with_retry(_op)
    except IntegrityError:
        # Lost a race on the same draft key
        db.session.rollback()
        existing = find_order_by_key(draft.idempotency_key)
        if existing is None:
            raise
        return _owned(existing, ctx)


def checkout(ctx: RequestContext, coupon_code: str | None = None, payment_method: str | None = None) -> Order:
    """
    Build and accept a draft in one step.

    A replayed idempotency key returns the order it created, even after the
    cart was cleared by confirmation.
    """
    if ctx.idempotency_key:
        existing = find_order_by_key(ctx.idempotency_key)
        if existing is not None:
            return _owned(existing, ctx)
    draft = build_draft(ctx, coupon_code=coupon_code, payment_method=payment_method)
    return accept_draft(ctx, draft)
