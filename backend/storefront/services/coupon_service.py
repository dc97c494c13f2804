# Overview: Service-layer operations for coupons; validation at draft time and exactly-once redemption at confirmation.

"""
Coupon Service

VALIDATION ORDER (first failure wins):
1. not-found / inactive
2. expired (also before starts_at)
3. usage-limit-exceeded (global used_count, then per-user redemptions)
4. minimum-not-met (against the cart subtotal after offers)
5. not-applicable-to-items (no line matches the product/category filter)

Drafts only validate. redeem_coupon() runs inside order confirmation and is
the only place used_count moves: a compare-and-set UPDATE guarded by
`used_count < usage_limit`, plus a CouponRedemption unique per order.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Coupon, CouponRedemption
from ..errors import (
    COUPON_EXPIRED,
    COUPON_INACTIVE,
    COUPON_MINIMUM_NOT_MET,
    COUPON_NOT_APPLICABLE,
    COUPON_NOT_FOUND,
    COUPON_USAGE_LIMIT_EXCEEDED,
    ConflictError,
    CouponInvalidError,
    NotFoundError,
)
from ..validation import COUPON_POLICY, enforce_rules_coupon, validate_payload
from storefront.time_utils import as_utc_naive, utcnow
from .ledger_service import append_ledger_event
from .pricing import coupon_discount_cents


@dataclass(frozen=True)
class CouponLine:
    """What the coupon rules need to know about one priced line."""
    product_id: int
    category_id: int
    line_total_cents: int


def normalize_code(code: str | None) -> str:
    return (code or "").strip().upper()


def find_coupon(code: str) -> Coupon | None:
    return db.session.query(Coupon).filter_by(code=normalize_code(code), is_deleted=False).first()


def user_redemption_count(coupon_id: int, user_id: int) -> int:
    return db.session.query(func.count(CouponRedemption.id)).filter_by(
        coupon_id=coupon_id,
        user_id=user_id,
    ).scalar() or 0


def eligible_base_cents(coupon: Coupon, lines: Iterable[CouponLine]) -> int:
    product_ids = set(coupon.applicable_product_ids or [])
    category_ids = set(coupon.applicable_category_ids or [])
    lines = list(lines)
    if not product_ids and not category_ids:
        return sum(line.line_total_cents for line in lines)
    return sum(
        line.line_total_cents
        for line in lines
        if line.product_id in product_ids or line.category_id in category_ids
    )


def check_coupon(
    coupon: Coupon | None,
    *,
    user_id: int,
    lines: list[CouponLine],
    subtotal_cents: int,
    now: datetime | None = None,
) -> int:
    """
    Validate a coupon against priced lines. Returns the discount in cents.

    Raises CouponInvalidError with the first failing reason.
    """
    if coupon is None or coupon.is_deleted:
        raise CouponInvalidError(COUPON_NOT_FOUND, "Coupon code not found")
    if not coupon.is_active:
        raise CouponInvalidError(COUPON_INACTIVE, "Coupon is not active")

    now = now or utcnow()
    if now < as_utc_naive(coupon.starts_at) or now > as_utc_naive(coupon.expires_at):
        raise CouponInvalidError(COUPON_EXPIRED, "Coupon has expired")

    if coupon.usage_limit is not None and coupon.used_count >= coupon.usage_limit:
        raise CouponInvalidError(COUPON_USAGE_LIMIT_EXCEEDED, "Coupon usage limit exceeded")
    if coupon.per_user_limit is not None:
        if user_redemption_count(coupon.id, user_id) >= coupon.per_user_limit:
            raise CouponInvalidError(COUPON_USAGE_LIMIT_EXCEEDED, "You have already used this coupon")

    if coupon.min_purchase_cents and subtotal_cents < coupon.min_purchase_cents:
        raise CouponInvalidError(
            COUPON_MINIMUM_NOT_MET,
            f"Minimum order amount of {coupon.min_purchase_cents} required",
        )

    base = eligible_base_cents(coupon, lines)
    if base <= 0:
        raise CouponInvalidError(COUPON_NOT_APPLICABLE, "Coupon does not apply to any item in your cart")

    return coupon_discount_cents(
        discount_type=coupon.discount_type,
        discount_value=coupon.discount_value,
        eligible_base_cents=base,
        max_discount_cents=coupon.max_discount_cents,
    )


def redeem_coupon(coupon_id: int, *, user_id: int, order_id: int, discount_cents: int) -> CouponRedemption:
    """
    Consume one use of a coupon for a confirmed order, inside the caller's transaction.

    Re-checks expiry and limits against fresh rows. Idempotent per order.
    """
    existing = db.session.query(CouponRedemption).filter_by(order_id=order_id).first()
    if existing is not None:
        return existing

    coupon = db.session.query(Coupon).filter_by(id=coupon_id).populate_existing().first()
    if coupon is None or coupon.is_deleted:
        raise CouponInvalidError(COUPON_NOT_FOUND, "Coupon code not found")
    if not coupon.is_active:
        raise CouponInvalidError(COUPON_INACTIVE, "Coupon is not active")
    if utcnow() > as_utc_naive(coupon.expires_at):
        raise CouponInvalidError(COUPON_EXPIRED, "Coupon has expired")
    if coupon.per_user_limit is not None:
        if user_redemption_count(coupon.id, user_id) >= coupon.per_user_limit:
            raise CouponInvalidError(COUPON_USAGE_LIMIT_EXCEEDED, "You have already used this coupon")

    stmt = update(Coupon).where(Coupon.id == coupon_id)
    if coupon.usage_limit is not None:
        stmt = stmt.where(Coupon.used_count < Coupon.usage_limit)
    result = db.session.execute(
        stmt.values(used_count=Coupon.used_count + 1).execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise CouponInvalidError(COUPON_USAGE_LIMIT_EXCEEDED, "Coupon usage limit exceeded")

    redemption = CouponRedemption(
        coupon_id=coupon_id,
        user_id=user_id,
        order_id=order_id,
        discount_cents=discount_cents,
    )
    db.session.add(redemption)
    db.session.flush()
    db.session.expire(coupon, ["used_count"])
    return redemption


# =============================================================================
# ADMIN
# =============================================================================

def create_coupon(payload: dict, actor_user_id: int | None = None) -> Coupon:
    payload = dict(payload or {})
    if "code" in payload:
        payload["code"] = normalize_code(payload["code"])
    if "discount_type" in payload and isinstance(payload["discount_type"], str):
        payload["discount_type"] = payload["discount_type"].strip().upper()

    patch = validate_payload(model=Coupon, payload=payload, policy=COUPON_POLICY, partial=False)
    enforce_rules_coupon(patch)

    coupon = Coupon(**patch)
    db.session.add(coupon)
    try:
        db.session.flush()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError(f"Coupon '{patch['code']}' already exists")

    append_ledger_event(
        event_type="COUPON_CREATED",
        event_category="coupons",
        entity_type="coupon",
        entity_id=coupon.id,
        actor_user_id=actor_user_id,
        note=coupon.code,
    )
    db.session.commit()
    return coupon


def deactivate_coupon(coupon_id: int, actor_user_id: int | None = None) -> Coupon:
    coupon = db.session.get(Coupon, coupon_id)
    if coupon is None or coupon.is_deleted:
        raise NotFoundError("Coupon not found")
    coupon.is_active = False
    append_ledger_event(
        event_type="COUPON_DEACTIVATED",
        event_category="coupons",
        entity_type="coupon",
        entity_id=coupon.id,
        actor_user_id=actor_user_id,
    )
    db.session.commit()
    return coupon


def list_available_coupons(user_id: int) -> list[Coupon]:
    """Active, in-date coupons the user still has uses left on."""
    now = utcnow()
    coupons = (
        db.session.query(Coupon)
        .filter(Coupon.is_active.is_(True), Coupon.is_deleted.is_(False))
        .order_by(Coupon.expires_at.asc())
        .all()
    )
    result = []
    for coupon in coupons:
        if now < as_utc_naive(coupon.starts_at) or now > as_utc_naive(coupon.expires_at):
            continue
        if coupon.usage_limit is not None and coupon.used_count >= coupon.usage_limit:
            continue
        if coupon.per_user_limit is not None and user_redemption_count(coupon.id, user_id) >= coupon.per_user_limit:
            continue
        result.append(coupon)
    return result
