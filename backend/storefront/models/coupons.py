from __future__ import annotations

from ..extensions import db
from storefront.time_utils import to_utc_z


class Coupon(db.Model):
    """
    Discount coupon.

    DISCOUNT TYPES:
    - PERCENTAGE: discount_value is a whole percent, optionally capped by max_discount_cents
    - FLAT: discount_value is an amount in cents

    used_count only moves at order confirmation, by compare-and-set against
    usage_limit, and every increment has a matching CouponRedemption row.
    Empty applicable_* lists mean the coupon applies to the whole cart.
    """
    __tablename__ = "coupons"
    __table_args__ = (
        db.UniqueConstraint("code", name="uq_coupons_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(32), nullable=False)
    description = db.Column(db.String(255), nullable=False, default="")

    discount_type = db.Column(db.String(16), nullable=False)
    discount_value = db.Column(db.Integer, nullable=False)

    min_purchase_cents = db.Column(db.Integer, nullable=True)
    max_discount_cents = db.Column(db.Integer, nullable=True)

    starts_at = db.Column(db.DateTime(timezone=True), nullable=False)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False)

    usage_limit = db.Column(db.Integer, nullable=True)
    per_user_limit = db.Column(db.Integer, nullable=True)
    used_count = db.Column(db.Integer, nullable=False, default=0)

    applicable_product_ids = db.Column(db.JSON, nullable=False, default=list)
    applicable_category_ids = db.Column(db.JSON, nullable=False, default=list)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    is_deleted = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "description": self.description,
            "discount_type": self.discount_type,
            "discount_value": self.discount_value,
            "min_purchase_cents": self.min_purchase_cents,
            "max_discount_cents": self.max_discount_cents,
            "starts_at": to_utc_z(self.starts_at),
            "expires_at": to_utc_z(self.expires_at),
            "usage_limit": self.usage_limit,
            "per_user_limit": self.per_user_limit,
            "used_count": self.used_count,
            "applicable_product_ids": list(self.applicable_product_ids or []),
            "applicable_category_ids": list(self.applicable_category_ids or []),
            "is_active": self.is_active,
            "is_deleted": self.is_deleted,
        }


class CouponRedemption(db.Model):
    """A coupon use, recorded once per confirmed order."""
    __tablename__ = "coupon_redemptions"
    __table_args__ = (
        db.UniqueConstraint("order_id", name="uq_coupon_redemptions_order"),
        db.Index("ix_coupon_redemptions_coupon_user", "coupon_id", "user_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    coupon_id = db.Column(db.Integer, db.ForeignKey("coupons.id"), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False)

    redeemed_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "coupon_id": self.coupon_id,
            "user_id": self.user_id,
            "order_id": self.order_id,
            "discount_cents": self.discount_cents,
            "redeemed_at": to_utc_z(self.redeemed_at),
        }
