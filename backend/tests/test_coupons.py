# Overview: Pytest coverage for coupon validation and redemption.

from datetime import timedelta

import pytest

from storefront.errors import ConflictError, CouponInvalidError, ValidationError
from storefront.models import Coupon, CouponRedemption, Order
from storefront.services import coupon_service
from storefront.services.coupon_service import CouponLine, check_coupon, redeem_coupon
from storefront.time_utils import minutes_from_now, utcnow


LINES = [CouponLine(product_id=1, category_id=10, line_total_cents=60_000),
         CouponLine(product_id=2, category_id=20, line_total_cents=40_000)]


@pytest.fixture
def bare_order(db_session, shopper):
    counter = iter(range(1, 100))

    def _make():
        n = next(counter)
        order = Order(
            order_number=f"ORD-TEST-{n:04d}",
            user_id=shopper.id,
            draft_key=f"bare-{n}",
            payment_method="COD",
            subtotal_cents=10_000,
            total_cents=10_000,
            expires_at=minutes_from_now(30),
        )
        db_session.add(order)
        db_session.commit()
        return order

    return _make


def _reason(coupon, user_id=1, lines=LINES, subtotal=100_000):
    with pytest.raises(CouponInvalidError) as exc:
        check_coupon(coupon, user_id=user_id, lines=lines, subtotal_cents=subtotal)
    return exc.value.reason


class TestCheckCoupon:
    def test_valid_percentage_coupon(self, db_session, make_coupon):
        coupon = make_coupon(discount_value=10, max_discount_cents=15_000)
        assert check_coupon(coupon, user_id=1, lines=LINES, subtotal_cents=100_000) == 10_000

    def test_missing_or_deleted(self, db_session, make_coupon):
        assert _reason(None) == "not-found"
        assert _reason(make_coupon(is_deleted=True)) == "not-found"

    def test_inactive(self, db_session, make_coupon):
        assert _reason(make_coupon(is_active=False)) == "inactive"

    def test_expired(self, db_session, make_coupon):
        coupon = make_coupon(expires_at=utcnow() - timedelta(minutes=1))
        assert _reason(coupon) == "expired"

    def test_not_started_counts_as_expired(self, db_session, make_coupon):
        coupon = make_coupon(starts_at=utcnow() + timedelta(days=1))
        assert _reason(coupon) == "expired"

    def test_usage_limit_exhausted(self, db_session, make_coupon):
        coupon = make_coupon(usage_limit=5, used_count=5)
        assert _reason(coupon) == "usage-limit-exceeded"

    def test_expiry_checked_before_usage(self, db_session, make_coupon):
        coupon = make_coupon(usage_limit=1, used_count=1, expires_at=utcnow() - timedelta(days=1))
        assert _reason(coupon) == "expired"

    def test_per_user_limit(self, db_session, make_coupon, shopper, bare_order):
        coupon = make_coupon(per_user_limit=1)
        db_session.add(CouponRedemption(coupon_id=coupon.id, user_id=shopper.id, order_id=bare_order().id, discount_cents=100))
        db_session.commit()

        assert _reason(coupon, user_id=shopper.id) == "usage-limit-exceeded"
        assert check_coupon(coupon, user_id=shopper.id + 1, lines=LINES, subtotal_cents=100_000) == 10_000

    def test_minimum_purchase(self, db_session, make_coupon):
        coupon = make_coupon(min_purchase_cents=150_000)
        assert _reason(coupon) == "minimum-not-met"

    def test_only_applicable_lines_count(self, db_session, make_coupon):
        coupon = make_coupon(applicable_category_ids=[20])
        assert check_coupon(coupon, user_id=1, lines=LINES, subtotal_cents=100_000) == 4_000

    def test_not_applicable(self, db_session, make_coupon):
        coupon = make_coupon(applicable_product_ids=[99])
        assert _reason(coupon) == "not-applicable-to-items"


class TestRedeemCoupon:
    def test_redeem_consumes_one_use(self, db_session, make_coupon, shopper, bare_order):
        coupon = make_coupon(usage_limit=2)
        redeem_coupon(coupon.id, user_id=shopper.id, order_id=bare_order().id, discount_cents=500)
        db_session.commit()

        assert db_session.get(Coupon, coupon.id).used_count == 1

    def test_redeem_is_idempotent_per_order(self, db_session, make_coupon, shopper, bare_order):
        coupon = make_coupon(usage_limit=2)
        order = bare_order()
        first = redeem_coupon(coupon.id, user_id=shopper.id, order_id=order.id, discount_cents=500)
        second = redeem_coupon(coupon.id, user_id=shopper.id, order_id=order.id, discount_cents=500)
        db_session.commit()

        assert first.id == second.id
        assert db_session.get(Coupon, coupon.id).used_count == 1

    def test_redeem_beyond_limit_fails(self, db_session, make_coupon, shopper, bare_order):
        coupon = make_coupon(usage_limit=1, used_count=1)
        order = bare_order()
        with pytest.raises(CouponInvalidError) as exc:
            redeem_coupon(coupon.id, user_id=shopper.id, order_id=order.id, discount_cents=500)
        assert exc.value.reason == "usage-limit-exceeded"
        assert exc.value.http_status == 409


class TestCouponAdmin:
    def _payload(self, **overrides):
        now = utcnow()
        payload = {
            "code": " welcome50 ",
            "description": "50 off",
            "discount_type": "flat",
            "discount_value": 5_000,
            "starts_at": (now - timedelta(days=1)).isoformat(),
            "expires_at": (now + timedelta(days=10)).isoformat(),
        }
        payload.update(overrides)
        return payload

    def test_create_normalizes_code(self, db_session, admin_user):
        coupon = coupon_service.create_coupon(self._payload(), admin_user.id)
        assert coupon.code == "WELCOME50"
        assert coupon.discount_type == "FLAT"

    def test_duplicate_code_conflicts(self, db_session, admin_user):
        coupon_service.create_coupon(self._payload(), admin_user.id)
        with pytest.raises(ConflictError):
            coupon_service.create_coupon(self._payload(), admin_user.id)

    def test_percentage_over_100_rejected(self, db_session, admin_user):
        with pytest.raises(ValidationError):
            coupon_service.create_coupon(
                self._payload(discount_type="PERCENTAGE", discount_value=150), admin_user.id,
            )

    def test_available_coupons_skip_used_up(self, db_session, make_coupon, shopper):
        make_coupon("OPEN")
        make_coupon("GONE", usage_limit=1, used_count=1)
        make_coupon("OFF", is_active=False)

        codes = [c.code for c in coupon_service.list_available_coupons(shopper.id)]
        assert codes == ["OPEN"]

    def test_deactivate(self, db_session, make_coupon, admin_user):
        coupon = make_coupon()
        coupon_service.deactivate_coupon(coupon.id, admin_user.id)
        assert _reason(db_session.get(Coupon, coupon.id)) == "inactive"
