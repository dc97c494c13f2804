# Overview: Pytest coverage for price arithmetic (offers, shipping, coupons, pro-rata shares).

from types import SimpleNamespace

import pytest

from storefront.services.pricing import (
    DISCOUNT_FLAT,
    DISCOUNT_PERCENTAGE,
    allocate_pro_rata,
    best_offer_percent,
    coupon_discount_cents,
    final_price_cents,
    percent_of,
    shipping_cents,
    unit_price_for,
)


def _product(regular, sale=None, offer=0, category_offer=0):
    return SimpleNamespace(
        regular_price_cents=regular,
        sale_price_cents=sale,
        offer_percent=offer,
        category=SimpleNamespace(offer_percent=category_offer),
    )


class TestOffers:
    def test_percent_rounds_half_up(self):
        assert percent_of(999, 10) == 100
        assert percent_of(994, 10) == 99
        assert percent_of(1000, 15) == 150

    def test_final_price_without_offer(self):
        assert final_price_cents(79900, 0) == 79900
        assert final_price_cents(79900, None) == 79900

    def test_final_price_caps_offer_at_100(self):
        assert final_price_cents(5000, 150) == 0

    def test_larger_offer_wins(self):
        assert best_offer_percent(10, 25) == 25
        assert best_offer_percent(30, 25) == 30
        assert best_offer_percent(None, None) == 0

    def test_unit_price_uses_category_offer_when_larger(self):
        assert unit_price_for(_product(10000, offer=10, category_offer=20)) == 8000

    def test_unit_price_falls_back_to_sale_price(self):
        assert unit_price_for(_product(10000, sale=7500)) == 7500

    def test_offer_applies_to_regular_price_not_sale_price(self):
        assert unit_price_for(_product(10000, sale=7500, offer=10)) == 9000


class TestShipping:
    def test_free_at_threshold(self):
        assert shipping_cents(50_000, 50_000, 5_000) == 0

    def test_fee_below_threshold(self):
        assert shipping_cents(49_999, 50_000, 5_000) == 5_000


class TestCouponDiscount:
    def test_percentage_capped(self):
        """10% of 1000 rupees is 100, under a 150 cap."""
        assert coupon_discount_cents(
            discount_type=DISCOUNT_PERCENTAGE,
            discount_value=10,
            eligible_base_cents=100_000,
            max_discount_cents=15_000,
        ) == 10_000
        assert coupon_discount_cents(
            discount_type=DISCOUNT_PERCENTAGE,
            discount_value=10,
            eligible_base_cents=300_000,
            max_discount_cents=15_000,
        ) == 15_000

    def test_flat_never_exceeds_base(self):
        assert coupon_discount_cents(
            discount_type=DISCOUNT_FLAT,
            discount_value=20_000,
            eligible_base_cents=12_000,
        ) == 12_000

    def test_zero_base_gives_zero(self):
        assert coupon_discount_cents(
            discount_type=DISCOUNT_FLAT, discount_value=500, eligible_base_cents=0,
        ) == 0

    def test_unknown_type_rejected(self):
        with pytest.raises(ValueError):
            coupon_discount_cents(discount_type="BOGO", discount_value=1, eligible_base_cents=100)


class TestProRata:
    def test_shares_sum_to_amount(self):
        shares = allocate_pro_rata([60_000, 40_000], 10_000)
        assert shares == [6_000, 4_000]

    def test_leftover_cents_go_to_largest_remainders(self):
        shares = allocate_pro_rata([100, 100, 100], 100)
        assert sum(shares) == 100
        assert shares == [34, 33, 33]

    def test_uneven_split(self):
        shares = allocate_pro_rata([333, 667], 101)
        assert sum(shares) == 101
        assert shares == [34, 67]

    def test_zero_amount(self):
        assert allocate_pro_rata([100, 200], 0) == [0, 0]
