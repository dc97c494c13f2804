# Overview: Pytest coverage for the cart and checkout drafts.

import pytest

from storefront.errors import (
    CartEmptyError,
    ConflictError,
    CouponInvalidError,
    ProductUnavailableError,
    StockUnavailableError,
    ValidationError,
)
from storefront.models import AuditEvent, Order, OrderItem
from storefront.services import cart_service, checkout_service


class TestCart:
    def test_add_merges_quantities(self, db_session, shopper, make_product, make_ctx):
        product = make_product(10_000)
        ctx = make_ctx(shopper)
        cart_service.add_item(ctx, product.id, 2)
        cart = cart_service.add_item(ctx, product.id, 1)

        assert len(cart.items) == 1
        assert cart.items[0].quantity == 3

    def test_quantity_limit(self, db_session, shopper, make_product, make_ctx):
        product = make_product(10_000, stock=20)
        with pytest.raises(ValidationError):
            cart_service.add_item(make_ctx(shopper), product.id, 6)

    def test_cannot_add_more_than_stock(self, db_session, shopper, make_product, make_ctx):
        product = make_product(10_000, stock=2)
        with pytest.raises(StockUnavailableError):
            cart_service.add_item(make_ctx(shopper), product.id, 3)

    def test_unlisted_product_rejected(self, db_session, shopper, make_product, make_ctx):
        product = make_product(10_000, is_listed=False)
        with pytest.raises(ProductUnavailableError):
            cart_service.add_item(make_ctx(shopper), product.id, 1)

    def test_update_to_zero_removes_line(self, db_session, shopper, make_product, fill_cart):
        product = make_product(10_000)
        ctx = fill_cart(shopper, (product, 2))
        cart = cart_service.update_quantity(ctx, product.id, 0)
        assert cart.items == []


class TestBuildDraft:
    def test_empty_cart(self, db_session, shopper, make_ctx):
        with pytest.raises(CartEmptyError):
            checkout_service.build_draft(make_ctx(shopper))

    def test_totals_with_shipping_below_threshold(self, db_session, shopper, make_product, fill_cart):
        product = make_product(20_000)
        ctx = fill_cart(shopper, (product, 1))

        draft = checkout_service.build_draft(ctx)

        assert draft.subtotal_cents == 20_000
        assert draft.shipping_cents == 5_000
        assert draft.total_cents == 25_000
        assert draft.payment_method == "ONLINE"

    def test_reprices_from_catalog(self, db_session, shopper, make_product, fill_cart):
        """The cart's price snapshot is ignored; the current offer applies."""
        product = make_product(60_000)
        ctx = fill_cart(shopper, (product, 1))

        product.offer_percent = 50
        db_session.commit()

        draft = checkout_service.build_draft(ctx)
        assert draft.lines[0].unit_price_cents == 30_000
        assert draft.subtotal_cents == 30_000
        assert draft.shipping_cents == 5_000

    def test_product_unlisted_after_adding(self, db_session, shopper, make_product, fill_cart):
        product = make_product(10_000)
        ctx = fill_cart(shopper, (product, 1))

        product.is_listed = False
        db_session.commit()

        with pytest.raises(ProductUnavailableError):
            checkout_service.build_draft(ctx)

    def test_category_unlisted_after_adding(self, db_session, shopper, category, make_product, fill_cart):
        product = make_product(10_000)
        ctx = fill_cart(shopper, (product, 1))

        category.is_listed = False
        db_session.commit()

        with pytest.raises(ProductUnavailableError):
            checkout_service.build_draft(ctx)

    def test_coupon_discount_capped(self, db_session, shopper, make_product, make_coupon, fill_cart):
        """1000 rupees with 10% capped at 150 rupees: total 900."""
        product = make_product(100_000)
        make_coupon("SAVE10", discount_value=10, max_discount_cents=15_000)
        ctx = fill_cart(shopper, (product, 1))

        draft = checkout_service.build_draft(ctx, coupon_code="save10")

        assert draft.discount_cents == 10_000
        assert draft.shipping_cents == 0
        assert draft.total_cents == 90_000
        assert draft.coupon_code == "SAVE10"

    def test_discount_split_across_lines(self, db_session, shopper, make_product, make_coupon, fill_cart):
        a = make_product(60_000)
        b = make_product(40_000)
        make_coupon("FLAT100", discount_type="FLAT", discount_value=10_000)
        ctx = fill_cart(shopper, (a, 1), (b, 1))

        draft = checkout_service.build_draft(ctx, coupon_code="FLAT100")

        assert [line.discount_share_cents for line in draft.lines] == [6_000, 4_000]

    def test_cod_limit(self, db_session, shopper, make_product, fill_cart, app):
        product = make_product(100_000)
        ctx = fill_cart(shopper, (product, 3))
        with pytest.raises(ValidationError):
            checkout_service.build_draft(ctx, payment_method="COD")

    def test_invalid_payment_method(self, db_session, shopper, make_product, fill_cart):
        product = make_product(10_000)
        ctx = fill_cart(shopper, (product, 1))
        with pytest.raises(ValidationError):
            checkout_service.build_draft(ctx, payment_method="CHEQUE")

    def test_unknown_coupon(self, db_session, shopper, make_product, fill_cart):
        product = make_product(10_000)
        ctx = fill_cart(shopper, (product, 1))
        with pytest.raises(CouponInvalidError) as exc:
            checkout_service.build_draft(ctx, coupon_code="NOPE")
        assert exc.value.reason == "not-found"

    def test_draft_writes_nothing(self, db_session, shopper, make_product, fill_cart):
        product = make_product(10_000)
        ctx = fill_cart(shopper, (product, 1))
        before = db_session.query(AuditEvent).count()

        checkout_service.build_draft(ctx)

        assert db_session.query(Order).count() == 0
        assert db_session.query(AuditEvent).count() == before


class TestAcceptDraft:
    def test_checkout_creates_pending_order(self, db_session, shopper, make_product, fill_cart, make_ctx):
        product = make_product(20_000)
        fill_cart(shopper, (product, 2))

        order = checkout_service.checkout(make_ctx(shopper, key="key-1"))

        assert order.status == "PENDING_PAYMENT"
        assert order.draft_key == "key-1"
        assert order.order_number.startswith("ORD-")
        assert order.total_cents == 45_000
        items = db_session.query(OrderItem).filter_by(order_id=order.id).all()
        assert len(items) == 1
        assert items[0].quantity == 2

    def test_same_key_returns_same_order(self, db_session, shopper, make_product, fill_cart, make_ctx):
        product = make_product(20_000)
        fill_cart(shopper, (product, 1))
        ctx = make_ctx(shopper, key="key-1")

        first = checkout_service.checkout(ctx)
        second = checkout_service.checkout(ctx)

        assert first.id == second.id
        assert db_session.query(Order).count() == 1

    def test_key_of_another_user_conflicts(self, db_session, shopper, make_user, make_product, fill_cart, make_ctx):
        other = make_user()
        product = make_product(20_000)
        fill_cart(shopper, (product, 1))
        fill_cart(other, (product, 1))

        checkout_service.checkout(make_ctx(shopper, key="shared"))
        with pytest.raises(ConflictError):
            checkout_service.checkout(make_ctx(other, key="shared"))

    def test_checkout_does_not_touch_stock_or_cart(self, db_session, shopper, make_product, fill_cart, make_ctx):
        from storefront.services.inventory_service import get_available

        product = make_product(20_000, stock=4)
        fill_cart(shopper, (product, 2))

        checkout_service.checkout(make_ctx(shopper, key="key-1"))

        assert get_available(product.id) == 4
        assert len(cart_service.cart_lines(shopper.id)) == 1
