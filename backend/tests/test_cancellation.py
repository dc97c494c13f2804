# Overview: Pytest coverage for item cancellation, returns and pro-rata refunds.

from datetime import timedelta

import pytest

from storefront.errors import ConflictError, NotFoundError, ValidationError
from storefront.models import InventoryTransaction, Order, WalletLedgerEntry
from storefront.services import cancellation_service, checkout_service, order_service, payment_service, wallet_service
from storefront.services.inventory_service import get_available, verify_stock_ledger
from storefront.time_utils import utcnow


@pytest.fixture
def place_order(db_session, shopper, fill_cart, make_ctx):
    """Confirm an order for the given (product, qty) lines; WALLET orders are funded first."""
    counter = iter(range(1, 1000))

    def _place(*lines, method="WALLET", coupon_code=None):
        n = next(counter)
        fill_cart(shopper, *lines)
        ctx = make_ctx(shopper, key=f"order-{n}")
        draft = checkout_service.build_draft(ctx, coupon_code=coupon_code, payment_method=method)
        if method == "WALLET":
            wallet_service.admin_adjust(shopper.id, draft.total_cents, idempotency_key=f"fund-{n}")
        checkout_service.accept_draft(ctx, draft)
        order, _ = payment_service.start_payment(ctx, ctx.idempotency_key)
        assert order.status == "CONFIRMED"
        return ctx, order

    return _place


def _items(order):
    return sorted(order.items, key=lambda item: item.line_total_cents, reverse=True)


class TestCancelItem:
    def test_partial_cancel_refunds_line_share(self, db_session, shopper, make_product, place_order):
        """600 + 400 rupees, cancel the 600 line: refund 600, 400 remains."""
        big = make_product(60_000, stock=5)
        small = make_product(40_000, stock=5)
        ctx, order = place_order((big, 1), (small, 1))
        assert wallet_service.get_balance(shopper.id) == 0
        big_item, _ = _items(order)

        item = cancellation_service.cancel_item(ctx, order.id, big_item.id, reason="Changed my mind")

        order = db_session.get(Order, order.id)
        assert item.status == "CANCELLED"
        assert item.refund_cents == 60_000
        assert order.refunded_cents == 60_000
        assert order.remaining_cents == 40_000
        assert order.status == "CONFIRMED"
        assert wallet_service.get_balance(shopper.id) == 60_000
        assert get_available(big.id) == 5
        assert get_available(small.id) == 4

    def test_cancelling_last_item_refunds_remainder_and_closes_order(
        self, db_session, shopper, make_product, place_order
    ):
        big = make_product(60_000)
        small = make_product(40_000)
        ctx, order = place_order((big, 1), (small, 1))
        big_item, small_item = _items(order)

        cancellation_service.cancel_item(ctx, order.id, big_item.id)
        cancellation_service.cancel_item(ctx, order.id, small_item.id)

        order = db_session.get(Order, order.id)
        assert order.status == "CANCELLED"
        assert order.refunded_cents == order.total_cents
        assert wallet_service.get_balance(shopper.id) == 100_000
        assert verify_stock_ledger() == []

    def test_coupon_discount_shared_pro_rata(self, db_session, shopper, make_product, make_coupon, place_order):
        big = make_product(60_000)
        small = make_product(40_000)
        make_coupon("FLAT100", discount_type="FLAT", discount_value=10_000)
        ctx, order = place_order((big, 1), (small, 1), coupon_code="FLAT100")
        assert order.total_cents == 90_000
        big_item, small_item = _items(order)

        first = cancellation_service.cancel_item(ctx, order.id, big_item.id)
        second = cancellation_service.cancel_item(ctx, order.id, small_item.id)

        assert first.refund_cents == 54_000
        assert second.refund_cents == 36_000
        assert wallet_service.get_balance(shopper.id) == 90_000

    def test_single_item_refund_includes_shipping(self, db_session, shopper, make_product, place_order):
        product = make_product(20_000)
        ctx, order = place_order((product, 1))
        assert order.shipping_cents == 5_000

        item = cancellation_service.cancel_item(ctx, order.id, order.items[0].id)

        assert item.refund_cents == 25_000
        assert wallet_service.get_balance(shopper.id) == 25_000

    def test_cancel_twice_refunds_once(self, db_session, shopper, make_product, place_order):
        big = make_product(60_000)
        small = make_product(40_000)
        ctx, order = place_order((big, 1), (small, 1))
        big_item, _ = _items(order)

        cancellation_service.cancel_item(ctx, order.id, big_item.id)
        cancellation_service.cancel_item(ctx, order.id, big_item.id)

        assert wallet_service.get_balance(shopper.id) == 60_000
        assert db_session.query(WalletLedgerEntry).filter_by(entry_type="REFUND").count() == 1
        assert db_session.query(InventoryTransaction).filter_by(type="CANCEL_RESTOCK").count() == 1

    def test_cannot_cancel_after_shipment(self, db_session, make_product, admin_user, place_order):
        product = make_product(60_000)
        ctx, order = place_order((product, 1))
        order_service.mark_shipped(order.id, admin_user.id)

        with pytest.raises(ConflictError):
            cancellation_service.cancel_item(ctx, order.id, order.items[0].id)

    def test_cod_cancel_moves_no_money(self, db_session, shopper, make_product, place_order):
        product = make_product(30_000)
        ctx, order = place_order((product, 1), method="COD")

        cancellation_service.cancel_order(ctx, order.id)

        order = db_session.get(Order, order.id)
        assert order.status == "CANCELLED"
        assert order.refunded_cents == order.total_cents
        assert wallet_service.get_balance(shopper.id) == 0
        assert get_available(product.id) == 10

    def test_other_users_order_not_found(self, db_session, make_user, make_product, make_ctx, place_order):
        product = make_product(60_000)
        _, order = place_order((product, 1))
        stranger = make_user()

        with pytest.raises(NotFoundError):
            cancellation_service.cancel_order(make_ctx(stranger), order.id)


class TestCancelUnpaidOrder:
    def test_pending_order_is_abandoned(self, db_session, shopper, make_product, fill_cart, make_ctx):
        product = make_product(60_000)
        fill_cart(shopper, (product, 1))
        ctx = make_ctx(shopper, key="k1")
        order = checkout_service.checkout(ctx)

        order = cancellation_service.cancel_order(ctx, order.id, reason="Too slow")

        assert order.status == "CANCELLED"
        assert order.refunded_cents == 0
        assert all(item.status == "CANCELLED" for item in order.items)
        assert wallet_service.get_balance(shopper.id) == 0
        assert get_available(product.id) == 10


class TestReturns:
    @pytest.fixture
    def delivered(self, db_session, make_product, admin_user, place_order):
        big = make_product(60_000)
        small = make_product(40_000)
        ctx, order = place_order((big, 1), (small, 1))
        order_service.mark_shipped(order.id, admin_user.id)
        order_service.mark_delivered(order.id, admin_user.id)
        return ctx, db_session.get(Order, order.id), big

    def test_return_requires_reason(self, delivered):
        ctx, order, _ = delivered
        with pytest.raises(ValidationError):
            cancellation_service.request_return(ctx, order.id, order.items[0].id, "  ")

    def test_approved_return_refunds_and_restocks(self, db_session, shopper, admin_user, delivered):
        ctx, order, big = delivered
        big_item, _ = _items(order)

        cancellation_service.request_return(ctx, order.id, big_item.id, "Wrong size")
        assert [i.id for i in cancellation_service.list_pending_returns()] == [big_item.id]

        item = cancellation_service.approve_return(order.id, big_item.id, admin_user.id)

        assert item.status == "REFUNDED"
        assert item.refund_cents == 60_000
        assert wallet_service.get_balance(shopper.id) == 60_000
        assert get_available(big.id) == 10
        assert cancellation_service.list_pending_returns() == []

    def test_rejected_return_keeps_money(self, db_session, shopper, admin_user, delivered):
        ctx, order, big = delivered
        big_item, small_item = _items(order)
        cancellation_service.request_return(ctx, order.id, big_item.id, "Wrong size")
        cancellation_service.request_return(ctx, order.id, small_item.id, "Wrong colour")

        rejected = cancellation_service.reject_return(order.id, big_item.id, admin_user.id, note="Worn")
        approved = cancellation_service.approve_return(order.id, small_item.id, admin_user.id)

        assert rejected.status == "RETURN_REJECTED"
        # The rejected line still holds its money, so only the small line's share comes back
        assert approved.refund_cents == 40_000
        assert wallet_service.get_balance(shopper.id) == 40_000
        assert get_available(big.id) == 9

    def test_return_window_closed(self, db_session, delivered):
        ctx, order, _ = delivered
        order.delivered_at = utcnow() - timedelta(days=8)
        db_session.commit()

        with pytest.raises(ConflictError):
            cancellation_service.request_return(ctx, order.id, order.items[0].id, "Late")

    def test_return_before_delivery_rejected(self, db_session, make_product, place_order):
        product = make_product(60_000)
        ctx, order = place_order((product, 1))

        with pytest.raises(ConflictError):
            cancellation_service.request_return(ctx, order.id, order.items[0].id, "Broken")

    def test_approve_without_request_rejected(self, db_session, admin_user, delivered):
        _, order, _ = delivered
        with pytest.raises(ConflictError):
            cancellation_service.approve_return(order.id, order.items[0].id, admin_user.id)
