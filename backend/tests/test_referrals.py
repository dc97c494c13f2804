# Overview: Pytest coverage for referral registration and first-purchase rewards.

import pytest

from storefront.errors import ConflictError, NotFoundError, ValidationError
from storefront.models import Referral
from storefront.services import checkout_service, payment_service, referral_service, wallet_service


@pytest.fixture
def referrer(make_user, db_session):
    user = make_user("referrer@example.com")
    referral_service.ensure_referral_code(user)
    db_session.commit()
    return user


def _buy(user, product, fill_cart, make_ctx, key):
    fill_cart(user, (product, 1))
    ctx = make_ctx(user, key=key)
    checkout_service.checkout(ctx, payment_method="COD")
    order, _ = payment_service.start_payment(ctx, key)
    return order


class TestRegisterReferral:
    def test_register(self, db_session, referrer, shopper):
        referral = referral_service.register_referral(referrer.referral_code.lower(), shopper.id)

        assert referral.status == "PENDING"
        assert referral.referrer_user_id == referrer.id
        assert shopper.referred_by_user_id == referrer.id

    def test_unknown_code(self, db_session, shopper):
        with pytest.raises(NotFoundError):
            referral_service.register_referral("NOPE1234", shopper.id)

    def test_self_referral(self, db_session, referrer):
        with pytest.raises(ValidationError):
            referral_service.register_referral(referrer.referral_code, referrer.id)

    def test_only_referred_once(self, db_session, referrer, shopper, make_user):
        other = make_user()
        referral_service.ensure_referral_code(other)
        db_session.commit()
        referral_service.register_referral(referrer.referral_code, shopper.id)

        with pytest.raises(ConflictError):
            referral_service.register_referral(other.referral_code, shopper.id)

    def test_code_is_stable(self, db_session, referrer):
        code = referrer.referral_code
        assert referral_service.ensure_referral_code(referrer) == code
        assert len(code) == 8


class TestReward:
    def test_first_purchase_rewards_referrer(self, db_session, referrer, shopper, make_product, fill_cart, make_ctx):
        referral_service.register_referral(referrer.referral_code, shopper.id)
        product = make_product(30_000)

        order = _buy(shopper, product, fill_cart, make_ctx, "first")

        referral = db_session.query(Referral).one()
        assert referral.status == "REWARDED"
        assert referral.rewarded_order_id == order.id
        assert wallet_service.get_balance(referrer.id) == 5_000

    def test_second_purchase_does_not_reward_again(self, db_session, referrer, shopper, make_product, fill_cart, make_ctx):
        referral_service.register_referral(referrer.referral_code, shopper.id)
        product = make_product(30_000)

        _buy(shopper, product, fill_cart, make_ctx, "first")
        _buy(shopper, product, fill_cart, make_ctx, "second")

        assert wallet_service.get_balance(referrer.id) == 5_000

    def test_referred_after_first_purchase_gets_nothing(
        self, db_session, referrer, shopper, make_product, fill_cart, make_ctx
    ):
        product = make_product(30_000)
        _buy(shopper, product, fill_cart, make_ctx, "first")
        referral_service.register_referral(referrer.referral_code, shopper.id)

        _buy(shopper, product, fill_cart, make_ctx, "second")

        assert db_session.query(Referral).one().status == "PENDING"
        assert wallet_service.get_balance(referrer.id) == 0
