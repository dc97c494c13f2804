"""
Pytest fixtures for storefront backend tests.

Provides the test app on in-memory SQLite, a fake payment gateway, and
factories for users, catalog, coupons and carts.
"""

import itertools
from datetime import timedelta

import pytest

from storefront import create_app
from storefront.extensions import db
from storefront.errors import PaymentVerificationError
from storefront.models import Category, Coupon, Product, User
from storefront.services import cart_service, inventory_service, session_service
from storefront.services.payment_gateway import GatewayOrder, GatewayPayment, VerifiedCapture
from storefront.services.session_service import RequestContext
from storefront.time_utils import utcnow


class FakeGateway:
    """In-process stand-in for the Razorpay client with the same methods."""

    def __init__(self):
        self.reset()

    def reset(self):
        self.orders = {}
        self.payments = {}
        self.signatures = {}
        self.refunds = []
        self.create_order_error = None
        self.refund_error = None
        self._ids = itertools.count(1)

    def create_order(self, amount_cents, currency, receipt):
        if self.create_order_error is not None:
            raise self.create_order_error
        order = GatewayOrder(
            order_ref=f"order_{next(self._ids)}",
            amount_cents=amount_cents,
            currency=currency,
            receipt=receipt,
            status="created",
        )
        self.orders[order.order_ref] = order
        return order

    def pay(self, order_ref, amount_cents=None, status="captured"):
        """Simulate the shopper paying; returns the callback payload."""
        order = self.orders[order_ref]
        payment = GatewayPayment(
            payment_ref=f"pay_{next(self._ids)}",
            order_ref=order_ref,
            amount_cents=order.amount_cents if amount_cents is None else amount_cents,
            currency=order.currency,
            status=status,
        )
        self.payments[payment.payment_ref] = payment
        self.signatures[(order_ref, payment.payment_ref)] = f"sig_{next(self._ids)}"
        return {
            "razorpay_order_id": order_ref,
            "razorpay_payment_id": payment.payment_ref,
            "razorpay_signature": self.signatures[(order_ref, payment.payment_ref)],
        }

    def verify_callback(self, order_ref, payment_ref, signature):
        if not signature or self.signatures.get((order_ref, payment_ref)) != signature:
            raise PaymentVerificationError("Payment signature mismatch")
        payment = self.payments.get(payment_ref)
        if payment is None or payment.order_ref != order_ref:
            raise PaymentVerificationError("Payment does not belong to this order")
        if payment.status != "captured":
            raise PaymentVerificationError(f"Payment is {payment.status}, not captured")
        return VerifiedCapture(payment=payment, receipt=self.orders[order_ref].receipt)

    def fetch_order_payments(self, order_ref):
        return [p for p in self.payments.values() if p.order_ref == order_ref]

    def refund(self, payment_ref, amount_cents, receipt, notes=None):
        if self.refund_error is not None:
            raise self.refund_error
        refund_ref = f"rfnd_{next(self._ids)}"
        self.refunds.append((payment_ref, amount_cents, refund_ref, receipt))
        return refund_ref

    def find_refund(self, payment_ref, receipt):
        for paid_ref, _, refund_ref, refund_receipt in self.refunds:
            if paid_ref == payment_ref and refund_receipt == receipt:
                return refund_ref
        return None


class RecordingNotifier:
    def __init__(self):
        self.sent = []
        self.fail = False

    def __call__(self, user_id, order_id):
        if self.fail:
            raise RuntimeError("notifier down")
        self.sent.append((user_id, order_id))


TEST_CONFIG = {
    "TESTING": True,
    "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
    "SQLALCHEMY_TRACK_MODIFICATIONS": False,
    "CURRENCY": "INR",
    "FREE_SHIPPING_THRESHOLD_CENTS": 50_000,
    "SHIPPING_FEE_CENTS": 5_000,
    "COD_LIMIT_CENTS": 200_000,
    "MAX_QTY_PER_PRODUCT": 5,
    "DRAFT_TTL_MINUTES": 30,
    "RETURN_WINDOW_DAYS": 7,
    "REFERRAL_REWARD_CENTS": 5_000,
    "PAYMENT_REVERSAL_DESTINATION": "WALLET",
}


@pytest.fixture(scope='session')
def fake_gateway():
    return FakeGateway()


@pytest.fixture(scope='session')
def notifier():
    return RecordingNotifier()


@pytest.fixture(scope='session')
def app(fake_gateway, notifier):
    """Create application for testing."""
    app = create_app(dict(TEST_CONFIG, PAYMENT_GATEWAY=fake_gateway, ORDER_NOTIFIER=notifier))

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app, fake_gateway, notifier):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()
        fake_gateway.reset()
        notifier.sent.clear()
        notifier.fail = False

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def gateway(db_session, fake_gateway):
    return fake_gateway


# =============================================================================
# FACTORIES
# =============================================================================

@pytest.fixture(scope='function')
def make_user(db_session):
    counter = itertools.count(1)

    def _make(email=None, is_admin=False):
        n = next(counter)
        user = User(email=email or f"shopper{n}@example.com", is_admin=is_admin, is_active=True)
        db_session.add(user)
        db_session.commit()
        return user

    return _make


@pytest.fixture(scope='function')
def shopper(make_user):
    return make_user("shopper@example.com")


@pytest.fixture(scope='function')
def admin_user(make_user):
    return make_user("admin@example.com", is_admin=True)


@pytest.fixture(scope='function')
def category(db_session):
    cat = Category(name="Apparel", offer_percent=0, is_listed=True)
    db_session.add(cat)
    db_session.commit()
    return cat


@pytest.fixture(scope='function')
def make_product(db_session, category):
    counter = itertools.count(1)

    def _make(price_cents, stock=10, name=None, category_id=None, **fields):
        n = next(counter)
        product = Product(
            sku=f"SKU-{n:04d}",
            name=name or f"Product {n}",
            category_id=category_id or category.id,
            regular_price_cents=price_cents,
            **fields,
        )
        db_session.add(product)
        db_session.commit()
        inventory_service.ensure_record(product.id)
        db_session.commit()
        if stock:
            inventory_service.receive_stock(product.id, stock)
        return product

    return _make


@pytest.fixture(scope='function')
def make_coupon(db_session):
    def _make(code="SAVE10", discount_type="PERCENTAGE", discount_value=10, **fields):
        now = utcnow()
        fields.setdefault("starts_at", now - timedelta(days=1))
        fields.setdefault("expires_at", now + timedelta(days=30))
        coupon = Coupon(
            code=code,
            description=fields.pop("description", f"{code} coupon"),
            discount_type=discount_type,
            discount_value=discount_value,
            **fields,
        )
        db_session.add(coupon)
        db_session.commit()
        return coupon

    return _make


def ctx_for(user, key=None, is_admin=None):
    return RequestContext(
        user_id=user.id,
        idempotency_key=key,
        is_admin=user.is_admin if is_admin is None else is_admin,
    )


@pytest.fixture(scope='function')
def fill_cart(db_session):
    def _fill(user, *lines):
        ctx = ctx_for(user)
        for product, quantity in lines:
            cart_service.add_item(ctx, product.id, quantity)
        return ctx

    return _fill


@pytest.fixture(scope='function')
def auth_headers(db_session):
    def _headers(user, key=None):
        _, token = session_service.create_session(user.id)
        headers = {"Authorization": f"Bearer {token}"}
        if key:
            headers["Idempotency-Key"] = key
        return headers

    return _headers


@pytest.fixture(scope='function')
def make_ctx():
    return ctx_for
