from .auth import User, SessionToken
from .catalog import Category, Product
from .inventory import InventoryRecord, InventoryTransaction
from .carts import Cart, CartItem
from .coupons import Coupon, CouponRedemption
from .orders import Order, OrderItem, OrderEvent
from .payments import PaymentAttempt, PaymentReversal
from .wallet import WalletAccount, WalletLedgerEntry
from .referrals import Referral
from .ledger import AuditEvent

__all__ = [
    'User', 'SessionToken',
    'Category', 'Product',
    'InventoryRecord', 'InventoryTransaction',
    'Cart', 'CartItem',
    'Coupon', 'CouponRedemption',
    'Order', 'OrderItem', 'OrderEvent',
    'PaymentAttempt', 'PaymentReversal',
    'WalletAccount', 'WalletLedgerEntry',
    'Referral',
    'AuditEvent',
]
