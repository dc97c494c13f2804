# Overview: Error taxonomy shared by services and routes.

"""
Storefront error taxonomy.

- ValidationError: bad input the user can correct (HTTP 400)
- NotFoundError: referenced record does not exist for this user (HTTP 404)
- ConflictError: business-rule conflict the user can resolve with different
  input, e.g. stock gone or coupon invalid (HTTP 409)
- PaymentError: gateway or verification failure, retryable with the same
  idempotency key (HTTP 402 / 503)
- InvariantViolation: a defect. Never reported to the user as retryable (HTTP 500)

Services raise these; routes translate them via `http_status`.
"""

from __future__ import annotations


class StorefrontError(Exception):
    """Base class for every error a service may raise on purpose."""

    http_status = 400
    error_code = "error"
    retryable = False

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "error": self.message,
            "error_code": self.error_code,
            "retryable": self.retryable,
            "details": self.details,
        }


class ValidationError(StorefrontError):
    http_status = 400
    error_code = "validation_error"


class NotFoundError(StorefrontError):
    http_status = 404
    error_code = "not_found"


class ConflictError(StorefrontError):
    http_status = 409
    error_code = "conflict"


class PaymentError(StorefrontError):
    http_status = 402
    error_code = "payment_failed"
    retryable = True


class InvariantViolation(StorefrontError):
    http_status = 500
    error_code = "invariant_violation"


# =============================================================================
# CHECKOUT
# =============================================================================

class CartEmptyError(ValidationError):
    error_code = "cart_empty"

    def __init__(self, message: str = "Your cart is empty"):
        super().__init__(message)


class ProductUnavailableError(ConflictError):
    error_code = "product_unavailable"

    def __init__(self, product_id: int, message: str | None = None):
        super().__init__(
            message or f"Product {product_id} is no longer available",
            details={"product_id": product_id},
        )
        self.product_id = product_id


class StockUnavailableError(ConflictError):
    error_code = "stock_unavailable"

    def __init__(self, product_id: int, requested: int | None = None, available: int | None = None):
        super().__init__(
            f"Insufficient stock for product {product_id}",
            details={"product_id": product_id, "requested": requested, "available": available},
        )
        self.product_id = product_id


COUPON_EXPIRED = "expired"
COUPON_USAGE_LIMIT_EXCEEDED = "usage-limit-exceeded"
COUPON_MINIMUM_NOT_MET = "minimum-not-met"
COUPON_NOT_APPLICABLE = "not-applicable-to-items"
COUPON_INACTIVE = "inactive"
COUPON_NOT_FOUND = "not-found"


class CouponInvalidError(ConflictError):
    error_code = "coupon_invalid"

    def __init__(self, reason: str, message: str | None = None):
        super().__init__(message or f"Coupon cannot be applied: {reason}", details={"reason": reason})
        self.reason = reason


class InsufficientBalanceError(ConflictError):
    error_code = "insufficient_balance"

    def __init__(self, balance_cents: int, required_cents: int):
        super().__init__(
            "Insufficient wallet balance",
            details={"balance_cents": balance_cents, "required_cents": required_cents},
        )
        self.balance_cents = balance_cents
        self.required_cents = required_cents


class DraftExpiredError(ConflictError):
    error_code = "draft_expired"


# =============================================================================
# PAYMENTS
# =============================================================================

class GatewayUnavailableError(PaymentError):
    http_status = 503
    error_code = "gateway_unavailable"


class PaymentVerificationError(PaymentError):
    error_code = "payment_verification_failed"
