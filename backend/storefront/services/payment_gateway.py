# Overview: Razorpay payment gateway client built on the razorpay SDK.

"""
Payment Gateway Client

Wraps razorpay.Client (key id / key secret auth). Every call passes
GATEWAY_TIMEOUT_SECONDS through to requests and must be made outside any
open DB transaction.

ERRORS:
- requests timeouts / connection failures, razorpay GatewayError and
  ServerError                          -> GatewayUnavailableError (retryable)
- SignatureVerificationError, payment for another order, not captured
                                       -> PaymentVerificationError
- razorpay BadRequestError             -> PaymentError

The app keeps one instance in app.extensions["payment_gateway"]; tests swap
in a fake with the same methods.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import razorpay
import requests
from flask import current_app
from razorpay.errors import BadRequestError, GatewayError, ServerError, SignatureVerificationError

from ..errors import GatewayUnavailableError, PaymentError, PaymentVerificationError


@dataclass(frozen=True)
class GatewayOrder:
    order_ref: str
    amount_cents: int
    currency: str
    receipt: str | None
    status: str


@dataclass(frozen=True)
class GatewayPayment:
    payment_ref: str
    order_ref: str
    amount_cents: int
    currency: str
    status: str


@dataclass(frozen=True)
class VerifiedCapture:
    """A captured payment whose signature checked out, plus the receipt of its gateway order."""
    payment: GatewayPayment
    receipt: str | None


class RazorpayGateway:
    """
    Orders, payments and refunds through the Razorpay v1 API.
    """

    def __init__(
        self,
        key_id: str,
        key_secret: str,
        timeout: float = 10.0,
        base_url: Optional[str] = None,
        session: Optional[requests.Session] = None,
    ):
        options = {"base_url": base_url.rstrip("/")} if base_url else {}
        self.client = razorpay.Client(session=session, auth=(key_id, key_secret), **options)
        self.timeout = timeout

    def _call(self, action: str, fn, *args):
        try:
            return fn(*args, timeout=self.timeout)
        except requests.Timeout as exc:
            raise GatewayUnavailableError("Payment gateway timed out", details={"action": action}) from exc
        except requests.RequestException as exc:
            raise GatewayUnavailableError("Payment gateway unreachable", details={"action": action}) from exc
        except (GatewayError, ServerError) as exc:
            raise GatewayUnavailableError(
                str(exc) or "Payment gateway error", details={"action": action},
            ) from exc
        except BadRequestError as exc:
            raise PaymentError(
                str(exc) or "Payment gateway rejected the request", details={"action": action},
            ) from exc

    # =========================================================================
    # ORDERS
    # =========================================================================

    def create_order(self, amount_cents: int, currency: str, receipt: str) -> GatewayOrder:
        data = self._call("create order", self.client.order.create, {
            "amount": amount_cents,
            "currency": currency,
            "receipt": receipt,
        })
        return _parse_order(data)

    def fetch_order(self, order_ref: str) -> GatewayOrder:
        return _parse_order(self._call("fetch order", self.client.order.fetch, order_ref))

    def fetch_order_payments(self, order_ref: str) -> list[GatewayPayment]:
        data = self._call("fetch order payments", self.client.order.payments, order_ref)
        return [_parse_payment(item) for item in data.get("items", [])]

    # =========================================================================
    # PAYMENTS
    # =========================================================================

    def fetch_payment(self, payment_ref: str) -> GatewayPayment:
        return _parse_payment(self._call("fetch payment", self.client.payment.fetch, payment_ref))

    def verify_signature(self, order_ref: str, payment_ref: str, signature: str) -> bool:
        if not signature:
            return False
        try:
            return bool(self.client.utility.verify_payment_signature({
                "razorpay_order_id": order_ref,
                "razorpay_payment_id": payment_ref,
                "razorpay_signature": signature,
            }))
        except SignatureVerificationError:
            return False

    def verify_callback(self, order_ref: str, payment_ref: str, signature: str) -> VerifiedCapture:
        """
        Check the callback signature, then re-read the payment and its order
        from the gateway. The callback body itself is never trusted for amounts.
        """
        if not self.verify_signature(order_ref, payment_ref, signature):
            raise PaymentVerificationError("Payment signature mismatch", details={"order_ref": order_ref})

        payment = self.fetch_payment(payment_ref)
        if payment.order_ref != order_ref:
            raise PaymentVerificationError(
                "Payment does not belong to this order",
                details={"order_ref": order_ref, "payment_order_ref": payment.order_ref},
            )
        if payment.status != "captured":
            raise PaymentVerificationError(
                f"Payment is {payment.status}, not captured",
                details={"payment_ref": payment_ref, "status": payment.status},
            )

        order = self.fetch_order(order_ref)
        return VerifiedCapture(payment=payment, receipt=order.receipt)

    # =========================================================================
    # REFUNDS
    # =========================================================================

    def refund(self, payment_ref: str, amount_cents: int, receipt: str, notes: Optional[dict] = None) -> str:
        """
        Refund part or all of a captured payment. Returns the gateway refund id.

        receipt is stored on the refund so find_refund() can spot it after a
        crash that lost the response.
        """
        data = self._call("refund", self.client.payment.refund, payment_ref, amount_cents, {
            "receipt": receipt,
            "notes": dict(notes or {}, receipt=receipt),
        })
        return data["id"]

    def find_refund(self, payment_ref: str, receipt: str) -> str | None:
        """Id of an existing refund of payment_ref carrying receipt, if any."""
        data = self._call("fetch refunds", self.client.payment.fetch_multiple_refund, payment_ref)
        for item in data.get("items", []):
            notes = item.get("notes") or {}
            if item.get("receipt") == receipt or (isinstance(notes, dict) and notes.get("receipt") == receipt):
                return item["id"]
        return None


def _parse_order(data: dict) -> GatewayOrder:
    return GatewayOrder(
        order_ref=data["id"],
        amount_cents=int(data["amount"]),
        currency=data.get("currency", "INR"),
        receipt=data.get("receipt"),
        status=data.get("status", "created"),
    )


def _parse_payment(data: dict) -> GatewayPayment:
    return GatewayPayment(
        payment_ref=data["id"],
        order_ref=data.get("order_id"),
        amount_cents=int(data["amount"]),
        currency=data.get("currency", "INR"),
        status=data.get("status", ""),
    )


def init_gateway(app) -> None:
    """Register the configured gateway unless one was injected already."""
    if "payment_gateway" in app.extensions:
        return
    app.extensions["payment_gateway"] = RazorpayGateway(
        key_id=app.config["GATEWAY_KEY_ID"],
        key_secret=app.config["GATEWAY_KEY_SECRET"],
        timeout=app.config["GATEWAY_TIMEOUT_SECONDS"],
        base_url=app.config["GATEWAY_BASE_URL"],
    )


def get_gateway():
    return current_app.extensions["payment_gateway"]
