# backend/storefront/config.py
from __future__ import annotations
import os


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite file in the instance folder unless DATABASE_URL is set
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///storefront.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    CURRENCY = os.environ.get("CURRENCY", "INR")

    # Checkout rules (amounts in minor units)
    DRAFT_TTL_MINUTES = _int_env("DRAFT_TTL_MINUTES", 30)
    COD_LIMIT_CENTS = _int_env("COD_LIMIT_CENTS", 200_000)
    FREE_SHIPPING_THRESHOLD_CENTS = _int_env("FREE_SHIPPING_THRESHOLD_CENTS", 50_000)
    SHIPPING_FEE_CENTS = _int_env("SHIPPING_FEE_CENTS", 5_000)
    MAX_QTY_PER_PRODUCT = _int_env("MAX_QTY_PER_PRODUCT", 5)
    RETURN_WINDOW_DAYS = _int_env("RETURN_WINDOW_DAYS", 7)
    REFERRAL_REWARD_CENTS = _int_env("REFERRAL_REWARD_CENTS", 5_000)

    # WALLET credits reversals immediately; GATEWAY queues a gateway refund
    PAYMENT_REVERSAL_DESTINATION = os.environ.get("PAYMENT_REVERSAL_DESTINATION", "WALLET")

    # Razorpay API (the SDK appends /v1)
    GATEWAY_BASE_URL = os.environ.get("GATEWAY_BASE_URL", "https://api.razorpay.com")
    GATEWAY_KEY_ID = os.environ.get("GATEWAY_KEY_ID", "")
    GATEWAY_KEY_SECRET = os.environ.get("GATEWAY_KEY_SECRET", "")
    GATEWAY_TIMEOUT_SECONDS = float(os.environ.get("GATEWAY_TIMEOUT_SECONDS", "10"))

    SESSION_TTL_HOURS = _int_env("SESSION_TTL_HOURS", 24)
