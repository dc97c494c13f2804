from __future__ import annotations
from datetime import datetime
from storefront.time_utils import parse_iso_datetime

from dataclasses import dataclass
from typing import Any

from sqlalchemy import JSON, Boolean, Integer, String, Text, DateTime
from sqlalchemy.orm import DeclarativeMeta

from .errors import ValidationError


# Maximum price: ₹9,999,999.99 (999,999,999 paise)
# This prevents database overflow issues and nonsensical prices
MAX_PRICE_CENTS = 999_999_999


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


CATEGORY_POLICY = ModelValidationPolicy(
    writable_fields={"name", "description", "offer_percent", "is_listed"},
    required_on_create={"name"},
)

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={
        "sku", "name", "description", "category_id",
        "regular_price_cents", "sale_price_cents", "offer_percent", "is_listed",
    },
    required_on_create={"sku", "name", "category_id", "regular_price_cents"},
)

COUPON_POLICY = ModelValidationPolicy(
    writable_fields={
        "code", "description", "discount_type", "discount_value",
        "min_purchase_cents", "max_discount_cents", "starts_at", "expires_at",
        "usage_limit", "per_user_limit", "applicable_product_ids",
        "applicable_category_ids", "is_active",
    },
    required_on_create={"code", "discount_type", "discount_value", "starts_at", "expires_at"},
)


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def _coerce_int(key: str, value: Any) -> int:
    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    # String input - must be plain digits (with optional leading minus)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{key} must be an integer")
        # Reject scientific notation (e.g., "1e15", "1E10")
        if 'e' in stripped.lower():
            raise ValidationError(f"{key} must be a plain integer (scientific notation not allowed)")
        # Reject decimal points (e.g., "12.5")
        if '.' in stripped:
            raise ValidationError(f"{key} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{key} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{key} must be an integer, not a decimal")
    raise ValidationError(f"{key} must be an integer")


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Integer):
        return _coerce_int(col.key, value)

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        raise ValidationError(f"{col.key} must be true or false")

    # Datetimes (accept ISO-8601 strings; normalize to UTC)
    if isinstance(coltype, DateTime):
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                dt = parse_iso_datetime(value)
            except ValueError:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            if dt is None:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            return dt
        raise ValidationError(f"{col.key} must be a datetime")

    # JSON columns here only ever hold id lists
    if isinstance(coltype, JSON):
        if not isinstance(value, list):
            raise ValidationError(f"{col.key} must be a list of ids")
        return sorted({_coerce_int(col.key, v) for v in value})

    # Strings / Text
    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields.

    partial=False: create semantics (enforce required_on_create)
    partial=True: patch semantics (validate only provided keys)
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if f not in payload)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)

    # Reject unknown / non-writable fields
    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        # Blank string check for non-nullable text fields
        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        # Max length check for String(n)
        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def _check_percent(patch: dict, key: str) -> None:
    if patch.get(key) is not None and not 0 <= patch[key] <= 100:
        raise ValidationError(f"{key} must be between 0 and 100")


def _check_price(patch: dict, key: str) -> None:
    price = patch.get(key)
    if price is None:
        return
    if price < 0:
        raise ValidationError(f"{key} must be >= 0")
    if price > MAX_PRICE_CENTS:
        raise ValidationError(f"{key} cannot exceed {MAX_PRICE_CENTS}")


def enforce_rules_category(patch: dict) -> None:
    _check_percent(patch, "offer_percent")


def enforce_rules_product(patch: dict) -> None:
    """
    Business rules that are not captured by SQLAlchemy metadata alone.
    Keep these small and centralized.
    """
    _check_price(patch, "regular_price_cents")
    _check_price(patch, "sale_price_cents")
    _check_percent(patch, "offer_percent")

    regular = patch.get("regular_price_cents")
    sale = patch.get("sale_price_cents")
    if regular is not None and sale is not None and sale > regular:
        raise ValidationError("sale_price_cents cannot exceed regular_price_cents")


def enforce_rules_coupon(patch: dict) -> None:
    discount_type = patch.get("discount_type")
    if discount_type is not None and discount_type not in ("PERCENTAGE", "FLAT"):
        raise ValidationError("discount_type must be PERCENTAGE or FLAT")

    value = patch.get("discount_value")
    if value is not None:
        if value <= 0:
            raise ValidationError("discount_value must be > 0")
        if discount_type == "PERCENTAGE" and value > 100:
            raise ValidationError("discount_value must be <= 100 for PERCENTAGE")

    for key in ("min_purchase_cents", "max_discount_cents"):
        _check_price(patch, key)
    for key in ("usage_limit", "per_user_limit"):
        if patch.get(key) is not None and patch[key] <= 0:
            raise ValidationError(f"{key} must be > 0")

    starts_at = patch.get("starts_at")
    expires_at = patch.get("expires_at")
    if starts_at is not None and expires_at is not None and expires_at <= starts_at:
        raise ValidationError("expires_at must be after starts_at")


def parse_quantity(value: Any, *, field: str = "quantity") -> int:
    """Positive integer from a JSON body field."""
    if value is None:
        raise ValidationError(f"{field} is required")
    qty = _coerce_int(field, value)
    if qty <= 0:
        raise ValidationError(f"{field} must be > 0")
    return qty
