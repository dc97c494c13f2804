# Overview: Service-layer operations for reporting; sales totals over confirmed orders.

"""
Sales Report

Counts every order that was confirmed inside the window, including ones
later cancelled; their cancellations show up as refunds.

AMOUNTS (minor units):
- gross_cents:    item subtotal plus shipping
- discount_cents: coupon discounts
- refunded_cents: money given back for cancelled and returned items
- net_cents:      gross - discount - refunded
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import func

from ..extensions import db
from ..errors import ValidationError
from ..models import Order
from storefront.time_utils import parse_iso_datetime, to_utc_z
from .checkout_service import PAYMENT_METHODS


GROUPINGS = {
    "day": "%Y-%m-%d",
    "month": "%Y-%m",
}


def _parse_bound(value: str | datetime | None, name: str) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    try:
        return parse_iso_datetime(value)
    except ValueError:
        raise ValidationError(f"{name} must be an ISO-8601 datetime", details={name: value})


def _amounts(row) -> dict:
    gross = int(row.gross_cents or 0)
    discount = int(row.discount_cents or 0)
    refunded = int(row.refunded_cents or 0)
    return {
        "order_count": int(row.order_count or 0),
        "gross_cents": gross,
        "discount_cents": discount,
        "refunded_cents": refunded,
        "net_cents": gross - discount - refunded,
    }


def sales_report(
    start: str | datetime | None,
    end: str | datetime | None,
    *,
    payment_method: str | None = None,
    group_by: str = "day",
) -> dict:
    """
    Totals for orders confirmed in [start, end], plus one row per period.

    Either bound may be omitted. Raises ValidationError for an unparseable
    bound, start after end, an unknown payment method or grouping.
    """
    start_dt = _parse_bound(start, "start")
    end_dt = _parse_bound(end, "end")
    if start_dt and end_dt and start_dt > end_dt:
        raise ValidationError("start cannot be after end")
    if group_by not in GROUPINGS:
        raise ValidationError("group_by must be day or month")
    method = payment_method.strip().upper() if payment_method else None
    if method and method not in PAYMENT_METHODS:
        raise ValidationError(f"payment_method must be one of {', '.join(PAYMENT_METHODS)}")

    period = func.strftime(GROUPINGS[group_by], Order.confirmed_at).label("period")
    columns = (
        func.count(Order.id).label("order_count"),
        func.sum(Order.subtotal_cents + Order.shipping_cents).label("gross_cents"),
        func.sum(Order.discount_cents).label("discount_cents"),
        func.sum(Order.refunded_cents).label("refunded_cents"),
    )

    filters = [Order.confirmed_at.isnot(None)]
    if start_dt:
        filters.append(Order.confirmed_at >= start_dt)
    if end_dt:
        filters.append(Order.confirmed_at <= end_dt)
    if method:
        filters.append(Order.payment_method == method)

    totals = db.session.query(*columns).filter(*filters).one()
    rows = (
        db.session.query(period, *columns)
        .filter(*filters)
        .group_by("period")
        .order_by("period")
        .all()
    )

    return {
        "start": to_utc_z(start_dt),
        "end": to_utc_z(end_dt),
        "payment_method": method,
        "group_by": group_by,
        "totals": _amounts(totals),
        "rows": [dict(period=row.period, **_amounts(row)) for row in rows],
    }
