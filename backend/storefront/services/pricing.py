# Overview: Pure price arithmetic for offers, shipping, coupons and refund shares.

"""
Pricing

All amounts are integer minor units (cents / paise). Nothing here touches the
database, so checkout, confirmation and refunds all price a line the same way.

ROUNDING: percentages round half up to the cent.
"""

from __future__ import annotations

from typing import Sequence

DISCOUNT_PERCENTAGE = "PERCENTAGE"
DISCOUNT_FLAT = "FLAT"


def percent_of(amount_cents: int, percent: int) -> int:
    """amount * percent / 100, rounded half up."""
    return (amount_cents * percent + 50) // 100


def final_price_cents(base_price_cents: int, offer_percent: int | None) -> int:
    if not offer_percent or offer_percent <= 0:
        return base_price_cents
    offer_percent = min(offer_percent, 100)
    return base_price_cents - percent_of(base_price_cents, offer_percent)


def best_offer_percent(product_offer: int | None, category_offer: int | None) -> int:
    """The larger offer wins; on a tie the product offer is the one reported."""
    product_offer = product_offer or 0
    category_offer = category_offer or 0
    if category_offer > product_offer:
        return category_offer
    return product_offer


def unit_price_for(product) -> int:
    """
    Current selling price of one unit.

    With an offer (product or category) the offer applies to the regular
    price. Without one, the sale price is used when set.
    """
    category_offer = product.category.offer_percent if product.category else 0
    offer = best_offer_percent(product.offer_percent, category_offer)
    if offer > 0:
        return final_price_cents(product.regular_price_cents, offer)
    if product.sale_price_cents is not None:
        return product.sale_price_cents
    return product.regular_price_cents


def shipping_cents(amount_after_offers: int, free_threshold_cents: int, fee_cents: int) -> int:
    if amount_after_offers >= free_threshold_cents:
        return 0
    return fee_cents


def coupon_discount_cents(
    *,
    discount_type: str,
    discount_value: int,
    eligible_base_cents: int,
    max_discount_cents: int | None = None,
) -> int:
    """
    Discount a coupon gives on eligible_base_cents.

    PERCENTAGE: discount_value percent, capped by max_discount_cents when set.
    FLAT: discount_value cents.
    Never more than the eligible base, never negative.
    """
    if eligible_base_cents <= 0:
        return 0
    if discount_type == DISCOUNT_PERCENTAGE:
        discount = percent_of(eligible_base_cents, discount_value)
        if max_discount_cents is not None and discount > max_discount_cents:
            discount = max_discount_cents
    elif discount_type == DISCOUNT_FLAT:
        discount = discount_value
    else:
        raise ValueError(f"Unknown discount type: {discount_type}")
    return max(0, min(discount, eligible_base_cents))


def allocate_pro_rata(line_totals: Sequence[int], amount_cents: int) -> list[int]:
    """
    Split amount_cents across lines in proportion to their totals.

    Largest-remainder rounding: floor every share, then hand the leftover
    cents to the lines with the biggest fractional parts (earlier lines win
    ties). The result always sums to amount_cents.
    """
    total = sum(line_totals)
    if total <= 0 or amount_cents == 0:
        return [0 for _ in line_totals]

    floors = []
    remainders = []
    for index, line_total in enumerate(line_totals):
        share, remainder = divmod(line_total * amount_cents, total)
        floors.append(share)
        remainders.append((remainder, -index))

    leftover = amount_cents - sum(floors)
    for _, neg_index in sorted(remainders, reverse=True)[:leftover]:
        floors[-neg_index] += 1
    return floors
