"""Pricing engine: pure business logic, no I/O.

Provides:
- Volume discount (first track full price, every further track 25% off, rounded up)
- Cart composition from a session's tracks + ``{index: package_id}`` map
- Stacked totals: markdowns → coupon → loyalty (with minimum-order floor)
- Loyalty redemption cap and clamp
- Cart editing helpers (change song, add-on toggle)
"""

from __future__ import annotations

import math
import re
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from storefront_core.catalog import get_add_on, get_package
from storefront_core.models import (
    AddOnOrderItem,
    CouponState,
    LoyaltyRedemption,
    OrderItem,
    Totals,
    Track,
)

VOLUME_DISCOUNT_RATE = 0.25
MINIMUM_ORDER_TOTAL = 1.0


def _money(value: float) -> float:
    return round(value, 2)


# ---------------------------------------------------------------------------
# Volume discount
# ---------------------------------------------------------------------------

def discounted_price(original_price: float, rate: float = VOLUME_DISCOUNT_RATE) -> int:
    """Price after the volume discount, rounded up to the next whole unit."""
    # round() first so 0.75 * price float noise never bumps an exact result up.
    return math.ceil(round(original_price * (1 - rate), 6))


def build_order_items(
    tracks: Sequence[Track],
    selected_packages: Mapping,
    *,
    rate: float = VOLUME_DISCOUNT_RATE,
) -> List[OrderItem]:
    """Zip tracks with their selected packages.

    Keys of *selected_packages* may be ints or their string form (JSON
    object keys).  Tracks whose package is unknown are skipped; the discount
    is still decided by the track's position, so index 0 is never discounted.
    """
    items: List[OrderItem] = []
    for index, track in enumerate(tracks):
        package_id = selected_packages.get(index, selected_packages.get(str(index)))
        package = get_package(package_id) if package_id else None
        if package is None:
            continue
        is_discounted = index > 0
        original = package.price
        items.append(
            OrderItem(
                track=track,
                package=package,
                original_price=original,
                discounted_price=discounted_price(original, rate) if is_discounted else original,
                is_discounted=is_discounted,
            )
        )
    return items


def build_add_on_items(add_on_ids: Iterable[str]) -> List[AddOnOrderItem]:
    """Resolve add-on ids against the catalog, dropping unknown and repeated ids."""
    items: List[AddOnOrderItem] = []
    seen = set()
    for add_on_id in add_on_ids:
        product = get_add_on(add_on_id)
        if product is None or add_on_id in seen:
            continue
        seen.add(add_on_id)
        items.append(
            AddOnOrderItem(
                id=product.id,
                name=product.name,
                emoji=product.emoji,
                price=product.sale_price,
                original_price=product.original_price,
                is_on_sale=product.sale_price < product.original_price,
            )
        )
    return items


# ---------------------------------------------------------------------------
# Totals
# ---------------------------------------------------------------------------

def compute_totals(
    order_items: Sequence[OrderItem],
    add_on_items: Sequence[AddOnOrderItem] = (),
    coupon: Optional[CouponState] = None,
    loyalty_discount: float = 0.0,
    *,
    minimum_order_total: float = MINIMUM_ORDER_TOTAL,
) -> Totals:
    """Compute subtotal, stacked discounts and the final total.

    The coupon's ``calculated_discount`` is taken as given and clamped so the
    total never drops below zero.  Loyalty is subtracted last and may not
    push the total below *minimum_order_total*, nor raise a total that is
    already under it.
    """
    subtotal = 0.0
    markdown = 0.0
    for item in order_items:
        subtotal += item.original_price
        if item.is_discounted:
            markdown += item.original_price - item.discounted_price
    for add_on in add_on_items:
        subtotal += add_on.original_price
        if add_on.is_on_sale:
            markdown += add_on.original_price - add_on.price

    coupon_discount = coupon.calculated_discount if coupon else 0.0
    total_before_loyalty = max(0.0, subtotal - markdown - coupon_discount)

    total = total_before_loyalty
    if loyalty_discount > 0:
        floor = min(minimum_order_total, total_before_loyalty)
        total = max(floor, total_before_loyalty - loyalty_discount)

    return Totals(
        subtotal=_money(subtotal),
        discount=_money(markdown),
        coupon_discount=_money(coupon_discount),
        total_before_loyalty=_money(total_before_loyalty),
        loyalty_discount=_money(total_before_loyalty - total),
        total=_money(total),
    )


# ---------------------------------------------------------------------------
# Loyalty arithmetic
# ---------------------------------------------------------------------------

def max_redeemable_tokens(
    balance: int,
    cart_total: float,
    redemption_rate: int,
    minimum_order_total: float = MINIMUM_ORDER_TOTAL,
) -> int:
    """``min(balance, floor((cart_total - minimum) * rate))``, never negative."""
    headroom = max(0.0, cart_total - minimum_order_total)
    by_total = math.floor(round(headroom * redemption_rate, 6))
    return max(0, min(balance, by_total))


def tokens_to_discount(tokens: int, redemption_rate: int) -> float:
    if redemption_rate <= 0:
        return 0.0
    return _money(tokens / redemption_rate)


def clamp_redemption(
    redemption: LoyaltyRedemption,
    max_tokens: int,
    redemption_rate: int,
) -> LoyaltyRedemption:
    """Clamp applied tokens down to *max_tokens* and recompute the discount."""
    tokens = max(0, min(redemption.applied_tokens, max_tokens))
    return LoyaltyRedemption(
        applied_tokens=tokens,
        applied_discount=tokens_to_discount(tokens, redemption_rate),
    )


# ---------------------------------------------------------------------------
# Cart editing
# ---------------------------------------------------------------------------

def remove_track(
    tracks: Sequence[Track],
    selected_packages: Mapping,
    index: int,
) -> Tuple[List[Track], Dict[int, str]]:
    """Drop the track at *index* and re-index the package map densely."""
    remaining_tracks = [t for i, t in enumerate(tracks) if i != index]
    ordered = sorted(((int(k), v) for k, v in selected_packages.items()), key=lambda kv: kv[0])
    remaining_packages: Dict[int, str] = {}
    for old_index, package_id in ordered:
        if old_index != index:
            remaining_packages[len(remaining_packages)] = package_id
    return remaining_tracks, remaining_packages


def toggle_add_on(selected: Sequence[str], add_on_id: str) -> List[str]:
    if add_on_id in selected:
        return [a for a in selected if a != add_on_id]
    return [*selected, add_on_id]


_PARENTHETICAL = re.compile(r" \(.*\)")


def payment_line_items(
    order_items: Sequence[OrderItem],
    add_on_items: Sequence[AddOnOrderItem] = (),
) -> List[dict]:
    """Itemized cart as sent to the payment provider."""
    lines = [
        {"name": f"{item.track.title} - {item.package.name}", "price": item.discounted_price}
        for item in order_items
    ]
    lines.extend(
        {"name": f"{a.emoji} {_PARENTHETICAL.sub('', a.name)}", "price": a.price}
        for a in add_on_items
    )
    return lines
