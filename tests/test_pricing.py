"""Tests for the pure pricing engine (storefront_core/pricing.py)."""

from __future__ import annotations

import math

import pytest

from storefront_core.catalog import PACKAGES, get_add_on, get_package
from storefront_core.models import CouponState, LoyaltyRedemption, Track
from storefront_core.pricing import (
    build_add_on_items,
    build_order_items,
    clamp_redemption,
    compute_totals,
    discounted_price,
    max_redeemable_tokens,
    payment_line_items,
    remove_track,
    toggle_add_on,
)


def _tracks(n: int) -> list[Track]:
    return [Track(id=f"t{i}", title=f"Song {i}", artist="Artist") for i in range(n)]


def _coupon(amount: float) -> CouponState:
    return CouponState(
        id="c1", code="SAVE", discount_type="flat", discount_value=amount, calculated_discount=amount
    )


# ---------------------------------------------------------------------------
# Volume discount
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("package", PACKAGES, ids=lambda p: p.id)
def test_only_first_track_pays_full_price(package):
    tracks = _tracks(4)
    items = build_order_items(tracks, {i: package.id for i in range(4)})

    assert items[0].discounted_price == package.price
    assert not items[0].is_discounted
    for item in items[1:]:
        assert item.is_discounted
        assert item.discounted_price == math.ceil(package.price * 0.75)


def test_discount_rounds_up():
    assert discounted_price(39) == 30
    assert discounted_price(79) == 60
    assert discounted_price(1) == 1
    # Exact quarter: no float noise pushes 300 to 301.
    assert discounted_price(400) == 300


def test_string_keys_and_unknown_packages():
    tracks = _tracks(3)
    items = build_order_items(tracks, {"0": "momentum", "1": "nope", "2": "breakthrough"})

    assert [i.track.id for i in items] == ["t0", "t2"]
    # Position decides the discount, not the item count.
    assert items[1].is_discounted
    assert items[1].discounted_price == 30


# ---------------------------------------------------------------------------
# Totals
# ---------------------------------------------------------------------------

def test_two_track_happy_path():
    items = build_order_items(_tracks(2), {0: "breakthrough", 1: "breakthrough"})
    totals = compute_totals(items)

    assert totals.subtotal == 78
    assert totals.discount == 9
    assert totals.total == 69


def test_coupon_then_loyalty_stack():
    items = build_order_items(_tracks(2), {0: "breakthrough", 1: "breakthrough"})

    with_coupon = compute_totals(items, coupon=_coupon(10))
    assert with_coupon.total == 59

    tokens = 2000
    redemption = clamp_redemption(
        LoyaltyRedemption(applied_tokens=tokens),
        max_redeemable_tokens(5000, with_coupon.total, 100),
        100,
    )
    assert redemption.applied_discount == 20

    final = compute_totals(items, coupon=_coupon(10), loyalty_discount=redemption.applied_discount)
    assert final.total_before_loyalty == 59
    assert final.loyalty_discount == 20
    assert final.total == 39


def test_coupon_larger_than_cart_clamps_to_zero():
    items = build_order_items(_tracks(1), {0: "breakthrough"})
    totals = compute_totals(items, coupon=_coupon(500))

    assert totals.total == 0
    assert totals.total_before_loyalty == 0


def test_add_on_markdown_counts_as_discount():
    items = build_order_items(_tracks(1), {0: "momentum"})
    add_ons = build_add_on_items(["express-launch", "discover-weekly-push"])
    totals = compute_totals(items, add_ons)

    assert totals.subtotal == 79 + 28 + 38
    assert totals.discount == 14 + 19
    assert totals.total == 79 + 14 + 19


@pytest.mark.parametrize("coupon_amount", [0, 5, 60, 1000])
@pytest.mark.parametrize("loyalty", [0, 3.5, 50, 10_000])
def test_discounts_never_raise_total(coupon_amount, loyalty):
    items = build_order_items(_tracks(2), {0: "breakthrough", 1: "momentum"})
    base = compute_totals(items)
    coupon = _coupon(coupon_amount) if coupon_amount else None
    totals = compute_totals(items, coupon=coupon, loyalty_discount=loyalty)

    assert 0 <= totals.total <= base.total
    if loyalty:
        assert totals.total >= min(1.0, totals.total_before_loyalty)


def test_loyalty_never_lifts_a_total_below_the_minimum():
    items = build_order_items(_tracks(1), {0: "test"})
    totals = compute_totals(items, coupon=_coupon(0.5), loyalty_discount=5)

    assert totals.total_before_loyalty == 0.5
    assert totals.total == 0.5
    assert totals.loyalty_discount == 0


# ---------------------------------------------------------------------------
# Loyalty arithmetic
# ---------------------------------------------------------------------------

def test_cap_correction_after_coupon():
    before = max_redeemable_tokens(1000, 50, 100, 1)
    assert before == 1000

    after = max_redeemable_tokens(1000, 10, 100, 1)
    assert after == 900

    clamped = clamp_redemption(LoyaltyRedemption(applied_tokens=4000), after, 100)
    assert clamped.applied_tokens == 900
    assert clamped.applied_discount == 9


def test_max_tokens_zero_when_total_at_minimum():
    assert max_redeemable_tokens(1000, 1.0, 1000, 1.0) == 0
    assert max_redeemable_tokens(1000, 0.5, 1000, 1.0) == 0
    assert max_redeemable_tokens(0, 100, 1000, 1.0) == 0


# ---------------------------------------------------------------------------
# Cart editing
# ---------------------------------------------------------------------------

def test_remove_track_reindexes_densely():
    tracks = _tracks(3)
    remaining, packages = remove_track(tracks, {"0": "legendary", "1": "momentum", "2": "test"}, 1)

    assert [t.id for t in remaining] == ["t0", "t2"]
    assert packages == {0: "legendary", 1: "test"}


def test_toggle_add_on():
    assert toggle_add_on([], "express-launch") == ["express-launch"]
    assert toggle_add_on(["express-launch"], "express-launch") == []


def test_add_on_items_drop_unknown_and_repeats():
    items = build_add_on_items(["express-launch", "bogus", "express-launch"])
    assert [a.id for a in items] == ["express-launch"]
    assert items[0].is_on_sale


def test_payment_line_item_names():
    items = build_order_items(_tracks(2), {0: "dominate", 1: "dominate"})
    add_ons = build_add_on_items(["express-launch", "discover-weekly-push"])
    lines = payment_line_items(items, add_ons)

    assert lines[0] == {"name": "Song 0 - DOMINATE", "price": 149}
    assert lines[1] == {"name": "Song 1 - DOMINATE", "price": 112}
    assert lines[2]["name"] == f"{get_add_on('express-launch').emoji} EXPRESS: 8hr Rapid Launch"
    assert lines[3]["name"].endswith("Guaranteed 'Discover Weekly' Push")
    assert lines[3]["price"] == 19


def test_catalog_lookup():
    assert get_package("legendary").price == 479
    assert get_package("missing") is None
