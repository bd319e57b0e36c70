"""Per-browser checkout cart: session composition, add-ons, coupon, loyalty.

Prices are always recomputed from the catalog; only the composition
(tracks, ``{index: package_id}``, add-on ids) is kept.  Coupon and loyalty
state live in memory for the lifetime of the checkout page.
"""

from __future__ import annotations

import logging
from typing import Any

from storefront.backend_client import BackendClient
from storefront.config import get_settings
from storefront.coupons import apply_coupon
from storefront.fencing import RequestFence
from storefront.loyalty import LoyaltyTokenClient
from storefront.sessions import SessionData
from storefront.store import CHECKOUT_CART, LAST_SESSION_ID, SELECTED_ADD_ONS, ClientStore
from storefront_core.catalog import get_add_on
from storefront_core.models import (
    AddOnOrderItem,
    CouponState,
    LoyaltyQuote,
    LoyaltyRedemption,
    OrderItem,
    Totals,
    Track,
)
from storefront_core.pricing import (
    build_add_on_items,
    build_order_items,
    compute_totals,
    remove_track,
    toggle_add_on,
)

logger = logging.getLogger(__name__)


class CheckoutCart:
    """In-memory runtime state of one checkout page."""

    def __init__(self, scope: str):
        self.scope = scope
        self.session_id: str | None = None
        self.tracks: list[Track] = []
        self.selected_packages: dict[str, str] = {}
        self.add_on_ids: list[str] = []
        self.coupon: CouponState | None = None
        self.redemption = LoyaltyRedemption()
        self.quote = LoyaltyQuote()
        self.authenticated = False
        self.minimum_order_total = get_settings().minimum_order_total
        self._loyalty_fence = RequestFence()

    # ------------------------------------------------------------------
    # Derived pricing
    # ------------------------------------------------------------------

    @property
    def order_items(self) -> list[OrderItem]:
        return build_order_items(
            self.tracks,
            self.selected_packages,
            rate=get_settings().volume_discount_rate,
        )

    @property
    def add_on_items(self) -> list[AddOnOrderItem]:
        return build_add_on_items(self.add_on_ids)

    def totals(self) -> Totals:
        return compute_totals(
            self.order_items,
            self.add_on_items,
            self.coupon,
            self.redemption.applied_discount,
            minimum_order_total=self.minimum_order_total,
        )

    def pre_coupon_total(self) -> float:
        """Subtotal minus markdowns; what a coupon is validated against."""
        return compute_totals(
            self.order_items, self.add_on_items, minimum_order_total=self.minimum_order_total
        ).total_before_loyalty

    # ------------------------------------------------------------------
    # Session load
    # ------------------------------------------------------------------

    async def load_session(self, session_id: str, data: SessionData, store: ClientStore) -> None:
        """Adopt a validated session; restore add-ons only for the same session id."""
        self.session_id = session_id
        self.tracks = list(data.tracks)
        self.selected_packages = dict(data.selected_packages)

        last_session = await store.get_json(LAST_SESSION_ID)
        if last_session == session_id:
            self.add_on_ids = await self._restore_add_ons(store)
        else:
            if last_session is not None:
                logger.info("Session switched %s → %s, clearing add-ons", last_session, session_id)
            self.add_on_ids = []
            await store.remove(SELECTED_ADD_ONS)
            self.coupon = None
            self.redemption = LoyaltyRedemption()
        await store.set_json(LAST_SESSION_ID, session_id)

    async def _restore_add_ons(self, store: ClientStore) -> list[str]:
        saved = await store.get_json(SELECTED_ADD_ONS, [])
        if not isinstance(saved, list):
            logger.warning("Discarding malformed add-on selection for scope %s", self.scope)
            await store.remove(SELECTED_ADD_ONS)
            return []
        return [a for a in saved if isinstance(a, str) and get_add_on(a) is not None]

    # ------------------------------------------------------------------
    # Cart editing
    # ------------------------------------------------------------------

    async def toggle_add_on(self, add_on_id: str, store: ClientStore) -> None:
        if get_add_on(add_on_id) is None:
            raise KeyError(add_on_id)
        self.add_on_ids = toggle_add_on(self.add_on_ids, add_on_id)
        await store.set_json(SELECTED_ADD_ONS, self.add_on_ids)

    async def remove_add_on(self, add_on_id: str, store: ClientStore) -> None:
        self.add_on_ids = [a for a in self.add_on_ids if a != add_on_id]
        await store.set_json(SELECTED_ADD_ONS, self.add_on_ids)

    async def change_song(self, index: int, store: ClientStore) -> None:
        """Drop track *index* so the user can pick a replacement."""
        if not 0 <= index < len(self.tracks):
            raise IndexError(index)
        tracks, packages = remove_track(self.tracks, self.selected_packages, index)
        self.tracks = tracks
        self.selected_packages = {str(k): v for k, v in packages.items()}
        if tracks:
            await store.set_json(
                CHECKOUT_CART,
                {"tracks": [t.to_wire() for t in tracks], "selectedPackages": self.selected_packages},
            )
        else:
            await store.remove(CHECKOUT_CART)

    # ------------------------------------------------------------------
    # Coupon
    # ------------------------------------------------------------------

    async def apply_coupon(self, backend: BackendClient, code: str) -> CouponState:
        self.coupon = await apply_coupon(backend, code, self.pre_coupon_total())
        return self.coupon

    def remove_coupon(self) -> None:
        self.coupon = None

    # ------------------------------------------------------------------
    # Loyalty
    # ------------------------------------------------------------------

    async def refresh_loyalty(self, loyalty: LoyaltyTokenClient) -> LoyaltyQuote:
        """Re-fetch the redeemable maximum for the current post-coupon total.

        Overlapping refreshes are fenced: a response that arrives after a
        newer request was issued is discarded.
        """
        ticket = self._loyalty_fence.issue()
        settings = await loyalty.settings()
        cart_total = self.totals().total_before_loyalty
        quote = await loyalty.fetch_balance_and_max(cart_total, authenticated=self.authenticated)
        if not self._loyalty_fence.is_current(ticket):
            logger.debug("Discarding stale loyalty quote (ticket %d)", ticket)
            return self.quote
        self.minimum_order_total = settings.minimum_order_total
        self.quote = quote
        self.redemption = loyalty.reconcile(self.redemption, quote)
        return quote

    def apply_tokens(self, tokens: int) -> LoyaltyRedemption:
        self.redemption = LoyaltyTokenClient.apply(tokens, self.quote)
        return self.redemption

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "items": [i.to_wire() for i in self.order_items],
            "addOnItems": [a.to_wire() for a in self.add_on_items],
            "selectedAddOns": list(self.add_on_ids),
            "coupon": self.coupon.model_dump() if self.coupon else None,
            "loyalty": {**self.quote.to_wire(), **self.redemption.to_wire()},
            "totals": self.totals().to_wire(),
        }


# Key: browser scope → CheckoutCart
_carts: dict[str, CheckoutCart] = {}


def get_cart(scope: str) -> CheckoutCart:
    cart = _carts.get(scope)
    if cart is None:
        cart = _carts[scope] = CheckoutCart(scope)
    return cart


def drop_cart(scope: str) -> None:
    _carts.pop(scope, None)
