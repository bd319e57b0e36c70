"""Loyalty tokens (fashokens): settings, redeemable maximum, settlement.

Redemption is capped twice: by the user's balance and by the minimum
order total the post-coupon cart may not drop below.  When the cart total
falls (e.g. a coupon is applied after tokens), previously applied tokens
are silently clamped to the new maximum.
"""

from __future__ import annotations

import logging

from storefront.backend_client import BackendAPIError, BackendClient
from storefront.config import get_settings
from storefront_core.models import (
    LoyaltyQuote,
    LoyaltyRedemption,
    LoyaltySettings,
    LoyaltySettlement,
)
from storefront_core.pricing import clamp_redemption, max_redeemable_tokens, tokens_to_discount

logger = logging.getLogger(__name__)

_INACTIVE = LoyaltySettings(is_program_active=False)


class LoyaltyTokenClient:
    def __init__(self, backend: BackendClient):
        self.backend = backend
        self._settings: LoyaltySettings | None = None

    async def fetch_program_settings(self) -> LoyaltySettings:
        """Program settings; an unreachable service suppresses loyalty entirely."""
        try:
            data = await self.backend.get_json("/loyalty/settings")
        except BackendAPIError as exc:
            logger.warning("Loyalty settings unavailable: %s", exc)
            self._settings = _INACTIVE
            return self._settings

        raw = data.get("settings") or {}
        values = {k: v for k, v in raw.items() if k in LoyaltySettings.model_fields and v is not None}
        values.setdefault("minimum_order_total", get_settings().minimum_order_total)
        self._settings = LoyaltySettings(**values)
        return self._settings

    async def settings(self) -> LoyaltySettings:
        if self._settings is None:
            return await self.fetch_program_settings()
        return self._settings

    async def fetch_balance_and_max(self, cart_total: float, *, authenticated: bool = True) -> LoyaltyQuote:
        """Balance and redeemable maximum for *cart_total* (the post-coupon total)."""
        settings = await self.settings()
        if not settings.is_program_active or not authenticated or cart_total <= 0:
            return LoyaltyQuote(redemption_rate=settings.redemption_tokens_per_dollar)

        try:
            data = await self.backend.post_json("/loyalty/calculate-max", {"cartTotal": cart_total})
        except BackendAPIError as exc:
            logger.warning("Loyalty max unavailable: %s", exc)
            return LoyaltyQuote(redemption_rate=settings.redemption_tokens_per_dollar)

        balance = int(data.get("balance") or 0)
        rate = int(data.get("redemptionRate") or settings.redemption_tokens_per_dollar)
        max_tokens = max_redeemable_tokens(balance, cart_total, rate, settings.minimum_order_total)
        return LoyaltyQuote(
            balance=balance,
            max_tokens=max_tokens,
            max_discount=tokens_to_discount(max_tokens, rate),
            redemption_rate=rate,
        )

    @staticmethod
    def apply(tokens: int, quote: LoyaltyQuote) -> LoyaltyRedemption:
        """Redemption for *tokens*, limited to what *quote* allows."""
        return clamp_redemption(
            LoyaltyRedemption(applied_tokens=tokens), quote.max_tokens, quote.redemption_rate
        )

    @staticmethod
    def reconcile(redemption: LoyaltyRedemption, quote: LoyaltyQuote) -> LoyaltyRedemption:
        """Clamp an existing redemption to a freshly computed maximum."""
        if redemption.applied_tokens <= quote.max_tokens:
            return redemption
        clamped = clamp_redemption(redemption, quote.max_tokens, quote.redemption_rate)
        logger.info(
            "Clamped applied tokens %d → %d after cart total changed",
            redemption.applied_tokens, clamped.applied_tokens,
        )
        return clamped

    async def settle(
        self,
        *,
        user_id: str | None,
        order_id: str,
        order_number: str,
        order_total: float,
        coupon_discount: float,
        tokens_spent: int,
        tokens_discount: float,
    ) -> LoyaltySettlement | None:
        """Debit spent / credit earned tokens.  Never raises."""
        if not user_id:
            logger.info("Guest checkout, skipping loyalty settlement for order %s", order_number)
            return None
        try:
            data = await self.backend.post_json(
                "/loyalty/process-order",
                {
                    "userId": user_id,
                    "orderId": order_id,
                    "orderNumber": order_number,
                    "orderTotal": order_total,
                    "couponDiscount": coupon_discount,
                    "fashokensSpent": tokens_spent,
                    "fashokensDiscount": tokens_discount,
                },
                retry=False,
            )
        except BackendAPIError:
            logger.exception("Loyalty settlement failed for order %s", order_number)
            return None

        settlement = LoyaltySettlement(
            fashokens_spent=int(data.get("fashokens_spent") or 0),
            fashokens_earned=int(data.get("fashokens_earned") or 0),
            new_balance=data.get("new_balance"),
        )
        logger.info(
            "Loyalty settled for order %s: spent %d, earned %d",
            order_number, settlement.fashokens_spent, settlement.fashokens_earned,
        )
        return settlement
