"""Coupon application via ``POST /coupon/validate``.

The service computes ``calculated_discount`` against the pre-coupon total;
the checkout only displays and subtracts it.
"""

from __future__ import annotations

import logging

from storefront.backend_client import BackendAPIError, BackendClient
from storefront.errors import CouponError
from storefront_core.models import CouponState

logger = logging.getLogger(__name__)


async def apply_coupon(backend: BackendClient, code: str, order_amount: float) -> CouponState:
    """Validate *code* for *order_amount* and return the applied coupon."""
    code = (code or "").strip()
    if not code:
        raise CouponError("Please enter a coupon code")

    try:
        data = await backend.post_json(
            "/coupon/validate",
            {"coupon_code": code, "order_amount": order_amount},
        )
    except BackendAPIError as exc:
        if 400 <= exc.status_code < 500:
            # Domain rejection (expired, usage limit, minimum not met …).
            raise CouponError(exc.payload.get("error") or "Invalid coupon code") from exc
        logger.warning("Coupon service failure for %s…: %s", code[:5], exc)
        raise CouponError("Failed to apply coupon") from exc

    if not data.get("success") or not data.get("coupon"):
        raise CouponError(data.get("error") or "Invalid coupon code")

    coupon = data["coupon"]
    logger.info("Coupon applied, discount %s", coupon.get("calculated_discount"))
    return CouponState(
        id=str(coupon["id"]),
        code=code.upper(),
        discount_type=coupon["discount_type"],
        discount_value=coupon["discount_value"],
        calculated_discount=coupon["calculated_discount"],
    )
