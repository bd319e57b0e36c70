"""Tests for coupon application (storefront/coupons.py)."""

from __future__ import annotations

import pytest

from storefront.backend_client import BackendAPIError
from storefront.coupons import apply_coupon
from storefront.errors import CouponError

VALID = {
    "success": True,
    "coupon": {
        "id": 7,
        "discount_type": "flat",
        "discount_value": 10,
        "calculated_discount": 10,
    },
    "message": "Coupon applied",
}


@pytest.mark.asyncio
async def test_applied_code_is_upper_cased(backend):
    backend.on("/coupon/validate", VALID)
    coupon = await apply_coupon(backend, " save10 ", 69)

    assert coupon.code == "SAVE10"
    assert coupon.id == "7"
    assert coupon.calculated_discount == 10
    assert backend.body("/coupon/validate") == {"coupon_code": "save10", "order_amount": 69}


@pytest.mark.asyncio
async def test_empty_code_never_calls_service(backend):
    with pytest.raises(CouponError, match="Please enter a coupon code"):
        await apply_coupon(backend, "   ", 69)
    assert backend.calls == []


@pytest.mark.asyncio
async def test_service_rejection_message_is_shown(backend):
    backend.on(
        "/coupon/validate",
        BackendAPIError(400, "expired", {"success": False, "error": "This coupon has expired"}),
    )
    with pytest.raises(CouponError, match="This coupon has expired"):
        await apply_coupon(backend, "OLD", 69)


@pytest.mark.asyncio
async def test_unsuccessful_body_without_error(backend):
    backend.on("/coupon/validate", {"success": False})
    with pytest.raises(CouponError, match="Invalid coupon code"):
        await apply_coupon(backend, "NOPE", 69)


@pytest.mark.asyncio
async def test_server_failure_is_generic(backend):
    backend.on("/coupon/validate", BackendAPIError(503, "Traceback ..."))
    with pytest.raises(CouponError) as exc_info:
        await apply_coupon(backend, "SAVE", 69)
    assert exc_info.value.message == "Failed to apply coupon"
