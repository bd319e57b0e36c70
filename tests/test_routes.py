"""Route tests for the checkout API (storefront/checkout_routes.py).

Backend services are replaced through FastAPI dependency overrides.
"""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from storefront.cache import TTLCache
from storefront.checkout_routes import get_backend, get_loyalty, get_profile_cache
from storefront.loyalty import LoyaltyTokenClient
from storefront.main import app

SESSION_DATA = {
    "tracks": [
        {"id": "t0", "title": "Song 0", "artist": "A"},
        {"id": "t1", "title": "Song 1", "artist": "B"},
    ],
    "selectedPackages": {"0": "breakthrough", "1": "breakthrough"},
}

BILLING = {
    "firstName": "Ada",
    "lastName": "Lovelace",
    "address": "1 Main St",
    "city": "Austin",
    "state": "TX",
    "zip": "78701",
    "country": "US",
    "phoneNumber": "5125550100",
    "musicGenre": "Pop",
}


@pytest.fixture
def client(backend, monkeypatch):
    monkeypatch.setenv("EMAIL_CHECK_DEBOUNCE", "0")
    from storefront.config import get_settings
    get_settings.cache_clear()

    backend.on("/checkout-session/validate", {"sessionData": SESSION_DATA})
    loyalty = LoyaltyTokenClient(backend)
    app.dependency_overrides[get_backend] = lambda: backend
    app.dependency_overrides[get_loyalty] = lambda: loyalty
    app.dependency_overrides[get_profile_cache] = lambda: TTLCache(60)
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def _load(client) -> dict:
    resp = client.post("/checkout/load", json={"sessionId": "sess-1"})
    assert resp.status_code == 200
    return resp.json()


# ---------------------------------------------------------------------------
# Session / cart
# ---------------------------------------------------------------------------

def test_load_returns_priced_cart(client):
    data = _load(client)

    assert data["status"] == "valid"
    assert data["cart"]["totals"]["total"] == 69
    assert [i["discountedPrice"] for i in data["cart"]["items"]] == [39, 30]


def test_load_without_session_redirects_to_entry(client):
    resp = client.post("/checkout/load", json={})

    assert resp.json()["status"] == "redirect"
    assert resp.json()["redirect"] == "/add"


def test_load_used_session_goes_to_dashboard(client, backend):
    from storefront.backend_client import BackendAPIError

    backend.on(
        "/checkout-session/validate",
        BackendAPIError(400, "used", {"error": "Session already used", "reason": "already_used"}),
    )
    body = client.post("/checkout/load", json={"sessionId": "sess-1"}).json()

    assert body["status"] == "already_completed"
    assert body["redirect"] == "/dashboard"
    assert body["delaySeconds"] == 2.5


def test_cart_routes_require_loaded_session(client):
    assert client.post("/checkout/add-ons/express-launch/toggle").status_code == 409
    assert client.post("/checkout/coupon", json={"code": "SAVE10"}).status_code == 409


def test_toggle_add_on(client):
    _load(client)

    on = client.post("/checkout/add-ons/express-launch/toggle").json()
    off = client.post("/checkout/add-ons/express-launch/toggle").json()

    assert on["totals"]["total"] == 69 + 14
    assert on["selectedAddOns"] == ["express-launch"]
    assert off["selectedAddOns"] == []
    assert client.post("/checkout/add-ons/nope/toggle").status_code == 404


def test_change_song_redirects_to_entry(client):
    _load(client)

    resp = client.post("/checkout/change-song/0")

    assert resp.json()["redirect"] == "/add"
    assert len(resp.json()["cart"]["items"]) == 1
    assert client.post("/checkout/change-song/5").status_code == 404


# ---------------------------------------------------------------------------
# Coupon / account helpers
# ---------------------------------------------------------------------------

def test_coupon_applied_and_removed(client, backend):
    backend.on(
        "/coupon/validate",
        {
            "success": True,
            "coupon": {
                "id": "c1",
                "discount_type": "percentage",
                "discount_value": 10,
                "calculated_discount": 6.9,
            },
        },
    )
    _load(client)

    applied = client.post("/checkout/coupon", json={"code": "save10"}).json()
    removed = client.delete("/checkout/coupon").json()

    assert applied["coupon"]["code"] == "SAVE10"
    assert applied["totals"]["total"] == 62.1
    assert backend.body("/coupon/validate")["order_amount"] == 69
    assert removed["coupon"] is None


def test_empty_coupon_code_rejected(client):
    _load(client)

    resp = client.post("/checkout/coupon", json={"code": "  "})

    assert resp.status_code == 400
    assert resp.json()["detail"] == "Please enter a coupon code"


def test_email_status(client, backend):
    backend.on("/account/check-exists", {"exists": True})

    resp = client.post("/checkout/email-status", json={"email": "ada@example.com"})

    assert resp.json() == {"email": "ada@example.com", "status": "exists"}


def test_password_requirements(client):
    body = client.post("/checkout/password-requirements", json={"password": "abc"}).json()
    assert body == {"minLength": False, "hasUpperCase": False, "hasLowerCase": True, "hasSpecialChar": False}


# ---------------------------------------------------------------------------
# Payment
# ---------------------------------------------------------------------------

def test_submit_with_missing_field(client):
    _load(client)

    resp = client.post(
        "/checkout/submit",
        json={"billing": {**BILLING, "city": ""}, "termsAgreed": True, "isLoginMode": True,
              "account": {"email": "ada@example.com", "password": "pw"}},
    )

    assert resp.status_code == 422
    assert resp.json()["field"] == "city"
    assert resp.json()["message"] == "Please complete your billing information before continuing."


def test_submit_with_bad_credentials(client, backend):
    from storefront.backend_client import BackendAPIError

    backend.on("/auth/sign-in", BackendAPIError(400, "Invalid login credentials"))
    _load(client)

    resp = client.post(
        "/checkout/submit",
        json={"billing": BILLING, "termsAgreed": True, "isLoginMode": True,
              "account": {"email": "ada@example.com", "password": "wrong"}},
    )

    assert resp.status_code == 400
    assert resp.json()["status"] == "account_error"
    assert backend.count("/payment/generate-token") == 0


def test_hosted_payment_round_trip(client, backend):
    backend.on("/auth/sign-in", {"user": {"id": "user-1", "email": "ada@example.com"}})
    backend.on(
        "/payment/generate-token",
        {"success": True, "token": "tok-abcdefgh", "paymentFormUrl": "https://test.authorize.net/payment/payment"},
    )
    backend.on("/order/create", {"success": True, "order": {"id": "o-1", "orderNumber": "FASHO-1001"}})
    backend.on("/checkout-session/complete", {"success": True})
    backend.on("/loyalty/process-order", {"success": True})
    _load(client)

    started = client.post(
        "/checkout/submit",
        json={"billing": BILLING, "termsAgreed": True, "isLoginMode": True,
              "account": {"email": "ada@example.com", "password": "Secret1"}},
    )
    form = client.get("/checkout/payment-form")
    done = client.post(
        "/checkout/payment-message",
        json={
            "origin": "https://test.authorize.net",
            "data": {"type": "PAYMENT_COMPLETE", "response": {"responseCode": "1", "transId": "60012345"}},
        },
    )
    status = client.get("/checkout/status").json()

    assert started.json()["status"] == "awaiting_completion"
    assert 'value="tok-abcdefgh"' in form.text
    assert 'action="https://test.authorize.net/payment/payment"' in form.text
    assert done.json()["status"] == "completed"
    assert status["redirect"] == "/thank-you?order=FASHO-1001"
    assert backend.body("/order/create")["userId"] == "user-1"


def test_payment_message_without_payment(client):
    resp = client.post("/checkout/payment-message", json={"origin": "https://fasho.co", "data": {}})
    assert resp.json() == {"status": "ignored", "reason": "no_payment"}


def test_payment_form_without_payment(client):
    assert client.get("/checkout/payment-form").status_code == 404
