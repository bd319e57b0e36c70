"""Checkout REST API used by the storefront pages.

The browser is identified by a random scope id kept in the signed session
cookie; the signed-in account (if any) lives there too.
"""

from __future__ import annotations

import logging
import secrets
from pathlib import Path
from typing import Any, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import HTMLResponse, JSONResponse
from fastapi.templating import Jinja2Templates

from storefront.accounts import AccountResolver, AuthUser
from storefront.backend_client import BackendClient
from storefront.cache import TTLCache
from storefront.cart import CheckoutCart, drop_cart, get_cart
from storefront.config import get_settings
from storefront.errors import (
    AccountError,
    CouponError,
    FormValidationError,
    PaymentError,
    ProviderLoadTimeout,
)
from storefront.fencing import Debouncer
from storefront.finalizer import OrderFinalizer
from storefront.loyalty import LoyaltyTokenClient
from storefront.orchestrator import (
    CheckoutSubmission,
    PaymentOrchestrator,
    get_orchestrator,
    register_orchestrator,
)
from storefront.payments import CARD, HOSTED, BrowserTokenSDK, CardElementProvider, HostedFormProvider
from storefront.sessions import CheckoutSessionClient
from storefront.store import ClientStore
from storefront_core.models import AccountForm, BillingInfo, CamelModel
from storefront_core.validation import password_requirements

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/checkout", tags=["checkout"])
templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))

# Key: browser scope → Debouncer for the email-existence check
_email_debouncers: dict[str, Debouncer] = {}


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

def get_backend(request: Request) -> BackendClient:
    return request.app.state.backend


def get_loyalty(request: Request) -> LoyaltyTokenClient:
    return request.app.state.loyalty


def get_profile_cache(request: Request) -> TTLCache:
    return request.app.state.profile_cache


def _get_scope(request: Request) -> str:
    scope = request.session.get("scope")
    if not scope:
        scope = secrets.token_urlsafe(16)
        request.session["scope"] = scope
    return scope


def _get_current_user(request: Request) -> AuthUser | None:
    uid = request.session.get("user_id")
    if not uid:
        return None
    return AuthUser(id=uid, email=request.session.get("user_email", ""))


def _require_cart(scope: str) -> CheckoutCart:
    cart = get_cart(scope)
    if cart.session_id is None:
        raise HTTPException(status_code=409, detail="No checkout session loaded")
    return cart


def _orchestrator_for(
    scope: str,
    backend: BackendClient,
    loyalty: LoyaltyTokenClient,
    profile_cache: TTLCache,
) -> PaymentOrchestrator:
    existing = get_orchestrator(scope)
    if existing is not None:
        return existing
    store = ClientStore(scope)
    accounts = AccountResolver(backend, profile_cache)
    finalizer = OrderFinalizer(
        backend,
        sessions=CheckoutSessionClient(backend, store),
        loyalty=loyalty,
        accounts=accounts,
    )
    return register_orchestrator(
        PaymentOrchestrator(scope, store=store, accounts=accounts, finalizer=finalizer)
    )


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------

class LoadRequest(CamelModel):
    session_id: Optional[str] = None
    tracks: Optional[list[dict]] = None
    selected_packages: Optional[dict[str, str]] = None


class CouponRequest(CamelModel):
    code: str = ""


class LoyaltyRequest(CamelModel):
    tokens: int


class EmailStatusRequest(CamelModel):
    email: str = ""


class PasswordRequest(CamelModel):
    password: str = ""


class SubmitRequest(CamelModel):
    account: AccountForm = AccountForm()
    billing: BillingInfo = BillingInfo()
    terms_agreed: bool = False
    is_login_mode: bool = False
    email_status: Optional[str] = None
    provider: Literal["hosted", "card"] = HOSTED
    card_token: Optional[str] = None


class PaymentMessage(CamelModel):
    origin: str
    data: Any = None


# ---------------------------------------------------------------------------
# Session / cart
# ---------------------------------------------------------------------------

@router.post("/load")
async def load_checkout(
    request: Request,
    body: LoadRequest,
    backend: BackendClient = Depends(get_backend),
    loyalty: LoyaltyTokenClient = Depends(get_loyalty),
    profile_cache: TTLCache = Depends(get_profile_cache),
):
    """Validate (or recover) the checkout session and return the priced cart."""
    scope = _get_scope(request)
    store = ClientStore(scope)
    user = _get_current_user(request)

    outcome = await CheckoutSessionClient(backend, store).load(
        body.session_id,
        legacy_tracks=body.tracks,
        legacy_packages=body.selected_packages,
        user_id=user.id if user else None,
    )
    if outcome.status != "valid":
        return JSONResponse(outcome.to_dict())

    cart = get_cart(scope)
    cart.authenticated = user is not None
    await cart.load_session(outcome.session_id, outcome.data, store)
    await cart.refresh_loyalty(loyalty)

    response: dict[str, Any] = {**outcome.to_dict(), "cart": cart.to_dict()}
    if user is not None:
        accounts = AccountResolver(backend, profile_cache)
        profile = await accounts.fetch_profile(user.id)
        response["billing"] = AccountResolver.autofill(BillingInfo(), profile).to_wire()
        response["user"] = {"id": user.id, "email": user.email}
    return JSONResponse(response)


@router.post("/add-ons/{add_on_id}/toggle")
async def toggle_add_on(
    request: Request,
    add_on_id: str,
    loyalty: LoyaltyTokenClient = Depends(get_loyalty),
):
    scope = _get_scope(request)
    cart = _require_cart(scope)
    try:
        await cart.toggle_add_on(add_on_id, ClientStore(scope))
    except KeyError:
        raise HTTPException(status_code=404, detail="Unknown add-on")
    await cart.refresh_loyalty(loyalty)
    return JSONResponse(cart.to_dict())


@router.delete("/add-ons/{add_on_id}")
async def remove_add_on(
    request: Request,
    add_on_id: str,
    loyalty: LoyaltyTokenClient = Depends(get_loyalty),
):
    scope = _get_scope(request)
    cart = _require_cart(scope)
    await cart.remove_add_on(add_on_id, ClientStore(scope))
    await cart.refresh_loyalty(loyalty)
    return JSONResponse(cart.to_dict())


@router.post("/change-song/{index}")
async def change_song(request: Request, index: int):
    """Drop one track and send the user back to pick a replacement."""
    scope = _get_scope(request)
    cart = _require_cart(scope)
    try:
        await cart.change_song(index, ClientStore(scope))
    except IndexError:
        raise HTTPException(status_code=404, detail="No track at that position")
    return JSONResponse({"redirect": get_settings().entry_path, "cart": cart.to_dict()})


# ---------------------------------------------------------------------------
# Coupon / loyalty
# ---------------------------------------------------------------------------

@router.post("/coupon")
async def apply_coupon(
    request: Request,
    body: CouponRequest,
    backend: BackendClient = Depends(get_backend),
    loyalty: LoyaltyTokenClient = Depends(get_loyalty),
):
    cart = _require_cart(_get_scope(request))
    try:
        await cart.apply_coupon(backend, body.code)
    except CouponError as exc:
        raise HTTPException(status_code=400, detail=exc.message)
    await cart.refresh_loyalty(loyalty)
    return JSONResponse(cart.to_dict())


@router.delete("/coupon")
async def remove_coupon(request: Request, loyalty: LoyaltyTokenClient = Depends(get_loyalty)):
    cart = _require_cart(_get_scope(request))
    cart.remove_coupon()
    await cart.refresh_loyalty(loyalty)
    return JSONResponse(cart.to_dict())


@router.post("/loyalty")
async def apply_loyalty(request: Request, body: LoyaltyRequest):
    """Apply tokens; anything above the redeemable maximum is clamped."""
    cart = _require_cart(_get_scope(request))
    cart.apply_tokens(body.tokens)
    return JSONResponse(cart.to_dict())


# ---------------------------------------------------------------------------
# Account helpers
# ---------------------------------------------------------------------------

@router.post("/email-status")
async def email_status(
    request: Request,
    body: EmailStatusRequest,
    backend: BackendClient = Depends(get_backend),
    profile_cache: TTLCache = Depends(get_profile_cache),
):
    """Debounced existence check; a newer call for the same browser wins."""
    scope = _get_scope(request)
    debouncer = _email_debouncers.get(scope)
    if debouncer is None:
        debouncer = _email_debouncers[scope] = Debouncer(get_settings().email_check_debounce)
    resolver = AccountResolver(backend, profile_cache)
    status = await debouncer.call(resolver.email_status, body.email.strip())
    return JSONResponse({"email": body.email, "status": status})


@router.post("/password-requirements")
async def check_password(body: PasswordRequest):
    return JSONResponse(password_requirements(body.password))


# ---------------------------------------------------------------------------
# Payment
# ---------------------------------------------------------------------------

def _build_provider(body: SubmitRequest, backend: BackendClient):
    if body.provider == CARD:
        return CardElementProvider(backend, BrowserTokenSDK(body.card_token))
    return HostedFormProvider(backend)


@router.post("/submit")
async def submit(
    request: Request,
    body: SubmitRequest,
    backend: BackendClient = Depends(get_backend),
    loyalty: LoyaltyTokenClient = Depends(get_loyalty),
    profile_cache: TTLCache = Depends(get_profile_cache),
):
    """Validate the form, resolve the account, and start the payment."""
    scope = _get_scope(request)
    cart = _require_cart(scope)
    orchestrator = _orchestrator_for(scope, backend, loyalty, profile_cache)
    submission = CheckoutSubmission(
        account=body.account,
        billing=body.billing,
        terms_agreed=body.terms_agreed,
        is_login_mode=body.is_login_mode,
        email_status=body.email_status,
    )

    try:
        result = await orchestrator.submit(
            cart, submission, _build_provider(body, backend), _get_current_user(request)
        )
    except FormValidationError as exc:
        return JSONResponse(
            {"status": "invalid", "field": exc.field, "message": exc.message}, status_code=422
        )
    except AccountError as exc:
        return JSONResponse({"status": "account_error", "message": exc.message}, status_code=400)
    except ProviderLoadTimeout as exc:
        return JSONResponse(
            {"status": "timed_out", "message": exc.message, "retry": "reload"}, status_code=503
        )
    except PaymentError as exc:
        return JSONResponse({"status": "payment_error", "message": exc.message}, status_code=402)

    resolution = orchestrator.accounts.last_resolution
    if resolution is not None and resolution.user is not None:
        request.session["user_id"] = resolution.user.id
        request.session["user_email"] = resolution.user.email
    if result.get("status") == "completed":
        drop_cart(scope)
    return JSONResponse(result)


@router.get("/payment-form", response_class=HTMLResponse)
async def payment_form(request: Request):
    """Hidden form that posts the payment token into the provider's iframe."""
    orchestrator = get_orchestrator(_get_scope(request))
    token = orchestrator.token if orchestrator else None
    if token is None or not token.form_url:
        raise HTTPException(status_code=404, detail="No payment in progress")
    return templates.TemplateResponse(
        request,
        "payment_form.html",
        {"form_action": token.form_url, "token": token.token, "target": "paymentIframe"},
    )


@router.post("/payment-message")
async def payment_message(request: Request, body: PaymentMessage):
    """Receive a cross-window message relayed by the checkout page."""
    scope = _get_scope(request)
    orchestrator = get_orchestrator(scope)
    if orchestrator is None:
        logger.info("Payment message with no payment in progress for scope %s", scope)
        return JSONResponse({"status": "ignored", "reason": "no_payment"})
    result = await orchestrator.handle_message(body.origin, body.data)
    if result.get("status") == "completed":
        drop_cart(scope)
    return JSONResponse(result)


@router.get("/status")
async def status(request: Request):
    orchestrator = get_orchestrator(_get_scope(request))
    if orchestrator is None:
        return JSONResponse({"state": "idle", "processing": False})
    return JSONResponse(orchestrator.to_status_dict())
