"""Account resolution during checkout: reuse session, sign in, or sign up.

Decision table (unauthenticated visitors only; a signed-in user skips it):

  login mode   → sign in; failure halts with a generic credentials error
  signup mode  → email exists?  sign in with the submitted password, failure
                 halts with "use the correct password";
                 otherwise sign up, then best-effort profile sync and
                 auto-confirm (checkout continues whatever they return)

A wrong password for an existing email always raises ``AccountError``
before any payment token is requested.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from storefront.backend_client import BackendAPIError, BackendClient
from storefront.cache import TTLCache
from storefront.config import get_settings
from storefront_core.models import AccountForm, BillingInfo
from storefront_core.validation import is_valid_email
from storefront.errors import AccountError

logger = logging.getLogger(__name__)

MSG_BAD_CREDENTIALS = "Invalid email or password. Please check your credentials and try again."
MSG_EXISTS_WRONG_PASSWORD = (
    "An account with this email already exists. "
    "Please use the correct password or sign in first."
)


@dataclass(frozen=True)
class AuthUser:
    id: str
    email: str


@dataclass(frozen=True)
class AccountResolution:
    user: AuthUser | None
    action: str  # "existing_session" | "signed_in" | "signed_up" | "guest"

    @property
    def user_id(self) -> str | None:
        return self.user.id if self.user else None

    @property
    def new_account(self) -> bool:
        return self.action == "signed_up"


def _user_from(data: dict) -> AuthUser | None:
    user = data.get("user") or {}
    if not user.get("id"):
        return None
    return AuthUser(id=str(user["id"]), email=user.get("email", ""))


class AccountResolver:
    def __init__(self, backend: BackendClient, profile_cache: TTLCache | None = None):
        self.backend = backend
        self.profile_cache = profile_cache or TTLCache(get_settings().profile_cache_ttl)
        self.last_resolution: AccountResolution | None = None

    # ------------------------------------------------------------------
    # Email status
    # ------------------------------------------------------------------

    async def email_exists(self, email: str) -> bool:
        data = await self.backend.post_json("/account/check-exists", {"email": email})
        return bool(data.get("exists"))

    async def email_status(self, email: str) -> str | None:
        """``available | exists | invalid | error`` (``None`` for blank input)."""
        if not email or "@" not in email:
            return None
        if not is_valid_email(email):
            return "invalid"
        try:
            return "exists" if await self.email_exists(email) else "available"
        except BackendAPIError:
            logger.warning("Email existence check failed")
            return "error"

    # ------------------------------------------------------------------
    # Auth provider calls
    # ------------------------------------------------------------------

    async def sign_in(self, email: str, password: str) -> AuthUser | None:
        try:
            data = await self.backend.post_json(
                "/auth/sign-in", {"email": email, "password": password}, retry=False
            )
        except BackendAPIError as exc:
            logger.info("Sign-in rejected (%s)", exc.status_code)
            return None
        return _user_from(data)

    async def sign_up(self, email: str, password: str, full_name: str) -> AuthUser | None:
        data = await self.backend.post_json(
            "/auth/sign-up",
            {"email": email, "password": password, "data": {"full_name": full_name}},
            retry=False,
        )
        return _user_from(data)

    # ------------------------------------------------------------------
    # Decision table
    # ------------------------------------------------------------------

    async def resolve(
        self,
        current_user: AuthUser | None,
        account: AccountForm,
        billing: BillingInfo,
        *,
        is_login_mode: bool,
    ) -> AccountResolution:
        if current_user is not None:
            resolution = AccountResolution(current_user, "existing_session")
        elif is_login_mode:
            user = await self.sign_in(account.email, account.password)
            if user is None:
                raise AccountError(MSG_BAD_CREDENTIALS)
            resolution = AccountResolution(user, "signed_in")
        else:
            resolution = await self._signup_or_sign_in(account, billing)

        self.last_resolution = resolution
        logger.info("Account resolved: %s", resolution.action)
        return resolution

    async def _signup_or_sign_in(self, account: AccountForm, billing: BillingInfo) -> AccountResolution:
        try:
            exists = await self.email_exists(account.email)
        except BackendAPIError:
            logger.warning("Existence check failed, attempting sign-up")
            exists = False

        if exists:
            user = await self.sign_in(account.email, account.password)
            if user is None:
                raise AccountError(MSG_EXISTS_WRONG_PASSWORD)
            return AccountResolution(user, "signed_in")

        try:
            user = await self.sign_up(account.email, account.password, billing.full_name)
        except BackendAPIError:
            logger.exception("Sign-up failed, continuing checkout as guest")
            return AccountResolution(None, "guest")
        if user is None:
            return AccountResolution(None, "guest")

        await self._sync_profile(user, billing)
        await self._auto_confirm(user.email or account.email)
        return AccountResolution(user, "signed_up")

    async def _sync_profile(self, user: AuthUser, billing: BillingInfo) -> None:
        try:
            await self.backend.post_json(
                "/account/sync-profile",
                {
                    "user_id": user.id,
                    "email": user.email,
                    "first_name": billing.first_name,
                    "last_name": billing.last_name,
                    "full_name": billing.full_name,
                    "billing_address_line1": billing.address,
                    "billing_address_line2": billing.address2,
                    "billing_city": billing.city,
                    "billing_state": billing.state,
                    "billing_zip": billing.zip,
                    "billing_country": billing.country,
                    "billing_phone": billing.phone_number,
                    "music_genre": billing.music_genre,
                    "source": "checkout",
                },
            )
        except BackendAPIError:
            logger.exception("Profile sync failed for %s", user.id)

    async def _auto_confirm(self, email: str) -> None:
        try:
            await self.backend.post_json("/account/auto-confirm", {"email": email})
        except BackendAPIError:
            logger.exception("Auto-confirm failed")

    # ------------------------------------------------------------------
    # Profile autofill
    # ------------------------------------------------------------------

    async def fetch_profile(self, user_id: str) -> dict:
        cached = self.profile_cache.get(user_id)
        if cached is not None:
            return cached
        try:
            data = await self.backend.get_json("/account/profile", params={"userId": user_id})
        except BackendAPIError:
            logger.warning("Profile fetch failed for %s", user_id)
            return {}
        profile = data.get("profile") or {}
        self.profile_cache.set(user_id, profile)
        return profile

    @staticmethod
    def autofill(billing: BillingInfo, profile: dict) -> BillingInfo:
        """Fill empty billing fields from a saved profile; typed values win."""
        mapping = {
            "first_name": "first_name",
            "last_name": "last_name",
            "address": "billing_address_line1",
            "address2": "billing_address_line2",
            "city": "billing_city",
            "state": "billing_state",
            "zip": "billing_zip",
            "country": "billing_country",
            "phone_number": "billing_phone",
            "music_genre": "music_genre",
        }
        updates = {
            field: profile[key]
            for field, key in mapping.items()
            if profile.get(key) and not getattr(billing, field)
        }
        return billing.model_copy(update=updates)
