"""Checkout session lifecycle: create (legacy URLs), validate, recover, complete.

States::

    uninitialized → validating → {valid, recovering, error}
    recovering    → {valid (via redirect to the new id), error}
    valid         → completed (terminal)

The session service owns which tracks/packages are in the cart; prices are
always recomputed locally from the catalog.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any
from urllib.parse import urlencode

from storefront.backend_client import BackendAPIError, BackendClient
from storefront.config import get_settings
from storefront.errors import SessionError
from storefront.store import CHECKOUT_CART, ClientStore
from storefront_core.models import Track

logger = logging.getLogger(__name__)

REASON_ALREADY_USED = "already_used"
REASON_EXPIRED = "expired"
REASON_NOT_FOUND = "session_not_found"
_RECOVERABLE = (REASON_EXPIRED, REASON_NOT_FOUND)

MSG_EXPIRED = "Your checkout session has expired. Redirecting you to start a new checkout..."
MSG_INVALID = "Invalid checkout session. Please start a new checkout."
MSG_LOAD_FAILED = "Failed to load checkout session. Please try again."


class SessionState(str, Enum):
    UNINITIALIZED = "uninitialized"
    VALIDATING = "validating"
    VALID = "valid"
    RECOVERING = "recovering"
    ERROR = "error"
    COMPLETED = "completed"


@dataclass
class SessionData:
    tracks: list[Track]
    selected_packages: dict[str, str]
    user_id: str | None = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "SessionData":
        return cls(
            tracks=[Track.model_validate(t) for t in payload.get("tracks") or []],
            selected_packages={str(k): v for k, v in (payload.get("selectedPackages") or {}).items()},
            user_id=payload.get("userId"),
        )

    def to_cart(self) -> dict[str, Any]:
        return {
            "tracks": [t.to_wire() for t in self.tracks],
            "selectedPackages": self.selected_packages,
        }


@dataclass
class SessionOutcome:
    """What the checkout page should do after loading a session."""

    status: str  # "valid" | "redirect" | "already_completed" | "error"
    session_id: str | None = None
    data: SessionData | None = None
    redirect: str | None = None
    delay_seconds: float = 0.0
    message: str = ""
    replace: bool = False

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "status": self.status,
            "sessionId": self.session_id,
            "redirect": self.redirect,
            "delaySeconds": self.delay_seconds,
            "message": self.message,
            "replace": self.replace,
        }
        if self.data is not None:
            body["cart"] = self.data.to_cart()
        return body


def checkout_url(session_id: str) -> str:
    return f"{get_settings().checkout_path}?{urlencode({'sessionId': session_id})}"


class CheckoutSessionClient:
    """Talks to the checkout-session service for one page load."""

    def __init__(self, backend: BackendClient, store: ClientStore | None = None):
        self.backend = backend
        self.store = store
        self.state = SessionState.UNINITIALIZED
        self.session_id: str | None = None

    # ------------------------------------------------------------------
    # Service calls
    # ------------------------------------------------------------------

    async def create_from_legacy_params(
        self,
        tracks: list[dict],
        selected_packages: dict,
        user_id: str | None = None,
    ) -> str:
        data = await self.backend.post_json(
            "/checkout-session",
            {"tracks": tracks, "selectedPackages": selected_packages, "userId": user_id},
        )
        session_id = data.get("sessionId")
        if not session_id:
            raise SessionError(REASON_NOT_FOUND, MSG_LOAD_FAILED)
        logger.info("Created checkout session %s from legacy params", session_id)
        return session_id

    async def validate(self, session_id: str) -> SessionData:
        """Return the session's cart composition or raise ``SessionError``."""
        self.state = SessionState.VALIDATING
        try:
            data = await self.backend.post_json(
                "/checkout-session/validate", {"sessionId": session_id}
            )
        except BackendAPIError as exc:
            self.state = SessionState.ERROR
            reason = exc.reason or "invalid"
            logger.warning("Session %s failed validation: %s", session_id, reason)
            raise SessionError(reason, MSG_INVALID) from exc

        session_data = data.get("sessionData")
        if not session_data:
            self.state = SessionState.ERROR
            raise SessionError("invalid", MSG_LOAD_FAILED)

        self.session_id = session_id
        self.state = SessionState.VALID
        result = SessionData.from_payload(session_data)
        if self.store is not None:
            await self.store.set_json(CHECKOUT_CART, result.to_cart())
        return result

    async def recover(self, user_id: str | None, expired_session_id: str) -> str:
        self.state = SessionState.RECOVERING
        data = await self.backend.post_json(
            "/checkout-session/recover",
            {"userId": user_id, "expiredSessionId": expired_session_id},
        )
        new_id = data.get("sessionId")
        if not new_id:
            raise SessionError("no_data", MSG_EXPIRED)
        logger.info("Recovered session %s as %s", expired_session_id, new_id)
        return new_id

    async def mark_completed(self, session_id: str) -> None:
        """Best-effort: a completed payment never waits on session bookkeeping."""
        try:
            await self.backend.post_json("/checkout-session/complete", {"sessionId": session_id})
        except BackendAPIError:
            logger.exception("Could not mark session %s completed", session_id)
            return
        self.state = SessionState.COMPLETED

    # ------------------------------------------------------------------
    # Page-load flow
    # ------------------------------------------------------------------

    async def load(
        self,
        session_id: str | None,
        *,
        legacy_tracks: list[dict] | None = None,
        legacy_packages: dict | None = None,
        user_id: str | None = None,
    ) -> SessionOutcome:
        """Resolve what the checkout page should show for *session_id*."""
        settings = get_settings()

        if legacy_tracks and legacy_packages and not session_id:
            try:
                new_id = await self.create_from_legacy_params(legacy_tracks, legacy_packages)
            except (BackendAPIError, SessionError):
                logger.exception("Failed to create session for legacy URL")
            else:
                return SessionOutcome("redirect", new_id, redirect=checkout_url(new_id), replace=True)

        if not session_id:
            logger.error("No session ID provided")
            return SessionOutcome("redirect", redirect=settings.entry_path)

        try:
            data = await self.validate(session_id)
        except SessionError as exc:
            return await self._on_invalid(session_id, exc, user_id)

        return SessionOutcome("valid", session_id, data=data)

    async def _on_invalid(
        self,
        session_id: str,
        exc: SessionError,
        user_id: str | None,
    ) -> SessionOutcome:
        settings = get_settings()

        if exc.reason == REASON_ALREADY_USED:
            return SessionOutcome(
                "already_completed",
                session_id,
                redirect=settings.dashboard_path,
                delay_seconds=settings.already_used_redirect_delay,
                message="This checkout session has already been completed.",
            )

        if exc.reason in _RECOVERABLE:
            try:
                new_id = await self.recover(user_id, session_id)
            except (BackendAPIError, SessionError):
                logger.warning("Session recovery failed for %s", session_id)
            else:
                return SessionOutcome("redirect", new_id, redirect=checkout_url(new_id))

            self.state = SessionState.ERROR
            return SessionOutcome(
                "error",
                session_id,
                redirect=settings.entry_path,
                delay_seconds=settings.expired_redirect_delay,
                message=MSG_EXPIRED,
            )

        return SessionOutcome(
            "error",
            session_id,
            redirect=settings.entry_path,
            delay_seconds=settings.expired_redirect_delay,
            message=exc.message,
        )
