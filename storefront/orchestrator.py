"""Payment orchestration: form → account → token → provider UI → completion.

One ``PaymentOrchestrator`` per browser scope.  The state machine is
provider-agnostic::

    idle → formValidated → tokenRequested → tokenReady → providerUIActive
         → awaitingCompletion → {approved, declined, cancelled, timedOut}

Declined and cancelled payments drop back to ``formValidated`` so the user
can retry.  Completion signals are deduplicated by ``IdempotencyGuard``
before anything reaches the ``OrderFinalizer``.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from storefront.accounts import AccountResolver, AuthUser
from storefront.cart import CheckoutCart
from storefront.config import get_settings
from storefront.errors import (
    FormValidationError,
    PaymentError,
    ProviderLoadTimeout,
    ReconciliationError,
)
from storefront.finalizer import OrderFinalizer
from storefront.payments import PaymentProvider, PaymentToken, TokenRequest, parse_payment_message
from storefront.store import PENDING_ORDER, ClientStore
from storefront_core.models import (
    AccountForm,
    BillingInfo,
    PaymentSignal,
    PendingOrder,
    SignalStatus,
)
from storefront_core.pricing import payment_line_items
from storefront_core.validation import first_missing_field, message_for_field

logger = logging.getLogger(__name__)

MSG_TIMED_OUT = "Payment form timed out. Please reload the page to try again."
MSG_EMPTY_CART = "Your cart is empty. Please add a track before checking out."
MSG_BUSY = "Your payment is already being processed."


# ---------------------------------------------------------------------------
# States
# ---------------------------------------------------------------------------

class PaymentState(str, Enum):
    IDLE = "idle"
    FORM_VALIDATED = "formValidated"
    TOKEN_REQUESTED = "tokenRequested"
    TOKEN_READY = "tokenReady"
    PROVIDER_UI_ACTIVE = "providerUIActive"
    AWAITING_COMPLETION = "awaitingCompletion"
    APPROVED = "approved"
    DECLINED = "declined"
    CANCELLED = "cancelled"
    TIMED_OUT = "timedOut"


_BUSY_STATES = (PaymentState.TOKEN_REQUESTED, PaymentState.TOKEN_READY, PaymentState.PROVIDER_UI_ACTIVE)


# ---------------------------------------------------------------------------
# Idempotency
# ---------------------------------------------------------------------------

class IdempotencyGuard:
    """At most one finalization per transaction id, and one at a time."""

    def __init__(self) -> None:
        self.processed: set[str] = set()
        self.in_flight = False

    def try_acquire(self, transaction_id: str) -> bool:
        if self.in_flight or transaction_id in self.processed:
            return False
        self.processed.add(transaction_id)
        self.in_flight = True
        return True

    def release(self) -> None:
        self.in_flight = False


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------

@dataclass
class CheckoutSubmission:
    account: AccountForm
    billing: BillingInfo
    terms_agreed: bool = False
    is_login_mode: bool = False
    email_status: str | None = None


class PaymentOrchestrator:
    """Runtime payment state for one browser scope."""

    def __init__(
        self,
        scope: str,
        *,
        store: ClientStore,
        accounts: AccountResolver,
        finalizer: OrderFinalizer,
        guard: IdempotencyGuard | None = None,
    ):
        self.scope = scope
        self.store = store
        self.accounts = accounts
        self.finalizer = finalizer
        self.guard = guard or IdempotencyGuard()
        self.state = PaymentState.IDLE
        self.last_outcome: PaymentState | None = None
        self.error_message: str | None = None
        self.error_field: str | None = None
        self.retry: str | None = None
        self.redirect: str | None = None
        self.provider: PaymentProvider | None = None
        self.token: PaymentToken | None = None
        self.watchdog: asyncio.Task | None = None

    def to_status_dict(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "lastOutcome": self.last_outcome.value if self.last_outcome else None,
            "errorMessage": self.error_message,
            "errorField": self.error_field,
            "retry": self.retry,
            "redirect": self.redirect,
            "provider": self.provider.name if self.provider else None,
            "processing": self.guard.in_flight or self.state in _BUSY_STATES,
        }

    def _clear_errors(self) -> None:
        self.error_message = None
        self.error_field = None
        self.retry = None

    # ------------------------------------------------------------------
    # Form
    # ------------------------------------------------------------------

    def validate_form(self, submission: CheckoutSubmission, *, authenticated: bool) -> None:
        field = first_missing_field(
            submission.account,
            submission.billing,
            terms_agreed=submission.terms_agreed,
            authenticated=authenticated,
            is_login_mode=submission.is_login_mode,
            email_status=submission.email_status,
        )
        if field is not None:
            self.state = PaymentState.IDLE
            self.error_field = field
            self.error_message = message_for_field(field)
            raise FormValidationError(field, self.error_message)
        self.state = PaymentState.FORM_VALIDATED

    # ------------------------------------------------------------------
    # Submit
    # ------------------------------------------------------------------

    async def submit(
        self,
        cart: CheckoutCart,
        submission: CheckoutSubmission,
        provider: PaymentProvider,
        current_user: AuthUser | None,
    ) -> dict[str, Any]:
        """Run the checkout up to provider completion (or hand-off for hosted forms)."""
        if self.guard.in_flight or self.state in _BUSY_STATES:
            raise PaymentError(MSG_BUSY)

        self._clear_errors()
        self._stop_watchdog()
        self.validate_form(submission, authenticated=current_user is not None)
        if not cart.order_items:
            self.error_message = MSG_EMPTY_CART
            raise FormValidationError(None, MSG_EMPTY_CART)

        # Account first: a wrong password must stop us before any token exists.
        resolution = await self.accounts.resolve(
            current_user,
            submission.account,
            submission.billing,
            is_login_mode=submission.is_login_mode,
        )
        user = resolution.user
        customer_email = user.email if user and user.email else submission.account.email

        totals = cart.totals()
        request = TokenRequest(
            amount=totals.total,
            billing=submission.billing,
            line_items=payment_line_items(cart.order_items, cart.add_on_items),
            customer_email=customer_email,
        )

        self.provider = provider
        self.state = PaymentState.TOKEN_REQUESTED
        try:
            token = await provider.request_token(request)
        except ProviderLoadTimeout as exc:
            self.state = PaymentState.TIMED_OUT
            self.last_outcome = PaymentState.TIMED_OUT
            self.error_message = exc.message
            self.retry = "reload"
            raise
        except PaymentError as exc:
            self.state = PaymentState.FORM_VALIDATED
            self.error_message = exc.message
            raise
        self.token = token

        pending = PendingOrder(
            checkout_session_id=cart.session_id or "",
            items=cart.order_items,
            add_on_items=cart.add_on_items,
            totals=totals,
            billing_info=submission.billing,
            customer_email=customer_email,
            coupon=cart.coupon,
            loyalty=cart.redemption,
            user_id=resolution.user_id,
            new_account_created=resolution.new_account,
            provider=provider.name,
            payment_token=token.token,
            created_at=datetime.now(timezone.utc).isoformat(),
        )
        await self.store.set_json(PENDING_ORDER, pending.to_wire())
        self.state = PaymentState.TOKEN_READY
        logger.info("Pending order saved for scope %s (total %.2f)", self.scope, totals.total)

        ui = provider.activate_ui(token)
        self.state = PaymentState.PROVIDER_UI_ACTIVE
        self.state = PaymentState.AWAITING_COMPLETION

        if provider.completes_inline:
            signal = await provider.await_completion(token)
            return await self.handle_signal(signal)

        self._start_watchdog(provider, token)
        return {"status": "awaiting_completion", "providerUi": ui, **self.to_status_dict()}

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------

    async def handle_message(self, origin: str, data: Any) -> dict[str, Any]:
        """Entry point for cross-window messages relayed by the checkout page."""
        parsed = parse_payment_message(origin, data, get_settings().trusted_origins)
        if parsed.signal is None:
            return {"status": "ignored", "reason": parsed.kind}
        deliver = getattr(self.provider, "deliver", None)
        if deliver is not None:
            deliver(parsed.signal)
        return await self.handle_signal(parsed.signal)

    async def handle_signal(self, signal: PaymentSignal) -> dict[str, Any]:
        self._stop_watchdog()

        if signal.status != SignalStatus.APPROVED:
            outcome = PaymentState.DECLINED if signal.status == SignalStatus.DECLINED else PaymentState.CANCELLED
            logger.info("Payment %s for scope %s: %s", outcome.value, self.scope, signal.reason_text)
            self.last_outcome = outcome
            self.state = PaymentState.FORM_VALIDATED
            self.error_message = signal.reason_text
            return {"status": outcome.value, "message": signal.reason_text, **self.to_status_dict()}

        transaction_id = signal.transaction_id
        if not self.guard.try_acquire(transaction_id):
            logger.info("Ignoring duplicate completion for transaction %s", transaction_id)
            return {"status": "duplicate", **self.to_status_dict()}

        self.state = PaymentState.APPROVED
        self.last_outcome = PaymentState.APPROVED
        try:
            result = await self.finalizer.finalize(signal, self.store)
        except ReconciliationError as exc:
            self.error_message = exc.message
            self.redirect = self.finalizer.error_redirect(transaction_id)
            return {
                "status": "reconciliation_error",
                "message": exc.message,
                "transactionId": transaction_id,
                **self.to_status_dict(),
            }
        finally:
            self.guard.release()

        self.redirect = result.redirect
        return {"status": "completed", "order": result.order.to_wire(), **self.to_status_dict()}

    # ------------------------------------------------------------------
    # Watchdog
    # ------------------------------------------------------------------

    def _start_watchdog(self, provider: PaymentProvider, token: PaymentToken) -> None:
        self.watchdog = asyncio.create_task(self._watch(provider, token))

    async def _watch(self, provider: PaymentProvider, token: PaymentToken) -> None:
        try:
            await provider.await_completion(token)
        except asyncio.TimeoutError:
            if self.state == PaymentState.AWAITING_COMPLETION:
                logger.warning("No payment completion for scope %s, timing out", self.scope)
                self.state = PaymentState.TIMED_OUT
                self.last_outcome = PaymentState.TIMED_OUT
                self.error_message = MSG_TIMED_OUT
                self.retry = "reload"
        except asyncio.CancelledError:
            logger.debug("Payment watchdog cancelled for scope %s", self.scope)

    def _stop_watchdog(self) -> None:
        task = self.watchdog
        self.watchdog = None
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def teardown(self) -> None:
        """Stop background work; called when the page goes away or on shutdown."""
        task = self.watchdog
        self._stop_watchdog()
        if task is not None:
            try:
                await task
            except asyncio.CancelledError:
                pass
        if self.provider is not None:
            self.provider.cancel()


# Key: browser scope → PaymentOrchestrator
_orchestrators: dict[str, PaymentOrchestrator] = {}


def get_orchestrator(scope: str) -> PaymentOrchestrator | None:
    return _orchestrators.get(scope)


def register_orchestrator(orchestrator: PaymentOrchestrator) -> PaymentOrchestrator:
    _orchestrators[orchestrator.scope] = orchestrator
    return orchestrator


async def shutdown_orchestrators() -> None:
    for orchestrator in list(_orchestrators.values()):
        await orchestrator.teardown()
    _orchestrators.clear()
