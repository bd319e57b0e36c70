"""Order finalization after an approved payment.

Order creation must succeed before the session is marked completed and
loyalty tokens are settled (both need the new order id).  Those two steps
are best-effort; a failed order creation is a reconciliation failure that
names the provider's transaction id.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol
from urllib.parse import urlencode

from storefront.accounts import AccountResolver
from storefront.backend_client import BackendAPIError, BackendClient
from storefront.config import get_settings
from storefront.errors import ReconciliationError
from storefront.loyalty import LoyaltyTokenClient
from storefront.sessions import CheckoutSessionClient
from storefront.store import COMPLETED_ORDER, PENDING_ORDER, SELECTED_ADD_ONS, ClientStore
from storefront_core.models import CompletedOrder, PaymentData, PaymentSignal, PendingOrder

logger = logging.getLogger(__name__)


class Navigator(Protocol):
    def push(self, url: str) -> None: ...

    def hard_redirect(self, url: str) -> None: ...


class ResponseNavigator:
    """Records where the page should go; the route returns it to the browser."""

    def __init__(self) -> None:
        self.location: str | None = None
        self.hard = False

    def push(self, url: str) -> None:
        self.location = url

    def hard_redirect(self, url: str) -> None:
        self.location = url
        self.hard = True


@dataclass
class FinalizationResult:
    order: CompletedOrder
    redirect: str


def order_payload(pending: PendingOrder, payment: PaymentData, user_id: str | None) -> dict:
    """Body for ``POST /order/create``."""
    totals = pending.totals
    return {
        "items": [i.to_wire() for i in pending.items],
        "addOnItems": [a.to_wire() for a in pending.add_on_items],
        "subtotal": totals.subtotal,
        "discount": totals.discount,
        "couponDiscount": totals.coupon_discount,
        "fashokensDiscount": totals.loyalty_discount,
        "fashokensSpent": pending.loyalty.applied_tokens,
        "total": totals.total,
        "customerEmail": pending.customer_email,
        "customerName": pending.billing_info.full_name,
        "billingInfo": pending.billing_info.to_wire(),
        "paymentData": payment.to_wire(),
        "coupon": pending.coupon.model_dump() if pending.coupon else None,
        "userId": user_id,
        "checkoutSessionId": pending.checkout_session_id or None,
    }


class OrderFinalizer:
    def __init__(
        self,
        backend: BackendClient,
        *,
        sessions: CheckoutSessionClient,
        loyalty: LoyaltyTokenClient,
        accounts: AccountResolver | None = None,
        navigator: Navigator | None = None,
    ):
        self.backend = backend
        self.sessions = sessions
        self.loyalty = loyalty
        self.accounts = accounts
        self.navigator = navigator or ResponseNavigator()

    def error_redirect(self, transaction_id: str) -> str:
        query = urlencode({"error": "order_failed", "transactionId": transaction_id})
        return f"{get_settings().confirmation_path}?{query}"

    def _navigate(self, url: str) -> None:
        try:
            self.navigator.push(url)
        except Exception:
            logger.exception("Navigation to %s failed, forcing location change", url)
            self.navigator.hard_redirect(url)

    async def _load_pending(self, store: ClientStore) -> PendingOrder | None:
        raw = await store.get_json(PENDING_ORDER)
        if not raw:
            return None
        return PendingOrder.model_validate(raw)

    def _resolve_user_id(self, pending: PendingOrder) -> str | None:
        if pending.user_id:
            return pending.user_id
        resolution = self.accounts.last_resolution if self.accounts else None
        return resolution.user_id if resolution else None

    def _fail(self, transaction_id: str) -> ReconciliationError:
        logger.error("Order not recorded for paid transaction %s", transaction_id)
        self._navigate(self.error_redirect(transaction_id))
        return ReconciliationError(transaction_id)

    async def finalize(self, signal: PaymentSignal, store: ClientStore) -> FinalizationResult:
        """Record the order for an approved *signal*; raises ``ReconciliationError``."""
        transaction_id = signal.transaction_id
        pending = await self._load_pending(store)
        if pending is None:
            raise self._fail(transaction_id)

        user_id = self._resolve_user_id(pending)
        payment = PaymentData(
            transaction_id=transaction_id,
            authorization=signal.authorization,
            account_number=signal.account_number,
            account_type=signal.account_type,
        )

        try:
            data = await self.backend.post_json(
                "/order/create", order_payload(pending, payment, user_id), retry=False
            )
        except BackendAPIError as exc:
            logger.error("Order creation failed: %s", exc)
            raise self._fail(transaction_id) from exc
        order = data.get("order") or {}
        if not data.get("success") or not order.get("orderNumber"):
            raise self._fail(transaction_id)

        order_number = str(order["orderNumber"])
        order_id = str(order.get("id") or "")
        logger.info("Order %s created for transaction %s", order_number, transaction_id)

        if pending.checkout_session_id:
            await self.sessions.mark_completed(pending.checkout_session_id)

        settlement = await self.loyalty.settle(
            user_id=user_id,
            order_id=order_id,
            order_number=order_number,
            order_total=pending.totals.total,
            coupon_discount=pending.totals.coupon_discount,
            tokens_spent=pending.loyalty.applied_tokens,
            tokens_discount=pending.totals.loyalty_discount,
        )

        coupon = pending.coupon
        completed = CompletedOrder(
            order_id=order_id,
            order_number=order_number,
            created_at=str(order.get("createdAt") or ""),
            items=pending.items,
            add_on_items=pending.add_on_items,
            totals=pending.totals,
            customer_email=pending.customer_email,
            customer_name=pending.billing_info.full_name,
            new_account_created=pending.new_account_created,
            payment_data=payment,
            coupon_id=coupon.id if coupon else None,
            coupon_code=coupon.code if coupon else None,
            coupon_discount=coupon.calculated_discount if coupon else None,
            fashokens_spent=settlement.fashokens_spent if settlement else 0,
            fashokens_earned=settlement.fashokens_earned if settlement else 0,
        )
        await store.set_json(COMPLETED_ORDER, completed.to_wire())
        await store.remove(PENDING_ORDER, SELECTED_ADD_ONS)

        redirect = f"{get_settings().confirmation_path}?{urlencode({'order': order_number})}"
        self._navigate(redirect)
        return FinalizationResult(order=completed, redirect=redirect)
