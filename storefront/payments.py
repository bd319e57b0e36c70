"""Payment providers behind one interface, plus cross-window message parsing.

Two adapters:

* ``HostedFormProvider``: a short-lived token from ``/payment/generate-token``
  is posted by a hidden form into the provider's iframe; the result comes
  back later as a cross-window message (see ``parse_payment_message``).
* ``CardElementProvider``: an embedded card element is tokenized on submit
  and charged through ``/payment/square-payment``; completes inline.

Both implement ``request_token → activate_ui → await_completion`` and
``cancel`` so the orchestrator never branches on the provider.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

from storefront.backend_client import BackendAPIError, BackendClient
from storefront.config import get_settings
from storefront.errors import PaymentError, ProviderLoadTimeout
from storefront_core.models import BillingInfo, PaymentSignal, SignalStatus

logger = logging.getLogger(__name__)

HOSTED = "hosted"
CARD = "card"

MSG_TOKEN_FAILED = "Failed to initialize payment. Please try again."
MSG_DECLINED = "Payment was declined. Please try again."
MSG_CANCELLED = "Payment was cancelled."
MSG_CARD_INVALID = "Please check your card details and try again."
MSG_CHARGE_FAILED = "Payment failed. Please try again."

# Message types posted by the hosted form's communicator page.
PAYMENT_COMPLETE = "PAYMENT_COMPLETE"
PAYMENT_CANCELLED = "PAYMENT_CANCELLED"
PAYMENT_SUCCESS = "PAYMENT_SUCCESS"
RESIZE_IFRAME = "RESIZE_IFRAME"
_INFORMATIONAL = (PAYMENT_SUCCESS, RESIZE_IFRAME)

APPROVED_RESPONSE_CODE = "1"


# ---------------------------------------------------------------------------
# Provider interface
# ---------------------------------------------------------------------------

@dataclass
class TokenRequest:
    """Amount, billing details and itemized cart for a token request."""

    amount: float
    billing: BillingInfo
    line_items: list[dict]
    customer_email: str


@dataclass
class PaymentToken:
    token: str
    form_url: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)


class PaymentProvider(Protocol):
    name: str
    completes_inline: bool

    async def request_token(self, request: TokenRequest) -> PaymentToken: ...

    def activate_ui(self, token: PaymentToken) -> dict[str, Any]: ...

    async def await_completion(self, token: PaymentToken) -> PaymentSignal: ...

    def cancel(self) -> None: ...


# ---------------------------------------------------------------------------
# Hosted iframe form
# ---------------------------------------------------------------------------

class HostedFormProvider:
    """Token → hidden auto-submit form → iframe → cross-window message."""

    name = HOSTED
    completes_inline = False

    def __init__(self, backend: BackendClient, timeout: float | None = None):
        self.backend = backend
        self.timeout = timeout if timeout is not None else get_settings().payment_timeout_seconds
        self._completion: asyncio.Future | None = None

    async def request_token(self, request: TokenRequest) -> PaymentToken:
        try:
            data = await self.backend.post_json(
                "/payment/generate-token",
                {
                    "amount": request.amount,
                    "orderItems": request.line_items,
                    "customerEmail": request.customer_email,
                    "billingInfo": request.billing.to_wire(),
                },
                retry=False,
            )
        except BackendAPIError as exc:
            logger.error("Payment token request failed: %s", exc)
            raise PaymentError(MSG_TOKEN_FAILED) from exc

        token = data.get("token")
        if not data.get("success", True) or not token:
            raise PaymentError(data.get("message") or MSG_TOKEN_FAILED)
        logger.info("Payment token issued (%s…)", token[:8])
        return PaymentToken(token=token, form_url=data.get("paymentFormUrl"))

    def activate_ui(self, token: PaymentToken) -> dict[str, Any]:
        """Describe the hidden form that posts *token* into the payment iframe."""
        self._completion = asyncio.get_running_loop().create_future()
        return {
            "provider": self.name,
            "formAction": token.form_url,
            "token": token.token,
            "target": "paymentIframe",
            "formUrl": "/checkout/payment-form",
        }

    def deliver(self, signal: PaymentSignal) -> None:
        if self._completion is not None and not self._completion.done():
            self._completion.set_result(signal)

    async def await_completion(self, token: PaymentToken) -> PaymentSignal:
        """Wait for a delivered signal; raises ``asyncio.TimeoutError``."""
        if self._completion is None:
            self.activate_ui(token)
        return await asyncio.wait_for(asyncio.shield(self._completion), self.timeout)

    def cancel(self) -> None:
        if self._completion is not None and not self._completion.done():
            self._completion.cancel()
        self._completion = None


# ---------------------------------------------------------------------------
# Embedded card element
# ---------------------------------------------------------------------------

class CardElement(Protocol):
    async def tokenize(self) -> dict[str, Any]: ...


class CardSDK(Protocol):
    def is_loaded(self) -> bool: ...

    async def card(self) -> CardElement: ...


class BrowserTokenSDK:
    """SDK stand-in for a card already tokenized in the browser.

    The storefront page runs the provider's web SDK; it submits the
    resulting nonce, which this adapter hands back from ``tokenize``.
    """

    def __init__(self, card_token: str | None):
        self.card_token = card_token

    def is_loaded(self) -> bool:
        return bool(self.card_token)

    async def card(self) -> "BrowserTokenSDK":
        return self

    async def tokenize(self) -> dict[str, Any]:
        if not self.card_token:
            return {"status": "Invalid", "errors": [{"message": MSG_CARD_INVALID}]}
        return {"status": "OK", "token": self.card_token}


class CardElementProvider:
    """Attach a card element, tokenize on submit, charge, complete inline."""

    name = CARD
    completes_inline = True

    def __init__(
        self,
        backend: BackendClient,
        sdk: CardSDK,
        *,
        poll_interval: float | None = None,
        poll_attempts: int | None = None,
    ):
        settings = get_settings()
        self.backend = backend
        self.sdk = sdk
        self.poll_interval = poll_interval if poll_interval is not None else settings.sdk_poll_interval
        self.poll_attempts = poll_attempts if poll_attempts is not None else settings.sdk_poll_attempts
        self._card: CardElement | None = None
        self._request: TokenRequest | None = None

    async def _attach_card(self) -> CardElement:
        for attempt in range(self.poll_attempts):
            if self.sdk.is_loaded():
                return await self.sdk.card()
            logger.debug("Card SDK not ready (poll %d)", attempt + 1)
            await asyncio.sleep(self.poll_interval)
        logger.error("Card SDK unavailable after %d polls", self.poll_attempts)
        raise ProviderLoadTimeout()

    async def request_token(self, request: TokenRequest) -> PaymentToken:
        self._request = request
        if self._card is None:
            self._card = await self._attach_card()
        result = await self._card.tokenize()
        if result.get("status") != "OK" or not result.get("token"):
            errors = result.get("errors") or []
            message = (errors[0].get("message") if errors else None) or MSG_CARD_INVALID
            raise PaymentError(message)
        return PaymentToken(token=result["token"])

    def activate_ui(self, token: PaymentToken) -> dict[str, Any]:
        return {"provider": self.name, "cardAttached": self._card is not None}

    async def await_completion(self, token: PaymentToken) -> PaymentSignal:
        request = self._request
        if request is None:
            raise PaymentError(MSG_CHARGE_FAILED)
        billing = request.billing.to_wire()
        billing["state"] = request.billing.state[:2].upper()
        billing["country"] = request.billing.country[:2].upper()
        try:
            data = await self.backend.post_json(
                "/payment/square-payment",
                {
                    "sourceId": token.token,
                    "amount": request.amount,
                    "orderItems": request.line_items,
                    "customerEmail": request.customer_email,
                    "billingInfo": billing,
                },
                retry=False,
            )
        except BackendAPIError as exc:
            message = exc.payload.get("message") if 400 <= exc.status_code < 500 else None
            return PaymentSignal(status=SignalStatus.DECLINED, reason_text=message or MSG_CHARGE_FAILED)

        if not data.get("success"):
            return PaymentSignal(
                status=SignalStatus.DECLINED,
                reason_text=data.get("message") or MSG_CHARGE_FAILED,
            )
        payment = data.get("payment") or {}
        return PaymentSignal(
            status=SignalStatus.APPROVED,
            transaction_id=str(payment.get("transactionId") or payment.get("id") or ""),
            authorization=str(payment.get("status") or ""),
            account_number="Card Payment",
            account_type="card",
        )

    def cancel(self) -> None:
        self._request = None


# ---------------------------------------------------------------------------
# Cross-window messages
# ---------------------------------------------------------------------------

@dataclass
class ParsedMessage:
    kind: str  # "result" | "cancelled" | "informational" | "untrusted" | "unrecognized"
    signal: PaymentSignal | None = None


def signal_from_response(response: dict[str, Any]) -> PaymentSignal:
    """Map a hosted-form transaction response to a completion signal."""
    code = str(response.get("responseCode", ""))
    approved = code == APPROVED_RESPONSE_CODE
    return PaymentSignal(
        status=SignalStatus.APPROVED if approved else SignalStatus.DECLINED,
        transaction_id=str(response.get("transId") or ""),
        reason_text="" if approved else (response.get("responseReasonText") or MSG_DECLINED),
        authorization=str(response.get("authorization") or ""),
        account_number=str(response.get("accountNumber") or ""),
        account_type=str(response.get("accountType") or ""),
        response_code=code,
    )


def _result_shape(data: dict[str, Any]) -> dict[str, Any] | None:
    response = data.get("response")
    if isinstance(response, str):
        try:
            response = json.loads(response)
        except json.JSONDecodeError:
            response = None
    if isinstance(response, dict) and "responseCode" in response:
        return response
    if "responseCode" in data:
        return data
    return None


def parse_payment_message(origin: str, data: Any, trusted_origins: frozenset[str]) -> ParsedMessage:
    """Validate and classify one cross-window message.

    Anything that carries a ``responseCode`` is treated as a payment result
    even under an unknown ``type``, so a renamed message never strands a
    charged customer.
    """
    if origin not in trusted_origins:
        logger.warning("Ignoring payment message from untrusted origin %s", origin)
        return ParsedMessage("untrusted")

    if isinstance(data, str):
        try:
            data = json.loads(data)
        except json.JSONDecodeError:
            logger.debug("Ignoring non-JSON payment message")
            return ParsedMessage("unrecognized")
    if not isinstance(data, dict):
        return ParsedMessage("unrecognized")

    message_type = data.get("type")
    if message_type == PAYMENT_CANCELLED:
        return ParsedMessage(
            "cancelled", PaymentSignal(status=SignalStatus.CANCELLED, reason_text=MSG_CANCELLED)
        )
    if message_type in _INFORMATIONAL:
        logger.debug("Payment message %s", message_type)
        return ParsedMessage("informational")

    response = _result_shape(data)
    if response is not None:
        if message_type != PAYMENT_COMPLETE:
            logger.warning("Processing payment result under unexpected type %r", message_type)
        return ParsedMessage("result", signal_from_response(response))

    logger.info("Unrecognized payment message type %r", message_type)
    return ParsedMessage("unrecognized")
