"""Checkout error taxonomy.

Network/service failures are caught at the call site and converted into
one of these.  Only ``PaymentError`` carries provider-authored text that is
safe to show verbatim.
"""

from __future__ import annotations


class CheckoutError(Exception):
    """Base class; ``message`` is always safe to show to the user."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class FormValidationError(CheckoutError):
    """A required field is missing or invalid; recovered locally."""

    def __init__(self, field: str | None, message: str):
        self.field = field
        super().__init__(message)


class CouponError(CheckoutError):
    pass


class SessionError(CheckoutError):
    """Expired, unknown, or already-used checkout session."""

    def __init__(self, reason: str, message: str = "Invalid checkout session."):
        self.reason = reason
        super().__init__(message)


class AccountError(CheckoutError):
    """Sign-in / sign-up failed in a way that must halt checkout."""


class PaymentError(CheckoutError):
    """Declined or cancelled payment; the form stays usable for retry."""


class ProviderLoadTimeout(PaymentError):
    """The card-capture surface never became available."""

    def __init__(self, message: str = "Payment form failed to load. Please refresh the page."):
        super().__init__(message)


class ReconciliationError(CheckoutError):
    """Payment succeeded but the order could not be recorded."""

    def __init__(self, transaction_id: str):
        self.transaction_id = transaction_id
        super().__init__(
            "Payment was successful but there was an error saving your order. "
            f"Please contact support with your transaction ID: {transaction_id}"
        )
