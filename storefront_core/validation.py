"""Checkout form validation: pure logic, no I/O.

The first missing field is picked in a fixed priority order
(account fields → billing fields → genre → terms) so the page can focus
and scroll to it and show a tailored message.
"""

from __future__ import annotations

import re
from typing import Dict, Optional

from storefront_core.models import AccountForm, BillingInfo

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

ACCOUNT_FIELDS = ("email", "password", "confirmPassword")
BILLING_FIELDS = ("firstName", "lastName", "address", "city", "state", "zip", "phoneNumber")

MSG_ACCOUNT = "Please complete your account information before continuing."
MSG_TERMS = (
    "Please agree to the Terms & Conditions, Privacy Policy, Disclaimer, "
    "and Refund Policy before continuing."
)
MSG_GENRE = "Please select your music genre before continuing."
MSG_BILLING = "Please complete your billing information before continuing."
MSG_GENERIC = "Please complete all required fields before continuing."


def is_valid_email(email: str) -> bool:
    return bool(EMAIL_RE.match(email or ""))


def is_strong_password(password: str) -> bool:
    """Signup rule: at least 6 chars, one upper-case letter and one digit."""
    return (
        len(password) >= 6
        and re.search(r"[A-Z]", password) is not None
        and re.search(r"\d", password) is not None
    )


def password_requirements(password: str) -> Dict[str, bool]:
    """Checklist shown next to the signup password field."""
    return {
        "minLength": len(password) >= 8,
        "hasUpperCase": re.search(r"[A-Z]", password) is not None,
        "hasLowerCase": re.search(r"[a-z]", password) is not None,
        "hasSpecialChar": re.search(r"[@$!%*?&]", password) is not None,
    }


def _missing_account_field(
    account: AccountForm,
    *,
    is_login_mode: bool,
    email_status: Optional[str],
) -> Optional[str]:
    if not account.email:
        return "email"
    if is_login_mode:
        if not account.password:
            return "password"
        return None

    # Signup: a checked email must have come back available.
    if email_status and email_status != "available":
        return "email"
    if not account.password or not is_strong_password(account.password):
        return "password"
    if not account.confirm_password or account.confirm_password != account.password:
        return "confirmPassword"
    return None


def first_missing_field(
    account: AccountForm,
    billing: BillingInfo,
    *,
    terms_agreed: bool,
    authenticated: bool,
    is_login_mode: bool = False,
    email_status: Optional[str] = None,
) -> Optional[str]:
    """Return the first field blocking payment, or ``None`` if the form is valid."""
    if not authenticated:
        missing = _missing_account_field(
            account, is_login_mode=is_login_mode, email_status=email_status
        )
        if missing:
            return missing

    values = billing.model_dump(by_alias=True)
    for field in BILLING_FIELDS:
        if not str(values.get(field) or "").strip():
            return field

    if not billing.music_genre:
        return "musicGenre"
    if not terms_agreed:
        return "termsAgreed"
    return None


def message_for_field(field: Optional[str]) -> str:
    if field is None:
        return MSG_GENERIC
    if field in ACCOUNT_FIELDS:
        return MSG_ACCOUNT
    if field == "termsAgreed":
        return MSG_TERMS
    if field == "musicGenre":
        return MSG_GENRE
    return MSG_BILLING
