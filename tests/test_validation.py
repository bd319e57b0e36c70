"""Tests for checkout form validation (storefront_core/validation.py)."""

from __future__ import annotations

import pytest

from storefront_core.models import AccountForm, BillingInfo
from storefront_core.validation import (
    MSG_ACCOUNT,
    MSG_BILLING,
    MSG_GENERIC,
    MSG_GENRE,
    MSG_TERMS,
    first_missing_field,
    is_strong_password,
    is_valid_email,
    message_for_field,
    password_requirements,
)


def _billing(**overrides) -> BillingInfo:
    values = dict(
        first_name="Ada",
        last_name="Lovelace",
        address="1 Main St",
        city="Austin",
        state="TX",
        zip="78701",
        phone_number="5551234567",
        music_genre="Pop",
    )
    values.update(overrides)
    return BillingInfo(**values)


def _signup(**overrides) -> AccountForm:
    values = dict(email="ada@example.com", password="Secret1", confirm_password="Secret1")
    values.update(overrides)
    return AccountForm(**values)


def test_complete_form_passes():
    assert first_missing_field(
        _signup(), _billing(), terms_agreed=True, authenticated=False, email_status="available"
    ) is None


def test_account_fields_come_first():
    field = first_missing_field(
        AccountForm(), BillingInfo(), terms_agreed=False, authenticated=False
    )
    assert field == "email"


def test_authenticated_user_skips_account_fields():
    field = first_missing_field(
        AccountForm(), _billing(city=""), terms_agreed=True, authenticated=True
    )
    assert field == "city"


@pytest.mark.parametrize(
    "account, status, expected",
    [
        (_signup(), "exists", "email"),
        (_signup(), "invalid", "email"),
        (_signup(password="weak", confirm_password="weak"), None, "password"),
        (_signup(confirm_password="Other1"), "available", "confirmPassword"),
    ],
)
def test_signup_account_rules(account, status, expected):
    field = first_missing_field(
        account, _billing(), terms_agreed=True, authenticated=False, email_status=status
    )
    assert field == expected


def test_login_mode_only_needs_email_and_password():
    account = AccountForm(email="ada@example.com", password="x")
    assert first_missing_field(
        account, _billing(), terms_agreed=True, authenticated=False, is_login_mode=True
    ) is None
    assert first_missing_field(
        AccountForm(email="ada@example.com"), _billing(), terms_agreed=True,
        authenticated=False, is_login_mode=True,
    ) == "password"


def test_billing_then_genre_then_terms():
    assert first_missing_field(
        _signup(), _billing(phone_number=" "), terms_agreed=False, authenticated=False
    ) == "phoneNumber"
    assert first_missing_field(
        _signup(), _billing(music_genre=""), terms_agreed=False, authenticated=False
    ) == "musicGenre"
    assert first_missing_field(
        _signup(), _billing(), terms_agreed=False, authenticated=False
    ) == "termsAgreed"


def test_messages_per_field():
    assert message_for_field("confirmPassword") == MSG_ACCOUNT
    assert message_for_field("termsAgreed") == MSG_TERMS
    assert message_for_field("musicGenre") == MSG_GENRE
    assert message_for_field("zip") == MSG_BILLING
    assert message_for_field(None) == MSG_GENERIC


def test_email_format():
    assert is_valid_email("a@b.co")
    assert not is_valid_email("a@b")
    assert not is_valid_email("a b@c.de")
    assert not is_valid_email("")


def test_password_rules():
    assert is_strong_password("Abc123")
    assert not is_strong_password("abc123")
    assert not is_strong_password("Abcdef")
    assert password_requirements("Abcdef1!") == {
        "minLength": True,
        "hasUpperCase": True,
        "hasLowerCase": True,
        "hasSpecialChar": True,
    }
    assert not password_requirements("abc")["minLength"]
