"""Pydantic models shared across the checkout service."""

from __future__ import annotations

from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base for payloads exchanged with the storefront pages (camelCase on the wire)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


# ---------------------------------------------------------------------------
# Catalog / cart
# ---------------------------------------------------------------------------

class Track(CamelModel):
    """A Spotify track picked for promotion, immutable once selected."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str  # Spotify track id
    title: str = ""
    artist: str = ""
    image_url: str = ""
    url: str = ""
    artist_profile_url: Optional[str] = None


class Package(CamelModel):
    """Static catalog entry."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str
    name: str
    price: int
    plays: str = ""
    placements: str = ""
    description: str = ""


class AddOnProduct(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str
    name: str
    emoji: str
    original_price: int
    sale_price: int
    description: str = ""


class OrderItem(CamelModel):
    track: Track
    package: Package
    original_price: float
    discounted_price: float
    is_discounted: bool


class AddOnOrderItem(CamelModel):
    id: str
    name: str
    emoji: str
    price: float
    original_price: float
    is_on_sale: bool


class CouponState(BaseModel):
    """An applied coupon.  ``calculated_discount`` is server-computed."""

    id: str
    code: str
    discount_type: Literal["percentage", "flat"]
    discount_value: float
    calculated_discount: float


# ---------------------------------------------------------------------------
# Loyalty (fashokens)
# ---------------------------------------------------------------------------

class LoyaltySettings(BaseModel):
    """Program settings as returned by ``GET /loyalty/settings``."""

    tokens_per_dollar: int = 100
    redemption_tokens_per_dollar: int = 1000
    is_program_active: bool = True
    minimum_order_total: float = 1.0


class LoyaltyQuote(CamelModel):
    """Balance and redeemable maximum for a given cart total."""

    balance: int = 0
    max_tokens: int = 0
    max_discount: float = 0.0
    redemption_rate: int = 1000


class LoyaltyRedemption(CamelModel):
    applied_tokens: int = 0
    applied_discount: float = 0.0


class LoyaltySettlement(CamelModel):
    fashokens_spent: int = 0
    fashokens_earned: int = 0
    new_balance: Optional[int] = None


# ---------------------------------------------------------------------------
# Totals
# ---------------------------------------------------------------------------

class Totals(CamelModel):
    subtotal: float = 0.0
    discount: float = 0.0  # volume + add-on sale markdowns only
    coupon_discount: float = 0.0
    total_before_loyalty: float = 0.0
    loyalty_discount: float = 0.0  # effective amount after the floor
    total: float = 0.0


# ---------------------------------------------------------------------------
# Checkout form
# ---------------------------------------------------------------------------

class BillingInfo(CamelModel):
    first_name: str = ""
    last_name: str = ""
    address: str = ""
    address2: str = ""
    city: str = ""
    state: str = ""
    zip: str = ""
    country: str = "US"
    phone_number: str = ""
    music_genre: str = ""

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class AccountForm(CamelModel):
    email: str = ""
    password: str = ""
    confirm_password: str = ""


# ---------------------------------------------------------------------------
# Payment / orders
# ---------------------------------------------------------------------------

class SignalStatus(str, Enum):
    APPROVED = "approved"
    DECLINED = "declined"
    CANCELLED = "cancelled"


class PaymentSignal(CamelModel):
    """Provider-agnostic completion signal."""

    status: SignalStatus
    transaction_id: str = ""
    reason_text: str = ""
    authorization: str = ""
    account_number: str = ""
    account_type: str = ""
    response_code: Optional[str] = None


class PaymentData(CamelModel):
    transaction_id: str
    authorization: str = ""
    account_number: str = ""
    account_type: str = ""


class PendingOrder(CamelModel):
    """Snapshot taken when a payment token is issued, consumed on completion."""

    checkout_session_id: str = ""
    items: List[OrderItem] = Field(default_factory=list)
    add_on_items: List[AddOnOrderItem] = Field(default_factory=list)
    totals: Totals = Field(default_factory=Totals)
    billing_info: BillingInfo = Field(default_factory=BillingInfo)
    customer_email: str = ""
    coupon: Optional[CouponState] = None
    loyalty: LoyaltyRedemption = Field(default_factory=LoyaltyRedemption)
    user_id: Optional[str] = None
    new_account_created: bool = False
    provider: str = ""
    payment_token: str = ""
    created_at: str = ""


class CompletedOrder(CamelModel):
    """Everything the confirmation page needs."""

    order_id: str
    order_number: str
    created_at: str = ""
    items: List[OrderItem] = Field(default_factory=list)
    add_on_items: List[AddOnOrderItem] = Field(default_factory=list)
    totals: Totals = Field(default_factory=Totals)
    customer_email: str = ""
    customer_name: str = ""
    new_account_created: bool = False
    payment_data: PaymentData
    coupon_id: Optional[str] = None
    coupon_code: Optional[str] = None
    coupon_discount: Optional[float] = None
    fashokens_spent: int = 0
    fashokens_earned: int = 0
