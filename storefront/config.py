"""Application settings loaded from .env via pydantic-settings."""

from functools import lru_cache
from pathlib import Path
from typing import List

from pydantic_settings import BaseSettings

# Payment provider's own hosted-form domains.
PROVIDER_ORIGINS = ("https://accept.authorize.net", "https://test.authorize.net")


class Settings(BaseSettings):
    """Central configuration; values come from environment / .env file."""

    # Backend services (session, coupon, loyalty, account, payment, order)
    backend_base_url: str = "http://localhost:3000/api"

    # App
    site_origin: str = "http://localhost:8000"
    secret_key: str = "change-me"

    # Database
    db_path: str = "./data/checkout.db"

    # Pricing
    volume_discount_rate: float = 0.25
    minimum_order_total: float = 1.0

    # Session lifecycle
    already_used_redirect_delay: float = 2.5
    expired_redirect_delay: float = 3.0

    # Payment
    payment_timeout_seconds: float = 300.0
    sdk_poll_interval: float = 0.2
    sdk_poll_attempts: int = 50
    allowed_payment_origins: List[str] = ["https://fasho-landing.vercel.app", "https://fasho.co"]

    # Debounce / caching
    email_check_debounce: float = 0.5
    profile_cache_ttl: float = 300.0

    # Navigation
    entry_path: str = "/add"
    dashboard_path: str = "/dashboard"
    confirmation_path: str = "/thank-you"
    checkout_path: str = "/checkout"

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    @property
    def db_abs_path(self) -> Path:
        """Return the database path as an absolute Path, creating parents if needed."""
        p = Path(self.db_path)
        p.parent.mkdir(parents=True, exist_ok=True)
        return p.resolve()

    @property
    def trusted_origins(self) -> frozenset[str]:
        """Origins whose cross-window payment messages are trusted."""
        return frozenset((self.site_origin, *self.allowed_payment_origins, *PROVIDER_ORIGINS))


@lru_cache
def get_settings() -> Settings:
    """Cached singleton so .env is read only once."""
    return Settings()
