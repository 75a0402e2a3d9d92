from functools import lru_cache
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    debug: bool = False
    project_name: str = "Affiliate Payouts"
    environment: str = "development"

    database_url: str  # Required - no default, must be set in .env

    smtp_host: Optional[str] = None
    smtp_port: int = 587
    smtp_username: Optional[str] = None
    smtp_password: Optional[str] = None
    email_from_address: Optional[str] = None  # Defaults to smtp_username
    email_from_name: str = "Affiliate Program"
    slack_webhook_url: Optional[str] = None

    # Operator-facing alerts for blocked payouts
    security_alert_email: Optional[str] = None
    admin_dashboard_url: str = "http://localhost:3000/admin/affiliates/commissions"

    # Stripe Connect
    # Test mode keys (for development/staging)
    stripe_test_secret_key: Optional[str] = None
    # Live mode keys (for production)
    stripe_live_secret_key: Optional[str] = None
    # Set to True for production, False for development/staging
    stripe_use_live_mode: bool = False
    # Legacy/simple key (fallback if test/live specific keys not set)
    stripe_secret_key: Optional[str] = None
    # Network retries are handled by the Stripe client, not by the payout flow
    stripe_max_network_retries: int = 2

    # Payout behaviour
    default_currency: str = "BRL"
    payout_payment_method: str = "stripe_connect"
    payout_idempotency_key_prefix: str = "commission_payout_"
    payout_min_transfer_units: int = 1  # Smallest transferable amount in minor units
    payout_manual_review_after_attempts: int = 2  # Prior attempts before a retryable error escalates
    payout_retryable_error_codes: List[str] = Field(
        default_factory=lambda: ["balance_insufficient", "rate_limit"]
    )
    payout_max_sweep_attempts: int = 5
    payout_sweep_batch_size: int = 100

    def _is_valid_stripe_key(self, key: Optional[str]) -> bool:
        """Check if a Stripe key is valid (not None and not a placeholder)"""
        if not key:
            return False
        placeholders = ["CHANGE_ME", "change_me", "YOUR_", "your_", "PLACEHOLDER", "placeholder"]
        return not any(p in key for p in placeholders)

    def get_stripe_secret_key(self) -> Optional[str]:
        """Get the appropriate Stripe secret key based on mode, with fallback to simple key"""
        if self.stripe_use_live_mode:
            if self._is_valid_stripe_key(self.stripe_live_secret_key):
                return self.stripe_live_secret_key
            return self.stripe_secret_key
        if self._is_valid_stripe_key(self.stripe_test_secret_key):
            return self.stripe_test_secret_key
        return self.stripe_secret_key


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
