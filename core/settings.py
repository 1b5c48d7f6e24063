"""
Payment and affiliate-program settings using pydantic-settings v2 with nested env keys.

Kept apart from core.config.Settings so provider credentials and program rules
can be reloaded without touching the application settings.
"""
from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class PaymentTimeouts(BaseModel):
    connect: float = 1.0
    read: float = 3.0
    total: float = 10.0


class PaymentRetry(BaseModel):
    max: int = 2
    base_backoff: float = 0.2


class WebhookSettings(BaseModel):
    tolerance_seconds: int = 300
    # Optional source allowlist: exact IPs or CIDR ranges
    ip_allowlist: list[str] = Field(default_factory=list)


class StripeSettings(BaseModel):
    secret_key: Optional[str] = None
    publishable_key: Optional[str] = None
    webhook_secret: Optional[str] = None
    # Declared mode; must agree with the key prefixes or the provider is treated as unconfigured
    mode: Literal["test", "live"] = "test"
    config_ttl_seconds: float = 60.0


class PaymentSettings(BaseSettings):
    default_provider: str = Field(default="stripe", validation_alias="PAYMENT__DEFAULT_PROVIDER")
    timeouts: PaymentTimeouts = Field(default_factory=PaymentTimeouts)
    retry: PaymentRetry = Field(default_factory=PaymentRetry)
    webhook: WebhookSettings = Field(default_factory=WebhookSettings)
    stripe: StripeSettings = Field(default_factory=StripeSettings)
    payout_currency: str = "usd"

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="allow",
        env_nested_delimiter="__",
        env_prefix="PAYMENT__",
    )


class AffiliateSettings(BaseSettings):
    cookie_name: str = "affiliate_ref"
    cookie_duration_days: int = 30
    approval_days: int = 14
    minimum_payout: int = 5000
    default_commission_type: Literal["PERCENT", "FIXED"] = "PERCENT"
    default_commission_value: int = 10

    # Friends-and-family sub-codes: "FF" + base affiliate code
    ff_prefix: str = "FF"
    ff_enabled: bool = True
    ff_commission_type: Literal["PERCENT", "FIXED"] = "PERCENT"
    ff_commission_value: int = 5

    payout_country: str = "US"

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="allow",
        env_prefix="AFFILIATE__",
    )


payment_settings = PaymentSettings()
affiliate_settings = AffiliateSettings()
