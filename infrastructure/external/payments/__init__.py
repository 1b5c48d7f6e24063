"""
Factory for payment gateway clients.
"""
from __future__ import annotations

from typing import Optional

from application.ports.payment_gateway import PaymentGateway
from core.settings import payment_settings
from infrastructure.external.payments.config_resolver import ProviderConfigResolver

# Process-wide resolver; admin config changes must call provider_config_resolver.invalidate()
provider_config_resolver = ProviderConfigResolver(ttl_seconds=payment_settings.stripe.config_ttl_seconds)


def get_payment_gateway(provider: Optional[str] = None) -> PaymentGateway:
    name = (provider or payment_settings.default_provider).lower()
    if name == "stripe":
        from .stripe_client import StripeClient
        return StripeClient(provider_config_resolver)
    raise ValueError(f"Unsupported payment provider: {name}")
