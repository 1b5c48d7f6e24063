"""
Provider configuration resolver with an explicit TTL and invalidation hook.

Credentials are loaded through a loader callable, validated and cached for
``ttl_seconds``. Admin configuration changes must call ``invalidate()``.
A declared mode that disagrees with the key material fails closed: the
resolved config reports ``configured=False`` and callers refuse to run.
"""
from __future__ import annotations

import asyncio
import inspect
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Union

from core.logging_config import get_logger
from core.settings import PaymentSettings, StripeSettings
from infrastructure.external.payments.exceptions import PaymentNotConfiguredError

logger = get_logger(__name__)

Loader = Callable[[], Union[StripeSettings, Awaitable[StripeSettings]]]

_KEY_PREFIX_MODES = (
    ("sk_live_", "live"),
    ("pk_live_", "live"),
    ("rk_live_", "live"),
    ("sk_test_", "test"),
    ("pk_test_", "test"),
    ("rk_test_", "test"),
)


def key_mode(key: Optional[str]) -> Optional[str]:
    if not key:
        return None
    for prefix, mode in _KEY_PREFIX_MODES:
        if key.startswith(prefix):
            return mode
    return None


@dataclass(frozen=True)
class ProviderConfig:
    provider: str
    mode: str
    configured: bool
    secret_key: Optional[str] = None
    publishable_key: Optional[str] = None
    webhook_secret: Optional[str] = None
    problem: Optional[str] = None


def validate_stripe_settings(raw: StripeSettings) -> ProviderConfig:
    def unconfigured(problem: str) -> ProviderConfig:
        return ProviderConfig(provider="stripe", mode=raw.mode, configured=False, problem=problem)

    if not raw.secret_key:
        return unconfigured("secret key missing")
    secret_mode = key_mode(raw.secret_key)
    if secret_mode is None:
        return unconfigured("secret key has unrecognised prefix")
    if secret_mode != raw.mode:
        return unconfigured(f"declared mode {raw.mode} but secret key is {secret_mode}")
    if raw.publishable_key:
        publishable_mode = key_mode(raw.publishable_key)
        if publishable_mode != secret_mode:
            return unconfigured(f"publishable key mode {publishable_mode} does not match secret key mode {secret_mode}")
    return ProviderConfig(
        provider="stripe",
        mode=secret_mode,
        configured=True,
        secret_key=raw.secret_key,
        publishable_key=raw.publishable_key,
        webhook_secret=raw.webhook_secret,
    )


def _load_from_environment() -> StripeSettings:
    # fresh read so invalidate() picks up changed environment/.env values
    return PaymentSettings().stripe


class ProviderConfigResolver:
    def __init__(
        self,
        loader: Loader = _load_from_environment,
        *,
        ttl_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._loader = loader
        self._ttl = ttl_seconds
        self._clock = clock
        self._cached: Optional[ProviderConfig] = None
        self._expires_at = 0.0
        self._lock = asyncio.Lock()

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    def peek(self) -> Optional[ProviderConfig]:
        """Cached config if still fresh, without loading."""
        if self._cached is not None and self._clock() < self._expires_at:
            return self._cached
        return None

    def invalidate(self) -> None:
        """Drop the cached config; the next get() reloads."""
        self._cached = None
        self._expires_at = 0.0
        logger.info("payment_config_invalidated")

    async def get(self) -> ProviderConfig:
        cached = self._cached
        if cached is not None and self._clock() < self._expires_at:
            return cached
        async with self._lock:
            if self._cached is not None and self._clock() < self._expires_at:
                return self._cached
            raw = self._loader()
            if inspect.isawaitable(raw):
                raw = await raw
            config = validate_stripe_settings(raw)
            if not config.configured:
                logger.error("payment_config_rejected", provider=config.provider, problem=config.problem)
            self._cached = config
            self._expires_at = self._clock() + self._ttl
            return config

    async def require(self) -> ProviderConfig:
        config = await self.get()
        if not config.configured:
            raise PaymentNotConfiguredError(
                "Payment provider is not configured",
                provider=config.provider,
                details={"problem": config.problem},
            )
        return config
