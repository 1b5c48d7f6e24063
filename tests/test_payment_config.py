import pytest

from core.settings import StripeSettings
from infrastructure.external.payments.config_resolver import ProviderConfigResolver, key_mode, validate_stripe_settings
from infrastructure.external.payments.exceptions import PaymentNotConfiguredError


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def test_key_mode_detection():
    assert key_mode("sk_live_abc") == "live"
    assert key_mode("pk_test_abc") == "test"
    assert key_mode("whatever") is None
    assert key_mode(None) is None


@pytest.mark.parametrize(
    "settings,problem",
    [
        (StripeSettings(), "secret key missing"),
        (StripeSettings(secret_key="abc"), "secret key has unrecognised prefix"),
        (StripeSettings(secret_key="sk_live_1", mode="test"), "declared mode test but secret key is live"),
        (StripeSettings(secret_key="sk_test_1", publishable_key="pk_live_1"), "publishable key mode live does not match secret key mode test"),
    ],
)
def test_mismatched_configuration_fails_closed(settings, problem):
    config = validate_stripe_settings(settings)
    assert not config.configured
    assert config.problem == problem
    assert config.secret_key is None


@pytest.mark.asyncio
async def test_resolver_caches_for_ttl_and_invalidates():
    loads = []
    keys = iter(["sk_test_1", "sk_test_2", "sk_test_3"])

    def loader():
        loads.append(1)
        return StripeSettings(secret_key=next(keys), webhook_secret="whsec")

    clock = FakeClock()
    resolver = ProviderConfigResolver(loader, ttl_seconds=60, clock=clock)
    assert resolver.peek() is None
    assert (await resolver.get()).secret_key == "sk_test_1"
    clock.now = 30
    assert (await resolver.get()).secret_key == "sk_test_1"
    assert resolver.peek().webhook_secret == "whsec"

    clock.now = 61
    assert resolver.peek() is None
    assert (await resolver.get()).secret_key == "sk_test_2"

    resolver.invalidate()
    assert (await resolver.get()).secret_key == "sk_test_3"
    assert len(loads) == 3


@pytest.mark.asyncio
async def test_require_raises_when_unconfigured():
    resolver = ProviderConfigResolver(lambda: StripeSettings(secret_key="sk_live_x", mode="test"))
    with pytest.raises(PaymentNotConfiguredError) as exc_info:
        await resolver.require()
    assert exc_info.value.details["problem"] == "declared mode test but secret key is live"


@pytest.mark.asyncio
async def test_async_loader_supported():
    async def loader():
        return StripeSettings(secret_key="sk_live_ok", mode="live")

    config = await ProviderConfigResolver(loader).get()
    assert config.configured and config.mode == "live"
