import pytest
from django.core.cache import cache

from apps.orders.adapters import GatewayStub, InventoryStub
from apps.orders.resilience import get_registry


@pytest.fixture(autouse=True)
def use_stubs_for_tests(settings):
    settings.USE_HTTP_ADAPTERS = False
    settings.GATEWAY_WEBHOOK_HASH = "test-webhook-hash"
    settings.GATEWAY_SECRET_KEY = "FLWSECK_TEST-secret"
    settings.GATEWAY_BASE_URL = "http://gateway.test/v3"
    settings.INVENTORY_BASE_URL = "http://inventory.test"
    settings.EMAIL_BACKEND = "django.core.mail.backends.locmem.EmailBackend"
    # throttle counters live in the cache
    cache.clear()


@pytest.fixture(autouse=True)
def reset_circuits():
    get_registry().reset()
    yield
    get_registry().reset()


@pytest.fixture()
def no_sleep(monkeypatch):
    sleeps = []
    monkeypatch.setattr("time.sleep", lambda s: sleeps.append(s), raising=True)
    return sleeps


@pytest.fixture()
def gateway():
    return GatewayStub()


@pytest.fixture()
def inventory():
    return InventoryStub({"SKU-A": 100, "SKU-B": 100})


@pytest.fixture()
def wired(monkeypatch, gateway, inventory):
    """Make every provider hand out the same stub instances."""
    from apps.orders import providers

    monkeypatch.setattr(providers, "get_gateway", lambda: gateway)
    monkeypatch.setattr(providers, "get_inventory", lambda: inventory)
    return gateway, inventory
