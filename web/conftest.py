import pytest

from apps.orders.adapters import InMemoryCatalog


@pytest.fixture(autouse=True)
def use_stubs_for_tests(settings):
    settings.USE_HTTP_ADAPTERS = False
    settings.ORDER_CODE_RETRY_BACKOFF = 0
    settings.MOMO_ACCESS_KEY = "test-access"
    settings.MOMO_SECRET_KEY = "test-secret"
    settings.MOMO_PARTNER_CODE = "MOMOTEST"


@pytest.fixture(autouse=True)
def reset_throttles():
    from django.core.cache import cache

    cache.clear()
    yield
    cache.clear()


@pytest.fixture
def catalog(monkeypatch):
    """Fresh in-memory catalog wired into the providers used by the views."""
    store = InMemoryCatalog()
    monkeypatch.setattr("apps.orders.providers.get_catalog_store", lambda: store, raising=True)
    return store
