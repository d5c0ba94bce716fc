import json

import pytest

from slate.slate_config import SlateConfig, set_config
from slate import slate_functions, slate_http


@pytest.fixture(autouse=True)
def default_config():
    """Every test starts from default settings, never the user's ~/.slate."""
    cfg = SlateConfig()
    cfg.http.backoff = 0.0
    set_config(cfg)
    yield cfg
    set_config(None)


@pytest.fixture(autouse=True)
def empty_provider_caches():
    for cache in (slate_functions.ROUTE_CACHE, slate_functions.FORECAST_CACHE,
                  slate_functions.HISTORIC_WEATHER_CACHE, slate_functions.DAYLIGHT_CACHE,
                  slate_functions.FLIGHT_CACHE):
        cache.clear()
    yield


class FakeResponse:
    def __init__(self, status_code, payload):
        self.status_code = status_code
        self.content = json.dumps(payload).encode('utf-8')
        self.text = self.content.decode('utf-8')
        self.headers = {'content-type': 'application/json'}


@pytest.fixture
def fake_http(monkeypatch):
    """
    Replaces httpx.AsyncClient in slate_http. ``install(handler)`` takes a
    ``handler(url, params) -> (status, payload)`` and returns the list of
    requests made as ``(method, url, params)``.
    """
    def install(handler):
        calls = []

        class DummyClient:
            def __init__(self, *args, **kwargs):
                pass

            async def __aenter__(self):
                return self

            async def __aexit__(self, exc_type, exc, tb):
                return False

            async def request(self, method, url, headers=None, params=None, content=None):
                params = dict(params or {})
                calls.append((method, url, params))
                result = handler(url, params)
                if isinstance(result, Exception):
                    raise result
                status, payload = result
                return FakeResponse(status, payload)

        monkeypatch.setattr(slate_http, "httpx", type("X", (), {"AsyncClient": DummyClient}))
        return calls
    return install
