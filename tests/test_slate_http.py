import pytest

from slate.slate_config import HttpConfig
from slate.slate_http import LRUCache, ProviderError, cache_key, cached_fetch_json, fetch_json


def test_lru_cache_evicts_least_recently_used():
    cache = LRUCache(max_entries=2)
    cache['a'] = 1
    cache['b'] = 2
    assert cache.get('a') == 1
    cache['c'] = 3
    assert 'a' in cache
    assert 'b' not in cache
    assert len(cache) == 2
    assert cache.get('b', 'gone') == 'gone'
    cache.clear()
    assert len(cache) == 0


def test_lru_cache_size_follows_config(default_config):
    default_config.cache.max_entries = 1
    cache = LRUCache()
    cache['a'] = 1
    cache['b'] = 2
    assert len(cache) == 1
    assert 'b' in cache


def test_cache_key_ignores_parameter_order():
    assert cache_key("u", {'a': 1, 'b': 2}) == cache_key("u", {'b': 2, 'a': 1})
    assert cache_key("u", {'a': 1}) != cache_key("u", {'a': 2})


@pytest.mark.asyncio
async def test_fetch_json_success(fake_http):
    calls = fake_http(lambda url, params: (200, {'ok': True}))
    assert await fetch_json("http://api/items", {'q': 'x'}) == {'ok': True}
    assert calls == [('GET', 'http://api/items', {'q': 'x'})]


@pytest.mark.asyncio
async def test_fetch_json_retries_then_succeeds(fake_http):
    attempts = []

    def handler(url, params):
        attempts.append(url)
        if len(attempts) < 3:
            return ConnectionError("reset")
        return 200, [1, 2]

    fake_http(handler)
    assert await fetch_json("http://api/flaky", config=HttpConfig(retries=2, backoff=0)) == [1, 2]
    assert len(attempts) == 3


@pytest.mark.asyncio
async def test_fetch_json_raises_after_retries(fake_http):
    calls = fake_http(lambda url, params: (404, {'error': 'missing'}))
    with pytest.raises(ProviderError) as excinfo:
        await fetch_json("http://api/missing", config=HttpConfig(retries=1, backoff=0))
    assert excinfo.value.status == 404
    assert excinfo.value.url == "http://api/missing"
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_fetch_json_wraps_transport_errors(fake_http):
    fake_http(lambda url, params: ConnectionError("refused"))
    with pytest.raises(ProviderError) as excinfo:
        await fetch_json("http://api/down", config=HttpConfig(retries=0))
    assert "refused" in str(excinfo.value)
    assert isinstance(excinfo.value.__cause__, ConnectionError)


@pytest.mark.asyncio
async def test_cached_fetch_json(fake_http):
    calls = fake_http(lambda url, params: (200, {'n': len(params)}))
    cache = LRUCache(max_entries=4)
    first = await cached_fetch_json(cache, "http://api/x", {'a': 1})
    second = await cached_fetch_json(cache, "http://api/x", {'a': 1})
    assert first == second == {'n': 1}
    assert len(calls) == 1
    await cached_fetch_json(cache, "http://api/x", {'a': 2})
    assert len(calls) == 2
