import asyncio
import json
import logging
from collections import OrderedDict
from typing import Any, Dict, Hashable, Optional

import httpx

from slate.slate_config import HttpConfig, get_config

logger = logging.getLogger(__name__)


class ProviderError(Exception):
    """A provider request failed after all retries."""

    def __init__(self, message: str, status: Optional[int] = None, url: Optional[str] = None):
        super().__init__(message)
        self.status = status
        self.url = url


class LRUCache:
    """A bounded mapping that evicts the least recently used entry."""

    def __init__(self, max_entries: Optional[int] = None):
        self._max_entries = max_entries
        self._data: OrderedDict = OrderedDict()

    @property
    def max_entries(self) -> int:
        if self._max_entries is not None:
            return self._max_entries
        return get_config().cache.max_entries

    def get(self, key: Hashable, default=None):
        if key not in self._data:
            return default
        self._data.move_to_end(key)
        return self._data[key]

    def __contains__(self, key: Hashable) -> bool:
        return key in self._data

    def __len__(self) -> int:
        return len(self._data)

    def __setitem__(self, key: Hashable, value: Any):
        self._data[key] = value
        self._data.move_to_end(key)
        while len(self._data) > self.max_entries:
            self._data.popitem(last=False)

    def clear(self):
        self._data.clear()


def cache_key(url: str, params: Optional[Dict[str, Any]] = None) -> tuple:
    return (url, tuple(sorted((k, str(v)) for k, v in (params or {}).items())))


async def fetch_json(url: str, params: Optional[Dict[str, Any]] = None, *,
                     headers: Optional[Dict[str, str]] = None,
                     config: Optional[HttpConfig] = None) -> Any:
    """
    GETs ``url`` and decodes the JSON body.

    Retries with exponential backoff; raises ProviderError once attempts
    are exhausted or on a non-2xx response.
    """
    cfg = config or get_config().http
    params = dict(params or {})
    headers = dict(headers or {})

    async with httpx.AsyncClient(timeout=cfg.timeout, follow_redirects=True) as client:
        last_exc = None
        for attempt in range(cfg.retries + 1):
            try:
                logger.debug("GET %s %s (attempt %d)", url, params, attempt + 1)
                resp = await client.request("GET", url, headers=headers, params=params)
                if 200 <= resp.status_code < 300:
                    return json.loads(resp.content)
                preview = (resp.text or "")[:200]
                raise ProviderError(f"HTTP {resp.status_code} for {url}: {preview}", resp.status_code, url)
            except Exception as e:
                last_exc = e
                if attempt < cfg.retries:
                    await asyncio.sleep(cfg.backoff * (2 ** attempt))
                    continue
        if isinstance(last_exc, ProviderError):
            raise last_exc
        raise ProviderError(f"Request to {url} failed: {last_exc}", url=url) from last_exc


async def cached_fetch_json(cache: LRUCache, url: str, params: Optional[Dict[str, Any]] = None, **kwargs) -> Any:
    key = cache_key(url, params)
    hit = cache.get(key)
    if hit is not None:
        logger.debug("Cache hit for %s", url)
        return hit
    value = await fetch_json(url, params, **kwargs)
    cache[key] = value
    return value
