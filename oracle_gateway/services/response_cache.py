# oracle_gateway/services/response_cache.py
"""Short-TTL memo of upstream fetch results, keyed by normalized query."""
import time
from typing import Any, Callable, Dict, Mapping, Optional
from urllib.parse import urlencode

from oracle_gateway.core.cache import TTLCache

# Parameters every upstream exploit query carries unless overridden
DEFAULT_QUERY_PARAMS: Dict[str, Any] = {
    "limit": 100,
    "sort_by": "timestamp",
    "order": "desc",
}


def normalize_query(params: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
    """
    Apply defaults, drop unset values, strip strings, and sort keys.

    Equivalent queries (reordered, defaulted, padded) normalize identically.
    """
    merged: Dict[str, Any] = dict(DEFAULT_QUERY_PARAMS)
    for key, value in (params or {}).items():
        if value is None:
            continue
        if isinstance(value, str):
            value = value.strip()
            if not value:
                continue
        merged[key] = value
    return {k: merged[k] for k in sorted(merged)}


def query_signature(path: str, params: Optional[Mapping[str, Any]] = None) -> str:
    """Cache key for a query, e.g. ``exploits?chain=ethereum&limit=100&...``."""
    return f"{path.strip('/')}?{urlencode(normalize_query(params))}"


class ResponseCache:
    """Thread-safe TTL cache of fetch results."""

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.time):
        self._cache: TTLCache[Any] = TTLCache(default_ttl=ttl_seconds, clock=clock, name="response-cache")

    @property
    def ttl_seconds(self) -> float:
        return self._cache.default_ttl

    def get(self, key: str) -> Optional[Any]:
        return self._cache.get(key)

    def put(self, key: str, value: Any) -> None:
        self._cache.set(key, value)

    def purge_expired(self) -> int:
        return self._cache.purge_expired()

    def start_sweeper(self, interval_seconds: float) -> None:
        self._cache.start_sweeper(interval_seconds)

    def stop_sweeper(self) -> None:
        self._cache.stop_sweeper()

    @property
    def sweeper_running(self) -> bool:
        return self._cache.sweeper_running

    def clear(self) -> None:
        self._cache.clear()

    def __len__(self) -> int:
        return len(self._cache)

    def stats(self) -> Dict[str, Any]:
        return self._cache.stats()
