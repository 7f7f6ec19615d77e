"""
Two-tier response cache for partner API results.

The memory tier is authoritative for the running process. The persistent
tier survives restarts; failures there are logged and never raised.
"""

import time
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Mapping, Optional

from shared.logging import get_logger
from ..ratelimit.registry import RateLimitRegistry, default_registry
from .entries import CacheEntry, make_cache_key, split_endpoint
from .persistent_store import PersistentStore

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


# Used when no rate limit rule covers the endpoint; matched by substring, first hit wins
FALLBACK_TTLS: Dict[str, float] = {
    "orders": 5 * 60,
    "shipments": 10 * 60,
    "returns": 10 * 60,
    "invoices": 60 * 60,
    "offers": 15 * 60,
    "products": 30 * 60,
    "performance": 60 * 60,
    "revenue": 30 * 60,
}
DEFAULT_TTL = 5 * 60


class ResponseCache:
    """In-memory cache backed by an optional :class:`PersistentStore`."""

    def __init__(
        self,
        store: Optional[PersistentStore] = None,
        *,
        registry: Optional[RateLimitRegistry] = None,
        clock: Callable[[], float] = time.time,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.store = store
        self.registry = registry or default_registry
        self.logger = get_logger("retailer.response_cache")
        self.metrics = metrics
        self._clock = clock
        self._memory: Dict[str, CacheEntry] = {}

    def _record(self, tier: str, result: str) -> None:
        if self.metrics:
            self.metrics.increment_counter("cache_lookups_total", tier=tier, result=result)

    def resolve_ttl(self, endpoint: str, method: str = "GET", ttl: Optional[float] = None) -> float:
        """Pick the TTL for an entry: override, then rate limit rule, then keyword table."""
        if ttl:
            return ttl
        path = endpoint.split("?", 1)[0]
        if self.registry.lookup(path, method) is not None:
            return self.registry.compute_optimal_ttl(path, method)
        for keyword, fallback in FALLBACK_TTLS.items():
            if keyword in path:
                return fallback
        return DEFAULT_TTL

    async def read(self, endpoint: str, params: Optional[Mapping[str, Any]] = None) -> Optional[Any]:
        """Return the cached payload for ``endpoint``/``params``, or ``None``."""
        key = make_cache_key(endpoint, params)
        now = self._clock()

        entry = self._memory.get(key)
        if entry is not None:
            if not entry.is_expired(now):
                self._record("memory", "hit")
                return entry.data
            del self._memory[key]
            self.logger.debug("Memory cache entry expired", key=key)
        self._record("memory", "miss")

        if self.store is None:
            return None

        try:
            persisted = await self.store.get(key)
        except Exception as exc:
            self.logger.error("Persistent cache read error", key=key, error=str(exc))
            return None

        if persisted is None:
            self._record("persistent", "miss")
            return None

        # Promote so both tiers agree on the live entry
        self._memory[key] = persisted
        self._record("persistent", "hit")
        self.logger.debug("Promoted persistent cache entry", key=key)
        return persisted.data

    async def write(
        self,
        endpoint: str,
        value: Any,
        params: Optional[Mapping[str, Any]] = None,
        ttl: Optional[float] = None,
        method: str = "GET",
    ) -> CacheEntry:
        """Store ``value`` in memory and, best effort, on disk."""
        path, merged = split_endpoint(endpoint, params)
        key = make_cache_key(path, merged)
        entry = CacheEntry(
            key=key,
            data=value,
            created_at=self._clock(),
            ttl=self.resolve_ttl(path, method, ttl),
            endpoint=path,
            params=merged or None,
        )
        self._memory[key] = entry

        if self.store is not None:
            try:
                await self.store.set(entry)
            except Exception as exc:
                self.logger.error("Persistent cache write error", key=key, error=str(exc))

        self.logger.debug("Cached response", key=key, ttl=entry.ttl)
        return entry

    async def clear(self, prefix: Optional[str] = None) -> int:
        """Drop entries whose endpoint starts with ``prefix`` from both tiers, or everything."""
        if prefix is None:
            removed = len(self._memory)
            self._memory.clear()
        else:
            doomed = [key for key, entry in self._memory.items() if entry.endpoint.startswith(prefix)]
            for key in doomed:
                del self._memory[key]
            removed = len(doomed)

        if self.store is not None:
            try:
                await self.store.clear(prefix)
            except Exception as exc:
                self.logger.error("Persistent cache clear error", prefix=prefix, error=str(exc))

        self.logger.info("Response cache cleared", prefix=prefix, removed=removed)
        return removed

    def stats(self) -> Dict[str, Any]:
        keys: List[str] = list(self._memory.keys())
        return {"size": len(keys), "keys": keys}
