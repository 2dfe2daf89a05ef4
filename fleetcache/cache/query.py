"""Query-level caching helpers on top of the application caches."""

import json
import logging
import re
import time
from collections.abc import Awaitable, Callable, Iterable, Sequence
from typing import Any, Protocol, TypeVar

from fleetcache.cache.manager import CacheManager, WarmUpItem
from fleetcache.models.cache import CacheStats
from fleetcache.registry import CacheRegistry

logger = logging.getLogger(__name__)

T = TypeVar("T")

QueryKey = Sequence[Any]

FLEET_TAGS = ("fleet", "vehicles", "maintenance")
CUSTOMER_TAGS = ("customer", "config")
USER_TAGS = ("user", "auth")


def query_cache_key(query_key: QueryKey) -> str:
    """Return the cache key for *query_key*, e.g. ``query_["fleet","c-1"]``."""
    return "query_" + json.dumps(list(query_key), separators=(",", ":"), default=str)


def default_query_tags(query_key: QueryKey) -> list[str]:
    return [f"query_{query_key[0]}"] if query_key else []


def cached_query(
    cache: CacheManager[Any],
    fetch: Callable[[QueryKey], Awaitable[T]],
    *,
    cache_key: str | None = None,
    ttl: float | None = None,
    tags: Iterable[str] | None = None,
) -> Callable[[QueryKey], Awaitable[T]]:
    """Wrap *fetch* so results are served from *cache* while fresh.

    Results are tagged with *tags*, or ``query_<first key part>`` by default,
    and carry the serialized query key in their metadata.
    """

    async def run(query_key: QueryKey) -> T:
        key = cache_key or query_cache_key(query_key)
        return await cache.get_or_set(
            key,
            lambda: fetch(query_key),
            ttl=ttl,
            tags=list(tags) if tags is not None else default_query_tags(query_key),
            metadata={"query_key": query_cache_key(query_key), "timestamp": time.time()},
        )

    return run


class CustomerDataLoaders(Protocol):
    """Fetchers used to warm the API cache for one customer."""

    async def fetch_customer_config(self, customer_id: str) -> Any: ...

    async def fetch_fleet_data(self, customer_id: str) -> Any: ...

    async def fetch_maintenance_data(self, customer_id: str) -> Any: ...


class QueryCacheManager:
    """Invalidation, prefetching and warm-up for query results.

    Query results live in ``registry.api``.

    Args:
        registry: The application caches.
    """

    def __init__(self, registry: CacheRegistry) -> None:
        self.registry = registry

    def invalidate_by_pattern(self, pattern: str | re.Pattern[str]) -> int:
        return self.registry.api.invalidate_by_pattern(pattern)

    def invalidate_by_tags(self, tags: Iterable[str]) -> int:
        return self.registry.api.invalidate_by_tags(tags)

    def invalidate_fleet_data(self) -> int:
        return self.invalidate_by_tags(FLEET_TAGS)

    def invalidate_customer_data(self) -> int:
        return self.invalidate_by_tags(CUSTOMER_TAGS)

    def invalidate_user_data(self) -> int:
        return self.invalidate_by_tags(USER_TAGS)

    async def prefetch_and_cache(
        self,
        query_key: QueryKey,
        fetch: Callable[[], Awaitable[T]],
        *,
        ttl: float | None = None,
        tags: Iterable[str] | None = None,
    ) -> T:
        """Fetch unconditionally and store the result under the query's key."""
        data = await fetch()
        self.registry.api.set(query_cache_key(query_key), data, ttl=ttl, tags=tags)
        return data

    async def warm_up_cache(self, customer_id: str, loaders: CustomerDataLoaders) -> int:
        """Preload customer config, fleet and maintenance data for *customer_id*.

        Failing loaders are logged and skipped. Returns the number of
        queries cached.
        """
        items = [
            WarmUpItem(
                key=query_cache_key(["customer", customer_id]),
                factory=lambda: loaders.fetch_customer_config(customer_id),
                tags=list(CUSTOMER_TAGS),
            ),
            WarmUpItem(
                key=query_cache_key(["fleet", customer_id]),
                factory=lambda: loaders.fetch_fleet_data(customer_id),
                tags=["fleet", "vehicles"],
            ),
            WarmUpItem(
                key=query_cache_key(["maintenance", customer_id]),
                factory=lambda: loaders.fetch_maintenance_data(customer_id),
                tags=["maintenance"],
            ),
        ]
        loaded = await self.registry.api.warm_up(items)
        logger.info("Warmed %d queries for customer %s", loaded, customer_id)
        return loaded

    def cache_stats(self) -> dict[str, CacheStats]:
        return {"api": self.registry.api.get_stats(), "app": self.registry.app.get_stats()}

    def clear_all_caches(self) -> None:
        self.registry.api.clear()
        self.registry.app.clear()
