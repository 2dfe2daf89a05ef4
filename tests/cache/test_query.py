"""Tests for fleetcache.cache.query: cached queries, invalidation and warm-up."""

from unittest.mock import AsyncMock

import pytest

from fleetcache.cache.query import (
    QueryCacheManager,
    cached_query,
    default_query_tags,
    query_cache_key,
)
from fleetcache.config import Settings
from fleetcache.registry import build_registry
from tests.factories import FakeClock


@pytest.fixture
async def registry(tmp_path):
    registry = build_registry(
        Settings(_env_file=None, data_dir=tmp_path), clock=FakeClock(),
    )
    yield registry
    registry.stop()


class _Loaders:
    def __init__(self) -> None:
        self.fetch_customer_config = AsyncMock(return_value={"id": "c-1", "name": "Kerry"})
        self.fetch_fleet_data = AsyncMock(return_value=[{"unit": "101"}])
        self.fetch_maintenance_data = AsyncMock(side_effect=ConnectionError("down"))


class TestQueryCacheKey:
    def test_compact_json(self):
        assert query_cache_key(["fleet", "c-1"]) == 'query_["fleet","c-1"]'

    def test_non_json_parts_are_stringified(self):
        assert query_cache_key(["unit", 101, None]) == 'query_["unit",101,null]'

    def test_default_tags(self):
        assert default_query_tags(["fleet", "c-1"]) == ["query_fleet"]
        assert default_query_tags([]) == []


class TestCachedQuery:
    async def test_second_call_served_from_cache(self, registry):
        fetch = AsyncMock(return_value=[{"unit": "101"}])
        run = cached_query(registry.api, fetch)
        assert await run(["fleet", "c-1"]) == [{"unit": "101"}]
        assert await run(["fleet", "c-1"]) == [{"unit": "101"}]
        fetch.assert_awaited_once_with(["fleet", "c-1"])

    async def test_default_tag_and_metadata(self, registry):
        run = cached_query(registry.api, AsyncMock(return_value=1))
        await run(["fleet", "c-1"])
        entry = registry.api._entries['query_["fleet","c-1"]']
        assert entry.tags == {"query_fleet"}
        assert entry.metadata["query_key"] == 'query_["fleet","c-1"]'

    async def test_custom_cache_key_and_tags(self, registry):
        run = cached_query(
            registry.api, AsyncMock(return_value=1), cache_key="fleet_summary", tags=["fleet"],
        )
        await run(["fleet", "c-1"])
        assert registry.api.get_by_tag("fleet") == [("fleet_summary", 1)]


class TestQueryCacheManager:
    async def test_invalidate_fleet_data(self, registry):
        registry.api.set("a", 1, tags=["vehicles"])
        registry.api.set("b", 2, tags=["maintenance"])
        registry.api.set("c", 3, tags=["customer"])
        assert QueryCacheManager(registry).invalidate_fleet_data() == 2
        assert registry.api.keys() == ["c"]

    async def test_invalidate_customer_and_user_data(self, registry):
        registry.api.set("a", 1, tags=["config"])
        registry.api.set("b", 2, tags=["auth"])
        manager = QueryCacheManager(registry)
        assert manager.invalidate_customer_data() == 1
        assert manager.invalidate_user_data() == 1
        assert registry.api.keys() == []

    async def test_invalidate_by_pattern(self, registry):
        registry.api.set('query_["fleet","c-1"]', 1)
        registry.api.set('query_["customer","c-1"]', 2)
        assert QueryCacheManager(registry).invalidate_by_pattern(r'^query_\["fleet"') == 1

    async def test_prefetch_and_cache(self, registry):
        manager = QueryCacheManager(registry)
        data = await manager.prefetch_and_cache(
            ["maintenance", "c-1"], AsyncMock(return_value=["oil change"]), tags=["maintenance"],
        )
        assert data == ["oil change"]
        assert registry.api.get('query_["maintenance","c-1"]') == ["oil change"]

    async def test_warm_up_cache_skips_failing_loader(self, registry):
        loaders = _Loaders()
        loaded = await QueryCacheManager(registry).warm_up_cache("c-1", loaders)
        assert loaded == 2
        assert registry.api.get('query_["customer","c-1"]') == {"id": "c-1", "name": "Kerry"}
        assert registry.api.get_by_tag("vehicles") == [('query_["fleet","c-1"]', [{"unit": "101"}])]
        assert not registry.api.has('query_["maintenance","c-1"]')
        loaders.fetch_fleet_data.assert_awaited_once_with("c-1")

    async def test_cache_stats(self, registry):
        registry.api.get("missing")
        stats = QueryCacheManager(registry).cache_stats()
        assert set(stats) == {"api", "app"}
        assert stats["api"].misses == 1

    async def test_clear_all_caches_leaves_user_cache(self, registry):
        registry.api.set("a", 1)
        registry.app.set("b", 2)
        registry.user.set("c", 3)
        QueryCacheManager(registry).clear_all_caches()
        assert registry.api.keys() == []
        assert registry.app.keys() == []
        assert registry.user.keys() == ["c"]
