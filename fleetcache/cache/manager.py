"""In-memory TTL cache with tag/pattern invalidation, LRU eviction and snapshot persistence."""

import asyncio
import inspect
import logging
import re
import time
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from operator import attrgetter
from typing import Any, Generic, TypeVar

from pydantic import ValidationError
from pydantic_core import PydanticSerializationError, to_json

from fleetcache.errors.classifier import classify
from fleetcache.models.cache import CacheConfig, CacheEntry, CacheSnapshot, CacheStats
from fleetcache.storage.file_store import KeyValueStore, StorageError

logger = logging.getLogger(__name__)

V = TypeVar("V")

Factory = Callable[[], Awaitable[V] | V]

_PERSISTENCE_ERRORS = (StorageError, OSError, PydanticSerializationError)


@dataclass
class WarmUpItem(Generic[V]):
    """One key to pre-populate via :meth:`CacheManager.warm_up`."""

    key: str
    factory: Factory[V]
    ttl: float | None = None
    tags: list[str] | None = None
    metadata: dict[str, Any] | None = None


class CacheManager(Generic[V]):
    """TTL-based key/value cache with tags, LRU eviction and optional persistence.

    Expired entries are removed lazily by ``get``/``has`` and periodically by
    a background sweep task (started on the running event loop, or later via
    :meth:`start`). Eviction scans every entry for the oldest ``timestamp``,
    which is O(n) per eviction and intended for caches of at most a few
    thousand entries.

    When ``config.persist_to_disk`` is set and a *store* is supplied, every
    mutation writes the full :meth:`export_json` snapshot under
    ``config.storage_key`` and construction restores it. Persistence failures
    are logged and otherwise ignored.

    Args:
        config: Cache configuration. Defaults to ``CacheConfig()``.
        store: Key-value store for persisted snapshots.
        clock: Returns the current time in epoch seconds.
        name: Human-readable name for logging.
    """

    def __init__(
        self,
        config: CacheConfig | None = None,
        *,
        store: KeyValueStore | None = None,
        clock: Callable[[], float] = time.time,
        name: str = "cache",
    ) -> None:
        self.config = config or CacheConfig()
        self.name = name
        self._store = store
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._cleanup_task: asyncio.Task | None = None

        self.start()

        if self.config.persist_to_disk:
            self._load_persisted()

    # ── Reads ────────────────────────────────────────────────────────────

    def _lookup(self, key: str) -> CacheEntry | None:
        """Return the live entry for *key*, counting a hit or a miss."""
        entry = self._entries.get(key)
        if entry is None:
            self._misses += 1
            return None

        now = self._clock()
        if entry.is_expired(now):
            del self._entries[key]
            self._misses += 1
            return None

        entry.timestamp = now
        self._hits += 1
        return entry

    def get(self, key: str, default: V | None = None) -> V | None:
        """Return the cached value for *key*, or *default* if missing or expired.

        A hit refreshes the entry's timestamp, so eviction order is
        least-recently-read.
        """
        entry = self._lookup(key)
        if entry is None:
            return default
        return entry.value

    async def get_or_set(
        self,
        key: str,
        factory: Factory[V],
        *,
        ttl: float | None = None,
        tags: Iterable[str] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> V:
        """Return the cached value, or compute it with *factory* and cache it.

        *factory* may be sync or async. Its exceptions propagate. Concurrent
        calls for the same missing key each invoke *factory*.
        """
        entry = self._lookup(key)
        if entry is not None:
            return entry.value

        value = factory()
        if inspect.isawaitable(value):
            value = await value
        self.set(key, value, ttl=ttl, tags=tags, metadata=metadata)
        return value

    def has(self, key: str) -> bool:
        """Return True if *key* is present and fresh.

        Expired entries are removed, but neither the timestamp nor the
        hit/miss counters are touched.
        """
        entry = self._entries.get(key)
        if entry is None:
            return False
        if entry.is_expired(self._clock()):
            del self._entries[key]
            return False
        return True

    def keys(self) -> list[str]:
        """Return every stored key, including expired entries not yet swept."""
        return list(self._entries)

    def get_by_tag(self, tag: str) -> list[tuple[str, V]]:
        """Return ``(key, value)`` pairs of fresh entries carrying *tag*."""
        now = self._clock()
        return [
            (key, entry.value)
            for key, entry in self._entries.items()
            if tag in entry.tags and not entry.is_expired(now)
        ]

    # ── Writes ───────────────────────────────────────────────────────────

    def set(
        self,
        key: str,
        value: V,
        *,
        ttl: float | None = None,
        tags: Iterable[str] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Store *value* under *key*.

        A falsy *ttl* falls back to ``config.default_ttl``. When the cache is
        full one least-recently-used entry is evicted first, even if *key* is
        already present.
        """
        entry = CacheEntry(
            key=key,
            value=value,
            timestamp=self._clock(),
            ttl=ttl or self.config.default_ttl,
            tags=set(tags or ()),
            metadata=metadata,
        )

        if len(self._entries) >= self.config.max_size:
            self._evict_lru()

        self._entries[key] = entry
        self._persist()

    def delete(self, key: str) -> bool:
        """Remove a specific key. Returns True if the key existed."""
        if self._entries.pop(key, None) is None:
            return False
        self._persist()
        return True

    def clear(self) -> None:
        """Remove all entries and any persisted snapshot. Statistics are kept."""
        self._entries.clear()
        if self.config.persist_to_disk:
            self._clear_persisted()

    def invalidate_by_tags(self, tags: Iterable[str]) -> int:
        """Remove every entry sharing at least one tag with *tags*."""
        targets = set(tags)
        doomed = [key for key, entry in self._entries.items() if entry.tags & targets]
        return self._remove_keys(doomed)

    def invalidate_by_pattern(self, pattern: str | re.Pattern[str]) -> int:
        """Remove every entry whose key matches *pattern* (``re.search`` semantics)."""
        regex = re.compile(pattern)
        doomed = [key for key in self._entries if regex.search(key)]
        return self._remove_keys(doomed)

    def cleanup(self) -> int:
        """Remove all expired entries. Returns the number removed."""
        now = self._clock()
        doomed = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        return self._remove_keys(doomed)

    async def warm_up(self, items: Iterable[WarmUpItem[V]]) -> int:
        """Run every factory concurrently and cache the ones that succeed.

        Failures are logged and skipped. Returns the number of keys loaded.
        """

        async def _load(item: WarmUpItem[V]) -> bool:
            try:
                value = item.factory()
                if inspect.isawaitable(value):
                    value = await value
            except Exception as exc:  # noqa: BLE001
                logger.warning(
                    "Failed to warm up cache %s for key %r (%s): %s",
                    self.name, item.key, classify(exc).type, exc,
                )
                return False
            self.set(item.key, value, ttl=item.ttl, tags=item.tags, metadata=item.metadata)
            return True

        results = await asyncio.gather(*(_load(item) for item in items))
        loaded = sum(results)
        logger.info("Warmed up cache %s: %d of %d keys loaded", self.name, loaded, len(results))
        return loaded

    def _remove_keys(self, keys: list[str]) -> int:
        for key in keys:
            del self._entries[key]
        if keys:
            self._persist()
        return len(keys)

    def _evict_lru(self) -> None:
        if not self._entries:
            return
        # min() keeps the first of equal timestamps, i.e. the earliest inserted
        victim = min(self._entries.values(), key=attrgetter("timestamp"))
        del self._entries[victim.key]
        self._evictions += 1
        logger.debug("Evicted %r from cache %s", victim.key, self.name)

    # ── Statistics ───────────────────────────────────────────────────────

    @property
    def hit_rate(self) -> float:
        total = self._hits + self._misses
        if total == 0:
            return 0.0
        return (self._hits / total) * 100

    @property
    def size(self) -> int:
        """Current number of stored entries, expired or not."""
        return len(self._entries)

    def get_stats(self) -> CacheStats:
        """Return a snapshot of the cache counters."""
        return CacheStats(
            hits=self._hits,
            misses=self._misses,
            evictions=self._evictions,
            total_entries=len(self._entries),
            memory_usage=self._estimate_memory_usage(),
            hit_rate=self.hit_rate,
        )

    def _estimate_memory_usage(self) -> int:
        # Two bytes per serialized character; rough, for trending only
        total = 0
        for entry in self._entries.values():
            try:
                total += len(to_json(entry.model_dump(), fallback=str).decode()) * 2
            except PydanticSerializationError:
                # Circular values cannot be serialized; count the key alone
                total += len(entry.key) * 2
        return total

    # ── Snapshots ────────────────────────────────────────────────────────

    def export_json(self) -> str:
        """Serialize config, statistics and every stored entry (expired included).

        Raises:
            PydanticSerializationError: If a cached value is not JSON-serializable.
        """
        snapshot = CacheSnapshot(
            config=self.config,
            stats=self.get_stats(),
            entries=list(self._entries.values()),
            timestamp=self._clock(),
        )
        return snapshot.model_dump_json(indent=2)

    def import_json(self, data: str | bytes) -> int:
        """Replace the entries with the fresh entries of an exported snapshot.

        When the snapshot holds more fresh entries than ``max_size``, only the
        most recently used ones are kept. Malformed input is logged and leaves
        the cache unchanged. Returns the number of entries loaded.
        """
        try:
            snapshot = CacheSnapshot.model_validate_json(data)
        except ValidationError as exc:
            logger.error("Failed to import data into cache %s: %s", self.name, exc)
            return 0

        now = self._clock()
        fresh = [entry for entry in snapshot.entries if not entry.is_expired(now)]
        if len(fresh) > self.config.max_size:
            # Stable sort: among equal timestamps the later entries survive
            fresh = sorted(fresh, key=attrgetter("timestamp"))[-self.config.max_size:]
        self._entries = {entry.key: entry for entry in fresh}
        logger.debug(
            "Imported %d of %d entries into cache %s",
            len(self._entries), len(snapshot.entries), self.name,
        )
        return len(self._entries)

    # ── Configuration & lifecycle ────────────────────────────────────────

    def update_config(self, **changes: Any) -> None:
        """Merge *changes* into the configuration.

        Changing ``default_ttl`` or ``cleanup_interval`` restarts the sweep
        task. Lowering ``max_size`` below the current size evicts LRU entries
        until the cache fits. TTLs of existing entries are not affected.

        Raises:
            pydantic.ValidationError: If the merged configuration is invalid.
        """
        self.config = CacheConfig.model_validate({**self.config.model_dump(), **changes})
        if len(self._entries) > self.config.max_size:
            while len(self._entries) > self.config.max_size:
                self._evict_lru()
            self._persist()
        if "default_ttl" in changes or "cleanup_interval" in changes:
            self.stop()
            self.start()

    def start(self) -> bool:
        """Start the periodic sweep on the running event loop.

        Returns True if the sweep is running afterwards, False when there is
        no running loop to schedule it on.
        """
        if self._cleanup_task is not None and not self._cleanup_task.done():
            return True
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop; sweep for cache %s deferred", self.name)
            return False
        self._cleanup_task = loop.create_task(
            self._cleanup_loop(self.config.cleanup_interval),
            name=f"cache-cleanup-{self.name}",
        )
        return True

    def stop(self) -> None:
        """Cancel the periodic sweep. Entries are left in place."""
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            self._cleanup_task = None

    @property
    def sweeping(self) -> bool:
        return self._cleanup_task is not None and not self._cleanup_task.done()

    def destroy(self) -> None:
        """Stop the sweep and clear all entries. The instance is not reusable afterwards."""
        self.stop()
        self.clear()

    async def _cleanup_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            removed = self.cleanup()
            if removed:
                logger.debug("Swept %d expired entries from cache %s", removed, self.name)

    # ── Persistence ──────────────────────────────────────────────────────

    def _persist(self) -> None:
        if not self.config.persist_to_disk or self._store is None:
            return
        try:
            self._store.set_item(
                self.config.storage_key,
                self.export_json(),
                compress=self.config.compression_enabled,
                encrypt=self.config.encryption_enabled,
            )
        except _PERSISTENCE_ERRORS as exc:
            logger.warning("Failed to persist cache %s: %s", self.name, exc)

    def _load_persisted(self) -> None:
        if self._store is None:
            logger.warning(
                "Cache %s has persist_to_disk set but no store; running memory-only",
                self.name,
            )
            return
        try:
            stored = self._store.get_item(self.config.storage_key)
        except _PERSISTENCE_ERRORS as exc:
            logger.warning("Failed to load persisted cache %s: %s", self.name, exc)
            return
        if stored:
            self.import_json(stored)

    def _clear_persisted(self) -> None:
        if self._store is None:
            return
        try:
            self._store.remove_item(self.config.storage_key)
        except _PERSISTENCE_ERRORS as exc:
            logger.warning("Failed to clear persisted cache %s: %s", self.name, exc)
