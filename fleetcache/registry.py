"""Composition root for the application's cache instances."""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from fleetcache.cache.manager import CacheManager
from fleetcache.config import Settings
from fleetcache.models.cache import CacheConfig, CacheStats
from fleetcache.storage.file_store import FileStore, KeyValueStore

logger = logging.getLogger(__name__)

APP_STORAGE_KEY = "app_cache_data"
USER_STORAGE_KEY = "user_cache_data"


@dataclass
class CacheRegistry:
    """The three application caches, constructed once and passed to consumers.

    ``api`` holds short-lived API responses in memory only; ``app`` holds
    general application state and ``user`` holds user/session data, both
    persisted under distinct storage keys.
    """

    api: CacheManager[Any]
    app: CacheManager[Any]
    user: CacheManager[Any]

    def caches(self) -> dict[str, CacheManager[Any]]:
        return {"api": self.api, "app": self.app, "user": self.user}

    def start(self) -> None:
        """Start the background sweep of every cache on the running loop."""
        for cache in self.caches().values():
            cache.start()

    def stop(self) -> None:
        """Stop every background sweep. Entries and persisted snapshots are kept."""
        for cache in self.caches().values():
            cache.stop()

    def stats(self) -> dict[str, CacheStats]:
        return {name: cache.get_stats() for name, cache in self.caches().items()}


def build_registry(
    settings: Settings,
    *,
    store: KeyValueStore | None = None,
    clock: Callable[[], float] = time.time,
) -> CacheRegistry:
    """Create the application caches from *settings*.

    Args:
        settings: Application settings (TTLs, sizes, paths, secret).
        store: Persistence store for the ``app`` and ``user`` caches.
            Defaults to a :class:`FileStore` under ``settings.cache_dir``.
        clock: Time source shared by all caches.
    """
    if store is None:
        store = FileStore(settings.cache_dir, secret=settings.cache_secret)

    persisted = {
        "persist_to_disk": True,
        "compression_enabled": settings.cache_compress_snapshots,
        "encryption_enabled": settings.encrypts_snapshots,
        "cleanup_interval": settings.cache_cleanup_interval,
    }

    api = CacheManager(
        CacheConfig(
            default_ttl=settings.api_cache_ttl,
            max_size=settings.api_cache_max_size,
            cleanup_interval=settings.cache_cleanup_interval,
        ),
        clock=clock,
        name="api",
    )
    app = CacheManager(
        CacheConfig(
            default_ttl=settings.app_cache_ttl,
            max_size=settings.app_cache_max_size,
            storage_key=APP_STORAGE_KEY,
            **persisted,
        ),
        store=store,
        clock=clock,
        name="app",
    )
    user = CacheManager(
        CacheConfig(
            default_ttl=settings.user_cache_ttl,
            max_size=settings.user_cache_max_size,
            storage_key=USER_STORAGE_KEY,
            **persisted,
        ),
        store=store,
        clock=clock,
        name="user",
    )
    logger.info(
        "Caches ready (api=%d, app=%d, user=%d entries restored)",
        api.size, app.size, user.size,
    )
    return CacheRegistry(api=api, app=app, user=user)
