from typing import Any

from pydantic import BaseModel, Field


class CacheEntry(BaseModel):
    key: str
    value: Any = None
    # Set on write and refreshed on every successful read (the LRU clock)
    timestamp: float
    ttl: float
    tags: set[str] = Field(default_factory=set)
    metadata: dict[str, Any] | None = None

    def is_expired(self, now: float) -> bool:
        """Return True once more than ``ttl`` seconds have passed since ``timestamp``."""
        return now - self.timestamp > self.ttl


class CacheConfig(BaseModel):
    default_ttl: float = Field(default=5 * 60, gt=0)
    max_size: int = Field(default=1000, gt=0)
    persist_to_disk: bool = False
    storage_key: str = "cache_manager_data"
    cleanup_interval: float = Field(default=60.0, gt=0)
    compression_enabled: bool = False
    encryption_enabled: bool = False


class CacheStats(BaseModel):
    hits: int = 0
    misses: int = 0
    evictions: int = 0
    total_entries: int = 0
    # Approximate bytes (two per serialized character); only useful for trends
    memory_usage: int = 0
    # Percentage in [0, 100]
    hit_rate: float = 0.0


class CacheSnapshot(BaseModel):
    """Serialized form of a whole cache, as written by ``export_json``.

    Only ``entries`` is read back on import, so the other fields may be omitted.
    """

    config: CacheConfig = Field(default_factory=CacheConfig)
    stats: CacheStats = Field(default_factory=CacheStats)
    entries: list[CacheEntry]
    timestamp: float = 0.0
