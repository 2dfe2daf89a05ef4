from fleetcache.models.cache import CacheConfig, CacheEntry, CacheSnapshot, CacheStats
from fleetcache.models.enums import ErrorSeverity, ErrorType, RecoveryStrategy
from fleetcache.models.errors import ClassifiedError

__all__ = [
    "CacheConfig",
    "CacheEntry",
    "CacheSnapshot",
    "CacheStats",
    "ClassifiedError",
    "ErrorSeverity",
    "ErrorType",
    "RecoveryStrategy",
]
