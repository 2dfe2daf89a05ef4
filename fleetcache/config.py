from pathlib import Path

from pydantic import computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables and .env file.

    Durations are in seconds. Each of the three application caches gets its
    own TTL and size cap; the ``app`` and ``user`` caches are persisted to
    ``cache_dir`` and encrypted when ``CACHE_SECRET`` is set.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Secret for encrypting persisted snapshots (optional)
    cache_secret: str | None = None

    # Short-lived API response cache
    api_cache_ttl: float = 2 * 60
    api_cache_max_size: int = 200

    # General application state
    app_cache_ttl: float = 5 * 60
    app_cache_max_size: int = 500

    # User/session data
    user_cache_ttl: float = 30 * 60
    user_cache_max_size: int = 100

    # Persisted snapshot encoding
    cache_compress_snapshots: bool = False

    # Background sweep period for expired entries
    cache_cleanup_interval: float = 60.0

    # Paths & logging: default is <project_root>/data so it works
    # regardless of the process working directory.
    data_dir: Path = Path(__file__).resolve().parent.parent / "data"
    log_level: str = "INFO"

    @computed_field  # type: ignore[prop-decorator]
    @property
    def cache_dir(self) -> Path:
        return self.data_dir / "cache"

    @property
    def encrypts_snapshots(self) -> bool:
        """Return True when persisted snapshots should be encrypted."""
        return bool(self.cache_secret)


_settings: Settings | None = None


def get_settings() -> Settings:
    """Return the cached Settings singleton. Created on first call."""
    global _settings  # noqa: PLW0603
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Clear the cached settings. Used in tests."""
    global _settings  # noqa: PLW0603
    _settings = None
