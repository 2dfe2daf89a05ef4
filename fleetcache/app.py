import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from logging.handlers import RotatingFileHandler
from pathlib import Path

from fleetcache.config import Settings, get_settings
from fleetcache.registry import CacheRegistry, build_registry

logger = logging.getLogger(__name__)


def setup_logging(log_level: str, data_dir: Path) -> None:
    """Configure logging with file rotation and console output.

    Args:
        log_level: Logging level string (DEBUG, INFO, WARNING, ERROR).
        data_dir: Base data directory; logs go to data_dir/logs/fleetcache.log.
    """
    level = getattr(logging, log_level.upper(), logging.INFO)
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    formatter = logging.Formatter(
        "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    # Console handler: exact type check avoids matching subclasses (FileHandler, etc.)
    if not any(type(h) is logging.StreamHandler for h in root_logger.handlers):
        console = logging.StreamHandler()
        console.setLevel(level)
        console.setFormatter(formatter)
        root_logger.addHandler(console)

    log_dir = data_dir / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "fleetcache.log"

    if not any(isinstance(h, RotatingFileHandler) for h in root_logger.handlers):
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=5 * 1024 * 1024,  # 5 MB
            backupCount=3,
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)


def initialize(settings: Settings | None = None) -> CacheRegistry:
    """Set up directories and logging, then build the application caches."""
    settings = settings or get_settings()

    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.cache_dir.mkdir(parents=True, exist_ok=True)

    setup_logging(settings.log_level, settings.data_dir)

    registry = build_registry(settings)
    logger.info("fleetcache initialized (data dir %s)", settings.data_dir)
    return registry


@asynccontextmanager
async def cache_lifespan(settings: Settings | None = None) -> AsyncIterator[CacheRegistry]:
    """Provide the application caches with their background sweeps running.

    Sweeps are stopped on exit; persisted snapshots are left in place for
    the next run.
    """
    registry = initialize(settings)
    registry.start()
    try:
        yield registry
    finally:
        registry.stop()
        logger.info("Cache sweeps stopped")
