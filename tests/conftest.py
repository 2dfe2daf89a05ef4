import pytest

from fleetcache.cache.manager import CacheManager
from tests.factories import FakeClock


@pytest.fixture(autouse=True)
def _set_test_env(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    """Keep settings isolated from the developer's environment."""
    monkeypatch.setenv("DATA_DIR", str(tmp_path / "data"))
    monkeypatch.delenv("CACHE_SECRET", raising=False)
    monkeypatch.delenv("LOG_LEVEL", raising=False)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
async def make_cache():
    """Build caches inside the running loop and stop their sweeps afterwards."""
    created: list[CacheManager] = []

    def _make(*args, **kwargs) -> CacheManager:
        cache = CacheManager(*args, **kwargs)
        created.append(cache)
        return cache

    yield _make
    for cache in created:
        cache.stop()
