"""Shared fixtures for resale-photos tests."""

import asyncio
from pathlib import Path
from typing import Optional

import pytest

from resale_photos.models import CacheEntry

CDN = "https://cdn.example"


class CountingResolver:
    """Deterministic resolver that records every call."""

    def __init__(self, base_url: str = CDN):
        self.base_url = base_url
        self.calls: list[str] = []
        self.fail = False

    def __call__(self, key: str) -> str:
        self.calls.append(key)
        if self.fail:
            raise ConnectionError("storage API unreachable")
        return f"{self.base_url}/{key}"

    @property
    def call_count(self) -> int:
        return len(self.calls)


class FakeClock:
    """Manually advanced clock returning UNIX seconds."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class MemoryStore:
    """In-memory stand-in for PersistentStore.

    ``delays`` maps keys to seconds ``get`` sleeps before answering;
    ``fail_with`` makes every operation raise.
    """

    def __init__(self, delays: Optional[dict[str, float]] = None):
        self.entries: dict[str, CacheEntry] = {}
        self.delays = delays or {}
        self.fail_with: Optional[Exception] = None
        self.available = True
        self.closed = False

    def _check(self) -> None:
        if self.fail_with is not None:
            raise self.fail_with

    async def get(self, key: str) -> Optional[CacheEntry]:
        self._check()
        # Row is read before the delay, like a query answered before a later clear
        entry = self.entries.get(key)
        await asyncio.sleep(self.delays.get(key, 0))
        return entry

    async def put(self, entry: CacheEntry) -> None:
        self._check()
        self.entries[entry.key] = entry

    async def delete(self, key: str) -> None:
        self._check()
        self.entries.pop(key, None)

    async def clear(self) -> None:
        self._check()
        self.entries.clear()

    async def close(self) -> None:
        self.closed = True


@pytest.fixture(autouse=True)
def isolated_env(tmp_path: Path, monkeypatch):
    """Point config lookups at a temporary directory and drop RESALE_* overrides."""
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
    for var in (
        "RESALE_STORAGE_URL",
        "RESALE_BUCKET",
        "RESALE_R2_ENDPOINT_URL",
        "RESALE_R2_REGION",
        "RESALE_CACHE_TTL",
    ):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def resolver() -> CountingResolver:
    """Counting resolver mapping keys below https://cdn.example."""
    return CountingResolver()


@pytest.fixture
def clock() -> FakeClock:
    """Controllable clock."""
    return FakeClock()


@pytest.fixture
def memory_store() -> MemoryStore:
    """In-memory persistent tier."""
    return MemoryStore()


@pytest.fixture
def tmp_db_path(tmp_path: Path) -> Path:
    """Temporary SQLite database path."""
    return tmp_path / "db" / "image_cache.db"


@pytest.fixture
def make_memory_store():
    """Factory for in-memory stores with per-key read delays."""
    return MemoryStore
