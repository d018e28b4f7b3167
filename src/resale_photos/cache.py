"""Two-tier cache of resolved photo URLs.

Maps article photo storage paths to fetchable URLs.  Lookups go to an
in-memory dict first, then to the SQLite store, and only then to the URL
resolver.  Newly resolved URLs are written through to both tiers.

There are two lookup paths:

* ``resolve`` is the complete path.  It may suspend on the store and sees
  URLs persisted by earlier sessions.
* ``resolve_sync`` never suspends.  It only reads memory, so right after
  start-up it can miss a persisted URL and call the resolver again.  Use it
  for first paint and follow up with ``resolve``.
"""

import asyncio
import dataclasses
import logging
import time
from typing import Awaitable, Callable, Coroutine, Iterable, Optional

from .config import DEFAULT_TTL_SECONDS, CacheConfig
from .errors import StoreUnavailableError, UrlResolutionError
from .models import CacheEntry, CacheStats
from .storage.prefetch import HttpPrefetcher
from .storage.resolvers import UrlResolver, build_resolver
from .storage.store import PersistentStore

logger = logging.getLogger(__name__)

# (operation, key or None, exception) -> None
StoreErrorHandler = Callable[[str, Optional[str], Exception], None]


def log_store_error(operation: str, key: Optional[str], exc: Exception) -> None:
    """Default store error policy: log and carry on with memory only."""
    target = f" for {key!r}" if key is not None else ""
    logger.warning(f"URL store {operation} failed{target}: {exc}")


def raise_store_error(operation: str, key: Optional[str], exc: Exception) -> None:
    """Strict store error policy: surface the failure to the caller."""
    raise exc


class ImageUrlCache:
    """Resolved-URL cache with a memory tier and an optional persistent tier.

    Create one instance at application start-up and share it.  Call
    ``clear`` on logout or account switch and ``close`` on shutdown.

    Attributes:
        ttl_seconds: Freshness window for resolved URLs
    """

    def __init__(
        self,
        resolver: UrlResolver,
        store: Optional[PersistentStore] = None,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
        on_store_error: StoreErrorHandler = log_store_error,
        prefetcher: Optional[HttpPrefetcher] = None,
    ):
        """Initialize the cache.

        Args:
            resolver: Callable mapping a storage path to a URL
            store: Persistent tier; None caches in memory only
            ttl_seconds: Freshness window in seconds
            clock: Source of the current UNIX time in seconds
            on_store_error: Policy called when a store operation fails
            prefetcher: Used by ``preload`` to warm up URLs
        """
        if ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be positive, got {ttl_seconds}")

        self.ttl_seconds = ttl_seconds
        self._resolver = resolver
        self._store = store
        self._clock = clock
        self._on_store_error = on_store_error
        self._prefetcher = prefetcher

        self._entries: dict[str, CacheEntry] = {}
        self._stats = CacheStats()
        self._pending_writes: set[asyncio.Task] = set()
        self._pending_prefetches: set[asyncio.Task] = set()

        # Bumped by clear() and invalidate(key); store reads that straddle a
        # bump are discarded
        self._generation = 0
        self._key_generations: dict[str, int] = {}

    @classmethod
    def from_config(cls, config: CacheConfig, **kwargs) -> "ImageUrlCache":
        """Build a cache with the resolver, store and prefetcher from config.

        Args:
            config: Cache configuration
            **kwargs: Extra constructor arguments (e.g., clock, on_store_error)

        Returns:
            ImageUrlCache instance
        """
        store = PersistentStore(config.db_path) if config.persistent else None
        return cls(
            build_resolver(config),
            store=store,
            ttl_seconds=config.ttl_seconds,
            prefetcher=HttpPrefetcher(timeout=config.preload_timeout),
            **kwargs,
        )

    @property
    def store(self) -> Optional[PersistentStore]:
        return self._store

    @property
    def stats(self) -> CacheStats:
        """Snapshot of the cache counters."""
        return dataclasses.replace(self._stats)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    async def __aenter__(self) -> "ImageUrlCache":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def resolve(self, key: str) -> str:
        """Return a URL for a storage path, consulting both tiers.

        Args:
            key: Storage path of the photo

        Returns:
            Fresh URL, or a stale one if the resolver failed

        Raises:
            UrlResolutionError: If the resolver failed and nothing is cached
        """
        now = self._clock()
        entry = self._entries.get(key)
        promoted = False
        remember = True

        if entry is None:
            generation = self._generation_of(key)
            entry = await self._store_call("read", key, lambda: self._store.get(key))
            if self._generation_of(key) != generation:
                # Cleared or invalidated during the read; the row may predate it
                entry = None
                remember = False
            elif entry is not None:
                self._entries[key] = entry
                promoted = True

        if entry is not None and entry.is_fresh(now, self.ttl_seconds):
            if promoted:
                self._stats.store_hits += 1
            else:
                self._stats.memory_hits += 1
            return entry.url

        fresh = self._refresh(key, now, stale=entry, remember=remember)
        if remember and fresh is not entry:
            await self._store_call("write", key, lambda: self._store.put(fresh))
        return fresh.url

    def resolve_sync(self, key: str) -> str:
        """Return a URL for a storage path without suspending.

        Only the memory tier is read.  On a miss the resolved URL is stored in
        memory and a persistent write is started in the background when an
        event loop is running; it is not awaited.

        Args:
            key: Storage path of the photo

        Returns:
            Fresh URL, or a stale one if the resolver failed

        Raises:
            UrlResolutionError: If the resolver failed and nothing is in memory
        """
        now = self._clock()
        entry = self._entries.get(key)

        if entry is not None and entry.is_fresh(now, self.ttl_seconds):
            self._stats.memory_hits += 1
            return entry.url

        fresh = self._refresh(key, now, stale=entry)
        if fresh is not entry and self._store is not None:
            self._spawn(
                self._store_call("write", key, lambda: self._store.put(fresh)),
                self._pending_writes,
            )
        return fresh.url

    async def resolve_many(self, keys: Iterable[str]) -> list[str]:
        """Resolve several storage paths concurrently.

        Returns:
            URLs in the same order as ``keys``
        """
        return list(await asyncio.gather(*(self.resolve(key) for key in keys)))

    async def invalidate(self, key: str) -> None:
        """Drop a storage path from both tiers.

        Pending background writes are awaited first.  If one of them failed
        under a strict store error policy, its error is raised after the key
        has been dropped.
        """
        errors = await self._drain(self._pending_writes)
        self._entries.pop(key, None)
        self._key_generations[key] = self._key_generations.get(key, 0) + 1
        await self._store_call("delete", key, lambda: self._store.delete(key))
        logger.debug(f"Invalidated {key!r}")
        if errors:
            raise errors[0]

    async def clear(self) -> None:
        """Drop every entry from both tiers.

        Pending background writes are awaited first.  If one of them failed
        under a strict store error policy, its error is raised after both
        tiers have been cleared.
        """
        errors = await self._drain(self._pending_writes)
        count = len(self._entries)
        self._entries.clear()
        self._generation += 1
        self._key_generations.clear()
        await self._store_call("clear", None, lambda: self._store.clear())
        logger.info(f"Cleared URL cache ({count} in-memory entries)")
        if errors:
            raise errors[0]

    async def preload(self, keys: Iterable[str]) -> list[str]:
        """Resolve storage paths and start fetching the photos behind them.

        Fetching happens in the background; use ``flush`` to wait for it.

        Returns:
            URLs in the same order as ``keys``
        """
        urls = await self.resolve_many(keys)
        if self._prefetcher is not None:
            for url in urls:
                self._spawn(self._prefetcher.fetch(url), self._pending_prefetches)
        return urls

    async def flush(self) -> None:
        """Wait for background store writes and prefetches to finish.

        Raises:
            Exception: The first error of a failed background write, once
                every pending task has finished
        """
        errors = await self._drain(self._pending_writes)
        errors += await self._drain(self._pending_prefetches)
        if errors:
            raise errors[0]

    async def close(self) -> None:
        """Flush pending work and release the store and HTTP client."""
        try:
            await self.flush()
        finally:
            if self._prefetcher is not None:
                await self._prefetcher.aclose()
            if self._store is not None:
                await self._store.close()

    def _generation_of(self, key: str) -> tuple[int, int]:
        return self._generation, self._key_generations.get(key, 0)

    def _refresh(
        self, key: str, now: float, stale: Optional[CacheEntry], remember: bool = True
    ) -> CacheEntry:
        """Call the resolver and, if ``remember`` is set, cache the result in memory.

        Returns the stale entry unchanged when the resolver fails and one exists.
        """
        self._stats.resolver_calls += 1
        try:
            url = self._resolver(key)
        except Exception as e:
            if stale is None:
                raise UrlResolutionError(key, str(e)) from e
            self._stats.stale_fallbacks += 1
            logger.warning(f"Resolver failed for {key!r}, serving stale URL: {e}")
            return stale

        entry = CacheEntry(key=key, url=url, resolved_at=now)
        if remember:
            self._entries[key] = entry
        return entry

    async def _store_call(self, operation: str, key: Optional[str], call: Callable[[], Awaitable]):
        """Run a store operation, applying the store error policy.

        Returns:
            The operation's result, or None if there is no usable store
        """
        if self._store is None or not self._store.available:
            return None

        try:
            return await call()
        except StoreUnavailableError:
            # Open failures are logged once by the store itself
            self._stats.store_errors += 1
            return None
        except Exception as e:
            self._stats.store_errors += 1
            self._on_store_error(operation, key, e)
            return None

    def _spawn(self, coro: Coroutine, pending: set[asyncio.Task]) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            logger.debug("No running event loop; skipped background task")
            return

        task = loop.create_task(coro)
        pending.add(task)
        task.add_done_callback(pending.discard)

    @staticmethod
    async def _drain(pending: set[asyncio.Task]) -> list[Exception]:
        """Await every pending task, including ones spawned meanwhile.

        Returns:
            Errors raised by the tasks, in completion batch order
        """
        errors = []
        while pending:
            batch = list(pending)
            pending.difference_update(batch)
            results = await asyncio.gather(*batch, return_exceptions=True)
            errors.extend(r for r in results if isinstance(r, Exception))
        return errors
