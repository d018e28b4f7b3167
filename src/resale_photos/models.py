"""Data models for the photo URL cache.

Provides dataclasses for cached URL entries and cache counters.
"""

from dataclasses import dataclass


@dataclass
class CacheEntry:
    """A resolved URL for one storage path.

    Attributes:
        key: Storage path of the photo (e.g., "lots/42/front.jpg")
        url: Resolved, fetchable URL
        resolved_at: UNIX timestamp (seconds) when the URL was resolved
    """

    key: str
    url: str
    resolved_at: float

    def is_fresh(self, now: float, ttl_seconds: float) -> bool:
        """Check whether the entry is still inside its freshness window.

        Args:
            now: Current UNIX timestamp (seconds)
            ttl_seconds: Freshness window in seconds

        Returns:
            True if the entry can be served without re-resolving
        """
        return now - self.resolved_at < ttl_seconds

    @classmethod
    def from_row(cls, row: tuple) -> "CacheEntry":
        """Create a CacheEntry from an ``image_urls`` row.

        Args:
            row: Tuple of (path, url, resolved_at)

        Returns:
            CacheEntry instance
        """
        return cls(key=row[0], url=row[1], resolved_at=float(row[2]))

    def to_row(self) -> tuple:
        """Convert to a tuple suitable for the ``image_urls`` table."""
        return (self.key, self.url, self.resolved_at)


@dataclass
class CacheStats:
    """Counters describing how requests were served.

    Attributes:
        memory_hits: Fresh entries served from memory
        store_hits: Fresh entries promoted from the persistent store
        resolver_calls: Calls made to the URL resolver
        stale_fallbacks: Stale URLs served because the resolver failed
        store_errors: Persistent store operations that failed
    """

    memory_hits: int = 0
    store_hits: int = 0
    resolver_calls: int = 0
    stale_fallbacks: int = 0
    store_errors: int = 0

    @property
    def hit_ratio(self) -> float:
        """Fraction of lookups answered without calling the resolver."""
        hits = self.memory_hits + self.store_hits
        total = hits + self.resolver_calls
        if total == 0:
            return 0.0
        return hits / total
