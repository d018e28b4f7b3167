"""Storage layer: URL resolvers, SQLite URL store, and HTTP prefetch."""

from .prefetch import HttpPrefetcher
from .resolvers import (
    PresignedUrlResolver,
    PublicUrlResolver,
    R2Client,
    UrlResolver,
    build_resolver,
)
from .store import PersistentStore

__all__ = [
    "HttpPrefetcher",
    "PersistentStore",
    "PresignedUrlResolver",
    "PublicUrlResolver",
    "R2Client",
    "UrlResolver",
    "build_resolver",
]
