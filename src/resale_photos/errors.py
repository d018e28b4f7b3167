"""Exceptions raised by the photo URL cache."""


class PhotoCacheError(Exception):
    """Base error for the photo URL cache."""


class StoreUnavailableError(PhotoCacheError):
    """The persistent URL store could not be opened."""


class UrlResolutionError(PhotoCacheError):
    """A storage path could not be resolved and no cached URL was available."""

    def __init__(self, key: str, message: str):
        super().__init__(f"Cannot resolve {key!r}: {message}")
        self.key = key
