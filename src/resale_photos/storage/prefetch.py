"""HTTP warm-up of photo URLs."""

import logging
from typing import Optional

import httpx

logger = logging.getLogger(__name__)


class HttpPrefetcher:
    """Issues GET requests so photos are warm in CDN and HTTP caches.

    Failures are logged and never raised; prefetching is a hint only.
    """

    def __init__(self, timeout: float = 10.0, client: Optional[httpx.AsyncClient] = None):
        """Initialize the prefetcher.

        Args:
            timeout: Request timeout in seconds (ignored when client is given)
            client: Existing client to use; it is not closed by ``aclose``
        """
        self.timeout = timeout
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout, follow_redirects=True)

    async def fetch(self, url: str) -> bool:
        """Fetch a URL and discard the body.

        Args:
            url: URL to warm up

        Returns:
            True if the server answered with a success status
        """
        try:
            response = await self._client.get(url)
        except httpx.HTTPError as e:
            logger.debug(f"Prefetch of {url} failed: {e}")
            return False

        if response.is_success:
            return True

        logger.debug(f"Prefetch of {url} returned HTTP {response.status_code}")
        return False

    async def aclose(self) -> None:
        """Close the HTTP client if this prefetcher created it."""
        if self._owns_client:
            await self._client.aclose()
