"""URL resolvers for article photo storage paths.

A resolver is any callable mapping a storage path to a fetchable URL.
Public buckets (Supabase storage) resolve by string construction alone;
private S3-compatible buckets (Cloudflare R2) resolve to presigned URLs
computed locally by boto3.  Credentials are read from environment
variables so they never appear in config files.
"""

import logging
import os
from typing import Callable
from urllib.parse import quote

import boto3

from ..config import CacheConfig

logger = logging.getLogger(__name__)

UrlResolver = Callable[[str], str]


class PublicUrlResolver:
    """Builds public object URLs for a storage bucket.

    Produces ``{storage_url}/storage/v1/object/public/{bucket}/{path}``,
    the layout used by Supabase storage for public buckets.

    Attributes:
        storage_url: Base URL of the storage project
        bucket: Bucket name
    """

    def __init__(self, storage_url: str, bucket: str):
        """Initialize the resolver.

        Args:
            storage_url: Base URL of the storage project
            bucket: Bucket name

        Raises:
            ValueError: If storage_url or bucket is empty
        """
        if not storage_url:
            raise ValueError("storage_url is required to build public photo URLs")
        if not bucket:
            raise ValueError("bucket is required to build public photo URLs")

        self.storage_url = storage_url.rstrip("/")
        self.bucket = bucket

    def __call__(self, key: str) -> str:
        path = quote(key.lstrip("/"), safe="/")
        return f"{self.storage_url}/storage/v1/object/public/{self.bucket}/{path}"

    def __repr__(self) -> str:
        return f"PublicUrlResolver({self.storage_url!r}, {self.bucket!r})"


class R2Client:
    """Client for Cloudflare R2 (S3-compatible) storage.

    Credentials are read from environment variables at construction time:
        RESALE_R2_ACCESS_KEY_ID
        RESALE_R2_SECRET_ACCESS_KEY

    Attributes:
        bucket: R2 bucket name
        endpoint_url: R2 endpoint URL
        region: R2 region (typically "auto")
    """

    def __init__(self, bucket: str, endpoint_url: str, region: str = "auto"):
        """Initialize the R2 client.

        Args:
            bucket: R2 bucket name
            endpoint_url: R2 endpoint URL
            region: R2 region

        Raises:
            ValueError: If either credential environment variable is unset
        """
        self.bucket = bucket
        self.endpoint_url = endpoint_url
        self.region = region

        access_key = os.environ.get("RESALE_R2_ACCESS_KEY_ID")
        secret_key = os.environ.get("RESALE_R2_SECRET_ACCESS_KEY")

        if not access_key or not secret_key:
            raise ValueError(
                "R2 credentials not set. "
                "Set RESALE_R2_ACCESS_KEY_ID and RESALE_R2_SECRET_ACCESS_KEY environment variables."
            )

        self._client = boto3.client(
            "s3",
            endpoint_url=endpoint_url,
            aws_access_key_id=access_key,
            aws_secret_access_key=secret_key,
            region_name=region,
        )

    def presigned_url(self, key: str, expires_in: int) -> str:
        """Create a presigned GET URL for a photo.

        Signing happens locally; no request is sent to R2.

        Args:
            key: Object key (storage path) within the bucket
            expires_in: URL lifetime in seconds

        Returns:
            Presigned HTTPS URL
        """
        return self._client.generate_presigned_url(
            "get_object",
            Params={"Bucket": self.bucket, "Key": key.lstrip("/")},
            ExpiresIn=expires_in,
        )


class PresignedUrlResolver:
    """Resolves storage paths to presigned R2 URLs.

    Presigned URLs stop working after ``expires_in`` seconds, so the cache
    TTL must stay below it.
    """

    def __init__(self, r2_client: R2Client, expires_in: int = 2 * 60 * 60):
        self.r2_client = r2_client
        self.expires_in = expires_in

    def __call__(self, key: str) -> str:
        return self.r2_client.presigned_url(key, self.expires_in)

    def __repr__(self) -> str:
        return f"PresignedUrlResolver(bucket={self.r2_client.bucket!r}, expires_in={self.expires_in})"


def build_resolver(config: CacheConfig) -> UrlResolver:
    """Create the resolver selected by the configuration.

    Args:
        config: Cache configuration

    Returns:
        Resolver callable

    Raises:
        ValueError: If the resolver kind is unknown or settings are missing
    """
    if config.resolver == "public":
        resolver = PublicUrlResolver(config.storage_url, config.bucket)
    elif config.resolver == "presigned":
        if config.presign_expires <= config.ttl_seconds:
            logger.warning(
                f"Presigned URLs expire after {config.presign_expires}s but are cached "
                f"for {config.ttl_seconds}s; cached URLs may stop working"
            )
        client = R2Client(config.bucket, config.r2_endpoint_url, config.r2_region)
        resolver = PresignedUrlResolver(client, config.presign_expires)
    else:
        raise ValueError(f"Unknown resolver kind: {config.resolver!r}")

    logger.debug(f"Using resolver {resolver!r}")
    return resolver
