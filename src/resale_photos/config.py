"""Configuration management for resale-photos.

Handles loading, saving, and validating TOML configuration stored in:
- macOS: ~/.config/resale-photos/config.toml
- Linux: ~/.config/resale-photos/config.toml (XDG_CONFIG_HOME)
- Windows: %APPDATA%\\resale-photos\\config.toml
"""

import os
import sys
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Optional

import tomllib
import tomli_w

DEFAULT_TTL_SECONDS = 60 * 60
DEFAULT_BUCKET = "article-photos"

RESOLVER_KINDS = ("public", "presigned")


def get_config_dir() -> Path:
    """Get the platform-specific config directory.

    Returns:
        Path to the config directory for resale-photos.
    """
    if sys.platform == "darwin" or sys.platform == "linux":
        xdg_config = os.environ.get("XDG_CONFIG_HOME")
        if xdg_config:
            return Path(xdg_config) / "resale-photos"
        return Path.home() / ".config" / "resale-photos"
    elif sys.platform == "win32":
        appdata = os.environ.get("APPDATA")
        if appdata:
            return Path(appdata) / "resale-photos"
        return Path.home() / "AppData" / "Roaming" / "resale-photos"
    else:
        return Path.home() / ".config" / "resale-photos"


def get_config_path() -> Path:
    """Get the path to the config.toml file."""
    return get_config_dir() / "config.toml"


def get_default_db_path() -> Path:
    """Get the default location of the persistent URL cache."""
    return get_config_dir() / "db" / "image_cache.db"


def get_default_log_dir() -> Path:
    """Get the default log directory."""
    return get_config_dir() / "logs"


@dataclass
class CacheConfig:
    """Configuration for the photo URL cache.

    Attributes:
        ttl_seconds: Freshness window for resolved URLs
        db_path: SQLite file backing the persistent tier
        persistent: Whether to use the persistent tier at all
        resolver: Resolver kind ("public" or "presigned")
        storage_url: Base URL of the storage API (public resolver)
        bucket: Bucket holding article photos
        r2_endpoint_url: S3-compatible endpoint (presigned resolver)
        r2_region: S3 region (usually "auto" for R2)
        presign_expires: Lifetime of presigned URLs in seconds
        preload_timeout: HTTP timeout for warm-up requests in seconds
        log_dir: Directory for session logs
    """

    # Cache
    ttl_seconds: int = DEFAULT_TTL_SECONDS
    db_path: Path = field(default_factory=get_default_db_path)
    persistent: bool = True

    # Storage
    resolver: str = "public"
    storage_url: str = ""
    bucket: str = DEFAULT_BUCKET
    r2_endpoint_url: str = ""
    r2_region: str = "auto"
    presign_expires: int = 2 * 60 * 60

    # Preload
    preload_timeout: float = 10.0

    # Logging
    log_dir: Path = field(default_factory=get_default_log_dir)

    @classmethod
    def load(cls, path: Optional[Path] = None) -> "CacheConfig":
        """Load configuration from TOML file.

        Args:
            path: Path to config file (defaults to standard location)

        Returns:
            CacheConfig instance with loaded values

        Raises:
            FileNotFoundError: If config file doesn't exist
        """
        if path is None:
            path = get_config_path()

        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with open(path, "rb") as f:
            data = tomllib.load(f)

        config = cls()

        if "cache" in data:
            cache = data["cache"]
            config.ttl_seconds = int(cache.get("ttl_seconds", config.ttl_seconds))
            config.persistent = bool(cache.get("persistent", config.persistent))
            if cache.get("db_path"):
                config.db_path = Path(cache["db_path"])

        if "storage" in data:
            storage = data["storage"]
            config.resolver = storage.get("resolver", config.resolver)
            config.storage_url = storage.get("storage_url", config.storage_url)
            config.bucket = storage.get("bucket", config.bucket)
            config.r2_endpoint_url = storage.get("r2_endpoint_url", config.r2_endpoint_url)
            config.r2_region = storage.get("r2_region", config.r2_region)
            config.presign_expires = int(storage.get("presign_expires", config.presign_expires))

        if "preload" in data:
            config.preload_timeout = float(
                data["preload"].get("timeout_seconds", config.preload_timeout)
            )

        if "logging" in data:
            log_dir = data["logging"].get("log_dir")
            if log_dir:
                config.log_dir = Path(log_dir)

        config.apply_env_overrides()
        return config

    def apply_env_overrides(self) -> None:
        """Override storage settings from environment variables (take precedence)."""
        env_storage_url = os.environ.get("RESALE_STORAGE_URL")
        if env_storage_url:
            self.storage_url = env_storage_url

        env_bucket = os.environ.get("RESALE_BUCKET")
        if env_bucket:
            self.bucket = env_bucket

        env_endpoint = os.environ.get("RESALE_R2_ENDPOINT_URL")
        if env_endpoint:
            self.r2_endpoint_url = env_endpoint

        env_region = os.environ.get("RESALE_R2_REGION")
        if env_region:
            self.r2_region = env_region

        env_ttl = os.environ.get("RESALE_CACHE_TTL")
        if env_ttl:
            self.ttl_seconds = int(env_ttl)

    def save(self, path: Optional[Path] = None) -> None:
        """Save configuration to TOML file.

        Args:
            path: Path to save config (defaults to standard location)
        """
        if path is None:
            path = get_config_path()

        path.parent.mkdir(parents=True, exist_ok=True)

        data = {
            "cache": {
                "ttl_seconds": self.ttl_seconds,
                "db_path": str(self.db_path),
                "persistent": self.persistent,
            },
            "storage": {
                "resolver": self.resolver,
                "storage_url": self.storage_url,
                "bucket": self.bucket,
                "r2_endpoint_url": self.r2_endpoint_url,
                "r2_region": self.r2_region,
                "presign_expires": self.presign_expires,
            },
            "preload": {"timeout_seconds": self.preload_timeout},
            "logging": {"log_dir": str(self.log_dir)},
        }

        with open(path, "wb") as f:
            tomli_w.dump(data, f)

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        """Get a configuration value by key.

        Accepts either the attribute name (``ttl_seconds``) or the
        section-qualified form used in the TOML file (``cache.ttl_seconds``).

        Args:
            key: Configuration key
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        attr = _attr_for(key)
        if attr is None:
            return default

        value = getattr(self, attr)
        if isinstance(value, Path):
            return str(value)
        return value

    def set(self, key: str, value: str) -> None:
        """Set a configuration value by key, preserving the field type.

        Args:
            key: Configuration key (see ``get``)
            value: Configuration value as text

        Raises:
            ValueError: If the key is unknown or the value does not parse
        """
        attr = _attr_for(key)
        if attr is None:
            raise ValueError(f"Invalid config key: {key}")

        current = getattr(self, attr)
        if isinstance(current, bool):
            new_value = value.lower() in ("true", "1", "yes")
        elif isinstance(current, int):
            new_value = int(value)
        elif isinstance(current, float):
            new_value = float(value)
        elif isinstance(current, Path):
            new_value = Path(value)
        else:
            new_value = value

        setattr(self, attr, new_value)

    def validate(self) -> list[str]:
        """Return a list of configuration problems (empty when valid)."""
        problems = []

        if self.ttl_seconds <= 0:
            problems.append("cache.ttl_seconds must be positive")

        if self.resolver not in RESOLVER_KINDS:
            problems.append(
                f"storage.resolver must be one of {', '.join(RESOLVER_KINDS)}, got {self.resolver!r}"
            )
        elif self.resolver == "public" and not self.storage_url:
            problems.append("storage.storage_url is required for the public resolver")
        elif self.resolver == "presigned":
            if not self.r2_endpoint_url:
                problems.append("storage.r2_endpoint_url is required for the presigned resolver")
            if self.presign_expires <= self.ttl_seconds:
                # Cached presigned URLs would expire while still considered fresh
                problems.append("storage.presign_expires must be longer than cache.ttl_seconds")

        return problems


# Section-qualified key as written in config.toml -> attribute name
_TOML_KEYS = {
    "cache.ttl_seconds": "ttl_seconds",
    "cache.db_path": "db_path",
    "cache.persistent": "persistent",
    "storage.resolver": "resolver",
    "storage.storage_url": "storage_url",
    "storage.bucket": "bucket",
    "storage.r2_endpoint_url": "r2_endpoint_url",
    "storage.r2_region": "r2_region",
    "storage.presign_expires": "presign_expires",
    "preload.timeout_seconds": "preload_timeout",
    "logging.log_dir": "log_dir",
}


def _attr_for(key: str) -> Optional[str]:
    """Map a config key to its attribute name, or None if it is unknown.

    Section-qualified keys must name the section the value lives in.
    """
    if "." in key:
        return _TOML_KEYS.get(key)
    if key in {f.name for f in fields(CacheConfig)}:
        return key
    return None


def ensure_config_exists() -> CacheConfig:
    """Ensure config file exists, creating default if needed.

    Returns:
        CacheConfig instance
    """
    config_path = get_config_path()

    if config_path.exists():
        return CacheConfig.load(config_path)

    config = CacheConfig()
    config.apply_env_overrides()
    config.save(config_path)
    return config
