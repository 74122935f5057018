"""Application settings for SoulScan.

Hey future me - every section is its own BaseSettings with an env prefix, so
DATABASE_URL, SCAN_BATCH_SIZE, ENRICHMENT_ENABLED etc. all work from the
environment or a .env file. Settings() builds each section through a
default_factory, which means the env is read when Settings() is created (not
at import time). get_settings() caches the instance - tests should build
their own Settings(...) instead of touching the cache.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_ENV_FILE = ".env"


class DatabaseSettings(BaseSettings):
    """Catalog database connection."""

    model_config = SettingsConfigDict(
        env_prefix="DATABASE_", env_file=_ENV_FILE, extra="ignore"
    )

    url: str = Field(
        default="sqlite+aiosqlite:///./soulscan.db",
        description="SQLAlchemy async database URL",
    )
    echo: bool = Field(default=False, description="Log every SQL statement")


class StorageSettings(BaseSettings):
    """Filesystem locations."""

    model_config = SettingsConfigDict(
        env_prefix="STORAGE_", env_file=_ENV_FILE, extra="ignore"
    )

    library_paths: list[Path] = Field(
        default_factory=list,
        description="Library folders registered on startup",
    )
    cache_path: Path = Field(
        default=Path("./cache"),
        description="Root directory for cached art, artist images and lyrics",
    )


class ScanSettings(BaseSettings):
    """Library scan behaviour."""

    model_config = SettingsConfigDict(
        env_prefix="SCAN_", env_file=_ENV_FILE, extra="ignore"
    )

    # Hey future me - NO default separator set on purpose! Whether "&" or "/"
    # splits "Simon & Garfunkel" is a per-library decision. None means "not
    # configured" and the scanner refuses to start; [] means "never split".
    artist_separators: list[str] | None = Field(
        default=None,
        description='Multi-artist separators, e.g. ["; ", " feat. ", " & "]',
    )
    batch_size: int = Field(default=250, ge=1, le=5000)
    max_workers: int | None = Field(
        default=None, ge=1, description="Tag reader threads (None = CPU count)"
    )
    stop_on_batch_failure: bool = Field(
        default=False,
        description="Abort remaining batches after the first failed batch",
    )
    follow_symlinks: bool = False

    @field_validator("artist_separators")
    @classmethod
    def _no_empty_separators(cls, value: list[str] | None) -> list[str] | None:
        if value is not None and any(sep == "" for sep in value):
            raise ValueError("artist separators must not be empty strings")
        return value


class EnrichmentSettings(BaseSettings):
    """External metadata enrichment."""

    model_config = SettingsConfigDict(
        env_prefix="ENRICHMENT_", env_file=_ENV_FILE, extra="ignore"
    )

    enabled: bool = False
    enrich_after_scan: bool = True
    cooldown_hours: float = Field(default=168.0, ge=0)
    batch_limit: int = Field(default=50, ge=1)
    artist_providers: list[str] = Field(default_factory=lambda: ["lastfm", "deezer"])
    album_providers: list[str] = Field(default_factory=lambda: ["lastfm", "deezer"])
    lyrics_providers: list[str] = Field(default_factory=lambda: ["lrclib", "netease"])
    max_attempts: int = Field(default=3, ge=1)
    base_delay: float = Field(default=2.0, ge=0)
    rate_limit_delay: float = Field(
        default=5.0, ge=0, description="Multiplier used for 429s without Retry-After"
    )
    request_delay: float = Field(
        default=0.25, ge=0, description="Pause between entities to respect provider limits"
    )


class LastfmSettings(BaseSettings):
    """Last.fm API credentials."""

    model_config = SettingsConfigDict(
        env_prefix="LASTFM_", env_file=_ENV_FILE, extra="ignore"
    )

    api_key: str = ""

    def is_configured(self) -> bool:
        """Check if an API key is present."""
        return bool(self.api_key.strip())


class HttpSettings(BaseSettings):
    """Outbound HTTP client settings."""

    model_config = SettingsConfigDict(
        env_prefix="HTTP_", env_file=_ENV_FILE, extra="ignore"
    )

    timeout: float = Field(default=15.0, gt=0)
    user_agent: str = "SoulScan/0.1 (+https://github.com/soulscan/soulscan)"


class ObservabilitySettings(BaseSettings):
    """Logging settings."""

    model_config = SettingsConfigDict(
        env_prefix="OBSERVABILITY_", env_file=_ENV_FILE, extra="ignore"
    )

    log_level: str = "INFO"
    log_json_format: bool = False

    @field_validator("log_level")
    @classmethod
    def _valid_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"invalid log level: {value}")
        return level


class Settings(BaseSettings):
    """Root settings object."""

    model_config = SettingsConfigDict(env_file=_ENV_FILE, extra="ignore")

    app_name: str = "soulscan"
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    scan: ScanSettings = Field(default_factory=ScanSettings)
    enrichment: EnrichmentSettings = Field(default_factory=EnrichmentSettings)
    lastfm: LastfmSettings = Field(default_factory=LastfmSettings)
    http: HttpSettings = Field(default_factory=HttpSettings)
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()
