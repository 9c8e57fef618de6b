# ==============================================================================
# Application Configuration
# ==============================================================================
"""
Configuration management using pydantic-settings.

All configuration is loaded from environment variables, with support for
.env files via python-dotenv.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional
from urllib.parse import quote

from dotenv import load_dotenv
from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load .env file before any settings are instantiated
load_dotenv()


class PostgresSettings(BaseSettings):
    """PostgreSQL connection settings.

    Either a full URL (DATABASE_URL or PG_URL) or discrete host/user settings
    may be given. When neither is present the event store is considered
    not configured and ingestion answers "service unavailable".
    """

    model_config = SettingsConfigDict(env_prefix="PG_", populate_by_name=True)

    url: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("DATABASE_URL", "PG_URL"),
        description="Full PostgreSQL connection URL",
    )
    host: Optional[str] = Field(default=None, description="PostgreSQL host")
    port: int = Field(default=5432, description="PostgreSQL port")
    user: Optional[str] = Field(default=None, description="PostgreSQL username")
    password: Optional[str] = Field(default=None, description="PostgreSQL password")
    database: str = Field(default="telemetry", description="Database name")
    schema_name: str = Field(default="telemetry", description="Schema name")
    sslmode: str = Field(default="prefer", description="SSL mode")

    # Connection pool and query limits
    pool_min: int = Field(default=1, description="Minimum pooled connections")
    pool_max: int = Field(default=10, description="Maximum pooled connections")
    pool_timeout_seconds: float = Field(
        default=30.0, description="How long an operation waits for a free pooled connection"
    )
    statement_timeout_ms: int = Field(
        default=15000, description="Timeout for aggregation queries in milliseconds"
    )

    @property
    def is_configured(self) -> bool:
        """Check if enough settings are present to reach a database."""
        return bool(self.url or (self.host and self.user))

    @property
    def connection_string(self) -> str:
        """Build PostgreSQL connection string."""
        if self.url:
            return self.url
        password = f":{quote(self.password, safe='')}" if self.password else ""
        return (
            f"postgresql://{self.user}{password}@"
            f"{self.host}:{self.port}/{self.database}?sslmode={self.sslmode}"
        )


class GeoSettings(BaseSettings):
    """Local IP geolocation database settings."""

    model_config = SettingsConfigDict(env_prefix="GEO_")

    mmdb: Optional[Path] = Field(
        default=None, description="Path to a MaxMind GeoLite2 Country/City .mmdb file"
    )


class ServerSettings(BaseSettings):
    """HTTP server settings."""

    model_config = SettingsConfigDict(env_prefix="SERVER_")

    host: str = Field(default="127.0.0.1", description="Bind address")
    port: int = Field(default=8088, description="Listen port")
    max_body_bytes: int = Field(default=64 * 1024, description="Maximum ingest body size")


class StatsSettings(BaseSettings):
    """Analytics aggregation settings."""

    model_config = SettingsConfigDict(env_prefix="STATS_")

    window_days: int = Field(default=7, description="Nominal window reported with stats")
    secret: str = Field(
        default="", description="Shared key for debug endpoints (empty = unprotected)"
    )
    top_n: int = Field(default=20, description="Rows in ranked tables")
    recent_sessions_limit: int = Field(default=100, description="Sessions in the recent list")
    active_session_minutes: int = Field(
        default=10, description="Look-back used to count currently running sessions"
    )
    timeout_ms: int = Field(
        default=20000, description="Deadline for one stats computation in milliseconds"
    )
    max_range_days: int = Field(
        default=3660, description="Longest explicit from/to range honored, in days"
    )


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        extra="ignore",
    )

    # Nested settings
    postgres: PostgresSettings = Field(default_factory=PostgresSettings)
    geo: GeoSettings = Field(default_factory=GeoSettings)
    server: ServerSettings = Field(default_factory=ServerSettings)
    stats: StatsSettings = Field(default_factory=StatsSettings)

    # General settings
    log_level: str = Field(default="INFO", description="Logging level")
    log_file: Optional[Path] = Field(default=None, description="Optional log file path")


@lru_cache
def get_settings() -> Settings:
    """
    Get cached application settings.

    Settings are loaded once and cached for subsequent calls.
    """
    return Settings()
