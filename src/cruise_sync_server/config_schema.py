"""Unified configuration schema for cruise_sync_server.

Defines Pydantic models for the YAML config structure with dedicated
sections for the remote source, database, sync engine, reference cache,
maintenance schedule and logging.  Includes an adapter that flattens the
unified config into the runtime ``Config`` dataclass.

Usage:
    from cruise_sync_server.config_schema import (
        UnifiedConfig, build_config, to_legacy_config,
    )

    raw = load_hierarchical_config()
    unified = build_config(raw)
    config = to_legacy_config(unified, cli_overrides={"ftp_host": "..."})
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field, field_validator

if TYPE_CHECKING:
    from .config import Config

logger = logging.getLogger(__name__)

_HHMM_PATTERN = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class SourceConfig(BaseModel):
    """Remote inventory file source (FTP/FTPS) settings.

    Host and credentials are optional here so env vars and CLI args can
    supply them at runtime instead.
    """

    host: str | None = Field(default=None, description="FTP host name")
    username: str | None = Field(default=None, description="FTP user")
    password: str | None = Field(
        default=None, description="FTP password"
    )
    port: int = Field(default=21, ge=1, le=65535)
    secure: bool = Field(
        default=True, description="Use explicit FTPS (AUTH TLS)"
    )
    timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        le=600,
        description="Socket timeout for listing and downloads",
    )
    connect_test_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        le=120,
        description="Timeout for the standalone connection test",
    )
    retry_attempts: int = Field(default=3, ge=1, le=10)
    retry_delay_seconds: float = Field(default=1.0, ge=0, le=60)

    model_config = {"frozen": True}


class DatabaseConfig(BaseModel):
    """Relational store settings."""

    url: str | None = Field(
        default=None,
        description="SQLAlchemy database URL (default: local SQLite file)",
    )
    echo: bool = Field(default=False, description="Echo SQL statements")

    model_config = {"frozen": True}


class SyncConfig(BaseModel):
    """Sync engine settings."""

    snapshot_ttl_days: int = Field(
        default=30,
        ge=1,
        le=3650,
        description="Days a raw snapshot is kept before purge",
    )
    max_file_size_bytes: int = Field(
        default=500_000,
        ge=1,
        description="Files above this size are skipped as oversized",
    )
    history_update_interval: int = Field(
        default=50,
        ge=1,
        description="Persist run progress every N files",
    )

    model_config = {"frozen": True}


class CacheConfig(BaseModel):
    """Reference data cache settings."""

    ttl_seconds: float = Field(default=300.0, gt=0)
    max_ship_entries: int = Field(default=10, ge=1, le=10_000)
    preload: bool = Field(
        default=True, description="Warm the cache at server startup"
    )

    model_config = {"frozen": True}


class ScheduleConfig(BaseModel):
    """Daily maintenance schedule and the optional nightly sync.

    The nightly sync runs only when both ``enabled`` and ``sync_enabled``
    are set.  A night gets at most ``sync_max_retries`` attempts; a run
    that ends failed waits ``sync_retry_delay_seconds`` before the next
    one, doubling the wait each time.
    """

    enabled: bool = False
    timezone: str = "America/Toronto"
    purge_at: str = "03:00"
    cleanup_at: str = "04:00"
    cleanup_min_age_days: int = Field(default=0, ge=0, le=36_500)
    sync_enabled: bool = False
    sync_at: str = "02:00"
    sync_max_retries: int = Field(default=3, ge=1, le=10)
    sync_retry_delay_seconds: float = Field(default=60.0, ge=0)

    model_config = {"frozen": True}

    @field_validator("purge_at", "cleanup_at", "sync_at")
    @classmethod
    def _check_time(cls, value: str) -> str:
        if not _HHMM_PATTERN.match(value):
            raise ValueError(f"Invalid time '{value}': expected HH:MM")
        return value


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        file: Optional log file path.
    """

    level: str = Field(default="INFO", description="Log level")
    file: str | None = Field(default=None, description="Log file path")

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Top-level unified config
# ---------------------------------------------------------------------------


class UnifiedConfig(BaseModel):
    """Top-level unified configuration.

    Every section has sensible defaults, so ``UnifiedConfig()``
    (zero-config) is always valid.
    """

    source: SourceConfig = Field(default_factory=SourceConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    schedule: ScheduleConfig = Field(default_factory=ScheduleConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"frozen": True}


def build_config(raw_data: dict) -> UnifiedConfig:
    """Construct a ``UnifiedConfig`` from the merged YAML dict.

    Missing sections get defaults.

    Args:
        raw_data: Merged configuration dictionary.

    Returns:
        Validated ``UnifiedConfig`` instance.
    """
    if not raw_data:
        return UnifiedConfig()

    return UnifiedConfig(**raw_data)


# ---------------------------------------------------------------------------
# Adapter: UnifiedConfig -> runtime Config dataclass
# ---------------------------------------------------------------------------


def to_legacy_config(
    unified: UnifiedConfig,
    cli_overrides: dict | None = None,
) -> Config:
    """Flatten a ``UnifiedConfig`` into the runtime ``Config`` dataclass.

    Precedence: CLI override > unified config value > default.

    CLI override keys: ftp_host, ftp_user, ftp_password, database_url,
    insecure (disables FTPS), debug.

    Returns:
        ``Config`` instance (NOT validated -- call ``validate_config()``).
    """
    from .config import Config

    overrides = cli_overrides or {}

    return Config(
        ftp_host=overrides.get("ftp_host") or unified.source.host or "",
        ftp_user=overrides.get("ftp_user") or unified.source.username or "",
        ftp_password=overrides.get("ftp_password")
        or unified.source.password
        or "",
        ftp_port=unified.source.port,
        ftp_secure=unified.source.secure
        and not overrides.get("insecure", False),
        database_url=overrides.get("database_url")
        or unified.database.url
        or "",
        debug=overrides.get("debug", False),
        timeout_seconds=unified.source.timeout_seconds,
        connect_test_timeout_seconds=unified.source.connect_test_timeout_seconds,
        retry_attempts=unified.source.retry_attempts,
        retry_delay_seconds=unified.source.retry_delay_seconds,
        snapshot_ttl_days=unified.sync.snapshot_ttl_days,
        max_file_size_bytes=unified.sync.max_file_size_bytes,
        cache_ttl_seconds=unified.cache.ttl_seconds,
        cache_max_ship_entries=unified.cache.max_ship_entries,
    )
