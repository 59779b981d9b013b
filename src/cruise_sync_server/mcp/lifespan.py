"""Lifespan management for MCP server startup and shutdown."""

import logging
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from dotenv import load_dotenv

from ..config import load_config
from ..config_loader import (
    discover_config_files,
    load_hierarchical_config,
)
from ..config_schema import UnifiedConfig, build_config
from ..core.async_utils import run_sync
from ..core.scheduler import MaintenanceScheduler
from ..core.services import Services, build_services

logger = logging.getLogger(__name__)

# Config sections whose keys feed load_config() as YAML fallbacks
_FALLBACK_SECTIONS = ("source", "database", "sync", "cache")


def _stderr_print(msg: str) -> None:
    """Print message to stderr for user feedback (safe in MCP mode)."""
    print(msg, file=sys.stderr, flush=True)


def _yaml_fallbacks(unified: UnifiedConfig) -> dict[str, Any]:
    """Flatten the non-None values of the fallback sections into one dict."""
    fallbacks: dict[str, Any] = {}
    for section in _FALLBACK_SECTIONS:
        values = getattr(unified, section).model_dump()
        fallbacks.update({k: v for k, v in values.items() if v is not None})
    return fallbacks


async def _warm_up(services: Services) -> None:
    """Preload the reference cache and probe the feed; never fails startup."""
    try:
        stats = await run_sync(services.cache.refresh_cache)
        _stderr_print(
            f"  Reference cache loaded: {stats.total_entries} entries"
        )
    except Exception as e:
        logger.warning("Reference cache preload failed: %s", e)
        _stderr_print(f"  WARNING: reference cache preload failed: {e}")

    result = await run_sync(services.source.test_connection)
    if result.success:
        logger.info("Inventory feed reachable (%dms)", result.elapsed_ms)
        _stderr_print(f"  Inventory feed reachable ({result.elapsed_ms}ms)")
    else:
        logger.warning("Inventory feed unreachable: %s", result.message)
        _stderr_print(
            f"  WARNING: inventory feed unreachable: {result.message}"
        )


@asynccontextmanager
async def server_lifespan(
    config_overrides: dict[str, Any] | None = None,
) -> AsyncIterator[dict[str, Any]]:
    """
    Manage server startup and shutdown lifecycle.

    On startup:
    - Load .env file (so values are available for env var lookups and YAML interpolation)
    - Load YAML config file if present (as fallback values)
    - Merge all sources via load_config(): CLI > env vars > .env > YAML > defaults
    - Build services (store schema, source, cache, orchestrator, maintenance)
    - Preload the reference cache and probe the feed (warnings only)
    - Start the maintenance scheduler (and nightly sync) when enabled

    On shutdown:
    - Stop the scheduler
    - Cancel any active sync run and release connections

    Args:
        config_overrides: Optional dict with config values from CLI
            (ftp_host, ftp_user, ftp_password, database_url, insecure, debug)

    Yields:
        Dict with 'services' and 'scheduler' keys

    Raises:
        RuntimeError: If configuration is invalid or the store cannot be opened.
    """
    logger.info("MCP server starting...")
    _stderr_print("Cruise Sync MCP Server starting...")

    # Load configuration with unified precedence:
    # CLI args > env vars (.env loaded first) > YAML config > defaults
    try:
        # 1. Load .env early (before YAML, so ${VAR} interpolation can use .env values)
        load_dotenv()

        # 2. Load YAML config if present
        unified = UnifiedConfig()
        config_files = discover_config_files()
        sources = []

        if config_files:
            raw = load_hierarchical_config()
            unified = build_config(raw)
            sources.append(
                "config files: " + ", ".join(str(p) for p in config_files)
            )

        # 3. Single call to load_config with all sources merged
        overrides = config_overrides or {}
        config = load_config(
            ftp_host=overrides.get("ftp_host"),
            ftp_user=overrides.get("ftp_user"),
            ftp_password=overrides.get("ftp_password"),
            database_url=overrides.get("database_url"),
            insecure=overrides.get("insecure", False),
            debug=overrides.get("debug", False),
            yaml_fallbacks=_yaml_fallbacks(unified),
        )

        if overrides:
            sources.append("CLI arguments")
        sources.append("environment variables")
        source_desc = ", ".join(sources)
        logger.info("Configuration loaded from: %s", source_desc)
        _stderr_print(f"  Configuration loaded from: {source_desc}")
        transport = "FTPS" if config.ftp_secure else "FTP"
        logger.info("Inventory feed: %s (%s)", config.ftp_host, transport)
        _stderr_print(f"  Inventory feed: {config.ftp_host} ({transport})")
    except ValueError as e:
        logger.error("Configuration error: %s", e)
        _stderr_print(f"ERROR: Configuration error: {e}")
        _stderr_print(
            "  Ensure CRUISE_SYNC_FTP_HOST, CRUISE_SYNC_FTP_USER, CRUISE_SYNC_FTP_PASSWORD are set."
        )
        raise RuntimeError(
            f"Configuration error: {e}. Ensure CRUISE_SYNC_FTP_HOST, "
            "CRUISE_SYNC_FTP_USER, CRUISE_SYNC_FTP_PASSWORD are set."
        ) from e

    # Open the store. An unreachable feed is not fatal, a broken store is.
    try:
        services = await run_sync(
            build_services,
            config,
            history_update_interval=unified.sync.history_update_interval,
            database_echo=unified.database.echo,
        )
    except Exception as e:
        logger.error("Failed to open inventory store: %s", e)
        _stderr_print("ERROR: Inventory store unavailable.")
        _stderr_print(f"  {e}")
        raise RuntimeError(
            f"Inventory store unavailable: {e}. Check CRUISE_SYNC_DATABASE_URL."
        ) from e

    if unified.cache.preload:
        await _warm_up(services)

    scheduler = MaintenanceScheduler(
        services.maintenance, unified.schedule, orchestrator=services.orchestrator
    )
    if unified.schedule.enabled:
        scheduler.start()
        _stderr_print(
            f"  Maintenance scheduled: purge {unified.schedule.purge_at}, "
            f"cleanup {unified.schedule.cleanup_at} ({unified.schedule.timezone})"
        )
        if scheduler.sync_scheduled:
            _stderr_print(f"  Nightly sync scheduled: {unified.schedule.sync_at}")

    _stderr_print("Server ready. Waiting for MCP client connection...")

    try:
        yield {"services": services, "scheduler": scheduler}
    finally:
        # Shutdown
        logger.info("MCP server shutting down")
        await scheduler.stop()
        await run_sync(services.close)
        _stderr_print("Cruise Sync MCP Server shutting down.")
