"""Service wiring: one object graph per process.

``build_services`` turns a validated ``Config`` into the collaborators the
MCP tools and the scheduler share: the store, the remote source, the
reference cache, the upserter, the orchestrator and storage maintenance.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from ..catalog import CatalogReader, ReferenceDataCache
from ..config import Config
from ..store import Database
from ..sync.maintenance import StorageMaintenance
from ..sync.orchestrator import DEFAULT_HISTORY_INTERVAL, SyncOrchestrator
from ..sync.upsert import SailingUpserter
from .remote_source import FtpRemoteSource, RemoteSource

logger = logging.getLogger(__name__)


@dataclass
class Services:
    config: Config
    database: Database
    source: RemoteSource
    cache: ReferenceDataCache
    upserter: SailingUpserter
    orchestrator: SyncOrchestrator
    maintenance: StorageMaintenance

    def close(self) -> None:
        """Cancel any active run and release the source and the engine."""
        if self.orchestrator.cancel():
            logger.info("Waiting for active sync run to stop")
            self.orchestrator.wait(timeout=30)
        self.source.close()
        self.database.dispose()


def build_services(
    config: Config,
    source: RemoteSource | None = None,
    database: Database | None = None,
    history_update_interval: int = DEFAULT_HISTORY_INTERVAL,
    database_echo: bool = False,
) -> Services:
    """Create and connect every engine component.

    The schema is created if missing. The FTP source connects lazily, so
    an unreachable feed does not prevent startup.

    Args:
        config: Validated runtime configuration.
        source: Remote source to use instead of ``FtpRemoteSource``.
        database: Store to use instead of one built from ``database_url``.
        history_update_interval: Persist run progress every N files.
        database_echo: Echo SQL statements.

    Returns:
        Fully wired ``Services``.
    """
    database = database or Database(config.database_url, echo=database_echo)
    database.create_schema()

    source = source or FtpRemoteSource(config)
    cache = ReferenceDataCache(
        CatalogReader(database),
        ttl_seconds=config.cache_ttl_seconds,
        max_ship_entries=config.cache_max_ship_entries,
    )
    upserter = SailingUpserter(
        database, cache, snapshot_ttl_days=config.snapshot_ttl_days
    )
    orchestrator = SyncOrchestrator(
        database,
        source,
        upserter,
        cache,
        max_file_size_bytes=config.max_file_size_bytes,
        history_update_interval=history_update_interval,
    )
    maintenance = StorageMaintenance(
        database, exclusive=orchestrator.maintenance_window
    )
    logger.info(
        "Services ready (store: %s, source: %s)",
        database.engine.url.render_as_string(hide_password=True),
        type(source).__name__,
    )
    return Services(
        config=config,
        database=database,
        source=source,
        cache=cache,
        upserter=upserter,
        orchestrator=orchestrator,
        maintenance=maintenance,
    )
