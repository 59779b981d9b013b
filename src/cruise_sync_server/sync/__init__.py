"""Sailing inventory sync engine.

Public API for pulling sailing files from the inventory feed into the
relational store.

Architecture
------------
Each run is a loop of independent per-file units of work.  A file whose
listing signature (size plus modification time) matches the stored raw
snapshot is skipped; every other file is downloaded, parsed and upserted
in one transaction together with its refreshed snapshot.  Cancellation
is honoured only between units.

Modules:

- ``orchestrator`` -- ``SyncOrchestrator``: run state machine.
- ``delta``        -- ``decide``, ``load_snapshots``, ``upsert_snapshot``.
- ``parser``       -- ``parse_sailing``: payload to ``ParsedSailing``.
- ``upsert``       -- ``SailingUpserter``: transactional write.
- ``maintenance``  -- ``StorageMaintenance``: purge, cleanup, stats.
- ``models``       -- frozen data contracts.
- ``reporter``     -- text and JSON formatting.

Usage example
-------------
::

    from cruise_sync_server.core.services import build_services
    from cruise_sync_server.sync import SyncOptions, format_sync_status

    services = build_services(config)
    status = services.orchestrator.run(SyncOptions(target_year=2026))
    print(format_sync_status(status))
"""

from .delta import decide, load_snapshots
from .maintenance import StorageMaintenance
from .models import (
    FileAction,
    ParsedSailing,
    RunState,
    SyncOptions,
    SyncProgress,
    SyncStatus,
)
from .orchestrator import SyncOrchestrator
from .parser import parse_sailing
from .reporter import format_run_summary, format_sync_status, to_json
from .upsert import SailingUpserter

__all__ = [
    "FileAction",
    "ParsedSailing",
    "RunState",
    "SailingUpserter",
    "StorageMaintenance",
    "SyncOptions",
    "SyncOrchestrator",
    "SyncProgress",
    "SyncStatus",
    "decide",
    "format_run_summary",
    "format_sync_status",
    "load_snapshots",
    "parse_sailing",
    "to_json",
]
