"""Exception hierarchy for the cruise sync engine.

Every error raised deliberately by the engine derives from
``CruiseSyncError`` so the MCP layer can translate it into a structured
error response.  Errors are grouped by how the orchestrator treats them:

- ``SourceConnectionError`` -- fatal to a whole run.
- ``SourceDownloadError`` / ``PayloadParseError`` -- recorded per file,
  the run continues.
- ``SyncConflictError`` / ``MaintenanceBlockedError`` -- request rejected,
  no state change.
- ``CatalogMissingError`` -- swallowed by the reference cache.
"""

from __future__ import annotations


class CruiseSyncError(Exception):
    """Base class for all cruise sync errors."""


class SourceConnectionError(CruiseSyncError):
    """The remote file source is unreachable or timed out."""


class SourceDownloadError(CruiseSyncError):
    """A single file could not be downloaded after all retries."""

    def __init__(self, path: str, message: str) -> None:
        super().__init__(f"{path}: {message}")
        self.path = path


class PayloadParseError(CruiseSyncError):
    """A downloaded sailing file is malformed or missing fields."""

    def __init__(self, path: str, message: str) -> None:
        super().__init__(f"{path}: {message}")
        self.path = path


class SyncConflictError(CruiseSyncError):
    """A sync run was requested while another one is active."""


class MaintenanceBlockedError(CruiseSyncError):
    """Destructive maintenance was requested while a sync is active."""


class CatalogMissingError(CruiseSyncError):
    """A reference catalog table does not exist in the store."""

    def __init__(self, table: str) -> None:
        super().__init__(f"Catalog table '{table}' does not exist")
        self.table = table
