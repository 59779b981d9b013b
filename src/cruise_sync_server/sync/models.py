"""Pydantic models for the sailing sync engine.

Defines the data contracts shared by the sync modules and the MCP tools:

- ``RunState`` / ``FileAction``: enums for the run state machine and the
  per-file delta decision.
- ``SyncOptions``: parameters of one run.
- ``SyncProgress`` / ``SyncStatus``: immutable views of the current run.
- ``ParsedSailing`` (+ ``ParsedStop``, ``ParsedPrice``): one decoded file.
- ``UpsertOutcome``: what one upsert wrote.
- ``SyncHistoryRecord``: one persisted run.
- ``PurgeResult``, ``CleanupPreview``, ``CleanupResult``,
  ``StorageStats``: storage maintenance results.

All models are frozen (immutable) so they can be handed to readers on
other threads without copying.
"""

from __future__ import annotations

from datetime import date, datetime
from enum import Enum

from pydantic import BaseModel, Field, model_validator

MAX_RECORDED_ERRORS = 100


class RunState(str, Enum):
    """States of the process-wide sync run."""

    IDLE = "idle"
    RUNNING = "running"
    CANCELLING = "cancelling"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"

    @property
    def is_active(self) -> bool:
        return self in (RunState.RUNNING, RunState.CANCELLING)

    @property
    def is_terminal(self) -> bool:
        return self in (
            RunState.COMPLETED,
            RunState.CANCELLED,
            RunState.FAILED,
        )


class FileAction(str, Enum):
    """Delta decision for one candidate file."""

    SKIP = "skip"
    INGEST = "ingest"


# ---------------------------------------------------------------------------
# Run options and progress
# ---------------------------------------------------------------------------


class SyncOptions(BaseModel):
    """Parameters of a sync run.

    Attributes:
        target_year: Only scan this year folder (all years when None).
        target_month: Only scan this month (1-12) within each year.
        force_full_sync: Ignore stored signatures and ingest every file.
        dry_run: Decide, download and parse, but write nothing.
        max_files: Stop listing after this many files.
    """

    target_year: int | None = Field(default=None, ge=2000, le=2100)
    target_month: int | None = Field(default=None, ge=1, le=12)
    force_full_sync: bool = False
    dry_run: bool = False
    max_files: int | None = Field(default=None, ge=1)

    model_config = {"frozen": True}


class FileError(BaseModel):
    """A per-file failure recorded during a run."""

    path: str
    message: str
    at: datetime

    model_config = {"frozen": True}


class SyncProgress(BaseModel):
    """Counters of the current (or last) run.

    ``files_processed`` counts every file whose unit of work finished,
    skipped files included; ``files_skipped`` is the skipped subset
    (unchanged or oversized) and ``files_oversized`` the part of it over
    the size limit.
    """

    files_found: int = 0
    files_processed: int = 0
    files_skipped: int = 0
    files_failed: int = 0
    files_oversized: int = 0
    sailings_upserted: int = 0
    sailings_created: int = 0
    sailings_updated: int = 0
    stops_written: int = 0
    prices_written: int = 0
    unresolved_references: int = 0
    started_at: datetime | None = None
    completed_at: datetime | None = None

    model_config = {"frozen": True}


class SyncStatus(BaseModel):
    """Snapshot of the sync run, safe to share across threads."""

    state: RunState = RunState.IDLE
    cancel_requested: bool = False
    options: SyncOptions | None = None
    progress: SyncProgress = Field(default_factory=SyncProgress)
    errors: list[FileError] = []
    error_count: int = 0
    failure: str | None = None
    history_id: int | None = None

    model_config = {"frozen": True}

    @property
    def is_active(self) -> bool:
        return self.state.is_active


class SyncHistoryRecord(BaseModel):
    id: int
    status: str
    options: dict
    metrics: dict
    error_count: int
    errors: list = []
    started_at: datetime
    completed_at: datetime | None = None

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Parsed payload
# ---------------------------------------------------------------------------


class ParsedStop(BaseModel):
    sequence: int
    day_number: int
    port_provider_identifier: str | None = None
    port_name: str = ""
    arrival_time: str | None = None
    departure_time: str | None = None

    model_config = {"frozen": True}


class ParsedPrice(BaseModel):
    cabin_code: str
    cabin_category: str
    price_cents: int
    currency: str = "CAD"

    model_config = {"frozen": True}


class ParsedSailing(BaseModel):
    """One sailing file decoded into store-ready values."""

    provider_identifier: str
    line_provider_identifier: str
    ship_provider_identifier: str
    region_provider_identifier: str | None = None
    embark_port_provider_identifier: str | None = None
    disembark_port_provider_identifier: str | None = None
    name: str = ""
    sail_date: date
    nights: int = Field(ge=0)
    end_date: date
    sea_days: int | None = None
    voyage_code: str | None = None
    cheapest_inside_cents: int | None = None
    cheapest_oceanview_cents: int | None = None
    cheapest_balcony_cents: int | None = None
    cheapest_suite_cents: int | None = None
    stops: list[ParsedStop] = []
    prices: list[ParsedPrice] = []

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _check_dates(self) -> ParsedSailing:
        if self.end_date < self.sail_date:
            raise ValueError("end_date precedes sail_date")
        return self


class UpsertOutcome(BaseModel):
    """What a single sailing upsert wrote."""

    sailing_id: int | None = None
    created: bool
    stops_written: int
    prices_written: int
    unresolved_references: int = 0

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Storage maintenance
# ---------------------------------------------------------------------------


class PurgeResult(BaseModel):
    purged: int
    max_payload_size: int = 0
    oldest_expired_at: datetime | None = None
    duration_ms: int = 0

    model_config = {"frozen": True}


class CleanupPreview(BaseModel):
    """Rows a retention cleanup would remove, computed without writing."""

    min_age_days: int
    cutoff_date: date
    sailings: int
    stops: int
    prices: int
    oldest_end_date: date | None = None

    model_config = {"frozen": True}


class CleanupResult(BaseModel):
    min_age_days: int
    cutoff_date: date
    sailings_deleted: int
    stops_deleted: int
    prices_deleted: int
    duration_ms: int = 0

    model_config = {"frozen": True}


class StorageStats(BaseModel):
    total_snapshots: int
    total_payload_bytes: int
    average_payload_bytes: int
    max_payload_bytes: int
    expired: int
    expiring_within_24h: int
    oldest_fetched_at: datetime | None = None
    newest_fetched_at: datetime | None = None

    model_config = {"frozen": True}


class CoverageStats(BaseModel):
    """Inventory row counts; ``upcoming_sailings`` end on or after today."""

    sailings: int
    upcoming_sailings: int
    stops: int
    prices: int
    cruise_lines: int
    cruise_ships: int
    cruise_regions: int
    cruise_ports: int
    earliest_sail_date: date | None = None
    latest_sail_date: date | None = None

    model_config = {"frozen": True}
