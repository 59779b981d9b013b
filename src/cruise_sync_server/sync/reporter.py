"""Report formatting for sync runs and maintenance results.

Provides human-readable and machine-readable output:

- ``format_sync_status`` -- current run state and counters.
- ``format_run_summary`` -- end-of-run block written to the log.
- ``format_history`` -- recent runs table.
- ``format_cache_stats`` / ``format_storage_stats`` /
  ``format_coverage_stats`` -- stats blocks.
- ``format_cleanup_preview`` / ``format_cleanup_result`` /
  ``format_purge_result`` -- maintenance outcomes.
- ``to_json`` -- structured dict for MCP ``structuredContent``.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import TYPE_CHECKING

from pydantic import BaseModel

if TYPE_CHECKING:
    from ..catalog import CacheStats
    from ..core.remote_source import ConnectionTestResult
    from .models import (
        CleanupPreview,
        CleanupResult,
        CoverageStats,
        PurgeResult,
        StorageStats,
        SyncHistoryRecord,
        SyncStatus,
    )

# Number of recorded errors shown in text output
_ERROR_PREVIEW = 10


def _ts(value: datetime | None) -> str:
    return value.isoformat(timespec="seconds") if value else "-"


def _duration(start: datetime | None, end: datetime | None) -> str:
    if start is None or end is None:
        return "-"
    seconds = int((end - start).total_seconds())
    minutes, seconds = divmod(seconds, 60)
    hours, minutes = divmod(minutes, 60)
    if hours:
        return f"{hours}h {minutes}m {seconds}s"
    if minutes:
        return f"{minutes}m {seconds}s"
    return f"{seconds}s"


def _kib(size: int) -> str:
    return f"{size / 1024:.1f} KiB"


# ------------------------------------------------------------------
# Sync run
# ------------------------------------------------------------------


def format_sync_status(status: SyncStatus) -> str:
    """Format the current run for display.

    Counters are omitted while idle; the error section only appears when
    at least one file failed.

    Args:
        status: Snapshot from ``SyncOrchestrator.status()``.

    Returns:
        Multi-line formatted string.
    """
    lines: list[str] = [f"Sync state: {status.state.value}"]
    if status.cancel_requested and status.state.is_active:
        lines.append("Cancellation requested, stopping after current file")

    options = status.options
    if options is not None:
        scope = "all years"
        if options.target_year:
            scope = str(options.target_year)
            if options.target_month:
                scope += f"-{options.target_month:02d}"
        elif options.target_month:
            scope = f"month {options.target_month:02d} of all years"
        flags = []
        if options.force_full_sync:
            flags.append("full sync")
        if options.dry_run:
            flags.append("DRY RUN")
        if options.max_files:
            flags.append(f"max {options.max_files} files")
        lines.append(
            f"Scope: {scope}" + (f" ({', '.join(flags)})" if flags else "")
        )

    if status.state.value == "idle":
        return "\n".join(lines)

    p = status.progress
    lines.append(f"Started: {_ts(p.started_at)}")
    if p.completed_at:
        lines.append(
            f"Completed: {_ts(p.completed_at)} "
            f"({_duration(p.started_at, p.completed_at)})"
        )
    lines.append("")
    lines.append(
        f"Files: {p.files_processed}/{p.files_found} processed, "
        f"{p.files_skipped - p.files_oversized} unchanged, "
        + (f"{p.files_oversized} oversized, " if p.files_oversized else "")
        + f"{p.files_failed} failed"
    )
    lines.append(
        f"Sailings: {p.sailings_upserted} upserted "
        f"({p.sailings_created} new, {p.sailings_updated} updated)"
    )
    lines.append(f"Stops written: {p.stops_written}")
    lines.append(f"Prices written: {p.prices_written}")
    if p.unresolved_references:
        lines.append(f"Unresolved catalog references: {p.unresolved_references}")

    if status.failure:
        lines.append("")
        lines.append(f"Failure: {status.failure}")

    if status.errors:
        lines.append("")
        lines.append(f"Errors ({status.error_count}):")
        for err in status.errors[-_ERROR_PREVIEW:]:
            lines.append(f"  {err.path}: {err.message}")
        hidden = len(status.errors) - _ERROR_PREVIEW
        if hidden > 0:
            lines.append(f"  ... ({hidden} earlier errors not shown)")

    return "\n".join(lines)


def format_run_summary(status: SyncStatus, cache: CacheStats | None = None) -> str:
    """Format the end-of-run summary block written to the log."""
    p = status.progress
    rule = "=" * 60
    lines = [
        rule,
        f"SYNC RUN {status.state.value.upper()}"
        + (" (DRY RUN)" if status.options and status.options.dry_run else ""),
        rule,
        f"Duration:          {_duration(p.started_at, p.completed_at)}",
        f"Files found:       {p.files_found}",
        f"Files processed:   {p.files_processed}",
        f"Files unchanged:   {p.files_skipped - p.files_oversized}",
        f"Files oversized:   {p.files_oversized}",
        f"Files failed:      {p.files_failed}",
        f"Sailings upserted: {p.sailings_upserted}",
        f"Stops written:     {p.stops_written}",
        f"Prices written:    {p.prices_written}",
    ]
    if cache is not None:
        lines.append(
            f"Cache hit rate:    {cache.hit_rate * 100:.1f}% "
            f"({cache.hits} hits, {cache.misses} misses)"
        )
    if status.failure:
        lines.append(f"Failure:           {status.failure}")
    lines.append(rule)
    return "\n".join(lines)


def format_history(records: list[SyncHistoryRecord]) -> str:
    if not records:
        return "No sync runs recorded."
    lines = [f"Last {len(records)} sync runs:"]
    for rec in records:
        metrics = rec.metrics
        lines.append(
            f"  #{rec.id} {rec.status:<10} started {_ts(rec.started_at)} "
            f"({_duration(rec.started_at, rec.completed_at)}): "
            f"{metrics.get('files_processed', 0)}/{metrics.get('files_found', 0)} files, "
            f"{metrics.get('sailings_upserted', 0)} sailings, "
            f"{rec.error_count} errors"
        )
    return "\n".join(lines)


# ------------------------------------------------------------------
# Cache, connection and storage
# ------------------------------------------------------------------


def format_cache_stats(stats: CacheStats) -> str:
    return "\n".join(
        [
            "Reference cache:",
            f"  Cruise lines:   {stats.cruise_lines}",
            f"  Cruise ships:   {stats.cruise_ships} "
            f"({stats.ship_keys}/{stats.max_ship_entries} filter keys)",
            f"  Cruise regions: {stats.cruise_regions}",
            f"  Cruise ports:   {stats.cruise_ports}",
            f"  Total entries:  {stats.total_entries}",
            f"  Hit rate:       {stats.hit_rate * 100:.1f}% "
            f"({stats.hits} hits, {stats.misses} misses)",
            f"  TTL:            {stats.ttl_seconds:g}s",
        ]
    )


def format_connection_test(result: ConnectionTestResult) -> str:
    verdict = "OK" if result.success else "FAILED"
    transport = "FTPS" if result.secure else "FTP"
    return (
        f"Connection to {result.host} ({transport}): {verdict} "
        f"in {result.elapsed_ms}ms\n{result.message}"
    )


def format_storage_stats(stats: StorageStats) -> str:
    return "\n".join(
        [
            "Raw snapshot storage:",
            f"  Snapshots:          {stats.total_snapshots}",
            f"  Total size:         {_kib(stats.total_payload_bytes)}",
            f"  Average size:       {_kib(stats.average_payload_bytes)}",
            f"  Largest:            {_kib(stats.max_payload_bytes)}",
            f"  Expired:            {stats.expired}",
            f"  Expiring in 24h:    {stats.expiring_within_24h}",
            f"  Oldest fetch:       {_ts(stats.oldest_fetched_at)}",
            f"  Newest fetch:       {_ts(stats.newest_fetched_at)}",
        ]
    )


def format_coverage_stats(stats: CoverageStats) -> str:
    def _day(value: date | None) -> str:
        return value.isoformat() if value else "-"

    return "\n".join(
        [
            "Inventory coverage:",
            f"  Sailings:       {stats.sailings} ({stats.upcoming_sailings} upcoming)",
            f"  Stops:          {stats.stops}",
            f"  Prices:         {stats.prices}",
            f"  Cruise lines:   {stats.cruise_lines}",
            f"  Cruise ships:   {stats.cruise_ships}",
            f"  Cruise regions: {stats.cruise_regions}",
            f"  Cruise ports:   {stats.cruise_ports}",
            f"  Sail dates:     {_day(stats.earliest_sail_date)} to {_day(stats.latest_sail_date)}",
        ]
    )


def format_purge_result(result: PurgeResult) -> str:
    if result.purged == 0:
        return f"No expired snapshots to purge ({result.duration_ms}ms)."
    return (
        f"Purged {result.purged} expired snapshots in {result.duration_ms}ms "
        f"(largest {_kib(result.max_payload_size)}, "
        f"oldest expiry {_ts(result.oldest_expired_at)})"
    )


def format_cleanup_preview(preview: CleanupPreview) -> str:
    lines = [
        f"Cleanup preview (end date before {preview.cutoff_date.isoformat()}, "
        f"min age {preview.min_age_days} days):",
        f"  Sailings: {preview.sailings}",
        f"  Stops:    {preview.stops}",
        f"  Prices:   {preview.prices}",
    ]
    if preview.oldest_end_date:
        lines.append(f"  Oldest end date: {preview.oldest_end_date.isoformat()}")
    if preview.sailings == 0:
        lines.append("Nothing to clean up.")
    return "\n".join(lines)


def format_cleanup_result(result: CleanupResult) -> str:
    return (
        f"Cleanup before {result.cutoff_date.isoformat()} deleted "
        f"{result.sailings_deleted} sailings, {result.stops_deleted} stops, "
        f"{result.prices_deleted} prices in {result.duration_ms}ms"
    )


# ------------------------------------------------------------------
# JSON output
# ------------------------------------------------------------------


def to_json(model: BaseModel | list[BaseModel]) -> dict:
    """Convert a result model into a JSON-safe dict.

    Lists are wrapped as ``{"items": [...]}`` because MCP
    ``structuredContent`` must be an object.
    """
    if isinstance(model, list):
        return {"items": [m.model_dump(mode="json") for m in model]}
    return model.model_dump(mode="json")
