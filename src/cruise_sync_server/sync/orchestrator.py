"""Sync orchestrator: the process-wide run state machine.

``SyncOrchestrator`` owns the single sync run.  It:

1. Rejects a start while a run is active (``SyncConflictError``).
2. Lists candidate files from the remote source.  A connection failure
   here fails the run before any file is touched.
3. Loads stored snapshots once, then for each file runs the delta
   decision and either skips it or downloads, parses and upserts it.
4. Checks the cancellation flag only between files, so every file is
   either fully committed or fully rolled back when the flag is honoured.
5. Records the run in ``sync_history`` (created at start, refreshed every
   N files, finalised at the end) and logs a summary.

Error handling is per file: a single download, parse or write failure
does not abort the run.

Only the thread executing the run mutates its counters; readers get an
immutable ``SyncStatus`` built under the lock.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from contextlib import contextmanager
from datetime import datetime
from typing import Callable, Iterator

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from ..catalog import ReferenceDataCache
from ..core.remote_source import RemoteFile, RemoteSource
from ..errors import (
    MaintenanceBlockedError,
    PayloadParseError,
    SourceConnectionError,
    SourceDownloadError,
    SyncConflictError,
)
from ..store import Database, SyncHistory, utcnow
from .delta import SnapshotRecord, decide, load_snapshots
from .models import (
    MAX_RECORDED_ERRORS,
    FileAction,
    FileError,
    RunState,
    SyncHistoryRecord,
    SyncOptions,
    SyncProgress,
    SyncStatus,
)
from .parser import parse_sailing
from .reporter import format_run_summary
from .upsert import SailingUpserter

logger = logging.getLogger(__name__)

DEFAULT_MAX_FILE_SIZE = 500_000
DEFAULT_HISTORY_INTERVAL = 50

_COUNTERS = (
    "files_found",
    "files_processed",
    "files_skipped",
    "files_failed",
    "files_oversized",
    "sailings_upserted",
    "sailings_created",
    "sailings_updated",
    "stops_written",
    "prices_written",
    "unresolved_references",
)


class SyncOrchestrator:
    """Drive sync runs against one remote source and one store.

    Args:
        database: Store holding sailings, snapshots and history.
        source: Remote file source.
        upserter: Per-file write pipeline.
        cache: Reference cache (stats are reset at run start).
        max_file_size_bytes: Larger files are skipped without download.
        history_update_interval: Persist progress every N files.
        clock: UTC time source.
    """

    def __init__(
        self,
        database: Database,
        source: RemoteSource,
        upserter: SailingUpserter,
        cache: ReferenceDataCache,
        max_file_size_bytes: int = DEFAULT_MAX_FILE_SIZE,
        history_update_interval: int = DEFAULT_HISTORY_INTERVAL,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.database = database
        self.source = source
        self.upserter = upserter
        self.cache = cache
        self.max_file_size_bytes = max_file_size_bytes
        self.history_update_interval = max(1, history_update_interval)
        self._clock = clock

        self._lock = threading.Lock()
        self._thread: threading.Thread | None = None
        self._state = RunState.IDLE
        self._cancel_requested = False
        self._options: SyncOptions | None = None
        self._counters: dict[str, int] = dict.fromkeys(_COUNTERS, 0)
        self._started_at: datetime | None = None
        self._completed_at: datetime | None = None
        self._errors: deque[FileError] = deque(maxlen=MAX_RECORDED_ERRORS)
        self._error_count = 0
        self._failure: str | None = None
        self._history_id: int | None = None
        self._maintenance_active = 0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def start(self, options: SyncOptions | None = None) -> SyncStatus:
        """Begin a run on a background thread.

        Returns:
            Status snapshot taken right after the run was accepted.

        Raises:
            SyncConflictError: If a run is already active.
        """
        with self._lock:
            self._begin(options or SyncOptions())
            self._thread = threading.Thread(
                target=self._execute, name="cruise-sync-run", daemon=True
            )
            self._thread.start()
        return self.status()

    def run(self, options: SyncOptions | None = None) -> SyncStatus:
        """Execute a run in the calling thread and return the final status.

        Raises:
            SyncConflictError: If a run is already active.
        """
        with self._lock:
            self._begin(options or SyncOptions())
        self._execute()
        return self.status()

    def cancel(self) -> bool:
        """Request cooperative cancellation.

        Returns:
            True if an active run will stop after its current file,
            False if there was no active run.
        """
        with self._lock:
            if not self._state.is_active:
                return False
            if not self._cancel_requested:
                logger.info("Cancellation requested for active sync run")
            self._cancel_requested = True
            self._state = RunState.CANCELLING
            return True

    def reset(self) -> SyncStatus:
        """Return a finished run to ``idle``.

        Raises:
            SyncConflictError: If a run is still active.
        """
        with self._lock:
            if self._state.is_active:
                raise SyncConflictError(
                    "Cannot reset while a sync run is active"
                )
            self._clear()
            self._state = RunState.IDLE
        return self.status()

    def status(self) -> SyncStatus:
        """Immutable snapshot of the current run."""
        with self._lock:
            return SyncStatus(
                state=self._state,
                cancel_requested=self._cancel_requested,
                options=self._options,
                progress=SyncProgress(
                    **self._counters,
                    started_at=self._started_at,
                    completed_at=self._completed_at,
                ),
                errors=list(self._errors),
                error_count=self._error_count,
                failure=self._failure,
                history_id=self._history_id,
            )

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._state.is_active

    @contextmanager
    def maintenance_window(self, operation: str) -> Iterator[None]:
        """Hold off sync starts while a destructive maintenance job runs.

        Entering and ``start()`` both check under the run lock, so a
        cleanup and a sync run never overlap in either order.

        Raises:
            MaintenanceBlockedError: If a run is active on entry.
        """
        with self._lock:
            if self._state.is_active:
                raise MaintenanceBlockedError(
                    f"Cannot {operation} while a sync run is active"
                )
            self._maintenance_active += 1
        try:
            yield
        finally:
            with self._lock:
                self._maintenance_active -= 1

    def wait(self, timeout: float | None = None) -> bool:
        """Block until a background run finishes.

        Returns:
            True when no run thread is alive afterwards.
        """
        thread = self._thread
        if thread is None:
            return True
        thread.join(timeout)
        return not thread.is_alive()

    def history(self, limit: int = 20) -> list[SyncHistoryRecord]:
        """Most recent persisted runs, newest first."""
        if limit < 1:
            raise ValueError("limit must be at least 1")
        with self.database.session_scope() as session:
            rows = session.scalars(
                select(SyncHistory)
                .order_by(SyncHistory.started_at.desc(), SyncHistory.id.desc())
                .limit(limit)
            ).all()
            return [
                SyncHistoryRecord(
                    id=row.id,
                    status=row.status,
                    options=row.options or {},
                    metrics=row.metrics or {},
                    error_count=row.error_count,
                    errors=row.errors or [],
                    started_at=row.started_at,
                    completed_at=row.completed_at,
                )
                for row in rows
            ]

    # ------------------------------------------------------------------
    # State transitions (callers hold the lock)
    # ------------------------------------------------------------------

    def _clear(self) -> None:
        self._cancel_requested = False
        self._options = None
        self._counters = dict.fromkeys(_COUNTERS, 0)
        self._started_at = None
        self._completed_at = None
        self._errors.clear()
        self._error_count = 0
        self._failure = None
        self._history_id = None

    def _begin(self, options: SyncOptions) -> None:
        if self._state.is_active:
            raise SyncConflictError(
                f"A sync run is already {self._state.value}"
            )
        if self._maintenance_active:
            raise SyncConflictError(
                "Cannot start a sync run while storage maintenance is running"
            )
        self._clear()
        self._options = options
        self._state = RunState.RUNNING
        self._started_at = self._clock()
        logger.info(
            "Sync run started: year=%s month=%s force_full=%s dry_run=%s max_files=%s",
            options.target_year,
            options.target_month,
            options.force_full_sync,
            options.dry_run,
            options.max_files,
        )

    # ------------------------------------------------------------------
    # Run loop
    # ------------------------------------------------------------------

    def _execute(self) -> None:
        try:
            self._execute_inner()
        except Exception as exc:
            logger.exception("Sync run aborted by unexpected error")
            self._finish(RunState.FAILED, failure=f"Unexpected error: {exc}")

    def _execute_inner(self) -> None:
        options = self._options or SyncOptions()
        self.cache.reset_stats()
        self._create_history(options)

        try:
            files = self.source.list_sailing_files(
                year=options.target_year,
                month=options.target_month,
                max_files=options.max_files,
            )
        except SourceConnectionError as exc:
            logger.error("Listing failed, sync run aborted: %s", exc)
            self._finish(RunState.FAILED, failure=str(exc))
            return

        with self._lock:
            self._counters["files_found"] = len(files)
        logger.info("Found %d candidate sailing files", len(files))

        snapshots: dict[str, SnapshotRecord] = {}
        if not options.force_full_sync and files:
            snapshots = load_snapshots(self.database, [f.path for f in files])

        for remote_file in files:
            if self._cancellation_pending():
                logger.info("Sync run cancelled between files")
                break
            self._process_file(
                remote_file, snapshots.get(remote_file.path), options
            )
            done = self._files_done()
            if done % self.history_update_interval == 0:
                self._update_history()

        final = (
            RunState.CANCELLED
            if self._cancellation_pending()
            else RunState.COMPLETED
        )
        self._finish(final)

    def _cancellation_pending(self) -> bool:
        with self._lock:
            return self._cancel_requested

    def _files_done(self) -> int:
        with self._lock:
            return (
                self._counters["files_processed"]
                + self._counters["files_failed"]
            )

    def _bump(self, **increments: int) -> None:
        with self._lock:
            for name, value in increments.items():
                self._counters[name] += value

    def _record_failure(self, path: str, message: str) -> None:
        with self._lock:
            self._counters["files_failed"] += 1
            self._error_count += 1
            self._errors.append(
                FileError(path=path, message=message, at=self._clock())
            )

    def _process_file(
        self,
        remote_file: RemoteFile,
        snapshot: SnapshotRecord | None,
        options: SyncOptions,
    ) -> None:
        """One unit of work: decide, then download, parse and write.

        Unchanged files are skipped first; a changed file over the size
        limit is skipped too and counted as oversized.
        """
        action = decide(remote_file, snapshot, options.force_full_sync)
        if action is FileAction.SKIP:
            self._bump(files_processed=1, files_skipped=1)
            return

        if remote_file.size > self.max_file_size_bytes:
            logger.warning(
                "Skipping oversized file %s (%d bytes, limit %d)",
                remote_file.path,
                remote_file.size,
                self.max_file_size_bytes,
            )
            self._bump(files_processed=1, files_skipped=1, files_oversized=1)
            return

        try:
            content = self.source.download(remote_file)
            parsed = parse_sailing(remote_file.path, content)
            if options.dry_run:
                outcome = self.upserter.preview(parsed)
            else:
                outcome = self.upserter.upsert(parsed, remote_file, content)
        except (SourceDownloadError, PayloadParseError) as exc:
            logger.warning("File failed: %s", exc)
            self._record_failure(remote_file.path, str(exc))
            return
        except SQLAlchemyError as exc:
            logger.error("Write failed for %s: %s", remote_file.path, exc)
            self._record_failure(remote_file.path, f"write failed: {exc}")
            return
        except Exception as exc:
            logger.exception("Unexpected error on %s", remote_file.path)
            self._record_failure(remote_file.path, str(exc))
            return

        self._bump(
            files_processed=1,
            sailings_upserted=1,
            sailings_created=int(outcome.created),
            sailings_updated=int(not outcome.created),
            stops_written=outcome.stops_written,
            prices_written=outcome.prices_written,
            unresolved_references=outcome.unresolved_references,
        )

    def _finish(self, state: RunState, failure: str | None = None) -> None:
        with self._lock:
            self._state = state
            self._failure = failure
            self._completed_at = self._clock()
        self._update_history(final=True)

        status = self.status()
        summary = format_run_summary(status, self.cache.stats())
        for line in summary.splitlines():
            logger.info(line)

    # ------------------------------------------------------------------
    # History (best effort)
    # ------------------------------------------------------------------

    def _create_history(self, options: SyncOptions) -> None:
        try:
            with self.database.session_scope() as session:
                row = SyncHistory(
                    status=RunState.RUNNING.value,
                    options=options.model_dump(mode="json"),
                    metrics={},
                    error_count=0,
                    errors=[],
                    started_at=self._started_at or self._clock(),
                )
                session.add(row)
                session.flush()
                history_id = row.id
        except SQLAlchemyError as exc:
            logger.warning("Could not create sync history row: %s", exc)
            return
        with self._lock:
            self._history_id = history_id

    def _update_history(self, final: bool = False) -> None:
        status = self.status()
        if status.history_id is None:
            return
        try:
            with self.database.session_scope() as session:
                row = session.get(SyncHistory, status.history_id)
                if row is None:
                    return
                row.status = status.state.value
                row.metrics = status.progress.model_dump(
                    mode="json", exclude={"started_at", "completed_at"}
                )
                row.error_count = status.error_count
                row.errors = [
                    err.model_dump(mode="json") for err in status.errors
                ]
                if final:
                    row.completed_at = status.progress.completed_at
        except SQLAlchemyError as exc:
            logger.warning(
                "Could not update sync history %s: %s", status.history_id, exc
            )
