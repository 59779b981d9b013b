"""Tests for cruise_sync_server.sync.orchestrator — the sync run state machine.

Covers:
- Full runs over the fake source: created, skipped on re-run, force full
- Dry run writes nothing
- Per-file failures (download, parse) do not abort the run
- Oversized files are skipped after the unchanged check
- Listing failure fails the run
- Conflict on concurrent start, cooperative cancellation between files
- reset() and history()
"""

import threading
from datetime import datetime
from unittest.mock import patch

import pytest
from sqlalchemy import func, select

from cruise_sync_server.errors import MaintenanceBlockedError, SyncConflictError
from cruise_sync_server.store import RawSnapshot, Sailing
from cruise_sync_server.sync.models import RunState, SyncOptions

MODIFIED = datetime(2026, 4, 30, 9, 0)


def _publish(fake_source, payload_factory, count=3, year=2026, month=5):
    paths = []
    for i in range(count):
        path = f"/{year}/{month:02d}/8/456/S{100 + i}.json"
        fake_source.add(path, payload_factory(), modified_at=MODIFIED)
        paths.append(path)
    return paths


def _count(database, model):
    with database.session_scope() as session:
        return session.scalar(select(func.count()).select_from(model))


def _sailing_state(database, path):
    """Sailing columns, child rows and snapshot for one feed file."""
    with database.session_scope() as session:
        sailing = session.scalars(
            select(Sailing).where(Sailing.source_path == path)
        ).one()
        snapshot = session.get(RawSnapshot, path)
        return {
            "id": sailing.id,
            "name": sailing.name,
            "last_synced_at": sailing.last_synced_at,
            "cheapest_inside_cents": sailing.cheapest_inside_cents,
            "stops": sorted(
                (s.id, s.sequence, s.port_name) for s in sailing.stops
            ),
            "prices": sorted(
                (p.id, p.cabin_code, p.price_cents) for p in sailing.prices
            ),
            "snapshot_signature": snapshot.content_signature,
            "snapshot_expires_at": snapshot.expires_at,
            "snapshot_fetched_at": snapshot.fetched_at,
        }


class TestRun:
    """Synchronous runs through run()."""

    def test_initial_run_creates_sailings(
        self, services, fake_source, payload_factory
    ):
        _publish(fake_source, payload_factory)

        status = services.orchestrator.run()

        assert status.state is RunState.COMPLETED
        progress = status.progress
        assert progress.files_found == 3
        assert progress.files_processed == 3
        assert progress.sailings_created == 3
        assert progress.sailings_updated == 0
        assert progress.stops_written == 9
        assert progress.completed_at is not None
        assert _count(services.database, Sailing) == 3
        assert _count(services.database, RawSnapshot) == 3

    def test_unchanged_files_are_skipped(
        self, services, fake_source, payload_factory
    ):
        _publish(fake_source, payload_factory)
        services.orchestrator.run()
        fake_source.downloads.clear()

        status = services.orchestrator.run()

        assert status.progress.files_skipped == 3
        assert status.progress.files_processed == 3
        assert status.progress.sailings_upserted == 0
        assert fake_source.downloads == []

    def test_changed_file_is_reingested(
        self, services, fake_source, payload_factory
    ):
        paths = _publish(fake_source, payload_factory)
        services.orchestrator.run()
        fake_source.add(
            paths[0],
            payload_factory(name="Renamed"),
            modified_at=datetime(2026, 5, 2, 9, 0),
        )

        status = services.orchestrator.run()

        assert status.progress.files_skipped == 2
        assert status.progress.sailings_updated == 1
        with services.database.session_scope() as session:
            names = set(session.scalars(select(Sailing.name)))
        assert "Renamed" in names

    def test_force_full_sync_ignores_snapshots(
        self, services, fake_source, payload_factory
    ):
        _publish(fake_source, payload_factory)
        services.orchestrator.run()

        status = services.orchestrator.run(SyncOptions(force_full_sync=True))

        assert status.progress.files_skipped == 0
        assert status.progress.sailings_updated == 3
        assert _count(services.database, Sailing) == 3

    def test_dry_run_writes_nothing(
        self, services, fake_source, payload_factory
    ):
        _publish(fake_source, payload_factory)

        status = services.orchestrator.run(SyncOptions(dry_run=True))

        assert status.state is RunState.COMPLETED
        assert status.progress.sailings_created == 3
        assert _count(services.database, Sailing) == 0
        assert _count(services.database, RawSnapshot) == 0

    def test_dry_run_leaves_existing_rows_untouched(
        self, services, fake_source, payload_factory
    ):
        (path,) = _publish(fake_source, payload_factory, count=1)
        services.orchestrator.run()
        before = _sailing_state(services.database, path)

        fake_source.add(
            path,
            payload_factory(name="Renamed Voyage", cachedprices={"IA": {"price": 1}}),
            modified_at=datetime(2026, 5, 15, 9, 0),
        )
        status = services.orchestrator.run(SyncOptions(dry_run=True))

        assert status.progress.sailings_updated == 1
        assert fake_source.downloads.count(path) == 2
        assert _sailing_state(services.database, path) == before

    def test_filters_passed_to_listing(
        self, services, fake_source, payload_factory
    ):
        _publish(fake_source, payload_factory, count=2, month=5)
        _publish(fake_source, payload_factory, count=2, month=6)

        status = services.orchestrator.run(
            SyncOptions(target_year=2026, target_month=6)
        )

        assert status.progress.files_found == 2
        assert all("/06/" in path for path in fake_source.downloads)

    def test_max_files(self, services, fake_source, payload_factory):
        _publish(fake_source, payload_factory, count=5)

        status = services.orchestrator.run(SyncOptions(max_files=2))

        assert status.progress.files_found == 2


class TestRunFailures:
    """Per-file and run-level failures."""

    def test_download_failure_is_per_file(
        self, services, fake_source, payload_factory
    ):
        paths = _publish(fake_source, payload_factory)
        fake_source.download_errors.add(paths[1])

        status = services.orchestrator.run()

        assert status.state is RunState.COMPLETED
        assert status.progress.files_failed == 1
        assert status.progress.files_processed == 2
        assert status.error_count == 1
        assert status.errors[0].path == paths[1]

    def test_parse_failure_is_per_file(
        self, services, fake_source, payload_factory
    ):
        paths = _publish(fake_source, payload_factory)
        fake_source.add(paths[0], b"{broken", modified_at=MODIFIED)

        status = services.orchestrator.run()

        assert status.progress.files_failed == 1
        assert "invalid JSON" in status.errors[0].message
        assert _count(services.database, Sailing) == 2

    def test_failed_file_has_no_snapshot(
        self, services, fake_source, payload_factory
    ):
        paths = _publish(fake_source, payload_factory)
        fake_source.add(paths[0], b"{broken", modified_at=MODIFIED)
        services.orchestrator.run()

        with services.database.session_scope() as session:
            assert session.get(RawSnapshot, paths[0]) is None

    def test_oversized_file_skipped_without_download(
        self, services, fake_source, payload_factory
    ):
        path = "/2026/05/8/456/BIG.json"
        fake_source.add(path, payload_factory(), size=600_000)

        status = services.orchestrator.run()

        progress = status.progress
        assert progress.files_skipped == 1
        assert progress.files_oversized == 1
        assert progress.files_processed == 1
        assert progress.files_failed == 0
        assert status.error_count == 0
        assert fake_source.downloads == []

    def test_unchanged_check_runs_before_size_limit(
        self, services, fake_source, payload_factory
    ):
        _publish(fake_source, payload_factory, count=1)
        services.orchestrator.run()
        services.orchestrator.max_file_size_bytes = 10

        status = services.orchestrator.run()

        assert status.progress.files_skipped == 1
        assert status.progress.files_oversized == 0

    def test_listing_failure_fails_run(
        self, services, fake_source, failing_listing
    ):
        fake_source.list_error = failing_listing

        status = services.orchestrator.run()

        assert status.state is RunState.FAILED
        assert "Cannot connect" in status.failure
        assert status.progress.files_found == 0

    def test_unresolved_references_counted(
        self, services, fake_source, payload_factory
    ):
        fake_source.add("/2026/05/99/999/S1.json", payload_factory())

        status = services.orchestrator.run()

        assert status.progress.sailings_created == 1
        assert status.progress.unresolved_references == 2


class TestConcurrency:
    """Background runs, conflicts and cancellation."""

    def test_start_while_running_conflicts(
        self, services, fake_source, payload_factory
    ):
        _publish(fake_source, payload_factory, count=2)
        entered = threading.Event()
        release = threading.Event()

        def block(_path):
            entered.set()
            release.wait(5)

        fake_source.on_download = block
        orchestrator = services.orchestrator

        orchestrator.start()
        try:
            assert entered.wait(5)
            assert orchestrator.is_running
            before = orchestrator.status()
            with pytest.raises(SyncConflictError):
                orchestrator.start(SyncOptions(force_full_sync=True, max_files=1))
            with pytest.raises(SyncConflictError):
                orchestrator.reset()
            after = orchestrator.status()
            assert after == before
            assert after.state is RunState.RUNNING
            assert after.options == SyncOptions()
            assert after.progress.started_at == before.progress.started_at
            assert after.progress.files_found == 2
        finally:
            release.set()
            assert orchestrator.wait(5)

        assert orchestrator.status().state is RunState.COMPLETED

    def test_cancel_stops_between_files(
        self, services, fake_source, payload_factory
    ):
        _publish(fake_source, payload_factory, count=4)
        orchestrator = services.orchestrator
        fake_source.on_download = lambda _path: orchestrator.cancel()

        status = orchestrator.run()

        assert status.state is RunState.CANCELLED
        assert status.cancel_requested is True
        # The in-flight file still commits
        assert status.progress.files_processed == 1
        assert _count(services.database, Sailing) == 1

    def test_cancel_when_idle(self, services):
        assert services.orchestrator.cancel() is False
        assert services.orchestrator.status().state is RunState.IDLE

    def test_terminal_state_persists_until_reset(
        self, services, fake_source, payload_factory
    ):
        _publish(fake_source, payload_factory, count=1)
        orchestrator = services.orchestrator
        orchestrator.run()
        assert orchestrator.status().state is RunState.COMPLETED

        status = orchestrator.reset()

        assert status.state is RunState.IDLE
        assert status.progress.files_found == 0

    def test_wait_without_run(self, services):
        assert services.orchestrator.wait(0.1) is True


class TestMaintenanceWindow:
    """Sync runs and destructive maintenance exclude each other."""

    def test_start_rejected_during_maintenance(self, services):
        orchestrator = services.orchestrator

        with orchestrator.maintenance_window("run cleanup"):
            with pytest.raises(SyncConflictError, match="storage maintenance"):
                orchestrator.start()
            with pytest.raises(SyncConflictError):
                orchestrator.run()
            assert orchestrator.status().state is RunState.IDLE

        assert orchestrator.run().state is RunState.COMPLETED

    def test_window_released_on_error(self, services):
        with pytest.raises(RuntimeError):
            with services.orchestrator.maintenance_window("purge"):
                raise RuntimeError("boom")

        assert services.orchestrator.run().state is RunState.COMPLETED

    def test_window_refused_while_running(
        self, services, fake_source, payload_factory
    ):
        _publish(fake_source, payload_factory, count=1)
        entered = threading.Event()
        release = threading.Event()

        def block(_path):
            entered.set()
            release.wait(5)

        fake_source.on_download = block
        services.orchestrator.start()
        try:
            assert entered.wait(5)
            with pytest.raises(MaintenanceBlockedError, match="run cleanup"):
                with services.orchestrator.maintenance_window("run cleanup"):
                    pass
        finally:
            release.set()
            services.orchestrator.wait(5)

    def test_cleanup_holds_off_sync(self, services):
        """A sync start during a cleanup transaction is rejected."""
        orchestrator = services.orchestrator
        outcome = {}
        original = services.database.session_scope

        def session_scope():
            try:
                orchestrator.start()
            except SyncConflictError as exc:
                outcome["error"] = exc
            return original()

        with patch.object(services.database, "session_scope", session_scope):
            services.maintenance.run_cleanup(0)

        assert "storage maintenance" in str(outcome["error"])
        assert orchestrator.status().state is RunState.IDLE


class TestHistory:
    """Persisted run records."""

    def test_run_recorded(self, services, fake_source, payload_factory):
        _publish(fake_source, payload_factory, count=2)
        services.orchestrator.run(SyncOptions(target_year=2026))

        records = services.orchestrator.history(10)

        assert len(records) == 1
        record = records[0]
        assert record.status == "completed"
        assert record.options["target_year"] == 2026
        assert record.metrics["files_found"] == 2
        assert record.completed_at is not None

    def test_failed_run_recorded(self, services, fake_source, failing_listing):
        fake_source.list_error = failing_listing
        services.orchestrator.run()

        assert services.orchestrator.history(1)[0].status == "failed"

    def test_errors_recorded(self, services, fake_source, payload_factory):
        paths = _publish(fake_source, payload_factory, count=2)
        fake_source.download_errors.add(paths[0])
        services.orchestrator.run()

        record = services.orchestrator.history(1)[0]
        assert record.error_count == 1
        assert record.errors[0]["path"] == paths[0]

    def test_newest_first_and_limit(
        self, services, fake_source, payload_factory
    ):
        _publish(fake_source, payload_factory, count=1)
        for _ in range(3):
            services.orchestrator.run()

        records = services.orchestrator.history(2)
        assert len(records) == 2
        assert records[0].id > records[1].id

    def test_invalid_limit(self, services):
        with pytest.raises(ValueError):
            services.orchestrator.history(0)
