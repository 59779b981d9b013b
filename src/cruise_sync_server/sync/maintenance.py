"""Storage maintenance: snapshot purge and past-sailing cleanup.

Destructive operations (``purge_expired``, ``run_cleanup``) run inside the
orchestrator's maintenance window: they raise ``MaintenanceBlockedError``
while a sync is active, and a sync cannot start until they finish.
Previews, storage stats and coverage stats are read-only and always allowed.

``cleanup_preview`` and ``run_cleanup`` share one selection
(``end_date < today - min_age_days``), so a cleanup that immediately
follows a preview deletes exactly the previewed counts unless something
wrote to the store in between.
"""

from __future__ import annotations

import logging
import time
from contextlib import AbstractContextManager, nullcontext
from datetime import date, datetime, timedelta
from typing import Callable

from sqlalchemy import delete, func, select

from ..store import (
    CruiseLine,
    CruisePort,
    CruiseRegion,
    CruiseShip,
    Database,
    RawSnapshot,
    Sailing,
    SailingPrice,
    SailingStop,
    utcnow,
)
from .models import (
    CleanupPreview,
    CleanupResult,
    CoverageStats,
    PurgeResult,
    StorageStats,
)

logger = logging.getLogger(__name__)

# Roughly a century of retention
MAX_MIN_AGE_DAYS = 36_500


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


class StorageMaintenance:
    """Purge and retention cleanup over the inventory store.

    Args:
        database: Target store.
        exclusive: Maps an operation name to a context manager held for
            the whole destructive operation; it raises
            ``MaintenanceBlockedError`` while a sync run is active.
            Usually ``SyncOrchestrator.maintenance_window``.
        clock: UTC time source; its date is "today" for cutoffs.
    """

    def __init__(
        self,
        database: Database,
        exclusive: Callable[[str], AbstractContextManager] | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.database = database
        self._exclusive = exclusive
        self._clock = clock

    def _guard(self, operation: str) -> AbstractContextManager:
        if self._exclusive is None:
            return nullcontext()
        return self._exclusive(operation)

    @staticmethod
    def _check_age(min_age_days: int) -> None:
        if min_age_days < 0:
            raise ValueError(
                f"min_age_days must be >= 0, got {min_age_days}"
            )
        if min_age_days > MAX_MIN_AGE_DAYS:
            raise ValueError(
                f"min_age_days must be <= {MAX_MIN_AGE_DAYS}, got {min_age_days}"
            )

    def cutoff_for(self, min_age_days: int) -> date:
        self._check_age(min_age_days)
        return self._clock().date() - timedelta(days=min_age_days)

    # ------------------------------------------------------------------
    # Raw snapshot purge
    # ------------------------------------------------------------------

    def purge_expired(self) -> PurgeResult:
        """Delete snapshots whose ``expires_at`` is in the past.

        Raises:
            MaintenanceBlockedError: If a sync run is active.
        """
        with self._guard("purge expired snapshots"):
            return self._purge_expired()

    def _purge_expired(self) -> PurgeResult:
        started = time.monotonic()
        now = self._clock()
        expired = RawSnapshot.expires_at < now

        with self.database.session_scope() as session:
            count, max_size, oldest = session.execute(
                select(
                    func.count(),
                    func.max(RawSnapshot.payload_size),
                    func.min(RawSnapshot.expires_at),
                ).where(expired)
            ).one()
            logger.info(
                "Found %d expired snapshots to purge (max size: %s bytes, oldest expiry: %s)",
                count,
                max_size or 0,
                oldest.isoformat() if oldest else "N/A",
            )
            purged = 0
            if count:
                purged = session.execute(delete(RawSnapshot).where(expired)).rowcount

        result = PurgeResult(
            purged=purged,
            max_payload_size=max_size or 0,
            oldest_expired_at=oldest,
            duration_ms=_elapsed_ms(started),
        )
        logger.info(
            "Purged %d expired snapshots in %dms", result.purged, result.duration_ms
        )
        return result

    # ------------------------------------------------------------------
    # Past sailing cleanup
    # ------------------------------------------------------------------

    def _past_ids(self, cutoff: date):
        return select(Sailing.id).where(Sailing.end_date < cutoff)

    def cleanup_preview(self, min_age_days: int) -> CleanupPreview:
        """Count what ``run_cleanup(min_age_days)`` would delete.

        Raises:
            ValueError: If ``min_age_days`` is negative or over
                ``MAX_MIN_AGE_DAYS``.
        """
        cutoff = self.cutoff_for(min_age_days)
        past_ids = self._past_ids(cutoff)

        with self.database.session_scope() as session:
            sailings, oldest = session.execute(
                select(func.count(), func.min(Sailing.end_date)).where(
                    Sailing.end_date < cutoff
                )
            ).one()
            stops = session.scalar(
                select(func.count())
                .select_from(SailingStop)
                .where(SailingStop.sailing_id.in_(past_ids))
            )
            prices = session.scalar(
                select(func.count())
                .select_from(SailingPrice)
                .where(SailingPrice.sailing_id.in_(past_ids))
            )

        return CleanupPreview(
            min_age_days=min_age_days,
            cutoff_date=cutoff,
            sailings=sailings,
            stops=stops or 0,
            prices=prices or 0,
            oldest_end_date=oldest,
        )

    def run_cleanup(self, min_age_days: int) -> CleanupResult:
        """Delete past sailings with their stops and prices in one transaction.

        Raw snapshots are kept; they expire through ``purge_expired``.

        Raises:
            ValueError: If ``min_age_days`` is negative or over
                ``MAX_MIN_AGE_DAYS``.
            MaintenanceBlockedError: If a sync run is active.
        """
        cutoff = self.cutoff_for(min_age_days)
        with self._guard("run cleanup"):
            return self._run_cleanup(min_age_days, cutoff)

    def _run_cleanup(self, min_age_days: int, cutoff: date) -> CleanupResult:
        started = time.monotonic()
        past_ids = self._past_ids(cutoff)

        with self.database.session_scope() as session:
            # Children first so the result does not depend on FK cascades
            prices = session.execute(
                delete(SailingPrice)
                .where(SailingPrice.sailing_id.in_(past_ids))
                .execution_options(synchronize_session=False)
            ).rowcount
            stops = session.execute(
                delete(SailingStop)
                .where(SailingStop.sailing_id.in_(past_ids))
                .execution_options(synchronize_session=False)
            ).rowcount
            sailings = session.execute(
                delete(Sailing)
                .where(Sailing.end_date < cutoff)
                .execution_options(synchronize_session=False)
            ).rowcount

        result = CleanupResult(
            min_age_days=min_age_days,
            cutoff_date=cutoff,
            sailings_deleted=sailings,
            stops_deleted=stops,
            prices_deleted=prices,
            duration_ms=_elapsed_ms(started),
        )
        logger.info(
            "Cleanup before %s removed %d sailings, %d stops, %d prices in %dms",
            cutoff.isoformat(),
            sailings,
            stops,
            prices,
            result.duration_ms,
        )
        return result

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    def storage_stats(self) -> StorageStats:
        """Snapshot counts and payload sizes, including expiry buckets."""
        now = self._clock()
        soon = now + timedelta(hours=24)

        with self.database.session_scope() as session:
            total, total_size, avg_size, max_size, oldest, newest = session.execute(
                select(
                    func.count(),
                    func.sum(RawSnapshot.payload_size),
                    func.avg(RawSnapshot.payload_size),
                    func.max(RawSnapshot.payload_size),
                    func.min(RawSnapshot.fetched_at),
                    func.max(RawSnapshot.fetched_at),
                )
            ).one()
            expired = session.scalar(
                select(func.count())
                .select_from(RawSnapshot)
                .where(RawSnapshot.expires_at < now)
            )
            expiring = session.scalar(
                select(func.count())
                .select_from(RawSnapshot)
                .where(
                    RawSnapshot.expires_at >= now,
                    RawSnapshot.expires_at < soon,
                )
            )

        return StorageStats(
            total_snapshots=total,
            total_payload_bytes=int(total_size or 0),
            average_payload_bytes=int(round(float(avg_size or 0))),
            max_payload_bytes=int(max_size or 0),
            expired=expired or 0,
            expiring_within_24h=expiring or 0,
            oldest_fetched_at=oldest,
            newest_fetched_at=newest,
        )

    def coverage_stats(self) -> CoverageStats:
        """Row counts for sailings, their children and reference data."""
        today = self._clock().date()

        def count(session, model) -> int:
            return session.scalar(select(func.count()).select_from(model)) or 0

        with self.database.session_scope() as session:
            sailings, earliest, latest = session.execute(
                select(
                    func.count(),
                    func.min(Sailing.sail_date),
                    func.max(Sailing.sail_date),
                )
            ).one()
            upcoming = session.scalar(
                select(func.count())
                .select_from(Sailing)
                .where(Sailing.end_date >= today)
            )
            return CoverageStats(
                sailings=sailings,
                upcoming_sailings=upcoming or 0,
                stops=count(session, SailingStop),
                prices=count(session, SailingPrice),
                cruise_lines=count(session, CruiseLine),
                cruise_ships=count(session, CruiseShip),
                cruise_regions=count(session, CruiseRegion),
                cruise_ports=count(session, CruisePort),
                earliest_sail_date=earliest,
                latest_sail_date=latest,
            )
