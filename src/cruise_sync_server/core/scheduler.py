"""Daily jobs on the server's event loop.

``MaintenanceScheduler`` runs snapshot purge and past-sailing cleanup once
a day at fixed wall-clock times in a configured timezone, and optionally a
nightly full sync.  Each job runs in a worker thread via ``run_sync`` so
the event loop keeps serving tool calls.  A failed or blocked maintenance
job is logged and retried the next day.  A failed nightly sync is retried
the same night with exponential backoff; one that collides with an active
run is skipped.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, time, timedelta
from typing import TYPE_CHECKING, Awaitable, Callable
from zoneinfo import ZoneInfo

from ..config_schema import ScheduleConfig
from ..errors import MaintenanceBlockedError, SyncConflictError
from ..sync.maintenance import StorageMaintenance
from ..sync.models import RunState, SyncOptions
from ..sync.reporter import format_cleanup_result, format_purge_result
from .async_utils import run_sync

if TYPE_CHECKING:
    from ..sync.orchestrator import SyncOrchestrator

logger = logging.getLogger(__name__)


def parse_hhmm(value: str) -> time:
    """Parse ``HH:MM`` into a ``time``.

    Raises:
        ValueError: If the value is not a valid 24-hour time.
    """
    hours, sep, minutes = value.partition(":")
    if not sep or not hours.isdigit() or not minutes.isdigit():
        raise ValueError(f"Invalid time '{value}': expected HH:MM")
    return time(int(hours), int(minutes))


def next_run_after(now: datetime, at: str, tz: ZoneInfo) -> datetime:
    """Next occurrence of wall-clock ``at`` in ``tz`` strictly after ``now``.

    Args:
        now: Timezone-aware current time.
        at: ``HH:MM`` in ``tz``.
        tz: Zone the wall-clock time refers to.

    Returns:
        Timezone-aware datetime in ``tz``.
    """
    local_now = now.astimezone(tz)
    candidate = datetime.combine(local_now.date(), parse_hhmm(at), tzinfo=tz)
    if candidate <= local_now:
        candidate = datetime.combine(
            local_now.date() + timedelta(days=1), parse_hhmm(at), tzinfo=tz
        )
    return candidate


class MaintenanceScheduler:
    """Run purge and cleanup daily, plus the nightly sync when enabled.

    Args:
        maintenance: Storage maintenance service.
        schedule: Times, timezone, cleanup age and nightly sync settings.
        orchestrator: Sync engine for the nightly run; without it the
            nightly sync is never scheduled.
        now: Aware clock, injectable for tests.
        sleep: Coroutine used for retry backoff, injectable for tests.
    """

    def __init__(
        self,
        maintenance: StorageMaintenance,
        schedule: ScheduleConfig,
        orchestrator: SyncOrchestrator | None = None,
        now: Callable[[], datetime] | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.maintenance = maintenance
        self.schedule = schedule
        self.orchestrator = orchestrator
        self._sleep = sleep
        self.tz = ZoneInfo(schedule.timezone)
        self._now = now or (lambda: datetime.now(self.tz))
        self._tasks: list[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    @property
    def sync_scheduled(self) -> bool:
        return self.schedule.sync_enabled and self.orchestrator is not None

    def start(self) -> None:
        """Schedule the daily jobs on the running event loop."""
        if self.running:
            return
        self._tasks = [
            asyncio.create_task(
                self._daily("purge", self.schedule.purge_at, self.run_purge),
                name="cruise-sync-purge",
            ),
            asyncio.create_task(
                self._daily(
                    "cleanup", self.schedule.cleanup_at, self.run_cleanup
                ),
                name="cruise-sync-cleanup",
            ),
        ]
        if self.sync_scheduled:
            self._tasks.append(
                asyncio.create_task(
                    self._daily(
                        "sync", self.schedule.sync_at, self.run_scheduled_sync
                    ),
                    name="cruise-sync-nightly",
                )
            )
        logger.info(
            "Maintenance scheduled: purge at %s, cleanup at %s (%s)",
            self.schedule.purge_at,
            self.schedule.cleanup_at,
            self.schedule.timezone,
        )
        if self.sync_scheduled:
            logger.info(
                "Nightly sync scheduled at %s (%s), up to %d attempts",
                self.schedule.sync_at,
                self.schedule.timezone,
                self.schedule.sync_max_retries,
            )

    async def stop(self) -> None:
        """Cancel all jobs and wait for them to unwind."""
        for task in self._tasks:
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

    def seconds_until(self, at: str) -> float:
        now = self._now()
        return max(0.0, (next_run_after(now, at, self.tz) - now).total_seconds())

    async def _daily(self, name: str, at: str, job) -> None:
        while True:
            delay = self.seconds_until(at)
            logger.debug("Next %s in %.0fs", name, delay)
            await asyncio.sleep(delay)
            await job()

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    async def run_purge(self) -> bool:
        """Run one purge; return True on success."""
        try:
            result = await run_sync(self.maintenance.purge_expired)
        except MaintenanceBlockedError as exc:
            logger.warning("Scheduled purge skipped: %s", exc)
            return False
        except Exception:
            logger.exception("Scheduled purge failed")
            return False
        logger.info("Scheduled purge: %s", format_purge_result(result))
        return True

    async def run_cleanup(self) -> bool:
        """Run one cleanup; return True on success."""
        try:
            result = await run_sync(
                self.maintenance.run_cleanup,
                self.schedule.cleanup_min_age_days,
            )
        except MaintenanceBlockedError as exc:
            logger.warning("Scheduled cleanup skipped: %s", exc)
            return False
        except Exception:
            logger.exception("Scheduled cleanup failed")
            return False
        logger.info("Scheduled cleanup: %s", format_cleanup_result(result))
        return True

    async def run_scheduled_sync(self) -> bool:
        """Run the nightly full sync, retrying failed runs with backoff.

        Returns:
            True once a run ends completed or cancelled, False when it was
            skipped because a run was already active, or when every
            attempt failed.
        """
        if self.orchestrator is None:
            return False
        attempts = self.schedule.sync_max_retries
        for attempt in range(1, attempts + 1):
            try:
                status = await run_sync(self.orchestrator.run, SyncOptions())
            except SyncConflictError as exc:
                logger.warning("Scheduled sync skipped: %s", exc)
                return False
            except Exception:
                logger.exception("Scheduled sync failed")
                return False
            if status.state != RunState.FAILED:
                logger.info(
                    "Scheduled sync %s: %d files processed, %d sailings upserted",
                    status.state.value,
                    status.progress.files_processed,
                    status.progress.sailings_upserted,
                )
                return True
            if attempt == attempts:
                break
            delay = self.schedule.sync_retry_delay_seconds * 2 ** (attempt - 1)
            logger.warning(
                "Scheduled sync attempt %d/%d failed (%s); retrying in %.0fs",
                attempt,
                attempts,
                status.failure,
                delay,
            )
            await self._sleep(delay)
        logger.error(
            "Scheduled sync gave up after %d attempts: %s", attempts, status.failure
        )
        return False
