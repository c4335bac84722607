# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
DRBackup Scheduler - Wall-clock cadences for backups and retention.

    daily bundle (full, config, monthly analytics, disk check)  02:00
    incremental database dump                                   every 6h
    cache snapshot                                              every 12h
    retention sweep                                             03:00

Times are in the process's local time zone. Anchored jobs first fire at
the next occurrence of their time and then every 24 hours exactly, so
they drift by an hour across DST changes.

Every job gets an outer deadline; overlapping ticks of the same job are
skipped (APScheduler max_instances=1) and logged by APScheduler.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Awaitable, Callable, List, Set

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from drbackup.alerts import (
    BACKUP_CLEANUP_FAILED,
    BACKUP_DAILY_PARTIAL_FAILURE,
    BACKUP_DISK_SPACE_LOW,
    BACKUP_TIMEOUT,
    send_alert,
)
from drbackup.config import BackupClass, BackupConfig
from drbackup.core import BackupState, check_disk_space
from drbackup.exceptions import BackupSystemError, RunInProgressError, RunTimeoutError

logger = structlog.get_logger()

DAILY_BACKUP_HOUR = 2
RETENTION_HOUR = 3
INCREMENTAL_INTERVAL = timedelta(hours=6)
CACHE_INTERVAL = timedelta(hours=12)
DAILY_BUNDLE_TASKS = 4


def next_occurrence(hour: int, minute: int = 0, now: datetime | None = None) -> datetime:
    """
    Next local wall-clock time at hour:minute.

    If that time has already passed today, tomorrow's is returned.
    """
    now = now or datetime.now().astimezone()
    candidate = now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if candidate < now:
        candidate += timedelta(days=1)
    return candidate


def _deadline(seconds: float) -> float:
    return asyncio.get_running_loop().time() + seconds


@dataclass
class DailyBundleResult:
    """Outcome of one daily bundle."""

    successes: int
    total_tasks: int
    timed_out: bool = False
    failures: List[str] = field(default_factory=list)


async def run_daily_bundle(
    config: BackupConfig,
    state: BackupState,
    *,
    deadline: float | None = None,
    today: date | None = None,
) -> DailyBundleResult:
    """
    Run the daily bundle: full dump, config archive, monthly analytics
    (1st of the month only, otherwise counted as done) and a disk check.

    A timeout abandons the rest of the bundle. Fewer than all successes
    raises a partial-failure alert.
    """
    from drbackup.backup.pipeline import run_backup

    today = today or date.today()
    result = DailyBundleResult(successes=0, total_tasks=DAILY_BUNDLE_TASKS)
    logger.info("daily_bundle_started")

    classes = [BackupClass.DB_FULL, BackupClass.CONFIG_ARCHIVE]
    if today.day == 1:
        classes.append(BackupClass.ANALYTICS_ARCHIVE)
    else:
        result.successes += 1

    for backup_class in classes:
        try:
            await run_backup(config, state, backup_class, deadline=deadline)
            result.successes += 1
        except RunTimeoutError:
            result.timed_out = True
            result.failures.append(f"{backup_class.value}: timeout")
            break
        except BackupSystemError as e:
            result.failures.append(f"{backup_class.value}: {e}")

    if not result.timed_out:
        try:
            check_disk_space(config)
            result.successes += 1
        except (BackupSystemError, OSError) as e:
            result.failures.append(f"disk: {e}")
            logger.error("disk_space_check_failed", error=str(e))
            await send_alert(
                state["alert_sink"],
                BACKUP_DISK_SPACE_LOW,
                "critical",
                f"Insufficient disk space: {e}",
            )

    logger.info(
        "daily_bundle_completed",
        success_rate=f"{result.successes}/{result.total_tasks}",
        timed_out=result.timed_out,
    )

    if result.successes < result.total_tasks:
        await send_alert(
            state["alert_sink"],
            BACKUP_DAILY_PARTIAL_FAILURE,
            "warning",
            f"Daily backup completed with {result.successes}/{result.total_tasks} tasks successful",
            successes=result.successes,
            total_tasks=result.total_tasks,
        )
    return result


class BackupScheduler:
    """Owns the cadences and every in-flight job task."""

    def __init__(
        self,
        config: BackupConfig,
        state: BackupState,
        *,
        run_immediately: bool = True,
        scheduler: AsyncIOScheduler | None = None,
    ):
        self.config = config
        self.state = state
        self.run_immediately = run_immediately
        self._scheduler = scheduler or AsyncIOScheduler()
        self._in_flight: Set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return self._scheduler.running

    def get_jobs(self) -> List[Any]:
        return self._scheduler.get_jobs()

    def start(self) -> None:
        """Register the cadences and start APScheduler on the running loop."""
        now = datetime.now().astimezone()
        job_defaults = {"max_instances": 1, "coalesce": True, "replace_existing": True}

        self._scheduler.add_job(
            self.daily_job,
            trigger=IntervalTrigger(
                hours=24, start_date=next_occurrence(DAILY_BACKUP_HOUR, now=now)
            ),
            id="daily_bundle",
            **job_defaults,
        )
        self._scheduler.add_job(
            self.incremental_job,
            trigger=IntervalTrigger(hours=6),
            id="db_incremental",
            next_run_time=now if self.run_immediately else now + INCREMENTAL_INTERVAL,
            **job_defaults,
        )
        self._scheduler.add_job(
            self.cache_job,
            trigger=IntervalTrigger(hours=12),
            id="cache_snapshot",
            next_run_time=now if self.run_immediately else now + CACHE_INTERVAL,
            **job_defaults,
        )
        self._scheduler.add_job(
            self.retention_job,
            trigger=IntervalTrigger(
                hours=24, start_date=next_occurrence(RETENTION_HOUR, now=now)
            ),
            id="retention_sweep",
            **job_defaults,
        )
        self._scheduler.start()

        for job in self._scheduler.get_jobs():
            logger.info("backup_job_scheduled", job_id=job.id, next_run=str(job.next_run_time))

    async def stop(self) -> None:
        """Stop firing new jobs and cancel the ones in flight."""
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)

        tasks = [t for t in self._in_flight if not t.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("backup_scheduler_stopped", cancelled=len(tasks))

    async def _tracked(self, name: str, job: Callable[[], Awaitable[None]]) -> None:
        task = asyncio.current_task()
        if task is not None:
            self._in_flight.add(task)
        try:
            await job()
        except asyncio.CancelledError:
            logger.warning("backup_job_cancelled", job=name)
            raise
        finally:
            if task is not None:
                self._in_flight.discard(task)

    async def daily_job(self) -> None:
        async def _job() -> None:
            await run_daily_bundle(
                self.config,
                self.state,
                deadline=_deadline(self.config.daily_deadline_seconds),
            )

        await self._tracked("daily_bundle", _job)

    async def _class_job(self, backup_class: BackupClass, seconds: float) -> None:
        from drbackup.backup.pipeline import run_backup

        async def _job() -> None:
            try:
                await run_backup(
                    self.config, self.state, backup_class, deadline=_deadline(seconds)
                )
            except RunInProgressError:
                pass
            except BackupSystemError as e:
                logger.error("scheduled_backup_failed", backup_class=backup_class.value, error=str(e))

        await self._tracked(backup_class.value, _job)

    async def incremental_job(self) -> None:
        await self._class_job(
            BackupClass.DB_INCREMENTAL, self.config.incremental_deadline_seconds
        )

    async def cache_job(self) -> None:
        await self._class_job(BackupClass.CACHE_SNAPSHOT, self.config.cache_deadline_seconds)

    async def retention_job(self) -> None:
        from drbackup.retention import run_retention_sweep

        seconds = self.config.retention_deadline_seconds

        async def _job() -> None:
            try:
                async with asyncio.timeout_at(_deadline(seconds)):
                    await run_retention_sweep(self.config, self.state)
            except TimeoutError:
                logger.error("retention_sweep_timed_out", deadline_seconds=seconds)
                await send_alert(
                    self.state["alert_sink"],
                    BACKUP_TIMEOUT,
                    "critical",
                    f"Retention sweep exceeded {seconds:.0f}s timeout",
                )
            except (BackupSystemError, OSError) as e:
                logger.error("retention_sweep_failed", error=str(e))
                await send_alert(
                    self.state["alert_sink"],
                    BACKUP_CLEANUP_FAILED,
                    "warning",
                    f"Retention cleanup failed: {e}",
                )

        await self._tracked("retention_sweep", _job)
