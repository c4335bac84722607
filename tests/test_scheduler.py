# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Tests for the scheduler and the daily bundle.
"""

import asyncio
from datetime import date, datetime

import pytest

from drbackup.config import BackupClass
from drbackup.scheduler import BackupScheduler, next_occurrence, run_daily_bundle

from conftest import make_failing_producer


def _dir_names(config, subdir):
    directory = config.backup_dir / subdir
    return sorted(p.name for p in directory.iterdir())


# ============================================================================
# Wall-clock anchors
# ============================================================================


def test_next_occurrence_later_today():
    now = datetime(2025, 3, 10, 1, 15).astimezone()
    assert next_occurrence(2, now=now) == datetime(2025, 3, 10, 2, 0).astimezone()


def test_next_occurrence_rolls_to_tomorrow():
    now = datetime(2025, 3, 10, 2, 30).astimezone()
    assert next_occurrence(2, now=now) == datetime(2025, 3, 11, 2, 0).astimezone()


def test_next_occurrence_exact_time_fires_now():
    now = datetime(2025, 3, 10, 3, 0).astimezone()
    assert next_occurrence(3, now=now) == now


# ============================================================================
# Daily bundle
# ============================================================================


@pytest.mark.asyncio
async def test_daily_bundle_mid_month(test_config, backup_state, alert_sink):
    """Analytics is skipped but counted; every task succeeds."""
    result = await run_daily_bundle(test_config, backup_state, today=date(2025, 3, 10))

    assert result.successes == result.total_tasks == 4
    assert len(_dir_names(test_config, "postgresql")) == 1
    assert len(_dir_names(test_config, "config")) == 1
    assert _dir_names(test_config, "analytics") == []
    assert alert_sink.alerts == []


@pytest.mark.asyncio
async def test_daily_bundle_first_of_month_runs_analytics(test_config, backup_state, alert_sink):
    result = await run_daily_bundle(test_config, backup_state, today=date(2025, 4, 1))

    assert result.successes == 4
    [name] = _dir_names(test_config, "analytics")
    assert name.startswith("analytics_archive_")
    assert alert_sink.alerts == []


@pytest.mark.asyncio
async def test_daily_bundle_partial_failure_alert(test_config, backup_state, alert_sink):
    backup_state["producers"][BackupClass.DB_FULL] = make_failing_producer()

    result = await run_daily_bundle(test_config, backup_state, today=date(2025, 3, 10))

    assert result.successes == 3
    assert alert_sink.types() == ["BACKUP_PG_FULL_FAILED", "BACKUP_DAILY_PARTIAL_FAILURE"]
    partial = alert_sink.alerts[-1]
    assert partial.severity == "warning"
    assert partial.details["successes"] == 3
    assert partial.details["total_tasks"] == 4


@pytest.mark.asyncio
async def test_daily_bundle_low_disk(test_config, backup_state, alert_sink):
    config = test_config.with_updates(min_free_disk_gb=10**9)

    result = await run_daily_bundle(config, backup_state, today=date(2025, 3, 10))

    assert result.successes == 3
    assert alert_sink.types() == ["BACKUP_DISK_SPACE_LOW", "BACKUP_DAILY_PARTIAL_FAILURE"]
    assert alert_sink.alerts[0].severity == "critical"


@pytest.mark.asyncio
async def test_daily_bundle_timeout_abandons_remaining_steps(test_config, backup_state, alert_sink):
    async def slow_producer(config, output_path):
        await asyncio.sleep(10)

    backup_state["producers"][BackupClass.DB_FULL] = slow_producer
    deadline = asyncio.get_running_loop().time() + 0.3

    result = await run_daily_bundle(
        test_config, backup_state, deadline=deadline, today=date(2025, 3, 10)
    )

    assert result.timed_out is True
    assert result.successes == 1
    assert _dir_names(test_config, "config") == []
    assert alert_sink.types() == ["BACKUP_TIMEOUT", "BACKUP_DAILY_PARTIAL_FAILURE"]


# ============================================================================
# Scheduler lifecycle
# ============================================================================


@pytest.mark.asyncio
async def test_scheduler_registers_cadences(test_config, backup_state):
    scheduler = BackupScheduler(test_config, backup_state, run_immediately=False)
    scheduler.start()
    try:
        jobs = {job.id: job for job in scheduler.get_jobs()}
        assert set(jobs) == {"daily_bundle", "db_incremental", "cache_snapshot", "retention_sweep"}
        assert jobs["daily_bundle"].next_run_time.hour == 2
        assert jobs["daily_bundle"].next_run_time.minute == 0
        assert jobs["retention_sweep"].next_run_time.hour == 3
        assert all(job.max_instances == 1 for job in jobs.values())
        assert all(job.coalesce for job in jobs.values())
    finally:
        await scheduler.stop()

    assert scheduler.running is False


@pytest.mark.asyncio
async def test_boot_runs_incremental_and_cache_immediately(test_config, backup_state):
    scheduler = BackupScheduler(test_config, backup_state)
    scheduler.start()
    try:
        for _ in range(100):
            incremental = await backup_state["ledger"].latest(BackupClass.DB_INCREMENTAL.value)
            cache = await backup_state["ledger"].latest(BackupClass.CACHE_SNAPSHOT.value)
            if incremental and cache:
                break
            await asyncio.sleep(0.05)
    finally:
        await scheduler.stop()

    assert incremental is not None
    assert cache is not None


@pytest.mark.asyncio
async def test_stop_cancels_in_flight_runs(test_config, backup_state):
    started = asyncio.Event()

    async def blocking_producer(config, output_path):
        output_path.write_bytes(b"partial dump")
        started.set()
        await asyncio.sleep(60)

    backup_state["producers"][BackupClass.DB_INCREMENTAL] = blocking_producer
    scheduler = BackupScheduler(test_config, backup_state)
    scheduler.start()

    await asyncio.wait_for(started.wait(), timeout=5)
    await scheduler.stop()

    assert BackupClass.DB_INCREMENTAL not in backup_state["running"]
    assert [
        name for name in _dir_names(test_config, "postgresql") if "incremental" in name
    ] == []
    records = await backup_state["ledger"].list(BackupClass.DB_INCREMENTAL.value)
    assert records[0].error == "run cancelled"
