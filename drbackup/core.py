# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
DRBackup Core - Supervisor lifecycle and operator status.

This module composes the runtime state (key, ledger, remote store,
producers, restorers, alert sink) once at startup and hands it to the
pipeline, retention engine and scheduler by reference.
"""

import os
import shutil
from dataclasses import dataclass, field
from datetime import datetime, timedelta, UTC
from pathlib import Path
from typing import Any, Dict, Set, TypedDict

import structlog

from drbackup.alerts import AlertSink, BACKUP_CONFIG_ERROR, LoggingAlertSink, send_alert
from drbackup.catalog import CLASS_SPECS, class_subdirs
from drbackup.config import BackupClass, BackupConfig, HealthStatus
from drbackup.exceptions import (
    BackupSystemError,
    ConfigurationError,
    EncryptError,
    LedgerError,
)
from drbackup.ledger import BackupRecord, Ledger

logger = structlog.get_logger()

DIRECTORY_MODE = 0o750
FULL_BACKUP_FRESHNESS = timedelta(hours=48)
BYTES_PER_GB = 1024**3


class BackupState(TypedDict):
    """Runtime state for backup operations."""

    key: bytes
    ledger: Ledger
    remote: Any  # RemoteStore
    producers: Dict[BackupClass, Any]  # BackupClass -> Producer
    restorers: Dict[BackupClass, Any]  # BackupClass -> Restorer
    alert_sink: AlertSink | None
    running: Set[BackupClass]
    scheduler: Any  # BackupScheduler once started
    last_run_at: datetime | None
    total_runs: int
    total_failures: int
    last_error: str | None


@dataclass
class DiskUsage:
    """Filesystem figures for the artifact root."""

    total_gb: float
    free_gb: float
    usage_percent: float


@dataclass
class BackupStatus:
    """Operator-facing summary of the backup subsystem."""

    status: HealthStatus
    last_check: datetime
    remote_sync: bool
    retention_ok: bool
    disk_usage_percent: float
    disk_free_gb: float
    last_backups: Dict[str, BackupRecord | None] = field(default_factory=dict)
    total_runs: int = 0
    total_failures: int = 0
    last_error: str | None = None


def provision_directories(config: BackupConfig) -> None:
    """Create the artifact root, class subdirectories, temp and archive dirs."""
    directories = [config.backup_dir]
    directories.extend(config.backup_dir / subdir for subdir in class_subdirs())
    directories.extend([config.temp_path, config.archive_path])

    for directory in directories:
        directory.mkdir(parents=True, exist_ok=True, mode=DIRECTORY_MODE)
        os.chmod(directory, DIRECTORY_MODE)

    config.ledger_db_path.parent.mkdir(parents=True, exist_ok=True, mode=DIRECTORY_MODE)


async def initialize_backup_state(
    config: BackupConfig,
    *,
    remote: Any = None,
    producers: Dict[BackupClass, Any] | None = None,
    restorers: Dict[BackupClass, Any] | None = None,
    alert_sink: AlertSink | None = None,
) -> BackupState:
    """
    Initialize runtime state for backup operations.

    Creates directories, validates the remote store when mirroring is
    enabled, ensures the ledger schema, derives the data key and runs the
    encryption self-test. Any failure aborts startup with
    ConfigurationError before state is returned.

    Args:
        config: Backup configuration (already validated on construction)
        remote: Remote store; defaults to an RcloneRemote for config
        producers: Override of the class-to-producer table
        restorers: Override of the class-to-restorer table
        alert_sink: Alert destination; defaults to the structured log

    Returns:
        Initialized BackupState dictionary
    """
    from drbackup.backup.restore import default_restorers
    from drbackup.crypto import derive_key, self_test
    from drbackup.errors import explain_self_test_failed
    from drbackup.producers import default_producers
    from drbackup.remote import RcloneRemote

    sink = alert_sink if alert_sink is not None else LoggingAlertSink()

    try:
        provision_directories(config)

        if remote is None:
            remote = RcloneRemote(config)
        if config.remote_enabled:
            await remote.validate()

        ledger = Ledger(config.ledger_db_path)
        try:
            await ledger.initialize()
        except LedgerError as e:
            raise ConfigurationError(f"Ledger unavailable: {e.message}") from e

        key = derive_key(config.passphrase)
        try:
            self_test(key)
        except EncryptError as e:
            raise ConfigurationError(explain_self_test_failed()) from e

    except (ConfigurationError, OSError) as e:
        await send_alert(
            sink,
            BACKUP_CONFIG_ERROR,
            "critical",
            f"Backup configuration invalid: {e}",
        )
        logger.error("backup_state_initialization_failed", error=str(e))
        if isinstance(e, ConfigurationError):
            raise
        raise ConfigurationError(f"Failed to provision backup directories: {e}") from e

    all_producers = default_producers()
    all_producers.update(producers or {})
    all_restorers = default_restorers()
    all_restorers.update(restorers or {})

    logger.info(
        "backup_state_initialized",
        backup_dir=str(config.backup_dir),
        remote_enabled=config.remote_enabled,
    )

    return BackupState(
        key=key,
        ledger=ledger,
        remote=remote,
        producers=all_producers,
        restorers=all_restorers,
        alert_sink=sink,
        running=set(),
        scheduler=None,
        last_run_at=None,
        total_runs=0,
        total_failures=0,
        last_error=None,
    )


def get_disk_usage(config: BackupConfig) -> DiskUsage:
    """Real free space on the filesystem holding the artifact root."""
    usage = shutil.disk_usage(config.backup_dir)
    return DiskUsage(
        total_gb=usage.total / BYTES_PER_GB,
        free_gb=usage.free / BYTES_PER_GB,
        usage_percent=(usage.used / usage.total * 100.0) if usage.total else 0.0,
    )


def check_disk_space(config: BackupConfig) -> DiskUsage:
    """
    Verify that free space is at least min_free_disk_gb.

    Raises:
        BackupSystemError: If free space is below the threshold
    """
    usage = get_disk_usage(config)
    if usage.free_gb < config.min_free_disk_gb:
        raise BackupSystemError(
            f"Insufficient disk space: {usage.free_gb:.2f} GB free, "
            f"minimum required: {config.min_free_disk_gb} GB",
            details={"free_gb": round(usage.free_gb, 2)},
        )
    return usage


async def get_status(config: BackupConfig, state: BackupState) -> BackupStatus:
    """
    Compute the operator status.

    critical: disk free below threshold, or a regularly-run class has no
    success within 7 days. warning: mirroring enabled but unhealthy, or
    no successful full backup within 48 hours. healthy otherwise.
    Ledger failures count as non-compliance.
    """
    now = datetime.now(UTC)
    disk = get_disk_usage(config)

    last_backups: Dict[str, BackupRecord | None] = {}
    retention_ok = False
    try:
        for backup_class in CLASS_SPECS:
            last_backups[backup_class.value] = await state["ledger"].latest(backup_class.value)
        retention_ok = await state["ledger"].compliant(now)
    except LedgerError as e:
        logger.warning("status_ledger_unavailable", error=str(e))

    remote = state["remote"]
    remote_sync = bool(remote is not None and remote.enabled and await remote.healthy())

    last_full = last_backups.get(BackupClass.DB_FULL.value)
    if disk.free_gb < config.min_free_disk_gb or not retention_ok:
        status = HealthStatus.CRITICAL
    elif config.remote_enabled and not remote_sync:
        status = HealthStatus.WARNING
    elif last_full is None or now - last_full.started_at > FULL_BACKUP_FRESHNESS:
        status = HealthStatus.WARNING
    else:
        status = HealthStatus.HEALTHY

    return BackupStatus(
        status=status,
        last_check=now,
        remote_sync=remote_sync,
        retention_ok=retention_ok,
        disk_usage_percent=round(disk.usage_percent, 2),
        disk_free_gb=round(disk.free_gb, 2),
        last_backups=last_backups,
        total_runs=state["total_runs"],
        total_failures=state["total_failures"],
        last_error=state["last_error"],
    )


async def start_backup_service(config: BackupConfig, state: BackupState, **kwargs: Any):
    """
    Start the scheduler on the running event loop.

    Keyword arguments are passed to BackupScheduler.

    Returns:
        The started BackupScheduler
    """
    from drbackup.scheduler import BackupScheduler

    if state["scheduler"] is not None:
        return state["scheduler"]

    scheduler = BackupScheduler(config, state, **kwargs)
    scheduler.start()
    state["scheduler"] = scheduler
    logger.info("backup_service_started")
    return scheduler


async def stop_backup_service(state: BackupState) -> None:
    """Stop the scheduler and cancel every in-flight run."""
    scheduler = state["scheduler"]
    if scheduler is not None:
        await scheduler.stop()
        state["scheduler"] = None
    logger.info("backup_service_stopped")


def artifact_path(config: BackupConfig, backup_class: BackupClass, basename: str) -> Path:
    """Local path of an artifact basename within its class directory."""
    return config.backup_dir / CLASS_SPECS[backup_class].subdir / Path(basename).name
