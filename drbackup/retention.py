# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
DRBackup Retention - Expire artifacts locally, in the ledger and remotely.

A file is a deletion candidate only if its mtime precedes the class
cutoff AND its basename matches the class predicate. An in-flight run's
output always has a fresh mtime, so sweeps can overlap pipeline runs.
Per-candidate failures are logged and never stop the sweep.
"""

import shutil
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, UTC
from pathlib import Path, PurePosixPath
from typing import Dict, List

import structlog

from drbackup.catalog import CLASS_SPECS, ClassSpec, classify, parse_artifact_name
from drbackup.config import BackupClass, BackupConfig
from drbackup.core import BackupState, artifact_path
from drbackup.exceptions import LedgerError, MirrorError, RetentionError

logger = structlog.get_logger()

SECONDS_PER_DAY = 24 * 60 * 60
TEMP_FILE_MAX_AGE = 24 * 60 * 60
LEDGER_RETENTION = timedelta(days=365)


@dataclass(frozen=True)
class RetentionPolicy:
    """How long one class is kept, and where it lives."""

    backup_class: str
    days: int
    directory: Path


@dataclass
class ClassSweepResult:
    """Outcome of sweeping one class directory."""

    backup_class: str
    deleted: List[str] = field(default_factory=list)
    freed_bytes: int = 0
    errors: List[str] = field(default_factory=list)


@dataclass
class RetentionResult:
    """Outcome of a full retention sweep."""

    classes: Dict[str, ClassSweepResult]
    temp_files_deleted: int
    ledger_rows_removed: int
    remote_deleted: List[str]
    errors: List[str]
    duration_seconds: float

    @property
    def deleted_count(self) -> int:
        return sum(len(c.deleted) for c in self.classes.values())

    @property
    def freed_bytes(self) -> int:
        return sum(c.freed_bytes for c in self.classes.values())


@dataclass
class ClassRetentionReport:
    """Inventory of one class against its policy."""

    total_artifacts: int = 0
    valid: int = 0
    expired: int = 0
    total_bytes: int = 0
    oldest_mtime: datetime | None = None
    newest_mtime: datetime | None = None
    expired_basenames: List[str] = field(default_factory=list)


@dataclass
class RetentionReport:
    """Per-class inventory plus the policies it was computed against."""

    generated_at: datetime
    classes: Dict[str, ClassRetentionReport]
    policies: Dict[str, RetentionPolicy]


def retention_policies(config: BackupConfig) -> Dict[str, RetentionPolicy]:
    """Retention policy for each class."""
    return {
        spec.backup_class.value: RetentionPolicy(
            backup_class=spec.backup_class.value,
            days=spec.retention_days(config),
            directory=config.backup_dir / spec.subdir,
        )
        for spec in CLASS_SPECS.values()
    }


def _class_files(directory: Path, spec: ClassSpec) -> List[Path]:
    if not directory.is_dir():
        return []
    return sorted(p for p in directory.iterdir() if p.is_file() and spec.matches(p.name))


async def _sweep_class(
    config: BackupConfig,
    state: BackupState,
    spec: ClassSpec,
    now: float,
) -> ClassSweepResult:
    result = ClassSweepResult(backup_class=spec.backup_class.value)
    days = spec.retention_days(config)
    cutoff = now - days * SECONDS_PER_DAY
    directory = config.backup_dir / spec.subdir

    logger.debug("retention_class_sweep", backup_class=result.backup_class, retention_days=days)

    candidates: List[Path] = []
    for path in _class_files(directory, spec):
        try:
            if path.stat().st_mtime < cutoff:
                candidates.append(path)
        except OSError as e:
            logger.warning("retention_stat_failed", path=str(path), error=str(e))

    remote = state["remote"]
    for path in candidates:
        try:
            size = path.stat().st_size
            path.unlink()
        except OSError as e:
            error = RetentionError(
                f"Failed to delete backup file: {e}", details={"path": str(path)}
            )
            logger.error("retention_delete_failed", path=str(path), error=str(error))
            result.errors.append(str(error))
            continue

        result.deleted.append(path.name)
        result.freed_bytes += size
        logger.debug("expired_backup_deleted", filename=path.name, backup_class=result.backup_class)

        try:
            await state["ledger"].annotate_deletion(path.name, result.backup_class)
        except LedgerError as e:
            logger.warning("retention_annotate_failed", filename=path.name, error=str(e))

        if config.remote_enabled and remote is not None:
            try:
                await remote.delete(remote.object_path(path.name))
            except MirrorError as e:
                logger.error("remote_delete_failed", filename=path.name, error=str(e))
                result.errors.append(f"remote {path.name}: {e}")

    return result


def _sweep_temp(config: BackupConfig, now: float) -> int:
    directory = config.temp_path
    if not directory.is_dir():
        return 0

    deleted = 0
    cutoff = now - TEMP_FILE_MAX_AGE
    for path in directory.iterdir():
        try:
            if path.is_file() and path.stat().st_mtime < cutoff:
                path.unlink()
                deleted += 1
        except OSError as e:
            logger.warning("temp_cleanup_failed", path=str(path), error=str(e))
    return deleted


async def _sweep_remote(
    config: BackupConfig, state: BackupState, errors: List[str]
) -> List[str]:
    remote = state["remote"]
    try:
        names = await remote.list()
    except MirrorError as e:
        logger.error("remote_list_failed", error=str(e))
        errors.append(f"remote list: {e}")
        return []

    now = datetime.now()
    deleted: List[str] = []
    for name in names:
        basename = PurePosixPath(name).name
        parsed = parse_artifact_name(basename)
        backup_class = classify(basename)
        if parsed is None or backup_class is None:
            logger.debug("remote_artifact_unparsed", name=name)
            continue

        stamp, _prefix = parsed
        days = CLASS_SPECS[backup_class].retention_days(config)
        if stamp >= now - timedelta(days=days):
            continue

        try:
            await remote.delete(remote.object_path(name))
        except MirrorError as e:
            logger.error("remote_delete_failed", name=name, error=str(e))
            errors.append(f"remote {name}: {e}")
            continue
        deleted.append(name)

    return deleted


async def run_retention_sweep(config: BackupConfig, state: BackupState) -> RetentionResult:
    """
    Run a full retention sweep.

    Sweeps every class directory, then removes temp files older than 24
    hours, drops ledger rows older than a year, and finally expires remote
    objects by the timestamp in their names.

    Args:
        config: Backup configuration
        state: Runtime state

    Returns:
        RetentionResult with per-class details
    """
    start = time.monotonic()
    now = time.time()
    logger.info("retention_sweep_started")

    classes: Dict[str, ClassSweepResult] = {}
    errors: List[str] = []
    for spec in CLASS_SPECS.values():
        class_result = await _sweep_class(config, state, spec, now)
        classes[class_result.backup_class] = class_result
        errors.extend(class_result.errors)

    temp_deleted = _sweep_temp(config, now)

    ledger_removed = 0
    try:
        ledger_removed = await state["ledger"].gc(datetime.now(UTC) - LEDGER_RETENTION)
    except LedgerError as e:
        logger.warning("ledger_gc_failed", error=str(e))

    remote_deleted: List[str] = []
    if config.remote_enabled and state["remote"] is not None:
        remote_deleted = await _sweep_remote(config, state, errors)

    result = RetentionResult(
        classes=classes,
        temp_files_deleted=temp_deleted,
        ledger_rows_removed=ledger_removed,
        remote_deleted=remote_deleted,
        errors=errors,
        duration_seconds=time.monotonic() - start,
    )
    logger.info(
        "retention_sweep_completed",
        files_deleted=result.deleted_count,
        space_freed_mb=result.freed_bytes // (1024 * 1024),
        temp_files_deleted=temp_deleted,
        ledger_rows_removed=ledger_removed,
        remote_deleted=len(remote_deleted),
        errors=len(errors),
        duration=round(result.duration_seconds, 3),
    )
    return result


def build_retention_report(config: BackupConfig) -> RetentionReport:
    """Inventory local artifacts against their retention policies."""
    now = time.time()
    classes: Dict[str, ClassRetentionReport] = {}

    for spec in CLASS_SPECS.values():
        report = ClassRetentionReport()
        cutoff = now - spec.retention_days(config) * SECONDS_PER_DAY

        for path in _class_files(config.backup_dir / spec.subdir, spec):
            try:
                stat = path.stat()
            except OSError:
                continue
            mtime = datetime.fromtimestamp(stat.st_mtime, UTC)
            report.total_artifacts += 1
            report.total_bytes += stat.st_size
            if report.oldest_mtime is None or mtime < report.oldest_mtime:
                report.oldest_mtime = mtime
            if report.newest_mtime is None or mtime > report.newest_mtime:
                report.newest_mtime = mtime
            if stat.st_mtime < cutoff:
                report.expired += 1
                report.expired_basenames.append(path.name)
            else:
                report.valid += 1

        classes[spec.backup_class.value] = report

    return RetentionReport(
        generated_at=datetime.now(UTC),
        classes=classes,
        policies=retention_policies(config),
    )


def archive_artifact(
    config: BackupConfig, backup_class: BackupClass | str, basename: str
) -> Path:
    """
    Move an artifact into the archive directory, out of retention's reach.

    Returns:
        New path of the artifact

    Raises:
        RetentionError: If the artifact does not exist or cannot be moved
    """
    backup_class = BackupClass.parse(backup_class)
    source = artifact_path(config, backup_class, basename)
    if not source.is_file():
        raise RetentionError(f"Backup file not found: {source.name}", details={"path": str(source)})

    config.archive_path.mkdir(parents=True, exist_ok=True, mode=0o750)
    destination = config.archive_path / source.name
    try:
        shutil.move(source, destination)
    except OSError as e:
        raise RetentionError(
            f"Failed to archive backup file: {e}", details={"path": str(source)}
        ) from e

    logger.info("artifact_archived", filename=source.name, archive=str(destination))
    return destination
