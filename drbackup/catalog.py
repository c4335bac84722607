# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
DRBackup Catalog - The fixed table of backup classes.

Every per-class decision (where artifacts live, how they are named, how
long they are kept, how long a run may take, how loudly a failure is
reported) is a lookup in CLASS_SPECS. The pipeline, retention engine and
scheduler are written once against this table.

Filenames embed the process's local wall-clock time.
"""

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Tuple

from drbackup.config import BackupClass, BackupConfig

ENCRYPTED_SUFFIX = ".enc"

# Remote listings are filtered to these endings
ARTIFACT_EXTENSIONS: Tuple[str, ...] = (
    ".sql",
    ".sql.enc",
    ".dump",
    ".dump.enc",
    ".rdb",
    ".rdb.enc",
    ".tar.gz",
    ".tar.gz.enc",
)

TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"
MONTHLY_FORMAT = "%Y%m"

# Collision suffix on the stamp, e.g. analytics_archive_202501-2.sql
SEQUENCE_SUFFIX = re.compile(r"-\d+$")


@dataclass(frozen=True)
class ClassSpec:
    """Static description of one backup class."""

    backup_class: BackupClass
    prefix: str
    subdir: str
    extension: str
    timestamp_format: str
    contains: Tuple[str, ...]
    startswith: Tuple[str, ...]
    retention_field: str
    deadline_field: str
    alert_type: str
    failure_severity: str
    # Seldom-run classes are excluded from the 7-day compliance check
    seldom: bool = False

    def filename(self, when: datetime, sequence: int = 0) -> str:
        """
        Producer filename (without the encrypted suffix) for a run at `when`.

        A non-zero sequence appends "-<n>" to the stamp; it is used when the
        plain name is already taken by an earlier artifact.
        """
        stamp = when.strftime(self.timestamp_format)
        if sequence:
            stamp = f"{stamp}-{sequence}"
        return f"{self.prefix}_{stamp}{self.extension}"

    def matches(self, basename: str) -> bool:
        lowered = basename.lower()
        return any(token in lowered for token in self.contains) or lowered.startswith(
            self.startswith
        )

    def retention_days(self, config: BackupConfig) -> int:
        return getattr(config, self.retention_field)

    def deadline_seconds(self, config: BackupConfig) -> float:
        return getattr(config, self.deadline_field)


CLASS_SPECS: Dict[BackupClass, ClassSpec] = {
    BackupClass.DB_FULL: ClassSpec(
        backup_class=BackupClass.DB_FULL,
        prefix="postgresql_full",
        subdir="postgresql",
        extension=".sql",
        timestamp_format=TIMESTAMP_FORMAT,
        contains=("postgresql_full", "pg_full"),
        startswith=(),
        retention_field="retention_full_days",
        deadline_field="daily_deadline_seconds",
        alert_type="BACKUP_PG_FULL_FAILED",
        failure_severity="critical",
    ),
    BackupClass.DB_INCREMENTAL: ClassSpec(
        backup_class=BackupClass.DB_INCREMENTAL,
        prefix="postgresql_incremental",
        subdir="postgresql",
        extension=".sql",
        timestamp_format=TIMESTAMP_FORMAT,
        contains=("postgresql_incremental", "pg_incremental"),
        startswith=(),
        retention_field="retention_incremental_days",
        deadline_field="incremental_deadline_seconds",
        alert_type="BACKUP_PG_INCREMENTAL_FAILED",
        failure_severity="warning",
    ),
    BackupClass.CACHE_SNAPSHOT: ClassSpec(
        backup_class=BackupClass.CACHE_SNAPSHOT,
        prefix="redis_snapshot",
        subdir="redis",
        extension=".rdb",
        timestamp_format=TIMESTAMP_FORMAT,
        contains=("redis_snapshot",),
        startswith=("redis_",),
        retention_field="retention_redis_days",
        deadline_field="cache_deadline_seconds",
        alert_type="BACKUP_REDIS_FAILED",
        failure_severity="warning",
    ),
    BackupClass.CONFIG_ARCHIVE: ClassSpec(
        backup_class=BackupClass.CONFIG_ARCHIVE,
        prefix="system_config",
        subdir="config",
        extension=".tar.gz",
        timestamp_format=TIMESTAMP_FORMAT,
        contains=("system_config",),
        startswith=("config_",),
        retention_field="retention_config_days",
        deadline_field="daily_deadline_seconds",
        alert_type="BACKUP_CONFIG_FAILED",
        failure_severity="warning",
    ),
    BackupClass.ANALYTICS_ARCHIVE: ClassSpec(
        backup_class=BackupClass.ANALYTICS_ARCHIVE,
        prefix="analytics_archive",
        subdir="analytics",
        extension=".sql",
        timestamp_format=MONTHLY_FORMAT,
        contains=("analytics_archive",),
        startswith=("analytics_",),
        retention_field="retention_analytics_days",
        deadline_field="daily_deadline_seconds",
        alert_type="BACKUP_ANALYTICS_FAILED",
        failure_severity="warning",
        seldom=True,
    ),
}


def get_spec(backup_class: BackupClass | str) -> ClassSpec:
    """Look up the spec for a class given as enum, tag or alias."""
    return CLASS_SPECS[BackupClass.parse(backup_class)]


def class_subdirs() -> Tuple[str, ...]:
    """Distinct class subdirectories, in table order."""
    seen: Dict[str, None] = {}
    for spec in CLASS_SPECS.values():
        seen.setdefault(spec.subdir, None)
    return tuple(seen)


def classify(basename: str) -> BackupClass | None:
    """
    Return the class whose match predicate accepts basename.

    Classes are tried in table order; the first match wins.
    """
    for spec in CLASS_SPECS.values():
        if spec.matches(basename):
            return spec.backup_class
    return None


def is_encrypted_name(basename: str) -> bool:
    return basename.endswith(ENCRYPTED_SUFFIX)


def strip_encrypted_suffix(basename: str) -> str:
    """Recover the producer's filename from an artifact basename."""
    if is_encrypted_name(basename):
        return basename[: -len(ENCRYPTED_SUFFIX)]
    return basename


def has_artifact_extension(basename: str) -> bool:
    return basename.lower().endswith(ARTIFACT_EXTENSIONS)


def parse_artifact_name(basename: str) -> Tuple[datetime, str] | None:
    """
    Extract (timestamp, prefix) from an artifact basename.

    The stem (everything before the first '.') is split on '_'. The last
    two components must be YYYYMMDD and HHMMSS; everything before them is
    the prefix. Monthly analytics archives carry a single YYYYMM component
    and parse to the first day of that month.

    A trailing "-<n>" sequence on the stamp is ignored.

    Names that do not parse return None; they are never guessed.

    Returns:
        Naive local datetime and the prefix, or None
    """
    stem = SEQUENCE_SUFFIX.sub("", basename.split(".", 1)[0])
    parts = stem.split("_")

    if len(parts) >= 3:
        date_part, time_part = parts[-2], parts[-1]
        if (
            len(date_part) == 8
            and len(time_part) == 6
            and date_part.isdigit()
            and time_part.isdigit()
        ):
            try:
                stamp = datetime.strptime(f"{date_part}_{time_part}", TIMESTAMP_FORMAT)
            except ValueError:
                return None
            return (stamp, "_".join(parts[:-2]))

    if len(parts) >= 2:
        month_part = parts[-1]
        prefix = "_".join(parts[:-1])
        monthly_prefix = CLASS_SPECS[BackupClass.ANALYTICS_ARCHIVE].prefix
        if prefix == monthly_prefix and len(month_part) == 6 and month_part.isdigit():
            try:
                return (datetime.strptime(month_part, MONTHLY_FORMAT), prefix)
            except ValueError:
                return None

    return None
