# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
DRBackup Configuration - Immutable configuration data structures.

All configuration is frozen (immutable) after creation and threaded
explicitly through the supervisor. Nothing in the core reads the
environment; see drbackup.env for that.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import List, Tuple
import re


class BackupClass(str, Enum):
    """Kinds of artifacts produced by the backup pipeline."""

    DB_FULL = "postgresql_full"
    DB_INCREMENTAL = "postgresql_incremental"
    CACHE_SNAPSHOT = "redis_snapshot"
    CONFIG_ARCHIVE = "system_config"
    ANALYTICS_ARCHIVE = "analytics_archive"

    @classmethod
    def parse(cls, value: "str | BackupClass") -> "BackupClass":
        """
        Resolve a class from its tag, its enum name or its CamelCase alias.

        "postgresql_full", "DB_FULL" and "DbFull" all resolve to DB_FULL.
        """
        if isinstance(value, BackupClass):
            return value

        normalized = value.strip()
        for member in cls:
            if normalized == member.value or normalized.upper() == member.name:
                return member
            if normalized.lower() == member.name.replace("_", "").lower():
                return member

        from drbackup.exceptions import ConfigurationError

        raise ConfigurationError(
            f"Unknown backup class: {value!r}",
            details={"known": [member.value for member in cls]},
        )


class HealthStatus(str, Enum):
    """Overall status reported to operators."""

    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"


DEFAULT_CONFIG_PATHS: Tuple[str, ...] = (
    "./config",
    "./docker-compose.yml",
    "./docker-compose.prod.yml",
    "./Dockerfile",
    "./pyproject.toml",
    "./Makefile",
    "./.env*",
)

DEFAULT_REDIS_SNAPSHOT_PATHS: Tuple[str, ...] = (
    "/data/dump.rdb",
    "/var/lib/redis/dump.rdb",
)

DEFAULT_ANALYTICS_TABLE_PREFIXES: Tuple[str, ...] = (
    "analytics_",
    "stats_",
    "requests_",
    "performance_",
)

# Passphrase floor, in bytes of its UTF-8 encoding
MIN_PASSPHRASE_BYTES = 32


def _validate_remote_path(remote_path: str) -> bool:
    """Validate an rclone remote spec of the form name:path."""
    if not remote_path or ":" not in remote_path:
        return False
    return bool(re.match(r"^[A-Za-z0-9_. -]+$", remote_path.split(":", 1)[0]))


@dataclass(frozen=True)
class BackupConfig:
    """
    Immutable configuration for the backup subsystem.

    Secrets are excluded from repr so that logging a config never leaks
    them.
    """

    # Required: master passphrase, root of trust for every artifact
    passphrase: str = field(repr=False)

    # Artifact root; class subdirectories are created beneath it
    backup_dir: Path = field(default_factory=lambda: Path("./backups"))

    # Transient files (restores, scratch); defaults to <backup_dir>/temp
    temp_dir: Path | None = None

    # Retention-exempt archive; defaults to <backup_dir>/archive
    archive_dir: Path | None = None

    # SQLite ledger file; defaults to <backup_dir>/ledger.db
    ledger_path: Path | None = None

    # Database connection parameters
    db_host: str = "localhost"
    db_port: int = 5432
    db_user: str = "postgres"
    db_name: str = "postgres"
    db_password: str = field(default="", repr=False)

    # In-memory data store parameters
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_password: str = field(default="", repr=False)
    redis_snapshot_paths: Tuple[str, ...] = DEFAULT_REDIS_SNAPSHOT_PATHS
    redis_snapshot_wait_seconds: float = 5.0

    # Remote mirroring through rclone
    remote_enabled: bool = False
    remote_path: str = "drive:/backups/"
    rclone_config: Path | None = None
    rclone_binary: str = "rclone"

    # Retention windows in whole days
    retention_full_days: int = 30
    retention_incremental_days: int = 7
    retention_redis_days: int = 7
    retention_config_days: int = 90
    retention_analytics_days: int = 365

    # Disk-free floor checked by the daily bundle and status
    min_free_disk_gb: float = 10.0

    # Producer inputs
    config_paths: Tuple[str, ...] = DEFAULT_CONFIG_PATHS
    analytics_table_prefixes: Tuple[str, ...] = DEFAULT_ANALYTICS_TABLE_PREFIXES

    # Per-subprocess deadlines
    db_dump_timeout_seconds: float = 60.0
    command_timeout_seconds: float = 300.0

    # Outer deadlines per scheduled invocation
    daily_deadline_seconds: float = 2 * 60 * 60
    incremental_deadline_seconds: float = 30 * 60
    cache_deadline_seconds: float = 10 * 60
    retention_deadline_seconds: float = 60 * 60

    # Cap on captured subprocess output
    command_output_limit: int = 32 * 1024 * 1024

    def __post_init__(self) -> None:
        """Validate configuration after creation."""
        errors: List[str] = []

        # Validate passphrase
        if len(self.passphrase.encode("utf-8")) < MIN_PASSPHRASE_BYTES:
            errors.append(
                f"passphrase must be at least {MIN_PASSPHRASE_BYTES} bytes"
            )

        # Validate database parameters
        for name in ("db_host", "db_user", "db_name"):
            if not getattr(self, name):
                errors.append(f"{name} must not be empty")
        if not 0 < self.db_port < 65536:
            errors.append(f"db_port out of range: {self.db_port}")
        if not 0 < self.redis_port < 65536:
            errors.append(f"redis_port out of range: {self.redis_port}")

        # Validate retention windows
        for name in (
            "retention_full_days",
            "retention_incremental_days",
            "retention_redis_days",
            "retention_config_days",
            "retention_analytics_days",
        ):
            value = getattr(self, name)
            if value <= 0:
                errors.append(f"{name} must be > 0, got {value}")

        if self.min_free_disk_gb < 0:
            errors.append(f"min_free_disk_gb must be >= 0, got {self.min_free_disk_gb}")

        # Validate remote configuration consistency
        if self.remote_enabled and not _validate_remote_path(self.remote_path):
            errors.append(
                f"Invalid remote_path: {self.remote_path!r}, expected name:path"
            )

        for name in (
            "db_dump_timeout_seconds",
            "command_timeout_seconds",
            "daily_deadline_seconds",
            "incremental_deadline_seconds",
            "cache_deadline_seconds",
            "retention_deadline_seconds",
        ):
            if getattr(self, name) <= 0:
                errors.append(f"{name} must be > 0")

        if self.command_output_limit < 1024:
            errors.append("command_output_limit must be at least 1024 bytes")

        # Raise all errors at once
        if errors:
            from drbackup.exceptions import ConfigurationError

            raise ConfigurationError(
                "Configuration validation failed",
                details={"errors": errors},
            )

    @property
    def temp_path(self) -> Path:
        return self.temp_dir or self.backup_dir / "temp"

    @property
    def archive_path(self) -> Path:
        return self.archive_dir or self.backup_dir / "archive"

    @property
    def ledger_db_path(self) -> Path:
        return self.ledger_path or self.backup_dir / "ledger.db"

    @property
    def remote_name(self) -> str:
        """Name of the rclone remote, the part of remote_path before ':'."""
        return self.remote_path.split(":", 1)[0]

    def with_updates(self, **kwargs) -> "BackupConfig":
        """
        Create a new config with updated values.

        Since the config is frozen, this creates a new instance (and
        re-runs validation).
        """
        return replace(self, **kwargs)
