# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Environment-based configuration helpers.

The core never consults the environment. Deployments that configure the
backup subsystem through environment variables call
create_config_from_env() once and pass the resulting BackupConfig down.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Mapping, Tuple

from drbackup.config import BackupConfig, DEFAULT_CONFIG_PATHS
from drbackup.errors import (
    explain_invalid_bool_env,
    explain_invalid_integer_env,
    explain_invalid_number_env,
    explain_missing_passphrase_env,
)
from drbackup.exceptions import ConfigurationError

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def _parse_bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    value = env.get(name)
    if value is None or value == "":
        return default
    lowered = value.strip().lower()
    if lowered in _TRUE:
        return True
    if lowered in _FALSE:
        return False
    raise ConfigurationError(explain_invalid_bool_env(name, value))


def _parse_positive_int(env: Mapping[str, str], name: str, default: int) -> int:
    value = env.get(name)
    if not value:
        return default
    try:
        parsed = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(explain_invalid_integer_env(name, value)) from exc
    if parsed <= 0:
        raise ConfigurationError(explain_invalid_integer_env(name, value))
    return parsed


def _parse_float(env: Mapping[str, str], name: str, default: float) -> float:
    value = env.get(name)
    if not value:
        return default
    try:
        parsed = float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(explain_invalid_number_env(name, value)) from exc
    if parsed < 0:
        raise ConfigurationError(explain_invalid_number_env(name, value))
    return parsed


def _parse_list(value: str | None, default: Tuple[str, ...]) -> Tuple[str, ...]:
    if not value:
        return default
    return tuple(p.strip() for p in value.split(",") if p.strip())


def _optional_path(value: str | None) -> Path | None:
    return Path(value) if value else None


def create_config_from_env(env: Mapping[str, str] | None = None) -> BackupConfig:
    """
    Create a BackupConfig from environment variables.

    Required:
        - BACKUP_ENCRYPTION_KEY: master passphrase (>= 32 bytes)

    Optional environment variables:
        - BACKUP_DIR: artifact root (default: ./backups)
        - BACKUP_TEMP_DIR, BACKUP_ARCHIVE_DIR, BACKUP_LEDGER_PATH
        - DB_HOST, DB_PORT, DB_USER, DB_PASSWORD, DB_NAME
        - REDIS_HOST, REDIS_PORT, REDIS_PASSWORD
        - BACKUP_REMOTE_ENABLED: true/false (default: false)
        - RCLONE_REMOTE: remote spec (default: drive:/backups/)
        - RCLONE_CONFIG: path to rclone.conf
        - BACKUP_RETENTION_{FULL,INCREMENTAL,REDIS,CONFIG,ANALYTICS}_DAYS
        - BACKUP_MIN_DISK_SPACE_GB (default: 10)
        - BACKUP_CONFIG_PATHS: comma-separated paths for the config archive
        - BACKUP_DB_DUMP_TIMEOUT_SECONDS (default: 60)

    Args:
        env: Mapping to read instead of os.environ

    Returns:
        Validated BackupConfig
    """

    env = os.environ if env is None else env

    passphrase = env.get("BACKUP_ENCRYPTION_KEY")
    if not passphrase:
        raise ConfigurationError(explain_missing_passphrase_env())

    return BackupConfig(
        passphrase=passphrase,
        backup_dir=Path(env.get("BACKUP_DIR") or "./backups"),
        temp_dir=_optional_path(env.get("BACKUP_TEMP_DIR")),
        archive_dir=_optional_path(env.get("BACKUP_ARCHIVE_DIR")),
        ledger_path=_optional_path(env.get("BACKUP_LEDGER_PATH")),
        db_host=env.get("DB_HOST") or "localhost",
        db_port=_parse_positive_int(env, "DB_PORT", 5432),
        db_user=env.get("DB_USER") or "postgres",
        db_name=env.get("DB_NAME") or "postgres",
        db_password=env.get("DB_PASSWORD") or "",
        redis_host=env.get("REDIS_HOST") or "localhost",
        redis_port=_parse_positive_int(env, "REDIS_PORT", 6379),
        redis_password=env.get("REDIS_PASSWORD") or "",
        remote_enabled=_parse_bool(env, "BACKUP_REMOTE_ENABLED", False),
        remote_path=env.get("RCLONE_REMOTE") or "drive:/backups/",
        rclone_config=_optional_path(env.get("RCLONE_CONFIG")),
        retention_full_days=_parse_positive_int(env, "BACKUP_RETENTION_FULL_DAYS", 30),
        retention_incremental_days=_parse_positive_int(
            env, "BACKUP_RETENTION_INCREMENTAL_DAYS", 7
        ),
        retention_redis_days=_parse_positive_int(env, "BACKUP_RETENTION_REDIS_DAYS", 7),
        retention_config_days=_parse_positive_int(env, "BACKUP_RETENTION_CONFIG_DAYS", 90),
        retention_analytics_days=_parse_positive_int(
            env, "BACKUP_RETENTION_ANALYTICS_DAYS", 365
        ),
        min_free_disk_gb=_parse_float(env, "BACKUP_MIN_DISK_SPACE_GB", 10.0),
        config_paths=_parse_list(env.get("BACKUP_CONFIG_PATHS"), DEFAULT_CONFIG_PATHS),
        db_dump_timeout_seconds=_parse_float(env, "BACKUP_DB_DUMP_TIMEOUT_SECONDS", 60.0),
    )
