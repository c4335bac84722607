# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Tests for configuration, environment loading and the class catalog.
"""

from datetime import datetime
from pathlib import Path

import pytest

from drbackup.catalog import (
    CLASS_SPECS,
    class_subdirs,
    classify,
    get_spec,
    has_artifact_extension,
    parse_artifact_name,
    strip_encrypted_suffix,
)
from drbackup.config import BackupClass, BackupConfig
from drbackup.env import create_config_from_env
from drbackup.exceptions import ConfigurationError

from conftest import TEST_PASSPHRASE


# ============================================================================
# BackupConfig
# ============================================================================


def test_defaults_match_retention_table():
    config = BackupConfig(passphrase=TEST_PASSPHRASE)
    assert config.retention_full_days == 30
    assert config.retention_incremental_days == 7
    assert config.retention_redis_days == 7
    assert config.retention_config_days == 90
    assert config.retention_analytics_days == 365
    assert config.min_free_disk_gb == 10.0
    assert config.temp_path == Path("./backups") / "temp"
    assert config.ledger_db_path == Path("./backups") / "ledger.db"


def test_short_passphrase_rejected():
    with pytest.raises(ConfigurationError) as exc_info:
        BackupConfig(passphrase="too-short")
    assert any("passphrase" in error for error in exc_info.value.details["errors"])


def test_all_errors_collected_together():
    """Every violation is reported in one ConfigurationError."""
    with pytest.raises(ConfigurationError) as exc_info:
        BackupConfig(
            passphrase="short",
            retention_full_days=0,
            db_port=70000,
            remote_enabled=True,
            remote_path="no-colon-here",
        )
    errors = exc_info.value.details["errors"]
    assert len(errors) == 4


def test_secrets_not_in_repr():
    config = BackupConfig(passphrase=TEST_PASSPHRASE, db_password="pg-secret", redis_password="r-secret")
    rendered = repr(config)
    assert TEST_PASSPHRASE not in rendered
    assert "pg-secret" not in rendered
    assert "r-secret" not in rendered


def test_with_updates_revalidates():
    config = BackupConfig(passphrase=TEST_PASSPHRASE)
    assert config.with_updates(retention_full_days=14).retention_full_days == 14
    with pytest.raises(ConfigurationError):
        config.with_updates(retention_full_days=-1)


def test_remote_name_from_remote_path():
    config = BackupConfig(passphrase=TEST_PASSPHRASE, remote_path="gdrive:/team/backups/")
    assert config.remote_name == "gdrive"


# ============================================================================
# Environment
# ============================================================================


def test_env_requires_passphrase():
    with pytest.raises(ConfigurationError, match="BACKUP_ENCRYPTION_KEY"):
        create_config_from_env({})


def test_env_reads_overrides(temp_dir: Path):
    config = create_config_from_env(
        {
            "BACKUP_ENCRYPTION_KEY": TEST_PASSPHRASE,
            "BACKUP_DIR": str(temp_dir),
            "DB_HOST": "db.internal",
            "DB_PORT": "6432",
            "BACKUP_REMOTE_ENABLED": "true",
            "RCLONE_REMOTE": "s3:bucket/backups/",
            "BACKUP_RETENTION_FULL_DAYS": "45",
            "BACKUP_MIN_DISK_SPACE_GB": "2.5",
            "BACKUP_CONFIG_PATHS": "/etc/app, /etc/nginx",
        }
    )
    assert config.backup_dir == temp_dir
    assert config.db_host == "db.internal"
    assert config.db_port == 6432
    assert config.remote_enabled is True
    assert config.remote_name == "s3"
    assert config.retention_full_days == 45
    assert config.min_free_disk_gb == 2.5
    assert config.config_paths == ("/etc/app", "/etc/nginx")


@pytest.mark.parametrize(
    "name,value",
    [
        ("DB_PORT", "not-a-port"),
        ("BACKUP_RETENTION_FULL_DAYS", "0"),
        ("BACKUP_REMOTE_ENABLED", "maybe"),
        ("BACKUP_MIN_DISK_SPACE_GB", "lots"),
    ],
)
def test_env_invalid_values_name_the_variable(name: str, value: str):
    with pytest.raises(ConfigurationError, match=name):
        create_config_from_env({"BACKUP_ENCRYPTION_KEY": TEST_PASSPHRASE, name: value})


# ============================================================================
# Class catalog
# ============================================================================


@pytest.mark.parametrize(
    "alias", ["DbFull", "DB_FULL", "postgresql_full", BackupClass.DB_FULL]
)
def test_class_aliases(alias):
    assert BackupClass.parse(alias) is BackupClass.DB_FULL


def test_unknown_class_rejected():
    with pytest.raises(ConfigurationError):
        BackupClass.parse("TapeArchive")


def test_filenames_per_class():
    when = datetime(2025, 1, 15, 2, 0, 0)
    assert get_spec("DbFull").filename(when) == "postgresql_full_20250115_020000.sql"
    assert get_spec("DbIncremental").filename(when) == "postgresql_incremental_20250115_020000.sql"
    assert get_spec("CacheSnapshot").filename(when) == "redis_snapshot_20250115_020000.rdb"
    assert get_spec("ConfigArchive").filename(when) == "system_config_20250115_020000.tar.gz"
    assert get_spec("AnalyticsArchive").filename(when) == "analytics_archive_202501.sql"


def test_sequenced_filenames():
    when = datetime(2025, 1, 15, 2, 0, 0)
    assert get_spec("DbFull").filename(when, 2) == "postgresql_full_20250115_020000-2.sql"
    assert get_spec("AnalyticsArchive").filename(when, 1) == "analytics_archive_202501-1.sql"


def test_class_subdirectories():
    assert class_subdirs() == ("postgresql", "redis", "config", "analytics")
    assert CLASS_SPECS[BackupClass.DB_INCREMENTAL].subdir == "postgresql"


@pytest.mark.parametrize(
    "basename,expected",
    [
        ("postgresql_full_20250115_020000.sql.enc", BackupClass.DB_FULL),
        ("PG_FULL_20250115_020000.sql", BackupClass.DB_FULL),
        ("postgresql_incremental_20250115_020000.sql.enc", BackupClass.DB_INCREMENTAL),
        ("redis_20250115_020000.rdb", BackupClass.CACHE_SNAPSHOT),
        ("config_20250115_020000.tar.gz.enc", BackupClass.CONFIG_ARCHIVE),
        ("analytics_archive_202501.sql.enc", BackupClass.ANALYTICS_ARCHIVE),
        ("notes.txt", None),
    ],
)
def test_classify(basename: str, expected):
    assert classify(basename) is expected


def test_parse_timestamped_name():
    parsed = parse_artifact_name("postgresql_full_20250115_020000.sql.enc")
    assert parsed == (datetime(2025, 1, 15, 2, 0, 0), "postgresql_full")


def test_parse_sequenced_names():
    assert parse_artifact_name("postgresql_full_20250115_020000-2.sql.enc") == (
        datetime(2025, 1, 15, 2, 0, 0),
        "postgresql_full",
    )
    assert parse_artifact_name("analytics_archive_202501-1.sql.enc") == (
        datetime(2025, 1, 1),
        "analytics_archive",
    )
    assert classify("analytics_archive_202501-1.sql.enc") is BackupClass.ANALYTICS_ARCHIVE


def test_parse_monthly_analytics_name():
    parsed = parse_artifact_name("analytics_archive_202501.sql.enc")
    assert parsed == (datetime(2025, 1, 1), "analytics_archive")


@pytest.mark.parametrize(
    "basename",
    [
        "postgresql_full_latest.sql.enc",
        "postgresql_full_20251399_000000.sql",
        "redis_snapshot_202501.rdb",
        "dump.sql",
    ],
)
def test_unparseable_names_are_not_guessed(basename: str):
    assert parse_artifact_name(basename) is None


def test_suffix_helpers():
    assert strip_encrypted_suffix("redis_snapshot_20250115_020000.rdb.enc") == (
        "redis_snapshot_20250115_020000.rdb"
    )
    assert has_artifact_extension("backups/postgresql_full_20250115_020000.sql.enc")
    assert not has_artifact_extension("notes.txt")
