# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
DRBackup - Backup and disaster-recovery subsystem.

Periodically captures a PostgreSQL database, a Redis snapshot and a tree of
configuration files, encrypts each artifact at rest, mirrors it off-host
with rclone, enforces per-class retention and supports verification and
restore. Package name: drbackup.
"""

__version__ = "0.1.0"

# Configuration
from drbackup.config import BackupClass, BackupConfig, HealthStatus
from drbackup.env import create_config_from_env

# Core functions
from drbackup.core import (
    initialize_backup_state,
    start_backup_service,
    stop_backup_service,
    get_status,
    check_disk_space,
)

# Library facade
from drbackup.service import BackupService

__all__ = [
    # Version
    "__version__",
    # Configuration
    "BackupClass",
    "BackupConfig",
    "HealthStatus",
    "create_config_from_env",
    # Core orchestration functions
    "initialize_backup_state",
    "start_backup_service",
    "stop_backup_service",
    "get_status",
    "check_disk_space",
    # Facade
    "BackupService",
]
