# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Example backup daemon.

Runs the scheduled cadences until SIGINT or SIGTERM, then cancels any
in-flight run and exits.

Run with:
    BACKUP_ENCRYPTION_KEY=... python examples/backup_daemon.py

Environment variables:
    BACKUP_ENCRYPTION_KEY: Master passphrase (required, >= 32 bytes)
    BACKUP_DIR: Artifact root (default: ./backups)
    DB_HOST, DB_PORT, DB_USER, DB_PASSWORD, DB_NAME: PostgreSQL connection
    REDIS_HOST, REDIS_PORT, REDIS_PASSWORD: Redis connection
    BACKUP_REMOTE_ENABLED, RCLONE_REMOTE, RCLONE_CONFIG: Off-host mirror
"""

import asyncio
import signal

import structlog

from drbackup import BackupService, create_config_from_env
from drbackup.exceptions import ConfigurationError

logger = structlog.get_logger()


async def main() -> int:
    try:
        config = create_config_from_env()
        service = await BackupService.create(config)
    except ConfigurationError as e:
        logger.error("backup_daemon_startup_failed", error=str(e))
        return 1

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    await service.start()
    status = await service.status()
    logger.info(
        "backup_daemon_running",
        status=status.status.value,
        disk_free_gb=status.disk_free_gb,
    )

    await stop.wait()
    await service.stop()
    return 0


if __name__ == "__main__":
    raise SystemExit(asyncio.run(main()))
