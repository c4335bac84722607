# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
DRBackup Producers - Class-specific adapters around external programs.

A producer receives the configuration and an output path and, on
success, leaves a file at that path. Producers never encrypt, hash or
record; the pipeline does that. Passwords travel in the child's
environment, never on its argument vector.
"""

import asyncio
import glob
from pathlib import Path
from typing import Awaitable, Callable, Dict, List

import aiofiles
import structlog

from drbackup.command import CommandRunner, run_command
from drbackup.config import BackupClass, BackupConfig
from drbackup.exceptions import (
    CommandError,
    CommandTimeoutError,
    ProducerError,
    ProducerTimeoutError,
)

logger = structlog.get_logger()

Producer = Callable[[BackupConfig, Path], Awaitable[None]]

COPY_CHUNK_SIZE = 64 * 1024


def _pg_base_args(config: BackupConfig) -> List[str]:
    return [
        f"--host={config.db_host}",
        f"--port={config.db_port}",
        f"--username={config.db_user}",
        f"--dbname={config.db_name}",
        "--no-password",
        "--verbose",
    ]


def _pg_env(config: BackupConfig) -> Dict[str, str]:
    return {"PGPASSWORD": config.db_password}


async def _invoke(
    runner: CommandRunner,
    label: str,
    executable: str,
    args: List[str],
    *,
    config: BackupConfig,
    timeout: float,
    env: Dict[str, str] | None = None,
) -> None:
    """Run a producer command, translating command errors to producer errors."""
    try:
        await runner(
            executable,
            args,
            env=env,
            timeout=timeout,
            output_limit=config.command_output_limit,
        )
    except CommandTimeoutError as e:
        raise ProducerTimeoutError(
            f"{label} timed out after {timeout}s",
            details={"executable": executable},
        ) from e
    except CommandError as e:
        raise ProducerError(
            f"{label} failed: {e.message}",
            details={"executable": executable, "exit_code": e.exit_code},
        ) from e


def _ensure_output(output_path: Path, label: str) -> None:
    if not output_path.is_file():
        raise ProducerError(
            f"{label} completed but produced no file",
            details={"output_path": str(output_path)},
        )


async def produce_db_full(
    config: BackupConfig, output_path: Path, runner: CommandRunner = run_command
) -> None:
    """Self-contained custom-format database dump."""
    args = _pg_base_args(config) + [
        "--clean",
        "--create",
        "--format=custom",
        f"--file={output_path}",
    ]
    await _invoke(
        runner,
        "pg_dump",
        "pg_dump",
        args,
        config=config,
        timeout=config.db_dump_timeout_seconds,
        env=_pg_env(config),
    )
    _ensure_output(output_path, "pg_dump")


async def produce_db_incremental(
    config: BackupConfig, output_path: Path, runner: CommandRunner = run_command
) -> None:
    """
    Plain-text database dump.

    There is no since-last-full filter: this is a second full dump in
    plain SQL, cheap to inspect and restorable with psql.
    """
    args = _pg_base_args(config) + [
        "--clean",
        "--create",
        "--format=plain",
        f"--file={output_path}",
    ]
    await _invoke(
        runner,
        "pg_dump",
        "pg_dump",
        args,
        config=config,
        timeout=config.db_dump_timeout_seconds,
        env=_pg_env(config),
    )
    _ensure_output(output_path, "pg_dump")


async def _copy_file(source: Path, destination: Path) -> None:
    async with aiofiles.open(source, "rb") as src, aiofiles.open(destination, "wb") as dst:
        while True:
            chunk = await src.read(COPY_CHUNK_SIZE)
            if not chunk:
                break
            await dst.write(chunk)


async def produce_cache_snapshot(
    config: BackupConfig, output_path: Path, runner: CommandRunner = run_command
) -> None:
    """
    Ask the data store for a background save, then copy its snapshot file.

    The snapshot location is discovered by probing
    config.redis_snapshot_paths in order.
    """
    env = {"REDISCLI_AUTH": config.redis_password} if config.redis_password else None
    await _invoke(
        runner,
        "redis BGSAVE",
        "redis-cli",
        ["-h", config.redis_host, "-p", str(config.redis_port), "BGSAVE"],
        config=config,
        timeout=config.command_timeout_seconds,
        env=env,
    )

    await asyncio.sleep(config.redis_snapshot_wait_seconds)

    snapshot = next(
        (Path(p) for p in config.redis_snapshot_paths if Path(p).is_file()), None
    )
    if snapshot is None:
        raise ProducerError(
            "Redis dump file not found",
            details={"candidates": list(config.redis_snapshot_paths)},
        )

    try:
        await _copy_file(snapshot, output_path)
    except OSError as e:
        raise ProducerError(
            f"Failed to copy Redis dump: {e}", details={"source": str(snapshot)}
        ) from e

    logger.debug("redis_snapshot_copied", source=str(snapshot), output=str(output_path))


def _existing_config_paths(config: BackupConfig) -> List[str]:
    found: List[str] = []
    for pattern in config.config_paths:
        matches = sorted(glob.glob(pattern)) if glob.has_magic(pattern) else [pattern]
        found.extend(m for m in matches if Path(m).exists())
    return found


async def produce_config_archive(
    config: BackupConfig, output_path: Path, runner: CommandRunner = run_command
) -> None:
    """Gzipped tar of the configured host paths; missing entries are skipped."""
    paths = _existing_config_paths(config)
    if not paths:
        raise ProducerError(
            "None of the configured config paths exist",
            details={"config_paths": list(config.config_paths)},
        )

    await _invoke(
        runner,
        "tar",
        "tar",
        ["czf", str(output_path), *paths],
        config=config,
        timeout=config.command_timeout_seconds,
    )
    _ensure_output(output_path, "tar")


async def produce_analytics_archive(
    config: BackupConfig, output_path: Path, runner: CommandRunner = run_command
) -> None:
    """Data-only dump of tables matching the analytics prefixes."""
    args = _pg_base_args(config) + [
        "--data-only",
        f"--file={output_path}",
    ]
    args.extend(f"--table={prefix}*" for prefix in config.analytics_table_prefixes)
    await _invoke(
        runner,
        "analytics pg_dump",
        "pg_dump",
        args,
        config=config,
        timeout=config.db_dump_timeout_seconds,
        env=_pg_env(config),
    )
    _ensure_output(output_path, "analytics pg_dump")


def default_producers() -> Dict[BackupClass, Producer]:
    """Producer bound to each class."""
    return {
        BackupClass.DB_FULL: produce_db_full,
        BackupClass.DB_INCREMENTAL: produce_db_incremental,
        BackupClass.CACHE_SNAPSHOT: produce_cache_snapshot,
        BackupClass.CONFIG_ARCHIVE: produce_config_archive,
        BackupClass.ANALYTICS_ARCHIVE: produce_analytics_archive,
    }
