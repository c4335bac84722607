# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
DRBackup Restore Manager - Restore, verify and list artifacts.

Restoration decrypts into the temp directory and hands the plaintext to
the class's restorer. The decrypted intermediate is always unlinked
before restore_artifact() returns, whether the restorer succeeded or not.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, UTC
from pathlib import Path
from typing import Awaitable, Callable, Dict, List

import aiofiles
import structlog
from ulid import ULID

from drbackup.backup.hasher import digests_match, sha256_file
from drbackup.catalog import (
    ENCRYPTED_SUFFIX,
    class_subdirs,
    classify,
    is_encrypted_name,
    strip_encrypted_suffix,
)
from drbackup.command import CommandRunner, run_command
from drbackup.config import BackupClass, BackupConfig
from drbackup.core import BackupState, artifact_path
from drbackup.crypto import decrypt_file, verify_file
from drbackup.exceptions import (
    CommandError,
    EncryptError,
    HashError,
    IntegrityError,
    LedgerError,
    MirrorError,
    RestoreError,
)

logger = structlog.get_logger()

Restorer = Callable[[BackupConfig, Path, Path | None], Awaitable[None]]

DEFAULT_REDIS_RESTORE_TARGETS = ("/data/dump.rdb", "/var/lib/redis/dump.rdb")


@dataclass
class RestoreResult:
    """Result of a restore operation."""

    operation_id: str
    backup_class: str
    filename: str
    success: bool
    duration_seconds: float
    fetched_from_remote: bool = False
    target_path: str | None = None
    error: str | None = None


@dataclass
class VerifyResult:
    """Result of an integrity check."""

    backup_class: str
    filename: str
    valid: bool
    digest: str = ""
    expected_digest: str | None = None
    error: str | None = None


@dataclass
class ArtifactInfo:
    """An artifact found locally or on the remote."""

    filename: str
    category: str
    backup_class: str | None
    encrypted: bool
    remote: bool = False
    size_bytes: int | None = None
    modified_at: datetime | None = None
    digest: str | None = None
    errors: List[str] = field(default_factory=list)


# ============================================================================
# Restorers
# ============================================================================


def _pg_connection_args(config: BackupConfig) -> List[str]:
    return [
        f"--host={config.db_host}",
        f"--port={config.db_port}",
        f"--username={config.db_user}",
        f"--dbname={config.db_name}",
        "--no-password",
    ]


async def _run_restore_command(
    runner: CommandRunner, config: BackupConfig, executable: str, args: List[str], env=None
) -> None:
    try:
        await runner(
            executable,
            args,
            env=env,
            timeout=None,
            output_limit=config.command_output_limit,
        )
    except CommandError as e:
        raise RestoreError(
            f"{executable} failed: {e.message}", details={"exit_code": e.exit_code}
        ) from e


async def restore_pg_custom(
    config: BackupConfig,
    source: Path,
    target_path: Path | None,
    runner: CommandRunner = run_command,
) -> None:
    """Restore a custom-format dump with pg_restore."""
    args = _pg_connection_args(config) + ["--verbose", "--clean", "--create", str(source)]
    await _run_restore_command(
        runner, config, "pg_restore", args, env={"PGPASSWORD": config.db_password}
    )


async def restore_pg_plain(
    config: BackupConfig,
    source: Path,
    target_path: Path | None,
    runner: CommandRunner = run_command,
) -> None:
    """Replay a plain SQL dump with psql."""
    args = _pg_connection_args(config) + [f"--file={source}"]
    await _run_restore_command(
        runner, config, "psql", args, env={"PGPASSWORD": config.db_password}
    )


async def restore_redis_snapshot(
    config: BackupConfig,
    source: Path,
    target_path: Path | None,
    runner: CommandRunner = run_command,
) -> None:
    """
    Copy the snapshot into the data store's dump location.

    The data store must be restarted by the operator to load it.
    """
    if target_path is None:
        target_path = Path(DEFAULT_REDIS_RESTORE_TARGETS[1])
        if Path("/data").is_dir():
            target_path = Path(DEFAULT_REDIS_RESTORE_TARGETS[0])

    try:
        async with aiofiles.open(source, "rb") as src, aiofiles.open(target_path, "wb") as dst:
            while True:
                chunk = await src.read(64 * 1024)
                if not chunk:
                    break
                await dst.write(chunk)
    except OSError as e:
        raise RestoreError(
            f"Failed to copy Redis snapshot: {e}", details={"target": str(target_path)}
        ) from e

    logger.info("redis_snapshot_restored", target=str(target_path), restart_required=True)


async def restore_config_archive(
    config: BackupConfig,
    source: Path,
    target_path: Path | None,
    runner: CommandRunner = run_command,
) -> None:
    """Extract the archive into target_path (default: current directory)."""
    target = target_path or Path(".")
    await _run_restore_command(runner, config, "tar", ["xzf", str(source), "-C", str(target)])


def default_restorers() -> Dict[BackupClass, Restorer]:
    """Restorer bound to each class."""
    return {
        BackupClass.DB_FULL: restore_pg_custom,
        BackupClass.DB_INCREMENTAL: restore_pg_plain,
        BackupClass.CACHE_SNAPSHOT: restore_redis_snapshot,
        BackupClass.CONFIG_ARCHIVE: restore_config_archive,
        BackupClass.ANALYTICS_ARCHIVE: restore_pg_plain,
    }


# ============================================================================
# Restore
# ============================================================================


def _encrypted_basename(basename: str) -> str:
    name = Path(basename).name
    return name if is_encrypted_name(name) else name + ENCRYPTED_SUFFIX


async def _locate_artifact(
    config: BackupConfig, state: BackupState, backup_class: BackupClass, basename: str
) -> tuple[Path, bool]:
    """Find the artifact locally, pulling it from the remote if needed."""
    path = artifact_path(config, backup_class, _encrypted_basename(basename))
    if path.is_file():
        return (path, False)

    remote = state["remote"]
    if not config.remote_enabled or remote is None:
        raise RestoreError(f"Backup file not found: {path}", details={"path": str(path)})

    try:
        await remote.pull(remote.object_path(path.name), path.parent)
    except MirrorError as e:
        raise RestoreError(
            f"Backup file not found locally and remote download failed: {e.message}",
            details={"path": str(path)},
        ) from e

    if not path.is_file():
        raise RestoreError(
            f"Backup file not found locally or on the remote: {path.name}",
            details={"path": str(path)},
        )
    return (path, True)


async def restore_artifact(
    config: BackupConfig,
    state: BackupState,
    backup_class: BackupClass | str,
    basename: str,
    target_path: Path | None = None,
) -> RestoreResult:
    """
    Restore one artifact.

    Args:
        config: Backup configuration
        state: Runtime state
        backup_class: Class of the artifact (enum, tag or alias)
        basename: Artifact basename, with or without the .enc suffix
        target_path: Destination for file-based classes

    Returns:
        RestoreResult describing the outcome

    Raises:
        RestoreError: If the artifact is missing, undecryptable or the
            restorer fails
    """
    backup_class = BackupClass.parse(backup_class)
    operation_id = str(ULID())
    start = datetime.now(UTC)

    logger.info(
        "restore_started",
        operation_id=operation_id,
        backup_class=backup_class.value,
        filename=basename,
    )

    encrypted_path, fetched = await _locate_artifact(config, state, backup_class, basename)
    config.temp_path.mkdir(parents=True, exist_ok=True, mode=0o750)
    decrypted_path = config.temp_path / f"restore_{strip_encrypted_suffix(encrypted_path.name)}"

    try:
        try:
            await asyncio.to_thread(decrypt_file, state["key"], encrypted_path, decrypted_path)
        except (IntegrityError, EncryptError) as e:
            raise RestoreError(
                f"Failed to decrypt backup: {e.message}",
                details={"filename": encrypted_path.name},
            ) from e

        restorer = state["restorers"][backup_class]
        await restorer(config, decrypted_path, target_path)
    except RestoreError as e:
        logger.error(
            "restore_failed",
            operation_id=operation_id,
            backup_class=backup_class.value,
            error=str(e),
        )
        raise
    finally:
        decrypted_path.unlink(missing_ok=True)

    duration = (datetime.now(UTC) - start).total_seconds()
    logger.info(
        "restore_completed",
        operation_id=operation_id,
        backup_class=backup_class.value,
        duration=duration,
    )
    return RestoreResult(
        operation_id=operation_id,
        backup_class=backup_class.value,
        filename=encrypted_path.name,
        success=True,
        duration_seconds=duration,
        fetched_from_remote=fetched,
        target_path=str(target_path) if target_path else None,
    )


# ============================================================================
# Verify
# ============================================================================


async def verify_artifact(
    config: BackupConfig,
    state: BackupState,
    backup_class: BackupClass | str,
    basename: str,
) -> VerifyResult:
    """
    Check an artifact's digest against the ledger and authenticate it.

    The digest comparison is skipped when the ledger has no digest for the
    file. Decryption is done without writing plaintext.

    Returns:
        VerifyResult; valid is False with an error on any failure
    """
    backup_class = BackupClass.parse(backup_class)
    path = artifact_path(config, backup_class, basename)
    if not path.is_file() and not is_encrypted_name(path.name):
        path = path.with_name(path.name + ENCRYPTED_SUFFIX)
    result = VerifyResult(backup_class=backup_class.value, filename=path.name, valid=False)

    if not path.is_file():
        result.error = f"Backup file not found: {path.name}"
        return result

    try:
        result.digest = await sha256_file(path)
    except HashError as e:
        result.error = str(e)
        return result

    try:
        record = await state["ledger"].find_by_filename(path.name)
    except LedgerError as e:
        logger.warning("verify_ledger_unavailable", error=str(e))
        record = None

    if record is not None and record.digest:
        result.expected_digest = record.digest
        if not digests_match(result.digest, record.digest):
            logger.error(
                "artifact_checksum_mismatch",
                filename=path.name,
                current=result.digest,
                stored=record.digest,
            )
            result.error = "Checksum mismatch: backup may be corrupted"

    if is_encrypted_name(path.name):
        try:
            await asyncio.to_thread(verify_file, state["key"], path)
        except IntegrityError as e:
            failure = f"Backup decryption failed: {e.message}"
            result.error = f"{result.error}; {failure}" if result.error else failure

    result.valid = result.error is None
    logger.info("artifact_verified", filename=path.name, valid=result.valid)
    return result


# ============================================================================
# Listing
# ============================================================================


def _class_tag(name: str) -> str | None:
    backup_class = classify(Path(name).name)
    return backup_class.value if backup_class else None


async def _describe(path: Path, category: str, include_digest: bool) -> ArtifactInfo:
    info = ArtifactInfo(
        filename=path.name,
        category=category,
        backup_class=_class_tag(path.name),
        encrypted=is_encrypted_name(path.name),
    )
    try:
        stat = path.stat()
        info.size_bytes = stat.st_size
        info.modified_at = datetime.fromtimestamp(stat.st_mtime, UTC)
        if include_digest:
            info.digest = await sha256_file(path)
    except (OSError, HashError) as e:
        info.errors.append(str(e))
    return info


async def list_artifacts(
    config: BackupConfig, state: BackupState, include_digests: bool = True
) -> Dict[str, List[ArtifactInfo]]:
    """
    List artifacts per class directory, plus remote ones when mirroring.

    Returns:
        Mapping of directory name (and "remote") to artifacts
    """
    result: Dict[str, List[ArtifactInfo]] = {}

    for subdir in class_subdirs():
        directory = config.backup_dir / subdir
        entries: List[ArtifactInfo] = []
        if directory.is_dir():
            for path in sorted(directory.iterdir()):
                if not path.is_file() or path.name.startswith("."):
                    continue
                entries.append(await _describe(path, subdir, include_digests))
        result[subdir] = entries

    remote = state["remote"]
    if config.remote_enabled and remote is not None:
        try:
            names = await remote.list()
        except MirrorError as e:
            logger.error("remote_list_failed", error=str(e))
        else:
            result["remote"] = [
                ArtifactInfo(
                    filename=name,
                    category="remote",
                    backup_class=_class_tag(name),
                    encrypted=is_encrypted_name(name),
                    remote=True,
                )
                for name in names
            ]

    return result

