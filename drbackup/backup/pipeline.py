# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
DRBackup Pipeline - One backup run, end to end.

    Pending -> Producing -> Encrypting -> Recording -> Mirroring -> Done
                   \\             \\
                    +-------------+--> Failed (record appended, alert sent)

A run owns the pair (raw_path, enc_path), and both are names no existing
file occupies when the run starts. Before run_backup() returns or raises,
either both are gone or only the encrypted artifact remains; the
plaintext intermediate never survives a terminal state. Earlier artifacts
are never touched.

Ledger, hash and mirror failures are logged and do not fail the run.
"""

import asyncio
import contextlib
import threading
from datetime import datetime, UTC
from pathlib import Path
from typing import Tuple

import structlog
from ulid import ULID

from drbackup.alerts import BACKUP_TIMEOUT, send_alert
from drbackup.backup.hasher import sha256_file
from drbackup.catalog import CLASS_SPECS, ENCRYPTED_SUFFIX, ClassSpec
from drbackup.config import BackupClass, BackupConfig
from drbackup.core import BackupState
from drbackup.crypto import encrypt_file
from drbackup.exceptions import (
    BackupSystemError,
    EncryptError,
    HashError,
    LedgerError,
    MirrorError,
    ProducerError,
    RunInProgressError,
    RunTimeoutError,
)
from drbackup.ledger import BackupRecord

logger = structlog.get_logger()


def _allocate(class_dir: Path, spec: ClassSpec, when: datetime) -> Tuple[Path, Path]:
    """
    Pick the (raw_path, enc_path) pair for a run starting at `when`.

    Failure cleanup unlinks both paths, so neither may name an existing
    file; a taken name gets the next "-<n>" sequence.
    """
    sequence = 0
    while True:
        raw_path = class_dir / spec.filename(when, sequence)
        enc_path = raw_path.with_name(raw_path.name + ENCRYPTED_SUFFIX)
        if not raw_path.exists() and not enc_path.exists():
            return raw_path, enc_path
        sequence += 1


def _discard(*paths: Path) -> None:
    for path in paths:
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning("intermediate_cleanup_failed", path=str(path), error=str(e))


async def _encrypt_in_thread(key: bytes, raw_path: Path, enc_path: Path) -> None:
    """
    Encrypt on a worker thread, stopping it cleanly if the run is cancelled.

    On cancellation the thread is told to abort and awaited, so it cannot
    recreate enc_path after the caller has cleaned up.
    """
    abort = threading.Event()
    worker = asyncio.ensure_future(
        asyncio.to_thread(encrypt_file, key, raw_path, enc_path, abort)
    )
    try:
        await asyncio.shield(worker)
    except asyncio.CancelledError:
        abort.set()
        with contextlib.suppress(EncryptError):
            await worker
        raise


async def _append_best_effort(state: BackupState, record: BackupRecord) -> None:
    try:
        await state["ledger"].append(record)
    except LedgerError as e:
        logger.warning(
            "ledger_append_failed",
            backup_class=record.backup_class,
            filename=record.filename,
            error=str(e),
        )


async def _record_failure(
    state: BackupState,
    spec: ClassSpec,
    run_id: str,
    filename: str,
    started_at: datetime,
    error: str,
) -> BackupRecord:
    record = BackupRecord(
        run_id=run_id,
        backup_class=spec.backup_class.value,
        filename=filename,
        started_at=started_at,
        success=False,
        error=error,
    )
    await _append_best_effort(state, record)
    state["total_failures"] += 1
    state["last_error"] = error
    return record


async def _mirror(
    config: BackupConfig,
    state: BackupState,
    record: BackupRecord,
    class_dir: Path,
    deadline: float | None,
) -> None:
    remote = state["remote"]
    if remote is None or not config.remote_enabled:
        return

    try:
        async with asyncio.timeout_at(deadline):
            await remote.push(class_dir)
    except (MirrorError, TimeoutError) as e:
        logger.warning(
            "remote_mirror_failed",
            backup_class=record.backup_class,
            filename=record.filename,
            error=str(e) or "outer deadline expired",
        )
        return

    if record.id is None:
        # Without a ledger row there is nothing to flag
        return
    try:
        if await state["ledger"].mark_mirrored(record.id):
            record.mirrored = True
    except LedgerError as e:
        logger.warning("ledger_mark_mirrored_failed", record_id=record.id, error=str(e))


async def run_backup(
    config: BackupConfig,
    state: BackupState,
    backup_class: BackupClass | str,
    *,
    deadline: float | None = None,
) -> BackupRecord:
    """
    Run one backup of backup_class.

    Args:
        config: Backup configuration
        state: Runtime state
        backup_class: Class to back up (enum, tag or alias)
        deadline: Absolute event-loop time (loop.time()) for the run

    Returns:
        The successful BackupRecord

    Raises:
        RunInProgressError: If a run of the same class is already active
        RunTimeoutError: If the deadline expires before the artifact is durable
        ProducerError: If the producer fails
        EncryptError: If the envelope cannot be written
    """
    backup_class = BackupClass.parse(backup_class)
    spec = CLASS_SPECS[backup_class]

    if backup_class in state["running"]:
        logger.warning("backup_run_skipped", backup_class=backup_class.value, reason="in_progress")
        raise RunInProgressError(
            f"A {backup_class.value} run is already in progress",
            details={"backup_class": backup_class.value},
        )

    state["running"].add(backup_class)
    try:
        return await _run(config, state, spec, deadline)
    finally:
        state["running"].discard(backup_class)


async def _run(
    config: BackupConfig,
    state: BackupState,
    spec: ClassSpec,
    deadline: float | None,
) -> BackupRecord:
    run_id = str(ULID())
    started_at = datetime.now(UTC)
    tag = spec.backup_class.value

    # Pending: allocate paths from the local wall-clock
    class_dir = config.backup_dir / spec.subdir
    class_dir.mkdir(parents=True, exist_ok=True, mode=0o750)
    raw_path, enc_path = _allocate(class_dir, spec, datetime.now())
    producer = state["producers"][spec.backup_class]

    state["last_run_at"] = started_at
    state["total_runs"] += 1
    logger.info("backup_run_started", run_id=run_id, backup_class=tag, output=str(enc_path))

    stage = "producing"
    digest = ""
    try:
        async with asyncio.timeout_at(deadline):
            await producer(config, raw_path)
            if not raw_path.is_file():
                raise ProducerError(
                    "Producer reported success but left no file",
                    details={"output_path": str(raw_path)},
                )

            stage = "encrypting"
            await _encrypt_in_thread(state["key"], raw_path, enc_path)
            _discard(raw_path)

            stage = "fingerprinting"
            size = enc_path.stat().st_size
            try:
                digest = await sha256_file(enc_path)
            except HashError as e:
                logger.warning("artifact_hash_failed", run_id=run_id, error=str(e))

    except TimeoutError:
        _discard(raw_path, enc_path)
        error = RunTimeoutError(
            f"{tag} run exceeded its outer deadline while {stage}",
            details={"backup_class": tag, "stage": stage},
        )
        await _record_failure(state, spec, run_id, enc_path.name, started_at, str(error))
        elapsed = (datetime.now(UTC) - started_at).total_seconds()
        logger.error("backup_run_timed_out", run_id=run_id, backup_class=tag, stage=stage)
        await send_alert(
            state["alert_sink"],
            BACKUP_TIMEOUT,
            "critical",
            f"{tag} backup exceeded its deadline after {elapsed:.0f}s",
            backup_class=tag,
            elapsed_seconds=round(elapsed, 1),
        )
        raise error

    except asyncio.CancelledError:
        _discard(raw_path, enc_path)
        await _record_failure(state, spec, run_id, enc_path.name, started_at, "run cancelled")
        logger.warning("backup_run_cancelled", run_id=run_id, backup_class=tag, stage=stage)
        raise

    except (BackupSystemError, OSError) as e:
        _discard(raw_path, enc_path)
        if isinstance(e, BackupSystemError):
            error = e
        else:
            wrapper = ProducerError if stage == "producing" else EncryptError
            error = wrapper(f"{tag} run failed while {stage}: {e}")
        await _record_failure(state, spec, run_id, enc_path.name, started_at, str(error))
        logger.error(
            "backup_run_failed", run_id=run_id, backup_class=tag, stage=stage, error=str(error)
        )
        await send_alert(
            state["alert_sink"],
            spec.alert_type,
            spec.failure_severity,
            f"{tag} backup failed: {error}",
            backup_class=tag,
        )
        if error is e:
            raise
        raise error from e

    # Recording
    record = BackupRecord(
        run_id=run_id,
        backup_class=tag,
        filename=enc_path.name,
        started_at=started_at,
        success=True,
        size_bytes=size,
        encrypted=True,
        digest=digest,
    )
    await _append_best_effort(state, record)

    # Mirroring
    await _mirror(config, state, record, class_dir, deadline)

    logger.info(
        "backup_run_completed",
        run_id=run_id,
        backup_class=tag,
        filename=record.filename,
        size=record.size_bytes,
        mirrored=record.mirrored,
    )
    return record
