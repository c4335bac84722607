# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
DRBackup SQLite Ledger - Append-mostly record of every backup attempt.

Rows are written once by the pipeline. The only later mutations are the
mirrored flag (set after a successful push) and deletion notes appended
to the error column by the retention engine.

Timestamps are stored as ISO 8601 UTC text, so lexicographic order is
chronological order.
"""

import math
from dataclasses import dataclass
from datetime import datetime, timedelta, UTC
from pathlib import Path
from typing import Dict, List, TypedDict

import aiosqlite
import structlog

from drbackup.catalog import CLASS_SPECS
from drbackup.exceptions import LedgerError

logger = structlog.get_logger()

COMPLIANCE_WINDOW = timedelta(days=7)
LEDGER_MAX_AGE = timedelta(days=365)


@dataclass
class BackupRecord:
    """One backup attempt."""

    backup_class: str
    filename: str
    started_at: datetime
    success: bool
    size_bytes: int = 0
    encrypted: bool = False
    mirrored: bool = False
    digest: str = ""
    error: str = ""
    ended_at: datetime | None = None
    duration_seconds: int = 0
    run_id: str = ""
    id: int | None = None


class LedgerStats(TypedDict):
    """Aggregate ledger figures."""

    total_records: int
    successful: int
    failed: int
    mirrored: int
    total_bytes: int
    by_class: Dict[str, int]


async def init_ledger_db(db_path: Path) -> None:
    """
    Initialize the ledger schema.

    Creates the table and indexes if they don't exist. This is idempotent.

    Args:
        db_path: Path to the SQLite database file
    """
    try:
        async with aiosqlite.connect(db_path) as db:
            await db.execute("""
                CREATE TABLE IF NOT EXISTS backup_records (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    run_id TEXT NOT NULL,
                    backup_class TEXT NOT NULL,
                    filename TEXT NOT NULL,
                    size_bytes INTEGER NOT NULL DEFAULT 0,
                    encrypted INTEGER NOT NULL DEFAULT 0,
                    mirrored INTEGER NOT NULL DEFAULT 0,
                    digest TEXT NOT NULL DEFAULT '',
                    success INTEGER NOT NULL,
                    error TEXT NOT NULL DEFAULT '',
                    started_at TEXT NOT NULL,
                    ended_at TEXT NOT NULL,
                    duration_seconds INTEGER NOT NULL DEFAULT 0,
                    CHECK (mirrored = 0 OR success = 1)
                )
            """)

            await db.execute("""
                CREATE INDEX IF NOT EXISTS idx_backup_records_class_started
                ON backup_records(backup_class, started_at DESC)
            """)

            await db.execute("""
                CREATE INDEX IF NOT EXISTS idx_backup_records_success_started
                ON backup_records(success, started_at DESC)
            """)

            await db.commit()

        logger.info("ledger_db_initialized", db_path=str(db_path))

    except (aiosqlite.Error, OSError) as e:
        raise LedgerError(
            f"Failed to initialize ledger database: {e}",
            details={"db_path": str(db_path)},
        ) from e


def _iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.astimezone()
    return value.astimezone(UTC).isoformat()


def _row_to_record(row: aiosqlite.Row) -> BackupRecord:
    return BackupRecord(
        id=row["id"],
        run_id=row["run_id"],
        backup_class=row["backup_class"],
        filename=row["filename"],
        size_bytes=row["size_bytes"],
        encrypted=bool(row["encrypted"]),
        mirrored=bool(row["mirrored"]),
        digest=row["digest"],
        success=bool(row["success"]),
        error=row["error"],
        started_at=datetime.fromisoformat(row["started_at"]),
        ended_at=datetime.fromisoformat(row["ended_at"]),
        duration_seconds=row["duration_seconds"],
    )


async def append_record(db: aiosqlite.Connection, record: BackupRecord) -> int:
    """
    Insert a record, stamping ended_at with the current time.

    ended_at is clamped to started_at so clock steps never produce a
    negative duration. The record is updated in place.

    Args:
        db: SQLite database connection
        record: Record to append

    Returns:
        Row id of the new record
    """
    if not record.backup_class:
        raise LedgerError("backup_class must not be empty")

    ended_at = max(datetime.now(UTC), record.started_at.astimezone(UTC))
    record.ended_at = ended_at
    record.duration_seconds = math.floor(
        (ended_at - record.started_at.astimezone(UTC)).total_seconds()
    )

    cursor = await db.execute(
        """
        INSERT INTO backup_records (
            run_id, backup_class, filename, size_bytes, encrypted, mirrored,
            digest, success, error, started_at, ended_at, duration_seconds
        )
        VALUES (?, ?, ?, ?, ?, 0, ?, ?, ?, ?, ?, ?)
        """,
        (
            record.run_id,
            record.backup_class,
            record.filename,
            record.size_bytes,
            int(record.encrypted),
            record.digest,
            int(record.success),
            record.error,
            _iso(record.started_at),
            _iso(ended_at),
            record.duration_seconds,
        ),
    )
    await db.commit()

    record.id = cursor.lastrowid
    record.mirrored = False
    return record.id


async def mark_mirrored(db: aiosqlite.Connection, record_id: int) -> bool:
    """
    Flag a successful record as mirrored.

    Returns:
        True if a successful row was updated
    """
    cursor = await db.execute(
        "UPDATE backup_records SET mirrored = 1 WHERE id = ? AND success = 1",
        (record_id,),
    )
    await db.commit()
    return cursor.rowcount > 0


async def get_latest_record(
    db: aiosqlite.Connection, backup_class: str
) -> BackupRecord | None:
    """Most recent successful record for a class, by started_at."""
    db.row_factory = aiosqlite.Row
    async with db.execute(
        """
        SELECT * FROM backup_records
        WHERE backup_class = ? AND success = 1
        ORDER BY started_at DESC
        LIMIT 1
        """,
        (backup_class,),
    ) as cursor:
        row = await cursor.fetchone()
    return _row_to_record(row) if row else None


async def get_record_by_filename(
    db: aiosqlite.Connection, filename: str
) -> BackupRecord | None:
    """Most recent successful record that produced filename."""
    db.row_factory = aiosqlite.Row
    async with db.execute(
        """
        SELECT * FROM backup_records
        WHERE filename = ? AND success = 1
        ORDER BY started_at DESC
        LIMIT 1
        """,
        (filename,),
    ) as cursor:
        row = await cursor.fetchone()
    return _row_to_record(row) if row else None


async def is_compliant(db: aiosqlite.Connection, now: datetime | None = None) -> bool:
    """
    Check that every regularly-run class succeeded within the last 7 days.

    Seldom-run classes (monthly analytics) are not considered.
    """
    now = now or datetime.now(UTC)
    cutoff = _iso(now - COMPLIANCE_WINDOW)

    for spec in CLASS_SPECS.values():
        if spec.seldom:
            continue
        async with db.execute(
            """
            SELECT COUNT(*) FROM backup_records
            WHERE backup_class = ? AND success = 1 AND started_at >= ?
            """,
            (spec.backup_class.value, cutoff),
        ) as cursor:
            row = await cursor.fetchone()
        if not row or row[0] == 0:
            logger.debug("class_not_compliant", backup_class=spec.backup_class.value)
            return False

    return True


async def annotate_deletion(
    db: aiosqlite.Connection, filename: str, backup_class: str
) -> int:
    """
    Append a deletion note to the error column of matching rows.

    The column is treated as append-only free text.

    Returns:
        Number of rows annotated
    """
    note = f"Deleted by retention policy at {datetime.now(UTC).isoformat()}"
    cursor = await db.execute(
        """
        UPDATE backup_records
        SET error = CASE WHEN error = '' THEN ? ELSE error || '; ' || ? END
        WHERE filename = ? AND backup_class = ?
        """,
        (note, note, filename, backup_class),
    )
    await db.commit()
    return cursor.rowcount


async def gc_records(db: aiosqlite.Connection, older_than: datetime | None = None) -> int:
    """
    Remove rows whose started_at precedes older_than (default: one year ago).

    Returns:
        Number of rows removed
    """
    older_than = older_than or datetime.now(UTC) - LEDGER_MAX_AGE
    cursor = await db.execute(
        "DELETE FROM backup_records WHERE started_at < ?",
        (_iso(older_than),),
    )
    await db.commit()
    return cursor.rowcount


async def list_records(
    db: aiosqlite.Connection,
    backup_class: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> List[BackupRecord]:
    """
    List records newest first with pagination.

    Args:
        db: SQLite database connection
        backup_class: Optional class filter
        limit: Maximum number of records
        offset: Number of records to skip
    """
    db.row_factory = aiosqlite.Row
    if backup_class:
        query = """
            SELECT * FROM backup_records
            WHERE backup_class = ?
            ORDER BY started_at DESC
            LIMIT ? OFFSET ?
        """
        params: tuple = (backup_class, limit, offset)
    else:
        query = """
            SELECT * FROM backup_records
            ORDER BY started_at DESC
            LIMIT ? OFFSET ?
        """
        params = (limit, offset)

    async with db.execute(query, params) as cursor:
        rows = await cursor.fetchall()
    return [_row_to_record(row) for row in rows]


async def get_ledger_stats(db: aiosqlite.Connection) -> LedgerStats:
    """Aggregate counts across the ledger."""
    async with db.execute(
        """
        SELECT
            COUNT(*),
            COALESCE(SUM(success), 0),
            COALESCE(SUM(mirrored), 0),
            COALESCE(SUM(CASE WHEN success = 1 THEN size_bytes ELSE 0 END), 0)
        FROM backup_records
        """
    ) as cursor:
        total, successful, mirrored, total_bytes = await cursor.fetchone()

    by_class: Dict[str, int] = {}
    async with db.execute(
        "SELECT backup_class, COUNT(*) FROM backup_records GROUP BY backup_class"
    ) as cursor:
        async for backup_class, count in cursor:
            by_class[backup_class] = count

    return LedgerStats(
        total_records=total,
        successful=successful,
        failed=total - successful,
        mirrored=mirrored,
        total_bytes=total_bytes,
        by_class=by_class,
    )
