# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Ledger handle shared by the pipeline, retention engine and status.

Wraps the free functions in sqlite_ledger with a connection per call and
a single asyncio.Lock so that writers never contend. Every backend
failure surfaces as LedgerError; callers decide whether it is fatal.
"""

import asyncio
from datetime import datetime
from pathlib import Path
from typing import Any, Awaitable, Callable, List, TypeVar

import aiosqlite

from drbackup.exceptions import LedgerError
from drbackup.ledger import sqlite_ledger
from drbackup.ledger.sqlite_ledger import BackupRecord, LedgerStats

T = TypeVar("T")


class Ledger:
    """Serialized access to the ledger database."""

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self._lock = asyncio.Lock()

    async def _call(
        self,
        operation: str,
        func: Callable[..., Awaitable[T]],
        *args: Any,
        **kwargs: Any,
    ) -> T:
        async with self._lock:
            try:
                async with aiosqlite.connect(self.db_path) as db:
                    return await func(db, *args, **kwargs)
            except LedgerError:
                raise
            except (aiosqlite.Error, OSError) as e:
                raise LedgerError(
                    f"Ledger {operation} failed: {e}",
                    details={"db_path": str(self.db_path)},
                ) from e

    async def initialize(self) -> None:
        await sqlite_ledger.init_ledger_db(self.db_path)

    async def append(self, record: BackupRecord) -> int:
        return await self._call("append", sqlite_ledger.append_record, record)

    async def mark_mirrored(self, record_id: int) -> bool:
        return await self._call("mark_mirrored", sqlite_ledger.mark_mirrored, record_id)

    async def latest(self, backup_class: str) -> BackupRecord | None:
        return await self._call("latest", sqlite_ledger.get_latest_record, backup_class)

    async def find_by_filename(self, filename: str) -> BackupRecord | None:
        return await self._call(
            "find_by_filename", sqlite_ledger.get_record_by_filename, filename
        )

    async def compliant(self, now: datetime | None = None) -> bool:
        return await self._call("compliant", sqlite_ledger.is_compliant, now)

    async def annotate_deletion(self, filename: str, backup_class: str) -> int:
        return await self._call(
            "annotate_deletion", sqlite_ledger.annotate_deletion, filename, backup_class
        )

    async def gc(self, older_than: datetime | None = None) -> int:
        return await self._call("gc", sqlite_ledger.gc_records, older_than)

    async def list(
        self, backup_class: str | None = None, limit: int = 50, offset: int = 0
    ) -> List[BackupRecord]:
        return await self._call(
            "list", sqlite_ledger.list_records, backup_class, limit, offset
        )

    async def stats(self) -> LedgerStats:
        return await self._call("stats", sqlite_ledger.get_ledger_stats)
