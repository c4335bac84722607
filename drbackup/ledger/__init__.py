# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Backup Ledger - Persistent record of every backup attempt.
"""

from drbackup.ledger.sqlite_ledger import (
    init_ledger_db,
    append_record,
    mark_mirrored,
    get_latest_record,
    get_record_by_filename,
    is_compliant,
    annotate_deletion,
    gc_records,
    list_records,
    get_ledger_stats,
    BackupRecord,
    LedgerStats,
)

from drbackup.ledger.handle import Ledger

__all__ = [
    # Ledger functions
    "init_ledger_db",
    "append_record",
    "mark_mirrored",
    "get_latest_record",
    "get_record_by_filename",
    "is_compliant",
    "annotate_deletion",
    "gc_records",
    "list_records",
    "get_ledger_stats",
    # Types
    "BackupRecord",
    "LedgerStats",
    # Handle
    "Ledger",
]
