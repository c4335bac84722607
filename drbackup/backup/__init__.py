# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Backup - Artifact pipeline, hashing and restore.
"""

from drbackup.backup.hasher import digests_match, sha256_file, verify_digest
from drbackup.backup.pipeline import run_backup
from drbackup.backup.restore import (
    restore_artifact,
    verify_artifact,
    list_artifacts,
    default_restorers,
    RestoreResult,
    VerifyResult,
    ArtifactInfo,
)

__all__ = [
    "digests_match",
    "sha256_file",
    "verify_digest",
    "run_backup",
    "restore_artifact",
    "verify_artifact",
    "list_artifacts",
    "default_restorers",
    "RestoreResult",
    "VerifyResult",
    "ArtifactInfo",
]
