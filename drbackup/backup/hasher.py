# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
DRBackup Hasher - Streaming SHA-256 fingerprints of artifacts.
"""

import hashlib
import hmac
from pathlib import Path

import aiofiles

from drbackup.exceptions import HashError

HASH_CHUNK_SIZE = 1024 * 1024


async def sha256_file(path: Path) -> str:
    """
    Compute the SHA-256 digest of a file in bounded chunks.

    Args:
        path: File to hash

    Returns:
        Lowercase hex digest

    Raises:
        HashError: If the file cannot be opened or read
    """
    digest = hashlib.sha256()
    try:
        async with aiofiles.open(path, "rb") as f:
            while True:
                chunk = await f.read(HASH_CHUNK_SIZE)
                if not chunk:
                    break
                digest.update(chunk)
    except OSError as e:
        raise HashError(f"Failed to hash file: {e}", details={"path": str(path)}) from e
    return digest.hexdigest()


def digests_match(actual: str, expected: str) -> bool:
    """Constant-time, case-insensitive comparison of two hex digests."""
    return hmac.compare_digest(actual.lower(), expected.lower())


async def verify_digest(path: Path, expected: str) -> bool:
    """Return True if the file's digest equals expected (case-insensitive)."""
    return digests_match(await sha256_file(path), expected)
