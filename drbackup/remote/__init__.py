# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Remote Store - Off-host mirror of encrypted artifacts.
"""

from pathlib import Path
from typing import Any, Dict, List, Protocol

from drbackup.remote.rclone import (
    RcloneRemote,
    SyncResult,
    parse_transfer_stats,
)


class RemoteStore(Protocol):
    """Operations the pipeline, retention engine and restore rely on."""

    enabled: bool

    def object_path(self, name: str) -> str: ...

    async def validate(self) -> None: ...

    async def push(self, local_dir: Path) -> SyncResult: ...

    async def pull(self, remote_path: str, local_dir: Path) -> None: ...

    async def list(self) -> List[str]: ...

    async def delete(self, remote_path: str) -> None: ...

    async def quota(self) -> Dict[str, Any]: ...

    async def healthy(self, force: bool = False) -> bool: ...


__all__ = [
    "RemoteStore",
    "RcloneRemote",
    "SyncResult",
    "parse_transfer_stats",
]
