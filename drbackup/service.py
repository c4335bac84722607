# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
DRBackup Service - Library-level facade over the functional core.

Usage:
    config = create_config_from_env()
    service = await BackupService.create(config)
    await service.start()
    ...
    record = await service.run_full()
    await service.stop()

Every method delegates to a module-level function taking (config, state);
the facade only owns the pair.
"""

from pathlib import Path
from typing import Any, Dict, List

import structlog

from drbackup.config import BackupClass, BackupConfig
from drbackup.core import (
    BackupState,
    BackupStatus,
    get_status,
    initialize_backup_state,
    start_backup_service,
    stop_backup_service,
)

logger = structlog.get_logger()


class BackupService:
    """Holds configuration and runtime state for one backup subsystem."""

    def __init__(self, config: BackupConfig, state: BackupState):
        self.config = config
        self.state = state

    @classmethod
    async def create(cls, config: BackupConfig, **kwargs: Any) -> "BackupService":
        """
        Initialize state and return a ready (not yet scheduled) service.

        Keyword arguments are passed to initialize_backup_state.

        Raises:
            ConfigurationError: If startup validation or the self-test fails
        """
        state = await initialize_backup_state(config, **kwargs)
        return cls(config, state)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self, run_immediately: bool = True) -> None:
        """Start the cadences on the running event loop."""
        await start_backup_service(self.config, self.state, run_immediately=run_immediately)

    async def stop(self) -> None:
        """Stop the cadences and cancel every in-flight run."""
        await stop_backup_service(self.state)

    # ------------------------------------------------------------------
    # Manual runs
    # ------------------------------------------------------------------

    async def run(self, backup_class: BackupClass | str):
        from drbackup.backup.pipeline import run_backup

        return await run_backup(self.config, self.state, backup_class)

    async def run_full(self):
        return await self.run(BackupClass.DB_FULL)

    async def run_incremental(self):
        return await self.run(BackupClass.DB_INCREMENTAL)

    async def run_cache(self):
        return await self.run(BackupClass.CACHE_SNAPSHOT)

    async def run_config(self):
        return await self.run(BackupClass.CONFIG_ARCHIVE)

    async def run_analytics(self):
        return await self.run(BackupClass.ANALYTICS_ARCHIVE)

    async def run_cleanup(self):
        """Run a retention sweep now."""
        from drbackup.retention import run_retention_sweep

        return await run_retention_sweep(self.config, self.state)

    # ------------------------------------------------------------------
    # Restore, verify, inventory
    # ------------------------------------------------------------------

    async def restore(
        self,
        backup_class: BackupClass | str,
        basename: str,
        target_path: str | Path | None = None,
    ):
        from drbackup.backup.restore import restore_artifact

        target = Path(target_path) if target_path is not None else None
        return await restore_artifact(self.config, self.state, backup_class, basename, target)

    async def verify(self, backup_class: BackupClass | str, basename: str):
        from drbackup.backup.restore import verify_artifact

        return await verify_artifact(self.config, self.state, backup_class, basename)

    async def list(self, include_digests: bool = True):
        from drbackup.backup.restore import list_artifacts

        return await list_artifacts(self.config, self.state, include_digests)

    async def status(self) -> BackupStatus:
        return await get_status(self.config, self.state)

    def retention_report(self):
        from drbackup.retention import build_retention_report

        return build_retention_report(self.config)

    def archive(self, backup_class: BackupClass | str, basename: str) -> Path:
        """Move an artifact out of retention's reach."""
        from drbackup.retention import archive_artifact

        return archive_artifact(self.config, backup_class, basename)

    async def history(self, backup_class: BackupClass | str | None = None, limit: int = 50):
        """Most recent ledger rows, newest first."""
        tag = BackupClass.parse(backup_class).value if backup_class is not None else None
        return await self.state["ledger"].list(tag, limit=limit)

    # ------------------------------------------------------------------
    # Remote store
    # ------------------------------------------------------------------

    async def push(self, local_dir: str | Path):
        return await self.state["remote"].push(Path(local_dir))

    async def remote_list(self) -> List[str]:
        return await self.state["remote"].list()

    async def remote_quota(self) -> Dict[str, Any]:
        return await self.state["remote"].quota()
