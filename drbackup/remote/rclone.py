# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
DRBackup Remote Store - Mirror artifacts through rclone.

All calls go through the command port, so deadlines and process-group
cleanup are inherited from there. Artifacts are uploaded flat under the
configured remote prefix; retention deletes them by prefix + basename.

Uploads use `rclone copy`, not `sync`: several class subdirectories are
pushed to the same prefix, and a sync of one would delete the others.
"""

import json
import shutil
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List

import structlog

from drbackup.catalog import has_artifact_extension
from drbackup.command import CommandRunner, run_command
from drbackup.config import BackupConfig
from drbackup.errors import explain_rclone_missing, explain_rclone_remote_missing
from drbackup.exceptions import (
    CommandError,
    CommandTimeoutError,
    ConfigurationError,
    MirrorError,
    MirrorTimeoutError,
)

logger = structlog.get_logger()

PUSH_TIMEOUT_SECONDS = 600.0
CHECK_TIMEOUT_SECONDS = 30.0
HEALTH_CACHE_SECONDS = 30 * 60


@dataclass
class SyncResult:
    """Outcome of a push; counters are None when rclone did not report them."""

    success: bool
    duration_seconds: float
    files_uploaded: int | None = None
    bytes_uploaded: int | None = None
    error: str | None = None


def parse_transfer_stats(output: str) -> Dict[str, int]:
    """
    Extract transfer counters from rclone's JSON log output.

    Each line logged with --use-json-log is a JSON object; stats lines carry
    a "stats" object. The last one holds the final totals.

    Returns:
        Dict with "files" and/or "bytes" keys, empty if nothing was reported
    """
    stats: Dict[str, Any] | None = None
    for line in output.splitlines():
        line = line.strip()
        if not line.startswith("{"):
            continue
        try:
            entry = json.loads(line)
        except json.JSONDecodeError:
            continue
        if isinstance(entry, dict) and isinstance(entry.get("stats"), dict):
            stats = entry["stats"]

    if stats is None:
        return {}

    counters: Dict[str, int] = {}
    if isinstance(stats.get("transfers"), int):
        counters["files"] = stats["transfers"]
    if isinstance(stats.get("bytes"), int):
        counters["bytes"] = stats["bytes"]
    return counters


class RcloneRemote:
    """Remote object store backed by an rclone remote."""

    def __init__(self, config: BackupConfig, runner: CommandRunner = run_command):
        self.config = config
        self.runner = runner
        self._healthy: bool | None = None
        self._checked_at: float | None = None

    @property
    def enabled(self) -> bool:
        return self.config.remote_enabled

    def _with_config(self, args: List[str]) -> List[str]:
        if self.config.rclone_config:
            return [*args, "--config", str(self.config.rclone_config)]
        return args

    def object_path(self, name: str) -> str:
        """Full remote path of an object under the configured prefix."""
        prefix = self.config.remote_path
        if not prefix.endswith((":", "/")):
            prefix += "/"
        return prefix + name

    async def _run(self, operation: str, args: List[str], timeout: float) -> str:
        try:
            result = await self.runner(
                self.config.rclone_binary,
                self._with_config(args),
                timeout=timeout,
                output_limit=self.config.command_output_limit,
            )
        except CommandTimeoutError as e:
            raise MirrorTimeoutError(
                f"rclone {operation} timed out", details={"timeout": timeout}
            ) from e
        except CommandError as e:
            raise MirrorError(
                f"rclone {operation} failed: {e.message}",
                details={"exit_code": e.exit_code},
            ) from e
        return result.output

    async def validate(self) -> None:
        """
        Check that rclone is installed and the remote is configured.

        Raises:
            ConfigurationError: If either check fails
        """
        if shutil.which(self.config.rclone_binary) is None:
            raise ConfigurationError(explain_rclone_missing(self.config.rclone_binary))

        try:
            output = await self._run("listremotes", ["listremotes"], CHECK_TIMEOUT_SECONDS)
        except MirrorError as e:
            raise ConfigurationError(
                f"Failed to list rclone remotes: {e.message}"
            ) from e

        remotes = {line.strip() for line in output.splitlines()}
        if f"{self.config.remote_name}:" not in remotes:
            raise ConfigurationError(explain_rclone_remote_missing(self.config.remote_name))

        logger.info("rclone_configuration_validated", remote=self.config.remote_path)

    async def push(self, local_dir: Path) -> SyncResult:
        """
        Upload local_dir to the remote prefix.

        Raises:
            MirrorError: If rclone fails
            MirrorTimeoutError: If the outer deadline expires
        """
        if not self.enabled:
            return SyncResult(success=True, duration_seconds=0.0, files_uploaded=0)

        logger.info("remote_push_started", local=str(local_dir), remote=self.config.remote_path)
        start = time.monotonic()

        output = await self._run(
            "copy",
            [
                "copy",
                str(local_dir),
                self.config.remote_path,
                "--exclude", "*.tmp",
                "--exclude", "*.temp",
                "--retries", "3",
                "--low-level-retries", "10",
                "--timeout", "300s",
                "--use-json-log",
                "--verbose",
            ],
            PUSH_TIMEOUT_SECONDS,
        )

        counters = parse_transfer_stats(output)
        result = SyncResult(
            success=True,
            duration_seconds=time.monotonic() - start,
            files_uploaded=counters.get("files"),
            bytes_uploaded=counters.get("bytes"),
        )
        logger.info(
            "remote_push_completed",
            files=result.files_uploaded,
            bytes=result.bytes_uploaded,
            duration=round(result.duration_seconds, 3),
        )
        return result

    async def pull(self, remote_path: str, local_dir: Path) -> None:
        """Copy a remote object (or directory) into local_dir."""
        if not self.enabled:
            raise MirrorError("Remote sync is not enabled")

        logger.info("remote_pull_started", remote=remote_path, local=str(local_dir))
        await self._run(
            "copy",
            ["copy", remote_path, str(local_dir), "--retries", "3", "--low-level-retries", "10"],
            PUSH_TIMEOUT_SECONDS,
        )

    async def list(self) -> List[str]:
        """Artifact paths under the remote prefix, filtered by extension."""
        if not self.enabled:
            return []

        output = await self._run(
            "lsf",
            ["lsf", self.config.remote_path, "--recursive"],
            self.config.command_timeout_seconds,
        )
        return [
            line.strip()
            for line in output.splitlines()
            if line.strip() and has_artifact_extension(line.strip())
        ]

    async def delete(self, remote_path: str) -> None:
        """Delete a single remote object."""
        if not self.enabled:
            return

        logger.debug("remote_delete", path=remote_path)
        await self._run(
            "deletefile", ["deletefile", remote_path], self.config.command_timeout_seconds
        )

    async def quota(self) -> Dict[str, Any]:
        """Quota information reported by `rclone about --json`."""
        if not self.enabled:
            raise MirrorError("Remote sync is not enabled")

        output = await self._run(
            "about",
            ["about", f"{self.config.remote_name}:", "--json"],
            CHECK_TIMEOUT_SECONDS,
        )
        try:
            parsed = json.loads(output)
        except json.JSONDecodeError:
            return {"raw_output": output}
        return parsed if isinstance(parsed, dict) else {"raw_output": output}

    async def healthy(self, force: bool = False) -> bool:
        """
        Connectivity check, cached for 30 minutes.

        Args:
            force: Ignore the cached result
        """
        if not self.enabled:
            return True

        now = time.monotonic()
        if (
            not force
            and self._checked_at is not None
            and now - self._checked_at < HEALTH_CACHE_SECONDS
        ):
            return bool(self._healthy)

        try:
            await self._run(
                "about", ["about", f"{self.config.remote_name}:"], CHECK_TIMEOUT_SECONDS
            )
            self._healthy = True
        except MirrorError as e:
            logger.warning("rclone_connectivity_failed", error=str(e))
            self._healthy = False

        self._checked_at = now
        return self._healthy
