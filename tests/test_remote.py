# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Tests for the rclone remote store, using a recording command runner in
place of the rclone binary.
"""

import json
from pathlib import Path

import pytest

from drbackup.config import BackupConfig
from drbackup.exceptions import (
    CommandError,
    CommandTimeoutError,
    ConfigurationError,
    MirrorError,
    MirrorTimeoutError,
)
from drbackup.remote import RcloneRemote, parse_transfer_stats

from conftest import TEST_PASSPHRASE, RecordingRunner


@pytest.fixture
def remote_config(temp_dir: Path) -> BackupConfig:
    return BackupConfig(
        passphrase=TEST_PASSPHRASE,
        backup_dir=temp_dir / "backups",
        remote_enabled=True,
        remote_path="gdrive:/backups/",
        rclone_config=temp_dir / "rclone.conf",
    )


# ============================================================================
# Remote store
# ============================================================================


def test_parse_transfer_stats_uses_last_stats_line():
    output = "\n".join(
        [
            json.dumps({"level": "info", "msg": "Copied (new)", "object": "a.enc"}),
            json.dumps({"level": "info", "stats": {"transfers": 1, "bytes": 100}}),
            "not json",
            json.dumps({"level": "info", "stats": {"transfers": 2, "bytes": 312}}),
        ]
    )
    assert parse_transfer_stats(output) == {"files": 2, "bytes": 312}
    assert parse_transfer_stats("plain text output") == {}


@pytest.mark.asyncio
async def test_push_invokes_copy_with_flags(remote_config: BackupConfig, temp_dir: Path):
    runner = RecordingRunner(output=json.dumps({"stats": {"transfers": 3, "bytes": 4096}}))
    remote = RcloneRemote(remote_config, runner=runner)

    result = await remote.push(temp_dir / "backups" / "postgresql")

    call = runner.calls[0]
    assert call["executable"] == "rclone"
    assert call["args"][:3] == ["copy", str(temp_dir / "backups" / "postgresql"), "gdrive:/backups/"]
    for flag in ("--retries", "--low-level-retries", "--timeout", "--use-json-log"):
        assert flag in call["args"]
    assert call["args"].count("--exclude") == 2
    assert call["args"][-2:] == ["--config", str(temp_dir / "rclone.conf")]
    assert call["timeout"] == 600
    assert result.success is True
    assert result.files_uploaded == 3
    assert result.bytes_uploaded == 4096


@pytest.mark.asyncio
async def test_push_without_stats_reports_unknown_counters(remote_config: BackupConfig, temp_dir: Path):
    remote = RcloneRemote(remote_config, runner=RecordingRunner(output="done"))
    result = await remote.push(temp_dir)
    assert result.files_uploaded is None
    assert result.bytes_uploaded is None


@pytest.mark.asyncio
async def test_push_disabled_is_a_no_op(temp_dir: Path):
    config = BackupConfig(passphrase=TEST_PASSPHRASE, backup_dir=temp_dir)
    runner = RecordingRunner()
    result = await RcloneRemote(config, runner=runner).push(temp_dir)
    assert result.success is True
    assert runner.calls == []


@pytest.mark.asyncio
async def test_push_errors_become_mirror_errors(remote_config: BackupConfig, temp_dir: Path):
    failing = RcloneRemote(
        remote_config, runner=RecordingRunner(error=CommandError("rclone exited with code 1", exit_code=1))
    )
    with pytest.raises(MirrorError):
        await failing.push(temp_dir)

    slow = RcloneRemote(
        remote_config, runner=RecordingRunner(error=CommandTimeoutError("rclone timed out"))
    )
    with pytest.raises(MirrorTimeoutError):
        await slow.push(temp_dir)


@pytest.mark.asyncio
async def test_list_filters_artifact_extensions(remote_config: BackupConfig):
    output = "postgresql_full_20250115_020000.sql.enc\nnotes.txt\nredis_snapshot_20250115_020000.rdb.enc\n\n"
    remote = RcloneRemote(remote_config, runner=RecordingRunner(output=output))

    names = await remote.list()

    assert names == [
        "postgresql_full_20250115_020000.sql.enc",
        "redis_snapshot_20250115_020000.rdb.enc",
    ]


@pytest.mark.asyncio
async def test_delete_and_pull_use_object_paths(remote_config: BackupConfig, temp_dir: Path):
    runner = RecordingRunner()
    remote = RcloneRemote(remote_config, runner=runner)

    await remote.delete(remote.object_path("a.sql.enc"))
    await remote.pull(remote.object_path("a.sql.enc"), temp_dir)

    assert runner.calls[0]["args"][:2] == ["deletefile", "gdrive:/backups/a.sql.enc"]
    assert runner.calls[1]["args"][:3] == ["copy", "gdrive:/backups/a.sql.enc", str(temp_dir)]


@pytest.mark.asyncio
async def test_quota_parses_json(remote_config: BackupConfig):
    remote = RcloneRemote(remote_config, runner=RecordingRunner(output='{"total": 100, "used": 40}'))
    assert await remote.quota() == {"total": 100, "used": 40}

    raw = RcloneRemote(remote_config, runner=RecordingRunner(output="Total: 100"))
    assert await raw.quota() == {"raw_output": "Total: 100"}


@pytest.mark.asyncio
async def test_health_check_is_cached(remote_config: BackupConfig):
    runner = RecordingRunner()
    remote = RcloneRemote(remote_config, runner=runner)

    assert await remote.healthy() is True
    assert await remote.healthy() is True
    assert len(runner.calls) == 1

    runner.error = CommandError("about failed", exit_code=1)
    assert await remote.healthy(force=True) is False


@pytest.mark.asyncio
async def test_validate_requires_binary(remote_config: BackupConfig):
    config = remote_config.with_updates(rclone_binary="definitely-not-rclone-xyz")
    with pytest.raises(ConfigurationError, match="not installed"):
        await RcloneRemote(config, runner=RecordingRunner()).validate()
