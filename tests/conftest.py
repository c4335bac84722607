# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Test fixtures for DRBackup tests.

Provides a temporary artifact root, test configuration, in-memory doubles
for producers, the remote store and the alert sink, and an initialized
runtime state.
"""

import os
import tempfile
import time
from pathlib import Path
from typing import Any, Dict, Generator, List

import pytest
import pytest_asyncio

from drbackup.alerts import Alert
from drbackup.command import CommandResult
from drbackup.config import BackupClass, BackupConfig
from drbackup.exceptions import MirrorError, ProducerError
from drbackup.remote.rclone import SyncResult

TEST_PASSPHRASE = "0123456789abcdef0123456789abcdef"
PRODUCED_CONTENT = bytes(range(128))


class RecordingAlertSink:
    """Alert sink that keeps every alert it receives."""

    def __init__(self):
        self.alerts: List[Alert] = []

    async def send(self, alert: Alert) -> None:
        self.alerts.append(alert)

    def types(self) -> List[str]:
        return [alert.type for alert in self.alerts]


class FakeRemote:
    """
    In-memory remote store.

    Objects are keyed by basename, mirroring the flat layout produced by
    pushing class directories onto one remote prefix.
    """

    def __init__(self, enabled: bool = False, prefix: str = "fake:backups/"):
        self.enabled = enabled
        self.prefix = prefix
        self.objects: Dict[str, bytes] = {}
        self.pushes: List[Path] = []
        self.deleted: List[str] = []
        self.fail_push = False
        self.is_healthy = True

    def object_path(self, name: str) -> str:
        return self.prefix + name

    async def validate(self) -> None:
        return None

    async def push(self, local_dir: Path) -> SyncResult:
        if self.fail_push:
            raise MirrorError("rclone copy failed: remote unavailable")
        self.pushes.append(local_dir)
        uploaded = 0
        for path in local_dir.iterdir():
            if path.is_file() and not path.name.endswith((".tmp", ".temp")):
                self.objects[path.name] = path.read_bytes()
                uploaded += 1
        return SyncResult(success=True, duration_seconds=0.0, files_uploaded=uploaded)

    async def pull(self, remote_path: str, local_dir: Path) -> None:
        name = remote_path[len(self.prefix):]
        if name not in self.objects:
            raise MirrorError(f"object not found: {remote_path}")
        local_dir.mkdir(parents=True, exist_ok=True)
        (local_dir / name).write_bytes(self.objects[name])

    async def list(self) -> List[str]:
        return sorted(self.objects)

    async def delete(self, remote_path: str) -> None:
        name = remote_path[len(self.prefix):]
        self.objects.pop(name, None)
        self.deleted.append(name)

    async def quota(self) -> Dict[str, Any]:
        return {"total": 1024, "used": len(self.objects)}

    async def healthy(self, force: bool = False) -> bool:
        return self.is_healthy


class RecordingRunner:
    """Command runner double: records calls and replays scripted outcomes."""

    def __init__(self, output: str = "", error: Exception | None = None, create: bool = True):
        self.output = output
        self.error = error
        self.create = create
        self.calls: List[Dict[str, Any]] = []

    async def __call__(self, executable, args, *, env=None, cwd=None, timeout=None, output_limit=0):
        self.calls.append(
            {"executable": executable, "args": list(args), "env": env, "timeout": timeout}
        )
        if self.error is not None:
            raise self.error
        if self.create:
            for arg in args:
                if arg.startswith("--file="):
                    Path(arg[len("--file="):]).write_bytes(b"-- dump\n")
            if executable == "tar" and args and args[0] == "czf":
                Path(args[1]).write_bytes(b"\x1f\x8b archive")
        return CommandResult(output=self.output, exit_code=0, duration_seconds=0.01)


def make_producer(content: bytes = PRODUCED_CONTENT):
    """Producer that writes fixed content to its output path."""

    async def producer(config: BackupConfig, output_path: Path) -> None:
        output_path.write_bytes(content)

    return producer


def make_failing_producer(message: str = "pg_dump failed: connection refused"):
    """Producer that writes a partial file and then fails."""

    async def producer(config: BackupConfig, output_path: Path) -> None:
        output_path.write_bytes(b"partial")
        raise ProducerError(message)

    return producer


def set_age(path: Path, days: float) -> None:
    """Backdate a file's mtime by the given number of days."""
    stamp = time.time() - days * 24 * 60 * 60
    os.utime(path, (stamp, stamp))


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def test_config(temp_dir: Path) -> BackupConfig:
    """Create a test configuration rooted in the temporary directory."""
    config_source = temp_dir / "etc"
    config_source.mkdir()
    (config_source / "app.conf").write_text("listen = 8080\n")

    return BackupConfig(
        passphrase=TEST_PASSPHRASE,
        backup_dir=temp_dir / "backups",
        min_free_disk_gb=0.0,
        config_paths=(str(config_source),),
        redis_snapshot_wait_seconds=0.0,
    )


@pytest.fixture
def alert_sink() -> RecordingAlertSink:
    return RecordingAlertSink()


@pytest.fixture
def fake_remote() -> FakeRemote:
    return FakeRemote()


@pytest.fixture
def fake_producers():
    """Every class bound to a producer writing 128 known bytes."""
    return {backup_class: make_producer() for backup_class in BackupClass}


@pytest_asyncio.fixture
async def backup_state(test_config, fake_remote, fake_producers, alert_sink):
    """Create initialized backup state for testing."""
    from drbackup.core import initialize_backup_state

    state = await initialize_backup_state(
        test_config,
        remote=fake_remote,
        producers=fake_producers,
        alert_sink=alert_sink,
    )
    yield state


@pytest_asyncio.fixture
async def mirrored_setup(test_config, fake_producers, alert_sink):
    """Configuration and state with remote mirroring enabled."""
    from drbackup.core import initialize_backup_state

    config = test_config.with_updates(remote_enabled=True, remote_path="fake:backups/")
    remote = FakeRemote(enabled=True)
    state = await initialize_backup_state(
        config,
        remote=remote,
        producers=fake_producers,
        alert_sink=alert_sink,
    )
    yield config, state, remote
