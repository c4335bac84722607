# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
DRBackup Command Port - Run external programs with a deadline.

Every producer and remote-store call goes through run_command(). Children
get /dev/null on stdin and their own session, so they can neither block on
a terminal nor outlive a cancelled run: on deadline or cancellation the
whole process group is killed and reaped before control returns.
"""

import asyncio
import os
import signal
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Mapping, Protocol, Sequence

import structlog

from drbackup.exceptions import CommandError, CommandTimeoutError

logger = structlog.get_logger()

DEFAULT_OUTPUT_LIMIT = 32 * 1024 * 1024
ERROR_OUTPUT_PREFIX = 512
TRUNCATION_MARKER = "\n[output truncated]"
READ_CHUNK = 64 * 1024


@dataclass
class CommandResult:
    """Outcome of a command that exited 0."""

    output: str
    exit_code: int
    duration_seconds: float
    truncated: bool = False


class CommandRunner(Protocol):
    """Signature shared by run_command and test doubles."""

    def __call__(
        self,
        executable: str,
        args: Sequence[str],
        *,
        env: Mapping[str, str] | None = None,
        cwd: Path | None = None,
        timeout: float | None = None,
        output_limit: int = DEFAULT_OUTPUT_LIMIT,
    ) -> Awaitable[CommandResult]: ...


async def _kill_process_group(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is None:
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
    await proc.wait()


async def run_command(
    executable: str,
    args: Sequence[str],
    *,
    env: Mapping[str, str] | None = None,
    cwd: Path | None = None,
    timeout: float | None = None,
    output_limit: int = DEFAULT_OUTPUT_LIMIT,
) -> CommandResult:
    """
    Run executable with args, capturing merged stdout and stderr.

    Args:
        executable: Program name (resolved on PATH) or path
        args: Argument vector, excluding the program name
        env: Variables added to the inherited environment
        cwd: Working directory
        timeout: Seconds before the process group is killed
        output_limit: Bytes of output kept; the rest is drained and dropped

    Returns:
        CommandResult for a zero exit status

    Raises:
        CommandTimeoutError: If the deadline expires
        CommandError: On spawn failure or non-zero exit
    """
    full_env = {**os.environ, **env} if env else None
    start = time.monotonic()

    try:
        proc = await asyncio.create_subprocess_exec(
            executable,
            *args,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
            env=full_env,
            cwd=cwd,
            start_new_session=True,
        )
    except OSError as e:
        raise CommandError(
            f"Failed to start {executable}: {e}",
            details={"executable": executable},
        ) from e

    buffer = bytearray()
    truncated = False

    async def _collect() -> int:
        nonlocal truncated
        assert proc.stdout is not None
        while True:
            chunk = await proc.stdout.read(READ_CHUNK)
            if not chunk:
                break
            room = output_limit - len(buffer)
            if room > 0:
                buffer.extend(chunk[:room])
            if len(chunk) > room:
                truncated = True
        return await proc.wait()

    try:
        async with asyncio.timeout(timeout):
            exit_code = await _collect()
    except TimeoutError:
        await _kill_process_group(proc)
        logger.warning("command_timed_out", executable=executable, timeout=timeout)
        raise CommandTimeoutError(
            f"{executable} timed out after {timeout}s",
            details={"executable": executable, "timeout": timeout},
            output=bytes(buffer[:ERROR_OUTPUT_PREFIX]).decode("utf-8", errors="replace"),
        )
    except asyncio.CancelledError:
        await _kill_process_group(proc)
        logger.warning("command_cancelled", executable=executable)
        raise

    output = buffer.decode("utf-8", errors="replace")
    if truncated:
        output += TRUNCATION_MARKER
    duration = time.monotonic() - start

    if exit_code != 0:
        head = output[:ERROR_OUTPUT_PREFIX].strip()
        raise CommandError(
            f"{executable} exited with code {exit_code}: {head}",
            details={"executable": executable, "exit_code": exit_code},
            exit_code=exit_code,
            output=output,
        )

    logger.debug(
        "command_completed",
        executable=executable,
        duration=round(duration, 3),
        output_bytes=len(buffer),
    )
    return CommandResult(
        output=output,
        exit_code=exit_code,
        duration_seconds=duration,
        truncated=truncated,
    )
