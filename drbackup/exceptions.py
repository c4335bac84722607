# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
DRBackup Exceptions - Custom exceptions for the drbackup package.

Timeout variants inherit from both BackupTimeoutError and the error of the
layer that timed out, so callers can catch either concern.
"""


class BackupSystemError(Exception):
    """Base exception for all drbackup errors."""

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigurationError(BackupSystemError):
    """Raised when configuration is invalid or startup validation fails."""

    pass


class BackupTimeoutError(BackupSystemError):
    """Marker base for every deadline expiry."""

    pass


class CommandError(BackupSystemError):
    """Raised when an external program exits non-zero or cannot be spawned."""

    def __init__(
        self,
        message: str,
        details: dict | None = None,
        exit_code: int | None = None,
        output: str = "",
    ):
        super().__init__(message, details)
        self.exit_code = exit_code
        self.output = output


class CommandTimeoutError(CommandError, BackupTimeoutError):
    """Raised when an external program exceeds its deadline."""

    pass


class ProducerError(BackupSystemError):
    """Raised when a producer fails to leave an artifact on disk."""

    pass


class ProducerTimeoutError(ProducerError, BackupTimeoutError):
    """Raised when a producer's program exceeds its deadline."""

    pass


class EncryptError(BackupSystemError):
    """Raised when the encryption envelope cannot be written."""

    pass


class IntegrityError(BackupSystemError):
    """Raised when an envelope is truncated or fails authentication."""

    pass


class HashError(BackupSystemError):
    """Raised when an artifact cannot be read for hashing."""

    pass


class LedgerError(BackupSystemError):
    """Raised when ledger operations fail."""

    pass


class MirrorError(BackupSystemError):
    """Raised when remote store operations fail."""

    pass


class MirrorTimeoutError(MirrorError, BackupTimeoutError):
    """Raised when a remote store call exceeds its deadline."""

    pass


class RetentionError(BackupSystemError):
    """Raised when a single retention candidate cannot be processed."""

    pass


class RestoreError(BackupSystemError):
    """Raised when restore operations fail."""

    pass


class RunTimeoutError(BackupTimeoutError):
    """Raised when a run exceeds its outer deadline."""

    pass


class RunInProgressError(BackupSystemError):
    """Raised when a run is requested for a class that is already running."""

    pass
