# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Human-friendly error message helpers for DRBackup.

These helpers centralize wording for common configuration errors so that
all modules present consistent, actionable messages.
"""


def explain_missing_passphrase_env() -> str:
    """
    Explain that the encryption passphrase environment variable is missing.
    """

    return (
        "Backup encryption passphrase is not configured. "
        "Set BACKUP_ENCRYPTION_KEY to a secret of at least 32 bytes."
    )


def explain_invalid_integer_env(name: str, value: str | None) -> str:
    """
    Explain that an integer-valued environment variable is invalid.
    """

    return f"Invalid {name} value: {value!r}. It must be a positive integer."


def explain_invalid_number_env(name: str, value: str | None) -> str:
    """
    Explain that a numeric environment variable is invalid.
    """

    return f"Invalid {name} value: {value!r}. It must be a non-negative number."


def explain_invalid_bool_env(name: str, value: str | None) -> str:
    return (
        f"Invalid {name} value: {value!r}. "
        "Expected one of: true, false, 1, 0, yes, no."
    )


def explain_rclone_missing(binary: str) -> str:
    """
    Explain that the rclone binary could not be found.
    """

    return (
        f"{binary} is not installed or not in PATH. "
        "Install rclone or set BACKUP_REMOTE_ENABLED=false."
    )


def explain_rclone_remote_missing(remote_name: str) -> str:
    """
    Explain that the configured remote is not defined in rclone's config.
    """

    return (
        f"rclone remote {remote_name!r} is not configured. "
        f"Run 'rclone config' to create it or fix RCLONE_REMOTE."
    )


def explain_self_test_failed() -> str:
    return (
        "Encryption self-test failed. "
        "The derived key could not round-trip a known value; refusing to start."
    )
