# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
DRBackup Crypto - Authenticated encryption of artifacts at rest.

Envelope layout (files and byte buffers alike):

    nonce (12 bytes) || ciphertext || GCM tag (16 bytes)

No header, version byte or length prefix. The PBKDF2 salt and iteration
count below are part of the on-disk format; changing either makes every
existing artifact undecryptable.

File operations are synchronous and stream in 1 MiB chunks; async callers
run them in a worker thread.
"""

import os
import secrets
import threading
from pathlib import Path

import structlog
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from drbackup.exceptions import EncryptError, IntegrityError

logger = structlog.get_logger()

KDF_SALT = b"tucentropdf_backup_salt_2025"
KDF_ITERATIONS = 100_000
KEY_SIZE = 32
NONCE_SIZE = 12
TAG_SIZE = 16
CHUNK_SIZE = 1024 * 1024

SELF_TEST_PLAINTEXT = b"drbackup encryption self-test"


def derive_key(passphrase: str) -> bytes:
    """
    Derive the 32-byte data key from the operator passphrase.

    Args:
        passphrase: Master passphrase

    Returns:
        AES-256 key
    """
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_SIZE,
        salt=KDF_SALT,
        iterations=KDF_ITERATIONS,
    )
    return kdf.derive(passphrase.encode("utf-8"))


def encrypt_bytes(key: bytes, plaintext: bytes) -> bytes:
    """Encrypt a buffer into a nonce || ciphertext || tag envelope."""
    nonce = secrets.token_bytes(NONCE_SIZE)
    return nonce + AESGCM(key).encrypt(nonce, plaintext, None)


def decrypt_bytes(key: bytes, envelope: bytes) -> bytes:
    """
    Decrypt a nonce || ciphertext || tag envelope.

    Raises:
        IntegrityError: If the envelope is truncated or fails authentication
    """
    if len(envelope) < NONCE_SIZE + TAG_SIZE:
        raise IntegrityError(
            "Encrypted data is too short to contain nonce and tag",
            details={"size": len(envelope)},
        )
    try:
        return AESGCM(key).decrypt(envelope[:NONCE_SIZE], envelope[NONCE_SIZE:], None)
    except InvalidTag as e:
        raise IntegrityError("Authentication tag check failed") from e


def _open_private(path: Path, exclusive: bool = False):
    """Open path for writing with owner-only permissions."""
    flags = os.O_WRONLY | os.O_CREAT | (os.O_EXCL if exclusive else os.O_TRUNC)
    fd = os.open(path, flags, 0o600)
    os.chmod(path, 0o600)
    return os.fdopen(fd, "wb")


def staging_path(destination: Path) -> Path:
    """Hidden sibling that an envelope is written to before it is renamed."""
    return destination.with_name(f".{destination.name}.{secrets.token_hex(4)}.tmp")


def encrypt_file(
    key: bytes,
    source: Path,
    destination: Path,
    abort: threading.Event | None = None,
) -> None:
    """
    Stream source into an encrypted envelope at destination (mode 0600).

    The envelope is written to a hidden sibling, fsynced and renamed over
    destination, so destination only ever holds a complete envelope.

    Args:
        key: Data key
        source: Plaintext file
        destination: Envelope to write
        abort: When set, encryption stops at the next chunk boundary

    Raises:
        EncryptError: On any I/O failure or abort; partial output is removed
    """
    nonce = secrets.token_bytes(NONCE_SIZE)
    encryptor = Cipher(algorithms.AES(key), modes.GCM(nonce)).encryptor()
    staged = staging_path(destination)
    try:
        with open(source, "rb") as input_handle, _open_private(staged, exclusive=True) as output_handle:
            output_handle.write(nonce)
            for chunk in iter(lambda: input_handle.read(CHUNK_SIZE), b""):
                if abort is not None and abort.is_set():
                    raise EncryptError(
                        "Encryption aborted", details={"source": str(source)}
                    )
                output_handle.write(encryptor.update(chunk))
            output_handle.write(encryptor.finalize())
            output_handle.write(encryptor.tag)
            output_handle.flush()
            os.fsync(output_handle.fileno())
        if abort is not None and abort.is_set():
            raise EncryptError("Encryption aborted", details={"source": str(source)})
        os.replace(staged, destination)
    except EncryptError:
        staged.unlink(missing_ok=True)
        raise
    except OSError as e:
        staged.unlink(missing_ok=True)
        raise EncryptError(
            f"Failed to encrypt file: {e}",
            details={"source": str(source), "destination": str(destination)},
        ) from e


def _decrypt_stream(key: bytes, source: Path, output_handle) -> None:
    total_size = source.stat().st_size
    if total_size < NONCE_SIZE + TAG_SIZE:
        raise IntegrityError(
            "Encrypted artifact is too small to contain nonce and tag",
            details={"path": str(source), "size": total_size},
        )

    with open(source, "rb") as input_handle:
        nonce = input_handle.read(NONCE_SIZE)
        input_handle.seek(total_size - TAG_SIZE)
        tag = input_handle.read(TAG_SIZE)
        input_handle.seek(NONCE_SIZE)

        decryptor = Cipher(algorithms.AES(key), modes.GCM(nonce, tag)).decryptor()
        remaining = total_size - NONCE_SIZE - TAG_SIZE
        while remaining > 0:
            chunk = input_handle.read(min(CHUNK_SIZE, remaining))
            if not chunk:
                break
            remaining -= len(chunk)
            plaintext = decryptor.update(chunk)
            if output_handle is not None:
                output_handle.write(plaintext)
        try:
            tail = decryptor.finalize()
        except InvalidTag as e:
            raise IntegrityError(
                "Authentication tag check failed", details={"path": str(source)}
            ) from e
        if output_handle is not None:
            output_handle.write(tail)


def decrypt_file(key: bytes, source: Path, destination: Path) -> None:
    """
    Decrypt an envelope at source into destination (mode 0600).

    Plaintext is only trustworthy once the tag verifies at the end of the
    stream, so destination is removed on any failure.

    Raises:
        IntegrityError: If the envelope is truncated or fails authentication
        EncryptError: On I/O failure
    """
    try:
        with _open_private(destination) as output_handle:
            _decrypt_stream(key, source, output_handle)
    except IntegrityError:
        destination.unlink(missing_ok=True)
        raise
    except OSError as e:
        destination.unlink(missing_ok=True)
        raise EncryptError(
            f"Failed to decrypt file: {e}",
            details={"source": str(source), "destination": str(destination)},
        ) from e


def verify_file(key: bytes, source: Path) -> None:
    """
    Authenticate an envelope without writing plaintext anywhere.

    Raises:
        IntegrityError: If the envelope is truncated or fails authentication
    """
    try:
        _decrypt_stream(key, source, None)
    except OSError as e:
        raise IntegrityError(
            f"Failed to read encrypted artifact: {e}", details={"path": str(source)}
        ) from e


def self_test(key: bytes) -> None:
    """
    Round-trip a fixed value through the byte envelope.

    Raises:
        EncryptError: If the round trip does not reproduce the input
    """
    try:
        recovered = decrypt_bytes(key, encrypt_bytes(key, SELF_TEST_PLAINTEXT))
    except IntegrityError as e:
        raise EncryptError("Encryption self-test failed") from e
    if recovered != SELF_TEST_PLAINTEXT:
        raise EncryptError("Encryption self-test failed: round-trip mismatch")
    logger.debug("crypto_self_test_passed")
