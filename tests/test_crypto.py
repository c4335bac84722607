# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Tests for the encryption envelope and the file hasher.
"""

import hashlib
import os
import stat
import threading
from pathlib import Path

import pytest

from drbackup.backup.hasher import digests_match, sha256_file, verify_digest
from drbackup.crypto import (
    CHUNK_SIZE,
    NONCE_SIZE,
    TAG_SIZE,
    decrypt_bytes,
    decrypt_file,
    derive_key,
    encrypt_bytes,
    encrypt_file,
    self_test,
    staging_path,
    verify_file,
)
from drbackup.exceptions import EncryptError, HashError, IntegrityError

from conftest import TEST_PASSPHRASE


@pytest.fixture(scope="module")
def key() -> bytes:
    return derive_key(TEST_PASSPHRASE)


# ============================================================================
# Key derivation
# ============================================================================


def test_derive_key_is_deterministic(key: bytes):
    """The same passphrase always yields the same 32-byte key."""
    assert len(key) == 32
    assert derive_key(TEST_PASSPHRASE) == key


def test_derive_key_differs_per_passphrase(key: bytes):
    assert derive_key(TEST_PASSPHRASE[::-1]) != key


def test_self_test_passes(key: bytes):
    self_test(key)


# ============================================================================
# Byte envelopes
# ============================================================================


def test_envelope_adds_nonce_and_tag(key: bytes):
    """Envelope length is plaintext length plus 28 bytes of overhead."""
    envelope = encrypt_bytes(key, b"hello backup")
    assert len(envelope) == len(b"hello backup") + NONCE_SIZE + TAG_SIZE
    assert decrypt_bytes(key, envelope) == b"hello backup"


def test_fresh_nonce_per_encryption(key: bytes):
    first = encrypt_bytes(key, b"same input")
    second = encrypt_bytes(key, b"same input")
    assert first[:NONCE_SIZE] != second[:NONCE_SIZE]
    assert first != second


def test_tampered_envelope_fails_authentication(key: bytes):
    envelope = bytearray(encrypt_bytes(key, b"payload"))
    envelope[NONCE_SIZE] ^= 0x01
    with pytest.raises(IntegrityError):
        decrypt_bytes(key, bytes(envelope))


def test_short_envelope_is_rejected(key: bytes):
    with pytest.raises(IntegrityError):
        decrypt_bytes(key, b"\x00" * (NONCE_SIZE + TAG_SIZE - 1))


# ============================================================================
# File envelopes
# ============================================================================


def test_file_round_trip_across_chunks(key: bytes, temp_dir: Path):
    """Files larger than one streaming chunk decrypt to identical bytes."""
    plaintext = os.urandom(CHUNK_SIZE * 2 + 12345)
    source = temp_dir / "dump.sql"
    source.write_bytes(plaintext)
    encrypted = temp_dir / "dump.sql.enc"
    restored = temp_dir / "restored.sql"

    encrypt_file(key, source, encrypted)
    decrypt_file(key, encrypted, restored)

    assert encrypted.stat().st_size == len(plaintext) + NONCE_SIZE + TAG_SIZE
    assert restored.read_bytes() == plaintext


def test_encrypted_file_is_owner_only(key: bytes, temp_dir: Path):
    source = temp_dir / "dump.sql"
    source.write_bytes(b"secret rows")
    encrypted = temp_dir / "dump.sql.enc"

    encrypt_file(key, source, encrypted)

    assert stat.S_IMODE(encrypted.stat().st_mode) == 0o600


def test_empty_file_round_trip(key: bytes, temp_dir: Path):
    source = temp_dir / "empty.sql"
    source.write_bytes(b"")
    encrypted = temp_dir / "empty.sql.enc"
    restored = temp_dir / "empty.out"

    encrypt_file(key, source, encrypted)
    verify_file(key, encrypted)
    decrypt_file(key, encrypted, restored)

    assert encrypted.stat().st_size == NONCE_SIZE + TAG_SIZE
    assert restored.read_bytes() == b""


def test_decrypt_with_wrong_key_leaves_no_output(key: bytes, temp_dir: Path):
    """Unauthenticated plaintext is removed when the tag check fails."""
    source = temp_dir / "dump.sql"
    source.write_bytes(b"rows" * 1000)
    encrypted = temp_dir / "dump.sql.enc"
    restored = temp_dir / "restored.sql"
    encrypt_file(key, source, encrypted)

    with pytest.raises(IntegrityError):
        decrypt_file(derive_key("another passphrase of at least 32 bytes"), encrypted, restored)

    assert not restored.exists()


def test_verify_detects_single_flipped_byte(key: bytes, temp_dir: Path):
    source = temp_dir / "dump.sql"
    source.write_bytes(b"rows" * 1000)
    encrypted = temp_dir / "dump.sql.enc"
    encrypt_file(key, source, encrypted)
    verify_file(key, encrypted)

    data = bytearray(encrypted.read_bytes())
    data[len(data) // 2] ^= 0xFF
    encrypted.write_bytes(bytes(data))

    with pytest.raises(IntegrityError):
        verify_file(key, encrypted)


def test_verify_rejects_truncated_file(key: bytes, temp_dir: Path):
    truncated = temp_dir / "short.enc"
    truncated.write_bytes(b"\x00" * 10)
    with pytest.raises(IntegrityError):
        verify_file(key, truncated)


def test_aborted_encryption_removes_partial_output(key: bytes, temp_dir: Path):
    source = temp_dir / "dump.sql"
    source.write_bytes(b"x" * 1024)
    encrypted = temp_dir / "dump.sql.enc"
    abort = threading.Event()
    abort.set()

    with pytest.raises(EncryptError):
        encrypt_file(key, source, encrypted, abort)

    assert not encrypted.exists()


def test_encryption_leaves_no_staging_file(key: bytes, temp_dir: Path):
    source = temp_dir / "dump.sql"
    source.write_bytes(b"x" * 1024)

    encrypt_file(key, source, temp_dir / "dump.sql.enc")

    assert sorted(p.name for p in temp_dir.iterdir()) == ["dump.sql", "dump.sql.enc"]


def test_aborted_encryption_keeps_existing_destination(key: bytes, temp_dir: Path):
    """The destination only ever changes by a rename of a complete envelope."""
    source = temp_dir / "dump.sql"
    source.write_bytes(b"x" * 1024)
    encrypted = temp_dir / "dump.sql.enc"
    encrypted.write_bytes(b"earlier envelope")
    abort = threading.Event()
    abort.set()

    with pytest.raises(EncryptError):
        encrypt_file(key, source, encrypted, abort)

    assert encrypted.read_bytes() == b"earlier envelope"
    assert sorted(p.name for p in temp_dir.iterdir()) == ["dump.sql", "dump.sql.enc"]


def test_staging_path_is_hidden_sibling(temp_dir: Path):
    staged = staging_path(temp_dir / "dump.sql.enc")
    assert staged.parent == temp_dir
    assert staged.name.startswith(".dump.sql.enc.")
    assert staged.name.endswith(".tmp")


def test_missing_source_raises_encrypt_error(key: bytes, temp_dir: Path):
    with pytest.raises(EncryptError):
        encrypt_file(key, temp_dir / "missing.sql", temp_dir / "missing.sql.enc")
    assert not (temp_dir / "missing.sql.enc").exists()


# ============================================================================
# Hasher
# ============================================================================


@pytest.mark.asyncio
async def test_sha256_matches_hashlib(temp_dir: Path):
    data = os.urandom(3 * 1024 * 1024 + 7)
    path = temp_dir / "artifact.enc"
    path.write_bytes(data)

    digest = await sha256_file(path)

    assert digest == hashlib.sha256(data).hexdigest()
    assert len(digest) == 64
    assert await verify_digest(path, digest.upper())


@pytest.mark.asyncio
async def test_sha256_missing_file_raises(temp_dir: Path):
    with pytest.raises(HashError):
        await sha256_file(temp_dir / "missing.enc")


def test_digests_match_ignores_case():
    digest = hashlib.sha256(b"artifact").hexdigest()
    assert digests_match(digest, digest.upper())
    assert not digests_match(digest, hashlib.sha256(b"other").hexdigest())
