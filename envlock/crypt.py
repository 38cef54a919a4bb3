"""Envelope encryption/decryption using AES-256-GCM.

This module turns plaintext configuration into a self-describing encrypted
string (an "envelope") and back.

Wire format (versioned, produced by :func:`encrypt`)::

    v1|<unix_ms_timestamp>|<sha256_hex_of_payload>|<iv_hex>:<tag_hex>:<ciphertext_hex>

Legacy format (accepted by :func:`decrypt` only)::

    <iv_hex>:<tag_hex>:<ciphertext_hex>

Security notes:
- Uses authenticated encryption (AES-256-GCM, 96-bit nonce, 128-bit tag)
- Random 12-byte IV for every encryption
- Every decryption failure raises the same DecryptionError message
- Failed attempts are counted per hashed key and throttled (see ratelimit)
- Key buffers are zeroed after use on a best-effort basis only
"""

from __future__ import annotations

import hashlib
import hmac
import os
import re
import secrets
import time
from dataclasses import dataclass
from typing import Final, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from envlock.exceptions import (
    DecryptionError,
    EncryptionError,
    InputTooLargeError,
    InvalidInputError,
    InvalidKeyError,
    RateLimitedError,
)
from envlock.ratelimit import AttemptTracker

# AES-256 key size in bytes
KEY_SIZE: Final[int] = 32

# GCM nonce and authentication tag sizes in bytes
IV_SIZE: Final[int] = 12
TAG_SIZE: Final[int] = 16

# Plaintext ceiling; envelopes may be twice as large because of hex encoding
MAX_INPUT_SIZE: Final[int] = 10 * 1024 * 1024
MAX_ENVELOPE_SIZE: Final[int] = MAX_INPUT_SIZE * 2

# Envelope format version marker
ENVELOPE_VERSION: Final[str] = "v1"
_VERSION_PREFIX: Final[str] = f"{ENVELOPE_VERSION}|"

# The only message any decryption-path failure may carry
DECRYPTION_FAILED_MESSAGE: Final[str] = "Decryption failed: Invalid or corrupted data"

_KEY_RE = re.compile(r"[0-9a-fA-F]{64}")
_HEX_RE = re.compile(r"(?:[0-9a-fA-F]{2})*")
_TIMESTAMP_RE = re.compile(r"[0-9]+")

_default_tracker = AttemptTracker()


@dataclass(frozen=True)
class VersionedEnvelope:
    """Envelope carrying version, timestamp and payload checksum."""

    timestamp: int
    checksum: str
    payload: str

    def to_wire(self) -> str:
        return f"{ENVELOPE_VERSION}|{self.timestamp}|{self.checksum}|{self.payload}"


@dataclass(frozen=True)
class LegacyEnvelope:
    """Bare ``iv:tag:ciphertext`` payload without metadata."""

    payload: str

    def to_wire(self) -> str:
        return self.payload


Envelope = Union[VersionedEnvelope, LegacyEnvelope]


def get_default_tracker() -> AttemptTracker:
    """Return the process-wide tracker used when none is passed explicitly."""
    return _default_tracker


def _corrupted() -> DecryptionError:
    return DecryptionError(DECRYPTION_FAILED_MESSAGE)


def _checksum(payload: str) -> str:
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def _wipe(buf: bytearray) -> None:
    buf[:] = bytes(len(buf))


def _decode_key(key: str) -> bytearray:
    """Validate a hex key and decode it into a mutable buffer.

    Raises:
        InvalidInputError: If key is not a non-empty string
        InvalidKeyError: If key is not exactly 64 hex characters
    """
    if not isinstance(key, str) or not key:
        raise InvalidInputError("Key must be a non-empty string")
    if not _KEY_RE.fullmatch(key):
        raise InvalidKeyError(
            f"Key must be {KEY_SIZE} bytes ({KEY_SIZE * 2} hex characters)"
        )
    return bytearray.fromhex(key)


def _unhex(value: str, size: int | None = None) -> bytes:
    if not _HEX_RE.fullmatch(value):
        raise _corrupted()
    data = bytes.fromhex(value)
    if size is not None and len(data) != size:
        raise _corrupted()
    return data


def generate_key() -> str:
    """Generate a random encryption key.

    Returns:
        32 random bytes as a 64-character hex string
    """
    return secrets.token_hex(KEY_SIZE)


def parse_envelope(text: str) -> Envelope:
    """Decode the outer layer of an envelope.

    A string starting with ``v1|`` is a versioned envelope and its checksum
    is verified; anything else is taken as a legacy payload.

    Args:
        text: Envelope string

    Returns:
        VersionedEnvelope or LegacyEnvelope

    Raises:
        DecryptionError: If a versioned envelope is malformed or its checksum
            does not match
    """
    if not text.startswith(_VERSION_PREFIX):
        return LegacyEnvelope(payload=text)

    parts = text.split("|")
    if len(parts) != 4:
        raise _corrupted()

    _, timestamp, checksum, payload = parts
    if not _TIMESTAMP_RE.fullmatch(timestamp):
        raise _corrupted()

    # Note: the timestamp is informational; staleness policy is up to callers
    try:
        matches = hmac.compare_digest(
            _checksum(payload).encode("utf-8"), checksum.encode("utf-8")
        )
    except UnicodeEncodeError:
        raise _corrupted() from None
    if not matches:
        raise _corrupted()

    return VersionedEnvelope(
        timestamp=int(timestamp), checksum=checksum, payload=payload
    )


def is_encrypted(text: str) -> bool:
    """Check if text looks like a versioned envelope.

    Args:
        text: Text to check

    Returns:
        True if text has the versioned envelope shape
    """
    if not isinstance(text, str):
        return False
    text = text.strip()
    return text.startswith(_VERSION_PREFIX) and text.count("|") == 3


def encrypt(plaintext: str, key: str) -> str:
    """Encrypt plaintext into a versioned envelope.

    Args:
        plaintext: Text to encrypt (may be empty)
        key: 64-character hex key

    Returns:
        Envelope string in ``v1|timestamp|checksum|iv:tag:ciphertext`` form

    Raises:
        InvalidInputError: If plaintext is not a string
        InputTooLargeError: If plaintext exceeds MAX_INPUT_SIZE bytes
        InvalidKeyError: If key is not 32 bytes of hex
        EncryptionError: If the cipher back-end fails
    """
    if not isinstance(plaintext, str):
        raise InvalidInputError("Text to encrypt must be a string")

    try:
        data = plaintext.encode("utf-8")
    except UnicodeEncodeError as e:
        raise InvalidInputError(f"Text to encrypt is not valid Unicode: {e}") from e

    if len(data) > MAX_INPUT_SIZE:
        raise InputTooLargeError(
            f"Input too large: maximum size is {MAX_INPUT_SIZE} bytes, "
            f"got {len(data)} bytes"
        )

    key_buf = _decode_key(key)
    try:
        iv = os.urandom(IV_SIZE)
        # AESGCM appends the tag to the ciphertext
        sealed = AESGCM(key_buf).encrypt(iv, data, None)
    except Exception as e:
        raise EncryptionError(f"Encryption failed: {e}") from e
    finally:
        _wipe(key_buf)

    ciphertext, tag = sealed[:-TAG_SIZE], sealed[-TAG_SIZE:]
    payload = f"{iv.hex()}:{tag.hex()}:{ciphertext.hex()}"

    envelope = VersionedEnvelope(
        timestamp=int(time.time() * 1000),
        checksum=_checksum(payload),
        payload=payload,
    )
    return envelope.to_wire()


def decrypt(envelope: str, key: str, tracker: AttemptTracker | None = None) -> str:
    """Decrypt an envelope (versioned or legacy).

    Args:
        envelope: Envelope string
        key: 64-character hex key
        tracker: Attempt tracker to consult and update (defaults to the
            process-wide tracker)

    Returns:
        Decrypted plaintext

    Raises:
        InvalidInputError: If envelope or key is not a non-empty string
        InputTooLargeError: If envelope exceeds MAX_ENVELOPE_SIZE bytes
        InvalidKeyError: If key is not 32 bytes of hex
        RateLimitedError: If this key has too many recent failures
        DecryptionError: On any failure of the decryption itself
    """
    if not isinstance(envelope, str) or not envelope:
        raise InvalidInputError("Envelope must be a non-empty string")

    size = len(envelope.encode("utf-8", errors="surrogatepass"))
    if size > MAX_ENVELOPE_SIZE:
        raise InputTooLargeError(
            f"Input too large: maximum size is {MAX_ENVELOPE_SIZE} bytes, "
            f"got {size} bytes"
        )

    if tracker is None:
        tracker = _default_tracker

    key_buf = _decode_key(key)
    try:
        if not tracker.acquire(key):
            raise RateLimitedError(
                "Too many failed decryption attempts. Please wait before trying again."
            )

        failed = True
        try:
            payload = parse_envelope(envelope).payload
            parts = payload.split(":")
            if len(parts) != 3:
                raise _corrupted()

            iv = _unhex(parts[0], IV_SIZE)
            tag = _unhex(parts[1], TAG_SIZE)
            ciphertext = _unhex(parts[2])

            plaintext = AESGCM(key_buf).decrypt(iv, ciphertext + tag, None)
            text = plaintext.decode("utf-8")
            failed = False
            return text
        except (DecryptionError, InvalidTag, ValueError):
            raise _corrupted() from None
        finally:
            tracker.release(key, failed=failed)
    finally:
        _wipe(key_buf)


def clear_rate_limit(key_hash: str, tracker: AttemptTracker | None = None) -> bool:
    """Remove the failed-attempt record for a hashed key.

    Args:
        key_hash: Identifier as returned by :func:`envlock.ratelimit.hash_key`
        tracker: Tracker to clear (defaults to the process-wide tracker)

    Returns:
        True if a record was removed
    """
    if tracker is None:
        tracker = _default_tracker
    return tracker.clear(key_hash)

