"""Exceptions raised by envlock."""

from __future__ import annotations


class EnvLockError(Exception):
    """Base exception for all envlock errors."""


class InvalidInputError(EnvLockError, ValueError):
    """Plaintext, key or envelope has the wrong type or shape."""


class InputTooLargeError(EnvLockError, ValueError):
    """Plaintext or envelope exceeds the size ceiling."""


class InvalidKeyError(EnvLockError, ValueError):
    """Key does not decode to exactly 32 bytes."""


class EncryptionError(EnvLockError):
    """Encryption failed in the cipher back-end."""


class DecryptionError(EnvLockError):
    """Envelope could not be decrypted.

    Every failure on the decryption path raises this with the same message,
    whatever the underlying cause was.
    """


class RateLimitedError(EnvLockError):
    """Too many failed decryption attempts for a key in the current window."""


class FormatError(EnvLockError):
    """Configuration text could not be parsed."""


class UnclosedQuoteError(FormatError):
    """A multi-line double-quoted value was never closed."""

    def __init__(self, key: str) -> None:
        super().__init__(f"Unclosed double quote in value for key '{key}'")
        self.key = key
